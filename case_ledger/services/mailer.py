"""
Outbound Mail: fire-and-forget client emails.

Lifecycle events (proposal/contract dispatch, confirmation, archival, case
updates) queue an email on the session's outbox and move on. The outbox is
sent when the session commits and dropped when it rolls back, so no client
hears about a transition that never landed. Delivery runs as a separate
asyncio task; a failed send is logged and never reaches the transition that
triggered it.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from functools import lru_cache
from typing import Any

import httpx
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from ..core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

_OUTBOX_KEY = "case_ledger.outbox"


# =============================================================================
# MAIL CHANNELS
# =============================================================================


class MailChannel(ABC):
    """Abstract base for mail delivery channels."""

    @abstractmethod
    async def send(self, to: str, subject: str, body: str) -> tuple[bool, str | None]:
        """
        Send one message.

        Returns:
            (success, error_message)
        """


class HttpMailChannel(MailChannel):
    """Posts messages to a transactional mail API."""

    def __init__(self, api_url: str, api_key: str, sender: str, timeout: float = 10.0):
        self._api_url = api_url
        self._api_key = api_key
        self._sender = sender
        self._timeout = timeout

    async def send(self, to: str, subject: str, body: str) -> tuple[bool, str | None]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    self._api_url,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json={"from": self._sender, "to": to, "subject": subject, "text": body},
                )
                response.raise_for_status()
            return True, None
        except httpx.HTTPError as e:
            error_msg = f"Failed to send email to {to}: {e}"
            logger.error(error_msg)
            return False, error_msg


class LogMailChannel(MailChannel):
    """Writes messages to the log when no mail API is configured."""

    async def send(self, to: str, subject: str, body: str) -> tuple[bool, str | None]:
        logger.info(f"[EMAIL] To: {to}, Subject: {subject}")
        return True, None


# =============================================================================
# MAILER
# =============================================================================


class Mailer:
    """Schedules deliveries on the running event loop without awaiting them."""

    def __init__(self, channel: MailChannel):
        self.channel = channel
        self._pending: set[asyncio.Task] = set()

    def dispatch(self, to: str | None, subject: str, body: str) -> None:
        if not to:
            return
        task = asyncio.create_task(self._deliver(to, subject, body))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def dispatch_after_commit(
        self,
        session: AsyncSession,
        to: str | None,
        subject: str,
        body: str,
    ) -> None:
        """Queue a message that goes out only once ``session`` commits."""
        if not to:
            return
        sync_session = session.sync_session
        if not event.contains(sync_session, "after_commit", _send_outbox):
            event.listen(sync_session, "after_commit", _send_outbox)
            event.listen(sync_session, "after_rollback", _drop_outbox)
        sync_session.info.setdefault(_OUTBOX_KEY, []).append((self, to, subject, body))

    async def _deliver(self, to: str, subject: str, body: str) -> None:
        try:
            ok, error = await self.channel.send(to, subject, body)
            if not ok:
                logger.warning(f"Email to {to} not delivered: {error}")
        except Exception as e:
            logger.error(f"Unexpected mail failure for {to}: {e}", exc_info=True)

    async def drain(self) -> None:
        """Wait for queued deliveries (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def _send_outbox(sync_session: Session) -> None:
    for mailer, to, subject, body in sync_session.info.pop(_OUTBOX_KEY, []):
        mailer.dispatch(to, subject, body)


def _drop_outbox(sync_session: Session) -> None:
    dropped = sync_session.info.pop(_OUTBOX_KEY, [])
    if dropped:
        logger.info(f"Rollback discarded {len(dropped)} queued email(s)")


@lru_cache
def get_mailer() -> Mailer:
    """Process-wide mailer built from settings."""
    if settings.mail_enabled:
        channel: MailChannel = HttpMailChannel(
            settings.mail_api_url, settings.mail_api_key, settings.mail_from
        )
    else:
        channel = LogMailChannel()
    return Mailer(channel)


# =============================================================================
# MESSAGE TEMPLATES
# =============================================================================


SERVICE_LABELS = {
    "visa_c": "Visa C",
    "visa_d": "Visa D",
    "residency_permit": "Residency Permit",
    "company_formation": "Company Formation",
    "real_estate": "Real Estate",
    "tax_consulting": "Tax Consulting",
    "compliance": "Compliance",
}

FEE_FIELDS = (
    ("serviceFeeALL", "Service Fee"),
    ("poaFeeALL", "Power of Attorney"),
    ("translationFeeALL", "Translation Fee"),
    ("otherFeesALL", "Other Fees"),
)


def fee_total(proposal_fields: dict[str, Any] | None) -> float:
    """Sum of the itemized proposal fees (non-numeric values count as 0)."""
    total = 0.0
    for key, _ in FEE_FIELDS:
        try:
            total += float((proposal_fields or {}).get(key) or 0)
        except (TypeError, ValueError):
            continue
    return total


def service_names(services: list[str] | None) -> str:
    return ", ".join(SERVICE_LABELS.get(s, s) for s in (services or []))


def _signature(sender: str | None) -> str:
    return f"Best regards,\n{sender or 'the legal team'}\n{settings.firm_name}\n{settings.mail_from}"


def _portal_line() -> str:
    return "Open the customer portal link we sent you to review it, or contact us for a new link."


def proposal_ready_email(name: str, sender: str | None) -> tuple[str, str]:
    subject = f"Your Service Proposal is Ready — {settings.firm_name}"
    body = "\n".join([
        f"Dear {name or 'Client'},",
        "",
        f"Your personalised service proposal from {settings.firm_name} is now ready for your review.",
        "",
        _portal_line(),
        "",
        "The proposal outlines the scope of work, estimated timeline, required documents, and fees.",
        "",
        _signature(sender),
    ])
    return subject, body


def contract_ready_email(
    name: str,
    proposal_fields: dict[str, Any] | None,
    sender: str | None,
) -> tuple[str, str]:
    fields = proposal_fields or {}
    fee_lines = []
    for key, label in FEE_FIELDS:
        try:
            amount = float(fields.get(key) or 0)
        except (TypeError, ValueError):
            continue
        if amount > 0:
            fee_lines.append(f"  • {label}: {amount:,.0f} ALL")

    payment_section: list[str] = []
    if fee_lines:
        payment_section = ["", "PAYMENT SUMMARY", *fee_lines, f"  TOTAL: {fee_total(fields):,.0f} ALL", ""]
        if fields.get("paymentNote"):
            payment_section.extend([f"  Note: {fields['paymentNote']}", ""])

    subject = f"Your Service Agreement is Ready to Sign — {settings.firm_name}"
    body = "\n".join([
        f"Dear {name or 'Client'},",
        "",
        f"Your Service Agreement with {settings.firm_name} is ready for your review and acceptance.",
        "",
        _portal_line(),
        *payment_section,
        "",
        _signature(sender),
    ])
    return subject, body


def status_update_email(name: str, status: str) -> tuple[str, str]:
    label = status.replace("_", " ").title()
    subject = f"Update on your file — {settings.firm_name}"
    body = "\n".join([
        f"Dear {name or 'Client'},",
        "",
        f"Your file has moved to the next stage: {label}.",
        "",
        _signature(None),
    ])
    return subject, body


def archived_email(name: str) -> tuple[str, str]:
    subject = f"Your file has been closed — {settings.firm_name}"
    body = "\n".join([
        f"Dear {name or 'Client'},",
        "",
        "We have not heard back from you, so we have closed your file for now.",
        "Reply to this email at any time and we will reopen it.",
        "",
        _signature(None),
    ])
    return subject, body


def case_update_email(name: str, case_title: str, state: str) -> tuple[str, str]:
    label = state.replace("_", " ").title()
    subject = f"Case update: {case_title}"
    body = "\n".join([
        f"Dear {name or 'Client'},",
        "",
        f'Your case "{case_title}" has been updated.',
        "",
        f"New status: {label}",
        "",
        "Visit your customer portal for the latest details.",
    ])
    return subject, body


def portal_access_email(name: str, portal_url: str, expires_at: datetime) -> tuple[str, str]:
    subject = f"Your {settings.firm_name} Customer Portal Access"
    body = "\n".join([
        f"Dear {name or 'Client'},",
        "",
        f"Your secure customer portal has been set up by the {settings.firm_name} team.",
        "",
        f"Access your portal here:\n{portal_url}",
        "",
        "Through your portal you can:",
        "  • Track your case status",
        "  • Review proposals and service agreements",
        "  • View your invoices and payment status",
        "  • Send messages directly to your lawyer",
        "",
        f"This link is valid until {expires_at:%d %B %Y}.",
        "",
        _signature(None),
    ])
    return subject, body
