"""
Escalation Engine: time-driven follow-up/respond notifications for leads.

For every lead (never confirmed clients) the sweep:
1. Derives the last status change (last status-history entry, else the
   registration time)
2. Resets the escalation tracker when the status or that timestamp moved
3. Archives the lead once it has had 3 follow-ups and 24 hours have passed
   since the last one
4. Emits "follow" notifications for the 24h / 72h follow-up classes (cap 3),
   "respond" notifications for the 24h respond class, and one "follow" per
   past-due on-hold follow-up date
5. Writes the tracker back

Each lead is processed in its own transaction; a failure is logged and
recorded on the report and the sweep moves on.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.identifiers import generate_short_id
from ..models import (
    Lead,
    LeadStatus,
    Notification,
    NotificationKind,
    NotificationSeverity,
    RecordType,
    parse_timestamp,
    utcnow,
)
from .archive import CHAT_REASON_AUTO, REASON_FOLLOWUP_LIMIT, ArchiveStore
from .mailer import Mailer, archived_email, get_mailer
from .scope import Actor

logger = logging.getLogger(__name__)


# =============================================================================
# THRESHOLDS
# =============================================================================


FOLLOW_UP_24H_STATUSES = frozenset({LeadStatus.INTAKE})
FOLLOW_UP_72H_STATUSES = frozenset({LeadStatus.WAITING_APPROVAL, LeadStatus.WAITING_ACCEPTANCE})
RESPOND_24H_STATUSES = frozenset({
    LeadStatus.SEND_PROPOSAL,
    LeadStatus.SEND_CONTRACT,
    LeadStatus.SEND_RESPONSE,
})

FOLLOW_UP_CAP = 3
ARCHIVE_AFTER_LAST_FOLLOWUP_HOURS = 24
RESPOND_INTERVAL_HOURS = 24


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class EscalationReport:
    """Summary of one sweep."""
    started_at: datetime
    completed_at: datetime | None = None
    leads_scanned: int = 0
    notifications_emitted: int = 0
    trackers_reset: int = 0
    archived: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "leads_scanned": self.leads_scanned,
            "notifications_emitted": self.notifications_emitted,
            "trackers_reset": self.trackers_reset,
            "archived": list(self.archived),
            "skipped": list(self.skipped),
            "errors": list(self.errors),
        }


# =============================================================================
# TRACKER HELPERS
# =============================================================================


def _iso(value: Any) -> str | None:
    parsed = parse_timestamp(value)
    return parsed.isoformat() if parsed else None


def last_status_change_at(lead: Lead) -> str | None:
    """Timestamp of the last status-history entry, else the registration time."""
    history = lead.status_history or []
    if history:
        last = history[-1]
        if isinstance(last, dict) and last.get("date"):
            return _iso(last["date"])
    return _iso(lead.registered_at)


def hours_between(start: Any, now: datetime) -> float:
    started = parse_timestamp(start)
    if started is None:
        return 0.0
    return (now - started).total_seconds() / 3600


def fresh_tracker(status: LeadStatus, changed_at: str | None) -> dict[str, Any]:
    return {
        "status": status.value,
        "lastStatusChangeAt": changed_at,
        "followupCount": 0,
        "lastFollowupAt": None,
        "lastRespondAt": None,
        "onHoldFollowupNotifiedFor": None,
    }


def followup_interval(status: LeadStatus) -> int | None:
    if status in FOLLOW_UP_24H_STATUSES:
        return 24
    if status in FOLLOW_UP_72H_STATUSES:
        return 72
    return None


# =============================================================================
# ESCALATION ENGINE
# =============================================================================


class EscalationEngine:
    """Runs escalation sweeps with one short transaction per lead."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        mailer: Mailer | None = None,
    ):
        self._session_factory = session_factory
        self._mailer = mailer or get_mailer()

    async def sweep(self, now: datetime | None = None) -> EscalationReport:
        now = now or utcnow()
        report = EscalationReport(started_at=utcnow())

        async with self._session_factory() as session:
            customer_ids = (
                await session.execute(select(Lead.customer_id).order_by(Lead.customer_id))
            ).scalars().all()

        for customer_id in customer_ids:
            report.leads_scanned += 1
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        await self._process_lead(session, customer_id, now, report)
            except Exception as e:
                logger.error(f"Escalation failed for lead {customer_id}: {e}", exc_info=True)
                report.errors.append(f"{customer_id}: {e}")

        report.completed_at = utcnow()
        logger.info(
            f"Escalation sweep: {report.leads_scanned} leads, "
            f"{report.notifications_emitted} notifications, "
            f"{len(report.archived)} archived, {len(report.errors)} errors"
        )
        return report

    async def _process_lead(
        self,
        session: AsyncSession,
        customer_id: str,
        now: datetime,
        report: EscalationReport,
    ) -> None:
        lead = await session.get(Lead, customer_id)
        if lead is None:
            # Promoted or deleted since the id list was read
            return

        status = lead.status
        changed_at = last_status_change_at(lead)
        previous = lead.notification_tracker or {}
        status_changed = (
            previous.get("status") != status.value
            or previous.get("lastStatusChangeAt") != changed_at
        )

        if status_changed:
            tracker = fresh_tracker(status, changed_at)
            report.trackers_reset += 1
        else:
            tracker = {
                **fresh_tracker(status, changed_at),
                "followupCount": int(previous.get("followupCount") or 0),
                "lastFollowupAt": previous.get("lastFollowupAt"),
                "lastRespondAt": previous.get("lastRespondAt"),
                "onHoldFollowupNotifiedFor": previous.get("onHoldFollowupNotifiedFor"),
            }

        since_last_followup = (
            hours_between(tracker["lastFollowupAt"], now) if tracker["lastFollowupAt"] else 0.0
        )
        if (
            tracker["followupCount"] >= FOLLOW_UP_CAP
            and since_last_followup >= ARCHIVE_AFTER_LAST_FOLLOWUP_HOURS
        ):
            await self._archive(session, lead, report)
            return

        pending: list[Notification] = []
        since_change = hours_between(changed_at, now)
        now_iso = now.isoformat()

        interval = followup_interval(status)
        if interval is not None:
            since_followup = (
                hours_between(tracker["lastFollowupAt"], now)
                if tracker["lastFollowupAt"]
                else since_change
            )
            if (
                since_change >= interval
                and since_followup >= interval
                and tracker["followupCount"] < FOLLOW_UP_CAP
            ):
                pending.append(self._notification(
                    customer_id,
                    f"Follow up {lead.name}",
                    NotificationKind.FOLLOW,
                    NotificationSeverity.CRITICAL if interval == 72 else NotificationSeverity.WARN,
                    now,
                ))
                tracker["followupCount"] += 1
                tracker["lastFollowupAt"] = now_iso

        if status in RESPOND_24H_STATUSES:
            since_respond = (
                hours_between(tracker["lastRespondAt"], now)
                if tracker["lastRespondAt"]
                else since_change
            )
            if since_change >= RESPOND_INTERVAL_HOURS and since_respond >= RESPOND_INTERVAL_HOURS:
                pending.append(self._notification(
                    customer_id,
                    f"Respond to {lead.name}",
                    NotificationKind.RESPOND,
                    NotificationSeverity.WARN,
                    now,
                ))
                tracker["lastRespondAt"] = now_iso

        if status == LeadStatus.ON_HOLD and lead.follow_up_date is not None:
            follow_up = _iso(lead.follow_up_date)
            if lead.follow_up_date <= now and tracker["onHoldFollowupNotifiedFor"] != follow_up:
                pending.append(self._notification(
                    customer_id,
                    f"Follow up {lead.name} {customer_id}",
                    NotificationKind.FOLLOW,
                    NotificationSeverity.WARN,
                    now,
                ))
                tracker["onHoldFollowupNotifiedFor"] = follow_up

        if tracker != previous:
            # Tracker-only write: guarded on the observed version, no bump
            written = await session.execute(
                update(Lead)
                .where(Lead.customer_id == customer_id, Lead.version == lead.version)
                .values(notification_tracker=tracker)
                .execution_options(synchronize_session=False)
            )
            if written.rowcount != 1:
                logger.info(f"Lead {customer_id} changed during sweep, retrying next cycle")
                report.skipped.append(customer_id)
                return

        if status_changed:
            await session.execute(
                delete(Notification)
                .where(Notification.customer_id == customer_id)
                .execution_options(synchronize_session=False)
            )

        session.add_all(pending)
        report.notifications_emitted += len(pending)

    async def _archive(self, session: AsyncSession, lead: Lead, report: EscalationReport) -> None:
        customer_id, name, email = lead.customer_id, lead.name, lead.email
        await ArchiveStore(session).archive(
            RecordType.LEAD,
            customer_id,
            Actor.system(),
            reason=REASON_FOLLOWUP_LIMIT,
            chat_reason=CHAT_REASON_AUTO,
            expected_version=lead.version,
        )
        report.archived.append(customer_id)
        logger.info(f"Lead {customer_id} archived after {FOLLOW_UP_CAP} unanswered follow-ups")
        self._mailer.dispatch_after_commit(session, email, *archived_email(name))

    @staticmethod
    def _notification(
        customer_id: str,
        message: str,
        kind: NotificationKind,
        severity: NotificationSeverity,
        now: datetime,
    ) -> Notification:
        return Notification(
            notification_id=generate_short_id("CN"),
            customer_id=customer_id,
            kind=kind,
            severity=severity,
            message=message,
            created_at=now,
        )
