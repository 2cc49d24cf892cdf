"""
Escalation Job: hourly follow-up sweep over all leads.

Two ways to run it:
- In-process: ``EscalationSupervisor`` owns one asyncio task started by the
  API lifespan, sweeping every ``ESCALATION_INTERVAL_SECONDS``
- Standalone: ``case-ledger-escalation --database-url ...`` runs one sweep
  (cron schedule: 0 * * * *)
"""

import asyncio
import contextlib
import logging
import traceback
from datetime import datetime, timezone
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ..core.config import get_settings
from ..services.escalation import EscalationEngine, EscalationReport
from ..services.mailer import Mailer, get_mailer

logger = logging.getLogger(__name__)
settings = get_settings()


# =============================================================================
# ALERTING
# =============================================================================


async def send_alert(
    title: str,
    message: str,
    severity: str = "error",
    details: dict | None = None,
) -> None:
    """
    Send an alert when the sweep fails.

    Always logs; also posts to ``ALERT_WEBHOOK_URL`` when configured.
    """
    log_message = f"[ESCALATION ALERT] {title}: {message}"
    if details:
        log_message += f" | Details: {details}"

    if severity == "critical":
        logger.critical(log_message)
    else:
        logger.error(log_message)

    if settings.alert_webhook_url:
        try:
            await _send_webhook_alert(settings.alert_webhook_url, title, message, severity, details)
        except httpx.HTTPError as e:
            logger.error(f"Failed to send webhook alert: {e}")


async def _send_webhook_alert(
    webhook_url: str,
    title: str,
    message: str,
    severity: str,
    details: dict | None,
) -> None:
    payload = {
        "title": title,
        "message": message,
        "severity": severity,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": "case-ledger-escalation",
        "details": details or {},
    }

    async with httpx.AsyncClient() as client:
        await client.post(webhook_url, json=payload, timeout=10)


# =============================================================================
# SUPERVISOR
# =============================================================================


class EscalationSupervisor:
    """Owns the periodic sweep task and serializes sweeps within the process.

    The notifications endpoint runs the sweep on demand through ``run_once``;
    the lock keeps it from overlapping the hourly run.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        interval_seconds: float = 3600,
        mailer: Mailer | None = None,
    ):
        self._session_factory = session_factory
        self._interval = interval_seconds
        self._mailer = mailer
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self.last_report: EscalationReport | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: datetime | None = None) -> EscalationReport:
        async with self._lock:
            engine = EscalationEngine(self._session_factory, mailer=self._mailer)
            report = await engine.sweep(now)
            self.last_report = report
            return report

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="escalation-sweep")
        logger.info(f"Escalation sweep scheduled every {self._interval:.0f}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Escalation sweep stopped")

    async def _loop(self) -> None:
        while True:
            try:
                report = await self.run_once()
                if report.errors:
                    await send_alert(
                        title="Escalation Sweep Completed with Errors",
                        message=f"{len(report.errors)} leads could not be processed.",
                        severity="warning",
                        details={"errors": report.errors[:5]},
                    )
            except Exception as e:
                # The loop outlives any single failed sweep
                await send_alert(
                    title="Escalation Sweep Failed",
                    message=str(e),
                    severity="critical",
                    details={"traceback": traceback.format_exc()[-500:]},
                )
            await asyncio.sleep(self._interval)


# =============================================================================
# STANDALONE JOB
# =============================================================================


async def run_escalation_job(database_url: str) -> dict[str, Any]:
    """
    Run one sweep against ``database_url`` and return the report as a dict.

    On a crash an alert is sent and the exception re-raised.
    """
    start_time = datetime.now(timezone.utc)
    logger.info(f"Starting escalation job at {start_time.isoformat()}")

    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]
    engine = create_async_engine(database_url.replace("postgresql://", "postgresql+asyncpg://"))
    session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    mailer = get_mailer()

    try:
        report = await EscalationEngine(session_factory, mailer=mailer).sweep()
    except Exception as e:
        await send_alert(
            title="Escalation Job Failed",
            message="The escalation sweep crashed unexpectedly.",
            severity="critical",
            details={
                "error": str(e),
                "traceback": traceback.format_exc()[-500:],
                "started_at": start_time.isoformat(),
            },
        )
        raise
    finally:
        await mailer.drain()
        await engine.dispose()

    results = report.to_dict()
    results["duration_seconds"] = (
        (report.completed_at or datetime.now(timezone.utc)) - start_time
    ).total_seconds()

    logger.info(
        f"Escalation job completed in {results['duration_seconds']:.2f}s: "
        f"{results['notifications_emitted']} notifications, "
        f"{len(results['archived'])} archived"
    )

    if report.errors:
        await send_alert(
            title="Escalation Job Completed with Warnings",
            message=f"{len(report.errors)} leads could not be processed.",
            severity="warning",
            details={"errors": report.errors[:5]},
        )

    return results


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the escalation job."""
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="Run one escalation sweep over all leads")
    parser.add_argument(
        "--database-url",
        default=settings.database_url,
        help="Database connection string (defaults to DATABASE_URL)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        results = asyncio.run(run_escalation_job(database_url=args.database_url))
        print(f"Job completed: {results}")
    except Exception as e:
        print(f"Job failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
