"""Background jobs for Case Ledger."""

from .escalation_cron import EscalationSupervisor, run_escalation_job

__all__ = ["EscalationSupervisor", "run_escalation_job"]
