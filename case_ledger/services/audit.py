"""Audit service: append-only action log with a hash chain."""

import json
import logging
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.security import hash_content
from ..models import AuditLog, utcnow
from .scope import Actor

logger = logging.getLogger(__name__)


def _entry_payload(entry: AuditLog) -> str:
    return json.dumps(
        {
            "actor": entry.actor,
            "role": entry.role,
            "action": entry.action,
            "resource": entry.resource,
            "resource_id": entry.resource_id,
            "details": entry.details,
            "created_at": entry.created_at.isoformat(),
        },
        sort_keys=True,
        default=str,
    )


def compute_entry_hash(previous_hash: str | None, entry: AuditLog) -> str:
    return hash_content(f"{previous_hash or ''}|{_entry_payload(entry)}")


class AuditService:
    """Service for audit logging and compliance."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def log_event(
        self,
        actor: Actor | None,
        action: str,
        resource: str,
        resource_id: str | None,
        details: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Append one entry, chained to the previous entry's hash."""
        await self.session.flush()
        previous_hash = (
            await self.session.execute(
                select(AuditLog.entry_hash).order_by(AuditLog.id.desc()).limit(1)
            )
        ).scalar_one_or_none()

        entry = AuditLog(
            actor=actor.username if actor else None,
            role=actor.role.value if actor else None,
            action=action,
            resource=resource,
            resource_id=resource_id,
            details=json.loads(json.dumps(details or {}, default=str)),
            created_at=utcnow(),
            previous_hash=previous_hash,
        )
        entry.entry_hash = compute_entry_hash(previous_hash, entry)
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def get_audit_log(
        self,
        actor: str | None = None,
        action: str | None = None,
        resource: str | None = None,
        resource_id: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[Sequence[AuditLog], int]:
        """Query the audit log with filters."""
        query = select(AuditLog)

        if actor:
            query = query.where(AuditLog.actor == actor)
        if action:
            query = query.where(AuditLog.action == action)
        if resource:
            query = query.where(AuditLog.resource == resource)
        if resource_id:
            query = query.where(AuditLog.resource_id == resource_id)
        if start_date:
            query = query.where(AuditLog.created_at >= start_date)
        if end_date:
            query = query.where(AuditLog.created_at <= end_date)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.session.execute(count_query)).scalar_one()

        query = query.order_by(AuditLog.id.desc()).limit(limit).offset(offset)
        result = await self.session.execute(query)

        return result.scalars().all(), total

    async def verify_chain_integrity(self) -> dict[str, Any]:
        """Walk the log in insertion order and recompute every hash."""
        result = await self.session.execute(select(AuditLog).order_by(AuditLog.id))
        previous_hash: str | None = None
        checked = 0
        for entry in result.scalars():
            expected = compute_entry_hash(previous_hash, entry)
            if entry.previous_hash != previous_hash or entry.entry_hash != expected:
                logger.error(f"Audit chain broken at entry {entry.id}")
                return {
                    "is_valid": False,
                    "broken_at_id": entry.id,
                    "expected_hash": expected,
                    "actual_hash": entry.entry_hash,
                    "entries_checked": checked,
                    "verified_at": utcnow(),
                }
            previous_hash = entry.entry_hash
            checked += 1

        return {
            "is_valid": True,
            "broken_at_id": None,
            "expected_hash": None,
            "actual_hash": None,
            "entries_checked": checked,
            "verified_at": utcnow(),
        }
