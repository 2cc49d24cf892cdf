"""
Archive Store: snapshot-on-delete and restore-from-snapshot.

Deleting a lead or confirmed client never destroys data outright. The account
and every row that references it (cases, case history, notes, tasks, status
history) are copied into one immutable ``ArchivedRecord`` and the live rows are
removed in the same transaction. Chat transcripts are archived separately with
their own reason tag. Invoices are financial records and stay live.

Restore re-inserts each snapshot document only if no live row has the same
key, then drops the archive entry.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.identifiers import generate_short_id
from ..models import (
    AccountHistory,
    ArchivedChat,
    ArchivedRecord,
    Base,
    Case,
    CaseHistory,
    ChatMessage,
    ConfirmedClient,
    Lead,
    Note,
    Notification,
    RecordType,
    Role,
    Task,
    utcnow,
)
from .audit import AuditService
from .errors import RecordNotFoundError, VersionConflictError
from .scope import Actor, ScopeResolver

logger = logging.getLogger(__name__)


# Archive / chat reason tags
REASON_MANUAL = "manual"
REASON_FOLLOWUP_LIMIT = "followup_limit"
CHAT_REASON_ENTITY_DELETED = "customer-deleted"
CHAT_REASON_MANUAL = "manual"
CHAT_REASON_AUTO = "auto-archive"

# Snapshot part -> model, in restore order
SNAPSHOT_MODELS: dict[str, type[Base]] = {
    "cases": Case,
    "case_history": CaseHistory,
    "notes": Note,
    "tasks": Task,
    "entity_history": AccountHistory,
}


def account_model(record_type: RecordType) -> type[Lead] | type[ConfirmedClient]:
    return ConfirmedClient if record_type == RecordType.CONFIRMED_CLIENT else Lead


@dataclass
class RestoreResult:
    """Outcome of restoring one archive entry."""
    archive_id: str
    customer_id: str
    record_type: RecordType
    restored: dict[str, int] = field(default_factory=dict)
    skipped: dict[str, int] = field(default_factory=dict)


class ArchiveStore:
    """Snapshot, delete and restore accounts with all their dependents."""

    def __init__(self, session: AsyncSession):
        self._session = session
        self._audit = AuditService(session)

    # =========================================================================
    # ARCHIVE
    # =========================================================================

    async def archive(
        self,
        record_type: RecordType,
        customer_id: str,
        actor: Actor,
        reason: str = REASON_MANUAL,
        chat_reason: str = CHAT_REASON_ENTITY_DELETED,
        scope: ScopeResolver | None = None,
        expected_version: int | None = None,
    ) -> ArchivedRecord:
        """
        Snapshot an account and its dependents, then delete the live rows.

        Flow:
        1. Load the account (inside ``scope`` when given)
        2. Collect cases, case history, notes, tasks and status history
        3. Archive the chat transcript separately
        4. Store the snapshot
        5. Delete the live rows and pending notifications
        6. Log audit event
        """
        model = account_model(record_type)
        query = select(model).where(model.customer_id == customer_id)
        if scope is not None:
            query = query.where(scope.predicate(model))
        entity = (await self._session.execute(query)).scalar_one_or_none()
        if entity is None:
            raise RecordNotFoundError(f"{record_type.value} {customer_id} not found")

        version = entity.version if expected_version is None else expected_version

        cases = (
            await self._session.execute(select(Case).where(Case.customer_id == customer_id))
        ).scalars().all()
        case_ids = [c.case_id for c in cases]
        case_history = await self._rows(CaseHistory, CaseHistory.case_id.in_(case_ids))
        notes = await self._rows(Note, Note.case_id.in_(case_ids))
        tasks = await self._rows(Task, Task.case_id.in_(case_ids))
        entity_history = await self._rows(
            AccountHistory, AccountHistory.customer_id == customer_id
        )

        await self.archive_chat(customer_id, entity.name or customer_id, actor, chat_reason)

        record = ArchivedRecord(
            record_id=generate_short_id("DR"),
            record_type=record_type,
            customer_id=customer_id,
            customer_name=entity.name or customer_id,
            deleted_at=utcnow(),
            deleted_by=actor.username,
            reason=reason,
            snapshot={
                "entity": entity.to_document(),
                "cases": [c.to_document() for c in cases],
                "case_history": [h.to_document() for h in case_history],
                "notes": [n.to_document() for n in notes],
                "tasks": [t.to_document() for t in tasks],
                "entity_history": [h.to_document() for h in entity_history],
            },
        )
        self._session.add(record)

        deleted = await self._session.execute(
            delete(model)
            .where(model.customer_id == customer_id, model.version == version)
            .execution_options(synchronize_session=False)
        )
        if deleted.rowcount != 1:
            current = await self._session.get(model, customer_id, populate_existing=True)
            if current is None:
                raise RecordNotFoundError(f"{record_type.value} {customer_id} not found")
            raise VersionConflictError(
                f"Version mismatch: expected v{version}, but current is v{current.version}.",
                current=current.to_document(),
            )

        for stmt in (
            delete(CaseHistory).where(CaseHistory.case_id.in_(case_ids)),
            delete(Note).where(Note.case_id.in_(case_ids)),
            delete(Task).where(Task.case_id.in_(case_ids)),
            delete(Case).where(Case.customer_id == customer_id),
            delete(AccountHistory).where(AccountHistory.customer_id == customer_id),
            delete(Notification).where(Notification.customer_id == customer_id),
        ):
            await self._session.execute(stmt.execution_options(synchronize_session=False))

        for row in (entity, *cases, *case_history, *notes, *tasks, *entity_history):
            self._session.expunge(row)

        await self._audit.log_event(
            actor=actor,
            action="auto-delete" if actor.role == Role.SYSTEM else "soft-delete",
            resource=record_type.value,
            resource_id=customer_id,
            details={"archive_id": record.record_id, "reason": reason, "cases": len(cases)},
        )
        await self._session.flush()

        logger.info(
            f"Archived {record_type.value} {customer_id} as {record.record_id} "
            f"({len(cases)} cases, reason={reason})"
        )
        return record

    async def archive_chat(
        self,
        customer_id: str,
        customer_name: str,
        actor: Actor,
        reason: str,
    ) -> ArchivedChat | None:
        """Move a chat transcript into the chat archive. No-op when empty."""
        messages = (
            await self._session.execute(
                select(ChatMessage)
                .where(ChatMessage.customer_id == customer_id)
                .order_by(ChatMessage.created_at)
            )
        ).scalars().all()
        if not messages:
            return None

        archived = ArchivedChat(
            archived_chat_id=generate_short_id("DC"),
            customer_id=customer_id,
            customer_name=customer_name,
            deleted_at=utcnow(),
            deleted_by=actor.username,
            reason=reason,
            messages=[m.to_document() for m in messages],
        )
        self._session.add(archived)
        await self._session.execute(
            delete(ChatMessage)
            .where(ChatMessage.customer_id == customer_id)
            .execution_options(synchronize_session=False)
        )
        for message in messages:
            self._session.expunge(message)
        await self._session.flush()
        return archived

    # =========================================================================
    # RESTORE
    # =========================================================================

    async def restore(self, archive_id: str, actor: Actor) -> RestoreResult:
        """
        Re-insert a snapshot with an insert-if-absent policy.

        The account is skipped when its id is live in either table, so a
        restore can never put one account in both. The archive entry is
        removed afterwards; restoring it again reports not-found.
        """
        record = await self._session.get(ArchivedRecord, archive_id)
        if record is None:
            raise RecordNotFoundError(f"Archive entry {archive_id} not found")

        snapshot = record.snapshot or {}
        result = RestoreResult(
            archive_id=record.record_id,
            customer_id=record.customer_id,
            record_type=record.record_type,
        )

        entity_doc = dict(snapshot.get("entity") or {})
        if entity_doc:
            # Escalation starts over for a restored account
            entity_doc["notification_tracker"] = None
            if await self._account_is_live(record.customer_id):
                result.skipped["entity"] = 1
            else:
                self._session.add(account_model(record.record_type).from_document(entity_doc))
                result.restored["entity"] = 1

        for part, model in SNAPSHOT_MODELS.items():
            restored, skipped = await self._insert_if_absent(model, snapshot.get(part) or [])
            result.restored[part] = restored
            result.skipped[part] = skipped

        await self._session.delete(record)
        await self._audit.log_event(
            actor=actor,
            action="restore",
            resource="archived_record",
            resource_id=archive_id,
            details={
                "customer_id": record.customer_id,
                "record_type": record.record_type.value,
                "skipped": result.skipped,
            },
        )
        await self._session.flush()

        logger.info(f"Restored archive {archive_id} for {record.customer_id}")
        return result

    async def _account_is_live(self, customer_id: str) -> bool:
        for model in (Lead, ConfirmedClient):
            if await self._session.get(model, customer_id) is not None:
                return True
        return False

    async def _insert_if_absent(
        self,
        model: type[Base],
        documents: list[dict[str, Any]],
    ) -> tuple[int, int]:
        pk = model.__mapper__.primary_key[0]
        restored = skipped = 0
        for document in documents:
            key = document.get(pk.key)
            if key is None or await self._session.get(model, key) is not None:
                skipped += 1
                continue
            self._session.add(model.from_document(document))
            restored += 1
        await self._session.flush()
        return restored, skipped

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def list_archived(self, limit: int = 100, offset: int = 0) -> Sequence[ArchivedRecord]:
        result = await self._session.execute(
            select(ArchivedRecord)
            .order_by(ArchivedRecord.deleted_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return result.scalars().all()

    async def get_archived(self, archive_id: str) -> ArchivedRecord:
        record = await self._session.get(ArchivedRecord, archive_id)
        if record is None:
            raise RecordNotFoundError(f"Archive entry {archive_id} not found")
        return record

    async def list_archived_chats(
        self,
        search: str | None = None,
        limit: int = 100,
    ) -> Sequence[ArchivedChat]:
        query = select(ArchivedChat)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(
                or_(
                    ArchivedChat.customer_name.ilike(pattern),
                    ArchivedChat.customer_id.ilike(pattern),
                )
            )
        result = await self._session.execute(
            query.order_by(ArchivedChat.deleted_at.desc()).limit(limit)
        )
        return result.scalars().all()

    async def _rows(self, model: type[Base], condition: Any) -> Sequence[Any]:
        return (await self._session.execute(select(model).where(condition))).scalars().all()
