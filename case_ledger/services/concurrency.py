"""
Concurrency Guard: optimistic version checks for leads, clients and cases.

Every mutation names the version it last observed. The write itself is a
conditional UPDATE (``WHERE version = :expected``) that increments the
version by one, so a stale caller can never overwrite a newer row even if it
raced past the up-front check. A rejected write raises
``VersionConflictError`` carrying the stored record.
"""

import logging
from typing import Any, TypeVar

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Base
from .errors import RecordNotFoundError, VersionConflictError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=Base)


class ConcurrencyGuard:
    """Version-checked writes inside the caller's transaction."""

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _pk(model: type[Base]) -> Any:
        return model.__mapper__.primary_key[0]

    def check(self, record: Base, expected_version: int) -> None:
        """Compare a loaded record's version against the caller's view."""
        if record.version != expected_version:
            raise self._conflict(record, expected_version)

    async def apply(
        self,
        model: type[ModelT],
        key: str,
        expected_version: int,
        changes: dict[str, Any],
    ) -> ModelT:
        """Write ``changes`` and bump the version, or raise on a stale version."""
        await self._session.flush()
        pk = self._pk(model)
        stmt = (
            update(model)
            .where(pk == key, model.version == expected_version)
            .values(**changes, version=model.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            await self._raise_for_missed_write(model, key, expected_version)

        row = await self._session.get(model, key, populate_existing=True)
        return row

    async def move(
        self,
        source_model: type[Base],
        target_model: type[ModelT],
        record: Base,
        expected_version: int,
        overrides: dict[str, Any],
    ) -> ModelT:
        """Move a record between tables as one guarded step.

        The source row is deleted only if it still has ``expected_version``;
        the target row is inserted in the same transaction with the version
        incremented, so the record is never visible in both tables or in
        neither once the transaction commits.
        """
        await self._session.flush()
        pk = self._pk(source_model)
        key = getattr(record, pk.key)

        document = record.to_document()
        document.update(overrides)
        document["version"] = expected_version + 1

        result = await self._session.execute(
            delete(source_model)
            .where(pk == key, source_model.version == expected_version)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._raise_for_missed_write(source_model, key, expected_version)

        self._session.expunge(record)
        target = target_model.from_document(document)
        self._session.add(target)
        await self._session.flush()
        logger.info(
            f"Moved {key} from {source_model.__tablename__} to "
            f"{target_model.__tablename__} at v{document['version']}"
        )
        return target

    async def _raise_for_missed_write(
        self,
        model: type[Base],
        key: str,
        expected_version: int,
    ) -> None:
        current = await self._session.get(model, key, populate_existing=True)
        if current is None:
            raise RecordNotFoundError(f"{model.__tablename__} {key} not found")
        raise self._conflict(current, expected_version)

    @staticmethod
    def _conflict(current: Base, expected_version: int) -> VersionConflictError:
        logger.info(
            f"Version conflict on {current.__tablename__}: expected v{expected_version}, "
            f"stored v{current.version}"
        )
        return VersionConflictError(
            f"Version mismatch: expected v{expected_version}, but current is "
            f"v{current.version}. The record was modified by another user.",
            current=current.to_document(),
        )
