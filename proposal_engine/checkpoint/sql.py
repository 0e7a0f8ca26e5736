"""
SQL Checkpoint Store

Append-only checkpoint history in the workflow_checkpoints table through
async SQLAlchemy sessions. Every storage failure surfaces as
CheckpointIOError so no partially written state is ever exposed.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete as sa_delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import select

from proposal_engine.checkpoint.base import CheckpointRecord, CheckpointStore, as_utc, deserialize_state
from proposal_engine.database import build_engine, build_session_maker, create_tables, session_scope
from proposal_engine.errors import CheckpointIOError
from proposal_engine.models import CheckpointRow

logger = logging.getLogger(__name__)


def _row_to_record(row: CheckpointRow) -> CheckpointRecord:
    return CheckpointRecord(
        thread_id=row.thread_id,
        version=row.version,
        updated_at=as_utc(row.updated_at),
        state=deserialize_state(row.state_json),
    )


class SqlCheckpointStore(CheckpointStore):

    def __init__(self, database_url: str = "", echo: bool = False, engine: Optional[AsyncEngine] = None):
        super().__init__()
        self.engine = engine or build_engine(database_url, echo=echo)
        self._session_maker = build_session_maker(self.engine)

    async def setup(self) -> None:
        try:
            await create_tables(self.engine)
        except SQLAlchemyError as e:
            raise CheckpointIOError(f"Could not create checkpoint tables: {e}") from e

    async def close(self) -> None:
        await self.engine.dispose()

    # -------------------------------------------------------------------------

    async def _latest(self, thread_id: str) -> Optional[CheckpointRecord]:
        statement = (
            select(CheckpointRow)
            .where(CheckpointRow.thread_id == thread_id)
            .order_by(CheckpointRow.version.desc())
            .limit(1)
        )
        try:
            async with session_scope(self._session_maker) as session:
                row = (await session.execute(statement)).scalars().first()
        except SQLAlchemyError as e:
            raise CheckpointIOError(f"Checkpoint read failed for {thread_id}: {e}", thread_id=thread_id) from e
        return _row_to_record(row) if row else None

    async def _append(self, thread_id: str, payload: str, updated_at: datetime) -> CheckpointRecord:
        try:
            async with session_scope(self._session_maker) as session:
                current = (
                    await session.execute(
                        select(func.max(CheckpointRow.version)).where(CheckpointRow.thread_id == thread_id)
                    )
                ).scalar()
                row = CheckpointRow(
                    thread_id=thread_id,
                    version=(current or 0) + 1,
                    state_json=payload,
                    updated_at=as_utc(updated_at),
                )
                session.add(row)
        except SQLAlchemyError as e:
            raise CheckpointIOError(f"Checkpoint write failed for {thread_id}: {e}", thread_id=thread_id) from e
        return _row_to_record(row)

    async def _delete(self, thread_id: str) -> bool:
        try:
            async with session_scope(self._session_maker) as session:
                result = await session.execute(
                    sa_delete(CheckpointRow).where(CheckpointRow.thread_id == thread_id)
                )
        except SQLAlchemyError as e:
            raise CheckpointIOError(f"Checkpoint delete failed for {thread_id}: {e}", thread_id=thread_id) from e
        return (result.rowcount or 0) > 0

    async def list(self, thread_id: Optional[str] = None) -> List[str]:
        statement = select(CheckpointRow.thread_id).distinct()
        if thread_id is not None:
            statement = statement.where(CheckpointRow.thread_id == thread_id)
        try:
            async with session_scope(self._session_maker) as session:
                return list((await session.execute(statement)).scalars().all())
        except SQLAlchemyError as e:
            raise CheckpointIOError(f"Checkpoint listing failed: {e}") from e

    async def history(self, thread_id: str) -> List[CheckpointRecord]:
        statement = (
            select(CheckpointRow)
            .where(CheckpointRow.thread_id == thread_id)
            .order_by(CheckpointRow.version)
        )
        try:
            async with session_scope(self._session_maker) as session:
                rows = (await session.execute(statement)).scalars().all()
        except SQLAlchemyError as e:
            raise CheckpointIOError(f"Checkpoint history failed for {thread_id}: {e}", thread_id=thread_id) from e
        return [_row_to_record(row) for row in rows]

    async def prune(self, older_than: datetime) -> List[str]:
        latest = (
            select(CheckpointRow.thread_id)
            .group_by(CheckpointRow.thread_id)
            .having(func.max(CheckpointRow.updated_at) < as_utc(older_than))
        )
        try:
            async with session_scope(self._session_maker) as session:
                expired = list((await session.execute(latest)).scalars().all())
        except SQLAlchemyError as e:
            raise CheckpointIOError(f"Checkpoint retention query failed: {e}") from e

        for thread_id in expired:
            await self.delete(thread_id)
        if expired:
            logger.info("Pruned %d expired thread(s)", len(expired))
        return expired
