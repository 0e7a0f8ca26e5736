"""
Checkpoint Store Interface

Durable, versioned storage of WorkflowState keyed by thread id. put() writes
a new latest version, get() returns the latest, delete() drops the whole
history. Writes are serialized per thread id.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel

from proposal_engine.state import WorkflowState


class CheckpointRecord(BaseModel):
    thread_id: str
    version: int
    updated_at: datetime
    state: WorkflowState


def as_utc(value: datetime) -> datetime:
    """Naive timestamps are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def serialize_state(state: WorkflowState) -> str:
    return state.model_dump_json()


def deserialize_state(payload: str) -> WorkflowState:
    return WorkflowState.model_validate_json(payload)


class CheckpointStore(ABC):
    """Async checkpoint store; implementations override the _-prefixed hooks."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, thread_id: str) -> asyncio.Lock:
        return self._locks.setdefault(thread_id, asyncio.Lock())

    async def setup(self) -> None:
        """Prepare the backing storage (no-op by default)."""

    async def close(self) -> None:
        """Release the backing storage (no-op by default)."""

    async def get(self, thread_id: str) -> Optional[WorkflowState]:
        record = await self._latest(thread_id)
        return record.state if record else None

    async def put(self, thread_id: str, state: WorkflowState) -> CheckpointRecord:
        if state.thread_id != thread_id:
            raise ValueError(f"State belongs to {state.thread_id}, not {thread_id}")
        async with self._lock_for(thread_id):
            return await self._append(thread_id, serialize_state(state), as_utc(state.updated_at))

    async def delete(self, thread_id: str) -> bool:
        async with self._lock_for(thread_id):
            removed = await self._delete(thread_id)
        self._locks.pop(thread_id, None)
        return removed

    @abstractmethod
    async def list(self, thread_id: Optional[str] = None) -> List[str]:
        """Thread ids with at least one checkpoint, optionally filtered to one id."""

    @abstractmethod
    async def history(self, thread_id: str) -> List[CheckpointRecord]:
        """Every stored version of a thread, oldest first."""

    @abstractmethod
    async def prune(self, older_than: datetime) -> List[str]:
        """Delete threads whose latest checkpoint predates the cutoff."""

    @abstractmethod
    async def _latest(self, thread_id: str) -> Optional[CheckpointRecord]:
        ...

    @abstractmethod
    async def _append(self, thread_id: str, payload: str, updated_at: datetime) -> CheckpointRecord:
        ...

    @abstractmethod
    async def _delete(self, thread_id: str) -> bool:
        ...
