"""
LangGraph Checkpoint Store

Adapts a LangGraph checkpoint saver (MemorySaver, AsyncPostgresSaver) to the
CheckpointStore surface. Every put() becomes one LangGraph checkpoint on the
thread whose "workflow" channel holds the serialized WorkflowState; the
store version lives in the checkpoint metadata.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from langgraph.checkpoint.base import BaseCheckpointSaver, CheckpointTuple, empty_checkpoint

from proposal_engine.checkpoint.base import CheckpointRecord, CheckpointStore, as_utc, deserialize_state
from proposal_engine.errors import CheckpointIOError

logger = logging.getLogger(__name__)

CHANNEL = "workflow"
CHECKPOINT_NS = ""


def _thread_config(thread_id: str, checkpoint_id: Optional[str] = None) -> Dict[str, Any]:
    configurable = {"thread_id": thread_id, "checkpoint_ns": CHECKPOINT_NS}
    if checkpoint_id:
        configurable["checkpoint_id"] = checkpoint_id
    return {"configurable": configurable}


def _to_record(saved: CheckpointTuple) -> CheckpointRecord:
    checkpoint = saved.checkpoint
    return CheckpointRecord(
        thread_id=saved.config["configurable"]["thread_id"],
        version=int(saved.metadata["version"]),
        updated_at=datetime.fromisoformat(checkpoint["ts"]),
        state=deserialize_state(checkpoint["channel_values"][CHANNEL]),
    )


class SaverCheckpointStore(CheckpointStore):
    """
    CheckpointStore over any BaseCheckpointSaver.

    Args:
        saver: An opened LangGraph checkpoint saver
        max_versions: Keep at most this many versions per thread (None keeps all)
    """

    def __init__(self, saver: Optional[BaseCheckpointSaver], max_versions: Optional[int] = None):
        super().__init__()
        if max_versions is not None and max_versions < 1:
            raise ValueError("max_versions must be at least 1")
        self.saver = saver
        self.max_versions = max_versions

    # -------------------------------------------------------------------------

    async def _latest_tuple(self, thread_id: str) -> Optional[CheckpointTuple]:
        try:
            return await self.saver.aget_tuple(_thread_config(thread_id))
        except Exception as e:
            raise CheckpointIOError(f"Checkpoint read failed for {thread_id}: {e}", thread_id=thread_id) from e

    async def _latest(self, thread_id: str) -> Optional[CheckpointRecord]:
        saved = await self._latest_tuple(thread_id)
        return _to_record(saved) if saved else None

    async def _append(self, thread_id: str, payload: str, updated_at: datetime) -> CheckpointRecord:
        previous = await self._latest_tuple(thread_id)
        version = int(previous.metadata["version"]) + 1 if previous else 1
        previous_channel = previous.checkpoint["channel_versions"].get(CHANNEL) if previous else None
        channel_version = self.saver.get_next_version(previous_channel, None)

        checkpoint = empty_checkpoint()
        checkpoint["ts"] = updated_at.isoformat()
        checkpoint["channel_values"] = {CHANNEL: payload}
        checkpoint["channel_versions"] = {CHANNEL: channel_version}
        metadata = {"source": "update", "step": version, "version": version, "parents": {}}
        config = _thread_config(thread_id, previous.config["configurable"]["checkpoint_id"] if previous else None)

        try:
            saved_config = await self.saver.aput(config, checkpoint, metadata, {CHANNEL: channel_version})
        except Exception as e:
            raise CheckpointIOError(f"Checkpoint write failed for {thread_id}: {e}", thread_id=thread_id) from e

        if self.max_versions is not None and version > self.max_versions:
            await self._trim(thread_id)

        return CheckpointRecord(
            thread_id=saved_config["configurable"]["thread_id"],
            version=version,
            updated_at=updated_at,
            state=deserialize_state(payload),
        )

    async def _tuples(self, thread_id: str) -> List[CheckpointTuple]:
        """Every checkpoint of a thread, newest first."""
        try:
            return [saved async for saved in self.saver.alist(_thread_config(thread_id))]
        except Exception as e:
            raise CheckpointIOError(f"Checkpoint history failed for {thread_id}: {e}", thread_id=thread_id) from e

    async def _trim(self, thread_id: str) -> None:
        # Savers only delete whole threads, so the kept versions are written back
        saved = await self._tuples(thread_id)
        if len(saved) <= self.max_versions:
            return
        kept = list(reversed(saved[:self.max_versions]))
        try:
            await self.saver.adelete_thread(thread_id)
            parent_id = None
            for entry in kept:
                channel_version = entry.checkpoint["channel_versions"][CHANNEL]
                await self.saver.aput(
                    _thread_config(thread_id, parent_id),
                    entry.checkpoint,
                    entry.metadata,
                    {CHANNEL: channel_version},
                )
                parent_id = entry.checkpoint["id"]
        except Exception as e:
            raise CheckpointIOError(f"Checkpoint trim failed for {thread_id}: {e}", thread_id=thread_id) from e
        logger.debug("[%s] trimmed checkpoint history to %d versions", thread_id, len(kept))

    async def _delete(self, thread_id: str) -> bool:
        if await self._latest_tuple(thread_id) is None:
            return False
        try:
            await self.saver.adelete_thread(thread_id)
        except Exception as e:
            raise CheckpointIOError(f"Checkpoint delete failed for {thread_id}: {e}", thread_id=thread_id) from e
        return True

    async def list(self, thread_id: Optional[str] = None) -> List[str]:
        if thread_id is not None:
            return [thread_id] if await self._latest_tuple(thread_id) else []
        thread_ids: Dict[str, None] = {}
        try:
            async for saved in self.saver.alist(None):
                thread_ids.setdefault(saved.config["configurable"]["thread_id"], None)
        except Exception as e:
            raise CheckpointIOError(f"Checkpoint listing failed: {e}") from e
        return list(thread_ids)

    async def history(self, thread_id: str) -> List[CheckpointRecord]:
        return [_to_record(saved) for saved in reversed(await self._tuples(thread_id))]

    async def prune(self, older_than: datetime) -> List[str]:
        expired = []
        for thread_id in await self.list():
            latest = await self._latest(thread_id)
            if latest is not None and latest.updated_at < as_utc(older_than):
                expired.append(thread_id)
        for thread_id in expired:
            await self.delete(thread_id)
        if expired:
            logger.info("Pruned %d expired thread(s)", len(expired))
        return expired
