"""
Event Emitter for streaming workflow progress to a listener.
Uses asyncio Queue to decouple graph execution from the consumer.
"""
import asyncio
import contextvars
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from proposal_engine.state import utcnow

DONE = "__DONE__"


class EventType(Enum):
    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    NODE_FAILED = "node_failed"
    INTERRUPTED = "interrupted"
    RUN_FINISHED = "run_finished"
    STATUS = "status"


@dataclass
class WorkflowEvent:
    """Represents a single event from the runner."""
    type: EventType
    thread_id: str
    node: Optional[str] = None
    content: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            "type": self.type.value,
            "thread_id": self.thread_id,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }
        if self.node:
            result["node"] = self.node
        if self.details:
            result["details"] = self.details
        return result


class EventEmitter:
    """
    Thread-safe event emitter using asyncio Queue.
    The runner pushes events synchronously, listeners consume asynchronously.
    """

    def __init__(self):
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closed: bool = False

    def initialize(self, loop: asyncio.AbstractEventLoop):
        """Initialize with the event loop (call from async context)."""
        self._loop = loop
        self._queue = asyncio.Queue()
        self._closed = False

    def close(self):
        """Mark emitter as closed. Future emit() calls will be no-ops."""
        self._closed = True
        self._queue = None
        self._loop = None

    def emit(self, event: WorkflowEvent):
        if self._closed or self._queue is None or self._loop is None:
            return
        # Loop may already be closed during shutdown
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    async def get(self) -> WorkflowEvent:
        """Get next event from queue (async)."""
        if self._queue is None:
            raise RuntimeError("EventEmitter not initialized")
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def emit_node_started(self, thread_id: str, node: str):
        self.emit(WorkflowEvent(type=EventType.NODE_STARTED, thread_id=thread_id, node=node))

    def emit_node_completed(self, thread_id: str, node: str, version: int):
        self.emit(WorkflowEvent(
            type=EventType.NODE_COMPLETED,
            thread_id=thread_id,
            node=node,
            details={"version": version},
        ))

    def emit_node_failed(self, thread_id: str, node: str, message: str, category: str):
        self.emit(WorkflowEvent(
            type=EventType.NODE_FAILED,
            thread_id=thread_id,
            node=node,
            content=message,
            details={"category": category},
        ))

    def emit_interrupted(self, thread_id: str, node: str, reason: str, content_key: Optional[str]):
        self.emit(WorkflowEvent(
            type=EventType.INTERRUPTED,
            thread_id=thread_id,
            node=node,
            content=reason,
            details={"content_reference": content_key},
        ))

    def emit_run_finished(self, thread_id: str, macro_phase: str):
        self.emit(WorkflowEvent(type=EventType.RUN_FINISHED, thread_id=thread_id, content=macro_phase))

    def emit_done(self, thread_id: str = ""):
        """Sentinel telling the listener that the operation has returned."""
        self.emit(WorkflowEvent(type=EventType.STATUS, thread_id=thread_id, content=DONE))


# Context-local emitter for the current run, with a process-wide fallback
_current_emitter: contextvars.ContextVar[Optional[EventEmitter]] = contextvars.ContextVar(
    "current_emitter", default=None
)
_global_emitter: Optional[EventEmitter] = None
_emitter_lock = threading.Lock()


def get_emitter() -> Optional[EventEmitter]:
    """Get the current emitter (context first, then the global fallback)."""
    emitter = _current_emitter.get()
    if emitter is not None:
        return emitter
    with _emitter_lock:
        return _global_emitter


def set_emitter(emitter: EventEmitter, global_fallback: bool = False):
    """Set the emitter for the current context."""
    global _global_emitter
    _current_emitter.set(emitter)
    if global_fallback:
        with _emitter_lock:
            _global_emitter = emitter


def clear_emitter():
    """Clear the current emitter."""
    global _global_emitter
    _current_emitter.set(None)
    with _emitter_lock:
        _global_emitter = None
