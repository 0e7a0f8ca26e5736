"""
In-Memory Checkpoint Store

Process-local store used when no DATABASE_URL is configured and in tests,
backed by LangGraph's MemorySaver. History is capped per thread so a long
revision loop cannot grow without bound.
"""

from typing import Optional

from langgraph.checkpoint.memory import MemorySaver

from proposal_engine.checkpoint.saver import SaverCheckpointStore

DEFAULT_MAX_VERSIONS = 50


class MemoryCheckpointStore(SaverCheckpointStore):

    def __init__(self, max_versions: Optional[int] = DEFAULT_MAX_VERSIONS):
        super().__init__(MemorySaver(), max_versions=max_versions)
