import asyncio

import pytest

from proposal_engine.checkpoint import MemoryCheckpointStore
from proposal_engine.errors import CheckpointIOError, ErrorCategory, InputMissing, UpstreamTimeout
from proposal_engine.events import EventEmitter, EventType, clear_emitter, set_emitter
from proposal_engine.graph import END, WorkflowGraph, interrupt_update
from proposal_engine.state import (
    InterruptReason,
    ProcessingStatus,
    RunSeed,
    SectionData,
    SectionRef,
    WorkflowMessage,
    new_workflow_state,
)

INTRO = SectionRef(section_id="intro")


def _state():
    return new_workflow_state("THR_runner", RunSeed(document_text="Doc"), ["intro"])


def note(text):
    def node(state):
        return {"messages": [WorkflowMessage(content=text)]}
    return node


def write_intro(state):
    return state.ref_update(INTRO, status=ProcessingStatus.APPROVED, content="Intro")


def _linear(store, *extra):
    graph = WorkflowGraph()
    graph.register_node("first", note("first"))
    graph.register_node("write", write_intro, content_ref=INTRO)
    graph.register_node("last", note("last"))
    graph.set_entry_point("first")
    graph.register_edge("first", "write")
    graph.register_edge("write", "last")
    graph.register_edge("last", END)
    return graph.compile(store)


def _messages(state):
    return [m.content for m in state.messages]


async def test_runs_to_end_and_persists_every_step():
    store = MemoryCheckpointStore()
    workflow = _linear(store)

    final = await workflow.run(_state())

    assert _messages(final)[-2:] == ["first", "last"]
    assert final.section("intro").status == ProcessingStatus.APPROVED
    assert final.current_step == "last"
    history = await store.history("THR_runner")
    assert [record.state.current_step for record in history] == ["first", "write", "last"]
    assert await store.get("THR_runner") == final


async def test_start_node_skips_earlier_steps():
    workflow = _linear(MemoryCheckpointStore())
    final = await workflow.run(_state(), start_node="last")
    assert "first" not in _messages(final)
    assert _messages(final)[-1] == "last"


async def test_unknown_start_node_is_rejected():
    with pytest.raises(ValueError):
        await _linear(MemoryCheckpointStore()).run(_state(), start_node="nowhere")


async def test_conditional_edges_route_on_state():
    graph = WorkflowGraph()
    graph.register_node("write", write_intro, content_ref=INTRO)
    graph.register_node("approved", note("approved"))
    graph.register_node("rejected", note("rejected"))
    graph.set_entry_point("write")
    graph.register_conditional_edge(
        "write",
        lambda state: "approved" if state.status_of(INTRO) == ProcessingStatus.APPROVED else "rejected",
    )

    final = await graph.compile(MemoryCheckpointStore()).run(_state())
    assert _messages(final)[-1] == "approved"
    assert "rejected" not in _messages(final)


async def test_interrupt_stops_execution():
    graph = WorkflowGraph()
    graph.register_node("ask", lambda state: interrupt_update("ask", InterruptReason.CONTENT_REVIEW, INTRO))
    graph.register_node("after", note("after"))
    graph.set_entry_point("ask")
    graph.register_edge("ask", "after")

    final = await graph.compile(MemoryCheckpointStore()).run(_state())
    assert final.interrupt.is_interrupted
    assert final.interrupt.interruption_point == "ask"
    assert final.interrupt.content_reference == INTRO
    assert "after" not in _messages(final)


async def test_node_failure_is_recorded_with_recovery_interrupt():
    async def flaky(state):
        raise UpstreamTimeout("model did not answer")

    graph = WorkflowGraph()
    graph.register_node("write", flaky, content_ref=INTRO)
    graph.register_node("after", note("after"))
    graph.set_entry_point("write")
    graph.register_edge("write", "after")

    final = await graph.compile(MemoryCheckpointStore()).run(_state())

    error = final.errors[-1]
    assert error.category == ErrorCategory.UPSTREAM_TIMEOUT
    assert error.node == "write"
    assert error.content_key == "section:intro"
    assert not error.fatal
    assert final.section("intro").status == ProcessingStatus.ERROR
    assert final.interrupt.reason == InterruptReason.ERROR_RECOVERY
    assert final.interrupt.interruption_point == "write"
    assert "after" not in _messages(final)


async def test_fatal_failure_ends_run_without_interrupt():
    def missing(state):
        raise InputMissing("no document")

    graph = WorkflowGraph()
    graph.register_node("load", missing)
    graph.register_node("after", note("after"))
    graph.set_entry_point("load")
    graph.register_edge("load", "after")

    final = await graph.compile(MemoryCheckpointStore()).run(_state())
    assert final.has_fatal_error
    assert final.macro_phase == "error"
    assert not final.interrupt.is_interrupted
    assert "after" not in _messages(final)


async def test_invalid_node_result_keeps_state_valid():
    graph = WorkflowGraph()
    graph.register_node("bad", lambda state: {"sections": {"ghost": SectionData(id="ghost")}})
    graph.set_entry_point("bad")

    final = await graph.compile(MemoryCheckpointStore()).run(_state())
    assert "ghost" not in final.sections
    assert final.errors[-1].category == ErrorCategory.PARSING
    assert final.interrupt.reason == InterruptReason.ERROR_RECOVERY


async def test_runaway_loop_hits_step_limit():
    graph = WorkflowGraph()
    graph.register_node("spin", note("spin"))
    graph.set_entry_point("spin")
    graph.register_edge("spin", "spin")

    final = await graph.compile(MemoryCheckpointStore(), recursion_limit=5).run(_state())
    assert "Step limit" in final.errors[-1].message
    assert final.interrupt.reason == InterruptReason.ERROR_RECOVERY
    assert final.interrupt.interruption_point == "spin"


async def test_checkpoint_failure_propagates():
    class BrokenStore(MemoryCheckpointStore):
        async def _append(self, thread_id, payload, updated_at):
            raise CheckpointIOError("disk full", thread_id=thread_id)

    with pytest.raises(CheckpointIOError):
        await _linear(BrokenStore()).run(_state())


def test_registration_rules():
    graph = WorkflowGraph()
    graph.register_node("a", note("a"))
    with pytest.raises(ValueError):
        graph.register_node("a", note("again"))
    with pytest.raises(ValueError):
        graph.register_node(END, note("end"))

    graph.register_edge("a", END)
    with pytest.raises(ValueError):
        graph.register_conditional_edge("a", lambda state: END)

    with pytest.raises(ValueError):
        graph.compile(MemoryCheckpointStore())  # no entry point
    graph.set_entry_point("a")
    graph.register_edge("b", "a")
    with pytest.raises(ValueError):
        graph.compile(MemoryCheckpointStore())  # edge from unknown node


async def test_events_are_emitted_per_step():
    emitter = EventEmitter()
    emitter.initialize(asyncio.get_running_loop())
    set_emitter(emitter)
    try:
        await _linear(MemoryCheckpointStore()).run(_state())
        await asyncio.sleep(0)

        events = [await emitter.get() for _ in range(emitter.pending())]
    finally:
        clear_emitter()
        emitter.close()

    types = [event.type for event in events]
    assert types.count(EventType.NODE_STARTED) == 3
    assert types.count(EventType.NODE_COMPLETED) == 3
    assert types[-1] == EventType.RUN_FINISHED
    completed = [event.details["version"] for event in events if event.type == EventType.NODE_COMPLETED]
    assert completed == [1, 2, 3]
    assert events[0].to_dict()["node"] == "first"
