"""
Workflow Graph Runner

Registers named steps and transitions, then executes them one at a time over
WorkflowState on top of a LangGraph StateGraph. After every step the merged
state is persisted, so a crash loses at most the step in flight. Execution
stops at END, at an interrupt, or after a fatal error.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypedDict, Union

from langgraph.errors import GraphRecursionError
from langgraph.graph import END, START, StateGraph

from proposal_engine.checkpoint.base import CheckpointStore
from proposal_engine.errors import ErrorCategory, classify_error
from proposal_engine.events import get_emitter
from proposal_engine.state import (
    ErrorRecord,
    EvaluationResult,
    InterruptReason,
    InterruptState,
    PhaseRef,
    ProcessingStatus,
    SectionRef,
    WorkflowState,
    apply_update,
    utcnow,
)

logger = logging.getLogger(__name__)

NodeResult = Optional[Dict[str, Any]]
NodeFn = Callable[[WorkflowState], Union[NodeResult, Awaitable[NodeResult]]]
Router = Callable[[WorkflowState], str]
RefResolver = Callable[[WorkflowState], Optional[Union[PhaseRef, SectionRef]]]

DEFAULT_RECURSION_LIMIT = 100


class _Channels(TypedDict):
    workflow: WorkflowState
    start: str


@dataclass(frozen=True)
class NodeSpec:
    name: str
    fn: NodeFn
    content_ref: Optional[Union[PhaseRef, SectionRef, RefResolver]] = None

    def resolve_ref(self, state: WorkflowState) -> Optional[Union[PhaseRef, SectionRef]]:
        if self.content_ref is None or isinstance(self.content_ref, (PhaseRef, SectionRef)):
            return self.content_ref
        return self.content_ref(state)


def interrupt_update(
    node: str,
    reason: InterruptReason,
    ref: Optional[Union[PhaseRef, SectionRef]] = None,
    evaluation: Optional[EvaluationResult] = None,
) -> Dict[str, Any]:
    """Partial update that suspends the run at node."""
    return {
        "interrupt": InterruptState(
            is_interrupted=True,
            interruption_point=node,
            reason=reason,
            content_reference=ref,
            evaluation=evaluation,
            interrupted_at=utcnow(),
        )
    }


# =============================================================================
# GRAPH BUILDER
# =============================================================================

class WorkflowGraph:
    """Mutable registration phase; compile() freezes it."""

    def __init__(self):
        self._nodes: Dict[str, NodeSpec] = {}
        self._edges: Dict[str, str] = {}
        self._conditional: Dict[str, Router] = {}
        self._entry_point: Optional[str] = None

    def register_node(
        self,
        name: str,
        fn: NodeFn,
        content_ref: Optional[Union[PhaseRef, SectionRef, RefResolver]] = None,
    ) -> "WorkflowGraph":
        if name in self._nodes:
            raise ValueError(f"Node '{name}' is already registered")
        if name in (START, END):
            raise ValueError(f"'{name}' is a reserved node name")
        self._nodes[name] = NodeSpec(name=name, fn=fn, content_ref=content_ref)
        return self

    def _check_free(self, source: str) -> None:
        if source in self._edges or source in self._conditional:
            raise ValueError(f"Node '{source}' already has an outgoing transition")

    def register_edge(self, source: str, target: str) -> "WorkflowGraph":
        self._check_free(source)
        self._edges[source] = target
        return self

    def register_conditional_edge(self, source: str, router: Router) -> "WorkflowGraph":
        self._check_free(source)
        self._conditional[source] = router
        return self

    def set_entry_point(self, name: str) -> "WorkflowGraph":
        self._entry_point = name
        return self

    def compile(
        self,
        store: CheckpointStore,
        recursion_limit: int = DEFAULT_RECURSION_LIMIT,
    ) -> "CompiledWorkflow":
        if self._entry_point is None:
            raise ValueError("No entry point set")
        for name in [self._entry_point, *self._edges, *self._conditional]:
            if name not in self._nodes:
                raise ValueError(f"Unknown node '{name}'")
        for source, target in self._edges.items():
            if target != END and target not in self._nodes:
                raise ValueError(f"Edge {source} -> {target} targets an unknown node")

        return CompiledWorkflow(
            nodes=dict(self._nodes),
            edges=dict(self._edges),
            conditional=dict(self._conditional),
            entry_point=self._entry_point,
            store=store,
            recursion_limit=recursion_limit,
        )


# =============================================================================
# COMPILED WORKFLOW
# =============================================================================

class CompiledWorkflow:
    """Immutable, executable graph bound to a checkpoint store."""

    def __init__(
        self,
        nodes: Dict[str, NodeSpec],
        edges: Dict[str, str],
        conditional: Dict[str, Router],
        entry_point: str,
        store: CheckpointStore,
        recursion_limit: int,
    ):
        self._nodes = nodes
        self._edges = edges
        self._conditional = conditional
        self.entry_point = entry_point
        self.store = store
        self.recursion_limit = recursion_limit
        self._app = self._build_graph()

    # -------------------------------------------------------------------------
    # LangGraph wiring
    # -------------------------------------------------------------------------

    def _build_graph(self):
        graph = StateGraph(_Channels)
        for name in self._nodes:
            graph.add_node(name, self._make_step(name))
            graph.add_conditional_edges(name, self._make_router(name))
        graph.add_conditional_edges(START, lambda channels: channels["start"])
        return graph.compile()

    def _make_step(self, name: str):
        async def step(channels: _Channels) -> Dict[str, Any]:
            return {"workflow": await self._execute(name, channels["workflow"])}
        step.__name__ = name
        return step

    def _make_router(self, name: str):
        def next_node(channels: _Channels) -> str:
            state = channels["workflow"]
            if state.interrupt.is_interrupted or state.has_fatal_error:
                return END
            if name in self._edges:
                target = self._edges[name]
            elif name in self._conditional:
                target = self._conditional[name](state)
            else:
                return END
            if target != END and target not in self._nodes:
                raise ValueError(f"Router of '{name}' returned unknown node '{target}'")
            return target
        return next_node

    # -------------------------------------------------------------------------
    # Step execution
    # -------------------------------------------------------------------------

    async def _execute(self, name: str, state: WorkflowState) -> WorkflowState:
        spec = self._nodes[name]
        emitter = get_emitter()
        if emitter:
            emitter.emit_node_started(state.thread_id, name)
        logger.debug("[%s] running %s", state.thread_id, name)

        state = apply_update(state, {"current_step": name})
        try:
            result = spec.fn(state)
            if inspect.isawaitable(result):
                result = await result
            new_state = apply_update(state, result)
        except Exception as exc:
            new_state = self._record_failure(state, spec, exc)

        # Persistence failures are fatal for the step and propagate
        record = await self.store.put(new_state.thread_id, new_state)

        if emitter:
            emitter.emit_node_completed(new_state.thread_id, name, record.version)
            if new_state.interrupt.is_interrupted:
                ref = new_state.interrupt.content_reference
                emitter.emit_interrupted(
                    new_state.thread_id,
                    name,
                    new_state.interrupt.reason.value,
                    ref.key if ref else None,
                )
        return new_state

    def _record_failure(self, state: WorkflowState, spec: NodeSpec, exc: Exception) -> WorkflowState:
        error = classify_error(exc)
        try:
            ref = spec.resolve_ref(state)
        except (KeyError, TypeError):
            ref = None

        logger.warning(
            "[%s] node %s failed (%s%s): %s",
            state.thread_id,
            spec.name,
            error.category.value,
            ", fatal" if error.fatal else "",
            error.message,
        )
        emitter = get_emitter()
        if emitter:
            emitter.emit_node_failed(state.thread_id, spec.name, error.message, error.category.value)

        update: Dict[str, Any] = {
            "errors": [ErrorRecord(
                category=error.category,
                message=error.message,
                node=spec.name,
                content_key=ref.key if ref else None,
                fatal=error.fatal,
            )]
        }
        if ref is not None:
            try:
                update.update(state.ref_update(ref, status=ProcessingStatus.ERROR))
            except KeyError:
                ref = None
        if not error.fatal:
            update.update(interrupt_update(spec.name, InterruptReason.ERROR_RECOVERY, ref))
        return apply_update(state, update)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def resume_point(self, state: WorkflowState) -> Optional[str]:
        """
        The node that follows the last persisted step, or None at END.

        Checkpoints are written after each step, so current_step always names
        a finished step and its transition decides what runs next.
        """
        step = state.current_step
        if step is None or step not in self._nodes:
            return self.entry_point
        if step in self._edges:
            target = self._edges[step]
        elif step in self._conditional:
            target = self._conditional[step](state)
        else:
            return None
        return None if target == END else target

    async def run(
        self,
        state: WorkflowState,
        start_node: Optional[str] = None,
        recursion_limit: Optional[int] = None,
    ) -> WorkflowState:
        """
        Execute from start_node (default: entry point) until END, an
        interrupt or a fatal error. Node failures are recorded in the
        returned state, never raised.

        Raises:
            CheckpointIOError: a step could not be persisted
            ValueError: unknown start node
        """
        start = start_node or self.entry_point
        limit = recursion_limit or self.recursion_limit
        if start not in self._nodes:
            raise ValueError(f"Unknown start node '{start}'")

        try:
            result = await self._app.ainvoke(
                {"workflow": state, "start": start},
                config={"recursion_limit": limit},
            )
            final_state = result["workflow"]
        except GraphRecursionError:
            final_state = await self._record_runaway(state, limit)

        emitter = get_emitter()
        if emitter and not final_state.interrupt.is_interrupted:
            emitter.emit_run_finished(final_state.thread_id, final_state.macro_phase)
        logger.info(
            "[%s] stopped at %s (%s)",
            final_state.thread_id,
            final_state.current_step,
            "interrupted" if final_state.interrupt.is_interrupted else final_state.macro_phase,
        )
        return final_state

    async def _record_runaway(self, state: WorkflowState, limit: int) -> WorkflowState:
        latest = await self.store.get(state.thread_id) or state
        step = latest.current_step or self.entry_point
        logger.error("[%s] step limit of %d reached at %s", latest.thread_id, limit, step)
        update: Dict[str, Any] = {
            "errors": [ErrorRecord(
                category=ErrorCategory.UNKNOWN,
                message=f"Step limit of {limit} reached",
                node=step,
            )]
        }
        if not latest.interrupt.is_interrupted:
            update.update(interrupt_update(step, InterruptReason.ERROR_RECOVERY))
        latest = apply_update(latest, update)
        await self.store.put(latest.thread_id, latest)
        return latest
