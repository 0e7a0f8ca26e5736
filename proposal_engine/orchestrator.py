"""
Orchestrator

Session-lifecycle facade and the only entry point for callers: starts runs,
reports interrupts, accepts reviewer feedback, resumes suspended runs and
applies dependency invalidation on out-of-order edits.

Node failures never cross this boundary (they are recorded in the returned
state). Caller misuse and configuration problems raise typed errors.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from pydantic import BaseModel

from proposal_engine.checkpoint.base import CheckpointStore
from proposal_engine.dependencies import DependencyManager, DependencyMap, StaleDecision
from proposal_engine.errors import (
    CheckpointIOError,
    InputMissing,
    InvalidFeedback,
    NoActiveInterrupt,
    ThreadNotFound,
)
from proposal_engine.graph.builder import recursion_limit_for
from proposal_engine.graph.nodes import SECTION_MANAGER
from proposal_engine.graph.runner import CompiledWorkflow
from proposal_engine.state import (
    ContentRef,
    EvaluationResult,
    FeedbackType,
    InterruptReason,
    InterruptState,
    PhaseRef,
    ProcessingStatus,
    RunSeed,
    SectionRef,
    UserFeedback,
    WorkflowMessage,
    WorkflowState,
    apply_update,
    new_workflow_state,
)
from proposal_engine.utils.id_generator import generate_thread_id

logger = logging.getLogger(__name__)


class InterruptDetails(BaseModel):
    thread_id: str
    interruption_point: str
    reason: InterruptReason
    content_reference: Optional[ContentRef] = None
    status: Optional[ProcessingStatus] = None
    evaluation: Optional[EvaluationResult] = None
    content: Any = None
    interrupted_at: Optional[datetime] = None
    feedback_submitted: bool = False


# Feedback type -> status for content under review
FEEDBACK_STATUS = {
    FeedbackType.APPROVE: ProcessingStatus.APPROVED,
    FeedbackType.REVISE: ProcessingStatus.REVISION_REQUESTED,
    FeedbackType.REGENERATE: ProcessingStatus.QUEUED,
}


class Orchestrator:

    def __init__(
        self,
        workflow: CompiledWorkflow,
        store: CheckpointStore,
        dependency_map: DependencyMap,
        max_auto_revisions: int = 2,
    ):
        self.workflow = workflow
        self.store = store
        self.dependency_map = dependency_map
        self.dependencies = DependencyManager(dependency_map)
        self.max_auto_revisions = max_auto_revisions
        self._locks: Dict[str, asyncio.Lock] = {}

    # =========================================================================
    # HELPERS
    # =========================================================================
    @asynccontextmanager
    async def _locked(self, thread_id: str) -> AsyncIterator[None]:
        """Serialize operations on one run; unknown thread ids never get a lock."""
        lock = self._locks.get(thread_id)
        if lock is None:
            if not await self.store.list(thread_id):
                raise ThreadNotFound(f"No run with thread id '{thread_id}'", thread_id=thread_id)
            lock = self._locks.setdefault(thread_id, asyncio.Lock())
        try:
            async with lock:
                yield
        except ThreadNotFound:
            self._locks.pop(thread_id, None)
            raise

    async def _load(self, thread_id: str) -> WorkflowState:
        state = await self.store.get(thread_id)
        if state is None:
            raise ThreadNotFound(f"No run with thread id '{thread_id}'", thread_id=thread_id)
        return state

    async def _run(self, state: WorkflowState, start_node: Optional[str] = None) -> WorkflowState:
        limit = recursion_limit_for(len(state.required_sections), self.max_auto_revisions)
        return await self.workflow.run(state, start_node=start_node, recursion_limit=limit)

    def _required_sections(self, seed: RunSeed) -> List[str]:
        if seed.required_sections is None:
            return self.dependency_map.sections_in_dependency_order()
        if not seed.required_sections:
            raise InputMissing("A run needs at least one required section")
        if len(set(seed.required_sections)) != len(seed.required_sections):
            raise InputMissing("required_sections contains duplicates")
        return list(seed.required_sections)

    # =========================================================================
    # RUN LIFECYCLE
    # =========================================================================
    async def start_run(self, seed: RunSeed) -> str:
        """
        Create, persist and execute a new run until its first stop.

        Returns:
            The new thread id
        """
        thread_id = generate_thread_id()
        state = new_workflow_state(thread_id, seed, self._required_sections(seed))
        async with self._locks.setdefault(thread_id, asyncio.Lock()):
            try:
                await self.store.put(thread_id, state)
            except CheckpointIOError:
                self._locks.pop(thread_id, None)
                raise
            logger.info("[%s] run started with %d sections", thread_id, len(state.required_sections))
            await self._run(state)
        return thread_id

    async def get_state(self, thread_id: str) -> WorkflowState:
        return await self._load(thread_id)

    async def list_runs(self) -> List[str]:
        return await self.store.list()

    async def delete_run(self, thread_id: str) -> None:
        async with self._locked(thread_id):
            if not await self.store.delete(thread_id):
                raise ThreadNotFound(f"No run with thread id '{thread_id}'", thread_id=thread_id)
        self._locks.pop(thread_id, None)

    # =========================================================================
    # INTERRUPTS
    # =========================================================================
    async def detect_interrupt(self, thread_id: str) -> bool:
        state = await self._load(thread_id)
        return state.interrupt.is_interrupted

    async def get_interrupt_details(self, thread_id: str) -> Optional[InterruptDetails]:
        state = await self._load(thread_id)
        interrupt = state.interrupt
        if not interrupt.is_interrupted:
            return None

        ref = interrupt.content_reference
        return InterruptDetails(
            thread_id=thread_id,
            interruption_point=interrupt.interruption_point,
            reason=interrupt.reason,
            content_reference=ref,
            status=state.status_of(ref) if ref else None,
            evaluation=interrupt.evaluation or (state.evaluation_of(ref) if ref else None),
            content=state.content_of(ref) if ref else None,
            interrupted_at=interrupt.interrupted_at,
            feedback_submitted=state.pending_feedback is not None,
        )

    async def get_interrupt_content(self, thread_id: str) -> Any:
        """The content currently under review, or None."""
        details = await self.get_interrupt_details(thread_id)
        return details.content if details else None

    # =========================================================================
    # FEEDBACK AND RESUME
    # =========================================================================
    async def submit_feedback(self, thread_id: str, feedback: UserFeedback) -> WorkflowState:
        """
        Record reviewer feedback on the active interrupt without resuming.

        approve/revise/regenerate map to approved/revision_requested/queued.
        On a stale section approve keeps it and revise/regenerate queue it
        again. Comments are stored as guidance for the next generation.

        Raises:
            NoActiveInterrupt: nothing is awaiting feedback
            InvalidFeedback: wrong content reference, or approving a failed step
        """
        async with self._locked(thread_id):
            state = await self._load(thread_id)
            interrupt = state.interrupt
            if not interrupt.is_interrupted:
                raise NoActiveInterrupt(f"Run '{thread_id}' is not awaiting feedback", thread_id=thread_id)

            ref = interrupt.content_reference
            if ref is not None and feedback.content_reference != ref:
                raise InvalidFeedback(
                    f"Feedback targets {feedback.content_reference.key}, interrupt is on {ref.key}",
                    thread_id=thread_id,
                )

            state = self._apply_feedback(state, ref, feedback)
            state = apply_update(state, {
                "pending_feedback": feedback,
                "messages": [WorkflowMessage(
                    role="user",
                    content=f"Feedback on {feedback.content_reference.key}: {feedback.type.value}",
                    metadata={"kind": "feedback", "type": feedback.type.value, "ref": feedback.content_reference.key},
                )],
            })
            await self.store.put(thread_id, state)
            logger.info("[%s] %s feedback recorded for %s", thread_id, feedback.type.value,
                        feedback.content_reference.key)
            return state

    def _apply_feedback(
        self,
        state: WorkflowState,
        ref: Optional[Union[PhaseRef, SectionRef]],
        feedback: UserFeedback,
    ) -> WorkflowState:
        if ref is None:
            return state

        current = state.status_of(ref)
        if current == ProcessingStatus.STALE and isinstance(ref, SectionRef):
            decision: StaleDecision = "keep" if feedback.type == FeedbackType.APPROVE else "regenerate"
            return self.dependencies.on_stale_decision(state, ref.section_id, decision, feedback.comments)

        if state.interrupt.reason == InterruptReason.ERROR_RECOVERY and feedback.type == FeedbackType.APPROVE:
            raise InvalidFeedback(
                "A failed step cannot be approved; submit revise or regenerate",
                thread_id=state.thread_id,
            )

        update = state.ref_update(ref, status=FEEDBACK_STATUS[feedback.type])
        if feedback.type != FeedbackType.APPROVE:
            # A reviewer decision restarts the automatic revision budget
            update["revision_counts"] = {ref.key: 0}
        if feedback.comments:
            update["messages"] = [WorkflowMessage(
                role="user",
                content=feedback.comments,
                metadata={"kind": "guidance", "ref": ref.key, "type": feedback.type.value},
            )]
        return apply_update(state, update)

    async def resume(self, thread_id: str) -> WorkflowState:
        """
        Continue a run from where it stopped.

        A suspended run restarts at its interruption point once feedback is
        in. A run that stopped without an interrupt (process crash, failed
        checkpoint write) re-enters after its last persisted step.

        Raises:
            NoActiveInterrupt: no feedback submitted yet, or nothing left to run
        """
        async with self._locked(thread_id):
            state = await self._load(thread_id)
            if state.interrupt.is_interrupted:
                if state.pending_feedback is None:
                    raise NoActiveInterrupt(
                        f"Run '{thread_id}' has no interrupt with submitted feedback to resume",
                        thread_id=thread_id,
                    )
                start_node = state.interrupt.interruption_point
                # The cleared interrupt is persisted by the first step, so a failed resume can be repeated
                state = apply_update(state, {"interrupt": InterruptState(), "pending_feedback": None})
            else:
                start_node = self._recovery_point(state)
                logger.warning("[%s] recovering run stopped after %s", thread_id, state.current_step)

            logger.info("[%s] resuming at %s", thread_id, start_node)
            return await self._run(state, start_node=start_node)

    def _recovery_point(self, state: WorkflowState) -> str:
        if state.has_fatal_error or state.is_complete:
            raise NoActiveInterrupt(
                f"Run '{state.thread_id}' is {state.macro_phase}; nothing to resume",
                thread_id=state.thread_id,
            )
        # A finished run that was edited afterwards goes back to the section manager
        return self.workflow.resume_point(state) or SECTION_MANAGER

    # =========================================================================
    # OUT-OF-ORDER EDITS
    # =========================================================================
    async def edit_section(self, thread_id: str, section_id: str, content: str) -> WorkflowState:
        """Replace a section with reviewer-authored content; dependents go stale."""
        async with self._locked(thread_id):
            state = await self._load(thread_id)
            state = self.dependencies.apply_edit(state, section_id, content)
            await self.store.put(thread_id, state)
            return state

    async def decide_stale(
        self,
        thread_id: str,
        section_id: str,
        decision: StaleDecision,
        guidance: Optional[str] = None,
    ) -> WorkflowState:
        """
        Resolve a stale section outside of an interrupt. An idle run whose
        phases are done continues from the section manager.

        Raises:
            InvalidStaleDecision: the section is not stale
        """
        async with self._locked(thread_id):
            state = await self._load(thread_id)
            state = self.dependencies.on_stale_decision(state, section_id, decision, guidance)

            # Deciding directly on the section the run is suspended for lifts the interrupt
            interrupt = state.interrupt
            if (
                interrupt.is_interrupted
                and interrupt.interruption_point == SECTION_MANAGER
                and interrupt.content_reference == SectionRef(section_id=section_id)
            ):
                state = apply_update(state, {"interrupt": InterruptState(), "pending_feedback": None})
            await self.store.put(thread_id, state)

            idle = not state.interrupt.is_interrupted and not state.has_fatal_error
            if idle and state.macro_phase == "sections":
                return await self._run(state, start_node=SECTION_MANAGER)
            return state
