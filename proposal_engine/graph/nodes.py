"""
Proposal Pipeline Nodes

Node functions for the research -> solution -> connections -> sections
pipeline, and the routing functions that connect them. Every node takes the
current WorkflowState and returns a partial update; nothing here mutates
state or touches the checkpoint store.
"""

import json
import logging
from typing import Any, Dict, Optional, Union

from proposal_engine.agents.base import GenerationContext, GeneratorSet
from proposal_engine.dependencies import DependencyMap
from proposal_engine.documents import DocumentProvider
from proposal_engine.errors import InputMissing, ParsingError, WorkflowError
from proposal_engine.evaluation.criteria import CriteriaProvider
from proposal_engine.evaluation.gate import EvaluationGate, RouteDecision, status_after_evaluation
from proposal_engine.graph.runner import interrupt_update
from proposal_engine.resilience import CallPolicy, call_with_resilience
from proposal_engine.state import (
    FINAL_STATUSES,
    PHASE_ORDER,
    InterruptReason,
    Phase,
    PhaseRef,
    ProcessingStatus,
    SectionRef,
    WorkflowMessage,
    WorkflowState,
)

logger = logging.getLogger(__name__)

ContentRefT = Union[PhaseRef, SectionRef]

# Node names
LOAD_DOCUMENT = "load_document"
SECTION_MANAGER = "section_manager"
WRITE_SECTION = "write_section"
EVALUATE_SECTION = "evaluate_section"
REVIEW_SECTION = "review_section"
COMPLETE = "complete"


def generate_node(phase: Phase) -> str:
    return phase.value


def evaluate_node(phase: Phase) -> str:
    return f"evaluate_{phase.value}"


def review_node(phase: Phase) -> str:
    return f"review_{phase.value}"


def content_type_for(ref: ContentRefT) -> str:
    if isinstance(ref, PhaseRef):
        return ref.phase.value
    if isinstance(ref, SectionRef):
        return f"section_{ref.section_id}"
    raise TypeError(f"Unsupported content reference: {ref!r}")


def content_as_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return json.dumps(content, indent=2, default=str)


def active_section_ref(state: WorkflowState) -> Optional[SectionRef]:
    return SectionRef(section_id=state.active_section) if state.active_section else None


# Statuses that send a content item back to its generator
NEEDS_GENERATION = (
    ProcessingStatus.QUEUED,
    ProcessingStatus.REVISION_REQUESTED,
    ProcessingStatus.ERROR,
)


class ProposalNodes:
    """
    Node implementations bound to their collaborators.

    One instance per compiled graph; instances hold no per-run state.
    """

    def __init__(
        self,
        generators: GeneratorSet,
        gate: EvaluationGate,
        criteria_provider: CriteriaProvider,
        dependency_map: DependencyMap,
        document_provider: DocumentProvider,
        policy: CallPolicy,
        max_auto_revisions: int = 2,
    ):
        self.generators = generators
        self.gate = gate
        self.criteria_provider = criteria_provider
        self.dependency_map = dependency_map
        self.document_provider = document_provider
        self.policy = policy
        self.max_auto_revisions = max_auto_revisions

    # =========================================================================
    # NODE 1: DOCUMENT LOADER
    # =========================================================================
    async def load_document(self, state: WorkflowState) -> Dict[str, Any]:
        if state.document is not None:
            return {"messages": [WorkflowMessage(
                content=f"Using inline document ({len(state.document.text)} chars)",
                metadata={"kind": "document"},
            )]}
        if not state.document_id:
            raise InputMissing("Run has neither a document_id nor inline document text")

        document = await call_with_resilience(
            self.document_provider.load_document,
            state.document_id,
            policy=self.policy,
            label=f"loading document {state.document_id}",
        )
        return {
            "document": document,
            "messages": [WorkflowMessage(
                content=f"Loaded document {state.document_id}",
                metadata={"kind": "document", **document.metadata},
            )],
        }

    # =========================================================================
    # GENERATION
    # =========================================================================
    def _upstream(self, state: WorkflowState, ref: ContentRefT) -> Dict[str, Any]:
        if isinstance(ref, PhaseRef):
            position = PHASE_ORDER.index(ref.phase)
            return {phase.value: state.phase_results.get(phase) for phase in PHASE_ORDER[:position]}

        upstream: Dict[str, Any] = {phase.value: state.phase_results.get(phase) for phase in PHASE_ORDER}
        upstream["sections"] = {
            dep: state.sections[dep].content
            for dep in self.dependency_map.dependencies_of(ref.section_id)
            if dep in state.sections and state.sections[dep].content
        }
        return upstream

    def _context(self, state: WorkflowState, ref: ContentRefT) -> GenerationContext:
        revising = state.status_of(ref) == ProcessingStatus.REVISION_REQUESTED
        evaluation = state.evaluation_of(ref)
        return GenerationContext(
            ref=ref,
            project_name=state.project_name,
            document_text=state.document.text if state.document else "",
            upstream=self._upstream(state, ref),
            previous_content=state.content_of(ref) if revising else None,
            evaluation_feedback=evaluation.feedback if revising and evaluation else None,
            guidance=state.guidance_for(ref),
            revision=state.revision_counts.get(ref.key, 0),
            section_title=state.section(ref.section_id).title if isinstance(ref, SectionRef) else "",
        )

    async def _generate(self, state: WorkflowState, ref: ContentRefT) -> Dict[str, Any]:
        if state.document is None:
            raise InputMissing("No document loaded for generation")

        context = self._context(state, ref)
        content = await call_with_resilience(
            self.generators.for_ref(ref),
            context,
            policy=self.policy,
            label=f"generation of {ref.key}",
        )
        if isinstance(ref, SectionRef) and not isinstance(content, str):
            raise ParsingError(f"Section generator returned {type(content).__name__}, expected text")
        if content is None or content == "":
            raise ParsingError(f"Generator returned no content for {ref.key}")

        update = state.ref_update(ref, status=ProcessingStatus.RUNNING, content=content, evaluation=None)
        update["messages"] = [WorkflowMessage(
            role="assistant",
            content=f"Generated {ref.key}" + (f" (revision {context.revision})" if context.revision else ""),
            metadata={"kind": "generation", "ref": ref.key, "revision": context.revision},
        )]
        return update

    async def generate_phase(self, state: WorkflowState, phase: Phase) -> Dict[str, Any]:
        return await self._generate(state, PhaseRef(phase=phase))

    async def write_section(self, state: WorkflowState) -> Dict[str, Any]:
        ref = active_section_ref(state)
        if ref is None:
            raise WorkflowError("No active section to write")
        return await self._generate(state, ref)

    # =========================================================================
    # EVALUATION
    # =========================================================================
    async def _evaluate(self, state: WorkflowState, ref: ContentRefT) -> Dict[str, Any]:
        # Only freshly generated content is evaluated; anything else is routed on
        if state.status_of(ref) != ProcessingStatus.RUNNING:
            return {}

        criteria = self.criteria_provider.load_criteria(content_type_for(ref))
        evaluation = await self.gate.evaluate(content_as_text(state.content_of(ref)), criteria)

        used = state.revision_counts.get(ref.key, 0)
        status = status_after_evaluation(evaluation, used, self.max_auto_revisions)
        update = state.ref_update(ref, status=status, evaluation=evaluation)
        if status == ProcessingStatus.REVISION_REQUESTED:
            update["revision_counts"] = {ref.key: used + 1}
        update["messages"] = [WorkflowMessage(
            content=(
                f"Evaluated {ref.key}: score {evaluation.score:.2f} "
                f"({'passed' if evaluation.passed else 'failed'}) -> {status.value}"
            ),
            metadata={"kind": "evaluation", "ref": ref.key, "score": evaluation.score},
        )]
        return update

    async def evaluate_phase(self, state: WorkflowState, phase: Phase) -> Dict[str, Any]:
        return await self._evaluate(state, PhaseRef(phase=phase))

    async def evaluate_section(self, state: WorkflowState) -> Dict[str, Any]:
        ref = active_section_ref(state)
        if ref is None:
            raise WorkflowError("No active section to evaluate")
        return await self._evaluate(state, ref)

    # =========================================================================
    # HUMAN REVIEW
    # =========================================================================
    def _review(self, state: WorkflowState, ref: ContentRefT, node: str, reason: InterruptReason) -> Dict[str, Any]:
        if state.status_of(ref) != ProcessingStatus.AWAITING_REVIEW:
            return {}
        logger.info("[%s] awaiting review of %s", state.thread_id, ref.key)
        return interrupt_update(node, reason, ref, state.evaluation_of(ref))

    def review_phase(self, state: WorkflowState, phase: Phase) -> Dict[str, Any]:
        return self._review(state, PhaseRef(phase=phase), review_node(phase), InterruptReason.STRATEGIC_VALIDATION)

    def review_section(self, state: WorkflowState) -> Dict[str, Any]:
        ref = active_section_ref(state)
        if ref is None:
            return {}
        return self._review(state, ref, REVIEW_SECTION, InterruptReason.CONTENT_REVIEW)

    # =========================================================================
    # SECTION MANAGER
    # =========================================================================
    def section_manager(self, state: WorkflowState) -> Dict[str, Any]:
        """
        Pick the next section to work on, in dependency order.

        A stale section suspends the run for a keep/regenerate decision.
        """
        order = self.dependency_map.sections_in_dependency_order(state.required_sections)
        for section_id in order:
            section = state.section(section_id)
            if section.status in FINAL_STATUSES:
                continue
            if section.status == ProcessingStatus.STALE:
                ref = SectionRef(section_id=section_id)
                logger.info("[%s] %s is stale, asking for a decision", state.thread_id, section_id)
                return {
                    "active_section": section_id,
                    **interrupt_update(SECTION_MANAGER, InterruptReason.CONTENT_REVIEW, ref, section.evaluation),
                }
            return {"active_section": section_id}
        return {"active_section": None}

    def complete(self, state: WorkflowState) -> Dict[str, Any]:
        return {
            "active_section": None,
            "messages": [WorkflowMessage(
                content=f"Proposal complete: {len(state.required_sections)} sections finalized",
                metadata={"kind": "lifecycle"},
            )],
        }

    # =========================================================================
    # ROUTING
    # =========================================================================
    def route_after_evaluation(
        self,
        state: WorkflowState,
        ref: ContentRefT,
        generate: str,
        review: str,
        next_step: str,
    ) -> str:
        """
        Returns:
            next_step, generate or review, following the evaluation gate
        """
        status = state.status_of(ref)
        if status in (ProcessingStatus.QUEUED, ProcessingStatus.ERROR):
            return generate
        if status == ProcessingStatus.EDITED:
            return next_step

        decision = self.gate.route(state.evaluation_of(ref), status)
        if decision == RouteDecision.CONTINUE:
            return next_step
        if decision == RouteDecision.REVISE:
            return generate
        return review

    def route_after_review(self, state: WorkflowState, ref: ContentRefT, generate: str, review: str, next_step: str) -> str:
        status = state.status_of(ref)
        if status in FINAL_STATUSES or status == ProcessingStatus.STALE:
            return next_step
        if status in NEEDS_GENERATION:
            return generate
        return review

    def route_from_manager(self, state: WorkflowState) -> str:
        ref = active_section_ref(state)
        if ref is None:
            return COMPLETE
        status = state.status_of(ref)
        if status == ProcessingStatus.RUNNING:
            return EVALUATE_SECTION
        if status == ProcessingStatus.AWAITING_REVIEW:
            return REVIEW_SECTION
        return WRITE_SECTION
