"""
Workflow State

The single aggregate persisted per run (thread), its building blocks, and the
merge rule the runner uses to fold node results into a new state version.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic_core import to_jsonable_python

from proposal_engine.errors import ErrorCategory


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class ProcessingStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    AWAITING_REVIEW = "awaiting_review"
    REVISION_REQUESTED = "revision_requested"
    APPROVED = "approved"
    EDITED = "edited"
    STALE = "stale"
    ERROR = "error"


# Statuses that count as finalized content
FINAL_STATUSES = (ProcessingStatus.APPROVED, ProcessingStatus.EDITED)


class Phase(str, Enum):
    RESEARCH = "research"
    SOLUTION = "solution"
    CONNECTIONS = "connections"


PHASE_ORDER: List[Phase] = [Phase.RESEARCH, Phase.SOLUTION, Phase.CONNECTIONS]


class InterruptReason(str, Enum):
    CONTENT_REVIEW = "content_review"
    STRATEGIC_VALIDATION = "strategic_validation"
    ERROR_RECOVERY = "error_recovery"


class FeedbackType(str, Enum):
    APPROVE = "approve"
    REVISE = "revise"
    REGENERATE = "regenerate"


# =============================================================================
# CONTENT REFERENCES
# =============================================================================

class PhaseRef(BaseModel):
    """Reference to a top-level phase result."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["phase"] = "phase"
    phase: Phase

    @property
    def key(self) -> str:
        return f"phase:{self.phase.value}"


class SectionRef(BaseModel):
    """Reference to one section of the proposal."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["section"] = "section"
    section_id: str

    @property
    def key(self) -> str:
        return f"section:{self.section_id}"


ContentRef = Annotated[Union[PhaseRef, SectionRef], Field(discriminator="kind")]
content_ref_adapter = TypeAdapter(ContentRef)


# =============================================================================
# BUILDING BLOCKS
# =============================================================================

class CriterionScore(BaseModel):
    score: float = Field(..., ge=0.0, le=1.0)
    justification: str = ""


class EvaluationResult(BaseModel):
    score: float = Field(..., ge=0.0, le=1.0, description="Overall weighted score")
    passed: bool = Field(..., description="score >= threshold and no critical criterion failed")
    feedback: str = ""
    criteria_scores: Dict[str, CriterionScore] = Field(default_factory=dict)
    threshold: Optional[float] = None
    evaluated_at: datetime = Field(default_factory=utcnow)


class SectionData(BaseModel):
    id: str
    title: str = ""
    content: Optional[str] = None
    status: ProcessingStatus = ProcessingStatus.QUEUED
    previous_status: Optional[ProcessingStatus] = None
    evaluation: Optional[EvaluationResult] = None
    last_updated: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _previous_status_only_while_stale(self):
        if self.previous_status is not None and self.status != ProcessingStatus.STALE:
            raise ValueError("previous_status may only be set while status is stale")
        return self


class InterruptState(BaseModel):
    is_interrupted: bool = False
    interruption_point: Optional[str] = None
    reason: Optional[InterruptReason] = None
    content_reference: Optional[ContentRef] = None
    evaluation: Optional[EvaluationResult] = None
    interrupted_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _flag_matches_point(self):
        if self.is_interrupted != (self.interruption_point is not None):
            raise ValueError("is_interrupted must be true iff interruption_point is set")
        return self


class UserFeedback(BaseModel):
    type: FeedbackType
    comments: Optional[str] = None
    content_reference: ContentRef
    submitted_at: datetime = Field(default_factory=utcnow)


class WorkflowMessage(BaseModel):
    role: str = "system"
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class ErrorRecord(BaseModel):
    category: ErrorCategory
    message: str
    node: Optional[str] = None
    content_key: Optional[str] = None
    fatal: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class DocumentPayload(BaseModel):
    document_id: str
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RunSeed(BaseModel):
    """Input that starts a run."""
    document_id: Optional[str] = None
    document_text: Optional[str] = None
    project_name: str = ""
    required_sections: Optional[List[str]] = None


# =============================================================================
# WORKFLOW STATE
# =============================================================================

def _default_phase_statuses() -> Dict[Phase, ProcessingStatus]:
    return {phase: ProcessingStatus.QUEUED for phase in PHASE_ORDER}


class WorkflowState(BaseModel):
    thread_id: str
    document_id: Optional[str] = None
    project_name: str = ""
    document: Optional[DocumentPayload] = None

    phase_statuses: Dict[Phase, ProcessingStatus] = Field(default_factory=_default_phase_statuses)
    phase_results: Dict[Phase, Any] = Field(default_factory=dict)
    phase_evaluations: Dict[Phase, Optional[EvaluationResult]] = Field(default_factory=dict)

    sections: Dict[str, SectionData] = Field(default_factory=dict)
    required_sections: List[str] = Field(default_factory=list)
    active_section: Optional[str] = None
    revision_counts: Dict[str, int] = Field(default_factory=dict)

    interrupt: InterruptState = Field(default_factory=InterruptState)
    pending_feedback: Optional[UserFeedback] = None

    messages: List[WorkflowMessage] = Field(default_factory=list)
    errors: List[ErrorRecord] = Field(default_factory=list)

    current_step: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _sections_are_required(self):
        unknown = [key for key in self.sections if key not in self.required_sections]
        if unknown:
            raise ValueError(f"sections not in required_sections: {unknown}")
        return self

    # --- Derived views ---

    @property
    def has_fatal_error(self) -> bool:
        return any(error.fatal for error in self.errors)

    @property
    def is_complete(self) -> bool:
        return (
            all(self.phase_statuses.get(phase) in FINAL_STATUSES for phase in PHASE_ORDER)
            and all(
                section_id in self.sections and self.sections[section_id].status in FINAL_STATUSES
                for section_id in self.required_sections
            )
        )

    @property
    def macro_phase(self) -> str:
        """
        Coarse position of the run, derived from statuses only.

        Returns:
            "error" | "research" | "solution" | "connections" | "sections" | "complete"
        """
        if self.has_fatal_error:
            return "error"
        for phase in PHASE_ORDER:
            if self.phase_statuses.get(phase) not in FINAL_STATUSES:
                return phase.value
        if self.is_complete:
            return "complete"
        return "sections"

    # --- Content reference dispatch ---

    def status_of(self, ref: Union[PhaseRef, SectionRef]) -> ProcessingStatus:
        if isinstance(ref, PhaseRef):
            return self.phase_statuses.get(ref.phase, ProcessingStatus.QUEUED)
        if isinstance(ref, SectionRef):
            return self.section(ref.section_id).status
        raise TypeError(f"Unsupported content reference: {ref!r}")

    def content_of(self, ref: Union[PhaseRef, SectionRef]) -> Any:
        if isinstance(ref, PhaseRef):
            return self.phase_results.get(ref.phase)
        if isinstance(ref, SectionRef):
            return self.section(ref.section_id).content
        raise TypeError(f"Unsupported content reference: {ref!r}")

    def evaluation_of(self, ref: Union[PhaseRef, SectionRef]) -> Optional[EvaluationResult]:
        if isinstance(ref, PhaseRef):
            return self.phase_evaluations.get(ref.phase)
        if isinstance(ref, SectionRef):
            return self.section(ref.section_id).evaluation
        raise TypeError(f"Unsupported content reference: {ref!r}")

    def section(self, section_id: str) -> SectionData:
        try:
            return self.sections[section_id]
        except KeyError:
            raise KeyError(f"Unknown section: {section_id}") from None

    def ref_update(self, ref: Union[PhaseRef, SectionRef], **changes) -> Dict[str, Any]:
        """
        Build a partial update touching one content item.

        Accepted changes: status, content, evaluation (and previous_status
        for sections). The returned dict is meant for apply_update().
        """
        unknown = set(changes) - {"status", "content", "evaluation", "previous_status"}
        if unknown:
            raise ValueError(f"Unsupported changes: {sorted(unknown)}")

        if isinstance(ref, PhaseRef):
            update: Dict[str, Any] = {}
            if "status" in changes:
                update["phase_statuses"] = {ref.phase: changes["status"]}
            if "content" in changes:
                update["phase_results"] = {ref.phase: changes["content"]}
            if "evaluation" in changes:
                update["phase_evaluations"] = {ref.phase: changes["evaluation"]}
            return update

        if isinstance(ref, SectionRef):
            current = self.section(ref.section_id)
            fields = dict(changes)
            if "status" in fields and fields["status"] != ProcessingStatus.STALE:
                fields.setdefault("previous_status", None)
            fields["last_updated"] = utcnow()
            return {"sections": {ref.section_id: current.model_copy(update=fields)}}

        raise TypeError(f"Unsupported content reference: {ref!r}")

    def guidance_for(self, ref: Union[PhaseRef, SectionRef]) -> Optional[str]:
        """Latest reviewer guidance recorded for a content item."""
        for message in reversed(self.messages):
            if message.metadata.get("kind") == "guidance" and message.metadata.get("ref") == ref.key:
                return message.content
        return None


def section_title(section_id: str) -> str:
    return section_id.replace("_", " ").title()


def new_workflow_state(thread_id: str, seed: RunSeed, required_sections: List[str]) -> WorkflowState:
    """Fresh state for a new run, every required section queued."""
    return WorkflowState(
        thread_id=thread_id,
        document_id=seed.document_id,
        project_name=seed.project_name,
        document=(
            DocumentPayload(document_id=seed.document_id or "inline", text=seed.document_text)
            if seed.document_text
            else None
        ),
        required_sections=list(required_sections),
        sections={
            section_id: SectionData(id=section_id, title=section_title(section_id))
            for section_id in required_sections
        },
        messages=[WorkflowMessage(content="Run started", metadata={"kind": "lifecycle"})],
    )


# =============================================================================
# MERGE RULE
# =============================================================================

MAP_FIELDS = ("phase_statuses", "phase_results", "phase_evaluations", "sections", "revision_counts")
APPEND_FIELDS = ("messages", "errors")


def apply_update(state: WorkflowState, update: Optional[Dict[str, Any]]) -> WorkflowState:
    """
    Fold a partial update into a new state version.

    Top-level fields are last-write-wins, map-valued fields merge entry by
    entry and the audit logs only grow. The input state is never mutated;
    the result is revalidated, so a node cannot break the state invariants.

    Raises:
        ValueError: on unknown fields or an attempt to change thread_id
    """
    update = update or {}
    unknown = [key for key in update if key not in WorkflowState.model_fields]
    if unknown:
        raise ValueError(f"Unknown state fields in update: {unknown}")
    if "thread_id" in update and update["thread_id"] != state.thread_id:
        raise ValueError("thread_id is immutable")

    data = state.model_dump(mode="json")
    for key, value in update.items():
        plain = to_jsonable_python(value)
        if key in MAP_FIELDS:
            data[key].update(plain or {})
        elif key in APPEND_FIELDS:
            data[key].extend(plain or [])
        else:
            data[key] = plain

    data["updated_at"] = to_jsonable_python(utcnow())
    return WorkflowState.model_validate(data)
