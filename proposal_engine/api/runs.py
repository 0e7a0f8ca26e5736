"""
Runs REST API

Thin HTTP surface over the Orchestrator. Every endpoint is keyed by thread id
and returns the run's state or a typed error mapped to an HTTP status.
"""

from typing import List, Literal, Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from proposal_engine.errors import (
    InputMissing,
    InvalidFeedback,
    InvalidStaleDecision,
    NoActiveInterrupt,
    ThreadNotFound,
    WorkflowError,
)
from proposal_engine.orchestrator import InterruptDetails, Orchestrator
from proposal_engine.state import ContentRef, FeedbackType, RunSeed, UserFeedback, WorkflowState


router = APIRouter(prefix="/api/runs", tags=["runs"])


def get_orchestrator(request: Request) -> Orchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Workflow engine not initialized")
    return orchestrator


def http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, (ThreadNotFound, KeyError)):
        return HTTPException(status_code=404, detail=str(exc).strip("'\""))
    if isinstance(exc, (NoActiveInterrupt, InvalidStaleDecision)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (InvalidFeedback, InputMissing)):
        return HTTPException(status_code=422, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


# --- Pydantic Schemas ---

class RunResponse(BaseModel):
    thread_id: str
    macro_phase: str
    is_interrupted: bool
    current_step: Optional[str]
    state: WorkflowState

    @classmethod
    def from_state(cls, state: WorkflowState) -> "RunResponse":
        return cls(
            thread_id=state.thread_id,
            macro_phase=state.macro_phase,
            is_interrupted=state.interrupt.is_interrupted,
            current_step=state.current_step,
            state=state,
        )


class FeedbackRequest(BaseModel):
    type: FeedbackType
    comments: Optional[str] = None
    content_reference: ContentRef


class EditRequest(BaseModel):
    content: str


class StaleDecisionRequest(BaseModel):
    decision: Literal["keep", "regenerate"]
    guidance: Optional[str] = None


# --- Endpoints ---

@router.post("", response_model=RunResponse, status_code=201)
async def start_run(seed: RunSeed, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Start a run and execute it until its first interrupt or completion."""
    try:
        thread_id = await orchestrator.start_run(seed)
        state = await orchestrator.get_state(thread_id)
    except WorkflowError as e:
        raise http_error(e)
    return RunResponse.from_state(state)


@router.get("", response_model=List[str])
async def list_runs(orchestrator: Orchestrator = Depends(get_orchestrator)):
    return await orchestrator.list_runs()


@router.get("/{thread_id}", response_model=RunResponse)
async def get_run(thread_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    try:
        state = await orchestrator.get_state(thread_id)
    except WorkflowError as e:
        raise http_error(e)
    return RunResponse.from_state(state)


@router.get("/{thread_id}/interrupt", response_model=Optional[InterruptDetails])
async def get_interrupt(thread_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Details of the active interrupt, or null when the run is not suspended."""
    try:
        return await orchestrator.get_interrupt_details(thread_id)
    except WorkflowError as e:
        raise http_error(e)


@router.post("/{thread_id}/feedback", response_model=RunResponse)
async def submit_feedback(
    thread_id: str,
    request: FeedbackRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    feedback = UserFeedback(
        type=request.type,
        comments=request.comments,
        content_reference=request.content_reference,
    )
    try:
        state = await orchestrator.submit_feedback(thread_id, feedback)
    except WorkflowError as e:
        raise http_error(e)
    return RunResponse.from_state(state)


@router.post("/{thread_id}/resume", response_model=RunResponse)
async def resume_run(thread_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    try:
        state = await orchestrator.resume(thread_id)
    except WorkflowError as e:
        raise http_error(e)
    return RunResponse.from_state(state)


@router.post("/{thread_id}/sections/{section_id}/edit", response_model=RunResponse)
async def edit_section(
    thread_id: str,
    section_id: str,
    request: EditRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    try:
        state = await orchestrator.edit_section(thread_id, section_id, request.content)
    except (WorkflowError, KeyError) as e:
        raise http_error(e)
    return RunResponse.from_state(state)


@router.post("/{thread_id}/sections/{section_id}/stale-decision", response_model=RunResponse)
async def decide_stale(
    thread_id: str,
    section_id: str,
    request: StaleDecisionRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    try:
        state = await orchestrator.decide_stale(thread_id, section_id, request.decision, request.guidance)
    except (WorkflowError, KeyError) as e:
        raise http_error(e)
    return RunResponse.from_state(state)


@router.delete("/{thread_id}")
async def delete_run(thread_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    try:
        await orchestrator.delete_run(thread_id)
    except WorkflowError as e:
        raise http_error(e)
    return {"status": "deleted", "thread_id": thread_id}
