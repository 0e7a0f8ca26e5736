"""
Run Stream WebSocket

Drives the Orchestrator over a WebSocket and streams runner progress events
while each command executes. Every command ends with one "run_state" or
"error" message.

Commands (JSON):
    {"type": "start_run", "seed": {...}}
    {"type": "resume", "thread_id": "..."}
    {"type": "feedback", "thread_id": "...", "feedback": {...}}      submit, then resume
    {"type": "stale_decision", "thread_id": "...", "section_id": "...", "decision": "keep"}
"""

import asyncio
import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from proposal_engine.api.runs import RunResponse, http_error
from proposal_engine.errors import InvalidFeedback, WorkflowError
from proposal_engine.events import DONE, EventEmitter, EventType, clear_emitter, set_emitter
from proposal_engine.orchestrator import Orchestrator
from proposal_engine.state import RunSeed, UserFeedback, WorkflowState

logger = logging.getLogger(__name__)

router = APIRouter()


async def _execute(orchestrator: Orchestrator, command: Dict[str, Any]) -> WorkflowState:
    kind = command.get("type")
    if kind == "start_run":
        thread_id = await orchestrator.start_run(RunSeed.model_validate(command.get("seed") or {}))
        return await orchestrator.get_state(thread_id)

    thread_id = command.get("thread_id")
    if not thread_id:
        raise InvalidFeedback(f"Command '{kind}' needs a thread_id")
    if kind == "resume":
        return await orchestrator.resume(thread_id)
    if kind == "feedback":
        await orchestrator.submit_feedback(thread_id, UserFeedback.model_validate(command.get("feedback") or {}))
        return await orchestrator.resume(thread_id)
    if kind == "stale_decision":
        return await orchestrator.decide_stale(
            thread_id,
            command.get("section_id", ""),
            command.get("decision", ""),
            command.get("guidance"),
        )
    raise InvalidFeedback(f"Unknown command type '{kind}'")


def _error_message(exc: Exception) -> Dict[str, Any]:
    if isinstance(exc, ValidationError):
        return {"type": "error", "status": 422, "detail": str(exc)}
    http = http_error(exc)
    return {"type": "error", "status": http.status_code, "detail": http.detail}


async def _stream_command(websocket: WebSocket, orchestrator: Orchestrator, command: Dict[str, Any]) -> None:
    emitter = EventEmitter()
    emitter.initialize(asyncio.get_running_loop())
    set_emitter(emitter)
    outcome: Dict[str, Any] = {}

    async def run_operation():
        try:
            outcome["state"] = await _execute(orchestrator, command)
        except (WorkflowError, KeyError, ValidationError) as e:
            outcome["error"] = e
        finally:
            emitter.emit_done()

    async def stream_events():
        while True:
            event = await emitter.get()
            if event.type == EventType.STATUS and event.content == DONE:
                break
            await websocket.send_json(event.to_dict())

    try:
        await asyncio.gather(run_operation(), stream_events())
    finally:
        clear_emitter()
        emitter.close()

    if "error" in outcome:
        await websocket.send_json(_error_message(outcome["error"]))
    else:
        response = RunResponse.from_state(outcome["state"])
        await websocket.send_json({"type": "run_state", **response.model_dump(mode="json")})


@router.websocket("/ws/runs")
async def run_stream(websocket: WebSocket):
    await websocket.accept()
    orchestrator = getattr(websocket.app.state, "orchestrator", None)
    if orchestrator is None:
        await websocket.close(code=1011)
        return

    try:
        while True:
            data = await websocket.receive_text()
            try:
                command = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "status": 422, "detail": "Commands must be JSON"})
                continue
            if not isinstance(command, dict):
                await websocket.send_json({"type": "error", "status": 422, "detail": "Commands must be JSON objects"})
                continue
            await _stream_command(websocket, orchestrator, command)
    except WebSocketDisconnect:
        logger.info("Run stream client disconnected")
