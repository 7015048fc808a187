from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request

import logging

from leasing_chat.errors import CompletionError, InputError
from leasing_chat.logging.flight_recorder import FlightRecorder
from leasing_chat.models.chat import ChatRequest, ChatResponse, GreetingResponse
from leasing_chat.services.orchestrator import TurnOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


def _orchestrator(request: Request) -> TurnOrchestrator:
    return request.app.state.orchestrator


def _recorder(request: Request) -> FlightRecorder:
    recorder = getattr(request.state, "flight_recorder", None)
    return recorder if recorder is not None else FlightRecorder()


@router.post("", response_model=ChatResponse, response_model_by_alias=True)
async def chat(body: ChatRequest, request: Request, background_tasks: BackgroundTasks) -> ChatResponse:
    orchestrator = _orchestrator(request)
    try:
        result = await orchestrator.handle_turn(
            body.message,
            session_id=body.session_id,
            request_id=body.request_id,
            recorder=_recorder(request),
        )
    except InputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except CompletionError as exc:
        logger.warning("chat.completion_failed session=%s timed_out=%s err=%s", body.session_id, exc.timed_out, exc)
        raise HTTPException(
            status_code=503,
            detail="The assistant is temporarily unavailable, please try again.",
            headers={"Retry-After": "2"},
        ) from exc

    if result.sync_due:
        background_tasks.add_task(orchestrator.sync_lead, result.session_id)
    return ChatResponse(message=result.message, session_id=result.session_id)


@router.get("/greeting", response_model=GreetingResponse, response_model_by_alias=True)
async def greeting(request: Request) -> GreetingResponse:
    result = await _orchestrator(request).start_session()
    return GreetingResponse(message=result.message, session_id=result.session_id)
