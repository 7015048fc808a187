from typing import Dict

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@router.get("/ready")
def readiness(request: Request) -> Dict[str, str]:
    orchestrator = request.app.state.orchestrator
    return {
        "status": "ok",
        "completion": "model" if orchestrator.completion.available else "scripted",
        "lead_sync": orchestrator.settings.lead_sync.mode if orchestrator.gateway.configured else "stub",
        "session_backend": orchestrator.settings.store.backend,
    }
