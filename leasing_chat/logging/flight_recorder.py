from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import logging
from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

STAGE_ORDER = [
    "LOAD",
    "EXTRACT",
    "MERGE",
    "BUILD_PROMPT",
    "COMPLETE_CALL",
    "PERSIST_LOCAL_LEAD",
    "SYNC_EXTERNAL",
    "SAVE_SESSION",
    "RESPOND",
]

_PII_KEYS = {"name", "first_name", "last_name", "phone", "email"}


@dataclass
class StageEvent:
    stage: str
    message: str
    elapsed_ms: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    ok: bool = True


class FlightRecorder:
    """Timeline of one chat turn. Every stage is timed and logged with PII redacted."""

    def __init__(self, session_id: Optional[str] = None) -> None:
        self.session_id = session_id
        self.events: List[StageEvent] = []
        self.start_time = time.perf_counter()

    @contextmanager
    def stage(self, stage: str, **metadata: Any):
        if stage not in STAGE_ORDER:
            logger.warning("flight_recorder.unknown_stage stage=%s", stage)
        stage_start = time.perf_counter()
        ok = True
        try:
            yield
        except BaseException:
            ok = False
            raise
        finally:
            elapsed_ms = (time.perf_counter() - stage_start) * 1000
            total_ms = (time.perf_counter() - self.start_time) * 1000
            redacted = _redact(metadata)
            self.events.append(
                StageEvent(
                    stage=stage,
                    message=f"{stage} {'completed' if ok else 'failed'}",
                    elapsed_ms=elapsed_ms,
                    metadata={"total_ms": round(total_ms, 2), **redacted},
                    ok=ok,
                )
            )
            logger.info(
                "flight_recorder.stage session=%s stage=%s ok=%s elapsed_ms=%.2f total_ms=%.2f metadata=%s",
                self.session_id,
                stage,
                ok,
                round(elapsed_ms, 2),
                round(total_ms, 2),
                redacted,
            )

    def log(self, stage: str, message: str, **metadata: Any) -> None:
        if stage not in STAGE_ORDER:
            logger.warning("flight_recorder.unknown_stage stage=%s", stage)
        total_ms = (time.perf_counter() - self.start_time) * 1000
        redacted = _redact(metadata)
        self.events.append(
            StageEvent(
                stage=stage,
                message=message,
                elapsed_ms=0,
                metadata={"total_ms": round(total_ms, 2), **redacted},
            )
        )
        logger.info(
            "flight_recorder.log session=%s stage=%s message=%s total_ms=%.2f metadata=%s",
            self.session_id,
            stage,
            message,
            round(total_ms, 2),
            redacted,
        )

    def stages(self) -> List[str]:
        return [event.stage for event in self.events]


def _redact(payload: Dict[str, Any]) -> Dict[str, Any]:
    redacted = {}
    for key, value in payload.items():
        if key in _PII_KEYS and value:
            redacted[key] = "***"
        else:
            redacted[key] = value
    return redacted


class FlightRecorderMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request.state.flight_recorder = FlightRecorder()
        response = await call_next(request)
        return response


def register_log_middleware(app: FastAPI) -> None:
    app.add_middleware(FlightRecorderMiddleware)
