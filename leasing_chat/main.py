from __future__ import annotations

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import logging

from leasing_chat.config import Settings
from leasing_chat.logging.flight_recorder import register_log_middleware
from leasing_chat.routes import chat, health
from leasing_chat.services.completion import OpenAICompletion
from leasing_chat.services.lead_store import create_lead_store
from leasing_chat.services.lead_sync import LeadSyncGateway
from leasing_chat.services.orchestrator import TurnOrchestrator
from leasing_chat.services.session_store import create_session_store
from leasing_chat.services.supabase_tables import SupabaseTables
from leasing_chat.utils.fixture_loader import load_operator_config

logger = logging.getLogger(__name__)


def build_orchestrator(settings: Optional[Settings] = None) -> TurnOrchestrator:
    settings = settings or Settings.from_env()
    operator = load_operator_config(settings.operator_config_path)

    tables = None
    if settings.store.backend == "supabase":
        tables = SupabaseTables(settings.store.supabase_url, settings.store.supabase_key)

    completion = OpenAICompletion(settings.completion)
    if not completion.available:
        logger.warning("chat.completion_missing_api_key using scripted replies")

    return TurnOrchestrator(
        settings=settings,
        operator=operator,
        sessions=create_session_store(settings, tables),
        leads=create_lead_store(settings, tables),
        completion=completion,
        gateway=LeadSyncGateway(settings.lead_sync, property_name=operator.property_name),
    )


def create_app(orchestrator: Optional[TurnOrchestrator] = None) -> FastAPI:
    app = FastAPI(title="Leasing Chat", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_log_middleware(app)

    app.state.orchestrator = orchestrator or build_orchestrator()

    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(chat.router, prefix="/chat", tags=["chat"])

    return app
