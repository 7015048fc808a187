"""Durable per-conversation session records.

Stores expose ``get`` and ``save`` over whole documents. A saved session
replaces the stored one (last write wins); field-level first-write-wins is
applied to the loaded session before saving, see ``Session.merge_fields``.
"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Any, Dict, Optional

import logging

from pydantic import ValidationError

from leasing_chat.config import Settings
from leasing_chat.errors import SessionStoreError
from leasing_chat.models.session import Session
from leasing_chat.services.supabase_tables import SUPABASE_ERRORS, SupabaseTables
from leasing_chat.utils.json_store import JsonDirectory

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return str(uuid.uuid4())


def new_session(session_id: Optional[str] = None) -> Session:
    return Session(session_id=session_id or new_session_id())


class SessionStore:
    async def get(self, session_id: str) -> Optional[Session]:
        raise NotImplementedError

    async def save(self, session: Session) -> None:
        raise NotImplementedError


class InMemorySessionStore(SessionStore):
    """Process-local store for tests and single-worker development."""

    def __init__(self) -> None:
        self._documents: Dict[str, Dict[str, Any]] = {}

    async def get(self, session_id: str) -> Optional[Session]:
        document = self._documents.get(session_id)
        if document is None:
            return None
        return Session.model_validate(document)

    async def save(self, session: Session) -> None:
        self._documents[session.session_id] = session.model_dump(mode="json")

    def clear(self) -> None:
        self._documents.clear()

    def __len__(self) -> int:
        return len(self._documents)


class FileSessionStore(SessionStore):
    def __init__(self, root: Path) -> None:
        self.directory = JsonDirectory(Path(root))

    async def get(self, session_id: str) -> Optional[Session]:
        try:
            document = self.directory.read(session_id)
            if document is None:
                return None
            return Session.model_validate(document)
        except (OSError, ValueError) as exc:
            raise SessionStoreError(f"failed to read session {session_id}: {exc}") from exc

    async def save(self, session: Session) -> None:
        try:
            self.directory.write(session.session_id, session.model_dump(mode="json"))
        except OSError as exc:
            raise SessionStoreError(f"failed to write session {session.session_id}: {exc}") from exc


class SupabaseSessionStore(SessionStore):
    table = "chat_sessions"

    def __init__(self, tables: SupabaseTables) -> None:
        self.tables = tables

    async def get(self, session_id: str) -> Optional[Session]:
        try:
            row = await self.tables.select_one(self.table, session_id=session_id)
        except SUPABASE_ERRORS as exc:
            raise SessionStoreError(f"failed to load session {session_id}: {exc}") from exc
        if row is None:
            return None
        try:
            return _session_from_row(row)
        except (KeyError, ValidationError) as exc:
            raise SessionStoreError(f"session {session_id} has an unreadable row: {exc}") from exc

    async def save(self, session: Session) -> None:
        try:
            await self.tables.upsert(self.table, _session_to_row(session), on_conflict="session_id")
        except SUPABASE_ERRORS as exc:
            raise SessionStoreError(f"failed to save session {session.session_id}: {exc}") from exc


def _session_to_row(session: Session) -> Dict[str, Any]:
    data = session.model_dump(mode="json")
    return {
        "session_id": data["session_id"],
        "messages": data["messages"],
        "collected_info": data["collected_fields"],
        "lead_id": data["lead_id"],
        "lead_sent_to_leasingvoice": data["lead_synced_to_external"],
        "external_lead_id": data["external_lead_id"],
        "message_count": data["message_count"],
        "user_message_count": data["user_message_count"],
        "lead_captured": data["lead_captured"],
        "tour_booked": data["tour_booked"],
        "collected_name": data["collected_name"],
        "collected_phone": data["collected_phone"],
        "collected_email": data["collected_email"],
        "collected_tour_date": data["collected_tour_date"],
        "request_replies": data["request_replies"],
        "created_at": data["created_at"],
        "updated_at": data["updated_at"],
    }


def _session_from_row(row: Dict[str, Any]) -> Session:
    values = {
        "session_id": row["session_id"],
        "messages": row.get("messages") or [],
        "collected_fields": row.get("collected_info") or {},
        "lead_id": row.get("lead_id"),
        "lead_synced_to_external": bool(row.get("lead_sent_to_leasingvoice")),
        "external_lead_id": row.get("external_lead_id"),
        "message_count": row.get("message_count") or 0,
        "user_message_count": row.get("user_message_count") or 0,
        "lead_captured": bool(row.get("lead_captured")),
        "tour_booked": bool(row.get("tour_booked")),
        "collected_name": bool(row.get("collected_name")),
        "collected_phone": bool(row.get("collected_phone")),
        "collected_email": bool(row.get("collected_email")),
        "collected_tour_date": bool(row.get("collected_tour_date")),
        "request_replies": row.get("request_replies") or {},
    }
    for stamp in ("created_at", "updated_at"):
        if row.get(stamp):
            values[stamp] = row[stamp]
    return Session.model_validate(values)


def create_session_store(settings: Settings, tables: Optional[SupabaseTables] = None) -> SessionStore:
    backend = settings.store.backend
    if backend == "file":
        logger.info("session_store.backend file dir=%s", settings.store.session_dir)
        return FileSessionStore(Path(settings.store.session_dir))
    if backend == "supabase":
        if tables is None:
            tables = SupabaseTables(settings.store.supabase_url, settings.store.supabase_key)
        logger.info("session_store.backend supabase")
        return SupabaseSessionStore(tables)
    logger.info("session_store.backend memory")
    return InMemorySessionStore()
