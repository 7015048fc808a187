"""Per-message turn handling.

One turn runs LOAD, EXTRACT, MERGE, BUILD_PROMPT and COMPLETE_CALL, then the
side-effect stages PERSIST_LOCAL_LEAD, SYNC_EXTERNAL and SAVE_SESSION, then
RESPOND. Only an input error or a completion failure fails the turn; a
failing side-effect stage is logged and the reply is still returned.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

import logging

from leasing_chat.config import Settings
from leasing_chat.errors import InputError, LeadStoreError, SessionStoreError
from leasing_chat.logging.flight_recorder import FlightRecorder
from leasing_chat.models.crm import LeadSyncResult, OperatorConfig
from leasing_chat.models.session import Lead, Session
from leasing_chat.services.completion import CompletionClient
from leasing_chat.services.conversation_state import (
    ConversationState,
    FieldPolicy,
    build_pipeline,
    derive_state,
)
from leasing_chat.services.extractor import extract_fields
from leasing_chat.services.lead_store import LeadStore
from leasing_chat.services.lead_sync import LeadSyncGateway
from leasing_chat.services.prompt_builder import build_instructions, scripted_reply
from leasing_chat.services.session_store import SessionStore, new_session

logger = logging.getLogger(__name__)

_NAME_QUESTION_RE = re.compile(r"\byour (?:first |full )?name\b", re.IGNORECASE)


@dataclass
class TurnResult:
    message: str
    session_id: str
    state: Optional[ConversationState] = None
    sync_due: bool = False
    replayed: bool = False


class TurnOrchestrator:
    def __init__(
        self,
        settings: Settings,
        operator: OperatorConfig,
        sessions: SessionStore,
        leads: LeadStore,
        completion: CompletionClient,
        gateway: LeadSyncGateway,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.settings = settings
        self.operator = operator
        self.sessions = sessions
        self.leads = leads
        self.completion = completion
        self.gateway = gateway
        self.today = today
        self.lead_policy = FieldPolicy.parse(settings.lead_policy)
        self.completion_policy = FieldPolicy.parse(settings.completion_policy)
        self.pipeline = build_pipeline(settings.collect_move_in)

    @property
    def background_sync(self) -> bool:
        return self.settings.lead_sync.mode == "background"

    def derive(self, session: Session) -> ConversationState:
        return derive_state(session.collected_fields, self.completion_policy, self.pipeline)

    def sync_due(self, session: Session) -> bool:
        if not self.gateway.configured:
            return False
        return not session.lead_synced_to_external and self.lead_policy.is_satisfied(session.collected_fields)

    async def start_session(self) -> TurnResult:
        """Mint a session for the opening greeting."""
        session = new_session()
        greeting = self.operator.greeting_message
        session.append_message("assistant", greeting)
        session.message_count += 1
        try:
            await self.sessions.save(session)
        except SessionStoreError as exc:
            logger.warning("chat.greeting_save_failed session=%s err=%s", session.session_id, exc)
        logger.info("chat.session_started session=%s", session.session_id)
        return TurnResult(message=greeting, session_id=session.session_id, state=self.derive(session))

    async def handle_turn(
        self,
        message: Optional[str],
        session_id: Optional[str] = None,
        request_id: Optional[str] = None,
        recorder: Optional[FlightRecorder] = None,
    ) -> TurnResult:
        text = (message or "").strip()
        if not text:
            raise InputError("Message required")

        recorder = recorder or FlightRecorder()

        with recorder.stage("LOAD", resumed=bool(session_id)):
            session = await self._load(session_id)
        recorder.session_id = session.session_id

        replay = session.reply_for(request_id)
        if replay is not None:
            recorder.log("RESPOND", "replayed", request_id=request_id)
            logger.info("chat.turn_replayed session=%s request_id=%s", session.session_id, request_id)
            return TurnResult(message=replay, session_id=session.session_id, state=self.derive(session), replayed=True)

        expect_name = self._asked_for_name(session)
        with recorder.stage("EXTRACT", expect_name=expect_name):
            extracted = extract_fields(text, expect_name=expect_name)
        with recorder.stage("MERGE", found=sorted(extracted.as_dict())):
            added = session.merge_fields(extracted.as_dict())
            state = self.derive(session)
        if added:
            logger.info("chat.fields_collected session=%s added=%s phase=%s", session.session_id, added, state.phase.value)

        session.append_message("user", text)
        session.message_count += 1
        session.user_message_count += 1

        with recorder.stage("BUILD_PROMPT", phase=state.phase.value, next_field=state.next_field):
            instructions = build_instructions(
                self.operator,
                session.collected_fields,
                state,
                text,
                max_sentences=self.settings.max_sentences,
            )

        with recorder.stage("COMPLETE_CALL", scripted=not self.completion.available):
            if self.completion.available:
                reply = await self.completion.complete(instructions, session.messages)
            else:
                reply = scripted_reply(self.operator, session.collected_fields, state)

        session.append_message("assistant", reply)
        session.message_count += 1
        lead_qualified = self.lead_policy.is_satisfied(session.collected_fields)
        session.refresh_flags(lead_qualified)
        session.remember_reply(request_id, reply)

        await self._persist_lead(session, lead_qualified, recorder)

        sync_due = self.sync_due(session)
        if sync_due and not self.background_sync:
            await self._sync_inline(session, recorder)
            sync_due = False
        elif sync_due:
            recorder.log("SYNC_EXTERNAL", "deferred")

        await self._save(session, recorder)

        recorder.log("RESPOND", "reply_ready", phase=state.phase.value, chars=len(reply))
        return TurnResult(message=reply, session_id=session.session_id, state=state, sync_due=sync_due)

    async def sync_lead(self, session_id: str) -> Optional[LeadSyncResult]:
        """Push the session's lead to the CRM if it still qualifies and was never sent."""
        try:
            session = await self.sessions.get(session_id)
        except SessionStoreError as exc:
            logger.warning("lead_sync.load_failed session=%s err=%s", session_id, exc)
            return None
        if session is None or not self.sync_due(session):
            return None

        result = await self.gateway.sync(session.collected_fields, session_id=session_id, today=self.today())
        if not result.success:
            return result

        await self._record_external_id(session, result)
        try:
            # Re-read so fields merged by a concurrent turn are not lost.
            latest = await self.sessions.get(session_id) or session
            latest.mark_synced(result.external_id)
            await self.sessions.save(latest)
        except SessionStoreError as exc:
            logger.warning("lead_sync.flag_save_failed session=%s err=%s", session_id, exc)
        return result

    def _asked_for_name(self, session: Session) -> bool:
        if session.collected_fields.get("first_name") or not session.messages:
            return False
        if self.derive(session).next_field == "first_name":
            return True
        last_reply = next((m.content for m in reversed(session.messages) if m.role == "assistant"), "")
        return bool(_NAME_QUESTION_RE.search(last_reply))

    async def _load(self, session_id: Optional[str]) -> Session:
        if not session_id:
            return new_session()
        try:
            session = await self.sessions.get(session_id)
        except SessionStoreError as exc:
            logger.warning("chat.session_load_failed session=%s err=%s", session_id, exc)
            session = None
        return session or new_session(session_id)

    async def _persist_lead(self, session: Session, lead_qualified: bool, recorder: FlightRecorder) -> None:
        if not lead_qualified and not session.lead_id:
            return
        lead = Lead.from_session(
            session,
            source=self.settings.lead_sync.source,
            property_interest=self.operator.property_name,
        )
        try:
            with recorder.stage("PERSIST_LOCAL_LEAD", update=bool(session.lead_id)):
                if session.lead_id:
                    await self.leads.update(session.lead_id, lead)
                else:
                    created = await self.leads.create(lead)
                    session.attach_lead(created.id)
        except LeadStoreError as exc:
            logger.warning("chat.lead_persist_failed session=%s err=%s", session.session_id, exc)

    async def _sync_inline(self, session: Session, recorder: FlightRecorder) -> None:
        with recorder.stage("SYNC_EXTERNAL", mode="inline"):
            result = await self.gateway.sync(
                session.collected_fields, session_id=session.session_id, today=self.today()
            )
        if result.success:
            session.mark_synced(result.external_id)
            await self._record_external_id(session, result)

    async def _record_external_id(self, session: Session, result: LeadSyncResult) -> None:
        if not result.external_id or not session.lead_id:
            return
        try:
            await self.leads.set_external_id(session.lead_id, result.external_id)
        except LeadStoreError as exc:
            logger.warning("lead_sync.external_id_failed lead=%s err=%s", session.lead_id, exc)

    async def _save(self, session: Session, recorder: FlightRecorder) -> None:
        try:
            with recorder.stage("SAVE_SESSION", messages=len(session.messages)):
                session.touch()
                await self.sessions.save(session)
        except SessionStoreError as exc:
            logger.warning("chat.session_save_failed session=%s err=%s", session.session_id, exc)
