from types import SimpleNamespace

import pytest
from supabase import PostgrestAPIError

from leasing_chat.config import Settings, StoreSettings
from leasing_chat.errors import SessionStoreError
from leasing_chat.models.session import MAX_REMEMBERED_REQUESTS, Lead, LeadStatus, Session
from leasing_chat.services.lead_store import InMemoryLeadStore, FileLeadStore
from leasing_chat.services.supabase_tables import SupabaseTables
from leasing_chat.services.session_store import (
    FileSessionStore,
    InMemorySessionStore,
    SupabaseSessionStore,
    create_session_store,
)


def test_merge_is_first_write_wins():
    session = Session(session_id="s-1")
    assert session.merge_fields({"phone": "5095551212", "budget": "2000", "email": ""}) == ["phone"]
    assert session.merge_fields({"phone": "2065550000", "email": "f@example.com"}) == ["email"]
    assert session.collected_fields == {"phone": "5095551212", "email": "f@example.com"}


def test_lead_id_is_set_once():
    session = Session(session_id="s-1")
    assert session.attach_lead("lead-1")
    assert not session.attach_lead("lead-2")
    assert session.lead_id == "lead-1"


def test_remembered_replies_are_bounded():
    session = Session(session_id="s-1")
    for n in range(MAX_REMEMBERED_REQUESTS + 5):
        session.remember_reply(f"req-{n}", f"reply {n}")
    assert len(session.request_replies) == MAX_REMEMBERED_REQUESTS
    assert session.reply_for("req-0") is None
    assert session.reply_for(f"req-{MAX_REMEMBERED_REQUESTS + 4}") == f"reply {MAX_REMEMBERED_REQUESTS + 4}"
    assert session.reply_for(None) is None


def test_lead_status_scheduled_once_tour_is_known():
    session = Session(session_id="s-1")
    session.merge_fields({"phone": "5095551212"})
    assert Lead.from_session(session, source="website-chat", property_interest="South Oak").status == LeadStatus.NEW
    session.merge_fields({"tour_date": "friday", "tour_time": "2pm"})
    assert Lead.from_session(session, source="website-chat", property_interest="South Oak").status == LeadStatus.SCHEDULED


@pytest.mark.asyncio
async def test_memory_store_returns_copies():
    store = InMemorySessionStore()
    assert await store.get("missing") is None

    session = Session(session_id="s-1")
    session.append_message("user", "hello")
    await store.save(session)
    session.append_message("assistant", "not saved")

    loaded = await store.get("s-1")
    assert [m.content for m in loaded.messages] == ["hello"]


@pytest.mark.asyncio
async def test_file_store_round_trip(tmp_path):
    store = FileSessionStore(tmp_path / "sessions")
    session = Session(session_id="abc-123")
    session.merge_fields({"first_name": "Frank"})
    session.mark_synced("lv-9")
    await store.save(session)

    loaded = await store.get("abc-123")
    assert loaded.collected_fields == {"first_name": "Frank"}
    assert loaded.lead_synced_to_external
    assert loaded.external_lead_id == "lv-9"
    assert await store.get("other") is None


@pytest.mark.asyncio
async def test_file_store_wraps_corrupt_documents(tmp_path):
    store = FileSessionStore(tmp_path)
    store.directory.path_for("bad").write_text("{not json", encoding="utf-8")
    with pytest.raises(SessionStoreError):
        await store.get("bad")


class FakeQuery:
    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = None
        self.payload = None
        self.filters = {}
        self.on_conflict = None

    def select(self, columns):
        self.op = "select"
        return self

    def upsert(self, row, on_conflict=None):
        self.op, self.payload, self.on_conflict = "upsert", row, on_conflict
        return self

    def eq(self, column, value):
        self.filters[column] = value
        return self

    def limit(self, count):
        return self

    async def execute(self):
        self.db.calls.append(self)
        if self.db.error is not None:
            raise self.db.error
        if self.op == "select":
            return SimpleNamespace(data=self.db.rows)
        return SimpleNamespace(data=[self.payload])


class FakeSupabase:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.calls = []

    def table(self, name):
        return FakeQuery(self, name)


@pytest.mark.asyncio
async def test_supabase_store_maps_columns():
    db = FakeSupabase(
        rows=[
            {
                "session_id": "s-9",
                "messages": [{"role": "user", "content": "hi"}],
                "collected_info": {"phone": "5095551212"},
                "lead_sent_to_leasingvoice": True,
                "message_count": 2,
                "user_message_count": 1,
                "updated_at": "2026-10-14T17:00:00+00:00",
            }
        ]
    )
    store = SupabaseSessionStore(SupabaseTables(client=db))

    loaded = await store.get("s-9")
    assert loaded.collected_fields == {"phone": "5095551212"}
    assert loaded.lead_synced_to_external
    assert loaded.user_message_count == 1
    assert db.calls[0].table == "chat_sessions"
    assert db.calls[0].filters == {"session_id": "s-9"}

    await store.save(loaded)
    upsert = db.calls[-1]
    assert upsert.op == "upsert"
    assert upsert.on_conflict == "session_id"
    assert upsert.payload["collected_info"] == {"phone": "5095551212"}
    assert upsert.payload["lead_sent_to_leasingvoice"] is True


@pytest.mark.asyncio
async def test_supabase_store_errors_are_wrapped():
    db = FakeSupabase(error=PostgrestAPIError({"message": "relation does not exist", "code": "42P01"}))
    with pytest.raises(SessionStoreError):
        await SupabaseSessionStore(SupabaseTables(client=db)).get("s-1")


@pytest.mark.asyncio
async def test_lead_stores_update_in_place(tmp_path):
    for store in (InMemoryLeadStore(), FileLeadStore(tmp_path / "leads")):
        created = await store.create(Lead(phone="5095551212"))
        assert created.id
        await store.set_external_id(created.id, "lv-1")
        updated = await store.update(created.id, Lead(phone="5095551212", email="f@example.com"))
        assert updated.id == created.id
        assert updated.external_id == "lv-1"


def test_store_factory(tmp_path):
    assert isinstance(create_session_store(Settings()), InMemorySessionStore)
    settings = Settings(store=StoreSettings(backend="file", session_dir=str(tmp_path)))
    assert isinstance(create_session_store(settings), FileSessionStore)
    with pytest.raises(ValueError):
        create_session_store(Settings(store=StoreSettings(backend="supabase")))


@pytest.mark.asyncio
async def test_supabase_client_setup_failure_is_wrapped():
    store = SupabaseSessionStore(SupabaseTables("not-a-url", "service-key"))
    with pytest.raises(SessionStoreError):
        await store.save(Session(session_id="s-1"))


@pytest.mark.asyncio
async def test_supabase_malformed_row_is_wrapped():
    db = FakeSupabase(rows=[{"session_id": "s-9", "messages": "oops"}])
    with pytest.raises(SessionStoreError):
        await SupabaseSessionStore(SupabaseTables(client=db)).get("s-9")


@pytest.mark.asyncio
async def test_file_store_wraps_wrongly_shaped_documents(tmp_path):
    store = FileSessionStore(tmp_path)
    store.directory.write("abc", {"session_id": "abc", "messages": "oops"})
    with pytest.raises(SessionStoreError):
        await store.get("abc")
