from __future__ import annotations

import uuid
from pathlib import Path
from typing import Any, Dict, Optional

import logging

from leasing_chat.config import Settings
from leasing_chat.errors import LeadStoreError
from leasing_chat.models.session import Lead
from leasing_chat.services.supabase_tables import SUPABASE_ERRORS, SupabaseTables
from leasing_chat.utils.json_store import JsonDirectory

logger = logging.getLogger(__name__)


class LeadStore:
    """Write-only persistence for CRM-facing lead rows, keyed by lead id."""

    async def create(self, lead: Lead) -> Lead:
        raise NotImplementedError

    async def update(self, lead_id: str, lead: Lead) -> Lead:
        raise NotImplementedError

    async def set_external_id(self, lead_id: str, external_id: str) -> None:
        raise NotImplementedError


class InMemoryLeadStore(LeadStore):
    def __init__(self) -> None:
        self.leads: Dict[str, Lead] = {}

    async def create(self, lead: Lead) -> Lead:
        created = lead.model_copy(update={"id": str(uuid.uuid4())})
        self.leads[created.id] = created
        return created

    async def update(self, lead_id: str, lead: Lead) -> Lead:
        if lead_id not in self.leads:
            raise LeadStoreError(f"lead {lead_id} not found")
        current = self.leads[lead_id]
        updated = lead.model_copy(update={"id": lead_id, "external_id": lead.external_id or current.external_id})
        self.leads[lead_id] = updated
        return updated

    async def set_external_id(self, lead_id: str, external_id: str) -> None:
        if lead_id not in self.leads:
            raise LeadStoreError(f"lead {lead_id} not found")
        self.leads[lead_id] = self.leads[lead_id].model_copy(update={"external_id": external_id})


class FileLeadStore(LeadStore):
    def __init__(self, root: Path) -> None:
        self.directory = JsonDirectory(Path(root))

    async def create(self, lead: Lead) -> Lead:
        created = lead.model_copy(update={"id": str(uuid.uuid4())})
        self._write(created)
        return created

    async def update(self, lead_id: str, lead: Lead) -> Lead:
        current = self._read(lead_id)
        updated = lead.model_copy(update={"id": lead_id, "external_id": lead.external_id or current.external_id})
        self._write(updated)
        return updated

    async def set_external_id(self, lead_id: str, external_id: str) -> None:
        current = self._read(lead_id)
        self._write(current.model_copy(update={"external_id": external_id}))

    def _read(self, lead_id: str) -> Lead:
        try:
            document = self.directory.read(lead_id)
            if document is not None:
                return Lead.model_validate(document)
        except (OSError, ValueError) as exc:
            raise LeadStoreError(f"failed to read lead {lead_id}: {exc}") from exc
        raise LeadStoreError(f"lead {lead_id} not found")

    def _write(self, lead: Lead) -> None:
        try:
            self.directory.write(lead.id, lead.model_dump(mode="json"))
        except OSError as exc:
            raise LeadStoreError(f"failed to write lead {lead.id}: {exc}") from exc


class SupabaseLeadStore(LeadStore):
    table = "leads"

    def __init__(self, tables: SupabaseTables) -> None:
        self.tables = tables

    async def create(self, lead: Lead) -> Lead:
        try:
            row = await self.tables.insert(self.table, _lead_to_row(lead))
        except SUPABASE_ERRORS as exc:
            raise LeadStoreError(f"failed to create lead: {exc}") from exc
        if not row.get("id"):
            raise LeadStoreError("lead insert returned no id")
        return lead.model_copy(update={"id": str(row["id"])})

    async def update(self, lead_id: str, lead: Lead) -> Lead:
        row = _lead_to_row(lead)
        # status is owned by the leasing team once the row exists
        row.pop("status", None)
        try:
            await self.tables.update(self.table, row, id=lead_id)
        except SUPABASE_ERRORS as exc:
            raise LeadStoreError(f"failed to update lead {lead_id}: {exc}") from exc
        return lead.model_copy(update={"id": lead_id})

    async def set_external_id(self, lead_id: str, external_id: str) -> None:
        try:
            await self.tables.update(self.table, {"leasingvoice_id": external_id}, id=lead_id)
        except SUPABASE_ERRORS as exc:
            raise LeadStoreError(f"failed to record external id for lead {lead_id}: {exc}") from exc


def _lead_to_row(lead: Lead) -> Dict[str, Any]:
    data = lead.model_dump(mode="json")
    row = {
        "first_name": data["first_name"],
        "last_name": data["last_name"],
        "phone": data["phone"],
        "email": data["email"],
        "move_in_date": data["move_in_date"],
        "tour_date": data["tour_date"],
        "tour_time": data["tour_time"],
        "source": data["source"],
        "property_interest": data["property_interest"],
        "chat_transcript": data["chat_transcript"],
        "status": data["status"],
    }
    if data.get("external_id"):
        row["leasingvoice_id"] = data["external_id"]
    return row


def create_lead_store(settings: Settings, tables: Optional[SupabaseTables] = None) -> LeadStore:
    backend = settings.store.backend
    if backend == "file":
        return FileLeadStore(Path(settings.store.session_dir).parent / "leads")
    if backend == "supabase":
        if tables is None:
            tables = SupabaseTables(settings.store.supabase_url, settings.store.supabase_key)
        return SupabaseLeadStore(tables)
    return InMemoryLeadStore()
