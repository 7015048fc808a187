from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field

FIELD_NAMES = (
    "first_name",
    "last_name",
    "phone",
    "email",
    "tour_date",
    "tour_time",
    "move_in_date",
)

MAX_REMEMBERED_REQUESTS = 20


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class Session(BaseModel):
    session_id: str
    messages: List[ChatMessage] = Field(default_factory=list)
    collected_fields: Dict[str, str] = Field(default_factory=dict)
    lead_id: Optional[str] = None
    lead_synced_to_external: bool = False
    external_lead_id: Optional[str] = None
    message_count: int = 0
    user_message_count: int = 0
    # Derived each turn from collected_fields; stored for reporting only.
    lead_captured: bool = False
    tour_booked: bool = False
    collected_name: bool = False
    collected_phone: bool = False
    collected_email: bool = False
    collected_tour_date: bool = False
    request_replies: Dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def merge_fields(self, extracted: Mapping[str, str]) -> List[str]:
        """Apply extracted values under first-write-wins; return the keys newly set."""
        added: List[str] = []
        for key, value in extracted.items():
            if key not in FIELD_NAMES or not value:
                continue
            if self.collected_fields.get(key):
                continue
            self.collected_fields[key] = value
            added.append(key)
        return added

    def append_message(self, role: str, content: str) -> None:
        self.messages.append(ChatMessage(role=role, content=content))

    def attach_lead(self, lead_id: str) -> bool:
        if self.lead_id:
            return self.lead_id == lead_id
        self.lead_id = lead_id
        return True

    def mark_synced(self, external_id: Optional[str] = None) -> None:
        self.lead_synced_to_external = True
        if external_id and not self.external_lead_id:
            self.external_lead_id = external_id

    def reply_for(self, request_id: Optional[str]) -> Optional[str]:
        if not request_id:
            return None
        return self.request_replies.get(request_id)

    def remember_reply(self, request_id: Optional[str], reply: str) -> None:
        if not request_id:
            return
        self.request_replies[request_id] = reply
        while len(self.request_replies) > MAX_REMEMBERED_REQUESTS:
            oldest = next(iter(self.request_replies))
            del self.request_replies[oldest]

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def refresh_flags(self, lead_qualified: bool) -> None:
        fields = self.collected_fields
        self.lead_captured = lead_qualified
        self.tour_booked = lead_qualified and bool(fields.get("tour_date"))
        self.collected_name = bool(fields.get("first_name"))
        self.collected_phone = bool(fields.get("phone"))
        self.collected_email = bool(fields.get("email"))
        self.collected_tour_date = bool(fields.get("tour_date"))


class LeadStatus(str, Enum):
    NEW = "new"
    CONTACTED = "contacted"
    SCHEDULED = "scheduled"
    TOURED = "toured"
    APPLIED = "applied"
    CLOSED = "closed"


class Lead(BaseModel):
    id: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    email: str = ""
    move_in_date: str = ""
    tour_date: str = ""
    tour_time: str = ""
    source: str = "website-chat"
    property_interest: str = ""
    chat_transcript: List[ChatMessage] = Field(default_factory=list)
    status: LeadStatus = LeadStatus.NEW
    external_id: Optional[str] = None

    @classmethod
    def from_session(cls, session: Session, *, source: str, property_interest: str) -> "Lead":
        fields = session.collected_fields
        status = LeadStatus.NEW
        if fields.get("tour_date") and fields.get("tour_time"):
            status = LeadStatus.SCHEDULED
        return cls(
            id=session.lead_id,
            first_name=fields.get("first_name", ""),
            last_name=fields.get("last_name", ""),
            phone=fields.get("phone", ""),
            email=fields.get("email", ""),
            move_in_date=fields.get("move_in_date", ""),
            tour_date=fields.get("tour_date", ""),
            tour_time=fields.get("tour_time", ""),
            source=source,
            property_interest=property_interest,
            chat_transcript=list(session.messages),
            status=status,
            external_id=session.external_lead_id,
        )
