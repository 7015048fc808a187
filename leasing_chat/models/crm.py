from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class LeadSyncPayload(BaseModel):
    """Body posted to the external CRM's lead intake endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(default="", alias="firstName")
    last_name: str = Field(default="", alias="lastName")
    phone: str = ""
    email: str = ""
    property_interest: str = Field(default="", alias="propertyInterest")
    source: str = ""
    company_id: str = Field(default="", alias="companyId")
    message: str = ""
    preferred_date: Optional[str] = Field(default=None, alias="preferredDate")
    preferred_time: Optional[str] = Field(default=None, alias="preferredTime")
    move_in_date: Optional[str] = Field(default=None, alias="moveInDate")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class LeadSyncResult(BaseModel):
    success: bool
    external_id: Optional[str] = None
    status_code: Optional[int] = None
    attempts: int = 0
    error: Optional[str] = None


class KnowledgeEntry(BaseModel):
    category: str = "general"
    title: str = ""
    content: str


class OperatorConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    assistant_name: str = "Sona"
    property_name: str = "South Oak Apartments"
    property_address: str = ""
    greeting_message: str = (
        "Hi! I'm Sona, the virtual assistant for South Oak Apartments. How can I help you today?"
    )
    confirmation_template: str = (
        "Thanks {name}! Here's what I have: Phone: {phone}, Email: {email}, "
        "Tour: {tour_date} at {tour_time}. You'll receive a confirmation shortly. See you then!"
    )
    knowledge_base: List[KnowledgeEntry] = Field(default_factory=list)

    def knowledge_text(self) -> str:
        return "\n\n".join(
            entry.content.strip()
            for entry in self.knowledge_base
            if entry.category != "template" and entry.content.strip()
        )

    def effective_template(self) -> str:
        for entry in self.knowledge_base:
            if entry.category == "template" and entry.content.strip():
                return entry.content.strip()
        return self.confirmation_template
