from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    message: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    request_id: Optional[str] = Field(default=None, alias="requestId")

    model_config = ConfigDict(populate_by_name=True)


class ChatResponse(BaseModel):
    message: str
    session_id: str = Field(..., alias="sessionId")

    model_config = ConfigDict(populate_by_name=True)


class GreetingResponse(ChatResponse):
    pass
