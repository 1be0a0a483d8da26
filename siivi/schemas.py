from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class ChatTurn(BaseModel):
    role: str = Field(..., description="'user' or 'assistant'")
    content: str


class AiChatRequest(BaseModel):
    messages: List[ChatTurn] = Field(default_factory=list)
    type: str = Field(default="text")
    prompt: Optional[str] = None
    personality: str = Field(default="casual")


class ClearGuestDataRequest(BaseModel):
    guestSessionId: Optional[str] = None
    sessionId: Optional[str] = None


class HealthResponse(BaseModel):
    ok: bool
    backend: str
    demo: bool
    has_gemini_key: bool


class PersonalitiesResponse(BaseModel):
    personalities: List[str]
    default: str
