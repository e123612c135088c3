from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class Source(str, Enum):
    """Where a reply came from. Stored on every transcript."""
    MODEL = "model"
    DICTIONARY = "dictionary"
    CONTACT_FORM = "formulario-contacto"
    CONTACT_COMPLETE = "formulario-completo"
    CANNED = "canned"
    ERROR = "error"


class ChatRequest(BaseModel):
    model_config = {"populate_by_name": True}

    prompt: str = Field("", title="Text typed by the visitor")
    session_id: Optional[str] = Field(None, alias="sessionId", title="Conversation identifier")


class ChatResponse(BaseModel):
    reply: str
    source: Source


class TranscriptData(BaseModel):
    id: int
    prompt: str
    reply: str
    source: str
    session_id: Optional[str] = Field(None, serialization_alias="sessionId")
    created_at: datetime = Field(..., serialization_alias="createdAt")


class HistoryResponse(BaseModel):
    chats: List[TranscriptData]
    count: int


class VisitorRequest(BaseModel):
    consent: bool = Field(True, title="Whether the identity cookie may be set")


class VisitorResponse(BaseModel):
    model_config = {"populate_by_name": True}

    success: bool
    visitor_id: Optional[str] = Field(None, alias="visitorId")
    error: Optional[str] = None
