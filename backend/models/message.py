from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from models.conversation import utcnow

class MessageRole(str, Enum):
    user = "USER"
    assistant = "ASSISTANT"
    system = "SYSTEM"

class SourceCitation(BaseModel):
    document_id: int
    document_name: str
    excerpt: str                     # first 200 chars of the matched chunk
    relevance_score: float
    chunk_index: int | None = None
    is_primary: bool = False

class Message(BaseModel):
    # Messages are append-only; nothing mutates one after it is stored.
    model_config = ConfigDict(frozen=True)

    id: int | None = None
    conversation_id: int
    role: MessageRole
    content: str
    sources: list[SourceCitation] = []
    confidence: float | None = None
    tokens_used: int | None = None
    response_time_ms: int | None = None
    parent_message_id: int | None = None
    created_at: datetime = Field(default_factory=utcnow)
