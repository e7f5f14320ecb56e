from datetime import datetime
from pydantic import BaseModel, Field
from models.conversation import ConversationStatus, utcnow
from models.document import ProcessingStatus
from models.message import SourceCitation

class AskRequest(BaseModel):
    question: str
    context_size: int | None = None          # None = configured default
    document_ids: list[int] | None = None    # None = search all documents

class AnswerResponse(BaseModel):
    answer: str
    success: bool = True
    confidence: float
    sources: list[SourceCitation] = []
    message_id: int | None = None
    question_message_id: int | None = None
    tokens_used: int = 0
    response_time_ms: int = 0
    suggestions: list[str] = []
    timestamp: datetime = Field(default_factory=utcnow)

class DocumentProgress(BaseModel):
    document_id: int
    filename: str
    status: ProcessingStatus
    progress: int
    stage: str
    size: int
    formatted_size: str
    error_message: str | None = None

class ProcessingStatusResponse(BaseModel):
    conversation_id: int
    status: ConversationStatus
    overall_progress: int
    total_documents: int
    pending_documents: int
    completed_documents: int
    failed_documents: int
    current_document: str | None = None
    current_stage: str | None = None
    elapsed_seconds: int
    estimated_remaining_seconds: int
    error_message: str | None = None
    documents: list[DocumentProgress] = []
