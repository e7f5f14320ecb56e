from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field
from models.conversation import utcnow

class ProcessingStatus(str, Enum):
    pending = "PENDING"
    processing = "PROCESSING"
    completed = "COMPLETED"
    failed = "FAILED"

class UploadedFile(BaseModel):
    filename: str
    content_type: str | None = None
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

class DocumentRecord(BaseModel):
    id: int
    conversation_id: int
    owner_id: str
    filename: str
    blob_path: str
    content_type: str | None = None
    content_hash: str
    size: int
    status: ProcessingStatus = ProcessingStatus.pending
    progress: int = 0                    # 0–100
    character_count: int | None = None
    chunk_count: int | None = None
    error_message: str | None = None
    active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    processed_at: datetime | None = None

    def start_processing(self) -> None:
        self.status = ProcessingStatus.processing
        self.progress = 0
        self.updated_at = utcnow()

    def update_progress(self, progress: int) -> None:
        # Progress never moves backwards and 100 is reserved for mark_completed.
        progress = min(progress, 99)
        if progress > self.progress:
            self.progress = progress
            self.updated_at = utcnow()

    def mark_completed(self, character_count: int, chunk_count: int) -> None:
        self.status = ProcessingStatus.completed
        self.progress = 100
        self.character_count = character_count
        self.chunk_count = chunk_count
        self.processed_at = utcnow()
        self.updated_at = self.processed_at

    def mark_failed(self, reason: str) -> None:
        self.status = ProcessingStatus.failed
        self.error_message = reason
        self.updated_at = utcnow()
