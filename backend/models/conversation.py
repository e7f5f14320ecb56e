import threading
from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, Field, PrivateAttr


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStatus(str, Enum):
    creating = "CREATING"
    processing = "PROCESSING"
    ready = "READY"
    failed = "FAILED"


class Conversation(BaseModel):
    """
    Aggregate root for a chat over a set of documents.

    Counter updates go through the try_* methods, which hold the aggregate's
    lock so concurrent ingestion workers see a consistent pending count.
    """

    id: int
    title: str
    owner_id: str
    status: ConversationStatus = ConversationStatus.creating
    collection_name: str | None = None
    pending_documents: int = 0
    completed_documents: int = 0
    failed_documents: int = 0
    error_message: str | None = None
    active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)

    _lock: threading.Lock = PrivateAttr(default_factory=threading.Lock)

    def begin_processing(self) -> bool:
        with self._lock:
            if self.status != ConversationStatus.creating:
                return False
            self.status = ConversationStatus.processing
            self.updated_at = utcnow()
            return True

    def try_complete(self) -> bool:
        """Records one successful document. Returns True if this event made the conversation READY."""
        with self._lock:
            if self.status == ConversationStatus.failed:
                return False
            self.completed_documents += 1
            self.pending_documents = max(0, self.pending_documents - 1)
            self.updated_at = utcnow()
            if self.pending_documents == 0 and self.status == ConversationStatus.processing:
                self.status = ConversationStatus.ready
                return True
            return False

    def try_fail(self, reason: str, partial: bool = False) -> bool:
        """Records one failed document. Returns True if the status changed."""
        with self._lock:
            if self.status == ConversationStatus.failed:
                return False
            self.failed_documents += 1
            self.updated_at = utcnow()
            if not partial:
                self.status = ConversationStatus.failed
                self.error_message = reason
                return True

            self.pending_documents = max(0, self.pending_documents - 1)
            if self.pending_documents > 0 or self.status != ConversationStatus.processing:
                return False
            if self.completed_documents > 0:
                self.status = ConversationStatus.ready
            else:
                self.status = ConversationStatus.failed
                self.error_message = reason
            return True

    def mark_failed(self, reason: str) -> None:
        with self._lock:
            if self.status == ConversationStatus.failed:
                return
            self.status = ConversationStatus.failed
            self.error_message = reason
            self.updated_at = utcnow()

    def touch(self) -> None:
        now = utcnow()
        self.last_activity_at = now
        self.updated_at = now

    def is_ready(self) -> bool:
        return self.status == ConversationStatus.ready and self.active
