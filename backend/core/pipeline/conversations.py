import logging
import threading
from concurrent.futures import Future, wait
from datetime import datetime, timezone
from typing import Dict, List, Optional
from core.errors import AppError, NotFoundError, UnauthorizedError, ValidationError
from core.pipeline.conversation_state import ConversationStateMachine
from core.pipeline.ingestion import IngestionPipeline, conversation_blob_prefix, validate_upload
from core.retrieve.history_cache import MessageHistoryCache
from models.conversation import Conversation, ConversationStatus
from models.document import DocumentRecord, ProcessingStatus, UploadedFile
from models.message import Message
from models.query import DocumentProgress, ProcessingStatusResponse
from storage.base import BlobStore, ConversationStore, DocumentStore, MessageStore
from storage.qdrant_store import CollectionManager

logger = logging.getLogger(__name__)

ESTIMATED_SECONDS_PER_DOCUMENT = 30


def format_size(size: int) -> str:
    value = float(size)
    for unit in ["B", "KB", "MB"]:
        if value < 1024:
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def stage_for(document: DocumentRecord) -> str:
    if document.status == ProcessingStatus.completed:
        return "COMPLETED"
    if document.status == ProcessingStatus.failed:
        return "FAILED"
    if document.status == ProcessingStatus.pending or document.progress < 5:
        return "UPLOADING"
    if document.progress < 10:
        return "EXTRACTING_TEXT"
    return "CREATING_EMBEDDINGS"


class ConversationService:
    """
    Entry point for everything that touches a whole conversation:
    creation with its uploads, ownership checks, status reporting and deletion.
    """

    def __init__(self,
                 conversation_store: ConversationStore,
                 document_store: DocumentStore,
                 message_store: MessageStore,
                 blob_store: BlobStore,
                 collections: CollectionManager,
                 state_machine: ConversationStateMachine,
                 ingestion: IngestionPipeline,
                 history_cache: MessageHistoryCache):
        self.conversation_store = conversation_store
        self.document_store = document_store
        self.message_store = message_store
        self.blob_store = blob_store
        self.collections = collections
        self.state_machine = state_machine
        self.ingestion = ingestion
        self.history_cache = history_cache
        self._tasks: Dict[int, List[Future]] = {}
        self._tasks_lock = threading.Lock()

    def create_conversation(self, title: str, files: List[UploadedFile], owner_id: str) -> Conversation:
        """
        Validates every upload, creates the conversation and its collection,
        then schedules one ingestion task per file and returns immediately.
        """
        title = (title or "").strip()
        if not title:
            raise ValidationError("Title must not be blank", code="BLANK_TITLE", field="title")
        if not files:
            raise ValidationError("At least one file is required", code="NO_FILES", field="files")
        for upload in files:
            validate_upload(upload, self.ingestion.config)

        conversation = self.conversation_store.create(title, owner_id, pending_documents=len(files))
        logger.info(f"[conversation {conversation.id}] created '{title}' with {len(files)} file(s)")

        try:
            handle = self.collections.create_collection(title, conversation.id, conversation.created_at)
        except AppError as e:
            self.state_machine.mark_failed(conversation, f"Could not create vector collection: {e.message}")
            raise
        conversation.collection_name = handle.name
        self.conversation_store.save(conversation)

        self.state_machine.begin_processing(conversation)
        futures = [self.ingestion.submit(upload, conversation) for upload in files]
        with self._tasks_lock:
            self._tasks[conversation.id] = futures
        return conversation

    def wait_for_ingestion(self, conversation_id: int, timeout: Optional[float] = None) -> bool:
        """Blocks until every ingestion task of the conversation has finished."""
        with self._tasks_lock:
            futures = list(self._tasks.get(conversation_id, []))
        _, not_done = wait(futures, timeout=timeout)
        return not not_done

    def get_conversation(self, conversation_id: int, owner_id: str) -> Conversation:
        conversation = self.conversation_store.get(conversation_id)
        if conversation is None or not conversation.active:
            raise NotFoundError("Conversation", conversation_id)
        if conversation.owner_id != owner_id:
            raise UnauthorizedError(f"Conversation {conversation_id} belongs to another user")
        return conversation

    def list_conversations(self, owner_id: str) -> List[Conversation]:
        return self.conversation_store.list_by_owner(owner_id)

    def list_documents(self, conversation_id: int, owner_id: str) -> List[DocumentRecord]:
        self.get_conversation(conversation_id, owner_id)
        return self.document_store.list_by_conversation(conversation_id)

    def history(self, conversation_id: int, owner_id: str) -> List[Message]:
        self.get_conversation(conversation_id, owner_id)
        return self.history_cache.history(conversation_id)

    def processing_status(self, conversation_id: int, owner_id: str) -> ProcessingStatusResponse:
        conversation = self.get_conversation(conversation_id, owner_id)
        documents = self.document_store.list_by_conversation(conversation_id)

        with self._tasks_lock:
            scheduled = len(self._tasks.get(conversation_id, []))
        total = max(len(documents), scheduled)
        if conversation.status == ConversationStatus.ready:
            overall = 100
        elif total:
            # Tasks that have not created their record yet count as 0%.
            overall = sum(d.progress for d in documents) // total
        else:
            overall = 0

        in_flight = [d for d in documents if d.status == ProcessingStatus.processing]
        current = in_flight[0] if in_flight else None
        remaining = sum(1 for d in documents if d.status in (ProcessingStatus.pending, ProcessingStatus.processing))
        remaining += max(0, total - len(documents))
        if conversation.status in (ConversationStatus.ready, ConversationStatus.failed):
            remaining = 0

        elapsed = int((datetime.now(timezone.utc) - conversation.created_at).total_seconds())

        return ProcessingStatusResponse(
            conversation_id=conversation.id,
            status=conversation.status,
            overall_progress=overall,
            total_documents=total,
            pending_documents=conversation.pending_documents,
            completed_documents=sum(1 for d in documents if d.status == ProcessingStatus.completed),
            failed_documents=sum(1 for d in documents if d.status == ProcessingStatus.failed),
            current_document=current.filename if current else None,
            current_stage=stage_for(current) if current else None,
            elapsed_seconds=max(0, elapsed),
            estimated_remaining_seconds=remaining * ESTIMATED_SECONDS_PER_DOCUMENT,
            error_message=conversation.error_message,
            documents=[
                DocumentProgress(
                    document_id=d.id,
                    filename=d.filename,
                    status=d.status,
                    progress=d.progress,
                    stage=stage_for(d),
                    size=d.size,
                    formatted_size=format_size(d.size),
                    error_message=d.error_message
                )
                for d in documents
            ]
        )

    def delete_document(self, document_id: int, owner_id: str) -> DocumentRecord:
        """Soft-deletes the record, then removes its vectors and blob."""
        document = self.document_store.get(document_id)
        if document is None or not document.active:
            raise NotFoundError("Document", document_id)
        if document.owner_id != owner_id:
            raise UnauthorizedError(f"Document {document_id} belongs to another user")

        document.active = False
        self.document_store.save(document)

        conversation = self.conversation_store.get(document.conversation_id)
        if conversation is not None and conversation.collection_name:
            try:
                self.collections.get_handle(conversation.collection_name).delete_by_document(document_id)
            except AppError as e:
                logger.warning(f"[doc {document_id}] vectors not deleted: {e.message}")
        try:
            self.blob_store.delete(document.blob_path)
        except Exception as e:
            logger.warning(f"[doc {document_id}] blob {document.blob_path} not deleted: {e}")

        logger.info(f"[doc {document_id}] deleted")
        return document

    def delete_conversation(self, conversation_id: int, owner_id: str) -> None:
        """
        Removes the collection, stored files, documents and messages of a
        conversation. Remote cleanup is best effort; local records always go.
        """
        conversation = self.get_conversation(conversation_id, owner_id)

        # Running ingestion tasks stop at their next step once this is visible.
        conversation.active = False
        self.conversation_store.save(conversation)

        if conversation.collection_name:
            try:
                self.collections.delete_collection(conversation.collection_name)
            except AppError as e:
                logger.warning(f"[conversation {conversation_id}] collection not deleted: {e.message}")

        prefix = conversation_blob_prefix(conversation.owner_id, conversation_id)
        try:
            removed = self.blob_store.delete_prefix(prefix)
            logger.info(f"[conversation {conversation_id}] removed {removed} blob(s)")
        except Exception as e:
            logger.warning(f"[conversation {conversation_id}] blobs under {prefix} not deleted: {e}")

        self.document_store.delete_by_conversation(conversation_id)
        self.message_store.delete_by_conversation(conversation_id)
        self.history_cache.forget(conversation_id)
        self.conversation_store.delete(conversation_id)
        with self._tasks_lock:
            self._tasks.pop(conversation_id, None)
        logger.info(f"[conversation {conversation_id}] deleted")
