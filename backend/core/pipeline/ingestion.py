import os
import time
import hashlib
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional
from core.errors import AppError, ExternalServiceError, ValidationError
from core.parse.pdf_parser import PDFTextExtractor
from core.chunk.chunker import Chunker
from core.embed.embedder import Embedder
from core.pipeline.conversation_state import ConversationStateMachine
from models.conversation import Conversation
from models.document import DocumentRecord, UploadedFile
from storage.base import BlobStore, DocumentStore
from storage.qdrant_store import CollectionManager, point_id_for
from config.settings import settings, IngestionConfig

logger = logging.getLogger(__name__)

# Progress checkpoints; the embedding loop spreads the rest up to 100.
VALIDATED_PROGRESS = 5
EXTRACTED_PROGRESS = 10


class ConversationDeleted(Exception):
    """Raised inside a task whose conversation was deleted mid-ingestion."""

    def __init__(self, conversation_id: int):
        super().__init__(f"Conversation {conversation_id} was deleted")
        self.conversation_id = conversation_id


def safe_filename(filename: str) -> str:
    name = os.path.basename((filename or "").replace("\\", "/")).strip()
    return name or "document.pdf"


def conversation_blob_prefix(owner_id: str, conversation_id: int) -> str:
    return f"users/{owner_id}/conversations/{conversation_id}"


def blob_path_for(owner_id: str, conversation_id: int, filename: str, timestamp_ms: Optional[int] = None) -> str:
    timestamp_ms = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    return f"{conversation_blob_prefix(owner_id, conversation_id)}/{timestamp_ms}_{safe_filename(filename)}"


def validate_upload(upload: UploadedFile, config: Optional[IngestionConfig] = None) -> None:
    """Raises ValidationError for an empty, non-PDF or oversized upload."""
    config = config or settings.ingestion
    if not upload.data:
        raise ValidationError(f"File '{upload.filename}' is empty", code="EMPTY_FILE", field="files")

    extension = os.path.splitext(upload.filename or "")[1].lower()
    if extension not in config.allowed_extensions:
        raise ValidationError(
            f"File '{upload.filename}' is not a supported type. Allowed: {', '.join(config.allowed_extensions)}",
            code="INVALID_FILE_TYPE",
            field="files"
        )

    max_bytes = config.max_file_size_mb * 1024 * 1024
    if upload.size > max_bytes:
        raise ValidationError(
            f"File '{upload.filename}' exceeds the {config.max_file_size_mb} MB limit",
            code="FILE_TOO_LARGE",
            field="files"
        )


class IngestionPipeline:
    """
    Turns one uploaded PDF into searchable vectors in its conversation's collection:
    store blob -> create record -> validate -> extract -> chunk -> embed + upsert

    Every document runs as its own task on a bounded thread pool. A task never
    raises; its outcome is reported to the ConversationStateMachine and recorded
    on the DocumentRecord.
    """

    def __init__(self,
                 blob_store: BlobStore,
                 document_store: DocumentStore,
                 collections: CollectionManager,
                 state_machine: ConversationStateMachine,
                 embedder: Embedder,
                 extractor: Optional[PDFTextExtractor] = None,
                 chunker: Optional[Chunker] = None,
                 config: Optional[IngestionConfig] = None):
        self.blob_store = blob_store
        self.document_store = document_store
        self.collections = collections
        self.state_machine = state_machine
        self.embedder = embedder
        self.extractor = extractor or PDFTextExtractor()
        self.chunker = chunker or Chunker()
        self.config = config or settings.ingestion
        self.executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="ingest"
        )

    def submit(self, upload: UploadedFile, conversation: Conversation) -> Future:
        """Schedules one document. The upload's bytes are already in memory."""
        return self.executor.submit(self.process, upload, conversation)

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)

    def process(self, upload: UploadedFile, conversation: Conversation) -> Optional[DocumentRecord]:
        """
        Runs the full ingestion for a single PDF and returns its final record
        (None when the blob could not even be stored, or when the conversation
        was deleted while the document was being processed).
        """
        filename = safe_filename(upload.filename)
        blob_path = blob_path_for(conversation.owner_id, conversation.id, filename)
        document: Optional[DocumentRecord] = None
        blob_stored = False

        def ensure_active():
            if not self.state_machine.is_active(conversation.id):
                raise ConversationDeleted(conversation.id)

        def update_progress(progress: int, message: str):
            ensure_active()
            document.update_progress(progress)
            self.document_store.save(document)
            logger.info(f"[doc {document.id}] {document.progress}%: {message}")

        try:
            # 1. Blob storage + content hash
            ensure_active()
            content_hash = hashlib.sha256(upload.data).hexdigest()
            try:
                self.blob_store.put(blob_path, upload.data, upload.content_type)
            except Exception as e:
                logger.error(f"Blob upload to {blob_path} failed: {e}")
                raise ExternalServiceError("blob store", "put") from e
            blob_stored = True

            # 2. Document record
            ensure_active()
            document = self.document_store.create(
                conversation_id=conversation.id,
                owner_id=conversation.owner_id,
                filename=filename,
                blob_path=blob_path,
                content_type=upload.content_type,
                content_hash=content_hash,
                size=upload.size
            )
            document.start_processing()
            self.document_store.save(document)
            logger.info(f"[doc {document.id}] processing '{filename}' for conversation {conversation.id}")

            # 3. Validation
            validate_upload(upload, self.config)
            update_progress(VALIDATED_PROGRESS, "Upload validated")

            # 4. Text extraction
            text = self.extractor.extract_text(upload.data)
            if not text.strip():
                raise ValidationError(f"No text could be extracted from '{filename}'", code="NO_TEXT")
            update_progress(EXTRACTED_PROGRESS, f"Extracted {len(text)} characters")

            # 5. Chunking
            chunks = self.chunker.chunk(text)
            logger.info(f"[doc {document.id}] split into {len(chunks)} chunks")

            # 6. Embedding + storage. The collection was created with the
            # conversation; a missing one is never recreated from here.
            ensure_active()
            handle = self.collections.get_handle(conversation.collection_name, create_missing=False)
            total = len(chunks)
            for done, chunk in enumerate(chunks, start=1):
                vector = self.embedder.embed(chunk.text)
                ensure_active()
                handle.upsert(
                    point_id_for(document.id, chunk.index),
                    vector,
                    {
                        "text": chunk.text,
                        "document_id": document.id,
                        "document_name": filename,
                        "chunk_index": chunk.index
                    }
                )
                update_progress(
                    EXTRACTED_PROGRESS + (100 - EXTRACTED_PROGRESS) * done // total,
                    f"Embedded chunk {done}/{total}"
                )

            # 7. Done
            ensure_active()
            document.mark_completed(character_count=len(text), chunk_count=total)
            self.document_store.save(document)
            logger.info(f"[doc {document.id}] 100%: ingestion completed")
            self.state_machine.on_document_completed(conversation.id)

        except ConversationDeleted:
            logger.info(f"Ingestion of '{filename}' stopped, conversation {conversation.id} was deleted")

        except Exception as e:
            if not self.state_machine.is_active(conversation.id):
                logger.info(f"Ingestion of '{filename}' failed after conversation {conversation.id} was deleted: {e}")
            else:
                reason = e.message if isinstance(e, AppError) else "unexpected error while processing the document"
                if isinstance(e, AppError):
                    logger.warning(f"Ingestion of '{filename}' failed: {reason}")
                else:
                    logger.exception(f"Ingestion of '{filename}' failed")

                if document is not None:
                    document.mark_failed(reason)
                    self.document_store.save(document)
                self.state_machine.on_document_failed(
                    conversation.id,
                    f"Failed to process document '{filename}': {reason}"
                )
                if blob_stored:
                    self._delete_blob(blob_path)

        # A delete that raced with any of the writes above may have been undone
        # by them; remove whatever this task left behind.
        if not self.state_machine.is_active(conversation.id):
            self._discard(conversation.id, blob_path if blob_stored else None)
            return None
        return document

    def _discard(self, conversation_id: int, blob_path: Optional[str]) -> None:
        removed = self.document_store.delete_by_conversation(conversation_id)
        if removed:
            logger.info(f"Removed {removed} document record(s) of deleted conversation {conversation_id}")
        if blob_path:
            self._delete_blob(blob_path)

    def _delete_blob(self, blob_path: str) -> None:
        try:
            self.blob_store.delete(blob_path)
        except Exception as e:
            logger.warning(f"Could not delete blob {blob_path} after failed ingestion: {e}")
