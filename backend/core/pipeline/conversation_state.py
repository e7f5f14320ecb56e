import logging
from typing import Optional
from models.conversation import Conversation, ConversationStatus
from storage.base import ConversationStore
from config.settings import settings

logger = logging.getLogger(__name__)

class ConversationStateMachine:
    """
    Moves a conversation through CREATING -> PROCESSING -> READY | FAILED as
    its documents finish.

    Strict mode (default): the first failed document fails the conversation
    and later completions are ignored.
    Partial mode: failures only count down pending documents; the conversation
    becomes READY if at least one document completed.
    """

    def __init__(self, conversation_store: ConversationStore, partial_ready: Optional[bool] = None):
        self.conversation_store = conversation_store
        self.partial_ready = settings.ingestion.partial_ready if partial_ready is None else partial_ready

    def begin_processing(self, conversation: Conversation) -> None:
        if conversation.begin_processing():
            self.conversation_store.save(conversation)
            logger.info(f"[conversation {conversation.id}] processing {conversation.pending_documents} document(s)")

    def on_document_completed(self, conversation_id: int) -> None:
        conversation = self.conversation_store.get(conversation_id)
        if conversation is None:
            logger.warning(f"[conversation {conversation_id}] completion event for unknown conversation")
            return

        became_ready = conversation.try_complete()
        self.conversation_store.save(conversation)
        if became_ready:
            logger.info(f"[conversation {conversation_id}] all documents processed, conversation READY")
        elif conversation.status == ConversationStatus.failed:
            logger.info(f"[conversation {conversation_id}] completion ignored, conversation already FAILED")

    def on_document_failed(self, conversation_id: int, reason: str) -> None:
        conversation = self.conversation_store.get(conversation_id)
        if conversation is None:
            logger.warning(f"[conversation {conversation_id}] failure event for unknown conversation")
            return

        changed = conversation.try_fail(reason, partial=self.partial_ready)
        self.conversation_store.save(conversation)
        if changed:
            logger.warning(f"[conversation {conversation_id}] now {conversation.status.value}: {reason}")

    def mark_failed(self, conversation: Conversation, reason: str) -> None:
        conversation.mark_failed(reason)
        self.conversation_store.save(conversation)
        logger.error(f"[conversation {conversation.id}] FAILED: {reason}")

    def is_active(self, conversation_id: int) -> bool:
        """False once the conversation is being deleted or is gone."""
        conversation = self.conversation_store.get(conversation_id)
        return conversation is not None and conversation.active

    def is_ready(self, conversation: Conversation) -> bool:
        return conversation.is_ready()
