import time
import logging
from typing import List, Optional
import tiktoken
from core.errors import AppError, ExternalServiceError, InvalidStateError, NotFoundError, ValidationError
from core.generate.llm_client import LLMClient
from core.generate.prompt_builder import PromptBuilder, SYSTEM_PROMPT
from core.retrieve.history_cache import MessageHistoryCache
from core.retrieve.vector_search import VectorSearcher
from models.chunk import VectorMatch
from models.conversation import Conversation
from models.message import Message, MessageRole, SourceCitation
from models.query import AnswerResponse
from storage.base import ConversationStore, MessageStore
from config.settings import settings, RetrievalConfig

logger = logging.getLogger(__name__)

NOT_FOUND_ANSWER = (
    "I couldn't find information relevant to your question in the uploaded documents. "
    "Try rephrasing the question or uploading documents that cover this topic."
)

NOT_FOUND_SUGGESTIONS = [
    "Rephrase the question using different keywords",
    "Check that the information is actually present in your documents",
    "Upload additional documents that cover this topic",
]


class RetrievalPipeline:
    """
    Answers one question against a READY conversation.
    Sequence: check state -> validate -> store question -> load context ->
    search -> (no matches: fallback answer) -> prompt -> complete -> store answer

    The completion provider is called at most once per question and never
    when nothing clears the similarity floor.
    """

    def __init__(self,
                 conversation_store: ConversationStore,
                 message_store: MessageStore,
                 history_cache: MessageHistoryCache,
                 searcher: VectorSearcher,
                 llm_client: LLMClient,
                 config: Optional[RetrievalConfig] = None):
        self.conversation_store = conversation_store
        self.message_store = message_store
        self.history_cache = history_cache
        self.searcher = searcher
        self.llm_client = llm_client
        self.config = config or settings.retrieval
        self.encoder = tiktoken.get_encoding("cl100k_base")

    def answer(self,
               conversation_id: int,
               question: str,
               context_size: Optional[int] = None,
               document_ids: Optional[List[int]] = None) -> AnswerResponse:
        started = time.monotonic()

        # 1. Conversation must exist and be READY
        conversation = self.conversation_store.get(conversation_id)
        if conversation is None or not conversation.active:
            raise NotFoundError("Conversation", conversation_id)
        if not conversation.is_ready():
            raise InvalidStateError(
                f"Conversation {conversation_id} is not ready for questions (status: {conversation.status.value})",
                current_status=conversation.status.value
            )

        # 2. Validation
        question = self.validate_question(question)
        context_size = self.clamp_context_size(context_size)
        logger.info(f"[conversation {conversation_id}] question received ({len(question)} chars, context {context_size})")

        # 3. Store the question
        question_msg = self._append(conversation, Message(
            conversation_id=conversation_id,
            role=MessageRole.user,
            content=question
        ))

        # 4. Conversation context, oldest first, without the question itself
        history = []
        if context_size > 0:
            recent = self.history_cache.recent(conversation_id, context_size + 1)
            history = [m for m in recent if m.id != question_msg.id][-context_size:]

        # 5. Similarity search
        try:
            matches = self.searcher.search(conversation.collection_name, question, document_ids)
        except AppError:
            raise
        except Exception as e:
            logger.exception(f"[conversation {conversation_id}] search failed")
            raise ExternalServiceError("vector store", "search") from e

        # 6. Guard: no evidence, no completion call
        if not matches:
            return self._not_found_response(conversation, question_msg, started)

        # 7. Prompt
        messages = PromptBuilder.build_messages(question, matches, history)

        # 8. Completion
        answer_text = self.llm_client.complete(SYSTEM_PROMPT, messages)

        # 9-10. Confidence, sources and the stored answer
        confidence = self.compute_confidence(matches)
        sources = self._build_sources(matches)
        tokens_used = self._count_tokens(SYSTEM_PROMPT, messages, answer_text)
        elapsed_ms = int((time.monotonic() - started) * 1000)

        answer_msg = self._append(conversation, Message(
            conversation_id=conversation_id,
            role=MessageRole.assistant,
            content=answer_text,
            sources=sources,
            confidence=confidence,
            tokens_used=tokens_used,
            response_time_ms=elapsed_ms,
            parent_message_id=question_msg.id
        ))
        logger.info(
            f"[conversation {conversation_id}] answered with {len(sources)} source(s), "
            f"confidence {confidence:.2f}, {elapsed_ms} ms"
        )

        # 11. Response
        return AnswerResponse(
            answer=answer_text,
            confidence=confidence,
            sources=sources,
            message_id=answer_msg.id,
            question_message_id=question_msg.id,
            tokens_used=tokens_used,
            response_time_ms=elapsed_ms
        )

    def validate_question(self, question: Optional[str]) -> str:
        question = (question or "").strip()
        if not question:
            raise ValidationError("Question must not be blank", code="BLANK_QUESTION", field="question")
        if len(question) > self.config.max_question_length:
            raise ValidationError(
                f"Question is longer than {self.config.max_question_length} characters",
                code="QUESTION_TOO_LONG",
                field="question"
            )
        return question

    def clamp_context_size(self, context_size: Optional[int]) -> int:
        if context_size is None:
            return self.config.default_context_messages
        return max(0, min(context_size, self.config.max_context_messages))

    @staticmethod
    def compute_confidence(matches: List[VectorMatch]) -> float:
        if not matches:
            return 0.0
        mean = sum(m.score for m in matches) / len(matches)
        return max(0.0, min(mean, 1.0))

    def _build_sources(self, matches: List[VectorMatch]) -> List[SourceCitation]:
        limit = self.config.excerpt_length
        sources = []
        for i, m in enumerate(matches):
            excerpt = m.text if len(m.text) <= limit else m.text[:limit] + "..."
            sources.append(SourceCitation(
                document_id=m.document_id,
                document_name=m.document_name,
                excerpt=excerpt,
                relevance_score=m.score,
                chunk_index=m.chunk_index,
                is_primary=(i == 0)
            ))
        return sources

    def _count_tokens(self, system_prompt: str, messages: list[dict], answer: str) -> int:
        texts = [system_prompt, answer] + [m["content"] for m in messages]
        return sum(len(self.encoder.encode(t)) for t in texts)

    def _append(self, conversation: Conversation, message: Message) -> Message:
        stored = self.message_store.append(message)
        self.history_cache.invalidate(conversation.id)
        conversation.touch()
        self.conversation_store.save(conversation)
        return stored

    def _not_found_response(self, conversation: Conversation, question_msg: Message, started: float) -> AnswerResponse:
        """Stores and returns the fixed answer used when nothing relevant was retrieved."""
        elapsed_ms = int((time.monotonic() - started) * 1000)
        answer_msg = self._append(conversation, Message(
            conversation_id=conversation.id,
            role=MessageRole.assistant,
            content=NOT_FOUND_ANSWER,
            confidence=0.0,
            tokens_used=0,
            response_time_ms=elapsed_ms,
            parent_message_id=question_msg.id
        ))
        logger.info(f"[conversation {conversation.id}] no chunk cleared the score floor, returning fallback answer")
        return AnswerResponse(
            answer=NOT_FOUND_ANSWER,
            confidence=0.0,
            sources=[],
            message_id=answer_msg.id,
            question_message_id=question_msg.id,
            tokens_used=0,
            response_time_ms=elapsed_ms,
            suggestions=list(NOT_FOUND_SUGGESTIONS)
        )
