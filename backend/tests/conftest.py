import math
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from qdrant_client import QdrantClient

from config.settings import IngestionConfig, QdrantConfig, RetrievalConfig
from core.embed.embedder import Embedder
from core.generate.llm_client import LLMClient
from core.pipeline.conversation_state import ConversationStateMachine
from core.pipeline.conversations import ConversationService
from core.pipeline.ingestion import IngestionPipeline
from core.pipeline.retrieval import RetrievalPipeline
from core.retrieve.history_cache import MessageHistoryCache
from core.retrieve.vector_search import VectorSearcher
from models.conversation import ConversationStatus
from storage.file_store import LocalBlobStore
from storage.memory_store import InMemoryConversationStore, InMemoryDocumentStore, InMemoryMessageStore
from storage.qdrant_store import CollectionManager, point_id_for

KEYWORDS = ["photosynthesis", "chlorophyll", "volcano", "magma", "invoice", "refund"]


class KeywordEmbedder(Embedder):
    """One dimension per keyword plus a small constant, so texts sharing a
    keyword score well above 0.5 and unrelated texts score far below."""

    dimension = len(KEYWORDS) + 1

    def embed(self, text):
        lowered = text.lower()
        vector = [float(lowered.count(k)) for k in KEYWORDS] + [0.1]
        norm = math.sqrt(sum(v * v for v in vector))
        return [v / norm for v in vector]


@pytest.fixture
def embedder():
    return KeywordEmbedder()


@pytest.fixture
def qdrant_config():
    return QdrantConfig(mode="memory", ready_timeout_s=2.0, ready_poll_interval_s=0.01)


@pytest.fixture
def collections(qdrant_config, embedder):
    return CollectionManager(client=QdrantClient(":memory:"), config=qdrant_config, vector_dim=embedder.dimension)


@pytest.fixture
def llm():
    client = MagicMock(spec=LLMClient)
    client.complete.return_value = "Photosynthesis turns light into chemical energy."
    return client


@pytest.fixture
def stack(tmp_path, collections, embedder, llm):
    conversation_store = InMemoryConversationStore()
    document_store = InMemoryDocumentStore()
    message_store = InMemoryMessageStore()
    blob_store = LocalBlobStore(str(tmp_path / "blobs"))
    state_machine = ConversationStateMachine(conversation_store, partial_ready=False)
    history_cache = MessageHistoryCache(message_store, history_ttl_s=60, recent_ttl_s=60)
    ingestion = IngestionPipeline(
        blob_store=blob_store,
        document_store=document_store,
        collections=collections,
        state_machine=state_machine,
        embedder=embedder,
        config=IngestionConfig(max_workers=1)
    )
    retrieval = RetrievalPipeline(
        conversation_store=conversation_store,
        message_store=message_store,
        history_cache=history_cache,
        searcher=VectorSearcher(collections, embedder, RetrievalConfig()),
        llm_client=llm,
        config=RetrievalConfig()
    )
    service = ConversationService(
        conversation_store=conversation_store,
        document_store=document_store,
        message_store=message_store,
        blob_store=blob_store,
        collections=collections,
        state_machine=state_machine,
        ingestion=ingestion,
        history_cache=history_cache
    )
    yield SimpleNamespace(
        conversation_store=conversation_store,
        document_store=document_store,
        message_store=message_store,
        blob_store=blob_store,
        collections=collections,
        embedder=embedder,
        state_machine=state_machine,
        history_cache=history_cache,
        ingestion=ingestion,
        retrieval=retrieval,
        service=service,
        llm=llm
    )
    ingestion.shutdown(wait=True)


@pytest.fixture
def ready_conversation(stack):
    """Returns a factory for a READY conversation whose collection already
    holds `texts`, one chunk per text, all under document id 1."""

    def _make(texts, owner_id="alice", document_name="biology.pdf"):
        conversation = stack.conversation_store.create("Biology notes", owner_id, pending_documents=0)
        handle = stack.collections.create_collection(conversation.title, conversation.id)
        conversation.collection_name = handle.name
        conversation.status = ConversationStatus.ready
        stack.conversation_store.save(conversation)
        for i, text in enumerate(texts):
            handle.upsert(point_id_for(1, i), stack.embedder.embed(text), {
                "text": text,
                "document_id": 1,
                "document_name": document_name,
                "chunk_index": i
            })
        return conversation

    return _make
