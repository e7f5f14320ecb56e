import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.settings import settings, AppSettings
from core.errors import AppError
from core.embed.embedder import build_embedder
from core.generate.llm_client import LLMClient
from core.pipeline.conversation_state import ConversationStateMachine
from core.pipeline.conversations import ConversationService
from core.pipeline.ingestion import IngestionPipeline
from core.pipeline.retrieval import RetrievalPipeline
from core.retrieve.history_cache import MessageHistoryCache
from core.retrieve.vector_search import VectorSearcher
from storage.file_store import LocalBlobStore
from storage.memory_store import InMemoryConversationStore, InMemoryDocumentStore, InMemoryMessageStore
from storage.qdrant_store import CollectionManager

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_components(app_settings: Optional[AppSettings] = None) -> Dict[str, Any]:
    """Wires stores, providers and pipelines together from the settings."""
    app_settings = app_settings or settings

    # 1. Storage
    conversation_store = InMemoryConversationStore()
    document_store = InMemoryDocumentStore()
    message_store = InMemoryMessageStore()
    blob_store = LocalBlobStore(app_settings.storage.blob_path)
    collections = CollectionManager(config=app_settings.qdrant, vector_dim=app_settings.embedding.vector_dim)

    # 2. Providers
    embedder = build_embedder(app_settings.embedding)
    llm_client = LLMClient(api_key=app_settings.openai_api_key, config=app_settings.llm)

    # 3. Pipelines
    state_machine = ConversationStateMachine(conversation_store, app_settings.ingestion.partial_ready)
    history_cache = MessageHistoryCache(
        message_store,
        history_ttl_s=app_settings.cache.history_ttl_s,
        recent_ttl_s=app_settings.cache.recent_ttl_s
    )
    ingestion_pipeline = IngestionPipeline(
        blob_store=blob_store,
        document_store=document_store,
        collections=collections,
        state_machine=state_machine,
        embedder=embedder,
        config=app_settings.ingestion
    )
    retrieval_pipeline = RetrievalPipeline(
        conversation_store=conversation_store,
        message_store=message_store,
        history_cache=history_cache,
        searcher=VectorSearcher(collections, embedder, app_settings.retrieval),
        llm_client=llm_client,
        config=app_settings.retrieval
    )
    conversation_service = ConversationService(
        conversation_store=conversation_store,
        document_store=document_store,
        message_store=message_store,
        blob_store=blob_store,
        collections=collections,
        state_machine=state_machine,
        ingestion=ingestion_pipeline,
        history_cache=history_cache
    )

    return {
        "collections": collections,
        "ingestion_pipeline": ingestion_pipeline,
        "retrieval_pipeline": retrieval_pipeline,
        "conversation_service": conversation_service,
    }


def create_app(components: Optional[Dict[str, Any]] = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # --- Startup ---
        logger.info("Initializing document chat backend...")
        built = components if components is not None else build_components()
        for name, component in built.items():
            setattr(app.state, name, component)
        logger.info("Initialization complete. All systems ready.")

        yield

        # --- Shutdown ---
        logger.info("Shutting down, waiting for running ingestion tasks...")
        built["ingestion_pipeline"].shutdown(wait=True)

    app = FastAPI(
        title="DocChat API",
        description="Conversational question answering over uploaded PDF documents",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "ok"}

    from api.routes import conversations, query, documents

    app.include_router(conversations.router, prefix="/api", tags=["Conversations"])
    app.include_router(query.router, prefix="/api", tags=["Questions"])
    app.include_router(documents.router, prefix="/api", tags=["Documents"])

    return app


app = create_app()
