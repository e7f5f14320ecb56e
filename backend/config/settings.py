from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel
import yaml
import os

class ChunkingConfig(BaseModel):
    chunk_size: int = 1000
    chunk_overlap: int = 200
    sentence_terminators: str = ".!?"

class EmbeddingConfig(BaseModel):
    provider: str = "openai"            # "openai" | "local"
    model_name: str = "text-embedding-3-large"
    base_url: str = "https://api.openai.com/v1"
    vector_dim: int = 3072
    query_prefix: str = ""
    normalise: bool = True
    timeout_s: float = 30.0

class QdrantConfig(BaseModel):
    mode: str = "local"                 # "local" | "memory" | "remote"
    local_path: str = "./data/qdrant_store"
    url: str = ""
    api_key: str = ""
    distance: str = "Cosine"
    hnsw_m: int = 16
    hnsw_ef_construct: int = 200
    hnsw_ef: int = 128
    indexing_threshold: int = 10000
    name_max_length: int = 50
    ready_timeout_s: float = 30.0
    ready_poll_interval_s: float = 0.5

class RetrievalConfig(BaseModel):
    top_k: int = 5
    min_score: float = 0.5
    default_context_messages: int = 5
    max_context_messages: int = 20
    max_question_length: int = 2000
    excerpt_length: int = 200

class LLMConfig(BaseModel):
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    max_tokens: int = 2000
    temperature: float = 0.7
    timeout_s: float = 60.0

class StorageConfig(BaseModel):
    blob_path: str = "./data/blobs"

class IngestionConfig(BaseModel):
    max_file_size_mb: int = 50
    allowed_extensions: list[str] = [".pdf"]
    max_workers: int = 4
    # When True a failed document no longer fails the whole conversation.
    partial_ready: bool = False

class CacheConfig(BaseModel):
    history_ttl_s: float = 1800.0
    recent_ttl_s: float = 600.0

class AppSettings(BaseSettings):
    chunking: ChunkingConfig = ChunkingConfig()
    embedding: EmbeddingConfig = EmbeddingConfig()
    qdrant: QdrantConfig = QdrantConfig()
    retrieval: RetrievalConfig = RetrievalConfig()
    llm: LLMConfig = LLMConfig()
    storage: StorageConfig = StorageConfig()
    ingestion: IngestionConfig = IngestionConfig()
    cache: CacheConfig = CacheConfig()
    openai_api_key: str = ""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

def load_settings(config_path: str = "backend/config/config.yaml") -> AppSettings:
    """Loads settings from config.yaml and applies env overrides."""

    paths_to_try = [
        config_path,
        "config.yaml",
        "config/config.yaml",
        os.path.join(os.path.dirname(__file__), "config.yaml")
    ]

    yaml_data = {}
    for path in paths_to_try:
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f) or {}
            break

    # Manually map yaml sections to our sub-models
    return AppSettings(
        chunking=ChunkingConfig(**yaml_data.get("chunking", {})),
        embedding=EmbeddingConfig(**yaml_data.get("embedding", {})),
        qdrant=QdrantConfig(**yaml_data.get("qdrant", {})),
        retrieval=RetrievalConfig(**yaml_data.get("retrieval", {})),
        llm=LLMConfig(**yaml_data.get("llm", {})),
        storage=StorageConfig(**yaml_data.get("storage", {})),
        ingestion=IngestionConfig(**yaml_data.get("ingestion", {})),
        cache=CacheConfig(**yaml_data.get("cache", {}))
    )

# Global settings instance
settings = load_settings()
