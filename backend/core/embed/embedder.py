import logging
from abc import ABC, abstractmethod
from typing import List, Optional
import httpx
from sentence_transformers import SentenceTransformer
from config.settings import settings, EmbeddingConfig
from core.errors import ExternalServiceError

logger = logging.getLogger(__name__)

class Embedder(ABC):
    """Turns text into a fixed-length vector. Same input, same model -> same vector."""

    dimension: int

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        pass

    def embed_query(self, query: str) -> List[float]:
        return self.embed(query)


class SentenceTransformerEmbedder(Embedder):
    """
    Local embeddings through sentence-transformers.
    - Uses singleton-style model loading to save memory.
    - Applies the configured query prefix to questions only.
    """

    _model = None

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        self.config = config or settings.embedding
        self._load_model()
        self.dimension = SentenceTransformerEmbedder._model.get_sentence_embedding_dimension()

    def _load_model(self):
        """Loads the sentence-transformer model onto CPU."""
        if SentenceTransformerEmbedder._model is None:
            logger.info(f"Loading embedding model: {self.config.model_name}...")
            SentenceTransformerEmbedder._model = SentenceTransformer(self.config.model_name, device="cpu")
        self.model = SentenceTransformerEmbedder._model

    def embed(self, text: str) -> List[float]:
        try:
            embedding = self.model.encode(
                text,
                show_progress_bar=False,
                normalize_embeddings=self.config.normalise
            )
        except Exception as e:
            logger.error(f"Local embedding failed: {e}")
            raise ExternalServiceError("embedding provider", "embed") from e
        return embedding.tolist()

    def embed_query(self, query: str) -> List[float]:
        return self.embed(f"{self.config.query_prefix}{query}")


class OpenAIEmbedder(Embedder):
    """Remote embeddings through an OpenAI-compatible /embeddings endpoint."""

    def __init__(self, api_key: Optional[str] = None, config: Optional[EmbeddingConfig] = None):
        self.config = config or settings.embedding
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.dimension = self.config.vector_dim
        self.url = f"{self.config.base_url.rstrip('/')}/embeddings"
        self.headers = {
            "Authorization": f"Bearer {self.api_key}" if self.api_key else "",
            "Content-Type": "application/json"
        }

    def embed(self, text: str) -> List[float]:
        payload = {
            "model": self.config.model_name,
            "input": text,
            "dimensions": self.dimension
        }
        try:
            with httpx.Client(timeout=self.config.timeout_s) as client:
                response = client.post(self.url, headers=self.headers, json=payload)
                response.raise_for_status()
                data = response.json()
            return data["data"][0]["embedding"]
        except Exception as e:
            logger.error(f"Embedding request to {self.url} failed: {e}")
            raise ExternalServiceError("embedding provider", "embed") from e


def build_embedder(config: Optional[EmbeddingConfig] = None) -> Embedder:
    config = config or settings.embedding
    if config.provider == "local":
        return SentenceTransformerEmbedder(config)
    if config.provider == "openai":
        return OpenAIEmbedder(config=config)
    raise ValueError(f"Unknown embedding provider: {config.provider}")
