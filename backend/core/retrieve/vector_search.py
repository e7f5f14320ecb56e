import logging
from typing import List, Optional
from core.embed.embedder import Embedder
from models.chunk import VectorMatch
from storage.qdrant_store import CollectionManager
from config.settings import settings, RetrievalConfig

logger = logging.getLogger(__name__)


class VectorSearcher:
    """
    Dense similarity search over one conversation's collection.
    Matches below the score floor are dropped; the rest come back best first.
    """

    def __init__(self, collections: CollectionManager, embedder: Embedder, config: Optional[RetrievalConfig] = None):
        self.collections = collections
        self.embedder = embedder
        self.config = config or settings.retrieval

    def search(self,
               collection_name: str,
               question: str,
               document_ids: Optional[List[int]] = None) -> List[VectorMatch]:
        query_vector = self.embedder.embed_query(question)
        handle = self.collections.get_handle(collection_name)
        matches = handle.search(
            vector=query_vector,
            limit=self.config.top_k,
            min_score=self.config.min_score,
            document_ids=document_ids
        )
        logger.info(f"Vector search in {collection_name}: {len(matches)} match(es) >= {self.config.min_score}")
        return matches
