import re
import uuid
import hashlib
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional
from qdrant_client import QdrantClient
from qdrant_client.http import models as rest
from tenacity import Retrying, RetryError, retry_if_exception_type, retry_if_result, stop_after_delay, wait_fixed
from config.settings import settings, QdrantConfig
from core.errors import NotFoundError, VectorStoreUnavailable
from models.chunk import VectorMatch

logger = logging.getLogger(__name__)

_READY_STATUSES = (rest.CollectionStatus.GREEN, rest.CollectionStatus.YELLOW)


def _to_uuid(chunk_id: str) -> str:
    """Convert a SHA-256 hex string to a deterministic UUID (Qdrant-compatible point ID).
    Takes the first 32 hex chars and formats as standard UUID.
    """
    return str(uuid.UUID(chunk_id[:32]))


def point_id_for(document_id: int, chunk_index: int) -> str:
    digest = hashlib.sha256(f"{document_id}:{chunk_index}".encode("utf-8")).hexdigest()
    return _to_uuid(digest)


def build_client(config: Optional[QdrantConfig] = None) -> QdrantClient:
    config = config or settings.qdrant
    if config.mode == "memory":
        return QdrantClient(":memory:")
    if config.mode == "remote":
        return QdrantClient(url=config.url, api_key=config.api_key or None)
    return QdrantClient(path=config.local_path)


class CollectionHandle:
    """
    Operations on one conversation's collection.
    Payload per point: text, document_id, document_name, chunk_index.
    """

    def __init__(self, client: QdrantClient, name: str, hnsw_ef: int):
        self.client = client
        self.name = name
        self.hnsw_ef = hnsw_ef

    def upsert(self, point_id: str, vector: List[float], payload: dict) -> None:
        try:
            self.client.upsert(
                collection_name=self.name,
                points=[rest.PointStruct(id=point_id, vector=vector, payload=payload)]
            )
        except Exception as e:
            logger.error(f"Upsert into {self.name} failed: {e}")
            raise VectorStoreUnavailable("upsert") from e

    def search(self,
               vector: List[float],
               limit: int,
               min_score: float,
               document_ids: Optional[List[int]] = None) -> List[VectorMatch]:
        """Returns at most `limit` matches scoring at least `min_score`, best first."""
        query_filter = None
        if document_ids:
            query_filter = rest.Filter(must=[
                rest.FieldCondition(key="document_id", match=rest.MatchAny(any=list(document_ids)))
            ])

        try:
            results = self.client.query_points(
                collection_name=self.name,
                query=vector,
                limit=limit,
                query_filter=query_filter,
                score_threshold=min_score,
                with_payload=True,
                search_params=rest.SearchParams(hnsw_ef=self.hnsw_ef)
            ).points
        except Exception as e:
            logger.error(f"Search in {self.name} failed: {e}")
            raise VectorStoreUnavailable("search") from e

        matches = [
            VectorMatch(
                text=r.payload.get("text", ""),
                score=r.score,
                document_id=r.payload.get("document_id"),
                document_name=r.payload.get("document_name", ""),
                chunk_index=r.payload.get("chunk_index", 0)
            )
            for r in results
            if r.payload and r.score >= min_score
        ]
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    def delete_by_document(self, document_id: int) -> None:
        try:
            self.client.delete(
                collection_name=self.name,
                points_selector=rest.FilterSelector(
                    filter=rest.Filter(
                        must=[
                            rest.FieldCondition(
                                key="document_id",
                                match=rest.MatchValue(value=document_id)
                            )
                        ]
                    )
                )
            )
        except Exception as e:
            logger.error(f"Deleting vectors of document {document_id} from {self.name} failed: {e}")
            raise VectorStoreUnavailable("delete_by_document") from e

    def count(self) -> int:
        try:
            return self.client.count(collection_name=self.name, exact=True).count
        except Exception as e:
            logger.error(f"Counting points in {self.name} failed: {e}")
            raise VectorStoreUnavailable("count") from e


class CollectionManager:
    """
    Creates, caches and deletes the per-conversation Qdrant collections.

    The handle cache is a plain dict guarded by a lock. The lock is never held
    while talking to Qdrant; a lost creation race is resolved by re-checking
    that the collection exists.
    """

    def __init__(self,
                 client: Optional[QdrantClient] = None,
                 config: Optional[QdrantConfig] = None,
                 vector_dim: Optional[int] = None):
        self.config = config or settings.qdrant
        self.client = client or build_client(self.config)
        self.vector_dim = vector_dim or settings.embedding.vector_dim
        self._handles: Dict[str, CollectionHandle] = {}
        self._lock = threading.Lock()

    def collection_name_for(self,
                            title: str,
                            created_at: Optional[datetime] = None,
                            conversation_id: Optional[int] = None) -> str:
        slug = re.sub(r"[^a-z0-9]+", "_", (title or "").lower()).strip("_")
        slug = slug[:self.config.name_max_length].rstrip("_") or "conversation"
        stamp = (created_at or datetime.now(timezone.utc)).strftime("%Y%m%d_%H%M%S")
        name = f"{slug}_{stamp}"
        if conversation_id is not None:
            name = f"{name}_{conversation_id}"
        return name

    def create_collection(self,
                          title: str,
                          conversation_id: Optional[int] = None,
                          created_at: Optional[datetime] = None) -> CollectionHandle:
        name = self.collection_name_for(title, created_at, conversation_id)
        return self.ensure_collection(name)

    def ensure_collection(self, name: str, create_missing: bool = True) -> CollectionHandle:
        """
        Creates `name` if missing and waits until it answers queries. Safe to repeat.
        With create_missing=False a missing collection raises NotFoundError instead.
        """
        with self._lock:
            handle = self._handles.get(name)
        if handle is not None:
            return handle

        try:
            if not self.client.collection_exists(name):
                if not create_missing:
                    raise NotFoundError("Collection", name)
                self._create(name)
        except NotFoundError:
            raise
        except Exception as e:
            logger.error(f"Could not create collection {name}: {e}")
            raise VectorStoreUnavailable("create_collection") from e

        self._wait_until_ready(name)

        with self._lock:
            handle = self._handles.setdefault(
                name, CollectionHandle(self.client, name, self.config.hnsw_ef)
            )
        return handle

    def get_handle(self, name: str, create_missing: bool = True) -> CollectionHandle:
        with self._lock:
            handle = self._handles.get(name)
        if handle is not None:
            return handle
        logger.info(f"No cached handle for {name}, reconnecting")
        return self.ensure_collection(name, create_missing=create_missing)

    def drop_from_cache(self, name: str) -> None:
        with self._lock:
            self._handles.pop(name, None)

    def delete_collection(self, name: str) -> None:
        try:
            if self.client.collection_exists(name):
                self.client.delete_collection(collection_name=name)
                logger.info(f"Deleted Qdrant collection: {name}")
        except Exception as e:
            logger.error(f"Failed to delete collection {name}: {e}")
            raise VectorStoreUnavailable("delete_collection") from e
        finally:
            self.drop_from_cache(name)

    def _create(self, name: str) -> None:
        logger.info(f"Creating Qdrant collection: {name}")
        try:
            self.client.create_collection(
                collection_name=name,
                vectors_config=rest.VectorParams(
                    size=self.vector_dim,
                    distance=rest.Distance(self.config.distance)
                ),
                hnsw_config=rest.HnswConfigDiff(
                    m=self.config.hnsw_m,
                    ef_construct=self.config.hnsw_ef_construct
                ),
                optimizers_config=rest.OptimizersConfigDiff(
                    indexing_threshold=self.config.indexing_threshold
                )
            )
        except Exception:
            # Another worker may have created it in the meantime.
            if not self.client.collection_exists(name):
                raise
        # Payload index for delete-by-document and document filters
        self.client.create_payload_index(
            collection_name=name,
            field_name="document_id",
            field_schema=rest.PayloadSchemaType.INTEGER
        )

    def _is_ready(self, name: str) -> bool:
        return self.client.get_collection(name).status in _READY_STATUSES

    def _wait_until_ready(self, name: str) -> None:
        retryer = Retrying(
            stop=stop_after_delay(self.config.ready_timeout_s),
            wait=wait_fixed(self.config.ready_poll_interval_s),
            retry=retry_if_result(lambda ready: not ready) | retry_if_exception_type(Exception)
        )
        try:
            retryer(self._is_ready, name)
        except RetryError as e:
            logger.error(f"Collection {name} not ready after {self.config.ready_timeout_s}s")
            raise VectorStoreUnavailable("wait_for_ready") from e
