import time
import logging
import threading
from typing import Dict, List, Optional, Tuple, Any
from models.message import Message
from storage.base import MessageStore
from config.settings import settings

logger = logging.getLogger(__name__)

class MessageHistoryCache:
    """
    Read-through cache over the message store.
    - ("history", conversation_id) holds the full history.
    - ("recent", conversation_id, limit) holds the last `limit` messages.
    Entries expire after their TTL; invalidate() drops every key of a conversation
    and evicts expired entries of all others. forget() is for deleted conversations.
    """

    def __init__(self,
                 message_store: MessageStore,
                 history_ttl_s: Optional[float] = None,
                 recent_ttl_s: Optional[float] = None):
        self.message_store = message_store
        self.history_ttl_s = settings.cache.history_ttl_s if history_ttl_s is None else history_ttl_s
        self.recent_ttl_s = settings.cache.recent_ttl_s if recent_ttl_s is None else recent_ttl_s
        self._entries: Dict[Tuple[Any, ...], Tuple[float, List[Message]]] = {}
        self._versions: Dict[int, int] = {}
        self._lock = threading.Lock()

    def history(self, conversation_id: int) -> List[Message]:
        return self._read(
            ("history", conversation_id),
            self.history_ttl_s,
            lambda: self.message_store.list_by_conversation(conversation_id)
        )

    def recent(self, conversation_id: int, limit: int) -> List[Message]:
        if limit <= 0:
            return []
        return self._read(
            ("recent", conversation_id, limit),
            self.recent_ttl_s,
            lambda: self.message_store.recent(conversation_id, limit)
        )

    def invalidate(self, conversation_id: int) -> None:
        now = time.monotonic()
        with self._lock:
            self._versions[conversation_id] = self._versions.get(conversation_id, 0) + 1
            stale = [k for k in self._entries if k[1] == conversation_id]
            for key in stale:
                del self._entries[key]
            self._evict_expired(now)
        if stale:
            logger.debug(f"Invalidated {len(stale)} cached message list(s) for conversation {conversation_id}")

    def forget(self, conversation_id: int) -> None:
        """Drops every entry and the version counter of a deleted conversation."""
        with self._lock:
            for key in [k for k in self._entries if k[1] == conversation_id]:
                del self._entries[key]
            self._versions.pop(conversation_id, None)

    def _evict_expired(self, now: float) -> None:
        for key in [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]:
            del self._entries[key]

    def _read(self, key, ttl: float, loader) -> List[Message]:
        conversation_id = key[1]
        now = time.monotonic()
        with self._lock:
            entry = self._entries.get(key)
            if entry and entry[0] > now:
                return list(entry[1])
            version = self._versions.get(conversation_id, 0)

        messages = loader()
        with self._lock:
            # A write that invalidated while we were loading makes this result stale.
            if self._versions.get(conversation_id, 0) == version:
                self._entries[key] = (now + ttl, messages)
        return list(messages)
