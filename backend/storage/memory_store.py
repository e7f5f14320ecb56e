import itertools
import threading
from typing import Dict, List, Optional
from models.conversation import Conversation
from models.document import DocumentRecord
from models.message import Message
from storage.base import ConversationStore, DocumentStore, MessageStore

class InMemoryConversationStore(ConversationStore):
    """
    Process-local conversation table.
    Stored objects are shared by reference, so the aggregate's own lock
    guards counter updates made by concurrent workers.
    """

    def __init__(self):
        self._rows: Dict[int, Conversation] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def create(self, title: str, owner_id: str, pending_documents: int) -> Conversation:
        with self._lock:
            conversation = Conversation(
                id=next(self._ids),
                title=title,
                owner_id=owner_id,
                pending_documents=pending_documents
            )
            self._rows[conversation.id] = conversation
        return conversation

    def get(self, conversation_id: int) -> Optional[Conversation]:
        with self._lock:
            return self._rows.get(conversation_id)

    def save(self, conversation: Conversation) -> None:
        with self._lock:
            self._rows[conversation.id] = conversation

    def list_by_owner(self, owner_id: str) -> List[Conversation]:
        with self._lock:
            rows = [c for c in self._rows.values() if c.owner_id == owner_id and c.active]
        return sorted(rows, key=lambda c: c.last_activity_at, reverse=True)

    def delete(self, conversation_id: int) -> None:
        with self._lock:
            self._rows.pop(conversation_id, None)


class InMemoryDocumentStore(DocumentStore):
    def __init__(self):
        self._rows: Dict[int, DocumentRecord] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def create(self, **fields) -> DocumentRecord:
        with self._lock:
            document = DocumentRecord(id=next(self._ids), **fields)
            self._rows[document.id] = document
        return document

    def get(self, document_id: int) -> Optional[DocumentRecord]:
        with self._lock:
            return self._rows.get(document_id)

    def save(self, document: DocumentRecord) -> None:
        with self._lock:
            self._rows[document.id] = document

    def list_by_conversation(self, conversation_id: int, include_inactive: bool = False) -> List[DocumentRecord]:
        with self._lock:
            rows = [d for d in self._rows.values() if d.conversation_id == conversation_id]
        if not include_inactive:
            rows = [d for d in rows if d.active]
        return sorted(rows, key=lambda d: d.id)

    def delete_by_conversation(self, conversation_id: int) -> int:
        with self._lock:
            ids = [i for i, d in self._rows.items() if d.conversation_id == conversation_id]
            for i in ids:
                del self._rows[i]
        return len(ids)


class InMemoryMessageStore(MessageStore):
    def __init__(self):
        self._rows: Dict[int, List[Message]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def append(self, message: Message) -> Message:
        with self._lock:
            stored = message.model_copy(update={"id": next(self._ids)})
            self._rows.setdefault(message.conversation_id, []).append(stored)
        return stored

    def list_by_conversation(self, conversation_id: int) -> List[Message]:
        with self._lock:
            return list(self._rows.get(conversation_id, []))

    def recent(self, conversation_id: int, limit: int) -> List[Message]:
        if limit <= 0:
            return []
        with self._lock:
            return list(self._rows.get(conversation_id, [])[-limit:])

    def delete_by_conversation(self, conversation_id: int) -> int:
        with self._lock:
            return len(self._rows.pop(conversation_id, []))
