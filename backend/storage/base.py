from abc import ABC, abstractmethod
from typing import List, Optional
from models.conversation import Conversation
from models.document import DocumentRecord
from models.message import Message

class BlobStore(ABC):
    @abstractmethod
    def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        pass

    @abstractmethod
    def get(self, path: str) -> bytes:
        pass

    @abstractmethod
    def delete(self, path: str) -> None:
        pass

    @abstractmethod
    def delete_prefix(self, prefix: str) -> int:
        """Deletes every object under `prefix`. Returns how many were removed."""
        pass

class ConversationStore(ABC):
    @abstractmethod
    def create(self, title: str, owner_id: str, pending_documents: int) -> Conversation:
        pass

    @abstractmethod
    def get(self, conversation_id: int) -> Optional[Conversation]:
        pass

    @abstractmethod
    def save(self, conversation: Conversation) -> None:
        pass

    @abstractmethod
    def list_by_owner(self, owner_id: str) -> List[Conversation]:
        pass

    @abstractmethod
    def delete(self, conversation_id: int) -> None:
        pass

class DocumentStore(ABC):
    @abstractmethod
    def create(self, **fields) -> DocumentRecord:
        pass

    @abstractmethod
    def get(self, document_id: int) -> Optional[DocumentRecord]:
        pass

    @abstractmethod
    def save(self, document: DocumentRecord) -> None:
        pass

    @abstractmethod
    def list_by_conversation(self, conversation_id: int, include_inactive: bool = False) -> List[DocumentRecord]:
        pass

    @abstractmethod
    def delete_by_conversation(self, conversation_id: int) -> int:
        pass

class MessageStore(ABC):
    @abstractmethod
    def append(self, message: Message) -> Message:
        """Stores the message and returns it with its assigned id."""
        pass

    @abstractmethod
    def list_by_conversation(self, conversation_id: int) -> List[Message]:
        """All messages of a conversation, oldest first."""
        pass

    @abstractmethod
    def recent(self, conversation_id: int, limit: int) -> List[Message]:
        """The last `limit` messages, oldest first."""
        pass

    @abstractmethod
    def delete_by_conversation(self, conversation_id: int) -> int:
        pass
