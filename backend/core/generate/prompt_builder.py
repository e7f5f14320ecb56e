from typing import List
from models.chunk import VectorMatch
from models.message import Message, MessageRole

SYSTEM_PROMPT = """You are an assistant that answers questions about the user's documents.
Rules: answer only from the provided document excerpts, answer in the language of the question,
and if the excerpts do not contain enough information, say so clearly instead of guessing."""

_ROLE_MAP = {
    MessageRole.user: "user",
    MessageRole.assistant: "assistant",
}

class PromptBuilder:
    @staticmethod
    def build_context(matches: List[VectorMatch]) -> str:
        parts = []
        for i, m in enumerate(matches, start=1):
            parts.append(f"[Document {i} - {m.document_name}]\n{m.text}")
        return "\n\n".join(parts)

    @staticmethod
    def build_messages(question: str,
                       matches: List[VectorMatch],
                       history: List[Message]) -> list[dict]:
        """
        Earlier conversation turns go first, oldest to newest, followed by one
        user turn carrying the labelled excerpts and the question.
        System messages in the history are not replayed.
        """
        messages = []
        for msg in history:
            role = _ROLE_MAP.get(msg.role)
            if role:
                messages.append({"role": role, "content": msg.content})

        context_str = PromptBuilder.build_context(matches)
        user_content = f"Documents:\n---\n{context_str}\n---\nQuestion: {question}"
        messages.append({"role": "user", "content": user_content})
        return messages
