from fastapi import Header, HTTPException, Request

from core.pipeline.conversations import ConversationService
from core.pipeline.retrieval import RetrievalPipeline


def get_conversation_service(request: Request) -> ConversationService:
    return request.app.state.conversation_service

def get_retrieval_pipeline(request: Request) -> RetrievalPipeline:
    return request.app.state.retrieval_pipeline

def get_current_user(x_user_id: str | None = Header(default=None)) -> str:
    # Authentication happens upstream; the gateway forwards the caller's id.
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header.")
    return x_user_id.strip()
