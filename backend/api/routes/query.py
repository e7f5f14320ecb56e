import logging
from typing import List
from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_conversation_service, get_current_user, get_retrieval_pipeline
from core.errors import AppError
from core.pipeline.conversations import ConversationService
from core.pipeline.retrieval import RetrievalPipeline
from models.message import Message
from models.query import AskRequest, AnswerResponse

router = APIRouter()
logger = logging.getLogger(__name__)

@router.post("/conversations/{conversation_id}/ask", response_model=AnswerResponse,
             summary="Ask a question answered from the conversation's documents")
def ask_question(
    conversation_id: int,
    request_data: AskRequest,
    user_id: str = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service),
    pipeline: RetrievalPipeline = Depends(get_retrieval_pipeline)
):
    """
    1. Checks ownership of the conversation.
    2. Runs retrieval and generation synchronously; the answer is stored before returning.
    """
    service.get_conversation(conversation_id, user_id)
    try:
        return pipeline.answer(
            conversation_id,
            request_data.question,
            context_size=request_data.context_size,
            document_ids=request_data.document_ids
        )
    except AppError:
        raise
    except Exception:
        logger.exception("Answer pipeline execution failed.")
        raise HTTPException(status_code=500, detail="Could not answer the question.")

@router.get("/conversations/{conversation_id}/messages", response_model=List[Message],
            summary="Full message history, oldest first")
def list_messages(
    conversation_id: int,
    user_id: str = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service)
):
    return service.history(conversation_id, user_id)
