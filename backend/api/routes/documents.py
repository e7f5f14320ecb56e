import logging
from typing import List
from fastapi import APIRouter, Depends

from api.dependencies import get_conversation_service, get_current_user
from core.pipeline.conversations import ConversationService
from models.document import DocumentRecord

router = APIRouter()
logger = logging.getLogger(__name__)

@router.get("/conversations/{conversation_id}/documents", response_model=List[DocumentRecord],
            summary="List the documents of a conversation with their processing state")
def list_documents(
    conversation_id: int,
    user_id: str = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service)
):
    return service.list_documents(conversation_id, user_id)

@router.delete("/documents/{document_id}", summary="Delete a document, its vectors and its stored file")
def delete_document(
    document_id: int,
    user_id: str = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service)
):
    """
    The record is soft-deleted first; vector and blob cleanup are best effort
    and logged when they fail.
    """
    logger.info(f"User {user_id} deleting document {document_id}")
    document = service.delete_document(document_id, user_id)
    return {"document_id": document.id, "success": True, "message": "Document deleted."}
