import logging
from typing import List
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from starlette.concurrency import run_in_threadpool

from api.dependencies import get_conversation_service, get_current_user
from core.errors import AppError
from core.pipeline.conversations import ConversationService
from models.conversation import Conversation
from models.document import UploadedFile
from models.query import ProcessingStatusResponse

router = APIRouter()
logger = logging.getLogger(__name__)

@router.post("/conversations", response_model=Conversation, status_code=201,
             summary="Create a conversation from one or more PDF uploads")
async def create_conversation(
    title: str = Form(...),
    files: List[UploadFile] = File(...),
    user_id: str = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service)
):
    """
    1. Reads every upload fully so the request stream can close right away.
    2. Creates the conversation and its vector collection.
    3. Schedules ingestion in the background; poll /status for progress.
    """
    uploads = []
    try:
        for f in files:
            uploads.append(UploadedFile(
                filename=f.filename or "",
                content_type=f.content_type,
                data=await f.read()
            ))
    finally:
        for f in files:
            await f.close()

    logger.info(f"User {user_id} creating conversation '{title}' with {len(uploads)} file(s)")
    try:
        return await run_in_threadpool(service.create_conversation, title, uploads, user_id)
    except AppError:
        raise
    except Exception:
        logger.exception("Conversation creation failed.")
        raise HTTPException(status_code=500, detail="Could not create the conversation.")

@router.get("/conversations", response_model=List[Conversation], summary="List the caller's conversations")
def list_conversations(
    user_id: str = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service)
):
    return service.list_conversations(user_id)

@router.get("/conversations/{conversation_id}", response_model=Conversation, summary="Get one conversation")
def get_conversation(
    conversation_id: int,
    user_id: str = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service)
):
    return service.get_conversation(conversation_id, user_id)

@router.get("/conversations/{conversation_id}/status", response_model=ProcessingStatusResponse,
            summary="Document processing progress of a conversation")
def get_processing_status(
    conversation_id: int,
    user_id: str = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service)
):
    return service.processing_status(conversation_id, user_id)

@router.delete("/conversations/{conversation_id}", summary="Delete a conversation with its documents and messages")
def delete_conversation(
    conversation_id: int,
    user_id: str = Depends(get_current_user),
    service: ConversationService = Depends(get_conversation_service)
):
    try:
        service.delete_conversation(conversation_id, user_id)
    except AppError:
        raise
    except Exception:
        logger.exception(f"Deletion of conversation {conversation_id} failed.")
        raise HTTPException(status_code=500, detail=f"Could not delete conversation {conversation_id}.")
    return {"conversation_id": conversation_id, "success": True, "message": "Conversation deleted."}
