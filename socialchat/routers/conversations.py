from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile

from socialchat.schemas.conversation import ConversationCreate, ConversationList, ConversationOut
from socialchat.schemas.message import MessagePage, SendMessageResponse
from socialchat.schemas.user import Principal
from socialchat.services.chat_service import ChatService
from socialchat.utils.blob_store import kind_for
from socialchat.utils.dependencies import get_chat_service, get_current_user


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.get("", response_model=ConversationList)
async def list_conversations(
    request: Request,
    limit: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = None,
    current_user: Principal = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    if limit is not None:
        limit = min(limit, request.app.state.settings.HISTORY_MAX_PAGE_SIZE)
    items, next_cursor = await service.list_conversations(current_user.user_id, limit=limit, cursor=cursor)
    return {"items": items, "next_cursor": next_cursor}


@router.get("/search", response_model=ConversationList)
async def search_conversations(q: str = Query("", max_length=100), current_user: Principal = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    items = await service.search_conversations(current_user.user_id, q)
    return {"items": items}


@router.post("", response_model=ConversationOut, status_code=201)
async def create_conversation(body: ConversationCreate, current_user: Principal = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    return await service.create_conversation(current_user.user_id, body.participant_ids)


@router.get("/{conversation_id}", response_model=ConversationOut)
async def get_conversation(conversation_id: str, current_user: Principal = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    return await service.get_conversation(current_user.user_id, conversation_id)


@router.get("/{conversation_id}/messages", response_model=MessagePage)
async def list_messages(
    conversation_id: str,
    request: Request,
    limit: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = None,
    current_user: Principal = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    if limit is not None:
        limit = min(limit, request.app.state.settings.HISTORY_MAX_PAGE_SIZE)
    messages, next_cursor = await service.get_history(current_user.user_id, conversation_id, limit=limit, cursor=cursor)
    return {"items": messages, "next_cursor": next_cursor}


@router.post("/{conversation_id}/messages", response_model=SendMessageResponse, status_code=201)
async def send_message(
    conversation_id: str,
    request: Request,
    content: Optional[str] = Form(None),
    media: Optional[UploadFile] = File(None),
    current_user: Principal = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    blob_store = request.app.state.blob_store
    kind = None
    media_ref = None
    if media is not None and media.filename:
        kind = kind_for(media.content_type)
        await service.require_participant(current_user.user_id, conversation_id)
        media_ref = await blob_store.store(media)
    try:
        result = await service.send_message(
            current_user.user_id,
            conversation_id,
            kind=kind,
            content=content,
            media_ref=media_ref,
        )
    except BaseException:
        if media_ref:
            await blob_store.delete(media_ref)
        raise
    return {"message": result.message, "partial": result.partial, "warnings": result.warnings}
