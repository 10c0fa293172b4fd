from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from motor.motor_asyncio import AsyncIOMotorDatabase

from socialchat.database.connection import mongo_db_dependency
from socialchat.repositories.conversation_repository import ConversationRepository
from socialchat.repositories.message_repository import MessageRepository
from socialchat.repositories.user_repository import UserRepository
from socialchat.schemas.user import Principal
from socialchat.services.chat_service import ChatService
from socialchat.services.identity import JwtIdentityProvider, authenticate


bearer_scheme = HTTPBearer(auto_error=False)


def build_chat_service(app, db: AsyncIOMotorDatabase) -> ChatService:
    return ChatService(
        MessageRepository(db),
        ConversationRepository(db),
        UserRepository(db),
        realtime=app.state.realtime,
        blob_store=app.state.blob_store,
        history_limit=app.state.settings.HISTORY_PAGE_SIZE,
    )


def get_chat_service(request: Request, db=Depends(mongo_db_dependency)) -> ChatService:
    return build_chat_service(request.app, db)


def get_identity_provider(request: Request, db=Depends(mongo_db_dependency)) -> JwtIdentityProvider:
    return JwtIdentityProvider(request.app.state.settings, UserRepository(db))


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    identity: JwtIdentityProvider = Depends(get_identity_provider),
) -> Principal:
    token = credentials.credentials if credentials else None
    return await authenticate(identity, token, request.app.state.settings.IDENTITY_TIMEOUT_SECONDS)
