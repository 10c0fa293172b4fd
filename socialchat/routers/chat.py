from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from socialchat.core.errors import AuthenticationError, ChatError, ForbiddenError
from socialchat.core.logger import get_logger
from socialchat.database.connection import mongo_db_dependency
from socialchat.repositories.user_repository import UserRepository
from socialchat.services.chat_service import ChatService
from socialchat.services.identity import JwtIdentityProvider, authenticate
from socialchat.utils.dependencies import build_chat_service
from socialchat.utils.websocket_manager import Connection, ConnectionManager


logger = get_logger(__name__)

router = APIRouter(tags=["chat"])

CLOSE_UNAUTHENTICATED = 4401
CLOSE_FORBIDDEN = 4403


def _handshake_token(websocket: WebSocket) -> Optional[str]:
    token = websocket.query_params.get("token")
    if token:
        return token
    header = websocket.headers.get("authorization") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value:
        return value.strip()
    return None


@router.websocket("/ws")
async def chat_socket(websocket: WebSocket, db=Depends(mongo_db_dependency)):
    app = websocket.app
    settings = app.state.settings
    identity = JwtIdentityProvider(settings, UserRepository(db))
    try:
        principal = await authenticate(identity, _handshake_token(websocket), settings.IDENTITY_TIMEOUT_SECONDS)
    except ForbiddenError:
        logger.warning("Socket handshake rejected: identity verification timed out")
        await websocket.close(code=CLOSE_FORBIDDEN)
        return
    except AuthenticationError as exc:
        logger.warning(f"Socket handshake rejected: {exc.message}")
        await websocket.close(code=CLOSE_UNAUTHENTICATED)
        return
    except ChatError as exc:
        logger.error(f"Socket handshake rejected: identity lookup failed: {exc.message}")
        await websocket.close(code=CLOSE_FORBIDDEN)
        return

    await websocket.accept()
    manager: ConnectionManager = app.state.realtime.manager
    connection = Connection(websocket, principal.user_id)
    await manager.register(connection)
    service = build_chat_service(app, db)
    logger.info(f"User {principal.user_id} connected ({connection})")

    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                await connection.send("error", {"message": "Frames must be JSON objects"})
                continue
            await _handle_frame(frame, connection, manager, service)
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(connection)
        logger.info(f"User {principal.user_id} disconnected ({connection})")


async def _handle_frame(frame: Any, connection: Connection, manager: ConnectionManager, service: ChatService) -> None:
    if not isinstance(frame, dict):
        await connection.send("error", {"message": "Frames must be JSON objects"})
        return
    frame_type = frame.get("type")
    if frame_type == "ping":
        await connection.send("pong", {})
        return
    if frame_type not in ("join", "leave"):
        await connection.send("error", {"message": f"Unknown frame type: {frame_type}"})
        return
    conversation_id = frame.get("conversation_id")
    if not isinstance(conversation_id, str) or not conversation_id:
        await connection.send("error", {"message": "conversation_id is required"})
        return

    if frame_type == "leave":
        await manager.leave(conversation_id, connection)
        await connection.send("left", {"conversation_id": conversation_id})
        return

    try:
        await service.require_participant(connection.user_id, conversation_id)
    except ChatError as exc:
        await connection.send("error", _error_data(exc, conversation_id))
        return
    await manager.join(conversation_id, connection)
    await connection.send("joined", {"conversation_id": conversation_id})


def _error_data(exc: ChatError, conversation_id: str) -> Dict[str, Any]:
    return {"message": exc.message, "code": exc.code, "conversation_id": conversation_id}
