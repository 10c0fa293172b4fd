import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from socialchat.core.errors import DeliveryError, ForbiddenError, NotFoundError, StorageError
from socialchat.core.logger import get_logger
from socialchat.repositories.conversation_repository import ConversationRepository
from socialchat.repositories.message_repository import MessageRepository
from socialchat.repositories.user_repository import UserRepository
from socialchat.schemas.conversation import ConversationOut
from socialchat.schemas.message import MessageOut, build_payload
from socialchat.schemas.user import UserSummary
from socialchat.services.realtime_service import RealtimeChannel
from socialchat.services.unread_tracker import UnreadTracker


logger = get_logger(__name__)

MESSAGE_EVENT = "message"


@dataclass
class SendResult:
    message: MessageOut
    # propagation steps that failed after the message was persisted
    warnings: List[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.warnings)


class ChatService:
    """
    Conversation membership checks, message sends, history fetches with
    read receipts, and realtime publishing.

    A send is persisted first; counter and pointer updates that fail after
    that are reported as warnings, and realtime delivery is best-effort.
    """

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        user_repo: UserRepository,
        realtime: Optional[RealtimeChannel] = None,
        blob_store=None,
        history_limit: int = 50,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._user_repo = user_repo
        self._realtime = realtime
        self._blob_store = blob_store
        self._history_limit = history_limit
        self.unread = UnreadTracker(conversation_repo, message_repo)

    # --- conversations -------------------------------------------------

    async def create_conversation(self, creator_id: str, participant_ids: Iterable[str]) -> ConversationOut:
        members = [creator_id, *participant_ids]
        for user_id in set(members):
            if user_id != creator_id and not await self._user_repo.get_user_by_id(user_id):
                raise NotFoundError(f"User {user_id} not found")
        if len(set(members)) == 2:
            other = next(u for u in members if u != creator_id)
            convo = await self._conversation_repo.get_or_create_direct(creator_id, other)
        else:
            convo = await self._conversation_repo.create(members)
        logger.info(f"User {creator_id} opened conversation {convo['_id']}")
        return (await self._hydrate_conversations([convo], creator_id))[0]

    async def list_conversations(
        self, user_id: str, limit: Optional[int] = None, cursor: Optional[str] = None
    ) -> Tuple[List[ConversationOut], Optional[str]]:
        items, next_cursor = await self._conversation_repo.list_for_user(
            user_id, limit=limit or self._history_limit, cursor=cursor
        )
        return await self._hydrate_conversations(items, user_id), next_cursor

    async def search_conversations(self, user_id: str, query: str) -> List[ConversationOut]:
        query = (query or "").strip()
        if not query:
            return []
        matches = await self._user_repo.find_ids_matching(query, exclude=user_id)
        items = await self._conversation_repo.search_by_participant_ids(user_id, matches)
        return await self._hydrate_conversations(items, user_id)

    async def get_conversation(self, user_id: str, conversation_id: str) -> ConversationOut:
        convo = await self.require_participant(user_id, conversation_id)
        convo["unread_count"] = int((convo.get("unread_counts") or {}).get(user_id, 0))
        return (await self._hydrate_conversations([convo], user_id))[0]

    async def require_participant(self, user_id: str, conversation_id: str) -> Dict[str, Any]:
        convo = await self._conversation_repo.find_by_id(conversation_id)
        if user_id not in convo.get("participants", []):
            logger.warning(f"User {user_id} denied access to conversation {conversation_id}")
            raise ForbiddenError("Not a participant of this conversation")
        return convo

    # --- messages ------------------------------------------------------

    async def send_message(
        self,
        sender_id: str,
        conversation_id: str,
        kind: Optional[str] = None,
        content: Optional[str] = None,
        media_ref: Optional[str] = None,
    ) -> SendResult:
        # Validating
        convo = await self.require_participant(sender_id, conversation_id)
        payload = build_payload(kind, content=content, media_ref=media_ref)
        cid = convo["_id"]

        # Persisting: nothing below runs unless the message is stored
        try:
            saved = await self._message_repo.append(
                cid,
                sender_id,
                payload.kind,
                content=getattr(payload, "content", None),
                media_ref=getattr(payload, "media_ref", None),
            )
        except StorageError:
            logger.error(f"Message from {sender_id} to conversation {cid} was not stored")
            raise
        message_id = saved["_id"]

        # Propagating
        warnings: List[str] = []
        results = await asyncio.gather(
            self._conversation_repo.touch_last_message(cid, message_id),
            self.unread.on_message(cid, sender_id),
            return_exceptions=True,
        )
        for step, outcome in zip(("last_message", "unread_counts"), results):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(
                    f"Propagation step {step} failed for conversation_id={cid} "
                    f"message_id={message_id}: {outcome}"
                )
                warnings.append(f"{step} update failed; counters reconcile on next history fetch")
        if warnings:
            await self._flag_for_reconcile(cid, f"message_id={message_id}")

        # Delivered: best effort only
        message = await self._hydrate_for_delivery(saved)
        await self._publish(cid, message)

        logger.info(f"User {sender_id} sent {payload.kind} message {message_id} to conversation {cid}")
        return SendResult(message=message, warnings=warnings)

    async def get_history(
        self,
        user_id: str,
        conversation_id: str,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> Tuple[List[MessageOut], Optional[str]]:
        """
        Messages newest first. Fetching marks every message from other
        participants read by `user_id` and zeroes that user's unread counter.
        """
        convo = await self.require_participant(user_id, conversation_id)
        cid = convo["_id"]
        if convo.get("needs_reconcile"):
            await self._reconcile_flagged(cid)
        await self.unread.on_read(cid, user_id)
        items, next_cursor = await self._message_repo.list_by_conversation(
            cid, limit=limit or self._history_limit, cursor=cursor
        )
        return await self._hydrate_messages(items), next_cursor

    async def reconcile(self, conversation_id: str) -> Dict[str, int]:
        """Rebuild the last-message pointer and unread counters from stored messages."""
        latest = await self._message_repo.latest_message_id(conversation_id)
        await self._conversation_repo.set_last_message(conversation_id, latest)
        return await self.unread.recount(conversation_id)

    async def _flag_for_reconcile(self, conversation_id: str, context: str) -> None:
        try:
            await self._conversation_repo.flag_for_reconcile(conversation_id)
        except StorageError as exc:
            logger.error(
                f"Could not flag conversation_id={conversation_id} for reconcile ({context}): {exc}"
            )

    async def _reconcile_flagged(self, conversation_id: str) -> None:
        # only the fetch that clears the flag recounts
        if not await self._conversation_repo.claim_reconcile(conversation_id):
            return
        logger.warning(f"Conversation {conversation_id} missed a propagation step; reconciling")
        try:
            await self.reconcile(conversation_id)
        except StorageError:
            await self._flag_for_reconcile(conversation_id, "reconcile failed")
            raise

    async def _publish(self, conversation_id: str, message: MessageOut) -> None:
        if self._realtime is None:
            return
        try:
            await self._realtime.publish(conversation_id, MESSAGE_EVENT, message.model_dump(mode="json"))
        except DeliveryError as exc:
            logger.warning(f"Realtime delivery of message {message.id} to room {conversation_id} failed: {exc}")

    # --- hydration -----------------------------------------------------

    async def _hydrate_for_delivery(self, doc: Dict[str, Any]) -> MessageOut:
        try:
            return (await self._hydrate_messages([doc]))[0]
        except StorageError as exc:
            logger.warning(f"Could not resolve sender of message {doc['_id']}: {exc}")
            return self._to_message_out(doc, {"id": doc["sender_id"]})

    async def _hydrate_messages(self, docs: List[Dict[str, Any]]) -> List[MessageOut]:
        senders = await self._user_repo.get_summaries(d["sender_id"] for d in docs)
        return [self._to_message_out(d, senders[d["sender_id"]]) for d in docs]

    def _to_message_out(self, doc: Dict[str, Any], sender: Dict[str, Any]) -> MessageOut:
        media_ref = doc.get("media_ref")
        media_url = None
        if media_ref and self._blob_store is not None:
            media_url = self._blob_store.url_for(media_ref)
        return MessageOut(
            id=str(doc["_id"]),
            conversation_id=str(doc["conversation_id"]),
            sender=UserSummary(**sender),
            kind=doc["kind"],
            content=doc.get("content"),
            media_ref=media_ref,
            media_url=media_url,
            read_by=list(doc.get("read_by") or []),
            created_at=doc["created_at"],
        )

    async def _hydrate_conversations(self, items: List[Dict[str, Any]], user_id: str) -> List[ConversationOut]:
        if not items:
            return []
        users = await self._user_repo.get_summaries(p for it in items for p in it.get("participants", []))
        last_ids = [str(it["last_message_id"]) for it in items if it.get("last_message_id")]
        last_docs = await self._message_repo.find_many(last_ids)
        last_messages = {}
        if last_docs:
            hydrated = await self._hydrate_messages(list(last_docs.values()))
            last_messages = {m.id: m for m in hydrated}
        out = []
        for it in items:
            last_id = it.get("last_message_id")
            out.append(
                ConversationOut(
                    id=str(it["_id"]),
                    participants=[UserSummary(**users[p]) for p in it.get("participants", [])],
                    last_message=last_messages.get(str(last_id)) if last_id else None,
                    unread_count=int(it.get("unread_count", (it.get("unread_counts") or {}).get(user_id, 0))),
                    created_at=it["created_at"],
                    updated_at=it["updated_at"],
                )
            )
        return out
