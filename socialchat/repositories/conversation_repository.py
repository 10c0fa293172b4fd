from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING, ReturnDocument

from socialchat.core.errors import NotFoundError, ValidationError, storage_errors
from socialchat.models.conversation import ConversationDocument


def to_object_id(value, what: str = "conversation") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise NotFoundError(f"{what.capitalize()} not found")
    return ObjectId(value)


_EPOCH = datetime(1970, 1, 1)


def encode_cursor(when: datetime, oid) -> str:
    # cursor format: timestamp_ms:object_id_hex
    ts = (when.replace(tzinfo=None) - _EPOCH) // timedelta(milliseconds=1)
    return f"{ts}:{oid}"


def parse_cursor(cursor: str) -> Tuple[datetime, ObjectId]:
    # stored dates come back naive UTC
    try:
        ts_str, oid_hex = cursor.split(":", 1)
        ts = _EPOCH + timedelta(milliseconds=int(ts_str))
        return ts, ObjectId(oid_hex)
    except Exception as exc:
        raise ValidationError("Invalid cursor") from exc


class ConversationRepository:
    """
    Conversation records: fixed participant set, last-message pointer and one
    unread counter per participant.

    Counter and pointer writes are single-document field updates ($inc/$set),
    so concurrent sends never overwrite each other's increments.
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def create(self, participants: Iterable[str]) -> ConversationDocument:
        members = sorted(dict.fromkeys(p for p in participants if p))
        if len(members) < 2:
            raise ValidationError("A conversation needs at least two distinct participants")
        now = datetime.now(timezone.utc)
        doc: ConversationDocument = {
            "participants": members,
            "last_message_id": None,
            "unread_counts": {user_id: 0 for user_id in members},
            "created_at": now,
            "updated_at": now,
        }
        with storage_errors("create conversation"):
            result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    async def get_or_create_direct(self, user_a: str, user_b: str) -> ConversationDocument:
        participants = sorted([user_a, user_b])
        with storage_errors("load conversation"):
            existing = await self.collection.find_one({"participants": participants})
        if existing:
            existing["_id"] = str(existing.get("_id"))
            return existing
        return await self.create(participants)

    async def find_by_id(self, conversation_id) -> ConversationDocument:
        oid = to_object_id(conversation_id)
        with storage_errors("load conversation"):
            doc = await self.collection.find_one({"_id": oid})
        if not doc:
            raise NotFoundError("Conversation not found")
        doc["_id"] = str(doc["_id"])
        return doc

    async def list_for_user(
        self, user_id: str, limit: int = 50, cursor: Optional[str] = None
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Most recently active first; `next_cursor` is set while more pages may follow."""
        if limit < 1:
            raise ValidationError("limit must be positive")
        query: Dict[str, Any] = {"participants": user_id}
        sort = [("updated_at", DESCENDING), ("_id", DESCENDING)]
        if cursor:
            ts, oid = parse_cursor(cursor)
            query["$or"] = [
                {"updated_at": {"$lt": ts}},
                {"updated_at": ts, "_id": {"$lt": oid}},
            ]
        with storage_errors("list conversations"):
            items = await self.collection.find(query).sort(sort).limit(limit).to_list(length=limit)
        for it in items:
            it["_id"] = str(it.get("_id"))
            it["unread_count"] = int((it.get("unread_counts") or {}).get(user_id, 0))
        next_cursor = None
        if len(items) == limit:
            last = items[-1]
            next_cursor = encode_cursor(last["updated_at"], last["_id"])
        return items, next_cursor

    async def search_by_participant_ids(self, user_id: str, other_ids: List[str]) -> List[Dict[str, Any]]:
        """Conversations of `user_id` that include at least one of `other_ids`."""
        others = [o for o in other_ids if o != user_id]
        if not others:
            return []
        query = {"$and": [{"participants": user_id}, {"participants": {"$in": others}}]}
        sort = [("updated_at", DESCENDING), ("_id", DESCENDING)]
        items = []
        with storage_errors("search conversations"):
            async for it in self.collection.find(query).sort(sort):
                it["_id"] = str(it.get("_id"))
                it["unread_count"] = int((it.get("unread_counts") or {}).get(user_id, 0))
                items.append(it)
        return items

    async def touch_last_message(self, conversation_id, message_id) -> None:
        # Last writer wins; the message collection stays the ordering source.
        oid = to_object_id(conversation_id)
        with storage_errors("update last message"):
            await self.collection.update_one(
                {"_id": oid},
                {
                    "$set": {
                        "last_message_id": to_object_id(message_id, "message"),
                        "updated_at": datetime.now(timezone.utc),
                    }
                },
            )

    async def increment_unread(self, conversation_id, exclude_user: str) -> Dict[str, int]:
        oid = to_object_id(conversation_id)
        with storage_errors("load conversation"):
            doc = await self.collection.find_one({"_id": oid}, {"participants": 1})
        if not doc:
            raise NotFoundError("Conversation not found")
        increments = {
            f"unread_counts.{participant}": 1
            for participant in doc.get("participants", [])
            if participant != exclude_user
        }
        if not increments:
            return {}
        with storage_errors("increment unread counters"):
            updated = await self.collection.find_one_and_update(
                {"_id": oid},
                {"$inc": increments},
                projection={"unread_counts": 1},
                return_document=ReturnDocument.AFTER,
            )
        return dict((updated or {}).get("unread_counts") or {})

    async def reset_unread(self, conversation_id, user_id: str) -> None:
        oid = to_object_id(conversation_id)
        with storage_errors("reset unread counter"):
            await self.collection.update_one(
                {"_id": oid, "participants": user_id},
                {"$set": {f"unread_counts.{user_id}": 0}},
            )

    async def set_unread_counts(self, conversation_id, counts: Dict[str, int]) -> None:
        if not counts:
            return
        oid = to_object_id(conversation_id)
        with storage_errors("rewrite unread counters"):
            await self.collection.update_one(
                {"_id": oid},
                {"$set": {f"unread_counts.{user_id}": int(n) for user_id, n in counts.items()}},
            )

    async def set_last_message(self, conversation_id, message_id: Optional[str]) -> None:
        """Repoint last_message_id without touching updated_at (reconciliation)."""
        oid = to_object_id(conversation_id)
        value = to_object_id(message_id, "message") if message_id else None
        with storage_errors("repoint last message"):
            await self.collection.update_one({"_id": oid}, {"$set": {"last_message_id": value}})

    async def flag_for_reconcile(self, conversation_id) -> None:
        """Mark the pointer and counters as untrusted after a failed propagation step."""
        oid = to_object_id(conversation_id)
        with storage_errors("flag conversation for reconcile"):
            await self.collection.update_one({"_id": oid}, {"$set": {"needs_reconcile": True}})

    async def claim_reconcile(self, conversation_id) -> bool:
        """Clear the reconcile flag; True only for the caller that cleared it."""
        oid = to_object_id(conversation_id)
        with storage_errors("claim reconcile"):
            doc = await self.collection.find_one_and_update(
                {"_id": oid, "needs_reconcile": True},
                {"$set": {"needs_reconcile": False}},
                projection={"_id": 1},
            )
        return doc is not None
