from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from socialchat.core.errors import ValidationError, storage_errors
from socialchat.models.message import MessageDocument
from socialchat.repositories.conversation_repository import encode_cursor, parse_cursor, to_object_id
from socialchat.schemas.message import TextPayload, build_payload


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def append(
        self,
        conversation_id,
        sender_id: str,
        kind: Optional[str] = None,
        content: Optional[str] = None,
        media_ref: Optional[str] = None,
    ) -> MessageDocument:
        payload = build_payload(kind, content=content, media_ref=media_ref)
        is_text = isinstance(payload, TextPayload)
        doc: MessageDocument = {
            "conversation_id": to_object_id(conversation_id),
            "sender_id": sender_id,
            "kind": payload.kind,
            "content": payload.content if is_text else None,
            "media_ref": None if is_text else payload.media_ref,
            "read_by": [sender_id],
            "created_at": datetime.now(timezone.utc),
        }
        with storage_errors("append message"):
            result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    async def find_by_id(self, message_id) -> Optional[MessageDocument]:
        if not ObjectId.is_valid(str(message_id)):
            return None
        with storage_errors("load message"):
            doc = await self.collection.find_one({"_id": ObjectId(str(message_id))})
        if doc:
            doc["_id"] = str(doc["_id"])
        return doc

    async def find_many(self, message_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        oids = [ObjectId(str(m)) for m in message_ids if m and ObjectId.is_valid(str(m))]
        if not oids:
            return {}
        with storage_errors("load messages"):
            docs = await self.collection.find({"_id": {"$in": oids}}).to_list(length=len(oids))
        found = {}
        for doc in docs:
            doc["_id"] = str(doc["_id"])
            found[doc["_id"]] = doc
        return found

    async def list_by_conversation(
        self,
        conversation_id,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Newest first, at most `limit` messages, optionally older than `cursor`."""
        if limit < 1:
            raise ValidationError("limit must be positive")
        query: Dict[str, Any] = {"conversation_id": to_object_id(conversation_id)}
        sort = [("created_at", -1), ("_id", -1)]
        if cursor:
            ts, oid = parse_cursor(cursor)
            query["$or"] = [
                {"created_at": {"$lt": ts}},
                {"created_at": ts, "_id": {"$lt": oid}},
            ]
        with storage_errors("list messages"):
            items = await self.collection.find(query).sort(sort).limit(limit).to_list(length=limit)
        for it in items:
            it["_id"] = str(it.get("_id"))
        next_cursor = None
        if len(items) == limit:
            last = items[-1]
            next_cursor = encode_cursor(last["created_at"], last["_id"])
        return items, next_cursor

    async def latest_message_id(self, conversation_id) -> Optional[str]:
        with storage_errors("load latest message"):
            docs = await (
                self.collection.find({"conversation_id": to_object_id(conversation_id)}, {"_id": 1})
                .sort([("created_at", -1), ("_id", -1)])
                .limit(1)
                .to_list(length=1)
            )
        return str(docs[0]["_id"]) if docs else None

    async def mark_read_by_others(self, conversation_id, reader_id: str) -> int:
        """Add `reader_id` to read_by of every message sent by someone else. Idempotent."""
        with storage_errors("mark messages read"):
            result = await self.collection.update_many(
                {
                    "conversation_id": to_object_id(conversation_id),
                    "sender_id": {"$ne": reader_id},
                    "read_by": {"$ne": reader_id},
                },
                {"$addToSet": {"read_by": reader_id}},
            )
        return result.modified_count or 0

    async def count_unread_for(self, conversation_id, user_id: str) -> int:
        with storage_errors("count unread messages"):
            return await self.collection.count_documents(
                {
                    "conversation_id": to_object_id(conversation_id),
                    "sender_id": {"$ne": user_id},
                    "read_by": {"$ne": user_id},
                }
            )

