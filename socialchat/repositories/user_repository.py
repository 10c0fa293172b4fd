import re
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from socialchat.core.errors import storage_errors
from socialchat.models.user import UserDocument


class UserRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    async def create_user(
        self,
        username: str,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
        avatar_ref: Optional[str] = None,
    ) -> str:

        doc: UserDocument = {
            "username": username,
            "email": email,
            "display_name": display_name or username,
            "avatar_ref": avatar_ref,
        }
        with storage_errors("create user"):
            result = await self._collection.insert_one(doc)
        return str(result.inserted_id)

    async def get_user_by_id(self, user_id: str) -> Optional[UserDocument]:
        if not ObjectId.is_valid(user_id):
            return None
        with storage_errors("load user"):
            user = await self._collection.find_one({"_id": ObjectId(user_id)})
        if user:
            user["_id"] = str(user["_id"])  # normalize to string for API layer
        return user

    async def get_summaries(self, user_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        """Resolve user ids to {id, display_name, avatar_ref}; unknown ids resolve to a bare id."""
        ids = list(dict.fromkeys(user_ids))
        oids = [ObjectId(u) for u in ids if ObjectId.is_valid(u)]
        found: Dict[str, Dict[str, Any]] = {}
        if oids:
            with storage_errors("load users"):
                cursor = self._collection.find(
                    {"_id": {"$in": oids}},
                    {"display_name": 1, "username": 1, "avatar_ref": 1},
                )
                async for doc in cursor:
                    uid = str(doc["_id"])
                    found[uid] = {
                        "id": uid,
                        "display_name": doc.get("display_name") or doc.get("username"),
                        "avatar_ref": doc.get("avatar_ref"),
                    }
        return {uid: found.get(uid, {"id": uid, "display_name": None, "avatar_ref": None}) for uid in ids}

    async def find_ids_matching(self, query: str, exclude: Optional[str] = None) -> List[str]:
        """
        Ids of users whose display name or identifier contains `query`
        (case-insensitive). The username is the user-facing identifier; email
        is matched the same way, and a full ObjectId also matches exactly.
        """
        pattern = {"$regex": re.escape(query), "$options": "i"}
        clauses: List[Dict[str, Any]] = [
            {"display_name": pattern},
            {"username": pattern},
            {"email": pattern},
        ]
        if ObjectId.is_valid(query):
            clauses.append({"_id": ObjectId(query)})
        with storage_errors("search users"):
            ids = [str(oid) for oid in await self._collection.distinct("_id", {"$or": clauses})]
        return [uid for uid in ids if uid != exclude]
