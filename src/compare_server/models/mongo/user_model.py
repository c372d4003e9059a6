"""
User Store (MongoDB backend)

Has no notion of subscription plan limits, so get_remaining_comparisons is
not provided here.
"""

from __future__ import annotations

import re
from typing import Any

from bson import ObjectId
from pymongo.database import Database

from ...config.logfire_config import get_logger
from ..interface import Document
from ..shapes import USER_DEFAULTS, select_fields, user_document
from .collection import MongoCollection, id_query, mongo_time, plain

logger = get_logger(__name__)

DEFAULT_PREFERENCES = {"language": "en", "theme": "auto"}


def user_to_document(doc: dict[str, Any]) -> Document:
    doc = plain(doc)
    out = user_document(**{k: doc[k] for k in USER_DEFAULTS if k in doc})
    out["_id"] = doc.get("_id")
    return out


def user_query(criteria: Document | None) -> dict[str, Any]:
    """Legacy criteria with string ids matched against ObjectId or string _id."""
    query: dict[str, Any] = {}
    for key, value in (criteria or {}).items():
        if key == "$or":
            query["$or"] = [user_query(c) for c in value]
        elif key in ("_id", "id") and not isinstance(value, dict):
            query.update(id_query(value))
        else:
            query[key] = value
    return query


class MongoUserStore:
    """User operations over the users and balances collections."""

    def __init__(self, database: Database):
        self.users = MongoCollection(database, "users")
        self.balances = MongoCollection(database, "balances")
        self.transactions = MongoCollection(database, "transactions")

    async def find_user(self, criteria: Document, fields: str = "*") -> Document | None:
        doc = await self.users.find_one(user_query(criteria))
        return select_fields(user_to_document(doc), fields) if doc else None

    async def get_user_by_id(self, user_id: str, fields: str = "*") -> Document | None:
        doc = await self.users.find_one(id_query(user_id))
        return select_fields(user_to_document(doc), fields) if doc else None

    async def create_user(self, data: Document, balance_config: Document | None = None) -> Document:
        balance_config = balance_config or {}
        now = mongo_time()
        doc = {
            "_id": data.get("id") or data.get("_id") or ObjectId(),
            "name": data.get("name"),
            "username": data.get("username"),
            "email": data.get("email"),
            "avatar": data.get("avatar"),
            "role": data.get("role") or "user",
            "provider": data.get("provider") or "email",
            "emailVerified": bool(data.get("emailVerified", False)),
            "plan": "trial" if balance_config.get("enabled") else "free",
            "comparisonsCount": 0,
            "preferences": {**DEFAULT_PREFERENCES, **(data.get("preferences") or {})},
            "createdAt": now,
            "updatedAt": now,
        }
        if data.get("password"):
            doc["password"] = data["password"]
        saved = await self.users.insert_one(doc)
        user_id = str(saved["_id"])

        start_balance = balance_config.get("startBalance")
        if balance_config.get("enabled") and start_balance:
            await self.transactions.insert_one(
                {
                    "user": user_id,
                    "tokenType": "credits",
                    "context": "initial_balance",
                    "rawAmount": start_balance,
                    "tokenValue": start_balance,
                    "createdAt": now,
                }
            )
            await self.balances.increment({"user": user_id}, "tokenCredits", start_balance, floor=0, upsert=True)

        return user_to_document(saved)

    async def update_user(self, user_id: str, data: Document) -> Document | None:
        updates = {k: v for k, v in data.get("$set", data).items() if k not in ("_id", "id")}
        updates["updatedAt"] = mongo_time()
        doc = await self.users.find_one_and_update(id_query(user_id), {"$set": updates})
        return user_to_document(doc) if doc else None

    async def delete_user_by_id(self, user_id: str, hard_delete: bool = False) -> bool:
        if hard_delete:
            return await self.users.delete_one(id_query(user_id)) > 0
        doc = await self.users.find_one_and_update(
            id_query(user_id),
            {
                "$set": {
                    "deletedAt": mongo_time(),
                    "email": f"deleted_{user_id}@deleted.local",
                    "username": None,
                    "updatedAt": mongo_time(),
                }
            },
        )
        return doc is not None

    async def count_users(self, criteria: Document | None = None) -> int:
        return await self.users.count_documents(user_query(criteria))

    async def get_users_by_ids(self, user_ids: list[str], fields: str = "*") -> list[Document]:
        if not user_ids:
            return []
        ids: list[Any] = []
        for user_id in user_ids:
            ids.append(user_id)
            if ObjectId.is_valid(user_id):
                ids.append(ObjectId(user_id))
        docs = await self.users.find({"_id": {"$in": ids}})
        return [select_fields(user_to_document(doc), fields) for doc in docs]

    async def search_users(self, term: str, limit: int = 20, offset: int = 0) -> list[Document]:
        if not term:
            return []
        pattern = {"$regex": re.escape(term), "$options": "i"}
        docs = await self.users.find(
            {
                "$or": [{"name": pattern}, {"username": pattern}, {"email": pattern}],
                "deletedAt": None,
            }
        )
        ordered = sorted(docs, key=lambda d: ((d.get("name") or "").lower(), str(d["_id"])))
        return [user_to_document(doc) for doc in ordered[offset: offset + limit]]

    async def update_last_activity(self, user_id: str) -> bool:
        result = await self.users.update_one(id_query(user_id), {"$set": {"lastActiveAt": mongo_time()}})
        return result.matched_count > 0

    async def increment_comparison_count(self, user_id: str) -> int | None:
        return await self.users.increment(id_query(user_id), "comparisonsCount", 1)
