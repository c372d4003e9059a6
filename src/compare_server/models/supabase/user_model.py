"""
User Store (relational backend)

Users are rows of the ``profiles`` table, keyed by the id the hosted auth
service assigned. Authentication itself (passwords, tokens) stays with the
auth service; this store only manages the profile.
"""

from __future__ import annotations

from typing import Any

from ...config.logfire_config import get_logger
from ...db.adapter import TableAdapter, first_row, run_query
from ...db.errors import translate_error
from ...db.filters import IsNull, Like
from ...db.protocol import DatabaseClient
from ..interface import Document
from ..shapes import parse_timestamp, select_fields, user_document, utc_now

logger = get_logger(__name__)

PROFILES_TABLE = "profiles"
TRANSACTIONS_TABLE = "transactions"
REMAINING_COMPARISONS_RPC = "get_remaining_comparisons"

DEFAULT_PREFERENCES = {"language": "en", "theme": "auto"}

# legacy user field -> profiles column
USER_COLUMNS = {
    "_id": "id",
    "id": "id",
    "name": "name",
    "username": "username",
    "email": "email",
    "avatar": "avatar",
    "role": "role",
    "provider": "provider",
    "emailVerified": "email_verified",
    "plan": "subscription_plan",
    "comparisonsCount": "comparisons_count",
    "tokenCredits": "token_balance",
    "preferences": "preferences",
    "lastActiveAt": "last_active_at",
    "deletedAt": "deleted_at",
}

# Owned by the auth service, never written to profiles
AUTH_FIELDS = ("password", "refreshToken", "totpSecret", "backupCodes")


def profile_to_document(row: dict[str, Any]) -> Document:
    """Reshape a profiles row into the legacy user document."""
    doc = user_document(
        name=row.get("name"),
        username=row.get("username"),
        email=row.get("email"),
        avatar=row.get("avatar"),
        role=row.get("role") or "user",
        provider=row.get("provider") or "email",
        emailVerified=bool(row.get("email_verified")),
        plan=row.get("subscription_plan") or "free",
        comparisonsCount=row.get("comparisons_count") or 0,
        preferences=row.get("preferences") or {},
        lastActiveAt=parse_timestamp(row.get("last_active_at")),
        deletedAt=parse_timestamp(row.get("deleted_at")),
        createdAt=parse_timestamp(row.get("created_at")),
        updatedAt=parse_timestamp(row.get("updated_at")),
    )
    doc["_id"] = row.get("id")
    doc["id"] = row.get("id")
    return doc


def profile_criteria(criteria: Document | None) -> dict[str, Any]:
    return {USER_COLUMNS.get(k, k): v for k, v in (criteria or {}).items()}


class SupabaseUserStore:
    """User operations over the profiles table."""

    def __init__(self, client: DatabaseClient):
        self.client = client
        self.profiles = TableAdapter(PROFILES_TABLE, client)
        self.transactions = TableAdapter(TRANSACTIONS_TABLE, client)

    async def _apply_updates(self, user_id: str, data: Document) -> dict[str, Any]:
        """
        Translate a document-style update into profile columns.

        Dotted keys (preferences.theme) are merged into the existing JSON
        bag so sibling keys survive.
        """
        row: dict[str, Any] = {}
        nested: dict[str, dict[str, Any]] = {}
        for key, value in data.items():
            if key in AUTH_FIELDS:
                logger.warning(f"[update_user] Ignoring {key}: managed by the auth service")
                continue
            if "." in key:
                parent, child = key.split(".", 1)
                nested.setdefault(USER_COLUMNS.get(parent, parent), {})[child] = value
            elif key in ("_id", "id"):
                continue
            else:
                row[USER_COLUMNS.get(key, key)] = value

        if nested:
            current = await self.profiles.find_by_id(user_id, select=",".join(["id", *nested]))
            for column, values in nested.items():
                base = {**((current or {}).get(column) or {}), **row.get(column, {})}
                row[column] = {**base, **values}
        return row

    async def find_user(self, criteria: Document, fields: str = "*") -> Document | None:
        """
        First user matching criteria.

        Args:
            criteria: e.g. {"email": "a@b.c"} or {"$or": [{"email": x}, {"username": x}]}
            fields: space separated field list; "-field" exclusions are ignored
        """
        alternatives = criteria.get("$or") if "$or" in criteria else [criteria]
        for alternative in alternatives:
            row = await self.profiles.find_one(profile_criteria(alternative))
            if row:
                return select_fields(profile_to_document(row), fields)
        return None

    async def get_user_by_id(self, user_id: str, fields: str = "*") -> Document | None:
        row = await self.profiles.find_by_id(user_id)
        return select_fields(profile_to_document(row), fields) if row else None

    async def create_user(self, data: Document, balance_config: Document | None = None) -> Document:
        """
        Create the profile for an identity the auth service already created.

        With an enabled balance and a start balance, records the opening
        credit and sets the balance through the atomic increment.
        """
        user_id = data.get("id") or data.get("_id")
        if not user_id:
            raise ValueError("create_user requires the auth service user id")

        balance_config = balance_config or {}
        row = {
            "name": data.get("name"),
            "username": data.get("username"),
            "email": data.get("email"),
            "avatar": data.get("avatar"),
            "role": data.get("role") or "user",
            "provider": data.get("provider") or "email",
            "email_verified": bool(data.get("emailVerified", False)),
            "subscription_plan": "trial" if balance_config.get("enabled") else "free",
            "preferences": {**DEFAULT_PREFERENCES, **(data.get("preferences") or {})},
        }
        profile = await self.profiles.upsert({"id": user_id}, row, on_conflict="id")

        start_balance = balance_config.get("startBalance")
        if balance_config.get("enabled") and start_balance:
            await self.transactions.create(
                {
                    "user_id": user_id,
                    "type": "credit",
                    "amount": start_balance,
                    "currency": "credits",
                    "description": "Initial account balance",
                    "metadata": {
                        "tokenType": "credits",
                        "context": "initial_balance",
                        "rawAmount": start_balance,
                        "tokenValue": start_balance,
                    },
                }
            )
            await self.profiles.increment("id", user_id, "token_balance", start_balance, floor=0)

        return profile_to_document(profile)

    async def update_user(self, user_id: str, data: Document) -> Document | None:
        updates = data.get("$set", data)
        row = await self._apply_updates(user_id, updates)
        if not row:
            return await self.get_user_by_id(user_id)
        updated = await self.profiles.find_by_id_and_update(user_id, row)
        return profile_to_document(updated) if updated else None

    async def delete_user_by_id(self, user_id: str, hard_delete: bool = False) -> bool:
        """
        Soft delete by default: stamp deleted_at, free the email and username.
        """
        if hard_delete:
            return await self.profiles.find_by_id_and_delete(user_id) is not None

        updated = await self.profiles.find_by_id_and_update(
            user_id,
            {
                "deleted_at": utc_now().isoformat(),
                "email": f"deleted_{user_id}@deleted.local",
                "username": None,
            },
        )
        return updated is not None

    async def count_users(self, criteria: Document | None = None) -> int:
        return await self.profiles.count_documents(profile_criteria(criteria))

    async def get_users_by_ids(self, user_ids: list[str], fields: str = "*") -> list[Document]:
        if not user_ids:
            return []
        rows = await self.profiles.find({"id": {"$in": list(user_ids)}})
        return [select_fields(profile_to_document(row), fields) for row in rows]

    async def search_users(self, term: str, limit: int = 20, offset: int = 0) -> list[Document]:
        """Case-insensitive match on name, username or email, skipping deleted users."""
        if not term:
            return []
        found: dict[str, dict[str, Any]] = {}
        for column in ("name", "username", "email"):
            rows = await self.profiles.find([Like(column, term), IsNull("deleted_at")])
            for row in rows:
                found.setdefault(row["id"], row)

        ordered = sorted(found.values(), key=lambda r: ((r.get("name") or "").lower(), r["id"]))
        return [profile_to_document(row) for row in ordered[offset: offset + limit]]

    async def update_last_activity(self, user_id: str) -> bool:
        updated = await self.profiles.find_by_id_and_update(
            user_id, {"last_active_at": utc_now().isoformat()}
        )
        return updated is not None

    async def increment_comparison_count(self, user_id: str) -> int | None:
        return await self.profiles.increment("id", user_id, "comparisons_count", 1)

    async def get_remaining_comparisons(self, user_id: str) -> int | None:
        """Comparisons left under the user's plan, computed by the database."""
        try:
            response = await run_query(self.client.rpc(REMAINING_COMPARISONS_RPC, {"p_user_id": user_id}))
        except Exception as e:
            error = translate_error(e, f"{PROFILES_TABLE}.get_remaining_comparisons")
            logger.error(f"[get_remaining_comparisons] {error.message}")
            raise error from e
        row = first_row(response)
        return None if row is None else row.get("remaining")
