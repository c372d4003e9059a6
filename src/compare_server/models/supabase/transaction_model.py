"""
Transaction Store (relational backend)

The ``transactions`` table is an append-only ledger of credits and debits.
The balance itself lives on the profile and is only ever changed through the
atomic increment routine, clamped at zero.
"""

from __future__ import annotations

import json
from typing import Any

from ...config.logfire_config import get_logger
from ...db.adapter import TableAdapter
from ...db.errors import DatabaseError, ErrorCode
from ...db.protocol import DatabaseClient
from ..interface import Document
from ..shapes import parse_timestamp, to_iso, transaction_document, utc_now
from ..token_values import calculate_structured_token_value, calculate_token_value, is_invalid_amount

logger = get_logger(__name__)

TRANSACTIONS_TABLE = "transactions"
PROFILES_TABLE = "profiles"

BALANCE_COLUMNS = (
    "id,token_balance,auto_refill_enabled,refill_interval_value,"
    "refill_interval_unit,refill_amount,last_refill"
)

# legacy transaction field -> transactions column
TRANSACTION_COLUMNS = {"user": "user_id", "conversationId": "comparison_session_id"}

# legacy balance field -> profiles column
BALANCE_FIELDS = {
    "tokenCredits": "token_balance",
    "autoRefillEnabled": "auto_refill_enabled",
    "refillIntervalValue": "refill_interval_value",
    "refillIntervalUnit": "refill_interval_unit",
    "refillAmount": "refill_amount",
    "lastRefill": "last_refill",
}

LEDGER_FIELDS = (
    "tokenType",
    "model",
    "context",
    "valueKey",
    "rate",
    "rateDetail",
    "rawAmount",
    "tokenValue",
    "inputTokens",
    "writeTokens",
    "readTokens",
    "endpointTokenConfig",
)


def transaction_to_document(row: dict[str, Any]) -> Document:
    """Reshape a ledger row into the legacy transaction document (signed tokenValue)."""
    metadata = row.get("metadata") or {}
    token_value = metadata.get("tokenValue")
    if token_value is None:
        amount = row.get("amount") or 0
        token_value = amount if row.get("type") == "credit" else -amount
    doc = transaction_document(
        user=row.get("user_id"),
        conversationId=row.get("comparison_session_id"),
        tokenType=metadata.get("tokenType"),
        model=metadata.get("model"),
        context=metadata.get("context"),
        valueKey=metadata.get("valueKey"),
        rate=metadata.get("rate"),
        rawAmount=metadata.get("rawAmount"),
        tokenValue=token_value,
        inputTokens=metadata.get("inputTokens"),
        writeTokens=metadata.get("writeTokens"),
        readTokens=metadata.get("readTokens"),
        createdAt=parse_timestamp(row.get("created_at")),
    )
    doc["_id"] = row.get("id")
    doc["id"] = row.get("id")
    return doc


def balance_to_document(row: dict[str, Any]) -> Document:
    return {
        "user": row.get("id"),
        "tokenCredits": row.get("token_balance") or 0,
        "autoRefillEnabled": bool(row.get("auto_refill_enabled")),
        "refillIntervalValue": row.get("refill_interval_value"),
        "refillIntervalUnit": row.get("refill_interval_unit"),
        "refillAmount": row.get("refill_amount"),
        "lastRefill": to_iso(parse_timestamp(row.get("last_refill"))),
    }


def transaction_filters(filter: Document | None) -> dict[str, Any]:
    """Plain ledger columns map directly; ledger details are matched inside the metadata bag."""
    criteria: dict[str, Any] = {}
    for key, value in (filter or {}).items():
        if key in TRANSACTION_COLUMNS:
            criteria[TRANSACTION_COLUMNS[key]] = value
        elif key == "createdAt":
            criteria["created_at"] = value
        elif key in LEDGER_FIELDS and not isinstance(value, dict):
            criteria[f"metadata->>{key}"] = value if isinstance(value, str) else json.dumps(value)
        else:
            criteria[key] = value
    return criteria


class SupabaseTransactionStore:
    """Ledger and balance operations over the transactions and profiles tables."""

    def __init__(self, client: DatabaseClient):
        self.transactions = TableAdapter(TRANSACTIONS_TABLE, client)
        self.profiles = TableAdapter(PROFILES_TABLE, client)

    async def _record(self, txn: Document, description: str) -> Document:
        """Append one ledger row for a computed transaction."""
        token_value = txn.get("tokenValue") or 0
        row = {
            "user_id": txn.get("user"),
            "type": "credit" if token_value >= 0 else "debit",
            "amount": abs(token_value),
            "currency": "credits",
            "description": description,
            "metadata": {k: txn.get(k) for k in LEDGER_FIELDS if txn.get(k) is not None},
            "comparison_session_id": txn.get("conversationId"),
        }
        saved = await self.transactions.create(row)
        return transaction_to_document(saved)

    async def _charge(self, txn: Document, balance: Document | None) -> Document | None:
        if not (balance or {}).get("enabled"):
            return None
        increment_value = txn["tokenValue"]
        updated = await self.update_balance(txn["user"], increment_value)
        return {
            "rate": txn.get("rate"),
            "user": str(txn["user"]),
            "balance": updated["tokenCredits"],
            txn.get("tokenType") or "tokens": increment_value,
        }

    async def get_transactions(self, filter: Document) -> list[Document]:
        rows = await self.transactions.find(transaction_filters(filter), order_by="created_at:desc")
        return [transaction_to_document(row) for row in rows]

    async def create_transaction(
        self, data: Document, balance: Document | None = None, transactions: Document | None = None
    ) -> Document | None:
        """
        Record a usage transaction and, when balances are enabled, charge it.

        Args:
            data: user, tokenType, rawAmount, model, context, valueKey, conversationId, ...
            balance: balance settings; {"enabled": True} applies the charge
            transactions: ledger settings; {"enabled": False} records nothing

        Returns:
            {"rate", "user", "balance", <tokenType>: value} when charged, else None
        """
        if is_invalid_amount(data.get("rawAmount")):
            return None
        if (transactions or {}).get("enabled") is False:
            return None

        txn = calculate_token_value(data)
        await self._record(txn, f"{txn.get('tokenType')} tokens")
        return await self._charge(txn, balance)

    async def create_structured_transaction(
        self, data: Document, balance: Document | None = None, transactions: Document | None = None
    ) -> Document | None:
        """Like create_transaction, with prompt tokens split into input/cache-write/cache-read."""
        if (transactions or {}).get("enabled") is False:
            return None

        txn = calculate_structured_token_value(data)
        await self._record(txn, f"{txn.get('tokenType')} tokens (structured)")
        return await self._charge(txn, balance)

    async def create_auto_refill_transaction(self, data: Document) -> Document | None:
        """Credit rawAmount to the balance and stamp the refill time."""
        if is_invalid_amount(data.get("rawAmount")):
            return None

        txn = calculate_token_value(data)
        transaction = await self._record(txn, txn.get("context") or "Auto-refill")
        updated = await self.update_balance(
            txn["user"], data.get("rawAmount") or 0, {"lastRefill": utc_now().isoformat()}
        )
        result = {
            "rate": txn.get("rate"),
            "user": str(txn["user"]),
            "balance": updated["tokenCredits"],
            "transaction": transaction,
        }
        logger.debug(f"[Balance.check] Auto-refill performed: {result}")
        return result

    async def update_balance(
        self, user: str, increment_value: float, set_values: Document | None = None
    ) -> Document:
        """
        Atomically add increment_value (may be negative) to the balance, never below zero.

        Raises:
            DatabaseError: NOT_FOUND when the user has no profile
        """
        new_balance = await self.profiles.increment("id", user, "token_balance", increment_value, floor=0)
        if new_balance is None:
            raise DatabaseError(
                ErrorCode.NOT_FOUND,
                f"Failed to update balance for user {user}",
                context="profiles.update_balance",
            )

        if set_values:
            columns = {BALANCE_FIELDS.get(k, k): v for k, v in set_values.items()}
            await self.profiles.find_by_id_and_update(user, columns)
        return {"user": user, "tokenCredits": new_balance}

    async def get_balance(self, user: str) -> Document | None:
        row = await self.profiles.find_by_id(user, select=BALANCE_COLUMNS)
        return balance_to_document(row) if row else None
