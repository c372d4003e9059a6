"""
Transaction Store (MongoDB backend)

Ledger rows in ``transactions``, running balances in ``balances``.
"""

from __future__ import annotations

from typing import Any

from pymongo.database import Database

from ...config.logfire_config import get_logger
from ...db.filters import parse_criteria, to_mongo_query
from ..interface import Document
from ..shapes import TRANSACTION_DEFAULTS, transaction_document
from ..token_values import calculate_structured_token_value, calculate_token_value, is_invalid_amount
from .collection import MongoCollection, mongo_time, plain

logger = get_logger(__name__)

LEDGER_FIELDS = (
    "user",
    "conversationId",
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

BALANCE_FIELDS = (
    "tokenCredits",
    "autoRefillEnabled",
    "refillIntervalValue",
    "refillIntervalUnit",
    "refillAmount",
    "lastRefill",
)


def transaction_to_document(doc: dict[str, Any]) -> Document:
    doc = plain(doc)
    out = transaction_document(**{k: doc[k] for k in TRANSACTION_DEFAULTS if k in doc})
    out["_id"] = doc.get("_id")
    return out


def balance_to_document(doc: dict[str, Any]) -> Document:
    doc = plain(doc)
    out = {"user": doc.get("user"), **{k: doc.get(k) for k in BALANCE_FIELDS}}
    out["tokenCredits"] = out["tokenCredits"] or 0
    out["autoRefillEnabled"] = bool(out["autoRefillEnabled"])
    return out


class MongoTransactionStore:
    """Ledger and balance operations over the transactions and balances collections."""

    def __init__(self, database: Database):
        self.transactions = MongoCollection(database, "transactions")
        self.balances = MongoCollection(database, "balances")

    async def _record(self, txn: Document) -> Document:
        doc = {k: txn.get(k) for k in LEDGER_FIELDS if txn.get(k) is not None}
        doc["createdAt"] = mongo_time()
        saved = await self.transactions.insert_one(doc)
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
        docs = await self.transactions.find(
            to_mongo_query(parse_criteria(filter)), sort=[("createdAt", -1)]
        )
        return [transaction_to_document(doc) for doc in docs]

    async def create_transaction(
        self, data: Document, balance: Document | None = None, transactions: Document | None = None
    ) -> Document | None:
        if is_invalid_amount(data.get("rawAmount")):
            return None
        if (transactions or {}).get("enabled") is False:
            return None

        txn = calculate_token_value(data)
        await self._record(txn)
        return await self._charge(txn, balance)

    async def create_structured_transaction(
        self, data: Document, balance: Document | None = None, transactions: Document | None = None
    ) -> Document | None:
        if (transactions or {}).get("enabled") is False:
            return None

        txn = calculate_structured_token_value(data)
        await self._record(txn)
        return await self._charge(txn, balance)

    async def create_auto_refill_transaction(self, data: Document) -> Document | None:
        if is_invalid_amount(data.get("rawAmount")):
            return None

        txn = calculate_token_value(data)
        transaction = await self._record(txn)
        updated = await self.update_balance(
            txn["user"], data.get("rawAmount") or 0, {"lastRefill": mongo_time()}
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
        new_balance = await self.balances.increment(
            {"user": user}, "tokenCredits", increment_value, floor=0, upsert=True
        )
        if set_values:
            values = {k: mongo_time(v) if k == "lastRefill" else v for k, v in set_values.items()}
            await self.balances.update_one({"user": user}, {"$set": values})
        return {"user": user, "tokenCredits": new_balance}

    async def get_balance(self, user: str) -> Document | None:
        doc = await self.balances.find_one({"user": user})
        return balance_to_document(doc) if doc else None
