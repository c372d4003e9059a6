"""
Signed token values for usage transactions.

Debits are negative, credits positive. A completion that ended early
(context "incomplete") is charged CANCEL_RATE times the normal value.
"""

from __future__ import annotations

import math
from typing import Any

from .tx import get_cache_multiplier, get_multiplier

CANCEL_RATE = 1.15


def is_invalid_amount(raw_amount: Any) -> bool:
    """True for amounts that must not be recorded (NaN or non-numeric)."""
    if raw_amount is None:
        return False
    try:
        return math.isnan(float(raw_amount))
    except (TypeError, ValueError):
        return True


def _is_cancelled_completion(txn: dict[str, Any]) -> bool:
    return txn.get("tokenType") == "completion" and txn.get("context") == "incomplete"


def calculate_token_value(txn: dict[str, Any]) -> dict[str, Any]:
    """
    Compute tokenValue and rate for a plain transaction.

    Returns a copy of txn with ``tokenValue`` and ``rate`` set.
    """
    result = dict(txn)
    raw_amount = result.get("rawAmount") or 0
    if not result.get("valueKey") or not result.get("tokenType"):
        result["tokenValue"] = raw_amount
        return result

    multiplier = abs(
        get_multiplier(
            value_key=result.get("valueKey"),
            token_type=result.get("tokenType"),
            model=result.get("model"),
            endpoint_token_config=result.get("endpointTokenConfig"),
        )
    )
    result["rate"] = multiplier
    result["tokenValue"] = raw_amount * multiplier

    if _is_cancelled_completion(result):
        result["tokenValue"] = math.ceil(result["tokenValue"] * CANCEL_RATE)
        result["rate"] = multiplier * CANCEL_RATE
    return result


def calculate_structured_token_value(txn: dict[str, Any]) -> dict[str, Any]:
    """
    Compute tokenValue for a transaction that splits prompt tokens into
    input, cache-write and cache-read counts.

    Returns a copy of txn with ``tokenValue``, ``rate``, ``rawAmount`` and,
    for prompt tokens, ``rateDetail`` set.
    """
    result = dict(txn)
    token_type = result.get("tokenType")
    if not token_type:
        result["tokenValue"] = result.get("rawAmount") or 0
        return result

    model = result.get("model")
    config = result.get("endpointTokenConfig")

    if token_type == "prompt":
        input_rate = get_multiplier(token_type="prompt", model=model, endpoint_token_config=config)
        write_rate = get_cache_multiplier(cache_type="write", model=model, endpoint_token_config=config)
        read_rate = get_cache_multiplier(cache_type="read", model=model, endpoint_token_config=config)
        write_rate = input_rate if write_rate is None else write_rate
        read_rate = input_rate if read_rate is None else read_rate

        result["rateDetail"] = {"input": input_rate, "write": write_rate, "read": read_rate}

        input_tokens = abs(result.get("inputTokens") or 0)
        write_tokens = abs(result.get("writeTokens") or 0)
        read_tokens = abs(result.get("readTokens") or 0)
        total_prompt_tokens = input_tokens + write_tokens + read_tokens

        weighted = input_tokens * input_rate + write_tokens * write_rate + read_tokens * read_rate
        if total_prompt_tokens > 0:
            result["rate"] = abs(weighted) / total_prompt_tokens
        else:
            result["rate"] = abs(input_rate)

        result["tokenValue"] = -weighted
        result["rawAmount"] = -total_prompt_tokens

    elif token_type == "completion":
        multiplier = get_multiplier(token_type="completion", model=model, endpoint_token_config=config)
        raw_amount = abs(result.get("rawAmount") or 0)
        result["rate"] = abs(multiplier)
        result["tokenValue"] = -raw_amount * multiplier
        result["rawAmount"] = -raw_amount

    if _is_cancelled_completion(result):
        result["tokenValue"] = math.ceil(result["tokenValue"] * CANCEL_RATE)
        result["rate"] = result["rate"] * CANCEL_RATE
        if result.get("rateDetail"):
            result["rateDetail"] = {k: v * CANCEL_RATE for k, v in result["rateDetail"].items()}
    return result
