"""
Token rate table.

Rates are USD per million tokens; one token credit is worth 1/1,000,000 USD,
so a rate doubles as the credit multiplier for one token.
"""

from __future__ import annotations

from typing import Any

DEFAULT_RATE = 6

TOKEN_VALUES: dict[str, dict[str, float]] = {
    "8k": {"prompt": 30, "completion": 60},
    "32k": {"prompt": 60, "completion": 120},
    "4k": {"prompt": 1.5, "completion": 2},
    "16k": {"prompt": 3, "completion": 4},
    "gpt-3.5-turbo": {"prompt": 0.5, "completion": 1.5},
    "gpt-4": {"prompt": 30, "completion": 60},
    "gpt-4-1106": {"prompt": 10, "completion": 30},
    "gpt-4o": {"prompt": 2.5, "completion": 10},
    "gpt-4o-mini": {"prompt": 0.15, "completion": 0.6},
    "gpt-4.1": {"prompt": 2, "completion": 8},
    "gpt-4.1-mini": {"prompt": 0.4, "completion": 1.6},
    "o1": {"prompt": 15, "completion": 60},
    "o3-mini": {"prompt": 1.1, "completion": 4.4},
    "claude-3-opus": {"prompt": 15, "completion": 75},
    "claude-3-sonnet": {"prompt": 3, "completion": 15},
    "claude-3-5-sonnet": {"prompt": 3, "completion": 15},
    "claude-3.5-sonnet": {"prompt": 3, "completion": 15},
    "claude-3-7-sonnet": {"prompt": 3, "completion": 15},
    "claude-3-haiku": {"prompt": 0.25, "completion": 1.25},
    "claude-3-5-haiku": {"prompt": 0.8, "completion": 4},
    "gemini-1.5": {"prompt": 2.5, "completion": 10},
    "gemini-2.0-flash": {"prompt": 0.1, "completion": 0.4},
    "mistral-large": {"prompt": 2, "completion": 6},
    "command-r": {"prompt": 0.5, "completion": 1.5},
}

CACHE_TOKEN_VALUES: dict[str, dict[str, float]] = {
    "claude-3-5-sonnet": {"write": 3.75, "read": 0.3},
    "claude-3.5-sonnet": {"write": 3.75, "read": 0.3},
    "claude-3-7-sonnet": {"write": 3.75, "read": 0.3},
    "claude-3-haiku": {"write": 0.3, "read": 0.03},
    "claude-3-5-haiku": {"write": 1, "read": 0.08},
}


def get_value_key(model: str | None) -> str | None:
    """Most specific rate table key contained in the model name."""
    if not model:
        return None
    name = model.lower()
    if name in TOKEN_VALUES:
        return name
    matches = [key for key in TOKEN_VALUES if key in name]
    if not matches:
        return None
    return max(matches, key=len)


def get_multiplier(
    *,
    value_key: str | None = None,
    token_type: str | None = None,
    model: str | None = None,
    endpoint_token_config: dict[str, Any] | None = None,
) -> float:
    if endpoint_token_config:
        return (endpoint_token_config.get(model or "") or {}).get(token_type, DEFAULT_RATE)

    if value_key and token_type:
        return TOKEN_VALUES.get(value_key, {}).get(token_type, DEFAULT_RATE)

    if not token_type or not model:
        return 1

    value_key = get_value_key(model)
    if not value_key:
        return DEFAULT_RATE

    return TOKEN_VALUES.get(value_key, {}).get(token_type, DEFAULT_RATE)


def get_cache_multiplier(
    *,
    value_key: str | None = None,
    cache_type: str | None = None,
    model: str | None = None,
    endpoint_token_config: dict[str, Any] | None = None,
) -> float | None:
    """Cache write/read rate, or None when the model has no cache pricing."""
    if endpoint_token_config:
        return (endpoint_token_config.get(model or "") or {}).get(cache_type)

    if value_key and cache_type:
        return CACHE_TOKEN_VALUES.get(value_key, {}).get(cache_type)

    if not cache_type or not model:
        return None

    value_key = get_value_key(model)
    if not value_key:
        return None

    return CACHE_TOKEN_VALUES.get(value_key, {}).get(cache_type)
