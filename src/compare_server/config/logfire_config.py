"""
Logfire configuration.

Logging goes through the standard library; when LOGFIRE_ENABLED is true and a
LOGFIRE_TOKEN is present, records and spans are also shipped to Logfire.
Everything here is safe to call when Logfire is disabled.
"""

import logging
import os
from contextlib import contextmanager
from typing import Any

import logfire

_logfire_enabled = False
_configured = False


class NoOpSpan:
    """Stand-in span used when Logfire is disabled."""

    def set_attribute(self, key: str, value: Any) -> None:
        pass

    def set_attributes(self, attributes: dict[str, Any]) -> None:
        pass


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def setup_logfire(
    token: str | None = None,
    environment: str | None = None,
    service_name: str = "compare-server",
) -> bool:
    """
    Configure logging once per process.

    Returns:
        True when Logfire is active, False when only local logging is used.
    """
    global _logfire_enabled, _configured
    if _configured:
        return _logfire_enabled

    token = token or os.getenv("LOGFIRE_TOKEN")
    environment = environment or os.getenv("ENVIRONMENT", "development")
    level = os.getenv("LOG_LEVEL", "INFO").upper()

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if _env_flag("LOGFIRE_ENABLED") and token:
        try:
            logfire.configure(
                token=token,
                service_name=service_name,
                environment=environment,
                send_to_logfire="if-token-present",
                console=False,
            )
            handlers.append(logfire.LogfireLoggingHandler())
            _logfire_enabled = True
        except Exception as e:
            logging.getLogger(__name__).warning("Failed to configure Logfire: %s", e)
            _logfire_enabled = False

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        handlers=handlers,
        force=True,
    )
    _configured = True
    return _logfire_enabled


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


@contextmanager
def safe_span(name: str, **attributes: Any):
    """Open a Logfire span, or a no-op span when Logfire is disabled."""
    if _logfire_enabled:
        with logfire.span(name, **attributes) as span:
            yield span
    else:
        yield NoOpSpan()


def safe_logfire_info(message: str, **kwargs: Any) -> None:
    if _logfire_enabled:
        logfire.info(message, **kwargs)


def safe_logfire_error(message: str, **kwargs: Any) -> None:
    if _logfire_enabled:
        logfire.error(message, **kwargs)


def safe_logfire_warning(message: str, **kwargs: Any) -> None:
    if _logfire_enabled:
        logfire.warn(message, **kwargs)
