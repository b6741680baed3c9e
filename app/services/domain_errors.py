"""Exceptions raised by the domain activation services and provider adapters."""
import re
from typing import Optional

from app.config import settings


class DomainError(Exception):
    """Base class for domain activation failures."""


class DomainOrderNotFound(DomainError):
    def __init__(self, order_id):
        super().__init__(f"Domain order {order_id} not found")
        self.order_id = order_id


class ProviderNotConfigured(DomainError):
    """Platform DNS provider credentials are absent."""


class ProviderError(DomainError):
    """The provider explicitly rejected a request (persisted as an order error)."""

    def __init__(self, message: str, code: Optional[int] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class ProviderTransientError(DomainError):
    """Timeout, network failure or 5xx. Never persisted; the caller may retry."""


_WHITESPACE = re.compile(r"\s+")


def sanitize_provider_message(message: object, max_length: Optional[int] = None) -> str:
    """Collapse whitespace and truncate provider text for tenant display."""
    limit = max_length or settings.PROVIDER_ERROR_MAX_LENGTH
    text = _WHITESPACE.sub(" ", str(message or "")).strip()
    if not text:
        text = "Unknown provider error"
    if len(text) > limit:
        text = text[: limit - 3].rstrip() + "..."
    return text


class DomainNotPublishable(DomainError):
    """Publishing requires active DNS and SSL plus a bound persona."""
