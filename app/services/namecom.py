"""
Name.com registrar adapter

Delegates a registered domain to the nameservers of its Cloudflare zone.
A `full` zone only activates once the registrar points at Cloudflare, so
setup calls this right after the CNAME is in place. Failures are reported
to the caller and never stored on the order.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol

import httpx

from app.config import settings
from app.middleware.metrics import PROVIDER_CALLS
from app.services.domain_errors import (
    ProviderError,
    ProviderNotConfigured,
    ProviderTransientError,
)

logger = logging.getLogger("personas.domains.registrar")


class RegistrarProvider(Protocol):
    @property
    def configured(self) -> bool: ...

    async def set_nameservers(self, domain: str, nameservers: List[str]) -> None: ...


@dataclass(frozen=True)
class NamecomCredentials:
    username: str
    api_token: str

    @classmethod
    def from_settings(cls) -> "NamecomCredentials":
        return cls(username=settings.NAMECOM_USERNAME, api_token=settings.NAMECOM_API_TOKEN)

    @property
    def configured(self) -> bool:
        return bool(self.username and self.api_token)


class NamecomRegistrar:
    def __init__(
        self,
        credentials: NamecomCredentials,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = credentials
        self.base_url = (base_url or settings.NAMECOM_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.NAMECOM_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def configured(self) -> bool:
        return self.credentials.configured

    async def set_nameservers(self, domain: str, nameservers: List[str]) -> None:
        if not self.configured:
            raise ProviderNotConfigured("Name.com username or API token is not configured")

        logger.info("Updating nameservers at Name.com for %s: %s", domain, ", ".join(nameservers))
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    f"/domains/{domain}:setNameservers",
                    json={"nameservers": nameservers},
                    auth=(self.credentials.username, self.credentials.api_token),
                )
        except httpx.TimeoutException as e:
            PROVIDER_CALLS.labels(operation="set_nameservers", outcome="transient").inc()
            raise ProviderTransientError("Name.com did not respond in time") from e
        except httpx.TransportError as e:
            PROVIDER_CALLS.labels(operation="set_nameservers", outcome="transient").inc()
            raise ProviderTransientError("Name.com is temporarily unreachable") from e

        status = response.status_code
        if status >= 500 or status == 429:
            PROVIDER_CALLS.labels(operation="set_nameservers", outcome="transient").inc()
            raise ProviderTransientError(f"Name.com returned HTTP {status}")
        if status in (401, 403):
            PROVIDER_CALLS.labels(operation="set_nameservers", outcome="unauthorized").inc()
            raise ProviderNotConfigured(f"Name.com rejected the API credentials (HTTP {status})")
        if not response.is_success:
            try:
                body = response.json()
            except ValueError:
                body = None
            detail = body.get("message") if isinstance(body, dict) else None
            PROVIDER_CALLS.labels(operation="set_nameservers", outcome="rejected").inc()
            raise ProviderError(
                f"Failed to update Name.com nameservers: {detail or response.reason_phrase}",
                status_code=status,
            )

        PROVIDER_CALLS.labels(operation="set_nameservers", outcome="ok").inc()
        logger.info("Name.com nameservers updated for %s", domain)
