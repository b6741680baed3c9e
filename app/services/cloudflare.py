"""
Cloudflare adapters for custom-domain activation

Two capabilities sit on top of one authenticated HTTP client:
  - CloudflareDnsProvider:         zones, CNAME records, zone activation status
  - CloudflareCertificateProvider: edge certificate request / verification state

Adapters are stateless per call. The only cached value is the token
verification result; zone ids, nameservers and statuses live on the
DomainOrder row.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import settings
from app.middleware.metrics import PROVIDER_CALLS
from app.services.domain_errors import (
    ProviderError,
    ProviderNotConfigured,
    ProviderTransientError,
)

logger = logging.getLogger("personas.domains.cloudflare")

# Cloudflare API error codes
ZONE_ALREADY_EXISTS = 1061
RECORD_ALREADY_EXISTS = (81053, 81057, 81058)
ZONE_GONE = (1001, 7003)
AUTHENTICATION_ERROR = (9109, 10000)

ZONE_ACTIVE = "active"
ZONE_WAITING = ("pending", "initializing")
ZONE_TERMINAL = ("moved", "deleted", "deactivated")

CERT_ACTIVE = "active"
CERT_FAILED = (
    "deleted",
    "expired",
    "inactive",
    "initializing_timed_out",
    "validation_timed_out",
    "issuance_timed_out",
    "deployment_timed_out",
)


# ═══════════════════════════════════════════
#  Value objects
# ═══════════════════════════════════════════

@dataclass(frozen=True)
class CloudflareCredentials:
    api_token: str
    account_id: str

    @classmethod
    def from_settings(cls) -> "CloudflareCredentials":
        return cls(api_token=settings.CLOUDFLARE_API_TOKEN, account_id=settings.CLOUDFLARE_ACCOUNT_ID)

    @property
    def configured(self) -> bool:
        return bool(self.api_token and self.account_id)

    def missing_env_vars(self) -> List[str]:
        missing = []
        if not self.api_token:
            missing.append("CLOUDFLARE_API_TOKEN")
        if not self.account_id:
            missing.append("CLOUDFLARE_ACCOUNT_ID")
        return missing


@dataclass(frozen=True)
class CredentialStatus:
    configured: bool
    token_valid: bool
    token_error: Optional[str] = None


@dataclass(frozen=True)
class Zone:
    id: str
    name: str
    status: str
    name_servers: List[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Zone":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            status=data.get("status", "pending"),
            name_servers=list(data.get("name_servers") or []),
        )


@dataclass(frozen=True)
class PropagationState:
    resolved: bool
    detail: str
    terminal_error: Optional[str] = None


@dataclass(frozen=True)
class CertificateState:
    status: str                      # provisioning | active | error
    detail: str = ""


# ═══════════════════════════════════════════
#  Capability interfaces
# ═══════════════════════════════════════════

class DnsProvider(Protocol):
    @property
    def configured(self) -> bool: ...

    def missing_env_vars(self) -> List[str]: ...

    async def verify_credentials(self) -> CredentialStatus: ...

    async def get_or_create_zone(self, domain: str) -> Zone: ...

    async def get_zone(self, zone_id: str) -> Zone: ...

    async def ensure_cname_record(self, zone_id: str, domain: str, target_host: str) -> str: ...

    async def get_propagation(self, zone_id: str, domain: str, target_host: str) -> PropagationState: ...


class CertificateProvider(Protocol):
    async def request_certificate(self, zone_id: str) -> None: ...

    async def get_certificate_status(self, zone_id: str) -> CertificateState: ...


# ═══════════════════════════════════════════
#  HTTP client
# ═══════════════════════════════════════════

class CloudflareClient:
    """Authenticated Cloudflare v4 API client (bounded timeout, transient retries)."""

    def __init__(
        self,
        credentials: CloudflareCredentials,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_wait=None,
    ):
        self.credentials = credentials
        self.base_url = (base_url or settings.CLOUDFLARE_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.CLOUDFLARE_TIMEOUT_SECONDS
        self.max_retries = max(1, max_retries if max_retries is not None else settings.CLOUDFLARE_MAX_RETRIES)
        self._transport = transport
        self._retry_wait = retry_wait or wait_exponential(multiplier=0.5, min=0.5, max=4)
        self._token_status: Optional[CredentialStatus] = None
        self._token_checked_at = 0.0

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        operation: str = "",
    ) -> Dict[str, Any]:
        """Send a request and return the decoded envelope (success=true only)."""
        if not self.credentials.configured:
            raise ProviderNotConfigured("Cloudflare API token or account id is not configured")

        operation = operation or f"{method} {path}"
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries),
                wait=self._retry_wait,
                retry=retry_if_exception_type(ProviderTransientError),
                reraise=True,
            ):
                with attempt:
                    data = await self._send(method, path, json=json, params=params)
        except ProviderTransientError:
            PROVIDER_CALLS.labels(operation=operation, outcome="transient").inc()
            raise
        except ProviderNotConfigured:
            PROVIDER_CALLS.labels(operation=operation, outcome="unauthorized").inc()
            raise
        except ProviderError:
            PROVIDER_CALLS.labels(operation=operation, outcome="rejected").inc()
            raise
        PROVIDER_CALLS.labels(operation=operation, outcome="ok").inc()
        return data

    async def _send(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.credentials.api_token}",
            "Content-Type": "application/json",
        }
        logger.debug("Cloudflare API %s %s", method, path)
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(method, path, json=json, params=params, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("Cloudflare %s %s timed out", method, path)
            raise ProviderTransientError("Cloudflare did not respond in time, please retry shortly") from e
        except httpx.TransportError as e:
            logger.warning("Cloudflare %s %s failed: %s", method, path, e)
            raise ProviderTransientError("Cloudflare is temporarily unreachable, please retry shortly") from e

        status = response.status_code
        if status >= 500 or status == 429:
            logger.warning("Cloudflare %s %s returned HTTP %d", method, path, status)
            raise ProviderTransientError(f"Cloudflare returned HTTP {status}, please retry shortly")

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            data = None

        errors = (data or {}).get("errors") or []
        message = ", ".join(str(e.get("message", "")) for e in errors if e.get("message")) or f"HTTP {status}"
        code = errors[0].get("code") if errors else None

        # Edge 401/403 pages are often HTML; classify by status before the body
        if status in (401, 403) or code in AUTHENTICATION_ERROR:
            raise ProviderNotConfigured(f"Cloudflare rejected the API token: {message}")
        if data is None:
            raise ProviderError(f"Cloudflare returned a non-JSON response (HTTP {status})", status_code=status)
        if data.get("success"):
            return data
        raise ProviderError(message, code=code, status_code=status)

    async def verify_token(self) -> CredentialStatus:
        """Check the token against Cloudflare; definite results are cached briefly."""
        if not self.credentials.configured:
            return CredentialStatus(configured=False, token_valid=False, token_error="Credentials not configured")

        now = time.monotonic()
        if self._token_status and now - self._token_checked_at < settings.CLOUDFLARE_TOKEN_CACHE_SECONDS:
            return self._token_status

        try:
            data = await self.request(
                "GET",
                f"/accounts/{self.credentials.account_id}/tokens/verify",
                operation="verify_token",
            )
            token_state = (data.get("result") or {}).get("status")
            if token_state == "active":
                status = CredentialStatus(configured=True, token_valid=True)
            else:
                status = CredentialStatus(
                    configured=True, token_valid=False, token_error=f"Token status is '{token_state}'"
                )
        except (ProviderNotConfigured, ProviderError) as e:
            status = CredentialStatus(configured=True, token_valid=False, token_error=str(e))

        self._token_status = status
        self._token_checked_at = now
        return status


# ═══════════════════════════════════════════
#  DNS provider
# ═══════════════════════════════════════════

class CloudflareDnsProvider:
    def __init__(self, client: CloudflareClient):
        self.client = client

    @property
    def configured(self) -> bool:
        return self.client.credentials.configured

    def missing_env_vars(self) -> List[str]:
        return self.client.credentials.missing_env_vars()

    async def verify_credentials(self) -> CredentialStatus:
        return await self.client.verify_token()

    async def find_zone(self, domain: str) -> Optional[Zone]:
        data = await self.client.request(
            "GET",
            "/zones",
            params={"name": domain, "account.id": self.client.credentials.account_id},
            operation="find_zone",
        )
        result = data.get("result") or []
        return Zone.from_api(result[0]) if result else None

    async def get_or_create_zone(self, domain: str) -> Zone:
        """Create the zone, or reuse it when Cloudflare already has one for this name."""
        try:
            data = await self.client.request(
                "POST",
                "/zones",
                json={
                    "name": domain,
                    "account": {"id": self.client.credentials.account_id},
                    "type": "full",
                    "jump_start": False,
                },
                operation="create_zone",
            )
        except ProviderError as e:
            if e.code != ZONE_ALREADY_EXISTS:
                raise
            logger.info("Zone already exists for %s, looking it up", domain)
            existing = await self.find_zone(domain)
            if existing is None:
                raise ProviderError(f"Zone already exists for {domain} but could not be retrieved", code=e.code)
            return existing

        zone = Zone.from_api(data["result"])
        logger.info("Zone created for %s: %s (status %s)", domain, zone.id, zone.status)
        return zone

    async def get_zone(self, zone_id: str) -> Zone:
        data = await self.client.request("GET", f"/zones/{zone_id}", operation="get_zone")
        return Zone.from_api(data["result"])

    async def list_dns_records(self, zone_id: str) -> List[Dict[str, Any]]:
        data = await self.client.request(
            "GET",
            f"/zones/{zone_id}/dns_records",
            params={"per_page": 100},
            operation="list_dns_records",
        )
        return list(data.get("result") or [])

    async def ensure_cname_record(self, zone_id: str, domain: str, target_host: str) -> str:
        """
        Point the apex (and www) at target_host with proxied CNAMEs.

        Existing matching records are reused; a CNAME aimed elsewhere is
        re-pointed. An apex A/AAAA record cannot coexist with the CNAME and
        is reported as a conflict instead of being deleted.
        """
        records = await self.list_dns_records(zone_id)
        record_id = await self._ensure_cname(zone_id, records, domain, domain, target_host, strict=True)
        try:
            await self._ensure_cname(zone_id, records, f"www.{domain}", domain, target_host, strict=False)
        except ProviderError as e:
            logger.warning("www record for %s not configured: %s", domain, e)
        return record_id

    async def _ensure_cname(
        self,
        zone_id: str,
        records: List[Dict[str, Any]],
        name: str,
        domain: str,
        target_host: str,
        strict: bool,
    ) -> str:
        same_name = [r for r in records if str(r.get("name", "")).lower() == name]
        for record in same_name:
            if record.get("type") in ("A", "AAAA"):
                message = f"Conflicting {record['type']} record exists for {name}; remove it so the CNAME can be added"
                if strict:
                    raise ProviderError(message)
                logger.warning(message)
                return record["id"]

        existing = next((r for r in same_name if r.get("type") == "CNAME"), None)
        if existing:
            if str(existing.get("content", "")).lower() == target_host.lower():
                logger.info("CNAME %s -> %s already exists, reusing %s", name, target_host, existing["id"])
                return existing["id"]
            logger.info("Re-pointing CNAME %s from %s to %s", name, existing.get("content"), target_host)
            data = await self.client.request(
                "PATCH",
                f"/zones/{zone_id}/dns_records/{existing['id']}",
                json={"content": target_host, "proxied": True},
                operation="update_dns_record",
            )
            return data["result"]["id"]

        try:
            data = await self.client.request(
                "POST",
                f"/zones/{zone_id}/dns_records",
                json={"type": "CNAME", "name": name, "content": target_host, "proxied": True, "ttl": 1},
                operation="create_dns_record",
            )
        except ProviderError as e:
            if e.code not in RECORD_ALREADY_EXISTS:
                raise
            # Created by a concurrent attempt between list and create
            for record in await self.list_dns_records(zone_id):
                if record.get("type") == "CNAME" and str(record.get("name", "")).lower() == name:
                    return record["id"]
            raise
        logger.info("CNAME record created %s -> %s: %s", name, target_host, data["result"]["id"])
        return data["result"]["id"]

    async def get_propagation(self, zone_id: str, domain: str, target_host: str) -> PropagationState:
        try:
            zone = await self.get_zone(zone_id)
        except ProviderError as e:
            if e.status_code == 404 or e.code in ZONE_GONE:
                return PropagationState(
                    resolved=False,
                    detail=str(e),
                    terminal_error=f"Cloudflare zone for {domain} no longer exists: {e}",
                )
            raise

        if zone.status in ZONE_TERMINAL:
            return PropagationState(
                resolved=False,
                detail=zone.status,
                terminal_error=f"Cloudflare zone for {domain} is {zone.status}",
            )
        if zone.status in ZONE_WAITING:
            return PropagationState(resolved=False, detail=f"Zone is {zone.status}")
        if zone.status != ZONE_ACTIVE:
            return PropagationState(resolved=False, detail=f"Zone status is {zone.status}")

        records = await self.list_dns_records(zone_id)
        apex = [r for r in records if str(r.get("name", "")).lower() == domain]
        cname = next((r for r in apex if r.get("type") == "CNAME"), None)
        if cname is None:
            return PropagationState(
                resolved=False,
                detail="missing record",
                terminal_error=f"The CNAME record for {domain} was removed from the zone",
            )
        if str(cname.get("content", "")).lower() != target_host.lower():
            return PropagationState(
                resolved=False,
                detail="record conflict",
                terminal_error=f"The CNAME record for {domain} points to {cname.get('content')} instead of {target_host}",
            )
        return PropagationState(resolved=True, detail="Zone active and CNAME in place")


# ═══════════════════════════════════════════
#  Certificate provider
# ═══════════════════════════════════════════

class CloudflareCertificateProvider:
    def __init__(self, client: CloudflareClient):
        self.client = client

    async def request_certificate(self, zone_id: str) -> None:
        """Switch the zone to Full SSL so the edge certificate is ordered and served."""
        await self.client.request(
            "PATCH",
            f"/zones/{zone_id}/settings/ssl",
            json={"value": "full"},
            operation="enable_full_ssl",
        )

    async def get_certificate_status(self, zone_id: str) -> CertificateState:
        data = await self.client.request(
            "GET",
            f"/zones/{zone_id}/ssl/verification",
            operation="ssl_verification",
        )
        packs = data.get("result") or []
        if not packs:
            return CertificateState(status="provisioning", detail="No certificate ordered yet")

        for pack in packs:
            errors = pack.get("validation_errors") or []
            state = pack.get("certificate_status", "")
            if errors:
                detail = "; ".join(str(err.get("message", err)) for err in errors)
                return CertificateState(status="error", detail=detail)
            if state in CERT_FAILED:
                hostname = pack.get("hostname", "")
                return CertificateState(status="error", detail=f"Certificate for {hostname} is {state}".strip())

        if all(pack.get("certificate_status") == CERT_ACTIVE for pack in packs):
            return CertificateState(status="active", detail="Certificate issued")

        pending = sorted({pack.get("certificate_status", "unknown") for pack in packs} - {CERT_ACTIVE})
        return CertificateState(status="provisioning", detail=", ".join(pending))
