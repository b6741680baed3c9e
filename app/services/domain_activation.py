"""
Domain Activation Orchestrator

Drives a DomainOrder from registered to publish-ready:

  setup_domain       pending -> configuring           (zone + CNAME, registrar nameservers)
  check_dns_status   configuring -> propagating -> active
  check_ssl_status   pending -> provisioning -> active (only once DNS is active)

Every entry point is safe to call repeatedly. Calls for one order are
serialized in-process by a per-order lock, and every write is a
compare-and-set on the status the call observed, so a worker in another
process holding a newer state is never overwritten. Provider timeouts and
5xx responses leave the order untouched; only explicit provider rejections
move an order to `error`.
"""
import asyncio
import logging
import weakref
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.crud import crud_domain_order
from app.logging_config import order_id_ctx
from app.middleware.metrics import STATUS_TRANSITIONS
from app.models.domain_order import DomainOrder, DnsStatus, SslStatus
from app.schemas.domain import DnsCheckResult, SetupResult, SslCheckResult
from app.services.cloudflare import CertificateProvider, DnsProvider
from app.services.domain_errors import (
    DomainError,
    DomainOrderNotFound,
    ProviderError,
    ProviderNotConfigured,
    ProviderTransientError,
    sanitize_provider_message,
)
from app.services.domain_fallback import manual_setup_instructions
from app.services.namecom import RegistrarProvider

logger = logging.getLogger("personas.domains.activation")

DNS_TRANSITIONS = {
    DnsStatus.PENDING: {DnsStatus.CONFIGURING, DnsStatus.ERROR},
    DnsStatus.CONFIGURING: {DnsStatus.PROPAGATING, DnsStatus.ACTIVE, DnsStatus.ERROR},
    DnsStatus.PROPAGATING: {DnsStatus.ACTIVE, DnsStatus.ERROR},
    DnsStatus.ACTIVE: {DnsStatus.ERROR},
    DnsStatus.ERROR: {DnsStatus.CONFIGURING, DnsStatus.ACTIVE},
}

SSL_TRANSITIONS = {
    SslStatus.PENDING: {SslStatus.PROVISIONING, SslStatus.ERROR},
    SslStatus.PROVISIONING: {SslStatus.ACTIVE, SslStatus.ERROR},
    SslStatus.ACTIVE: {SslStatus.ERROR},
    SslStatus.ERROR: {SslStatus.PROVISIONING},
}

PROPAGATION_MESSAGE = (
    "DNS changes are still propagating. This usually takes a few minutes "
    "but can take up to 48 hours; check again later."
)


class IllegalTransition(DomainError):
    pass


class OrderLockRegistry:
    """One asyncio.Lock per order id; idle locks are garbage collected."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, order_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(order_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[order_id] = lock
        return lock


ORDER_LOCKS = OrderLockRegistry()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DomainActivationService:
    def __init__(
        self,
        db: Session,
        dns: DnsProvider,
        certificates: CertificateProvider,
        locks: Optional[OrderLockRegistry] = None,
        registrar: Optional[RegistrarProvider] = None,
    ):
        self.db = db
        self.dns = dns
        self.certificates = certificates
        self.locks = locks or ORDER_LOCKS
        self.registrar = registrar

    # ── Loading & persistence ──

    def _load(self, order_id: UUID, tenant_id: Optional[UUID]) -> DomainOrder:
        # Always read the persisted row; another process may have advanced it
        self.db.expire_all()
        if tenant_id is None:
            order = crud_domain_order.get(self.db, order_id)
        else:
            order = crud_domain_order.get_for_tenant(self.db, tenant_id, order_id)
        if order is None:
            raise DomainOrderNotFound(order_id)
        return order

    def _transition_dns(
        self,
        order: DomainOrder,
        expected: DnsStatus,
        new: DnsStatus,
        *,
        error: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> bool:
        if new != expected and new not in DNS_TRANSITIONS[expected]:
            raise IllegalTransition(f"DNS status cannot move from {expected.value} to {new.value}")
        values: Dict[str, Any] = {
            "dns_status": new,
            "dns_error_message": sanitize_provider_message(error) if new == DnsStatus.ERROR else None,
            "last_dns_check": _now(),
        }
        values.update(extra or {})
        applied = crud_domain_order.conditional_update(self.db, order, values, expected_dns=expected)
        if applied and new != expected:
            STATUS_TRANSITIONS.labels(kind="dns", from_status=expected.value, to_status=new.value).inc()
            logger.info("DNS status %s: %s -> %s", order.domain, expected.value, new.value)
        elif not applied:
            logger.info("DNS status for %s changed concurrently (now %s)", order.domain, order.dns_status.value)
        return applied

    def _transition_ssl(
        self,
        order: DomainOrder,
        expected: SslStatus,
        new: SslStatus,
        *,
        error: Optional[str] = None,
    ) -> bool:
        if new != expected and new not in SSL_TRANSITIONS[expected]:
            raise IllegalTransition(f"SSL status cannot move from {expected.value} to {new.value}")
        values: Dict[str, Any] = {
            "ssl_status": new,
            "ssl_error_message": sanitize_provider_message(error) if new == SslStatus.ERROR else None,
            "last_ssl_check": _now(),
        }
        # SSL progress is only recorded while DNS is still active
        applied = crud_domain_order.conditional_update(
            self.db, order, values, expected_ssl=expected, expected_dns=DnsStatus.ACTIVE,
        )
        if applied and new != expected:
            STATUS_TRANSITIONS.labels(kind="ssl", from_status=expected.value, to_status=new.value).inc()
            logger.info("SSL status %s: %s -> %s", order.domain, expected.value, new.value)
        elif not applied:
            logger.info("SSL status for %s changed concurrently (now %s)", order.domain, order.ssl_status.value)
        return applied

    # ═══════════════════════════════════════════
    #  Setup
    # ═══════════════════════════════════════════

    async def setup_domain(self, order_id: UUID, tenant_id: Optional[UUID] = None) -> SetupResult:
        order_id_ctx.set(str(order_id))
        async with self.locks.lock_for(order_id):
            order = self._load(order_id, tenant_id)
            return await self._setup(order)

    def _manual_setup(self, order: DomainOrder, reason: str) -> SetupResult:
        return SetupResult(
            success=False,
            message=reason,
            requires_manual_setup=True,
            dns_status=order.dns_status,
            instructions=manual_setup_instructions(order),
        )

    async def _setup(self, order: DomainOrder) -> SetupResult:
        status = order.dns_status
        if status not in (DnsStatus.PENDING, DnsStatus.ERROR):
            return SetupResult(
                success=True,
                message=f"Domain setup already started (DNS status: {status.value}).",
                dns_status=status,
            )

        if not self.dns.configured:
            logger.info("Automatic DNS setup unavailable for %s: provider not configured", order.domain)
            return self._manual_setup(
                order, "Automatic DNS setup is not available. Follow the manual steps to configure your domain."
            )

        try:
            credentials = await self.dns.verify_credentials()
        except ProviderTransientError as e:
            return SetupResult(success=False, message=str(e), error=str(e), dns_status=status)
        if not credentials.token_valid:
            logger.warning("DNS provider token rejected: %s", credentials.token_error)
            return self._manual_setup(
                order, "Automatic DNS setup is temporarily unavailable. Follow the manual steps to configure your domain."
            )

        logger.info("Starting automatic setup for %s (target %s)", order.domain, order.effective_target_host)
        try:
            if order.cloudflare_zone_id:
                zone = await self.dns.get_zone(order.cloudflare_zone_id)
            else:
                zone = await self.dns.get_or_create_zone(order.domain)

            # Persist the zone before touching records so a retry reuses it
            if order.cloudflare_zone_id != zone.id or (
                zone.name_servers and order.nameserver_list != zone.name_servers
            ):
                if not crud_domain_order.conditional_update(
                    self.db,
                    order,
                    {"cloudflare_zone_id": zone.id, "nameservers": zone.name_servers or order.nameserver_list},
                    expected_dns=status,
                ):
                    return self._lost_setup_race(order)

            record_id = await self.dns.ensure_cname_record(zone.id, order.domain, order.effective_target_host)
        except ProviderNotConfigured as e:
            logger.warning("DNS provider rejected credentials during setup of %s: %s", order.domain, e)
            return self._manual_setup(
                order, "Automatic DNS setup is temporarily unavailable. Follow the manual steps to configure your domain."
            )
        except ProviderTransientError as e:
            logger.warning("Transient provider failure during setup of %s: %s", order.domain, e)
            return SetupResult(success=False, message=str(e), error=str(e), dns_status=order.dns_status)
        except ProviderError as e:
            message = sanitize_provider_message(e.message)
            logger.error("Domain setup failed for %s: %s", order.domain, message)
            self._transition_dns(order, status, DnsStatus.ERROR, error=message)
            return SetupResult(
                success=False,
                message="Automatic DNS setup failed. You can retry or configure DNS manually.",
                error=message,
                dns_status=order.dns_status,
            )

        if not self._transition_dns(
            order, status, DnsStatus.CONFIGURING, extra={"cloudflare_cname_record_id": record_id}
        ):
            return self._lost_setup_race(order)

        delegated = await self._delegate_nameservers(order)
        nameservers = ", ".join(order.nameserver_list) or "the provider nameservers"
        if delegated:
            message = (
                f"DNS zone created and CNAME added. Nameservers for {order.domain} were updated "
                f"at the registrar to {nameservers}; propagation can take up to 48 hours."
            )
        elif delegated is False:
            message = (
                f"DNS zone created and CNAME added, but the registrar nameserver update failed. "
                f"Point {order.domain} at {nameservers} manually; propagation can take up to 48 hours."
            )
        else:
            message = (
                f"DNS zone created and CNAME added. Point {order.domain} at {nameservers}; "
                "propagation can take up to 48 hours."
            )
        return SetupResult(
            success=True,
            message=message,
            dns_status=order.dns_status,
            nameservers_delegated=delegated,
        )

    async def _delegate_nameservers(self, order: DomainOrder) -> Optional[bool]:
        """Best-effort registrar delegation. None when no registrar is available."""
        nameservers = order.nameserver_list
        if self.registrar is None or not self.registrar.configured or not nameservers:
            return None
        try:
            await self.registrar.set_nameservers(order.domain, nameservers)
        except DomainError as e:
            logger.warning("Nameserver update failed for %s, manual update required: %s", order.domain, e)
            return False
        return True

    def _lost_setup_race(self, order: DomainOrder) -> SetupResult:
        return SetupResult(
            success=order.dns_status != DnsStatus.ERROR,
            message=f"Domain setup is already in progress (DNS status: {order.dns_status.value}).",
            error=order.dns_error_message or None,
            dns_status=order.dns_status,
        )

    # ═══════════════════════════════════════════
    #  DNS reconciliation
    # ═══════════════════════════════════════════

    async def check_dns_status(self, order_id: UUID, tenant_id: Optional[UUID] = None) -> DnsCheckResult:
        order_id_ctx.set(str(order_id))
        async with self.locks.lock_for(order_id):
            order = self._load(order_id, tenant_id)
            return await self._check_dns(order)

    async def _check_dns(self, order: DomainOrder) -> DnsCheckResult:
        status = order.dns_status
        if status == DnsStatus.PENDING:
            return DnsCheckResult(
                propagated=False,
                message=(
                    "DNS setup has not completed yet. Click 'Set up domain' first; "
                    "'Check DNS' verifies the domain once setup has completed."
                ),
                dns_status=status,
            )
        if status == DnsStatus.ACTIVE:
            return DnsCheckResult(propagated=True, message="DNS is active.", dns_status=status)
        if not order.cloudflare_zone_id:
            return DnsCheckResult(
                propagated=False,
                message=order.dns_error_message or "No DNS zone exists yet. Run domain setup again.",
                dns_status=status,
            )

        try:
            state = await self.dns.get_propagation(
                order.cloudflare_zone_id, order.domain, order.effective_target_host
            )
        except (ProviderTransientError, ProviderNotConfigured) as e:
            logger.warning("DNS check for %s deferred: %s", order.domain, e)
            return DnsCheckResult(propagated=False, message=str(e), dns_status=status, retryable=True)
        except ProviderError as e:
            state = None
            terminal = e.message
        else:
            terminal = state.terminal_error

        if terminal:
            self._transition_dns(order, status, DnsStatus.ERROR, error=terminal)
            return DnsCheckResult(
                propagated=False,
                message=order.dns_error_message or sanitize_provider_message(terminal),
                dns_status=order.dns_status,
            )

        if state.resolved:
            self._transition_dns(order, status, DnsStatus.ACTIVE)
            active = order.dns_status == DnsStatus.ACTIVE
            return DnsCheckResult(
                propagated=active,
                message="DNS is active. SSL can now be provisioned." if active
                else f"DNS status changed concurrently (now {order.dns_status.value}).",
                dns_status=order.dns_status,
            )

        if status == DnsStatus.CONFIGURING:
            self._transition_dns(order, status, DnsStatus.PROPAGATING)
        else:
            # propagating / error: no new signal, record the check only
            self._transition_dns(order, status, status, error=order.dns_error_message)
        if order.dns_status == DnsStatus.ERROR:
            return DnsCheckResult(
                propagated=False,
                message=order.dns_error_message or PROPAGATION_MESSAGE,
                dns_status=order.dns_status,
            )
        return DnsCheckResult(propagated=False, message=PROPAGATION_MESSAGE, dns_status=order.dns_status)

    # ═══════════════════════════════════════════
    #  SSL reconciliation
    # ═══════════════════════════════════════════

    async def check_ssl_status(self, order_id: UUID, tenant_id: Optional[UUID] = None) -> SslCheckResult:
        order_id_ctx.set(str(order_id))
        async with self.locks.lock_for(order_id):
            order = self._load(order_id, tenant_id)
            return await self._check_ssl(order)

    async def _check_ssl(self, order: DomainOrder) -> SslCheckResult:
        ssl = order.ssl_status
        if ssl == SslStatus.ACTIVE:
            return SslCheckResult(message="SSL certificate is active.", ssl_status=ssl)
        if order.dns_status != DnsStatus.ACTIVE:
            return SslCheckResult(
                message=(
                    "SSL cannot be provisioned until DNS is active "
                    f"(DNS status: {order.dns_status.value}). Check DNS first."
                ),
                ssl_status=ssl,
            )
        if not order.cloudflare_zone_id:
            return SslCheckResult(
                message="This domain is not managed by automatic setup; SSL must be provisioned by your DNS host.",
                ssl_status=ssl,
            )

        if ssl in (SslStatus.PENDING, SslStatus.ERROR):
            return await self._request_certificate(order, ssl)
        return await self._poll_certificate(order)

    async def _request_certificate(self, order: DomainOrder, ssl: SslStatus) -> SslCheckResult:
        try:
            await self.certificates.request_certificate(order.cloudflare_zone_id)
        except (ProviderTransientError, ProviderNotConfigured) as e:
            logger.warning("Certificate request for %s deferred: %s", order.domain, e)
            return SslCheckResult(message=str(e), ssl_status=ssl, retryable=True)
        except ProviderError as e:
            logger.error("Certificate request failed for %s: %s", order.domain, e.message)
            self._transition_ssl(order, ssl, SslStatus.ERROR, error=e.message)
            return SslCheckResult(
                message=order.ssl_error_message or sanitize_provider_message(e.message),
                ssl_status=order.ssl_status,
            )

        self._transition_ssl(order, ssl, SslStatus.PROVISIONING)
        return SslCheckResult(
            message="SSL certificate requested. Provisioning usually completes within a few minutes.",
            ssl_status=order.ssl_status,
        )

    async def _poll_certificate(self, order: DomainOrder) -> SslCheckResult:
        try:
            state = await self.certificates.get_certificate_status(order.cloudflare_zone_id)
        except (ProviderTransientError, ProviderNotConfigured) as e:
            logger.warning("Certificate check for %s deferred: %s", order.domain, e)
            return SslCheckResult(message=str(e), ssl_status=order.ssl_status, retryable=True)
        except ProviderError as e:
            self._transition_ssl(order, SslStatus.PROVISIONING, SslStatus.ERROR, error=e.message)
            return SslCheckResult(message=order.ssl_error_message or e.message, ssl_status=order.ssl_status)

        if state.status == "active":
            self._transition_ssl(order, SslStatus.PROVISIONING, SslStatus.ACTIVE)
            if order.ssl_status == SslStatus.ACTIVE:
                return SslCheckResult(
                    message="SSL certificate is active. Your domain is ready to publish.",
                    ssl_status=order.ssl_status,
                )
            return SslCheckResult(
                message=f"SSL status changed concurrently (now {order.ssl_status.value}).",
                ssl_status=order.ssl_status,
            )
        if state.status == "error":
            self._transition_ssl(order, SslStatus.PROVISIONING, SslStatus.ERROR, error=state.detail)
            return SslCheckResult(
                message=order.ssl_error_message or sanitize_provider_message(state.detail),
                ssl_status=order.ssl_status,
            )

        self._transition_ssl(order, SslStatus.PROVISIONING, SslStatus.PROVISIONING)
        detail = f" ({state.detail})" if state.detail else ""
        return SslCheckResult(
            message=f"SSL certificate is still being provisioned{detail}. Check again in a few minutes.",
            ssl_status=order.ssl_status,
        )
