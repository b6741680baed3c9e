"""Domain order queries: dashboard summary, provider status, persona binding, publishing and live routing lookup."""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.crud import crud_domain_order
from app.models.domain_order import DomainOrder, DnsStatus, SslStatus
from app.schemas.domain import DomainOrderInfo, ManagementSummary, ProviderStatus, PublishedDomain
from app.services.cloudflare import DnsProvider
from app.services.domain_errors import DomainNotPublishable, DomainOrderNotFound, ProviderTransientError

logger = logging.getLogger("personas.domains.query")


def _is_error(order: DomainOrder) -> bool:
    return order.dns_status == DnsStatus.ERROR or order.ssl_status == SslStatus.ERROR


def get_management_summary(db: Session, tenant_id: UUID) -> ManagementSummary:
    """Counts are derived on every call: active = both active, error = either error, pending = the rest."""
    orders = crud_domain_order.get_multi_by_tenant(db, tenant_id)
    active = sum(1 for o in orders if o.is_publish_ready)
    errors = sum(1 for o in orders if _is_error(o))
    return ManagementSummary(
        total_domains=len(orders),
        active_count=active,
        error_count=errors,
        pending_count=len(orders) - active - errors,
        domains=[DomainOrderInfo.from_order(o) for o in orders],
    )


async def get_cloudflare_status(dns: DnsProvider) -> ProviderStatus:
    """Platform-wide automation status; independent of any single order."""
    if not dns.configured:
        return ProviderStatus(
            configured=False,
            token_valid=False,
            message="Cloudflare API is not configured; domains must be set up manually.",
            required_env_vars=dns.missing_env_vars(),
        )
    try:
        credentials = await dns.verify_credentials()
    except ProviderTransientError as e:
        logger.warning("Cloudflare token verification unavailable: %s", e)
        return ProviderStatus(
            configured=True,
            token_valid=False,
            token_error=str(e),
            message="Cloudflare API is configured but could not be reached. Try again shortly.",
        )
    if not credentials.token_valid:
        return ProviderStatus(
            configured=True,
            token_valid=False,
            token_error=credentials.token_error,
            message="Cloudflare API token is invalid; automatic DNS and SSL setup is disabled.",
        )
    return ProviderStatus(
        configured=True,
        token_valid=True,
        message="Cloudflare API is configured; DNS and SSL can be set up automatically.",
    )


def get_published_domain(db: Session, domain: str) -> Optional[PublishedDomain]:
    """
    Resolve a live hostname to the persona it serves.

    Only published orders that are still publish-ready (DNS and SSL active)
    and bound to a persona resolve; everything else is not-found so the
    routing layer shows "not configured".
    """
    order = crud_domain_order.get_by_domain(db, domain)
    if order is None or not order.is_published or not order.is_publish_ready or order.persona_id is None:
        return None
    return PublishedDomain(domain=order.domain, persona_id=order.persona_id)


def get_domain_order(db: Session, tenant_id: UUID, order_id: UUID) -> DomainOrder:
    order = crud_domain_order.get_for_tenant(db, tenant_id, order_id)
    if order is None:
        raise DomainOrderNotFound(order_id)
    return order


def bind_persona(db: Session, tenant_id: UUID, order_id: UUID, persona_id: UUID) -> DomainOrder:
    order = get_domain_order(db, tenant_id, order_id)
    logger.info("Binding %s to persona %s", order.domain, persona_id)
    return crud_domain_order.set_persona(db, db_obj=order, persona_id=persona_id)


def unbind_persona(db: Session, tenant_id: UUID, order_id: UUID) -> DomainOrder:
    order = get_domain_order(db, tenant_id, order_id)
    logger.info("Unbinding %s from persona %s", order.domain, order.persona_id)
    return crud_domain_order.set_persona(db, db_obj=order, persona_id=None)


def publish_domain(db: Session, tenant_id: UUID, order_id: UUID) -> DomainOrder:
    order = get_domain_order(db, tenant_id, order_id)
    if not order.is_publish_ready:
        raise DomainNotPublishable(
            f"{order.domain} cannot be published until DNS and SSL are active "
            f"(DNS: {order.dns_status.value}, SSL: {order.ssl_status.value})."
        )
    if order.persona_id is None:
        raise DomainNotPublishable(f"Bind a persona to {order.domain} before publishing it.")
    if order.is_published:
        return order
    logger.info("Publishing %s for persona %s", order.domain, order.persona_id)
    return crud_domain_order.set_published(db, db_obj=order, published=True)


def unpublish_domain(db: Session, tenant_id: UUID, order_id: UUID) -> DomainOrder:
    order = get_domain_order(db, tenant_id, order_id)
    if not order.is_published:
        return order
    logger.info("Unpublishing %s", order.domain)
    return crud_domain_order.set_published(db, db_obj=order, published=False)
