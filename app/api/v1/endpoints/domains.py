"""
Custom Domain Activation API

Poll-friendly operations used by the domain dashboard:
  1. Set up a registered domain (zone + CNAME, or manual instructions)
  2. Re-check DNS propagation / SSL issuance
  3. Dashboard summary and provider configuration status
  4. Persona binding, publishing and live-domain resolution for the routing layer
"""
import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.api import deps
from app.config import settings
from app.models.domain_order import DnsStatus
from app.schemas.domain import (
    DnsCheckResult,
    DomainOrderInfo,
    ManagementSummary,
    ManualInstructions,
    PersonaBinding,
    ProviderStatus,
    PublishedDomain,
    SetupResult,
    SslCheckResult,
)
from app.services import domain_query
from app.services.cloudflare import CloudflareDnsProvider
from app.services.domain_activation import DomainActivationService
from app.services.domain_errors import DomainNotPublishable, DomainOrderNotFound
from app.services.domain_fallback import manual_setup_instructions

router = APIRouter()
logger = logging.getLogger("personas.domains.api")


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="Domain order not found")


# ── Read side ──

@router.get("/summary", response_model=ManagementSummary)
def get_management_summary(
    db: Session = Depends(deps.get_db),
    tenant_id: UUID = Depends(deps.get_current_tenant_id),
) -> Any:
    """Dashboard counts and per-order detail for the current tenant."""
    return domain_query.get_management_summary(db, tenant_id)


@router.get("/cloudflare-status", response_model=ProviderStatus)
async def get_cloudflare_status(
    dns: CloudflareDnsProvider = Depends(deps.get_dns_provider),
) -> Any:
    return await domain_query.get_cloudflare_status(dns)


@router.get("/published/{domain}", response_model=PublishedDomain)
def get_published_domain(
    domain: str,
    db: Session = Depends(deps.get_db),
) -> Any:
    """Persona served by a live hostname; 404 unless the domain is published and publish-ready."""
    published = domain_query.get_published_domain(db, domain)
    if published is None:
        raise HTTPException(status_code=404, detail="Domain is not configured")
    return published


@router.get("/{order_id}", response_model=DomainOrderInfo)
def get_domain_order(
    order_id: UUID,
    db: Session = Depends(deps.get_db),
    tenant_id: UUID = Depends(deps.get_current_tenant_id),
) -> Any:
    try:
        order = domain_query.get_domain_order(db, tenant_id, order_id)
    except DomainOrderNotFound:
        raise _not_found()
    return DomainOrderInfo.from_order(order)


@router.get("/{order_id}/manual-instructions", response_model=ManualInstructions)
def get_manual_instructions(
    order_id: UUID,
    db: Session = Depends(deps.get_db),
    tenant_id: UUID = Depends(deps.get_current_tenant_id),
) -> Any:
    try:
        order = domain_query.get_domain_order(db, tenant_id, order_id)
    except DomainOrderNotFound:
        raise _not_found()
    return manual_setup_instructions(order)


# ── Activation ──

@router.post("/{order_id}/setup", response_model=SetupResult)
async def setup_domain(
    order_id: UUID,
    service: DomainActivationService = Depends(deps.get_activation_service),
    tenant_id: UUID = Depends(deps.get_current_tenant_id),
) -> Any:
    try:
        result = await service.setup_domain(order_id, tenant_id=tenant_id)
    except DomainOrderNotFound:
        raise _not_found()

    if settings.DOMAIN_AUTO_RECHECK and result.success and result.dns_status == DnsStatus.CONFIGURING:
        from app.tasks.domain_tasks import next_recheck_delay, recheck_domain_task
        recheck_domain_task.apply_async(args=[str(order_id)], countdown=next_recheck_delay(0))
        logger.info("Queued background re-checks for domain order %s", order_id)
    return result


@router.post("/{order_id}/check-dns", response_model=DnsCheckResult)
async def check_dns_status(
    order_id: UUID,
    service: DomainActivationService = Depends(deps.get_activation_service),
    tenant_id: UUID = Depends(deps.get_current_tenant_id),
) -> Any:
    try:
        return await service.check_dns_status(order_id, tenant_id=tenant_id)
    except DomainOrderNotFound:
        raise _not_found()


@router.post("/{order_id}/check-ssl", response_model=SslCheckResult)
async def check_ssl_status(
    order_id: UUID,
    service: DomainActivationService = Depends(deps.get_activation_service),
    tenant_id: UUID = Depends(deps.get_current_tenant_id),
) -> Any:
    try:
        return await service.check_ssl_status(order_id, tenant_id=tenant_id)
    except DomainOrderNotFound:
        raise _not_found()


# ── Persona binding ──

@router.put("/{order_id}/persona", response_model=DomainOrderInfo)
def bind_persona(
    order_id: UUID,
    body: PersonaBinding,
    db: Session = Depends(deps.get_db),
    tenant_id: UUID = Depends(deps.get_current_tenant_id),
) -> Any:
    try:
        order = domain_query.bind_persona(db, tenant_id, order_id, body.persona_id)
    except DomainOrderNotFound:
        raise _not_found()
    return DomainOrderInfo.from_order(order)


@router.delete("/{order_id}/persona", response_model=DomainOrderInfo)
def unbind_persona(
    order_id: UUID,
    db: Session = Depends(deps.get_db),
    tenant_id: UUID = Depends(deps.get_current_tenant_id),
) -> Any:
    try:
        order = domain_query.unbind_persona(db, tenant_id, order_id)
    except DomainOrderNotFound:
        raise _not_found()
    return DomainOrderInfo.from_order(order)


# ── Publishing ──

@router.post("/{order_id}/publish", response_model=DomainOrderInfo)
def publish_domain(
    order_id: UUID,
    db: Session = Depends(deps.get_db),
    tenant_id: UUID = Depends(deps.get_current_tenant_id),
) -> Any:
    """Put a publish-ready, persona-bound domain live; 409 otherwise."""
    try:
        order = domain_query.publish_domain(db, tenant_id, order_id)
    except DomainOrderNotFound:
        raise _not_found()
    except DomainNotPublishable as e:
        raise HTTPException(status_code=409, detail=str(e))
    return DomainOrderInfo.from_order(order)


@router.delete("/{order_id}/publish", response_model=DomainOrderInfo)
def unpublish_domain(
    order_id: UUID,
    db: Session = Depends(deps.get_db),
    tenant_id: UUID = Depends(deps.get_current_tenant_id),
) -> Any:
    try:
        order = domain_query.unpublish_domain(db, tenant_id, order_id)
    except DomainOrderNotFound:
        raise _not_found()
    return DomainOrderInfo.from_order(order)
