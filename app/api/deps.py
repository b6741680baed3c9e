from functools import lru_cache
from typing import Generator
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.logging_config import tenant_id_ctx
from app.services.cloudflare import (
    CloudflareCertificateProvider,
    CloudflareClient,
    CloudflareCredentials,
    CloudflareDnsProvider,
)
from app.services.domain_activation import DomainActivationService
from app.services.namecom import NamecomCredentials, NamecomRegistrar


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_tenant_id(x_tenant_id: str = Header(default="")) -> UUID:
    """Tenant scope as established by the upstream session layer."""
    try:
        tenant_id = UUID(x_tenant_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid tenant scope",
        )
    tenant_id_ctx.set(str(tenant_id))
    return tenant_id


@lru_cache
def get_cloudflare_client() -> CloudflareClient:
    # Shared so the token verification cache survives across requests
    return CloudflareClient(CloudflareCredentials.from_settings())


def get_dns_provider() -> CloudflareDnsProvider:
    return CloudflareDnsProvider(get_cloudflare_client())


def get_certificate_provider() -> CloudflareCertificateProvider:
    return CloudflareCertificateProvider(get_cloudflare_client())


def get_registrar() -> NamecomRegistrar:
    return NamecomRegistrar(NamecomCredentials.from_settings())


def get_activation_service(
    db: Session = Depends(get_db),
    dns: CloudflareDnsProvider = Depends(get_dns_provider),
    certificates: CloudflareCertificateProvider = Depends(get_certificate_provider),
    registrar: NamecomRegistrar = Depends(get_registrar),
) -> DomainActivationService:
    return DomainActivationService(db, dns, certificates, registrar=registrar)
