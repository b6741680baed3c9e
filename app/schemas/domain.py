from typing import List, Optional
from uuid import UUID
from datetime import datetime
from pydantic import BaseModel, Field

from app.models.domain_order import DnsStatus, SslStatus


class DomainOrderInfo(BaseModel):
    id: UUID
    domain: str
    dns_status: DnsStatus
    ssl_status: SslStatus
    persona_id: Optional[UUID] = None
    registration_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    target_host: str
    nameservers: List[str] = Field(default_factory=list)
    cloudflare_zone_id: Optional[str] = None
    dns_error_message: str = ""
    ssl_error_message: str = ""
    last_dns_check: Optional[datetime] = None
    last_ssl_check: Optional[datetime] = None
    is_publish_ready: bool = False
    is_published: bool = False
    published_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, order) -> "DomainOrderInfo":
        return cls(
            id=order.id,
            domain=order.domain,
            dns_status=order.dns_status,
            ssl_status=order.ssl_status,
            persona_id=order.persona_id,
            registration_date=order.registration_date,
            expiration_date=order.expiration_date,
            target_host=order.effective_target_host,
            nameservers=order.nameserver_list,
            cloudflare_zone_id=order.cloudflare_zone_id,
            dns_error_message=order.dns_error_message or "",
            ssl_error_message=order.ssl_error_message or "",
            last_dns_check=order.last_dns_check,
            last_ssl_check=order.last_ssl_check,
            is_publish_ready=order.is_publish_ready,
            is_published=bool(order.is_published),
            published_at=order.published_at,
        )


# ── Manual fallback ──

class ManualDnsRecord(BaseModel):
    type: str
    name: str
    value: str
    ttl: str = "Auto"


class ManualInstructions(BaseModel):
    domain: str
    target_host: str
    records: List[ManualDnsRecord]
    steps: List[str]


# ── Operation results ──

class SetupResult(BaseModel):
    success: bool
    message: str
    requires_manual_setup: bool = False
    error: Optional[str] = None
    dns_status: Optional[DnsStatus] = None
    instructions: Optional[ManualInstructions] = None
    nameservers_delegated: Optional[bool] = None


class DnsCheckResult(BaseModel):
    propagated: bool
    message: str
    dns_status: Optional[DnsStatus] = None
    retryable: bool = False


class SslCheckResult(BaseModel):
    message: str
    ssl_status: Optional[SslStatus] = None
    retryable: bool = False


# ── Queries ──

class ManagementSummary(BaseModel):
    total_domains: int
    active_count: int
    pending_count: int
    error_count: int
    domains: List[DomainOrderInfo]


class ProviderStatus(BaseModel):
    configured: bool
    token_valid: bool
    token_error: Optional[str] = None
    message: str
    required_env_vars: List[str] = Field(default_factory=list)


class PublishedDomain(BaseModel):
    domain: str
    persona_id: UUID


class PersonaBinding(BaseModel):
    persona_id: UUID
