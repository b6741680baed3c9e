"""
Domain Order Model

One row per tenant-owned custom domain moving through activation:
zone + CNAME provisioning (dns_status) and edge certificate issuance
(ssl_status). Rows arrive from the registration flow as pending/pending.
A publish-ready order bound to a persona can then be published for
live routing.
"""
import enum
import json
import uuid
from typing import List, Optional

from sqlalchemy import Boolean, Column, String, Text, DateTime, Enum, Uuid, false, func

from app.config import settings
from app.db.base_class import Base


class DnsStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIGURING = "configuring"
    PROPAGATING = "propagating"
    ACTIVE = "active"
    ERROR = "error"


class SslStatus(str, enum.Enum):
    PENDING = "pending"
    PROVISIONING = "provisioning"
    ACTIVE = "active"
    ERROR = "error"


def serialize_nameservers(nameservers: Optional[List[str]]) -> Optional[str]:
    """Order-preserving, de-duplicated JSON list (the shape the dashboard parses)."""
    if not nameservers:
        return None
    seen: list[str] = []
    for ns in nameservers:
        ns = ns.strip().rstrip(".").lower()
        if ns and ns not in seen:
            seen.append(ns)
    return json.dumps(seen)


def deserialize_nameservers(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except ValueError:
        return []
    return [str(ns) for ns in value] if isinstance(value, list) else []


class DomainOrder(Base):
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    tenant_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    persona_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    domain = Column(String(255), unique=True, nullable=False, index=True)

    # Activation state
    dns_status = Column(
        Enum(DnsStatus, values_callable=lambda e: [m.value for m in e], native_enum=False, length=16),
        nullable=False,
        default=DnsStatus.PENDING,
    )
    ssl_status = Column(
        Enum(SslStatus, values_callable=lambda e: [m.value for m in e], native_enum=False, length=16),
        nullable=False,
        default=SslStatus.PENDING,
    )

    # Registration (read-only here)
    registration_date = Column(DateTime(timezone=True), nullable=True)
    expiration_date = Column(DateTime(timezone=True), nullable=True)

    # Provider state
    target_host = Column(String(255), nullable=True)          # CNAME target, platform default when empty
    nameservers = Column(Text, nullable=True)                 # JSON list
    cloudflare_zone_id = Column(String(64), nullable=True)
    cloudflare_cname_record_id = Column(String(64), nullable=True)

    dns_error_message = Column(Text, nullable=True)
    ssl_error_message = Column(Text, nullable=True)
    last_dns_check = Column(DateTime(timezone=True), nullable=True)
    last_ssl_check = Column(DateTime(timezone=True), nullable=True)

    # Publishing (live routing only resolves published, publish-ready orders)
    is_published = Column(Boolean, nullable=False, default=False, server_default=false())
    published_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def effective_target_host(self) -> str:
        return self.target_host or settings.DOMAIN_TARGET_HOST

    @property
    def nameserver_list(self) -> List[str]:
        return deserialize_nameservers(self.nameservers)

    @property
    def is_publish_ready(self) -> bool:
        return self.dns_status == DnsStatus.ACTIVE and self.ssl_status == SslStatus.ACTIVE
