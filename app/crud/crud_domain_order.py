from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID
from sqlalchemy import or_
from sqlalchemy.orm import Session
from app.models.domain_order import DomainOrder, DnsStatus, SslStatus, serialize_nameservers


def normalize_domain(domain: str) -> str:
    """Lower-case host without port or trailing dot."""
    host = (domain or "").strip().split(":")[0].lower()
    return host.rstrip(".")


def get(db: Session, order_id: UUID) -> Optional[DomainOrder]:
    return db.query(DomainOrder).filter(DomainOrder.id == order_id).first()


def get_for_tenant(db: Session, tenant_id: UUID, order_id: UUID) -> Optional[DomainOrder]:
    return db.query(DomainOrder).filter(
        DomainOrder.id == order_id,
        DomainOrder.tenant_id == tenant_id,
    ).first()


def get_by_domain(db: Session, domain: str) -> Optional[DomainOrder]:
    return db.query(DomainOrder).filter(DomainOrder.domain == normalize_domain(domain)).first()


def get_multi_by_tenant(db: Session, tenant_id: UUID) -> List[DomainOrder]:
    return db.query(DomainOrder).filter(
        DomainOrder.tenant_id == tenant_id
    ).order_by(DomainOrder.created_at.desc(), DomainOrder.domain).all()


def get_needing_reconcile(db: Session, limit: int = 200) -> List[DomainOrder]:
    """Orders with a provider-side transition still outstanding."""
    return db.query(DomainOrder).filter(
        or_(
            DomainOrder.dns_status.in_([DnsStatus.CONFIGURING, DnsStatus.PROPAGATING]),
            DomainOrder.ssl_status == SslStatus.PROVISIONING,
            (DomainOrder.dns_status == DnsStatus.ACTIVE) & (DomainOrder.ssl_status == SslStatus.PENDING),
        )
    ).order_by(DomainOrder.last_dns_check.asc().nulls_first()).limit(limit).all()


def create(db: Session, *, tenant_id: UUID, domain: str, **fields: Any) -> DomainOrder:
    """Insert an order as handed over by the registration flow (pending/pending)."""
    db_obj = DomainOrder(tenant_id=tenant_id, domain=normalize_domain(domain), **fields)
    db.add(db_obj)
    db.commit()
    db.refresh(db_obj)
    return db_obj


def conditional_update(
    db: Session,
    order: DomainOrder,
    values: Dict[str, Any],
    *,
    expected_dns: Optional[DnsStatus] = None,
    expected_ssl: Optional[SslStatus] = None,
) -> bool:
    """
    Compare-and-set on the persisted status columns.

    The UPDATE only matches while the row still carries the status the caller
    observed, so a concurrent writer holding a newer state wins. Returns True
    when this call applied the change; the ORM object is refreshed either way.
    """
    query = db.query(DomainOrder).filter(DomainOrder.id == order.id)
    if expected_dns is not None:
        query = query.filter(DomainOrder.dns_status == expected_dns)
    if expected_ssl is not None:
        query = query.filter(DomainOrder.ssl_status == expected_ssl)
    if "cloudflare_zone_id" in values:
        # A zone id, once written, is never replaced by a different one
        query = query.filter(or_(
            DomainOrder.cloudflare_zone_id.is_(None),
            DomainOrder.cloudflare_zone_id == values["cloudflare_zone_id"],
        ))
    if "nameservers" in values and not isinstance(values["nameservers"], (str, type(None))):
        values = {**values, "nameservers": serialize_nameservers(values["nameservers"])}

    updated = query.update(values, synchronize_session=False)
    db.commit()
    db.refresh(order)
    return updated == 1


def set_persona(db: Session, *, db_obj: DomainOrder, persona_id: Optional[UUID]) -> DomainOrder:
    db_obj.persona_id = persona_id
    if persona_id is None:
        # An unbound domain has nothing to serve
        db_obj.is_published = False
        db_obj.published_at = None
    db.add(db_obj)
    db.commit()
    db.refresh(db_obj)
    return db_obj


def set_published(db: Session, *, db_obj: DomainOrder, published: bool) -> DomainOrder:
    db_obj.is_published = published
    db_obj.published_at = datetime.now(timezone.utc) if published else None
    db.add(db_obj)
    db.commit()
    db.refresh(db_obj)
    return db_obj
