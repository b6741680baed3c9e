"""SSL reconciliation: gated on active DNS, provisioning -> active / error."""
import pytest

from app.models.domain_order import DomainOrder, DnsStatus, SslStatus
from app.services.cloudflare import CertificateState
from app.services.domain_errors import ProviderError, ProviderTransientError


@pytest.mark.asyncio
async def test_certificate_requested_then_activated(service, make_order, certs, db):
    """DNS active, SSL pending -> provisioning -> active."""
    order = make_order(dns_status=DnsStatus.ACTIVE, cloudflare_zone_id="zone-1")

    first = await service.check_ssl_status(order.id)

    db.refresh(order)
    assert certs.requested == ["zone-1"]
    assert first.ssl_status == SslStatus.PROVISIONING
    assert order.ssl_status == SslStatus.PROVISIONING
    assert order.is_publish_ready is False

    certs.state = CertificateState(status="active", detail="Certificate issued")
    second = await service.check_ssl_status(order.id)

    db.refresh(order)
    assert second.ssl_status == SslStatus.ACTIVE
    assert order.ssl_status == SslStatus.ACTIVE
    assert order.is_publish_ready is True
    assert order.last_ssl_check is not None


@pytest.mark.asyncio
@pytest.mark.parametrize("dns_status", [
    DnsStatus.PENDING, DnsStatus.CONFIGURING, DnsStatus.PROPAGATING, DnsStatus.ERROR,
])
async def test_ssl_waits_for_active_dns(service, make_order, certs, db, dns_status):
    """SSL check before DNS is active is informational only."""
    order = make_order(dns_status=dns_status, cloudflare_zone_id="zone-1")

    result = await service.check_ssl_status(order.id)

    db.refresh(order)
    assert "DNS" in result.message
    assert order.ssl_status == SslStatus.PENDING
    assert certs.requested == []
    assert certs.status_calls == 0


@pytest.mark.asyncio
async def test_still_provisioning_records_the_check(service, make_order, certs, db):
    order = make_order(
        dns_status=DnsStatus.ACTIVE, ssl_status=SslStatus.PROVISIONING, cloudflare_zone_id="zone-1"
    )
    certs.state = CertificateState(status="provisioning", detail="pending_validation")

    result = await service.check_ssl_status(order.id)

    db.refresh(order)
    assert "pending_validation" in result.message
    assert order.ssl_status == SslStatus.PROVISIONING
    assert order.last_ssl_check is not None


@pytest.mark.asyncio
async def test_validation_failure_sets_error(service, make_order, certs, db):
    order = make_order(
        dns_status=DnsStatus.ACTIVE, ssl_status=SslStatus.PROVISIONING, cloudflare_zone_id="zone-1"
    )
    certs.state = CertificateState(status="error", detail="CAA record prevents issuance")

    result = await service.check_ssl_status(order.id)

    db.refresh(order)
    assert order.ssl_status == SslStatus.ERROR
    assert order.ssl_error_message == "CAA record prevents issuance"
    assert result.message == "CAA record prevents issuance"
    assert order.dns_status == DnsStatus.ACTIVE


@pytest.mark.asyncio
async def test_rejected_certificate_request_sets_error(service, make_order, certs, db):
    order = make_order(dns_status=DnsStatus.ACTIVE, cloudflare_zone_id="zone-1")
    certs.request_error = ProviderError("Universal SSL is disabled for this zone", code=1450)

    await service.check_ssl_status(order.id)

    db.refresh(order)
    assert order.ssl_status == SslStatus.ERROR
    assert order.ssl_error_message == "Universal SSL is disabled for this zone"


@pytest.mark.asyncio
async def test_error_can_be_retried(service, make_order, certs, db):
    order = make_order(
        dns_status=DnsStatus.ACTIVE,
        ssl_status=SslStatus.ERROR,
        ssl_error_message="CAA record prevents issuance",
        cloudflare_zone_id="zone-1",
    )

    result = await service.check_ssl_status(order.id)

    db.refresh(order)
    assert result.ssl_status == SslStatus.PROVISIONING
    assert order.ssl_error_message is None
    assert certs.requested == ["zone-1"]


@pytest.mark.asyncio
async def test_active_certificate_is_not_rechecked(service, make_order, certs):
    order = make_order(dns_status=DnsStatus.ACTIVE, ssl_status=SslStatus.ACTIVE, cloudflare_zone_id="zone-1")

    result = await service.check_ssl_status(order.id)

    assert result.ssl_status == SslStatus.ACTIVE
    assert certs.status_calls == 0
    assert certs.requested == []


@pytest.mark.asyncio
async def test_transient_failure_is_retryable(service, make_order, certs, db):
    order = make_order(
        dns_status=DnsStatus.ACTIVE, ssl_status=SslStatus.PROVISIONING, cloudflare_zone_id="zone-1"
    )
    certs.status_error = ProviderTransientError("Cloudflare did not respond in time, please retry shortly")

    result = await service.check_ssl_status(order.id)

    db.refresh(order)
    assert result.retryable is True
    assert order.ssl_status == SslStatus.PROVISIONING
    assert order.ssl_error_message is None


@pytest.mark.asyncio
async def test_manual_domain_has_no_automatic_certificate(service, make_order, certs):
    order = make_order(dns_status=DnsStatus.ACTIVE)

    result = await service.check_ssl_status(order.id)

    assert result.ssl_status == SslStatus.PENDING
    assert certs.requested == []


@pytest.mark.asyncio
async def test_ssl_not_activated_when_dns_fails_meanwhile(service, make_order, certs, db):
    order = make_order(
        dns_status=DnsStatus.ACTIVE, ssl_status=SslStatus.PROVISIONING, cloudflare_zone_id="zone-1"
    )
    certs.state = CertificateState(status="active", detail="Certificate issued")

    def dns_breaks():
        # Another worker records a DNS failure while the certificate query is in flight
        db.query(DomainOrder).filter(DomainOrder.id == order.id).update(
            {"dns_status": DnsStatus.ERROR, "dns_error_message": "Zone deactivated"},
            synchronize_session=False,
        )
        db.commit()

    certs.on_status = dns_breaks

    result = await service.check_ssl_status(order.id)

    db.refresh(order)
    assert order.dns_status == DnsStatus.ERROR
    assert order.ssl_status == SslStatus.PROVISIONING
    assert order.is_publish_ready is False
    assert "changed concurrently" in result.message
