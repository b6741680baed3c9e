"""Background re-check scheduling (tasks invoked synchronously)."""
import pytest

from app.config import settings
from app.models.domain_order import DnsStatus, SslStatus
from app.services.cloudflare import CertificateState, PropagationState
from app.services.domain_activation import DomainActivationService, OrderLockRegistry
from app.tasks import domain_tasks


@pytest.fixture
def queued(monkeypatch, session_factory, dns, certs):
    """Route the tasks at the test database and capture re-queued checks."""
    calls = []
    monkeypatch.setattr(domain_tasks, "SessionLocal", session_factory)
    monkeypatch.setattr(
        domain_tasks,
        "_build_service",
        lambda db: DomainActivationService(db, dns, certs, locks=OrderLockRegistry()),
    )
    monkeypatch.setattr(
        domain_tasks.recheck_domain_task,
        "apply_async",
        lambda args=None, countdown=None, **kw: calls.append((args, countdown)),
    )
    return calls


def test_backoff_is_exponential_and_bounded():
    delays = [domain_tasks.next_recheck_delay(n) for n in range(10)]

    assert delays[0] == settings.DOMAIN_RECHECK_BASE_SECONDS
    assert delays[1] == settings.DOMAIN_RECHECK_BASE_SECONDS * 2
    assert delays == sorted(delays)
    assert max(delays) == settings.DOMAIN_RECHECK_MAX_SECONDS


def test_unresolved_order_is_requeued(queued, make_order, dns, db):
    order = make_order(dns_status=DnsStatus.CONFIGURING, cloudflare_zone_id="zone-1")
    dns.propagation = PropagationState(resolved=False, detail="Zone is pending")

    outcome = domain_tasks.recheck_domain_task(str(order.id), attempt=2)

    db.refresh(order)
    assert outcome["done"] is False
    assert order.dns_status == DnsStatus.PROPAGATING
    assert queued == [([str(order.id), 3], domain_tasks.next_recheck_delay(3))]


def test_settled_order_is_not_requeued(queued, make_order, dns, certs, db):
    order = make_order(dns_status=DnsStatus.PROPAGATING, cloudflare_zone_id="zone-1")
    dns.propagation = PropagationState(resolved=True, detail="Zone active and CNAME in place")

    first = domain_tasks.recheck_domain_task(str(order.id))
    assert first["done"] is False
    assert first["ssl_status"] == "provisioning"

    certs.state = CertificateState(status="active", detail="Certificate issued")
    second = domain_tasks.recheck_domain_task(str(order.id), attempt=1)

    db.refresh(order)
    assert second["done"] is True
    assert order.dns_status == DnsStatus.ACTIVE
    assert order.ssl_status == SslStatus.ACTIVE
    assert len(queued) == 1


def test_error_stops_rechecks(queued, make_order, dns, db):
    order = make_order(dns_status=DnsStatus.PROPAGATING, cloudflare_zone_id="zone-1")
    dns.propagation = PropagationState(resolved=False, detail="moved", terminal_error="Cloudflare zone for foo.com is moved")

    outcome = domain_tasks.recheck_domain_task(str(order.id))

    assert outcome["done"] is True
    assert outcome["dns_status"] == "error"
    assert queued == []


def test_attempt_budget_is_bounded(queued, make_order, dns):
    order = make_order(dns_status=DnsStatus.PROPAGATING, cloudflare_zone_id="zone-1")
    dns.propagation = PropagationState(resolved=False, detail="Zone is pending")

    outcome = domain_tasks.recheck_domain_task(str(order.id), attempt=settings.DOMAIN_RECHECK_MAX_ATTEMPTS - 1)

    assert outcome["done"] is False
    assert queued == []


def test_missing_order_is_dropped(queued):
    outcome = domain_tasks.recheck_domain_task("44444444-4444-4444-4444-444444444444")

    assert outcome["missing"] is True
    assert queued == []


def test_sweep_reconciles_outstanding_orders(queued, make_order, dns, db):
    waiting = make_order("waiting.com", dns_status=DnsStatus.CONFIGURING, cloudflare_zone_id="zone-1")
    make_order("new.com")
    make_order("live.com", dns_status=DnsStatus.ACTIVE, ssl_status=SslStatus.ACTIVE, cloudflare_zone_id="zone-2")
    dns.propagation = PropagationState(resolved=False, detail="Zone is pending")

    summary = domain_tasks.reconcile_pending_domains_task()

    db.refresh(waiting)
    assert summary == {"checked": 1, "settled": 0}
    assert waiting.dns_status == DnsStatus.PROPAGATING


def test_requeue_intervals_grow_from_the_initial_delay(queued, make_order, dns):
    order = make_order(dns_status=DnsStatus.PROPAGATING, cloudflare_zone_id="zone-1")
    dns.propagation = PropagationState(resolved=False, detail="Zone is pending")

    # setup queues attempt 0 with next_recheck_delay(0)
    for attempt in range(3):
        domain_tasks.recheck_domain_task(str(order.id), attempt=attempt)

    delays = [domain_tasks.next_recheck_delay(0)] + [countdown for _, countdown in queued]
    assert delays == [settings.DOMAIN_RECHECK_BASE_SECONDS * 2 ** n for n in range(4)]


def test_sweep_starts_with_never_checked_orders(make_order, db):
    from datetime import datetime, timezone

    from app.crud import crud_domain_order

    make_order("checked.com", dns_status=DnsStatus.CONFIGURING, cloudflare_zone_id="zone-1",
               last_dns_check=datetime(2024, 1, 1, tzinfo=timezone.utc))
    fresh = make_order("fresh.com", dns_status=DnsStatus.CONFIGURING, cloudflare_zone_id="zone-2")

    batch = crud_domain_order.get_needing_reconcile(db, limit=1)

    assert [o.id for o in batch] == [fresh.id]
