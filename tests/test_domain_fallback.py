import pytest

from app.config import settings
from app.services.domain_fallback import manual_setup_instructions


def test_instructions_use_platform_default_target(make_order):
    order = make_order("foo.com")

    instructions = manual_setup_instructions(order)

    assert instructions.domain == "foo.com"
    assert instructions.target_host == settings.DOMAIN_TARGET_HOST
    assert [(r.type, r.name, r.value) for r in instructions.records] == [
        ("CNAME", "@", settings.DOMAIN_TARGET_HOST),
        ("CNAME", "www", settings.DOMAIN_TARGET_HOST),
    ]


def test_instructions_use_order_target_host(make_order):
    order = make_order("foo.com", target_host="eu.edge.example.net")

    instructions = manual_setup_instructions(order)

    assert instructions.target_host == "eu.edge.example.net"
    assert all(r.value == "eu.edge.example.net" for r in instructions.records)
    assert any("eu.edge.example.net" in step for step in instructions.steps)


def test_steps_are_ordered_and_end_with_verification(make_order):
    instructions = manual_setup_instructions(make_order("foo.com"))

    assert instructions.steps[0].startswith("Log in")
    assert "'Set up domain'" in instructions.steps[-1]
    assert not any("nameservers" in step for step in instructions.steps)


def test_nameserver_step_when_zone_exists(make_order):
    order = make_order("foo.com", nameservers='["ada.ns.cloudflare.com", "bob.ns.cloudflare.com"]')

    instructions = manual_setup_instructions(order)

    assert any("ada.ns.cloudflare.com, bob.ns.cloudflare.com" in step for step in instructions.steps)


def test_instructions_do_not_modify_order(db, make_order):
    order = make_order("foo.com")

    manual_setup_instructions(order)

    assert not db.dirty
    db.refresh(order)
    assert order.dns_status.value == "pending"


@pytest.mark.asyncio
async def test_last_step_agrees_with_pending_dns_check(db, make_order, certs):
    from app.services.domain_activation import DomainActivationService, OrderLockRegistry
    from tests.fakes import FakeDnsProvider

    service = DomainActivationService(db, FakeDnsProvider(configured=False), certs, locks=OrderLockRegistry())
    order = make_order("foo.com")

    setup = await service.setup_domain(order.id)
    check = await service.check_dns_status(order.id)

    last_step = setup.instructions.steps[-1]
    assert check.dns_status.value == "pending"
    assert "'Set up domain'" in last_step
    assert "'Set up domain'" in check.message
    assert not last_step.startswith("Return to the domain dashboard and click 'Check DNS'")
