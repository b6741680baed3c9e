import asyncio
import logging
from typing import Any, Dict
from uuid import UUID

from app.api.deps import get_certificate_provider, get_dns_provider, get_registrar
from app.celery_app import celery_app
from app.config import settings
from app.crud import crud_domain_order
from app.db.session import SessionLocal
from app.models.domain_order import DnsStatus, SslStatus
from app.services.domain_activation import DomainActivationService, OrderLockRegistry
from app.services.domain_errors import DomainOrderNotFound

logger = logging.getLogger("personas.domains.tasks")


def next_recheck_delay(attempt: int) -> int:
    """Bounded exponential backoff in seconds: base * 2^attempt, capped at the max."""
    delay = settings.DOMAIN_RECHECK_BASE_SECONDS * (2 ** max(attempt, 0))
    return min(delay, settings.DOMAIN_RECHECK_MAX_SECONDS)


def _build_service(db) -> DomainActivationService:
    # Fresh lock registry: each task runs its own event loop
    return DomainActivationService(
        db, get_dns_provider(), get_certificate_provider(),
        locks=OrderLockRegistry(), registrar=get_registrar(),
    )


async def reconcile_order(service: DomainActivationService, order_id: UUID) -> Dict[str, Any]:
    """One poll cycle: DNS first, then SSL once DNS is active."""
    dns = await service.check_dns_status(order_id)
    ssl = None
    if dns.dns_status == DnsStatus.ACTIVE:
        ssl = await service.check_ssl_status(order_id)

    ssl_status = ssl.ssl_status if ssl else None
    done = (
        dns.dns_status in (DnsStatus.PENDING, DnsStatus.ERROR)
        or ssl_status in (SslStatus.ACTIVE, SslStatus.ERROR)
    )
    return {
        "order_id": str(order_id),
        "dns_status": dns.dns_status.value if dns.dns_status else None,
        "ssl_status": ssl_status.value if ssl_status else None,
        "message": ssl.message if ssl else dns.message,
        "done": done,
    }


@celery_app.task(bind=True)
def recheck_domain_task(self, order_id: str, attempt: int = 0):
    """
    Scheduled re-check for one order.

    Re-queues itself with exponential backoff until the order is publish-ready,
    lands in `error` (no automatic un-erroring) or the attempt budget runs out.
    """
    db = SessionLocal()
    try:
        outcome = asyncio.run(reconcile_order(_build_service(db), UUID(order_id)))
    except DomainOrderNotFound:
        logger.warning("Re-check skipped, domain order %s no longer exists", order_id)
        return {"order_id": order_id, "done": True, "missing": True}
    finally:
        db.close()

    if outcome["done"]:
        logger.info("Domain order %s settled: dns=%s ssl=%s", order_id, outcome["dns_status"], outcome["ssl_status"])
        return outcome

    if attempt + 1 >= settings.DOMAIN_RECHECK_MAX_ATTEMPTS:
        logger.warning("Domain order %s still not active after %d re-checks, giving up", order_id, attempt + 1)
        return outcome

    countdown = next_recheck_delay(attempt + 1)
    recheck_domain_task.apply_async(args=[order_id, attempt + 1], countdown=countdown)
    logger.info("Domain order %s re-check #%d scheduled in %ds", order_id, attempt + 1, countdown)
    return outcome


@celery_app.task
def reconcile_pending_domains_task(limit: int = 200):
    """Beat sweep over every order still waiting on DNS propagation or certificate issuance."""
    db = SessionLocal()
    try:
        order_ids = [o.id for o in crud_domain_order.get_needing_reconcile(db, limit=limit)]
        service = _build_service(db)

        async def _run():
            results = []
            for order_id in order_ids:
                try:
                    results.append(await reconcile_order(service, order_id))
                except DomainOrderNotFound:
                    continue
            return results

        results = asyncio.run(_run())
    finally:
        db.close()

    settled = sum(1 for r in results if r["done"])
    logger.info("Reconciled %d domain orders (%d settled)", len(results), settled)
    return {"checked": len(results), "settled": settled}
