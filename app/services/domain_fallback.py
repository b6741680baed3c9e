"""Manual DNS instructions for tenants whose domain cannot be configured automatically."""
from app.models.domain_order import DomainOrder
from app.schemas.domain import ManualDnsRecord, ManualInstructions


def manual_setup_instructions(order: DomainOrder) -> ManualInstructions:
    """
    Ordered steps for configuring the domain at the registrar by hand.

    Pure function: reads the order, never writes it. The CNAME target is the
    order's own target host so tenants on other platform regions get the
    right value.
    """
    target = order.effective_target_host
    domain = order.domain
    records = [
        ManualDnsRecord(type="CNAME", name="@", value=target),
        ManualDnsRecord(type="CNAME", name="www", value=target),
    ]

    steps = [
        f"Log in to the registrar or DNS host that manages {domain}.",
        f"Open the DNS settings for {domain} and remove any existing A, AAAA or CNAME records on '@' and 'www'.",
        f"Add a CNAME record: name '@' (the root of {domain}), value '{target}', TTL automatic. "
        "If your DNS host does not allow a CNAME on the root, use its ALIAS / ANAME / CNAME-flattening record instead.",
        f"Add a CNAME record: name 'www', value '{target}', TTL automatic.",
    ]
    nameservers = order.nameserver_list
    if nameservers:
        steps.append(
            "Alternatively, let the platform manage DNS for you by changing the domain's nameservers to: "
            + ", ".join(nameservers)
            + "."
        )
    steps.extend([
        "Save the changes and wait for DNS propagation; this usually takes a few minutes but can take up to 48 hours.",
        "Return to the domain dashboard and click 'Set up domain' again. DNS and SSL are verified "
        "with 'Check DNS' and 'Check SSL' once setup has completed.",
    ])
    return ManualInstructions(domain=domain, target_host=target, records=records, steps=steps)
