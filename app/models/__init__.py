from app.db.base_class import Base
from app.models.domain_order import DomainOrder, DnsStatus, SslStatus
