"""QuoteSnapshot model - immutable copy of a quote taken when it closes."""
import logging
from sqlalchemy import Column, BigInteger, Integer, Numeric, DateTime, JSON, ForeignKey, event
from sqlalchemy.orm import relationship
from quoteflow.database import Base, BigIdentity
from quoteflow.exceptions import ConsistencyViolationError
from quoteflow.utils.clock import utcnow

logger = logging.getLogger(__name__)


class QuoteSnapshot(Base):
    """
    Quote Snapshot (write-once).

    payload layout is a compatibility contract for audit/reporting readers:
    {"quote": {...}, "items": [{..., "responses": [...], "winner": {...}|null}],
     "suppliers": [...], "aggregates": {...}}
    """

    __tablename__ = 'quote_snapshot'

    id = Column(BigIdentity, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False, index=True)
    quote_id = Column(BigInteger, ForeignKey('quote.id'), nullable=False, unique=True)
    payload = Column(JSON, nullable=False)
    item_count = Column(Integer, nullable=False)
    supplier_count = Column(Integer, nullable=False)
    total_value = Column(Numeric(14, 2), nullable=False)
    created_by = Column(BigInteger, ForeignKey('app_user.id'), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    quote = relationship('Quote', back_populates='snapshot')

    def __repr__(self):
        return f"<QuoteSnapshot(id={self.id}, quote_id={self.quote_id}, items={self.item_count}, total={self.total_value})>"


@event.listens_for(QuoteSnapshot, 'before_update')
@event.listens_for(QuoteSnapshot, 'before_delete')
def _refuse_snapshot_changes(mapper, connection, target):
    logger.critical(f"[CONSISTENCY] Attempt to modify QuoteSnapshot {target.id} of quote {target.quote_id}")
    raise ConsistencyViolationError('Los snapshots de cotización no se pueden modificar')
