"""PriceHistoryEntry model - append-only ledger of accepted prices."""
import logging
from sqlalchemy import Column, BigInteger, Numeric, DateTime, ForeignKey, Index, event
from sqlalchemy.orm import relationship
from quoteflow.database import Base, BigIdentity
from quoteflow.exceptions import ConsistencyViolationError
from quoteflow.utils.clock import utcnow

logger = logging.getLogger(__name__)


class PriceHistoryEntry(Base):
    """Accepted price for (product, supplier, package), with quote/item provenance."""

    __tablename__ = 'price_history'
    __table_args__ = (
        Index('ix_price_history_tenant_product', 'tenant_id', 'product_id', 'recorded_at'),
    )

    id = Column(BigIdentity, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    supplier_id = Column(BigInteger, ForeignKey('supplier.id'), nullable=False)
    package_id = Column(BigInteger, ForeignKey('product_packaging.id'), nullable=True)
    price = Column(Numeric(14, 2), nullable=False)
    recorded_at = Column(DateTime, nullable=False, default=utcnow)
    quote_id = Column(BigInteger, ForeignKey('quote.id'), nullable=False)
    quote_item_id = Column(BigInteger, ForeignKey('quote_item.id'), nullable=False)

    # Relationships
    product = relationship('Product')
    supplier = relationship('Supplier')

    def __repr__(self):
        return f"<PriceHistoryEntry(id={self.id}, product_id={self.product_id}, supplier_id={self.supplier_id}, price={self.price})>"


@event.listens_for(PriceHistoryEntry, 'before_update')
@event.listens_for(PriceHistoryEntry, 'before_delete')
def _refuse_ledger_changes(mapper, connection, target):
    logger.critical(f"[CONSISTENCY] Attempt to modify price history entry {target.id}")
    raise ConsistencyViolationError('El historial de precios es de solo agregado')
