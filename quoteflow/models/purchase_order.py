"""Purchase Order model."""
import enum
import logging
from decimal import Decimal
from sqlalchemy import (
    Column, BigInteger, Integer, String, Numeric, Date, DateTime, Text, ForeignKey,
    UniqueConstraint, event
)
from sqlalchemy.orm import relationship
from quoteflow.database import Base, BigIdentity
from quoteflow.exceptions import ConsistencyViolationError
from quoteflow.utils.clock import utcnow

logger = logging.getLogger(__name__)


class PurchaseOrderStatus(enum.Enum):
    """Purchase order status enum."""
    DRAFT = "draft"
    SENT = "sent"
    CONFIRMED = "confirmed"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PurchaseOrder(Base):
    """
    Purchase Order (orden de compra) for one supplier of a closed quote.

    subtotal and total_amount are derived: purchase_order_service recomputes
    them from the item rows after every item mutation.
    """

    __tablename__ = 'purchase_order'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'po_number', name='uq_purchase_order_tenant_number'),
        UniqueConstraint('tenant_id', 'po_sequence', name='uq_purchase_order_tenant_sequence'),
    )

    id = Column(BigIdentity, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False, index=True)
    quote_id = Column(BigInteger, ForeignKey('quote.id'), nullable=True, index=True)
    supplier_id = Column(BigInteger, ForeignKey('supplier.id'), nullable=False)
    po_number = Column(String(64), nullable=False)
    po_sequence = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=PurchaseOrderStatus.DRAFT.value)
    subtotal = Column(Numeric(14, 2), nullable=False, default=Decimal('0.00'))
    tax_amount = Column(Numeric(14, 2), nullable=False, default=Decimal('0.00'))
    shipping_cost = Column(Numeric(14, 2), nullable=False, default=Decimal('0.00'))
    total_amount = Column(Numeric(14, 2), nullable=False, default=Decimal('0.00'))
    delivery_address = Column(Text, nullable=True)
    payment_terms = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    internal_notes = Column(Text, nullable=True)
    expected_delivery_date = Column(Date, nullable=True)
    actual_delivery_date = Column(Date, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)
    created_by = Column(BigInteger, ForeignKey('app_user.id'), nullable=True)
    updated_by = Column(BigInteger, ForeignKey('app_user.id'), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    tenant = relationship('Tenant')
    quote = relationship('Quote')
    supplier = relationship('Supplier')
    items = relationship(
        'PurchaseOrderItem', back_populates='purchase_order', cascade='all, delete-orphan',
        order_by='PurchaseOrderItem.id'
    )

    def __repr__(self):
        return f"<PurchaseOrder(id={self.id}, po_number='{self.po_number}', status='{self.status}', total={self.total_amount})>"

    @property
    def is_editable(self):
        """Only draft orders accept item changes."""
        return self.status == PurchaseOrderStatus.DRAFT.value


def _money(value):
    return Decimal(str(value if value is not None else 0)).quantize(Decimal('0.01'))


@event.listens_for(PurchaseOrder, 'before_insert')
@event.listens_for(PurchaseOrder, 'before_update')
def _guard_header_totals(mapper, connection, target):
    """Reject a flush where total_amount is not subtotal + tax + shipping."""
    expected = _money(target.subtotal) + _money(target.tax_amount) + _money(target.shipping_cost)
    if _money(target.total_amount) != expected:
        logger.critical(
            f"[CONSISTENCY] PurchaseOrder {target.id} total {target.total_amount} "
            f"!= subtotal {target.subtotal} + tax {target.tax_amount} + shipping {target.shipping_cost}"
        )
        raise ConsistencyViolationError(
            f'La orden {target.po_number}: el total no coincide con subtotal + impuestos + envío'
        )
