"""PurchaseOrderItem model for purchase order lines."""
from sqlalchemy import Column, BigInteger, Integer, Numeric, DateTime, Text, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from quoteflow.database import Base, BigIdentity
from quoteflow.utils.clock import utcnow


class PurchaseOrderItem(Base):
    """
    Purchase Order Item.

    total_price = qty * unit_price, computed by the service on every write.
    quote_item_id / quote_response_id trace lines copied from a quote winner.
    """

    __tablename__ = 'purchase_order_item'
    __table_args__ = (
        CheckConstraint('qty >= 0', name='ck_po_item_qty_non_negative'),
        CheckConstraint('unit_price >= 0', name='ck_po_item_price_non_negative'),
        CheckConstraint('total_price >= 0', name='ck_po_item_total_non_negative'),
    )

    id = Column(BigIdentity, primary_key=True, autoincrement=True)
    po_id = Column(BigInteger, ForeignKey('purchase_order.id'), nullable=False, index=True)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    package_id = Column(BigInteger, ForeignKey('product_packaging.id'), nullable=True)
    quote_item_id = Column(BigInteger, ForeignKey('quote_item.id'), nullable=True)
    quote_response_id = Column(BigInteger, ForeignKey('quote_response.id'), nullable=True)
    qty = Column(Numeric(12, 3), nullable=False)
    unit_price = Column(Numeric(14, 2), nullable=False)
    total_price = Column(Numeric(14, 2), nullable=False)
    delivery_days = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    purchase_order = relationship('PurchaseOrder', back_populates='items')
    product = relationship('Product')
    package = relationship('ProductPackaging')

    def __repr__(self):
        return f"<PurchaseOrderItem(id={self.id}, po_id={self.po_id}, qty={self.qty}, total={self.total_price})>"
