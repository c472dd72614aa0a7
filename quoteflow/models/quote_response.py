"""QuoteResponse model - one supplier bid for one quote item."""
from sqlalchemy import Column, BigInteger, Integer, Numeric, DateTime, Text, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from quoteflow.database import Base, BigIdentity
from quoteflow.utils.clock import utcnow


class QuoteResponse(Base):
    """
    Quote Response.

    Unique per (invitation, item): re-saving overwrites the row (upsert).
    pricing_tiers holds optional volume prices as [{"min_qty": "100", "price": "4.10"}].
    """

    __tablename__ = 'quote_response'
    __table_args__ = (
        UniqueConstraint('invitation_id', 'quote_item_id', name='uq_response_invitation_item'),
    )

    id = Column(BigIdentity, primary_key=True, autoincrement=True)
    invitation_id = Column(BigInteger, ForeignKey('quote_supplier_invitation.id'), nullable=False, index=True)
    quote_item_id = Column(BigInteger, ForeignKey('quote_item.id'), nullable=False, index=True)
    price = Column(Numeric(14, 2), nullable=True)
    min_qty = Column(Numeric(12, 3), nullable=True)
    delivery_days = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    pricing_tiers = Column(JSON, nullable=True)
    filled_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    invitation = relationship('QuoteSupplierInvitation', back_populates='responses')
    item = relationship('QuoteItem', back_populates='responses', foreign_keys=[quote_item_id])

    def __repr__(self):
        return f"<QuoteResponse(id={self.id}, invitation_id={self.invitation_id}, item_id={self.quote_item_id}, price={self.price})>"

    @property
    def supplier_id(self):
        return self.invitation.supplier_id if self.invitation else None
