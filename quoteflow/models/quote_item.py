"""QuoteItem model - one requested product line of a quote, plus its winner."""
import logging
from sqlalchemy import Column, BigInteger, String, Integer, Numeric, DateTime, Text, ForeignKey, event
from sqlalchemy.orm import relationship
from quoteflow.database import Base, BigIdentity
from quoteflow.exceptions import ConsistencyViolationError

logger = logging.getLogger(__name__)

WINNER_FIELDS = ('winner_supplier_id', 'winner_response_id', 'winner_reason', 'winner_set_at')


class QuoteItem(Base):
    """
    Quote Item.

    The winner_* columns are all set together or all null. winner_set_by is
    informational and may stay null for system selections.
    """

    __tablename__ = 'quote_item'

    id = Column(BigIdentity, primary_key=True, autoincrement=True)
    quote_id = Column(BigInteger, ForeignKey('quote.id'), nullable=False, index=True)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    package_id = Column(BigInteger, ForeignKey('product_packaging.id'), nullable=True)
    requested_qty = Column(Numeric(12, 3), nullable=False)
    notes = Column(Text, nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)

    winner_supplier_id = Column(BigInteger, ForeignKey('supplier.id'), nullable=True)
    winner_response_id = Column(
        BigInteger, ForeignKey('quote_response.id', use_alter=True, name='fk_quote_item_winner_response'),
        nullable=True
    )
    winner_reason = Column(String(255), nullable=True)
    winner_set_at = Column(DateTime, nullable=True)
    winner_set_by = Column(BigInteger, ForeignKey('app_user.id'), nullable=True)

    # Relationships
    quote = relationship('Quote', back_populates='items')
    product = relationship('Product')
    package = relationship('ProductPackaging')
    responses = relationship(
        'QuoteResponse', back_populates='item',
        foreign_keys='QuoteResponse.quote_item_id'
    )
    winner_supplier = relationship('Supplier', foreign_keys=[winner_supplier_id])

    def __repr__(self):
        return f"<QuoteItem(id={self.id}, quote_id={self.quote_id}, product_id={self.product_id}, winner={self.winner_supplier_id})>"

    @property
    def has_winner(self):
        return self.winner_response_id is not None

    def assign_winner(self, supplier_id, response_id, reason, set_at, set_by=None):
        """Set every winner field in one step."""
        self.winner_supplier_id = supplier_id
        self.winner_response_id = response_id
        self.winner_reason = reason
        self.winner_set_at = set_at
        self.winner_set_by = set_by

    def reset_winner(self):
        """Null every winner field in one step."""
        self.assign_winner(None, None, None, None, None)


@event.listens_for(QuoteItem, 'before_insert')
@event.listens_for(QuoteItem, 'before_update')
def _guard_winner_fields(mapper, connection, target):
    """Reject a flush that would leave the winner partially populated."""
    populated = [getattr(target, name) is not None for name in WINNER_FIELDS]
    if any(populated) and not all(populated):
        logger.critical(
            f"[CONSISTENCY] QuoteItem {target.id} winner fields partially set: "
            f"{dict((name, getattr(target, name)) for name in WINNER_FIELDS)}"
        )
        raise ConsistencyViolationError(
            f'Ítem {target.id}: los campos de ganador deben completarse juntos'
        )
