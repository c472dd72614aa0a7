"""Quote model for supplier price requests (cotizaciones de compra)."""
import enum
from sqlalchemy import Column, BigInteger, String, Boolean, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from quoteflow.database import Base, BigIdentity
from quoteflow.utils.clock import utcnow


class QuoteStatus(enum.Enum):
    """Quote status enum."""
    DRAFT = "draft"
    OPEN = "open"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class Quote(Base):
    """
    Quote (request for quotation).

    Created in draft, opened to invited suppliers, closed with an audit
    snapshot or cancelled. Status changes go through quote_service only.
    """

    __tablename__ = 'quote'

    id = Column(BigIdentity, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=QuoteStatus.DRAFT.value)
    deadline = Column(DateTime, nullable=True)
    deadline_alert_sent = Column(Boolean, nullable=False, default=False)
    opened_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)
    created_by = Column(BigInteger, ForeignKey('app_user.id'), nullable=True)
    updated_by = Column(BigInteger, ForeignKey('app_user.id'), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    tenant = relationship('Tenant')
    creator = relationship('AppUser', foreign_keys=[created_by])
    items = relationship(
        'QuoteItem', back_populates='quote', cascade='all, delete-orphan',
        order_by='QuoteItem.sort_order'
    )
    invitations = relationship('QuoteSupplierInvitation', back_populates='quote', cascade='all, delete-orphan')
    snapshot = relationship('QuoteSnapshot', back_populates='quote', uselist=False)

    def __repr__(self):
        return f"<Quote(id={self.id}, title='{self.title}', status='{self.status}')>"

    def is_expired(self, now=None):
        """True once the deadline has passed (evaluated at call time, never cached)."""
        if self.deadline is None:
            return False
        return (now or utcnow()) >= self.deadline

    @property
    def is_deleted(self):
        return self.deleted_at is not None
