"""QuoteSupplierInvitation model - binds one supplier to one quote through a bearer token."""
import enum
from sqlalchemy import Column, BigInteger, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from quoteflow.database import Base, BigIdentity
from quoteflow.utils.clock import utcnow


class InvitationStatus(enum.Enum):
    """Supplier progress on an invitation. Only ever moves forward."""
    INVITED = "invited"
    VIEWED = "viewed"
    PARTIAL = "partial"
    SUBMITTED = "submitted"


# Rank used to keep status monotonic
INVITATION_STATUS_RANK = {
    InvitationStatus.INVITED.value: 0,
    InvitationStatus.VIEWED.value: 1,
    InvitationStatus.PARTIAL.value: 2,
    InvitationStatus.SUBMITTED.value: 3,
}


class QuoteSupplierInvitation(Base):
    """
    Invitation (quote x supplier).

    public_token is the supplier's only credential. Never log it in full;
    use masked_token.
    """

    __tablename__ = 'quote_supplier_invitation'
    __table_args__ = (
        UniqueConstraint('quote_id', 'supplier_id', name='uq_invitation_quote_supplier'),
    )

    id = Column(BigIdentity, primary_key=True, autoincrement=True)
    quote_id = Column(BigInteger, ForeignKey('quote.id'), nullable=False, index=True)
    supplier_id = Column(BigInteger, ForeignKey('supplier.id'), nullable=False)
    public_token = Column(String(128), nullable=False, unique=True)
    status = Column(String(20), nullable=False, default=InvitationStatus.INVITED.value)
    invited_at = Column(DateTime, nullable=False, default=utcnow)
    last_access_at = Column(DateTime, nullable=True)
    submitted_at = Column(DateTime, nullable=True)

    # Relationships
    quote = relationship('Quote', back_populates='invitations')
    supplier = relationship('Supplier')
    responses = relationship('QuoteResponse', back_populates='invitation')

    def __repr__(self):
        return f"<QuoteSupplierInvitation(id={self.id}, quote_id={self.quote_id}, supplier_id={self.supplier_id}, status='{self.status}')>"

    @property
    def masked_token(self):
        return mask_token(self.public_token)

    def advance_status(self, new_status: str) -> bool:
        """Move status forward; never backward. Returns True if it changed."""
        if INVITATION_STATUS_RANK[new_status] > INVITATION_STATUS_RANK[self.status]:
            self.status = new_status
            return True
        return False


def mask_token(token) -> str:
    """First characters only, for logs."""
    if not token:
        return '<none>'
    return f"{token[:6]}…"
