"""
Audit Log model for tracking quote and purchase order actions.
"""
import enum
from sqlalchemy import Column, BigInteger, String, Text, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from quoteflow.database import Base, BigIdentity
from quoteflow.utils.clock import utcnow


class AuditAction(enum.Enum):
    """Enumeration of auditable actions."""
    # Quotes
    QUOTE_CREATED = "QUOTE_CREATED"
    QUOTE_UPDATED = "QUOTE_UPDATED"
    QUOTE_OPENED = "QUOTE_OPENED"
    QUOTE_CLOSED = "QUOTE_CLOSED"
    QUOTE_CANCELLED = "QUOTE_CANCELLED"
    QUOTE_DELETED = "QUOTE_DELETED"

    # Invitations
    SUPPLIER_INVITED = "SUPPLIER_INVITED"
    INVITATION_REVOKED = "INVITATION_REVOKED"

    # Winners
    WINNERS_AUTO_SELECTED = "WINNERS_AUTO_SELECTED"
    WINNER_SET = "WINNER_SET"
    WINNER_CLEARED = "WINNER_CLEARED"

    # Purchase orders
    PO_CREATED = "PO_CREATED"
    PO_UPDATED = "PO_UPDATED"
    PO_STATUS_CHANGED = "PO_STATUS_CHANGED"
    PO_DELETED = "PO_DELETED"


class AuditLog(Base):
    """
    Audit log for tracking user actions.
    Multi-tenant: filtered by tenant_id.
    """
    __tablename__ = 'audit_log'

    id = Column(BigIdentity, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False, index=True)
    user_id = Column(BigInteger, ForeignKey('app_user.id'), nullable=True)  # null for system jobs
    action = Column(SQLEnum(AuditAction), nullable=False, index=True)
    resource_type = Column(String(50))  # e.g., 'quote', 'purchase_order'
    resource_id = Column(BigInteger)
    details = Column(Text)  # JSON-encoded
    ip_address = Column(String(45))
    user_agent = Column(String(255))
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    # Relationships
    tenant = relationship('Tenant')
    user = relationship('AppUser')

    def __repr__(self):
        return f"<AuditLog {self.action.value} by user {self.user_id} at {self.created_at}>"
