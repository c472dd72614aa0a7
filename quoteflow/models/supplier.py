"""Supplier model (catalog collaborator, referenced by id)."""
from sqlalchemy import Column, BigInteger, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from quoteflow.database import Base, BigIdentity
from quoteflow.utils.clock import utcnow


class Supplier(Base):
    """Supplier (proveedor). Only the fields the settlement pipeline reads."""

    __tablename__ = 'supplier'

    id = Column(BigIdentity, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)  # Invitation notifications go here
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    tenant = relationship('Tenant')

    def __repr__(self):
        return f"<Supplier(id={self.id}, name='{self.name}')>"
