"""Product model (catalog collaborator, referenced by id)."""
from sqlalchemy import Column, BigInteger, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from quoteflow.database import Base, BigIdentity
from quoteflow.utils.clock import utcnow


class Product(Base):
    """Product model."""

    __tablename__ = 'product'

    id = Column(BigIdentity, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False, index=True)
    sku = Column(String, nullable=True)
    name = Column(String, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    tenant = relationship('Tenant')
    packagings = relationship('ProductPackaging', back_populates='product')

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', sku='{self.sku}')>"
