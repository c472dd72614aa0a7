"""UserTenant model - many-to-many relationship between users and tenants with roles."""
import enum
from sqlalchemy import Column, BigInteger, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from quoteflow.database import Base, BigIdentity
from quoteflow.utils.clock import utcnow


class UserRole(enum.Enum):
    """User roles within a tenant."""
    OWNER = 'OWNER'
    ADMIN = 'ADMIN'
    BUYER = 'BUYER'
    VIEWER = 'VIEWER'


class UserTenant(Base):
    """UserTenant model - links users to tenants with roles."""

    __tablename__ = 'user_tenant'
    __table_args__ = (
        UniqueConstraint('user_id', 'tenant_id', name='uq_user_tenant'),
    )

    id = Column(BigIdentity, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey('app_user.id'), nullable=False)
    tenant_id = Column(BigInteger, ForeignKey('tenant.id'), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.BUYER.value)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    user = relationship('AppUser', back_populates='user_tenants')
    tenant = relationship('Tenant', back_populates='user_tenants')

    def __repr__(self):
        return f"<UserTenant(user_id={self.user_id}, tenant_id={self.tenant_id}, role='{self.role}')>"
