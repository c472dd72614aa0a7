"""AppUser model - internal buyers. Authentication itself lives outside this service."""
from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from quoteflow.database import Base, BigIdentity
from quoteflow.utils.clock import utcnow


class AppUser(Base):
    """Platform user as known to the settlement service (id, e-mail, name)."""

    __tablename__ = 'app_user'

    id = Column(BigIdentity, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(200), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    user_tenants = relationship('UserTenant', back_populates='user')

    def __repr__(self):
        return f"<AppUser(id={self.id}, email='{self.email}')>"
