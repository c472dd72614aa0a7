"""Product Packaging model."""
from sqlalchemy import Column, BigInteger, String, Numeric, ForeignKey, Boolean
from sqlalchemy.orm import relationship
from quoteflow.database import Base, BigIdentity


class ProductPackaging(Base):
    """
    Package variant a product is quoted in (e.g., Box of 12, Case of 24).
    Quote items and purchase order lines may reference one.
    """
    __tablename__ = 'product_packaging'

    id = Column(BigIdentity, primary_key=True, autoincrement=True)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    name = Column(String(100), nullable=False)  # e.g., "Caja x 12"
    quantity = Column(Numeric(12, 3), nullable=False)  # e.g., 12
    is_default = Column(Boolean, nullable=False, default=False)

    # Relationships
    product = relationship('Product', back_populates='packagings')

    def __repr__(self):
        return f"<ProductPackaging(id={self.id}, name='{self.name}', qty={self.quantity})>"
