"""Models package - exports all SQLAlchemy models."""
# SaaS Core Models
from quoteflow.models.app_user import AppUser
from quoteflow.models.tenant import Tenant
from quoteflow.models.user_tenant import UserTenant, UserRole

# Catalog collaborators
from quoteflow.models.supplier import Supplier
from quoteflow.models.product import Product
from quoteflow.models.product_packaging import ProductPackaging

# Quote settlement
from quoteflow.models.quote import Quote, QuoteStatus
from quoteflow.models.quote_item import QuoteItem, WINNER_FIELDS
from quoteflow.models.quote_supplier_invitation import (
    QuoteSupplierInvitation, InvitationStatus, INVITATION_STATUS_RANK, mask_token
)
from quoteflow.models.quote_response import QuoteResponse
from quoteflow.models.quote_snapshot import QuoteSnapshot
from quoteflow.models.price_history import PriceHistoryEntry
from quoteflow.models.purchase_order import PurchaseOrder, PurchaseOrderStatus
from quoteflow.models.purchase_order_item import PurchaseOrderItem

# Audit
from quoteflow.models.audit_log import AuditLog, AuditAction

__all__ = [
    # SaaS Core
    'Tenant', 'AppUser', 'UserTenant', 'UserRole',
    # Catalog
    'Supplier', 'Product', 'ProductPackaging',
    # Settlement
    'Quote', 'QuoteStatus', 'QuoteItem', 'WINNER_FIELDS',
    'QuoteSupplierInvitation', 'InvitationStatus', 'INVITATION_STATUS_RANK', 'mask_token',
    'QuoteResponse', 'QuoteSnapshot', 'PriceHistoryEntry',
    'PurchaseOrder', 'PurchaseOrderStatus', 'PurchaseOrderItem',
    # Audit
    'AuditLog', 'AuditAction',
]
