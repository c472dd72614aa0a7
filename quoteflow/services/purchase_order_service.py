"""
Purchase order generation and total maintenance.

Every item mutation is followed by recalculate_totals in the same
transaction: subtotal is re-derived with SUM over the current item rows
while the order row is locked, never adjusted incrementally.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from flask import current_app, has_app_context
from sqlalchemy import func
from sqlalchemy.orm import Session

from quoteflow.models import (
    Tenant, Quote, QuoteStatus, QuoteItem, QuoteResponse, Product, ProductPackaging,
    PurchaseOrder, PurchaseOrderStatus, PurchaseOrderItem, AuditAction
)
from quoteflow.exceptions import BusinessLogicError, NotFoundError, ValidationError
from quoteflow.services import email_service
from quoteflow.services.audit_service import log_action
from quoteflow.blueprints.metrics import purchase_orders_generated_total
from quoteflow.utils.clock import utcnow
from quoteflow.utils.formatters import decimal_str, iso
from quoteflow.utils.number_format import parse_decimal, parse_money, parse_int
from quoteflow.utils.transitions import PURCHASE_ORDER_TRANSITIONS, next_status, allowed_actions

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')
HEADER_FIELDS = ('delivery_address', 'payment_terms', 'notes', 'internal_notes', 'expected_delivery_date')


def _to_decimal(value) -> Decimal:
    return Decimal(str(value if value is not None else 0))


def line_total(qty, unit_price) -> Decimal:
    return (_to_decimal(qty) * _to_decimal(unit_price)).quantize(CENTS)


def _po_prefix() -> str:
    if has_app_context():
        return current_app.config.get('PO_NUMBER_PREFIX') or 'PO'
    return 'PO'


def _get_po(session: Session, po_id: int, tenant_id: int, lock: bool = False) -> PurchaseOrder:
    query = session.query(PurchaseOrder).filter(
        PurchaseOrder.id == po_id,
        PurchaseOrder.tenant_id == tenant_id,
        PurchaseOrder.deleted_at.is_(None)
    )
    if lock:
        query = query.with_for_update()
    po = query.first()
    if not po:
        raise NotFoundError(f'Orden de compra {po_id} no encontrada.')
    return po


def _require_editable(po: PurchaseOrder) -> None:
    if not po.is_editable:
        raise BusinessLogicError(
            f'La orden {po.po_number} está en estado {po.status}; solo se editan órdenes en borrador.'
        )


def next_po_number(session: Session, tenant_id: int, now=None):
    """
    Reserve the next (sequence, number) for a tenant.

    The tenant row is locked so two generators cannot take the same
    sequence. Format: PREFIX-YYYYMMDD-NNNNN.
    """
    tenant = session.query(Tenant).filter(Tenant.id == tenant_id).with_for_update().first()
    if not tenant:
        raise NotFoundError(f'Tenant {tenant_id} no encontrado.')

    last = session.query(func.max(PurchaseOrder.po_sequence)).filter(
        PurchaseOrder.tenant_id == tenant_id
    ).scalar()
    sequence = (last or 0) + 1
    stamp = (now or utcnow()).strftime('%Y%m%d')
    return sequence, f"{_po_prefix()}-{stamp}-{sequence:05d}"


def recalculate_totals(po_id: int, session: Session) -> PurchaseOrder:
    """
    Re-derive subtotal and total_amount from the current item rows.

    Locks the order row, flushes pending item changes and sums them.
    Does not commit.
    """
    session.flush()
    po = session.query(PurchaseOrder).filter(
        PurchaseOrder.id == po_id
    ).with_for_update().populate_existing().one()

    subtotal = session.query(
        func.coalesce(func.sum(PurchaseOrderItem.total_price), 0)
    ).filter(PurchaseOrderItem.po_id == po.id).scalar()

    po.subtotal = _to_decimal(subtotal).quantize(CENTS)
    po.total_amount = (po.subtotal + _to_decimal(po.tax_amount) + _to_decimal(po.shipping_cost)).quantize(CENTS)
    session.flush()
    return po


# ----------------------------------------------------------------------------
# Generation
# ----------------------------------------------------------------------------

def _get_closed_quote(session: Session, quote_id: int, tenant_id: int) -> Quote:
    quote = session.query(Quote).filter(
        Quote.id == quote_id,
        Quote.tenant_id == tenant_id,
        Quote.deleted_at.is_(None)
    ).first()
    if not quote:
        raise NotFoundError(f'Cotización {quote_id} no encontrada.')
    if quote.status != QuoteStatus.CLOSED.value:
        raise BusinessLogicError('Solo se generan órdenes de compra desde cotizaciones cerradas.')
    return quote


def _has_live_order(session: Session, quote_id: int, supplier_id: int) -> bool:
    return session.query(PurchaseOrder.id).filter(
        PurchaseOrder.quote_id == quote_id,
        PurchaseOrder.supplier_id == supplier_id,
        PurchaseOrder.status != PurchaseOrderStatus.CANCELLED.value,
        PurchaseOrder.deleted_at.is_(None)
    ).first() is not None


def _build_order(
    session: Session,
    quote: Quote,
    supplier_id: int,
    winning_items: List[QuoteItem],
    user_id: Optional[int],
    delivery_address: Optional[str] = None,
    payment_terms: Optional[str] = None,
    notes: Optional[str] = None
) -> PurchaseOrder:
    """Insert header and items for one supplier, then recompute once. Does not commit."""
    now = utcnow()
    sequence, number = next_po_number(session, quote.tenant_id, now)

    po = PurchaseOrder(
        tenant_id=quote.tenant_id,
        quote_id=quote.id,
        supplier_id=supplier_id,
        po_number=number,
        po_sequence=sequence,
        status=PurchaseOrderStatus.DRAFT.value,
        subtotal=Decimal('0.00'),
        tax_amount=Decimal('0.00'),
        shipping_cost=Decimal('0.00'),
        total_amount=Decimal('0.00'),
        delivery_address=delivery_address.strip() if delivery_address else None,
        payment_terms=payment_terms.strip() if payment_terms else None,
        notes=notes.strip() if notes else None,
        created_by=user_id,
        updated_by=user_id,
    )
    session.add(po)
    session.flush()

    for item in winning_items:
        response = session.query(QuoteResponse).filter(QuoteResponse.id == item.winner_response_id).one()
        session.add(PurchaseOrderItem(
            po_id=po.id,
            product_id=item.product_id,
            package_id=item.package_id,
            quote_item_id=item.id,
            quote_response_id=response.id,
            qty=item.requested_qty,
            unit_price=response.price,
            total_price=line_total(item.requested_qty, response.price),
            delivery_days=response.delivery_days,
        ))

    recalculate_totals(po.id, session)
    log_action(
        session, AuditAction.PO_CREATED, 'purchase_order', po.id,
        {'po_number': po.po_number, 'quote_id': quote.id, 'items': len(winning_items)},
        tenant_id=quote.tenant_id, user_id=user_id
    )
    return po


def _winning_items_by_supplier(quote: Quote) -> Dict[int, List[QuoteItem]]:
    grouped = {}
    for item in quote.items:
        if item.has_winner:
            grouped.setdefault(item.winner_supplier_id, []).append(item)
    return grouped


def generate_purchase_order(
    quote_id: int,
    supplier_id: int,
    session: Session,
    tenant_id: int,
    delivery_address: Optional[str] = None,
    payment_terms: Optional[str] = None,
    notes: Optional[str] = None,
    user_id: Optional[int] = None
) -> PurchaseOrder:
    """
    Create the draft purchase order of one winning supplier of a closed quote.

    Items are the quote items won by the supplier, at the winning price and
    the requested quantity.
    """
    try:
        quote = _get_closed_quote(session, quote_id, tenant_id)
        winning_items = _winning_items_by_supplier(quote).get(supplier_id)
        if not winning_items:
            raise BusinessLogicError('El proveedor no ganó ningún ítem de esta cotización.')
        if _has_live_order(session, quote.id, supplier_id):
            raise BusinessLogicError('Ya existe una orden de compra para este proveedor y cotización.')

        po = _build_order(
            session, quote, supplier_id, winning_items, user_id,
            delivery_address=delivery_address, payment_terms=payment_terms, notes=notes
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    purchase_orders_generated_total.inc()
    logger.info(f"[PO] {po.po_number} generated from quote {quote_id} for supplier {supplier_id} (total {po.total_amount})")
    return po


def generate_purchase_orders_for_quote(
    quote_id: int,
    session: Session,
    tenant_id: int,
    user_id: Optional[int] = None
) -> List[PurchaseOrder]:
    """One draft order per winning supplier; suppliers that already have a live order are skipped."""
    try:
        quote = _get_closed_quote(session, quote_id, tenant_id)
        grouped = _winning_items_by_supplier(quote)
        if not grouped:
            raise BusinessLogicError('La cotización no tiene ítems con ganador.')

        created = []
        for supplier_id in sorted(grouped):
            if _has_live_order(session, quote.id, supplier_id):
                logger.info(f"[PO] Quote {quote_id}: supplier {supplier_id} already has an order, skipped")
                continue
            created.append(_build_order(
                session, quote, supplier_id, grouped[supplier_id], user_id,
                notes=f'Orden generada automáticamente de la cotización #{quote.id}'
            ))
        session.commit()
    except Exception:
        session.rollback()
        raise

    if created:
        purchase_orders_generated_total.inc(len(created))
    logger.info(f"[PO] Quote {quote_id}: {len(created)} purchase order(s) generated")
    return created


# ----------------------------------------------------------------------------
# Items
# ----------------------------------------------------------------------------

def _parse_qty(value):
    qty = parse_decimal(value, field='qty', allow_none=False, places='0.001')
    if qty <= 0:
        raise ValidationError('La cantidad debe ser mayor a cero', field='qty')
    return qty


def _check_catalog(session: Session, tenant_id: int, product_id, package_id) -> None:
    product = session.query(Product.id).filter(
        Product.id == product_id,
        Product.tenant_id == tenant_id
    ).first()
    if not product:
        raise NotFoundError(f'Producto {product_id} no encontrado.')
    if package_id and not session.query(ProductPackaging.id).filter(
        ProductPackaging.id == package_id,
        ProductPackaging.product_id == product_id
    ).first():
        raise NotFoundError(f'Presentación {package_id} no encontrada para el producto.')


def _get_item(session: Session, item_id: int, tenant_id: int) -> PurchaseOrderItem:
    item = session.query(PurchaseOrderItem).join(PurchaseOrder).filter(
        PurchaseOrderItem.id == item_id,
        PurchaseOrder.tenant_id == tenant_id,
        PurchaseOrder.deleted_at.is_(None)
    ).first()
    if not item:
        raise NotFoundError(f'Ítem de orden {item_id} no encontrado.')
    return item


def add_purchase_order_item(
    po_id: int,
    session: Session,
    tenant_id: int,
    product_id: int,
    qty,
    unit_price,
    package_id: Optional[int] = None,
    delivery_days=None,
    notes: Optional[str] = None
) -> PurchaseOrderItem:
    try:
        po = _get_po(session, po_id, tenant_id, lock=True)
        _require_editable(po)
        _check_catalog(session, tenant_id, product_id, package_id)

        qty = _parse_qty(qty)
        price = parse_money(unit_price, field='unit_price', allow_none=False)
        item = PurchaseOrderItem(
            po_id=po.id,
            product_id=product_id,
            package_id=package_id or None,
            qty=qty,
            unit_price=price,
            total_price=line_total(qty, price),
            delivery_days=parse_int(delivery_days, field='delivery_days'),
            notes=notes.strip() if notes else None,
        )
        session.add(item)
        recalculate_totals(po.id, session)
        session.commit()
        return item
    except Exception:
        session.rollback()
        raise


def update_purchase_order_item(item_id: int, session: Session, tenant_id: int, **fields) -> PurchaseOrderItem:
    """Edit qty, unit_price, delivery_days, notes or package of a draft order line."""
    try:
        item = _get_item(session, item_id, tenant_id)
        po = _get_po(session, item.po_id, tenant_id, lock=True)
        _require_editable(po)

        if 'qty' in fields:
            item.qty = _parse_qty(fields['qty'])
        if 'unit_price' in fields:
            item.unit_price = parse_money(fields['unit_price'], field='unit_price', allow_none=False)
        if 'delivery_days' in fields:
            item.delivery_days = parse_int(fields['delivery_days'], field='delivery_days')
        if 'notes' in fields:
            item.notes = fields['notes'].strip() if fields['notes'] else None
        if 'package_id' in fields:
            _check_catalog(session, tenant_id, item.product_id, fields['package_id'])
            item.package_id = fields['package_id'] or None

        item.total_price = line_total(item.qty, item.unit_price)
        recalculate_totals(po.id, session)
        session.commit()
        return item
    except Exception:
        session.rollback()
        raise


def remove_purchase_order_item(item_id: int, session: Session, tenant_id: int) -> PurchaseOrder:
    try:
        item = _get_item(session, item_id, tenant_id)
        po = _get_po(session, item.po_id, tenant_id, lock=True)
        _require_editable(po)

        session.delete(item)
        po = recalculate_totals(po.id, session)
        session.commit()
        return po
    except Exception:
        session.rollback()
        raise


# ----------------------------------------------------------------------------
# Header
# ----------------------------------------------------------------------------

def update_purchase_order_charges(
    po_id: int,
    session: Session,
    tenant_id: int,
    tax_amount=None,
    shipping_cost=None,
    user_id: Optional[int] = None
) -> PurchaseOrder:
    """Set the flat tax and shipping surcharges of a draft order."""
    try:
        po = _get_po(session, po_id, tenant_id, lock=True)
        _require_editable(po)

        if tax_amount is not None:
            po.tax_amount = parse_money(tax_amount, field='tax_amount', allow_none=False)
        if shipping_cost is not None:
            po.shipping_cost = parse_money(shipping_cost, field='shipping_cost', allow_none=False)
        po.total_amount = (
            _to_decimal(po.subtotal) + _to_decimal(po.tax_amount) + _to_decimal(po.shipping_cost)
        ).quantize(CENTS)
        po.updated_by = user_id

        po = recalculate_totals(po.id, session)
        log_action(session, AuditAction.PO_UPDATED, 'purchase_order', po.id,
                   {'tax_amount': str(po.tax_amount), 'shipping_cost': str(po.shipping_cost)},
                   tenant_id=tenant_id, user_id=user_id)
        session.commit()
        return po
    except Exception:
        session.rollback()
        raise


def _parse_date(value, field: str):
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f'Fecha inválida para {field}', field=field)


def update_purchase_order(po_id: int, session: Session, tenant_id: int, user_id: Optional[int] = None, **fields) -> PurchaseOrder:
    """Edit delivery/payment details and notes while the order is draft or sent."""
    try:
        po = _get_po(session, po_id, tenant_id, lock=True)
        if po.status not in (PurchaseOrderStatus.DRAFT.value, PurchaseOrderStatus.SENT.value):
            raise BusinessLogicError(f'La orden {po.po_number} ya no se puede modificar.')

        for name in HEADER_FIELDS:
            if name not in fields:
                continue
            value = fields[name]
            if isinstance(value, str):
                value = value.strip() or None
            if name == 'expected_delivery_date':
                value = _parse_date(value, name)
            setattr(po, name, value)

        po.updated_by = user_id
        log_action(session, AuditAction.PO_UPDATED, 'purchase_order', po.id,
                   {'fields': sorted(f for f in fields if f in HEADER_FIELDS)},
                   tenant_id=tenant_id, user_id=user_id)
        session.commit()
        return po
    except Exception:
        session.rollback()
        raise


def change_purchase_order_status(
    po_id: int,
    new_status: str,
    session: Session,
    tenant_id: int,
    user_id: Optional[int] = None,
    notify_supplier: bool = True
) -> PurchaseOrder:
    """
    Move an order along draft -> sent -> confirmed -> delivered, or cancel
    it from draft/sent. Sending e-mails the supplier (best effort).
    """
    try:
        po = _get_po(session, po_id, tenant_id, lock=True)
        previous = po.status
        target = next_status(PURCHASE_ORDER_TRANSITIONS, 'purchase_order', po.status, new_status)

        if target == PurchaseOrderStatus.SENT.value and not po.items:
            raise BusinessLogicError('No se puede enviar una orden sin ítems.')

        now = utcnow()
        po.status = target
        if target == PurchaseOrderStatus.SENT.value:
            po.sent_at = now
        elif target == PurchaseOrderStatus.CONFIRMED.value:
            po.confirmed_at = now
        elif target == PurchaseOrderStatus.DELIVERED.value:
            po.actual_delivery_date = now.date()
        elif target == PurchaseOrderStatus.CANCELLED.value:
            po.cancelled_at = now
        po.updated_by = user_id

        log_action(session, AuditAction.PO_STATUS_CHANGED, 'purchase_order', po.id,
                   {'from': previous, 'to': target}, tenant_id=tenant_id, user_id=user_id)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[PO] {po.po_number}: {previous} -> {target}")

    if target == PurchaseOrderStatus.SENT.value and notify_supplier:
        _email_supplier(po)
    return po


def _email_supplier(po: PurchaseOrder) -> bool:
    supplier = po.supplier
    if not supplier or not supplier.email:
        logger.info(f"[PO] {po.po_number}: supplier has no e-mail, not notified")
        return False
    lines = [
        {
            'product': item.product.name if item.product else item.product_id,
            'qty': item.qty,
            'unit_price': item.unit_price,
            'total_price': item.total_price,
        }
        for item in po.items
    ]
    return email_service.send_purchase_order_email(
        supplier.email, supplier.name, po.po_number, lines, po.total_amount
    )


def delete_purchase_order(po_id: int, session: Session, tenant_id: int, user_id: Optional[int] = None) -> None:
    """Soft delete a draft or cancelled order."""
    try:
        po = _get_po(session, po_id, tenant_id, lock=True)
        if po.status not in (PurchaseOrderStatus.DRAFT.value, PurchaseOrderStatus.CANCELLED.value):
            raise BusinessLogicError('Solo se pueden eliminar órdenes en borrador o canceladas.')

        po.deleted_at = utcnow()
        po.updated_by = user_id
        log_action(session, AuditAction.PO_DELETED, 'purchase_order', po.id,
                   {'po_number': po.po_number}, tenant_id=tenant_id, user_id=user_id)
        session.commit()
        logger.info(f"[PO] {po.po_number} deleted")
    except Exception:
        session.rollback()
        raise


# ----------------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------------

def get_purchase_order(po_id: int, session: Session, tenant_id: int) -> PurchaseOrder:
    return _get_po(session, po_id, tenant_id)


def list_purchase_orders(
    session: Session,
    tenant_id: int,
    status: Optional[str] = None,
    quote_id: Optional[int] = None,
    supplier_id: Optional[int] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0
) -> List[PurchaseOrder]:
    query = session.query(PurchaseOrder).filter(
        PurchaseOrder.tenant_id == tenant_id,
        PurchaseOrder.deleted_at.is_(None)
    )
    if status:
        query = query.filter(PurchaseOrder.status == status)
    if quote_id:
        query = query.filter(PurchaseOrder.quote_id == quote_id)
    if supplier_id:
        query = query.filter(PurchaseOrder.supplier_id == supplier_id)
    if search:
        query = query.filter(PurchaseOrder.po_number.ilike(f"%{search.strip()}%"))
    return query.order_by(PurchaseOrder.po_sequence.desc()).limit(limit).offset(offset).all()


def serialize_item(item: PurchaseOrderItem) -> Dict[str, Any]:
    return {
        'id': item.id,
        'product_id': item.product_id,
        'product_name': item.product.name if item.product else None,
        'package_id': item.package_id,
        'quote_item_id': item.quote_item_id,
        'quote_response_id': item.quote_response_id,
        'qty': decimal_str(item.qty),
        'unit_price': decimal_str(item.unit_price),
        'total_price': decimal_str(item.total_price),
        'delivery_days': item.delivery_days,
        'notes': item.notes,
    }


def serialize_purchase_order(po: PurchaseOrder, include_items: bool = True) -> Dict[str, Any]:
    data = {
        'id': po.id,
        'po_number': po.po_number,
        'quote_id': po.quote_id,
        'supplier_id': po.supplier_id,
        'supplier_name': po.supplier.name if po.supplier else None,
        'status': po.status,
        'actions': allowed_actions(PURCHASE_ORDER_TRANSITIONS, po.status),
        'subtotal': decimal_str(po.subtotal),
        'tax_amount': decimal_str(po.tax_amount),
        'shipping_cost': decimal_str(po.shipping_cost),
        'total_amount': decimal_str(po.total_amount),
        'delivery_address': po.delivery_address,
        'payment_terms': po.payment_terms,
        'notes': po.notes,
        'internal_notes': po.internal_notes,
        'expected_delivery_date': po.expected_delivery_date.isoformat() if po.expected_delivery_date else None,
        'actual_delivery_date': po.actual_delivery_date.isoformat() if po.actual_delivery_date else None,
        'sent_at': iso(po.sent_at),
        'confirmed_at': iso(po.confirmed_at),
        'cancelled_at': iso(po.cancelled_at),
        'created_at': iso(po.created_at),
    }
    if include_items:
        data['items'] = [serialize_item(item) for item in po.items]
    return data
