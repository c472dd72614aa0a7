"""Quote service: drafting and the quote state machine (open, close, cancel)."""
import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from quoteflow.models import (
    Quote, QuoteStatus, QuoteItem, Product, ProductPackaging, AuditAction
)
from quoteflow.exceptions import BusinessLogicError, NotFoundError, ValidationError, IllegalTransitionError
from quoteflow.services import invitation_service
from quoteflow.services.audit_service import log_action
from quoteflow.services.snapshot_service import record_closure
from quoteflow.blueprints.metrics import quote_transitions_total, invitation_emails_total
from quoteflow.utils.clock import utcnow, to_naive_utc
from quoteflow.utils.formatters import decimal_str, iso
from quoteflow.utils.number_format import parse_decimal
from quoteflow.utils.transitions import QUOTE_TRANSITIONS, next_status, allowed_actions

logger = logging.getLogger(__name__)


def _get_quote(session: Session, quote_id: int, tenant_id: int, lock: bool = False) -> Quote:
    query = session.query(Quote).filter(
        Quote.id == quote_id,
        Quote.tenant_id == tenant_id,
        Quote.deleted_at.is_(None)
    )
    if lock:
        query = query.with_for_update()
    quote = query.first()
    if not quote:
        raise NotFoundError(f'Cotización {quote_id} no encontrada.')
    return quote


def _require_draft(quote: Quote) -> None:
    if quote.status != QuoteStatus.DRAFT.value:
        raise BusinessLogicError('Solo se pueden editar los ítems de una cotización en borrador.')


def _parse_deadline(value, require_future: bool):
    if value in (None, ''):
        return None
    try:
        deadline = to_naive_utc(value)
    except (TypeError, ValueError):
        raise ValidationError('Fecha límite inválida', field='deadline')
    if require_future and deadline <= utcnow():
        raise ValidationError('La fecha límite debe ser futura', field='deadline')
    return deadline


def _parse_qty(value):
    qty = parse_decimal(value, field='requested_qty', allow_none=False, places='0.001')
    if qty <= 0:
        raise ValidationError('La cantidad debe ser mayor a cero', field='requested_qty')
    return qty


def _resolve_catalog(session: Session, tenant_id: int, product_id, package_id):
    product = session.query(Product).filter(
        Product.id == product_id,
        Product.tenant_id == tenant_id
    ).first()
    if not product:
        raise NotFoundError(f'Producto {product_id} no encontrado.')
    if package_id:
        package = session.query(ProductPackaging).filter(
            ProductPackaging.id == package_id,
            ProductPackaging.product_id == product.id
        ).first()
        if not package:
            raise NotFoundError(f'Presentación {package_id} no encontrada para el producto.')
    return product


# ----------------------------------------------------------------------------
# Drafting
# ----------------------------------------------------------------------------

def create_quote(
    session: Session,
    tenant_id: int,
    title: str,
    description: Optional[str] = None,
    deadline=None,
    user_id: Optional[int] = None
) -> Quote:
    """Create a draft quote."""
    if not title or not title.strip():
        raise ValidationError('El título es requerido', field='title')

    try:
        quote = Quote(
            tenant_id=tenant_id,
            title=title.strip()[:200],
            description=description.strip() if description else None,
            status=QuoteStatus.DRAFT.value,
            deadline=_parse_deadline(deadline, require_future=True),
            created_by=user_id,
            updated_by=user_id,
        )
        session.add(quote)
        session.flush()

        log_action(session, AuditAction.QUOTE_CREATED, 'quote', quote.id,
                   {'title': quote.title}, tenant_id=tenant_id, user_id=user_id)
        session.commit()
        logger.info(f"[QUOTE] Quote {quote.id} created for tenant {tenant_id}")
        return quote
    except Exception:
        session.rollback()
        raise


def update_quote(quote_id: int, session: Session, tenant_id: int, user_id: Optional[int] = None, **fields) -> Quote:
    """
    Edit quote header.

    title/description: draft only. deadline: draft or open; moving it
    re-arms the deadline alert.
    """
    try:
        quote = _get_quote(session, quote_id, tenant_id, lock=True)
        is_draft = quote.status == QuoteStatus.DRAFT.value

        if ('title' in fields or 'description' in fields) and not is_draft:
            raise BusinessLogicError('Solo se puede editar el encabezado de una cotización en borrador.')

        if 'title' in fields:
            title = (fields['title'] or '').strip()
            if not title:
                raise ValidationError('El título es requerido', field='title')
            quote.title = title[:200]
        if 'description' in fields:
            quote.description = fields['description'].strip() if fields['description'] else None

        if 'deadline' in fields:
            if quote.status not in (QuoteStatus.DRAFT.value, QuoteStatus.OPEN.value):
                raise BusinessLogicError('No se puede cambiar la fecha límite de una cotización finalizada.')
            quote.deadline = _parse_deadline(fields['deadline'], require_future=True)
            quote.deadline_alert_sent = False

        quote.updated_by = user_id
        log_action(session, AuditAction.QUOTE_UPDATED, 'quote', quote.id,
                   {'fields': sorted(fields)}, tenant_id=tenant_id, user_id=user_id)
        session.commit()
        return quote
    except Exception:
        session.rollback()
        raise


def add_quote_item(
    quote_id: int,
    session: Session,
    tenant_id: int,
    product_id: int,
    requested_qty,
    package_id: Optional[int] = None,
    notes: Optional[str] = None,
    sort_order: Optional[int] = None
) -> QuoteItem:
    """Add a product line to a draft quote. sort_order defaults to the next free slot."""
    try:
        quote = _get_quote(session, quote_id, tenant_id, lock=True)
        _require_draft(quote)
        _resolve_catalog(session, tenant_id, product_id, package_id)

        if sort_order is None:
            current_max = session.query(func.max(QuoteItem.sort_order)).filter(
                QuoteItem.quote_id == quote.id
            ).scalar()
            sort_order = 0 if current_max is None else current_max + 1

        item = QuoteItem(
            quote_id=quote.id,
            product_id=product_id,
            package_id=package_id or None,
            requested_qty=_parse_qty(requested_qty),
            notes=notes.strip() if notes else None,
            sort_order=int(sort_order),
        )
        session.add(item)
        session.commit()
        return item
    except Exception:
        session.rollback()
        raise


def _get_item(session: Session, item_id: int, tenant_id: int) -> QuoteItem:
    item = session.query(QuoteItem).join(Quote).filter(
        QuoteItem.id == item_id,
        Quote.tenant_id == tenant_id,
        Quote.deleted_at.is_(None)
    ).first()
    if not item:
        raise NotFoundError(f'Ítem {item_id} no encontrado.')
    return item


def update_quote_item(item_id: int, session: Session, tenant_id: int, **fields) -> QuoteItem:
    """Edit qty, package, notes or sort_order of a draft item."""
    try:
        item = _get_item(session, item_id, tenant_id)
        _require_draft(item.quote)

        if 'package_id' in fields:
            _resolve_catalog(session, tenant_id, item.product_id, fields['package_id'])
            item.package_id = fields['package_id'] or None
        if 'requested_qty' in fields:
            item.requested_qty = _parse_qty(fields['requested_qty'])
        if 'notes' in fields:
            item.notes = fields['notes'].strip() if fields['notes'] else None
        if 'sort_order' in fields and fields['sort_order'] is not None:
            item.sort_order = int(fields['sort_order'])

        session.commit()
        return item
    except Exception:
        session.rollback()
        raise


def remove_quote_item(item_id: int, session: Session, tenant_id: int) -> None:
    try:
        item = _get_item(session, item_id, tenant_id)
        _require_draft(item.quote)
        session.delete(item)
        session.commit()
    except Exception:
        session.rollback()
        raise


def duplicate_quote(quote_id: int, session: Session, tenant_id: int, user_id: Optional[int] = None) -> Quote:
    """Copy a quote and its items into a new draft. No invitations, responses or winners."""
    try:
        source = _get_quote(session, quote_id, tenant_id)
        copy = Quote(
            tenant_id=tenant_id,
            title=f"{source.title} (copia)"[:200],
            description=source.description,
            status=QuoteStatus.DRAFT.value,
            created_by=user_id,
            updated_by=user_id,
        )
        session.add(copy)
        session.flush()

        for item in source.items:
            session.add(QuoteItem(
                quote_id=copy.id,
                product_id=item.product_id,
                package_id=item.package_id,
                requested_qty=item.requested_qty,
                notes=item.notes,
                sort_order=item.sort_order,
            ))

        log_action(session, AuditAction.QUOTE_CREATED, 'quote', copy.id,
                   {'duplicated_from': source.id}, tenant_id=tenant_id, user_id=user_id)
        session.commit()
        logger.info(f"[QUOTE] Quote {source.id} duplicated as {copy.id}")
        return copy
    except Exception:
        session.rollback()
        raise


def delete_quote(quote_id: int, session: Session, tenant_id: int, user_id: Optional[int] = None) -> None:
    """Soft delete. Open quotes must be closed or cancelled first."""
    try:
        quote = _get_quote(session, quote_id, tenant_id, lock=True)
        if quote.status == QuoteStatus.OPEN.value:
            raise BusinessLogicError('No se puede eliminar una cotización abierta. Cerrala o cancelala primero.')

        quote.deleted_at = utcnow()
        quote.updated_by = user_id
        log_action(session, AuditAction.QUOTE_DELETED, 'quote', quote.id, None,
                   tenant_id=tenant_id, user_id=user_id)
        session.commit()
    except Exception:
        session.rollback()
        raise


def get_quote(quote_id: int, session: Session, tenant_id: int) -> Quote:
    return _get_quote(session, quote_id, tenant_id)


def list_quotes(
    session: Session,
    tenant_id: int,
    status: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0
) -> List[Quote]:
    query = session.query(Quote).filter(
        Quote.tenant_id == tenant_id,
        Quote.deleted_at.is_(None)
    )
    if status:
        query = query.filter(Quote.status == status)
    if search:
        query = query.filter(Quote.title.ilike(f"%{search.strip()}%"))
    return query.order_by(Quote.created_at.desc(), Quote.id.desc()).limit(limit).offset(offset).all()


# ----------------------------------------------------------------------------
# State machine
# ----------------------------------------------------------------------------

def _transition(quote: Quote, action: str) -> str:
    """Resolve the next status or raise IllegalTransitionError (status unchanged)."""
    try:
        target = next_status(QUOTE_TRANSITIONS, 'quote', quote.status, action)
    except IllegalTransitionError:
        quote_transitions_total.labels(action=action, result='illegal').inc()
        raise
    return target


def open_quote(
    quote_id: int,
    session: Session,
    tenant_id: int,
    user_id: Optional[int] = None,
    link_builder: Optional[Callable[[str], str]] = None
) -> Dict[str, List[int]]:
    """
    draft -> open, then notify every invited supplier.

    The transition commits first; e-mail failures are reported in the
    returned dispatch report and never undo it.

    Returns:
        {'sent': [supplier_id...], 'failed': [...], 'skipped': [...]}
    """
    try:
        quote = _get_quote(session, quote_id, tenant_id, lock=True)
        target = _transition(quote, 'open')

        if not quote.items:
            raise BusinessLogicError('Agregá al menos un ítem antes de abrir la cotización.')
        if not quote.invitations:
            raise BusinessLogicError('Invitá al menos un proveedor antes de abrir la cotización.')
        if quote.is_expired():
            raise BusinessLogicError('La fecha límite ya pasó. Actualizala antes de abrir.')

        quote.status = target
        quote.opened_at = utcnow()
        quote.updated_by = user_id
        log_action(session, AuditAction.QUOTE_OPENED, 'quote', quote.id,
                   {'invitations': len(quote.invitations)}, tenant_id=tenant_id, user_id=user_id)
        session.commit()
    except Exception:
        session.rollback()
        raise

    quote_transitions_total.labels(action='open', result='ok').inc()
    logger.info(f"[QUOTE] Quote {quote_id} opened by user {user_id}")

    report = {'sent': [], 'failed': [], 'skipped': []}
    for invitation in sorted(quote.invitations, key=lambda i: i.id):
        result = invitation_service.send_invitation_notice(invitation, link_builder)
        report[result].append(invitation.supplier_id)
        invitation_emails_total.labels(result=result).inc()

    if report['failed']:
        logger.warning(f"[QUOTE] Quote {quote_id}: invitation e-mail failed for suppliers {report['failed']}")
    return report


def close_quote(quote_id: int, session: Session, tenant_id: int, user_id: Optional[int] = None) -> Quote:
    """
    open -> closed.

    The snapshot and price history are written in the same transaction,
    before the status changes. If recording fails the quote stays open.
    """
    try:
        quote = _get_quote(session, quote_id, tenant_id, lock=True)
        target = _transition(quote, 'close')

        snapshot = record_closure(quote, session, user_id=user_id)

        quote.status = target
        quote.closed_at = snapshot.created_at
        quote.updated_by = user_id
        log_action(session, AuditAction.QUOTE_CLOSED, 'quote', quote.id,
                   {'snapshot_id': snapshot.id, 'total_value': str(snapshot.total_value)},
                   tenant_id=tenant_id, user_id=user_id)
        session.commit()
    except IllegalTransitionError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        quote_transitions_total.labels(action='close', result='failed').inc()
        logger.error(f"[QUOTE] Closing quote {quote_id} failed, quote left open: {e}")
        raise

    quote_transitions_total.labels(action='close', result='ok').inc()
    logger.info(f"[QUOTE] Quote {quote_id} closed by user {user_id}")
    return quote


def cancel_quote(quote_id: int, session: Session, tenant_id: int, user_id: Optional[int] = None) -> Quote:
    """open|closed -> cancelled. Terminal, no snapshot."""
    try:
        quote = _get_quote(session, quote_id, tenant_id, lock=True)
        previous = quote.status
        quote.status = _transition(quote, 'cancel')
        quote.cancelled_at = utcnow()
        quote.updated_by = user_id
        log_action(session, AuditAction.QUOTE_CANCELLED, 'quote', quote.id,
                   {'previous_status': previous}, tenant_id=tenant_id, user_id=user_id)
        session.commit()
    except Exception:
        session.rollback()
        raise

    quote_transitions_total.labels(action='cancel', result='ok').inc()
    logger.info(f"[QUOTE] Quote {quote_id} cancelled (was {previous})")
    return quote


# ----------------------------------------------------------------------------
# Serialization
# ----------------------------------------------------------------------------

def serialize_item(item: QuoteItem) -> Dict[str, Any]:
    return {
        'id': item.id,
        'product_id': item.product_id,
        'product_name': item.product.name if item.product else None,
        'package_id': item.package_id,
        'requested_qty': decimal_str(item.requested_qty),
        'notes': item.notes,
        'sort_order': item.sort_order,
        'winner': {
            'supplier_id': item.winner_supplier_id,
            'response_id': item.winner_response_id,
            'reason': item.winner_reason,
            'set_at': iso(item.winner_set_at),
            'set_by': item.winner_set_by,
        } if item.has_winner else None,
    }


def serialize_quote(quote: Quote, include_items: bool = True) -> Dict[str, Any]:
    data = {
        'id': quote.id,
        'title': quote.title,
        'description': quote.description,
        'status': quote.status,
        'deadline': iso(quote.deadline),
        'opened_at': iso(quote.opened_at),
        'closed_at': iso(quote.closed_at),
        'cancelled_at': iso(quote.cancelled_at),
        'created_at': iso(quote.created_at),
        'actions': allowed_actions(QUOTE_TRANSITIONS, quote.status),
        'item_count': len(quote.items),
        'supplier_count': len(quote.invitations),
    }
    if include_items:
        data['items'] = [serialize_item(item) for item in quote.items]
    return data
