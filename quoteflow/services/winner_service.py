"""
Winner resolution for quote items.

Automatic selection picks the lowest strictly positive price per item;
manual selection overrides it. Winner fields are always written together
through QuoteItem.assign_winner / reset_winner.
"""
import logging
from decimal import Decimal
from typing import Optional

from flask import current_app, has_app_context
from sqlalchemy.orm import Session

from quoteflow.models import (
    Quote, QuoteStatus, QuoteItem, QuoteResponse, AuditAction
)
from quoteflow.exceptions import BusinessLogicError, NotFoundError, ValidationError, WinnerMismatchError
from quoteflow.services.audit_service import log_action
from quoteflow.utils.clock import utcnow

logger = logging.getLogger(__name__)

AUTO_REASON = 'lowest_price'
MANUAL_REASON = 'manual'

TIE_BREAK_EARLIEST = 'earliest_response'
TIE_BREAK_SHORTEST_DELIVERY = 'shortest_delivery'
TIE_BREAKS = (TIE_BREAK_EARLIEST, TIE_BREAK_SHORTEST_DELIVERY)

SAVINGS_AVERAGE = 'average'
SAVINGS_HIGHEST = 'highest'


def _config(name: str, default):
    if has_app_context():
        return current_app.config.get(name, default)
    return default


def _ranking_key(tie_break: str):
    """Sort key: price first, then the configured tie-break, then id for determinism."""
    if tie_break == TIE_BREAK_SHORTEST_DELIVERY:
        return lambda r: (
            r.price,
            r.delivery_days if r.delivery_days is not None else float('inf'),
            r.filled_at,
            r.id,
        )
    return lambda r: (r.price, r.filled_at, r.id)


def _lock_open_quote(session: Session, quote_id: int, tenant_id: int) -> Quote:
    quote = session.query(Quote).filter(
        Quote.id == quote_id,
        Quote.tenant_id == tenant_id,
        Quote.deleted_at.is_(None)
    ).with_for_update().first()
    if not quote:
        raise NotFoundError(f'Cotización {quote_id} no encontrada.')
    if quote.status != QuoteStatus.OPEN.value:
        raise BusinessLogicError('Los ganadores solo se pueden editar con la cotización abierta.')
    return quote


def _get_item(session: Session, item_id: int, tenant_id: int) -> QuoteItem:
    item = session.query(QuoteItem).join(Quote).filter(
        QuoteItem.id == item_id,
        Quote.tenant_id == tenant_id,
        Quote.deleted_at.is_(None)
    ).first()
    if not item:
        raise NotFoundError(f'Ítem {item_id} no encontrado.')
    return item


def qualifying_responses(session: Session, item_id: int):
    """Responses of an item with a strictly positive price."""
    return session.query(QuoteResponse).filter(
        QuoteResponse.quote_item_id == item_id,
        QuoteResponse.price.isnot(None),
        QuoteResponse.price > 0
    ).all()


def item_responses(item_id: int, session: Session, tenant_id: int):
    """Every bid of an item (any price), cheapest first, for the buyer's comparison view."""
    item = _get_item(session, item_id, tenant_id)
    responses = session.query(QuoteResponse).filter(QuoteResponse.quote_item_id == item.id).all()
    return item, sorted(
        responses,
        key=lambda r: (r.price is None, r.price if r.price is not None else 0, r.id)
    )


def auto_select_winners(
    quote_id: int,
    session: Session,
    tenant_id: int,
    user_id: Optional[int] = None,
    tie_break: Optional[str] = None
) -> int:
    """
    Pick the lowest-price response for every item that has no winner yet.

    Items that already carry a winner are skipped, so re-running resolves
    nothing new.

    Returns:
        Number of items resolved by this call
    """
    tie_break = tie_break or _config('AUTO_WINNER_TIE_BREAK', TIE_BREAK_EARLIEST)
    if tie_break not in TIE_BREAKS:
        raise ValidationError(f'Criterio de desempate desconocido: {tie_break}', field='tie_break')

    try:
        quote = _lock_open_quote(session, quote_id, tenant_id)
        key = _ranking_key(tie_break)
        now = utcnow()
        resolved = 0

        for item in quote.items:
            if item.has_winner:
                continue
            candidates = qualifying_responses(session, item.id)
            if not candidates:
                continue
            best = min(candidates, key=key)
            item.assign_winner(best.supplier_id, best.id, AUTO_REASON, now, user_id)
            resolved += 1

        if resolved:
            log_action(
                session, AuditAction.WINNERS_AUTO_SELECTED, 'quote', quote.id,
                {'resolved': resolved, 'tie_break': tie_break},
                tenant_id=tenant_id, user_id=user_id
            )
        session.commit()
        logger.info(f"[QUOTE] Auto-selected winners for {resolved} item(s) of quote {quote_id} ({tie_break})")
        return resolved
    except Exception:
        session.rollback()
        raise


def set_winner_manually(
    item_id: int,
    supplier_id: int,
    response_id: int,
    session: Session,
    tenant_id: int,
    reason: Optional[str] = None,
    user_id: Optional[int] = None
) -> QuoteItem:
    """
    Override the winner of one item.

    Raises:
        WinnerMismatchError: the response is not a bid of this supplier for this item
    """
    try:
        item = _get_item(session, item_id, tenant_id)
        _lock_open_quote(session, item.quote_id, tenant_id)

        response = session.query(QuoteResponse).filter(QuoteResponse.id == response_id).first()
        if (
            response is None
            or response.quote_item_id != item.id
            or response.invitation.supplier_id != supplier_id
        ):
            logger.warning(
                f"[QUOTE] Winner mismatch on item {item_id}: response {response_id} / supplier {supplier_id}"
            )
            raise WinnerMismatchError()
        if response.price is None:
            raise ValidationError('La respuesta elegida no tiene precio', field='response_id')

        reason = (reason or '').strip() or MANUAL_REASON
        item.assign_winner(supplier_id, response.id, reason[:255], utcnow(), user_id)

        log_action(
            session, AuditAction.WINNER_SET, 'quote_item', item.id,
            {'supplier_id': supplier_id, 'response_id': response.id, 'reason': reason},
            tenant_id=tenant_id, user_id=user_id
        )
        session.commit()
        logger.info(f"[QUOTE] Item {item_id} winner set manually to supplier {supplier_id}")
        return item
    except Exception:
        session.rollback()
        raise


def clear_winner(item_id: int, session: Session, tenant_id: int, user_id: Optional[int] = None) -> QuoteItem:
    """Reset every winner field of an item."""
    try:
        item = _get_item(session, item_id, tenant_id)
        _lock_open_quote(session, item.quote_id, tenant_id)

        previous = item.winner_supplier_id
        item.reset_winner()

        log_action(
            session, AuditAction.WINNER_CLEARED, 'quote_item', item.id,
            {'previous_supplier_id': previous},
            tenant_id=tenant_id, user_id=user_id
        )
        session.commit()
        return item
    except Exception:
        session.rollback()
        raise


def winners_summary(quote_id: int, session: Session, tenant_id: int, baseline: Optional[str] = None) -> dict:
    """
    Winner coverage and value of a quote.

    savings compares the baseline price (average or highest qualifying bid,
    per SAVINGS_BASELINE) with the winning price, over items with a winner.
    """
    baseline = baseline or _config('SAVINGS_BASELINE', SAVINGS_AVERAGE)
    if baseline not in (SAVINGS_AVERAGE, SAVINGS_HIGHEST):
        raise ValidationError(f'Base de ahorro desconocida: {baseline}', field='baseline')

    quote = session.query(Quote).filter(
        Quote.id == quote_id,
        Quote.tenant_id == tenant_id,
        Quote.deleted_at.is_(None)
    ).first()
    if not quote:
        raise NotFoundError(f'Cotización {quote_id} no encontrada.')

    cents = Decimal('0.01')
    total_value = Decimal('0.00')
    baseline_value = Decimal('0.00')
    items_with_winner = 0
    by_supplier = {}

    for item in quote.items:
        if not item.has_winner:
            continue
        winner = session.query(QuoteResponse).filter(QuoteResponse.id == item.winner_response_id).first()
        if winner is None or winner.price is None:
            continue

        items_with_winner += 1
        qty = Decimal(str(item.requested_qty))
        line_value = (Decimal(str(winner.price)) * qty).quantize(cents)
        total_value += line_value

        prices = [Decimal(str(r.price)) for r in qualifying_responses(session, item.id)]
        if prices:
            reference = max(prices) if baseline == SAVINGS_HIGHEST else sum(prices) / len(prices)
            baseline_value += (reference * qty).quantize(cents)
        else:
            baseline_value += line_value

        bucket = by_supplier.setdefault(item.winner_supplier_id, {
            'supplier_id': item.winner_supplier_id,
            'supplier_name': item.winner_supplier.name if item.winner_supplier else None,
            'items': 0,
            'total': Decimal('0.00'),
        })
        bucket['items'] += 1
        bucket['total'] += line_value

    savings = baseline_value - total_value
    savings_pct = (savings / baseline_value * 100).quantize(cents) if baseline_value > 0 else Decimal('0.00')

    return {
        'quote_id': quote.id,
        'total_items': len(quote.items),
        'items_with_winner': items_with_winner,
        'complete': items_with_winner == len(quote.items) and len(quote.items) > 0,
        'total_value': total_value,
        'baseline': baseline,
        'baseline_value': baseline_value,
        'savings': savings,
        'savings_pct': savings_pct,
        'suppliers': sorted(by_supplier.values(), key=lambda s: s['supplier_id']),
    }
