"""
Snapshot & price history recorder.

record_closure runs inside the close transaction: it only adds rows and
flushes, so a failure here leaves the quote open with nothing written.
"""
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from quoteflow.models import (
    Quote, QuoteStatus, QuoteItem, QuoteResponse, QuoteSnapshot, PriceHistoryEntry
)
from quoteflow.exceptions import ConsistencyViolationError, IllegalTransitionError, NotFoundError
from quoteflow.utils.clock import utcnow
from quoteflow.utils.formatters import decimal_str, iso

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')


def _response_payload(response: QuoteResponse) -> dict:
    return {
        'response_id': response.id,
        'supplier_id': response.supplier_id,
        'price': decimal_str(response.price),
        'min_qty': decimal_str(response.min_qty),
        'delivery_days': response.delivery_days,
        'notes': response.notes,
        'pricing_tiers': response.pricing_tiers,
        'filled_at': iso(response.filled_at),
    }


def _winner_payload(item: QuoteItem, winning: Optional[QuoteResponse]) -> Optional[dict]:
    if not item.has_winner:
        return None
    return {
        'supplier_id': item.winner_supplier_id,
        'response_id': item.winner_response_id,
        'price': decimal_str(winning.price) if winning else None,
        'reason': item.winner_reason,
        'set_at': iso(item.winner_set_at),
        'set_by': item.winner_set_by,
    }


def build_snapshot_payload(quote: Quote, session: Session, closed_at) -> dict:
    """Structured copy of the quote: header, items with responses and winner, suppliers, aggregates."""
    items = []
    total_value = Decimal('0.00')
    items_with_winner = 0
    response_count = 0

    for item in quote.items:
        responses = session.query(QuoteResponse).filter(
            QuoteResponse.quote_item_id == item.id
        ).order_by(QuoteResponse.filled_at, QuoteResponse.id).all()
        response_count += len(responses)

        winning = next((r for r in responses if r.id == item.winner_response_id), None)
        if item.has_winner and winning is not None and winning.price is not None:
            items_with_winner += 1
            total_value += (Decimal(str(winning.price)) * Decimal(str(item.requested_qty))).quantize(CENTS)

        items.append({
            'item_id': item.id,
            'product_id': item.product_id,
            'product_name': item.product.name if item.product else None,
            'package_id': item.package_id,
            'requested_qty': decimal_str(item.requested_qty),
            'notes': item.notes,
            'sort_order': item.sort_order,
            'responses': [_response_payload(r) for r in responses],
            'winner': _winner_payload(item, winning),
        })

    suppliers = [
        {
            'supplier_id': inv.supplier_id,
            'name': inv.supplier.name if inv.supplier else None,
            'status': inv.status,
            'submitted_at': iso(inv.submitted_at),
        }
        for inv in sorted(quote.invitations, key=lambda i: i.id)
    ]

    return {
        'quote': {
            'id': quote.id,
            'title': quote.title,
            'description': quote.description,
            'deadline': iso(quote.deadline),
            'opened_at': iso(quote.opened_at),
            'closed_at': iso(closed_at),
        },
        'items': items,
        'suppliers': suppliers,
        'aggregates': {
            'item_count': len(items),
            'supplier_count': len(suppliers),
            'items_with_winner': items_with_winner,
            'response_count': response_count,
            'total_value': str(total_value),
        },
    }


def append_price_history_entry(session: Session, quote: Quote, item: QuoteItem, price, recorded_at) -> PriceHistoryEntry:
    entry = PriceHistoryEntry(
        tenant_id=quote.tenant_id,
        product_id=item.product_id,
        supplier_id=item.winner_supplier_id,
        package_id=item.package_id,
        price=price,
        recorded_at=recorded_at,
        quote_id=quote.id,
        quote_item_id=item.id,
    )
    session.add(entry)
    return entry


def record_closure(quote: Quote, session: Session, user_id: Optional[int] = None) -> QuoteSnapshot:
    """
    Write the closure snapshot and one price history entry per winning item.

    Flushes but never commits; the caller owns the transaction.

    Raises:
        IllegalTransitionError: the quote is not open or already has a snapshot
        ConsistencyViolationError: a winning item has no positive price
    """
    if quote.status != QuoteStatus.OPEN.value:
        raise IllegalTransitionError('quote', quote.status, 'close')

    already = session.query(QuoteSnapshot.id).filter(QuoteSnapshot.quote_id == quote.id).first()
    if already is not None:
        raise IllegalTransitionError('quote', quote.status, 'close')

    now = utcnow()
    payload = build_snapshot_payload(quote, session, now)
    aggregates = payload['aggregates']

    for entry in payload['items']:
        winner = entry['winner']
        if winner is not None and (winner['price'] is None or Decimal(winner['price']) <= 0):
            logger.critical(
                f"[CONSISTENCY] Quote {quote.id} item {entry['item_id']} has winner bid "
                f"{winner['response_id']} without a price; close aborted"
            )
            raise ConsistencyViolationError(
                f"Ítem {entry['item_id']}: la oferta ganadora no tiene precio"
            )

    snapshot = QuoteSnapshot(
        tenant_id=quote.tenant_id,
        quote_id=quote.id,
        payload=payload,
        item_count=aggregates['item_count'],
        supplier_count=aggregates['supplier_count'],
        total_value=Decimal(aggregates['total_value']),
        created_by=user_id,
        created_at=now,
    )
    session.add(snapshot)

    recorded = 0
    for entry in payload['items']:
        winner = entry['winner']
        if winner is None:
            continue
        item = next(i for i in quote.items if i.id == entry['item_id'])
        append_price_history_entry(session, quote, item, Decimal(winner['price']), now)
        recorded += 1

    session.flush()
    logger.info(
        f"[QUOTE] Closure recorded for quote {quote.id}: snapshot {snapshot.id}, "
        f"{recorded} price history entr{'y' if recorded == 1 else 'ies'}"
    )
    return snapshot


def get_snapshot(quote_id: int, session: Session, tenant_id: int) -> QuoteSnapshot:
    snapshot = session.query(QuoteSnapshot).filter(
        QuoteSnapshot.quote_id == quote_id,
        QuoteSnapshot.tenant_id == tenant_id
    ).first()
    if not snapshot:
        raise NotFoundError(f'La cotización {quote_id} no tiene snapshot.')
    return snapshot


def get_price_history(
    session: Session,
    tenant_id: int,
    product_id: Optional[int] = None,
    supplier_id: Optional[int] = None,
    limit: int = 100,
    offset: int = 0
):
    """Price history entries for a tenant, newest first."""
    query = session.query(PriceHistoryEntry).filter(PriceHistoryEntry.tenant_id == tenant_id)

    if product_id:
        query = query.filter(PriceHistoryEntry.product_id == product_id)

    if supplier_id:
        query = query.filter(PriceHistoryEntry.supplier_id == supplier_id)

    return query.order_by(
        PriceHistoryEntry.recorded_at.desc(), PriceHistoryEntry.id.desc()
    ).limit(limit).offset(offset).all()


def serialize_snapshot(snapshot: QuoteSnapshot) -> dict:
    return {
        'id': snapshot.id,
        'quote_id': snapshot.quote_id,
        'item_count': snapshot.item_count,
        'supplier_count': snapshot.supplier_count,
        'total_value': decimal_str(snapshot.total_value),
        'created_at': iso(snapshot.created_at),
        'created_by': snapshot.created_by,
        'payload': snapshot.payload,
    }


def serialize_price_entry(entry: PriceHistoryEntry) -> dict:
    return {
        'id': entry.id,
        'product_id': entry.product_id,
        'product_name': entry.product.name if entry.product else None,
        'supplier_id': entry.supplier_id,
        'supplier_name': entry.supplier.name if entry.supplier else None,
        'package_id': entry.package_id,
        'price': decimal_str(entry.price),
        'recorded_at': iso(entry.recorded_at),
        'quote_id': entry.quote_id,
        'quote_item_id': entry.quote_item_id,
    }
