"""
Response store for the public supplier portal.

Every write resolves the invitation token, re-checks the writable
precondition against the wall clock and upserts the single
(invitation, item) response row.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from quoteflow.models import (
    Quote, QuoteItem, QuoteResponse, QuoteSupplierInvitation, InvitationStatus
)
from quoteflow.exceptions import NotFoundError, ValidationError
from quoteflow.services.invitation_service import (
    resolve_token, touch_invitation, writable_refusal, WriteRefusal
)
from quoteflow.blueprints.metrics import supplier_response_writes_total
from quoteflow.utils.clock import utcnow
from quoteflow.utils.number_format import parse_decimal, parse_money, parse_int

logger = logging.getLogger(__name__)

RESPONSE_CONTENT_FIELDS = ('price', 'min_qty', 'delivery_days', 'notes', 'pricing_tiers', 'filled_at')


@dataclass
class ResponseOutcome:
    """Result of a save: either saved with the row, or refused with the reason."""
    saved: bool
    refusal: Optional[WriteRefusal] = None
    response: Optional[QuoteResponse] = None

    def raise_for_refusal(self):
        if self.refusal is not None:
            raise self.refusal.to_error()
        return self


def normalize_pricing_tiers(tiers) -> Optional[List[Dict[str, str]]]:
    """
    Validate volume pricing tiers.

    Accepts [{"min_qty": 100, "price": "4,10"}] (min_quantity is accepted as
    an alias). Returns tiers sorted by min_qty with Decimal values as strings.
    """
    if not tiers:
        return None
    if not isinstance(tiers, (list, tuple)):
        raise ValidationError('Los precios por volumen deben ser una lista', field='pricing_tiers')

    normalized = []
    for tier in tiers:
        if not isinstance(tier, dict):
            raise ValidationError('Precio por volumen inválido', field='pricing_tiers')
        qty = parse_decimal(
            tier.get('min_qty', tier.get('min_quantity')), field='pricing_tiers.min_qty', allow_none=False
        )
        if qty <= 0:
            raise ValidationError('La cantidad mínima del tramo debe ser mayor a cero', field='pricing_tiers.min_qty')
        price = parse_money(tier.get('price'), field='pricing_tiers.price', allow_none=False)
        normalized.append((qty, price))

    normalized.sort(key=lambda pair: pair[0])
    return [{'min_qty': str(qty), 'price': str(price)} for qty, price in normalized]


def _parse_response_fields(price, min_qty, delivery_days, notes, pricing_tiers) -> Dict[str, Any]:
    return {
        'price': parse_money(price, field='price'),
        'min_qty': parse_decimal(min_qty, field='min_qty', places='0.001'),
        'delivery_days': parse_int(delivery_days, field='delivery_days'),
        'notes': notes.strip() if isinstance(notes, str) and notes.strip() else None,
        'pricing_tiers': normalize_pricing_tiers(pricing_tiers),
    }


def _lock_quote_for_write(session: Session, invitation: QuoteSupplierInvitation) -> Quote:
    """Share-lock the quote so a concurrent close waits for this write."""
    return session.query(Quote).filter(
        Quote.id == invitation.quote_id
    ).with_for_update(read=True).populate_existing().one()


def _get_item(session: Session, invitation: QuoteSupplierInvitation, item_id) -> QuoteItem:
    item = session.query(QuoteItem).filter(
        QuoteItem.id == item_id,
        QuoteItem.quote_id == invitation.quote_id
    ).first()
    if not item:
        raise NotFoundError(f'Ítem {item_id} no pertenece a esta cotización.')
    return item


def _upsert_statement(session: Session, values: Dict[str, Any]):
    """INSERT ... ON CONFLICT (invitation_id, quote_item_id) DO UPDATE for the bound dialect."""
    dialect = session.get_bind().dialect.name
    if dialect == 'postgresql':
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == 'sqlite':
        from sqlalchemy.dialects.sqlite import insert
    else:
        return None

    stmt = insert(QuoteResponse.__table__).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=['invitation_id', 'quote_item_id'],
        set_={name: stmt.excluded[name] for name in RESPONSE_CONTENT_FIELDS}
    )


def _upsert_response(
    session: Session,
    invitation: QuoteSupplierInvitation,
    item: QuoteItem,
    fields: Dict[str, Any],
    now: datetime
) -> QuoteResponse:
    """Write the (invitation, item) row. Does not commit."""
    values = dict(fields, invitation_id=invitation.id, quote_item_id=item.id, filled_at=now)

    stmt = _upsert_statement(session, values)
    if stmt is not None:
        session.execute(stmt)
    else:
        existing = session.query(QuoteResponse).filter(
            QuoteResponse.invitation_id == invitation.id,
            QuoteResponse.quote_item_id == item.id
        ).with_for_update().first()
        if existing:
            for name in RESPONSE_CONTENT_FIELDS:
                setattr(existing, name, values[name])
        else:
            session.add(QuoteResponse(**values))
        session.flush()

    response = session.query(QuoteResponse).filter(
        QuoteResponse.invitation_id == invitation.id,
        QuoteResponse.quote_item_id == item.id
    ).populate_existing().one()

    # A winning bid without a positive price cannot be settled
    if item.winner_response_id == response.id and (response.price is None or response.price <= 0):
        item.reset_winner()
        logger.warning(
            f"[QUOTE] Winner of item {item.id} cleared: bid {response.id} "
            f"from invitation {invitation.id} no longer has a price"
        )

    return response


def save_response(
    token: str,
    item_id: int,
    session: Session,
    price=None,
    min_qty=None,
    delivery_days=None,
    notes: Optional[str] = None,
    pricing_tiers=None,
    now: Optional[datetime] = None
) -> ResponseOutcome:
    """
    Save (create or overwrite) one supplier bid.

    Refusals (closed, expired, submitted) are returned in the outcome, not
    raised. Unknown tokens, foreign items and invalid numbers raise.
    """
    try:
        invitation = resolve_token(token, session)
        _lock_quote_for_write(session, invitation)
        now = now or utcnow()

        refusal = writable_refusal(invitation, now)
        if refusal is not None:
            session.rollback()
            supplier_response_writes_total.labels(outcome=refusal.value).inc()
            logger.info(
                f"[QUOTE] Response refused ({refusal.value}) for invitation {invitation.id} "
                f"(token {invitation.masked_token})"
            )
            return ResponseOutcome(saved=False, refusal=refusal)

        item = _get_item(session, invitation, item_id)
        fields = _parse_response_fields(price, min_qty, delivery_days, notes, pricing_tiers)

        response = _upsert_response(session, invitation, item, fields, now)
        invitation.last_access_at = now
        invitation.advance_status(InvitationStatus.PARTIAL.value)

        session.commit()
        supplier_response_writes_total.labels(outcome='saved').inc()
        return ResponseOutcome(saved=True, response=response)
    except Exception:
        session.rollback()
        raise


def submit_responses(
    token: str,
    session: Session,
    pending: Optional[Iterable[Dict[str, Any]]] = None,
    now: Optional[datetime] = None
) -> QuoteSupplierInvitation:
    """
    Final submission: persist pending bids, then stamp submitted_at.

    pending items are dicts with item_id and the save_response fields.
    All of it commits together or not at all.

    Raises:
        QuoteClosedError, QuoteExpiredError, AlreadySubmittedError
    """
    try:
        invitation = resolve_token(token, session)
        _lock_quote_for_write(session, invitation)
        now = now or utcnow()

        refusal = writable_refusal(invitation, now)
        if refusal is not None:
            supplier_response_writes_total.labels(outcome=refusal.value).inc()
            raise refusal.to_error()

        for entry in pending or ():
            item = _get_item(session, invitation, entry.get('item_id'))
            fields = _parse_response_fields(
                entry.get('price'), entry.get('min_qty'), entry.get('delivery_days'),
                entry.get('notes'), entry.get('pricing_tiers')
            )
            _upsert_response(session, invitation, item, fields, now)

        invitation.submitted_at = now
        invitation.last_access_at = now
        invitation.advance_status(InvitationStatus.SUBMITTED.value)

        session.commit()
        supplier_response_writes_total.labels(outcome='submitted_final').inc()
        logger.info(
            f"[QUOTE] Invitation {invitation.id} submitted for quote {invitation.quote_id} "
            f"(token {invitation.masked_token})"
        )
        return invitation
    except Exception:
        session.rollback()
        raise


def serialize_response(response: QuoteResponse) -> dict:
    return {
        'id': response.id,
        'invitation_id': response.invitation_id,
        'quote_item_id': response.quote_item_id,
        'supplier_id': response.supplier_id,
        'price': str(response.price) if response.price is not None else None,
        'min_qty': str(response.min_qty) if response.min_qty is not None else None,
        'delivery_days': response.delivery_days,
        'notes': response.notes,
        'pricing_tiers': response.pricing_tiers,
        'filled_at': response.filled_at.isoformat() if response.filled_at else None,
    }


def get_supplier_view(token: str, session: Session, now: Optional[datetime] = None) -> dict:
    """
    Everything the supplier portal shows for one token.

    Counts as a read: stamps last_access_at and moves invited -> viewed.
    """
    invitation = touch_invitation(token, session)
    quote = invitation.quote
    refusal = writable_refusal(invitation, now)

    own = {
        r.quote_item_id: r
        for r in session.query(QuoteResponse).filter(QuoteResponse.invitation_id == invitation.id)
    }

    items = []
    for item in quote.items:
        response = own.get(item.id)
        items.append({
            'id': item.id,
            'product_id': item.product_id,
            'product_name': item.product.name if item.product else None,
            'package_id': item.package_id,
            'package_name': item.package.name if item.package else None,
            'requested_qty': str(item.requested_qty),
            'notes': item.notes,
            'sort_order': item.sort_order,
            'response': serialize_response(response) if response else None,
        })

    return {
        'quote': {
            'id': quote.id,
            'title': quote.title,
            'description': quote.description,
            'status': quote.status,
            'deadline': quote.deadline.isoformat() if quote.deadline else None,
        },
        'supplier': {
            'id': invitation.supplier_id,
            'name': invitation.supplier.name if invitation.supplier else None,
        },
        'invitation': {
            'status': invitation.status,
            'submitted_at': invitation.submitted_at.isoformat() if invitation.submitted_at else None,
        },
        'writable': refusal is None,
        'refusal': refusal.value if refusal else None,
        'items': items,
    }
