"""
Invitation channel: per-supplier bearer tokens for the public quote portal.

The token is the supplier's only credential. It maps 1:1 to a
QuoteSupplierInvitation row and is never logged in full.
"""
import enum
import logging
import secrets
from datetime import datetime
from typing import List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quoteflow.models import (
    Quote, QuoteStatus, Supplier, QuoteSupplierInvitation, InvitationStatus, QuoteResponse, mask_token
)
from quoteflow.exceptions import (
    BusinessLogicError, NotFoundError, InvalidTokenError,
    QuoteClosedError, QuoteExpiredError, AlreadySubmittedError
)
from quoteflow.services import email_service
from quoteflow.utils.clock import utcnow

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
INVITABLE_STATUSES = (QuoteStatus.DRAFT.value, QuoteStatus.OPEN.value)


class WriteRefusal(enum.Enum):
    """Why a supplier write was refused. Values double as API codes."""
    CLOSED = 'closed'
    EXPIRED = 'expired'
    SUBMITTED = 'submitted'

    def to_error(self):
        return {
            WriteRefusal.CLOSED: QuoteClosedError,
            WriteRefusal.EXPIRED: QuoteExpiredError,
            WriteRefusal.SUBMITTED: AlreadySubmittedError,
        }[self]()


def generate_token() -> str:
    """Unguessable URL-safe token (256 bits of entropy)."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def build_supplier_link(token: str, base_url: Optional[str] = None) -> str:
    """Public URL for the supplier portal."""
    base = (base_url or current_app.config.get('PUBLIC_BASE_URL') or '').rstrip('/')
    return f"{base}/supplier/quote/{token}"


def _get_quote(session: Session, quote_id: int, tenant_id: int) -> Quote:
    quote = session.query(Quote).filter(
        Quote.id == quote_id,
        Quote.tenant_id == tenant_id,
        Quote.deleted_at.is_(None)
    ).first()
    if not quote:
        raise NotFoundError(f'Cotización {quote_id} no encontrada.')
    return quote


def issue_invitation(
    quote_id: int,
    supplier_id: int,
    session: Session,
    tenant_id: int
) -> Tuple[QuoteSupplierInvitation, bool]:
    """
    Invite a supplier to a quote.

    Idempotent per (quote, supplier): an existing invitation is returned
    untouched.

    Returns:
        (invitation, created)
    """
    try:
        quote = _get_quote(session, quote_id, tenant_id)
        if quote.status not in INVITABLE_STATUSES:
            raise BusinessLogicError('Solo se pueden invitar proveedores a cotizaciones en borrador o abiertas.')

        supplier = session.query(Supplier).filter(
            Supplier.id == supplier_id,
            Supplier.tenant_id == tenant_id
        ).first()
        if not supplier:
            raise NotFoundError(f'Proveedor {supplier_id} no encontrado.')

        existing = session.query(QuoteSupplierInvitation).filter(
            QuoteSupplierInvitation.quote_id == quote_id,
            QuoteSupplierInvitation.supplier_id == supplier_id
        ).first()
        if existing:
            logger.info(f"[INVITE] Supplier {supplier_id} already invited to quote {quote_id}")
            return existing, False

        invitation = QuoteSupplierInvitation(
            quote_id=quote_id,
            supplier_id=supplier_id,
            public_token=generate_token(),
            status=InvitationStatus.INVITED.value,
            invited_at=utcnow()
        )
        session.add(invitation)
        session.commit()
        logger.info(
            f"[INVITE] Supplier {supplier_id} invited to quote {quote_id} "
            f"(token {invitation.masked_token})"
        )
        return invitation, True
    except IntegrityError:
        # Concurrent invite of the same pair: the other insert won.
        session.rollback()
        existing = session.query(QuoteSupplierInvitation).filter(
            QuoteSupplierInvitation.quote_id == quote_id,
            QuoteSupplierInvitation.supplier_id == supplier_id
        ).first()
        if existing is None:
            raise
        return existing, False
    except Exception:
        session.rollback()
        raise


def resolve_token(token: str, session: Session) -> QuoteSupplierInvitation:
    """
    Look up an invitation by token.

    Does not check quote status; callers decide whether a write is allowed.

    Raises:
        InvalidTokenError: unknown token, or the quote was deleted
    """
    if not token:
        raise InvalidTokenError()

    invitation = session.query(QuoteSupplierInvitation).filter(
        QuoteSupplierInvitation.public_token == token
    ).first()
    if not invitation or invitation.quote.deleted_at is not None:
        logger.warning(f"[INVITE] Unknown token {mask_token(token)}")
        raise InvalidTokenError()
    return invitation


def touch_invitation(token: str, session: Session) -> QuoteSupplierInvitation:
    """Record a supplier read: stamp last_access_at and move invited -> viewed."""
    try:
        invitation = resolve_token(token, session)
        invitation.last_access_at = utcnow()
        invitation.advance_status(InvitationStatus.VIEWED.value)
        session.commit()
        return invitation
    except Exception:
        session.rollback()
        raise


def writable_refusal(invitation: QuoteSupplierInvitation, now: Optional[datetime] = None) -> Optional[WriteRefusal]:
    """
    Evaluate the writable precondition against the wall clock.

    Returns None when the supplier may write, else the reason it may not.
    """
    now = now or utcnow()
    quote = invitation.quote
    if quote.status != QuoteStatus.OPEN.value:
        return WriteRefusal.CLOSED
    if quote.is_expired(now):
        return WriteRefusal.EXPIRED
    if invitation.submitted_at is not None:
        return WriteRefusal.SUBMITTED
    return None


def revoke_invitation(invitation_id: int, session: Session, tenant_id: int) -> None:
    """Remove an invitation from a draft quote that has no responses yet."""
    try:
        invitation = session.query(QuoteSupplierInvitation).join(Quote).filter(
            QuoteSupplierInvitation.id == invitation_id,
            Quote.tenant_id == tenant_id
        ).first()
        if not invitation:
            raise NotFoundError(f'Invitación {invitation_id} no encontrada.')
        if invitation.quote.status != QuoteStatus.DRAFT.value:
            raise BusinessLogicError('Solo se pueden quitar proveedores de cotizaciones en borrador.')

        has_responses = session.query(QuoteResponse.id).filter(
            QuoteResponse.invitation_id == invitation.id
        ).first() is not None
        if has_responses:
            raise BusinessLogicError('El proveedor ya cargó respuestas; no se puede quitar.')

        session.delete(invitation)
        session.commit()
        logger.info(f"[INVITE] Invitation {invitation_id} revoked (token {invitation.masked_token})")
    except Exception:
        session.rollback()
        raise


def list_invitations(quote_id: int, session: Session, tenant_id: int) -> List[QuoteSupplierInvitation]:
    """Invitations of a quote, oldest first."""
    _get_quote(session, quote_id, tenant_id)
    return session.query(QuoteSupplierInvitation).filter(
        QuoteSupplierInvitation.quote_id == quote_id
    ).order_by(QuoteSupplierInvitation.invited_at, QuoteSupplierInvitation.id).all()


def serialize_invitation(invitation: QuoteSupplierInvitation, include_link: bool = False) -> dict:
    data = {
        'id': invitation.id,
        'quote_id': invitation.quote_id,
        'supplier_id': invitation.supplier_id,
        'supplier_name': invitation.supplier.name if invitation.supplier else None,
        'status': invitation.status,
        'invited_at': invitation.invited_at.isoformat() if invitation.invited_at else None,
        'last_access_at': invitation.last_access_at.isoformat() if invitation.last_access_at else None,
        'submitted_at': invitation.submitted_at.isoformat() if invitation.submitted_at else None,
    }
    if include_link:
        data['link'] = build_supplier_link(invitation.public_token)
    return data


def send_invitation_notice(invitation: QuoteSupplierInvitation, link_builder=None) -> str:
    """
    E-mail the supplier its link. Best effort.

    Returns 'sent', 'failed' or 'skipped' (supplier without e-mail).
    """
    supplier = invitation.supplier
    if not supplier or not supplier.email:
        logger.info(f"[INVITE] Supplier {invitation.supplier_id} has no e-mail; invitation {invitation.id} not notified")
        return 'skipped'

    try:
        link = (link_builder or build_supplier_link)(invitation.public_token)
        sent = email_service.send_quote_invitation_email(
            to_email=supplier.email,
            supplier_name=supplier.name,
            quote_title=invitation.quote.title,
            supplier_link=link,
            deadline=invitation.quote.deadline,
        )
    except Exception:
        logger.exception(f"[INVITE] Could not notify invitation {invitation.id} (token {invitation.masked_token})")
        sent = False
    return 'sent' if sent else 'failed'
