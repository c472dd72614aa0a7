"""Deadline alerts for open quotes (run from `flask check-deadlines`)."""
import logging
from datetime import timedelta
from typing import Optional

from flask import current_app, has_app_context
from sqlalchemy.orm import Session

from quoteflow.models import Quote, QuoteStatus
from quoteflow.services import email_service
from quoteflow.utils.clock import utcnow

logger = logging.getLogger(__name__)


def send_deadline_alerts(session: Session, now=None, window_hours: Optional[int] = None) -> int:
    """
    Alert the creator of every open quote whose deadline falls within the
    next window_hours. Each quote is alerted once (deadline_alert_sent).

    Returns:
        Number of quotes alerted
    """
    now = now or utcnow()
    if window_hours is None:
        window_hours = current_app.config.get('DEADLINE_ALERT_WINDOW_HOURS', 24) if has_app_context() else 24
    horizon = now + timedelta(hours=window_hours)

    try:
        quotes = session.query(Quote).filter(
            Quote.status == QuoteStatus.OPEN.value,
            Quote.deleted_at.is_(None),
            Quote.deadline_alert_sent.is_(False),
            Quote.deadline.isnot(None),
            Quote.deadline > now,
            Quote.deadline <= horizon
        ).with_for_update().all()

        for quote in quotes:
            pending = [
                inv.supplier.name for inv in quote.invitations
                if inv.submitted_at is None and inv.supplier is not None
            ]
            if quote.creator and quote.creator.email:
                email_service.send_deadline_alert_email(quote.creator.email, quote.title, quote.deadline, pending)
            else:
                logger.info(f"[QUOTE] Quote {quote.id} has no creator e-mail; deadline alert only marked")
            quote.deadline_alert_sent = True

        session.commit()
    except Exception:
        session.rollback()
        raise

    if quotes:
        logger.info(f"[QUOTE] Deadline alerts sent for {len(quotes)} quote(s)")
    return len(quotes)
