"""
Unit tests for the supplier response store.
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from quoteflow.models import (
    QuoteItem, QuoteResponse, QuoteSupplierInvitation, InvitationStatus, PriceHistoryEntry, WINNER_FIELDS
)
from quoteflow.services import supplier_response_service, quote_service, winner_service, purchase_order_service
from quoteflow.services.invitation_service import WriteRefusal
from quoteflow.exceptions import (
    AlreadySubmittedError, QuoteClosedError, QuoteExpiredError, InvalidTokenError,
    BusinessLogicError, NotFoundError, ValidationError
)
from quoteflow.utils.clock import utcnow


class TestSaveResponse:

    def test_save_creates_response_and_marks_partial(self, session, open_quote):
        outcome = supplier_response_service.save_response(
            open_quote['token_a'], open_quote['item_id'], session,
            price='5,00', min_qty='10', delivery_days='3', notes='  entrega en depósito '
        )

        assert outcome.saved is True
        assert outcome.refusal is None
        response = outcome.response
        assert response.price == Decimal('5.00')
        assert response.min_qty == Decimal('10')
        assert response.delivery_days == 3
        assert response.notes == 'entrega en depósito'
        assert response.supplier_id == open_quote['supplier_a']

        invitation = session.get(QuoteSupplierInvitation, open_quote['invitation_a'])
        assert invitation.status == InvitationStatus.PARTIAL.value
        assert invitation.last_access_at is not None

    def test_repeated_saves_upsert_single_row(self, session, open_quote):
        for price in ('7.00', '6.50', '6.25'):
            supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, price=price, delivery_days=5)
        supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, price='6.10')

        rows = session.query(QuoteResponse).filter_by(invitation_id=open_quote['invitation_a']).all()
        assert len(rows) == 1
        assert rows[0].price == Decimal('6.10')
        # Content is last-write-wins, including fields left empty
        assert rows[0].delivery_days is None

    def test_same_item_different_suppliers_are_separate_rows(self, session, open_quote):
        supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, price='5')
        supplier_response_service.save_response(open_quote['token_b'], open_quote['item_id'], session, price='4.5')

        assert session.query(QuoteResponse).filter_by(quote_item_id=open_quote['item_id']).count() == 2

    def test_pricing_tiers_are_normalized(self, session, open_quote):
        outcome = supplier_response_service.save_response(
            open_quote['token_a'], open_quote['item_id'], session,
            price='5',
            pricing_tiers=[{'min_qty': 100, 'price': '4,10'}, {'min_quantity': '50', 'price': 4.5}]
        )
        assert outcome.response.pricing_tiers == [
            {'min_qty': '50', 'price': '4.50'},
            {'min_qty': '100', 'price': '4.10'},
        ]

    @pytest.mark.parametrize('field, value', [
        ('price', '-1'),
        ('min_qty', '-5'),
        ('delivery_days', '-2'),
        ('delivery_days', '2.5'),
        ('price', 'abc'),
    ])
    def test_invalid_numbers_are_rejected(self, session, open_quote, field, value):
        with pytest.raises(ValidationError):
            supplier_response_service.save_response(
                open_quote['token_a'], open_quote['item_id'], session, **{field: value}
            )
        assert session.query(QuoteResponse).count() == 0

    def test_negative_tier_price_rejected(self, session, open_quote):
        with pytest.raises(ValidationError):
            supplier_response_service.save_response(
                open_quote['token_a'], open_quote['item_id'], session,
                price='5', pricing_tiers=[{'min_qty': 10, 'price': '-1'}]
            )

    def test_item_of_another_quote_rejected(self, session, tenant1, open_quote, product2_tenant1):
        other = quote_service.create_quote(session, tenant1.id, title='Otra')
        other_item = quote_service.add_quote_item(other.id, session, tenant1.id, product_id=product2_tenant1.id, requested_qty=1)

        with pytest.raises(NotFoundError):
            supplier_response_service.save_response(open_quote['token_a'], other_item.id, session, price='1')

    def test_unknown_token_raises(self, session, open_quote):
        with pytest.raises(InvalidTokenError):
            supplier_response_service.save_response('bogus', open_quote['item_id'], session, price='1')


class TestRefusals:
    """Refusals come back in the outcome instead of raising."""

    def test_expired_refusal(self, session, open_quote):
        after_deadline = utcnow() + timedelta(days=8)
        outcome = supplier_response_service.save_response(
            open_quote['token_a'], open_quote['item_id'], session, price='5', now=after_deadline
        )

        assert outcome.saved is False
        assert outcome.refusal == WriteRefusal.EXPIRED
        assert session.query(QuoteResponse).count() == 0
        with pytest.raises(QuoteExpiredError):
            outcome.raise_for_refusal()

    def test_closed_refusal(self, session, tenant1, open_quote):
        quote_service.close_quote(open_quote['quote_id'], session, tenant1.id)
        outcome = supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, price='5')

        assert outcome.refusal == WriteRefusal.CLOSED
        with pytest.raises(QuoteClosedError):
            outcome.raise_for_refusal()

    def test_submitted_refusal_is_distinct(self, session, open_quote):
        supplier_response_service.submit_responses(open_quote['token_a'], session)
        outcome = supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, price='5')

        assert outcome.refusal == WriteRefusal.SUBMITTED
        with pytest.raises(AlreadySubmittedError):
            outcome.raise_for_refusal()

    def test_saved_outcome_does_not_raise(self, session, open_quote):
        outcome = supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, price='5')
        assert outcome.raise_for_refusal() is outcome


class TestSubmit:

    def test_submit_persists_pending_and_is_final(self, session, open_quote):
        invitation = supplier_response_service.submit_responses(
            open_quote['token_b'], session,
            pending=[{'item_id': open_quote['item_id'], 'price': '4.50', 'delivery_days': 2}]
        )

        assert invitation.status == InvitationStatus.SUBMITTED.value
        assert invitation.submitted_at is not None
        response = session.query(QuoteResponse).filter_by(invitation_id=open_quote['invitation_b']).one()
        assert response.price == Decimal('4.50')

        with pytest.raises(AlreadySubmittedError):
            supplier_response_service.submit_responses(open_quote['token_b'], session)

    def test_submit_is_all_or_nothing(self, session, open_quote):
        with pytest.raises(ValidationError):
            supplier_response_service.submit_responses(
                open_quote['token_b'], session,
                pending=[{'item_id': open_quote['item_id'], 'price': '-4'}]
            )

        invitation = session.get(QuoteSupplierInvitation, open_quote['invitation_b'])
        assert invitation.submitted_at is None
        assert session.query(QuoteResponse).count() == 0

    def test_submit_after_deadline_raises(self, session, open_quote):
        with pytest.raises(QuoteExpiredError):
            supplier_response_service.submit_responses(
                open_quote['token_a'], session, now=utcnow() + timedelta(days=8)
            )


class TestWinningBidWithdrawn:

    @pytest.fixture
    def won_by_b(self, session, tenant1, open_quote):
        supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, price='5.00')
        supplier_response_service.save_response(open_quote['token_b'], open_quote['item_id'], session, price='4.50')
        winner_service.auto_select_winners(open_quote['quote_id'], session, tenant1.id)
        assert session.get(QuoteItem, open_quote['item_id']).winner_supplier_id == open_quote['supplier_b']
        return open_quote

    def test_blank_price_clears_winner(self, session, tenant1, won_by_b):
        supplier_response_service.save_response(
            won_by_b['token_b'], won_by_b['item_id'], session, price='', notes='sin stock'
        )

        item = session.get(QuoteItem, won_by_b['item_id'])
        assert item.has_winner is False
        assert all(getattr(item, name) is None for name in WINNER_FIELDS)

        quote_service.close_quote(won_by_b['quote_id'], session, tenant1.id)
        assert session.query(PriceHistoryEntry).count() == 0

        with pytest.raises(BusinessLogicError):
            purchase_order_service.generate_purchase_order(
                won_by_b['quote_id'], won_by_b['supplier_b'], session, tenant1.id
            )

    def test_zero_price_on_submit_clears_winner(self, session, won_by_b):
        supplier_response_service.submit_responses(
            won_by_b['token_b'], session,
            pending=[{'item_id': won_by_b['item_id'], 'price': '0'}]
        )

        assert session.get(QuoteItem, won_by_b['item_id']).has_winner is False

    def test_new_price_keeps_winner(self, session, won_by_b):
        supplier_response_service.save_response(won_by_b['token_b'], won_by_b['item_id'], session, price='4.40')

        item = session.get(QuoteItem, won_by_b['item_id'])
        assert item.winner_supplier_id == won_by_b['supplier_b']

    def test_losing_bid_blanked_keeps_winner(self, session, won_by_b):
        supplier_response_service.save_response(won_by_b['token_a'], won_by_b['item_id'], session, price='')

        assert session.get(QuoteItem, won_by_b['item_id']).winner_supplier_id == won_by_b['supplier_b']


class TestSupplierView:

    def test_view_touches_and_shows_own_bids_only(self, session, open_quote):
        supplier_response_service.save_response(open_quote['token_b'], open_quote['item_id'], session, price='4.50')

        view = supplier_response_service.get_supplier_view(open_quote['token_a'], session)

        assert view['writable'] is True
        assert view['refusal'] is None
        assert view['invitation']['status'] == 'viewed'
        assert view['supplier']['id'] == open_quote['supplier_a']
        assert len(view['items']) == 1
        assert view['items'][0]['response'] is None

    def test_view_reports_refusal(self, session, tenant1, open_quote):
        quote_service.close_quote(open_quote['quote_id'], session, tenant1.id)
        view = supplier_response_service.get_supplier_view(open_quote['token_a'], session)

        assert view['writable'] is False
        assert view['refusal'] == 'closed'
