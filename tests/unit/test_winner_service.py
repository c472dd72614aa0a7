"""
Unit tests for winner resolution (automatic, manual, clear, summary).
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from quoteflow.models import QuoteItem, QuoteResponse, WINNER_FIELDS
from quoteflow.services import winner_service, quote_service, invitation_service, supplier_response_service
from quoteflow.exceptions import BusinessLogicError, ValidationError, WinnerMismatchError
from quoteflow.utils.clock import utcnow


def _item(session, item_id):
    return session.get(QuoteItem, item_id)


def _response_id(session, invitation_id, item_id):
    return session.query(QuoteResponse.id).filter_by(invitation_id=invitation_id, quote_item_id=item_id).scalar()


def _assert_all_or_nothing(item):
    values = [getattr(item, name) for name in WINNER_FIELDS]
    assert all(v is None for v in values) or all(v is not None for v in values)


class TestAutoSelect:

    def test_lowest_price_wins(self, session, tenant1, open_quote):
        supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, price='5.00')
        supplier_response_service.save_response(open_quote['token_b'], open_quote['item_id'], session, price='4.50')

        resolved = winner_service.auto_select_winners(open_quote['quote_id'], session, tenant1.id)

        item = _item(session, open_quote['item_id'])
        assert resolved == 1
        assert item.winner_supplier_id == open_quote['supplier_b']
        assert item.winner_response_id == _response_id(session, open_quote['invitation_b'], open_quote['item_id'])
        assert item.winner_reason == winner_service.AUTO_REASON
        assert item.winner_set_at is not None
        _assert_all_or_nothing(item)

    def test_rerun_is_idempotent(self, session, tenant1, open_quote):
        supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, price='5.00')
        supplier_response_service.save_response(open_quote['token_b'], open_quote['item_id'], session, price='4.50')

        assert winner_service.auto_select_winners(open_quote['quote_id'], session, tenant1.id) == 1
        first = _item(session, open_quote['item_id']).winner_response_id

        # A cheaper late bid does not overwrite an existing winner
        supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, price='1.00')
        assert winner_service.auto_select_winners(open_quote['quote_id'], session, tenant1.id) == 0
        assert _item(session, open_quote['item_id']).winner_response_id == first

    def test_zero_and_empty_prices_do_not_qualify(self, session, tenant1, open_quote):
        supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, price='0')
        supplier_response_service.save_response(open_quote['token_b'], open_quote['item_id'], session, notes='sin stock')

        assert winner_service.auto_select_winners(open_quote['quote_id'], session, tenant1.id) == 0
        item = _item(session, open_quote['item_id'])
        assert item.has_winner is False
        _assert_all_or_nothing(item)

    def test_tie_broken_by_earliest_response(self, session, tenant1, open_quote):
        now = utcnow()
        supplier_response_service.save_response(open_quote['token_b'], open_quote['item_id'], session, price='4.50', now=now)
        supplier_response_service.save_response(
            open_quote['token_a'], open_quote['item_id'], session, price='4.50', now=now + timedelta(seconds=5)
        )

        winner_service.auto_select_winners(open_quote['quote_id'], session, tenant1.id)
        assert _item(session, open_quote['item_id']).winner_supplier_id == open_quote['supplier_b']

    def test_tie_broken_by_shortest_delivery_when_configured(self, session, tenant1, open_quote):
        now = utcnow()
        supplier_response_service.save_response(
            open_quote['token_b'], open_quote['item_id'], session, price='4.50', delivery_days=10, now=now
        )
        supplier_response_service.save_response(
            open_quote['token_a'], open_quote['item_id'], session, price='4.50', delivery_days=2, now=now + timedelta(seconds=5)
        )

        winner_service.auto_select_winners(
            open_quote['quote_id'], session, tenant1.id, tie_break=winner_service.TIE_BREAK_SHORTEST_DELIVERY
        )
        assert _item(session, open_quote['item_id']).winner_supplier_id == open_quote['supplier_a']

    def test_unknown_tie_break_rejected(self, session, tenant1, open_quote):
        with pytest.raises(ValidationError):
            winner_service.auto_select_winners(open_quote['quote_id'], session, tenant1.id, tie_break='coin_flip')

    def test_requires_open_quote(self, session, tenant1, draft_quote):
        with pytest.raises(BusinessLogicError):
            winner_service.auto_select_winners(draft_quote.id, session, tenant1.id)


class TestManualWinner:

    def test_manual_override(self, session, tenant1, user1, open_quote):
        supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, price='5.00')
        supplier_response_service.save_response(open_quote['token_b'], open_quote['item_id'], session, price='4.50')
        winner_service.auto_select_winners(open_quote['quote_id'], session, tenant1.id)

        response_a = _response_id(session, open_quote['invitation_a'], open_quote['item_id'])
        item = winner_service.set_winner_manually(
            open_quote['item_id'], open_quote['supplier_a'], response_a, session, tenant1.id,
            reason='Mejor calidad', user_id=user1.id
        )

        assert item.winner_supplier_id == open_quote['supplier_a']
        assert item.winner_response_id == response_a
        assert item.winner_reason == 'Mejor calidad'
        assert item.winner_set_by == user1.id
        _assert_all_or_nothing(item)

    def test_manual_reason_defaults(self, session, tenant1, open_quote):
        supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, price='5.00')
        response_a = _response_id(session, open_quote['invitation_a'], open_quote['item_id'])

        item = winner_service.set_winner_manually(
            open_quote['item_id'], open_quote['supplier_a'], response_a, session, tenant1.id, reason='   '
        )
        assert item.winner_reason == winner_service.MANUAL_REASON

    def test_supplier_mismatch(self, session, tenant1, open_quote):
        supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, price='5.00')
        response_a = _response_id(session, open_quote['invitation_a'], open_quote['item_id'])

        with pytest.raises(WinnerMismatchError):
            winner_service.set_winner_manually(
                open_quote['item_id'], open_quote['supplier_b'], response_a, session, tenant1.id
            )
        _assert_all_or_nothing(_item(session, open_quote['item_id']))
        assert _item(session, open_quote['item_id']).has_winner is False

    def test_response_of_another_item(self, session, tenant1, open_quote, product2_tenant1, future_deadline):
        other = quote_service.create_quote(session, tenant1.id, title='Otra', deadline=future_deadline)
        quote_service.add_quote_item(other.id, session, tenant1.id, product_id=product2_tenant1.id, requested_qty=1)
        invitation, _ = invitation_service.issue_invitation(other.id, open_quote['supplier_a'], session, tenant1.id)
        quote_service.open_quote(other.id, session, tenant1.id)
        other_item_id = quote_service.get_quote(other.id, session, tenant1.id).items[0].id
        supplier_response_service.save_response(invitation.public_token, other_item_id, session, price='3')
        foreign_response = _response_id(session, invitation.id, other_item_id)

        with pytest.raises(WinnerMismatchError):
            winner_service.set_winner_manually(
                open_quote['item_id'], open_quote['supplier_a'], foreign_response, session, tenant1.id
            )

    def test_response_without_price_rejected(self, session, tenant1, open_quote):
        supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, notes='consultar')
        response_a = _response_id(session, open_quote['invitation_a'], open_quote['item_id'])

        with pytest.raises(ValidationError):
            winner_service.set_winner_manually(
                open_quote['item_id'], open_quote['supplier_a'], response_a, session, tenant1.id
            )

    def test_clear_winner_resets_all_fields(self, session, tenant1, open_quote):
        supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, price='5.00')
        winner_service.auto_select_winners(open_quote['quote_id'], session, tenant1.id)

        item = winner_service.clear_winner(open_quote['item_id'], session, tenant1.id)

        assert all(getattr(item, name) is None for name in WINNER_FIELDS)
        assert item.winner_set_by is None
        # Cleared items are picked up again by the next automatic run
        assert winner_service.auto_select_winners(open_quote['quote_id'], session, tenant1.id) == 1

    def test_winners_frozen_after_close(self, session, tenant1, open_quote):
        quote_service.close_quote(open_quote['quote_id'], session, tenant1.id)
        with pytest.raises(BusinessLogicError):
            winner_service.clear_winner(open_quote['item_id'], session, tenant1.id)


class TestSummary:

    def test_summary_values_and_savings(self, session, tenant1, open_quote):
        supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, price='5.00')
        supplier_response_service.save_response(open_quote['token_b'], open_quote['item_id'], session, price='4.50')
        winner_service.auto_select_winners(open_quote['quote_id'], session, tenant1.id)

        summary = winner_service.winners_summary(open_quote['quote_id'], session, tenant1.id)

        assert summary['complete'] is True
        assert summary['items_with_winner'] == 1
        assert summary['total_value'] == Decimal('45.00')
        # Average of 5.00 and 4.50, times 10
        assert summary['baseline_value'] == Decimal('47.50')
        assert summary['savings'] == Decimal('2.50')
        assert summary['suppliers'][0]['supplier_id'] == open_quote['supplier_b']

        highest = winner_service.winners_summary(open_quote['quote_id'], session, tenant1.id, baseline='highest')
        assert highest['baseline_value'] == Decimal('50.00')
        assert highest['savings_pct'] == Decimal('10.00')

    def test_summary_without_winners(self, session, tenant1, open_quote):
        summary = winner_service.winners_summary(open_quote['quote_id'], session, tenant1.id)

        assert summary['complete'] is False
        assert summary['total_value'] == Decimal('0.00')
        assert summary['savings_pct'] == Decimal('0.00')

    def test_item_responses_cheapest_first(self, session, tenant1, open_quote):
        supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, notes='sin precio')
        supplier_response_service.save_response(open_quote['token_b'], open_quote['item_id'], session, price='4.50')

        item, responses = winner_service.item_responses(open_quote['item_id'], session, tenant1.id)

        assert item.id == open_quote['item_id']
        assert [r.price for r in responses] == [Decimal('4.50'), None]
