"""
Unit tests for the closure snapshot and the price history ledger.
"""

import pytest
from decimal import Decimal

from quoteflow.models import Quote, QuoteItem, QuoteResponse, QuoteSnapshot, PriceHistoryEntry
from quoteflow.services import snapshot_service, quote_service, winner_service, supplier_response_service
from quoteflow.exceptions import ConsistencyViolationError, IllegalTransitionError, NotFoundError
from quoteflow.utils.clock import utcnow


@pytest.fixture
def closed_quote(session, tenant1, user1, open_quote):
    """Worked example: A bids 5.00, B bids 4.50, auto winners, close."""
    supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, price='5.00', delivery_days=3)
    supplier_response_service.save_response(open_quote['token_b'], open_quote['item_id'], session, price='4.50', delivery_days=5)
    winner_service.auto_select_winners(open_quote['quote_id'], session, tenant1.id)
    quote_service.close_quote(open_quote['quote_id'], session, tenant1.id, user_id=user1.id)
    return open_quote


class TestSnapshot:

    def test_payload_structure(self, session, tenant1, closed_quote):
        snapshot = snapshot_service.get_snapshot(closed_quote['quote_id'], session, tenant1.id)
        payload = snapshot.payload

        assert set(payload) == {'quote', 'items', 'suppliers', 'aggregates'}
        assert payload['quote']['id'] == closed_quote['quote_id']
        assert payload['quote']['closed_at'] is not None

        item = payload['items'][0]
        assert item['item_id'] == closed_quote['item_id']
        assert item['product_name'] == 'Yerba 1kg'
        assert len(item['responses']) == 2
        assert item['winner']['supplier_id'] == closed_quote['supplier_b']
        assert item['winner']['price'] == '4.50'
        assert item['winner']['reason'] == winner_service.AUTO_REASON

        assert payload['aggregates']['item_count'] == 1
        assert payload['aggregates']['items_with_winner'] == 1
        assert payload['aggregates']['response_count'] == 2
        assert payload['aggregates']['total_value'] == '45.00'

    def test_snapshot_columns(self, session, tenant1, user1, closed_quote):
        snapshot = snapshot_service.get_snapshot(closed_quote['quote_id'], session, tenant1.id)

        assert snapshot.item_count == 1
        # Every invited supplier counts, with or without a response
        assert snapshot.supplier_count == 2
        assert snapshot.total_value == Decimal('45.00')
        assert snapshot.created_by == user1.id

    def test_supplier_count_includes_silent_suppliers(self, session, tenant1, open_quote):
        supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, price='5.00')
        quote_service.close_quote(open_quote['quote_id'], session, tenant1.id)

        snapshot = snapshot_service.get_snapshot(open_quote['quote_id'], session, tenant1.id)
        assert snapshot.supplier_count == 2
        assert snapshot.payload['items'][0]['winner'] is None
        assert snapshot.total_value == Decimal('0.00')

    def test_record_closure_only_once(self, session, tenant1, closed_quote):
        quote = quote_service.get_quote(closed_quote['quote_id'], session, tenant1.id)
        with pytest.raises(IllegalTransitionError):
            snapshot_service.record_closure(quote, session)
        assert session.query(QuoteSnapshot).count() == 1

    def test_snapshot_cannot_be_modified(self, session, tenant1, closed_quote):
        snapshot = snapshot_service.get_snapshot(closed_quote['quote_id'], session, tenant1.id)
        snapshot.total_value = Decimal('1.00')

        with pytest.raises(ConsistencyViolationError):
            session.commit()
        session.rollback()

        assert snapshot_service.get_snapshot(closed_quote['quote_id'], session, tenant1.id).total_value == Decimal('45.00')

    def test_snapshot_cannot_be_deleted(self, session, tenant1, closed_quote):
        snapshot = snapshot_service.get_snapshot(closed_quote['quote_id'], session, tenant1.id)
        session.delete(snapshot)

        with pytest.raises(ConsistencyViolationError):
            session.commit()
        session.rollback()
        assert session.query(QuoteSnapshot).count() == 1

    def test_get_snapshot_scoped_to_tenant(self, session, tenant2, closed_quote):
        with pytest.raises(NotFoundError):
            snapshot_service.get_snapshot(closed_quote['quote_id'], session, tenant2.id)

    def test_winner_without_price_aborts_close(self, session, tenant1, open_quote):
        supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, notes='consultar')
        response = session.query(QuoteResponse).filter_by(invitation_id=open_quote['invitation_a']).one()
        # Written straight to the row, past the service checks
        item = session.get(QuoteItem, open_quote['item_id'])
        item.assign_winner(open_quote['supplier_a'], response.id, 'Manual', utcnow())
        session.commit()

        with pytest.raises(ConsistencyViolationError):
            quote_service.close_quote(open_quote['quote_id'], session, tenant1.id)

        assert session.get(Quote, open_quote['quote_id']).status == 'open'
        assert session.query(QuoteSnapshot).count() == 0
        assert session.query(PriceHistoryEntry).count() == 0

    def test_open_quote_has_no_snapshot(self, session, tenant1, open_quote):
        with pytest.raises(NotFoundError):
            snapshot_service.get_snapshot(open_quote['quote_id'], session, tenant1.id)


class TestPriceHistory:

    def test_one_entry_per_winning_item(self, session, tenant1, closed_quote):
        entries = session.query(PriceHistoryEntry).all()

        assert len(entries) == 1
        entry = entries[0]
        assert entry.product_id == closed_quote['product_id']
        assert entry.supplier_id == closed_quote['supplier_b']
        assert entry.price == Decimal('4.50')
        assert entry.quote_id == closed_quote['quote_id']
        assert entry.quote_item_id == closed_quote['item_id']

        snapshot = snapshot_service.get_snapshot(closed_quote['quote_id'], session, tenant1.id)
        assert entry.recorded_at == snapshot.created_at

    def test_entries_are_append_only(self, session, closed_quote):
        entry = session.query(PriceHistoryEntry).one()
        entry.price = Decimal('1.00')

        with pytest.raises(ConsistencyViolationError):
            session.commit()
        session.rollback()
        assert session.query(PriceHistoryEntry).one().price == Decimal('4.50')

    def test_filters(self, session, tenant1, tenant2, closed_quote, supplier_a):
        assert len(snapshot_service.get_price_history(session, tenant1.id)) == 1
        assert len(snapshot_service.get_price_history(session, tenant1.id, product_id=closed_quote['product_id'])) == 1
        assert snapshot_service.get_price_history(session, tenant1.id, supplier_id=supplier_a.id) == []
        assert snapshot_service.get_price_history(session, tenant2.id) == []

    def test_serialize_entry(self, session, tenant1, closed_quote):
        entry = snapshot_service.get_price_history(session, tenant1.id)[0]
        data = snapshot_service.serialize_price_entry(entry)

        assert data['price'] == '4.50'
        assert data['product_name'] == 'Yerba 1kg'
        assert data['supplier_name'] == 'Proveedor B'
