"""
Unit tests for model-level consistency guards.
"""

import pytest
from decimal import Decimal

from quoteflow.models import QuoteItem, PurchaseOrder
from quoteflow.exceptions import ConsistencyViolationError
from quoteflow.services import supplier_response_service, winner_service
from quoteflow.utils.clock import utcnow


class TestWinnerGuard:

    def test_partial_winner_cannot_be_flushed(self, session, open_quote):
        item = session.get(QuoteItem, open_quote['item_id'])
        item.winner_supplier_id = open_quote['supplier_a']

        with pytest.raises(ConsistencyViolationError):
            session.commit()
        session.rollback()

        item = session.get(QuoteItem, open_quote['item_id'])
        assert item.winner_supplier_id is None

    def test_assign_and_reset_are_complete(self, session, tenant1, open_quote):
        supplier_response_service.save_response(open_quote['token_a'], open_quote['item_id'], session, price='5')
        winner_service.auto_select_winners(open_quote['quote_id'], session, tenant1.id)

        item = session.get(QuoteItem, open_quote['item_id'])
        assert item.has_winner
        item.reset_winner()
        session.commit()

        assert session.get(QuoteItem, open_quote['item_id']).has_winner is False

    def test_set_by_alone_is_allowed(self, session, user1, open_quote):
        item = session.get(QuoteItem, open_quote['item_id'])
        item.winner_set_by = user1.id
        session.commit()


class TestPurchaseOrderGuard:

    def _order(self, tenant, supplier, **amounts):
        values = dict(subtotal=Decimal('10.00'), tax_amount=Decimal('2.10'), shipping_cost=Decimal('0.00'))
        values.update(amounts)
        return PurchaseOrder(
            tenant_id=tenant.id,
            supplier_id=supplier.id,
            po_number='PO-MANUAL-00001',
            po_sequence=1,
            status='draft',
            **values
        )

    def test_consistent_total_is_accepted(self, session, tenant1, supplier_a):
        session.add(self._order(tenant1, supplier_a, total_amount=Decimal('12.10')))
        session.commit()

    def test_inconsistent_total_on_insert(self, session, tenant1, supplier_a):
        session.add(self._order(tenant1, supplier_a, total_amount=Decimal('12.00')))

        with pytest.raises(ConsistencyViolationError):
            session.commit()
        session.rollback()
        assert session.query(PurchaseOrder).count() == 0

    def test_editable_only_in_draft(self, tenant1, supplier_a):
        po = self._order(tenant1, supplier_a, total_amount=Decimal('12.10'))
        assert po.is_editable
        po.status = 'sent'
        assert not po.is_editable


def test_utcnow_is_naive():
    assert utcnow().tzinfo is None
