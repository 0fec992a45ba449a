"""
Unit tests for the stock/balance reconciler.
"""

import pytest
import sys
import os
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from kstore.entities import Invoice, InvoiceItem, STATUS_PAID, STATUS_PARTIAL
from kstore.services import reconciler

pytestmark = pytest.mark.unit


def item(product_id, quantity, price=10):
    return InvoiceItem(product_id=product_id, product_name=product_id, quantity=quantity, unit_price=price)


class TestStockDeltas:
    """Tests for stock_deltas."""

    def test_create_deducts(self):
        assert reconciler.stock_deltas(reconciler.INVOICE_CREATE, new_items=[item('a', 3)]) == {'a': -3}

    def test_delete_and_return_restore_full_quantity(self):
        old = [item('a', 3), item('b', 1)]
        for event in (reconciler.INVOICE_DELETE, reconciler.INVOICE_RETURN):
            assert reconciler.stock_deltas(event, old_items=old) == {'a': 3, 'b': 1}

    def test_edit_is_rollback_then_apply(self):
        deltas = reconciler.stock_deltas(
            reconciler.INVOICE_EDIT, new_items=[item('a', 5)], old_items=[item('a', 3)]
        )
        assert deltas == {'a': -2}

    def test_edit_with_membership_change(self):
        deltas = reconciler.stock_deltas(
            reconciler.INVOICE_EDIT,
            new_items=[item('b', 2)],
            old_items=[item('a', 3)],
        )
        assert deltas == {'a': 3, 'b': -2}

    def test_unchanged_edit_has_no_deltas(self):
        deltas = reconciler.stock_deltas(
            reconciler.INVOICE_EDIT, new_items=[item('a', 3)], old_items=[item('a', 3)]
        )
        assert deltas == {}

    def test_unknown_event(self):
        with pytest.raises(ValueError):
            reconciler.stock_deltas('refund')


class TestApplyStockEvent:
    """Tests for apply_stock_event."""

    def test_create_then_delete_round_trips(self):
        levels = {'a': 10, 'b': 4}
        items = [item('a', 3), item('b', 4)]
        after_sale = reconciler.apply_stock_event(levels, reconciler.INVOICE_CREATE, new_items=items)
        assert after_sale == {'a': 7, 'b': 0}
        restored = reconciler.apply_stock_event(after_sale, reconciler.INVOICE_DELETE, old_items=items)
        assert restored == levels

    def test_missing_products_are_skipped(self):
        levels = reconciler.apply_stock_event({'a': 10}, reconciler.INVOICE_CREATE,
                                              new_items=[item('a', 1), item('gone', 5)])
        assert levels == {'a': 9}

    def test_overselling_goes_negative(self):
        levels = reconciler.apply_stock_event({'a': 1}, reconciler.INVOICE_CREATE, new_items=[item('a', 3)])
        assert levels == {'a': -2}
        assert reconciler.display_stock(levels['a']) == 0

    def test_input_not_mutated(self):
        levels = {'a': 10}
        reconciler.apply_stock_event(levels, reconciler.INVOICE_CREATE, new_items=[item('a', 1)])
        assert levels == {'a': 10}


class TestBalances:
    """Tests for payments."""

    def test_apply_payment_updates_status(self):
        invoice = Invoice(id='i1', items=[item('a', 2, price=50)])
        reconciler.apply_payment(invoice, 40)
        assert invoice.paid_amount == Decimal('40.00')
        assert invoice.remaining_balance == Decimal('60.00')
        assert invoice.status == STATUS_PARTIAL

        reconciler.apply_payment(invoice, '60')
        assert invoice.status == STATUS_PAID

