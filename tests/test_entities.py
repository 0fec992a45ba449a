"""
Unit tests for the entity model: products, invoices, invoice items, expenses.
"""

import pytest
import sys
import os
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from kstore.entities import (
    Expense, Invoice, InvoiceItem, Product, derive_balance,
    STATUS_PAID, STATUS_PARTIAL, STATUS_UNPAID,
)
from kstore.errors import ValidationError

pytestmark = pytest.mark.unit


def make_product(**overrides):
    data = dict(id='p1', name='Green Tea', barcode='6221', cost_price='4.00',
                selling_price='6.50', stock=10, min_stock=2)
    data.update(overrides)
    return Product(**data)


class TestDeriveBalance:
    """Tests for derive_balance."""

    def test_fully_paid(self):
        assert derive_balance(100, 100) == (Decimal('0.00'), STATUS_PAID)

    def test_overpaid_clamps_remaining_to_zero(self):
        assert derive_balance(100, 150) == (Decimal('0.00'), STATUS_PAID)

    def test_partial(self):
        assert derive_balance(100, 40) == (Decimal('60.00'), STATUS_PARTIAL)

    def test_unpaid(self):
        assert derive_balance('99.99', 0) == (Decimal('99.99'), STATUS_UNPAID)

    def test_zero_total_is_paid(self):
        assert derive_balance(0, 0) == (Decimal('0.00'), STATUS_PAID)


class TestProduct:
    """Tests for the Product entity."""

    def test_money_coerced_to_decimal(self):
        product = make_product(cost_price=4, selling_price='6.499')
        assert product.cost_price == Decimal('4.00')
        assert product.selling_price == Decimal('6.50')

    def test_name_required(self):
        with pytest.raises(ValidationError):
            make_product(name='  ')

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError):
            make_product(selling_price=-1)

    def test_fractional_stock_rejected(self):
        with pytest.raises(ValidationError):
            make_product(stock='2.5')

    def test_low_stock(self):
        assert make_product(stock=2, min_stock=2).is_low_stock
        assert not make_product(stock=3, min_stock=2).is_low_stock

    def test_to_dict_uses_camel_case(self):
        data = make_product().to_dict()
        assert data['costPrice'] == 4.0
        assert data['sellingPrice'] == 6.5
        assert data['minStock'] == 2
        assert 'cost_price' not in data

    def test_from_dict_restores_fields(self):
        product = Product.from_dict(make_product(category='Drinks').to_dict())
        assert product.id == 'p1'
        assert product.category == 'Drinks'
        assert product.stock == 10

    def test_copy_is_independent(self):
        product = make_product()
        clone = product.copy()
        clone.stock = 0
        assert product.stock == 10


class TestInvoiceItem:
    """Tests for InvoiceItem."""

    def test_total_price_is_unit_times_quantity(self):
        item = InvoiceItem(product_id='p1', product_name='Tea', quantity=3, unit_price='2.50')
        assert item.total_price == Decimal('7.50')

    def test_quantity_must_be_positive(self):
        with pytest.raises(ValidationError):
            InvoiceItem(product_id='p1', product_name='Tea', quantity=0, unit_price=1)

    def test_from_product_snapshots_sale_time_fields(self):
        product = make_product()
        item = InvoiceItem.from_product(product, 2)

        product.name = 'Renamed'
        product.cost_price = Decimal('99.00')

        assert item.product_name == 'Green Tea'
        assert item.cost_price == Decimal('4.00')
        assert item.barcode == '6221'
        assert item.unit_price == Decimal('6.50')

    def test_from_product_with_price_override(self):
        item = InvoiceItem.from_product(make_product(), 1, unit_price='5')
        assert item.unit_price == Decimal('5.00')


class TestInvoice:
    """Tests for Invoice totals and balance."""

    def _items(self):
        return [
            InvoiceItem(product_id='p1', product_name='Tea', quantity=2, unit_price=10),
            InvoiceItem(product_id='p2', product_name='Cup', quantity=1, unit_price=5),
        ]

    def test_recalculates_from_items(self):
        invoice = Invoice(id='i1', items=self._items(), discount=3, paid_amount=10)
        assert invoice.subtotal == Decimal('25.00')
        assert invoice.total == Decimal('22.00')
        assert invoice.remaining_balance == Decimal('12.00')
        assert invoice.status == STATUS_PARTIAL

    def test_discount_larger_than_subtotal_gives_zero_total(self):
        invoice = Invoice(id='i1', items=self._items(), discount=100)
        assert invoice.total == Decimal('0.00')
        assert invoice.status == STATUS_PAID

    def test_unknown_payment_method_rejected(self):
        with pytest.raises(ValidationError):
            Invoice(id='i1', items=self._items(), payment_method='barter')

    def test_negative_paid_amount_rejected(self):
        with pytest.raises(ValidationError):
            Invoice(id='i1', items=self._items(), paid_amount=-1)

    def test_product_ids(self):
        invoice = Invoice(id='i1', items=self._items())
        assert invoice.product_ids == {'p1', 'p2'}

    def test_dict_round_trip_keeps_balance(self):
        invoice = Invoice(id='i1', items=self._items(), paid_amount=25, payment_method='card')
        restored = Invoice.from_dict(invoice.to_dict())
        assert restored.total == Decimal('25.00')
        assert restored.status == STATUS_PAID
        assert restored.payment_method == 'card'
        assert [i.product_id for i in restored.items] == ['p1', 'p2']


class TestExpense:
    """Tests for Expense."""

    def test_amount_must_be_positive(self):
        with pytest.raises(ValidationError):
            Expense(id='e1', description='Rent', amount=0)

    def test_description_required(self):
        with pytest.raises(ValidationError):
            Expense(id='e1', description='', amount=10)

    def test_to_dict(self):
        data = Expense(id='e1', description='Rent', amount='120.5').to_dict()
        assert data['amount'] == 120.5
        assert data['description'] == 'Rent'
