"""
Unit tests for pending operation types and their queue records.
"""

import pytest
import sys
import os
from types import SimpleNamespace

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from kstore.entities import Invoice, InvoiceItem, Product
from kstore.errors import UnknownOperationError
from kstore.operations import (
    InvoiceCreate, InvoiceDelete, InvoiceUpdate,
    ProductCreate, ProductDelete, ProductUpdate,
    operation_from_record,
)

pytestmark = pytest.mark.unit


def as_row(op):
    return SimpleNamespace(**op.to_record())


def make_invoice(invoice_id='offline_inv', product_id='offline_p'):
    return Invoice(id=invoice_id, items=[
        InvoiceItem(product_id=product_id, product_name='Tea', quantity=2, unit_price=5),
        InvoiceItem(product_id='srv_9', product_name='Cup', quantity=1, unit_price=3),
    ])


class TestPayloads:
    """Tests for operation payloads."""

    def test_product_update_never_carries_absolute_stock(self):
        op = ProductUpdate(product_id='srv_1', changes={'name': 'Tea', 'stock': 40}, stock_delta=-3)
        assert op.payload() == {'name': 'Tea', 'stockDelta': -3}

    def test_invoice_update_payload_has_no_id(self):
        op = InvoiceUpdate(invoice_id='srv_2', invoice=make_invoice('srv_2'))
        payload = op.payload()
        assert 'id' not in payload
        assert 'synced' not in payload
        assert len(payload['items']) == 2

    def test_return_flag_in_payload(self):
        assert InvoiceDelete(invoice_id='srv_2', is_return=True).payload() == {'id': 'srv_2', 'isReturn': True}

    def test_op_ids_are_unique(self):
        assert ProductDelete(product_id='a').op_id != ProductDelete(product_id='a').op_id


class TestReferences:
    """Tests for referenced ids and id rewriting."""

    def test_invoice_create_references_items(self):
        op = InvoiceCreate(invoice=make_invoice())
        assert op.referenced_ids() == {'offline_inv', 'offline_p', 'srv_9'}

    def test_rewrite_product_id_inside_invoice(self):
        op = InvoiceCreate(invoice=make_invoice())
        rewritten = op.rewrite_id('offline_p', 'srv_1')

        assert [i.product_id for i in rewritten.invoice.items] == ['srv_1', 'srv_9']
        assert rewritten.op_id == op.op_id
        assert rewritten.timestamp == op.timestamp
        # Original is untouched
        assert op.invoice.items[0].product_id == 'offline_p'

    def test_rewrite_invoice_update_target(self):
        op = InvoiceUpdate(invoice_id='offline_inv', invoice=make_invoice())
        rewritten = op.rewrite_id('offline_inv', 'srv_5')
        assert rewritten.target_id == 'srv_5'
        assert rewritten.invoice.id == 'srv_5'

    def test_rewrite_unrelated_id_is_noop(self):
        op = ProductUpdate(product_id='srv_1', changes={}, stock_delta=1)
        assert op.rewrite_id('offline_x', 'srv_2') is op

    def test_product_create_rewrite(self):
        op = ProductCreate(product=Product(id='offline_p', name='Tea'))
        assert op.rewrite_id('offline_p', 'srv_3').target_id == 'srv_3'

    def test_invoice_delete_references_restored_products(self):
        op = InvoiceDelete(invoice_id='srv_2', previous_product_ids=('offline_p', 'srv_9'))
        assert op.referenced_ids() == {'srv_2', 'offline_p', 'srv_9'}

        rewritten = op.rewrite_id('offline_p', 'srv_1')
        assert rewritten.previous_product_ids == ('srv_1', 'srv_9')
        assert rewritten.invoice_id == 'srv_2'

    def test_invoice_update_references_products_removed_by_edit(self):
        op = InvoiceUpdate(invoice_id='srv_2', invoice=make_invoice('srv_2', 'srv_9'),
                           previous_product_ids=('offline_old', 'srv_9'))
        assert 'offline_old' in op.referenced_ids()
        assert op.rewrite_id('offline_old', 'srv_7').previous_product_ids == ('srv_7', 'srv_9')


class TestRecords:
    """Tests for to_record / operation_from_record."""

    @pytest.mark.parametrize('op', [
        ProductCreate(product=Product(id='offline_p', name='Tea', stock=4)),
        ProductUpdate(product_id='srv_1', changes={'sellingPrice': 7.5}, stock_delta=2),
        ProductDelete(product_id='srv_1'),
        InvoiceCreate(invoice=make_invoice()),
        InvoiceUpdate(invoice_id='srv_2', invoice=make_invoice('srv_2')),
        InvoiceDelete(invoice_id='srv_2', is_return=True),
    ])
    def test_record_decodes_to_same_type(self, op):
        decoded = operation_from_record(as_row(op))
        assert type(decoded) is type(op)
        assert decoded.op_id == op.op_id
        assert decoded.target_id == op.target_id
        assert decoded.payload() == op.payload()

    def test_previous_product_ids_survive_the_record_but_not_the_wire(self):
        op = InvoiceDelete(invoice_id='srv_2', previous_product_ids=('srv_1',))
        decoded = operation_from_record(as_row(op))
        assert decoded.previous_product_ids == ('srv_1',)
        assert 'previousProductIds' not in decoded.payload()

    def test_unknown_pair_raises(self):
        row = SimpleNamespace(op_id='x', timestamp=1, entity_type='customer', action='merge',
                              target_id='c1', payload_json='{}')
        with pytest.raises(UnknownOperationError):
            operation_from_record(row)
