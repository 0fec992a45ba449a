"""
Pending Operations
One frozen dataclass per (entity_type, action) pair, so the replayer
dispatches on the operation's class instead of on strings.
"""

import json
import uuid
from dataclasses import dataclass, field, replace
from typing import Optional

from kstore.entities import Invoice, Product
from kstore.errors import UnknownOperationError
from kstore.utils.helpers import now_ms

PRODUCT = 'product'
INVOICE = 'invoice'

CREATE = 'create'
UPDATE = 'update'
DELETE = 'delete'

# Queue-row key for products an invoice edit/delete restored stock to
PREVIOUS_PRODUCT_IDS = 'previousProductIds'


def _new_op_id():
    return uuid.uuid4().hex


@dataclass(frozen=True)
class PendingOperation:
    """Base for queued mutations; op_id is independent of the entity id"""
    op_id: str = field(default_factory=_new_op_id, kw_only=True)
    timestamp: int = field(default_factory=now_ms, kw_only=True)

    entity_type = None
    action = None

    @property
    def target_id(self):
        raise NotImplementedError

    def payload(self):
        raise NotImplementedError

    def referenced_ids(self):
        """Every entity id this operation mentions"""
        return {self.target_id}

    def rewrite_id(self, old_id, new_id):
        """Return a copy with old_id replaced by new_id wherever it appears"""
        return self

    def record_payload(self):
        """What the queue row stores; payload() plus any local-only bookkeeping"""
        return self.payload()

    def to_record(self):
        return {
            'op_id': self.op_id,
            'entity_type': self.entity_type,
            'action': self.action,
            'target_id': self.target_id,
            'payload_json': json.dumps(self.record_payload()),
            'timestamp': self.timestamp,
        }


@dataclass(frozen=True)
class ProductCreate(PendingOperation):
    product: Product

    entity_type = PRODUCT
    action = CREATE

    @property
    def target_id(self):
        return self.product.id

    def payload(self):
        return self.product.to_dict()

    def rewrite_id(self, old_id, new_id):
        if self.product.id != old_id:
            return self
        product = self.product.copy()
        product.id = new_id
        return replace(self, product=product)


@dataclass(frozen=True)
class ProductUpdate(PendingOperation):
    """Field changes plus a stock delta; absolute stock is never replayed"""
    product_id: str
    changes: dict = field(default_factory=dict)
    stock_delta: int = 0

    entity_type = PRODUCT
    action = UPDATE

    @property
    def target_id(self):
        return self.product_id

    def payload(self):
        data = {k: v for k, v in self.changes.items() if k not in ('id', 'stock')}
        data['stockDelta'] = self.stock_delta
        return data

    def rewrite_id(self, old_id, new_id):
        if self.product_id != old_id:
            return self
        return replace(self, product_id=new_id)


@dataclass(frozen=True)
class ProductDelete(PendingOperation):
    product_id: str

    entity_type = PRODUCT
    action = DELETE

    @property
    def target_id(self):
        return self.product_id

    def payload(self):
        return {'id': self.product_id}

    def rewrite_id(self, old_id, new_id):
        if self.product_id != old_id:
            return self
        return replace(self, product_id=new_id)


def _rewrite_invoice(invoice, old_id, new_id):
    """Copy of invoice with old_id replaced as invoice id or item product id"""
    if invoice.id != old_id and old_id not in invoice.product_ids:
        return None
    invoice = invoice.copy()
    if invoice.id == old_id:
        invoice.id = new_id
    for item in invoice.items:
        if item.product_id == old_id:
            item.product_id = new_id
    return invoice


def _rewrite_ids(ids, old_id, new_id):
    return tuple(new_id if i == old_id else i for i in ids)


@dataclass(frozen=True)
class InvoiceCreate(PendingOperation):
    invoice: Invoice

    entity_type = INVOICE
    action = CREATE

    @property
    def target_id(self):
        return self.invoice.id

    def payload(self):
        return self.invoice.to_dict()

    def referenced_ids(self):
        return {self.invoice.id} | self.invoice.product_ids

    def rewrite_id(self, old_id, new_id):
        invoice = _rewrite_invoice(self.invoice, old_id, new_id)
        return self if invoice is None else replace(self, invoice=invoice)


@dataclass(frozen=True)
class InvoiceUpdate(PendingOperation):
    """
    Full new state of an edited invoice; the server re-derives stock from it

    previous_product_ids are the products on the invoice before the edit.
    Their local stock was restored too, so they count as referenced until
    the edit reaches the server.
    """
    invoice_id: str
    invoice: Invoice
    previous_product_ids: tuple = ()

    entity_type = INVOICE
    action = UPDATE

    @property
    def target_id(self):
        return self.invoice_id

    def payload(self):
        data = self.invoice.to_dict()
        data.pop('id', None)
        data.pop('synced', None)
        return data

    def record_payload(self):
        return {**self.payload(), PREVIOUS_PRODUCT_IDS: list(self.previous_product_ids)}

    def referenced_ids(self):
        return {self.invoice_id} | self.invoice.product_ids | set(self.previous_product_ids)

    def rewrite_id(self, old_id, new_id):
        if old_id not in self.referenced_ids():
            return self
        invoice = _rewrite_invoice(self.invoice, old_id, new_id)
        return replace(
            self,
            invoice_id=new_id if self.invoice_id == old_id else self.invoice_id,
            invoice=invoice if invoice is not None else self.invoice,
            previous_product_ids=_rewrite_ids(self.previous_product_ids, old_id, new_id),
        )


@dataclass(frozen=True)
class InvoiceDelete(PendingOperation):
    """Plain delete, or a return that restores stock server-side"""
    invoice_id: str
    is_return: bool = False
    previous_product_ids: tuple = ()

    entity_type = INVOICE
    action = DELETE

    @property
    def target_id(self):
        return self.invoice_id

    def payload(self):
        return {'id': self.invoice_id, 'isReturn': self.is_return}

    def record_payload(self):
        return {**self.payload(), PREVIOUS_PRODUCT_IDS: list(self.previous_product_ids)}

    def referenced_ids(self):
        return {self.invoice_id} | set(self.previous_product_ids)

    def rewrite_id(self, old_id, new_id):
        if old_id not in self.referenced_ids():
            return self
        return replace(
            self,
            invoice_id=new_id if self.invoice_id == old_id else self.invoice_id,
            previous_product_ids=_rewrite_ids(self.previous_product_ids, old_id, new_id),
        )


def operation_from_record(row):
    """
    Decode a sync_queue row back into its operation type

    Args:
        row: SyncQueue model instance

    Returns:
        PendingOperation subclass instance

    Raises:
        UnknownOperationError: For an (entity_type, action) pair we don't know
    """
    payload = json.loads(row.payload_json) if row.payload_json else {}
    common = {'op_id': row.op_id, 'timestamp': row.timestamp}
    key = (row.entity_type, row.action)

    if key == (PRODUCT, CREATE):
        return ProductCreate(product=Product.from_dict(payload), **common)
    if key == (PRODUCT, UPDATE):
        changes = {k: v for k, v in payload.items() if k != 'stockDelta'}
        return ProductUpdate(
            product_id=row.target_id,
            changes=changes,
            stock_delta=int(payload.get('stockDelta', 0)),
            **common,
        )
    if key == (PRODUCT, DELETE):
        return ProductDelete(product_id=row.target_id, **common)
    if key == (INVOICE, CREATE):
        return InvoiceCreate(invoice=Invoice.from_dict(payload), **common)
    previous_ids = tuple(payload.pop(PREVIOUS_PRODUCT_IDS, ()))
    if key == (INVOICE, UPDATE):
        invoice = Invoice.from_dict({**payload, 'id': row.target_id})
        return InvoiceUpdate(
            invoice_id=row.target_id,
            invoice=invoice,
            previous_product_ids=previous_ids,
            **common,
        )
    if key == (INVOICE, DELETE):
        return InvoiceDelete(
            invoice_id=row.target_id,
            is_return=bool(payload.get('isReturn', False)),
            previous_product_ids=previous_ids,
            **common,
        )
    raise UnknownOperationError(f'Unknown pending operation {row.entity_type}/{row.action}')
