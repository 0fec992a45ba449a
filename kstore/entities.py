"""
Entity Model
Products, invoices, invoice items and expenses as the kiosk sees them.

Entities are plain dataclasses: they live in the optimistic store snapshot
and travel over the wire as camelCase JSON, so they are not ORM models.
"""

import copy
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from kstore.errors import ValidationError
from kstore.utils.helpers import to_int, to_money, utc_now_iso

PAYMENT_METHODS = ('cash', 'card', 'credit')

STATUS_PAID = 'paid'
STATUS_PARTIAL = 'partial'
STATUS_UNPAID = 'unpaid'


def derive_balance(total, paid_amount):
    """
    Derive the remaining balance and payment status of an invoice

    remaining = max(0, total - paid); status is 'paid' when nothing remains,
    otherwise 'partial' if anything was paid, else 'unpaid'.

    Args:
        total: Invoice total
        paid_amount: Amount paid so far

    Returns:
        tuple: (remaining_balance: Decimal, status: str)
    """
    total = to_money(total, 'total')
    paid_amount = to_money(paid_amount, 'paidAmount')
    remaining = max(Decimal('0.00'), total - paid_amount)
    if remaining <= 0:
        return remaining, STATUS_PAID
    if paid_amount > 0:
        return remaining, STATUS_PARTIAL
    return remaining, STATUS_UNPAID


def _money_out(value):
    return float(value)


@dataclass
class Product:
    """Product/Inventory item"""
    id: str
    name: str
    barcode: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    cost_price: Decimal = Decimal('0.00')
    selling_price: Decimal = Decimal('0.00')
    stock: int = 0
    min_stock: int = 0
    unit: str = 'piece'
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    def __post_init__(self):
        if not self.name or not str(self.name).strip():
            raise ValidationError('Product name is required')
        self.cost_price = to_money(self.cost_price, 'costPrice')
        self.selling_price = to_money(self.selling_price, 'sellingPrice')
        if self.cost_price < 0 or self.selling_price < 0:
            raise ValidationError('Prices cannot be negative')
        self.stock = to_int(self.stock, 'stock')
        self.min_stock = to_int(self.min_stock, 'minStock')
        self.barcode = self.barcode or None

    @property
    def is_low_stock(self):
        """Check if product is at or below its minimum stock"""
        return self.stock <= self.min_stock

    def copy(self):
        return copy.deepcopy(self)

    def to_dict(self):
        return {
            'id': self.id,
            'barcode': self.barcode,
            'name': self.name,
            'description': self.description,
            'category': self.category,
            'costPrice': _money_out(self.cost_price),
            'sellingPrice': _money_out(self.selling_price),
            'stock': self.stock,
            'minStock': self.min_stock,
            'unit': self.unit,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
        }

    @classmethod
    def from_dict(cls, data):
        now = utc_now_iso()
        return cls(
            id=data.get('id'),
            name=data.get('name'),
            barcode=data.get('barcode'),
            description=data.get('description'),
            category=data.get('category'),
            cost_price=data.get('costPrice', 0),
            selling_price=data.get('sellingPrice', 0),
            stock=data.get('stock', 0),
            min_stock=data.get('minStock', 0),
            unit=data.get('unit') or 'piece',
            created_at=data.get('createdAt') or now,
            updated_at=data.get('updatedAt') or now,
        )


@dataclass
class InvoiceItem:
    """
    A line on an invoice.

    product_name, barcode and cost_price are snapshots taken at sale time and
    are never refreshed from the product afterwards.
    """
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    cost_price: Decimal = Decimal('0.00')
    barcode: Optional[str] = None
    total_price: Decimal = Decimal('0.00')

    def __post_init__(self):
        self.quantity = to_int(self.quantity, 'quantity')
        if self.quantity <= 0:
            raise ValidationError(f'Quantity must be positive for {self.product_name}')
        self.unit_price = to_money(self.unit_price, 'unitPrice')
        self.cost_price = to_money(self.cost_price, 'costPrice')
        self.total_price = self.unit_price * self.quantity

    @classmethod
    def from_product(cls, product, quantity, unit_price=None):
        """Build an item from the product as it is right now"""
        return cls(
            product_id=product.id,
            product_name=product.name,
            barcode=product.barcode,
            quantity=quantity,
            unit_price=product.selling_price if unit_price is None else unit_price,
            cost_price=product.cost_price,
        )

    def to_dict(self):
        return {
            'productId': self.product_id,
            'productName': self.product_name,
            'barcode': self.barcode,
            'quantity': self.quantity,
            'unitPrice': _money_out(self.unit_price),
            'totalPrice': _money_out(self.total_price),
            'costPrice': _money_out(self.cost_price),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            product_id=data.get('productId'),
            product_name=data.get('productName') or '',
            barcode=data.get('barcode'),
            quantity=data.get('quantity'),
            unit_price=data.get('unitPrice', 0),
            cost_price=data.get('costPrice', 0),
        )


@dataclass
class Invoice:
    """Sales invoice"""
    id: str
    items: List[InvoiceItem] = field(default_factory=list)
    subtotal: Decimal = Decimal('0.00')
    discount: Decimal = Decimal('0.00')
    total: Decimal = Decimal('0.00')
    paid_amount: Decimal = Decimal('0.00')
    remaining_balance: Decimal = Decimal('0.00')
    status: str = STATUS_UNPAID
    payment_method: str = 'cash'
    notes: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: str = ''
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    synced: bool = False

    def __post_init__(self):
        if self.payment_method not in PAYMENT_METHODS:
            raise ValidationError(f'Unknown payment method: {self.payment_method}')
        self.discount = to_money(self.discount, 'discount')
        self.paid_amount = to_money(self.paid_amount, 'paidAmount')
        self.subtotal = to_money(self.subtotal, 'subtotal')
        if self.discount < 0 or self.paid_amount < 0:
            raise ValidationError('Discount and paid amount cannot be negative')
        self.recalculate()

    def recalculate(self):
        """Recalculate subtotal, total, remaining balance and status"""
        if self.items:
            self.subtotal = sum((item.total_price for item in self.items), Decimal('0.00'))
        self.total = max(Decimal('0.00'), self.subtotal - self.discount)
        self.remaining_balance, self.status = derive_balance(self.total, self.paid_amount)
        return self.total

    @property
    def product_ids(self):
        return {item.product_id for item in self.items}

    def copy(self):
        return copy.deepcopy(self)

    def to_dict(self):
        return {
            'id': self.id,
            'customerId': self.customer_id,
            'customerName': self.customer_name,
            'items': [item.to_dict() for item in self.items],
            'subtotal': _money_out(self.subtotal),
            'discount': _money_out(self.discount),
            'total': _money_out(self.total),
            'paidAmount': _money_out(self.paid_amount),
            'remainingBalance': _money_out(self.remaining_balance),
            'status': self.status,
            'paymentMethod': self.payment_method,
            'notes': self.notes,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
            'synced': self.synced,
        }

    @classmethod
    def from_dict(cls, data):
        now = utc_now_iso()
        return cls(
            id=data.get('id'),
            items=[InvoiceItem.from_dict(item) for item in data.get('items') or []],
            subtotal=data.get('subtotal', 0),
            discount=data.get('discount', 0),
            paid_amount=data.get('paidAmount', 0),
            payment_method=data.get('paymentMethod') or 'cash',
            notes=data.get('notes'),
            customer_id=data.get('customerId'),
            customer_name=data.get('customerName') or '',
            created_at=data.get('createdAt') or now,
            updated_at=data.get('updatedAt') or now,
            synced=bool(data.get('synced', False)),
        )


@dataclass
class Expense:
    """Shop expense; informational only, never touches stock or balances"""
    id: str
    description: str
    amount: Decimal
    created_at: str = field(default_factory=utc_now_iso)

    def __post_init__(self):
        if not self.description or not str(self.description).strip():
            raise ValidationError('Expense description is required')
        self.amount = to_money(self.amount, 'amount')
        if self.amount <= 0:
            raise ValidationError('Expense amount must be positive')

    def copy(self):
        return copy.deepcopy(self)

    def to_dict(self):
        return {
            'id': self.id,
            'description': self.description,
            'amount': _money_out(self.amount),
            'createdAt': self.created_at,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data.get('id'),
            description=data.get('description'),
            amount=data.get('amount'),
            created_at=data.get('createdAt') or utc_now_iso(),
        )
