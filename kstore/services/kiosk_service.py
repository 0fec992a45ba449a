"""
Kiosk Service
What the UI calls: reads of the optimistic store and local-first mutations.

Every mutation is applied to the store first, queued second, and only then
(optionally) pushed by a sync pass. Sync failures never reach the caller;
only bad input (ValidationError) or unknown ids (EntityNotFoundError) do.
"""

import logging

from kstore.entities import Expense, Invoice, InvoiceItem, Product
from kstore.errors import EntityNotFoundError, ValidationError
from kstore.operations import (
    InvoiceCreate, InvoiceDelete, InvoiceUpdate,
    ProductCreate, ProductDelete, ProductUpdate,
)
from kstore.services import reconciler
from kstore.services.optimistic_store import EXPENSE, INVOICE, PRODUCT
from kstore.services.sync_service import TRIGGER_MANUAL
from kstore.utils.helpers import generate_local_id, is_local_id, to_int, to_money, utc_now_iso

logger = logging.getLogger(__name__)

# camelCase field -> Product attribute, for fields the UI may edit directly
PRODUCT_FIELDS = {
    'name': 'name',
    'barcode': 'barcode',
    'description': 'description',
    'category': 'category',
    'costPrice': 'cost_price',
    'sellingPrice': 'selling_price',
    'minStock': 'min_stock',
    'unit': 'unit',
}

INVOICE_FIELDS = {
    'discount': 'discount',
    'paidAmount': 'paid_amount',
    'paymentMethod': 'payment_method',
    'notes': 'notes',
    'customerId': 'customer_id',
    'customerName': 'customer_name',
}


def product_view(product):
    """Product as the UI shows it; raw stock plus the clamped count for display"""
    data = product.to_dict()
    data['displayStock'] = reconciler.display_stock(product.stock)
    return data


class KioskService:
    """Local-first facade over the optimistic store, queue and sync service"""

    def __init__(self, app, store, queue, sync_service, gateway, connectivity, lock):
        self.app = app
        self.store = store
        self.queue = queue
        self.sync_service = sync_service
        self.gateway = gateway
        self.connectivity = connectivity
        self.lock = lock
        self.local_prefix = app.config.get('LOCAL_ID_PREFIX', 'offline_')

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_products(self):
        return self.store.get_products()

    def get_invoices(self):
        return self.store.get_invoices()

    def get_expenses(self):
        return self.store.get_expenses()

    def get_product(self, product_id):
        return self.store.require(PRODUCT, product_id)

    def get_invoice(self, invoice_id):
        return self.store.require(INVOICE, invoice_id)

    def search_products(self, query):
        return self.store.search_products(query)

    def get_product_by_barcode(self, barcode):
        return self.store.get_product_by_barcode(barcode)

    @property
    def pending_count(self):
        return self.queue.pending_count()

    @property
    def is_syncing(self):
        return self.sync_service.is_syncing

    def subscribe(self, callback):
        """Observe the pending count; returns an unsubscribe function"""
        return self.queue.subscribe(callback)

    def sync_now(self):
        return self.sync_service.process_sync_queue(TRIGGER_MANUAL)

    def dashboard(self):
        return {
            'stats': self.store.get_today_stats(),
            'lowStockProducts': [product_view(p) for p in self.store.get_low_stock_products()],
            'totalDebt': float(self.store.get_total_debt()),
            'pendingCount': self.pending_count,
            'isSyncing': self.is_syncing,
            'isOnline': self.connectivity.is_online,
            'lastSyncTime': self.store.last_sync_time,
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_id(self):
        return generate_local_id(self.local_prefix)

    def _is_local(self, entity_id):
        return is_local_id(entity_id, self.local_prefix)

    def _enqueue(self, op):
        op_id = self.queue.enqueue(op)
        if op_id is None:
            logger.warning(
                f"{op.entity_type}/{op.action} {op.target_id} applied locally but not queued; "
                f"it will not reach the server"
            )
        return op_id

    def _after_write(self):
        """Try to confirm the write right away when online"""
        if self.app.config.get('SYNC_ON_WRITE') and self.connectivity.is_online:
            self.sync_service.process_sync_queue(TRIGGER_MANUAL)

    def _fold_local_delete(self, entity_type, entity_id):
        """
        Drop the queued history of an entity that never reached the server

        Only when folding is enabled and no other queued operation still points
        at the entity (an invoice line for an offline product, say).

        Returns:
            bool: True if the create/update operations were dropped and no
            delete needs to be queued
        """
        if not self._is_local(entity_id):
            return False
        if not self.app.config.get('FOLD_OFFLINE_CREATE_DELETE', True):
            return False
        if self.queue.references(entity_id, exclude_entity_type=entity_type):
            return False
        dropped = self.queue.drop_for_target(entity_type, entity_id)
        logger.info(f"Folded {dropped} queued operations for unsynced {entity_type} {entity_id}")
        return True

    # ==================== PRODUCTS ====================

    def create_product(self, data):
        """
        Create a product locally and queue its creation

        Args:
            data: camelCase product fields (name, barcode, costPrice, ...)

        Returns:
            Product: As the store holds it after the write
        """
        now = utc_now_iso()
        with self.lock:
            product = Product.from_dict({**data, 'id': self._new_id(), 'createdAt': now, 'updatedAt': now})
            self.store.apply_create(PRODUCT, product)
            self._enqueue(ProductCreate(product=product))
        self._after_write()
        return self.store.get_product(product.id)

    def edit_product(self, product_id, updates):
        """
        Edit product fields

        An absolute 'stock' value is turned into a delta against the current
        optimistic stock; 'stockDelta' adds to it. Only the delta is replayed.
        """
        with self.lock:
            current = self.store.require(PRODUCT, product_id)

            changes = {attr: updates[key] for key, attr in PRODUCT_FIELDS.items() if key in updates}
            stock_delta = 0
            if updates.get('stock') is not None:
                stock_delta += to_int(updates['stock'], 'stock') - current.stock
            if updates.get('stockDelta') is not None:
                stock_delta += to_int(updates['stockDelta'], 'stockDelta')
            if not changes and not stock_delta:
                return current

            updated = current
            if changes:
                updated = self.store.apply_update(PRODUCT, current.id, changes)
            if stock_delta:
                updated = self.store.adjust_stock(current.id, stock_delta)
            wire = updated.to_dict()
            wire_changes = {key: wire[key] for key, attr in PRODUCT_FIELDS.items() if attr in changes}
            self._enqueue(ProductUpdate(
                product_id=updated.id, changes=wire_changes, stock_delta=stock_delta
            ))
        self._after_write()
        return self.store.get_product(updated.id)

    def adjust_stock(self, product_id, delta):
        """Explicit stock edit (recount, delivery, shrinkage)"""
        return self.edit_product(product_id, {'stockDelta': delta})

    def remove_product(self, product_id):
        with self.lock:
            current = self.store.require(PRODUCT, product_id)
            self.store.apply_delete(PRODUCT, current.id)
            if not self._fold_local_delete(PRODUCT, current.id):
                self._enqueue(ProductDelete(product_id=current.id))
        self._after_write()
        return True

    # ==================== INVOICES ====================

    def _build_items(self, raw_items, previous_items=()):
        """
        Turn UI cart lines into invoice items

        Lines for a product already on the invoice keep their sale-time
        snapshot; new lines snapshot the product as it is now.
        """
        if not raw_items:
            raise ValidationError('Invoice has no items')

        previous = {item.product_id: item for item in previous_items}
        items = []
        for raw in raw_items:
            product_id = self.store.resolve_id(raw.get('productId'))
            quantity = raw.get('quantity')
            unit_price = raw.get('unitPrice')

            if product_id in previous:
                old = previous[product_id]
                items.append(InvoiceItem(
                    product_id=old.product_id,
                    product_name=old.product_name,
                    barcode=old.barcode,
                    quantity=quantity,
                    unit_price=old.unit_price if unit_price is None else unit_price,
                    cost_price=old.cost_price,
                ))
                continue

            product = self.store.get_product(product_id)
            if product is None:
                raise EntityNotFoundError(PRODUCT, raw.get('productId'))
            items.append(InvoiceItem.from_product(product, quantity, unit_price))
        return items

    def _apply_stock(self, event, new_items=(), old_items=()):
        product_ids = {item.product_id for item in new_items} | {item.product_id for item in old_items}
        levels = reconciler.apply_stock_event(
            self.store.stock_levels(product_ids), event, new_items=new_items, old_items=old_items
        )
        self.store.set_stock_levels(levels)

    def create_invoice(self, data):
        """
        Record a sale: deduct stock locally and queue the invoice creation

        Stock is not queued separately; the server deducts it when the
        invoice create is replayed.
        """
        now = utc_now_iso()
        with self.lock:
            items = self._build_items(data.get('items'))
            invoice = Invoice(
                id=self._new_id(),
                items=items,
                discount=data.get('discount', 0),
                paid_amount=data.get('paidAmount', 0),
                payment_method=data.get('paymentMethod') or 'cash',
                notes=data.get('notes'),
                customer_id=data.get('customerId'),
                customer_name=data.get('customerName') or '',
                created_at=now,
                updated_at=now,
                synced=False,
            )
            self.store.apply_create(INVOICE, invoice)
            self._apply_stock(reconciler.INVOICE_CREATE, new_items=invoice.items)
            self._enqueue(InvoiceCreate(invoice=invoice))
        self._after_write()
        return self.store.get_invoice(invoice.id)

    def edit_invoice(self, invoice_id, data):
        """
        Edit an invoice's lines and/or payment fields

        Stock follows rollback(old items) + apply(new items).
        """
        with self.lock:
            old = self.store.require(INVOICE, invoice_id)

            changes = {attr: data[key] for key, attr in INVOICE_FIELDS.items() if key in data}
            items_changed = 'items' in data
            if items_changed:
                changes['items'] = self._build_items(data['items'], previous_items=old.items)
            if not changes:
                return old
            changes['synced'] = False

            updated = self.store.apply_update(INVOICE, old.id, changes)
            if items_changed:
                self._apply_stock(reconciler.INVOICE_EDIT, new_items=updated.items, old_items=old.items)
            self._enqueue(InvoiceUpdate(
                invoice_id=updated.id,
                invoice=updated,
                previous_product_ids=tuple(sorted(old.product_ids)),
            ))
        self._after_write()
        return self.store.get_invoice(updated.id)

    def record_payment(self, invoice_id, amount):
        """Add a payment to an invoice's paid amount"""
        amount = to_money(amount, 'amount')
        if amount <= 0:
            raise ValidationError('Payment amount must be positive')
        with self.lock:
            invoice = self.store.require(INVOICE, invoice_id)
            reconciler.apply_payment(invoice, amount)
            paid = invoice.paid_amount
        return self.edit_invoice(invoice_id, {'paidAmount': paid})

    def remove_invoice(self, invoice_id, is_return=False):
        """
        Delete an invoice (or return it) and restore its stock in full

        Returns:
            bool: True once applied locally
        """
        event = reconciler.INVOICE_RETURN if is_return else reconciler.INVOICE_DELETE
        with self.lock:
            old = self.store.require(INVOICE, invoice_id)
            self.store.apply_delete(INVOICE, old.id)
            self._apply_stock(event, old_items=old.items)
            if not self._fold_local_delete(INVOICE, old.id):
                self._enqueue(InvoiceDelete(
                    invoice_id=old.id,
                    is_return=is_return,
                    previous_product_ids=tuple(sorted(old.product_ids)),
                ))
        self._after_write()
        return True

    def return_invoice(self, invoice_id):
        return self.remove_invoice(invoice_id, is_return=True)

    # ==================== EXPENSES ====================

    def create_expense(self, data):
        """
        Record an expense locally, pushing it straight to the server if online

        Expenses are not queued; one recorded offline stays local-only.
        """
        with self.lock:
            expense = Expense(
                id=self._new_id(),
                description=data.get('description'),
                amount=data.get('amount'),
            )
            self.store.apply_create(EXPENSE, expense)

        if self.connectivity.is_online:
            result = self.gateway.create_expense(expense.to_dict())
            if result.ok:
                with self.lock:
                    self.store.rewrite_id(EXPENSE, expense.id, result.value.id)
            else:
                logger.warning(f"Expense kept locally, server rejected it: {result.error}")
        return self.store.get(EXPENSE, expense.id)

    def remove_expense(self, expense_id):
        with self.lock:
            current = self.store.require(EXPENSE, expense_id)
            self.store.apply_delete(EXPENSE, current.id)

        if not self._is_local(current.id) and self.connectivity.is_online:
            result = self.gateway.delete_expense(current.id)
            if not result.ok:
                logger.warning(f"Expense {current.id} removed locally only: {result.error}")
        return True
