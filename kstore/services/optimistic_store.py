"""
Optimistic Store
In-memory view of every product, invoice and expense as the UI should see
them right now, persisted as a snapshot after each mutation.

The snapshot holds the last optimistic state, not the last confirmed server
state: after a restart the kiosk shows what the cashier last saw.
"""

import dataclasses
import logging
from datetime import datetime, timezone
from decimal import Decimal

from kstore.entities import Expense, Invoice, Product
from kstore.errors import EntityNotFoundError
from kstore.utils.helpers import LOCAL_ID_PREFIX, is_local_id, utc_now_iso

logger = logging.getLogger(__name__)

PRODUCT = 'product'
INVOICE = 'invoice'
EXPENSE = 'expense'

ENTITY_CLASSES = {
    PRODUCT: Product,
    INVOICE: Invoice,
    EXPENSE: Expense,
}

SNAPSHOT_KEYS = {
    PRODUCT: 'products',
    INVOICE: 'invoices',
    EXPENSE: 'expenses',
}


class OptimisticStore:
    """Single source of truth for the UI; every write is synchronous and local"""

    def __init__(self, storage, store_name, local_prefix=LOCAL_ID_PREFIX):
        self.storage = storage
        self.store_name = store_name
        self.local_prefix = local_prefix
        self._tables = {entity_type: {} for entity_type in ENTITY_CLASSES}
        self._aliases = {}
        self.last_sync_time = None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def hydrate(self):
        """Load the last persisted snapshot; a missing or corrupt one leaves the store empty"""
        snapshot = self.storage.get(self.store_name)
        if not snapshot:
            logger.info(f"No snapshot under {self.store_name}, starting empty")
            return False

        try:
            tables = {entity_type: {} for entity_type in ENTITY_CLASSES}
            for entity_type, cls in ENTITY_CLASSES.items():
                for data in snapshot.get(SNAPSHOT_KEYS[entity_type], []):
                    entity = cls.from_dict(data)
                    tables[entity_type][entity.id] = entity
        except Exception as e:
            logger.error(f"Discarding unreadable snapshot {self.store_name}: {e}")
            return False

        self._tables = tables
        self._aliases = dict(snapshot.get('aliases') or {})
        self.last_sync_time = snapshot.get('lastSyncTime')
        logger.info(
            f"Hydrated {len(tables[PRODUCT])} products, {len(tables[INVOICE])} invoices, "
            f"{len(tables[EXPENSE])} expenses from {self.store_name}"
        )
        return True

    def snapshot(self):
        data = {
            key: [entity.to_dict() for entity in self._tables[entity_type].values()]
            for entity_type, key in SNAPSHOT_KEYS.items()
        }
        data['aliases'] = dict(self._aliases)
        data['lastSyncTime'] = self.last_sync_time
        return data

    def persist(self):
        """Write the snapshot; failure is logged and otherwise ignored"""
        result = self.storage.set(self.store_name, self.snapshot())
        if not result.ok:
            logger.warning(f"Snapshot not persisted, continuing without durability: {result.error}")
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def resolve_id(self, entity_id):
        """Follow local -> server id remaps; unknown ids resolve to themselves"""
        return self._aliases.get(entity_id, entity_id)

    def get(self, entity_type, entity_id):
        entity = self._tables[entity_type].get(self.resolve_id(entity_id))
        return entity.copy() if entity is not None else None

    def require(self, entity_type, entity_id):
        entity = self.get(entity_type, entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_type, entity_id)
        return entity

    def contains(self, entity_type, entity_id):
        return self.resolve_id(entity_id) in self._tables[entity_type]

    def list_entities(self, entity_type):
        entities = sorted(self._tables[entity_type].values(), key=lambda e: e.created_at)
        return [entity.copy() for entity in entities]

    def get_products(self):
        return self.list_entities(PRODUCT)

    def get_invoices(self):
        return self.list_entities(INVOICE)

    def get_expenses(self):
        return self.list_entities(EXPENSE)

    def get_product(self, product_id):
        return self.get(PRODUCT, product_id)

    def get_invoice(self, invoice_id):
        return self.get(INVOICE, invoice_id)

    def get_product_by_barcode(self, barcode):
        for product in self._tables[PRODUCT].values():
            if barcode and product.barcode == barcode:
                return product.copy()
        return None

    def search_products(self, query):
        """Case-insensitive match on name, barcode or category"""
        query = (query or '').strip().lower()
        if not query:
            return self.get_products()
        return [
            product for product in self.get_products()
            if query in product.name.lower()
            or query in (product.barcode or '').lower()
            or query in (product.category or '').lower()
        ]

    def get_low_stock_products(self):
        low = [product for product in self.get_products() if product.is_low_stock]
        return sorted(low, key=lambda p: p.stock)

    def get_today_stats(self, today=None):
        """Revenue, profit, items sold and invoice count for today's invoices"""
        today = today or datetime.now(timezone.utc).date().isoformat()
        invoices = [inv for inv in self._tables[INVOICE].values() if inv.created_at.startswith(today)]

        revenue = sum((inv.total for inv in invoices), Decimal('0.00'))
        profit = Decimal('0.00')
        items = 0
        for inv in invoices:
            for item in inv.items:
                profit += (item.unit_price - item.cost_price) * item.quantity
                items += item.quantity
            profit -= inv.discount

        return {
            'totalRevenue': float(revenue),
            'profit': float(profit),
            'totalItems': items,
            'invoiceCount': len(invoices),
        }

    def get_total_debt(self):
        return sum(
            (inv.remaining_balance for inv in self._tables[INVOICE].values() if inv.remaining_balance > 0),
            Decimal('0.00'),
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def apply_create(self, entity_type, entity):
        self._tables[entity_type][entity.id] = entity.copy()
        self.persist()
        return entity.copy()

    def apply_update(self, entity_type, entity_id, changes):
        """
        Apply attribute changes to an entity

        Args:
            entity_type: product, invoice or expense
            entity_id: Id (local ids are resolved through remaps)
            changes: dict of dataclass attribute names to new values

        Returns:
            The updated entity (copy)

        Raises:
            EntityNotFoundError: If the entity isn't in the store
        """
        current = self.require(entity_type, entity_id)
        changes = {k: v for k, v in changes.items() if k not in ('id', 'created_at')}
        if hasattr(current, 'updated_at'):
            changes.setdefault('updated_at', utc_now_iso())
        updated = dataclasses.replace(current, **changes)
        self._tables[entity_type][updated.id] = updated
        self.persist()
        return updated.copy()

    def apply_delete(self, entity_type, entity_id):
        """Remove an entity; returns the removed entity or None if it wasn't there"""
        removed = self._tables[entity_type].pop(self.resolve_id(entity_id), None)
        self.persist()
        return removed

    def adjust_stock(self, product_id, delta):
        """Add delta to a product's stock; returns the updated product"""
        product = self._tables[PRODUCT].get(self.resolve_id(product_id))
        if product is None:
            raise EntityNotFoundError(PRODUCT, product_id)
        product.stock += delta
        product.updated_at = utc_now_iso()
        self.persist()
        return product.copy()

    def set_stock_levels(self, levels):
        """Write new stock for each product id present in levels"""
        now = utc_now_iso()
        for product_id, stock in levels.items():
            product = self._tables[PRODUCT].get(product_id)
            if product is not None and product.stock != stock:
                product.stock = stock
                product.updated_at = now
        self.persist()

    def stock_levels(self, product_ids=None):
        products = self._tables[PRODUCT]
        if product_ids is None:
            return {pid: p.stock for pid, p in products.items()}
        return {pid: products[pid].stock for pid in product_ids if pid in products}

    def rewrite_id(self, entity_type, old_id, new_id):
        """
        Rename an entity from its local id to its server id in place

        Invoice items pointing at a renamed product follow it; the old id stays
        resolvable through the alias table.
        """
        table = self._tables[entity_type]
        entity = table.pop(old_id, None)
        if entity is not None:
            entity.id = new_id
            if isinstance(entity, Invoice):
                entity.synced = True
            table[new_id] = entity

        if entity_type == PRODUCT:
            for invoice in self._tables[INVOICE].values():
                for item in invoice.items:
                    if item.product_id == old_id:
                        item.product_id = new_id

        for alias, target in self._aliases.items():
            if target == old_id:
                self._aliases[alias] = new_id
        self._aliases[old_id] = new_id
        self.persist()
        logger.info(f"Remapped {entity_type} {old_id} -> {new_id}")

    def mark_synced(self, invoice_id):
        invoice = self._tables[INVOICE].get(self.resolve_id(invoice_id))
        if invoice is not None and not invoice.synced:
            invoice.synced = True
            self.persist()

    def replace_all(self, products, invoices, expenses, keep_ids=()):
        """
        Replace store contents with the server's view

        Entities with local ids, and entities whose id is in keep_ids (still
        referenced by queued operations), keep their optimistic state: if the
        kiosk has them they stay as they are, if the kiosk deleted them they
        stay deleted.
        """
        keep_ids = set(keep_ids)
        incoming = {
            PRODUCT: products,
            INVOICE: invoices,
            EXPENSE: expenses,
        }
        tables = {}
        for entity_type, entities in incoming.items():
            current = self._tables[entity_type]
            table = {}
            for entity in entities:
                if entity.id in keep_ids:
                    continue
                if isinstance(entity, Invoice):
                    entity.synced = True
                table[entity.id] = entity
            for entity_id, entity in current.items():
                if entity_id in keep_ids or is_local_id(entity_id, self.local_prefix):
                    table[entity_id] = entity
            tables[entity_type] = table
        self._tables = tables
        self.persist()

    def touch_sync_time(self):
        self.last_sync_time = utc_now_iso()
        self.persist()

    def clear(self):
        self._tables = {entity_type: {} for entity_type in ENTITY_CLASSES}
        self._aliases = {}
        self.last_sync_time = None
        self.persist()
