"""
Stock/Balance Reconciler
Pure functions mapping (current stock, invoice lifecycle event, old invoice)
to new stock and balances. Used for every local mutation; the server applies
the same rules on its side when the operation is replayed.
"""

from collections import defaultdict

from kstore.entities import derive_balance
from kstore.utils.helpers import to_money

INVOICE_CREATE = 'create'
INVOICE_EDIT = 'edit'
INVOICE_DELETE = 'delete'
INVOICE_RETURN = 'return'

EVENTS = (INVOICE_CREATE, INVOICE_EDIT, INVOICE_DELETE, INVOICE_RETURN)


def stock_deltas(event, new_items=(), old_items=()):
    """
    Net stock change per product for an invoice lifecycle event

    Edit is rollback(old) followed by apply(new), never a direct diff of
    quantities, so membership changes between old and new items are exact.
    Delete and return restore the full quantity regardless of payment.

    Args:
        event: One of INVOICE_CREATE, INVOICE_EDIT, INVOICE_DELETE, INVOICE_RETURN
        new_items: Items of the invoice after the event (create/edit)
        old_items: Items of the invoice before the event (edit/delete/return)

    Returns:
        dict: product_id -> signed quantity delta (zero deltas omitted)
    """
    if event not in EVENTS:
        raise ValueError(f'Unknown invoice event: {event}')

    deltas = defaultdict(int)
    if event in (INVOICE_EDIT, INVOICE_DELETE, INVOICE_RETURN):
        for item in old_items:
            deltas[item.product_id] += item.quantity
    if event in (INVOICE_CREATE, INVOICE_EDIT):
        for item in new_items:
            deltas[item.product_id] -= item.quantity
    return {product_id: delta for product_id, delta in deltas.items() if delta}


def apply_stock_event(stock_levels, event, new_items=(), old_items=()):
    """
    New stock levels after an invoice event

    Products absent from stock_levels (deleted, or never loaded) are skipped.
    Stock may go negative: overselling is recorded, not blocked.

    Args:
        stock_levels: dict product_id -> current stock

    Returns:
        dict: product_id -> new stock, for every product in stock_levels
    """
    updated = dict(stock_levels)
    for product_id, delta in stock_deltas(event, new_items, old_items).items():
        if product_id in updated:
            updated[product_id] = updated[product_id] + delta
    return updated


def display_stock(stock):
    """Stock as shown to the cashier; negative counts are clamped to zero"""
    return max(0, stock)


def apply_payment(invoice, amount):
    """
    Record a payment against an invoice in place

    Returns:
        Invoice: The same invoice with paid amount, balance and status updated
    """
    invoice.paid_amount = invoice.paid_amount + to_money(amount, 'amount')
    invoice.remaining_balance, invoice.status = derive_balance(invoice.total, invoice.paid_amount)
    return invoice
