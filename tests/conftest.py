"""
Shared pytest fixtures and configuration for all tests.

Provides the Flask application factory, a fresh in-memory database per test,
the kiosk engine and a FakeGateway standing in for the remote backend.
"""

import pytest
import sys
import os

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from kstore import create_app, get_engine
from kstore.entities import Expense, Invoice, Product
from kstore.models import db
from kstore.result import Result


class FakeGateway:
    """
    In-memory stand-in for the authoritative backend.

    Behaves like the real server (assigns srv_N ids, applies stock effects of
    invoice create/update/delete/return) and can be told to fail:
    - fail_always: every mutating call fails
    - fail_after: the first N mutating calls succeed, the rest fail
    - script: list of booleans consumed one per mutating call (takes priority)
    """

    def __init__(self, fail_always=False, fail_after=None, script=None):
        self.fail_always = fail_always
        self.fail_after = fail_after
        self.script = list(script or [])
        self.online = True
        self.snapshot_fails = False
        self.calls = []
        self.succeeded = 0
        self.products = {}
        self.invoices = {}
        self.expenses = {}
        self._next_id = 0

    # -- helpers -------------------------------------------------------

    def _new_id(self):
        self._next_id += 1
        return f'srv_{self._next_id}'

    def _outcome(self, name, arg):
        self.calls.append((name, arg))
        if self.script:
            ok = self.script.pop(0)
        elif self.fail_always:
            ok = False
        elif self.fail_after is not None:
            ok = self.succeeded < self.fail_after
        else:
            ok = True
        if not ok:
            return Result.failure(f'{name} failed: network error')
        self.succeeded += 1
        return None

    def _move_stock(self, items, sign):
        for item in items:
            product = self.products.get(item['productId'])
            if product is not None:
                product['stock'] += sign * item['quantity']

    def seed_product(self, **fields):
        product_id = self._new_id()
        data = {'name': 'Item', 'stock': 0, 'costPrice': 1, 'sellingPrice': 2, **fields, 'id': product_id}
        self.products[product_id] = data
        return product_id

    def call_names(self):
        return [name for name, _ in self.calls]

    # -- products ------------------------------------------------------

    def create_product(self, payload):
        failure = self._outcome('create_product', payload)
        if failure is not None:
            return failure
        data = {**payload, 'id': self._new_id()}
        self.products[data['id']] = data
        return Result.success(Product.from_dict(data), status_code=201)

    def update_product(self, product_id, payload):
        failure = self._outcome('update_product', product_id)
        if failure is not None:
            return failure
        product = self.products.get(product_id)
        if product is None:
            return Result.failure('Product not found', status_code=404)
        changes = {k: v for k, v in payload.items() if k != 'stockDelta'}
        product.update(changes)
        product['stock'] += payload.get('stockDelta', 0)
        return Result.success(True)

    def delete_product(self, product_id):
        failure = self._outcome('delete_product', product_id)
        if failure is not None:
            return failure
        self.products.pop(product_id, None)
        return Result.success(True)

    # -- invoices ------------------------------------------------------

    def create_invoice(self, payload):
        failure = self._outcome('create_invoice', payload)
        if failure is not None:
            return failure
        data = {**payload, 'id': self._new_id()}
        self._move_stock(data.get('items', []), -1)
        self.invoices[data['id']] = data
        return Result.success(Invoice.from_dict(data), status_code=201)

    def update_invoice(self, invoice_id, payload):
        failure = self._outcome('update_invoice', invoice_id)
        if failure is not None:
            return failure
        old = self.invoices.get(invoice_id)
        if old is None:
            return Result.failure('Invoice not found', status_code=404)
        self._move_stock(old.get('items', []), 1)
        self._move_stock(payload.get('items', []), -1)
        self.invoices[invoice_id] = {**payload, 'id': invoice_id}
        return Result.success(True)

    def delete_invoice(self, invoice_id):
        failure = self._outcome('delete_invoice', invoice_id)
        if failure is not None:
            return failure
        old = self.invoices.pop(invoice_id, None)
        if old is not None:
            self._move_stock(old.get('items', []), 1)
        return Result.success(True)

    def return_invoice(self, invoice_id):
        failure = self._outcome('return_invoice', invoice_id)
        if failure is not None:
            return failure
        old = self.invoices.pop(invoice_id, None)
        if old is not None:
            self._move_stock(old.get('items', []), 1)
        return Result.success(True)

    # -- expenses ------------------------------------------------------

    def create_expense(self, payload):
        failure = self._outcome('create_expense', payload)
        if failure is not None:
            return failure
        data = {**payload, 'id': self._new_id()}
        self.expenses[data['id']] = data
        return Result.success(Expense.from_dict(data), status_code=201)

    def delete_expense(self, expense_id):
        failure = self._outcome('delete_expense', expense_id)
        if failure is not None:
            return failure
        self.expenses.pop(expense_id, None)
        return Result.success(True)

    # -- reads ---------------------------------------------------------

    def fetch_snapshot(self):
        if self.snapshot_fails:
            return Result.failure('GET /api/products returned HTTP 503', status_code=503)
        return Result.success({
            'products': [Product.from_dict(p) for p in self.products.values()],
            'invoices': [Invoice.from_dict(i) for i in self.invoices.values()],
            'expenses': [Expense.from_dict(e) for e in self.expenses.values()],
        })

    def ping(self):
        return self.online


@pytest.fixture(scope='session')
def app_factory():
    """Factory fixture for creating test app instances."""
    def _create_app(config='testing', gateway=None):
        app = create_app(config, gateway=gateway)
        app.config['TESTING'] = True
        return app
    return _create_app


@pytest.fixture(scope='function')
def gateway():
    """Fake backend that accepts everything until told otherwise."""
    return FakeGateway()


@pytest.fixture(scope='function')
def fresh_app(app_factory, gateway):
    """Create a fresh application for each test with clean database."""
    app = app_factory(gateway=gateway)

    with app.app_context():
        db.create_all()
        yield app
        get_engine(app).shutdown()
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(fresh_app):
    """Create a test client for each test."""
    return fresh_app.test_client()


@pytest.fixture(scope='function')
def engine(fresh_app):
    """The kiosk engine of the fresh app."""
    return get_engine(fresh_app)


@pytest.fixture(scope='function')
def kiosk(engine):
    """The UI facade."""
    return engine.kiosk


@pytest.fixture(scope='function')
def go_offline(engine):
    """Put the kiosk offline; call the returned function to come back."""
    engine.connectivity.set_online(False)
    return lambda: engine.connectivity.set_online(True)


# Pytest configuration
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: fast tests of a single component"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
