"""
Remote Gateway
Thin requests-based client for the authoritative backend's REST endpoints.

Every call returns a Result. There is no retry, backoff or queuing here:
DNS errors, timeouts, refused connections and 5xx responses all come back as
plain failures and the sync service decides what to do with them.
"""

import logging

import requests

from kstore.entities import Expense, Invoice, Product
from kstore.result import Result

logger = logging.getLogger(__name__)


class RemoteGateway:
    """Client for /api/products, /api/invoices and /api/expenses"""

    def __init__(self, base_url, timeout=10, session=None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def _url(self, path):
        return f"{self.base_url}{path}"

    def _request(self, method, path, params=None, json=None, not_found_ok=False):
        """
        Issue one request and decode its JSON body

        Args:
            method: HTTP method
            path: Path under the base URL
            params: Query string parameters
            json: JSON body
            not_found_ok: Treat 404 as success (idempotent delete/return)

        Returns:
            Result: value is the decoded body on success
        """
        try:
            response = self.session.request(
                method, self._url(path), params=params, json=json, timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.debug(f"{method} {path} failed: {e}")
            return Result.failure(e)

        if response.status_code == 404 and not_found_ok:
            return Result.success({'success': True}, status_code=404)
        if not response.ok:
            return Result.failure(
                f"{method} {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            return Result.failure(f"Invalid JSON from {method} {path}: {e}", status_code=response.status_code)

        if isinstance(body, dict) and body.get('error'):
            return Result.failure(body['error'], status_code=response.status_code)
        return Result.success(body, status_code=response.status_code)

    def _flag(self, result, not_found_ok=False):
        """Map a {'success': bool} response onto a Result"""
        if not result.ok:
            return result
        body = result.value
        if isinstance(body, dict) and body.get('success'):
            return Result.success(True, status_code=result.status_code)
        if not_found_ok and isinstance(body, dict) and body.get('success') is False:
            # Server reports nothing to delete: the remote effect already happened
            return Result.success(True, status_code=result.status_code)
        return Result.failure('Server did not confirm the operation', status_code=result.status_code)

    def _entity(self, result, cls):
        if not result.ok:
            return result
        try:
            return Result.success(cls.from_dict(result.value), status_code=result.status_code)
        except Exception as e:
            return Result.failure(f"Unreadable {cls.__name__} from server: {e}", status_code=result.status_code)

    # ==================== PRODUCTS ====================

    def create_product(self, payload):
        return self._entity(self._request('POST', '/api/products', json=payload), Product)

    def update_product(self, product_id, payload):
        body = {**payload, 'id': product_id}
        return self._flag(self._request('PUT', '/api/products', json=body))

    def delete_product(self, product_id):
        result = self._request('DELETE', '/api/products', params={'id': product_id}, not_found_ok=True)
        return self._flag(result, not_found_ok=True)

    # ==================== INVOICES ====================

    def create_invoice(self, payload):
        return self._entity(self._request('POST', '/api/invoices', json=payload), Invoice)

    def update_invoice(self, invoice_id, payload):
        result = self._request(
            'PATCH', '/api/invoices', params={'id': invoice_id, 'action': 'update'}, json=payload
        )
        return self._flag(result)

    def delete_invoice(self, invoice_id):
        result = self._request('DELETE', '/api/invoices', params={'id': invoice_id}, not_found_ok=True)
        return self._flag(result, not_found_ok=True)

    def return_invoice(self, invoice_id):
        result = self._request(
            'PATCH', '/api/invoices', params={'id': invoice_id, 'action': 'return'}, not_found_ok=True
        )
        return self._flag(result, not_found_ok=True)

    # ==================== EXPENSES ====================

    def create_expense(self, payload):
        body = {'description': payload.get('description'), 'amount': payload.get('amount')}
        return self._entity(self._request('POST', '/api/expenses', json=body), Expense)

    def delete_expense(self, expense_id):
        result = self._request('DELETE', '/api/expenses', params={'id': expense_id}, not_found_ok=True)
        return self._flag(result, not_found_ok=True)

    # ==================== SNAPSHOT / HEALTH ====================

    def _list(self, path, cls):
        result = self._request('GET', path)
        if not result.ok:
            return result
        if not isinstance(result.value, list):
            return Result.failure(f"Expected a list from GET {path}")
        try:
            return Result.success([cls.from_dict(item) for item in result.value])
        except Exception as e:
            return Result.failure(f"Unreadable {cls.__name__} list from server: {e}")

    def fetch_snapshot(self):
        """
        Load all products, invoices and expenses from the server

        Returns:
            Result: value is a dict with 'products', 'invoices', 'expenses'
        """
        snapshot = {}
        for key, path, cls in (
            ('products', '/api/products', Product),
            ('invoices', '/api/invoices', Invoice),
            ('expenses', '/api/expenses', Expense),
        ):
            result = self._list(path, cls)
            if not result.ok:
                return result
            snapshot[key] = result.value
        return Result.success(snapshot)

    def ping(self):
        """True if the backend answers at all with a non-5xx status"""
        try:
            response = self.session.get(self._url('/api/health'), timeout=min(self.timeout, 5))
            return response.status_code < 500
        except requests.RequestException as e:
            logger.debug(f"No connection to backend: {e}")
            return False
