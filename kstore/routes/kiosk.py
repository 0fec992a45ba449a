"""
Kiosk Routes
Local JSON API the kiosk UI calls; every write is applied locally first
"""

import logging

from flask import Blueprint, jsonify, request

from kstore import get_engine
from kstore.errors import EntityNotFoundError, ValidationError
from kstore.services.kiosk_service import product_view

logger = logging.getLogger(__name__)

bp = Blueprint('kiosk', __name__)


def _kiosk():
    return get_engine().kiosk


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


@bp.errorhandler(ValidationError)
def handle_validation_error(error):
    return jsonify({'success': False, 'error': str(error)}), 400


@bp.errorhandler(EntityNotFoundError)
def handle_not_found(error):
    return jsonify({'success': False, 'error': str(error)}), 404


# ==================== PRODUCTS ====================

@bp.route('/products')
def list_products():
    return jsonify([product_view(p) for p in _kiosk().get_products()])


@bp.route('/products/search')
def search_products():
    """Search by name, barcode or category"""
    query = request.args.get('q', '')
    kiosk = _kiosk()

    # Exact barcode match first (scanner input)
    product = kiosk.get_product_by_barcode(query)
    if product:
        return jsonify([product_view(product)])
    return jsonify([product_view(p) for p in kiosk.search_products(query)])


@bp.route('/products/<product_id>')
def get_product(product_id):
    return jsonify(product_view(_kiosk().get_product(product_id)))


@bp.route('/products', methods=['POST'])
def create_product():
    product = _kiosk().create_product(_json_body())
    return jsonify({'success': True, 'product': product_view(product)}), 201


@bp.route('/products/<product_id>', methods=['PUT'])
def edit_product(product_id):
    product = _kiosk().edit_product(product_id, _json_body())
    return jsonify({'success': True, 'product': product_view(product)})


@bp.route('/products/<product_id>/stock', methods=['POST'])
def adjust_stock(product_id):
    """Apply a signed stock delta (delivery, recount, shrinkage)"""
    data = _json_body()
    if data.get('delta') is None:
        raise ValidationError('delta is required')
    product = _kiosk().adjust_stock(product_id, data['delta'])
    return jsonify({'success': True, 'product': product_view(product)})


@bp.route('/products/<product_id>', methods=['DELETE'])
def delete_product(product_id):
    _kiosk().remove_product(product_id)
    return jsonify({'success': True})


# ==================== INVOICES ====================

@bp.route('/invoices')
def list_invoices():
    return jsonify([inv.to_dict() for inv in _kiosk().get_invoices()])


@bp.route('/invoices/<invoice_id>')
def get_invoice(invoice_id):
    return jsonify(_kiosk().get_invoice(invoice_id).to_dict())


@bp.route('/invoices', methods=['POST'])
def create_invoice():
    invoice = _kiosk().create_invoice(_json_body())
    return jsonify({'success': True, 'invoice': invoice.to_dict()}), 201


@bp.route('/invoices/<invoice_id>', methods=['PUT'])
def edit_invoice(invoice_id):
    invoice = _kiosk().edit_invoice(invoice_id, _json_body())
    return jsonify({'success': True, 'invoice': invoice.to_dict()})


@bp.route('/invoices/<invoice_id>/payments', methods=['POST'])
def record_payment(invoice_id):
    data = _json_body()
    invoice = _kiosk().record_payment(invoice_id, data.get('amount'))
    return jsonify({'success': True, 'invoice': invoice.to_dict()})


@bp.route('/invoices/<invoice_id>/return', methods=['POST'])
def return_invoice(invoice_id):
    _kiosk().return_invoice(invoice_id)
    return jsonify({'success': True})


@bp.route('/invoices/<invoice_id>', methods=['DELETE'])
def delete_invoice(invoice_id):
    _kiosk().remove_invoice(invoice_id)
    return jsonify({'success': True})


# ==================== EXPENSES ====================

@bp.route('/expenses')
def list_expenses():
    return jsonify([e.to_dict() for e in _kiosk().get_expenses()])


@bp.route('/expenses', methods=['POST'])
def create_expense():
    expense = _kiosk().create_expense(_json_body())
    return jsonify({'success': True, 'expense': expense.to_dict()}), 201


@bp.route('/expenses/<expense_id>', methods=['DELETE'])
def delete_expense(expense_id):
    _kiosk().remove_expense(expense_id)
    return jsonify({'success': True})


# ==================== DASHBOARD / SYNC ====================

@bp.route('/dashboard')
def dashboard():
    return jsonify(_kiosk().dashboard())


@bp.route('/sync/status')
def sync_status():
    return jsonify(get_engine().sync_service.get_sync_status())


@bp.route('/sync', methods=['POST'])
def sync_now():
    """Manual sync trigger"""
    report = _kiosk().sync_now()
    return jsonify({'success': report.status != 'halted', 'report': report.to_dict()})


@bp.route('/connectivity', methods=['POST'])
def set_connectivity():
    """Host pushes an online/offline transition"""
    data = _json_body()
    if 'online' not in data:
        raise ValidationError('online is required')
    engine = get_engine()
    changed = engine.connectivity.set_online(bool(data['online']))
    return jsonify({'success': True, 'online': engine.connectivity.is_online, 'changed': changed})
