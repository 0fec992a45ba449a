"""
Helper Utilities
Common utility functions used across the kiosk core
"""

import secrets
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from kstore.errors import ValidationError

LOCAL_ID_PREFIX = 'offline_'

TWO_PLACES = Decimal('0.01')


def generate_local_id(prefix=LOCAL_ID_PREFIX):
    """
    Generate an identifier for an entity created on this kiosk

    Format: <prefix><base36 ms timestamp><random hex>
    The prefix marks the id as never having reached the server.

    Returns:
        str: Local identifier
    """
    return f"{prefix}{_base36(now_ms())}{secrets.token_hex(4)}"


def is_local_id(entity_id, prefix=LOCAL_ID_PREFIX):
    """Check whether an id was issued locally and is unknown to the server"""
    return isinstance(entity_id, str) and entity_id.startswith(prefix)


def now_ms():
    """Wall-clock milliseconds since the epoch"""
    return int(time.time() * 1000)


def utc_now_iso():
    """Current UTC time as an ISO-8601 string"""
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def to_money(value, field='amount'):
    """
    Coerce a number/string to a 2-place Decimal

    Args:
        value: int, float, str or Decimal (None is treated as 0)
        field: Field name used in the error message

    Returns:
        Decimal: Quantized amount

    Raises:
        ValidationError: If the value is not numeric
    """
    if value is None or value == '':
        return Decimal('0.00')
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field} must be a number, got {value!r}')
    if not amount.is_finite():
        raise ValidationError(f'{field} must be finite')
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_int(value, field='value'):
    """Coerce to int, rejecting fractional and non-numeric values"""
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be an integer')
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field} must be an integer, got {value!r}')
    if not number.is_finite() or number != number.to_integral_value():
        raise ValidationError(f'{field} must be an integer, got {value!r}')
    return int(number)


def _base36(number):
    chars = '0123456789abcdefghijklmnopqrstuvwxyz'
    if number == 0:
        return '0'
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(chars[rem])
    return ''.join(reversed(out))
