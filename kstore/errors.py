"""
Exceptions
Errors raised by the kiosk core for invalid input or unknown records
"""


class KStoreError(Exception):
    """Base class for kiosk core errors"""


class ValidationError(KStoreError):
    """Raised when entity data is malformed (bad quantity, missing name, ...)"""


class EntityNotFoundError(KStoreError):
    """Raised when a product/invoice/expense id is not in the local store"""

    def __init__(self, entity_type, entity_id):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f'{entity_type} {entity_id} not found')


class UnknownOperationError(KStoreError):
    """Raised when a queue row carries an (entity_type, action) pair we can't decode"""
