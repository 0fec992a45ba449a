"""
Durable Storage
Key/value persistence over the storage_entries table
"""

import json
import logging

from sqlalchemy.exc import SQLAlchemyError

from kstore.models import db, StorageEntry
from kstore.result import Result

logger = logging.getLogger(__name__)


class DurableStorage:
    """get/set/delete of JSON values; writes report failure instead of raising"""

    def get(self, key, default=None):
        """
        Read a value

        Args:
            key: Storage key
            default: Returned when the key is missing or unreadable

        Returns:
            Decoded JSON value or default
        """
        try:
            entry = StorageEntry.query.filter_by(key=key).first()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.warning(f"Storage read failed for {key}: {e}")
            return default

        if entry is None or entry.value is None:
            return default
        try:
            return json.loads(entry.value)
        except ValueError as e:
            logger.warning(f"Corrupt storage value under {key}: {e}")
            return default

    def set(self, key, value):
        """Write a JSON-serializable value under key"""
        try:
            entry = StorageEntry.query.filter_by(key=key).first()
            if entry is None:
                entry = StorageEntry(key=key)
                db.session.add(entry)
            entry.value = json.dumps(value)
            db.session.commit()
            return Result.success()
        except (SQLAlchemyError, TypeError, ValueError) as e:
            db.session.rollback()
            logger.warning(f"Storage write failed for {key}: {e}")
            return Result.failure(e)

    def delete(self, key):
        """Remove key; deleting a missing key is a success"""
        try:
            StorageEntry.query.filter_by(key=key).delete()
            db.session.commit()
            return Result.success()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.warning(f"Storage delete failed for {key}: {e}")
            return Result.failure(e)
