"""
Pending Operation Queue
Durable FIFO log of mutations not yet confirmed by the server.

Kept apart from the optimistic store: it must still hold operations for
entities the store no longer shows (e.g. a deleted product whose creation
already reached the server still needs its delete sent).
"""

import json
import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from kstore.errors import UnknownOperationError
from kstore.models import db, SyncQueue
from kstore.operations import operation_from_record

logger = logging.getLogger(__name__)

STATUS_PENDING = 'pending'
STATUS_SYNCED = 'synced'


class PendingQueue:
    """Ordered by (timestamp, insertion id); never re-sorted by payload"""

    def __init__(self):
        self._listeners = []

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, callback):
        """Register callback(pending_count), called whenever the backlog changes"""
        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback)

    def _notify(self):
        if not self._listeners:
            return
        count = self.pending_count()
        for callback in list(self._listeners):
            try:
                callback(count)
            except Exception as e:
                logger.error(f"Pending count listener failed: {e}")

    # ------------------------------------------------------------------
    # Log operations
    # ------------------------------------------------------------------

    def _last_timestamp(self):
        return db.session.query(db.func.max(SyncQueue.timestamp)).scalar() or 0

    def enqueue(self, op):
        """
        Append an operation

        The stored timestamp never goes backwards, so clock skew can't move an
        operation ahead of one enqueued earlier; equal timestamps fall back to
        insertion order.

        Args:
            op: PendingOperation

        Returns:
            str: The operation's op_id, or None if it could not be stored
        """
        try:
            record = op.to_record()
            record['timestamp'] = max(op.timestamp, self._last_timestamp())
            db.session.add(SyncQueue(status=STATUS_PENDING, attempts=0, **record))
            db.session.commit()
            logger.debug(f"Queued {op.entity_type}/{op.action} {op.target_id} as {op.op_id}")
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Could not queue {op.entity_type}/{op.action} {op.target_id}: {e}")
            return None
        self._notify()
        return op.op_id

    def _pending_rows(self):
        return SyncQueue.query.filter_by(status=STATUS_PENDING)\
            .order_by(SyncQueue.timestamp, SyncQueue.id).all()

    def list_unsynced(self):
        """Pending operations in replay order"""
        operations = []
        for row in self._pending_rows():
            try:
                operations.append(operation_from_record(row))
            except (UnknownOperationError, ValueError, KeyError) as e:
                logger.error(f"Skipping undecodable queue entry {row.op_id}: {e}")
        return operations

    def get(self, op_id):
        row = SyncQueue.query.filter_by(op_id=op_id).first()
        return operation_from_record(row) if row else None

    def pending_count(self):
        return SyncQueue.query.filter_by(status=STATUS_PENDING).count()

    def remove(self, op_id):
        """Delete an operation; returns False if it was already gone"""
        try:
            deleted = SyncQueue.query.filter_by(op_id=op_id).delete()
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Could not remove queue entry {op_id}: {e}")
            return False
        self._notify()
        return bool(deleted)

    def mark_synced(self, op_id):
        """Keep the entry for inspection; purge_synced() removes it later"""
        row = SyncQueue.query.filter_by(op_id=op_id).first()
        if row is None:
            return False
        row.status = STATUS_SYNCED
        row.synced_at = datetime.utcnow()
        db.session.commit()
        self._notify()
        return True

    def record_failure(self, op_id, error):
        """Bookkeeping only; the operation stays pending"""
        row = SyncQueue.query.filter_by(op_id=op_id).first()
        if row is None:
            return
        row.attempts = (row.attempts or 0) + 1
        row.last_error = str(error)[:2000]
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.warning(f"Could not record failure for {op_id}: {e}")

    # ------------------------------------------------------------------
    # Identity maintenance
    # ------------------------------------------------------------------

    def referenced_ids(self):
        """Every entity id mentioned by a pending operation"""
        ids = set()
        for op in self.list_unsynced():
            ids |= op.referenced_ids()
        return ids

    def references(self, entity_id, exclude_entity_type=None):
        """
        Check whether any pending operation mentions entity_id

        Args:
            entity_id: Product or invoice id
            exclude_entity_type: Ignore operations on this entity type that
                target entity_id itself (their own create/update/delete)
        """
        for op in self.list_unsynced():
            if entity_id not in op.referenced_ids():
                continue
            if op.entity_type == exclude_entity_type and op.target_id == entity_id:
                continue
            return True
        return False

    def rewrite_references(self, old_id, new_id):
        """
        Replace old_id with new_id in every pending operation

        Returns:
            int: Number of operations rewritten
        """
        rewritten = 0
        for row in self._pending_rows():
            try:
                op = operation_from_record(row)
            except (UnknownOperationError, ValueError, KeyError):
                continue
            if old_id not in op.referenced_ids():
                continue
            updated = op.rewrite_id(old_id, new_id)
            row.target_id = updated.target_id
            row.payload_json = json.dumps(updated.record_payload())
            rewritten += 1
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Could not rewrite queued references {old_id} -> {new_id}: {e}")
            return 0
        return rewritten

    def drop_for_target(self, entity_type, target_id):
        """Remove every pending operation on one entity; returns how many"""
        try:
            deleted = SyncQueue.query.filter_by(
                status=STATUS_PENDING, entity_type=entity_type, target_id=target_id
            ).delete()
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Could not drop queued operations for {entity_type} {target_id}: {e}")
            return 0
        self._notify()
        return deleted

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def purge_synced(self, older_than=timedelta(hours=24)):
        """Delete synced entries older than the retention window"""
        cutoff = datetime.utcnow() - older_than
        try:
            deleted = SyncQueue.query.filter(
                SyncQueue.status == STATUS_SYNCED,
                SyncQueue.synced_at < cutoff
            ).delete(synchronize_session=False)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.warning(f"Queue cleanup failed: {e}")
            return 0
        if deleted:
            logger.info(f"Purged {deleted} synced queue entries")
        return deleted

    def clear(self):
        SyncQueue.query.delete()
        db.session.commit()
        self._notify()
