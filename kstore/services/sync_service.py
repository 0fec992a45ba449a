"""
Sync Service
Replays the pending operation queue against the server when online
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

from kstore.operations import (
    CREATE, DELETE, UPDATE,
    InvoiceCreate, InvoiceDelete, InvoiceUpdate,
    ProductCreate, ProductDelete, ProductUpdate,
)
from kstore.result import Result
from kstore.utils.helpers import is_local_id

logger = logging.getLogger(__name__)

TRIGGER_RECONNECT = 'reconnect'
TRIGGER_INTERVAL = 'interval'
TRIGGER_MANUAL = 'manual'

STATUS_DISABLED = 'disabled'
STATUS_OFFLINE = 'offline'
STATUS_BUSY = 'busy'
STATUS_IDLE = 'idle'
STATUS_COMPLETED = 'completed'
STATUS_HALTED = 'halted'


@dataclass
class SyncReport:
    """Outcome of one sync pass"""
    trigger: str
    status: str
    synced: int = 0
    skipped: int = 0
    failed_op_id: Optional[str] = None
    error: Optional[str] = None
    remapped: dict = field(default_factory=dict)
    reloaded: bool = False
    purged: int = 0
    finished_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    def to_dict(self):
        return {
            'trigger': self.trigger,
            'status': self.status,
            'synced': self.synced,
            'skipped': self.skipped,
            'failedOpId': self.failed_op_id,
            'error': self.error,
            'remapped': dict(self.remapped),
            'reloaded': self.reloaded,
            'purged': self.purged,
            'finishedAt': self.finished_at,
        }


class SyncService:
    """Service for replaying offline operations against the server"""

    def __init__(self, app, store, queue, gateway, connectivity, lock):
        self.app = app
        self.store = store
        self.queue = queue
        self.gateway = gateway
        self.connectivity = connectivity
        self.lock = lock
        self.scheduler = None
        self.last_report = None
        self._draining = threading.Lock()
        self.local_prefix = app.config.get('LOCAL_ID_PREFIX', 'offline_')

        connectivity.on_transition(self._on_connectivity_change)

    @property
    def is_syncing(self):
        return self._draining.locked()

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def process_sync_queue(self, trigger=TRIGGER_MANUAL):
        """
        Drain the pending queue in order

        Reconnect events, the interval timer and manual requests all land
        here. Only one pass drains at a time; a trigger arriving mid-pass is
        ignored. The first failed operation ends the pass, leaving it and
        everything after it queued for the next trigger.

        Args:
            trigger: TRIGGER_RECONNECT, TRIGGER_INTERVAL or TRIGGER_MANUAL

        Returns:
            SyncReport: What happened during this pass
        """
        if not self.app.config.get('ENABLE_SYNC', True):
            logger.debug("Sync is disabled")
            return SyncReport(trigger, STATUS_DISABLED)

        if not self.connectivity.is_online:
            logger.info("No connection to server, skipping sync")
            return SyncReport(trigger, STATUS_OFFLINE)

        if not self._draining.acquire(blocking=False):
            logger.debug(f"Sync pass already running, ignoring {trigger} trigger")
            return SyncReport(trigger, STATUS_BUSY)

        try:
            report = self._drain(trigger)
            self.last_report = report
            return report
        finally:
            self._draining.release()

    def _drain(self, trigger):
        with self.lock:
            # One snapshot per pass; operations queued mid-pass wait for the next trigger
            op_ids = [op.op_id for op in self.queue.list_unsynced()]

        if not op_ids:
            logger.debug("No pending items to sync")
            return SyncReport(trigger, STATUS_IDLE)

        logger.info(f"Processing {len(op_ids)} pending sync items ({trigger})")
        report = SyncReport(trigger, STATUS_COMPLETED)

        for op_id in op_ids:
            with self.lock:
                # Re-read: an earlier create in this pass may have rewritten its ids
                op = self.queue.get(op_id)
            if op is None:
                continue

            if op.action in (UPDATE, DELETE) and is_local_id(op.target_id, self.local_prefix):
                # The entity never reached the server; nothing to send
                with self.lock:
                    self.queue.remove(op.op_id)
                report.skipped += 1
                logger.info(f"Dropped {op.entity_type}/{op.action} for unsynced {op.target_id}")
                continue

            result = self._dispatch(op)

            if not result.ok:
                with self.lock:
                    self.queue.record_failure(op.op_id, result.error)
                report.status = STATUS_HALTED
                report.failed_op_id = op.op_id
                report.error = result.error
                logger.warning(
                    f"Sync halted at {op.entity_type}/{op.action} {op.target_id}: {result.error}"
                )
                break

            with self.lock:
                self.queue.remove(op.op_id)
                if op.action == CREATE:
                    new_id = result.value.id
                    if new_id != op.target_id:
                        self.store.rewrite_id(op.entity_type, op.target_id, new_id)
                        self.queue.rewrite_references(op.target_id, new_id)
                        report.remapped[op.target_id] = new_id
                if op.entity_type == 'invoice' and op.action != DELETE:
                    self.store.mark_synced(self.store.resolve_id(op.target_id))
            report.synced += 1
            logger.info(f"Synced {op.entity_type}/{op.action} {op.target_id}")

        if report.synced:
            logger.info(f"Sync completed: {report.synced} synced, {report.skipped} skipped")
            report.reloaded = self.reload_from_server()
            with self.lock:
                self.store.touch_sync_time()

        report.purged = self.cleanup()
        return report

    def _dispatch(self, op):
        """Send one operation to the gateway; exceptions become failures"""
        try:
            if isinstance(op, ProductCreate):
                payload = op.payload()
                payload.pop('id', None)
                return self._require_id(self.gateway.create_product(payload))
            if isinstance(op, ProductUpdate):
                return self.gateway.update_product(op.product_id, op.payload())
            if isinstance(op, ProductDelete):
                return self.gateway.delete_product(op.product_id)
            if isinstance(op, InvoiceCreate):
                payload = op.payload()
                payload.pop('id', None)
                payload.pop('synced', None)
                return self._require_id(self.gateway.create_invoice(payload))
            if isinstance(op, InvoiceUpdate):
                return self.gateway.update_invoice(op.invoice_id, op.payload())
            if isinstance(op, InvoiceDelete):
                if op.is_return:
                    return self.gateway.return_invoice(op.invoice_id)
                return self.gateway.delete_invoice(op.invoice_id)
        except Exception as e:
            logger.error(f"Error syncing {op.entity_type}/{op.action}/{op.target_id}: {e}")
            return Result.failure(e)
        return Result.failure(f"No handler for {type(op).__name__}")

    @staticmethod
    def _require_id(result):
        if result.ok and not getattr(result.value, 'id', None):
            return Result.failure('Server returned an entity without an id')
        return result

    def reload_from_server(self):
        """
        Refresh the optimistic store from the server after a productive pass

        Best-effort: a failed reload leaves the store as it is and does not
        undo anything that already synced.
        """
        try:
            result = self.gateway.fetch_snapshot()
        except Exception as e:
            result = Result.failure(e)
        if not result.ok:
            logger.error(f"Failed to reload data after sync: {result.error}")
            return False

        snapshot = result.value
        with self.lock:
            keep_ids = self.queue.referenced_ids()
            self.store.replace_all(
                snapshot['products'], snapshot['invoices'], snapshot['expenses'], keep_ids=keep_ids
            )
        logger.info("Reloaded data from server")
        return True

    def cleanup(self):
        """Purge synced log entries older than the retention window"""
        hours = self.app.config.get('SYNC_RETENTION_HOURS', 24)
        with self.lock:
            return self.queue.purge_synced(older_than=timedelta(hours=hours))

    def sync_all(self):
        """Manually trigger full sync"""
        logger.info("Starting manual sync...")
        return self.process_sync_queue(TRIGGER_MANUAL)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def _on_connectivity_change(self, previous, current):
        if previous or not current:
            return
        settle = self.app.config.get('SYNC_SETTLE_SECONDS', 2)
        if self.scheduler and settle:
            # Give the connection a moment to stabilise before draining
            self.scheduler.add_job(
                func=self._run_in_context,
                args=[TRIGGER_RECONNECT],
                trigger='date',
                run_date=datetime.now() + timedelta(seconds=settle),
                id='sync_on_reconnect',
                replace_existing=True,
            )
            logger.info(f"Back online, syncing in {settle}s")
        else:
            self.process_sync_queue(TRIGGER_RECONNECT)

    def _run_in_context(self, trigger):
        with self.app.app_context():
            self.process_sync_queue(trigger)

    def _check_connectivity(self):
        with self.app.app_context():
            self.connectivity.check()

    def start_scheduler(self):
        """Start background scheduler for automatic sync"""
        if self.scheduler:
            logger.warning("Sync scheduler already running")
            return

        if not self.app.config.get('ENABLE_SYNC', True):
            logger.info("Sync is disabled, not starting scheduler")
            return

        self.scheduler = BackgroundScheduler()

        interval = self.app.config.get('SYNC_INTERVAL_SECONDS', 30)
        probe_interval = self.app.config.get('CONNECTIVITY_CHECK_SECONDS', 15)

        # Schedule periodic sync
        self.scheduler.add_job(
            func=self._run_in_context,
            args=[TRIGGER_INTERVAL],
            trigger='interval',
            seconds=interval,
            id='sync_queue',
            max_instances=1,
            coalesce=True,
        )

        # Poll the backend so reconnects are noticed without host events
        self.scheduler.add_job(
            func=self._check_connectivity,
            trigger='interval',
            seconds=probe_interval,
            id='connectivity_check',
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.start()
        logger.info(f"Sync scheduler started. Will sync every {interval} seconds")

    def stop_scheduler(self):
        """Stop the scheduler"""
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
            logger.info("Sync scheduler stopped")

    def get_sync_status(self):
        """Get current sync status"""
        with self.lock:
            pending = self.queue.pending_count()
        return {
            'pending': pending,
            'syncing': self.is_syncing,
            'online': self.connectivity.is_online,
            'sync_enabled': self.app.config.get('ENABLE_SYNC', True),
            'scheduler_running': self.scheduler is not None,
            'last_sync_time': self.store.last_sync_time,
            'last_result': self.last_report.to_dict() if self.last_report else None,
        }
