"""
Kiosk Engine
Wires storage, optimistic store, pending queue, gateway, connectivity and the
sync service together for one Flask app.
"""

import logging
import threading

from kstore.models import db
from kstore.services.connectivity import ConnectivityMonitor
from kstore.services.gateway import RemoteGateway
from kstore.services.kiosk_service import KioskService
from kstore.services.optimistic_store import OptimisticStore
from kstore.services.pending_queue import PendingQueue
from kstore.services.storage import DurableStorage
from kstore.services.sync_service import SyncService

logger = logging.getLogger(__name__)


class KioskEngine:
    """Owns every kiosk component; one instance per app"""

    def __init__(self, app, gateway=None):
        self.app = app
        # Store and queue mutations happen under this lock; the sync
        # service releases it around network calls
        self.lock = threading.RLock()

        self.storage = DurableStorage()
        self.store = OptimisticStore(
            self.storage,
            app.config.get('STORE_NAME', 'kstore-global'),
            app.config.get('LOCAL_ID_PREFIX', 'offline_'),
        )
        self.queue = PendingQueue()
        self.gateway = gateway or RemoteGateway(
            app.config['REMOTE_API_URL'],
            timeout=app.config.get('REMOTE_TIMEOUT_SECONDS', 10),
        )
        self.connectivity = ConnectivityMonitor(probe=self.gateway.ping)
        self.sync_service = SyncService(
            app, self.store, self.queue, self.gateway, self.connectivity, self.lock
        )
        self.kiosk = KioskService(
            app, self.store, self.queue, self.sync_service, self.gateway, self.connectivity, self.lock
        )
        self.started = False

    def start(self):
        """Create tables and hydrate the store from the last snapshot"""
        with self.app.app_context():
            db.create_all()
            with self.lock:
                self.store.hydrate()
        self.started = True
        logger.info(f"Kiosk engine started ({self.queue_size()} operations pending)")

    def queue_size(self):
        with self.app.app_context():
            return self.queue.pending_count()

    def shutdown(self):
        self.sync_service.stop_scheduler()
        self.started = False
