"""
Connectivity Monitor
Online/offline flag plus transition events for the sync service
"""

import logging
import threading

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Holds the current online state and notifies on transitions"""

    def __init__(self, probe=None, initial=True):
        self.probe = probe
        self._online = initial
        self._listeners = []
        self._lock = threading.Lock()

    @property
    def is_online(self):
        return self._online

    def on_transition(self, callback):
        """Register callback(previous, current), called on every state change"""
        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback)

    def set_online(self, online):
        """
        Apply a new state reported by the host or the probe

        Returns:
            bool: True if the state changed
        """
        online = bool(online)
        with self._lock:
            previous = self._online
            if previous == online:
                return False
            self._online = online

        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        for callback in list(self._listeners):
            try:
                callback(previous, online)
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}")
        return True

    def check(self):
        """Run the probe (if any) and apply its answer; returns the current state"""
        if self.probe is None:
            return self._online
        try:
            online = bool(self.probe())
        except Exception as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False
        self.set_online(online)
        return online
