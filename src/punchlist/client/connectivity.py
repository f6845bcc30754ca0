"""Connectivity monitoring for the offline client.

This module provides:
- ConnectivityMonitor: Tracks server reachability and notifies listeners
  on every online/offline transition

Reachability is either reported from outside (``report``) or polled from
a probe such as ``RemoteAPI.health_check`` by a background thread.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

# Listener called with the new state on each transition
ConnectivityListener = Callable[[bool], None]


class ConnectivityMonitor:
    """Reachability state with transition listeners.

    The state starts unknown (None); the first report is a transition.
    """

    def __init__(
        self,
        probe: Callable[[], bool] | None = None,
        interval: float = 5.0,
    ) -> None:
        """Initialize the monitor.

        Args:
            probe: Returns True when the server is reachable.
            interval: Seconds between probes when polling in the background.
        """
        self._probe = probe
        self._interval = interval
        self._lock = threading.Lock()
        self._online: bool | None = None
        self._listeners: list[ConnectivityListener] = []
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_online(self) -> bool | None:
        """Last known reachability (None until the first report)."""
        return self._online

    def add_listener(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Register a transition listener.

        Returns:
            A function that unregisters the listener.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def report(self, online: bool) -> bool:
        """Record the current reachability.

        Listeners run once per transition, outside the lock. A repeated
        report of the same state notifies nobody.

        Returns:
            True if the state changed.
        """
        with self._lock:
            if self._online == online:
                return False
            self._online = online
            listeners = list(self._listeners)

        logger.info("Server is %s", "reachable" if online else "unreachable")
        for listener in listeners:
            try:
                listener(online)
            except Exception:
                logger.exception("Connectivity listener %r failed", listener)
        return True

    def check(self) -> bool:
        """Probe reachability once and report the result.

        Returns:
            The probed state.
        """
        if self._probe is None:
            raise RuntimeError("ConnectivityMonitor has no probe")
        online = bool(self._probe())
        self.report(online)
        return online

    # === Background polling ===

    def start(self) -> None:
        """Start polling the probe in a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="connectivity-monitor", daemon=True
        )
        self._thread.start()
        logger.debug("Connectivity monitor started (interval %.1fs)", self._interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop the polling thread and wait for it to exit."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.check()
            except Exception:
                logger.exception("Connectivity probe failed")
            self._stop_event.wait(self._interval)
