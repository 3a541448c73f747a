# =============================================================================
# tardiness_core/offline/connection_monitor.py
# Connectivity Detection and Monitoring
# =============================================================================
"""
ConnectionMonitor - best-effort online/offline detection.

A positive reading only means the local network stack can reach the
internet; it does not guarantee the remote store answers. Callbacks fire on
transitions only.
"""

from __future__ import annotations
import socket
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional
import logging

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"         # Initial state


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None


class ConnectionMonitor:
    """
    Observes network reachability and notifies on online/offline transitions.

    Usage:
        monitor = ConnectionMonitor()
        monitor.register_callback(engine.on_connection_change)
        monitor.check_connection()
        monitor.start_monitoring()
    """

    PROBE_HOSTS = [
        ("8.8.8.8", 53),        # Google DNS
        ("1.1.1.1", 53),        # Cloudflare DNS
        ("208.67.222.222", 53), # OpenDNS
    ]

    def __init__(
        self,
        connection_timeout: float = 5.0,
        check_interval_online: int = 30,
        check_interval_offline: int = 10,
    ):
        self.connection_timeout = connection_timeout
        self.check_interval_online = check_interval_online
        self.check_interval_offline = check_interval_offline
        self._state = ConnectionState()
        self._callbacks: List[Callable[[ConnectionState], None]] = []
        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_monitoring = threading.Event()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_online(self) -> bool:
        return self._state.status == ConnectionStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        return self._state.status == ConnectionStatus.OFFLINE

    def set_online(self, online: bool, error_message: Optional[str] = None) -> ConnectionState:
        """
        Record a reachability reading from the host environment.

        Callbacks are notified only when the status actually changes.
        """
        old_status = self._state.status
        now = datetime.now()
        self._state.last_check = now

        if online:
            self._state.status = ConnectionStatus.ONLINE
            self._state.last_online = now
            self._state.consecutive_failures = 0
            self._state.error_message = None
        else:
            self._state.status = ConnectionStatus.OFFLINE
            self._state.consecutive_failures += 1
            self._state.error_message = error_message

        if old_status != self._state.status:
            logger.info(f"Connection status changed: {old_status.value} -> {self._state.status.value}")
            self._notify_callbacks()

        return self._state

    def check_connection(self) -> ConnectionState:
        """Probe the network and update state."""
        return self.set_online(self._check_internet())

    def _check_internet(self) -> bool:
        """Try a TCP connect to well-known DNS hosts."""
        for host, port in self.PROBE_HOSTS:
            try:
                with socket.create_connection((host, port), timeout=self.connection_timeout):
                    return True
            except OSError:
                continue
        return False

    def start_monitoring(self) -> None:
        """Start background connection monitoring."""
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        self._stop_monitoring.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitoring_loop,
            daemon=True,
            name="ConnectionMonitor",
        )
        self._monitor_thread.start()
        logger.debug("Connection monitoring started")

    def stop_monitoring(self) -> None:
        """Stop background connection monitoring."""
        self._stop_monitoring.set()
        if self._monitor_thread:
            self._monitor_thread.join(timeout=5)
        logger.debug("Connection monitoring stopped")

    def _monitoring_loop(self) -> None:
        while not self._stop_monitoring.is_set():
            interval = (
                self.check_interval_online
                if self.is_online
                else self.check_interval_offline
            )

            if self._stop_monitoring.wait(timeout=interval):
                break

            try:
                self.check_connection()
            except Exception as e:
                logger.error(f"Error in connection check: {e}")

    def register_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Register a callback for connection status changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    def force_offline(self) -> None:
        """Force offline mode (for testing or user preference)."""
        self.set_online(False, error_message="Forced offline")
        logger.info("Forced offline mode")

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "is_online": self.is_online,
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "failures": self._state.consecutive_failures,
            "error": self._state.error_message,
        }
