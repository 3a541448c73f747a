# =============================================================================
# tardiness_core/context.py
# Application Context (explicit wiring, no module-level singletons)
# =============================================================================

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from tardiness_core.config import AppSettings, load_settings
from tardiness_core.data import RemoteStoreClient
from tardiness_core.errors import Notifier
from tardiness_core.logging import get_logger, setup_logging
from tardiness_core.offline import ConnectionMonitor, LocalCache, ReconciliationEngine

logger = get_logger(__name__)


@dataclass
class AppContext:
    """Everything the entry point needs, built once and passed explicitly."""
    settings: AppSettings
    cache: LocalCache
    remote: RemoteStoreClient
    monitor: ConnectionMonitor
    engine: ReconciliationEngine

    def shutdown(self) -> None:
        self.monitor.stop_monitoring()
        self.engine.detach()
        self.cache.close()


def build_context(
    settings: Optional[AppSettings] = None,
    notifier: Optional[Notifier] = None,
    start_monitoring: bool = True,
) -> AppContext:
    """
    Wire cache, remote store, monitor and engine, then run the startup load.

    Args:
        settings: Settings to use (loaded from secrets/env if None)
        notifier: Receives (message, level) user notices
        start_monitoring: Start the background connectivity thread

    Raises:
        ConfigurationError: If the settings file is malformed
    """
    settings = settings or load_settings()
    setup_logging(settings.log_level, log_to_file=settings.log_to_file)

    cache = LocalCache(settings.cache_path)
    cache.initialize()

    remote = RemoteStoreClient.from_settings(settings)
    monitor = ConnectionMonitor(
        connection_timeout=settings.connection_timeout,
        check_interval_online=settings.check_interval_online,
        check_interval_offline=settings.check_interval_offline,
    )

    engine = ReconciliationEngine(cache, remote, monitor, notifier=notifier)
    # First reading happens before attach so startup does not double-replay
    monitor.check_connection()
    engine.attach()
    engine.load()

    if start_monitoring:
        monitor.start_monitoring()

    logger.info(
        f"Context ready (online={monitor.is_online}, remote={remote.is_configured}, "
        f"cache={settings.cache_path})"
    )
    return AppContext(settings, cache, remote, monitor, engine)
