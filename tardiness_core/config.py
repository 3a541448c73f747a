# =============================================================================
# tardiness_core/config.py
# Application Settings
# =============================================================================
"""
Settings are read from .streamlit/secrets.toml (the same file Streamlit uses
for st.secrets) and may be overridden by environment variables.

    [supabase]
    url = "https://your-project.supabase.co"
    key = "your-anon-key"

    [app]
    cache_path = "local_data/tardiness.db"
    log_level = "INFO"
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import toml

from tardiness_core.errors import ConfigurationError
from tardiness_core.logging import get_logger

logger = get_logger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent
DEFAULT_SECRETS_PATH = PROJECT_ROOT / ".streamlit" / "secrets.toml"
DEFAULT_CACHE_PATH = PROJECT_ROOT / "local_data" / "tardiness.db"


@dataclass
class AppSettings:
    """Runtime configuration for the core and the Streamlit page."""
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    cache_path: Path = DEFAULT_CACHE_PATH
    connection_timeout: float = 5.0
    check_interval_online: int = 30
    check_interval_offline: int = 10
    log_level: str = "INFO"
    log_to_file: bool = True

    @property
    def remote_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def _read_secrets(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.debug(f"No secrets file at {path}")
        return {}
    try:
        return toml.load(path)
    except (toml.TomlDecodeError, OSError) as e:
        raise ConfigurationError(
            f"Could not read settings file: {e}",
            source=str(path),
        ) from e


def load_settings(secrets_path: Optional[Path] = None) -> AppSettings:
    """
    Build AppSettings from the secrets file and the environment.

    Args:
        secrets_path: Override for the secrets file location

    Returns:
        AppSettings instance

    Raises:
        ConfigurationError: If the secrets file exists but is malformed
    """
    secrets = _read_secrets(Path(secrets_path) if secrets_path else DEFAULT_SECRETS_PATH)
    supabase = secrets.get("supabase", {}) or {}
    app = secrets.get("app", {}) or {}

    settings = AppSettings(
        supabase_url=supabase.get("url"),
        supabase_key=supabase.get("key"),
    )

    if app.get("cache_path"):
        settings.cache_path = Path(app["cache_path"])
    if app.get("log_level"):
        settings.log_level = str(app["log_level"])
    if "log_to_file" in app:
        settings.log_to_file = bool(app["log_to_file"])

    for key in ("connection_timeout", "check_interval_online", "check_interval_offline"):
        if key in app:
            try:
                setattr(settings, key, type(getattr(settings, key))(app[key]))
            except (TypeError, ValueError) as e:
                raise ConfigurationError(
                    f"Invalid value for {key}: {app[key]!r}",
                    config_key=key,
                ) from e

    # Environment wins over the file
    settings.supabase_url = os.getenv("SUPABASE_URL", settings.supabase_url)
    settings.supabase_key = os.getenv("SUPABASE_KEY", settings.supabase_key)
    if os.getenv("TARDINESS_CACHE_PATH"):
        settings.cache_path = Path(os.environ["TARDINESS_CACHE_PATH"])
    settings.log_level = os.getenv("TARDINESS_LOG_LEVEL", settings.log_level)

    return settings
