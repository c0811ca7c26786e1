from __future__ import annotations
from pathlib import Path
import fcntl
from typing import Any, Dict
import yaml

from warden.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path("./config/app_config.yml").resolve()

DEFAULT_DATABASE_PATH = "./data/warden.db"
DEFAULT_PERMISSION_CACHE_TTL = 300.0
DEFAULT_PERMISSION_CACHE_MAX_ENTRIES = 1000
DEFAULT_MAX_TEMPBAN_DAYS = 30
DEFAULT_MAX_JAIL_DAYS = 7
DEFAULT_REASON = "No reason provided"

SECONDS_PER_DAY = 24 * 60 * 60


class AppConfig:
    """File-lock based accessor around the YAML application configuration.

    The class caches the contents of ``./config/app_config.yml`` and exposes
    typed properties with defaults for every setting the bot reads. fcntl
    shared locks keep reads consistent while another process rewrites the
    file.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                data = yaml.safe_load(f)
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
                return data if isinstance(data, dict) else {}
        except FileNotFoundError:
            logger.error("[APP CONFIGURATION] Config file %s not found.", self.config_path)
        except Exception as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
        return {}

    def section(self, name: str) -> Dict[str, Any]:
        value = self._data.get(name, {})
        return value if isinstance(value, dict) else {}

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Reload configuration from disk and return the loaded mapping.

        Returns an empty dict when the file is missing or malformed.
        """
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        """Return the cached configuration mapping (do not mutate)."""
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    # --------------------------
    # High-level shortcuts
    # --------------------------
    @property
    def database_path(self) -> Path:
        """Location of the SQLite database file."""
        value = self.section("database").get("path") or DEFAULT_DATABASE_PATH
        return Path(str(value)).resolve()

    @property
    def permission_cache_ttl(self) -> float:
        """Seconds a cached moderator-role lookup stays valid. Default 300."""
        value = self.section("permissions").get("cache_ttl_seconds", DEFAULT_PERMISSION_CACHE_TTL)
        return float(value)

    @property
    def permission_cache_max_entries(self) -> int:
        """Cache size above which expired permission entries are swept."""
        value = self.section("permissions").get("cache_max_entries", DEFAULT_PERMISSION_CACHE_MAX_ENTRIES)
        return int(value)

    @property
    def max_tempban_seconds(self) -> float:
        """Upper bound for a temporary ban. Default 30 days."""
        days = self.section("moderation").get("max_tempban_days", DEFAULT_MAX_TEMPBAN_DAYS)
        return float(days) * SECONDS_PER_DAY

    @property
    def max_jail_seconds(self) -> float:
        """Upper bound for a timed jail. Default 7 days."""
        days = self.section("moderation").get("max_jail_days", DEFAULT_MAX_JAIL_DAYS)
        return float(days) * SECONDS_PER_DAY

    @property
    def default_reason(self) -> str:
        """Reason used when a moderator leaves the reason empty."""
        value = self.section("moderation").get("default_reason") or DEFAULT_REASON
        return str(value)


# Shared application-wide configuration instance
app_config = AppConfig(CONFIG_PATH)
