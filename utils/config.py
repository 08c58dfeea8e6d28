# utils/config.py
"""
Configuration for the Market Tracking dashboards

Version: 1.0.0
Sources, in order:
- Streamlit Cloud: [DB_CONFIG] and [APP] tables in secrets.toml
- Local: .env next to the app (or in the working directory), then the process environment

Backend settings are only checked when the engine is first created, so pages
that never touch the backend (login form rendering) work without them.
"""

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from typing import Dict, Any, Optional, Mapping
from dataclasses import dataclass
from urllib.parse import quote_plus

logger = logging.getLogger(__name__)

DEFAULT_DATABASE = "market_tracking"
DEFAULT_DRIVER = "mysql+pymysql"

# name -> (type, default)
APP_SETTINGS = {
    "SESSION_TIMEOUT_HOURS": (int, 8),
    "SESSION_CACHE_TTL_SECONDS": (int, 300),
    "UNREAD_POLL_SECONDS": (int, 30),
    "FETCH_BATCH_SIZE": (int, 1000),
    "CACHE_TTL_SECONDS": (int, 300),
    "CHART_TOP_N": (int, 10),
    "DB_POOL_SIZE": (int, 5),
    "DB_POOL_RECYCLE": (int, 3600),
    "ENABLE_BADGE": (bool, True),
    "ENABLE_MESSAGES": (bool, True),
    "ENABLE_DEBUG_MODE": (bool, False),
}


def is_running_on_streamlit_cloud() -> bool:
    """Detect if running on Streamlit Cloud"""
    try:
        import streamlit as st
        return hasattr(st, 'secrets') and len(st.secrets) > 0
    except Exception:
        return False


def _coerce(kind: type, raw: Any, default: Any) -> Any:
    if raw is None or raw == "":
        return default
    if kind is bool:
        if isinstance(raw, bool):
            return raw
        return str(raw).strip().lower() in ("1", "true", "yes", "on")
    try:
        return kind(raw)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid setting value {raw!r}, using {default!r}")
        return default


@dataclass
class DatabaseConfig:
    """Backend connection settings"""
    host: str = ""
    port: int = 3306
    user: str = ""
    password: str = ""
    database: str = DEFAULT_DATABASE
    driver: str = DEFAULT_DRIVER
    url: Optional[str] = None

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> 'DatabaseConfig':
        return cls(
            host=values.get("host") or "",
            port=_coerce(int, values.get("port"), 3306),
            user=values.get("user") or "",
            password=values.get("password") or "",
            database=values.get("database") or DEFAULT_DATABASE,
            driver=values.get("driver") or DEFAULT_DRIVER,
            url=values.get("url") or None,
        )

    def is_configured(self) -> bool:
        return bool(self.url) or bool(self.host and self.user and self.password)

    def build_url(self) -> str:
        """SQLAlchemy URL; an explicit DB_URL wins over the parts"""
        if self.url:
            return self.url
        return (f"{self.driver}://{self.user}:{quote_plus(str(self.password))}"
                f"@{self.host}:{self.port}/{self.database}")

    def masked_url(self) -> str:
        if self.url:
            return self.url.split('@')[-1]
        return f"{self.driver}://{self.user}:***@{self.host}:{self.port}/{self.database}"


class Config:
    """
    Process-wide settings singleton.

    Usage:
        from utils.config import config

        url = config.get_db_url()
        ttl = config.get_app_setting("SESSION_CACHE_TTL_SECONDS", 300)
        if config.is_feature_enabled("BADGE"):
            ...
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self.is_cloud = is_running_on_streamlit_cloud()
        db_values, app_values = self._read_cloud() if self.is_cloud else self._read_local()
        self._db_config = DatabaseConfig.from_mapping(db_values)
        self._app_config = {
            name: _coerce(kind, app_values.get(name), default)
            for name, (kind, default) in APP_SETTINGS.items()
        }
        self._log_config_status()
        self._initialized = True

    def _read_cloud(self):
        import streamlit as st

        logger.info("☁️ Running in STREAMLIT CLOUD")
        return dict(st.secrets.get("DB_CONFIG", {})), dict(st.secrets.get("APP", {}))

    def _read_local(self):
        for env_path in (Path(__file__).parent.parent / ".env", Path.cwd() / ".env"):
            if env_path.exists():
                load_dotenv(env_path)
                logger.info(f"Loaded .env from: {env_path}")
                break

        logger.info("💻 Running in LOCAL environment")
        db_values = {
            "host": os.getenv("DB_HOST"),
            "port": os.getenv("DB_PORT"),
            "user": os.getenv("DB_USER"),
            "password": os.getenv("DB_PASSWORD"),
            "database": os.getenv("DB_NAME"),
            "driver": os.getenv("DB_DRIVER"),
            "url": os.getenv("DB_URL"),
        }
        return db_values, {name: os.getenv(name) for name in APP_SETTINGS}

    def _log_config_status(self):
        if self._db_config.is_configured():
            logger.info(f"✅ Backend: {self._db_config.masked_url()}")
        else:
            logger.warning("⚠️ Backend database is not configured")

    # ==================== PUBLIC GETTERS ====================

    def get_db_url(self) -> str:
        """
        SQLAlchemy URL for the backend.

        Raises:
            ValueError: if the backend is not configured
        """
        if not self._db_config.is_configured():
            logger.error("Missing required database configuration")
            raise ValueError("Backend is not configured. Set DB_URL or DB_HOST/DB_USER/DB_PASSWORD.")
        return self._db_config.build_url()

    def get_masked_db_url(self) -> str:
        return self._db_config.masked_url()

    def get_app_setting(self, key: str, default: Any = None) -> Any:
        return self._app_config.get(key, default)

    def is_feature_enabled(self, feature: str) -> bool:
        return bool(self._app_config.get(f"ENABLE_{feature.upper()}", True))

    @property
    def app_config(self) -> Dict[str, Any]:
        return self._app_config.copy()


# ==================== SINGLETON INSTANCE ====================

config = Config()

IS_RUNNING_ON_CLOUD = config.is_cloud
APP_CONFIG = config.app_config

__all__ = [
    'config',
    'Config',
    'DatabaseConfig',
    'IS_RUNNING_ON_CLOUD',
    'APP_CONFIG',
]
