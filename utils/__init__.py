# utils/__init__.py
"""
Shared Utilities Package for the Market Tracking System

This package contains common utilities shared across all pages:
- auth: Authentication, session store and role routing
- config: Configuration management (local + Streamlit Cloud)
- db: Backend gateway with pooling and table-oriented helpers

Usage:
    # Import specific modules
    from utils.auth import AuthManager, SessionStore
    from utils.db import select_rows, insert_rows
    from utils.config import config

    # Or import commonly used items directly
    from utils import AuthManager, check_db_connection, config
"""

# Authentication
from .auth import (
    AuthManager,
    SessionStore,
    get_role_home,
)

# Configuration
from .config import (
    config,
    Config,
    IS_RUNNING_ON_CLOUD,
    APP_CONFIG,
)

# Database
from .db import (
    BackendError,
    get_db_engine,
    set_db_engine,
    check_db_connection,
    reset_db_engine,
    get_transaction,
)

__all__ = [
    # Auth
    'AuthManager',
    'SessionStore',
    'get_role_home',

    # Config
    'config',
    'Config',
    'IS_RUNNING_ON_CLOUD',
    'APP_CONFIG',

    # Database
    'BackendError',
    'get_db_engine',
    'set_db_engine',
    'check_db_connection',
    'reset_db_engine',
    'get_transaction',
]

__version__ = '2.0.0'
