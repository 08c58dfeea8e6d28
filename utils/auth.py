# utils/auth.py
"""
Authentication Manager & Session Store for the Market Tracking System

Version: 2.0.0
Features:
- SHA256 password hashing with per-user salt
- Role-based access control and role home routing
- Session record persisted as JSON under 'mts.session'
- Profile re-hydration when the cached copy is older than the TTL
- Saved filter preferences per view under 'mts.savedFilters'
"""

import hashlib
import json
import logging
import secrets
import time
from collections.abc import MutableMapping
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

import streamlit as st

from . import db
from .config import config

logger = logging.getLogger(__name__)

SESSION_KEY = 'mts.session'
SAVED_FILTERS_KEY = 'mts.savedFilters'

ROLE_HOME_PAGES = {
    'admin': 'pages/1_🛡️_Admin_Dashboard.py',
    'manager': 'pages/2_👥_Manager_Dashboard.py',
    'employee': 'pages/3_👤_Employee_Dashboard.py',
}


def get_role_home(role: Optional[str]) -> str:
    """Page a role lands on after login. Unknown roles go back to login."""
    return ROLE_HOME_PAGES.get(role or '', 'app.py')


# ==================== PROFILE LOADING ====================

def load_session_profile(user_id: Any) -> Optional[Dict[str, Any]]:
    """
    Re-fetch the users row joined to its employee and line.

    Returns:
        Session record without timestamps, or None when the user no longer exists
    """
    user = db.select_one(
        'users',
        columns=['id', 'username', 'role', 'employee_id'],
        filters={'id': user_id},
        context='load session profile',
    )
    if not user:
        return None

    employee = None
    if user.get('employee_id') is not None:
        row = db.select_one(
            'employees',
            columns=[
                'id', 'code', 'first_name', 'last_name', 'position', 'role',
                'manager_level', 'line_id', 'area', 'direct_manager_id',
                'line_manager_id', 'email', 'phone',
            ],
            filters={'id': user['employee_id']},
            context='load session employee',
        )
        if row:
            line_name = None
            if row.get('line_id') is not None:
                line = db.select_one(
                    'lines', columns=['id', 'name'],
                    filters={'id': row['line_id']},
                    context='load session line',
                )
                line_name = line['name'] if line else None

            first = row.get('first_name') or ''
            last = row.get('last_name') or ''
            employee = {
                'id': row['id'],
                'code': row.get('code'),
                'first_name': first,
                'last_name': last,
                'full_name': f"{first} {last}".strip(),
                'position': row.get('position'),
                'role': row.get('role') or user['role'],
                'manager_level': row.get('manager_level'),
                'line_id': row.get('line_id'),
                'line_name': line_name,
                'area': row.get('area'),
                'direct_manager_id': row.get('direct_manager_id'),
                'line_manager_id': row.get('line_manager_id'),
                'email': row.get('email'),
                'phone': row.get('phone'),
            }

    return {
        'user_id': user['id'],
        'username': user['username'],
        'role': user['role'],
        'employee_id': user.get('employee_id'),
        'employee': employee,
    }


# ==================== SESSION STORE ====================

class SessionStore:
    """
    Persisted session record plus saved filter preferences.

    Storage defaults to st.session_state; any MutableMapping works,
    which keeps the store usable outside a running Streamlit app.
    """

    def __init__(
        self,
        storage: Optional[MutableMapping] = None,
        loader: Optional[Callable[[Any], Optional[Dict]]] = None,
        ttl_seconds: Optional[int] = None,
    ):
        self._storage = storage if storage is not None else st.session_state
        self._loader = loader or load_session_profile
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else config.get_app_setting(
            "SESSION_CACHE_TTL_SECONDS", 300
        )

    # ----- session record -----

    def get(self) -> Optional[Dict[str, Any]]:
        raw = self._storage.get(SESSION_KEY)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to parse session: {e}")
            return None

    def set(self, session: Dict[str, Any]):
        self._storage[SESSION_KEY] = json.dumps(session, default=str)

    def clear(self):
        if SESSION_KEY in self._storage:
            del self._storage[SESSION_KEY]

    def is_stale(self, session: Optional[Dict[str, Any]], now: Optional[float] = None) -> bool:
        if not session:
            return True
        now = time.time() if now is None else now
        last_synced = session.get('last_synced')
        if not last_synced or not session.get('employee'):
            return True
        return now - float(last_synced) >= self.ttl_seconds

    def hydrate(
        self,
        session: Optional[Dict[str, Any]] = None,
        force: bool = False,
        now: Optional[float] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Refresh the cached profile when stale (or forced).

        Returns:
            The current session record, or None (session cleared) when
            the user no longer exists
        """
        session = session if session is not None else self.get()
        if not session:
            return None

        now = time.time() if now is None else now
        if not force and not self.is_stale(session, now):
            return session

        profile = self._loader(session.get('user_id'))
        if not profile:
            logger.warning(f"User {session.get('username')} no longer exists, clearing session")
            self.clear()
            return None

        updated = {**session, **profile, 'last_synced': now}
        self.set(updated)
        return updated

    # ----- saved filters -----

    def _all_saved_filters(self) -> Dict[str, Dict]:
        raw = self._storage.get(SAVED_FILTERS_KEY)
        if not raw:
            return {}
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to parse saved filters: {e}")
            return {}

    def get_saved_filters(self, view: str) -> Dict[str, Any]:
        return self._all_saved_filters().get(view, {})

    def save_filters(self, view: str, values: Dict[str, Any]):
        saved = self._all_saved_filters()
        saved[view] = values
        self._storage[SAVED_FILTERS_KEY] = json.dumps(saved, default=str)

    def clear_saved_filters(self, view: str):
        saved = self._all_saved_filters()
        if saved.pop(view, None) is not None:
            self._storage[SAVED_FILTERS_KEY] = json.dumps(saved, default=str)


# ==================== AUTH MANAGER ====================

class AuthManager:
    """Authentication manager for Streamlit apps"""

    def __init__(self, store: Optional[SessionStore] = None):
        self.session_timeout = timedelta(
            hours=config.get_app_setting("SESSION_TIMEOUT_HOURS", 8)
        )
        self.store = store or SessionStore()

    # ==================== PASSWORD HASHING ====================

    def hash_password(self, password: str, salt: str = None) -> Tuple[str, str]:
        """
        Hash password with SHA256 + salt

        Args:
            password: Plain text password
            salt: Optional salt (generated if not provided)

        Returns:
            Tuple of (hash, salt)
        """
        if not salt:
            salt = secrets.token_hex(32)

        pwd_hash = hashlib.sha256((password + salt).encode()).hexdigest()
        return pwd_hash, salt

    def verify_password(self, password: str, stored_hash: str, salt: str) -> bool:
        """Verify password against stored hash"""
        if not stored_hash or not salt:
            return False
        pwd_hash, _ = self.hash_password(password, salt)
        return secrets.compare_digest(pwd_hash, stored_hash)

    # ==================== AUTHENTICATION ====================

    def authenticate(self, username: str, password: str) -> Tuple[bool, Optional[Dict]]:
        """
        Authenticate user against the users table

        Returns:
            Tuple of (success: bool, user_info: dict or error: dict)
        """
        username = (username or '').strip()
        if not username or not password:
            return False, {"error": "Please enter username and password"}

        try:
            user = db.select_one(
                'users',
                columns=['id', 'username', 'role', 'employee_id',
                         'password_hash', 'password_salt', 'is_active'],
                filters={'username': username},
                context='authenticate',
            )

            if not user:
                logger.warning(f"Login attempt for non-existent user: {username}")
                return False, {"error": "Invalid username or password"}

            if user.get('is_active') is not None and not user['is_active']:
                logger.warning(f"Login attempt for inactive user: {username}")
                return False, {"error": "Account is inactive. Please contact administrator."}

            if not self.verify_password(password, user['password_hash'], user['password_salt']):
                logger.warning(f"Invalid password for user: {username}")
                return False, {"error": "Invalid username or password"}

            logger.info(f"User {username} authenticated successfully")

            return True, {
                'id': user['id'],
                'username': user['username'],
                'role': user['role'],
                'employee_id': user['employee_id'],
            }

        except Exception as e:
            logger.error(f"Authentication error: {e}")
            return False, {"error": "Authentication failed. Please try again."}

    def _update_last_login(self, user_id: Any):
        """Update user's last login timestamp"""
        try:
            db.update_rows(
                'users', {'last_login': datetime.now()},
                filters={'id': user_id}, context='update last login',
            )
        except db.BackendError as e:
            logger.warning(f"Could not update last_login: {e}")

    # ==================== SESSION MANAGEMENT ====================

    def login(self, user_info: Dict) -> Optional[Dict]:
        """Create the session record and force-hydrate the profile"""
        session = {
            'user_id': user_info['id'],
            'username': user_info['username'],
            'role': user_info['role'],
            'employee_id': user_info.get('employee_id'),
            'employee': None,
            'last_synced': None,
            'login_time': time.time(),
        }
        self.store.set(session)
        session = self.store.hydrate(session, force=True)
        self._update_last_login(user_info['id'])

        logger.info(f"User {user_info['username']} logged in successfully")
        return session

    def logout(self):
        """Clear session record and cache"""
        session = self.store.get() or {}
        self.store.clear()
        st.cache_data.clear()
        logger.info(f"User {session.get('username', 'Unknown')} logged out")

    def check_session(self) -> bool:
        """Check if user session is valid and not expired"""
        session = self.store.get()
        if not session:
            return False

        login_time = session.get('login_time')
        if login_time:
            elapsed = timedelta(seconds=time.time() - float(login_time))
            if elapsed > self.session_timeout:
                logger.info(f"Session expired for user: {session.get('username')}")
                self.logout()
                return False

        return True

    def get_current_session(self) -> Optional[Dict]:
        """Session record with a fresh profile (re-fetched when stale)"""
        if not self.check_session():
            return None
        return self.store.hydrate()

    # ==================== ACCESS CONTROL ====================

    def require_auth(self) -> Optional[Dict]:
        """
        Require authentication to access a page
        Use at the beginning of each protected page
        """
        session = self.get_current_session()
        if not session:
            st.warning("⚠️ Please login to access this page")
            st.stop()
            return None
        return session

    def require_role(self, allowed_roles: List[str]) -> Optional[Dict]:
        """
        Require specific role(s) to access a page

        Usage:
            session = auth.require_role(['admin'])
        """
        session = self.require_auth()
        if not session:
            return None

        if session.get('role') not in allowed_roles:
            st.error(f"🚫 Access denied. Required role: {', '.join(allowed_roles)}")
            st.stop()
            return None

        return session

    # ==================== PASSWORD ====================

    def update_password(self, user_id: Any, new_password: str):
        """Store a new salted hash for the user"""
        pwd_hash, salt = self.hash_password(new_password)
        db.update_rows(
            'users',
            {
                'password_hash': pwd_hash,
                'password_salt': salt,
                'password_updated_at': datetime.now(),
            },
            filters={'id': user_id},
            context='update password',
        )
        logger.info(f"Password updated for user id {user_id}")

    def change_password(self, user_id: Any, current: str, new: str) -> Tuple[bool, str]:
        """Verify the current password, then update it"""
        user = db.select_one(
            'users', columns=['password_hash', 'password_salt'],
            filters={'id': user_id}, context='load password',
        )
        if not user or not self.verify_password(current, user['password_hash'], user['password_salt']):
            return False, "Current password is incorrect."
        self.update_password(user_id, new)
        return True, "Password updated successfully."


# ==================== MODULE EXPORTS ====================

__all__ = [
    'AuthManager',
    'SessionStore',
    'load_session_profile',
    'get_role_home',
    'SESSION_KEY',
    'SAVED_FILTERS_KEY',
]
