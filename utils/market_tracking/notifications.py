# utils/market_tracking/notifications.py
"""
Notifications & Messages for Market Tracking

- NotificationService: approval alerts tied to an entity (type + id)
- MessageService: admin broadcast messages with per-recipient read state

Both services talk to the backend through the gateway module (utils.db) and
can be handed another gateway object with the same functions in tests.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional

import pandas as pd

from utils import db
from utils.db import BackendError

from .constants import ROLES
from .models import as_key, is_missing

logger = logging.getLogger(__name__)

NOTIFICATION_COLUMNS = ['id', 'entity_type', 'entity_id', 'message', 'is_read', 'created_at']
SENT_MESSAGE_COLUMNS = ['id', 'subject', 'message_text', 'recipient_display', 'created_at', 'updated_at']


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class NotificationService:
    """
    Usage:
        notifier = NotificationService()
        unread = notifier.fetch(user_id)
        notifier.notify_managers([direct_id, line_id], 'doctor', doctor_id, message)
    """

    def __init__(self, gateway=None):
        self.db = gateway or db

    def fetch(self, user_id: Any, include_read: bool = False) -> pd.DataFrame:
        """Notifications of a user, newest first (unread only by default)."""
        if is_missing(user_id):
            return pd.DataFrame(columns=NOTIFICATION_COLUMNS)
        filters = {'user_id': user_id}
        if not include_read:
            filters['is_read'] = False
        return self.db.select_rows(
            'notifications',
            columns=NOTIFICATION_COLUMNS,
            filters=filters,
            order_by='created_at',
            descending=True,
            context='fetch notifications',
        )

    def mark_all_read(self, user_id: Any) -> int:
        if is_missing(user_id):
            return 0
        return self.db.update_rows(
            'notifications',
            {'is_read': True, 'read_at': datetime.now()},
            filters={'user_id': user_id, 'is_read': False},
            context='mark notifications',
        )

    def create(self, user_id: Any, entity_type: str, entity_id: Any, message: str):
        if is_missing(user_id):
            return None
        ids = self.db.insert_rows(
            'notifications',
            [{
                'user_id': user_id,
                'entity_type': entity_type,
                'entity_id': entity_id,
                'message': message,
                'is_read': False,
            }],
            context='create notification',
        )
        return ids[0]

    def remove_for_entity(self, user_id: Any, entity_type: str, entity_id: Any) -> bool:
        """Delete the user's notification about an entity. Best effort."""
        if is_missing(user_id):
            return False
        try:
            self.db.delete_rows(
                'notifications',
                filters={'user_id': user_id, 'entity_type': entity_type, 'entity_id': entity_id},
                context='remove notification',
            )
            return True
        except BackendError as e:
            logger.warning(f"Could not remove notification for {entity_type} {entity_id}: {e.message}")
            return False

    # =========================================================================
    # FAN-OUT
    # =========================================================================

    def _notify_users(self, users: pd.DataFrame, entity_type: str, entity_id: Any, message: str) -> int:
        sent = 0
        if users is None or users.empty:
            return sent
        for user_id in users['id']:
            try:
                self.create(user_id, entity_type, entity_id, message)
                sent += 1
            except BackendError as e:
                logger.error(f"Notification to user {user_id} failed: {e.message}")
        return sent

    def notify_employee(self, employee_id: Any, entity_type: str, entity_id: Any, message: str) -> int:
        """Notify the login(s) of an employee. Returns notifications created."""
        if is_missing(employee_id):
            return 0
        try:
            users = self.db.select_rows(
                'users', columns=['id'], filters={'employee_id': employee_id},
                context='lookup employee user',
            )
        except BackendError as e:
            logger.error(f"Employee user lookup failed: {e.message}")
            return 0
        return self._notify_users(users, entity_type, entity_id, message)

    def notify_managers(
        self,
        manager_employee_ids: Iterable[Any],
        entity_type: str,
        entity_id: Any,
        message: str,
    ) -> int:
        """Notify manager logins of the given employees (direct + line manager)."""
        ids = list(dict.fromkeys(i for i in manager_employee_ids if not is_missing(i)))
        if not ids:
            return 0
        try:
            users = self.db.select_rows(
                'users', columns=['id'],
                filters={'role': ROLES['MANAGER']},
                in_filters={'employee_id': ids},
                context='lookup manager users',
            )
        except BackendError as e:
            logger.error(f"Manager user lookup failed: {e.message}")
            return 0
        return self._notify_users(users, entity_type, entity_id, message)

    def notify_admins(self, entity_type: str, entity_id: Any, message: str) -> int:
        try:
            users = self.db.select_rows(
                'users', columns=['id'], filters={'role': ROLES['ADMIN']},
                context='lookup admin users',
            )
        except BackendError as e:
            logger.error(f"Admin user lookup failed: {e.message}")
            return 0
        return self._notify_users(users, entity_type, entity_id, message)


# =============================================================================
# MESSAGES
# =============================================================================

class MessageService:
    """
    Usage:
        messages = MessageService()
        messages.send(admin_user_id, "Subject", "Text", [user_a, user_b], "All managers")
        inbox = messages.fetch_received(user_id)
        count = messages.unread_count(user_id)
    """

    def __init__(self, gateway=None):
        self.db = gateway or db

    def fetch_sent(self, user_id: Any) -> pd.DataFrame:
        """Messages sent by a user with recipient_count and unread_count."""
        columns = SENT_MESSAGE_COLUMNS + ['recipient_count', 'unread_count']
        if is_missing(user_id):
            return pd.DataFrame(columns=columns)

        try:
            messages = self.db.select_rows(
                'messages', columns=SENT_MESSAGE_COLUMNS, filters={'sender_id': user_id},
                order_by='created_at', descending=True, context='fetch sent messages',
            )
            if messages.empty:
                return pd.DataFrame(columns=columns)

            recipients = self.db.select_rows(
                'message_recipients', columns=['message_id', 'is_read'],
                in_filters={'message_id': list(messages['id'])},
                context='fetch message recipients',
            )
        except BackendError as e:
            logger.error(f"Error fetching sent messages: {e.message}")
            return pd.DataFrame(columns=columns)

        totals, unread = {}, {}
        for message_id, is_read in zip(recipients['message_id'], recipients['is_read']):
            key = as_key(message_id)
            totals[key] = totals.get(key, 0) + 1
            if not bool(is_read):
                unread[key] = unread.get(key, 0) + 1

        messages = messages.copy()
        messages['recipient_count'] = messages['id'].map(lambda i: totals.get(as_key(i), 0))
        messages['unread_count'] = messages['id'].map(lambda i: unread.get(as_key(i), 0))
        return messages

    def fetch_received(self, user_id: Any) -> pd.DataFrame:
        """Inbox of a user from v_message_details, newest first."""
        if is_missing(user_id):
            return pd.DataFrame()
        try:
            return self.db.select_rows(
                'v_message_details', filters={'recipient_id': user_id},
                order_by='created_at', descending=True, context='fetch received messages',
            )
        except BackendError as e:
            logger.error(f"Error fetching received messages: {e.message}")
            return pd.DataFrame()

    def unread_count(self, user_id: Any) -> int:
        """Unread messages of a user; 0 when the backend call fails."""
        if is_missing(user_id):
            return 0
        try:
            return self.db.count_rows(
                'message_recipients',
                filters={'recipient_id': user_id, 'is_read': False},
                context='count unread messages',
            )
        except BackendError as e:
            logger.error(f"Error getting unread message count: {e.message}")
            return 0

    def send(
        self,
        sender_id: Any,
        subject: Optional[str],
        message_text: str,
        recipient_ids: List[Any],
        recipient_display: Optional[str] = None,
    ):
        """
        Insert a message and its recipients in one transaction.

        Raises:
            ValueError: missing sender, text or recipients
            BackendError: the write failed (nothing is kept)
        """
        recipient_ids = [r for r in (recipient_ids or []) if not is_missing(r)]
        if is_missing(sender_id) or not (message_text or '').strip() or not recipient_ids:
            raise ValueError("Missing required fields")

        with self.db.get_transaction() as conn:
            message_id = self.db.insert_rows(
                'messages',
                [{
                    'sender_id': sender_id,
                    'subject': subject or None,
                    'message_text': message_text,
                    'recipient_display': recipient_display or None,
                }],
                context='send message',
                conn=conn,
            )[0]
            self.db.insert_rows(
                'message_recipients',
                [{'message_id': message_id, 'recipient_id': r, 'is_read': False} for r in recipient_ids],
                context='add message recipients',
                conn=conn,
            )

        logger.info(f"Message {message_id} sent to {len(recipient_ids)} recipient(s)")
        return message_id

    def mark_read(self, message_id: Any, user_id: Any) -> int:
        if is_missing(message_id) or is_missing(user_id):
            return 0
        try:
            return self.db.update_rows(
                'message_recipients',
                {'is_read': True, 'read_at': datetime.now()},
                filters={'message_id': message_id, 'recipient_id': user_id, 'is_read': False},
                context='mark message as read',
            )
        except BackendError as e:
            logger.error(f"Error marking message as read: {e.message}")
            return 0

    def delete(self, message_ids: List[Any]) -> int:
        """Delete messages and their recipient rows."""
        message_ids = [m for m in (message_ids or []) if not is_missing(m)]
        if not message_ids:
            return 0
        with self.db.get_transaction() as conn:
            self.db.delete_rows(
                'message_recipients', in_filters={'message_id': message_ids},
                context='delete message recipients', conn=conn,
            )
            deleted = self.db.delete_rows(
                'messages', in_filters={'id': message_ids},
                context='delete messages', conn=conn,
            )
        logger.info(f"Deleted {deleted} message(s)")
        return deleted


__all__ = ['NotificationService', 'MessageService']
