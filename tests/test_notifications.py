import pytest

from utils import db
from utils.db import BackendError
from utils.market_tracking.notifications import MessageService, NotificationService


class RecipientInsertFails:
    """Gateway that delegates to utils.db but cannot write message recipients."""

    def __getattr__(self, name):
        return getattr(db, name)

    def insert_rows(self, table_name, rows, context=None, conn=None):
        if table_name == 'message_recipients':
            raise BackendError(context or 'insert', 'recipients unavailable')
        return db.insert_rows(table_name, rows, context=context, conn=conn)


# =============================================================================
# NOTIFICATIONS
# =============================================================================

def test_create_fetch_and_mark_read(org):
    notifier = NotificationService()
    notifier.create('U-E1', 'doctor', 'D1', 'first')
    notifier.create('U-E1', 'case', 'C1', 'second')
    notifier.create('U-E2', 'case', 'C1', 'other user')

    assert sorted(notifier.fetch('U-E1')['message']) == ['first', 'second']
    assert notifier.mark_all_read('U-E1') == 2
    assert notifier.fetch('U-E1').empty
    assert len(notifier.fetch('U-E1', include_read=True)) == 2
    assert len(notifier.fetch('U-E2')) == 1


def test_missing_user_is_a_no_op(org):
    notifier = NotificationService()

    assert notifier.create(None, 'doctor', 'D1', 'nobody') is None
    assert notifier.fetch(None).empty
    assert notifier.mark_all_read(None) == 0
    assert db.count_rows('notifications') == 0


def test_remove_for_entity_only_touches_that_user(org):
    notifier = NotificationService()
    notifier.create('U-M1', 'doctor', 'D1', 'review')
    notifier.create('U-admin', 'doctor', 'D1', 'review')

    assert notifier.remove_for_entity('U-M1', 'doctor', 'D1')

    assert db.count_rows('notifications', filters={'user_id': 'U-M1'}) == 0
    assert db.count_rows('notifications', filters={'user_id': 'U-admin'}) == 1


def test_fan_out_by_role(org):
    notifier = NotificationService()

    assert notifier.notify_admins('case', 'C1', 'admins') == 1
    assert notifier.notify_managers(['M1', None, 'M1'], 'case', 'C1', 'managers') == 1
    assert notifier.notify_managers(['E1'], 'case', 'C1', 'not a manager login') == 0
    assert notifier.notify_employee('E2', 'case', 'C1', 'employee') == 1
    assert notifier.notify_employee(None, 'case', 'C1', 'nobody') == 0


# =============================================================================
# MESSAGES
# =============================================================================

def test_send_and_read_messages(org):
    messages = MessageService()

    message_id = messages.send('U-admin', 'Cycle meeting', 'See you Sunday', ['U-E1', 'U-E2'], 'All employees')

    assert messages.unread_count('U-E1') == 1
    inbox = messages.fetch_received('U-E1')
    assert list(inbox['subject']) == ['Cycle meeting']
    assert inbox.iloc[0]['sender_name'] == 'admin'
    assert inbox.iloc[0]['message_id'] == message_id

    assert messages.mark_read(message_id, 'U-E1') == 1
    assert messages.mark_read(message_id, 'U-E1') == 0
    assert messages.unread_count('U-E1') == 0

    sent = messages.fetch_sent('U-admin')
    assert list(sent['recipient_display']) == ['All employees']
    assert sent.iloc[0]['recipient_count'] == 2
    assert sent.iloc[0]['unread_count'] == 1


def test_send_requires_text_and_recipients(org):
    messages = MessageService()

    with pytest.raises(ValueError):
        messages.send('U-admin', 'Subject', '   ', ['U-E1'])
    with pytest.raises(ValueError):
        messages.send('U-admin', 'Subject', 'Text', [None])


def test_failed_recipient_insert_keeps_no_message(org):
    messages = MessageService(RecipientInsertFails())

    with pytest.raises(BackendError):
        messages.send('U-admin', 'Subject', 'Text', ['U-E1'])

    assert db.count_rows('messages') == 0


def test_delete_messages_with_recipients(org):
    messages = MessageService()
    first = messages.send('U-admin', 'One', 'Text', ['U-E1'])
    second = messages.send('U-admin', 'Two', 'Text', ['U-E1', 'U-E2'])

    assert messages.delete([first, second]) == 2

    assert db.count_rows('messages') == 0
    assert db.count_rows('message_recipients') == 0
    assert messages.fetch_sent('U-admin').empty
    assert messages.delete([]) == 0
