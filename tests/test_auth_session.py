import json

import pytest

from utils import db
from utils.auth import (
    SESSION_KEY,
    AuthManager,
    SessionStore,
    get_role_home,
    load_session_profile,
)


@pytest.fixture
def storage():
    return {}


@pytest.fixture
def auth(storage):
    return AuthManager(SessionStore(storage=storage, ttl_seconds=300))


class CountingLoader:
    def __init__(self, profile):
        self.profile = profile
        self.calls = 0

    def __call__(self, user_id):
        self.calls += 1
        return self.profile


def test_password_hash_round_trip(auth):
    pwd_hash, salt = auth.hash_password('secret1')

    assert auth.verify_password('secret1', pwd_hash, salt)
    assert not auth.verify_password('secret2', pwd_hash, salt)
    assert not auth.verify_password('secret1', pwd_hash, None)
    assert auth.hash_password('secret1', salt)[0] == pwd_hash


def test_authenticate(org, auth):
    auth.update_password('U-E1', 'secret1')
    db.update_rows('users', {'is_active': False}, filters={'id': 'U-E4'})
    auth.update_password('U-E4', 'secret1')

    ok, info = auth.authenticate('emad', 'secret1')
    assert ok
    assert info == {'id': 'U-E1', 'username': 'emad', 'role': 'employee', 'employee_id': 'E1'}

    assert auth.authenticate('emad', 'wrong') == (False, {"error": "Invalid username or password"})
    assert auth.authenticate('ghost', 'secret1') == (False, {"error": "Invalid username or password"})
    assert auth.authenticate('sara', 'secret1') == (
        False, {"error": "Account is inactive. Please contact administrator."}
    )
    assert auth.authenticate('', '') == (False, {"error": "Please enter username and password"})


def test_login_hydrates_profile(org, auth, storage):
    session = auth.login({'id': 'U-E1', 'username': 'emad', 'role': 'employee', 'employee_id': 'E1'})

    assert session['employee']['full_name'] == 'Emad Ali'
    assert session['employee']['line_name'] == 'Cardio'
    assert session['employee']['direct_manager_id'] == 'M1'
    assert session['last_synced'] is not None
    assert json.loads(storage[SESSION_KEY])['user_id'] == 'U-E1'
    assert auth.check_session()
    assert db.select_one('users', filters={'id': 'U-E1'})['last_login'] is not None


def test_profile_for_user_without_employee(org):
    profile = load_session_profile('U-admin')

    assert profile['role'] == 'admin'
    assert profile['employee'] is None
    assert load_session_profile('ghost') is None


def test_hydrate_only_when_stale(storage):
    loader = CountingLoader({'user_id': 'U1', 'username': 'u', 'role': 'manager',
                             'employee_id': 'M1', 'employee': {'id': 'M1'}})
    store = SessionStore(storage=storage, loader=loader, ttl_seconds=300)
    store.set({'user_id': 'U1', 'username': 'u', 'role': 'employee', 'employee': None, 'last_synced': None})

    first = store.hydrate(now=1000.0)
    assert loader.calls == 1
    assert first['role'] == 'manager'
    assert first['last_synced'] == 1000.0

    assert store.hydrate(now=1200.0)['last_synced'] == 1000.0
    assert loader.calls == 1

    assert store.hydrate(now=1300.0)['last_synced'] == 1300.0
    assert loader.calls == 2

    store.hydrate(now=1301.0, force=True)
    assert loader.calls == 3


def test_hydrate_clears_session_of_deleted_user(storage):
    store = SessionStore(storage=storage, loader=CountingLoader(None), ttl_seconds=300)
    store.set({'user_id': 'U1', 'username': 'gone'})

    assert store.hydrate() is None
    assert store.get() is None
    assert SESSION_KEY not in storage


def test_unparseable_session_is_ignored(storage):
    storage[SESSION_KEY] = '{not json'

    assert SessionStore(storage=storage, ttl_seconds=300).get() is None


def test_saved_filters_per_view(storage):
    store = SessionStore(storage=storage, ttl_seconds=300)

    store.save_filters('admin', {'specialist': 'E1'})
    store.save_filters('manager', {'month': 3})

    assert store.get_saved_filters('admin') == {'specialist': 'E1'}
    assert store.get_saved_filters('employee') == {}

    store.clear_saved_filters('admin')
    assert store.get_saved_filters('admin') == {}
    assert store.get_saved_filters('manager') == {'month': 3}


def test_change_password(org, auth):
    auth.update_password('U-M1', 'oldpass')

    assert auth.change_password('U-M1', 'wrong', 'newpass') == (False, "Current password is incorrect.")
    assert auth.change_password('U-M1', 'oldpass', 'newpass') == (True, "Password updated successfully.")
    assert auth.authenticate('mona', 'newpass')[0]


@pytest.mark.parametrize('role, page', [
    ('admin', 'pages/1_🛡️_Admin_Dashboard.py'),
    ('manager', 'pages/2_👥_Manager_Dashboard.py'),
    ('employee', 'pages/3_👤_Employee_Dashboard.py'),
    ('auditor', 'app.py'),
    (None, 'app.py'),
])
def test_role_home(role, page):
    assert get_role_home(role) == page
