import pandas as pd
import pytest

from utils.market_tracking.access_control import AccessControl


@pytest.fixture
def employees():
    return pd.DataFrame([
        {'id': 'M1', 'direct_manager_id': None, 'line_manager_id': None},
        {'id': 'E1', 'direct_manager_id': 'M1', 'line_manager_id': None},
        {'id': 'E2', 'direct_manager_id': None, 'line_manager_id': 'M1'},
        {'id': 'E3', 'direct_manager_id': 'E1', 'line_manager_id': None},
        {'id': 'E4', 'direct_manager_id': 'M9', 'line_manager_id': None},
    ])


@pytest.fixture
def cases():
    return pd.DataFrame({
        'id': ['c1', 'c2', 'c3', 'c4'],
        'submitted_by_id': ['E1', 'E3', 'E4', 'M1'],
    })


@pytest.mark.parametrize('role, level', [
    ('admin', 'full'), ('Manager', 'team'), ('employee', 'self'), ('', 'self'),
])
def test_access_levels(role, level):
    assert AccessControl(role, 'E1').get_access_level() == level


def test_manager_team_is_recursive(employees):
    access = AccessControl('manager', 'M1', employees)

    assert access.get_team_member_ids() == ['M1', 'E1', 'E2', 'E3']
    assert access.get_team_size() == 4


def test_team_walk_survives_cycles():
    employees = pd.DataFrame([
        {'id': 'A', 'direct_manager_id': 'B', 'line_manager_id': None},
        {'id': 'B', 'direct_manager_id': 'A', 'line_manager_id': None},
    ])

    assert AccessControl('manager', 'A', employees).get_team_member_ids() == ['A', 'B']


def test_case_visibility_by_role(employees, cases):
    admin = AccessControl('admin', None, employees)
    manager = AccessControl('manager', 'M1', employees)
    employee = AccessControl('employee', 'E1', employees)

    assert list(admin.filter_cases(cases)['id']) == ['c1', 'c2', 'c3', 'c4']
    assert list(manager.filter_cases(cases)['id']) == ['c1', 'c2', 'c4']
    assert list(employee.filter_cases(cases)['id']) == ['c1']


def test_missing_employee_column_hides_everything(cases):
    access = AccessControl('employee', 'E1')

    assert access.filter_dataframe(cases, 'owner_employee_id').empty


def test_manager_without_employee_sees_nothing(employees, cases):
    access = AccessControl('manager', None, employees)

    assert access.get_team_member_ids() == []
    assert access.filter_cases(cases).empty


def test_set_employees_resets_team(employees):
    access = AccessControl('manager', 'M1', pd.DataFrame())
    assert access.get_team_member_ids() == ['M1']

    access.set_employees(employees)

    assert access.get_team_size() == 4


def test_validate_assignments(employees):
    manager = AccessControl('manager', 'M1', employees)
    admin = AccessControl('admin', None, employees)

    assert manager.validate_assignments(['E1', 'E2', None]) == []
    assert manager.validate_assignments(['E1', 'E1']) == ["Product specialists must be unique."]
    assert manager.validate_assignments(['E1', 'E4']) == ["Product specialists must belong to your team."]
    assert admin.validate_assignments(['E1', 'E4']) == []


def test_only_admins_view_all(employees):
    assert AccessControl('admin', None).can_view_all()
    assert AccessControl('admin', None).get_accessible_employee_ids() is None
    assert not AccessControl('manager', 'M1', employees).can_view_all()
    assert not AccessControl('employee', 'E1').can_view_all()
