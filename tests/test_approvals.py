import re
from datetime import date, datetime

import pandas as pd
import pytest

from utils import db
from utils.db import BackendError
from utils.market_tracking.approvals import (
    ApprovalError,
    ApprovalService,
    build_approvals_dataset,
    build_case_product_rows,
    can_review,
    generate_case_code,
    initial_status,
    next_status,
)


def _notifications(user_id):
    return list(db.select_rows('notifications', filters={'user_id': user_id})['message'])


def _approved_references():
    db.insert_rows('doctors', [{'id': 'D1', 'name': 'Dr. Hany', 'owner_employee_id': 'E1', 'status': 'approved'}])
    db.insert_rows('accounts', [{'id': 'AC1', 'name': 'Nile Hospital', 'account_type': 'Private',
                                 'owner_employee_id': 'E1', 'status': 'approved'}])


CASE = {'doctor_id': 'D1', 'account_id': 'AC1', 'case_date': date(2025, 1, 10), 'notes': ''}
APPROVED = {'status': 'approved'}


# =============================================================================
# STATE MACHINE
# =============================================================================

@pytest.mark.parametrize('role, status', [
    ('admin', 'approved'), ('manager', 'pending_admin'), ('employee', 'pending_manager'),
])
def test_initial_status(role, status):
    assert initial_status(role) == status


@pytest.mark.parametrize('current, role, expected', [
    ('pending_manager', 'manager', 'pending_admin'),
    ('pending_manager', 'admin', 'approved'),
    ('pending_admin', 'admin', 'approved'),
])
def test_allowed_transitions(current, role, expected):
    assert next_status(current, role) == expected


@pytest.mark.parametrize('current, role', [
    ('approved', 'admin'),
    ('rejected', 'admin'),
    ('pending_admin', 'manager'),
    ('pending_manager', 'employee'),
])
def test_refused_transitions(current, role):
    with pytest.raises(ApprovalError):
        next_status(current, role)
    assert not can_review(current, role)


def test_case_code_format():
    code = generate_case_code(datetime(2025, 3, 14, 9, 30))

    assert re.match(r'^CASE-20250314-[0-9A-Z]+$', code)


# =============================================================================
# QUEUE & FORM ROWS
# =============================================================================

def test_approvals_queue_by_role():
    doctors = pd.DataFrame([
        {'id': 'D1', 'name': 'Dr. A', 'status': 'pending_manager', 'owner_name': 'Emad Ali'},
        {'id': 'D2', 'name': 'Dr. B', 'status': 'pending_admin'},
        {'id': 'D3', 'name': 'Dr. C', 'status': 'approved'},
    ])
    cases = pd.DataFrame([
        {'id': 'C1', 'case_code': 'CASE-1', 'status': 'pending_admin', 'submitted_by_name': 'Emad Ali'},
    ])

    admin = build_approvals_dataset(doctors, None, cases, 'admin')
    manager = build_approvals_dataset(doctors, None, cases, 'manager')
    employee = build_approvals_dataset(doctors, None, cases, 'employee')

    assert list(admin['id']) == ['D1', 'D2', 'C1']
    assert list(manager['id']) == ['D1']
    assert list(employee['id']) == ['D1', 'D2', 'C1']
    assert admin.iloc[2]['name'] == 'CASE-1'
    assert admin.iloc[2]['type'] == 'case'


def test_empty_queue_keeps_columns():
    queue = build_approvals_dataset(None, None, None, 'admin')

    assert queue.empty
    assert 'payload' in queue.columns


def test_case_product_rows_from_form_lines():
    catalog = pd.DataFrame([
        {'id': 'P1', 'name': 'Stent X', 'company_name': 'Acme', 'category': 'Stents',
         'sub_category': 'Drug Eluting', 'is_company_product': True},
        {'id': 'P2', 'name': 'Flow Y', 'company_name': 'Rival', 'category': 'Stents',
         'sub_category': 'Bare Metal', 'is_company_product': False},
    ])

    rows = build_case_product_rows([
        {'product_id': 'P2', 'units': 3},
        {'product_id': 'P9', 'units': 4},
        {'product_id': 'P1', 'units': 0},
        {'product_id': 'P1', 'units': '2'},
    ], catalog)

    assert [(r['product_id'], r['units'], r['sequence']) for r in rows] == [('P2', 3, 1), ('P1', 2, 2)]
    assert rows[1]['is_company_product'] is True


# =============================================================================
# SERVICE
# =============================================================================

def test_employee_doctor_goes_through_both_stages(org, employee_session, manager_session, admin_session):
    result = ApprovalService(session=employee_session).submit_doctor(
        {'name': 'Dr. Hany ', 'specialty': 'Cardiology', 'owner_employee_id': 'E2'},
    )

    assert result.ok
    assert result.status == 'pending_manager'
    doctor = db.select_one('doctors', filters={'id': result.record_id})
    assert doctor['name'] == 'Dr. Hany'
    assert doctor['owner_employee_id'] == 'E1'
    assert doctor['line_id'] == 'L1'
    assert doctor['created_by'] == 'E1'
    assert _notifications('U-M1') == ['New Doctor "Dr. Hany" pending your approval']

    record = {'id': result.record_id, 'type': 'doctor', 'name': 'Dr. Hany',
              'status': 'pending_manager', 'payload': doctor}
    assert ApprovalService(session=manager_session).approve(record, comment='ok') == 'pending_admin'

    doctor = db.select_one('doctors', filters={'id': result.record_id})
    assert doctor['status'] == 'pending_admin'
    assert doctor['manager_id'] == 'M1'
    assert doctor['manager_comment'] == 'ok'
    assert _notifications('U-M1') == []
    assert _notifications('U-admin') == ['New Doctor "Dr. Hany" pending your approval']
    assert _notifications('U-E1') == ['Doctor request approved by manager: Dr. Hany']

    record['status'] = 'pending_admin'
    assert ApprovalService(session=admin_session).approve(record) == 'approved'

    doctor = db.select_one('doctors', filters={'id': result.record_id})
    assert doctor['status'] == 'approved'
    assert doctor['approved_at'] is not None
    assert 'Doctor request approved: Dr. Hany' in _notifications('U-E1')


def test_admin_submissions_are_approved_immediately(org, admin_session):
    result = ApprovalService(session=admin_session).submit_account(
        {'name': 'Nile Hospital', 'account_type': 'UPA', 'owner_employee_id': 'E4', 'governorate': 'Cairo'},
    )

    assert result.status == 'approved'
    assert db.select_one('accounts', filters={'id': result.record_id})['owner_employee_id'] == 'E4'
    assert db.count_rows('notifications') == 0


def test_doctor_validation_stops_submission(org, employee_session):
    existing = pd.DataFrame([{'id': 'D1', 'name': 'Dr. Hany'}])

    result = ApprovalService(session=employee_session).submit_doctor({'name': 'dr. hany'}, existing)

    assert not result.ok
    assert result.errors[0].startswith("A doctor with this name already exists.")
    assert db.count_rows('doctors') == 0


def test_submit_case_writes_case_and_products(org, employee_session):
    _approved_references()
    products = [
        {'product_id': 'P1', 'product_name': 'Stent X', 'company_name': 'Acme', 'is_company_product': True,
         'units': 2},
        {'product_id': 'P2', 'product_name': 'Flow Y', 'company_name': 'Rival', 'is_company_product': False,
         'units': 0},
    ]

    result = ApprovalService(session=employee_session).submit_case(CASE, products, APPROVED, APPROVED)

    assert result.ok
    case = db.select_one('cases', filters={'id': result.record_id})
    assert case['status'] == 'pending_manager'
    assert case['submitted_by'] == 'E1'
    assert case['case_date'] == '2025-01-10'
    assert case['case_code'].startswith('CASE-')
    rows = db.select_rows('case_products', filters={'case_id': result.record_id})
    assert list(rows['product_id']) == ['P1']
    assert list(rows['sequence']) == [1]
    assert _notifications('U-M1') == [f'New Case "{case["case_code"]}" pending your approval']


def test_failed_product_insert_leaves_no_case(org, employee_session):
    _approved_references()
    products = [{'product_name': 'Stent X', 'is_company_product': True, 'units': 2, 'no_such_column': 1}]

    with pytest.raises(BackendError):
        ApprovalService(session=employee_session).submit_case(CASE, products, APPROVED, APPROVED)

    assert db.count_rows('cases') == 0
    assert db.count_rows('case_products') == 0


def test_case_needs_approved_doctor(org, employee_session):
    result = ApprovalService(session=employee_session).submit_case(
        CASE, [{'units': 1}], {'status': 'pending_manager'}, APPROVED,
    )

    assert result.errors == ["Unable to save case. Doctor approval is pending."]
    assert db.count_rows('cases') == 0


def test_reject_deletes_case_and_notifies(org, employee_session, manager_session):
    _approved_references()
    products = [{'product_name': 'Stent X', 'is_company_product': True, 'units': 2}]
    result = ApprovalService(session=employee_session).submit_case(CASE, products, APPROVED, APPROVED)
    case = db.select_one('v_case_details', filters={'id': result.record_id})
    record = {'id': case['id'], 'type': 'case', 'name': case['case_code'], 'status': case['status'],
              'payload': case}

    ApprovalService(session=manager_session).reject(record, reason="Wrong account")

    assert db.count_rows('cases') == 0
    assert db.count_rows('case_products') == 0
    assert _notifications('U-M1') == []
    assert _notifications('U-E1') == [f"Case request rejected: {case['case_code']}. Reason: Wrong account"]


def test_reject_needs_review_rights(org, manager_session):
    record = {'id': 'D1', 'type': 'doctor', 'name': 'Dr. Hany', 'status': 'pending_admin', 'payload': {}}

    with pytest.raises(ApprovalError):
        ApprovalService(session=manager_session).reject(record)


def test_only_admins_delete_cases(org, employee_session, admin_session):
    db.insert_rows('cases', [{'id': 'C1', 'case_code': 'CASE-1', 'status': 'approved'}])
    db.insert_rows('case_products', [{'case_id': 'C1', 'product_name': 'Stent X', 'units': 1}])

    with pytest.raises(ApprovalError):
        ApprovalService(session=employee_session).delete_case('C1')

    assert ApprovalService(session=admin_session).delete_case('C1') == 1
    assert db.count_rows('case_products') == 0
