from datetime import date

import pandas as pd
import pytest

from utils.market_tracking.validators import (
    ENGLISH_ONLY_MESSAGE,
    is_english_only,
    validate_account,
    validate_case,
    validate_case_products,
    validate_doctor,
    validate_password_change,
)

APPROVED = {'status': 'approved'}
CASE = {'doctor_id': 'D1', 'account_id': 'AC1', 'case_date': date(2025, 1, 10), 'notes': 'ok'}


def test_english_only():
    assert is_english_only("Dr. Smith, room #4\n")
    assert is_english_only(None)
    assert not is_english_only("د. أحمد")
    assert not is_english_only("café")


def test_case_requires_doctor_account_and_date():
    errors = validate_case({**CASE, 'doctor_id': ''}, [{'units': 1}], APPROVED, APPROVED)

    assert errors == ["Doctor, account, and date are required."]


def test_case_notes_must_be_english():
    errors = validate_case({**CASE, 'notes': 'ملاحظة'}, [{'units': 1}], APPROVED, APPROVED)

    assert errors == [ENGLISH_ONLY_MESSAGE]


@pytest.mark.parametrize('doctor, account, label', [
    ({'status': 'pending_admin'}, APPROVED, 'Doctor'),
    (APPROVED, {'status': 'pending_manager'}, 'Account'),
    (None, APPROVED, 'Doctor'),
])
def test_case_references_must_be_approved(doctor, account, label):
    errors = validate_case(CASE, [{'units': 1}], doctor, account)

    assert errors == [f"Unable to save case. {label} approval is pending."]


def test_valid_case():
    assert validate_case(CASE, [{'units': 2}, {'units': 0}], APPROVED, APPROVED) == []


def test_case_products_limits():
    assert validate_case_products([{'units': 1}] * 8) == ["A case can have at most 7 products."]
    assert validate_case_products([{'units': 1.5}]) == [
        "Units must be whole numbers of zero or more.",
        "Please add at least one product with units.",
    ]
    assert validate_case_products([{'units': -1}, {'units': 3}]) == ["Units must be whole numbers of zero or more."]
    assert validate_case_products([{'units': 0}, {'units': None}]) == ["Please add at least one product with units."]
    assert validate_case_products([]) == ["Please add at least one product with units."]


def test_doctor_required_fields():
    assert validate_doctor({'name': ' ', 'owner_employee_id': 'E1'}) == ["Please fill required doctor fields."]


def test_doctor_duplicate_name_is_case_insensitive():
    existing = pd.DataFrame([{'id': 'D1', 'name': 'Dr. Ahmed Samir'}])

    errors = validate_doctor({'name': 'dr. ahmed samir ', 'owner_employee_id': 'E1'}, existing)
    assert errors[0].startswith("A doctor with this name already exists.")

    assert validate_doctor({'id': 'D1', 'name': 'Dr. Ahmed Samir', 'owner_employee_id': 'E1'}, existing) == []


def test_doctor_specialists_must_be_unique():
    errors = validate_doctor({'name': 'Dr. New', 'owner_employee_id': 'E1', 'secondary_employee_id': 'E1'})

    assert errors == ["Product specialists must be unique."]


def test_account_checks():
    assert validate_account({'name': 'Nile Hospital', 'owner_employee_id': 'E1'}) == [
        "Please complete account details."
    ]
    assert validate_account({'name': 'Nile Hospital', 'owner_employee_id': 'E1', 'account_type': 'UPA'}) == []
    assert validate_account({'name': 'مستشفى', 'owner_employee_id': 'E1', 'account_type': 'UPA'}) == [
        ENGLISH_ONLY_MESSAGE
    ]


def test_password_change_rules():
    assert validate_password_change('old', 'abcdef', 'abcdeg') == ["New passwords do not match."]
    assert validate_password_change('', 'abcdef', 'abcdef') == ["Please provide current password."]
    assert validate_password_change('old', 'abc', 'abc') == ["Password must be at least 6 characters."]
    assert validate_password_change('old', 'abcdef', 'abcdef') == []
