# utils/market_tracking/validators.py
"""
Form validation for Market Tracking.

Every validator returns a list of user-facing messages (empty = valid) and
never raises. Checks run before any backend call.
"""

import logging
import re
from typing import Any, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from .constants import (
    ACCOUNT_SPECIALIST_SLOTS, APPROVAL_STATUS, DOCTOR_SPECIALIST_SLOTS, MAX_PRODUCTS_PER_CASE,
)
from .models import is_missing

logger = logging.getLogger(__name__)

# Printable ASCII plus whitespace
_ENGLISH_ONLY = re.compile(r'^[\x20-\x7E\t\r\n]*$')

MIN_PASSWORD_LENGTH = 6

ENGLISH_ONLY_MESSAGE = "Only English characters are allowed in all fields."


# =============================================================================
# FIELD CHECKS
# =============================================================================

def is_english_only(text: Any) -> bool:
    if is_missing(text):
        return True
    return bool(_ENGLISH_ONLY.match(str(text)))


def validate_english_only(values: Mapping[str, Any]) -> List[str]:
    """One message if any text field carries non-English characters."""
    for key, value in values.items():
        if isinstance(value, str) and not is_english_only(value):
            logger.debug(f"Non-English input in field '{key}'")
            return [ENGLISH_ONLY_MESSAGE]
    return []


def validate_required(values: Mapping[str, Any], required: Sequence[str], message: str) -> List[str]:
    """
    Args:
        values: Form values
        required: Field names that must be non-empty
        message: Message shown when any is missing
    """
    for name in required:
        value = values.get(name)
        if is_missing(value) or (isinstance(value, str) and not value.strip()):
            return [message]
    return []


def _has_duplicate_name(name: str, existing: Optional[pd.DataFrame], record_id: Any = None) -> bool:
    if existing is None or existing.empty or 'name' not in existing.columns:
        return False
    normalized = name.strip().lower()
    for row in existing.to_dict('records'):
        other = row.get('name')
        if is_missing(other) or str(other).strip().lower() != normalized:
            continue
        if record_id is None or str(row.get('id')) != str(record_id):
            return True
    return False


# =============================================================================
# CASE
# =============================================================================

def _as_units(value: Any) -> Optional[int]:
    if is_missing(value):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not number.is_integer() or number < 0:
        return None
    return int(number)


def validate_case_products(products: Iterable[Mapping[str, Any]]) -> List[str]:
    """
    - at least one line with units > 0
    - units are non-negative whole numbers
    - at most MAX_PRODUCTS_PER_CASE lines
    """
    products = list(products or [])
    errors = []

    if len(products) > MAX_PRODUCTS_PER_CASE:
        errors.append(f"A case can have at most {MAX_PRODUCTS_PER_CASE} products.")

    units = [_as_units(p.get('units')) for p in products]
    if any(u is None for u in units):
        errors.append("Units must be whole numbers of zero or more.")

    if not any(u for u in units if u is not None):
        errors.append("Please add at least one product with units.")

    return errors


def validate_reference_approved(entity: Optional[Mapping[str, Any]], label: str) -> List[str]:
    """A case may only reference approved doctors and accounts."""
    if not entity or entity.get('status') != APPROVAL_STATUS['APPROVED']:
        return [f"Unable to save case. {label} approval is pending."]
    return []


def validate_case(
    case: Mapping[str, Any],
    products: Iterable[Mapping[str, Any]],
    doctor: Optional[Mapping[str, Any]] = None,
    account: Optional[Mapping[str, Any]] = None,
) -> List[str]:
    """
    Full case form check. Stops at the first failing group the way the
    form reports it: required fields, language, references, products.
    """
    errors = validate_required(
        case, ['doctor_id', 'account_id', 'case_date'],
        "Doctor, account, and date are required.",
    )
    if errors:
        return errors

    errors = validate_english_only({'notes': case.get('notes')})
    if errors:
        return errors

    errors = validate_reference_approved(doctor, 'Doctor') or validate_reference_approved(account, 'Account')
    if errors:
        return errors

    return validate_case_products(products)


# =============================================================================
# DOCTOR / ACCOUNT
# =============================================================================

def validate_doctor(
    doctor: Mapping[str, Any],
    existing: Optional[pd.DataFrame] = None,
    access=None,
) -> List[str]:
    """
    Args:
        doctor: Form values (name, owner_employee_id, line_id, ...)
        existing: Loaded doctors for the duplicate name check
        access: AccessControl used for the specialist assignment check
    """
    errors = validate_required(
        doctor, ['name', 'owner_employee_id'], "Please fill required doctor fields.",
    )
    if errors:
        return errors

    errors = validate_english_only(doctor)
    if errors:
        return errors

    if _has_duplicate_name(doctor['name'], existing, doctor.get('id')):
        return ["A doctor with this name already exists. Please edit the existing record "
                "to assign additional product specialists."]

    return _validate_specialists(doctor, DOCTOR_SPECIALIST_SLOTS, access)


def validate_account(
    account: Mapping[str, Any],
    existing: Optional[pd.DataFrame] = None,
    access=None,
) -> List[str]:
    errors = validate_required(
        account, ['name', 'owner_employee_id', 'account_type'], "Please complete account details.",
    )
    if errors:
        return errors

    errors = validate_english_only(account)
    if errors:
        return errors

    if _has_duplicate_name(account['name'], existing, account.get('id')):
        return ["An account with this name already exists. Please edit the existing record "
                "to attach additional product specialists."]

    return _validate_specialists(account, ACCOUNT_SPECIALIST_SLOTS, access)


def _validate_specialists(values: Mapping[str, Any], slots: List[str], access) -> List[str]:
    ids = [values.get(slot) for slot in slots if not is_missing(values.get(slot))]
    if access is not None:
        return access.validate_assignments(ids)
    if len(set(map(str, ids))) != len(ids):
        return ["Product specialists must be unique."]
    return []


# =============================================================================
# PASSWORD
# =============================================================================

def validate_password_change(current: str, new: str, confirm: str) -> List[str]:
    current = (current or '').strip()
    new = (new or '').strip()
    confirm = (confirm or '').strip()

    if not new or new != confirm:
        return ["New passwords do not match."]
    if not current:
        return ["Please provide current password."]
    if len(new) < MIN_PASSWORD_LENGTH:
        return [f"Password must be at least {MIN_PASSWORD_LENGTH} characters."]
    return []


__all__ = [
    'ENGLISH_ONLY_MESSAGE',
    'MIN_PASSWORD_LENGTH',
    'is_english_only',
    'validate_english_only',
    'validate_required',
    'validate_case_products',
    'validate_reference_approved',
    'validate_case',
    'validate_doctor',
    'validate_account',
    'validate_password_change',
]
