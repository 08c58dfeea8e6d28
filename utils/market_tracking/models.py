# utils/market_tracking/models.py
"""
Record types and boundary normalization for Market Tracking.

Backend rows arrive loosely shaped (joined names may be missing, flags may
come back as 0/1, units as strings). Everything downstream works on the
normalized frames produced here.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


# =============================================================================
# FRAME COLUMNS
# =============================================================================

CASE_FIELDS = [
    'id', 'case_code', 'submitted_by_id', 'submitted_by_name',
    'doctor_id', 'doctor_name', 'account_id', 'account_name', 'account_type',
    'line_name', 'case_date', 'status', 'notes', 'created_at',
]

CASE_PRODUCT_FIELDS = [
    'case_id', 'product_id', 'product_name', 'company_name',
    'category', 'sub_category', 'is_company_product', 'units', 'sequence',
]

PRODUCT_FIELDS = [
    'id', 'name', 'category', 'sub_category', 'company_id', 'company_name',
    'line_id', 'line_name', 'is_company_product', 'is_active',
]

EMPLOYEE_FIELDS = [
    'id', 'code', 'first_name', 'last_name', 'full_name', 'position', 'role',
    'line_id', 'line_name', 'area', 'direct_manager_id', 'line_manager_id',
    'is_active', 'email', 'phone',
]


# =============================================================================
# RECORD TYPES
# =============================================================================

@dataclass
class CaseProduct:
    """One product line item of a case."""
    product_name: str
    units: int
    is_company_product: bool
    product_id: Optional[str] = None
    company_name: Optional[str] = None
    category: Optional[str] = None
    sub_category: Optional[str] = None
    case_id: Optional[str] = None
    sequence: int = 0

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Case:
    """A submitted visit linking a specialist, a doctor and an account."""
    submitted_by: str
    doctor_id: str
    account_id: str
    case_date: date
    case_code: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[str] = None
    id: Optional[str] = None

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        return {k: v for k, v in row.items() if v is not None or k == 'notes'}


@dataclass
class Doctor:
    name: str
    owner_employee_id: str
    line_id: Optional[str] = None
    specialty: Optional[str] = None
    phone: Optional[str] = None
    email_address: Optional[str] = None
    secondary_employee_id: Optional[str] = None
    tertiary_employee_id: Optional[str] = None
    quaternary_employee_id: Optional[str] = None
    quinary_employee_id: Optional[str] = None
    status: Optional[str] = None
    id: Optional[str] = None

    def specialist_ids(self) -> List[str]:
        return [v for v in (
            self.owner_employee_id, self.secondary_employee_id, self.tertiary_employee_id,
            self.quaternary_employee_id, self.quinary_employee_id,
        ) if v]

    def to_row(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class Account:
    name: str
    account_type: str
    owner_employee_id: str
    line_id: Optional[str] = None
    secondary_employee_id: Optional[str] = None
    tertiary_employee_id: Optional[str] = None
    address: Optional[str] = None
    governorate: Optional[str] = None
    status: Optional[str] = None
    id: Optional[str] = None

    def specialist_ids(self) -> List[str]:
        return [v for v in (
            self.owner_employee_id, self.secondary_employee_id, self.tertiary_employee_id,
        ) if v]

    def to_row(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class Employee:
    id: str
    first_name: str
    last_name: str
    role: str = 'employee'
    code: Optional[str] = None
    position: Optional[str] = None
    line_id: Optional[str] = None
    direct_manager_id: Optional[str] = None
    line_manager_id: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class EmployeeProfile:
    """Cached profile held in the session record."""
    id: str
    full_name: str
    role: str
    line_id: Optional[str] = None
    line_name: Optional[str] = None
    direct_manager_id: Optional[str] = None
    line_manager_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_session(cls, session: Optional[Mapping[str, Any]]) -> Optional['EmployeeProfile']:
        employee = (session or {}).get('employee')
        if not employee:
            return None
        known = {'id', 'full_name', 'role', 'line_id', 'line_name',
                 'direct_manager_id', 'line_manager_id'}
        return cls(
            id=employee['id'],
            full_name=employee.get('full_name') or '',
            role=employee.get('role') or session.get('role') or 'employee',
            line_id=employee.get('line_id'),
            line_name=employee.get('line_name'),
            direct_manager_id=employee.get('direct_manager_id'),
            line_manager_id=employee.get('line_manager_id'),
            extra={k: v for k, v in employee.items() if k not in known},
        )

    def manager_ids(self) -> List[str]:
        ids = []
        for manager_id in (self.direct_manager_id, self.line_manager_id):
            if manager_id and manager_id not in ids:
                ids.append(manager_id)
        return ids


# =============================================================================
# HELPERS
# =============================================================================

def is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ''
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def as_key(value: Any) -> Optional[str]:
    """String form of an id; integral floats lose their '.0'."""
    if is_missing(value):
        return None
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    return str(value)


def product_key(row: Mapping[str, Any]) -> Optional[str]:
    """Dedup key of a case product: product id if present, else product name."""
    key = as_key(row.get('product_id'))
    if key is not None:
        return key
    name = row.get('product_name')
    return None if is_missing(name) else str(name)


def _to_bool(value: Any) -> bool:
    if is_missing(value):
        return False
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 't', 'yes')
    return bool(value)


def company_flags(products: pd.DataFrame) -> pd.Series:
    """Boolean is_company_product per row; a missing column or value reads as False."""
    if 'is_company_product' not in products.columns:
        return pd.Series(False, index=products.index, dtype=bool)
    return products['is_company_product'].map(_to_bool).astype(bool)


def _ensure_columns(df: Optional[pd.DataFrame], columns: List[str]) -> pd.DataFrame:
    df = pd.DataFrame(columns=columns) if df is None else df.copy()
    for col in columns:
        if col not in df.columns:
            df[col] = None
    return df


def _lookup_names(ids: pd.Series, reference: Optional[pd.DataFrame]) -> pd.Series:
    if reference is None or reference.empty or 'id' not in reference.columns:
        return pd.Series([None] * len(ids), index=ids.index, dtype=object)
    names = {as_key(k): v for k, v in zip(reference['id'], reference['name'])}
    return ids.map(lambda v: names.get(as_key(v)))


# =============================================================================
# NORMALIZERS
# =============================================================================

def normalize_case_products(
    df: Optional[pd.DataFrame],
    companies: Optional[pd.DataFrame] = None,
) -> pd.DataFrame:
    """
    Guarantee case product columns and types.

    - is_company_product is a real bool
    - units are non-negative ints, sequence is an int
    - company_name is taken from a joined 'company' record or the companies
      frame (via company_id) when the row has none
    """
    df = _ensure_columns(df, CASE_PRODUCT_FIELDS)

    if 'company' in df.columns:
        joined = df['company'].map(lambda c: c.get('name') if isinstance(c, Mapping) else None)
        df['company_name'] = df['company_name'].where(df['company_name'].map(lambda v: not is_missing(v)), joined)
    if 'company_id' in df.columns and companies is not None:
        looked_up = _lookup_names(df['company_id'], companies)
        df['company_name'] = df['company_name'].where(df['company_name'].map(lambda v: not is_missing(v)), looked_up)

    df['is_company_product'] = df['is_company_product'].map(_to_bool).astype(bool)
    df['units'] = pd.to_numeric(df['units'], errors='coerce').fillna(0).clip(lower=0).astype(int)
    df['sequence'] = pd.to_numeric(df['sequence'], errors='coerce').fillna(0).astype(int)

    for col in ('product_name', 'company_name', 'category', 'sub_category'):
        df[col] = df[col].map(lambda v: None if is_missing(v) else str(v))

    return df


def normalize_cases(df: Optional[pd.DataFrame]) -> pd.DataFrame:
    """Guarantee case columns; case_date parsed (unparseable dates become NaT)."""
    df = _ensure_columns(df, CASE_FIELDS)
    df['case_date'] = pd.to_datetime(df['case_date'], errors='coerce')
    return df.reset_index(drop=True)


def normalize_products(
    df: Optional[pd.DataFrame],
    companies: Optional[pd.DataFrame] = None,
    lines: Optional[pd.DataFrame] = None,
) -> pd.DataFrame:
    """Master products with company_name / line_name resolved."""
    df = _ensure_columns(df, PRODUCT_FIELDS)
    missing_company = df['company_name'].map(is_missing)
    if missing_company.any():
        df.loc[missing_company, 'company_name'] = _lookup_names(df.loc[missing_company, 'company_id'], companies)
    missing_line = df['line_name'].map(is_missing)
    if missing_line.any():
        df.loc[missing_line, 'line_name'] = _lookup_names(df.loc[missing_line, 'line_id'], lines)
    df['is_company_product'] = df['is_company_product'].map(_to_bool).astype(bool)
    return df


def normalize_employees(
    df: Optional[pd.DataFrame],
    lines: Optional[pd.DataFrame] = None,
    users: Optional[pd.DataFrame] = None,
) -> pd.DataFrame:
    """Employees with full_name, line_name and their login (username / user_id)."""
    df = _ensure_columns(df, EMPLOYEE_FIELDS)
    df['full_name'] = (
        df['first_name'].fillna('').astype(str) + ' ' + df['last_name'].fillna('').astype(str)
    ).str.strip()
    df['line_name'] = _lookup_names(df['line_id'], lines)

    df['username'] = ''
    df['user_id'] = None
    if users is not None and not users.empty and 'employee_id' in users.columns:
        by_employee = {
            as_key(r['employee_id']): r for r in users.to_dict('records')
            if not is_missing(r.get('employee_id'))
        }
        df['username'] = df['id'].map(lambda v: (by_employee.get(as_key(v)) or {}).get('username', ''))
        df['user_id'] = df['id'].map(lambda v: (by_employee.get(as_key(v)) or {}).get('id'))
    return df


def frame_to_records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """DataFrame rows as dicts with NaN/NaT replaced by None."""
    if df is None or df.empty:
        return []
    return [
        {k: (None if is_missing(v) else v) for k, v in row.items()}
        for row in df.to_dict('records')
    ]
