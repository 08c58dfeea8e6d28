# utils/market_tracking/queries.py
"""
Data Loading for Market Tracking

Handles all backend reads, scoped by role:
- Reference data: lines, companies, users, employees, products
- Transactional data: doctors, accounts, cases, case products

Admin and manager loaders page through large tables in FETCH_BATCH_SIZE
windows; employees only ever load their own rows.

Loading is two-phase: reference data first, then the transactional data
that depends on it (employee line, team ids).

CHANGELOG:
- v1.0.0: Role-scoped loaders
- v1.1.0: Batched case / case product loading for admin and manager
"""

import logging
from typing import Any, Dict, List, Optional

import pandas as pd
import streamlit as st

from utils import db
from utils.config import config

from .access_control import AccessControl
from .constants import (
    ACCOUNT_SPECIALIST_SLOTS, APPROVAL_STATUS, DOCTOR_SPECIALIST_SLOTS,
)
from .models import (
    as_key, normalize_case_products, normalize_cases, normalize_employees,
    normalize_products,
)

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = config.get_app_setting('CACHE_TTL_SECONDS', 300)

NOT_REJECTED = {'status': APPROVAL_STATUS['REJECTED']}


class MarketQueries:
    """
    Data loading class for the market tracking dashboards.

    Usage:
        access = AccessControl(role, employee_id)
        queries = MarketQueries(access)

        reference = queries.load_reference_data(line_id=profile_line_id)
        data = queries.load_transactional_data(reference)
    """

    def __init__(self, access_control: AccessControl, gateway=None):
        """
        Args:
            access_control: AccessControl instance for scoping
            gateway: Backend gateway (utils.db by default)
        """
        self.access = access_control
        self.db = gateway or db

    @property
    def batched(self) -> bool:
        return self.access.get_access_level() in ('full', 'team')

    def _select(self, table_name: str, **kwargs) -> pd.DataFrame:
        if self.batched:
            return self.db.select_all_batched(table_name, **kwargs)
        return self.db.select_rows(table_name, **kwargs)

    # =========================================================================
    # REFERENCE DATA
    # =========================================================================

    def get_lines(self) -> pd.DataFrame:
        return self.db.select_rows('lines', columns=['id', 'name', 'description'],
                                   order_by='name', context='load lines')

    def get_companies(self) -> pd.DataFrame:
        return self.db.select_rows('companies', columns=['id', 'name', 'is_company'],
                                   order_by='name', context='load companies')

    def get_users(self) -> pd.DataFrame:
        return self.db.select_rows('users', columns=['id', 'username', 'role', 'employee_id'],
                                   context='load users')

    def get_employees(self, lines: Optional[pd.DataFrame] = None,
                      users: Optional[pd.DataFrame] = None) -> pd.DataFrame:
        raw = self.db.select_rows('employees', order_by='first_name', context='load employees')
        return normalize_employees(raw, lines, users)

    def get_products(self, companies: Optional[pd.DataFrame] = None,
                     lines: Optional[pd.DataFrame] = None,
                     line_id: Any = None) -> pd.DataFrame:
        """Master products; employees only see their own line's products."""
        filters = None
        if self.access.get_access_level() == 'self' and line_id is not None:
            filters = {'line_id': line_id}
        raw = self.db.select_rows('products', filters=filters, order_by='name', context='load products')
        return normalize_products(raw, companies, lines)

    def load_reference_data(self, line_id: Any = None) -> Dict[str, pd.DataFrame]:
        """Phase one: lookups every view needs."""
        lines = self.get_lines()
        companies = self.get_companies()
        users = self.get_users()
        employees = self.get_employees(lines, users)
        products = self.get_products(companies, lines, line_id)

        self.access.set_employees(employees)
        logger.info(
            f"Reference data loaded: {len(lines)} lines, {len(companies)} companies, "
            f"{len(employees)} employees, {len(products)} products"
        )
        return {
            'lines': lines,
            'companies': companies,
            'users': users,
            'employees': employees,
            'products': products,
        }

    # =========================================================================
    # TRANSACTIONAL DATA
    # =========================================================================

    def _scope_by_slots(self, df: pd.DataFrame, slots: List[str]) -> pd.DataFrame:
        """Keep rows where any specialist slot is an accessible employee."""
        accessible = self.access.get_accessible_employee_ids()
        if accessible is None or df.empty:
            return df
        allowed = set(accessible)
        present = [s for s in slots if s in df.columns]
        mask = pd.Series(False, index=df.index)
        for slot in present:
            mask |= df[slot].map(as_key).isin(allowed)
        return df[mask]

    def _load_assigned(self, view: str, slots: List[str], context: str) -> pd.DataFrame:
        level = self.access.get_access_level()
        if level == 'self':
            employee_id = self.access.employee_id
            if not employee_id:
                return pd.DataFrame()
            return self.db.select_rows(
                view,
                any_of=[(slot, employee_id) for slot in slots],
                exclude=NOT_REJECTED,
                order_by='name',
                context=context,
            )
        df = self.db.select_all_batched(view, exclude=NOT_REJECTED, order_by='name', context=context)
        return self._scope_by_slots(df, slots).reset_index(drop=True)

    def get_doctors(self) -> pd.DataFrame:
        return self._load_assigned('v_doctor_details', DOCTOR_SPECIALIST_SLOTS, 'load doctors')

    def get_accounts(self) -> pd.DataFrame:
        return self._load_assigned('v_account_details', ACCOUNT_SPECIALIST_SLOTS, 'load accounts')

    def get_cases(self) -> pd.DataFrame:
        """Non-rejected cases, newest case date first."""
        level = self.access.get_access_level()
        if level == 'self':
            if not self.access.employee_id:
                return normalize_cases(None)
            raw = self.db.select_rows(
                'v_case_details',
                filters={'submitted_by_id': self.access.employee_id},
                exclude=NOT_REJECTED,
                order_by='case_date',
                descending=True,
                context='load cases',
            )
        else:
            raw = self.db.select_all_batched(
                'v_case_details', exclude=NOT_REJECTED,
                order_by='case_date', descending=True, context='load cases',
            )
            raw = self.access.filter_cases(raw)
        return normalize_cases(raw)

    def get_case_products(self, case_ids: List[Any],
                          companies: Optional[pd.DataFrame] = None) -> pd.DataFrame:
        """Products of the given cases, loaded in id chunks."""
        if not case_ids:
            return normalize_case_products(None, companies)

        chunk = config.get_app_setting('FETCH_BATCH_SIZE', 1000)
        frames = []
        for start in range(0, len(case_ids), chunk):
            frames.append(self._select(
                'case_products',
                in_filters={'case_id': case_ids[start:start + chunk]},
                order_by='sequence',
                context='load case products',
            ))
        frames = [f for f in frames if not f.empty]
        raw = pd.concat(frames, ignore_index=True) if frames else None
        return normalize_case_products(raw, companies)

    def load_transactional_data(self, reference: Dict[str, pd.DataFrame]) -> Dict[str, pd.DataFrame]:
        """Phase two: records scoped to the user's access level."""
        doctors = self.get_doctors()
        accounts = self.get_accounts()
        cases = self.get_cases()
        case_ids = [c for c in cases['id'].tolist() if c is not None] if not cases.empty else []
        case_products = self.get_case_products(case_ids, reference.get('companies'))

        logger.info(
            f"Transactional data loaded ({self.access.get_access_level()}): "
            f"{len(doctors)} doctors, {len(accounts)} accounts, "
            f"{len(cases)} cases, {len(case_products)} case products"
        )
        return {
            'doctors': doctors,
            'accounts': accounts,
            'cases': cases,
            'case_products': case_products,
        }


# =============================================================================
# CACHED LOADERS (Module-level for st.cache_data)
# =============================================================================

@st.cache_data(ttl=CACHE_TTL_SECONDS, show_spinner=False)
def load_dashboard_data_cached(role: str, employee_id: Any, line_id: Any = None) -> Dict[str, pd.DataFrame]:
    """
    Both loading phases for one user, cached per (role, employee, line).
    Cleared on logout and on explicit reload.
    """
    access = AccessControl(role, employee_id)
    queries = MarketQueries(access)
    reference = queries.load_reference_data(line_id=line_id)
    data = queries.load_transactional_data(reference)
    return {**reference, **data}


__all__ = ['MarketQueries', 'load_dashboard_data_cached']
