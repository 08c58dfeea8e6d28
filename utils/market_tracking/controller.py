# utils/market_tracking/controller.py
"""
Page controller shared by the admin, manager and employee dashboards.

A page builds one DashboardController per run:
    controller = DashboardController(role, session)
    state = controller.load()
    view = controller.dashboard_view(filter_state)

load() fills a PageState (reference frames, transactional frames and the
derived lookups). dashboard_view() applies the filters and computes the
stat card metrics plus every chart dataset from the same filtered cases.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import pandas as pd
import streamlit as st

from utils.config import config

from .access_control import AccessControl
from .analytics import (
    ProductsByCase, account_type_split, case_split, cases_by_company_category,
    cases_by_line, cases_by_month_dual, cases_by_product, cases_by_specialist,
    cases_market_share, compute_dual_row_metrics, group_case_products,
    units_by_month_dual, units_by_product, units_by_specialist,
    units_market_share, units_per_category, units_per_company_stacked,
)
from .approvals import build_approvals_dataset
from .constants import APPROVAL_STATUS, DEFAULT_TOP_N, ROLES
from .filter_options import FilterOptionsExtractor
from .filters import CaseFilterState, filtered_dataset
from .models import as_key, frame_to_records
from .queries import MarketQueries, load_dashboard_data_cached

logger = logging.getLogger(__name__)

REFERENCE_KEYS = ['lines', 'companies', 'users', 'employees', 'products']
TRANSACTIONAL_KEYS = ['doctors', 'accounts', 'cases', 'case_products']


# =============================================================================
# STATE
# =============================================================================

@dataclass
class PageState:
    """Everything a dashboard page renders from."""
    session: Dict[str, Any] = field(default_factory=dict)
    reference: Dict[str, pd.DataFrame] = field(default_factory=dict)
    data: Dict[str, pd.DataFrame] = field(default_factory=dict)
    products_by_case: ProductsByCase = field(default_factory=dict)
    employee_by_id: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    filters: Dict[str, CaseFilterState] = field(default_factory=dict)
    loaded: bool = False

    def frame(self, name: str) -> pd.DataFrame:
        if name in self.data:
            return self.data[name]
        return self.reference.get(name, pd.DataFrame())


@dataclass
class DashboardView:
    """Filtered dataset plus the metrics and chart frames derived from it."""
    cases: pd.DataFrame
    case_products: pd.DataFrame
    products_by_case: ProductsByCase
    metrics: Any
    charts: Dict[str, pd.DataFrame]


# =============================================================================
# CONTROLLER
# =============================================================================

class DashboardController:
    """
    Loads and shapes data for one logged-in user.

    Args:
        role: admin / manager / employee
        session: Session record from SessionStore
        queries: MarketQueries to load through; the cached loader is used when None
        top_n: Bars kept per breakdown chart (CHART_TOP_N setting when None)
    """

    def __init__(self, role: str, session: Optional[Mapping[str, Any]] = None,
                 queries: Optional[MarketQueries] = None, top_n: Optional[int] = None):
        self.role = role
        self.session = dict(session or {})
        self.employee_id = self.session.get('employee_id')
        self.access = queries.access if queries is not None else AccessControl(role, self.employee_id)
        self.queries = queries
        self.top_n = top_n or config.get_app_setting('CHART_TOP_N', DEFAULT_TOP_N)
        self.state = PageState(session=self.session)

    @property
    def line_id(self):
        return (self.session.get('employee') or {}).get('line_id')

    # =========================================================================
    # LOADING
    # =========================================================================

    def load(self) -> PageState:
        """Run both loading phases and build derived lookups."""
        if self.queries is not None:
            reference = self.queries.load_reference_data(line_id=self.line_id)
            data = self.queries.load_transactional_data(reference)
        else:
            combined = load_dashboard_data_cached(self.role, self.employee_id, self.line_id)
            reference = {k: combined[k] for k in REFERENCE_KEYS}
            data = {k: combined[k] for k in TRANSACTIONAL_KEYS}

        self.state.reference = reference
        self.state.data = data
        self.access.set_employees(reference['employees'])
        self.rebuild_cache()
        self.state.loaded = True
        return self.state

    def rebuild_cache(self):
        """Recompute products_by_case and employee_by_id from the loaded frames."""
        self.state.products_by_case = group_case_products(self.state.frame('case_products'))
        self.state.employee_by_id = {
            as_key(row.get('id')): row for row in frame_to_records(self.state.frame('employees'))
        }
        logger.debug(
            f"Lookups rebuilt: {len(self.state.products_by_case)} cases with products, "
            f"{len(self.state.employee_by_id)} employees"
        )

    @staticmethod
    def reload():
        """Drop cached loads so the next run refetches (after writes)."""
        load_dashboard_data_cached.clear()

    # =========================================================================
    # VIEWS
    # =========================================================================

    def filter_extractor(self) -> FilterOptionsExtractor:
        return FilterOptionsExtractor(self.state.frame('case_products'), self.state.frame('products'))

    def dashboard_view(self, filters: Optional[CaseFilterState] = None) -> DashboardView:
        """Filtered cases with metrics and chart data."""
        filters = filters or CaseFilterState()
        cases, case_products, products_by_case = filtered_dataset(
            self.state.frame('cases'),
            self.state.frame('case_products'),
            filters,
            self.state.frame('employees'),
            self.state.products_by_case,
        )

        metrics = compute_dual_row_metrics(
            cases, products_by_case, filters.company_row, filters.competitor_row, filters.company_type,
        )
        return DashboardView(
            cases=cases,
            case_products=case_products,
            products_by_case=products_by_case,
            metrics=metrics,
            charts=self.chart_data(cases, case_products, products_by_case),
        )

    def chart_data(self, cases: pd.DataFrame, case_products: pd.DataFrame,
                   products_by_case: ProductsByCase) -> Dict[str, pd.DataFrame]:
        n = self.top_n
        charts = {
            'case_split': case_split(cases, products_by_case),
            'cases_market_share': cases_market_share(cases, products_by_case),
            'units_market_share': units_market_share(cases, products_by_case),
            'units_per_category': units_per_category(case_products, n),
            'units_by_product': units_by_product(case_products, n),
            'cases_by_product': cases_by_product(cases, products_by_case, n),
            'cases_by_company_category': cases_by_company_category(cases, products_by_case, n),
            'account_type_split': account_type_split(cases),
            'cases_by_month': cases_by_month_dual(cases, products_by_case),
            'units_by_month': units_by_month_dual(cases, products_by_case),
            'units_per_company': units_per_company_stacked(cases, products_by_case, top_n=n),
        }
        if self.role != ROLES['EMPLOYEE']:
            charts['cases_by_specialist'] = cases_by_specialist(cases)
            charts['units_by_specialist'] = units_by_specialist(cases, products_by_case)
        if self.role == ROLES['ADMIN']:
            charts['cases_by_line'] = cases_by_line(cases, self.state.frame('employees'))
        return charts

    def approvals(self) -> pd.DataFrame:
        return build_approvals_dataset(
            self.state.frame('doctors'), self.state.frame('accounts'), self.state.frame('cases'), self.role,
        )

    def approved(self, name: str) -> pd.DataFrame:
        """Approved doctors or accounts (the only ones a case may reference)."""
        frame = self.state.frame(name)
        if frame.empty or 'status' not in frame.columns:
            return frame
        return frame[frame['status'] == APPROVAL_STATUS['APPROVED']].reset_index(drop=True)

    def team_employees(self) -> pd.DataFrame:
        """Employees the user may assign as product specialists."""
        employees = self.state.frame('employees')
        accessible = self.access.get_accessible_employee_ids()
        if accessible is None or employees.empty:
            return employees
        return employees[employees['id'].map(as_key).isin(set(accessible))].reset_index(drop=True)

    def saved_filters(self, store, view: str) -> CaseFilterState:
        state = CaseFilterState.from_dict(store.get_saved_filters(view))
        self.state.filters[view] = state
        return state

    def save_filters(self, store, view: str, state: CaseFilterState):
        self.state.filters[view] = state
        store.save_filters(view, state.to_dict())


def get_controller(role: str, session: Mapping[str, Any]) -> DashboardController:
    """Controller for the current page run, loaded."""
    controller = DashboardController(role, session)
    with st.spinner("Loading market data..."):
        controller.load()
    return controller


__all__ = ['PageState', 'DashboardView', 'DashboardController', 'get_controller']
