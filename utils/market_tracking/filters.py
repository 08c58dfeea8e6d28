# utils/market_tracking/filters.py
"""
Case Filter Components for Market Tracking

Renders filter UI elements and applies them to the loaded cases:
- Specialist / account type / company type / manager selectors
- Month and period (from / to) selectors
- Dual-row product filters (company row + competitor row) with cascading
  company -> category -> sub category -> product dropdowns

Filtering is entirely in memory: every widget change reruns the page and
re-derives the filtered subset from the cached dataset.

CHANGELOG:
- v1.0.0: CaseFilterState + apply_case_filters
- v1.1.0: Dual-row cascading filters, saved filter preferences
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd
import streamlit as st

from .analytics import (
    ProductRowFilter,
    ProductsByCase,
    _flags,
    filter_cases_dual_row,
    group_case_products,
)
from .constants import ACCOUNT_TYPES
from .filter_options import FilterOptionsExtractor, Option, as_select_options
from .models import as_key

logger = logging.getLogger(__name__)

COMPANY_TYPES = {
    'all': 'All',
    'company': 'Company',
    'competitor': 'Competitor',
}


# =============================================================================
# FILTER STATE
# =============================================================================

@dataclass
class CaseFilterState:
    """Current dashboard filter selections. Empty values mean "All"."""
    specialist: Optional[str] = None
    account_type: Optional[str] = None
    company_type: str = 'all'
    manager: Optional[str] = None
    month: Optional[int] = None
    period_from: Optional[date] = None
    period_to: Optional[date] = None
    company_row: ProductRowFilter = field(default_factory=ProductRowFilter)
    competitor_row: ProductRowFilter = field(default_factory=ProductRowFilter)

    @property
    def has_date_filter(self) -> bool:
        return bool(self.month or self.period_from or self.period_to)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'specialist': self.specialist,
            'account_type': self.account_type,
            'company_type': self.company_type,
            'manager': self.manager,
            'month': self.month,
            'period_from': self.period_from.isoformat() if self.period_from else None,
            'period_to': self.period_to.isoformat() if self.period_to else None,
            'company_row': self.company_row.to_dict(),
            'competitor_row': self.competitor_row.to_dict(),
        }

    @classmethod
    def from_dict(cls, values: Optional[Mapping[str, Any]]) -> 'CaseFilterState':
        values = values or {}

        def _date(value):
            if not value:
                return None
            if isinstance(value, date):
                return value
            try:
                return date.fromisoformat(str(value)[:10])
            except ValueError:
                logger.warning(f"Ignoring saved filter date: {value!r}")
                return None

        month = values.get('month')
        return cls(
            specialist=values.get('specialist') or None,
            account_type=values.get('account_type') or None,
            company_type=values.get('company_type') or 'all',
            manager=values.get('manager') or None,
            month=int(month) if month else None,
            period_from=_date(values.get('period_from')),
            period_to=_date(values.get('period_to')),
            company_row=ProductRowFilter.from_dict(values.get('company_row')),
            competitor_row=ProductRowFilter.from_dict(values.get('competitor_row')),
        )


# =============================================================================
# APPLY
# =============================================================================

def apply_case_filters(
    cases: pd.DataFrame,
    products_by_case: ProductsByCase,
    state: CaseFilterState,
    employees: Optional[pd.DataFrame] = None,
) -> pd.DataFrame:
    """
    Apply every dashboard filter to the cases.

    Manager matches when the submitter's direct or line manager is the
    selected manager. Cases without a date are excluded only when a date
    filter is set.
    """
    if cases is None or cases.empty:
        return cases

    df = cases

    if state.specialist:
        df = df[df['submitted_by_id'].map(as_key) == str(state.specialist)]

    if state.account_type:
        df = df[df['account_type'] == state.account_type]

    if state.manager and not df.empty:
        managers_by_employee = {}
        if employees is not None and not employees.empty:
            for row in employees.to_dict('records'):
                managers_by_employee[as_key(row.get('id'))] = {
                    as_key(row.get('direct_manager_id')),
                    as_key(row.get('line_manager_id')),
                }
        manager = str(state.manager)
        df = df[df['submitted_by_id'].map(
            lambda sid: manager in managers_by_employee.get(as_key(sid), set())
        ).astype(bool)]

    if state.company_type in ('company', 'competitor') and not df.empty:
        want_company = state.company_type == 'company'
        df = df[df['id'].map(
            lambda case_id: _flags(products_by_case.get(case_id))[0 if want_company else 1]
        ).astype(bool)]

    df = filter_cases_dual_row(df, products_by_case, state.company_row, state.competitor_row)

    if state.has_date_filter and not df.empty:
        dates = pd.to_datetime(df['case_date'], errors='coerce')
        mask = dates.notna()
        if state.month:
            mask &= dates.dt.month == int(state.month)
        if state.period_from:
            mask &= dates.dt.normalize() >= pd.Timestamp(state.period_from)
        if state.period_to:
            mask &= dates.dt.normalize() <= pd.Timestamp(state.period_to)
        df = df[mask.fillna(False).astype(bool)]

    return df


def filtered_dataset(
    cases: pd.DataFrame,
    case_products: pd.DataFrame,
    state: CaseFilterState,
    employees: Optional[pd.DataFrame] = None,
    products_by_case: Optional[ProductsByCase] = None,
) -> Tuple[pd.DataFrame, pd.DataFrame, ProductsByCase]:
    """
    Filtered cases, their case products, and the products-by-case map
    restricted to those cases.
    """
    if products_by_case is None:
        products_by_case = group_case_products(case_products)

    filtered = apply_case_filters(cases, products_by_case, state, employees)
    if filtered is None or filtered.empty or case_products is None or case_products.empty:
        empty_products = case_products.iloc[0:0] if case_products is not None else pd.DataFrame()
        return filtered, empty_products, {}

    ids = set(filtered['id'])
    filtered_products = case_products[case_products['case_id'].isin(ids)]
    return filtered, filtered_products, {k: v for k, v in products_by_case.items() if k in ids}


# =============================================================================
# RENDERING
# =============================================================================

def _select(
    label: str,
    options: List[Option],
    key: str,
    default: Optional[str] = None,
    all_label: str = "All",
    container=None,
) -> Optional[str]:
    """Selectbox over view-model options with a leading "All" entry."""
    ctx = container if container else st
    values = [''] + [o['value'] for o in options]
    labels = {'': all_label, **{o['value']: o['label'] for o in options}}
    index = values.index(default) if default in values else 0
    choice = ctx.selectbox(
        label,
        options=values,
        index=index,
        format_func=lambda v: labels.get(v, v),
        key=key,
    )
    return choice or None


def render_dual_row_filters(
    extractor: FilterOptionsExtractor,
    key_prefix: str,
    saved: Optional[CaseFilterState] = None,
) -> Tuple[ProductRowFilter, ProductRowFilter]:
    """
    Render the company row and the competitor row.

    Each row cascades: the category list depends on the chosen company,
    sub categories on company + category, products on all three.
    """
    saved = saved or CaseFilterState()
    rows = {}

    for partition, title, saved_row in (
        ('company', "🏢 Company Products", saved.company_row),
        ('competitor', "⚔️ Competitor Products", saved.competitor_row),
    ):
        st.markdown(f"**{title}**")
        cols = st.columns(4)
        base = extractor.dual_row()[partition]
        prefix = f"{key_prefix}_{partition}"

        with cols[0]:
            company = _select("Company", as_select_options(base.companies), f"{prefix}_company",
                              saved_row.company, "All Companies")
        narrowed = extractor.cascade(partition, company=company)
        with cols[1]:
            category = _select("Category", as_select_options(narrowed.categories), f"{prefix}_category",
                               saved_row.category, "All Categories")
        narrowed = extractor.cascade(partition, company=company, category=category)
        with cols[2]:
            sub_category = _select("Sub Category", as_select_options(narrowed.sub_categories), f"{prefix}_sub_category",
                                   saved_row.sub_category, "All Sub Categories")
        narrowed = extractor.cascade(partition, company=company, category=category, sub_category=sub_category)
        with cols[3]:
            product = _select("Product", narrowed.product_options, f"{prefix}_product",
                              saved_row.product, "All Products")

        rows[partition] = ProductRowFilter(company, category, sub_category, product)

    return rows['company'], rows['competitor']


def render_case_filters(
    extractor: FilterOptionsExtractor,
    cases: pd.DataFrame,
    employees: Optional[pd.DataFrame],
    key_prefix: str,
    show_specialist: bool = True,
    show_manager: bool = False,
    saved: Optional[CaseFilterState] = None,
) -> CaseFilterState:
    """
    Render the full dashboard filter panel.

    Returns:
        CaseFilterState for the current selections
    """
    saved = saved or CaseFilterState()

    with st.expander("🔍 Filters", expanded=True):
        cols = st.columns(4)

        specialist = None
        if show_specialist:
            with cols[0]:
                specialist = _select(
                    "Product Specialist", extractor.specialist_options(cases),
                    f"{key_prefix}_specialist", saved.specialist, "All Specialists",
                )

        with cols[1]:
            account_type = _select(
                "Account Type", as_select_options(ACCOUNT_TYPES), f"{key_prefix}_account_type",
                saved.account_type, "All Account Types",
            )

        with cols[2]:
            type_keys = list(COMPANY_TYPES.keys())
            company_type = st.selectbox(
                "Company Type",
                options=type_keys,
                index=type_keys.index(saved.company_type) if saved.company_type in type_keys else 0,
                format_func=lambda v: COMPANY_TYPES[v],
                key=f"{key_prefix}_company_type",
            )

        manager = None
        if show_manager:
            with cols[3]:
                manager = _select(
                    "Manager", extractor.manager_options(employees),
                    f"{key_prefix}_manager", saved.manager, "All Managers",
                )

        date_cols = st.columns(3)
        with date_cols[0]:
            month = _select(
                "Month", extractor.month_options(), f"{key_prefix}_month",
                str(saved.month) if saved.month else None, "All Months",
            )
        with date_cols[1]:
            period_from = st.date_input(
                "From", value=saved.period_from, key=f"{key_prefix}_from", format="YYYY-MM-DD",
            )
        with date_cols[2]:
            period_to = st.date_input(
                "To", value=saved.period_to, key=f"{key_prefix}_to", format="YYYY-MM-DD",
            )

        st.divider()
        company_row, competitor_row = render_dual_row_filters(extractor, key_prefix, saved)

    return CaseFilterState(
        specialist=specialist,
        account_type=account_type,
        company_type=company_type,
        manager=manager,
        month=int(month) if month else None,
        period_from=period_from or None,
        period_to=period_to or None,
        company_row=company_row,
        competitor_row=competitor_row,
    )


def get_active_filter_summary(state: CaseFilterState) -> str:
    """Short text summary of active filters."""
    parts = []
    if state.specialist:
        parts.append("specialist")
    if state.account_type:
        parts.append(state.account_type)
    if state.company_type != 'all':
        parts.append(COMPANY_TYPES[state.company_type])
    if state.manager:
        parts.append("manager")
    if state.has_date_filter:
        parts.append("period")
    if state.company_row.is_set:
        parts.append("company row")
    if state.competitor_row.is_set:
        parts.append("competitor row")
    return ", ".join(parts) if parts else "No filters"


__all__ = [
    'COMPANY_TYPES',
    'CaseFilterState',
    'apply_case_filters',
    'filtered_dataset',
    'render_dual_row_filters',
    'render_case_filters',
    'get_active_filter_summary',
]
