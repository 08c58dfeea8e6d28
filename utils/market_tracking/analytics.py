# utils/market_tracking/analytics.py
"""
Case Analytics for Market Tracking

Client-side aggregation over the loaded case dataset:
- Grouping case products by case
- Company / competitor / mixed classification and stat card metrics
- Dual-row (company row OR competitor row) case filtering
- Top-N breakdowns with an "Others" tail bucket
- Monthly trends and stacked units per company

All functions are pure: inputs are never mutated, missing values are
treated as "Unknown"/"Uncategorized" or excluded, nothing raises on
incomplete rows.
"""

import logging
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
import pandas as pd

from .constants import (
    ACCOUNT_TYPES,
    COMPANY_LABEL,
    DEFAULT_TOP_N,
    MARKET_SHARE_COMPETITORS,
    OTHERS_LABEL,
    UNCATEGORIZED_LABEL,
    UNKNOWN_LABEL,
)
from .models import CASE_PRODUCT_FIELDS, as_key, company_flags, is_missing

logger = logging.getLogger(__name__)

GENERIC_OTHERS_LABEL = "Others"

ProductsByCase = Dict[Any, pd.DataFrame]


# =============================================================================
# GROUPING & CLASSIFICATION
# =============================================================================

def group_case_products(case_products: Optional[pd.DataFrame]) -> ProductsByCase:
    """
    Map case_id -> that case's products ordered by ascending sequence.

    Rows without a case_id are skipped. Cases without products are absent
    from the result; callers treat a missing key as "no products".
    """
    if case_products is None or case_products.empty or 'case_id' not in case_products.columns:
        return {}

    df = case_products[case_products['case_id'].map(lambda v: not is_missing(v))]
    if df.empty:
        return {}
    df = df.assign(is_company_product=company_flags(df))

    grouped = {}
    for case_id, group in df.groupby('case_id', sort=False):
        if 'sequence' in group.columns:
            order = pd.to_numeric(group['sequence'], errors='coerce').fillna(0).to_numpy()
            group = group.iloc[np.argsort(order, kind='stable')]
        grouped[case_id] = group.reset_index(drop=True)
    return grouped


def _products_for(products_by_case: ProductsByCase, case_id: Any) -> Optional[pd.DataFrame]:
    return products_by_case.get(case_id)


def _flags(products: Optional[pd.DataFrame]):
    if products is None or products.empty:
        return False, False
    flags = company_flags(products)
    return bool(flags.any()), bool((~flags).any())


def classify_case(products: Optional[pd.DataFrame]) -> Optional[str]:
    """'company', 'competitor', 'mixed', or None for a case without products."""
    has_company, has_competitor = _flags(products)
    if has_company and has_competitor:
        return 'mixed'
    if has_company:
        return 'company'
    if has_competitor:
        return 'competitor'
    return None


def case_products_frame(cases: pd.DataFrame, products_by_case: ProductsByCase) -> pd.DataFrame:
    """Flat products of the given cases (in case order)."""
    frames = []
    if cases is not None and not cases.empty:
        for case_id in cases['id']:
            products = _products_for(products_by_case, case_id)
            if products is not None and not products.empty:
                frames.append(products)
    if not frames:
        return pd.DataFrame(columns=CASE_PRODUCT_FIELDS)
    return pd.concat(frames, ignore_index=True)


# =============================================================================
# STAT CARD METRICS
# =============================================================================

@dataclass
class CaseMetrics:
    company_case_count: int = 0
    competitor_case_count: int = 0
    mixed_case_count: int = 0
    total_case_count: int = 0
    company_units: int = 0
    competitor_units: int = 0
    active_doctors: int = 0
    active_accounts: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _entity_key(row: Mapping[str, Any], id_field: str, name_field: str) -> Optional[str]:
    key = as_key(row.get(id_field))
    if key is None and not is_missing(row.get(name_field)):
        key = str(row.get(name_field))
    return key


def compute_case_metrics(cases: pd.DataFrame, products_by_case: ProductsByCase) -> CaseMetrics:
    """
    Stat card metrics for a set of cases.

    - total_case_count is the number of cases, including cases with no products
    - units are summed from product rows
    - active doctors/accounts are distinct among cases with a company product
    """
    metrics = CaseMetrics()
    if cases is None or cases.empty:
        return metrics

    doctors, accounts = set(), set()
    for row in cases.to_dict('records'):
        products = _products_for(products_by_case, row.get('id'))
        has_company, has_competitor = _flags(products)

        if has_company:
            metrics.company_case_count += 1
            doctor = _entity_key(row, 'doctor_id', 'doctor_name')
            account = _entity_key(row, 'account_id', 'account_name')
            if doctor:
                doctors.add(doctor)
            if account:
                accounts.add(account)
        if has_competitor:
            metrics.competitor_case_count += 1
        if has_company and has_competitor:
            metrics.mixed_case_count += 1

        if products is not None and not products.empty:
            company_mask = company_flags(products)
            metrics.company_units += int(products.loc[company_mask, 'units'].sum())
            metrics.competitor_units += int(products.loc[~company_mask, 'units'].sum())

    metrics.total_case_count = len(cases)
    metrics.active_doctors = len(doctors)
    metrics.active_accounts = len(accounts)
    return metrics


# =============================================================================
# DUAL-ROW FILTERING
# =============================================================================

@dataclass
class ProductRowFilter:
    """Criteria of one filter row (company row or competitor row)."""
    company: Optional[str] = None
    category: Optional[str] = None
    sub_category: Optional[str] = None
    product: Optional[str] = None

    @property
    def is_set(self) -> bool:
        return any((self.company, self.category, self.sub_category, self.product))

    def to_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)

    @classmethod
    def from_dict(cls, values: Optional[Mapping[str, Any]]) -> 'ProductRowFilter':
        values = values or {}
        return cls(**{f.name: (values.get(f.name) or None) for f in fields(cls)})


def matches_row(product: Mapping[str, Any], criteria: ProductRowFilter, company_partition: bool) -> bool:
    """A product matches a row when it is in the row's partition and every set field matches."""
    if bool(product.get('is_company_product')) != company_partition:
        return False
    if criteria.company and (product.get('company_name') or '') != criteria.company:
        return False
    if criteria.category and (product.get('category') or '') != criteria.category:
        return False
    if criteria.sub_category and (product.get('sub_category') or '') != criteria.sub_category:
        return False
    if criteria.product:
        if as_key(product.get('product_id')) != criteria.product and product.get('product_name') != criteria.product:
            return False
    return True


def _row_matches(products: Optional[pd.DataFrame], criteria: ProductRowFilter, company_partition: bool) -> bool:
    if products is None or products.empty:
        return False
    return any(matches_row(p, criteria, company_partition) for p in products.to_dict('records'))


def case_matches_dual_row(
    products: Optional[pd.DataFrame],
    company_row: ProductRowFilter,
    competitor_row: ProductRowFilter,
) -> bool:
    """
    OR semantics between rows. Applies only when at least one row has
    criteria; a row without criteria matches any product of its partition.
    """
    if not company_row.is_set and not competitor_row.is_set:
        return True
    return (
        _row_matches(products, company_row, True)
        or _row_matches(products, competitor_row, False)
    )


def filter_cases_dual_row(
    cases: pd.DataFrame,
    products_by_case: ProductsByCase,
    company_row: ProductRowFilter,
    competitor_row: ProductRowFilter,
) -> pd.DataFrame:
    if cases is None or cases.empty:
        return cases
    if not company_row.is_set and not competitor_row.is_set:
        return cases
    mask = cases['id'].map(
        lambda case_id: case_matches_dual_row(_products_for(products_by_case, case_id), company_row, competitor_row)
    )
    return cases[mask.astype(bool)]


def _cases_matching_row(cases, products_by_case, criteria, company_partition) -> pd.DataFrame:
    mask = cases['id'].map(
        lambda case_id: _row_matches(_products_for(products_by_case, case_id), criteria, company_partition)
    )
    return cases[mask.astype(bool)]


def compute_dual_row_metrics(
    cases: pd.DataFrame,
    products_by_case: ProductsByCase,
    company_row: ProductRowFilter,
    competitor_row: ProductRowFilter,
    company_type: Optional[str] = None,
) -> CaseMetrics:
    """
    Stat card metrics aware of the dual-row selection.

    Company stats come from company-row matches, competitor stats from
    competitor-row matches, mixed counts cases matching both rows. A
    company_type of 'company'/'competitor' zeroes the other side.
    """
    if company_type in ('company', 'competitor'):
        metrics = compute_case_metrics(cases, products_by_case)
        if company_type == 'company':
            metrics.competitor_case_count = 0
            metrics.competitor_units = 0
        else:
            metrics.company_case_count = 0
            metrics.company_units = 0
        return metrics

    if cases is None or cases.empty or not (company_row.is_set or competitor_row.is_set):
        return compute_case_metrics(cases, products_by_case)

    company_cases = _cases_matching_row(cases, products_by_case, company_row, True) \
        if company_row.is_set else cases
    competitor_cases = _cases_matching_row(cases, products_by_case, competitor_row, False) \
        if competitor_row.is_set else cases

    company_metrics = compute_case_metrics(company_cases, products_by_case)
    competitor_metrics = compute_case_metrics(competitor_cases, products_by_case)

    if company_row.is_set and competitor_row.is_set:
        both = set(company_cases['id']) & set(competitor_cases['id'])
        mixed = len(both)
    else:
        mixed = compute_case_metrics(cases, products_by_case).mixed_case_count

    return CaseMetrics(
        company_case_count=company_metrics.company_case_count,
        competitor_case_count=competitor_metrics.competitor_case_count,
        mixed_case_count=mixed,
        total_case_count=len(cases),
        company_units=company_metrics.company_units,
        competitor_units=competitor_metrics.competitor_units,
        active_doctors=company_metrics.active_doctors,
        active_accounts=company_metrics.active_accounts,
    )


def case_split(cases: pd.DataFrame, products_by_case: ProductsByCase) -> pd.DataFrame:
    """Company only / competitor only / mixed case counts."""
    counts = {'company': 0, 'competitor': 0, 'mixed': 0}
    if cases is not None and not cases.empty:
        for case_id in cases['id']:
            kind = classify_case(_products_for(products_by_case, case_id))
            if kind:
                counts[kind] += 1
    return pd.DataFrame({
        'label': ['Company Only', 'Competitor Only', 'Mixed'],
        'value': [counts['company'], counts['competitor'], counts['mixed']],
    })


# =============================================================================
# TOP-N BREAKDOWNS
# =============================================================================

def _empty_breakdown() -> pd.DataFrame:
    return pd.DataFrame({'label': pd.Series(dtype=object), 'value': pd.Series(dtype='int64')})


def top_n_breakdown(
    frame: pd.DataFrame,
    key: str,
    value: Optional[str] = None,
    n: Optional[int] = DEFAULT_TOP_N,
    others_label: str = GENERIC_OTHERS_LABEL,
    agg: str = 'sum',
    missing_label: str = UNKNOWN_LABEL,
) -> pd.DataFrame:
    """
    Aggregate per key, sort descending (ties keep first-encounter order),
    and collapse everything beyond the top n into one others bucket.

    Args:
        frame: Row-level data
        key: Grouping column
        value: Column to aggregate (rows are counted when None)
        n: Groups kept before collapsing (None keeps all)
        others_label: Label of the collapsed tail
        agg: 'sum' or 'nunique'
        missing_label: Label for rows with an empty key

    Returns:
        DataFrame with columns label, value
    """
    if frame is None or frame.empty or key not in frame.columns:
        return _empty_breakdown()

    labels = frame[key].map(lambda v: missing_label if is_missing(v) else str(v))
    if value is None:
        totals = labels.groupby(labels, sort=False).size()
    elif agg == 'nunique':
        totals = frame[value].groupby(labels, sort=False).nunique()
    else:
        totals = pd.to_numeric(frame[value], errors='coerce').fillna(0).groupby(labels, sort=False).sum()

    result = totals.reset_index()
    result.columns = ['label', 'value']
    result = result.sort_values('value', ascending=False, kind='mergesort').reset_index(drop=True)

    if n is not None and len(result) > n:
        rest = result.iloc[n:]
        result = pd.concat(
            [result.iloc[:n], pd.DataFrame({'label': [others_label], 'value': [rest['value'].sum()]})],
            ignore_index=True,
        )

    result['value'] = result['value'].astype('int64')
    return result


def _market_share(company_value: int, competitor_totals: pd.Series) -> pd.DataFrame:
    ranked = competitor_totals.sort_values(ascending=False, kind='mergesort')
    top = ranked.iloc[:MARKET_SHARE_COMPETITORS]
    other = int(ranked.iloc[MARKET_SHARE_COMPETITORS:].sum())

    labels = [COMPANY_LABEL] + [str(l) for l in top.index]
    values = [int(company_value)] + [int(v) for v in top.values]
    if other > 0:
        labels.append(OTHERS_LABEL)
        values.append(other)
    return pd.DataFrame({'label': labels, 'value': values})


def cases_market_share(cases: pd.DataFrame, products_by_case: ProductsByCase) -> pd.DataFrame:
    """Company cases vs distinct-case counts of the top 5 competitor companies."""
    company_cases = 0
    competitor_counts: Dict[str, int] = {}
    if cases is not None and not cases.empty:
        for case_id in cases['id']:
            products = _products_for(products_by_case, case_id)
            if products is None or products.empty:
                continue
            flags = company_flags(products)
            if flags.any():
                company_cases += 1
            names = products.loc[~flags, 'company_name']
            for name in dict.fromkeys(n for n in names if not is_missing(n)):
                competitor_counts[name] = competitor_counts.get(name, 0) + 1
    return _market_share(company_cases, pd.Series(competitor_counts, dtype='int64'))


def units_market_share(cases: pd.DataFrame, products_by_case: ProductsByCase) -> pd.DataFrame:
    """Company units vs units of the top 5 competitor companies."""
    products = case_products_frame(cases, products_by_case)
    if products.empty:
        return _market_share(0, pd.Series(dtype='int64'))
    flags = company_flags(products)
    company_units = int(products.loc[flags, 'units'].sum())
    competitors = products[~flags & products['company_name'].map(lambda v: not is_missing(v))]
    totals = competitors.groupby('company_name', sort=False)['units'].sum()
    return _market_share(company_units, totals)


def units_per_category(case_products: pd.DataFrame, n: int = DEFAULT_TOP_N) -> pd.DataFrame:
    return top_n_breakdown(case_products, 'category', 'units', n, missing_label=UNCATEGORIZED_LABEL)


def units_by_product(case_products: pd.DataFrame, n: int = DEFAULT_TOP_N) -> pd.DataFrame:
    return top_n_breakdown(case_products, 'product_name', 'units', n)


def cases_by_product(cases: pd.DataFrame, products_by_case: ProductsByCase, n: int = DEFAULT_TOP_N) -> pd.DataFrame:
    """Distinct cases per product name."""
    products = case_products_frame(cases, products_by_case)
    return top_n_breakdown(products, 'product_name', 'case_id', n, agg='nunique')


def cases_by_company_category(cases: pd.DataFrame, products_by_case: ProductsByCase, n: int = DEFAULT_TOP_N) -> pd.DataFrame:
    """Distinct cases per category, company products only."""
    products = case_products_frame(cases, products_by_case)
    if not products.empty:
        products = products[company_flags(products)]
    return top_n_breakdown(
        products, 'category', 'case_id', n, agg='nunique', missing_label=UNCATEGORIZED_LABEL,
    )


def cases_by_specialist(cases: pd.DataFrame) -> pd.DataFrame:
    return top_n_breakdown(cases, 'submitted_by_name', None, None)


def units_by_specialist(cases: pd.DataFrame, products_by_case: ProductsByCase) -> pd.DataFrame:
    """Total units (company + competitor) per submitting specialist."""
    if cases is None or cases.empty:
        return _empty_breakdown()
    frame = cases[['id', 'submitted_by_name']].copy()
    frame['units'] = frame['id'].map(lambda case_id: _case_units(products_by_case, case_id))
    return top_n_breakdown(frame, 'submitted_by_name', 'units', None)


def _case_units(products_by_case: ProductsByCase, case_id: Any) -> int:
    products = _products_for(products_by_case, case_id)
    if products is None or products.empty:
        return 0
    return int(products['units'].sum())


def cases_by_line(cases: pd.DataFrame, employees: Optional[pd.DataFrame] = None) -> pd.DataFrame:
    """Cases per line of the submitting specialist."""
    if cases is None or cases.empty:
        return _empty_breakdown()
    line_by_employee = {}
    if employees is not None and not employees.empty and 'line_name' in employees.columns:
        line_by_employee = {as_key(i): l for i, l in zip(employees['id'], employees['line_name'])}
    frame = cases.copy()
    frame['line'] = [
        line_by_employee.get(as_key(sid)) or (None if is_missing(line) else line)
        for sid, line in zip(frame['submitted_by_id'], frame['line_name'])
    ]
    return top_n_breakdown(frame, 'line', None, None, missing_label='Unassigned')


def account_type_split(cases: pd.DataFrame) -> pd.DataFrame:
    """Cases per account type (Private / UPA / Military)."""
    counts = {t: 0 for t in ACCOUNT_TYPES}
    if cases is not None and not cases.empty:
        for account_type in cases['account_type']:
            if account_type in counts:
                counts[account_type] += 1
    return pd.DataFrame({
        'label': [f"{t} Cases" for t in ACCOUNT_TYPES],
        'value': [counts[t] for t in ACCOUNT_TYPES],
    })


# =============================================================================
# MONTHLY TRENDS
# =============================================================================

def month_label(value: Any) -> str:
    """'Jan 2025' style label; 'Unknown' for missing or unparseable dates."""
    if is_missing(value):
        return UNKNOWN_LABEL
    ts = pd.to_datetime(value, errors='coerce')
    if pd.isna(ts):
        return UNKNOWN_LABEL
    return ts.strftime('%b %Y')


def _month_frame(cases: pd.DataFrame) -> pd.DataFrame:
    frame = cases[['id', 'case_date']].copy()
    dates = pd.to_datetime(frame['case_date'], errors='coerce')
    frame['month'] = [month_label(d) for d in dates]
    frame['month_start'] = dates.dt.to_period('M').dt.to_timestamp()
    return frame


def _ordered_months(frame: pd.DataFrame, value_columns: List[str]) -> pd.DataFrame:
    grouped = frame.groupby('month', sort=False).agg(
        {**{c: 'sum' for c in value_columns}, 'month_start': 'min'}
    ).reset_index()
    grouped = grouped.sort_values('month_start', na_position='last', kind='mergesort')
    return grouped[['month'] + value_columns].reset_index(drop=True)


def cases_by_month_dual(cases: pd.DataFrame, products_by_case: ProductsByCase) -> pd.DataFrame:
    """Per month: cases with a company product, cases with a competitor product."""
    if cases is None or cases.empty:
        return pd.DataFrame(columns=['month', 'company_cases', 'competitor_cases'])
    frame = _month_frame(cases)
    flags = [_flags(_products_for(products_by_case, case_id)) for case_id in frame['id']]
    frame['company_cases'] = [int(c) for c, _ in flags]
    frame['competitor_cases'] = [int(k) for _, k in flags]
    return _ordered_months(frame, ['company_cases', 'competitor_cases'])


def units_by_month_dual(cases: pd.DataFrame, products_by_case: ProductsByCase) -> pd.DataFrame:
    """Per month: company units and competitor units."""
    if cases is None or cases.empty:
        return pd.DataFrame(columns=['month', 'company_units', 'competitor_units'])
    frame = _month_frame(cases)
    company, competitor = [], []
    for case_id in frame['id']:
        products = _products_for(products_by_case, case_id)
        if products is None or products.empty:
            company.append(0)
            competitor.append(0)
            continue
        mask = company_flags(products)
        company.append(int(products.loc[mask, 'units'].sum()))
        competitor.append(int(products.loc[~mask, 'units'].sum()))
    frame['company_units'] = company
    frame['competitor_units'] = competitor
    return _ordered_months(frame, ['company_units', 'competitor_units'])


# =============================================================================
# STACKED UNITS PER COMPANY
# =============================================================================

def truncate_sub_category_label(label: Any) -> Any:
    """'short self expanding stents' -> 'short...stents'; two words or fewer unchanged."""
    if not isinstance(label, str) or not label:
        return label
    words = label.strip().split()
    if len(words) <= 2:
        return label
    return f"{words[0]}...{words[-1]}"


def units_per_company_stacked(
    cases: pd.DataFrame,
    products_by_case: ProductsByCase,
    top_n: int = DEFAULT_TOP_N,
) -> pd.DataFrame:
    """
    Units per (sub category, company) for a stacked bar chart.

    Groups by sub_category, falling back to category. Companies outside the
    top N by total units are folded into "Other Companies".

    Returns:
        DataFrame with columns group, group_label, company, units
    """
    columns = ['group', 'group_label', 'company', 'units']
    products = case_products_frame(cases, products_by_case)
    if products.empty:
        return pd.DataFrame(columns=columns)

    frame = pd.DataFrame({
        'group': [
            (sc if not is_missing(sc) else (c if not is_missing(c) else UNCATEGORIZED_LABEL))
            for sc, c in zip(products['sub_category'], products['category'])
        ],
        'company': [
            name if not is_missing(name) else (COMPANY_LABEL if flag else UNKNOWN_LABEL)
            for name, flag in zip(products['company_name'], company_flags(products))
        ],
        'units': products['units'].astype('int64'),
    })

    totals = frame.groupby('company', sort=False)['units'].sum()
    top = set(totals.sort_values(ascending=False, kind='mergesort').index[:top_n])
    frame['company'] = frame['company'].where(frame['company'].isin(top), OTHERS_LABEL)

    stacked = frame.groupby(['group', 'company'], sort=False)['units'].sum().reset_index()
    stacked = stacked[~((stacked['company'] == OTHERS_LABEL) & (stacked['units'] <= 0))]
    stacked = stacked.sort_values('group', kind='mergesort').reset_index(drop=True)
    stacked['group_label'] = stacked['group'].map(truncate_sub_category_label)
    return stacked[columns]


__all__ = [
    'GENERIC_OTHERS_LABEL',
    'group_case_products',
    'classify_case',
    'case_products_frame',
    'CaseMetrics',
    'compute_case_metrics',
    'ProductRowFilter',
    'matches_row',
    'case_matches_dual_row',
    'filter_cases_dual_row',
    'compute_dual_row_metrics',
    'case_split',
    'top_n_breakdown',
    'cases_market_share',
    'units_market_share',
    'units_per_category',
    'units_by_product',
    'cases_by_product',
    'cases_by_company_category',
    'cases_by_specialist',
    'units_by_specialist',
    'cases_by_line',
    'account_type_split',
    'month_label',
    'cases_by_month_dual',
    'units_by_month_dual',
    'truncate_sub_category_label',
    'units_per_company_stacked',
]
