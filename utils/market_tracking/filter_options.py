# utils/market_tracking/filter_options.py
"""
Filter Options - derive dropdown options from the loaded case dataset

Options are computed from the in-memory case products (plus the master
product list), never by querying the backend again. Every option list is a
declarative view-model: [{'value': ..., 'label': ...}] for products, plain
sorted strings for companies / categories / sub categories.

CHANGELOG:
- v1.0.0: Single-row and dual-row (company / competitor) option sets
- v1.1.0: Cascading narrowing company -> category -> sub category -> product
- v1.2.0: FilterOptionsExtractor with specialist / manager / month options

VERSION: 1.2.0
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd

from .constants import UNKNOWN_PRODUCT_LABEL
from .models import as_key, company_flags, is_missing, product_key

logger = logging.getLogger(__name__)

Option = Dict[str, str]


@dataclass
class PartitionOptions:
    """Option set of one filter row."""
    companies: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    sub_categories: List[str] = field(default_factory=list)
    product_options: List[Option] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'companies': list(self.companies),
            'categories': list(self.categories),
            'sub_categories': list(self.sub_categories),
            'product_options': [dict(o) for o in self.product_options],
        }


# =============================================================================
# HELPERS
# =============================================================================

def _distinct_sorted(series: Optional[pd.Series]) -> List[str]:
    if series is None:
        return []
    values = {str(v) for v in series if not is_missing(v)}
    return sorted(values)


def _partition(case_products: Optional[pd.DataFrame], company: Optional[bool]) -> pd.DataFrame:
    if case_products is None or case_products.empty:
        return pd.DataFrame(columns=['product_id', 'product_name', 'company_name',
                                     'category', 'sub_category', 'is_company_product'])
    if company is None:
        return case_products
    flags = company_flags(case_products)
    return case_products[flags] if company else case_products[~flags]


def _observed_product_options(case_products: pd.DataFrame, seen: set) -> List[Option]:
    options = []
    for row in case_products.to_dict('records'):
        key = product_key(row)
        if not key or key in seen:
            continue
        seen.add(key)
        name = row.get('product_name')
        options.append({'value': key, 'label': UNKNOWN_PRODUCT_LABEL if is_missing(name) else str(name)})
    return options


def _master_product_options(products: Optional[pd.DataFrame], company: Optional[bool], seen: set) -> List[Option]:
    if products is None or products.empty:
        return []
    master = products
    if company is not None:
        flags = company_flags(master)
        master = master[flags] if company else master[~flags]
    options = []
    for row in master.to_dict('records'):
        key = as_key(row.get('id'))
        if not key or key in seen:
            continue
        seen.add(key)
        options.append({'value': key, 'label': str(row.get('name') or UNKNOWN_PRODUCT_LABEL)})
    return options


def as_select_options(values: List[str]) -> List[Option]:
    """Plain values as view-model options."""
    return [{'value': v, 'label': v} for v in values]


# =============================================================================
# OPTION COLLECTION
# =============================================================================

def collect_filter_options(
    case_products: Optional[pd.DataFrame],
    products: Optional[pd.DataFrame] = None,
) -> PartitionOptions:
    """
    Single-row options over all case products.

    Master products are offered only when no product was observed in cases.
    """
    df = _partition(case_products, None)
    seen: set = set()
    product_options = _observed_product_options(df, seen)
    if not product_options:
        product_options = _master_product_options(products, None, seen)
    return PartitionOptions(
        companies=_distinct_sorted(df.get('company_name')),
        categories=_distinct_sorted(df.get('category')),
        sub_categories=_distinct_sorted(df.get('sub_category')),
        product_options=product_options,
    )


def collect_dual_row_filter_options(
    case_products: Optional[pd.DataFrame],
    products: Optional[pd.DataFrame] = None,
) -> Dict[str, PartitionOptions]:
    """
    Independent option sets for the company row and the competitor row.

    Product options: observed case products first (dedup key product id,
    else product name), then master products of the same partition that
    were not observed.
    """
    result = {}
    for name, company in (('company', True), ('competitor', False)):
        df = _partition(case_products, company)
        seen: set = set()
        product_options = _observed_product_options(df, seen)
        product_options += _master_product_options(products, company, seen)
        result[name] = PartitionOptions(
            companies=_distinct_sorted(df.get('company_name')),
            categories=_distinct_sorted(df.get('category')),
            sub_categories=_distinct_sorted(df.get('sub_category')),
            product_options=product_options,
        )
    return result


def cascade_options(
    case_products: Optional[pd.DataFrame],
    partition: Optional[str] = None,
    company: Optional[str] = None,
    category: Optional[str] = None,
    sub_category: Optional[str] = None,
    base_options: Optional[PartitionOptions] = None,
) -> PartitionOptions:
    """
    Narrow downstream dropdowns to values observed under the upstream picks.

    - company narrows categories
    - company and/or category narrow sub categories
    - any upstream pick narrows products (sorted by label)
    Without an upstream pick a list falls back to base_options.

    Args:
        partition: 'company', 'competitor' or None for all products
    """
    base = base_options or PartitionOptions()
    company_flag = None if partition is None else partition == 'company'
    df = _partition(case_products, company_flag)

    def _narrow(frame: pd.DataFrame, column: str, value: Optional[str]) -> pd.DataFrame:
        if not value or frame.empty:
            return frame
        return frame[frame[column].map(lambda v: ('' if is_missing(v) else str(v)) == value)]

    by_company = _narrow(df, 'company_name', company)
    by_category = _narrow(by_company, 'category', category)
    by_sub_category = _narrow(by_category, 'sub_category', sub_category)

    categories = _distinct_sorted(by_company['category']) if company else list(base.categories)

    if company or category:
        sub_categories = _distinct_sorted(by_category['sub_category'])
    else:
        sub_categories = list(base.sub_categories)

    if company or category or sub_category:
        product_options = sorted(
            _observed_product_options(by_sub_category, set()),
            key=lambda o: o['label'],
        )
    else:
        product_options = [dict(o) for o in base.product_options]

    return PartitionOptions(
        companies=list(base.companies) or _distinct_sorted(df['company_name']),
        categories=categories,
        sub_categories=sub_categories,
        product_options=product_options,
    )


# =============================================================================
# EXTRACTOR
# =============================================================================

class FilterOptionsExtractor:
    """
    Filter options for one loaded dataset.

    Usage:
        extractor = FilterOptionsExtractor(case_products_df, products_df)

        dual = extractor.dual_row()
        company_row = extractor.cascade('company', company='Acme')
        specialists = extractor.specialist_options(cases_df)
    """

    def __init__(self, case_products: pd.DataFrame, products: Optional[pd.DataFrame] = None):
        self._case_products = case_products if case_products is not None else pd.DataFrame()
        self._products = products if products is not None else pd.DataFrame()
        self._dual: Optional[Dict[str, PartitionOptions]] = None

        logger.info(f"FilterOptionsExtractor initialized: {len(self._case_products):,} case products")

    def dual_row(self) -> Dict[str, PartitionOptions]:
        if self._dual is None:
            self._dual = collect_dual_row_filter_options(self._case_products, self._products)
        return self._dual

    def cascade(
        self,
        partition: str,
        company: Optional[str] = None,
        category: Optional[str] = None,
        sub_category: Optional[str] = None,
    ) -> PartitionOptions:
        return cascade_options(
            self._case_products, partition, company, category, sub_category,
            base_options=self.dual_row()[partition],
        )

    @staticmethod
    def specialist_options(cases: pd.DataFrame) -> List[Option]:
        """Submitting specialists present in the cases, sorted by name."""
        if cases is None or cases.empty:
            return []
        pairs = {}
        for sid, name in zip(cases['submitted_by_id'], cases['submitted_by_name']):
            key = as_key(sid)
            if key and key not in pairs:
                pairs[key] = str(name) if not is_missing(name) else key
        return sorted(
            [{'value': k, 'label': v} for k, v in pairs.items()],
            key=lambda o: o['label'],
        )

    @staticmethod
    def manager_options(employees: pd.DataFrame) -> List[Option]:
        """Employees with the manager role."""
        if employees is None or employees.empty:
            return []
        managers = employees[employees['role'] == 'manager']
        return sorted(
            [{'value': as_key(i), 'label': str(n)} for i, n in zip(managers['id'], managers['full_name'])],
            key=lambda o: o['label'],
        )

    @staticmethod
    def month_options() -> List[Option]:
        return [
            {'value': str(m), 'label': pd.Timestamp(2000, m, 1).strftime('%B')}
            for m in range(1, 13)
        ]


__all__ = [
    'PartitionOptions',
    'as_select_options',
    'collect_filter_options',
    'collect_dual_row_filter_options',
    'cascade_options',
    'FilterOptionsExtractor',
]
