from datetime import date

import pandas as pd
import pytest

from utils.market_tracking.analytics import ProductRowFilter, group_case_products
from utils.market_tracking.filters import (
    CaseFilterState,
    apply_case_filters,
    filtered_dataset,
)

from .conftest import make_cases


@pytest.fixture
def employees():
    return pd.DataFrame([
        {'id': 'E1', 'direct_manager_id': 'M1', 'line_manager_id': None},
        {'id': 'E2', 'direct_manager_id': None, 'line_manager_id': 'M2'},
    ])


def _ids(frame):
    return list(frame['id'])


def test_empty_state_keeps_every_case(three_cases):
    cases, products = three_cases

    result = apply_case_filters(cases, group_case_products(products), CaseFilterState())

    assert _ids(result) == ['A', 'B', 'C']


@pytest.mark.parametrize('state, expected', [
    (CaseFilterState(specialist='E1'), ['A', 'C']),
    (CaseFilterState(account_type='UPA'), ['B']),
    (CaseFilterState(company_type='competitor'), ['B', 'C']),
    (CaseFilterState(company_type='company'), ['A', 'C']),
    (CaseFilterState(month=2), ['B', 'C']),
    (CaseFilterState(period_from=date(2025, 2, 10)), ['C']),
    (CaseFilterState(period_to=date(2025, 2, 3)), ['A', 'B']),
])
def test_single_filters(three_cases, state, expected):
    cases, products = three_cases

    assert _ids(apply_case_filters(cases, group_case_products(products), state)) == expected


def test_manager_matches_direct_or_line_manager(three_cases, employees):
    cases, products = three_cases
    grouped = group_case_products(products)

    assert _ids(apply_case_filters(cases, grouped, CaseFilterState(manager='M1'), employees)) == ['A', 'C']
    assert _ids(apply_case_filters(cases, grouped, CaseFilterState(manager='M2'), employees)) == ['B']


def test_undated_case_dropped_only_with_date_filter(three_cases):
    cases, products = three_cases
    cases = pd.concat([cases, make_cases([{'id': 'X', 'case_date': None}])], ignore_index=True)
    grouped = group_case_products(products)

    assert 'X' in _ids(apply_case_filters(cases, grouped, CaseFilterState()))
    assert 'X' not in _ids(apply_case_filters(cases, grouped, CaseFilterState(period_from=date(2024, 1, 1))))


def test_filters_combine(three_cases):
    cases, products = three_cases
    state = CaseFilterState(specialist='E1', company_row=ProductRowFilter(company='Acme'), month=1)

    assert _ids(apply_case_filters(cases, group_case_products(products), state)) == ['A']


def test_filtered_dataset_restricts_products(three_cases):
    cases, products = three_cases

    filtered, filtered_products, by_case = filtered_dataset(
        cases, products, CaseFilterState(account_type='Private'),
    )

    assert _ids(filtered) == ['A']
    assert set(filtered_products['case_id']) == {'A'}
    assert set(by_case) == {'A'}


def test_filtered_dataset_with_no_match(three_cases):
    cases, products = three_cases

    filtered, filtered_products, by_case = filtered_dataset(
        cases, products, CaseFilterState(specialist='nobody'),
    )

    assert filtered.empty
    assert filtered_products.empty
    assert by_case == {}


def test_state_survives_saving():
    state = CaseFilterState(
        specialist='E1', month=3, period_from=date(2025, 1, 1),
        company_row=ProductRowFilter(company='Acme', product='P1'),
    )

    restored = CaseFilterState.from_dict(state.to_dict())

    assert restored == state


def test_bad_saved_date_is_ignored():
    restored = CaseFilterState.from_dict({'period_from': 'yesterday', 'company_type': ''})

    assert restored.period_from is None
    assert restored.company_type == 'all'
