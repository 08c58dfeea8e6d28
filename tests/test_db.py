from datetime import date, datetime

import pytest

from utils import db
from utils.db import BackendError


@pytest.fixture
def products(backend):
    db.insert_rows('products', [
        {'id': f'P{i}', 'name': f'Product {i}', 'line_id': 'L1' if i % 2 else 'L2',
         'category': None if i == 5 else 'Stents', 'is_company_product': i < 3}
        for i in range(1, 6)
    ])
    return backend


def _ids(frame):
    return sorted(frame['id'])


def test_insert_assigns_ids(backend):
    ids = db.insert_rows('lines', [{'name': 'Cardio'}, {'id': 'L9', 'name': 'Neuro'}])

    assert len(ids) == 2
    assert ids[1] == 'L9'
    assert len(ids[0]) == 36


def test_equality_null_and_exclude_filters(products):
    assert _ids(db.select_rows('products', filters={'line_id': 'L1'})) == ['P1', 'P3', 'P5']
    assert _ids(db.select_rows('products', filters={'category': None})) == ['P5']
    assert _ids(db.select_rows('products', exclude={'line_id': 'L1'})) == ['P2', 'P4']


def test_exclude_keeps_rows_where_the_column_is_null(products):
    assert _ids(db.select_rows('products', exclude={'category': 'Stents'})) == ['P5']


def test_in_filters_and_any_of(products):
    assert _ids(db.select_rows('products', in_filters={'id': ['P1', 'P4']})) == ['P1', 'P4']
    assert db.select_rows('products', in_filters={'id': []}).empty
    assert _ids(db.select_rows('products', any_of=[('id', 'P2'), ('line_id', 'L1')])) == ['P1', 'P2', 'P3', 'P5']


def test_columns_order_and_window(products):
    frame = db.select_rows('products', columns=['id', 'name'], order_by='id', descending=True, limit=2)

    assert list(frame.columns) == ['id', 'name']
    assert list(frame['id']) == ['P5', 'P4']


def test_empty_result_keeps_requested_columns(backend):
    frame = db.select_rows('products', columns=['id', 'name'])

    assert frame.empty
    assert list(frame.columns) == ['id', 'name']


def test_batched_select_reads_every_window(products):
    frame = db.select_all_batched('products', batch_size=2, order_by='id')

    assert list(frame['id']) == ['P1', 'P2', 'P3', 'P4', 'P5']


def test_select_one(products):
    assert db.select_one('products', filters={'id': 'P2'})['name'] == 'Product 2'
    assert db.select_one('products', filters={'id': 'nope'}) is None
    assert db.select_one('products', filters={'id': 'P5'})['category'] is None

    with pytest.raises(BackendError):
        db.select_one('products', filters={'line_id': 'L1'})


def test_count_rows(products):
    assert db.count_rows('products') == 5
    assert db.count_rows('products', filters={'line_id': 'L2'}) == 2
    assert db.count_rows('products', in_filters={'id': []}) == 0


def test_update_and_delete_need_a_filter(products):
    with pytest.raises(BackendError):
        db.update_rows('products', {'name': 'x'})
    with pytest.raises(BackendError):
        db.delete_rows('products')

    assert db.update_rows('products', {'name': 'Renamed'}, filters={'id': 'P1'}) == 1
    assert db.delete_rows('products', in_filters={'id': ['P4', 'P5']}) == 2
    assert db.count_rows('products') == 3


def test_transaction_rolls_back_on_error(products):
    with pytest.raises(BackendError):
        with db.get_transaction() as conn:
            db.delete_rows('products', filters={'id': 'P1'}, conn=conn)
            db.insert_rows('products', [{'id': 'P6', 'missing_column': 1}], conn=conn)

    assert db.count_rows('products') == 5


def test_backend_failures_become_backend_errors(backend):
    with pytest.raises(BackendError) as exc_info:
        db.select_rows('no_such_table', context='load nothing')

    assert exc_info.value.context == 'load nothing'
    assert 'no_such_table' in exc_info.value.message


def test_dates_are_written_as_iso_strings(backend):
    db.insert_rows('cases', [{'id': 'C1', 'case_date': date(2025, 1, 10),
                              'created_at': datetime(2025, 1, 10, 8, 30, 5, 999)}])

    row = db.select_one('cases', filters={'id': 'C1'})

    assert row['case_date'] == '2025-01-10'
    assert row['created_at'] == '2025-01-10 08:30:05'


def test_check_db_connection(backend):
    assert db.check_db_connection() == (True, None)
