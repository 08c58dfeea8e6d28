import altair as alt
import pandas as pd
from openpyxl import load_workbook

from utils.market_tracking.analytics import compute_case_metrics, group_case_products, top_n_breakdown
from utils.market_tracking.badge import badge_message
from utils.market_tracking.charts import MarketCharts, bar_colors, share_colors
from utils.market_tracking.constants import COLORS, OTHERS_COLOR
from utils.market_tracking.export import CASE_EXPORT_HEADERS, CaseExport, case_table_rows, product_columns

CHART_TYPES = (alt.Chart, alt.LayerChart)


# =============================================================================
# EXPORT
# =============================================================================

def test_export_headers_cover_twelve_products():
    assert len(CASE_EXPORT_HEADERS) == 8 + 12 * 6 + 2
    assert CASE_EXPORT_HEADERS['product12_units'] == 'P12 Units'


def test_product_columns_pad_and_fall_back():
    products = pd.DataFrame([
        {'product_name': 'Loose', 'company_name': None, 'is_company_product': False, 'units': 2},
    ])

    cells = product_columns(products)

    assert len(cells) == 12
    assert cells[0]['company'] == 'Competitor'
    assert cells[0]['type'] == 'Competitor'
    assert cells[1] == {'name': '', 'type': '', 'company': '', 'category': '', 'sub_category': '', 'units': 0}


def test_case_rows_follow_product_sequence(three_cases):
    cases, products = three_cases

    rows = {r['id']: r for r in case_table_rows(cases, group_case_products(products))}

    assert rows['C']['product1_name'] == 'Stent X'
    assert rows['C']['product2_name'] == 'Balloon Z'
    assert rows['C']['company_units'] == 2
    assert rows['C']['competitor_units'] == 4
    assert rows['A']['product2_name'] == ''
    assert str(rows['A']['case_date']) == '2025-01-10'


def test_workbook_has_cases_and_summary(three_cases):
    cases, products = three_cases
    grouped = group_case_products(products)
    rows = case_table_rows(cases, grouped)

    output = CaseExport().to_excel(rows, metrics=compute_case_metrics(cases, grouped).to_dict())

    wb = load_workbook(output)
    assert wb.sheetnames == ['Cases', 'Summary']
    ws = wb['Cases']
    assert ws['A1'].value == 'Case Code'
    assert ws.max_row == 4
    assert wb['Summary']['B4'].value == 3


# =============================================================================
# BADGE
# =============================================================================

def test_badge_messages():
    assert badge_message(3) == {'type': 'UPDATE_BADGE', 'count': 3}
    assert badge_message(0) == {'type': 'CLEAR_BADGE'}
    assert badge_message(-2) == {'type': 'CLEAR_BADGE'}
    assert badge_message(None) == {'type': 'CLEAR_BADGE'}
    assert badge_message('many') == {'type': 'CLEAR_BADGE'}


# =============================================================================
# CHARTS
# =============================================================================

def test_others_buckets_get_fixed_color():
    assert bar_colors(['A', 'Others'], '#000000') == ['#000000', OTHERS_COLOR]

    colors = share_colors(['Company', 'Rival', 'Other Companies'])
    assert colors[0] == COLORS['company']
    assert colors[2] == OTHERS_COLOR


def test_chart_builders_accept_empty_and_full_data(three_cases):
    cases, products = three_cases
    breakdown = top_n_breakdown(products, 'product_name', 'units')

    assert isinstance(MarketCharts.build_breakdown_bar(breakdown, 'Units', theme='light'), CHART_TYPES)
    assert isinstance(MarketCharts.build_breakdown_bar(pd.DataFrame(), 'Units', theme='dark'), CHART_TYPES)
    assert isinstance(
        MarketCharts.build_share_donut(pd.DataFrame({'label': ['Company'], 'value': [0]}), 'Share', theme='dark'),
        CHART_TYPES,
    )
