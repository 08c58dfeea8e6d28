# utils/market_tracking/export.py
"""
Formatted Excel Export for Market Tracking

Creates Excel workbooks with:
- Cases sheet (one row per case, up to 12 product column groups)
- Optional summary sheet with the stat card metrics

Uses openpyxl for formatting capabilities.
"""

import logging
from datetime import datetime
from io import BytesIO
from typing import Any, Dict, List, Optional

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from .analytics import ProductsByCase
from .constants import CASE_PRODUCT_COLUMNS, STATUS_LABELS
from .models import company_flags, is_missing

logger = logging.getLogger(__name__)

EXCEL_STYLES = {
    "header_fill_color": "4F46E5",
    "header_font_color": "FFFFFF",
    "number_format": '#,##0',
    "date_format": 'YYYY-MM-DD',
}

_PRODUCT_FIELDS = [
    ('name', 'Product {n}'),
    ('type', 'P{n} Type'),
    ('company', 'P{n} Company'),
    ('category', 'P{n} Category'),
    ('sub_category', 'P{n} Sub-category'),
    ('units', 'P{n} Units'),
]


def _build_headers(limit: int = CASE_PRODUCT_COLUMNS) -> Dict[str, str]:
    headers = {
        'case_code': 'Case Code',
        'case_date': 'Case Date',
        'specialist': 'Product Specialist',
        'line': 'Line',
        'status': 'Status',
        'account': 'Account',
        'account_type': 'Account Type',
        'doctor': 'Doctor',
    }
    for n in range(1, limit + 1):
        for field_name, label in _PRODUCT_FIELDS:
            headers[f'product{n}_{field_name}'] = label.format(n=n)
    headers['company_units'] = 'Company Units'
    headers['competitor_units'] = 'Competitor Units'
    return headers


CASE_EXPORT_HEADERS = _build_headers()


# =============================================================================
# ROW FLATTENING
# =============================================================================

def _text(value: Any) -> str:
    return '' if is_missing(value) else str(value)


def product_columns(products: Optional[pd.DataFrame], limit: int = CASE_PRODUCT_COLUMNS) -> List[Dict[str, Any]]:
    """
    Exactly `limit` product cells for one case, padded with empty cells.

    Company falls back to 'Company' / 'Competitor' when the row has no
    company name.
    """
    filler = {'name': '', 'type': '', 'company': '', 'category': '', 'sub_category': '', 'units': 0}
    cells = []
    records = [] if products is None or products.empty else products.head(limit).to_dict('records')
    for product in records:
        if is_missing(product.get('product_name')):
            cells.append(dict(filler))
            continue
        kind = 'Company' if bool(product.get('is_company_product')) else 'Competitor'
        units = product.get('units')
        cells.append({
            'name': _text(product.get('product_name')),
            'type': kind,
            'company': _text(product.get('company_name')) or kind,
            'category': _text(product.get('category')),
            'sub_category': _text(product.get('sub_category')),
            'units': 0 if is_missing(units) else int(units),
        })
    while len(cells) < limit:
        cells.append(dict(filler))
    return cells


def _case_units(case: Dict[str, Any], products: Optional[pd.DataFrame], company: bool) -> int:
    column = 'total_company_units' if company else 'total_competitor_units'
    if not is_missing(case.get(column)):
        return int(case[column])
    if products is None or products.empty:
        return 0
    mask = company_flags(products)
    return int(products.loc[mask if company else ~mask, 'units'].sum())


def case_table_rows(
    cases: pd.DataFrame,
    products_by_case: ProductsByCase,
    limit: int = CASE_PRODUCT_COLUMNS,
) -> List[Dict[str, Any]]:
    """One flat row per case in CASE_EXPORT_HEADERS order (plus id)."""
    rows = []
    if cases is None or cases.empty:
        return rows

    for case in cases.to_dict('records'):
        products = products_by_case.get(case.get('id'))
        case_date = case.get('case_date')
        row = {
            'id': case.get('id'),
            'case_code': _text(case.get('case_code')),
            'case_date': None if is_missing(case_date) else pd.Timestamp(case_date).date(),
            'specialist': _text(case.get('submitted_by_name')),
            'line': _text(case.get('line_name')),
            'status': STATUS_LABELS.get(case.get('status'), _text(case.get('status'))),
            'account': _text(case.get('account_name')),
            'account_type': _text(case.get('account_type')),
            'doctor': _text(case.get('doctor_name')),
        }
        for n, cell in enumerate(product_columns(products, limit), 1):
            for field_name, _ in _PRODUCT_FIELDS:
                row[f'product{n}_{field_name}'] = cell[field_name]
        row['company_units'] = _case_units(case, products, company=True)
        row['competitor_units'] = _case_units(case, products, company=False)
        rows.append(row)

    return rows


# =============================================================================
# WORKBOOK
# =============================================================================

class CaseExport:
    """
    Excel generator for case tables.

    Usage:
        rows = case_table_rows(cases_df, products_by_case)
        excel_bytes = CaseExport().to_excel(rows, CASE_EXPORT_HEADERS)

        st.download_button(
            label="Download Cases",
            data=excel_bytes,
            file_name="mts_cases.xlsx",
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )
    """

    def __init__(self):
        self.wb = None
        self._init_styles()

    def _init_styles(self):
        self.header_fill = PatternFill(
            start_color=EXCEL_STYLES['header_fill_color'],
            end_color=EXCEL_STYLES['header_fill_color'],
            fill_type='solid'
        )
        self.header_font = Font(bold=True, color=EXCEL_STYLES['header_font_color'], size=11)
        self.title_font = Font(bold=True, size=16)

        thin_border = Side(style='thin', color='000000')
        self.cell_border = Border(left=thin_border, right=thin_border, top=thin_border, bottom=thin_border)

        self.center_align = Alignment(horizontal='center', vertical='center')
        self.right_align = Alignment(horizontal='right', vertical='center')

    def to_excel(
        self,
        rows: List[Dict[str, Any]],
        headers: Optional[Dict[str, str]] = None,
        sheet_title: str = "Cases",
        metrics: Optional[Dict[str, Any]] = None,
    ) -> BytesIO:
        """
        Write rows under the given headers (key -> column title).

        Returns:
            BytesIO containing the Excel file
        """
        headers = headers or CASE_EXPORT_HEADERS
        self.wb = Workbook()
        ws = self.wb.active
        ws.title = sheet_title

        for col_idx, (key, title) in enumerate(headers.items(), 1):
            cell = ws.cell(row=1, column=col_idx, value=title)
            cell.fill = self.header_fill
            cell.font = self.header_font
            cell.alignment = self.center_align
            cell.border = self.cell_border
            ws.column_dimensions[get_column_letter(col_idx)].width = max(12, min(len(title) + 4, 30))

        for row_idx, row in enumerate(rows, 2):
            for col_idx, key in enumerate(headers.keys(), 1):
                value = row.get(key, '')
                cell = ws.cell(row=row_idx, column=col_idx, value=value)
                cell.border = self.cell_border
                if key.endswith('units'):
                    cell.number_format = EXCEL_STYLES['number_format']
                    cell.alignment = self.right_align
                elif key == 'case_date' and value:
                    cell.number_format = EXCEL_STYLES['date_format']

        ws.freeze_panes = 'A2'

        if metrics:
            self._create_summary_sheet(metrics)

        output = BytesIO()
        self.wb.save(output)
        output.seek(0)
        logger.info(f"Excel export created: {len(rows):,} rows")
        return output

    def _create_summary_sheet(self, metrics: Dict[str, Any]):
        ws = self.wb.create_sheet("Summary")
        ws.cell(row=1, column=1, value="Market Tracking Summary").font = self.title_font
        ws.cell(row=2, column=1, value="Generated:")
        ws.cell(row=2, column=2, value=datetime.now().strftime('%Y-%m-%d %H:%M'))

        labels = [
            ('total_case_count', "Total Cases"),
            ('company_case_count', "Company Cases"),
            ('competitor_case_count', "Competitor Cases"),
            ('mixed_case_count', "Mixed Cases"),
            ('company_units', "Company Units"),
            ('competitor_units', "Competitor Units"),
            ('active_doctors', "Active Doctors"),
            ('active_accounts', "Active Accounts"),
        ]
        row = 4
        for key, label in labels:
            ws.cell(row=row, column=1, value=label)
            cell = ws.cell(row=row, column=2, value=metrics.get(key, 0))
            cell.number_format = EXCEL_STYLES['number_format']
            cell.alignment = self.right_align
            row += 1

        ws.column_dimensions['A'].width = 25
        ws.column_dimensions['B'].width = 15


__all__ = ['CASE_EXPORT_HEADERS', 'product_columns', 'case_table_rows', 'CaseExport']
