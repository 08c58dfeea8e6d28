# utils/market_tracking/__init__.py
"""
Market Tracking Module

Utilities behind the admin, manager and employee dashboards.

Components:
- models: Record types and frame normalization
- analytics: Case classification, stat metrics, top-N breakdowns
- filter_options / filters: Dual-row product filters and dashboard filters
- access_control: Role-based scoping (admin / manager / employee)
- queries: Role-scoped data loading with caching
- approvals: Approval workflow and submissions
- notifications: Approval notifications and admin messages
- charts: Altair visualizations
- export: Formatted Excel export
- badge: App icon badge bridge and unread polling
- controller: Page state and filtered dashboard views

Usage:
    from utils.market_tracking import (
        AccessControl,
        MarketQueries,
        DashboardController,
        ApprovalService,
        MarketCharts,
        CaseExport,
    )
"""

from .access_control import AccessControl
from .queries import MarketQueries
from .controller import DashboardController, PageState
from .approvals import ApprovalService, ApprovalError
from .notifications import NotificationService, MessageService
from .charts import MarketCharts
from .export import CaseExport
from .filters import CaseFilterState
from .filter_options import FilterOptionsExtractor
from .analytics import CaseMetrics, compute_case_metrics, group_case_products

# Constants
from .constants import (
    ROLES,
    APPROVAL_STATUS,
    STATUS_LABELS,
    ACCOUNT_TYPES,
    COLORS,
    OTHERS_COLOR,
    OTHERS_LABEL,
    MAX_PRODUCTS_PER_CASE,
    CHART_HEIGHT,
)

__all__ = [
    # Classes
    'AccessControl',
    'MarketQueries',
    'DashboardController',
    'PageState',
    'ApprovalService',
    'ApprovalError',
    'NotificationService',
    'MessageService',
    'MarketCharts',
    'CaseExport',
    'CaseFilterState',
    'FilterOptionsExtractor',
    'CaseMetrics',

    # Functions
    'compute_case_metrics',
    'group_case_products',

    # Constants
    'ROLES',
    'APPROVAL_STATUS',
    'STATUS_LABELS',
    'ACCOUNT_TYPES',
    'COLORS',
    'OTHERS_COLOR',
    'OTHERS_LABEL',
    'MAX_PRODUCTS_PER_CASE',
    'CHART_HEIGHT',
]

__version__ = '1.0.0'
