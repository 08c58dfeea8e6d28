# utils/market_tracking/constants.py
"""
Constants for Market Tracking Module

Centralized configuration for:
- Role and approval status definitions
- Entity / notification types
- Case form limits
- Color schemes and chart themes
"""

# =====================================================================
# ROLE DEFINITIONS
# =====================================================================

ROLES = {
    'ADMIN': 'admin',
    'MANAGER': 'manager',
    'EMPLOYEE': 'employee',
}

REVIEWER_ROLES = ['admin', 'manager']

# =====================================================================
# APPROVAL WORKFLOW
# =====================================================================

APPROVAL_STATUS = {
    'PENDING_MANAGER': 'pending_manager',
    'PENDING_ADMIN': 'pending_admin',
    'APPROVED': 'approved',
    'REJECTED': 'rejected',
}

PENDING_STATUSES = ['pending_manager', 'pending_admin']

STATUS_LABELS = {
    'pending_manager': 'Pending Manager',
    'pending_admin': 'Pending Admin',
    'approved': 'Approved',
    'rejected': 'Rejected',
}

# =====================================================================
# ENTITY DEFINITIONS
# =====================================================================

ACCOUNT_TYPES = ['Private', 'UPA', 'Military']

ENTITY_TYPES = {
    'DOCTOR': 'doctor',
    'ACCOUNT': 'account',
    'CASE': 'case',
    'PRODUCT': 'product',
    'EMPLOYEE': 'employee',
}

# Table each approvable entity lives in
ENTITY_TABLES = {
    'doctor': 'doctors',
    'account': 'accounts',
    'case': 'cases',
}

NOTIFICATION_TYPES = {
    'APPROVAL': 'approval',
    'INFO': 'info',
}

# =====================================================================
# CASE FORM / TABLE LIMITS
# =====================================================================

MAX_PRODUCTS_PER_CASE = 7

# Product columns flattened into case tables and exports
CASE_PRODUCT_COLUMNS = 12

DOCTOR_SPECIALIST_SLOTS = [
    'owner_employee_id',
    'secondary_employee_id',
    'tertiary_employee_id',
    'quaternary_employee_id',
    'quinary_employee_id',
]

ACCOUNT_SPECIALIST_SLOTS = [
    'owner_employee_id',
    'secondary_employee_id',
    'tertiary_employee_id',
]

# =====================================================================
# COLOR SCHEME
# =====================================================================

COLORS = {
    "company": "#22d3ee",       # Cyan
    "competitor": "#ec4899",    # Pink
    "cases": "#6366f1",         # Indigo
    "accounts": "#f59e0b",      # Amber
    "doctors": "#38bdf8",       # Sky
}

# Aggregated tail bars ("Other Companies", "Others") always use this color
OTHERS_COLOR = "#facc15"
OTHERS_LABEL = "Other Companies"
COMPANY_LABEL = "Company"

UNKNOWN_LABEL = "Unknown"
UNCATEGORIZED_LABEL = "Uncategorized"
UNKNOWN_PRODUCT_LABEL = "Unknown Product"

CHART_PALETTE = [
    "#6366f1", "#22d3ee", "#ec4899", "#f59e0b", "#38bdf8",
    "#10b981", "#a855f7", "#ef4444", "#14b8a6", "#8b5cf6",
    "#f97316", "#84cc16",
]

THEMES = {
    "dark": {
        "text": "#ffffff",
        "grid": "rgba(148,163,184,0.2)",
        "background": "#0b1120",
        "tooltip_bg": "rgba(15,23,42,0.9)",
    },
    "light": {
        "text": "#1f2937",
        "grid": "rgba(209,213,219,0.5)",
        "background": "#ffffff",
        "tooltip_bg": "rgba(243,244,246,0.95)",
    },
}

DEFAULT_THEME = "dark"
THEME_STATE_KEY = "mts.theme"

# =====================================================================
# CHART SETTINGS
# =====================================================================

CHART_HEIGHT = 320
MARKET_SHARE_COMPETITORS = 5
DEFAULT_TOP_N = 10

# =====================================================================
# BADGE MESSAGES
# =====================================================================

BADGE_UPDATE = 'UPDATE_BADGE'
BADGE_CLEAR = 'CLEAR_BADGE'

APP_NAME = 'Market Tracking System'
