"""Shared fixtures: an in-memory SQLite backend and small case datasets."""

import pandas as pd
import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from utils import db
from utils.market_tracking.models import normalize_case_products, normalize_cases

APPROVAL_COLUMNS = """
    status TEXT,
    created_by TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    manager_id TEXT,
    manager_comment TEXT,
    manager_approved_at TEXT,
    admin_id TEXT,
    admin_comment TEXT,
    approved_at TEXT,
    rejected_at TEXT
"""

SCHEMA = [
    "CREATE TABLE lines (id TEXT PRIMARY KEY, name TEXT, description TEXT)",
    "CREATE TABLE companies (id TEXT PRIMARY KEY, name TEXT, is_company BOOLEAN)",
    """CREATE TABLE users (
        id TEXT PRIMARY KEY, username TEXT UNIQUE, role TEXT, employee_id TEXT,
        password_hash TEXT, password_salt TEXT, is_active BOOLEAN DEFAULT 1,
        last_login TEXT, password_updated_at TEXT
    )""",
    """CREATE TABLE employees (
        id TEXT PRIMARY KEY, code TEXT, first_name TEXT, last_name TEXT, position TEXT,
        role TEXT, manager_level TEXT, line_id TEXT, area TEXT,
        direct_manager_id TEXT, line_manager_id TEXT, is_active BOOLEAN DEFAULT 1,
        email TEXT, phone TEXT
    )""",
    """CREATE TABLE products (
        id TEXT PRIMARY KEY, name TEXT, category TEXT, sub_category TEXT,
        company_id TEXT, line_id TEXT, is_company_product BOOLEAN, is_active BOOLEAN DEFAULT 1
    )""",
    f"""CREATE TABLE doctors (
        id TEXT PRIMARY KEY, name TEXT, specialty TEXT, phone TEXT, email_address TEXT,
        owner_employee_id TEXT, secondary_employee_id TEXT, tertiary_employee_id TEXT,
        quaternary_employee_id TEXT, quinary_employee_id TEXT, line_id TEXT,
        {APPROVAL_COLUMNS}
    )""",
    f"""CREATE TABLE accounts (
        id TEXT PRIMARY KEY, name TEXT, account_type TEXT, address TEXT, governorate TEXT,
        owner_employee_id TEXT, secondary_employee_id TEXT, tertiary_employee_id TEXT,
        line_id TEXT,
        {APPROVAL_COLUMNS}
    )""",
    f"""CREATE TABLE cases (
        id TEXT PRIMARY KEY, case_code TEXT, submitted_by TEXT, doctor_id TEXT,
        account_id TEXT, case_date TEXT, notes TEXT,
        {APPROVAL_COLUMNS}
    )""",
    """CREATE TABLE case_products (
        id TEXT PRIMARY KEY, case_id TEXT, product_id TEXT, product_name TEXT,
        company_name TEXT, category TEXT, sub_category TEXT,
        is_company_product BOOLEAN, units INTEGER, sequence INTEGER
    )""",
    """CREATE TABLE notifications (
        id TEXT PRIMARY KEY, user_id TEXT, entity_type TEXT, entity_id TEXT,
        message TEXT, is_read BOOLEAN DEFAULT 0, read_at TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )""",
    """CREATE TABLE messages (
        id TEXT PRIMARY KEY, sender_id TEXT, subject TEXT, message_text TEXT,
        recipient_display TEXT, created_at TEXT DEFAULT CURRENT_TIMESTAMP, updated_at TEXT
    )""",
    """CREATE TABLE message_recipients (
        id TEXT PRIMARY KEY, message_id TEXT, recipient_id TEXT,
        is_read BOOLEAN DEFAULT 0, read_at TEXT
    )""",
    """CREATE VIEW v_case_details AS
        SELECT c.*, c.submitted_by AS submitted_by_id,
               e.first_name || ' ' || e.last_name AS submitted_by_name,
               d.name AS doctor_name, a.name AS account_name, a.account_type AS account_type,
               l.name AS line_name
        FROM cases c
        LEFT JOIN employees e ON e.id = c.submitted_by
        LEFT JOIN doctors d ON d.id = c.doctor_id
        LEFT JOIN accounts a ON a.id = c.account_id
        LEFT JOIN lines l ON l.id = e.line_id""",
    """CREATE VIEW v_doctor_details AS
        SELECT d.*, e.first_name || ' ' || e.last_name AS owner_name
        FROM doctors d LEFT JOIN employees e ON e.id = d.owner_employee_id""",
    """CREATE VIEW v_account_details AS
        SELECT a.*, e.first_name || ' ' || e.last_name AS owner_name
        FROM accounts a LEFT JOIN employees e ON e.id = a.owner_employee_id""",
    """CREATE VIEW v_message_details AS
        SELECT r.message_id, r.recipient_id, r.is_read, r.read_at,
               m.subject, m.message_text, m.sender_id, m.created_at,
               u.username AS sender_name
        FROM message_recipients r
        JOIN messages m ON m.id = r.message_id
        LEFT JOIN users u ON u.id = m.sender_id""",
]


@pytest.fixture
def backend():
    """Fresh in-memory database installed as the gateway engine."""
    engine = create_engine(
        'sqlite://',
        poolclass=StaticPool,
        connect_args={'check_same_thread': False},
    )
    with engine.begin() as conn:
        for statement in SCHEMA:
            conn.execute(text(statement))

    db.set_db_engine(engine)
    yield engine
    db.set_db_engine(None)
    engine.dispose()


@pytest.fixture
def org(backend):
    """
    Line, employees and users:

        admin (no employee)
        manager M1 -> employees E1, E2 (E2 via line manager)
        E3 reports to E1
        E4 outside the team
    """
    db.insert_rows('lines', [{'id': 'L1', 'name': 'Cardio'}, {'id': 'L2', 'name': 'Neuro'}])
    db.insert_rows('employees', [
        {'id': 'M1', 'first_name': 'Mona', 'last_name': 'Saleh', 'role': 'manager', 'line_id': 'L1'},
        {'id': 'E1', 'first_name': 'Emad', 'last_name': 'Ali', 'role': 'employee', 'line_id': 'L1',
         'direct_manager_id': 'M1'},
        {'id': 'E2', 'first_name': 'Eman', 'last_name': 'Nabil', 'role': 'employee', 'line_id': 'L1',
         'line_manager_id': 'M1'},
        {'id': 'E3', 'first_name': 'Omar', 'last_name': 'Fathy', 'role': 'employee', 'line_id': 'L1',
         'direct_manager_id': 'E1'},
        {'id': 'E4', 'first_name': 'Sara', 'last_name': 'Adel', 'role': 'employee', 'line_id': 'L2'},
    ])
    db.insert_rows('users', [
        {'id': 'U-admin', 'username': 'admin', 'role': 'admin', 'employee_id': None},
        {'id': 'U-M1', 'username': 'mona', 'role': 'manager', 'employee_id': 'M1'},
        {'id': 'U-E1', 'username': 'emad', 'role': 'employee', 'employee_id': 'E1'},
        {'id': 'U-E2', 'username': 'eman', 'role': 'employee', 'employee_id': 'E2'},
        {'id': 'U-E4', 'username': 'sara', 'role': 'employee', 'employee_id': 'E4'},
    ])
    return backend


def session_for(user_id, username, role, employee_id, employee=None):
    return {
        'user_id': user_id,
        'username': username,
        'role': role,
        'employee_id': employee_id,
        'employee': employee or {'id': employee_id, 'line_id': 'L1',
                                 'direct_manager_id': 'M1', 'line_manager_id': None},
    }


@pytest.fixture
def employee_session():
    return session_for('U-E1', 'emad', 'employee', 'E1')


@pytest.fixture
def manager_session():
    return session_for('U-M1', 'mona', 'manager', 'M1',
                       {'id': 'M1', 'line_id': 'L1', 'direct_manager_id': None, 'line_manager_id': None})


@pytest.fixture
def admin_session():
    return session_for('U-admin', 'admin', 'admin', None, {})


# =============================================================================
# IN-MEMORY DATASETS
# =============================================================================

def make_cases(rows):
    return normalize_cases(pd.DataFrame(rows))


def make_products(rows):
    return normalize_case_products(pd.DataFrame(rows))


@pytest.fixture
def three_cases():
    """Case A company only, B competitor only, C mixed."""
    cases = make_cases([
        {'id': 'A', 'doctor_id': 'D1', 'account_id': 'AC1', 'submitted_by_id': 'E1',
         'submitted_by_name': 'Emad Ali', 'account_type': 'Private', 'case_date': '2025-01-10'},
        {'id': 'B', 'doctor_id': 'D2', 'account_id': 'AC2', 'submitted_by_id': 'E2',
         'submitted_by_name': 'Eman Nabil', 'account_type': 'UPA', 'case_date': '2025-02-03'},
        {'id': 'C', 'doctor_id': 'D3', 'account_id': 'AC1', 'submitted_by_id': 'E1',
         'submitted_by_name': 'Emad Ali', 'account_type': 'Military', 'case_date': '2025-02-20'},
    ])
    products = make_products([
        {'case_id': 'A', 'product_id': 'P1', 'product_name': 'Stent X', 'company_name': 'Acme',
         'category': 'Stents', 'sub_category': 'Drug Eluting', 'is_company_product': True,
         'units': 5, 'sequence': 1},
        {'case_id': 'B', 'product_id': 'P2', 'product_name': 'Flow Y', 'company_name': 'Rival',
         'category': 'Stents', 'sub_category': 'Bare Metal', 'is_company_product': False,
         'units': 3, 'sequence': 1},
        {'case_id': 'C', 'product_id': 'P3', 'product_name': 'Balloon Z', 'company_name': 'Other Co',
         'category': 'Balloons', 'sub_category': 'Cutting', 'is_company_product': False,
         'units': 4, 'sequence': 2},
        {'case_id': 'C', 'product_id': 'P1', 'product_name': 'Stent X', 'company_name': 'Acme',
         'category': 'Stents', 'sub_category': 'Drug Eluting', 'is_company_product': True,
         'units': 2, 'sequence': 1},
    ])
    return cases, products
