# utils/market_tracking/approvals.py
"""
Approval Workflow for Market Tracking

Lifecycle of doctors, accounts and cases:

    created -> pending_manager -> pending_admin -> approved
                     |                 |
                     +---- reject -----+--> record deleted

- Employees submit into pending_manager, managers into pending_admin,
  admins straight to approved.
- A reviewer moves a record one stage forward (admins may approve from
  either pending stage). Approved records never change.
- Rejection deletes the record (case products first) and notifies the
  submitter with the optional reason.

Multi-table writes (case + case products) run in one gateway transaction.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

import numpy as np
import pandas as pd

from utils import db

from .constants import APPROVAL_STATUS, ENTITY_TABLES, ROLES
from .models import as_key, frame_to_records, is_missing
from .notifications import NotificationService
from .validators import validate_account, validate_case, validate_doctor

logger = logging.getLogger(__name__)


class ApprovalError(Exception):
    """A reviewer tried a transition the workflow does not allow."""


@dataclass
class SubmissionResult:
    """Outcome of a form submission: validation messages or the new record id."""
    record_id: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    status: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.errors and self.record_id is not None


# =============================================================================
# STATE MACHINE
# =============================================================================

def initial_status(role: str) -> str:
    """Status a new record starts in, by submitter role."""
    if role == ROLES['ADMIN']:
        return APPROVAL_STATUS['APPROVED']
    if role == ROLES['MANAGER']:
        return APPROVAL_STATUS['PENDING_ADMIN']
    return APPROVAL_STATUS['PENDING_MANAGER']


def next_status(current: str, reviewer_role: str) -> str:
    """
    Status after an approval by reviewer_role.

    Raises:
        ApprovalError: approved/rejected records, or a reviewer at the wrong stage
    """
    if current == APPROVAL_STATUS['APPROVED']:
        raise ApprovalError("Approved records cannot be changed.")
    if current == APPROVAL_STATUS['REJECTED']:
        raise ApprovalError("Rejected records cannot be approved.")

    if reviewer_role == ROLES['ADMIN'] and current in (
        APPROVAL_STATUS['PENDING_MANAGER'], APPROVAL_STATUS['PENDING_ADMIN'],
    ):
        return APPROVAL_STATUS['APPROVED']
    if reviewer_role == ROLES['MANAGER'] and current == APPROVAL_STATUS['PENDING_MANAGER']:
        return APPROVAL_STATUS['PENDING_ADMIN']

    raise ApprovalError(f"A {reviewer_role or 'user'} cannot review a record in status '{current}'.")


def can_review(status: str, reviewer_role: str) -> bool:
    try:
        next_status(status, reviewer_role)
        return True
    except ApprovalError:
        return False


def generate_case_code(now: Optional[datetime] = None) -> str:
    """CASE-YYYYMMDD-<epoch milliseconds in base 36>."""
    now = now or datetime.now()
    millis = int(now.timestamp() * 1000)
    return f"CASE-{now:%Y%m%d}-{np.base_repr(millis, 36)}"


def entity_label(entity_type: str) -> str:
    return entity_type[:1].upper() + entity_type[1:]


# =============================================================================
# APPROVALS QUEUE
# =============================================================================

APPROVAL_COLUMNS = ['id', 'type', 'name', 'owner_name', 'status', 'created_at', 'payload']


def _queue_filter(role: str):
    if role == ROLES['ADMIN']:
        return lambda s: s not in (APPROVAL_STATUS['APPROVED'], APPROVAL_STATUS['REJECTED'])
    if role == ROLES['MANAGER']:
        return lambda s: s == APPROVAL_STATUS['PENDING_MANAGER']
    return lambda s: s != APPROVAL_STATUS['APPROVED']


def build_approvals_dataset(
    doctors: Optional[pd.DataFrame],
    accounts: Optional[pd.DataFrame],
    cases: Optional[pd.DataFrame],
    role: str,
) -> pd.DataFrame:
    """
    Approval queue rows for a role.

    - admin: everything neither approved nor rejected
    - manager: records waiting for a manager
    - employee: own records not yet approved
    """
    keep = _queue_filter(role)
    items = []

    for entity_type, frame in (('doctor', doctors), ('account', accounts)):
        for row in frame_to_records(frame):
            if not keep(row.get('status')):
                continue
            items.append({
                'id': row.get('id'),
                'type': entity_type,
                'name': row.get('name'),
                'owner_name': row.get('owner_name'),
                'status': row.get('status'),
                'created_at': row.get('created_at'),
                'payload': row,
            })

    for row in frame_to_records(cases):
        if not keep(row.get('status')):
            continue
        items.append({
            'id': row.get('id'),
            'type': 'case',
            'name': row.get('case_code') or f"Case {str(row.get('id'))[:6]}",
            'owner_name': row.get('submitted_by_name'),
            'status': row.get('status'),
            'created_at': row.get('created_at'),
            'payload': row,
        })

    return pd.DataFrame(items, columns=APPROVAL_COLUMNS)


def build_case_product_rows(
    lines: Iterable[Mapping[str, Any]],
    products: Optional[pd.DataFrame],
) -> List[Dict[str, Any]]:
    """
    Case product rows from form lines [{product_id, units}].

    Lines without a known product or with units <= 0 are dropped; sequence
    starts at 1 in form order.
    """
    catalog = {as_key(r.get('id')): r for r in frame_to_records(products)}
    rows = []
    for line in lines or []:
        product = catalog.get(as_key(line.get('product_id')))
        try:
            units = float(line.get('units') or 0)
        except (TypeError, ValueError):
            continue
        if not product or units <= 0:
            continue
        rows.append({
            'product_id': product.get('id'),
            'product_name': product.get('name'),
            'company_name': product.get('company_name'),
            'category': product.get('category'),
            'sub_category': product.get('sub_category'),
            'is_company_product': bool(product.get('is_company_product')),
            'units': int(units) if float(units).is_integer() else units,
            'sequence': len(rows) + 1,
        })
    return rows


# =============================================================================
# SERVICE
# =============================================================================

class ApprovalService:
    """
    Review and submission actions for one logged-in user.

    Usage:
        service = ApprovalService(session=session)
        service.approve(record)
        service.reject(record, reason="Wrong account")
        result = service.submit_case(case_values, product_rows, doctor, account)
    """

    def __init__(self, gateway=None, notifier: Optional[NotificationService] = None,
                 session: Optional[Mapping[str, Any]] = None):
        self.db = gateway or db
        self.notifier = notifier or NotificationService(self.db)
        self.session = dict(session or {})

    @property
    def role(self) -> str:
        return self.session.get('role') or ''

    @property
    def employee_id(self):
        return self.session.get('employee_id')

    @property
    def user_id(self):
        return self.session.get('user_id')

    @property
    def employee(self) -> Dict[str, Any]:
        return self.session.get('employee') or {}

    # =========================================================================
    # REVIEW
    # =========================================================================

    @staticmethod
    def _submitter_id(record: Mapping[str, Any]):
        payload = record.get('payload') or {}
        for key in ('owner_employee_id', 'submitted_by_id', 'submitted_by'):
            if not is_missing(payload.get(key)):
                return payload.get(key)
        return None

    def approve(self, record: Mapping[str, Any], comment: Optional[str] = None) -> str:
        """
        Move a record one stage forward.

        Returns:
            The new status

        Raises:
            ApprovalError: wrong stage or already approved
            BackendError: the update failed
        """
        entity_type = record['type']
        new_status = next_status(record.get('status'), self.role)
        now = datetime.now()

        if new_status == APPROVAL_STATUS['APPROVED']:
            values = {
                'status': new_status,
                'admin_id': self.employee_id,
                'admin_comment': comment or None,
                'approved_at': now,
                'rejected_at': None,
            }
        else:
            values = {
                'status': new_status,
                'manager_id': self.employee_id,
                'manager_comment': comment or None,
                'manager_approved_at': now,
            }

        self.db.update_rows(
            ENTITY_TABLES[entity_type], values, filters={'id': record['id']},
            context=f"update {entity_type} approval",
        )
        logger.info(f"{entity_label(entity_type)} {record['id']} -> {new_status} by {self.role}")

        self.notifier.remove_for_entity(self.user_id, entity_type, record['id'])

        label = entity_label(entity_type)
        name = record.get('name')
        if new_status == APPROVAL_STATUS['PENDING_ADMIN']:
            self.notifier.notify_admins(entity_type, record['id'], f'New {label} "{name}" pending your approval')
            message = f"{label} request approved by manager: {name}"
        else:
            message = f"{label} request approved: {name}"

        submitter = self._submitter_id(record)
        if submitter is not None:
            self.notifier.notify_employee(submitter, entity_type, record['id'], message)

        return new_status

    def reject(self, record: Mapping[str, Any], reason: Optional[str] = None):
        """
        Delete a pending record (case products first) and notify the submitter.

        Raises:
            ApprovalError: the reviewer may not act on this record
            BackendError: the delete failed
        """
        entity_type = record['type']
        if not can_review(record.get('status'), self.role):
            raise ApprovalError(f"A {self.role or 'user'} cannot reject a record in status '{record.get('status')}'.")

        with self.db.get_transaction() as conn:
            if entity_type == 'case':
                self.db.delete_rows(
                    'case_products', filters={'case_id': record['id']},
                    context='delete rejected case products', conn=conn,
                )
            self.db.delete_rows(
                ENTITY_TABLES[entity_type], filters={'id': record['id']},
                context=f"delete rejected {entity_type}", conn=conn,
            )
        logger.info(f"{entity_label(entity_type)} {record['id']} rejected by {self.role}")

        self.notifier.remove_for_entity(self.user_id, entity_type, record['id'])

        submitter = self._submitter_id(record)
        if submitter is not None:
            suffix = f" Reason: {reason}" if reason else ''
            self.notifier.notify_employee(
                submitter, entity_type, record['id'],
                f"{entity_label(entity_type)} request rejected: {record.get('name')}.{suffix}",
            )

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def _announce(self, entity_type: str, entity_id: Any, name: str, status: str):
        """Notify whoever reviews the new record next."""
        message = f'New {entity_label(entity_type)} "{name}" pending your approval'
        if status == APPROVAL_STATUS['PENDING_MANAGER']:
            manager_ids = [self.employee.get('direct_manager_id'), self.employee.get('line_manager_id')]
            if not self.notifier.notify_managers(manager_ids, entity_type, entity_id, message):
                logger.warning(f"No manager users notified for {entity_type} {entity_id}")
        elif status == APPROVAL_STATUS['PENDING_ADMIN']:
            self.notifier.notify_admins(entity_type, entity_id, message)

    def submit_case(
        self,
        case: Mapping[str, Any],
        products: List[Mapping[str, Any]],
        doctor: Optional[Mapping[str, Any]] = None,
        account: Optional[Mapping[str, Any]] = None,
    ) -> SubmissionResult:
        """
        Validate and insert a case with its products.

        The case and its products are written in one transaction, so a
        failed product insert leaves no case behind.

        Args:
            case: doctor_id, account_id, case_date, notes
            products: rows from build_case_product_rows
            doctor / account: the referenced records (must be approved)
        """
        errors = validate_case(case, products, doctor, account)
        if errors:
            return SubmissionResult(errors=errors)

        status = initial_status(self.role)
        case_code = generate_case_code()
        case_row = {
            'case_code': case_code,
            'submitted_by': self.employee_id,
            'doctor_id': case['doctor_id'],
            'account_id': case['account_id'],
            'case_date': case['case_date'],
            'notes': case.get('notes') or None,
            'status': status,
            'created_at': datetime.now(),
        }
        positive = [
            {**p, 'units': int(float(p.get('units') or 0))}
            for p in products if float(p.get('units') or 0) > 0
        ]

        with self.db.get_transaction() as conn:
            case_id = self.db.insert_rows('cases', [case_row], context='submit case', conn=conn)[0]
            self.db.insert_rows(
                'case_products',
                [{**p, 'case_id': case_id, 'sequence': i + 1} for i, p in enumerate(positive)],
                context='insert case products',
                conn=conn,
            )

        logger.info(f"Case {case_code} submitted ({len(positive)} products, status={status})")
        self._announce('case', case_id, case_code, status)
        return SubmissionResult(record_id=case_id, status=status)

    def submit_doctor(self, doctor: Mapping[str, Any], existing: Optional[pd.DataFrame] = None,
                      access=None) -> SubmissionResult:
        """Validate and insert a doctor. Employees always own what they submit."""
        values = dict(doctor)
        if self.role == ROLES['EMPLOYEE'] or is_missing(values.get('owner_employee_id')):
            values['owner_employee_id'] = self.employee_id
        if is_missing(values.get('line_id')):
            values['line_id'] = self.employee.get('line_id')

        errors = validate_doctor(values, existing, access)
        if errors:
            return SubmissionResult(errors=errors)

        status = initial_status(self.role)
        row = {k: v for k, v in values.items() if not is_missing(v)}
        row.update({'name': values['name'].strip(), 'status': status, 'created_by': self.employee_id})
        doctor_id = self.db.insert_rows('doctors', [row], context='submit doctor')[0]

        self._announce('doctor', doctor_id, row['name'], status)
        return SubmissionResult(record_id=doctor_id, status=status)

    def submit_account(self, account: Mapping[str, Any], existing: Optional[pd.DataFrame] = None,
                       access=None) -> SubmissionResult:
        values = dict(account)
        if self.role == ROLES['EMPLOYEE'] or is_missing(values.get('owner_employee_id')):
            values['owner_employee_id'] = self.employee_id
        if is_missing(values.get('line_id')):
            values['line_id'] = self.employee.get('line_id')

        errors = validate_account(values, existing, access)
        if errors:
            return SubmissionResult(errors=errors)

        status = initial_status(self.role)
        row = {k: v for k, v in values.items() if not is_missing(v)}
        row.update({'name': values['name'].strip(), 'status': status, 'created_by': self.employee_id})
        account_id = self.db.insert_rows('accounts', [row], context='submit account')[0]

        self._announce('account', account_id, row['name'], status)
        return SubmissionResult(record_id=account_id, status=status)

    def delete_case(self, case_id: Any) -> int:
        """Admin hard delete of a case and its products."""
        if self.role != ROLES['ADMIN']:
            raise ApprovalError("Only admins can delete cases.")
        with self.db.get_transaction() as conn:
            self.db.delete_rows('case_products', filters={'case_id': case_id},
                                context='delete case products', conn=conn)
            deleted = self.db.delete_rows('cases', filters={'id': case_id},
                                          context='delete case', conn=conn)
        logger.info(f"Case {case_id} deleted ({deleted} row)")
        return deleted


__all__ = [
    'ApprovalError',
    'SubmissionResult',
    'initial_status',
    'next_status',
    'can_review',
    'generate_case_code',
    'build_approvals_dataset',
    'build_case_product_rows',
    'ApprovalService',
]
