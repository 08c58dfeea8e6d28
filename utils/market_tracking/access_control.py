# utils/market_tracking/access_control.py
"""
Role-based Access Control for Market Tracking

Handles data access permissions based on user role:
- admin: Full access to every case, doctor and account
- manager: Access to self + team members (recursive hierarchy over
  direct_manager_id and line_manager_id)
- employee: Access to own data only

The hierarchy is walked over the loaded employees frame; no extra backend
round trip is needed.
"""

import logging
from typing import Any, List, Optional, Sequence

import pandas as pd

from .constants import ROLES
from .models import as_key

logger = logging.getLogger(__name__)


class AccessControl:
    """
    Manage data access based on user role and employee hierarchy.

    Usage:
        access = AccessControl(
            role=session['role'],
            employee_id=session['employee_id'],
            employees=employees_df,
        )

        level = access.get_access_level()  # 'full', 'team', or 'self'
        ids = access.get_accessible_employee_ids()
        visible = access.filter_cases(cases_df)
        errors = access.validate_assignments([owner_id, secondary_id])
    """

    def __init__(self, role: str, employee_id: Any, employees: Optional[pd.DataFrame] = None):
        """
        Initialize access control.

        Args:
            role: User's role from session ('admin', 'manager', 'employee')
            employee_id: User's employee_id from session
            employees: Employees frame with id, direct_manager_id, line_manager_id
        """
        self.role = role.lower() if role else ''
        self.employee_id = as_key(employee_id)
        self._employees = employees if employees is not None else pd.DataFrame()
        self._team_ids: Optional[List[str]] = None

        logger.info(f"AccessControl initialized: role={self.role}, employee_id={self.employee_id}")

    # =========================================================================
    # ACCESS LEVEL DETERMINATION
    # =========================================================================

    def get_access_level(self) -> str:
        """
        Returns:
            'full' - admin
            'team' - manager (self + reports)
            'self' - everyone else
        """
        if self.role == ROLES['ADMIN']:
            return 'full'
        elif self.role == ROLES['MANAGER']:
            return 'team'
        else:
            return 'self'

    def can_view_all(self) -> bool:
        return self.get_access_level() == 'full'

    def set_employees(self, employees: pd.DataFrame):
        """Replace the employees frame (after a reload) and drop the cached team."""
        self._employees = employees if employees is not None else pd.DataFrame()
        self._team_ids = None

    # =========================================================================
    # TEAM MEMBERS
    # =========================================================================

    def get_team_member_ids(self) -> List[str]:
        """
        Self + every direct or indirect report.

        A report is anyone whose direct_manager_id or line_manager_id points
        at a team member. Results are cached after first call.
        """
        if self._team_ids is not None:
            return self._team_ids

        if not self.employee_id:
            logger.warning("No employee_id provided for team access")
            self._team_ids = []
            return self._team_ids

        reports = {}
        if not self._employees.empty:
            for row in self._employees.to_dict('records'):
                member = as_key(row.get('id'))
                for manager_col in ('direct_manager_id', 'line_manager_id'):
                    manager = as_key(row.get(manager_col))
                    if manager and member:
                        reports.setdefault(manager, []).append(member)

        team = [self.employee_id]
        seen = {self.employee_id}
        frontier = [self.employee_id]
        while frontier:
            next_frontier = []
            for manager in frontier:
                for member in reports.get(manager, []):
                    if member not in seen:
                        seen.add(member)
                        team.append(member)
                        next_frontier.append(member)
            frontier = next_frontier

        self._team_ids = team
        logger.info(f"Team hierarchy for employee {self.employee_id}: {len(team)} members")
        return self._team_ids

    def get_accessible_employee_ids(self) -> Optional[List[str]]:
        """
        Employee ids the user may see; None means unrestricted.
        """
        if self.can_view_all():
            return None
        if self.get_access_level() == 'team':
            return self.get_team_member_ids()
        return [self.employee_id] if self.employee_id else []

    def get_team_size(self) -> int:
        return len(self.get_team_member_ids())

    # =========================================================================
    # DATA FILTERING
    # =========================================================================

    def filter_dataframe(self, df: pd.DataFrame, employee_id_col: str = 'submitted_by_id') -> pd.DataFrame:
        """
        Filter DataFrame to only include accessible employees.

        Args:
            df: DataFrame to filter
            employee_id_col: Column name containing employee IDs
        """
        if df is None or df.empty:
            return df

        accessible_ids = self.get_accessible_employee_ids()
        if accessible_ids is None:
            return df

        if employee_id_col not in df.columns:
            logger.warning(f"Column '{employee_id_col}' not found in DataFrame")
            return df.head(0)

        allowed = set(accessible_ids)
        filtered = df[df[employee_id_col].map(as_key).isin(allowed)]
        logger.debug(f"Filtered DataFrame: {len(df)} -> {len(filtered)} rows")
        return filtered

    def filter_cases(self, cases: pd.DataFrame) -> pd.DataFrame:
        return self.filter_dataframe(cases, 'submitted_by_id')

    # =========================================================================
    # PERMISSION CHECKS
    # =========================================================================

    def validate_assignments(self, specialist_ids: Sequence[Any]) -> List[str]:
        """
        Check the specialists assigned to a doctor or account.

        Returns:
            Error messages (empty when the assignment is valid)
        """
        errors = []
        ids = [as_key(i) for i in specialist_ids if as_key(i)]

        if len(set(ids)) != len(ids):
            errors.append("Product specialists must be unique.")

        accessible_ids = self.get_accessible_employee_ids()
        if accessible_ids is not None:
            allowed = set(accessible_ids)
            outside = [i for i in dict.fromkeys(ids) if i not in allowed]
            if outside:
                errors.append("Product specialists must belong to your team.")
                logger.warning(f"Assignment outside team rejected: {outside}")

        return errors

    def __repr__(self) -> str:
        return (
            f"AccessControl(role='{self.role}', "
            f"employee_id={self.employee_id}, "
            f"level='{self.get_access_level()}')"
        )


__all__ = ['AccessControl']
