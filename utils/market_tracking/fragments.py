# utils/market_tracking/fragments.py
"""
Streamlit Fragments for Market Tracking

Sections shared by the admin, manager and employee dashboards. Forms and
review actions run as @st.fragment so they rerun on their own widgets
without reloading the whole page.

VERSION: 1.3.0

CHANGELOG:
- v1.3.0: Two-run submit guard for forms, unexpected errors shown inline, messaging flag
- v1.2.0: Admin compose / sent messages, reject reason dialog
- v1.1.0: Case, doctor and account submission forms
- v1.0.0: Stat cards, chart grid, cases table with Excel export
"""

import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, List, MutableMapping, Optional

import pandas as pd
import streamlit as st

from utils.config import config
from utils.db import BackendError

from .approvals import ApprovalError, ApprovalService, build_case_product_rows, entity_label
from .badge import unread_poller
from .charts import MarketCharts, get_theme_name, set_theme_name
from .constants import (
    ACCOUNT_SPECIALIST_SLOTS, ACCOUNT_TYPES, COLORS, DOCTOR_SPECIALIST_SLOTS,
    MAX_PRODUCTS_PER_CASE, OTHERS_LABEL, ROLES, STATUS_LABELS,
)
from .controller import DashboardController, DashboardView
from .export import CASE_EXPORT_HEADERS, CaseExport, case_table_rows
from .models import as_key, frame_to_records, is_missing
from .notifications import MessageService, NotificationService
from .validators import validate_password_change

logger = logging.getLogger(__name__)

EXCEL_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

SLOT_LABELS = {
    'owner_employee_id': "Product Specialist *",
    'secondary_employee_id': "Product Specialist 2",
    'tertiary_employee_id': "Product Specialist 3",
    'quaternary_employee_id': "Product Specialist 4",
    'quinary_employee_id': "Product Specialist 5",
}


# =============================================================================
# THEME
# =============================================================================

def render_theme_toggle():
    """Sidebar light/dark toggle. Switching reruns so every chart redraws."""
    current = get_theme_name()
    light = st.sidebar.toggle("☀️ Light charts", value=current == 'light', key='mts_theme_toggle')
    wanted = 'light' if light else 'dark'
    if wanted != current:
        set_theme_name(wanted)
        st.rerun()


# =============================================================================
# OVERVIEW: STAT CARDS + CHARTS
# =============================================================================

def _chart(chart):
    st.altair_chart(chart, use_container_width=True, theme=None)


def render_overview(view: DashboardView, role: str):
    """Stat cards followed by the chart grid for a role."""
    MarketCharts.render_stat_cards(view.metrics, show_entities=True)
    st.markdown("")

    theme = get_theme_name()
    charts = view.charts

    col1, col2 = st.columns(2)
    with col1:
        _chart(MarketCharts.build_share_donut(
            charts['cases_market_share'], "🥧 Cases Market Share", 'Cases', theme))
    with col2:
        _chart(MarketCharts.build_share_donut(
            charts['units_market_share'], "🥧 Units Market Share", 'Units', theme))

    col1, col2 = st.columns(2)
    with col1:
        _chart(MarketCharts.build_dual_monthly_chart(
            charts['cases_by_month'],
            {'company_cases': 'Company Cases', 'competitor_cases': 'Competitor Cases'},
            "📅 Cases by Month", 'Cases', theme))
    with col2:
        _chart(MarketCharts.build_dual_monthly_chart(
            charts['units_by_month'],
            {'company_units': 'Company Units', 'competitor_units': 'Competitor Units'},
            "📅 Units by Month", 'Units', theme))

    col1, col2 = st.columns(2)
    with col1:
        _chart(MarketCharts.build_breakdown_bar(
            charts['case_split'], "📊 Case Mix", COLORS['cases'], 'Cases', horizontal=False, theme=theme))
    with col2:
        _chart(MarketCharts.build_breakdown_bar(
            charts['account_type_split'], "🏥 Cases by Account Type", COLORS['accounts'], 'Cases',
            horizontal=False, theme=theme))

    col1, col2 = st.columns(2)
    with col1:
        _chart(MarketCharts.build_breakdown_bar(
            charts['units_by_product'], "💊 Units by Product (Top 10)", COLORS['company'], 'Units', theme=theme))
    with col2:
        _chart(MarketCharts.build_breakdown_bar(
            charts['cases_by_product'], "💊 Cases by Product (Top 10)", COLORS['cases'], 'Cases', theme=theme))

    col1, col2 = st.columns(2)
    with col1:
        _chart(MarketCharts.build_breakdown_bar(
            charts['units_per_category'], "🗂️ Units per Category", COLORS['doctors'], 'Units', theme=theme))
    with col2:
        _chart(MarketCharts.build_breakdown_bar(
            charts['cases_by_company_category'], "🗂️ Company Cases per Category", COLORS['company'], 'Cases',
            theme=theme))

    _chart(MarketCharts.build_stacked_units_chart(charts['units_per_company'], theme=theme))
    st.caption(f"Companies outside the top 10 by units are grouped as **{OTHERS_LABEL}**.")

    if role != ROLES['EMPLOYEE']:
        col1, col2 = st.columns(2)
        with col1:
            _chart(MarketCharts.build_breakdown_bar(
                charts['cases_by_specialist'], "👤 Cases by Product Specialist", COLORS['cases'], 'Cases',
                theme=theme))
        with col2:
            _chart(MarketCharts.build_breakdown_bar(
                charts['units_by_specialist'], "👤 Units by Product Specialist", COLORS['company'], 'Units',
                theme=theme))

    if role == ROLES['ADMIN']:
        _chart(MarketCharts.build_breakdown_bar(
            charts['cases_by_line'], "🧭 Cases by Line", COLORS['accounts'], 'Cases', theme=theme))


# =============================================================================
# CASES TABLE
# =============================================================================

TABLE_COLUMNS = [
    'case_code', 'case_date', 'specialist', 'line', 'status', 'account', 'account_type', 'doctor',
    'product1_name', 'product1_units', 'product2_name', 'product2_units',
    'product3_name', 'product3_units', 'company_units', 'competitor_units',
]


@st.fragment
def cases_table_fragment(view: DashboardView, fragment_key: str = "cases",
                         service: Optional[ApprovalService] = None):
    """Cases table with Excel export. Admins also get a delete action."""
    rows = case_table_rows(view.cases, view.products_by_case)
    st.markdown(f"**Showing {len(rows):,} cases**")

    if not rows:
        st.info("No cases match the current filters")
        return

    table = pd.DataFrame(rows)
    display = table[[c for c in TABLE_COLUMNS if c in table.columns]]
    column_config = {}
    for key in display.columns:
        if key.endswith('units'):
            column_config[key] = st.column_config.NumberColumn(CASE_EXPORT_HEADERS[key], format="%d")
        elif key == 'case_date':
            column_config[key] = st.column_config.DateColumn(CASE_EXPORT_HEADERS[key])
        else:
            column_config[key] = st.column_config.TextColumn(CASE_EXPORT_HEADERS[key])
    st.dataframe(display, column_config=column_config, use_container_width=True, hide_index=True, height=420)

    if st.button("📥 Export to Excel", key=f"{fragment_key}_export"):
        excel_bytes = CaseExport().to_excel(rows, CASE_EXPORT_HEADERS, metrics=view.metrics.to_dict())
        st.download_button(
            label="⬇️ Download",
            data=excel_bytes,
            file_name=f"mts_cases_{datetime.now().strftime('%Y%m%d_%H%M')}.xlsx",
            mime=EXCEL_MIME,
            key=f"{fragment_key}_download",
        )

    if service is not None and service.role == ROLES['ADMIN']:
        with st.expander("🗑️ Delete a case"):
            codes = {r['id']: r['case_code'] or str(r['id']) for r in rows}
            case_id = st.selectbox("Case", options=list(codes.keys()), format_func=lambda i: codes[i],
                                   key=f"{fragment_key}_delete_case")
            if st.button("Delete case", key=f"{fragment_key}_delete_btn", type="secondary"):
                try:
                    service.delete_case(case_id)
                except (ApprovalError, BackendError) as e:
                    st.error(f"❌ {e}")
                except Exception as e:
                    logger.exception(f"Deleting case {case_id} failed")
                    st.error(f"❌ Unexpected error: {e}")
                else:
                    st.success(f"✅ Case {codes[case_id]} deleted")
                    DashboardController.reload()
                    st.rerun()


# =============================================================================
# APPROVALS
# =============================================================================

@st.dialog("Reject request")
def reject_dialog(service: ApprovalService, record: Dict[str, Any]):
    """Reason prompt shown before a rejection is sent."""
    st.write(f"Reject **{entity_label(record['type'])}** \"{record.get('name')}\"?")
    reason = st.text_area("Reason (optional)", max_chars=500)
    col1, col2 = st.columns(2)
    with col1:
        if st.button("Reject", type="primary", use_container_width=True):
            try:
                service.reject(record, reason.strip() or None)
            except (ApprovalError, BackendError) as e:
                st.error(f"❌ {e}")
            except Exception as e:
                logger.exception(f"Rejecting {record.get('type')} {record.get('id')} failed")
                st.error(f"❌ Unexpected error: {e}")
            else:
                DashboardController.reload()
                st.rerun()
    with col2:
        if st.button("Cancel", use_container_width=True):
            st.rerun()


@st.fragment
def approvals_fragment(controller: DashboardController, service: ApprovalService, fragment_key: str = "approvals"):
    """Approval queue with approve / reject actions (reviewers only)."""
    queue = controller.approvals()
    reviewer = service.role in (ROLES['ADMIN'], ROLES['MANAGER'])

    st.subheader("✅ Approvals" if reviewer else "⏳ My Pending Requests")
    if queue.empty:
        st.info("Nothing waiting for approval")
        return

    type_options = ['all'] + sorted(queue['type'].unique().tolist())
    selected_type = st.radio(
        "Type", type_options, horizontal=True, key=f"{fragment_key}_type",
        format_func=lambda t: "All" if t == 'all' else entity_label(t),
    )
    if selected_type != 'all':
        queue = queue[queue['type'] == selected_type]

    st.caption(f"Showing **{len(queue)}** requests")

    for record in queue.to_dict('records'):
        with st.container(border=True):
            cols = st.columns([1.2, 3, 2, 1.6, 2.2] if reviewer else [1.2, 3, 2, 1.6])
            cols[0].markdown(f"**{entity_label(record['type'])}**")
            cols[1].write(record.get('name') or '-')
            cols[2].write(record.get('owner_name') or '-')
            cols[3].write(STATUS_LABELS.get(record['status'], record['status']))
            if not reviewer:
                continue
            with cols[4]:
                comment = st.text_input(
                    "Comment", key=f"{fragment_key}_comment_{record['id']}",
                    label_visibility="collapsed", placeholder="Comment (optional)",
                )
                approve_col, reject_col = st.columns(2)
                if approve_col.button("✅", key=f"{fragment_key}_approve_{record['id']}", help="Approve"):
                    try:
                        new_status = service.approve(record, comment.strip() or None)
                    except (ApprovalError, BackendError) as e:
                        st.error(f"❌ {e}")
                    except Exception as e:
                        logger.exception(f"Approving {record['type']} {record['id']} failed")
                        st.error(f"❌ Unexpected error: {e}")
                    else:
                        st.toast(f"{entity_label(record['type'])} moved to {STATUS_LABELS[new_status]}")
                        DashboardController.reload()
                        st.rerun()
                if reject_col.button("❌", key=f"{fragment_key}_reject_{record['id']}", help="Reject"):
                    reject_dialog(service, record)


# =============================================================================
# SUBMISSION FORMS
# =============================================================================

def _employee_options(employees: pd.DataFrame) -> Dict[str, str]:
    if employees is None or employees.empty:
        return {}
    return {as_key(r['id']): r['full_name'] or str(r['id']) for r in frame_to_records(employees)}


def _record_options(frame: pd.DataFrame) -> Dict[str, str]:
    if frame is None or frame.empty:
        return {}
    return {as_key(r['id']): r.get('name') or str(r['id']) for r in frame_to_records(frame)}


class SubmissionGuard:
    """
    Two-run submit for a form fragment.

    The click only queues the payload and reruns the fragment. That run
    renders the submit button disabled, performs the submission once and
    clears the flag, so a double click cannot submit twice.
    """

    def __init__(self, key: str, storage: Optional[MutableMapping] = None):
        self.key = key
        self.storage = st.session_state if storage is None else storage

    @property
    def processing(self) -> bool:
        return bool(self.storage.get(f"{self.key}_processing", False))

    @property
    def payload(self) -> Dict[str, Any]:
        return self.storage.get(f"{self.key}_payload") or {}

    def queue(self, payload: Dict[str, Any]) -> bool:
        """Store the payload for the next run; False if one is already queued."""
        if self.processing:
            return False
        self.storage[f"{self.key}_payload"] = payload
        self.storage[f"{self.key}_processing"] = True
        return True

    def run(self, submit: Callable[[Dict[str, Any]], Any]):
        """Submit the queued payload. The flag is cleared even when submit raises."""
        if not self.processing:
            return None
        payload = self.payload
        try:
            return submit(payload)
        finally:
            self.storage.pop(f"{self.key}_processing", None)
            self.storage.pop(f"{self.key}_payload", None)


def _show_result(result, success_message: str) -> bool:
    if result.errors:
        for err in result.errors:
            st.error(f"❌ {err}")
        return False
    st.success(f"✅ {success_message} ({STATUS_LABELS.get(result.status, result.status)})")
    DashboardController.reload()
    return True


def _run_submission(guard: SubmissionGuard, submit):
    """Run the queued submission; every failure ends up as an st.error."""
    try:
        return guard.run(submit)
    except BackendError as e:
        st.error(f"❌ {e.message}")
    except Exception as e:
        logger.exception(f"Submission '{guard.key}' failed")
        st.error(f"❌ Unexpected error: {e}")
    return None


@st.fragment
def case_form_fragment(controller: DashboardController, service: ApprovalService, fragment_key: str = "case_form"):
    """New case: approved doctor + account, date, notes, up to 7 product lines."""
    st.subheader("➕ New Case")

    doctors = _record_options(controller.approved('doctors'))
    accounts = _record_options(controller.approved('accounts'))
    products = controller.state.frame('products')
    product_labels = {
        as_key(r['id']): f"{r['name']} ({r.get('company_name') or ('Company' if r['is_company_product'] else 'Competitor')})"
        for r in frame_to_records(products)
    }

    if not doctors or not accounts:
        st.info("You need at least one approved doctor and one approved account to log a case.")
        return

    guard = SubmissionGuard(fragment_key)
    line_count = st.number_input(
        "Number of products", min_value=1, max_value=MAX_PRODUCTS_PER_CASE, value=1, step=1,
        key=f"{fragment_key}_lines",
    )

    with st.form(f"{fragment_key}_form", clear_on_submit=True):
        col1, col2, col3 = st.columns(3)
        with col1:
            doctor_id = st.selectbox("Doctor *", list(doctors.keys()), format_func=lambda i: doctors[i])
        with col2:
            account_id = st.selectbox("Account *", list(accounts.keys()), format_func=lambda i: accounts[i])
        with col3:
            case_date = st.date_input("Case Date *", value=date.today(), format="YYYY-MM-DD")

        lines = []
        for n in range(int(line_count)):
            pcol, ucol = st.columns([4, 1])
            with pcol:
                product_id = st.selectbox(
                    f"Product {n + 1}", [''] + list(product_labels.keys()),
                    format_func=lambda i: product_labels.get(i, "Select product..."),
                    key=f"{fragment_key}_product_{n}",
                )
            with ucol:
                units = st.number_input("Units", min_value=0, step=1, value=0, key=f"{fragment_key}_units_{n}")
            lines.append({'product_id': product_id or None, 'units': units})

        notes = st.text_area("Notes", max_chars=1000)
        submitted = st.form_submit_button(
            "✅ Submit Case", type="primary", use_container_width=True, disabled=guard.processing,
        )

    if submitted and guard.queue({
        'case': {'doctor_id': doctor_id, 'account_id': account_id, 'case_date': case_date,
                 'notes': notes.strip()},
        'lines': lines,
    }):
        st.rerun(scope="fragment")

    if guard.processing:
        def submit(payload):
            case = payload['case']
            return service.submit_case(
                case,
                build_case_product_rows(payload['lines'], products),
                _find(controller.state.frame('doctors'), case['doctor_id']),
                _find(controller.state.frame('accounts'), case['account_id']),
            )

        with st.spinner("Submitting case..."):
            result = _run_submission(guard, submit)
        if result is not None and _show_result(result, "Case submitted"):
            st.rerun()


def _find(frame: pd.DataFrame, record_id: Any) -> Optional[Dict[str, Any]]:
    for row in frame_to_records(frame):
        if as_key(row.get('id')) == as_key(record_id):
            return row
    return None


def _specialist_inputs(controller: DashboardController, service: ApprovalService, slots: List[str],
                       key_prefix: str) -> Dict[str, Any]:
    """Specialist selects; employees are always the owner of what they submit."""
    team = _employee_options(controller.team_employees())
    values = {}
    cols = st.columns(len(slots))
    for col, slot in zip(cols, slots):
        with col:
            if slot == 'owner_employee_id' and service.role == ROLES['EMPLOYEE']:
                own_name = (service.employee or {}).get('full_name') or "Me"
                st.text_input(SLOT_LABELS[slot], value=own_name, disabled=True, key=f"{key_prefix}_{slot}")
                values[slot] = service.employee_id
                continue
            options = [''] + list(team.keys())
            choice = st.selectbox(SLOT_LABELS[slot], options, format_func=lambda i: team.get(i, "-"),
                                  key=f"{key_prefix}_{slot}")
            values[slot] = choice or None
    return values


@st.fragment
def doctor_form_fragment(controller: DashboardController, service: ApprovalService, fragment_key: str = "doctor_form"):
    st.subheader("🩺 New Doctor")
    guard = SubmissionGuard(fragment_key)
    with st.form(f"{fragment_key}_form", clear_on_submit=True):
        col1, col2 = st.columns(2)
        with col1:
            name = st.text_input("Doctor Name *", max_chars=200)
            specialty = st.text_input("Specialty", max_chars=100)
        with col2:
            phone = st.text_input("Phone", max_chars=50)
            email = st.text_input("Email", max_chars=255, placeholder="doctor@example.com")
        specialists = _specialist_inputs(controller, service, DOCTOR_SPECIALIST_SLOTS, fragment_key)
        submitted = st.form_submit_button(
            "✅ Submit Doctor", type="primary", use_container_width=True, disabled=guard.processing,
        )

    if submitted and guard.queue({
        'name': name.strip(),
        'specialty': specialty.strip() or None,
        'phone': phone.strip() or None,
        'email_address': email.strip() or None,
        **specialists,
    }):
        st.rerun(scope="fragment")

    if guard.processing:
        name = guard.payload.get('name')
        result = _run_submission(guard, lambda payload: service.submit_doctor(
            payload, controller.state.frame('doctors'), controller.access))
        if result is not None and _show_result(result, f"Doctor \"{name}\" submitted"):
            st.rerun()


@st.fragment
def account_form_fragment(controller: DashboardController, service: ApprovalService, fragment_key: str = "account_form"):
    st.subheader("🏥 New Account")
    guard = SubmissionGuard(fragment_key)
    with st.form(f"{fragment_key}_form", clear_on_submit=True):
        col1, col2 = st.columns(2)
        with col1:
            name = st.text_input("Account Name *", max_chars=200)
            account_type = st.selectbox("Account Type *", [''] + ACCOUNT_TYPES,
                                        format_func=lambda t: t or "Select type...")
        with col2:
            governorate = st.text_input("Governorate", max_chars=100)
            address = st.text_area("Address", max_chars=500, height=80)
        specialists = _specialist_inputs(controller, service, ACCOUNT_SPECIALIST_SLOTS, fragment_key)
        submitted = st.form_submit_button(
            "✅ Submit Account", type="primary", use_container_width=True, disabled=guard.processing,
        )

    if submitted and guard.queue({
        'name': name.strip(),
        'account_type': account_type or None,
        'governorate': governorate.strip() or None,
        'address': address.strip() or None,
        **specialists,
    }):
        st.rerun(scope="fragment")

    if guard.processing:
        name = guard.payload.get('name')
        result = _run_submission(guard, lambda payload: service.submit_account(
            payload, controller.state.frame('accounts'), controller.access))
        if result is not None and _show_result(result, f"Account \"{name}\" submitted"):
            st.rerun()


def render_records_table(frame: pd.DataFrame, columns: Dict[str, str], empty_message: str):
    """Doctors / accounts list with status labels."""
    if frame is None or frame.empty:
        st.info(empty_message)
        return
    display = frame[[c for c in columns if c in frame.columns]].copy()
    if 'status' in display.columns:
        display['status'] = display['status'].map(lambda s: STATUS_LABELS.get(s, s))
    st.dataframe(display.rename(columns=columns), use_container_width=True, hide_index=True)


# =============================================================================
# NOTIFICATIONS & MESSAGES
# =============================================================================

@st.fragment
def notifications_fragment(user_id: Any, notifier: Optional[NotificationService] = None):
    notifier = notifier or NotificationService()
    notifications = notifier.fetch(user_id)

    col_header, col_action = st.columns([5, 1])
    with col_header:
        st.subheader(f"🔔 Notifications ({len(notifications)})")
    with col_action:
        if st.button("Mark all read", key="mts_notifications_read", disabled=notifications.empty):
            notifier.mark_all_read(user_id)
            st.rerun()

    if notifications.empty:
        st.caption("You're all caught up")
        return

    for row in notifications.to_dict('records'):
        created = row.get('created_at')
        when = '' if is_missing(created) else pd.Timestamp(created).strftime('%Y-%m-%d %H:%M')
        st.markdown(f"- {row['message']}  \n  <small>{when}</small>", unsafe_allow_html=True)


def _messaging_off() -> bool:
    if config.is_feature_enabled('MESSAGES'):
        return False
    st.caption("Messaging is turned off")
    return True


@st.fragment
def inbox_fragment(user_id: Any, messages: Optional[MessageService] = None):
    if _messaging_off():
        return
    messages = messages or MessageService()
    inbox = messages.fetch_received(user_id)
    st.subheader("✉️ Messages")

    if inbox.empty:
        st.caption("No messages")
        return

    for row in inbox.to_dict('records'):
        unread = not bool(row.get('is_read'))
        title = f"{'🔵 ' if unread else ''}{row.get('subject') or '(no subject)'}"
        with st.expander(title, expanded=False):
            sender = row.get('sender_name') or row.get('sender_username') or ''
            if sender:
                st.caption(f"From {sender}")
            st.write(row.get('message_text') or '')
            if unread and st.button("Mark as read", key=f"mts_msg_read_{row['message_id']}"):
                messages.mark_read(row['message_id'], user_id)
                st.rerun()


@st.fragment
def compose_message_fragment(sender_id: Any, users: pd.DataFrame, employees: pd.DataFrame,
                             messages: Optional[MessageService] = None):
    """Admin broadcast: pick users directly or a whole role."""
    if _messaging_off():
        return
    messages = messages or MessageService()
    st.subheader("📝 Compose Message")

    names = {as_key(e['id']): e['full_name'] for e in frame_to_records(employees)}
    recipients = {}
    for user in frame_to_records(users):
        if as_key(user['id']) == as_key(sender_id):
            continue
        label = names.get(as_key(user.get('employee_id'))) or user['username']
        recipients[as_key(user['id'])] = f"{label} ({user['role']})"

    with st.form("mts_compose_form", clear_on_submit=True):
        audience = st.radio("Send to", ["Selected users", "All managers", "All employees", "Everyone"],
                            horizontal=True)
        selected = st.multiselect("Recipients", list(recipients.keys()), format_func=lambda i: recipients[i])
        subject = st.text_input("Subject", max_chars=200)
        body = st.text_area("Message *", max_chars=4000)
        submitted = st.form_submit_button("📨 Send", type="primary", use_container_width=True)

    if not submitted:
        return

    role_by_user = {as_key(u['id']): u['role'] for u in frame_to_records(users)}
    if audience == "All managers":
        ids = [u for u in recipients if role_by_user.get(u) == ROLES['MANAGER']]
    elif audience == "All employees":
        ids = [u for u in recipients if role_by_user.get(u) == ROLES['EMPLOYEE']]
    elif audience == "Everyone":
        ids = list(recipients.keys())
    else:
        ids = selected
    display = audience if audience != "Selected users" else ", ".join(recipients[i] for i in ids[:3]) + (
        f" +{len(ids) - 3}" if len(ids) > 3 else '')

    try:
        messages.send(sender_id, subject.strip(), body.strip(), ids, display)
    except ValueError as e:
        st.error(f"❌ {e}")
    except BackendError as e:
        st.error(f"❌ Message not sent: {e.message}")
    except Exception as e:
        logger.exception("Sending message failed")
        st.error(f"❌ Unexpected error: {e}")
    else:
        st.success(f"✅ Message sent to {len(ids)} recipient(s)")


@st.fragment
def sent_messages_fragment(sender_id: Any, messages: Optional[MessageService] = None):
    if _messaging_off():
        return
    messages = messages or MessageService()
    sent = messages.fetch_sent(sender_id)
    st.subheader("📤 Sent Messages")
    if sent.empty:
        st.caption("No sent messages")
        return

    st.dataframe(
        sent[['subject', 'recipient_display', 'recipient_count', 'unread_count', 'created_at']],
        column_config={
            'subject': st.column_config.TextColumn("Subject"),
            'recipient_display': st.column_config.TextColumn("To"),
            'recipient_count': st.column_config.NumberColumn("Recipients"),
            'unread_count': st.column_config.NumberColumn("Unread"),
            'created_at': st.column_config.DatetimeColumn("Sent", format="YYYY-MM-DD HH:mm"),
        },
        use_container_width=True,
        hide_index=True,
    )

    labels = {m['id']: m.get('subject') or '(no subject)' for m in sent.to_dict('records')}
    to_delete = st.multiselect("Delete messages", list(labels.keys()), format_func=lambda i: labels[i],
                               key="mts_sent_delete")
    if to_delete and st.button("🗑️ Delete selected", key="mts_sent_delete_btn"):
        try:
            messages.delete(to_delete)
        except BackendError as e:
            st.error(f"❌ {e.message}")
        except Exception as e:
            logger.exception("Deleting sent messages failed")
            st.error(f"❌ Unexpected error: {e}")
        else:
            st.rerun()


# =============================================================================
# SIDEBAR
# =============================================================================

ACCESS_BADGES = {
    'full': ("🔓 Full Access", st.success),
    'team': ("👥 Team Access", st.info),
    'self': ("👤 Personal Access", st.warning),
}


def render_page_sidebar(auth, session: Dict[str, Any], access_level: str):
    """User card, theme toggle, unread poll, password change and logout."""
    employee = session.get('employee') or {}
    with st.sidebar:
        st.markdown(f"### 👤 {employee.get('full_name') or session.get('username')}")
        label, show = ACCESS_BADGES.get(access_level, ACCESS_BADGES['self'])
        show(label)
        caption = f"Role: {session.get('role')}"
        if employee.get('line_name'):
            caption += f" · Line: {employee['line_name']}"
        st.caption(caption)
        st.markdown("---")

    render_theme_toggle()
    unread_poller(session.get('user_id'), container=st.sidebar)

    with st.sidebar:
        if st.button("🔄 Reload data", use_container_width=True):
            DashboardController.reload()
            st.rerun()
        with st.expander("⚙️ Account"):
            password_change_form(auth, session.get('user_id'))
        if st.button("🚪 Logout", use_container_width=True):
            auth.logout()
            st.switch_page("app.py")

    if st.session_state.pop('mts_show_welcome', False):
        st.toast(f"👋🏻 Welcome back, {employee.get('full_name') or session.get('username')}!")


# =============================================================================
# ACCOUNT SETTINGS
# =============================================================================

def password_change_form(auth, user_id: Any):
    """Change own password: current, new, confirm."""
    with st.form("mts_password_form", clear_on_submit=True):
        st.markdown("**🔐 Change Password**")
        current = st.text_input("Current Password *", type="password")
        new = st.text_input("New Password *", type="password")
        confirm = st.text_input("Confirm New Password *", type="password")
        submitted = st.form_submit_button("✅ Update Password", type="primary", use_container_width=True)

    if submitted:
        errors = validate_password_change(current, new, confirm)
        if errors:
            for err in errors:
                st.error(f"❌ {err}")
            return
        try:
            success, message = auth.change_password(user_id, current, new)
        except BackendError as e:
            st.error(f"❌ {e.message}")
            return
        except Exception as e:
            logger.exception(f"Password change failed for user id {user_id}")
            st.error(f"❌ Unexpected error: {e}")
            return
        if success:
            st.success(f"✅ {message}")
        else:
            st.error(f"❌ {message}")


__all__ = [
    'SubmissionGuard',
    'render_theme_toggle',
    'render_overview',
    'cases_table_fragment',
    'approvals_fragment',
    'reject_dialog',
    'case_form_fragment',
    'doctor_form_fragment',
    'account_form_fragment',
    'render_records_table',
    'notifications_fragment',
    'inbox_fragment',
    'compose_message_fragment',
    'sent_messages_fragment',
    'render_page_sidebar',
    'password_change_form',
]
