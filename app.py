# app.py
"""
Market Tracking System - Main Entry Point

Login page. After a successful login the user is routed to the dashboard
of their role (admin / manager / employee).

Version: 1.0.0
"""

import streamlit as st
from utils.auth import AuthManager, get_role_home
from utils.db import check_db_connection
from utils.market_tracking.constants import APP_NAME
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# ==================== PAGE CONFIGURATION ====================

APP_ICON = "💊"
APP_VERSION = "1.0.0"

st.set_page_config(
    page_title=APP_NAME,
    page_icon=APP_ICON,
    layout="wide",
    initial_sidebar_state="collapsed"
)

# ==================== CUSTOM CSS ====================

st.markdown("""
<style>
    .main-header {
        font-size: 2.5rem;
        font-weight: bold;
        margin-bottom: 0.5rem;
        color: #6366f1;
    }

    .sub-header {
        font-size: 1.1rem;
        color: #94a3b8;
        margin-bottom: 2rem;
    }

    .footer {
        text-align: center;
        color: #888;
        padding: 1rem;
        margin-top: 3rem;
        border-top: 1px solid #334155;
        font-size: 0.9rem;
    }
</style>
""", unsafe_allow_html=True)

# ==================== INITIALIZATION ====================

auth = AuthManager()

# ==================== HELPER FUNCTIONS ====================

def show_login_page():
    """Display the login page"""
    st.markdown(f'<p class="main-header">{APP_ICON} {APP_NAME}</p>', unsafe_allow_html=True)
    st.markdown('<p class="sub-header">Cases, doctors and accounts across the market</p>', unsafe_allow_html=True)

    # Check database connection
    db_ok, db_error = check_db_connection()
    if not db_ok:
        st.error(f"⚠️ {db_error}")
        st.info("Please check your network connection or contact IT support.")
        return

    # Center the login form
    col1, col2, col3 = st.columns([1, 2, 1])

    with col2:
        with st.form("login_form", clear_on_submit=False):
            st.markdown("#### 🔐 Login")

            username = st.text_input(
                "Username",
                placeholder="Enter your username",
                key="login_username"
            )
            password = st.text_input(
                "Password",
                type="password",
                placeholder="Enter your password",
                key="login_password"
            )

            submit = st.form_submit_button(
                "🔑 Login",
                type="primary",
                use_container_width=True
            )

            if submit:
                if not username or not password:
                    st.warning("Please enter both username and password")
                else:
                    with st.spinner("Authenticating..."):
                        success, result = auth.authenticate(username, password)

                    if success:
                        session = auth.login(result)
                        if not session:
                            st.error("Your profile could not be loaded. Please contact an administrator.")
                        else:
                            st.session_state['mts_show_welcome'] = True
                            st.switch_page(get_role_home(session['role']))
                    else:
                        st.error(result.get("error", "Authentication failed"))

        with st.expander("ℹ️ Need Help?"):
            st.info("""
            - Contact your administrator if you forgot your password
            - Session expires after 8 hours of inactivity
            """)


def route_logged_in_user():
    """Send a logged-in user straight to their dashboard"""
    session = auth.get_current_session()
    if not session:
        show_login_page()
        return

    home = get_role_home(session.get('role'))
    if home == 'app.py':
        st.error(f"🚫 Unknown role: {session.get('role')}")
        if st.button("🚪 Logout"):
            auth.logout()
            st.rerun()
        return

    st.switch_page(home)


# ==================== MAIN ====================

def main():
    """Main application entry point"""
    if not auth.check_session():
        show_login_page()
    else:
        route_logged_in_user()

    st.markdown(f"""
    <div class="footer">
        <strong>{APP_NAME}</strong> v{APP_VERSION}
    </div>
    """, unsafe_allow_html=True)


if __name__ == "__main__":
    main()
