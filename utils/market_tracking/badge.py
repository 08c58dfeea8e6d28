# utils/market_tracking/badge.py
"""
App icon badge bridge and unread-message polling.

The page posts {'type': 'UPDATE_BADGE', 'count': n} or {'type': 'CLEAR_BADGE'}
to the active service worker, which sets or clears the OS-level badge.

Polling runs inside an st.fragment with run_every, so it only lives while
the page that rendered it is open.
"""

import json
import logging
from typing import Any, Dict, Optional

import streamlit as st
import streamlit.components.v1 as components

from utils.config import config

from .constants import BADGE_CLEAR, BADGE_UPDATE
from .notifications import MessageService

logger = logging.getLogger(__name__)

UNREAD_STATE_KEY = 'mts.unreadCount'

_BRIDGE_TEMPLATE = """
<script>
(function () {{
    const message = {payload};
    const nav = (window.parent && window.parent.navigator) || navigator;
    if (nav && nav.serviceWorker && nav.serviceWorker.controller) {{
        nav.serviceWorker.controller.postMessage(message);
    }}
}})();
</script>
"""


def badge_message(count: Any) -> Dict[str, Any]:
    """Service worker message for an unread count (negative counts clamp to 0)."""
    try:
        count = max(int(count or 0), 0)
    except (TypeError, ValueError):
        count = 0
    if count == 0:
        return {'type': BADGE_CLEAR}
    return {'type': BADGE_UPDATE, 'count': count}


def render_badge_bridge(count: Any):
    """Post the badge message from a zero-height HTML component."""
    message = badge_message(count)
    components.html(_BRIDGE_TEMPLATE.format(payload=json.dumps(message)), height=0)


def unread_poller(
    user_id: Any,
    interval: Optional[int] = None,
    messages: Optional[MessageService] = None,
    container=None,
):
    """
    Start the unread-message poll for the current page.

    Every `interval` seconds the fragment reruns: it refreshes the unread
    count in session state, redraws the indicator and updates the badge.
    """
    if not config.is_feature_enabled('MESSAGES'):
        return

    interval = interval or config.get_app_setting('UNREAD_POLL_SECONDS', 30)
    service = messages or MessageService()
    ctx = container if container else st
    badge_enabled = config.is_feature_enabled('BADGE')

    @st.fragment(run_every=interval)
    def _poll():
        count = service.unread_count(user_id)
        previous = st.session_state.get(UNREAD_STATE_KEY)
        st.session_state[UNREAD_STATE_KEY] = count

        if count:
            st.caption(f"✉️ {count} unread message{'s' if count != 1 else ''}")
        if badge_enabled and count != previous:
            render_badge_bridge(count)
            logger.debug(f"Badge updated for user {user_id}: {count}")

    with ctx.container():
        _poll()


__all__ = ['UNREAD_STATE_KEY', 'badge_message', 'render_badge_bridge', 'unread_poller']
