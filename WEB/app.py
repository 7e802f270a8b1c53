"""
MediCrypt — Web Edition
========================

Streamlit application entry point.

Launch:
    cd medicrypt
    streamlit run WEB/app.py
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

# -- Ensure project root is importable ------------------------------------
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

# -- Ensure WEB/ directory is importable ----------------------------------
_web_root = str(Path(__file__).resolve().parent)
if _web_root not in sys.path:
    sys.path.insert(0, _web_root)

import streamlit as st  # noqa: E402

from profile_store import ROLES, get_role, set_role  # noqa: E402
from utils import load_settings  # noqa: E402

logging.basicConfig(
    level=load_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# ---------------------------------------------------------------------------
# Page config — must be the first Streamlit command
# ---------------------------------------------------------------------------

st.set_page_config(
    page_title="MediCrypt",
    page_icon="🩻",
    layout="wide",
    initial_sidebar_state="expanded",
)

# ---------------------------------------------------------------------------
# Custom CSS
# ---------------------------------------------------------------------------

st.markdown(
    """
    <style>
    .stButton > button[kind="primary"] {
        background-color: #2a7ab0;
        border-color: #2a7ab0;
    }
    .stButton > button[kind="primary"]:hover {
        background-color: #21648f;
        border-color: #21648f;
    }
    .stTabs [data-baseweb="tab-panel"] {
        padding-top: 1rem;
    }
    .medicrypt-header {
        text-align: center;
        padding: 1rem 0 0.5rem 0;
    }
    .medicrypt-header h1 {
        font-size: 2.2rem;
        margin-bottom: 0.2rem;
    }
    .medicrypt-header p {
        color: #8a9bb0;
        font-size: 0.95rem;
    }
    </style>
    """,
    unsafe_allow_html=True,
)

# ---------------------------------------------------------------------------
# Header
# ---------------------------------------------------------------------------

st.markdown(
    """
    <div class="medicrypt-header">
        <h1>🩻 MediCrypt</h1>
        <p>Authenticated medical-image encryption — AES-256-GCM with Rubik's-cube scrambling</p>
    </div>
    """,
    unsafe_allow_html=True,
)

# ---------------------------------------------------------------------------
# Sidebar
# ---------------------------------------------------------------------------

with st.sidebar:
    st.markdown("### Session")
    current = get_role()
    role = st.radio(
        "Role",
        ROLES,
        index=ROLES.index(current),
        format_func=str.capitalize,
        key="sidebar_role",
    )
    if role != current:
        set_role(role)
        st.rerun()
    st.markdown("---")
    st.markdown("#### Security Notice")
    st.markdown(
        "• Every file gets its own random 256-bit key.  \n"
        "• Keys exist **only** in this browser session.  \n"
        "• Closing the tab forgets all saved keys.  \n"
        "• Download each key file and store it safely."
    )
    st.markdown("---")
    st.caption("MediCrypt v1.0 — Web Edition")

# ---------------------------------------------------------------------------
# Tabs
# ---------------------------------------------------------------------------

from tabs.encrypt_tab import render as render_encrypt  # noqa: E402
from tabs.decrypt_tab import render as render_decrypt  # noqa: E402
from tabs.keys_tab import render as render_keys  # noqa: E402

tab_enc, tab_dec, tab_keys = st.tabs(["🔒 Encrypt", "🔓 Decrypt", "🔑 Keys"])

with tab_enc:
    render_encrypt()

with tab_dec:
    render_decrypt()

with tab_keys:
    render_keys()
