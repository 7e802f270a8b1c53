"""
MediCrypt Web — Keys Tab
=========================

Admin-only inventory of the keys saved in this session: view, download as a
key file, forget.
"""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import streamlit as st

# -- project-root import ---------------------------------------------------
_root = str(Path(__file__).resolve().parent.parent.parent)
if _root not in sys.path:
    sys.path.insert(0, _root)

from profile_store import KeyRecord, can_manage_keys, forget_key, get_role, list_keys  # noqa: E402
from utils import key_file_contents  # noqa: E402


# ---------------------------------------------------------------------------
# Public render function
# ---------------------------------------------------------------------------

def render() -> None:
    """Render the Keys tab."""
    if not can_manage_keys(get_role()):
        st.info("Key inventory is available to administrators only.")
        return

    st.subheader("🔑 Saved Keys")
    records = list_keys()
    if not records:
        st.info("No keys yet. Encrypt a file to create one.")
        return

    st.caption(f"{len(records)} key(s) stored in this session")
    for record in records:
        _render_key_card(record)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _render_key_card(record: KeyRecord) -> None:
    try:
        created = datetime.fromisoformat(record.created).strftime("%Y-%m-%d %H:%M")
    except ValueError:
        created = record.created

    with st.expander(f"{record.filename}  ·  scrambling {record.scrambling_param}  ·  {created}"):
        st.code(record.key_hex, language=None)
        cols = st.columns(2)
        with cols[0]:
            st.download_button(
                "📥 Key file",
                data=key_file_contents(record.filename, record.key_hex, record.scrambling_param),
                file_name=f"{record.filename}.key.txt",
                mime="text/plain",
                key=f"keys_dl_{record.filename}",
                use_container_width=True,
            )
        with cols[1]:
            if st.button("🗑 Forget", key=f"keys_rm_{record.filename}", use_container_width=True):
                forget_key(record.filename)
                st.rerun()
