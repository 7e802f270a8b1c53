"""
MediCrypt Web — Encrypt Tab
============================

Upload an image, pick a scrambling level, receive the sealed container and
its freshly generated key.  The key is remembered in the session profile
under the original filename and offered as a downloadable key file.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import streamlit as st

# -- project-root import ---------------------------------------------------
_root = str(Path(__file__).resolve().parent.parent.parent)
if _root not in sys.path:
    sys.path.insert(0, _root)

import medicrypt  # noqa: E402

from profile_store import can_encrypt, get_role, remember_key  # noqa: E402
from utils import (  # noqa: E402
    human_file_size,
    is_accepted_type,
    key_file_contents,
    load_settings,
    safe_output_filename,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Public render function
# ---------------------------------------------------------------------------

def render() -> None:
    """Render the Encrypt tab."""
    settings = load_settings()

    if not can_encrypt(get_role()):
        st.warning("Your role is not allowed to encrypt files.")
        return

    uploaded = st.file_uploader(
        "Choose an image",
        type=None,
        key="enc_uploader",
        help="Accepted: " + ", ".join(settings.accept),
    )

    if uploaded:
        st.caption(f"**{uploaded.name}**  —  {human_file_size(uploaded.size)}")
        if uploaded.type and uploaded.type.startswith("image/"):
            st.image(uploaded.getvalue(), caption="Original", width=320)

    scrambling = st.slider(
        "Scrambling complexity",
        min_value=medicrypt.MIN_SCRAMBLE,
        max_value=medicrypt.MAX_SCRAMBLE,
        value=settings.default_scramble,
        key="enc_scramble",
        help="Rounds of keyed Rubik's-cube rotations applied under AES-256-GCM.",
    )

    st.markdown("---")
    if not st.button("🔒 Encrypt Image", type="primary", use_container_width=True, key="enc_action"):
        return

    if not uploaded:
        st.error("Please upload a file first.")
        return

    mime_type = uploaded.type or "application/octet-stream"
    if not is_accepted_type(mime_type, settings.accept):
        st.error(f"Unsupported file type '{mime_type}'.")
        return

    try:
        with st.spinner("Encrypting…"):
            result = medicrypt.encrypt(uploaded.getvalue(), uploaded.name, mime_type, scrambling)
    except medicrypt.ValidationError as e:
        st.error(f"Invalid input: {e}")
        return
    except medicrypt.EntropyFailure:
        st.error("The server's secure random source failed. No key was created.")
        raise
    except medicrypt.MediCryptError as e:
        st.error(f"Error: {e}")
        return

    remember_key(result)
    logger.info("Encrypted %r for role %s", result.filename, get_role())

    st.success(
        f"Image encrypted in {result.elapsed_ms:.2f} ms "
        f"({human_file_size(len(result.container))}). "
        f"Key saved to your profile for '{result.filename}'."
    )
    st.code(str(result.key), language=None)
    st.warning("This key is the only way to decrypt the file. Download or copy it now.")

    cols = st.columns(2)
    with cols[0]:
        st.download_button(
            "📥 Download encrypted file",
            data=result.container,
            file_name=safe_output_filename(result.filename, encrypting=True),
            mime="application/octet-stream",
            key="enc_download",
            use_container_width=True,
        )
    with cols[1]:
        st.download_button(
            "🔑 Download key file",
            data=key_file_contents(result.filename, str(result.key), scrambling),
            file_name=f"{result.filename}.key.txt",
            mime="text/plain",
            key="enc_key_download",
            use_container_width=True,
        )
