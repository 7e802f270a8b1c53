"""
MediCrypt Web — Decrypt Tab
============================

Upload a ``.mcr`` container and paste its key.  The original filename, type
and scrambling level come from the container itself.  After a successful
decryption the entered key is cross-checked with the profile.
"""

from __future__ import annotations

import sys
from pathlib import Path

import streamlit as st

# -- project-root import ---------------------------------------------------
_root = str(Path(__file__).resolve().parent.parent.parent)
if _root not in sys.path:
    sys.path.insert(0, _root)

import medicrypt  # noqa: E402

from profile_store import can_decrypt, check_key, get_role  # noqa: E402
from utils import human_file_size, safe_output_filename  # noqa: E402


# ---------------------------------------------------------------------------
# Public render function
# ---------------------------------------------------------------------------

def render() -> None:
    """Render the Decrypt tab."""
    if not can_decrypt(get_role()):
        st.warning("Your role is not allowed to decrypt files.")
        return

    uploaded = st.file_uploader("Choose an encrypted file", key="dec_uploader")
    if uploaded:
        st.caption(f"**{uploaded.name}**  —  {human_file_size(uploaded.size)}")

    key_text = st.text_input(
        "Decryption key",
        type="password",
        placeholder="Paste the 64-character key…",
        key="dec_key",
    )

    st.markdown("---")
    if not st.button("🔓 Decrypt Image", type="primary", use_container_width=True, key="dec_action"):
        return

    if not uploaded:
        st.error("Please upload the encrypted file.")
        return
    if not key_text.strip():
        st.error("Please enter the decryption key.")
        return

    try:
        with st.spinner("Decrypting…"):
            artifact = medicrypt.decrypt(uploaded.getvalue(), key_text)
    except medicrypt.DecodeError as e:
        st.error(f"Not a valid encrypted file: {e}")
        return
    except medicrypt.AuthenticationError as e:
        st.error(f"Decryption failed: {e}")
        return
    except medicrypt.MediCryptError as e:
        st.error(f"Error: {e}")
        return

    verdict = check_key(artifact.filename, key_text)
    if verdict == "mismatch":
        st.warning(
            f"The key entered differs from the key saved for '{artifact.filename}'."
        )
    elif verdict == "unknown":
        st.info(f"No key was saved in this session for '{artifact.filename}'.")

    st.success(
        f"'{artifact.filename}' decrypted in {artifact.elapsed_ms:.2f} ms "
        f"({human_file_size(len(artifact.data))}, scrambling {artifact.scrambling_param})."
    )
    if artifact.mime_type.startswith("image/"):
        try:
            st.image(artifact.data, caption=artifact.filename, width=320)
        except Exception:
            st.caption("Preview not supported for this image type.")

    st.download_button(
        f"📥 Download {artifact.filename}",
        data=artifact.data,
        file_name=safe_output_filename(artifact.filename, encrypting=False),
        mime=artifact.mime_type or "application/octet-stream",
        key="dec_download",
    )
