"""
MediCrypt Web — Session Profile Store
======================================

Per-session profile: the user's role and the ``{originalFilename -> key}``
map the engine hands back after every encryption.  Everything lives in
``st.session_state``; nothing is written to disk.

Every function takes an optional ``state`` mapping so the store can be
driven without a running Streamlit session.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import MutableMapping, Optional

import streamlit as st

# -- make project root importable so we can ``import medicrypt`` -----------
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

import medicrypt  # noqa: E402

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass
class KeyRecord:
    """The key for one encrypted original file."""
    filename: str
    key_hex: str
    scrambling_param: int
    created: str


ROLE_ADMIN = "admin"
ROLE_USER = "user"
ROLES = (ROLE_ADMIN, ROLE_USER)

_CAPABILITIES = {
    ROLE_ADMIN: {"encrypt", "decrypt", "manage_keys"},
    ROLE_USER: {"encrypt", "decrypt"},
}


# ---------------------------------------------------------------------------
# Session-state initialisation
# ---------------------------------------------------------------------------

_KEYS = "medicrypt_keys"
_ROLE = "medicrypt_role"


def _state(state: Optional[MutableMapping] = None) -> MutableMapping:
    """Ensure the profile entries exist and return the backing mapping."""
    if state is None:
        state = st.session_state
    if _KEYS not in state:
        state[_KEYS] = {}
    if _ROLE not in state:
        state[_ROLE] = ROLE_USER
    return state


# ---------------------------------------------------------------------------
# Role capabilities
# ---------------------------------------------------------------------------

def get_role(state: Optional[MutableMapping] = None) -> str:
    return _state(state)[_ROLE]


def set_role(role: str, state: Optional[MutableMapping] = None) -> None:
    if role not in ROLES:
        raise ValueError(f"Unknown role {role!r}.")
    _state(state)[_ROLE] = role


def has_capability(role: str, capability: str) -> bool:
    return capability in _CAPABILITIES.get(role, set())


def can_encrypt(role: str) -> bool:
    return has_capability(role, "encrypt")


def can_decrypt(role: str) -> bool:
    return has_capability(role, "decrypt")


def can_manage_keys(role: str) -> bool:
    return has_capability(role, "manage_keys")


# ---------------------------------------------------------------------------
# Key records
# ---------------------------------------------------------------------------

def remember_key(
    result: medicrypt.EncryptionResult,
    state: Optional[MutableMapping] = None,
) -> KeyRecord:
    """Store the key returned by an encryption, replacing any older one."""
    keys = _state(state)[_KEYS]
    record = KeyRecord(
        filename=result.filename,
        key_hex=str(result.key),
        scrambling_param=result.scrambling_param,
        created=datetime.now(timezone.utc).isoformat(),
    )
    if record.filename in keys:
        logger.info("Replacing stored key for %r", record.filename)
    keys[record.filename] = record
    return record


def lookup_key(filename: str, state: Optional[MutableMapping] = None) -> Optional[KeyRecord]:
    return _state(state)[_KEYS].get(filename)


def list_keys(state: Optional[MutableMapping] = None) -> list[KeyRecord]:
    """Return all stored keys (newest first)."""
    records = list(_state(state)[_KEYS].values())
    records.sort(key=lambda r: r.created, reverse=True)
    return records


def forget_key(filename: str, state: Optional[MutableMapping] = None) -> bool:
    """Remove a key. Returns True if it existed."""
    return _state(state)[_KEYS].pop(filename, None) is not None


def check_key(
    filename: str,
    key_string: str,
    state: Optional[MutableMapping] = None,
) -> str:
    """
    Compare a user-entered key with the one stored for *filename*.

    Returns ``"match"``, ``"mismatch"`` or ``"unknown"`` (nothing stored or
    the entered key is malformed).
    """
    record = lookup_key(filename, state)
    if record is None:
        return "unknown"
    try:
        entered = medicrypt.parse_key(key_string)
    except medicrypt.InvalidKeyError:
        return "unknown"
    return "match" if entered.to_hex() == record.key_hex else "mismatch"
