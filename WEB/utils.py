"""
MediCrypt Web — Utility Helpers
================================

Shared helpers for environment settings, file size formatting, accepted
upload types, download filenames and key-file contents.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone

DEFAULT_ACCEPT = (
    "image/png",
    "image/jpeg",
    "image/dicom",
    "image/x-ray",
    "image/ct",
    "image/mri",
)

CONTAINER_SUFFIX = ".mcr"


# ---------------------------------------------------------------------------
# Environment settings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WebSettings:
    log_level: int
    default_scramble: int
    accept: tuple[str, ...]


def load_settings(environ=None) -> WebSettings:
    """
    Read ``MEDICRYPT_*`` environment variables.

    Unknown log levels fall back to INFO; an unparsable or out-of-range
    default scrambling parameter falls back to 5.
    """
    env = os.environ if environ is None else environ

    level_name = env.get("MEDICRYPT_LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    try:
        scramble = int(env.get("MEDICRYPT_DEFAULT_SCRAMBLE", "5"))
    except ValueError:
        scramble = 5
    if not 1 <= scramble <= 10:
        scramble = 5

    raw_accept = env.get("MEDICRYPT_ACCEPT", "")
    accept = tuple(t.strip().lower() for t in raw_accept.split(",") if t.strip())

    return WebSettings(
        log_level=level,
        default_scramble=scramble,
        accept=accept or DEFAULT_ACCEPT,
    )


# ---------------------------------------------------------------------------
# Accepted upload types
# ---------------------------------------------------------------------------

def is_accepted_type(mime_type: str, accept: tuple[str, ...] = DEFAULT_ACCEPT) -> bool:
    """
    Check *mime_type* against an accept list.

    Supports exact types, ``type/*`` wildcards and ``*/*``.
    """
    mime_type = (mime_type or "").strip().lower()
    for pattern in accept:
        if pattern == "*/*":
            return True
        if pattern.endswith("/*") and mime_type.startswith(pattern[:-1]):
            return True
        if pattern == mime_type:
            return True
    return False


# ---------------------------------------------------------------------------
# Human-readable file size
# ---------------------------------------------------------------------------

def human_file_size(size_bytes: int) -> str:
    """Convert byte count to a human-readable string (e.g. '1.5 MB')."""
    if size_bytes < 0:
        return "0 B"
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if abs(size_bytes) < 1024.0:
            if unit == "B":
                return f"{size_bytes} {unit}"
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0  # type: ignore[assignment]
    return f"{size_bytes:.1f} PB"


# ---------------------------------------------------------------------------
# Download helpers
# ---------------------------------------------------------------------------

def safe_output_filename(original: str, encrypting: bool) -> str:
    """
    Derive an output filename for download.

    * Encrypting  → append ``.mcr``
    * Decrypting  → the filename recovered from the container, reduced to
      its final path component; ``decrypted_file`` if nothing is left
    """
    if encrypting:
        return original + CONTAINER_SUFFIX
    name = original.replace("\\", "/").rsplit("/", 1)[-1].strip()
    if name in ("", ".", ".."):
        return "decrypted_file"
    return name


def key_file_contents(filename: str, key_string: str, scrambling_param: int) -> str:
    """Text body of the downloadable ``<filename>.key.txt``."""
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    return (
        "MediCrypt decryption key\n"
        f"File:       {filename}\n"
        f"Scrambling: {scrambling_param}\n"
        f"Created:    {stamp}\n"
        f"Key:        {key_string}\n"
        "\n"
        "Keep this key secret. Without it the file cannot be recovered.\n"
    )
