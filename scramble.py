"""
MediCrypt Scrambling Layer
==========================

Keyed "Rubik's cube" byte permutation applied to the plaintext before it is
sealed with AES-256-GCM.  It adds no confidentiality of its own; the
container's security rests entirely on the AEAD underneath.

Each 1 MiB chunk of the payload is laid out as an ``h x w`` grid
(``w = isqrt(len)``), with any leftover bytes forming a short tail row.
One *round* rotates

  1. every row left by a keyed offset,
  2. every column up by a keyed offset,
  3. the tail row left by a keyed offset.

The scrambling parameter is the number of rounds (1 = minimal, 10 = maximum).

Offsets come from a ChaCha20 keystream under a subkey derived with
HKDF-SHA256 from the file key, salted with the container nonce, so the
permutation is unique per encryption.
"""

from __future__ import annotations

import math
import struct

import numpy as np
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SUBKEY_INFO: bytes = b"medicrypt scramble v1"
SUBKEY_SIZE: int = 32
CHUNK_SIZE: int = 1024 * 1024
MIN_ROUNDS: int = 1
MAX_ROUNDS: int = 10


# ---------------------------------------------------------------------------
# Key schedule
# ---------------------------------------------------------------------------


def derive_subkey(key: bytes, nonce: bytes) -> bytes:
    """Derive the 256-bit scrambling subkey for one container."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=SUBKEY_SIZE,
        salt=nonce,
        info=SUBKEY_INFO,
    )
    return hkdf.derive(key)


def _offsets(subkey: bytes, chunk_index: int, count: int) -> np.ndarray:
    """Return *count* keyed non-negative offsets for one chunk."""
    # 4-byte block counter (little-endian, starts at 0) || 12-byte nonce
    nonce = struct.pack("<I", 0) + struct.pack(">Q", chunk_index) + b"\x00" * 4
    encryptor = Cipher(algorithms.ChaCha20(subkey, nonce), mode=None).encryptor()
    stream = encryptor.update(bytes(4 * count))
    return np.frombuffer(stream, dtype="<u4").astype(np.int64)


def _grid_shape(length: int) -> tuple[int, int]:
    width = max(1, math.isqrt(length))
    return length // width, width


# ---------------------------------------------------------------------------
# Grid rotation
# ---------------------------------------------------------------------------


def _permute_chunk(
    chunk: np.ndarray,
    subkey: bytes,
    chunk_index: int,
    rounds: int,
    inverse: bool,
) -> np.ndarray:
    height, width = _grid_shape(chunk.size)
    body = chunk[: height * width].reshape(height, width)
    tail = chunk[height * width :]

    per_round = height + width + 1
    shifts = _offsets(subkey, chunk_index, rounds * per_round).reshape(rounds, per_round)

    rows = np.arange(height)[:, None]
    cols = np.arange(width)[None, :]

    order = range(rounds - 1, -1, -1) if inverse else range(rounds)
    for r in order:
        row_shift = (shifts[r, :height] % width)[:, None]
        col_shift = (shifts[r, height : height + width] % height)[None, :]
        tail_shift = int(shifts[r, -1] % tail.size) if tail.size else 0

        if inverse:
            tail = np.roll(tail, tail_shift)
            body = body[(rows - col_shift) % height, cols]
            body = body[rows, (cols - row_shift) % width]
        else:
            body = body[rows, (cols + row_shift) % width]
            body = body[(rows + col_shift) % height, cols]
            tail = np.roll(tail, -tail_shift)

    return np.concatenate((body.ravel(), tail))


def _permute(
    data: bytes,
    key: bytes,
    nonce: bytes,
    rounds: int,
    inverse: bool,
    chunk_size: int,
) -> bytes:
    if not MIN_ROUNDS <= rounds <= MAX_ROUNDS:
        raise ValueError(
            f"Scrambling rounds must be between {MIN_ROUNDS} and {MAX_ROUNDS} (got {rounds})."
        )
    if chunk_size <= 0:
        raise ValueError("Chunk size must be positive.")
    if not data:
        return b""

    subkey = derive_subkey(key, nonce)
    view = np.frombuffer(data, dtype=np.uint8)
    out = bytearray()
    for chunk_index, start in enumerate(range(0, view.size, chunk_size)):
        chunk = view[start : start + chunk_size]
        out += _permute_chunk(chunk, subkey, chunk_index, rounds, inverse).tobytes()
    return bytes(out)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def scramble(
    data: bytes,
    key: bytes,
    nonce: bytes,
    rounds: int,
    *,
    chunk_size: int = CHUNK_SIZE,
) -> bytes:
    """Permute *data* with *rounds* keyed grid rotations."""
    return _permute(data, key, nonce, rounds, False, chunk_size)


def unscramble(
    data: bytes,
    key: bytes,
    nonce: bytes,
    rounds: int,
    *,
    chunk_size: int = CHUNK_SIZE,
) -> bytes:
    """Invert :func:`scramble` for the same key, nonce, rounds and chunk size."""
    return _permute(data, key, nonce, rounds, True, chunk_size)
