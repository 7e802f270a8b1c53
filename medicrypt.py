"""
MediCrypt Encryption Engine
===========================

Authenticated file encryption for medical-image payloads:

- Per-file random 256-bit keys (``os.urandom``)
- AES-256-GCM sealing with the container header bound as associated data
- Keyed Rubik's-cube byte scrambling layered under the AEAD (see ``scramble``)
- Length-prefixed, self-describing binary container

Uses the ``cryptography`` library for every primitive.

Container format (v1)
---------------------
All integers are big-endian. ::

    [HEADER — authenticated as associated data]
      Magic            4 bytes   b"MDCR"
      Version          1 byte    0x01
      Filename length  2 bytes   (<= 4096)
      Filename         UTF-8
      MIME length      2 bytes   (<= 255)
      MIME type        UTF-8
      Scrambling       1 byte    1-10
      Nonce           12 bytes

    [SEALED PAYLOAD]
      GCM tag         16 bytes
      Ciphertext len   4 bytes   (<= 1 GiB)
      Ciphertext       variable

Every operation is a pure function over in-memory buffers and holds no
shared state, so calls may run concurrently from any number of threads.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import struct
import time
from dataclasses import dataclass, field
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

import scramble

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAGIC: bytes = b"MDCR"
FORMAT_VERSION: int = 1

KEY_SIZE: int = 32     # AES-256
NONCE_SIZE: int = 12   # AES-GCM recommended nonce
TAG_SIZE: int = 16     # GCM authentication tag

MIN_SCRAMBLE: int = scramble.MIN_ROUNDS
MAX_SCRAMBLE: int = scramble.MAX_ROUNDS
DEFAULT_SCRAMBLE: int = 5

MAX_FILENAME_BYTES: int = 4096
MAX_MIME_BYTES: int = 255
MAX_PAYLOAD_BYTES: int = 1 << 30

_PREFIX = struct.Struct(">4sB")
_U8 = struct.Struct(">B")
_U16 = struct.Struct(">H")
_U32 = struct.Struct(">I")

_AUTH_FAILED = "Authentication failed: wrong key or corrupted data."
_HEX_DIGITS = frozenset("0123456789abcdef")

BytesLike = Union[bytes, bytearray, memoryview]

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class MediCryptError(Exception):
    """Base exception for all MediCrypt errors."""


class ValidationError(MediCryptError):
    """Caller-correctable input problem (oversized field, bad parameter)."""


class InvalidKeyError(ValidationError):
    """Key is malformed or has wrong length."""


class DecodeError(MediCryptError):
    """Data is not a structurally valid container."""


class BadMagic(DecodeError):
    """Format marker missing or wrong."""


class UnsupportedVersion(DecodeError):
    """Known format marker with an unknown version byte."""


class Truncated(DecodeError):
    """A field runs past the end of the data."""


class FieldTooLarge(DecodeError):
    """A length prefix exceeds its upper bound."""


class AuthenticationError(MediCryptError):
    """Wrong key or tampered container. Deliberately undifferentiated."""


class EntropyFailure(MediCryptError):
    """The operating system's secure random source failed."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EncryptionKey:
    """
    A 256-bit symmetric file key.

    ``str(key)`` is the 64-character hex form users copy, download or email.
    The repr never shows key material.
    """

    material: bytes = field(repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.material, (bytes, bytearray)):
            raise InvalidKeyError("Key must be bytes.")
        if len(self.material) != KEY_SIZE:
            raise InvalidKeyError(
                f"Key must be exactly {KEY_SIZE} bytes (got {len(self.material)})."
            )
        object.__setattr__(self, "material", bytes(self.material))

    def __str__(self) -> str:
        return self.to_hex()

    def to_hex(self) -> str:
        return self.material.hex()

    def to_base64(self) -> str:
        return base64.urlsafe_b64encode(self.material).decode("ascii")

    @classmethod
    def from_hex(cls, text: str) -> "EncryptionKey":
        """Parse the canonical form: exactly 64 lowercase hex digits."""
        if not isinstance(text, str):
            raise InvalidKeyError("Key string must be text.")
        text = text.strip()
        if len(text) != KEY_SIZE * 2 or not set(text) <= _HEX_DIGITS:
            raise InvalidKeyError("Invalid hex key encoding (expected 64 lowercase hex digits).")
        return cls(bytes.fromhex(text))

    @classmethod
    def from_base64(cls, text: str) -> "EncryptionKey":
        """Parse the canonical URL-safe Base64 form; unused trailing bits must be zero."""
        if not isinstance(text, str):
            raise InvalidKeyError("Key string must be text.")
        text = text.strip()
        try:
            raw = base64.b64decode(text, altchars=b"-_", validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidKeyError("Invalid Base64 key encoding.") from exc
        if base64.urlsafe_b64encode(raw).decode("ascii") != text:
            raise InvalidKeyError("Non-canonical Base64 key encoding.")
        return cls(raw)

    @classmethod
    def parse(cls, text: str) -> "EncryptionKey":
        """Accept either the hex or the URL-safe Base64 form."""
        if not isinstance(text, str):
            raise InvalidKeyError("Key string must be text.")
        if len(text.strip()) == KEY_SIZE * 2:
            return cls.from_hex(text)
        return cls.from_base64(text)

    @classmethod
    def coerce(cls, value: Union["EncryptionKey", str, bytes]) -> "EncryptionKey":
        if isinstance(value, EncryptionKey):
            return value
        if isinstance(value, str):
            return cls.parse(value)
        if isinstance(value, (bytes, bytearray)):
            return cls(bytes(value))
        raise InvalidKeyError(f"Unsupported key type {type(value).__name__}.")


@dataclass(frozen=True)
class ContainerMetadata:
    filename: str
    mime_type: str
    scrambling_param: int


@dataclass(frozen=True)
class DecodedContainer:
    """Structurally valid but not yet authenticated container fields."""

    metadata: ContainerMetadata
    nonce: bytes
    tag: bytes
    ciphertext: bytes
    associated_data: bytes


@dataclass(frozen=True)
class SealedPayload:
    ciphertext: bytes
    tag: bytes
    nonce: bytes
    associated_data: bytes


@dataclass(frozen=True)
class PlaintextFile:
    data: bytes
    filename: str
    mime_type: str


@dataclass(frozen=True)
class EncryptionResult:
    container: bytes
    key: EncryptionKey
    filename: str
    scrambling_param: int
    elapsed_ms: float

    def key_record(self) -> dict[str, str]:
        """The ``{originalFilename: keyString}`` entry callers persist."""
        return {self.filename: str(self.key)}


@dataclass(frozen=True)
class PlaintextArtifact:
    data: bytes
    filename: str
    mime_type: str
    scrambling_param: int
    elapsed_ms: float


# ---------------------------------------------------------------------------
# Validation helpers (module-private)
# ---------------------------------------------------------------------------


def _validate_scrambling_param(value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("Scrambling parameter must be an integer.")
    if not MIN_SCRAMBLE <= value <= MAX_SCRAMBLE:
        raise ValidationError(
            f"Scrambling parameter must be between {MIN_SCRAMBLE} and "
            f"{MAX_SCRAMBLE} (got {value})."
        )


def _encode_text(value: str, what: str, limit: int) -> bytes:
    if not isinstance(value, str):
        raise ValidationError(f"{what} must be a string.")
    try:
        raw = value.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ValidationError(f"{what} is not valid Unicode text.") from exc
    if len(raw) > limit:
        raise ValidationError(
            f"{what} is {len(raw)} bytes; the limit is {limit} bytes."
        )
    return raw


def _encode_metadata(metadata: ContainerMetadata) -> tuple[bytes, bytes]:
    """Validate *metadata* and return its UTF-8 filename and MIME type."""
    name = _encode_text(metadata.filename, "Filename", MAX_FILENAME_BYTES)
    if not name:
        raise ValidationError("Filename must not be empty.")
    mime = _encode_text(metadata.mime_type, "MIME type", MAX_MIME_BYTES)
    _validate_scrambling_param(metadata.scrambling_param)
    return name, mime


def _take(data: memoryview, offset: int, size: int, what: str) -> bytes:
    end = offset + size
    if end > len(data):
        raise Truncated(
            f"Container truncated while reading {what} "
            f"(needs {size} bytes at offset {offset}, {len(data) - offset} left)."
        )
    return bytes(data[offset:end])


# ---------------------------------------------------------------------------
# KeyGenerator
# ---------------------------------------------------------------------------


class KeyGenerator:
    """Fresh key and nonce material from the operating system CSPRNG."""

    @staticmethod
    def random_bytes(size: int) -> bytes:
        try:
            return os.urandom(size)
        except (OSError, NotImplementedError) as exc:
            logger.critical("Secure random source failed: %s", exc)
            raise EntropyFailure("Secure random source unavailable.") from exc

    @staticmethod
    def generate() -> EncryptionKey:
        """Generate a cryptographically secure random 256-bit key."""
        return EncryptionKey(KeyGenerator.random_bytes(KEY_SIZE))


# ---------------------------------------------------------------------------
# ContainerCodec
# ---------------------------------------------------------------------------


class ContainerCodec:
    """
    Serialise / parse the container byte layout.

    Purely structural: nothing here touches key material, and
    :meth:`decode` returns fields that must not be trusted until the
    cipher engine has verified the tag.
    """

    @staticmethod
    def encode_header(metadata: ContainerMetadata, nonce: bytes) -> bytes:
        """Return the header span the GCM tag authenticates."""
        name, mime = _encode_metadata(metadata)
        if len(nonce) != NONCE_SIZE:
            raise ValidationError(f"Nonce must be {NONCE_SIZE} bytes (got {len(nonce)}).")
        return b"".join((
            _PREFIX.pack(MAGIC, FORMAT_VERSION),
            _U16.pack(len(name)),
            name,
            _U16.pack(len(mime)),
            mime,
            _U8.pack(metadata.scrambling_param),
            bytes(nonce),
        ))

    @staticmethod
    def encode(
        metadata: ContainerMetadata,
        tag: bytes,
        ciphertext: bytes,
        nonce: bytes,
    ) -> bytes:
        """Build a complete container. Deterministic."""
        if len(tag) != TAG_SIZE:
            raise ValidationError(f"Tag must be {TAG_SIZE} bytes (got {len(tag)}).")
        if len(ciphertext) > MAX_PAYLOAD_BYTES:
            raise ValidationError(
                f"Ciphertext exceeds the {MAX_PAYLOAD_BYTES}-byte container limit."
            )
        header = ContainerCodec.encode_header(metadata, nonce)
        return b"".join((header, bytes(tag), _U32.pack(len(ciphertext)), bytes(ciphertext)))

    @staticmethod
    def decode(data: BytesLike) -> DecodedContainer:
        """
        Structurally validate and split a container.

        Raises
        ------
        BadMagic, UnsupportedVersion, FieldTooLarge, Truncated, DecodeError
        """
        try:
            view = memoryview(data).cast("B")
        except TypeError as exc:
            raise DecodeError("Container must be a bytes-like object.") from exc
        if len(view) < len(MAGIC) or bytes(view[: len(MAGIC)]) != MAGIC:
            raise BadMagic("Invalid magic bytes: not a MediCrypt container.")
        offset = len(MAGIC)

        version = _take(view, offset, 1, "format version")[0]
        offset += 1
        if version != FORMAT_VERSION:
            raise UnsupportedVersion(
                f"Unsupported format version {version} (expected {FORMAT_VERSION})."
            )

        fields = []
        for what, limit in (("filename", MAX_FILENAME_BYTES), ("MIME type", MAX_MIME_BYTES)):
            (length,) = _U16.unpack(_take(view, offset, 2, f"{what} length"))
            offset += 2
            if length > limit:
                raise FieldTooLarge(f"Declared {what} length {length} exceeds {limit} bytes.")
            # Authentic containers are always valid UTF-8; a tampered byte
            # must reach the tag check rather than fail here.
            fields.append(_take(view, offset, length, what).decode("utf-8", errors="replace"))
            offset += length
        filename, mime_type = fields

        scrambling_param = _take(view, offset, 1, "scrambling parameter")[0]
        offset += 1
        nonce = _take(view, offset, NONCE_SIZE, "nonce")
        offset += NONCE_SIZE
        associated_data = bytes(view[:offset])

        tag = _take(view, offset, TAG_SIZE, "authentication tag")
        offset += TAG_SIZE
        (ct_len,) = _U32.unpack(_take(view, offset, 4, "ciphertext length"))
        offset += 4
        if ct_len > MAX_PAYLOAD_BYTES:
            raise FieldTooLarge(
                f"Declared ciphertext length {ct_len} exceeds {MAX_PAYLOAD_BYTES} bytes."
            )
        ciphertext = _take(view, offset, ct_len, "ciphertext")
        offset += ct_len
        if offset != len(view):
            raise DecodeError(f"{len(view) - offset} unexpected trailing bytes after ciphertext.")

        return DecodedContainer(
            metadata=ContainerMetadata(filename, mime_type, scrambling_param),
            nonce=nonce,
            tag=tag,
            ciphertext=ciphertext,
            associated_data=associated_data,
        )


# ---------------------------------------------------------------------------
# CipherEngine
# ---------------------------------------------------------------------------


class CipherEngine:
    """
    AES-256-GCM with the Rubik's-cube permutation layered underneath.

    The permutation is applied to the plaintext before sealing, so the GCM
    tag covers it and nothing is unscrambled until the tag has verified.
    """

    @staticmethod
    def encrypt(
        plaintext: bytes,
        key: EncryptionKey,
        scrambling_param: int,
        *,
        filename: str,
        mime_type: str,
    ) -> SealedPayload:
        """
        Seal *plaintext* under *key* with a fresh nonce.

        The associated data is the container header built from *filename*,
        *mime_type*, *scrambling_param* and the nonce.
        """
        key = EncryptionKey.coerce(key)
        metadata = ContainerMetadata(filename, mime_type, scrambling_param)
        nonce = KeyGenerator.random_bytes(NONCE_SIZE)
        aad = ContainerCodec.encode_header(metadata, nonce)

        scrambled = scramble.scramble(plaintext, key.material, nonce, scrambling_param)
        sealed = AESGCM(key.material).encrypt(nonce, scrambled, aad)
        return SealedPayload(
            ciphertext=sealed[:-TAG_SIZE],
            tag=sealed[-TAG_SIZE:],
            nonce=nonce,
            associated_data=aad,
        )

    @staticmethod
    def decrypt(
        ciphertext: bytes,
        tag: bytes,
        key: EncryptionKey,
        scrambling_param: int,
        associated_data: bytes,
    ) -> bytes:
        """
        Verify and open a sealed payload.

        The nonce is the last ``NONCE_SIZE`` bytes of *associated_data*
        (the container header). Tag verification is constant time.

        Raises
        ------
        AuthenticationError
            Wrong key, or any authenticated byte was altered.
        """
        key = EncryptionKey.coerce(key)
        if len(tag) != TAG_SIZE:
            raise ValidationError(f"Tag must be {TAG_SIZE} bytes (got {len(tag)}).")
        if len(associated_data) < NONCE_SIZE:
            raise ValidationError("Associated data is too short to carry a nonce.")
        nonce = bytes(associated_data[-NONCE_SIZE:])

        try:
            scrambled = AESGCM(key.material).decrypt(
                nonce, bytes(ciphertext) + bytes(tag), bytes(associated_data)
            )
        except InvalidTag:
            logger.warning("Container failed authentication.")
            raise AuthenticationError(_AUTH_FAILED) from None

        _validate_scrambling_param(scrambling_param)
        return scramble.unscramble(scrambled, key.material, nonce, scrambling_param)


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------


class EncryptionPipeline:
    """Plaintext file -> (container, freshly generated key)."""

    @staticmethod
    def run(
        plaintext_file: PlaintextFile,
        scrambling_param: int = DEFAULT_SCRAMBLE,
    ) -> EncryptionResult:
        """
        Encrypt one file under a brand-new key.

        All input validation happens before any key is generated. The
        returned key is the only copy; the pipeline keeps nothing.
        """
        started = time.perf_counter()
        data = plaintext_file.data
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise ValidationError("Plaintext must be bytes.")
        data = bytes(data)
        if len(data) > MAX_PAYLOAD_BYTES:
            raise ValidationError(
                f"Plaintext is {len(data)} bytes; the limit is {MAX_PAYLOAD_BYTES} bytes."
            )
        metadata = ContainerMetadata(
            plaintext_file.filename, plaintext_file.mime_type, scrambling_param
        )
        _encode_metadata(metadata)

        key = KeyGenerator.generate()
        sealed = CipherEngine.encrypt(
            data,
            key,
            scrambling_param,
            filename=metadata.filename,
            mime_type=metadata.mime_type,
        )
        container = ContainerCodec.encode(metadata, sealed.tag, sealed.ciphertext, sealed.nonce)

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        logger.debug(
            "Encrypted %r (%d bytes, scrambling %d) into %d-byte container in %.2f ms",
            metadata.filename, len(data), scrambling_param, len(container), elapsed_ms,
        )
        return EncryptionResult(
            container=container,
            key=key,
            filename=metadata.filename,
            scrambling_param=metadata.scrambling_param,
            elapsed_ms=elapsed_ms,
        )


class DecryptionPipeline:
    """(container, key) -> plaintext artifact. Fails closed."""

    @staticmethod
    def run(
        container: BytesLike,
        key: Union[EncryptionKey, str, bytes],
    ) -> PlaintextArtifact:
        """
        Decode, authenticate and open a container.

        Structural errors are raised before the key is even parsed.

        Raises
        ------
        DecodeError
            Malformed container (checked first).
        InvalidKeyError
            Key bytes of the wrong length, or an unsupported key type.
        AuthenticationError
            Wrong key, a key string that is not a canonical key, or a
            tampered container.
        """
        started = time.perf_counter()
        decoded = ContainerCodec.decode(container)
        if isinstance(key, str):
            try:
                key = EncryptionKey.parse(key)
            except InvalidKeyError:
                # A mistyped key is reported like any other wrong key.
                logger.warning("Container failed authentication.")
                raise AuthenticationError(_AUTH_FAILED) from None
        key = EncryptionKey.coerce(key)

        meta = decoded.metadata
        plaintext = CipherEngine.decrypt(
            decoded.ciphertext,
            decoded.tag,
            key,
            meta.scrambling_param,
            decoded.associated_data,
        )

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        logger.debug(
            "Decrypted %r (%d bytes) in %.2f ms", meta.filename, len(plaintext), elapsed_ms
        )
        return PlaintextArtifact(
            data=plaintext,
            filename=meta.filename,
            mime_type=meta.mime_type,
            scrambling_param=meta.scrambling_param,
            elapsed_ms=elapsed_ms,
        )


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------


def encrypt(
    data: bytes,
    filename: str,
    mime_type: str,
    scrambling_param: int = DEFAULT_SCRAMBLE,
) -> EncryptionResult:
    """Shorthand for ``EncryptionPipeline.run(PlaintextFile(...), param)``."""
    return EncryptionPipeline.run(PlaintextFile(data, filename, mime_type), scrambling_param)


def key_to_hex(key: EncryptionKey) -> str:
    return EncryptionKey.coerce(key).to_hex()


def key_to_base64(key: EncryptionKey) -> str:
    return EncryptionKey.coerce(key).to_base64()


generate_key = KeyGenerator.generate
key_from_hex = EncryptionKey.from_hex
key_from_base64 = EncryptionKey.from_base64
parse_key = EncryptionKey.parse

encode = ContainerCodec.encode
decode = ContainerCodec.decode
decrypt = DecryptionPipeline.run


# ---------------------------------------------------------------------------
# Self-test (run with: python medicrypt.py)
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import sys

    passed = 0
    failed = 0

    def _check(name: str, fn) -> None:
        global passed, failed
        try:
            fn()
            print(f"  [PASS] {name}")
            passed += 1
        except Exception as exc:
            print(f"  [FAIL] {name}: {exc}")
            failed += 1

    print("=" * 60)
    print("MediCrypt Engine Self-Test")
    print("=" * 60)

    def _roundtrip() -> None:
        result = encrypt(b"0123456789", "scan.png", "image/png", 5)
        artifact = decrypt(result.container, str(result.key))
        assert artifact.data == b"0123456789"
        assert (artifact.filename, artifact.mime_type, artifact.scrambling_param) == (
            "scan.png", "image/png", 5,
        )

    _check("Encrypt -> decrypt round-trip", _roundtrip)

    def _wrong_key() -> None:
        result = encrypt(b"secret", "scan.png", "image/png")
        try:
            decrypt(result.container, generate_key())
        except AuthenticationError:
            return
        raise AssertionError("wrong key was accepted")

    _check("Wrong key raises AuthenticationError", _wrong_key)

    def _bad_magic() -> None:
        try:
            decode(b"NOPE" + bytes(64))
        except BadMagic:
            return
        raise AssertionError("bad magic was accepted")

    _check("Bad magic raises BadMagic", _bad_magic)

    print("\n" + "=" * 60)
    print(f"Results: {passed}/{passed + failed} passed, {failed} failed")
    print("=" * 60)
    if failed:
        sys.exit(1)
