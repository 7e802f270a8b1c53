import string
import struct
from unittest import mock

import pytest

import medicrypt
from medicrypt import (
    AuthenticationError,
    BadMagic,
    CipherEngine,
    ContainerCodec,
    ContainerMetadata,
    DecodeError,
    DecryptionPipeline,
    EncryptionKey,
    EncryptionPipeline,
    EntropyFailure,
    FieldTooLarge,
    InvalidKeyError,
    KeyGenerator,
    PlaintextFile,
    Truncated,
    UnsupportedVersion,
    ValidationError,
)

_B64_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits + "-_"


def _layout(filename: str, mime_type: str) -> dict:
    """Byte offsets of each container field."""
    name_len = len(filename.encode("utf-8"))
    mime_len = len(mime_type.encode("utf-8"))
    name = 7
    mime = name + name_len + 2
    param = mime + mime_len
    nonce = param + 1
    tag = nonce + medicrypt.NONCE_SIZE
    ct_len = tag + medicrypt.TAG_SIZE
    return {
        "name_prefix": range(name - 2, name),
        "name": range(name, name + name_len),
        "mime_prefix": range(mime - 2, mime),
        "mime": range(mime, mime + mime_len),
        "param": range(param, param + 1),
        "nonce": range(nonce, nonce + medicrypt.NONCE_SIZE),
        "tag": range(tag, tag + medicrypt.TAG_SIZE),
        "ciphertext_prefix": range(ct_len, ct_len + 4),
        "ciphertext_len": ct_len,
        "ciphertext": ct_len + 4,
    }


def _flip(data: bytes, index: int, bit: int = 0) -> bytes:
    out = bytearray(data)
    out[index] ^= 1 << bit
    return bytes(out)


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def test_generated_keys_are_256_bit():
    key = KeyGenerator.generate()
    assert len(key.material) == medicrypt.KEY_SIZE
    assert len(str(key)) == 64


def test_ten_thousand_keys_are_distinct():
    keys = {KeyGenerator.generate().material for _ in range(10_000)}
    assert len(keys) == 10_000


def test_key_string_forms_parse_back():
    key = medicrypt.generate_key()
    assert EncryptionKey.parse(key.to_hex()) == key
    assert EncryptionKey.parse(key.to_base64()) == key
    assert EncryptionKey.parse("  " + key.to_hex() + "\n") == key
    assert medicrypt.key_from_hex(medicrypt.key_to_hex(key)) == key
    assert medicrypt.key_from_base64(medicrypt.key_to_base64(key)) == key


def _non_canonical_base64(text: str) -> str:
    # flip one of the two unused low bits in the last data character
    i = _B64_ALPHABET.index(text[-2])
    return text[:-2] + _B64_ALPHABET[i ^ 1] + text[-1]


def test_only_canonical_key_strings_parse():
    key = EncryptionKey(bytes(range(32)))
    assert key.to_hex() != key.to_hex().upper()
    with pytest.raises(InvalidKeyError):
        EncryptionKey.from_hex(key.to_hex().upper())
    with pytest.raises(InvalidKeyError):
        EncryptionKey.from_base64(_non_canonical_base64(key.to_base64()))


def test_key_repr_hides_material():
    key = medicrypt.generate_key()
    assert key.to_hex() not in repr(key)


@pytest.mark.parametrize("text", ["", "zz" * 32, "abcd", "ab" * 31, "not base64!!"])
def test_malformed_key_strings_are_rejected(text):
    with pytest.raises(InvalidKeyError):
        EncryptionKey.parse(text)


def test_wrong_length_key_bytes_are_rejected():
    with pytest.raises(InvalidKeyError):
        EncryptionKey(b"short")


def test_entropy_failure_is_fatal():
    with mock.patch("medicrypt.os.urandom", side_effect=OSError("no entropy")):
        with pytest.raises(EntropyFailure):
            KeyGenerator.generate()


# ---------------------------------------------------------------------------
# Round trips and scenarios
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("param", range(1, 11))
@pytest.mark.parametrize("payload", [b"", b"x", b"0123456789", bytes(range(256)) * 37])
def test_round_trip_all_params(payload, param):
    result = EncryptionPipeline.run(PlaintextFile(payload, "ct-slice.dcm", "image/dicom"), param)
    artifact = DecryptionPipeline.run(result.container, result.key)
    assert artifact.data == payload
    assert artifact.filename == "ct-slice.dcm"
    assert artifact.mime_type == "image/dicom"
    assert artifact.scrambling_param == param


def test_round_trip_multi_chunk_payload():
    payload = bytes(range(251)) * 10_000  # spans three scrambling chunks
    result = medicrypt.encrypt(payload, "mri.png", "image/png", 10)
    assert medicrypt.decrypt(result.container, str(result.key)).data == payload


def test_scan_png_scenario():
    result = medicrypt.encrypt(b"0123456789", "scan.png", "image/png", 5)
    assert result.scrambling_param == 5
    artifact = medicrypt.decrypt(result.container, str(result.key))
    assert artifact.data == b"0123456789"
    assert artifact.filename == "scan.png"
    assert artifact.mime_type == "image/png"
    assert artifact.scrambling_param == 5


def test_key_differing_by_one_character_is_rejected():
    result = medicrypt.encrypt(b"0123456789", "scan.png", "image/png", 5)
    text = str(result.key)
    replacement = "0" if text[10] != "0" else "1"
    wrong = text[:10] + replacement + text[11:]
    with pytest.raises(AuthenticationError):
        medicrypt.decrypt(result.container, wrong)


@pytest.mark.parametrize(
    "variant",
    [
        pytest.param(lambda k: k.to_hex().upper(), id="uppercase-hex"),
        pytest.param(lambda k: _non_canonical_base64(k.to_base64()), id="non-canonical-base64"),
        pytest.param(lambda k: "g" + k.to_hex()[1:], id="non-hex-character"),
        pytest.param(lambda k: k.to_base64()[:-1] + "!", id="non-base64-character"),
    ],
)
def test_key_string_variant_of_correct_key_is_rejected(variant):
    result = medicrypt.encrypt(b"0123456789", "scan.png", "image/png", 5)
    wrong = variant(result.key)
    assert wrong not in (result.key.to_hex(), result.key.to_base64())
    with pytest.raises(AuthenticationError):
        medicrypt.decrypt(result.container, wrong)


def test_hyphenated_filename_round_trips():
    result = medicrypt.encrypt(b"pixels", "my-scan-01.png", "image/png", 3)
    artifact = medicrypt.decrypt(result.container, result.key)
    assert artifact.filename == "my-scan-01.png"
    assert artifact.data == b"pixels"


def test_unicode_filename_round_trips():
    result = medicrypt.encrypt(b"pixels", "röntgen-åäö-画像.jpg", "image/jpeg", 2)
    assert medicrypt.decrypt(result.container, result.key).filename == "röntgen-åäö-画像.jpg"


def test_empty_plaintext_gives_empty_ciphertext():
    result = medicrypt.encrypt(b"", "empty.png", "image/png")
    decoded = medicrypt.decode(result.container)
    assert decoded.ciphertext == b""
    assert medicrypt.decrypt(result.container, result.key).data == b""


def test_same_plaintext_encrypts_differently():
    a = medicrypt.encrypt(b"same", "a.png", "image/png")
    b = medicrypt.encrypt(b"same", "a.png", "image/png")
    assert a.key != b.key
    assert a.container != b.container


def test_key_record_shape():
    result = medicrypt.encrypt(b"data", "scan.png", "image/png")
    assert result.key_record() == {"scan.png": str(result.key)}


def test_elapsed_time_is_reported():
    result = medicrypt.encrypt(b"data", "scan.png", "image/png")
    assert result.elapsed_ms >= 0
    assert medicrypt.decrypt(result.container, result.key).elapsed_ms >= 0


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


def test_wrong_key_is_rejected():
    result = medicrypt.encrypt(b"secret", "scan.png", "image/png")
    with pytest.raises(AuthenticationError):
        medicrypt.decrypt(result.container, medicrypt.generate_key())


@pytest.mark.parametrize("region", ["name", "mime", "param", "nonce", "tag"])
def test_any_bit_flip_in_authenticated_fields_is_detected(region):
    result = medicrypt.encrypt(b"0123456789", "scan.png", "image/png", 5)
    for index in _layout("scan.png", "image/png")[region]:
        for bit in range(8):
            with pytest.raises(AuthenticationError):
                medicrypt.decrypt(_flip(result.container, index, bit), result.key)


def test_any_bit_flip_in_ciphertext_is_detected():
    result = medicrypt.encrypt(b"0123456789", "scan.png", "image/png", 5)
    start = _layout("scan.png", "image/png")["ciphertext"]
    assert len(result.container) - start == 10
    for index in range(start, len(result.container)):
        for bit in range(8):
            with pytest.raises(AuthenticationError):
                medicrypt.decrypt(_flip(result.container, index, bit), result.key)


@pytest.mark.parametrize("region", ["name_prefix", "mime_prefix", "ciphertext_prefix"])
def test_any_bit_flip_in_length_prefixes_is_detected(region):
    result = medicrypt.encrypt(b"0123456789", "scan.png", "image/png", 5)
    for index in _layout("scan.png", "image/png")[region]:
        for bit in range(8):
            tampered = _flip(result.container, index, bit)
            artifact = None
            with pytest.raises((DecodeError, AuthenticationError)):
                artifact = medicrypt.decrypt(tampered, result.key)
            assert artifact is None


def test_swapped_metadata_is_detected():
    result = medicrypt.encrypt(b"0123456789", "scan.png", "image/png", 5)
    decoded = medicrypt.decode(result.container)
    forged = ContainerCodec.encode(
        ContainerMetadata("other.png", "image/png", 5),
        decoded.tag,
        decoded.ciphertext,
        decoded.nonce,
    )
    with pytest.raises(AuthenticationError):
        medicrypt.decrypt(forged, result.key)


def test_authentication_message_is_generic():
    result = medicrypt.encrypt(b"0123456789", "scan.png", "image/png")
    messages = set()
    for container, key in (
        (result.container, medicrypt.generate_key()),
        (_flip(result.container, len(result.container) - 1), result.key),
    ):
        with pytest.raises(AuthenticationError) as info:
            medicrypt.decrypt(container, key)
        messages.add(str(info.value))
    assert len(messages) == 1


def test_cipher_engine_uses_fresh_nonces():
    key = medicrypt.generate_key()
    a = CipherEngine.encrypt(b"same", key, 4, filename="a.png", mime_type="image/png")
    b = CipherEngine.encrypt(b"same", key, 4, filename="a.png", mime_type="image/png")
    assert a.nonce != b.nonce
    assert a.associated_data.endswith(a.nonce)
    opened = CipherEngine.decrypt(a.ciphertext, a.tag, key, 4, a.associated_data)
    assert opened == b"same"


# ---------------------------------------------------------------------------
# Structural validation
# ---------------------------------------------------------------------------


def test_bad_magic_short_circuits_before_key_use():
    with pytest.raises(BadMagic):
        DecryptionPipeline.run(b"NOPE" + bytes(64), "not even a key")


def test_corrupted_magic_is_bad_magic():
    result = medicrypt.encrypt(b"data", "scan.png", "image/png")
    with pytest.raises(BadMagic):
        medicrypt.decrypt(_flip(result.container, 0), result.key)


@pytest.mark.parametrize("data", [b"", b"MD", b"MDC"])
def test_short_input_is_bad_magic(data):
    with pytest.raises(BadMagic):
        medicrypt.decode(data)


def test_unknown_version_is_rejected():
    result = medicrypt.encrypt(b"data", "scan.png", "image/png")
    data = bytearray(result.container)
    data[4] = 2
    with pytest.raises(UnsupportedVersion):
        medicrypt.decode(bytes(data))


def test_every_truncation_is_detected():
    result = medicrypt.encrypt(b"0123456789", "scan.png", "image/png")
    for cut in range(4, len(result.container)):
        with pytest.raises(Truncated):
            DecryptionPipeline.run(result.container[:cut], "dummy")


def test_trailing_bytes_are_rejected():
    result = medicrypt.encrypt(b"data", "scan.png", "image/png")
    with pytest.raises(DecodeError):
        medicrypt.decode(result.container + b"\x00")


def test_oversized_filename_prefix_is_field_too_large():
    data = medicrypt.MAGIC + bytes([medicrypt.FORMAT_VERSION]) + struct.pack(">H", 0xFFFF)
    with pytest.raises(FieldTooLarge):
        DecryptionPipeline.run(data, "dummy")


def test_oversized_mime_prefix_is_field_too_large():
    data = (
        medicrypt.MAGIC + bytes([medicrypt.FORMAT_VERSION])
        + struct.pack(">H", 1) + b"a"
        + struct.pack(">H", medicrypt.MAX_MIME_BYTES + 1)
    )
    with pytest.raises(FieldTooLarge):
        medicrypt.decode(data)


def test_oversized_ciphertext_prefix_is_field_too_large():
    result = medicrypt.encrypt(b"data", "scan.png", "image/png")
    offset = _layout("scan.png", "image/png")["ciphertext_len"]
    data = result.container[:offset] + struct.pack(">I", medicrypt.MAX_PAYLOAD_BYTES + 1)
    with pytest.raises(FieldTooLarge):
        medicrypt.decode(data)


def test_decode_is_idempotent():
    result = medicrypt.encrypt(b"0123456789", "scan.png", "image/png", 7)
    first = medicrypt.decode(result.container)
    second = medicrypt.decode(result.container)
    assert first == second
    assert first.metadata == ContainerMetadata("scan.png", "image/png", 7)


def test_encode_is_deterministic_and_matches_decode():
    metadata = ContainerMetadata("scan.png", "image/png", 5)
    nonce, tag = bytes(range(12)), bytes(range(16))
    a = medicrypt.encode(metadata, tag, b"cipher", nonce)
    b = medicrypt.encode(metadata, tag, b"cipher", nonce)
    assert a == b
    decoded = medicrypt.decode(a)
    assert (decoded.metadata, decoded.nonce, decoded.tag, decoded.ciphertext) == (
        metadata, nonce, tag, b"cipher",
    )
    assert decoded.associated_data == ContainerCodec.encode_header(metadata, nonce)


def test_decode_accepts_bytearray_and_memoryview():
    result = medicrypt.encrypt(b"data", "scan.png", "image/png")
    expected = medicrypt.decode(result.container)
    assert medicrypt.decode(bytearray(result.container)) == expected
    assert medicrypt.decode(memoryview(result.container)) == expected


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("param", [0, 11, -1, True, 5.0, "5"])
def test_scrambling_param_out_of_range(param):
    with pytest.raises(ValidationError):
        medicrypt.encrypt(b"data", "scan.png", "image/png", param)


@pytest.mark.parametrize(
    "filename, mime_type",
    [
        ("", "image/png"),
        ("a" * (medicrypt.MAX_FILENAME_BYTES + 1), "image/png"),
        ("scan.png", "x" * (medicrypt.MAX_MIME_BYTES + 1)),
        ("bad-\udc80.png", "image/png"),
        (None, "image/png"),
    ],
)
def test_invalid_metadata_rejected_before_key_generation(filename, mime_type):
    with mock.patch.object(KeyGenerator, "generate") as generate:
        with pytest.raises(ValidationError):
            EncryptionPipeline.run(PlaintextFile(b"data", filename, mime_type), 5)
    generate.assert_not_called()


def test_filename_at_limit_is_accepted():
    name = "a" * medicrypt.MAX_FILENAME_BYTES
    result = medicrypt.encrypt(b"data", name, "image/png")
    assert medicrypt.decrypt(result.container, result.key).filename == name


def test_non_bytes_plaintext_rejected():
    with pytest.raises(ValidationError):
        medicrypt.encrypt("text, not bytes", "scan.png", "image/png")


def test_codec_rejects_bad_tag_length():
    with pytest.raises(ValidationError):
        medicrypt.encode(ContainerMetadata("a.png", "image/png", 1), b"short", b"", bytes(12))
