"""
Tests for the Enigma crypto core.

Tests cover:
- HKDF key derivation (determinism, tenant/day separation, fixed vector)
- Input validation for key material and context
- AES-256-GCM round trip, nonce freshness and tamper detection
- Associated data binding
- Canonical payload serialization and UTC key dates
"""
import base64
import hashlib
from datetime import datetime, timedelta, timezone

import pytest

from nexus_enigma.exceptions import (
    AuthenticationFailed,
    InvalidContext,
    InvalidKeyMaterial,
)
from nexus_enigma.protocol.crypto import (
    KEY_LENGTH,
    NONCE_SIZE,
    TAG_SIZE,
    associated_data,
    decrypt,
    derive_key,
    deserialize_payload,
    encrypt,
    key_date_for,
    serialize_payload,
)


# --- Test Fixtures ---

FIXTURE_SECRET = base64.b64decode("MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY=")
FIXTURE_APP_KEY = "app_test"
FIXTURE_DATE = "2024-01-15"
FIXTURE_KEY_HEX = "bcf3ef5fe5cb551a58f4f33939f9f0c27cb469f295255d58b6a30fb17df319d9"
FIXTURE_KEY_SHA256 = "d3bb1a5f371b2e039412fba139442d19b71014d2b4a0a47327f186b8b7afea9c"


@pytest.fixture
def key():
    """Derived key for the compatibility fixture."""
    return derive_key(FIXTURE_SECRET, FIXTURE_APP_KEY, FIXTURE_DATE)


def _flip_bit(data: bytes, index: int, bit: int = 0) -> bytes:
    tampered = bytearray(data)
    tampered[index] ^= 1 << bit
    return bytes(tampered)


# --- Test Key Derivation ---

class TestDeriveKey:
    """Tests for HKDF-SHA256 daily key derivation."""

    def test_fixture_secret_decodes(self):
        """Test the fixture master secret is the 32 ASCII bytes."""
        assert FIXTURE_SECRET == b"0123456789abcdef0123456789abcdef"

    def test_cross_implementation_vector(self, key):
        """Test derivation matches the checked-in compatibility vector."""
        assert key.hex() == FIXTURE_KEY_HEX
        assert hashlib.sha256(key).hexdigest() == FIXTURE_KEY_SHA256

    def test_key_length(self, key):
        """Test derived keys are 32 bytes."""
        assert len(key) == KEY_LENGTH

    def test_deterministic(self):
        """Test same inputs give the identical key."""
        k1 = derive_key(FIXTURE_SECRET, FIXTURE_APP_KEY, FIXTURE_DATE)
        k2 = derive_key(FIXTURE_SECRET, FIXTURE_APP_KEY, FIXTURE_DATE)
        assert k1 == k2

    def test_tenants_are_separated(self):
        """Test different app keys give different keys for the same secret."""
        k1 = derive_key(FIXTURE_SECRET, "app_test", FIXTURE_DATE)
        k2 = derive_key(FIXTURE_SECRET, "app_other", FIXTURE_DATE)
        assert k1 != k2
        assert k2.hex() == (
            "334d2e36ed4c24d665ace6151acdb7be8208a5041f8d2dbb26ebcd5791fb57e3"
        )

    def test_day_rollover(self):
        """Test consecutive dates give different keys."""
        k1 = derive_key(FIXTURE_SECRET, FIXTURE_APP_KEY, "2024-01-15")
        k2 = derive_key(FIXTURE_SECRET, FIXTURE_APP_KEY, "2024-01-16")
        assert k1 != k2
        assert k2.hex() == (
            "b2cd11041f6650a4b5daaa2989883f65313a3b72467e1d526a3f454b5fbe33d3"
        )

    def test_accepts_bytearray(self):
        """Test bytearray key material derives the same key as bytes."""
        k1 = derive_key(bytearray(FIXTURE_SECRET), FIXTURE_APP_KEY, FIXTURE_DATE)
        assert k1.hex() == FIXTURE_KEY_HEX

    def test_empty_secret(self):
        """Test empty master secret is rejected."""
        with pytest.raises(InvalidKeyMaterial):
            derive_key(b"", FIXTURE_APP_KEY, FIXTURE_DATE)

    def test_short_secret(self):
        """Test master secrets under 16 bytes are rejected."""
        with pytest.raises(InvalidKeyMaterial):
            derive_key(b"x" * 15, FIXTURE_APP_KEY, FIXTURE_DATE)

    def test_minimum_secret_length_accepted(self):
        """Test a 16-byte master secret is accepted."""
        assert len(derive_key(b"x" * 16, FIXTURE_APP_KEY, FIXTURE_DATE)) == 32

    def test_non_bytes_secret(self):
        """Test text master secrets must be decoded first."""
        with pytest.raises(InvalidKeyMaterial):
            derive_key("0123456789abcdef0123456789abcdef", FIXTURE_APP_KEY, FIXTURE_DATE)

    def test_empty_app_key(self):
        """Test empty app key is rejected."""
        with pytest.raises(InvalidContext):
            derive_key(FIXTURE_SECRET, "", FIXTURE_DATE)

    def test_empty_date(self):
        """Test empty key date is rejected."""
        with pytest.raises(InvalidContext):
            derive_key(FIXTURE_SECRET, FIXTURE_APP_KEY, "")

    def test_errors_are_value_errors(self):
        """Test configuration errors are also ValueErrors."""
        with pytest.raises(ValueError):
            derive_key(b"", FIXTURE_APP_KEY, FIXTURE_DATE)
        with pytest.raises(ValueError):
            derive_key(FIXTURE_SECRET, "", FIXTURE_DATE)


# --- Test AES-GCM ---

class TestAead:
    """Tests for authenticated encryption."""

    def test_roundtrip(self, key):
        """Test decrypt returns the original plaintext."""
        ciphertext, nonce = encrypt(key, b'{"temperature":25.5}')
        assert decrypt(key, nonce, ciphertext) == b'{"temperature":25.5}'

    def test_output_sizes(self, key):
        """Test nonce is 12 bytes and ciphertext carries a 16-byte tag."""
        ciphertext, nonce = encrypt(key, b"hello")
        assert len(nonce) == NONCE_SIZE
        assert len(ciphertext) == len(b"hello") + TAG_SIZE

    def test_empty_plaintext(self, key):
        """Test empty plaintext round-trips."""
        ciphertext, nonce = encrypt(key, b"")
        assert decrypt(key, nonce, ciphertext) == b""

    def test_nonce_uniqueness(self, key):
        """Test 10,000 encryptions under one key never repeat a nonce."""
        nonces = {encrypt(key, b"same plaintext")[1] for _ in range(10_000)}
        assert len(nonces) == 10_000

    def test_same_plaintext_differs(self, key):
        """Test encrypting twice gives different ciphertexts."""
        c1, _ = encrypt(key, b"same plaintext")
        c2, _ = encrypt(key, b"same plaintext")
        assert c1 != c2

    def test_every_ciphertext_bit_is_authenticated(self, key):
        """Test flipping any ciphertext bit fails authentication."""
        ciphertext, nonce = encrypt(key, b"payload")
        for index in range(len(ciphertext)):
            for bit in range(8):
                with pytest.raises(AuthenticationFailed):
                    decrypt(key, nonce, _flip_bit(ciphertext, index, bit))

    def test_every_nonce_bit_is_authenticated(self, key):
        """Test flipping any nonce bit fails authentication."""
        ciphertext, nonce = encrypt(key, b"payload")
        for index in range(len(nonce)):
            for bit in range(8):
                with pytest.raises(AuthenticationFailed):
                    decrypt(key, _flip_bit(nonce, index, bit), ciphertext)

    def test_wrong_key(self, key):
        """Test a key for another day fails authentication."""
        ciphertext, nonce = encrypt(key, b"payload")
        other = derive_key(FIXTURE_SECRET, FIXTURE_APP_KEY, "2024-01-16")
        with pytest.raises(AuthenticationFailed):
            decrypt(other, nonce, ciphertext)

    def test_truncated_ciphertext(self, key):
        """Test ciphertext shorter than a tag fails authentication."""
        _, nonce = encrypt(key, b"payload")
        with pytest.raises(AuthenticationFailed):
            decrypt(key, nonce, b"\x00" * (TAG_SIZE - 1))

    def test_wrong_nonce_length(self, key):
        """Test nonces of the wrong size fail authentication."""
        ciphertext, nonce = encrypt(key, b"payload")
        with pytest.raises(AuthenticationFailed):
            decrypt(key, nonce[:11], ciphertext)

    def test_invalid_tag_is_not_chained(self, key):
        """Test the underlying InvalidTag is not exposed."""
        ciphertext, nonce = encrypt(key, b"payload")
        with pytest.raises(AuthenticationFailed) as exc_info:
            decrypt(key, nonce, _flip_bit(ciphertext, 0))
        assert exc_info.value.__cause__ is None
        assert exc_info.value.__suppress_context__ is True

    def test_bad_key_length(self):
        """Test keys that are not 32 bytes are rejected."""
        with pytest.raises(InvalidKeyMaterial):
            encrypt(b"k" * 16, b"payload")
        with pytest.raises(InvalidKeyMaterial):
            decrypt(b"k" * 31, b"n" * 12, b"c" * 32)


# --- Test Associated Data ---

class TestAssociatedData:
    """Tests for binding envelope headers as associated data."""

    def test_format(self):
        """Test associated data layout."""
        assert associated_data("app_test", "2024-01-15", 2) == b"app_test|2024-01-15|2"

    def test_roundtrip_with_aad(self, key):
        """Test decrypting with the same associated data succeeds."""
        aad = associated_data(FIXTURE_APP_KEY, FIXTURE_DATE, 1)
        ciphertext, nonce = encrypt(key, b"payload", aad)
        assert decrypt(key, nonce, ciphertext, aad) == b"payload"

    @pytest.mark.parametrize("app_key,key_date,version", [
        ("app_tesu", FIXTURE_DATE, 1),
        (FIXTURE_APP_KEY, "2024-01-14", 1),
        (FIXTURE_APP_KEY, FIXTURE_DATE, 3),
    ])
    def test_tampered_context(self, key, app_key, key_date, version):
        """Test a changed app key, date or version fails authentication."""
        aad = associated_data(FIXTURE_APP_KEY, FIXTURE_DATE, 1)
        ciphertext, nonce = encrypt(key, b"payload", aad)
        with pytest.raises(AuthenticationFailed):
            decrypt(key, nonce, ciphertext, associated_data(app_key, key_date, version))

    def test_missing_aad(self, key):
        """Test omitting bound associated data fails authentication."""
        aad = associated_data(FIXTURE_APP_KEY, FIXTURE_DATE, 1)
        ciphertext, nonce = encrypt(key, b"payload", aad)
        with pytest.raises(AuthenticationFailed):
            decrypt(key, nonce, ciphertext)


# --- Test Serialization & Time ---

class TestPayloadAndTime:
    """Tests for payload encoding and UTC key dates."""

    def test_canonical_json(self):
        """Test keys are sorted for a canonical byte string."""
        assert serialize_payload({"b": 1, "a": [1, 2]}) == b'{"a":[1,2],"b":1}'

    def test_payload_roundtrip(self):
        """Test nested payloads decode back."""
        payload = {"temperature": 25.5, "tags": ["x", "y"], "ok": True, "none": None}
        assert deserialize_payload(serialize_payload(payload)) == payload

    def test_unserializable_payload(self):
        """Test non-JSON payloads raise TypeError."""
        with pytest.raises(TypeError):
            serialize_payload({"when": object()})

    def test_key_date_utc(self):
        """Test key dates use the UTC calendar day."""
        moment = datetime(2024, 1, 15, 23, 30, tzinfo=timezone.utc)
        assert key_date_for(moment) == "2024-01-15"

    def test_key_date_converts_offsets(self):
        """Test non-UTC aware datetimes are converted before formatting."""
        tz = timezone(timedelta(hours=-5))
        moment = datetime(2024, 1, 15, 20, 0, tzinfo=tz)  # 01:00 UTC next day
        assert key_date_for(moment) == "2024-01-16"

    def test_key_date_naive(self):
        """Test naive datetimes are treated as UTC."""
        assert key_date_for(datetime(2024, 2, 29, 12, 0)) == "2024-02-29"
