# tests/core/test_signing.py
"""Tests for token signing primitives."""

import pytest

from rekindle.core.security import get_signing_key, key_fingerprint, sign, verify_signature


class TestGetSigningKey:
    """Key resolution order."""

    def test_explicit_bytes(self) -> None:
        assert get_signing_key(b"secret") == b"secret"

    def test_explicit_str_encoded(self) -> None:
        assert get_signing_key("sécret") == "sécret".encode()

    def test_explicit_beats_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REKINDLE_TOKEN_KEY", "from-env")

        assert get_signing_key(b"explicit") == b"explicit"

    def test_environment_fallback(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REKINDLE_TOKEN_KEY", "from-env")

        assert get_signing_key() == b"from-env"

    def test_empty_explicit_key_rejected(self) -> None:
        with pytest.raises(ValueError, match="empty"):
            get_signing_key(b"")

    def test_missing_key_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("REKINDLE_TOKEN_KEY", raising=False)

        with pytest.raises(ValueError, match="not configured"):
            get_signing_key()


class TestSignatures:
    """HMAC-SHA256 sign/verify."""

    def test_sign_is_deterministic(self) -> None:
        assert sign(b"body", key=b"k") == sign(b"body", key=b"k")

    def test_signature_is_32_bytes(self) -> None:
        assert len(sign(b"body", key=b"k")) == 32

    def test_verify_accepts_matching_signature(self) -> None:
        assert verify_signature(b"body", sign(b"body", key=b"k"), key=b"k") is True

    def test_verify_rejects_other_message(self) -> None:
        assert verify_signature(b"body2", sign(b"body", key=b"k"), key=b"k") is False

    def test_verify_rejects_other_key(self) -> None:
        assert verify_signature(b"body", sign(b"body", key=b"k1"), key=b"k2") is False

    def test_fingerprint_is_short_and_stable(self) -> None:
        fingerprint = key_fingerprint(b"secret")

        assert fingerprint == key_fingerprint(b"secret")
        assert len(fingerprint) == 16
        assert "secret" not in fingerprint
