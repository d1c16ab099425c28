import base64

import pytest

from mailbridge.security.security_manager import SecurityManager, SecurityManagerError, derive_key


def test_round_trip(security):
    sealed = security.encrypt_token("ya29.access-token")
    assert sealed != "ya29.access-token"
    assert security.decrypt_token(sealed) == "ya29.access-token"


def test_each_encryption_uses_a_fresh_iv(security):
    assert security.encrypt_token("same") != security.encrypt_token("same")


def test_layout_is_iv_ciphertext_tag(security):
    raw = base64.b64decode(security.encrypt_token("abc"))
    assert len(raw) == 12 + 3 + 16


def test_short_key_is_zero_padded():
    assert derive_key("abc") == b"abc" + b"0" * 29
    assert len(derive_key("x" * 40)) == 32


def test_tampered_ciphertext_is_rejected(security):
    raw = bytearray(base64.b64decode(security.encrypt_token("secret")))
    raw[-1] ^= 0x01
    with pytest.raises(SecurityManagerError):
        security.decrypt_token(base64.b64encode(bytes(raw)).decode())


def test_wrong_key_cannot_decrypt(security):
    sealed = security.encrypt_token("secret")
    with pytest.raises(SecurityManagerError):
        SecurityManager("another-key").decrypt_token(sealed)


def test_garbage_input_is_rejected(security):
    with pytest.raises(SecurityManagerError):
        security.decrypt_token("not base64 at all!!")
    with pytest.raises(SecurityManagerError):
        security.decrypt_token(base64.b64encode(b"short").decode())


def test_missing_key_fails_fast(monkeypatch):
    monkeypatch.delenv("TOKEN_ENCRYPTION_KEY", raising=False)
    with pytest.raises(SecurityManagerError):
        SecurityManager()
    with pytest.raises(SecurityManagerError):
        SecurityManager("   ")


def test_signatures(security):
    signature = security.sign(b"payload")
    assert security.verify_signature(b"payload", signature)
    assert not security.verify_signature(b"payload2", signature)
    assert not SecurityManager("another-key").verify_signature(b"payload", signature)

