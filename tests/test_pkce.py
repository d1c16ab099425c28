import base64
import hashlib
import uuid

from mailbridge.auth.pkce import (
    generate_code_challenge,
    generate_code_verifier,
    generate_state_nonce,
    is_valid_code_verifier,
)


def test_verifier_is_43_urlsafe_chars():
    verifier = generate_code_verifier()
    assert len(verifier) == 43
    assert is_valid_code_verifier(verifier)
    assert generate_code_verifier() != verifier


def test_challenge_matches_rfc7636_example():
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    assert generate_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_challenge_is_unpadded_base64url_sha256():
    verifier = generate_code_verifier()
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    expected = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    assert generate_code_challenge(verifier) == expected
    assert "=" not in expected


def test_verifier_validation_bounds():
    assert not is_valid_code_verifier("a" * 42)
    assert is_valid_code_verifier("a" * 128)
    assert not is_valid_code_verifier("a" * 129)
    assert not is_valid_code_verifier("a" * 42 + "!")
    assert not is_valid_code_verifier(None)


def test_state_nonce_is_uuid4():
    assert uuid.UUID(generate_state_nonce()).version == 4
