import hashlib

from backend.app.security import (
    hash_device_token,
    hash_pin,
    hash_session_token,
    new_device_token,
    new_pairing_code,
    verify_device_token,
    verify_pin,
)


def test_session_token_is_hashed_with_prefix():
    h = hash_session_token("abc")
    assert h.startswith("sha256:")
    assert len(h) > 10


def test_device_token_hash_roundtrip():
    tok = "secret"
    h = hash_device_token(tok)
    assert verify_device_token(tok, h) is True
    assert verify_device_token("wrong", h) is False
    assert verify_device_token(tok, None) is False


def test_device_token_hash_is_plain_sha256_hex():
    # Terminals recompute this digest to recognise their own row in deletion events.
    assert hash_device_token("tok-1") == hashlib.sha256(b"tok-1").hexdigest()


def test_new_device_tokens_are_unique_and_long():
    tokens = {new_device_token() for _ in range(20)}
    assert len(tokens) == 20
    assert all(len(t) >= 40 for t in tokens)


def test_pairing_codes_are_six_digits():
    for _ in range(200):
        code = new_pairing_code()
        assert len(code) == 6
        assert code.isdigit()


def test_pin_hash_verifies_only_the_same_pin():
    h = hash_pin("4821")
    assert h != "4821"
    assert verify_pin("4821", h) is True
    assert verify_pin("4822", h) is False
    assert verify_pin("4821", None) is False
