"""Tests for webhook HMAC signature verification."""

import base64
import hashlib
import hmac

from marketplace.services.webhooks.verification import compute_signature, verify_signature

BODY = b'{"id": 450789469, "line_items": []}'
SECRET = "hush"


def expected_signature(body: bytes, secret: str) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


class TestSignature:
    def test_compute_matches_base64_hmac_sha256(self):
        assert compute_signature(BODY, SECRET) == expected_signature(BODY, SECRET)

    def test_valid_signature(self):
        assert verify_signature(BODY, expected_signature(BODY, SECRET), SECRET)

    def test_surrounding_whitespace_ignored(self):
        assert verify_signature(BODY, f" {expected_signature(BODY, SECRET)}\n", SECRET)

    def test_tampered_body(self):
        assert not verify_signature(BODY + b" ", expected_signature(BODY, SECRET), SECRET)

    def test_wrong_secret(self):
        assert not verify_signature(BODY, expected_signature(BODY, "other"), SECRET)

    def test_missing_header(self):
        assert not verify_signature(BODY, None, SECRET)
        assert not verify_signature(BODY, "", SECRET)

    def test_missing_secret_never_verifies(self):
        assert not verify_signature(BODY, expected_signature(BODY, ""), "")
        assert not verify_signature(BODY, expected_signature(BODY, SECRET), None)
