"""
Tests for crypto helpers and 2FA grant tokens
"""
from datetime import timedelta

from authguard.app.security import grant
from authguard.app.security.crypto import (
    compute_hmac_signature,
    constant_time_compare,
    fingerprint,
    generate_secure_token,
)
from authguard.app.security.jwt import create_access_token
from authguard.app.security.totp import generate_secret


class TestCrypto:
    def test_constant_time_compare(self):
        assert constant_time_compare("abc", "abc")
        assert not constant_time_compare("abc", "abd")
        assert not constant_time_compare("abc", "abcd")
        assert not constant_time_compare("abc", None)

    def test_compare_handles_non_ascii(self):
        assert constant_time_compare("café", "café")
        assert not constant_time_compare("café", "cafe")

    def test_tokens_are_unique(self):
        assert generate_secure_token() != generate_secure_token()

    def test_fingerprint_is_stable_prefix(self):
        assert fingerprint("value") == fingerprint("value")
        assert fingerprint("value") != fingerprint("other")
        assert len(fingerprint("value")) == 16

    def test_hmac_signature(self):
        """RFC 4231 test case 2"""
        signature = compute_hmac_signature("what do ya want for nothing?", "Jefe")
        assert signature == "5bdcc146bf60754e6a042426089575c75a003f089d2739839dec58b964ec3843"
        assert compute_hmac_signature(b"what do ya want for nothing?", "Jefe") == signature


class TestGrant:
    def setup_method(self):
        self.secret = generate_secret()

    def test_valid_grant(self):
        token = grant.issue_grant("user-1", "session-1", self.secret)
        assert grant.verify_grant(token, "user-1", "session-1", self.secret)

    def test_bound_to_account(self):
        token = grant.issue_grant("user-1", "session-1", self.secret)
        assert not grant.verify_grant(token, "user-2", "session-1", self.secret)

    def test_bound_to_session(self):
        token = grant.issue_grant("user-1", "session-1", self.secret)
        assert not grant.verify_grant(token, "user-1", "session-2", self.secret)

    def test_reprovisioned_secret_invalidates_grant(self):
        token = grant.issue_grant("user-1", "session-1", self.secret)
        assert not grant.verify_grant(token, "user-1", "session-1", generate_secret())

    def test_expired_grant(self):
        token = grant.issue_grant("user-1", "session-1", self.secret, ttl=timedelta(seconds=-1))
        assert not grant.verify_grant(token, "user-1", "session-1", self.secret)

    def test_access_token_is_not_a_grant(self):
        token = create_access_token({"sub": "user-1", "sid": "session-1"})
        assert not grant.verify_grant(token, "user-1", "session-1", self.secret)

    def test_garbage_token(self):
        assert not grant.verify_grant("not-a-jwt", "user-1", "session-1", self.secret)
        assert not grant.verify_grant(None, "user-1", "session-1", self.secret)
