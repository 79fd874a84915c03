"""Password hashing and access-token claims."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from felicity.core.config import settings
from felicity.core.security import (
    TokenError,
    create_access_token,
    hash_password,
    user_id_from_token,
    verify_password,
)


def sign(**claims) -> str:
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


class TestPasswords:
    def test_hash_verifies_only_the_same_password(self):
        hashed = hash_password("s3cret")
        assert verify_password("s3cret", hashed)
        assert not verify_password("other", hashed)

    def test_malformed_hash_is_a_mismatch(self):
        assert not verify_password("s3cret", "not-a-bcrypt-hash")


class TestAccessTokens:
    def test_issued_token_yields_user_id(self):
        assert user_id_from_token(create_access_token(user_id=42, role="organiser")) == 42

    def test_missing_role_claim_is_rejected(self):
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        with pytest.raises(TokenError):
            user_id_from_token(sign(sub="42", type="access", exp=exp))

    def test_non_access_token_is_rejected(self):
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        with pytest.raises(TokenError, match="Not an access token"):
            user_id_from_token(sign(sub="42", role="participant", type="refresh", exp=exp))

    def test_non_numeric_subject_is_rejected(self):
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        with pytest.raises(TokenError):
            user_id_from_token(sign(sub="abc", role="participant", type="access", exp=exp))

    def test_expired_token(self):
        exp = datetime.now(timezone.utc) - timedelta(minutes=1)
        with pytest.raises(TokenError, match="expired"):
            user_id_from_token(sign(sub="42", role="participant", type="access", exp=exp))
