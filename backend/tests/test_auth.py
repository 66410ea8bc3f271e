"""Tests for bearer token verification."""
import time

import pytest

from connectly.auth.service import JWTVerifier, Unauthorized, parse_bearer

from conftest import JWT_SECRET, make_token


@pytest.fixture
def verifier():
    return JWTVerifier(JWT_SECRET)


class TestJWTVerifier:
    """Tests for JWTVerifier.verify."""

    def test_valid_token(self, verifier):
        """A correctly signed token yields its userId claim."""
        assert verifier.verify(make_token("user-1")) == "user-1"

    def test_missing_token(self, verifier):
        """An absent token is rejected."""
        with pytest.raises(Unauthorized, match="Missing token"):
            verifier.verify(None)
        with pytest.raises(Unauthorized):
            verifier.verify("")

    def test_wrong_signature(self, verifier):
        """A token signed with another secret is rejected."""
        token = make_token("user-1", secret="another-secret-0123456789abcdefghij")
        with pytest.raises(Unauthorized, match="Invalid token"):
            verifier.verify(token)

    def test_garbage_token(self, verifier):
        """A string that is not a JWT is rejected."""
        with pytest.raises(Unauthorized):
            verifier.verify("not-a-jwt")

    def test_expired_token(self, verifier):
        """A token expired beyond the leeway is rejected."""
        token = make_token("user-1", exp=int(time.time()) - 60)
        with pytest.raises(Unauthorized):
            verifier.verify(token)

    def test_expiry_within_leeway(self):
        """A token that expired inside the leeway is still accepted."""
        verifier = JWTVerifier(JWT_SECRET, leeway_seconds=30)
        token = make_token("user-1", exp=int(time.time()) - 5)
        assert verifier.verify(token) == "user-1"

    def test_missing_claim(self, verifier):
        """A token without the user id claim is rejected."""
        import jwt
        token = jwt.encode({"sub": "user-1"}, JWT_SECRET, algorithm="HS256")
        with pytest.raises(Unauthorized, match="payload"):
            verifier.verify(token)

    def test_non_string_claim(self, verifier):
        """A numeric user id claim is rejected."""
        with pytest.raises(Unauthorized, match="payload"):
            verifier.verify(make_token(42))

    def test_custom_claim(self):
        """The user id claim name is configurable."""
        import jwt
        verifier = JWTVerifier(JWT_SECRET, user_id_claim="sub")
        token = jwt.encode({"sub": "user-9"}, JWT_SECRET, algorithm="HS256")
        assert verifier.verify(token) == "user-9"

    def test_unconfigured_secret(self):
        """Without a secret every token is rejected."""
        with pytest.raises(Unauthorized, match="not configured"):
            JWTVerifier(None).verify(make_token("user-1"))


class TestParseBearer:
    """Tests for parse_bearer."""

    def test_bearer_header(self):
        assert parse_bearer("Bearer abc.def") == "abc.def"

    def test_missing_or_other_scheme(self):
        assert parse_bearer(None) is None
        assert parse_bearer("Basic abc") is None
        assert parse_bearer("Bearer ") is None


class TestHTTPAuth:
    """Tests for the HTTP auth dependency."""

    def test_missing_header_is_401(self, api_client):
        response = api_client.get("/api/chats")
        assert response.status_code == 401

    def test_invalid_token_is_401(self, api_client):
        response = api_client.get("/api/chats", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid token"

    def test_valid_token(self, api_client, auth_headers, alice):
        response = api_client.get("/api/chats", headers=auth_headers(alice.id))
        assert response.status_code == 200
        assert response.json() == []

    def test_health_needs_no_token(self, api_client):
        response = api_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
