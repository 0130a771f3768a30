"""Tests for authentication service."""

import uuid

import pytest
import jwt
from datetime import datetime, timezone, timedelta
from unittest.mock import patch


class TestAuthService:
    """Test AuthService JWT functionality."""

    @pytest.fixture
    def auth_service(self):
        """Create AuthService with mocked settings."""
        with patch("app.services.auth_service.settings") as mock_settings:
            mock_settings.jwt_secret = "test-secret-key-that-is-long-enough"
            mock_settings.jwt_algorithm = "HS256"
            mock_settings.jwt_expiry_hours = 24

            from app.services.auth_service import AuthService
            return AuthService()

    def test_create_jwt_returns_token(self, auth_service):
        """create_jwt returns a JWT token string."""
        token = auth_service.create_jwt("user-123")

        assert isinstance(token, str)
        # JWT format: header.payload.signature
        assert token.count(".") == 2

    def test_create_jwt_contains_user_id(self, auth_service):
        """create_jwt puts the user id in the subject claim."""
        user_id = uuid.uuid4()
        token = auth_service.create_jwt(user_id)

        payload = jwt.decode(token, options={"verify_signature": False})
        assert payload["sub"] == str(user_id)
        assert payload["exp"] > payload["iat"]

    def test_verify_jwt_valid_token(self, auth_service):
        token = auth_service.create_jwt("user-abc")

        payload = auth_service.verify_jwt(token)

        assert payload is not None
        assert payload["sub"] == "user-abc"

    def test_verify_jwt_invalid_token(self, auth_service):
        assert auth_service.verify_jwt("invalid-token") is None

    def test_verify_jwt_expired_token(self, auth_service):
        """verify_jwt returns None for expired token."""
        expired_payload = {
            "sub": "user-expired",
            "iat": datetime.now(timezone.utc) - timedelta(hours=48),
            "exp": datetime.now(timezone.utc) - timedelta(hours=24),
        }
        expired_token = jwt.encode(
            expired_payload,
            auth_service.secret_key,
            algorithm=auth_service.algorithm
        )

        assert auth_service.verify_jwt(expired_token) is None

    def test_verify_jwt_wrong_signature(self, auth_service):
        """verify_jwt returns None for token with wrong signature."""
        wrong_token = jwt.encode(
            {
                "sub": "user-wrong",
                "iat": datetime.now(timezone.utc),
                "exp": datetime.now(timezone.utc) + timedelta(hours=24),
            },
            "a-different-secret-key-of-enough-length",
            algorithm="HS256"
        )

        assert auth_service.verify_jwt(wrong_token) is None


class TestUserIdFromToken:
    """Test subject extraction for request authentication."""

    @pytest.fixture
    def auth_service(self):
        from app.services.auth_service import AuthService
        return AuthService()

    def test_uuid_subject(self, auth_service):
        user_id = uuid.uuid4()

        assert auth_service.user_id_from_token(auth_service.create_jwt(user_id)) == user_id

    def test_non_uuid_subject(self, auth_service):
        assert auth_service.user_id_from_token(auth_service.create_jwt("not-a-uuid")) is None

    def test_garbage_token(self, auth_service):
        assert auth_service.user_id_from_token("garbage") is None
