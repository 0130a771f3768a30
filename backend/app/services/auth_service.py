"""JWT verification for API callers.

Tokens are issued by the OAuth login flow, which lives outside this service;
`create_jwt` exists for that flow and for tests.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from app.config import get_settings

settings = get_settings()


class AuthService:
    """Service for authentication operations."""

    def __init__(self):
        self.secret_key = settings.jwt_secret
        self.algorithm = settings.jwt_algorithm
        self.expiry_hours = settings.jwt_expiry_hours

    def create_jwt(self, user_id: str | uuid.UUID) -> str:
        """Create a signed token whose subject is the user id."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "iat": now,
            "exp": now + timedelta(hours=self.expiry_hours),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_jwt(self, token: str) -> dict[str, Any] | None:
        """Return the token payload, or None if it is invalid or expired."""
        try:
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.InvalidTokenError:
            return None

    def user_id_from_token(self, token: str) -> uuid.UUID | None:
        payload = self.verify_jwt(token)
        if not payload or not payload.get("sub"):
            return None
        try:
            return uuid.UUID(str(payload["sub"]))
        except ValueError:
            return None
