"""Identity verification: JWT bearer tokens whose subject is the opaque user id."""
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from errors import UnauthorizedError
from schemas.auth import TokenPayload


class AuthService:
    """Service class for token operations."""

    @staticmethod
    def create_access_token(subject: str, expires_delta: Optional[timedelta] = None) -> str:
        """Create a JWT access token for a user id."""
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))

        to_encode = {
            "sub": str(subject),
            "exp": expire,
            "iat": now,
            "type": "access"
        }

        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def decode_token(token: str) -> Optional[TokenPayload]:
        """Decode and validate a JWT token."""
        try:
            payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
            return TokenPayload(**payload)
        except (JWTError, ValueError):
            return None

    @staticmethod
    def user_id_from_token(token: Optional[str]) -> str:
        """
        Resolve the acting user id, failing closed.

        Raises:
            UnauthorizedError: no token, an invalid or expired token, or a non-access token.
        """
        if not token:
            raise UnauthorizedError("Unauthorized")

        payload = AuthService.decode_token(token)
        if payload is None or payload.type != "access" or not payload.sub:
            raise UnauthorizedError("Could not validate credentials")

        return payload.sub
