"""Authentication schemas."""
from pydantic import BaseModel


class TokenPayload(BaseModel):
    """Schema for JWT token payload."""
    sub: str  # subject (opaque user id)
    exp: int  # expiration time
    iat: int  # issued at
    type: str  # token type (access/refresh)
