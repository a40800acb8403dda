import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException, status
from jose import JWTError, jwt

from app.core.config import settings
from app.models.user import User

logger = logging.getLogger(__name__)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


class JWTManager:
    """
    Issues and verifies bearer tokens.

    Accounts are managed elsewhere; this service only needs the token to carry
    the user id, email and role.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        issuer: Optional[str] = None,
        lifetime: Optional[timedelta] = None,
    ):
        self.secret_key = secret_key or settings.jwt_secret
        self.algorithm = algorithm or settings.jwt_algorithm
        self.issuer = issuer or settings.jwt_issuer
        self.lifetime = lifetime or timedelta(days=settings.jwt_user_expiration)

    def create_access_token(self, user: User, expires_in: Optional[timedelta] = None) -> str:
        issued_at = datetime.now(timezone.utc)
        claims = {
            "sub": str(user.id),
            "user_id": user.id,
            "email": user.email,
            "role": user.role,
            "type": "access",
            "iss": self.issuer,
            "iat": issued_at,
            "exp": issued_at + (expires_in or self.lifetime),
        }
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str, token_type: str = "access") -> Dict[str, Any]:
        """
        Decode a token and check its signature, expiry, issuer and type.

        Raises:
            HTTPException: 401 for any token that fails a check
        """
        try:
            claims = jwt.decode(
                token, self.secret_key, algorithms=[self.algorithm], issuer=self.issuer
            )
        except JWTError as e:
            logger.warning(f"JWT verification failed: {e}")
            raise _unauthorized("Invalid or expired token")

        if claims.get("type") != token_type:
            raise _unauthorized(f"Invalid token type. Expected {token_type}")
        return claims


jwt_manager = JWTManager()
