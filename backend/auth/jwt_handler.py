"""
JWT token handling for API authentication
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import HTTPException, status

from backend.core.config import get_settings


class JWTHandler:
    """Issue and verify HS256 bearer tokens whose subject is the user id"""

    def __init__(self, secret_key: Optional[str] = None, algorithm: Optional[str] = None):
        settings = get_settings()
        self.secret_key = secret_key or settings.secret_key
        self.algorithm = algorithm or settings.jwt_algorithm
        self.expire_minutes = settings.access_token_expire_minutes

    def create_access_token(self, user_id: int, expires_delta: Optional[timedelta] = None, **claims: Any) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "iat": now,
            "exp": now + (expires_delta or timedelta(minutes=self.expire_minutes)),
            "type": "access",
        }
        payload.update(claims)
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Dict[str, Any]:
        """Decode a token, raising 401 on any problem"""
        try:
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired",
                headers={"WWW-Authenticate": "Bearer"},
            )
        except jwt.InvalidTokenError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication token",
                headers={"WWW-Authenticate": "Bearer"},
            )
