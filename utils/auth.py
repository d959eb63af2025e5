"""
Authentication utilities for Supabase-issued bearer tokens
"""

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from utils.config import Config, get_config
from utils.logging import user_id_var

security = HTTPBearer()

TOKEN_AUDIENCE = "authenticated"


def verify_token(token: str, config: Config) -> dict:
    """Verify the user's JWT and return its claims"""
    if not config.auth_jwt_secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="AUTH_JWT_SECRET is not configured"
        )

    try:
        return jwt.decode(
            token,
            config.auth_jwt_secret,
            algorithms=["HS256"],
            audience=TOKEN_AUDIENCE
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired"
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    config: Config = Depends(get_config)
) -> str:
    """Owning-user id (`sub` claim) of the caller"""
    payload = verify_token(credentials.credentials, config)
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload"
        )
    user_id_var.set(user_id)
    return user_id
