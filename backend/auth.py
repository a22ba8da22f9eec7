"""
Module: auth.py
Description: Bearer-token authentication for the Spending Tracker API.

Provides:
    - JWT verification with a shared secret (HS256) or a JWKS endpoint (RS256)
    - get_current_user dependency for FastAPI
    - Owner ID extraction from verified tokens

Every transaction, account and analytics query is scoped to the user ID
returned here.

Usage:
    @app.get("/protected")
    async def protected_route(user_id: str = Depends(get_current_user)):
        ...

Author: Spending Tracker Team
"""

from functools import lru_cache
from typing import Optional

import jwt
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

import config
from services.observability import logger, metrics


# =============================================================================
# Security Scheme
# =============================================================================

security = HTTPBearer(auto_error=False)


# =============================================================================
# JWT Verification
# =============================================================================

@lru_cache(maxsize=1)
def get_jwks_client() -> Optional[jwt.PyJWKClient]:
    """
    JWKS client for RS256 verification, or None if no JWKS URL is configured.

    Cached to avoid repeated HTTP calls.
    """
    if not config.JWKS_URL:
        return None
    return jwt.PyJWKClient(config.JWKS_URL)


def verify_token(token: str) -> Optional[dict]:
    """
    Verify a JWT and return its claims.

    Args:
        token: The JWT from the Authorization header.

    Returns:
        Dict of token claims if valid, None otherwise.
    """
    if not token:
        return None

    if config.AUTH_BYPASS:
        return {"sub": config.AUTH_BYPASS_USER_ID}

    try:
        if config.JWT_SECRET:
            return jwt.decode(
                token,
                config.JWT_SECRET,
                algorithms=[config.JWT_ALGORITHM],
                options={"verify_aud": False},
            )

        jwks_client = get_jwks_client()
        if jwks_client is None:
            logger.error("No JWT secret or JWKS URL configured; rejecting token")
            return None

        signing_key = jwks_client.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            options={"verify_aud": False},
        )

    except jwt.ExpiredSignatureError:
        logger.info("Token expired")
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token", reason=str(e))
    except jwt.PyJWKClientError as e:
        logger.error("JWKS lookup failed", reason=str(e))

    metrics.increment("auth.rejected")
    return None


# =============================================================================
# FastAPI Dependencies
# =============================================================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> str:
    """
    FastAPI dependency to get the current authenticated user.

    Returns:
        The user ID (`sub` claim), used as the owner ID of every record.

    Raises:
        HTTPException: 401 if not authenticated or token invalid.
    """
    if config.AUTH_BYPASS:
        return config.AUTH_BYPASS_USER_ID

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required. Please sign in.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    claims = verify_token(credentials.credentials)
    if not claims:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token. Please sign in again.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user ID.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user_id


def is_auth_configured() -> bool:
    """Check if token verification is configured."""
    return bool(config.JWT_SECRET or config.JWKS_URL) or config.AUTH_BYPASS
