"""
FastAPI dependency functions for authentication.

Verifies Supabase Auth Bearer tokens against the project's JWKS endpoint
(ES256 signing keys) and exposes the authenticated user to route handlers.
The user_id from the token is the only identity the services trust.
"""

import logging
from dataclasses import dataclass
from typing import Annotated, NoReturn, Optional

from fastapi import Header, HTTPException, status
from jwt import PyJWKClient, decode
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError, PyJWKClientError

from ledgerly.config import settings

logger = logging.getLogger(__name__)

# Lazily created; PyJWKClient caches keys and handles rotation
_jwks_client: Optional[PyJWKClient] = None


@dataclass
class AuthenticatedUser:
    """
    Represents an authenticated user with their token.

    Attributes:
        user_id: The user's UUID from the JWT 'sub' claim
        access_token: The raw JWT, used to build an RLS-scoped Supabase client
    """
    user_id: str
    access_token: str


def get_jwks_client() -> PyJWKClient:
    """
    Get or create the JWKS client instance.

    Raises:
        ValueError: If SUPABASE_URL is not configured
    """
    global _jwks_client

    if _jwks_client is None:
        jwks_url = settings.SUPABASE_JWKS_URL
        if not jwks_url:
            raise ValueError(
                "SUPABASE_URL is not configured. "
                "Cannot construct JWKS URL for JWT verification."
            )

        logger.info(f"Initializing JWKS client with URL: {jwks_url}")
        _jwks_client = PyJWKClient(jwks_url, cache_keys=True, max_cached_keys=16)

    return _jwks_client


def _unauthorized(error: str, details: str) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": error, "details": details}
    )


def _extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        logger.warning("Missing Authorization header")
        _unauthorized("unauthorized", "Missing Authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        logger.warning("Invalid Authorization header format")
        _unauthorized("unauthorized", "Invalid Authorization header format")

    return parts[1]


def _decode_user_id(token: str) -> str:
    """Verify signature, expiry, audience and issuer; return the 'sub' claim."""
    try:
        signing_key = get_jwks_client().get_signing_key_from_jwt(token)

        payload = decode(
            token,
            signing_key.key,
            algorithms=["ES256"],
            audience="authenticated",
            issuer=settings.SUPABASE_ISSUER,
            options={
                "verify_signature": True,
                "verify_exp": True,
                "verify_aud": True,
                "verify_iss": True,
            }
        )
    except ExpiredSignatureError:
        logger.warning("Token has expired")
        _unauthorized("token_expired", "Authentication token has expired")
    except PyJWKClientError as e:
        logger.error(f"JWKS client error: {e}")
        _unauthorized("jwks_error", "Unable to verify token signature")
    except InvalidTokenError as e:
        logger.warning(f"Invalid token: {e}")
        _unauthorized("invalid_token", "Invalid authentication token")
    except ValueError as e:
        logger.error(f"Token verification unavailable: {e}")
        _unauthorized("unauthorized", "Token verification failed")

    user_id = payload.get("sub")
    if not user_id:
        logger.error("Token payload missing 'sub' claim")
        _unauthorized("unauthorized", "Invalid token: missing user ID")

    return str(user_id)


async def get_authenticated_user(
    authorization: Annotated[Optional[str], Header()] = None
) -> AuthenticatedUser:
    """
    Verify the Bearer token and return the authenticated user with its token.

    Raises:
        HTTPException: 401 if token is missing, invalid, or expired

    Usage:
        @router.get("/transactions")
        async def list_transactions(
            auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
        ):
            supabase_client = get_supabase_client(auth_user.access_token)
    """
    token = _extract_bearer_token(authorization)
    user_id = _decode_user_id(token)

    logger.info(f"Token verified successfully for user_id={user_id}")
    return AuthenticatedUser(user_id=user_id, access_token=token)
