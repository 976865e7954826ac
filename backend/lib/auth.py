"""
Authentication utilities for Supabase-issued JWTs
"""
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from fastapi import HTTPException, Header
from jose import ExpiredSignatureError, JWTError, jwt

from .supabase_client import get_supabase_client

load_dotenv()
load_dotenv('../.env')

logger = logging.getLogger(__name__)

# Same secret Supabase signs access tokens with
JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET")
JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"


def decode_access_token(token: str, secret: str) -> dict:
    """
    Verify a Supabase access token locally.

    Returns:
        dict: User information (id, email)

    Raises:
        HTTPException: If the token is expired, malformed or has no subject
    """
    try:
        claims = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM], audience=JWT_AUDIENCE)
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except JWTError as e:
        logger.warning(f"⚠️ [Auth] Rejected token: {e}")
        raise HTTPException(status_code=401, detail="Could not validate credentials")

    if not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Token has no subject")
    return {"id": claims["sub"], "email": claims.get("email")}


async def get_current_user(authorization: Optional[str] = Header(None)):
    """
    Validate the Bearer token and return the caller.

    Tokens are verified with SUPABASE_JWT_SECRET when it is set, otherwise
    by asking Supabase auth.

    Args:
        authorization: Bearer token from Authorization header

    Returns:
        dict: User information including id and email

    Raises:
        HTTPException: If token is missing or invalid
    """
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = authorization.replace("Bearer ", "", 1)

    if JWT_SECRET:
        return decode_access_token(token, JWT_SECRET)

    try:
        user_response = get_supabase_client().auth.get_user(token)
    except Exception as e:
        logger.warning(f"⚠️ [Auth] Supabase rejected token: {e}")
        raise HTTPException(status_code=401, detail="Could not validate credentials")

    if not user_response or not user_response.user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user = user_response.user
    return {"id": user.id, "email": user.email}
