"""
Authentication for dashboard-facing endpoints.

get_current_user verifies Supabase JWTs locally with python-jose when
SUPABASE_JWT_SECRET is set and falls back to the Supabase Auth API otherwise.
verify_interaction_ownership returns the interaction row so callers don't
have to SELECT it again.

The inbound webhook does not use these: it is authenticated by the workspace
API key in its path.
"""

import logging
import os
from typing import Optional

from fastapi import HTTPException, Header
from jose import ExpiredSignatureError, JWTError, jwt

from mailplan.db import supabase, supabase_admin

logger = logging.getLogger(__name__)

# Project Settings > API > JWT Secret. Unset means remote verification.
SUPABASE_JWT_SECRET: Optional[str] = os.environ.get("SUPABASE_JWT_SECRET") or None


async def get_current_user(authorization: Optional[str] = Header(None)) -> str:
    """
    Extract and verify the bearer token from the Authorization header.

    Returns:
        user_id: the JWT ``sub`` claim

    Raises:
        HTTPException: 401 if the token is missing, malformed, invalid or expired
    """
    if not authorization:
        raise HTTPException(status_code=401, detail="Not authenticated")

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")

    token = parts[1]
    if SUPABASE_JWT_SECRET:
        return _verify_jwt_locally(token)
    return await _verify_jwt_remotely(token)


def _verify_jwt_locally(token: str) -> str:
    """Verify an HS256 Supabase JWT with the project secret."""
    try:
        payload = jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_aud": False},  # Supabase sets aud to the role, not a fixed audience
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id: Optional[str] = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_id


async def _verify_jwt_remotely(token: str) -> str:
    """Verify a JWT through supabase.auth.get_user()."""
    try:
        response = supabase.auth.get_user(token)
    except Exception as e:
        if "expired" in str(e).lower():
            raise HTTPException(status_code=401, detail="Token expired")
        raise HTTPException(status_code=401, detail="Invalid token")

    if not response or not response.user:
        raise HTTPException(status_code=401, detail="Invalid token")
    return response.user.id


async def verify_interaction_ownership(interaction_id: str, user_id: str) -> dict:
    """
    Return the email_interactions row if user_id owns it.

    Raises:
        HTTPException: 404 if not found, 403 if owned by someone else,
        500 on database error
    """
    try:
        result = (
            supabase_admin.table("email_interactions")
            .select("*")
            .eq("id", interaction_id)
            .execute()
        )
    except Exception as e:
        logger.error("Ownership check failed for interaction %s: %s", interaction_id, e)
        raise HTTPException(status_code=500, detail="Failed to verify ownership")

    if not result.data:
        raise HTTPException(status_code=404, detail="Interaction not found")

    interaction = result.data[0]
    if interaction.get("user_id") != user_id:
        raise HTTPException(
            status_code=403,
            detail="You are not authorized to access this interaction",
        )
    return interaction
