"""
Authentication utilities for the admin inspector API
"""
import os
import logging
from typing import Optional
from fastapi import HTTPException, Header
from jose import JWTError, jwt
from dotenv import load_dotenv
from .supabase_client import get_supabase_client

load_dotenv()
load_dotenv('../.env')

logger = logging.getLogger(__name__)

# Same secret Supabase signs access tokens with; when unset, tokens are checked remotely
JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET")
JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"

ADMIN_ROLES = {"admin", "researcher"}


def _verify_token(token: str, supabase) -> dict:
    """Return ``{"id", "email"}`` for a valid access token."""
    if JWT_SECRET:
        try:
            claims = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM], audience=JWT_AUDIENCE)
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid or expired token")
        if not claims.get("sub"):
            raise HTTPException(status_code=401, detail="Invalid or expired token")
        return {"id": claims["sub"], "email": claims.get("email")}

    user_response = supabase.auth.get_user(token)
    if not user_response or not user_response.user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return {"id": user_response.user.id, "email": user_response.user.email}


async def get_current_user(authorization: Optional[str] = Header(None)):
    """
    Validate the Supabase access token and return the user with their roles

    Args:
        authorization: Bearer token from Authorization header

    Returns:
        dict: User information including id, email, roles

    Raises:
        HTTPException: If token is invalid or user not found
    """
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = authorization.replace("Bearer ", "")

    try:
        supabase = get_supabase_client()
        user = _verify_token(token, supabase)

        roles_response = supabase.table('user_roles').select('role').eq('user_id', user["id"]).execute()
        user["roles"] = sorted({row.get("role") for row in (roles_response.data or []) if row.get("role")})
        return user

    except HTTPException:
        raise
    except Exception as e:
        logger.warning(f"Auth error: {e}")
        raise HTTPException(status_code=401, detail="Could not validate credentials")


def require_admin(user: dict):
    """
    Check that the user may inspect and edit study sessions

    Args:
        user: User dict from get_current_user

    Raises:
        HTTPException: If user holds neither the admin nor the researcher role
    """
    if not ADMIN_ROLES.intersection(user.get("roles") or []):
        raise HTTPException(status_code=403, detail="Admin or researcher access required")
