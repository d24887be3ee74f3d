"""User profile routes served through the user cache."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel

from core.container import container
from core.exceptions import NotFoundError, UpstreamError
from core.logging import get_logger
from models.user import UserProfile
from services.university import UniversityClient
from services.user_cache import UserCache

logger = get_logger(__name__)
router = APIRouter(prefix="/api/users", tags=["users"])


class ProfileUpdateRequest(BaseModel):
    full_name: str
    class_name: Optional[str] = None
    department_name: Optional[str] = None


def get_user_cache() -> UserCache:
    return container.user_cache()


def get_university_client() -> UniversityClient:
    return container.university_client()


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Bearer token required")
    token = authorization[7:].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Bearer token required")
    return token


@router.get("/me")
async def get_current_user(
    x_user_id: str = Header(...),
    authorization: Optional[str] = Header(default=None),
    user_cache: UserCache = Depends(get_user_cache),
    university: UniversityClient = Depends(get_university_client)
):
    """Resolve the caller's profile: cache first, university API on a miss."""
    profile = await user_cache.get_user_data(x_user_id)
    if profile is not None:
        return {"success": True, "cached": True, "user": profile.to_public()}

    token = _bearer_token(authorization)
    try:
        profile = await university.get_user_info(token)
    except UpstreamError as e:
        logger.warning("Profile fetch failed", user_id=x_user_id, error=str(e))
        if e.status_code in (401, 403):
            raise HTTPException(status_code=401, detail="Please sign in again")
        raise

    if profile.user_id != x_user_id:
        raise HTTPException(status_code=403, detail="Token does not belong to this user")

    await user_cache.set_user_data(profile.user_id, profile)
    return {"success": True, "cached": False, "user": profile.to_public()}


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    user_cache: UserCache = Depends(get_user_cache)
):
    """Get a stored profile."""
    profile = await user_cache.get_user_data(user_id)
    if profile is None:
        raise NotFoundError("User not found")
    return {"success": True, "user": profile.to_public()}


@router.put("/{user_id}")
async def put_user(
    user_id: str,
    request: ProfileUpdateRequest,
    user_cache: UserCache = Depends(get_user_cache)
):
    """Replace a profile in the cache and the database."""
    profile = UserProfile(
        user_id=user_id,
        full_name=request.full_name,
        class_name=request.class_name,
        department_name=request.department_name
    )
    await user_cache.set_user_data(user_id, profile)
    return {"success": True, "user": profile.to_public()}
