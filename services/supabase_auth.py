# services/supabase_auth.py
from jose import jwt, JWTError
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
import logging

from config.settings import get_settings
from database import get_db
from models.profile import Profile

logger = logging.getLogger(__name__)


def _get_bearer_token(request: Request) -> str:
    auth = request.headers.get("Authorization")
    if not auth or not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    return auth.split(" ", 1)[1].strip()


async def get_current_supabase_user(request: Request) -> dict:
    token = _get_bearer_token(request)
    settings = get_settings()

    if not settings.supabase_jwt_secret:
        raise RuntimeError("SUPABASE_JWT_SECRET is not configured")

    try:
        payload = jwt.decode(
            token,
            settings.supabase_jwt_secret,  # HS256 uses shared secret
            algorithms=["HS256"],
            audience=settings.supabase_jwt_aud,
            issuer=f"{settings.supabase_project_url}/auth/v1",
        )
        return payload
    except JWTError as e:
        logger.warning("supabase_jwt_rejected: %s", e)
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def get_current_profile(
    db: Session = Depends(get_db),
    payload: dict = Depends(get_current_supabase_user),
) -> Profile:
    # profiles.id is the Supabase auth user id (sub claim)
    supabase_user_id = payload.get("sub")
    if not supabase_user_id:
        raise HTTPException(status_code=401, detail="Invalid auth token")

    profile = db.query(Profile).filter(Profile.id == str(supabase_user_id)).first()
    if profile is None:
        raise HTTPException(status_code=401, detail="No profile for this user")
    return profile


def require_admin(profile: Profile = Depends(get_current_profile)) -> Profile:
    if profile.role != "admin":
        raise HTTPException(status_code=403, detail="Unauthorized - Admin access required")
    return profile
