from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import settings


auth_scheme = HTTPBearer(auto_error=True)


def verify_supabase_jwt(token: str):
    if not settings.supabase_jwt_secret:
        raise HTTPException(status_code=500, detail="SUPABASE_JWT_SECRET not configured")
    options = {"verify_iss": bool(settings.supabase_issuer)}
    try:
        payload = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            audience=settings.supabase_jwt_audience,
            options=options,
            issuer=settings.supabase_issuer or None,
        )
        return payload
    except JWTError as exc:
        raise HTTPException(status_code=401, detail=f"Invalid token: {exc}") from exc


def _is_admin(payload: dict) -> bool:
    app_metadata = payload.get("app_metadata") or {}
    if isinstance(app_metadata, dict) and app_metadata.get("role") == "admin":
        return True
    return payload.get("is_admin") is True


def require_user(creds: HTTPAuthorizationCredentials = Depends(auth_scheme)):
    token = creds.credentials
    return verify_supabase_jwt(token)


def require_admin_user(user=Depends(require_user)):
    if not _is_admin(user):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
