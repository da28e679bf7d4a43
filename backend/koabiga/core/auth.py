from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from koabiga.core.deps import get_db
from koabiga.core.security import decode_access_token
from koabiga.models.admin_user import AdminUser

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> AdminUser:
    """Admin behind the bearer token. Every fee management route depends on this."""
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Not authenticated")
    claims = decode_access_token(credentials.credentials) or {}
    if claims.get("role") != "admin" or not claims.get("sub"):
        raise _unauthorized("Invalid or expired token")

    admin = db.get(AdminUser, claims["sub"])
    if admin is None:
        raise _unauthorized("Admin not found")
    if not admin.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin account is inactive")
    return admin
