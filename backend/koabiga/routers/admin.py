import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from koabiga.core.auth import get_current_admin
from koabiga.core.deps import get_db
from koabiga.core.security import create_access_token, get_password_hash, verify_password
from koabiga.models.admin_user import AdminUser
from koabiga.schemas.admin import AdminCreate, AdminLogin, AdminUserResponse, TokenResponse

router = APIRouter()


@router.post("/login", response_model=TokenResponse)
def admin_login(body: AdminLogin, db: Session = Depends(get_db)):
    """Admin login; returns a bearer token for the fee management endpoints."""
    admin = db.query(AdminUser).filter(AdminUser.username == body.username).first()
    if not admin or not verify_password(body.password, admin.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid username or password")
    if not admin.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin account is inactive")
    return TokenResponse(access_token=create_access_token(subject=admin.id, role="admin"))


@router.post("/users", response_model=AdminUserResponse, status_code=status.HTTP_201_CREATED)
def create_admin_user(
    body: AdminCreate,
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin),
):
    existing = db.query(AdminUser).filter(AdminUser.username == body.username).first()
    if existing:
        raise HTTPException(status_code=400, detail="Username already exists")
    new_admin = AdminUser(
        id=str(uuid.uuid4()),
        username=body.username,
        name=body.name,
        hashed_password=get_password_hash(body.password),
        is_active=True,
    )
    db.add(new_admin)
    db.commit()
    db.refresh(new_admin)
    return new_admin


@router.get("/users", response_model=list[AdminUserResponse])
def list_admin_users(
    db: Session = Depends(get_db),
    admin: AdminUser = Depends(get_current_admin),
):
    return db.query(AdminUser).order_by(AdminUser.username).all()
