from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from workforce.core.security import create_access_token, verify_password
from workforce.db import models
from workforce.db.session import get_db

router = APIRouter(tags=["Auth"])


class LoginRequest(BaseModel):
    email: str
    senha: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str
    role: str


def _authenticate(db: Session, email: str, password: str) -> models.User:
    normalized = email.strip().lower()
    users = (
        db.query(models.User)
        .join(models.Tenant, models.Tenant.id == models.User.tenant_id)
        .filter(models.Tenant.status == "active", func.lower(models.User.email) == normalized)
        .order_by(models.User.created_at.desc())
        .all()
    )
    # The same e-mail may exist in several tenants; the first matching password wins.
    user = next((item for item in users if verify_password(password, item.password_hash)), None)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Usuario ou senha invalidos"
        )
    if user.status != "active":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Usuario inativo")
    return user


def _issue_token(user: models.User) -> dict:
    token = create_access_token({"sub": user.id, "tenant_id": user.tenant_id, "role": user.role})
    return {"access_token": token, "token_type": "bearer", "role": user.role}


@router.post("/auth/login", response_model=LoginResponse, summary="Login JSON (frontend)")
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    """
    Uso tipico via frontend/script JSON:
    - POST /api/auth/login
    - body: {"email": "...", "senha": "..."}
    """
    return _issue_token(_authenticate(db, payload.email, payload.senha))


@router.post(
    "/auth/token",
    response_model=LoginResponse,
    summary="Login para Swagger (OAuth2PasswordBearer)",
)
def login_swagger(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    return _issue_token(_authenticate(db, form_data.username, form_data.password))
