from datetime import timedelta
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException
from jose import jwt
from jose.exceptions import JOSEError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from werkzeug.security import check_password_hash, generate_password_hash

from vtc_api.config import Settings
from vtc_api.database import Database
from vtc_api.dependencies import get_database, get_settings
from vtc_api.models import User, utcnow
from vtc_api.schemas import LoginIn, RegisterIn

logger = structlog.get_logger(component="auth")

ALGORITHM = "HS256"

router = APIRouter(prefix="/api/auth", tags=["auth"])


def create_access_token(user_id: int, settings: Settings) -> str:
    if not settings.jwt_secret:
        raise HTTPException(status_code=503, detail="Token signing is not configured")
    claims = {
        "sub": str(user_id),
        "exp": utcnow() + timedelta(minutes=settings.jwt_expire_minutes),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=ALGORITHM)


def verify_token(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> dict:
    try:
        if not settings.jwt_secret:
            raise ValueError("no signing secret")
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("not a bearer token")
        return jwt.decode(token, settings.jwt_secret, algorithms=[ALGORITHM])
    except (AttributeError, ValueError, JOSEError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")


async def get_db(database: Database = Depends(get_database)):
    if not database.is_connected or database.SessionLocal is None:
        raise HTTPException(status_code=503, detail="Accounts are unavailable: database not connected")
    async with database.SessionLocal() as session:
        try:
            yield session
        except SQLAlchemyError as e:
            logger.error("account query failed", error=str(e))
            raise HTTPException(status_code=503, detail="Accounts are temporarily unavailable")


async def _find_by_email(db: AsyncSession, email: str) -> Optional[User]:
    return await db.scalar(select(User).where(User.email == email))


@router.post("/register", status_code=201)
async def register(payload: RegisterIn, db: AsyncSession = Depends(get_db)):
    email = (payload.email or "").strip().lower()
    if not email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password are required.")

    if await _find_by_email(db, email) is not None:
        raise HTTPException(status_code=409, detail="A user with this email already exists.")

    user = User(
        email=email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        provider="local",
        password_hash=generate_password_hash(payload.password),
        role="user",
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="A user with this email already exists.")
    await db.refresh(user)

    logger.info("user registered", user_id=user.id)
    return {"message": "Registration successful.", "user": user.to_public_dict()}


@router.post("/login")
async def login(
    payload: LoginIn,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    email = (payload.email or "").strip().lower()
    if not email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password are required.")

    user = await _find_by_email(db, email)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials.")
    if user.provider != "local":
        raise HTTPException(
            status_code=400,
            detail="This account uses an external sign-in (Google/Facebook).",
        )
    if not user.password_hash:
        raise HTTPException(status_code=400, detail="No password is set for this account.")
    if not check_password_hash(user.password_hash, payload.password):
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    token = create_access_token(user.id, settings)
    user.last_login_at = utcnow()
    await db.commit()

    return {"message": "Login successful.", "user": user.to_public_dict(), "token": token}


@router.get("/me")
async def me(claims: dict = Depends(verify_token), db: AsyncSession = Depends(get_db)):
    user = await db.get(User, int(claims["sub"]))
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user": user.to_public_dict()}
