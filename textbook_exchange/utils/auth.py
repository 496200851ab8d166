import jwt
from datetime import datetime, timedelta, timezone
from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer

from textbook_exchange.config import Settings, get_settings
from textbook_exchange.database import get_user_repository
from textbook_exchange.models.user import TokenUser
from textbook_exchange.repositories.base import UserRepository

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")  # This is just a dummy path; it's required


def _signing_key(settings: Settings) -> str:
    if not settings.jwt_secret_key:
        raise RuntimeError("JWT_SECRET_KEY is not configured")
    return settings.jwt_secret_key


def create_access_token(data: dict, settings: Settings) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, _signing_key(settings), algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings) -> dict:
    key = _signing_key(settings)
    try:
        return jwt.decode(token, key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise ValueError("Token expired")
    except jwt.InvalidTokenError:
        raise ValueError("Invalid token")


async def get_current_user(
    request: Request,
    token: str = Depends(oauth2_scheme),
    users: UserRepository = Depends(get_user_repository),
    settings: Settings = Depends(get_settings),
) -> TokenUser:
    try:
        payload = decode_access_token(token, settings)
    except ValueError as e:
        raise HTTPException(status_code=401, detail=str(e))

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = await users.find_by_id(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    # Keep the full record around so handlers don't have to look it up again
    request.state.user = user

    # Admin rights come from the stored record, not from the token
    return TokenUser(id=user.id, email=user.email, is_admin=user.is_admin)
