from fastapi import APIRouter, Depends, HTTPException, Request
from loguru import logger
from pydantic import BaseModel

from textbook_exchange.config import Settings, get_settings
from textbook_exchange.database import get_user_repository
from textbook_exchange.models.user import TokenUser, User
from textbook_exchange.repositories.base import UserRepository
from textbook_exchange.utils.auth import create_access_token, get_current_user
from textbook_exchange.utils.identity import (
    IdentityProviderClient,
    IdentityProviderError,
    InvalidCredentials,
    get_identity_client,
)

router = APIRouter(tags=["Auth"])


class LoginRequest(BaseModel):
    access_token: str


@router.post("/login")
async def login(
    data: LoginRequest,
    identity: IdentityProviderClient = Depends(get_identity_client),
    users: UserRepository = Depends(get_user_repository),
    settings: Settings = Depends(get_settings),
):
    # Step 1: Ask the identity provider who this is
    try:
        profile = await identity.fetch_profile(data.access_token)
    except InvalidCredentials:
        logger.warning("Login rejected by identity provider")
        raise HTTPException(status_code=401, detail="Invalid credentials provided.")
    except IdentityProviderError as e:
        logger.warning(f"Identity provider failure during login: {e}")
        raise HTTPException(status_code=502, detail="Identity provider unavailable.")

    # Step 2: Create or refresh the local user record
    user = await users.upsert(profile)

    # Step 3: Issue application access token
    access_token = create_access_token({"sub": user.id, "email": user.email}, settings)
    logger.info(f"User {user.id} logged in")
    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/user", response_model=User)
async def get_auth_user(request: Request, user: TokenUser = Depends(get_current_user)):
    return request.state.user
