from typing import Optional

import httpx
from fastapi import Depends
from pydantic import ValidationError

from textbook_exchange.config import Settings, get_settings
from textbook_exchange.models.user import UserUpsert


class IdentityProviderError(Exception):
    pass


class InvalidCredentials(IdentityProviderError):
    pass


class IdentityProviderClient:
    """
    Exchanges an identity-provider access token for the user's profile claims.

    The HTTP client is opened per call and closed before returning; pass a
    ``transport`` to run against a stub instead of the real provider.
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.transport = transport

    async def fetch_profile(self, access_token: str) -> UserUpsert:
        if not self.settings.idp_userinfo_url:
            raise IdentityProviderError("Identity provider is not configured")

        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.settings.idp_timeout_seconds) as client:
                res = await client.get(
                    self.settings.idp_userinfo_url,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as e:
            raise IdentityProviderError(f"Identity provider request failed: {e}") from e

        if res.status_code in (401, 403):
            raise InvalidCredentials("Identity provider rejected the token")
        if res.status_code != 200:
            raise IdentityProviderError(f"Identity provider answered {res.status_code}")

        claims = res.json()
        if not claims.get("sub"):
            raise IdentityProviderError("Identity provider returned no subject")

        try:
            return UserUpsert(
                id=claims["sub"],
                email=claims.get("email"),
                first_name=claims.get("first_name"),
                last_name=claims.get("last_name"),
                profile_image_url=claims.get("profile_image_url"),
            )
        except ValidationError as e:
            raise IdentityProviderError(f"Unusable profile claims: {e}") from e


def get_identity_client(settings: Settings = Depends(get_settings)) -> IdentityProviderClient:
    return IdentityProviderClient(settings)
