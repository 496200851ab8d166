from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class UserUpsert(BaseModel):
    """Profile claims handed over by the identity provider on login"""
    id: str = Field(..., min_length=1, description="Identity provider subject id")
    email: Optional[EmailStr] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = Field(None, max_length=500)


class User(UserUpsert):
    is_admin: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) if parts else (self.email or self.id)


class TokenUser(BaseModel):
    id: str
    email: Optional[str] = None
    is_admin: bool = False
