from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, Field, PlainSerializer, model_validator

from textbook_exchange.models.user import User


class ListingCondition(str, Enum):
    NEW = "New"
    LIKE_NEW = "Like New"
    GOOD = "Good"
    USED = "Used"


class ListingStatus(str, Enum):
    ACTIVE = "Active"
    SOLD = "Sold"


# Prices travel as strings ("45.00") so clients never see float rounding
Price = Annotated[
    Decimal,
    Field(ge=0, max_digits=10, decimal_places=2),
    PlainSerializer(lambda v: f"{v:.2f}", return_type=str, when_used="json"),
]


class ListingCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    course_code: str = Field(..., min_length=1, max_length=50)
    author: Optional[str] = Field(None, max_length=255)
    price: Price
    condition: ListingCondition
    description: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=500)


NON_NULLABLE_UPDATE_FIELDS = ("title", "course_code", "price", "condition", "status")


class ListingUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    course_code: Optional[str] = Field(None, min_length=1, max_length=50)
    author: Optional[str] = Field(None, max_length=255)
    price: Optional[Price] = None
    condition: Optional[ListingCondition] = None
    description: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=500)
    status: Optional[ListingStatus] = None

    @model_validator(mode="before")
    @classmethod
    def reject_null_required_fields(cls, data):
        # author, description and image_url may be cleared; the rest may only be omitted
        if isinstance(data, dict):
            cleared = [key for key in NON_NULLABLE_UPDATE_FIELDS if key in data and data[key] is None]
            if cleared:
                raise ValueError(f"{', '.join(cleared)} cannot be null")
        return data


class Listing(ListingCreate):
    id: str
    user_id: str
    status: ListingStatus = ListingStatus.ACTIVE
    created_at: datetime


class ListingWithOwner(Listing):
    owner: Optional[User] = None


class ListingFilters(BaseModel):
    q: Optional[str] = None
    condition: Optional[ListingCondition] = None
    status: Optional[ListingStatus] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    skip: int = 0
    limit: int = 50
