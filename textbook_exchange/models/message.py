from datetime import datetime
from typing import List, NamedTuple, Optional

from pydantic import BaseModel, Field, model_validator

from textbook_exchange.models.listing import ListingWithOwner
from textbook_exchange.models.user import User


class MessageCreate(BaseModel):
    listing_id: str
    content: str = Field(..., min_length=1, max_length=2000, description="Message must be 2000 characters or less")
    # Only meaningful for the listing owner replying to one of several buyers
    counterpart_id: Optional[str] = None


class ConversationStart(BaseModel):
    listing_id: str


class NewMessage(BaseModel):
    sender_id: str
    receiver_id: str
    listing_id: str
    content: str

    @model_validator(mode="after")
    def check_participants(self):
        if self.sender_id == self.receiver_id:
            raise ValueError("sender and receiver must differ")
        return self


class Message(NewMessage):
    id: str
    sent_at: datetime


class MessageView(Message):
    sender: Optional[User] = None
    receiver: Optional[User] = None


class ConversationKey(NamedTuple):
    listing_id: str
    counterpart_id: str


class ConversationView(BaseModel):
    listing: ListingWithOwner
    counterpart_id: str
    counterpart: Optional[User] = None
    messages: List[MessageView]
