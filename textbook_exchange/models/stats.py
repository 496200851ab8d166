from typing import List

from pydantic import BaseModel, Field


class DayCount(BaseModel):
    date: str  # YYYY-MM-DD
    count: int = Field(..., ge=0)


class AdminStats(BaseModel):
    total_users: int
    total_listings: int
    sold_listings: int
    active_listings: int
    total_conversations: int
    total_messages: int
    # Days without events are omitted, read a missing day as zero
    recent_signups: List[DayCount]
    recent_listings: List[DayCount]
    recent_messages: List[DayCount]
