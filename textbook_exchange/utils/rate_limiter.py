from datetime import datetime, timezone, timedelta
from typing import Tuple

from textbook_exchange.repositories.base import ListingRepository, MessageRepository


class RateLimiter:
    """Rate limiter for various operations"""

    @staticmethod
    async def check_message_rate_limit(
        messages: MessageRepository, user_id: str, window_seconds: int = 10, max_requests: int = 3
    ) -> Tuple[bool, str]:
        """Check if user can send a message based on rate limit"""
        window_start = datetime.now(timezone.utc) - timedelta(seconds=window_seconds)

        count = await messages.count_sent_since(user_id, window_start)
        if count >= max_requests:
            return False, f"Rate limit exceeded. You can send {max_requests} messages per {window_seconds} seconds."

        return True, ""

    @staticmethod
    async def check_listing_rate_limit(
        listings: ListingRepository, user_id: str, window_hours: int = 24, max_requests: int = 5
    ) -> Tuple[bool, str]:
        """Check if user can create a listing based on daily rate limit"""
        window_start = datetime.now(timezone.utc) - timedelta(hours=window_hours)

        count = await listings.count_created_since(user_id, window_start)
        if count >= max_requests:
            return False, f"Rate limit exceeded. You can create {max_requests} listings per day."

        return True, ""
