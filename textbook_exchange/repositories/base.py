"""
Storage interfaces used by the conversation aggregator and the routes.

The aggregator never talks to MongoDB directly: it receives these repositories
at construction time, so tests can swap in in-memory implementations.
Implementations raise ``StorageUnavailable`` when the backing store fails.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncIterator, Dict, Iterable, List, Optional, Tuple

from textbook_exchange.models.listing import Listing, ListingCreate, ListingFilters, ListingStatus, ListingUpdate
from textbook_exchange.models.message import Message, NewMessage
from textbook_exchange.models.stats import DayCount
from textbook_exchange.models.user import User, UserUpsert


class MessageRepository(ABC):
    @abstractmethod
    async def insert(self, record: NewMessage) -> Message:
        """Store a message, assigning its id and sent_at"""

    @abstractmethod
    async def find_by_listing_and_participant(self, listing_id: str, user_id: str) -> List[Message]:
        """Messages on a listing sent or received by the user, oldest first"""

    @abstractmethod
    async def find_by_participant(self, user_id: str) -> List[Message]:
        """Messages sent or received by the user, oldest first"""

    @abstractmethod
    async def count_all(self) -> int:
        pass

    @abstractmethod
    async def count_recent_by_day(self, window_days: int) -> List[DayCount]:
        pass

    @abstractmethod
    def iter_participants(self) -> AsyncIterator[Tuple[str, str, str]]:
        """Yield (listing_id, sender_id, receiver_id) for every stored message"""

    @abstractmethod
    async def count_sent_since(self, sender_id: str, since: datetime) -> int:
        pass

    @abstractmethod
    async def delete_by_listing(self, listing_id: str) -> int:
        pass


class ListingRepository(ABC):
    @abstractmethod
    async def insert(self, owner_id: str, data: ListingCreate) -> Listing:
        pass

    @abstractmethod
    async def find_by_id(self, listing_id: str) -> Optional[Listing]:
        pass

    @abstractmethod
    async def find_by_owner(self, owner_id: str) -> List[Listing]:
        """Newest first"""

    @abstractmethod
    async def search(self, filters: ListingFilters) -> List[Listing]:
        """Newest first"""

    @abstractmethod
    async def update_owned(self, listing_id: str, owner_id: str, data: ListingUpdate) -> Optional[Listing]:
        """Apply the fields set on ``data``; None when the listing is absent or owned by someone else"""

    @abstractmethod
    async def delete_owned(self, listing_id: str, owner_id: str) -> bool:
        pass

    @abstractmethod
    async def count_all(self) -> int:
        pass

    @abstractmethod
    async def count_by_status(self, status: ListingStatus) -> int:
        pass

    @abstractmethod
    async def count_recent_by_day(self, window_days: int) -> List[DayCount]:
        pass

    @abstractmethod
    async def count_created_since(self, owner_id: str, since: datetime) -> int:
        pass


class UserRepository(ABC):
    @abstractmethod
    async def upsert(self, profile: UserUpsert) -> User:
        """Create or refresh a user keyed by subject id. Never touches is_admin or created_at."""

    @abstractmethod
    async def find_by_id(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    async def find_by_ids(self, user_ids: Iterable[str]) -> Dict[str, User]:
        pass

    @abstractmethod
    async def count_all(self) -> int:
        pass

    @abstractmethod
    async def count_recent_by_day(self, window_days: int) -> List[DayCount]:
        pass
