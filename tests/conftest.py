from collections import Counter
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import count
from typing import AsyncIterator, Dict, Iterable, List, Optional, Tuple

import pytest

from textbook_exchange.models.listing import Listing, ListingCreate, ListingFilters, ListingStatus, ListingUpdate
from textbook_exchange.models.message import Message, NewMessage
from textbook_exchange.models.stats import DayCount
from textbook_exchange.models.user import User, UserUpsert
from textbook_exchange.repositories.base import ListingRepository, MessageRepository, UserRepository
from textbook_exchange.services.conversations import ConversationAggregator

_ids = count(1)


def _next_id() -> str:
    return f"{next(_ids):024x}"


def _bucket_by_day(stamps: Iterable[datetime], window_days: int) -> List[DayCount]:
    since = datetime.now(timezone.utc) - timedelta(days=window_days)
    days = Counter(stamp.strftime("%Y-%m-%d") for stamp in stamps if stamp >= since)
    return [DayCount(date=day, count=n) for day, n in sorted(days.items())]


class InMemoryMessageRepository(MessageRepository):
    def __init__(self):
        self.rows: List[Message] = []

    def add(self, sender_id, receiver_id, listing_id, content="hello", sent_at=None) -> Message:
        message = Message(
            id=_next_id(),
            sender_id=sender_id,
            receiver_id=receiver_id,
            listing_id=listing_id,
            content=content,
            sent_at=sent_at or datetime.now(timezone.utc),
        )
        self.rows.append(message)
        return message

    async def insert(self, record: NewMessage) -> Message:
        return self.add(record.sender_id, record.receiver_id, record.listing_id, record.content)

    def _ordered(self, rows: Iterable[Message]) -> List[Message]:
        return sorted(rows, key=lambda m: m.sent_at)

    async def find_by_listing_and_participant(self, listing_id: str, user_id: str) -> List[Message]:
        return self._ordered(
            m for m in self.rows
            if m.listing_id == listing_id and user_id in (m.sender_id, m.receiver_id)
        )

    async def find_by_participant(self, user_id: str) -> List[Message]:
        return self._ordered(m for m in self.rows if user_id in (m.sender_id, m.receiver_id))

    async def count_all(self) -> int:
        return len(self.rows)

    async def count_recent_by_day(self, window_days: int) -> List[DayCount]:
        return _bucket_by_day((m.sent_at for m in self.rows), window_days)

    async def iter_participants(self) -> AsyncIterator[Tuple[str, str, str]]:
        for m in list(self.rows):
            yield m.listing_id, m.sender_id, m.receiver_id

    async def count_sent_since(self, sender_id: str, since: datetime) -> int:
        return sum(1 for m in self.rows if m.sender_id == sender_id and m.sent_at >= since)

    async def delete_by_listing(self, listing_id: str) -> int:
        before = len(self.rows)
        self.rows = [m for m in self.rows if m.listing_id != listing_id]
        return before - len(self.rows)


class InMemoryListingRepository(ListingRepository):
    def __init__(self):
        self.rows: Dict[str, Listing] = {}

    def add(self, owner_id, title="Calculus: Early Transcendentals", price="45.00", status=ListingStatus.ACTIVE,
            created_at=None, **fields) -> Listing:
        listing = Listing(
            id=_next_id(),
            user_id=owner_id,
            title=title,
            course_code=fields.pop("course_code", "MATH 101"),
            condition=fields.pop("condition", "Good"),
            price=Decimal(price),
            status=status,
            created_at=created_at or datetime.now(timezone.utc),
            **fields,
        )
        self.rows[listing.id] = listing
        return listing

    async def insert(self, owner_id: str, data: ListingCreate) -> Listing:
        listing = Listing(
            **data.model_dump(),
            id=_next_id(),
            user_id=owner_id,
            created_at=datetime.now(timezone.utc),
        )
        self.rows[listing.id] = listing
        return listing

    async def find_by_id(self, listing_id: str) -> Optional[Listing]:
        return self.rows.get(listing_id)

    async def find_by_owner(self, owner_id: str) -> List[Listing]:
        owned = [listing for listing in self.rows.values() if listing.user_id == owner_id]
        return sorted(owned, key=lambda listing: listing.created_at, reverse=True)

    async def search(self, filters: ListingFilters) -> List[Listing]:
        def matches(listing: Listing) -> bool:
            if filters.q:
                needle = filters.q.lower()
                haystack = [listing.title, listing.course_code, listing.author or ""]
                if not any(needle in field.lower() for field in haystack):
                    return False
            if filters.condition and listing.condition != filters.condition:
                return False
            if filters.status and listing.status != filters.status:
                return False
            if filters.min_price is not None and listing.price < filters.min_price:
                return False
            if filters.max_price is not None and listing.price > filters.max_price:
                return False
            return True

        found = sorted(filter(matches, self.rows.values()), key=lambda listing: listing.created_at, reverse=True)
        return found[filters.skip:filters.skip + filters.limit]

    async def update_owned(self, listing_id: str, owner_id: str, data: ListingUpdate) -> Optional[Listing]:
        listing = self.rows.get(listing_id)
        if listing is None or listing.user_id != owner_id:
            return None
        updated = listing.model_copy(update=data.model_dump(exclude_unset=True))
        self.rows[listing_id] = updated
        return updated

    async def delete_owned(self, listing_id: str, owner_id: str) -> bool:
        listing = self.rows.get(listing_id)
        if listing is None or listing.user_id != owner_id:
            return False
        del self.rows[listing_id]
        return True

    async def count_all(self) -> int:
        return len(self.rows)

    async def count_by_status(self, status: ListingStatus) -> int:
        return sum(1 for listing in self.rows.values() if listing.status == status)

    async def count_recent_by_day(self, window_days: int) -> List[DayCount]:
        return _bucket_by_day((listing.created_at for listing in self.rows.values()), window_days)

    async def count_created_since(self, owner_id: str, since: datetime) -> int:
        return sum(
            1 for listing in self.rows.values()
            if listing.user_id == owner_id and listing.created_at >= since
        )


class InMemoryUserRepository(UserRepository):
    def __init__(self):
        self.rows: Dict[str, User] = {}

    def add(self, user_id, first_name=None, is_admin=False, created_at=None, **fields) -> User:
        now = datetime.now(timezone.utc)
        user = User(
            id=user_id,
            first_name=first_name or user_id.title(),
            is_admin=is_admin,
            created_at=created_at or now,
            updated_at=now,
            **fields,
        )
        self.rows[user_id] = user
        return user

    async def upsert(self, profile: UserUpsert) -> User:
        now = datetime.now(timezone.utc)
        existing = self.rows.get(profile.id)
        user = User(
            **profile.model_dump(),
            is_admin=existing.is_admin if existing else False,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self.rows[profile.id] = user
        return user

    async def find_by_id(self, user_id: str) -> Optional[User]:
        return self.rows.get(user_id)

    async def find_by_ids(self, user_ids: Iterable[str]) -> Dict[str, User]:
        return {uid: self.rows[uid] for uid in set(user_ids) if uid in self.rows}

    async def count_all(self) -> int:
        return len(self.rows)

    async def count_recent_by_day(self, window_days: int) -> List[DayCount]:
        return _bucket_by_day((user.created_at for user in self.rows.values()), window_days)


@pytest.fixture
def messages():
    return InMemoryMessageRepository()


@pytest.fixture
def listings():
    return InMemoryListingRepository()


@pytest.fixture
def users():
    repo = InMemoryUserRepository()
    for user_id in ("seller", "alice", "carol"):
        repo.add(user_id)
    return repo


@pytest.fixture
def aggregator(messages, listings, users):
    return ConversationAggregator(messages, listings, users)


@pytest.fixture
def listing(listings):
    return listings.add("seller")
