from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from mongomock_motor import AsyncMongoMockClient
from pydantic import ValidationError

from textbook_exchange.models.listing import ListingCreate, ListingFilters, ListingStatus, ListingUpdate
from textbook_exchange.models.message import NewMessage
from textbook_exchange.models.user import UserUpsert
from textbook_exchange.repositories.mongo import (
    MongoListingRepository,
    MongoMessageRepository,
    MongoUserRepository,
)
from textbook_exchange.services.conversations import ConversationAggregator


@pytest.fixture
def db():
    return AsyncMongoMockClient()["textbook_exchange_test"]


def new_listing(**overrides) -> ListingCreate:
    data = {"title": "Discrete Math", "course_code": "CS 173", "price": "45.00", "condition": "Good"}
    data.update(overrides)
    return ListingCreate(**data)


async def test_message_insert_and_lookup(db):
    repo = MongoMessageRepository(db)
    first = await repo.insert(NewMessage(sender_id="alice", receiver_id="seller", listing_id="L1", content="Hi"))
    await repo.insert(NewMessage(sender_id="seller", receiver_id="alice", listing_id="L1", content="Hello"))
    await repo.insert(NewMessage(sender_id="carol", receiver_id="seller", listing_id="L2", content="Hey"))

    assert first.id
    assert first.sent_at is not None
    assert [m.content for m in await repo.find_by_participant("alice")] == ["Hi", "Hello"]
    assert [m.content for m in await repo.find_by_participant("seller")] == ["Hi", "Hello", "Hey"]
    assert [m.content for m in await repo.find_by_listing_and_participant("L2", "seller")] == ["Hey"]
    assert await repo.find_by_listing_and_participant("L2", "alice") == []
    assert await repo.count_all() == 3


async def test_message_delete_by_listing(db):
    repo = MongoMessageRepository(db)
    await repo.insert(NewMessage(sender_id="alice", receiver_id="seller", listing_id="L1", content="Hi"))
    await repo.insert(NewMessage(sender_id="carol", receiver_id="seller", listing_id="L2", content="Hey"))

    assert await repo.delete_by_listing("L1") == 1
    assert await repo.count_all() == 1


async def test_listing_roundtrip_keeps_price(db):
    repo = MongoListingRepository(db)

    created = await repo.insert("seller", new_listing())
    found = await repo.find_by_id(created.id)

    assert found.price == Decimal("45.00")
    assert found.status == ListingStatus.ACTIVE
    assert found.user_id == "seller"


async def test_listing_lookup_with_malformed_id(db):
    repo = MongoListingRepository(db)

    assert await repo.find_by_id("not-an-object-id") is None
    assert await repo.delete_owned("not-an-object-id", "seller") is False


async def test_listing_update_requires_owner(db):
    repo = MongoListingRepository(db)
    created = await repo.insert("seller", new_listing())

    assert await repo.update_owned(created.id, "alice", ListingUpdate(status=ListingStatus.SOLD)) is None

    updated = await repo.update_owned(created.id, "seller", ListingUpdate(status=ListingStatus.SOLD, price="40.00"))
    assert updated.status == ListingStatus.SOLD
    assert updated.price == Decimal("40.00")
    assert await repo.count_by_status(ListingStatus.SOLD) == 1


async def test_listing_delete_requires_owner(db):
    repo = MongoListingRepository(db)
    created = await repo.insert("seller", new_listing())

    assert await repo.delete_owned(created.id, "alice") is False
    assert await repo.delete_owned(created.id, "seller") is True
    assert await repo.count_all() == 0


async def test_listings_by_owner(db):
    repo = MongoListingRepository(db)
    await repo.insert("seller", new_listing(title="First"))
    await repo.insert("carol", new_listing(title="Other"))

    assert [listing.title for listing in await repo.find_by_owner("seller")] == ["First"]


async def test_user_upsert_preserves_admin_and_created_at(db):
    repo = MongoUserRepository(db)

    first = await repo.upsert(UserUpsert(id="idp|1", first_name="Sam"))
    await db.users.update_one({"_id": "idp|1"}, {"$set": {"is_admin": True}})
    second = await repo.upsert(UserUpsert(id="idp|1", first_name="Samantha"))

    assert first.is_admin is False
    assert second.is_admin is True
    assert second.first_name == "Samantha"
    assert second.created_at == first.created_at
    assert await repo.count_all() == 1


async def test_find_users_by_ids(db):
    repo = MongoUserRepository(db)
    await repo.upsert(UserUpsert(id="a"))
    await repo.upsert(UserUpsert(id="b"))

    found = await repo.find_by_ids(["a", "b", "missing"])

    assert set(found) == {"a", "b"}
    assert await repo.find_by_ids([]) == {}


def test_listing_update_rejects_null_required_fields():
    for field in ("title", "course_code", "price", "condition", "status"):
        with pytest.raises(ValidationError):
            ListingUpdate.model_validate({field: None})


async def test_listing_update_clears_optional_fields(db):
    repo = MongoListingRepository(db)
    created = await repo.insert("seller", new_listing(author="Rosen", description="Some highlighting"))

    updated = await repo.update_owned(
        created.id, "seller", ListingUpdate.model_validate({"author": None, "description": None})
    )

    assert updated.author is None
    assert updated.description is None
    assert updated.title == "Discrete Math"


async def test_listing_update_never_stores_null_required_fields(db):
    repo = MongoListingRepository(db)
    created = await repo.insert("seller", new_listing())
    unvalidated = ListingUpdate.model_construct(_fields_set={"title", "price"}, title=None, price=None)

    updated = await repo.update_owned(created.id, "seller", unvalidated)

    assert updated.title == "Discrete Math"
    assert updated.price == Decimal("45.00")
    assert [listing.id for listing in await repo.search(ListingFilters())] == [created.id]


async def test_recent_messages_bucketed_by_day(db):
    repo = MongoMessageRepository(db)
    now = datetime.now(timezone.utc)
    await repo.insert(NewMessage(sender_id="alice", receiver_id="seller", listing_id="L1", content="Hi"))
    for age in (timedelta(days=2), timedelta(days=2, hours=1), timedelta(days=30)):
        await db.messages.insert_one({
            "sender_id": "carol",
            "receiver_id": "seller",
            "listing_id": "L1",
            "content": "old",
            "sent_at": now - age,
        })

    buckets = await repo.count_recent_by_day(7)

    assert sum(day.count for day in buckets) == 3
    assert all(day.count > 0 for day in buckets)
    assert [day.date for day in buckets] == sorted(day.date for day in buckets)
    assert buckets[-1].date == now.strftime("%Y-%m-%d")


async def test_recent_listings_window(db):
    repo = MongoListingRepository(db)
    await repo.insert("seller", new_listing())
    fresh = await repo.insert("seller", new_listing(title="Fresh"))
    await db.listings.update_one(
        {"title": "Discrete Math"}, {"$set": {"created_at": datetime.now(timezone.utc) - timedelta(days=8)}}
    )

    buckets = await repo.count_recent_by_day(7)

    assert [day.count for day in buckets] == [1]
    assert buckets[0].date == fresh.created_at.strftime("%Y-%m-%d")


async def test_participants_scan(db):
    repo = MongoMessageRepository(db)
    await repo.insert(NewMessage(sender_id="alice", receiver_id="seller", listing_id="L1", content="Hi"))
    await repo.insert(NewMessage(sender_id="seller", receiver_id="alice", listing_id="L1", content="Hello"))

    rows = [row async for row in repo.iter_participants()]

    assert rows == [("L1", "alice", "seller"), ("L1", "seller", "alice")]


async def test_admin_stats_on_mongo(db):
    messages = MongoMessageRepository(db)
    listings = MongoListingRepository(db)
    users = MongoUserRepository(db)
    await users.upsert(UserUpsert(id="alice"))
    await users.upsert(UserUpsert(id="seller"))
    await listings.insert("seller", new_listing())
    await messages.insert(NewMessage(sender_id="alice", receiver_id="seller", listing_id="L1", content="Hi"))
    await messages.insert(NewMessage(sender_id="seller", receiver_id="alice", listing_id="L1", content="Yes"))
    await messages.insert(NewMessage(sender_id="alice", receiver_id="seller", listing_id="L2", content="And this?"))

    stats = await ConversationAggregator(messages, listings, users).compute_admin_stats()

    assert stats.total_conversations == 2
    assert stats.total_messages == 3
    assert stats.total_users == 2
    assert stats.active_listings == 1
    assert sum(day.count for day in stats.recent_messages) == 3
    assert sum(day.count for day in stats.recent_signups) == 2
