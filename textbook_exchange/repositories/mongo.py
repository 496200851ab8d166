import functools
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncIterator, Dict, Iterable, List, Optional, Tuple

from bson import Decimal128, ObjectId
from bson.errors import InvalidId
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from textbook_exchange.errors import StorageUnavailable
from textbook_exchange.models.listing import (
    NON_NULLABLE_UPDATE_FIELDS,
    Listing,
    ListingCreate,
    ListingFilters,
    ListingStatus,
    ListingUpdate,
)
from textbook_exchange.models.message import Message, NewMessage
from textbook_exchange.models.stats import DayCount
from textbook_exchange.models.user import User, UserUpsert
from textbook_exchange.repositories.base import ListingRepository, MessageRepository, UserRepository


def _storage_call(func):
    """Translate driver failures into StorageUnavailable"""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except PyMongoError as e:
            logger.warning(f"MongoDB call {func.__qualname__} failed: {e}")
            raise StorageUnavailable(f"Storage unavailable: {e}") from e
    return wrapper


def _oid(val: str) -> Optional[ObjectId]:
    try:
        return ObjectId(val)
    except (InvalidId, TypeError):
        return None


def _to_decimal128(value: Decimal) -> Decimal128:
    return Decimal128(str(value))


async def _count_recent_by_day(collection: AsyncIOMotorCollection, field: str, window_days: int) -> List[DayCount]:
    since = datetime.now(timezone.utc) - timedelta(days=window_days)
    pipeline = [
        {"$match": {field: {"$gte": since}}},
        {
            "$group": {
                "_id": {"$dateToString": {"format": "%Y-%m-%d", "date": f"${field}"}},
                "count": {"$sum": 1},
            }
        },
        {"$sort": {"_id": 1}},
    ]
    rows = await collection.aggregate(pipeline).to_list(length=None)
    return [DayCount(date=row["_id"], count=row["count"]) for row in rows]


def _message_from_doc(doc: dict) -> Message:
    return Message(
        id=str(doc["_id"]),
        sender_id=doc["sender_id"],
        receiver_id=doc["receiver_id"],
        listing_id=doc["listing_id"],
        content=doc["content"],
        sent_at=doc["sent_at"],
    )


def _listing_from_doc(doc: dict) -> Listing:
    price = doc["price"]
    if isinstance(price, Decimal128):
        price = price.to_decimal()
    return Listing(
        id=str(doc["_id"]),
        user_id=doc["user_id"],
        title=doc["title"],
        course_code=doc["course_code"],
        author=doc.get("author"),
        price=price,
        condition=doc["condition"],
        description=doc.get("description"),
        image_url=doc.get("image_url"),
        status=doc.get("status", ListingStatus.ACTIVE.value),
        created_at=doc["created_at"],
    )


def _user_from_doc(doc: dict) -> User:
    return User(
        id=doc["_id"],
        email=doc.get("email"),
        first_name=doc.get("first_name"),
        last_name=doc.get("last_name"),
        profile_image_url=doc.get("profile_image_url"),
        is_admin=doc.get("is_admin", False),
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


class MongoMessageRepository(MessageRepository):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.messages

    @_storage_call
    async def insert(self, record: NewMessage) -> Message:
        doc = {**record.model_dump(), "sent_at": datetime.now(timezone.utc)}
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return _message_from_doc(doc)

    async def _find(self, query: dict) -> List[Message]:
        cursor = self.collection.find(query).sort([("sent_at", ASCENDING), ("_id", ASCENDING)])
        return [_message_from_doc(doc) for doc in await cursor.to_list(length=None)]

    @_storage_call
    async def find_by_listing_and_participant(self, listing_id: str, user_id: str) -> List[Message]:
        return await self._find({
            "listing_id": listing_id,
            "$or": [{"sender_id": user_id}, {"receiver_id": user_id}],
        })

    @_storage_call
    async def find_by_participant(self, user_id: str) -> List[Message]:
        return await self._find({"$or": [{"sender_id": user_id}, {"receiver_id": user_id}]})

    @_storage_call
    async def count_all(self) -> int:
        return await self.collection.count_documents({})

    @_storage_call
    async def count_recent_by_day(self, window_days: int) -> List[DayCount]:
        return await _count_recent_by_day(self.collection, "sent_at", window_days)

    async def iter_participants(self) -> AsyncIterator[Tuple[str, str, str]]:
        projection = {"_id": 0, "listing_id": 1, "sender_id": 1, "receiver_id": 1}
        try:
            async for doc in self.collection.find({}, projection):
                yield doc["listing_id"], doc["sender_id"], doc["receiver_id"]
        except PyMongoError as e:
            logger.warning(f"MongoDB message scan failed: {e}")
            raise StorageUnavailable(f"Storage unavailable: {e}") from e

    @_storage_call
    async def count_sent_since(self, sender_id: str, since: datetime) -> int:
        return await self.collection.count_documents({"sender_id": sender_id, "sent_at": {"$gte": since}})

    @_storage_call
    async def delete_by_listing(self, listing_id: str) -> int:
        result = await self.collection.delete_many({"listing_id": listing_id})
        return result.deleted_count


class MongoListingRepository(ListingRepository):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.listings

    @_storage_call
    async def insert(self, owner_id: str, data: ListingCreate) -> Listing:
        doc = data.model_dump(mode="python")
        doc.update({
            "user_id": owner_id,
            "price": _to_decimal128(data.price),
            "condition": data.condition.value,
            "status": ListingStatus.ACTIVE.value,
            "created_at": datetime.now(timezone.utc),
        })
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return _listing_from_doc(doc)

    @_storage_call
    async def find_by_id(self, listing_id: str) -> Optional[Listing]:
        oid = _oid(listing_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid})
        return _listing_from_doc(doc) if doc else None

    @_storage_call
    async def find_by_owner(self, owner_id: str) -> List[Listing]:
        cursor = self.collection.find({"user_id": owner_id}).sort("created_at", DESCENDING)
        return [_listing_from_doc(doc) for doc in await cursor.to_list(length=None)]

    @_storage_call
    async def search(self, filters: ListingFilters) -> List[Listing]:
        query: dict = {}
        if filters.q:
            pattern = {"$regex": re.escape(filters.q.strip()), "$options": "i"}
            query["$or"] = [{"title": pattern}, {"course_code": pattern}, {"author": pattern}]
        if filters.condition:
            query["condition"] = filters.condition.value
        if filters.status:
            query["status"] = filters.status.value
        price_range = {}
        if filters.min_price is not None:
            price_range["$gte"] = _to_decimal128(filters.min_price)
        if filters.max_price is not None:
            price_range["$lte"] = _to_decimal128(filters.max_price)
        if price_range:
            query["price"] = price_range

        cursor = (
            self.collection.find(query)
            .sort("created_at", DESCENDING)
            .skip(filters.skip)
            .limit(filters.limit)
        )
        return [_listing_from_doc(doc) for doc in await cursor.to_list(length=filters.limit)]

    @_storage_call
    async def update_owned(self, listing_id: str, owner_id: str, data: ListingUpdate) -> Optional[Listing]:
        oid = _oid(listing_id)
        if oid is None:
            return None
        updates = data.model_dump(exclude_unset=True)
        for key in NON_NULLABLE_UPDATE_FIELDS:
            if key in updates and updates[key] is None:
                del updates[key]
        if "price" in updates:
            updates["price"] = _to_decimal128(updates["price"])
        for key in ("condition", "status"):
            if key in updates:
                updates[key] = updates[key].value

        owned = {"_id": oid, "user_id": owner_id}
        if not updates:
            doc = await self.collection.find_one(owned)
        else:
            doc = await self.collection.find_one_and_update(
                owned, {"$set": updates}, return_document=ReturnDocument.AFTER
            )
        return _listing_from_doc(doc) if doc else None

    @_storage_call
    async def delete_owned(self, listing_id: str, owner_id: str) -> bool:
        oid = _oid(listing_id)
        if oid is None:
            return False
        result = await self.collection.delete_one({"_id": oid, "user_id": owner_id})
        return result.deleted_count > 0

    @_storage_call
    async def count_all(self) -> int:
        return await self.collection.count_documents({})

    @_storage_call
    async def count_by_status(self, status: ListingStatus) -> int:
        return await self.collection.count_documents({"status": status.value})

    @_storage_call
    async def count_recent_by_day(self, window_days: int) -> List[DayCount]:
        return await _count_recent_by_day(self.collection, "created_at", window_days)

    @_storage_call
    async def count_created_since(self, owner_id: str, since: datetime) -> int:
        return await self.collection.count_documents({"user_id": owner_id, "created_at": {"$gte": since}})


class MongoUserRepository(UserRepository):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.users

    @_storage_call
    async def upsert(self, profile: UserUpsert) -> User:
        now = datetime.now(timezone.utc)
        fields = profile.model_dump(exclude={"id"})
        doc = await self.collection.find_one_and_update(
            {"_id": profile.id},
            {
                "$set": {**fields, "updated_at": now},
                "$setOnInsert": {"created_at": now, "is_admin": False},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return _user_from_doc(doc)

    @_storage_call
    async def find_by_id(self, user_id: str) -> Optional[User]:
        doc = await self.collection.find_one({"_id": user_id})
        return _user_from_doc(doc) if doc else None

    @_storage_call
    async def find_by_ids(self, user_ids: Iterable[str]) -> Dict[str, User]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        docs = await self.collection.find({"_id": {"$in": ids}}).to_list(length=None)
        return {doc["_id"]: _user_from_doc(doc) for doc in docs}

    @_storage_call
    async def count_all(self) -> int:
        return await self.collection.count_documents({})

    @_storage_call
    async def count_recent_by_day(self, window_days: int) -> List[DayCount]:
        return await _count_recent_by_day(self.collection, "created_at", window_days)


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await db.messages.create_index([("listing_id", ASCENDING), ("sent_at", ASCENDING)])
    await db.messages.create_index([("sender_id", ASCENDING), ("sent_at", ASCENDING)])
    await db.messages.create_index([("receiver_id", ASCENDING), ("sent_at", ASCENDING)])
    await db.listings.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    await db.listings.create_index([("status", ASCENDING)])
    await db.users.create_index([("created_at", ASCENDING)])
