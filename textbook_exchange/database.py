from fastapi import Depends, Request
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from textbook_exchange.config import Settings
from textbook_exchange.repositories.base import ListingRepository, MessageRepository, UserRepository
from textbook_exchange.repositories.mongo import MongoListingRepository, MongoMessageRepository, MongoUserRepository
from textbook_exchange.services.conversations import ConversationAggregator


def create_client(settings: Settings) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(settings.mongo_uri, tz_aware=True)


def get_db(request: Request) -> AsyncIOMotorDatabase:
    return request.app.state.db


def get_message_repository(db: AsyncIOMotorDatabase = Depends(get_db)) -> MessageRepository:
    return MongoMessageRepository(db)


def get_listing_repository(db: AsyncIOMotorDatabase = Depends(get_db)) -> ListingRepository:
    return MongoListingRepository(db)


def get_user_repository(db: AsyncIOMotorDatabase = Depends(get_db)) -> UserRepository:
    return MongoUserRepository(db)


def get_aggregator(
    messages: MessageRepository = Depends(get_message_repository),
    listings: ListingRepository = Depends(get_listing_repository),
    users: UserRepository = Depends(get_user_repository),
) -> ConversationAggregator:
    return ConversationAggregator(messages, listings, users)


__all__ = [
    "create_client",
    "get_db",
    "get_message_repository",
    "get_listing_repository",
    "get_user_repository",
    "get_aggregator",
]
