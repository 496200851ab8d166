from typing import List

from fastapi import APIRouter, Depends, HTTPException

from textbook_exchange.database import get_aggregator, get_message_repository
from textbook_exchange.models.message import ConversationStart, ConversationView, Message, MessageCreate
from textbook_exchange.models.user import TokenUser
from textbook_exchange.repositories.base import MessageRepository
from textbook_exchange.services.conversations import ConversationAggregator
from textbook_exchange.utils.auth import get_current_user
from textbook_exchange.utils.rate_limiter import RateLimiter

router = APIRouter(tags=["Messages"])


@router.post("/messages", response_model=Message, status_code=201)
async def send_message(
    data: MessageCreate,
    user: TokenUser = Depends(get_current_user),
    aggregator: ConversationAggregator = Depends(get_aggregator),
    messages: MessageRepository = Depends(get_message_repository),
):
    # Rate limiting: 3 messages per 10s
    can_send, rate_limit_msg = await RateLimiter.check_message_rate_limit(messages, user.id, window_seconds=10, max_requests=3)
    if not can_send:
        raise HTTPException(status_code=429, detail=rate_limit_msg)

    return await aggregator.derive_message(user.id, data.listing_id, data.content, counterpart_id=data.counterpart_id)


@router.post("/conversations", response_model=dict)
async def start_conversation(
    data: ConversationStart,
    user: TokenUser = Depends(get_current_user),
    aggregator: ConversationAggregator = Depends(get_aggregator),
):
    await aggregator.start_conversation(user.id, data.listing_id)
    return {"message": "Conversation started"}


@router.get("/conversations", response_model=List[ConversationView])
async def get_conversations(
    user: TokenUser = Depends(get_current_user),
    aggregator: ConversationAggregator = Depends(get_aggregator),
):
    conversations = await aggregator.list_conversations_for(user.id)
    return list(conversations.values())
