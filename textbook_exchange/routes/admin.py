from fastapi import APIRouter, Depends, HTTPException

from textbook_exchange.database import get_aggregator
from textbook_exchange.models.stats import AdminStats
from textbook_exchange.models.user import TokenUser
from textbook_exchange.services.conversations import ConversationAggregator
from textbook_exchange.utils.auth import get_current_user

router = APIRouter(tags=["Admin"])


@router.get("/stats", response_model=AdminStats)
async def get_admin_stats(
    user: TokenUser = Depends(get_current_user),
    aggregator: ConversationAggregator = Depends(get_aggregator),
):
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")

    return await aggregator.compute_admin_stats()
