"""
Conversation derivation and marketplace statistics.

There is no stored conversation entity. A conversation is the set of messages
on one listing between two users, rebuilt from the flat message log on every
read. For a viewer, each message belongs to the thread keyed by
``(listing_id, counterpart)`` where the counterpart is whoever is on the other
end of that message. A seller with two interested buyers therefore sees two
threads for the same listing.

``ConversationAggregator`` is stateless: it holds only its repositories, and
any lookup cache it builds lives for a single call.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger

from textbook_exchange.errors import InvalidState, NotFound
from textbook_exchange.models.listing import Listing, ListingStatus, ListingWithOwner
from textbook_exchange.models.message import ConversationKey, ConversationView, Message, MessageView, NewMessage
from textbook_exchange.models.stats import AdminStats, DayCount
from textbook_exchange.models.user import User
from textbook_exchange.repositories.base import ListingRepository, MessageRepository, UserRepository

SEED_MESSAGE = "Hi, I'm interested in this textbook!"
RECENT_WINDOW_DAYS = 7


def counterpart_of(message: Message, viewer_id: str) -> str:
    return message.receiver_id if message.sender_id == viewer_id else message.sender_id


def canonical_conversation_key(listing_id: str, sender_id: str, receiver_id: str) -> Tuple[str, str, str]:
    """Same key for A->B and B->A on one listing"""
    low, high = sorted((sender_id, receiver_id))
    return listing_id, low, high


def partition_by_counterpart(messages: Iterable[Message], viewer_id: str) -> Dict[ConversationKey, List[Message]]:
    """Group a chronological message sequence into per-listing, per-counterpart threads.

    Order inside each thread follows the input order.
    """
    threads: Dict[ConversationKey, List[Message]] = {}
    for message in messages:
        key = ConversationKey(message.listing_id, counterpart_of(message, viewer_id))
        threads.setdefault(key, []).append(message)
    return threads


def _nonzero(days: List[DayCount]) -> List[DayCount]:
    return [day for day in days if day.count > 0]


class ConversationAggregator:
    def __init__(self, messages: MessageRepository, listings: ListingRepository, users: UserRepository):
        self.messages = messages
        self.listings = listings
        self.users = users

    async def _get_listing(self, listing_id: str) -> Listing:
        listing = await self.listings.find_by_id(listing_id)
        if listing is None:
            raise NotFound("Listing not found")
        return listing

    async def _resolve_buyer(self, listing: Listing, counterpart_id: Optional[str]) -> str:
        """Pick the receiver of a reply sent by the listing owner"""
        history = await self.messages.find_by_listing_and_participant(listing.id, listing.user_id)
        counterparts = list(dict.fromkeys(counterpart_of(m, listing.user_id) for m in history))

        if counterpart_id is not None:
            if counterpart_id not in counterparts:
                raise InvalidState("No conversation with this user on this listing")
            return counterpart_id
        if not counterparts:
            raise InvalidState("No conversation started yet")
        if len(counterparts) > 1:
            raise InvalidState("Several buyers have messaged about this listing, choose who to reply to")
        return counterparts[0]

    async def derive_message(
        self,
        sender_id: str,
        listing_id: str,
        content: str,
        counterpart_id: Optional[str] = None,
    ) -> Message:
        """Send a message on a listing, working out who receives it.

        A buyer always writes to the listing owner. The owner can only answer
        someone who has already written; with several buyers the owner must
        name the counterpart.
        """
        if not content or not content.strip():
            raise InvalidState("Message content cannot be empty")

        listing = await self._get_listing(listing_id)
        if sender_id == listing.user_id:
            receiver_id = await self._resolve_buyer(listing, counterpart_id)
        else:
            if counterpart_id is not None and counterpart_id != listing.user_id:
                raise InvalidState("Messages about a listing go to its seller")
            receiver_id = listing.user_id

        message = await self.messages.insert(NewMessage(
            sender_id=sender_id,
            receiver_id=receiver_id,
            listing_id=listing.id,
            content=content,
        ))
        logger.info(f"Message {message.id} sent on listing {listing.id}")
        return message

    async def start_conversation(self, initiator_id: str, listing_id: str) -> None:
        """Open a thread with the seller by storing the seed message, unless one already exists"""
        listing = await self._get_listing(listing_id)
        if initiator_id == listing.user_id:
            raise InvalidState("Cannot message your own listing")

        existing = await self.messages.find_by_listing_and_participant(listing.id, initiator_id)
        if existing:
            return

        # Two concurrent calls can both get here; exactly-once seeding needs a store-side constraint
        await self.messages.insert(NewMessage(
            sender_id=initiator_id,
            receiver_id=listing.user_id,
            listing_id=listing.id,
            content=SEED_MESSAGE,
        ))
        logger.info(f"Conversation seeded on listing {listing.id}")

    async def list_conversations_for(self, viewer_id: str) -> Dict[ConversationKey, ConversationView]:
        history = await self.messages.find_by_participant(viewer_id)
        threads = partition_by_counterpart(history, viewer_id)

        listings: Dict[str, Optional[Listing]] = {}
        for listing_id in {key.listing_id for key in threads}:
            listings[listing_id] = await self.listings.find_by_id(listing_id)

        user_ids = {viewer_id}
        for key in threads:
            listing = listings[key.listing_id]
            if listing is not None:
                user_ids.add(listing.user_id)
            user_ids.add(key.counterpart_id)
        users: Dict[str, User] = await self.users.find_by_ids(user_ids)

        conversations: Dict[ConversationKey, ConversationView] = {}
        for key, thread in threads.items():
            listing = listings[key.listing_id]
            if listing is None:
                logger.debug(f"Skipping conversation on missing listing {key.listing_id}")
                continue
            conversations[key] = ConversationView(
                listing=ListingWithOwner(**listing.model_dump(), owner=users.get(listing.user_id)),
                counterpart_id=key.counterpart_id,
                counterpart=users.get(key.counterpart_id),
                messages=[
                    MessageView(**m.model_dump(), sender=users.get(m.sender_id), receiver=users.get(m.receiver_id))
                    for m in thread
                ],
            )
        return conversations

    async def compute_admin_stats(self) -> AdminStats:
        conversations = set()
        async for listing_id, sender_id, receiver_id in self.messages.iter_participants():
            conversations.add(canonical_conversation_key(listing_id, sender_id, receiver_id))

        return AdminStats(
            total_users=await self.users.count_all(),
            total_listings=await self.listings.count_all(),
            sold_listings=await self.listings.count_by_status(ListingStatus.SOLD),
            active_listings=await self.listings.count_by_status(ListingStatus.ACTIVE),
            total_conversations=len(conversations),
            total_messages=await self.messages.count_all(),
            recent_signups=_nonzero(await self.users.count_recent_by_day(RECENT_WINDOW_DAYS)),
            recent_listings=_nonzero(await self.listings.count_recent_by_day(RECENT_WINDOW_DAYS)),
            recent_messages=_nonzero(await self.messages.count_recent_by_day(RECENT_WINDOW_DAYS)),
        )
