from decimal import Decimal
from typing import List, Optional

from cloudinary.exceptions import Error as CloudinaryError
from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from loguru import logger

from textbook_exchange.database import get_listing_repository, get_message_repository, get_user_repository
from textbook_exchange.models.listing import (
    Listing,
    ListingCondition,
    ListingCreate,
    ListingFilters,
    ListingStatus,
    ListingUpdate,
    ListingWithOwner,
)
from textbook_exchange.models.user import TokenUser
from textbook_exchange.repositories.base import ListingRepository, MessageRepository, UserRepository
from textbook_exchange.utils.auth import get_current_user
from textbook_exchange.utils.cloudinary import ImageStorage, get_image_storage
from textbook_exchange.utils.rate_limiter import RateLimiter

router = APIRouter(prefix="/listings", tags=["Listings"])

MAX_UPLOAD_SIZE_MB = 10
MAX_UPLOAD_SIZE_BYTES = MAX_UPLOAD_SIZE_MB * 1024 * 1024


async def _with_owners(listings: List[Listing], users: UserRepository) -> List[ListingWithOwner]:
    # One batched lookup for every seller on the page
    owners = await users.find_by_ids(listing.user_id for listing in listings)
    return [ListingWithOwner(**listing.model_dump(), owner=owners.get(listing.user_id)) for listing in listings]


@router.get("", response_model=List[ListingWithOwner])
async def browse_listings(
    q: Optional[str] = Query(None, max_length=100, description="Matches title, course code or author"),
    condition: Optional[ListingCondition] = None,
    status: Optional[ListingStatus] = None,
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    listings: ListingRepository = Depends(get_listing_repository),
    users: UserRepository = Depends(get_user_repository),
):
    found = await listings.search(ListingFilters(
        q=q,
        condition=condition,
        status=status,
        min_price=min_price,
        max_price=max_price,
        skip=skip,
        limit=limit,
    ))
    return await _with_owners(found, users)


@router.get("/mine", response_model=List[Listing])
async def get_my_listings(
    user: TokenUser = Depends(get_current_user),
    listings: ListingRepository = Depends(get_listing_repository),
):
    return await listings.find_by_owner(user.id)


@router.post("/images")
async def upload_listing_image(
    image: UploadFile = File(...),
    user: TokenUser = Depends(get_current_user),
    storage: ImageStorage = Depends(get_image_storage),
):
    # Read file once and check size
    content = await image.read()
    if len(content) > MAX_UPLOAD_SIZE_BYTES:
        raise HTTPException(
            status_code=413,
            detail=f"Image is too large. Max allowed is {MAX_UPLOAD_SIZE_MB}MB."
        )
    if not content:
        raise HTTPException(status_code=400, detail="Empty upload")

    try:
        uploaded = await storage.upload(content)
    except CloudinaryError as e:
        logger.warning(f"Image upload for user {user.id} failed: {e}")
        raise HTTPException(status_code=502, detail="Failed to upload image")

    return {"url": uploaded["url"], "public_id": uploaded["public_id"]}


@router.post("", response_model=Listing, status_code=201)
async def create_listing(
    data: ListingCreate,
    user: TokenUser = Depends(get_current_user),
    listings: ListingRepository = Depends(get_listing_repository),
):
    can_create, rate_limit_msg = await RateLimiter.check_listing_rate_limit(listings, user.id)
    if not can_create:
        raise HTTPException(status_code=429, detail=rate_limit_msg)

    listing = await listings.insert(user.id, data)
    logger.info(f"Listing {listing.id} created by {user.id}")
    return listing


@router.get("/{listing_id}", response_model=ListingWithOwner)
async def get_listing(
    listing_id: str,
    listings: ListingRepository = Depends(get_listing_repository),
    users: UserRepository = Depends(get_user_repository),
):
    listing = await listings.find_by_id(listing_id)
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")

    owner = await users.find_by_id(listing.user_id)
    return ListingWithOwner(**listing.model_dump(), owner=owner)


@router.patch("/{listing_id}", response_model=Listing)
async def update_listing(
    listing_id: str,
    data: ListingUpdate,
    user: TokenUser = Depends(get_current_user),
    listings: ListingRepository = Depends(get_listing_repository),
):
    if not data.model_dump(exclude_unset=True):
        raise HTTPException(status_code=400, detail="No data to update")

    updated = await listings.update_owned(listing_id, user.id, data)
    if not updated:
        raise HTTPException(status_code=404, detail="Listing not found or unauthorized")
    return updated


@router.delete("/{listing_id}")
async def delete_listing(
    listing_id: str,
    user: TokenUser = Depends(get_current_user),
    listings: ListingRepository = Depends(get_listing_repository),
    messages: MessageRepository = Depends(get_message_repository),
):
    deleted = await listings.delete_owned(listing_id, user.id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Listing not found or unauthorized")

    removed = await messages.delete_by_listing(listing_id)
    logger.info(f"Listing {listing_id} deleted by {user.id} along with {removed} messages")
    return {"message": "Listing deleted successfully"}
