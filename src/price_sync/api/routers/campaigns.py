"""Campaign API endpoints.

Endpoints:
- GET /campaigns - list campaigns (filterable by status, searchable, sortable)
- POST /campaigns - create a campaign
- GET /campaigns/{id} - campaign detail with member products
- PUT /campaigns/{id} - update a campaign, re-syncing prices if needed
- DELETE /campaigns/{id} - delete a campaign and restore prices
- POST /campaigns/{id}/products - add products/variants to a campaign
- DELETE /campaigns/{id}/products - remove products/variants from a campaign
- POST /campaigns/{id}/sync-price - force a best-effort price re-sync
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from price_sync.api.routers.products import VariantResponse
from price_sync.db import Campaign, get_db, get_session_factory
from price_sync.pricing.models import CampaignStatus, utcnow
from price_sync.services.campaigns import (
    CampaignCreate,
    CampaignUpdate,
    create_campaign,
    delete_campaign,
    force_sync_price,
    get_campaign_detail,
    list_campaigns,
    update_campaign,
)
from price_sync.services.membership import (
    MembershipChange,
    MembershipItem,
    add_to_campaign,
    remove_from_campaign,
)

router = APIRouter(prefix="/campaigns", tags=["campaigns"])


class CampaignResponse(BaseModel):
    """Campaign response schema."""

    id: UUID
    name: str
    description: str
    discount_percent: Decimal | None
    discount_amount: Decimal | None
    fixed_price: Decimal | None
    start_date: datetime
    end_date: datetime
    is_active: bool
    status: CampaignStatus
    created_at: datetime
    updated_at: datetime


class CampaignListResponse(BaseModel):
    """Response for list of campaigns."""

    items: list[CampaignResponse]
    total: int
    limit: int
    offset: int


class MemberProductResponse(BaseModel):
    """A product inside a campaign, with the variants the campaign covers."""

    product_id: UUID
    slug: str
    name: str
    price: Decimal
    sale_price: Decimal | None
    all_variants: bool
    variant_ids: list[UUID]
    variants: list[VariantResponse]


class CampaignDetailResponse(CampaignResponse):
    """Campaign with its member products."""

    products: list[MemberProductResponse]


class MembershipRequest(BaseModel):
    """Products and variants to add to or remove from a campaign."""

    items: list[MembershipItem]


class MembershipResponse(BaseModel):
    """Summary of a membership change."""

    campaign_id: UUID
    created: int
    widened: int
    narrowed: int
    deleted: int
    synced_product_ids: list[UUID]


class ForceSyncResponse(BaseModel):
    """Outcome of a force sync."""

    campaign_id: UUID
    synced_product_ids: list[UUID]
    failed: dict[UUID, str]


def _campaign_response(campaign: Campaign) -> CampaignResponse:
    return CampaignResponse(
        id=campaign.id,
        name=campaign.name,
        description=campaign.description,
        discount_percent=campaign.discount_percent,
        discount_amount=campaign.discount_amount,
        fixed_price=campaign.fixed_price,
        start_date=campaign.start_date,
        end_date=campaign.end_date,
        is_active=campaign.is_active,
        status=campaign.status_at(utcnow()),
        created_at=campaign.created_at,
        updated_at=campaign.updated_at,
    )


def _membership_response(change: MembershipChange) -> MembershipResponse:
    return MembershipResponse(
        campaign_id=change.campaign_id,
        created=change.created,
        widened=change.widened,
        narrowed=change.narrowed,
        deleted=change.deleted,
        synced_product_ids=change.product_ids,
    )


@router.get("", response_model=CampaignListResponse)
async def list_campaigns_endpoint(
    status_filter: CampaignStatus | None = Query(
        None,
        alias="status",
        description="Filter by status (active, upcoming, expired, inactive)",
    ),
    search: str | None = Query(None, description="Search in name and description"),
    sort_by: Literal["created_at", "name", "start_date", "end_date"] = Query(
        "created_at", description="Sort column"
    ),
    sort_order: Literal["asc", "desc"] = Query("desc", description="Sort direction"),
    limit: int = Query(20, ge=1, le=100, description="Maximum number of results"),
    offset: int = Query(0, ge=0, description="Number of results to skip"),
    db: AsyncSession = Depends(get_db),
) -> CampaignListResponse:
    """List campaigns, newest first unless a sort is given."""
    campaigns, total = await list_campaigns(
        db,
        status=status_filter,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=offset,
    )

    return CampaignListResponse(
        items=[_campaign_response(c) for c in campaigns],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=CampaignResponse, status_code=status.HTTP_201_CREATED)
async def create_campaign_endpoint(
    campaign_data: CampaignCreate,
    db: AsyncSession = Depends(get_db),
) -> CampaignResponse:
    """Create a campaign, optionally with its first products."""
    campaign = await create_campaign(db, campaign_data)
    return _campaign_response(campaign)


@router.get("/{campaign_id}", response_model=CampaignDetailResponse)
async def get_campaign_endpoint(
    campaign_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> CampaignDetailResponse:
    """Get a campaign with its member products and their variants."""
    detail = await get_campaign_detail(db, campaign_id)

    products = []
    for membership in detail.memberships:
        product = membership.product
        scope = membership.variant_scope
        products.append(
            MemberProductResponse(
                product_id=product.id,
                slug=product.slug,
                name=product.name,
                price=product.price,
                sale_price=product.sale_price,
                all_variants=scope.is_all,
                variant_ids=list(scope.variant_ids or []),
                variants=[VariantResponse.model_validate(v) for v in product.variants],
            )
        )

    return CampaignDetailResponse(
        **_campaign_response(detail.campaign).model_dump(),
        products=products,
    )


@router.put("/{campaign_id}", response_model=CampaignResponse)
async def update_campaign_endpoint(
    campaign_id: UUID,
    campaign_data: CampaignUpdate,
    db: AsyncSession = Depends(get_db),
) -> CampaignResponse:
    """Update a campaign.

    Changing the discount, dates or active flag re-syncs every member product.
    """
    campaign = await update_campaign(db, campaign_id, campaign_data)
    return _campaign_response(campaign)


@router.delete("/{campaign_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_campaign_endpoint(
    campaign_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> None:
    """Delete a campaign; its former products fall back to their other campaigns."""
    await delete_campaign(db, campaign_id)


@router.post("/{campaign_id}/products", response_model=MembershipResponse)
async def add_products_endpoint(
    campaign_id: UUID,
    request: MembershipRequest,
    db: AsyncSession = Depends(get_db),
) -> MembershipResponse:
    """Add products to a campaign, merging with the variants already covered."""
    change = await add_to_campaign(db, campaign_id, request.items)
    return _membership_response(change)


@router.delete("/{campaign_id}/products", response_model=MembershipResponse)
async def remove_products_endpoint(
    campaign_id: UUID,
    request: MembershipRequest,
    db: AsyncSession = Depends(get_db),
) -> MembershipResponse:
    """Remove products or some of their variants from a campaign."""
    change = await remove_from_campaign(db, campaign_id, request.items)
    return _membership_response(change)


@router.post("/{campaign_id}/sync-price", response_model=ForceSyncResponse)
async def force_sync_endpoint(
    campaign_id: UUID,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ForceSyncResponse:
    """Recompute prices of every product in the campaign, one transaction each."""
    outcome = await force_sync_price(session_factory, campaign_id)

    return ForceSyncResponse(
        campaign_id=outcome.campaign_id,
        synced_product_ids=[r.product_id for r in outcome.synced],
        failed=outcome.failed,
    )
