"""Campaign lifecycle: create, update, delete, list and force sync.

Every mutation re-syncs the products it affects inside the caller's
transaction, so a committed campaign change is never visible alongside stale
prices. Force sync is the exception: it is best-effort and gives each product
its own short transaction.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from price_sync.db.base import session_scope
from price_sync.db.models import Campaign, CampaignMembership, Product
from price_sync.errors import ConflictError, ValidationError
from price_sync.pricing.models import CampaignStatus, DiscountRule, as_utc, utcnow
from price_sync.services.membership import (
    MembershipItem,
    add_to_campaign,
    get_campaign,
    get_member_product_ids,
)
from price_sync.services.price_sync import SyncResult, sync_product_price, sync_products

logger = logging.getLogger(__name__)

DISCOUNT_FIELDS = ("discount_percent", "discount_amount", "fixed_price")

# Fields whose change can move a price
PRICING_FIELDS = (*DISCOUNT_FIELDS, "start_date", "end_date", "is_active")

SORT_COLUMNS = {
    "created_at": Campaign.created_at,
    "name": Campaign.name,
    "start_date": Campaign.start_date,
    "end_date": Campaign.end_date,
}


class CampaignCreate(BaseModel):
    """Fields of a new campaign."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    discount_percent: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    fixed_price: Optional[Decimal] = None
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    items: list[MembershipItem] = Field(default_factory=list)


class CampaignUpdate(BaseModel):
    """Partial campaign update.

    Supplying any discount field replaces the whole discount rule; the
    discount fields left out are cleared.
    """

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    discount_percent: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    fixed_price: Optional[Decimal] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None


@dataclass
class CampaignDetail:
    """A campaign with its memberships (products and variants loaded)."""

    campaign: Campaign
    memberships: list[CampaignMembership]


@dataclass
class ForceSyncResult:
    """Result of a best-effort force sync."""

    campaign_id: UUID
    synced: list[SyncResult] = field(default_factory=list)
    failed: dict[UUID, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed


def validate_campaign_fields(
    discount_percent: Decimal | None,
    discount_amount: Decimal | None,
    fixed_price: Decimal | None,
    start_date: datetime | None,
    end_date: datetime | None,
) -> None:
    """Check a campaign's discount rule and schedule.

    Raises:
        ValidationError: Unless exactly one discount field is non-zero, percent
            is within (0, 100], no amount is negative and start < end.
    """
    if discount_percent is not None and not (0 <= discount_percent <= 100):
        raise ValidationError("discount_percent must be between 0 and 100")
    if discount_amount is not None and discount_amount < 0:
        raise ValidationError("discount_amount cannot be negative")
    if fixed_price is not None and fixed_price < 0:
        raise ValidationError("fixed_price cannot be negative")

    rule = DiscountRule(
        percent=discount_percent,
        amount=discount_amount,
        fixed_price=fixed_price,
    )
    if not rule.kinds:
        raise ValidationError(
            "A campaign needs a discount: one of discount_percent, discount_amount or fixed_price"
        )
    if len(rule.kinds) > 1:
        raise ValidationError(
            f"A campaign takes exactly one discount, got {', '.join(k.value for k in rule.kinds)}"
        )

    if start_date is None or end_date is None:
        raise ValidationError("start_date and end_date are required")
    if as_utc(start_date) >= as_utc(end_date):
        raise ValidationError("end_date must be after start_date")


def _normalize(field_name: str, value: Any) -> Any:
    """Storage form of a field: UTC datetimes, unset discounts as NULL."""
    if isinstance(value, datetime):
        return as_utc(value)
    if field_name in DISCOUNT_FIELDS and not value:
        return None
    return value


async def _check_name_free(
    session: AsyncSession,
    name: str,
    campaign_id: UUID | None = None,
) -> None:
    query = select(Campaign.id).where(Campaign.name == name)
    if campaign_id is not None:
        query = query.where(Campaign.id != campaign_id)
    result = await session.execute(query)
    if result.first() is not None:
        raise ConflictError(f"A campaign named '{name}' already exists")


async def create_campaign(
    session: AsyncSession,
    data: CampaignCreate,
    *,
    at: datetime | None = None,
) -> Campaign:
    """Create a campaign, adding and syncing its initial products if given.

    Raises:
        ValidationError: Invalid discount rule or schedule.
        ConflictError: Name already taken.
        NotFoundError: An initial product does not exist.
    """
    validate_campaign_fields(
        data.discount_percent,
        data.discount_amount,
        data.fixed_price,
        data.start_date,
        data.end_date,
    )
    await _check_name_free(session, data.name)

    fields = data.model_dump(exclude={"items"})
    campaign = Campaign(**{name: _normalize(name, value) for name, value in fields.items()})
    session.add(campaign)
    await session.flush()

    logger.info(f"Created campaign {campaign.id} '{campaign.name}'")

    if data.items:
        await add_to_campaign(session, campaign.id, data.items, at=at)

    return campaign


async def update_campaign(
    session: AsyncSession,
    campaign_id: UUID,
    data: CampaignUpdate,
    *,
    at: datetime | None = None,
) -> Campaign:
    """Update a campaign and re-sync its products if pricing fields changed.

    Raises:
        NotFoundError: Campaign does not exist.
        ValidationError: The merged campaign is invalid.
        ConflictError: New name already taken.
    """
    campaign = await get_campaign(session, campaign_id, for_update=True)
    changes = data.model_dump(exclude_unset=True)

    if any(name in changes for name in DISCOUNT_FIELDS):
        for name in DISCOUNT_FIELDS:
            changes.setdefault(name, None)

    for name in ("name", "description", "start_date", "end_date", "is_active"):
        if name in changes and changes[name] is None:
            raise ValidationError(f"{name} cannot be null")

    merged = {name: changes.get(name, getattr(campaign, name)) for name in PRICING_FIELDS}
    validate_campaign_fields(
        merged["discount_percent"],
        merged["discount_amount"],
        merged["fixed_price"],
        merged["start_date"],
        merged["end_date"],
    )

    if "name" in changes and changes["name"] != campaign.name:
        await _check_name_free(session, changes["name"], campaign_id)

    pricing_changed = False
    for name, value in changes.items():
        value = _normalize(name, value)
        current = _normalize(name, getattr(campaign, name))
        if value == current:
            continue
        setattr(campaign, name, value)
        if name in PRICING_FIELDS:
            pricing_changed = True

    await session.flush()

    if pricing_changed:
        product_ids = await get_member_product_ids(session, campaign_id)
        results = await sync_products(session, product_ids, at=at)
        logger.info(f"Campaign {campaign_id} pricing changed, synced {len(results)} products")

    return campaign


async def delete_campaign(
    session: AsyncSession,
    campaign_id: UUID,
    *,
    at: datetime | None = None,
) -> list[SyncResult]:
    """Delete a campaign and restore the prices of its former products.

    Raises:
        NotFoundError: Campaign does not exist.
    """
    await get_campaign(session, campaign_id, for_update=True)

    # Capture members before the memberships go away
    product_ids = await get_member_product_ids(session, campaign_id)

    await session.execute(
        delete(CampaignMembership).where(CampaignMembership.campaign_id == campaign_id)
    )
    await session.execute(delete(Campaign).where(Campaign.id == campaign_id))

    results = await sync_products(session, product_ids, at=at)
    logger.info(f"Deleted campaign {campaign_id}, synced {len(results)} products")
    return results


async def force_sync_price(
    session_factory: async_sessionmaker[AsyncSession],
    campaign_id: UUID,
    *,
    at: datetime | None = None,
) -> ForceSyncResult:
    """Re-sync every current member product of a campaign, best-effort.

    Each product runs in its own transaction; a failure is logged and
    reported, and the remaining products are still synced.

    Raises:
        NotFoundError: Campaign does not exist.
    """
    async with session_scope(session_factory) as session:
        await get_campaign(session, campaign_id)
        product_ids = await get_member_product_ids(session, campaign_id)

    logger.info(f"Force sync: recomputing {len(product_ids)} products of campaign {campaign_id}")
    outcome = ForceSyncResult(campaign_id=campaign_id)

    for product_id in product_ids:
        try:
            async with session_scope(session_factory) as session:
                result = await sync_product_price(session, product_id, at=at)
            outcome.synced.append(result)
        except Exception as e:
            logger.error(f"Force sync failed for product {product_id}: {e}")
            outcome.failed[product_id] = str(e)

    return outcome


async def list_campaigns(
    session: AsyncSession,
    *,
    status: CampaignStatus | None = None,
    search: str | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    limit: int = 20,
    offset: int = 0,
    at: datetime | None = None,
) -> tuple[list[Campaign], int]:
    """List campaigns filtered by status and text, newest first by default.

    Statuses are the derived ones reported for each campaign, so a disabled
    campaign is listed as inactive, never as expired.

    Returns:
        Page of campaigns and the total count before pagination.

    Raises:
        ValidationError: Unknown sort column or order.
    """
    if sort_by not in SORT_COLUMNS:
        raise ValidationError(
            f"Cannot sort by '{sort_by}', use one of {', '.join(SORT_COLUMNS)}"
        )
    if sort_order not in ("asc", "desc"):
        raise ValidationError("sort_order must be 'asc' or 'desc'")

    at = as_utc(at) if at else utcnow()
    query = select(Campaign)

    if status is CampaignStatus.ACTIVE:
        query = query.where(
            Campaign.is_active == True,  # noqa: E712
            Campaign.start_date <= at,
            Campaign.end_date >= at,
        )
    elif status is CampaignStatus.UPCOMING:
        query = query.where(Campaign.is_active == True, Campaign.start_date > at)  # noqa: E712
    elif status is CampaignStatus.EXPIRED:
        query = query.where(Campaign.is_active == True, Campaign.end_date < at)  # noqa: E712
    elif status is CampaignStatus.INACTIVE:
        query = query.where(Campaign.is_active == False)  # noqa: E712

    if search:
        pattern = f"%{search}%"
        query = query.where(or_(Campaign.name.ilike(pattern), Campaign.description.ilike(pattern)))

    count_result = await session.execute(select(func.count()).select_from(query.subquery()))
    total = count_result.scalar_one()

    column = SORT_COLUMNS[sort_by]
    order = column.asc() if sort_order == "asc" else column.desc()
    query = query.order_by(order, Campaign.id).offset(offset).limit(limit)
    result = await session.execute(query)

    return list(result.scalars().all()), total


async def get_campaign_detail(session: AsyncSession, campaign_id: UUID) -> CampaignDetail:
    """Load a campaign with its member products and their variants.

    Raises:
        NotFoundError: Campaign does not exist.
    """
    campaign = await get_campaign(session, campaign_id)

    result = await session.execute(
        select(CampaignMembership)
        .where(CampaignMembership.campaign_id == campaign_id)
        .options(selectinload(CampaignMembership.product).selectinload(Product.variants))
        .order_by(CampaignMembership.created_at)
    )

    return CampaignDetail(campaign=campaign, memberships=list(result.scalars().all()))
