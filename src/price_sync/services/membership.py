"""Campaign membership management.

Tracks which variants of a product a campaign covers:
- add merges the incoming variants into the current scope (never shrinks it)
- remove subtracts variants, deleting the membership once nothing is left

A whole batch runs in the caller's transaction and ends with one price sync
per distinct product, so a failing item leaves no partial change behind once
the caller rolls back.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from price_sync.db.models import Campaign, CampaignMembership, Product, ProductVariant
from price_sync.errors import NotFoundError, ValidationError
from price_sync.pricing.models import VariantScope
from price_sync.services.price_sync import SyncResult, sync_products

logger = logging.getLogger(__name__)


class MembershipItem(BaseModel):
    """One product of a membership batch.

    On add, an empty ``variant_ids`` list means every variant (ALL). On
    remove, it means the whole product leaves the campaign.
    """

    product_id: UUID
    variant_ids: list[UUID] = Field(default_factory=list)


@dataclass
class MembershipChange:
    """Summary of a membership batch."""

    campaign_id: UUID
    created: int = 0
    widened: int = 0
    narrowed: int = 0
    deleted: int = 0
    synced: list[SyncResult] = field(default_factory=list)

    @property
    def product_ids(self) -> list[UUID]:
        return [r.product_id for r in self.synced]


async def get_campaign(
    session: AsyncSession,
    campaign_id: UUID,
    *,
    for_update: bool = False,
) -> Campaign:
    """Load a campaign or raise NotFoundError."""
    query = select(Campaign).where(Campaign.id == campaign_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    campaign = result.scalar_one_or_none()

    if campaign is None:
        raise NotFoundError("Campaign", campaign_id)

    return campaign


async def get_variant_ids(session: AsyncSession, product_id: UUID) -> list[UUID]:
    """Current variant ids of a product, in display order.

    Raises:
        NotFoundError: If the product does not exist.
    """
    product = await session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product", product_id)

    result = await session.execute(
        select(ProductVariant.id)
        .where(ProductVariant.product_id == product_id)
        .order_by(ProductVariant.position, ProductVariant.created_at)
    )
    return list(result.scalars().all())


async def get_member_product_ids(session: AsyncSession, campaign_id: UUID) -> list[UUID]:
    """Ids of every product currently in a campaign."""
    result = await session.execute(
        select(CampaignMembership.product_id)
        .where(CampaignMembership.campaign_id == campaign_id)
        .order_by(CampaignMembership.created_at)
    )
    return list(result.scalars().all())


def _check_variants_belong(item: MembershipItem, variant_ids: list[UUID]) -> None:
    known = set(variant_ids)
    foreign = [vid for vid in item.variant_ids if vid not in known]
    if foreign:
        raise ValidationError(
            f"Variants {', '.join(str(v) for v in foreign)} do not belong to product {item.product_id}"
        )


async def add_to_campaign(
    session: AsyncSession,
    campaign_id: UUID,
    items: list[MembershipItem],
    *,
    at: datetime | None = None,
) -> MembershipChange:
    """Add products (or some of their variants) to a campaign.

    Existing scopes are merged with the incoming ones; ALL absorbs any finite
    scope. Every affected product is synced afterwards in the same transaction.

    Args:
        session: Database session (caller commits or rolls back).
        campaign_id: Target campaign.
        items: Products and variants to add.
        at: Evaluation time for the price sync.

    Returns:
        MembershipChange summary.

    Raises:
        ValidationError: Empty batch or variants outside their product.
        NotFoundError: Campaign or product missing.
    """
    if not items:
        raise ValidationError("No products given")

    await get_campaign(session, campaign_id, for_update=True)
    change = MembershipChange(campaign_id=campaign_id)

    for item in items:
        variant_ids = await get_variant_ids(session, item.product_id)
        _check_variants_belong(item, variant_ids)
        incoming = VariantScope.from_request(item.variant_ids)

        membership = await session.get(CampaignMembership, (item.product_id, campaign_id))
        if membership is None:
            session.add(
                CampaignMembership(
                    product_id=item.product_id,
                    campaign_id=campaign_id,
                    variant_scope=incoming,
                )
            )
            change.created += 1
        else:
            merged = membership.variant_scope.union(incoming)
            if merged != membership.variant_scope:
                membership.variant_scope = merged
                change.widened += 1

        await session.flush()

    change.synced = await sync_products(session, (i.product_id for i in items), at=at)

    logger.info(
        f"Campaign {campaign_id}: {change.created} memberships created, "
        f"{change.widened} widened, {len(change.synced)} products synced"
    )
    return change


async def remove_from_campaign(
    session: AsyncSession,
    campaign_id: UUID,
    items: list[MembershipItem],
    *,
    at: datetime | None = None,
) -> MembershipChange:
    """Remove products (or some of their variants) from a campaign.

    An ALL scope is materialized to the product's current variants before
    subtracting. A scope that ends up empty deletes the membership; it never
    falls back to ALL.

    Args:
        session: Database session (caller commits or rolls back).
        campaign_id: Target campaign.
        items: Products and variants to remove.
        at: Evaluation time for the price sync.

    Returns:
        MembershipChange summary.

    Raises:
        ValidationError: Empty batch or variants outside their product.
        NotFoundError: Campaign, product or membership missing.
    """
    if not items:
        raise ValidationError("No products given")

    await get_campaign(session, campaign_id, for_update=True)
    change = MembershipChange(campaign_id=campaign_id)

    for item in items:
        variant_ids = await get_variant_ids(session, item.product_id)
        _check_variants_belong(item, variant_ids)

        membership = await session.get(CampaignMembership, (item.product_id, campaign_id))
        if membership is None:
            raise NotFoundError("Membership", f"{campaign_id}/{item.product_id}")

        remaining = None
        if item.variant_ids:
            remaining = membership.variant_scope.without(item.variant_ids, variant_ids)

        if remaining is None:
            await session.delete(membership)
            change.deleted += 1
        elif remaining != membership.variant_scope:
            membership.variant_scope = remaining
            change.narrowed += 1

        await session.flush()

    change.synced = await sync_products(session, (i.product_id for i in items), at=at)

    logger.info(
        f"Campaign {campaign_id}: {change.deleted} memberships deleted, "
        f"{change.narrowed} narrowed, {len(change.synced)} products synced"
    )
    return change
