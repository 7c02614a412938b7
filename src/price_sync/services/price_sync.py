"""Price Sync Service - recomputes and persists the sale prices of a product.

Loads a product with its variants and the campaigns active right now, resolves
every variant's sale price, then writes the product aggregate in the same
transaction. Every run is a full recomputation, so running it twice, or from
two places at once, converges on the same stored values.

Usage:
    result = await sync_product_price(session, product_id)
    print(f"{result.variants_written} variants rewritten, product changed: {result.product_written}")
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from price_sync.config import get_settings
from price_sync.db.models import Campaign, CampaignMembership, Product, ProductVariant
from price_sync.pricing.models import DiscountRule, VariantScope, as_utc, utcnow
from price_sync.pricing.resolver import resolve_price, round_price

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EffectiveCampaign:
    """An active campaign as seen by one product."""

    campaign_id: UUID
    rule: DiscountRule
    scope: VariantScope


@dataclass
class SyncResult:
    """Result of one product sync."""

    product_id: UUID
    found: bool = True
    variants_written: int = 0
    product_written: bool = False
    price: Optional[Decimal] = None
    sale_price: Optional[Decimal] = None
    campaign_ids: list[UUID] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """Whether any row was written."""
        return self.product_written or self.variants_written > 0


async def load_active_campaigns(
    session: AsyncSession,
    product_id: UUID,
    at: datetime,
) -> list[EffectiveCampaign]:
    """Load the campaigns of a product that are active at a point in time.

    Active means the flag is set and start_date <= at <= end_date.

    Args:
        session: Database session.
        product_id: Product whose memberships are read.
        at: Evaluation time.

    Returns:
        Active campaigns with their variant scope, oldest start first.
    """
    result = await session.execute(
        select(Campaign, CampaignMembership.variant_scope)
        .join(CampaignMembership, CampaignMembership.campaign_id == Campaign.id)
        .where(
            CampaignMembership.product_id == product_id,
            Campaign.is_active == True,  # noqa: E712
            Campaign.start_date <= at,
            Campaign.end_date >= at,
        )
        .order_by(Campaign.start_date, Campaign.id)
    )

    return [
        EffectiveCampaign(campaign_id=campaign.id, rule=campaign.discount_rule, scope=scope)
        for campaign, scope in result.all()
    ]


def price_variant(
    variant_id: UUID,
    base_price: Decimal,
    campaigns: list[EffectiveCampaign],
    quantum: Decimal,
) -> Decimal:
    """Sale price of one variant under the campaigns whose scope covers it."""
    rules = [c.rule for c in campaigns if c.scope.covers(variant_id)]
    return min(base_price, round_price(resolve_price(base_price, rules), quantum))


async def sync_product_price(
    session: AsyncSession,
    product_id: UUID,
    *,
    at: datetime | None = None,
    quantum: Decimal | None = None,
) -> SyncResult:
    """Recompute and persist the sale prices of a product and its variants.

    Rows are written only when their value changes. A missing product is a
    no-op, not an error. The caller owns the transaction.

    Args:
        session: Database session (caller commits).
        product_id: Product to sync.
        at: Evaluation time, defaults to now (UTC).
        quantum: Storage granularity, defaults to settings.price_quantum.

    Returns:
        SyncResult describing what was written.
    """
    at = as_utc(at) if at else utcnow()
    if quantum is None:
        quantum = get_settings().price_quantum

    # Row locks serialize concurrent syncs of the same product
    result = await session.execute(
        select(Product)
        .where(Product.id == product_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    product = result.scalar_one_or_none()

    if product is None:
        logger.debug(f"Product {product_id} not found, nothing to sync")
        return SyncResult(product_id=product_id, found=False)

    result = await session.execute(
        select(ProductVariant)
        .where(ProductVariant.product_id == product_id)
        .order_by(ProductVariant.position, ProductVariant.created_at)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    variants = list(result.scalars().all())

    campaigns = await load_active_campaigns(session, product_id, at)
    sync_result = SyncResult(
        product_id=product_id,
        campaign_ids=[c.campaign_id for c in campaigns],
    )

    if variants:
        for variant in variants:
            sale_price = price_variant(variant.id, variant.price, campaigns, quantum)
            if variant.sale_price != sale_price:
                variant.sale_price = sale_price
                sync_result.variants_written += 1

        # Cheapest variant drives the listing price
        price = min(v.price for v in variants)
        sale_price = min(v.sale_price for v in variants)
    else:
        price = product.price
        rules = [c.rule for c in campaigns]
        sale_price = min(price, round_price(resolve_price(price, rules), quantum))

    if product.price != price or product.sale_price != sale_price:
        product.price = price
        product.sale_price = sale_price
        sync_result.product_written = True

    sync_result.price = price
    sync_result.sale_price = sale_price

    if sync_result.changed:
        await session.flush()
        logger.info(
            f"Synced price for product {product_id}: {price} -> {sale_price} "
            f"({sync_result.variants_written} variants, {len(campaigns)} active campaigns)"
        )

    return sync_result


async def sync_products(
    session: AsyncSession,
    product_ids: Iterable[UUID],
    *,
    at: datetime | None = None,
) -> list[SyncResult]:
    """Sync each distinct product once, in first-seen order, in the caller's transaction."""
    at = as_utc(at) if at else utcnow()
    results = []
    for product_id in dict.fromkeys(product_ids):
        results.append(await sync_product_price(session, product_id, at=at))
    return results
