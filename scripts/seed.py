#!/usr/bin/env python3
"""Seed the database with sample products and a running campaign."""

import asyncio
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select

from price_sync.db.base import session_scope
from price_sync.db.models import Campaign, Product
from price_sync.pricing.models import utcnow
from price_sync.services.campaigns import CampaignCreate, create_campaign
from price_sync.services.catalog import (
    ProductCreate,
    VariantCreate,
    create_product,
    get_product,
)
from price_sync.services.membership import MembershipItem


SAMPLE_PRODUCTS = [
    ProductCreate(
        slug="premium-garden-tool-set",
        name="Premium Garden Tool Set - 5 Piece Stainless Steel",
        price=Decimal("89"),
    ),
    ProductCreate(
        slug="ultralight-camping-hammock",
        name="Ultralight Portable Camping Hammock",
        variants=[
            VariantCreate(name="Single", sku="HM-SGL", price=Decimal("45")),
            VariantCreate(name="Double", sku="HM-DBL", price=Decimal("59")),
        ],
    ),
    ProductCreate(
        slug="smart-pet-feeder",
        name="Smart Automatic Pet Feeder",
        variants=[
            VariantCreate(name="2L", sku="PF-2L", price=Decimal("69")),
            VariantCreate(name="4L", sku="PF-4L", price=Decimal("79")),
            VariantCreate(name="6L", sku="PF-6L", price=Decimal("95")),
        ],
    ),
]

SAMPLE_CAMPAIGN = "Outdoor Week"


async def seed() -> None:
    """Seed the database with sample products and one active campaign."""
    async with session_scope() as session:
        products = []
        for product_data in SAMPLE_PRODUCTS:
            # Check if product already exists
            result = await session.execute(
                select(Product).where(Product.slug == product_data.slug)
            )
            existing = result.scalar_one_or_none()

            if existing:
                print(f"Product '{product_data.slug}' already exists, skipping...")
                products.append(await get_product(session, existing.id))
                continue

            product = await create_product(session, product_data)
            products.append(product)
            print(f"Created product: {product.name}")

        result = await session.execute(select(Campaign).where(Campaign.name == SAMPLE_CAMPAIGN))
        if result.scalar_one_or_none():
            print(f"Campaign '{SAMPLE_CAMPAIGN}' already exists, skipping...")
        else:
            now = utcnow()
            garden, hammock, _ = products
            await create_campaign(
                session,
                CampaignCreate(
                    name=SAMPLE_CAMPAIGN,
                    description="15% off garden tools and double hammocks",
                    discount_percent=Decimal("15"),
                    start_date=now - timedelta(hours=1),
                    end_date=now + timedelta(days=7),
                    items=[
                        MembershipItem(product_id=garden.id),
                        MembershipItem(
                            product_id=hammock.id,
                            variant_ids=[hammock.variants[1].id],
                        ),
                    ],
                ),
            )
            print(f"Created campaign: {SAMPLE_CAMPAIGN}")

    print("\nSeeding complete!")


if __name__ == "__main__":
    asyncio.run(seed())
