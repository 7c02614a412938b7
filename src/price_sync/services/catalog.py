"""Catalog boundary: the minimal product operations campaigns need.

Writes here never touch sale prices directly; each one ends with a price sync.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from price_sync.db.models import CampaignMembership, Product, ProductVariant
from price_sync.errors import ConflictError, NotFoundError, ValidationError
from price_sync.services.price_sync import sync_product_price

logger = logging.getLogger(__name__)


class VariantCreate(BaseModel):
    """Fields of a new variant."""

    name: str = Field(..., min_length=1, max_length=255)
    sku: str = ""
    price: Decimal = Field(..., ge=0)


class ProductCreate(BaseModel):
    """Fields of a new product. ``price`` may be omitted when variants are given."""

    slug: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1, max_length=500)
    price: Optional[Decimal] = Field(None, ge=0)
    variants: list[VariantCreate] = Field(default_factory=list)


async def get_product(session: AsyncSession, product_id: UUID) -> Product:
    """Load a product with fresh variants or raise NotFoundError."""
    result = await session.execute(
        select(Product)
        .where(Product.id == product_id)
        .options(selectinload(Product.variants))
        .execution_options(populate_existing=True)
    )
    product = result.scalar_one_or_none()

    if product is None:
        raise NotFoundError("Product", product_id)

    return product


async def create_product(
    session: AsyncSession,
    data: ProductCreate,
    *,
    at: datetime | None = None,
) -> Product:
    """Create a product with its variants and compute its first sale prices.

    Raises:
        ValidationError: Neither a price nor variants given.
        ConflictError: Slug already taken.
    """
    if data.price is None and not data.variants:
        raise ValidationError("A product without variants needs a price")

    result = await session.execute(select(Product.id).where(Product.slug == data.slug))
    if result.first() is not None:
        raise ConflictError(f"A product with slug '{data.slug}' already exists")

    price = data.price if data.price is not None else min(v.price for v in data.variants)
    product = Product(slug=data.slug, name=data.name, price=price)
    session.add(product)
    await session.flush()

    for position, variant_data in enumerate(data.variants):
        session.add(
            ProductVariant(
                product_id=product.id,
                position=position,
                **variant_data.model_dump(),
            )
        )
    await session.flush()

    await sync_product_price(session, product.id, at=at)
    logger.info(f"Created product {product.id} '{product.slug}' with {len(data.variants)} variants")

    return await get_product(session, product.id)


async def add_variant(
    session: AsyncSession,
    product_id: UUID,
    data: VariantCreate,
    *,
    at: datetime | None = None,
) -> ProductVariant:
    """Append a variant to a product and re-sync it.

    Memberships scoped to ALL cover the new variant immediately.

    Raises:
        NotFoundError: Product does not exist.
    """
    product = await session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product", product_id)

    result = await session.execute(
        select(func.count())
        .select_from(ProductVariant)
        .where(ProductVariant.product_id == product_id)
    )
    position = result.scalar_one()

    variant = ProductVariant(product_id=product_id, position=position, **data.model_dump())
    session.add(variant)
    await session.flush()

    await sync_product_price(session, product_id, at=at)
    return variant


async def delete_product(session: AsyncSession, product_id: UUID) -> None:
    """Delete a product with its variants and campaign memberships.

    Raises:
        NotFoundError: Product does not exist.
    """
    product = await session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product", product_id)

    await session.execute(
        delete(CampaignMembership).where(CampaignMembership.product_id == product_id)
    )
    await session.execute(delete(ProductVariant).where(ProductVariant.product_id == product_id))
    await session.execute(delete(Product).where(Product.id == product_id))

    logger.info(f"Deleted product {product_id}")
