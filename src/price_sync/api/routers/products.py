"""Product API endpoints.

Endpoints:
- POST /products - create a product with variants
- GET /products/{id} - product with variants and current sale prices
- POST /products/{id}/variants - add a variant
- POST /products/{id}/sync - recompute sale prices now
- DELETE /products/{id} - delete a product and its memberships
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from price_sync.db import Product, get_db
from price_sync.errors import NotFoundError
from price_sync.services.catalog import (
    ProductCreate,
    VariantCreate,
    add_variant,
    create_product,
    delete_product,
    get_product,
)
from price_sync.services.price_sync import sync_product_price

router = APIRouter(prefix="/products", tags=["products"])


class VariantResponse(BaseModel):
    """Variant response schema."""

    id: UUID
    name: str
    sku: str
    position: int
    price: Decimal
    sale_price: Decimal | None

    class Config:
        from_attributes = True


class ProductResponse(BaseModel):
    """Product response schema."""

    id: UUID
    slug: str
    name: str
    price: Decimal
    sale_price: Decimal | None
    variants: list[VariantResponse]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class SyncResponse(BaseModel):
    """Outcome of a manual product sync."""

    product_id: UUID
    changed: bool
    variants_written: int
    product_written: bool
    price: Decimal | None
    sale_price: Decimal | None
    campaign_ids: list[UUID]


@router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product_endpoint(
    product_data: ProductCreate,
    db: AsyncSession = Depends(get_db),
) -> Product:
    """Create a product; sale prices are computed from the active campaigns."""
    return await create_product(db, product_data)


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product_endpoint(
    product_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Product:
    """Get a product with its variants."""
    return await get_product(db, product_id)


@router.post(
    "/{product_id}/variants",
    response_model=ProductResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_variant_endpoint(
    product_id: UUID,
    variant_data: VariantCreate,
    db: AsyncSession = Depends(get_db),
) -> Product:
    """Add a variant to a product and return the re-synced product."""
    await add_variant(db, product_id, variant_data)
    return await get_product(db, product_id)


@router.post("/{product_id}/sync", response_model=SyncResponse)
async def sync_product_endpoint(
    product_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> SyncResponse:
    """Recompute the sale prices of a product from the campaigns active now."""
    result = await sync_product_price(db, product_id)
    if not result.found:
        raise NotFoundError("Product", product_id)

    return SyncResponse(
        product_id=result.product_id,
        changed=result.changed,
        variants_written=result.variants_written,
        product_written=result.product_written,
        price=result.price,
        sale_price=result.sale_price,
        campaign_ids=result.campaign_ids,
    )


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product_endpoint(
    product_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> None:
    """Delete a product with its variants and campaign memberships."""
    await delete_product(db, product_id)
