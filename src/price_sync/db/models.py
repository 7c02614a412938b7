"""Database models for products, variants, campaigns and memberships."""

import json
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from price_sync.db.base import Base
from price_sync.pricing.models import CampaignStatus, DiscountRule, VariantScope, campaign_status, utcnow


class VariantScopeType(TypeDecorator):
    """Stores a VariantScope as a JSON array of UUID strings, NULL meaning ALL.

    Rows written by older writers may hold a JSON-encoded string or an empty
    array; both are normalized here so no read site has to re-parse scope.
    """

    impl = JSON
    cache_ok = True

    def __init__(self) -> None:
        super().__init__(none_as_null=True)

    def process_bind_param(self, value: VariantScope | None, dialect) -> list[str] | None:
        if value is None or value.is_all:
            return None
        return [str(variant_id) for variant_id in value.variant_ids]

    def process_result_value(self, value, dialect) -> VariantScope:
        if isinstance(value, str):
            value = json.loads(value)
        if not value:
            return VariantScope.all()
        return VariantScope.of(uuid.UUID(str(variant_id)) for variant_id in value)


class Product(Base):
    """Sellable product. ``sale_price`` is written only by the price sync."""

    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    slug: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(500))

    # Pricing
    price: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    sale_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    # Relationships
    variants: Mapped[list["ProductVariant"]] = relationship(
        back_populates="product",
        order_by="ProductVariant.position",
    )
    memberships: Mapped[list["CampaignMembership"]] = relationship(back_populates="product")

    def __repr__(self) -> str:
        return f"<Product {self.slug}: {self.price} -> {self.sale_price}>"


class ProductVariant(Base):
    """Variant of a product with its own base price."""

    __tablename__ = "product_variants"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255))
    sku: Mapped[str] = mapped_column(String(255), default="")
    position: Mapped[int] = mapped_column(Integer, default=0)

    # Pricing
    price: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    sale_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    # Relationships
    product: Mapped["Product"] = relationship(back_populates="variants")

    def __repr__(self) -> str:
        return f"<ProductVariant {self.sku or self.id}: {self.price} -> {self.sale_price}>"


class Campaign(Base):
    """Time-bounded discount campaign."""

    __tablename__ = "campaigns"
    __table_args__ = (
        # Boundary scans from the scheduler
        Index("ix_campaigns_schedule", "start_date", "end_date", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    description: Mapped[str] = mapped_column(Text, default="")

    # Discount rule, exactly one is set
    discount_percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    discount_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    fixed_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)

    # Schedule
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    # Relationships
    memberships: Mapped[list["CampaignMembership"]] = relationship(back_populates="campaign")

    @property
    def discount_rule(self) -> DiscountRule:
        return DiscountRule(
            percent=self.discount_percent,
            amount=self.discount_amount,
            fixed_price=self.fixed_price,
        )

    def status_at(self, at: datetime) -> CampaignStatus:
        return campaign_status(self.is_active, self.start_date, self.end_date, at)

    def __repr__(self) -> str:
        return f"<Campaign {self.name}>"


class CampaignMembership(Base):
    """A campaign applying to a product, optionally narrowed to some variants."""

    __tablename__ = "campaign_products"

    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        primary_key=True,
    )
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    variant_scope: Mapped[VariantScope] = mapped_column(
        VariantScopeType(),
        nullable=True,
        default=VariantScope.all,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    # Relationships
    product: Mapped["Product"] = relationship(back_populates="memberships")
    campaign: Mapped["Campaign"] = relationship(back_populates="memberships")

    def __repr__(self) -> str:
        scope = "ALL" if self.variant_scope.is_all else len(self.variant_scope.variant_ids)
        return f"<CampaignMembership {self.campaign_id} -> {self.product_id} ({scope})>"
