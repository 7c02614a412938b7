"""Data models for price resolution."""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class DiscountKind(str, Enum):
    """The kind of discount a campaign applies, in precedence order."""

    FIXED_PRICE = "fixed_price"
    AMOUNT = "amount"
    PERCENT = "percent"


class CampaignStatus(str, Enum):
    """Status of a campaign relative to a point in time."""

    ACTIVE = "active"
    UPCOMING = "upcoming"
    EXPIRED = "expired"
    INACTIVE = "inactive"


class DiscountRule(BaseModel):
    """Discount rule of a single campaign.

    A zero or missing field counts as unset. When several fields are set the
    first one in ``DiscountKind`` order wins; campaign validation rejects that
    state before it is ever stored.
    """

    model_config = ConfigDict(frozen=True)

    percent: Optional[Decimal] = Field(None, ge=0, le=100, description="Percent off (0-100]")
    amount: Optional[Decimal] = Field(None, ge=0, description="Amount off the base price")
    fixed_price: Optional[Decimal] = Field(None, ge=0, description="Final price regardless of base")

    @property
    def kinds(self) -> list[DiscountKind]:
        """All discount kinds that carry a non-zero value."""
        values = {
            DiscountKind.FIXED_PRICE: self.fixed_price,
            DiscountKind.AMOUNT: self.amount,
            DiscountKind.PERCENT: self.percent,
        }
        return [kind for kind, value in values.items() if value]

    @property
    def kind(self) -> DiscountKind | None:
        """The effective discount kind, None when no field is set."""
        kinds = self.kinds
        return kinds[0] if kinds else None


@dataclass(frozen=True)
class VariantScope:
    """Variants of one product covered by a campaign membership.

    ``variant_ids`` is None for the ALL sentinel (every current and future
    variant). A finite scope is an ordered, duplicate-free, non-empty tuple.
    """

    variant_ids: tuple[UUID, ...] | None = None

    def __post_init__(self) -> None:
        if self.variant_ids is not None and not self.variant_ids:
            raise ValueError("A finite variant scope cannot be empty, use VariantScope.all()")

    @classmethod
    def all(cls) -> "VariantScope":
        return cls(None)

    @classmethod
    def of(cls, variant_ids: Iterable[UUID]) -> "VariantScope":
        """Build a finite scope, dropping duplicates but keeping first-seen order."""
        return cls(tuple(dict.fromkeys(variant_ids)))

    @classmethod
    def from_request(cls, variant_ids: Iterable[UUID] | None) -> "VariantScope":
        """Scope for an incoming add request, where no ids means ALL."""
        ids = list(variant_ids or [])
        return cls.of(ids) if ids else cls.all()

    @property
    def is_all(self) -> bool:
        return self.variant_ids is None

    def covers(self, variant_id: UUID) -> bool:
        return self.variant_ids is None or variant_id in self.variant_ids

    def union(self, other: "VariantScope") -> "VariantScope":
        """Monotonic merge. ALL absorbs any finite scope."""
        if self.is_all or other.is_all:
            return VariantScope.all()
        return VariantScope.of([*self.variant_ids, *other.variant_ids])

    def without(
        self,
        variant_ids: Iterable[UUID],
        all_variant_ids: Iterable[UUID],
    ) -> Optional["VariantScope"]:
        """Subtract ids from the scope.

        ALL is first materialized to ``all_variant_ids``. Returns None when
        nothing remains.
        """
        current = list(all_variant_ids) if self.is_all else list(self.variant_ids)
        removed = set(variant_ids)
        remaining = [vid for vid in current if vid not in removed]
        if not remaining:
            return None
        return VariantScope.of(remaining)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def campaign_status(
    is_active: bool,
    start_date: datetime,
    end_date: datetime,
    at: datetime,
) -> CampaignStatus:
    """Derive the status of a campaign at a point in time.

    A campaign is active iff its flag is set and start <= at <= end.
    """
    if not is_active:
        return CampaignStatus.INACTIVE
    at = as_utc(at)
    if at < as_utc(start_date):
        return CampaignStatus.UPCOMING
    if at > as_utc(end_date):
        return CampaignStatus.EXPIRED
    return CampaignStatus.ACTIVE
