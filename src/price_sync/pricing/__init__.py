"""Price resolution module."""

from price_sync.pricing.models import (
    CampaignStatus,
    DiscountKind,
    DiscountRule,
    VariantScope,
    as_utc,
    campaign_status,
    utcnow,
)
from price_sync.pricing.resolver import calculate_candidate, resolve_price, round_price

__all__ = [
    # Models
    "CampaignStatus",
    "DiscountKind",
    "DiscountRule",
    "VariantScope",
    "as_utc",
    "campaign_status",
    "utcnow",
    # Resolver
    "calculate_candidate",
    "resolve_price",
    "round_price",
]
