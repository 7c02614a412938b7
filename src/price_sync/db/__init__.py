"""Database module."""

from price_sync.db.base import get_db, get_session_factory, session_scope
from price_sync.db.models import Campaign, CampaignMembership, Product, ProductVariant

__all__ = [
    "get_db",
    "get_session_factory",
    "session_scope",
    "Campaign",
    "CampaignMembership",
    "Product",
    "ProductVariant",
]
