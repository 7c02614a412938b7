"""Business logic services."""

from price_sync.services.campaigns import (
    CampaignCreate,
    CampaignDetail,
    CampaignUpdate,
    ForceSyncResult,
    create_campaign,
    delete_campaign,
    force_sync_price,
    get_campaign_detail,
    list_campaigns,
    update_campaign,
)
from price_sync.services.catalog import (
    ProductCreate,
    VariantCreate,
    add_variant,
    create_product,
    delete_product,
    get_product,
)
from price_sync.services.membership import (
    MembershipChange,
    MembershipItem,
    add_to_campaign,
    remove_from_campaign,
)
from price_sync.services.price_sync import SyncResult, sync_product_price, sync_products
from price_sync.services.scheduler import (
    ScheduledSyncResult,
    ScheduleTrigger,
    run_scheduled_sync,
)

__all__ = [
    # Campaigns
    "CampaignCreate",
    "CampaignDetail",
    "CampaignUpdate",
    "ForceSyncResult",
    "create_campaign",
    "delete_campaign",
    "force_sync_price",
    "get_campaign_detail",
    "list_campaigns",
    "update_campaign",
    # Catalog
    "ProductCreate",
    "VariantCreate",
    "add_variant",
    "create_product",
    "delete_product",
    "get_product",
    # Membership
    "MembershipChange",
    "MembershipItem",
    "add_to_campaign",
    "remove_from_campaign",
    # Price sync
    "SyncResult",
    "sync_product_price",
    "sync_products",
    # Scheduler
    "ScheduledSyncResult",
    "ScheduleTrigger",
    "run_scheduled_sync",
]
