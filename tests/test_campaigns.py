"""Tests for campaign lifecycle services."""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from sqlalchemy import select

import price_sync.services.campaigns as campaigns_service
from price_sync.db.base import session_scope
from price_sync.db.models import Campaign, CampaignMembership
from price_sync.errors import ConflictError, NotFoundError, ValidationError
from price_sync.pricing import CampaignStatus
from price_sync.services.campaigns import (
    CampaignUpdate,
    delete_campaign,
    force_sync_price,
    get_campaign_detail,
    list_campaigns,
    update_campaign,
    validate_campaign_fields,
)
from price_sync.services.catalog import get_product
from price_sync.services.membership import MembershipItem
from price_sync.services.price_sync import sync_product_price


class TestValidateCampaignFields:
    """Tests for campaign field validation."""

    def test_valid_percent(self, now):
        validate_campaign_fields(Decimal("10"), None, None, now, now + timedelta(days=1))

    def test_zero_fields_count_as_unset(self, now):
        validate_campaign_fields(Decimal("0"), Decimal("5"), None, now, now + timedelta(days=1))

    def test_requires_a_discount(self, now):
        with pytest.raises(ValidationError, match="needs a discount"):
            validate_campaign_fields(None, None, None, now, now + timedelta(days=1))

    def test_rejects_two_discounts(self, now):
        with pytest.raises(ValidationError, match="exactly one discount"):
            validate_campaign_fields(
                Decimal("10"), Decimal("5"), None, now, now + timedelta(days=1)
            )

    def test_rejects_percent_above_100(self, now):
        with pytest.raises(ValidationError):
            validate_campaign_fields(Decimal("150"), None, None, now, now + timedelta(days=1))

    def test_rejects_negative_amount(self, now):
        with pytest.raises(ValidationError):
            validate_campaign_fields(None, Decimal("-1"), None, now, now + timedelta(days=1))

    def test_rejects_end_before_start(self, now):
        with pytest.raises(ValidationError, match="end_date"):
            validate_campaign_fields(Decimal("10"), None, None, now, now)


class TestCreateCampaign:
    """Tests for create_campaign."""

    @pytest.mark.asyncio
    async def test_zero_discounts_stored_as_null(self, test_db, make_campaign):
        campaign = await make_campaign("Clearance", percent="0", fixed="10")

        assert campaign.discount_percent is None
        assert campaign.fixed_price == Decimal("10")

    @pytest.mark.asyncio
    async def test_duplicate_name(self, test_db, make_campaign):
        await make_campaign("Clearance", percent="10")

        with pytest.raises(ConflictError):
            await make_campaign("Clearance", amount="5")

    @pytest.mark.asyncio
    async def test_initial_items_synced(self, test_db, make_product, make_campaign):
        product = await make_product("rug", price="200")

        await make_campaign("Rugs", percent="25", items=[MembershipItem(product_id=product.id)])

        product = await get_product(test_db, product.id)
        assert product.sale_price == Decimal("150")


class TestUpdateCampaign:
    """Tests for update_campaign."""

    @pytest.mark.asyncio
    async def test_discount_change_replaces_rule_and_resyncs(
        self, test_db, make_product, make_campaign, now
    ):
        product = await make_product("bike", price="1000")
        campaign = await make_campaign(
            "Bikes", percent="10", items=[MembershipItem(product_id=product.id)]
        )

        campaign = await update_campaign(
            test_db, campaign.id, CampaignUpdate(discount_amount=Decimal("300")), at=now
        )

        assert campaign.discount_percent is None
        assert campaign.discount_amount == Decimal("300")
        product = await get_product(test_db, product.id)
        assert product.sale_price == Decimal("700")

    @pytest.mark.asyncio
    async def test_deactivating_restores_prices(self, test_db, make_product, make_campaign, now):
        product = await make_product("helmet", price="80")
        campaign = await make_campaign(
            "Helmets", fixed="50", items=[MembershipItem(product_id=product.id)]
        )

        await update_campaign(test_db, campaign.id, CampaignUpdate(is_active=False), at=now)

        product = await get_product(test_db, product.id)
        assert product.sale_price == Decimal("80")

    @pytest.mark.asyncio
    async def test_moving_end_date_into_past_restores_prices(
        self, test_db, make_product, make_campaign, now
    ):
        product = await make_product("gloves", price="30")
        campaign = await make_campaign(
            "Gloves", amount="10", items=[MembershipItem(product_id=product.id)]
        )

        await update_campaign(
            test_db,
            campaign.id,
            CampaignUpdate(end_date=now - timedelta(hours=1)),
            at=now,
        )

        product = await get_product(test_db, product.id)
        assert product.sale_price == Decimal("30")

    @pytest.mark.asyncio
    async def test_non_pricing_change_skips_sync(self, test_db, make_product, make_campaign, now):
        product = await make_product("bell", price="15")
        campaign = await make_campaign(
            "Bells", percent="10", items=[MembershipItem(product_id=product.id)]
        )

        with patch(
            "price_sync.services.campaigns.sync_products", new_callable=AsyncMock
        ) as mock_sync:
            campaign = await update_campaign(
                test_db, campaign.id, CampaignUpdate(description="Ring ring"), at=now
            )

        mock_sync.assert_not_called()
        assert campaign.description == "Ring ring"

    @pytest.mark.asyncio
    async def test_merged_fields_validated(self, test_db, make_campaign, now):
        campaign = await make_campaign("Bells", percent="10")

        with pytest.raises(ValidationError):
            await update_campaign(
                test_db,
                campaign.id,
                CampaignUpdate(end_date=now - timedelta(days=5)),
                at=now,
            )

    @pytest.mark.asyncio
    async def test_clearing_required_field_rejected(self, test_db, make_campaign, now):
        campaign = await make_campaign("Bells", percent="10")

        with pytest.raises(ValidationError):
            await update_campaign(
                test_db, campaign.id, CampaignUpdate(start_date=None), at=now
            )

    @pytest.mark.asyncio
    async def test_rename_to_taken_name(self, test_db, make_campaign, now):
        await make_campaign("Bells", percent="10")
        campaign = await make_campaign("Whistles", percent="10")

        with pytest.raises(ConflictError):
            await update_campaign(test_db, campaign.id, CampaignUpdate(name="Bells"), at=now)

    @pytest.mark.asyncio
    async def test_null_description_rejected(self, test_db, make_campaign, now):
        campaign = await make_campaign("Bells", percent="10")

        with pytest.raises(ValidationError, match="description cannot be null"):
            await update_campaign(test_db, campaign.id, CampaignUpdate(description=None), at=now)

        assert campaign.description == ""

    @pytest.mark.asyncio
    async def test_failed_sync_rolls_back_whole_update(
        self, test_db, session_factory, make_product, make_campaign, now
    ):
        """A failure after the campaign row changed leaves campaign and prices as they were."""
        first = await make_product("kettle", price="100")
        second = await make_product("teapot", price="100")
        campaign = await make_campaign(
            "Kitchen",
            percent="10",
            items=[MembershipItem(product_id=first.id), MembershipItem(product_id=second.id)],
        )
        await test_db.commit()

        async def sync_first_then_fail(session, product_ids, *, at=None):
            await sync_product_price(session, list(product_ids)[0], at=at)
            raise ConflictError("lock timeout")

        with patch("price_sync.services.campaigns.sync_products", new=sync_first_then_fail):
            with pytest.raises(ConflictError):
                async with session_scope(session_factory) as session:
                    await update_campaign(
                        session,
                        campaign.id,
                        CampaignUpdate(discount_percent=Decimal("50")),
                        at=now,
                    )

        campaign = await test_db.get(Campaign, campaign.id, populate_existing=True)
        assert campaign.discount_percent == Decimal("10")
        for product_id in (first.id, second.id):
            product = await get_product(test_db, product_id)
            assert product.sale_price == Decimal("90")

    @pytest.mark.asyncio
    async def test_invalid_update_leaves_campaign_and_prices(
        self, test_db, session_factory, make_product, make_campaign, now
    ):
        product = await make_product("toaster", price="60")
        campaign = await make_campaign(
            "Toasters", amount="10", items=[MembershipItem(product_id=product.id)]
        )
        await test_db.commit()

        with pytest.raises(ValidationError):
            async with session_scope(session_factory) as session:
                await update_campaign(
                    session,
                    campaign.id,
                    CampaignUpdate(name="Toasters Two", discount_percent=Decimal("120")),
                    at=now,
                )

        campaign = await test_db.get(Campaign, campaign.id, populate_existing=True)
        assert campaign.name == "Toasters"
        assert campaign.discount_amount == Decimal("10")
        product = await get_product(test_db, product.id)
        assert product.sale_price == Decimal("50")

    @pytest.mark.asyncio
    async def test_missing_campaign(self, test_db, now):
        with pytest.raises(NotFoundError):
            await update_campaign(test_db, uuid4(), CampaignUpdate(name="Ghost"), at=now)


class TestDeleteCampaign:
    """Tests for delete_campaign."""

    @pytest.mark.asyncio
    async def test_restores_base_price(self, test_db, make_product, make_campaign, now):
        """Discounted to 80,000 from 100,000, deleting the campaign restores 100,000."""
        product = await make_product("sofa", price="100000")
        campaign = await make_campaign(
            "Sofas", amount="20000", items=[MembershipItem(product_id=product.id)]
        )
        product = await get_product(test_db, product.id)
        assert product.sale_price == Decimal("80000")

        results = await delete_campaign(test_db, campaign.id, at=now)

        assert [r.product_id for r in results] == [product.id]
        product = await get_product(test_db, product.id)
        assert product.sale_price == Decimal("100000")

        remaining = await test_db.execute(select(CampaignMembership))
        assert remaining.scalars().all() == []
        assert await test_db.get(Campaign, campaign.id) is None

    @pytest.mark.asyncio
    async def test_falls_back_to_other_campaign(self, test_db, make_product, make_campaign, now):
        product = await make_product("armchair", price="500")
        items = [MembershipItem(product_id=product.id)]
        deep = await make_campaign("Deep Cut", percent="50", items=items)
        await make_campaign("Light Cut", percent="10", items=items)

        await delete_campaign(test_db, deep.id, at=now)

        product = await get_product(test_db, product.id)
        assert product.sale_price == Decimal("450")

    @pytest.mark.asyncio
    async def test_failed_sync_keeps_campaign_and_memberships(
        self, test_db, session_factory, make_product, make_campaign, now
    ):
        product = await make_product("rug", price="200")
        campaign = await make_campaign(
            "Rugs", percent="25", items=[MembershipItem(product_id=product.id)]
        )
        await test_db.commit()

        with patch(
            "price_sync.services.campaigns.sync_products",
            new=AsyncMock(side_effect=ConflictError("lock timeout")),
        ):
            with pytest.raises(ConflictError):
                async with session_scope(session_factory) as session:
                    await delete_campaign(session, campaign.id, at=now)

        assert await test_db.get(Campaign, campaign.id, populate_existing=True) is not None
        result = await test_db.execute(
            select(CampaignMembership).where(CampaignMembership.campaign_id == campaign.id)
        )
        assert len(result.scalars().all()) == 1
        product = await get_product(test_db, product.id)
        assert product.sale_price == Decimal("150")

    @pytest.mark.asyncio
    async def test_missing_campaign(self, test_db, now):
        with pytest.raises(NotFoundError):
            await delete_campaign(test_db, uuid4(), at=now)


class TestForceSyncPrice:
    """Tests for force_sync_price."""

    @pytest.mark.asyncio
    async def test_repairs_drifted_prices(
        self, test_db, session_factory, make_product, make_campaign, now
    ):
        first = await make_product("frame-a", price="100")
        second = await make_product("frame-b", price="200")
        campaign = await make_campaign(
            "Frames",
            percent="10",
            items=[MembershipItem(product_id=first.id), MembershipItem(product_id=second.id)],
        )
        first.sale_price = Decimal("1")
        await test_db.commit()

        outcome = await force_sync_price(session_factory, campaign.id, at=now)

        assert outcome.success
        assert {r.product_id for r in outcome.synced} == {first.id, second.id}
        product = await get_product(test_db, first.id)
        assert product.sale_price == Decimal("90")

    @pytest.mark.asyncio
    async def test_failure_on_one_product_does_not_stop_others(
        self, test_db, session_factory, make_product, make_campaign, now
    ):
        broken = await make_product("frame-broken", price="100")
        healthy = await make_product("frame-healthy", price="100")
        campaign = await make_campaign(
            "Frames",
            percent="10",
            items=[MembershipItem(product_id=broken.id), MembershipItem(product_id=healthy.id)],
        )
        healthy.sale_price = Decimal("1")
        await test_db.commit()

        real_sync = campaigns_service.sync_product_price

        async def flaky_sync(session, product_id, **kwargs):
            if product_id == broken.id:
                raise RuntimeError("lock timeout")
            return await real_sync(session, product_id, **kwargs)

        with patch("price_sync.services.campaigns.sync_product_price", new=flaky_sync):
            outcome = await force_sync_price(session_factory, campaign.id, at=now)

        assert not outcome.success
        assert outcome.failed == {broken.id: "lock timeout"}
        assert [r.product_id for r in outcome.synced] == [healthy.id]
        product = await get_product(test_db, healthy.id)
        assert product.sale_price == Decimal("90")

    @pytest.mark.asyncio
    async def test_missing_campaign(self, session_factory, now):
        with pytest.raises(NotFoundError):
            await force_sync_price(session_factory, uuid4(), at=now)


class TestListCampaigns:
    """Tests for list_campaigns."""

    @pytest.fixture
    def schedules(self, now):
        day = timedelta(days=1)
        return {
            "Summer Active": (now - day, now + day, True),
            "Autumn Upcoming": (now + 10 * day, now + 20 * day, True),
            "Spring Expired": (now - 20 * day, now - 10 * day, True),
            "Summer Paused": (now - day, now + day, False),
        }

    @pytest.mark.asyncio
    async def test_filter_by_status(self, test_db, make_campaign, schedules, now):
        for name, (start, end, is_active) in schedules.items():
            await make_campaign(name, percent="10", start=start, end=end, is_active=is_active)

        expected = {
            CampaignStatus.ACTIVE: "Summer Active",
            CampaignStatus.UPCOMING: "Autumn Upcoming",
            CampaignStatus.EXPIRED: "Spring Expired",
            CampaignStatus.INACTIVE: "Summer Paused",
        }
        for status, name in expected.items():
            campaigns, total = await list_campaigns(test_db, status=status, at=now)
            assert total == 1
            assert campaigns[0].name == name
            assert campaigns[0].status_at(now) is status

    @pytest.mark.asyncio
    async def test_search_and_pagination(self, test_db, make_campaign, schedules, now):
        for name, (start, end, is_active) in schedules.items():
            await make_campaign(name, percent="10", start=start, end=end, is_active=is_active)

        campaigns, total = await list_campaigns(test_db, search="summer", at=now)
        assert total == 2
        assert {c.name for c in campaigns} == {"Summer Active", "Summer Paused"}

        page, total = await list_campaigns(test_db, limit=3, offset=0, at=now)
        rest, _ = await list_campaigns(test_db, limit=3, offset=3, at=now)
        assert total == 4
        assert len(page) == 3
        assert len(rest) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "sort_by,sort_order,first,last",
        [
            ("name", "asc", "Autumn Upcoming", "Summer Paused"),
            ("name", "desc", "Summer Paused", "Autumn Upcoming"),
            ("start_date", "asc", "Spring Expired", "Autumn Upcoming"),
            ("end_date", "desc", "Autumn Upcoming", "Spring Expired"),
        ],
    )
    async def test_sorting(
        self, test_db, make_campaign, schedules, now, sort_by, sort_order, first, last
    ):
        for name, (start, end, is_active) in schedules.items():
            await make_campaign(name, percent="10", start=start, end=end, is_active=is_active)

        campaigns, _ = await list_campaigns(
            test_db, sort_by=sort_by, sort_order=sort_order, at=now
        )

        assert campaigns[0].name == first
        assert campaigns[-1].name == last

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sort_by,sort_order", [("discount_percent", "asc"), ("name", "up")])
    async def test_rejects_unknown_sort(self, test_db, sort_by, sort_order, now):
        with pytest.raises(ValidationError):
            await list_campaigns(test_db, sort_by=sort_by, sort_order=sort_order, at=now)

    @pytest.mark.asyncio
    async def test_disabled_past_campaign_listed_as_inactive(self, test_db, make_campaign, now):
        await make_campaign(
            "Old Paused",
            percent="10",
            start=now - timedelta(days=20),
            end=now - timedelta(days=10),
            is_active=False,
        )

        _, expired_total = await list_campaigns(test_db, status=CampaignStatus.EXPIRED, at=now)
        inactive, _ = await list_campaigns(test_db, status=CampaignStatus.INACTIVE, at=now)

        assert expired_total == 0
        assert [c.name for c in inactive] == ["Old Paused"]


class TestGetCampaignDetail:
    """Tests for get_campaign_detail."""

    @pytest.mark.asyncio
    async def test_includes_products_and_scopes(self, test_db, make_product, make_campaign):
        product = await make_product("poster", variant_prices=["20", "30"])
        v2 = product.variants[1]
        campaign = await make_campaign(
            "Posters",
            amount="5",
            items=[MembershipItem(product_id=product.id, variant_ids=[v2.id])],
        )

        detail = await get_campaign_detail(test_db, campaign.id)

        assert detail.campaign.id == campaign.id
        assert len(detail.memberships) == 1
        membership = detail.memberships[0]
        assert membership.product.slug == "poster"
        assert membership.variant_scope.variant_ids == (v2.id,)
        assert [v.sale_price for v in membership.product.variants] == [
            Decimal("20"),
            Decimal("25"),
        ]
