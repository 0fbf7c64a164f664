import datetime as dt
from decimal import Decimal
from uuid import uuid4

import pytest

from loyalty_api.domain.loyalty.errors import ErrorKind
from loyalty_api.domain.loyalty.expiration import ExpirationPeriod, ExpirationPolicy
from loyalty_api.models.loyalty import CardStatus, LoyaltyProgramType, PointsRoundingRule
from loyalty_api.services.loyalty import LoyaltyCardService, LoyaltyProgramService


@pytest.mark.asyncio
async def test_create_program_validates_type_specific_fields(session_factory, directory) -> None:
    async with session_factory() as session:
        service = LoyaltyProgramService(session)

        stamp = await service.create_program(
            directory.brand_id,
            name="Coffee card",
            program_type=LoyaltyProgramType.STAMP,
            stamp_threshold=8,
            points_conversion_rate=Decimal("3"),
            expiration_policy=ExpirationPolicy.relative(ExpirationPeriod.YEARS, 1),
        )
        assert stamp.ok
        assert stamp.data.points_conversion_rate is None
        assert stamp.data.expiration_policy == ExpirationPolicy.relative(ExpirationPeriod.YEARS, 1)

        no_threshold = await service.create_program(
            directory.brand_id,
            name="Broken",
            program_type=LoyaltyProgramType.STAMP,
        )
        assert no_threshold.error_kind is ErrorKind.VALIDATION

        no_rate = await service.create_program(
            directory.brand_id,
            name="Broken points",
            program_type=LoyaltyProgramType.POINTS,
        )
        assert no_rate.error_kind is ErrorKind.VALIDATION

        unknown_brand = await service.create_program(
            uuid4(),
            name="Orphan",
            program_type=LoyaltyProgramType.POINTS,
            points_conversion_rate=Decimal("1"),
        )
        assert unknown_brand.error_kind is ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_update_program_keeps_type_fixed(session_factory, directory) -> None:
    async with session_factory() as session:
        service = LoyaltyProgramService(session)
        program_id = (
            await service.create_program(
                directory.brand_id,
                name="Coffee card",
                program_type=LoyaltyProgramType.STAMP,
                stamp_threshold=8,
            )
        ).data.id

        updated = await service.update_program(
            program_id,
            name="Espresso card",
            daily_stamp_limit=4,
            expiration_policy=ExpirationPolicy.absolute(day=31, month=12),
        )
        assert updated.ok
        assert updated.data.name == "Espresso card"
        assert updated.data.daily_stamp_limit == 4
        assert updated.data.expiration_policy.is_absolute

        same_type = await service.update_program(program_id, program_type=LoyaltyProgramType.STAMP)
        assert same_type.ok

        changed_type = await service.update_program(program_id, program_type=LoyaltyProgramType.POINTS)
        assert changed_type.error_kind is ErrorKind.VALIDATION

        unsupported = await service.update_program(program_id, brand_id=uuid4())
        assert unsupported.error_kind is ErrorKind.VALIDATION

        invalid = await service.update_program(program_id, stamp_threshold=0)
        assert invalid.error_kind is ErrorKind.VALIDATION

        reloaded = (await service.get_program(program_id)).data
        assert reloaded.stamp_threshold == 8
        assert reloaded.program_type is LoyaltyProgramType.STAMP


@pytest.mark.asyncio
async def test_list_brand_programs_filters_inactive(session_factory, directory) -> None:
    async with session_factory() as session:
        service = LoyaltyProgramService(session)
        active_id = (
            await service.create_program(
                directory.brand_id,
                name="Active",
                program_type=LoyaltyProgramType.POINTS,
                points_conversion_rate=Decimal("1"),
            )
        ).data.id
        paused_id = (
            await service.create_program(
                directory.brand_id,
                name="Paused",
                program_type=LoyaltyProgramType.POINTS,
                points_conversion_rate=Decimal("1"),
            )
        ).data.id
        await service.set_program_active(paused_id, False)

        everything = (await service.list_brand_programs(directory.brand_id)).data
        assert {program.id for program in everything} == {active_id, paused_id}

        active = (await service.list_brand_programs(directory.brand_id, active_only=True)).data
        assert [program.id for program in active] == [active_id]

        assert (await service.list_brand_programs(uuid4())).error_kind is ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_delete_program_refused_once_cards_exist(session_factory, directory) -> None:
    async with session_factory() as session:
        service = LoyaltyProgramService(session)
        empty_id = (
            await service.create_program(
                directory.brand_id,
                name="Never used",
                program_type=LoyaltyProgramType.STAMP,
                stamp_threshold=5,
            )
        ).data.id
        used_id = (
            await service.create_program(
                directory.brand_id,
                name="Popular",
                program_type=LoyaltyProgramType.STAMP,
                stamp_threshold=5,
            )
        ).data.id
        await LoyaltyCardService(session).create_card(directory.customer_id, used_id)

        assert (await service.delete_program(empty_id)).ok
        assert (await service.get_program(empty_id)).error_kind is ErrorKind.NOT_FOUND

        refused = await service.delete_program(used_id)
        assert refused.error_kind is ErrorKind.CONFLICT
        assert (await service.get_program(used_id)).ok


@pytest.mark.asyncio
async def test_reward_catalog_management(session_factory, directory) -> None:
    now = dt.datetime.now(dt.timezone.utc)
    async with session_factory() as session:
        service = LoyaltyProgramService(session)
        program_id = (
            await service.create_program(
                directory.brand_id,
                name="Coffee card",
                program_type=LoyaltyProgramType.STAMP,
                stamp_threshold=10,
            )
        ).data.id

        coffee = await service.create_reward(program_id, title="Free coffee", required_value=10)
        assert coffee.ok
        coffee_id = coffee.data.id
        pastry_id = (
            await service.create_reward(
                program_id,
                title="Pastry",
                required_value=4,
                valid_from=now + dt.timedelta(days=7),
            )
        ).data.id

        invalid = await service.create_reward(program_id, title="Nothing", required_value=0)
        assert invalid.error_kind is ErrorKind.VALIDATION

        inverted = await service.create_reward(
            program_id,
            title="Backwards",
            required_value=1,
            valid_from=now,
            valid_to=now - dt.timedelta(days=1),
        )
        assert inverted.error_kind is ErrorKind.VALIDATION

        listed = (await service.list_program_rewards(program_id)).data
        assert [reward.id for reward in listed] == [pastry_id, coffee_id]

        available = (await service.list_program_rewards(program_id, available_at=now)).data
        assert [reward.id for reward in available] == [coffee_id]

        renamed = await service.update_reward(coffee_id, title="Free flat white", required_value=8)
        assert renamed.data.title == "Free flat white"
        assert renamed.data.required_value == 8

        assert (await service.update_reward(coffee_id, program_id=uuid4())).error_kind is ErrorKind.VALIDATION

        deactivated = await service.set_reward_active(coffee_id, False)
        assert deactivated.data.is_active is False

        wrong_program = await service.remove_reward(uuid4(), pastry_id)
        assert wrong_program.error_kind is ErrorKind.NOT_FOUND

        assert (await service.remove_reward(program_id, pastry_id)).ok
        assert (await service.get_reward(pastry_id)).error_kind is ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_program_analytics_aggregates_cards_and_ledger(session_factory, directory) -> None:
    async with session_factory() as session:
        program_service = LoyaltyProgramService(session)
        program_id = (
            await program_service.create_program(
                directory.brand_id,
                name="Coffee card",
                program_type=LoyaltyProgramType.STAMP,
                stamp_threshold=3,
            )
        ).data.id
        reward_id = (await program_service.create_reward(program_id, title="Free coffee", required_value=3)).data.id
        inactive_id = (await program_service.create_reward(program_id, title="Mug", required_value=9)).data.id
        await program_service.set_reward_active(inactive_id, False)

        card_service = LoyaltyCardService(session)
        first_id = (await card_service.create_card(directory.customer_id, program_id)).data.id
        second_id = (await card_service.create_card(directory.other_customer_id, program_id)).data.id

        await card_service.issue_stamps(first_id, 2, store_id=directory.store_id)
        await card_service.issue_stamps(first_id, 1, store_id=directory.store_id)
        await card_service.redeem_reward(first_id, reward_id, store_id=directory.store_id)
        await card_service.issue_stamps(second_id, 1, store_id=directory.store_id)
        await card_service.update_status(second_id, CardStatus.SUSPENDED)

        analytics = (await program_service.get_program_analytics(program_id)).data

    assert analytics.total_cards == 2
    assert analytics.cards_by_status == {"active": 1, "suspended": 1, "expired": 0}
    assert analytics.transactions_by_type == {"stamp_issued": 3, "reward_redeemed": 1}
    assert analytics.total_stamps_issued == 4
    assert analytics.total_points_added == Decimal("0")
    assert analytics.total_redemptions == 1
    assert analytics.total_rewards == 2
    assert analytics.active_rewards == 1
    assert analytics.average_transactions_per_card == Decimal("2.00")
    assert sum(analytics.transactions_by_month.values()) == 4


@pytest.mark.asyncio
async def test_program_analytics_for_unknown_program(session_factory) -> None:
    async with session_factory() as session:
        result = await LoyaltyProgramService(session).get_program_analytics(uuid4())

    assert result.error_kind is ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_program_tiers_lifecycle(session_factory, directory) -> None:
    async with session_factory() as session:
        service = LoyaltyProgramService(session)
        program = (
            await service.create_program(
                directory.brand_id,
                name="Rewards club",
                program_type=LoyaltyProgramType.POINTS,
                points_conversion_rate=Decimal("1"),
                points_rounding=PointsRoundingRule.ROUND_UP,
                has_tiers=True,
            )
        ).data
        program_id = program.id
        assert program.points_rounding is PointsRoundingRule.ROUND_UP

        gold = await service.create_tier(
            program_id,
            name="Gold",
            point_threshold=500,
            point_multiplier=Decimal("2"),
            tier_order=2,
            benefits=["Priority support", "Priority support"],
        )
        assert gold.ok
        assert gold.data.benefits == ["Priority support"]
        silver = await service.create_tier(program_id, name="Silver", point_threshold=100, tier_order=1)
        assert silver.ok

        clash = await service.create_tier(program_id, name="Bronze", point_threshold=10, tier_order=1)
        assert clash.error_kind is ErrorKind.CONFLICT

        missing_program = await service.create_tier(uuid4(), name="Gold", point_threshold=1)
        assert missing_program.error_kind is ErrorKind.NOT_FOUND

        disable = await service.update_program(program_id, has_tiers=False)
        assert disable.error_kind is ErrorKind.VALIDATION

        listed = await service.list_program_tiers(program_id)
        assert [tier.name for tier in listed.data] == ["Silver", "Gold"]

        assert (await service.remove_tier(program_id, silver.data.id)).ok
        assert (await service.remove_tier(program_id, silver.data.id)).error_kind is ErrorKind.NOT_FOUND
        assert (await service.remove_tier(program_id, gold.data.id)).ok

        assert (await service.update_program(program_id, has_tiers=False)).ok

    async with session_factory() as session:
        remaining = await LoyaltyProgramService(session).list_program_tiers(program_id)
        assert remaining.data == []


@pytest.mark.asyncio
async def test_tiers_require_tiered_points_program(session_factory, directory) -> None:
    async with session_factory() as session:
        service = LoyaltyProgramService(session)
        stamp = (
            await service.create_program(
                directory.brand_id,
                name="Coffee card",
                program_type=LoyaltyProgramType.STAMP,
                stamp_threshold=8,
            )
        ).data
        flat = (
            await service.create_program(
                directory.brand_id,
                name="Rewards club",
                program_type=LoyaltyProgramType.POINTS,
                points_conversion_rate=Decimal("1"),
            )
        ).data

        on_stamp = await service.create_tier(stamp.id, name="Gold", point_threshold=100)
        on_flat = await service.create_tier(flat.id, name="Gold", point_threshold=100)
        assert on_stamp.error_kind is ErrorKind.INVALID_OPERATION
        assert on_flat.error_kind is ErrorKind.INVALID_OPERATION
        assert flat.points_rounding is PointsRoundingRule.ROUND_DOWN

        tiered_stamp = await service.create_program(
            directory.brand_id,
            name="Tiered stamps",
            program_type=LoyaltyProgramType.STAMP,
            stamp_threshold=8,
            has_tiers=True,
        )
        assert tiered_stamp.error_kind is ErrorKind.VALIDATION

        inverted_window = await service.create_program(
            directory.brand_id,
            name="Backwards",
            program_type=LoyaltyProgramType.STAMP,
            stamp_threshold=8,
            starts_at=dt.datetime(2026, 12, 1, tzinfo=dt.timezone.utc),
            ends_at=dt.datetime(2026, 11, 1, tzinfo=dt.timezone.utc),
        )
        assert inverted_window.error_kind is ErrorKind.VALIDATION
