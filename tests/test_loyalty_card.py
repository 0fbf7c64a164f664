"""Entity-level rules for loyalty cards, programs and rewards."""

import datetime as dt
from decimal import Decimal
from uuid import uuid4

import pytest

from loyalty_api.domain.loyalty.errors import (
    ConflictError,
    InsufficientBalanceError,
    InvalidOperationError,
    LoyaltyValidationError,
    RewardNotEligibleError,
)
from loyalty_api.domain.loyalty.expiration import ExpirationPeriod, ExpirationPolicy
from loyalty_api.models.loyalty import (
    CardStatus,
    LoyaltyCard,
    LoyaltyProgram,
    LoyaltyProgramType,
    LoyaltyReward,
    PointsRoundingRule,
    TransactionType,
)

NOW = dt.datetime(2026, 10, 19, 12, 0, tzinfo=dt.timezone.utc)


def _stamp_program(**overrides) -> LoyaltyProgram:
    values = dict(
        id=uuid4(),
        brand_id=uuid4(),
        name="Coffee card",
        program_type=LoyaltyProgramType.STAMP,
        stamp_threshold=10,
        daily_stamp_limit=3,
        is_active=True,
    )
    values.update(overrides)
    return LoyaltyProgram(**values)


def _points_program(**overrides) -> LoyaltyProgram:
    values = dict(
        id=uuid4(),
        brand_id=uuid4(),
        name="Rewards club",
        program_type=LoyaltyProgramType.POINTS,
        points_conversion_rate=Decimal("1.5"),
        minimum_transaction_amount=Decimal("5"),
        is_active=True,
    )
    values.update(overrides)
    return LoyaltyProgram(**values)


def _reward(program: LoyaltyProgram, required: int, **overrides) -> LoyaltyReward:
    values = dict(id=uuid4(), program_id=program.id, title="Free coffee", required_value=required, is_active=True)
    values.update(overrides)
    return LoyaltyReward(**values)


def test_enroll_opens_empty_active_card_with_expiry() -> None:
    program = _stamp_program()
    program.expiration_policy = ExpirationPolicy.relative(ExpirationPeriod.MONTHS, 6)

    card = LoyaltyCard.enroll(program, uuid4(), now=NOW)

    assert card.status is CardStatus.ACTIVE
    assert card.card_type is LoyaltyProgramType.STAMP
    assert card.stamps_collected == 0
    assert card.points_balance == Decimal("0")
    assert card.qr_code.startswith("LC-")
    assert len(card.qr_code) == len("LC-") + 16
    assert card.expires_at == dt.datetime(2027, 4, 19, 12, 0, tzinfo=dt.timezone.utc)


def test_enroll_without_policy_never_expires() -> None:
    card = LoyaltyCard.enroll(_points_program(), uuid4(), now=NOW)

    assert card.expires_at is None
    assert not card.is_due_for_expiry(NOW + dt.timedelta(days=3650))


def test_issue_stamps_appends_ledger_entry() -> None:
    card = LoyaltyCard.enroll(_stamp_program(), uuid4(), now=NOW)
    store_id = uuid4()

    transaction = card.issue_stamps(2, store_id=store_id, pos_transaction_id="POS-1", now=NOW)

    assert card.stamps_collected == 2
    assert transaction.transaction_type is TransactionType.STAMP_ISSUED
    assert transaction.quantity == 2
    assert transaction.store_id == store_id
    assert card.transactions == [transaction]
    assert card.stamps_issued_today(NOW) == 2
    assert card.stamps_issued_today(NOW + dt.timedelta(days=1)) == 0


def test_issue_stamps_rejects_points_cards_and_bad_input() -> None:
    points_card = LoyaltyCard.enroll(_points_program(), uuid4(), now=NOW)
    with pytest.raises(InvalidOperationError):
        points_card.issue_stamps(1, store_id=uuid4(), now=NOW)

    stamp_card = LoyaltyCard.enroll(_stamp_program(), uuid4(), now=NOW)
    with pytest.raises(LoyaltyValidationError):
        stamp_card.issue_stamps(0, store_id=uuid4(), now=NOW)
    with pytest.raises(LoyaltyValidationError):
        stamp_card.issue_stamps(1, store_id=None, now=NOW)
    assert stamp_card.transactions == []


def test_suspended_card_rejects_accrual_until_reactivated() -> None:
    card = LoyaltyCard.enroll(_stamp_program(), uuid4(), now=NOW)
    card.suspend(now=NOW)

    with pytest.raises(InvalidOperationError):
        card.issue_stamps(1, store_id=uuid4(), now=NOW)
    with pytest.raises(InvalidOperationError):
        card.suspend(now=NOW)

    card.reactivate(now=NOW)
    card.issue_stamps(1, store_id=uuid4(), now=NOW)
    assert card.stamps_collected == 1


def test_expire_requires_due_date_and_is_terminal() -> None:
    program = _stamp_program()
    program.expiration_policy = ExpirationPolicy.relative(ExpirationPeriod.DAYS, 1)
    card = LoyaltyCard.enroll(program, uuid4(), now=NOW)

    with pytest.raises(InvalidOperationError):
        card.expire(NOW)

    later = NOW + dt.timedelta(days=1)
    assert card.expire(later) is True
    assert card.status is CardStatus.EXPIRED
    assert card.expire(later) is False
    with pytest.raises(InvalidOperationError):
        card.reactivate(now=later)


def test_points_are_floored_and_minimum_enforced() -> None:
    program = _points_program()

    assert program.calculate_points(Decimal("10.99")) == Decimal("16")
    assert program.is_valid_for_points_issuance(Decimal("5"))
    assert not program.is_valid_for_points_issuance(Decimal("4.99"))
    with pytest.raises(InvalidOperationError):
        program.calculate_points(Decimal("4.99"))


def test_redeem_stamp_reward_consumes_required_stamps() -> None:
    program = _stamp_program()
    card = LoyaltyCard.enroll(program, uuid4(), now=NOW)
    card.issue_stamps(3, store_id=uuid4(), now=NOW)
    reward = _reward(program, 3)

    transaction = card.redeem_reward(reward, store_id=uuid4(), now=NOW)

    assert card.stamps_collected == 0
    assert transaction.transaction_type is TransactionType.REWARD_REDEEMED
    assert transaction.quantity == 3
    assert transaction.reward_id == reward.id
    assert transaction.metadata_json == {"reward_title": "Free coffee"}

    with pytest.raises(InsufficientBalanceError) as excinfo:
        card.redeem_reward(reward, store_id=uuid4(), now=NOW)
    assert excinfo.value.required == 3
    assert excinfo.value.available == 0


def test_redeem_points_reward_checks_balance() -> None:
    program = _points_program()
    card = LoyaltyCard.enroll(program, uuid4(), now=NOW)
    card.add_points(Decimal("40"), Decimal("30"), store_id=uuid4(), now=NOW)

    with pytest.raises(InsufficientBalanceError):
        card.redeem_reward(_reward(program, 50), store_id=uuid4(), now=NOW)

    transaction = card.redeem_reward(_reward(program, 25), store_id=uuid4(), now=NOW)
    assert transaction.points_amount == Decimal("25")
    assert card.points_balance == Decimal("15")


def test_reward_eligibility_rules() -> None:
    program = _stamp_program()
    card = LoyaltyCard.enroll(program, uuid4(), now=NOW)
    card.issue_stamps(3, store_id=uuid4(), now=NOW)

    with pytest.raises(RewardNotEligibleError):
        card.redeem_reward(_reward(_stamp_program(), 1), store_id=uuid4(), now=NOW)
    with pytest.raises(RewardNotEligibleError):
        card.redeem_reward(_reward(program, 1, is_active=False), store_id=uuid4(), now=NOW)
    with pytest.raises(RewardNotEligibleError):
        card.redeem_reward(
            _reward(program, 1, valid_to=NOW - dt.timedelta(seconds=1)),
            store_id=uuid4(),
            now=NOW,
        )

    # validity bounds are inclusive
    window = _reward(program, 1, valid_from=NOW, valid_to=NOW)
    card.redeem_reward(window, store_id=uuid4(), now=NOW)
    assert card.stamps_collected == 2


def test_program_consistency_clears_foreign_fields() -> None:
    program = _stamp_program(points_conversion_rate=Decimal("2"), minimum_transaction_amount=Decimal("1"))
    program.ensure_consistent()
    assert program.points_conversion_rate is None
    assert program.minimum_transaction_amount is None

    with pytest.raises(LoyaltyValidationError):
        _stamp_program(stamp_threshold=0).ensure_consistent()
    with pytest.raises(LoyaltyValidationError):
        _points_program(points_conversion_rate=None).ensure_consistent()


def test_expiration_policy_round_trips_through_program_columns() -> None:
    program = _points_program()

    program.expiration_policy = ExpirationPolicy.absolute(day=31, month=12)
    assert program.expiration_day == 31
    assert program.expiration_month == 12
    assert program.expiration_policy == ExpirationPolicy.absolute(day=31, month=12)

    program.expiration_policy = None
    assert program.expiration_type is None
    assert program.calculate_expiration_date(NOW) is None


def test_add_points_rejects_sub_cent_amounts() -> None:
    card = LoyaltyCard.enroll(_points_program(), uuid4(), now=NOW)

    with pytest.raises(LoyaltyValidationError):
        card.add_points(Decimal("0.004"), Decimal("10"), store_id=uuid4(), now=NOW)
    with pytest.raises(LoyaltyValidationError):
        card.add_points(Decimal("15"), Decimal("10.005"), store_id=uuid4(), now=NOW)

    assert card.transactions == []
    assert card.points_balance == Decimal("0")

    card.add_points(Decimal("0.50"), Decimal("10.25"), store_id=uuid4(), now=NOW)
    assert card.points_balance == Decimal("0.50")


def test_stamp_card_rejects_points() -> None:
    card = LoyaltyCard.enroll(_stamp_program(), uuid4(), now=NOW)

    with pytest.raises(InvalidOperationError):
        card.add_points(Decimal("10"), Decimal("10"), store_id=uuid4(), now=NOW)

    assert card.transactions == []
    assert card.points_balance == Decimal("0")
    assert card.stamps_collected == 0


def test_expired_card_rejects_every_balance_change() -> None:
    stamp_program = _stamp_program()
    stamp_program.expiration_policy = ExpirationPolicy.relative(ExpirationPeriod.DAYS, 1)
    stamp_card = LoyaltyCard.enroll(stamp_program, uuid4(), now=NOW)
    stamp_card.issue_stamps(3, store_id=uuid4(), now=NOW)

    points_program = _points_program()
    points_program.expiration_policy = ExpirationPolicy.relative(ExpirationPeriod.DAYS, 1)
    points_card = LoyaltyCard.enroll(points_program, uuid4(), now=NOW)
    points_card.add_points(Decimal("30"), Decimal("20"), store_id=uuid4(), now=NOW)

    later = NOW + dt.timedelta(days=2)
    assert stamp_card.expire(later) is True
    assert points_card.expire(later) is True

    with pytest.raises(InvalidOperationError):
        stamp_card.issue_stamps(1, store_id=uuid4(), now=later)
    with pytest.raises(InvalidOperationError):
        stamp_card.redeem_reward(_reward(stamp_program, 3), store_id=uuid4(), now=later)
    with pytest.raises(InvalidOperationError):
        points_card.add_points(Decimal("15"), Decimal("10"), store_id=uuid4(), now=later)
    with pytest.raises(InvalidOperationError):
        points_card.redeem_reward(_reward(points_program, 10), store_id=uuid4(), now=later)

    assert stamp_card.stamps_collected == 3
    assert len(stamp_card.transactions) == 1
    assert points_card.points_balance == Decimal("30")
    assert len(points_card.transactions) == 1


def test_suspended_card_rejects_points_and_redemption() -> None:
    program = _points_program()
    card = LoyaltyCard.enroll(program, uuid4(), now=NOW)
    card.add_points(Decimal("30"), Decimal("20"), store_id=uuid4(), now=NOW)
    card.suspend(now=NOW)

    with pytest.raises(InvalidOperationError):
        card.add_points(Decimal("15"), Decimal("10"), store_id=uuid4(), now=NOW)
    with pytest.raises(InvalidOperationError):
        card.redeem_reward(_reward(program, 10), store_id=uuid4(), now=NOW)

    assert card.points_balance == Decimal("30")
    assert len(card.transactions) == 1


@pytest.mark.parametrize(
    ("rule", "expected"),
    [
        (PointsRoundingRule.ROUND_DOWN, Decimal("16")),
        (PointsRoundingRule.ROUND_UP, Decimal("17")),
        (PointsRoundingRule.ROUND_TO_NEAREST, Decimal("16")),
    ],
)
def test_points_rounding_rules(rule: PointsRoundingRule, expected: Decimal) -> None:
    program = _points_program(points_rounding=rule)

    assert program.calculate_points(Decimal("10.99")) == expected


def test_round_to_nearest_settles_halves_to_even() -> None:
    program = _points_program(points_conversion_rate=Decimal("1"), points_rounding=PointsRoundingRule.ROUND_TO_NEAREST)

    assert program.calculate_points(Decimal("10.50")) == Decimal("10")
    assert program.calculate_points(Decimal("11.50")) == Decimal("12")
    assert program.calculate_points(Decimal("11.51")) == Decimal("12")


def test_tiers_pick_highest_reached_threshold_and_multiply_points() -> None:
    program = _points_program(has_tiers=True)
    silver = program.create_tier("Silver", 100, point_multiplier=Decimal("1.5"), tier_order=1)
    gold = program.create_tier("Gold", 500, point_multiplier=Decimal("2"), tier_order=2, benefits=["Free shipping"])

    assert program.tier_for_points(Decimal("99")) is None
    assert program.tier_for_points(Decimal("100")) is silver
    assert program.tier_for_points(Decimal("750")) is gold
    assert gold.benefits == ["Free shipping"]

    assert program.calculate_points(Decimal("10"), silver) == Decimal("22")
    assert program.calculate_points(Decimal("10"), gold) == Decimal("30")

    program.has_tiers = False
    assert program.tier_for_points(Decimal("750")) is None
    assert program.calculate_points(Decimal("10"), gold) == Decimal("15")


def test_tier_creation_rules() -> None:
    with pytest.raises(InvalidOperationError):
        _stamp_program().create_tier("Silver", 100)
    with pytest.raises(InvalidOperationError):
        _points_program().create_tier("Silver", 100)

    program = _points_program(has_tiers=True)
    program.create_tier("Silver", 100, tier_order=1)
    with pytest.raises(ConflictError):
        program.create_tier("Gold", 500, tier_order=1)
    with pytest.raises(LoyaltyValidationError):
        program.create_tier("Gold", 500, point_multiplier=Decimal("0"), tier_order=2)
    with pytest.raises(LoyaltyValidationError):
        program.create_tier("Gold", -1, tier_order=2)
    assert [tier.name for tier in program.tiers] == ["Silver"]

    program.has_tiers = False
    with pytest.raises(LoyaltyValidationError):
        program.ensure_consistent()


def test_program_consistency_checks_points_config_and_window() -> None:
    program = _points_program()
    program.ensure_consistent()
    assert program.points_rounding is PointsRoundingRule.ROUND_DOWN

    stamp = _stamp_program(points_rounding=PointsRoundingRule.ROUND_UP, enrollment_bonus_points=50)
    stamp.ensure_consistent()
    assert stamp.points_rounding is None
    assert stamp.enrollment_bonus_points is None

    with pytest.raises(LoyaltyValidationError):
        _stamp_program(has_tiers=True).ensure_consistent()
    with pytest.raises(LoyaltyValidationError):
        _points_program(enrollment_bonus_points=-1).ensure_consistent()
    with pytest.raises(LoyaltyValidationError):
        _points_program(minimum_points_for_redemption=-1).ensure_consistent()
    with pytest.raises(LoyaltyValidationError):
        _points_program(starts_at=NOW, ends_at=NOW - dt.timedelta(days=1)).ensure_consistent()


def test_enrollment_window_is_inclusive() -> None:
    program = _points_program(starts_at=NOW, ends_at=NOW + dt.timedelta(days=30))

    assert not program.is_open_for_enrollment(NOW - dt.timedelta(seconds=1))
    assert program.is_open_for_enrollment(NOW)
    assert program.is_open_for_enrollment(NOW + dt.timedelta(days=30))
    assert not program.is_open_for_enrollment(NOW + dt.timedelta(days=30, seconds=1))
    assert _points_program().is_open_for_enrollment(NOW)


def test_enrollment_bonus_is_credited_as_ledger_entry() -> None:
    card = LoyaltyCard.enroll(_points_program(enrollment_bonus_points=50), uuid4(), now=NOW)

    assert card.points_balance == Decimal("50")
    [bonus] = card.transactions
    assert bonus.transaction_type is TransactionType.POINTS_ADDED
    assert bonus.points_amount == Decimal("50")
    assert bonus.store_id is None
    assert bonus.metadata_json == {"reason": "enrollment_bonus"}

    stamp_card = LoyaltyCard.enroll(_stamp_program(enrollment_bonus_points=50), uuid4(), now=NOW)
    assert stamp_card.transactions == []


def test_redemption_minimum_blocks_low_points_balances() -> None:
    program = _points_program()
    card = LoyaltyCard.enroll(program, uuid4(), now=NOW)
    card.add_points(Decimal("40"), Decimal("30"), store_id=uuid4(), now=NOW)
    reward = _reward(program, 10)

    with pytest.raises(InsufficientBalanceError) as excinfo:
        card.redeem_reward(reward, store_id=uuid4(), now=NOW, minimum_points_balance=100)
    assert excinfo.value.required == 100
    assert excinfo.value.available == Decimal("40")
    assert card.points_balance == Decimal("40")

    card.redeem_reward(reward, store_id=uuid4(), now=NOW, minimum_points_balance=40)
    assert card.points_balance == Decimal("30")
