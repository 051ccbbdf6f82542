"""
test_option_book.py - Unit tests for options.py against a FakeView

Tests:
- compute_sell_option: collateral, premium, index and balance checks
- compute_exercise_option / compute_auto_exercise / compute_expire_option
- Moneyness and intrinsic value helpers
- compute_deposit / compute_withdraw
"""

import pytest
from dataclasses import replace
from decimal import Decimal

from optionpool import (
    AdminAuthorityError, InvalidLockedBalanceError, InvalidOptionIndexError, InvalidOwner, InvalidPoolBalanceError,
    InvalidPriceRequirementError, InvalidSignerBalanceError, InvalidTimeError,
    NotAuthorizedKeeperError, OptionAlreadyExercised, OracleNotFound, RecordNotFound, StalePriceError,
    Moneyness, OptionDetail, OptionType, OraclePrice, PremiumUnit, StaticPriceFeed, User,
    OriginType, TRANSFER_AUTHORITY,
    compute_auto_exercise, compute_deposit, compute_exercise_option, compute_expire_option,
    compute_sell_option, compute_withdraw, get_option_intrinsic_value, get_option_moneyness,
    quote_premium, custody_key, custody_token_account, option_key, user_key,
)

from tests.fake_view import FakeView
from tests.pool_builder import (
    ADMIN, BUYER, DAY, KEEPER, LP, POOL, POOL_SOL, POOL_USDC, SOL, SOL_ORACLE, T0, USDC,
    USDC_ORACLE, strike,
)


EXPIRY = T0 + 30 * DAY
CALL_NOTIONAL = 10 * 10 ** 9
PUT_NOTIONAL = 1_500 * 10 ** 6


def _sell(view, feed, index=1, quantity=10, is_call=True, pay_in_base=False, expiry=EXPIRY):
    return compute_sell_option(
        view, feed, BUYER, POOL, SOL, USDC, quantity, strike(150), expiry, index,
        is_call, pay_in_base,
    )


def _feed(sol, usdc="1", at=T0):
    feed = StaticPriceFeed()
    feed.publish_price(SOL_ORACLE, Decimal(sol), at)
    feed.publish_price(USDC_ORACLE, Decimal(usdc), at)
    return feed


def _open_position(view, is_call=True):
    """View holding one open position for BUYER at index 1."""
    locked_asset = SOL if is_call else USDC
    amount = CALL_NOTIONAL if is_call else PUT_NOTIONAL
    option = OptionDetail(
        owner=BUYER, index=1, pool=POOL, custody=SOL, locked_asset=locked_asset,
        quantity=10, strike_price=strike(150), expired_date=EXPIRY,
        option_type=OptionType.CALL if is_call else OptionType.PUT,
        premium=1, premium_unit=PremiumUnit.QUOTE, premium_asset=USDC, amount=amount,
    )
    custody = view.get_custody(POOL, locked_asset)
    return (
        view.with_record(option_key(BUYER, 1), option)
            .with_record(user_key(BUYER), User(BUYER, 1))
            .with_record(custody_key(POOL, locked_asset), replace(custody, locked_balance=amount))
    )


def _new(update, key):
    return next(rc.new for rc in update.changes if rc.key == key)


class TestSellOption:
    """Tests for compute_sell_option."""

    def test_covered_call_locks_underlying(self, pool_view, sol_feed):
        update = _sell(pool_view, sol_feed)
        option = update.result
        assert option.locked_asset == SOL
        assert option.amount == CALL_NOTIONAL
        assert option.valid and option.exercised == 0
        assert option.premium_asset == USDC
        assert option.premium_unit is PremiumUnit.QUOTE
        assert _new(update, custody_key(POOL, SOL)).locked_balance == CALL_NOTIONAL

    def test_premium_credited_to_pay_custody(self, pool_view, sol_feed):
        update = _sell(pool_view, sol_feed)
        premium = update.result.premium
        assert premium > 0
        assert _new(update, custody_key(POOL, USDC)).total_balance == POOL_USDC + premium

        (transfer,) = update.transfers
        assert transfer.quantity == premium
        assert transfer.asset == USDC
        assert transfer.source == BUYER
        assert transfer.dest == custody_token_account(POOL, USDC)
        assert transfer.memo == f"premium:{BUYER}:1"

    def test_premium_matches_quote(self, pool_view, sol_feed):
        quote = quote_premium(pool_view, sol_feed, POOL, SOL, USDC, 10, strike(150), EXPIRY, True, False)
        assert _sell(pool_view, sol_feed).result.premium == quote.amount

    def test_user_counter_created(self, pool_view, sol_feed):
        update = _sell(pool_view, sol_feed)
        assert _new(update, user_key(BUYER)) == User(BUYER, 1)
        assert _new(update, option_key(BUYER, 1)) == update.result

    def test_cash_secured_put_locks_quote(self, pool_view, sol_feed):
        update = _sell(pool_view, sol_feed, is_call=False)
        option = update.result
        assert option.locked_asset == USDC
        assert option.amount == PUT_NOTIONAL
        usdc = _new(update, custody_key(POOL, USDC))
        assert usdc.locked_balance == PUT_NOTIONAL
        assert usdc.total_balance == POOL_USDC + option.premium
        # Underlying custody is untouched
        assert custody_key(POOL, SOL) not in [rc.key for rc in update.changes]

    def test_pay_in_base(self, pool_view, sol_feed):
        update = _sell(pool_view, sol_feed, pay_in_base=True)
        option = update.result
        assert option.premium_asset == SOL
        assert option.premium_unit is PremiumUnit.BASE
        sol = _new(update, custody_key(POOL, SOL))
        assert sol.total_balance == POOL_SOL + option.premium
        assert sol.locked_balance == CALL_NOTIONAL

    def test_user_action_origin(self, pool_view, sol_feed):
        origin = _sell(pool_view, sol_feed).origin
        assert origin.origin_type is OriginType.USER_ACTION
        assert origin.source_id == BUYER
        assert origin.operation == "sell_option"

    def test_index_must_be_next(self, pool_view, sol_feed):
        with pytest.raises(InvalidOptionIndexError):
            _sell(pool_view, sol_feed, index=2)

    def test_index_after_existing_position(self, pool_view, sol_feed):
        view = _open_position(pool_view)
        with pytest.raises(InvalidOptionIndexError):
            _sell(view, sol_feed, index=1)
        assert _sell(view, sol_feed, index=2).result.index == 2

    def test_expiry_in_past(self, pool_view, sol_feed):
        with pytest.raises(InvalidTimeError):
            _sell(pool_view, sol_feed, expiry=T0)

    def test_buyer_cannot_pay(self, pool_records, sol_feed):
        view = FakeView(pool_records, {}, {SOL: 9, USDC: 6}, T0)
        with pytest.raises(InvalidSignerBalanceError):
            _sell(view, sol_feed)

    def test_pool_lacks_collateral(self, pool_view, sol_feed):
        with pytest.raises(InvalidPoolBalanceError):
            _sell(pool_view, sol_feed, quantity=101)

    def test_stale_price(self, pool_view, sol_feed):
        with pytest.raises(StalePriceError):
            _sell(pool_view.with_time(T0 + 31), sol_feed)

    def test_unknown_pool(self, pool_view, sol_feed):
        with pytest.raises(RecordNotFound):
            compute_sell_option(pool_view, sol_feed, BUYER, "other", SOL, USDC, 1,
                                strike(150), EXPIRY, 1, True, False)

    def test_same_assets(self, pool_view, sol_feed):
        with pytest.raises(ValueError):
            compute_sell_option(pool_view, sol_feed, BUYER, POOL, SOL, SOL, 1,
                                strike(150), EXPIRY, 1, True, False)

    def test_non_positive_quantity(self, pool_view, sol_feed):
        with pytest.raises(ValueError):
            _sell(pool_view, sol_feed, quantity=0)


class TestMoneyness:
    """Tests for moneyness and intrinsic value."""

    @pytest.fixture
    def call_option(self, pool_view):
        return _open_position(pool_view).get_option(BUYER, 1)

    @pytest.fixture
    def put_option(self, pool_view):
        return _open_position(pool_view, is_call=False).get_option(BUYER, 1)

    def test_call_moneyness(self, call_option):
        assert get_option_moneyness(call_option, OraclePrice(170_000_000, -6)) is Moneyness.IN_THE_MONEY
        assert get_option_moneyness(call_option, OraclePrice(150_000_000, -6)) is Moneyness.AT_THE_MONEY
        assert get_option_moneyness(call_option, OraclePrice(130_000_000, -6)) is Moneyness.OUT_OF_THE_MONEY

    def test_put_moneyness(self, put_option):
        assert get_option_moneyness(put_option, OraclePrice(130_000_000, -6)) is Moneyness.IN_THE_MONEY
        assert get_option_moneyness(put_option, OraclePrice(170_000_000, -6)) is Moneyness.OUT_OF_THE_MONEY

    def test_moneyness_rescales_spot(self, call_option):
        assert get_option_moneyness(call_option, OraclePrice(15_000_000_000, -8)) is Moneyness.AT_THE_MONEY

    def test_intrinsic_value(self, call_option, put_option):
        assert get_option_intrinsic_value(call_option, OraclePrice(170_000_000, -6)) == 200_000_000
        assert get_option_intrinsic_value(put_option, OraclePrice(130_000_000, -6)) == 200_000_000

    def test_intrinsic_value_zero_unless_in_the_money(self, call_option):
        assert get_option_intrinsic_value(call_option, OraclePrice(150_000_000, -6)) == 0
        assert get_option_intrinsic_value(call_option, OraclePrice(100_000_000, -6)) == 0


class TestExercise:
    """Tests for compute_exercise_option."""

    def test_call_payout_in_underlying(self, pool_view):
        view = _open_position(pool_view)
        update = compute_exercise_option(view, _feed("170"), BUYER, 1)
        option = update.result
        assert option.claimed == option.profit == 1_176_470_588
        assert not option.valid
        assert option.exercised == T0

        sol = _new(update, custody_key(POOL, SOL))
        assert sol.locked_balance == 0
        assert sol.total_balance == POOL_SOL - 1_176_470_588

        (transfer,) = update.transfers
        assert transfer.source == custody_token_account(POOL, SOL)
        assert transfer.dest == BUYER
        assert transfer.authority == TRANSFER_AUTHORITY
        assert transfer.memo == f"payout:{BUYER}:1"

    def test_covered_call_needs_only_spot_oracle(self, pool_view):
        view = _open_position(pool_view)
        feed = StaticPriceFeed()
        feed.publish_price(SOL_ORACLE, Decimal("170"), T0)
        assert compute_exercise_option(view, feed, BUYER, 1).result.claimed == 1_176_470_588

    def test_put_needs_locked_oracle(self, pool_view):
        view = _open_position(pool_view, is_call=False)
        feed = StaticPriceFeed()
        feed.publish_price(SOL_ORACLE, Decimal("130"), T0)
        with pytest.raises(OracleNotFound):
            compute_exercise_option(view, feed, BUYER, 1)

    def test_put_payout_in_quote(self, pool_view):
        view = _open_position(pool_view, is_call=False)
        update = compute_exercise_option(view, _feed("130"), BUYER, 1)
        assert update.result.claimed == 200_000_000
        usdc = _new(update, custody_key(POOL, USDC))
        assert usdc.locked_balance == 0
        assert usdc.total_balance == POOL_USDC - 200_000_000

    @pytest.mark.parametrize("spot", ["150", "140"])
    def test_not_in_the_money(self, pool_view, spot):
        view = _open_position(pool_view)
        with pytest.raises(InvalidPriceRequirementError):
            compute_exercise_option(view, _feed(spot), BUYER, 1)

    def test_at_expiry(self, pool_view):
        view = _open_position(pool_view).with_time(EXPIRY)
        with pytest.raises(InvalidTimeError):
            compute_exercise_option(view, _feed("170", at=EXPIRY), BUYER, 1)

    def test_not_owner(self, pool_view):
        view = _open_position(pool_view)
        with pytest.raises(InvalidOwner):
            compute_exercise_option(view, _feed("170"), LP, 1, owner=BUYER)

    def test_unknown_index(self, pool_view):
        view = _open_position(pool_view)
        with pytest.raises(InvalidOptionIndexError):
            compute_exercise_option(view, _feed("170"), BUYER, 2)

    def test_already_exercised(self, pool_view):
        view = _open_position(pool_view)
        closed = compute_exercise_option(view, _feed("170"), BUYER, 1).result
        view = view.with_record(option_key(BUYER, 1), closed)
        with pytest.raises(OptionAlreadyExercised):
            compute_exercise_option(view, _feed("170"), BUYER, 1)

    def test_stale_price(self, pool_view):
        view = _open_position(pool_view).with_time(T0 + 31)
        with pytest.raises(StalePriceError):
            compute_exercise_option(view, _feed("170"), BUYER, 1)


class TestAutoExercise:
    """Tests for compute_auto_exercise."""

    def test_out_of_the_money_zero_payout(self, pool_view):
        view = _open_position(pool_view).with_time(EXPIRY)
        update = compute_auto_exercise(view, _feed("130", at=EXPIRY), KEEPER, BUYER, 1)
        option = update.result
        assert option.claimed == option.profit == 0
        assert option.exercised == EXPIRY
        assert update.transfers == ()
        assert _new(update, custody_key(POOL, SOL)).locked_balance == 0
        assert update.origin.origin_type is OriginType.AUTOMATION

    def test_in_the_money_pays_out(self, pool_view):
        view = _open_position(pool_view).with_time(EXPIRY + DAY)
        update = compute_auto_exercise(view, _feed("170", at=EXPIRY + DAY), KEEPER, BUYER, 1)
        assert update.result.claimed == 1_176_470_588

    def test_at_the_money_zero_payout(self, pool_view):
        view = _open_position(pool_view).with_time(EXPIRY)
        update = compute_auto_exercise(view, _feed("150", at=EXPIRY), KEEPER, BUYER, 1)
        assert update.result.claimed == 0

    def test_before_expiry(self, pool_view):
        view = _open_position(pool_view)
        with pytest.raises(InvalidTimeError):
            compute_auto_exercise(view, _feed("130"), KEEPER, BUYER, 1)

    def test_not_a_keeper(self, pool_view):
        view = _open_position(pool_view).with_time(EXPIRY)
        with pytest.raises(NotAuthorizedKeeperError):
            compute_auto_exercise(view, _feed("130", at=EXPIRY), LP, BUYER, 1)


class TestExpire:
    """Tests for compute_expire_option."""

    def test_admin_price_as_int(self, pool_view):
        view = _open_position(pool_view).with_time(EXPIRY)
        update = compute_expire_option(view, StaticPriceFeed(), ADMIN, BUYER, 1, strike(170))
        assert update.result.claimed == 1_176_470_588
        assert update.origin.origin_type is OriginType.ADMIN

    def test_admin_price_as_decimal(self, pool_view):
        view = _open_position(pool_view).with_time(EXPIRY)
        update = compute_expire_option(view, StaticPriceFeed(), ADMIN, BUYER, 1, Decimal("170"))
        assert update.result.claimed == 1_176_470_588

    def test_put_values_payout_at_locked_oracle(self, pool_view):
        view = _open_position(pool_view, is_call=False).with_time(EXPIRY)
        update = compute_expire_option(view, _feed("999", at=EXPIRY), ADMIN, BUYER, 1, strike(130))
        assert update.result.claimed == 200_000_000

    def test_put_payout_bounded_by_notional(self, pool_view):
        view = _open_position(pool_view, is_call=False).with_time(EXPIRY)
        # (150 - 100) * 10 = 500 USD is 50_000 quote tokens at 0.01
        with pytest.raises(InvalidLockedBalanceError):
            compute_expire_option(view, _feed("100", usdc="0.01", at=EXPIRY), ADMIN, BUYER, 1, strike(100))

    def test_put_payout_at_full_notional(self, pool_view):
        view = _open_position(pool_view, is_call=False).with_time(EXPIRY)
        update = compute_expire_option(view, _feed("100", usdc="0.1", at=EXPIRY), ADMIN, BUYER, 1, strike(140))
        assert update.result.claimed == 1_000_000_000
        update = compute_expire_option(view, _feed("100", usdc="0.2", at=EXPIRY), ADMIN, BUYER, 1, Decimal("120"))
        assert update.result.claimed == PUT_NOTIONAL

    def test_not_admin(self, pool_view):
        view = _open_position(pool_view).with_time(EXPIRY)
        with pytest.raises(AdminAuthorityError):
            compute_expire_option(view, StaticPriceFeed(), KEEPER, BUYER, 1, strike(170))

    def test_before_expiry(self, pool_view):
        view = _open_position(pool_view)
        with pytest.raises(InvalidTimeError):
            compute_expire_option(view, StaticPriceFeed(), ADMIN, BUYER, 1, strike(170))

    def test_non_positive_price(self, pool_view):
        view = _open_position(pool_view).with_time(EXPIRY)
        with pytest.raises(InvalidPriceRequirementError):
            compute_expire_option(view, StaticPriceFeed(), ADMIN, BUYER, 1, 0)


class TestPoolCashFlows:
    """Tests for compute_deposit and compute_withdraw."""

    def test_deposit(self, pool_view):
        update = compute_deposit(pool_view, BUYER, POOL, SOL, 10 ** 9)
        assert _new(update, custody_key(POOL, SOL)).total_balance == POOL_SOL + 10 ** 9
        (transfer,) = update.transfers
        assert transfer.dest == custody_token_account(POOL, SOL)

    def test_deposit_beyond_balance(self, pool_view):
        with pytest.raises(InvalidSignerBalanceError):
            compute_deposit(pool_view, LP, POOL, SOL, 1)

    def test_deposit_non_positive(self, pool_view):
        with pytest.raises(ValueError):
            compute_deposit(pool_view, BUYER, POOL, SOL, 0)

    def test_withdraw_free_balance(self, pool_view):
        update = compute_withdraw(pool_view, ADMIN, POOL, USDC, POOL_USDC)
        assert _new(update, custody_key(POOL, USDC)).total_balance == 0
        (transfer,) = update.transfers
        assert transfer.authority == TRANSFER_AUTHORITY
        assert transfer.dest == ADMIN

    def test_withdraw_cannot_touch_locked(self, pool_view):
        view = _open_position(pool_view)
        with pytest.raises(InvalidPoolBalanceError):
            compute_withdraw(view, ADMIN, POOL, SOL, POOL_SOL - CALL_NOTIONAL + 1)

    def test_withdraw_not_admin(self, pool_view):
        with pytest.raises(AdminAuthorityError):
            compute_withdraw(pool_view, LP, POOL, SOL, 1)
