"""
options.py - Option book: sale, settlement and pool cash flows

Every compute_* function takes a read-only StoreView and a PriceFeed,
checks all preconditions, and returns a PendingUpdate holding the record
changes and token transfers of the operation. Nothing here mutates state;
the OptionPool engine applies the update atomically.

Position lifecycle:
    Open (valid, exercised == 0)
        -> exercised      owner, before expiry, strictly in the money
        -> auto-exercised keeper, at or after expiry, zero payout if not in the money
        -> expired        pool admin, at or after expiry, at a supplied price

Collateral structures:
    Covered       locked_asset == custody. Calls lock quantity underlying
                  tokens; payoff is (spot - strike) * quantity.
    Cash-secured  locked_asset is the quote asset. Puts lock strike * quantity
                  USD in quote tokens; payoff is (strike - spot) * quantity.

is_covered() picks the payoff formula on every settlement path.
"""

from __future__ import annotations
from dataclasses import replace
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Union

from .core import (
    DEFAULT_IMPLIED_VOLATILITY, MAX_PRICE_AGE_SEC, PRICE_DECIMALS, TRANSFER_AUTHORITY, USD_DECIMALS,
    AdminAuthorityError, InvalidLockedBalanceError, InvalidOptionIndexError, InvalidOwner, InvalidPriceRequirementError,
    InvalidSignerBalanceError, InvalidTimeError, NotAuthorizedKeeperError, OptionAlreadyExercised,
    OptionNotValid, OriginType, PendingUpdate, RecordChange, Transfer, UpdateOrigin, build_update,
)
from .custody import credit, debit, lock, settle
from .decimal_math import (
    checked_add, checked_decimal_ceil_div, checked_decimal_div, checked_decimal_mul,
    checked_mul, checked_pow, checked_sub, to_scaled,
)
from .oracle import OraclePrice, PriceFeed, load_oracle_price, price_pair
from .pricing import PremiumQuote, PricingModel, compute_premium_amount
from .records import (
    Custody, OptionDetail, OptionType, PremiumUnit, User,
    custody_key, custody_token_account, option_key, user_key,
)
from .store import StoreView


class Moneyness(Enum):
    IN_THE_MONEY = "itm"
    AT_THE_MONEY = "atm"
    OUT_OF_THE_MONEY = "otm"


# ============================================================================
# READ HELPERS
# ============================================================================

def is_covered(option: OptionDetail) -> bool:
    """True when the collateral is the target asset itself."""
    return option.custody == option.locked_asset


def _spot_at_price_decimals(spot: OraclePrice) -> int:
    return spot.scale_to_exponent(-PRICE_DECIMALS).price


def get_option_moneyness(option: OptionDetail, spot: OraclePrice) -> Moneyness:
    spot_price = _spot_at_price_decimals(spot)
    if spot_price == option.strike_price:
        return Moneyness.AT_THE_MONEY
    if is_covered(option):
        itm = spot_price > option.strike_price
    else:
        itm = option.strike_price > spot_price
    return Moneyness.IN_THE_MONEY if itm else Moneyness.OUT_OF_THE_MONEY


def get_option_intrinsic_value(option: OptionDetail, spot: OraclePrice) -> int:
    """
    Intrinsic value of the whole position in USD at exponent -USD_DECIMALS.

    Zero unless the position is strictly in the money.
    """
    spot_price = _spot_at_price_decimals(spot)
    if get_option_moneyness(option, spot) is not Moneyness.IN_THE_MONEY:
        return 0
    if is_covered(option):
        diff = checked_sub(spot_price, option.strike_price)
    else:
        diff = checked_sub(option.strike_price, spot_price)
    return checked_decimal_mul(diff, -PRICE_DECIMALS, option.quantity, 0, -USD_DECIMALS)


def _as_price(value: Union[int, Decimal], now: int) -> OraclePrice:
    """Price supplied by a caller: an int mantissa at -PRICE_DECIMALS or a Decimal."""
    if isinstance(value, Decimal):
        value = to_scaled(value, -PRICE_DECIMALS)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"price must be int or Decimal, got {type(value).__name__}")
    if value <= 0:
        raise InvalidPriceRequirementError(f"Settlement price must be positive, got {value}")
    return OraclePrice(price=value, exponent=-PRICE_DECIMALS, published_at=now)


# ============================================================================
# SALE
# ============================================================================

def _notional(
    is_call: bool,
    quantity: int,
    strike_price: int,
    underlying: Custody,
    quote: Custody,
    quote_price: Optional[OraclePrice],
) -> int:
    """Collateral to lock, in units of the locked custody's token."""
    if is_call:
        return checked_mul(quantity, checked_pow(10, underlying.decimals))
    notional_usd = checked_decimal_mul(strike_price, -PRICE_DECIMALS, quantity, 0, -USD_DECIMALS)
    return checked_decimal_ceil_div(
        notional_usd, -USD_DECIMALS,
        quote_price.price, quote_price.exponent,
        -quote.decimals,
    )


def quote_premium(
    view: StoreView,
    feed: PriceFeed,
    pool_name: str,
    underlying: str,
    quote: str,
    quantity: int,
    strike_price: int,
    expired_date: int,
    is_call: bool,
    pay_in_base: bool,
    max_age: int = MAX_PRICE_AGE_SEC,
    volatility: Decimal = DEFAULT_IMPLIED_VOLATILITY,
    model: PricingModel = PricingModel.VOLATILITY_TIME,
) -> PremiumQuote:
    """
    Premium a sale with these terms would charge right now.

    Raises:
        InvalidTimeError: If expired_date is not in the future
        StalePriceError, OracleNotFound, InvalidPriceRequirementError
    """
    now = view.current_time
    if expired_date <= now:
        raise InvalidTimeError(f"Expiry {expired_date} is not after current time {now}")
    base_custody = view.get_custody(pool_name, underlying)
    quote_custody = view.get_custody(pool_name, quote)

    spot = load_oracle_price(feed, base_custody.oracle, now, max_age)
    if pay_in_base:
        pay_custody, pay_price = base_custody, spot
    else:
        pay_custody = quote_custody
        pay_price = load_oracle_price(feed, quote_custody.oracle, now, max_age)

    return compute_premium_amount(
        spot, strike_price, expired_date - now, is_call, quantity,
        pay_price, pay_custody.decimals, volatility, model,
    )


def compute_sell_option(
    view: StoreView,
    feed: PriceFeed,
    owner: str,
    pool_name: str,
    underlying: str,
    quote: str,
    quantity: int,
    strike_price: int,
    expired_date: int,
    option_index: int,
    is_call: bool,
    pay_in_base: bool,
    max_age: int = MAX_PRICE_AGE_SEC,
    volatility: Decimal = DEFAULT_IMPLIED_VOLATILITY,
    model: PricingModel = PricingModel.VOLATILITY_TIME,
) -> PendingUpdate:
    """
    Sell a new option to owner.

    The buyer pays the premium into the pay custody (underlying if
    pay_in_base, else quote) and the pool locks the notional on the
    collateral custody: a covered call locks quantity underlying tokens, a
    cash-secured put locks strike * quantity USD worth of quote tokens.

    Args:
        owner: Buyer account
        pool_name: Pool to sell from
        underlying: Target asset (custody) the option is written on
        quote: Quote (stable) asset of the pool
        quantity: Number of whole underlying units
        strike_price: Strike scaled by 10^PRICE_DECIMALS
        expired_date: Expiry as unix seconds
        option_index: Must be the owner's counter + 1
        is_call: Call (covered) or put (cash-secured)
        pay_in_base: Pay the premium in the underlying instead of the quote asset

    Returns:
        PendingUpdate whose result is the new OptionDetail

    Raises:
        InvalidOptionIndexError: If option_index is not the next index
        InvalidTimeError: If expired_date is not in the future
        InvalidSignerBalanceError: If the buyer cannot pay the premium
        InvalidPoolBalanceError: If the pool lacks free collateral
        StalePriceError, OracleNotFound, InvalidPriceRequirementError
        ValueError: For non-positive quantity or strike, or identical assets
    """
    if underlying == quote:
        raise ValueError(f"underlying and quote must differ, got {underlying}")
    if quantity <= 0:
        raise ValueError(f"quantity must be positive, got {quantity}")
    if strike_price <= 0:
        raise ValueError(f"strike_price must be positive, got {strike_price}")

    user = view.find_user(owner)
    current_index = user.option_index if user is not None else 0
    if option_index != current_index + 1:
        raise InvalidOptionIndexError(
            f"Option index for {owner} must be {current_index + 1}, got {option_index}"
        )

    now = view.current_time
    if expired_date <= now:
        raise InvalidTimeError(f"Expiry {expired_date} is not after current time {now}")

    view.get_pool(pool_name)
    base_custody = view.get_custody(pool_name, underlying)
    quote_custody = view.get_custody(pool_name, quote)

    spot = load_oracle_price(feed, base_custody.oracle, now, max_age)
    quote_price = None
    if not (is_call and pay_in_base):
        quote_price = load_oracle_price(feed, quote_custody.oracle, now, max_age)

    if pay_in_base:
        pay_custody, pay_price = base_custody, spot
    else:
        pay_custody, pay_price = quote_custody, quote_price

    premium = compute_premium_amount(
        spot, strike_price, expired_date - now, is_call, quantity,
        pay_price, pay_custody.decimals, volatility, model,
    )

    buyer_balance = view.token_balance(owner, pay_custody.asset)
    if buyer_balance < premium.amount:
        raise InvalidSignerBalanceError(
            f"{owner} has {buyer_balance} {pay_custody.asset}, premium is {premium.amount}"
        )

    locked_custody = base_custody if is_call else quote_custody
    notional = _notional(is_call, quantity, strike_price, base_custody, quote_custody, quote_price)

    # Premium lands before the lock, so a same-asset premium adds to capacity
    updated: Dict[str, Custody] = {base_custody.asset: base_custody, quote_custody.asset: quote_custody}
    updated[pay_custody.asset] = credit(updated[pay_custody.asset], premium.amount)
    updated[locked_custody.asset] = lock(updated[locked_custody.asset], notional)

    option = OptionDetail(
        owner=owner,
        index=option_index,
        pool=pool_name,
        custody=underlying,
        locked_asset=locked_custody.asset,
        quantity=quantity,
        strike_price=strike_price,
        expired_date=expired_date,
        option_type=OptionType.CALL if is_call else OptionType.PUT,
        premium=premium.amount,
        premium_unit=PremiumUnit.BASE if pay_in_base else PremiumUnit.QUOTE,
        premium_asset=pay_custody.asset,
        amount=notional,
    )
    new_user = User(owner=owner, option_index=checked_add(current_index, 1))

    changes = [
        RecordChange(custody_key(pool_name, asset), old, updated[asset])
        for asset, old in ((base_custody.asset, base_custody), (quote_custody.asset, quote_custody))
        if updated[asset] != old
    ]
    changes.append(RecordChange(option_key(owner, option_index), None, option))
    changes.append(RecordChange(user_key(owner), user, new_user))

    transfers = [Transfer(
        quantity=premium.amount,
        asset=pay_custody.asset,
        source=owner,
        dest=custody_token_account(pool_name, pay_custody.asset),
        authority=owner,
        memo=f"premium:{owner}:{option_index}",
    )]

    origin = UpdateOrigin(OriginType.USER_ACTION, owner, "sell_option")
    return build_update(view, changes, transfers, origin, result=option)


# ============================================================================
# SETTLEMENT
# ============================================================================

def _load_open_option(view: StoreView, owner: str, option_index: int) -> OptionDetail:
    """Load a position and run the checks shared by every settlement path."""
    user = view.find_user(owner)
    if user is None or not 1 <= option_index <= user.option_index:
        raise InvalidOptionIndexError(f"{owner} has no option with index {option_index}")
    option = view.get_option(owner, option_index)
    if option.exercised != 0:
        raise OptionAlreadyExercised(f"Option {owner}:{option_index} already exercised at {option.exercised}")
    if not option.valid:
        raise OptionNotValid(f"Option {owner}:{option_index} is not valid")
    if option.owner != owner:
        raise InvalidOwner(f"Option {owner}:{option_index} is owned by {option.owner}")
    return option


def _settle(
    view: StoreView,
    option: OptionDetail,
    spot: OraclePrice,
    locked_price: OraclePrice,
    origin: UpdateOrigin,
    require_in_the_money: bool,
) -> PendingUpdate:
    """
    Close a position at spot.

    The payoff is computed in USD, converted into locked-token units at
    locked_price, paid from the locked custody to the owner, and the full
    notional is released. The payout never exceeds the notional.
    """
    moneyness = get_option_moneyness(option, spot)
    if moneyness is not Moneyness.IN_THE_MONEY and require_in_the_money:
        raise InvalidPriceRequirementError(
            f"Option {option.owner}:{option.index} is {moneyness.value}: "
            f"spot {spot.get_price()} vs strike {option.strike_price}"
        )

    locked_custody = view.get_custody(option.pool, option.locked_asset)
    payoff_usd = get_option_intrinsic_value(option, spot)
    payout = 0
    if payoff_usd:
        payout = checked_decimal_div(
            payoff_usd, -USD_DECIMALS,
            locked_price.price, locked_price.exponent,
            -locked_custody.decimals,
        )
    if payout > option.amount:
        raise InvalidLockedBalanceError(
            f"Option {option.owner}:{option.index}: payout {payout} exceeds locked notional {option.amount}"
        )

    new_custody = settle(locked_custody, option.amount, payout)

    # exercised doubles as the terminal flag and must stay non-zero
    now = view.current_time
    new_option = replace(option, valid=False, exercised=max(now, 1), claimed=payout, profit=payout)

    changes = [
        RecordChange(custody_key(option.pool, option.locked_asset), locked_custody, new_custody),
        RecordChange(option_key(option.owner, option.index), option, new_option),
    ]
    transfers: List[Transfer] = []
    if payout > 0:
        transfers.append(Transfer(
            quantity=payout,
            asset=option.locked_asset,
            source=custody_token_account(option.pool, option.locked_asset),
            dest=option.owner,
            authority=TRANSFER_AUTHORITY,
            memo=f"payout:{option.owner}:{option.index}",
        ))
    return build_update(view, changes, transfers, origin, result=new_option)


def _settlement_prices(
    view: StoreView,
    feed: PriceFeed,
    option: OptionDetail,
    max_age: int,
):
    target = view.get_custody(option.pool, option.custody)
    locked = view.get_custody(option.pool, option.locked_asset)
    return price_pair(feed, (target.oracle, locked.oracle), view.current_time, max_age)


def compute_exercise_option(
    view: StoreView,
    feed: PriceFeed,
    caller: str,
    option_index: int,
    owner: Optional[str] = None,
    max_age: int = MAX_PRICE_AGE_SEC,
) -> PendingUpdate:
    """
    Exercise an in-the-money position before expiry.

    owner defaults to caller; addressing another account's position fails.

    Raises:
        InvalidOptionIndexError, OptionAlreadyExercised, OptionNotValid
        InvalidOwner: If caller does not own the position
        InvalidTimeError: If now >= expiry
        InvalidPriceRequirementError: If the position is not strictly in the money
        StalePriceError, OracleNotFound
    """
    owner = owner or caller
    option = _load_open_option(view, owner, option_index)
    if caller != option.owner:
        raise InvalidOwner(f"{caller} does not own option {owner}:{option_index}")

    now = view.current_time
    if now >= option.expired_date:
        raise InvalidTimeError(f"Option {owner}:{option_index} expired at {option.expired_date}")

    spot, locked_price = _settlement_prices(view, feed, option, max_age)
    origin = UpdateOrigin(OriginType.USER_ACTION, caller, "exercise_option")
    return _settle(view, option, spot, locked_price, origin, require_in_the_money=True)


def compute_auto_exercise(
    view: StoreView,
    feed: PriceFeed,
    keeper: str,
    owner: str,
    option_index: int,
    max_age: int = MAX_PRICE_AGE_SEC,
) -> PendingUpdate:
    """
    Settle an expired position on behalf of its owner.

    Out-of-the-money positions close with zero payout; the notional is
    always released back to the pool.

    Raises:
        NotAuthorizedKeeperError: If keeper is not a keeper of the option's pool
        InvalidOptionIndexError, OptionAlreadyExercised, OptionNotValid, InvalidOwner
        InvalidTimeError: If now < expiry
        StalePriceError, OracleNotFound
    """
    option = _load_open_option(view, owner, option_index)
    pool = view.get_pool(option.pool)
    if keeper not in pool.keepers:
        raise NotAuthorizedKeeperError(f"{keeper} is not a keeper of pool {pool.name}")

    now = view.current_time
    if now < option.expired_date:
        raise InvalidTimeError(f"Option {owner}:{option_index} expires at {option.expired_date}")

    spot, locked_price = _settlement_prices(view, feed, option, max_age)
    origin = UpdateOrigin(OriginType.AUTOMATION, keeper, "auto_exercise_option")
    return _settle(view, option, spot, locked_price, origin, require_in_the_money=False)


def compute_expire_option(
    view: StoreView,
    feed: PriceFeed,
    admin: str,
    owner: str,
    option_index: int,
    settlement_price: Union[int, Decimal],
    max_age: int = MAX_PRICE_AGE_SEC,
) -> PendingUpdate:
    """
    Close an expired position at an administratively supplied price.

    settlement_price is an int scaled by 10^PRICE_DECIMALS or a Decimal.
    Covered positions are paid out at the settlement price; cash-secured
    positions at the locked custody's oracle price.

    Raises:
        AdminAuthorityError: If admin is not the pool admin
        InvalidOptionIndexError, OptionAlreadyExercised, OptionNotValid, InvalidOwner
        InvalidTimeError: If now < expiry
        InvalidLockedBalanceError: If the payout exceeds the locked notional or
            the locked custody cannot release it
        InvalidPriceRequirementError: If settlement_price is not positive
        StalePriceError, OracleNotFound: For the locked custody's oracle
    """
    option = _load_open_option(view, owner, option_index)
    pool = view.get_pool(option.pool)
    if admin != pool.admin:
        raise AdminAuthorityError(f"{admin} is not the admin of pool {pool.name}")

    now = view.current_time
    if now < option.expired_date:
        raise InvalidTimeError(f"Option {owner}:{option_index} expires at {option.expired_date}")

    spot = _as_price(settlement_price, now)
    if is_covered(option):
        locked = spot
    else:
        locked_custody = view.get_custody(option.pool, option.locked_asset)
        locked = load_oracle_price(feed, locked_custody.oracle, now, max_age)

    origin = UpdateOrigin(OriginType.ADMIN, admin, "expire_option")
    return _settle(view, option, spot, locked, origin, require_in_the_money=False)


# ============================================================================
# POOL CASH FLOWS
# ============================================================================

def compute_deposit(
    view: StoreView,
    depositor: str,
    pool_name: str,
    asset: str,
    amount: int,
) -> PendingUpdate:
    """
    Move amount tokens from depositor into the pool's custody.

    Raises:
        InvalidSignerBalanceError: If the depositor cannot cover amount
        ValueError: If amount is not positive
    """
    if amount <= 0:
        raise ValueError(f"Deposit amount must be positive, got {amount}")
    custody = view.get_custody(pool_name, asset)
    balance = view.token_balance(depositor, asset)
    if balance < amount:
        raise InvalidSignerBalanceError(f"{depositor} has {balance} {asset}, needs {amount}")

    changes = [RecordChange(custody_key(pool_name, asset), custody, credit(custody, amount))]
    transfers = [Transfer(
        quantity=amount,
        asset=asset,
        source=depositor,
        dest=custody_token_account(pool_name, asset),
        authority=depositor,
        memo=f"deposit:{depositor}",
    )]
    origin = UpdateOrigin(OriginType.USER_ACTION, depositor, "deposit")
    return build_update(view, changes, transfers, origin, result=amount)


def compute_withdraw(
    view: StoreView,
    admin: str,
    pool_name: str,
    asset: str,
    amount: int,
) -> PendingUpdate:
    """
    Pay amount of the custody's free balance out to the pool admin.

    Raises:
        AdminAuthorityError: If admin is not the pool admin
        InvalidPoolBalanceError: If amount exceeds the free balance
        ValueError: If amount is not positive
    """
    if amount <= 0:
        raise ValueError(f"Withdraw amount must be positive, got {amount}")
    pool = view.get_pool(pool_name)
    if admin != pool.admin:
        raise AdminAuthorityError(f"{admin} is not the admin of pool {pool_name}")
    custody = view.get_custody(pool_name, asset)

    changes = [RecordChange(custody_key(pool_name, asset), custody, debit(custody, amount))]
    transfers = [Transfer(
        quantity=amount,
        asset=asset,
        source=custody_token_account(pool_name, asset),
        dest=admin,
        authority=TRANSFER_AUTHORITY,
        memo=f"withdraw:{admin}",
    )]
    origin = UpdateOrigin(OriginType.ADMIN, admin, "withdraw")
    return build_update(view, changes, transfers, origin, result=amount)
