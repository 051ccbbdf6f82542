"""
pricing.py - Premium valuation

The premium is the only place where Decimal math feeds the ledger. The
per-unit premium is priced in USD as a Decimal, multiplied by the quantity,
rounded up to USD_DECIMALS and then converted into pay-asset token units with
ceiling decimal division. Rounding up on both steps means a sale with positive
inputs always collects a positive premium.

Models:
    VOLATILITY_TIME  spot * σ * sqrt(t / year) * m
                     m = spot / strike for calls, strike / spot for puts
    BLACK_SCHOLES    zero-rate Black-Scholes (numpy/scipy), 8-place Decimal

The premium only gates collection at sale. Settlement payoffs are recomputed
from fresh prices and never read the stored premium.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_UP
from enum import Enum

from . import black_scholes
from .core import DEFAULT_IMPLIED_VOLATILITY, PRICE_DECIMALS, SECONDS_PER_YEAR, USD_DECIMALS
from .decimal_math import checked_decimal_ceil_div, from_scaled, to_scaled
from .oracle import OraclePrice


class PricingModel(Enum):
    VOLATILITY_TIME = "volatility_time"
    BLACK_SCHOLES = "black_scholes"


@dataclass(frozen=True, slots=True)
class PremiumQuote:
    """
    Premium for one sale.

    Attributes:
        per_unit: Premium per underlying unit in USD (display only)
        premium_usd: Total premium in USD at exponent -USD_DECIMALS
        amount: Total premium in pay-asset token units
    """
    per_unit: Decimal
    premium_usd: int
    amount: int


def price_premium(
    spot: Decimal,
    strike: Decimal,
    time_to_expiry: int,
    is_call: bool,
    volatility: Decimal = DEFAULT_IMPLIED_VOLATILITY,
    model: PricingModel = PricingModel.VOLATILITY_TIME,
) -> Decimal:
    """
    Per-unit premium in USD.

    Args:
        spot: Spot price of the underlying in USD
        strike: Strike price in USD
        time_to_expiry: Seconds until expiry
        is_call: True for a call, False for a put
        volatility: Annualized implied volatility
        model: Valuation model

    Raises:
        ValueError: If spot, strike, time_to_expiry or volatility is not positive
    """
    if spot <= 0 or strike <= 0:
        raise ValueError(f"spot and strike must be positive, got {spot} and {strike}")
    if time_to_expiry <= 0:
        raise ValueError(f"time_to_expiry must be positive, got {time_to_expiry}")
    if volatility <= 0:
        raise ValueError(f"volatility must be positive, got {volatility}")

    if model is PricingModel.BLACK_SCHOLES:
        if is_call:
            return black_scholes.call(spot, strike, time_to_expiry, volatility)
        return black_scholes.put(spot, strike, time_to_expiry, volatility)

    period = (Decimal(time_to_expiry) / Decimal(SECONDS_PER_YEAR)).sqrt()
    moneyness = spot / strike if is_call else strike / spot
    return spot * volatility * period * moneyness


def compute_premium_amount(
    spot: OraclePrice,
    strike_price: int,
    time_to_expiry: int,
    is_call: bool,
    quantity: int,
    pay_price: OraclePrice,
    pay_decimals: int,
    volatility: Decimal = DEFAULT_IMPLIED_VOLATILITY,
    model: PricingModel = PricingModel.VOLATILITY_TIME,
) -> PremiumQuote:
    """
    Total premium for quantity units, in USD and in pay-asset tokens.

    strike_price is scaled by 10^PRICE_DECIMALS. pay_price is the validated
    oracle price of the asset the buyer pays in.

    Raises:
        ValueError: If quantity is not positive or a pricing input is invalid
        MathOverflowError: If the premium does not fit in u64
    """
    if quantity <= 0:
        raise ValueError(f"quantity must be positive, got {quantity}")

    per_unit = price_premium(
        spot.get_price(),
        from_scaled(strike_price, -PRICE_DECIMALS),
        time_to_expiry,
        is_call,
        volatility,
        model,
    )

    # Round up, with a one-tick floor for models that can price to zero
    premium_usd = max(to_scaled(per_unit * quantity, -USD_DECIMALS, rounding=ROUND_UP), 1)
    amount = checked_decimal_ceil_div(
        premium_usd, -USD_DECIMALS,
        pay_price.price, pay_price.exponent,
        -pay_decimals,
    )
    return PremiumQuote(per_unit=per_unit, premium_usd=premium_usd, amount=amount)
