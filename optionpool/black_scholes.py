"""
black_scholes.py - Black-Scholes premium model

Zero-rate Black-Scholes formulas with time to expiry in seconds, annualized
over a 365-day year (SECONDS_PER_YEAR). Float math runs through numpy/scipy;
the public functions take and return Decimal, quantized to 8 places, so no
binary float ever leaves this module.
"""

import math
import numpy as np
from typing import Union
from scipy.special import erf as scipy_erf
from decimal import Decimal, ROUND_HALF_EVEN

from .core import SECONDS_PER_YEAR


# Type alias for scalar or array inputs
Numeric = Union[float, np.ndarray]

SQRT_2 = math.sqrt(2.0)
QUANTUM = Decimal("0.00000001")


# ============================================================================
# NORMAL DISTRIBUTION FUNCTIONS
# ============================================================================

def normal_cdf(x: Numeric) -> Numeric:
    """Standard normal cumulative distribution function."""
    return 0.5 * (1.0 + scipy_erf(np.asarray(x) / SQRT_2))


# ============================================================================
# D1 AND D2
# ============================================================================

def _validate_bs_inputs(s: Numeric, k: Numeric, t_in_seconds: Numeric, v: Numeric) -> None:
    """Reject non-positive or non-finite inputs before any log/sqrt is taken."""
    for name, value in (("spot price", s), ("strike", k), ("t_in_seconds", t_in_seconds), ("volatility", v)):
        arr = np.asarray(value, dtype=float)
        if not np.all(np.isfinite(arr)) or np.any(arr <= 0):
            raise ValueError(f"{name} must be positive and finite")


def _years(t_in_seconds: Numeric) -> Numeric:
    return np.asarray(t_in_seconds, dtype=float) / SECONDS_PER_YEAR


def d1(s: Numeric, k: Numeric, t_in_seconds: Numeric, v: Numeric) -> Numeric:
    """
    d1 = (ln(S/K) + 0.5*σ²*t) / (σ*√t), t in years.

    Raises:
        ValueError: If any input is non-positive or not finite
    """
    _validate_bs_inputs(s, k, t_in_seconds, v)
    t = _years(t_in_seconds)
    return (np.log(s / k) + 0.5 * v * v * t) / (v * np.sqrt(t))


def d2(s: Numeric, k: Numeric, t_in_seconds: Numeric, v: Numeric) -> Numeric:
    """d2 = d1 - σ*√t."""
    _validate_bs_inputs(s, k, t_in_seconds, v)
    t = _years(t_in_seconds)
    return (np.log(s / k) - 0.5 * v * v * t) / (v * np.sqrt(t))


def _to_decimal(result: Numeric) -> Decimal:
    return Decimal(str(float(result))).quantize(QUANTUM, rounding=ROUND_HALF_EVEN)


# ============================================================================
# OPTION PRICES
# ============================================================================

def _call_float(s: Numeric, k: Numeric, t_in_seconds: Numeric, v: Numeric) -> Numeric:
    """C = S*N(d1) - K*N(d2)"""
    return s * normal_cdf(d1(s, k, t_in_seconds, v)) - k * normal_cdf(d2(s, k, t_in_seconds, v))


def call(s: Decimal, k: Decimal, t_in_seconds: int, v: Decimal) -> Decimal:
    """Black-Scholes call premium per unit with Decimal interface."""
    return _to_decimal(_call_float(float(s), float(k), float(t_in_seconds), float(v)))


def _put_float(s: Numeric, k: Numeric, t_in_seconds: Numeric, v: Numeric) -> Numeric:
    """P = K*N(-d2) - S*N(-d1)"""
    return k * normal_cdf(-d2(s, k, t_in_seconds, v)) - s * normal_cdf(-d1(s, k, t_in_seconds, v))


def put(s: Decimal, k: Decimal, t_in_seconds: int, v: Decimal) -> Decimal:
    """Black-Scholes put premium per unit with Decimal interface."""
    return _to_decimal(_put_float(float(s), float(k), float(t_in_seconds), float(v)))

