"""
custody.py - Pure functions for custody bookkeeping

Each function takes a Custody (or Pool) record and returns the new record.
Nothing here touches the store or the token ledger; options.py and admin.py
bundle the results into a PendingUpdate together with the matching token
transfers, so bookkeeping and token movement commit under the same update.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Optional, Tuple

from .core import (
    CustodyAlreadyRegistered, InvalidLockedBalanceError, InvalidPoolBalanceError,
    InvalidPoolStateError,
)
from .decimal_math import checked_add, checked_sub
from .records import Custody, Pool


def register(
    pool: Optional[Pool],
    pool_name: str,
    asset: str,
    oracle: str,
    decimals: int,
    existing: Optional[Custody] = None,
) -> Tuple[Pool, Custody]:
    """
    Append a new custody to a pool.

    Args:
        pool: Current pool record (None if the pool does not exist)
        pool_name: Name the caller addressed the pool by
        asset: Asset identifier of the new custody
        oracle: Oracle id quoting the asset
        decimals: Token decimals of the asset
        existing: Custody record already stored for (pool, asset), if any

    Returns:
        (new_pool, new_custody)

    Raises:
        InvalidPoolStateError: If the pool is missing
        CustodyAlreadyRegistered: If the asset already has a custody in the pool
    """
    if pool is None or pool.name != pool_name:
        raise InvalidPoolStateError(f"Pool {pool_name} does not exist")
    if asset in pool.custodies or existing is not None:
        raise CustodyAlreadyRegistered(f"Asset {asset} already registered in pool {pool_name}")

    new_pool = replace(pool, custodies=pool.custodies + (asset,))
    custody = Custody(pool=pool_name, asset=asset, oracle=oracle, decimals=decimals)
    return new_pool, custody


def lock(custody: Custody, amount: int) -> Custody:
    """
    Reserve amount of the custody's free balance as collateral.

    Raises:
        InvalidPoolBalanceError: If total - locked < amount
    """
    if custody.free_balance < amount:
        raise InvalidPoolBalanceError(
            f"Custody {custody.asset}: free balance {custody.free_balance} < {amount}"
        )
    return replace(custody, locked_balance=checked_add(custody.locked_balance, amount))


def unlock(custody: Custody, amount: int) -> Custody:
    """
    Release amount of locked collateral.

    Raises:
        InvalidLockedBalanceError: If amount > locked
    """
    if amount > custody.locked_balance:
        raise InvalidLockedBalanceError(
            f"Custody {custody.asset}: locked balance {custody.locked_balance} < {amount}"
        )
    return replace(custody, locked_balance=checked_sub(custody.locked_balance, amount))


def credit(custody: Custody, amount: int) -> Custody:
    """Add amount to the pool's total balance (deposits, premiums)."""
    return replace(custody, total_balance=checked_add(custody.total_balance, amount))


def debit(custody: Custody, amount: int) -> Custody:
    """
    Remove amount from the pool's total balance (withdrawals, payouts).

    Raises:
        InvalidPoolBalanceError: If the debit would cut into locked collateral
    """
    if amount > custody.total_balance:
        raise InvalidPoolBalanceError(
            f"Custody {custody.asset}: total balance {custody.total_balance} < {amount}"
        )
    remaining = checked_sub(custody.total_balance, amount)
    if remaining < custody.locked_balance:
        raise InvalidPoolBalanceError(
            f"Custody {custody.asset}: debit of {amount} would leave {remaining} "
            f"below locked {custody.locked_balance}"
        )
    return replace(custody, total_balance=remaining)


def settle(custody: Custody, notional: int, payout: int) -> Custody:
    """
    Release a position's notional and pay its payout out of the same custody.

    The notional is unlocked first so a payout covered by the position's own
    collateral never trips the debit check.

    Raises:
        InvalidLockedBalanceError: If the notional exceeds the locked balance
    """
    released = unlock(custody, notional)
    if payout == 0:
        return released
    return debit(released, payout)
