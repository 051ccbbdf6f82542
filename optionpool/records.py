"""
records.py - Persisted record types

The store holds a closed set of record kinds. Each kind is a frozen dataclass
tagged with its RecordKind, and every numeric field is a fixed-width integer
validated at construction. Mutation happens by building a new record with
dataclasses.replace() and submitting it through a RecordChange.

Record keys:
    pool:{name}
    custody:{pool}:{asset}
    option:{owner}:{index}
    user:{owner}
    multisig
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Optional, Tuple

from .core import (
    I64_MAX, I64_MIN, U64_MAX, MAX_SIGNERS,
)


class RecordKind(Enum):
    POOL = "pool"
    CUSTODY = "custody"
    OPTION = "option"
    USER = "user"
    MULTISIG = "multisig"


class OptionType(Enum):
    CALL = "call"
    PUT = "put"


class PremiumUnit(Enum):
    """Which pool asset the buyer pays the premium in."""
    BASE = "base"      # the underlying asset
    QUOTE = "quote"    # the quote (stable) asset


MULTISIG_KEY = "multisig"


def pool_key(name: str) -> str:
    return f"pool:{name}"


def custody_key(pool: str, asset: str) -> str:
    return f"custody:{pool}:{asset}"


def option_key(owner: str, index: int) -> str:
    return f"option:{owner}:{index}"


def user_key(owner: str) -> str:
    return f"user:{owner}"


def custody_token_account(pool: str, asset: str) -> str:
    """Token account holding a custody's collateral."""
    return f"custody_token_account:{pool}:{asset}"


def _require_u64(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be int, got {type(value).__name__}")
    if not 0 <= value <= U64_MAX:
        raise ValueError(f"{name} must fit in u64, got {value}")


def _require_i64(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be int, got {type(value).__name__}")
    if not I64_MIN <= value <= I64_MAX:
        raise ValueError(f"{name} must fit in i64, got {value}")


def _require_name(name: str, value: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} cannot be empty")


@dataclass(frozen=True, slots=True)
class Pool:
    """
    Named collection of custodies backing a set of option classes.

    custodies is append-only and holds unique asset identifiers.
    """
    KIND: ClassVar[RecordKind] = RecordKind.POOL

    name: str
    admin: str
    custodies: Tuple[str, ...] = ()
    keepers: Tuple[str, ...] = ()

    def __post_init__(self):
        _require_name("pool name", self.name)
        _require_name("pool admin", self.admin)
        if len(set(self.custodies)) != len(self.custodies):
            raise ValueError(f"Pool {self.name} has duplicate custodies: {self.custodies}")
        if len(set(self.keepers)) != len(self.keepers):
            raise ValueError(f"Pool {self.name} has duplicate keepers: {self.keepers}")


@dataclass(frozen=True, slots=True)
class Custody:
    """
    Per-asset collateral account tracked by a pool.

    Invariant: 0 <= locked_balance <= total_balance. Checked on every
    construction, so every mutation is checked before and after.
    """
    KIND: ClassVar[RecordKind] = RecordKind.CUSTODY

    pool: str
    asset: str
    oracle: str
    decimals: int
    total_balance: int = 0
    locked_balance: int = 0

    def __post_init__(self):
        _require_name("custody pool", self.pool)
        _require_name("custody asset", self.asset)
        _require_name("custody oracle", self.oracle)
        if isinstance(self.decimals, bool) or not isinstance(self.decimals, int) \
                or not 0 <= self.decimals <= 18:
            raise ValueError(f"decimals must be an int in [0, 18], got {self.decimals}")
        _require_u64("total_balance", self.total_balance)
        _require_u64("locked_balance", self.locked_balance)
        if self.locked_balance > self.total_balance:
            raise ValueError(
                f"Custody {self.asset}: locked {self.locked_balance} exceeds total {self.total_balance}"
            )

    @property
    def free_balance(self) -> int:
        return self.total_balance - self.locked_balance


@dataclass(frozen=True, slots=True)
class OptionDetail:
    """
    A single sold option contract.

    custody is the target (priced) asset; locked_asset is the custody whose
    collateral backs the position. amount is the locked notional in
    locked_asset units. strike_price is scaled by 10^PRICE_DECIMALS.

    Invariant: exercised == 0 iff valid.
    """
    KIND: ClassVar[RecordKind] = RecordKind.OPTION

    owner: str
    index: int
    pool: str
    custody: str
    locked_asset: str
    quantity: int
    strike_price: int
    expired_date: int
    option_type: OptionType
    premium: int
    premium_unit: PremiumUnit
    premium_asset: str
    amount: int
    valid: bool = True
    exercised: int = 0
    claimed: int = 0
    profit: int = 0

    def __post_init__(self):
        _require_name("option owner", self.owner)
        _require_name("option pool", self.pool)
        for name in ("index", "quantity", "strike_price", "premium", "amount",
                     "exercised", "claimed", "profit"):
            _require_u64(name, getattr(self, name))
        _require_i64("expired_date", self.expired_date)
        if not isinstance(self.option_type, OptionType):
            raise ValueError(f"option_type must be OptionType, got {self.option_type!r}")
        if not isinstance(self.premium_unit, PremiumUnit):
            raise ValueError(f"premium_unit must be PremiumUnit, got {self.premium_unit!r}")
        if (self.exercised == 0) != self.valid:
            raise ValueError(
                f"Option {self.owner}:{self.index}: exercised={self.exercised} inconsistent with valid={self.valid}"
            )


@dataclass(frozen=True, slots=True)
class User:
    """Per-owner counter of sold positions."""
    KIND: ClassVar[RecordKind] = RecordKind.USER

    owner: str
    option_index: int = 0

    def __post_init__(self):
        _require_name("user owner", self.owner)
        _require_u64("option_index", self.option_index)


@dataclass(frozen=True, slots=True)
class Multisig:
    """
    Threshold-signature proposal gating admin instructions.

    signed is a bitmap aligned with signers. instruction_hash binds the
    bitmap to one exact instruction and parameter set.
    """
    KIND: ClassVar[RecordKind] = RecordKind.MULTISIG

    signers: Tuple[str, ...]
    min_signatures: int
    signed: Tuple[bool, ...] = ()
    instruction_hash: Optional[str] = None
    executed: bool = False

    def __post_init__(self):
        if not self.signers or len(self.signers) > MAX_SIGNERS:
            raise ValueError(f"signers must hold 1..{MAX_SIGNERS} accounts, got {len(self.signers)}")
        if len(set(self.signers)) != len(self.signers):
            raise ValueError("signers must be unique")
        if isinstance(self.min_signatures, bool) or not isinstance(self.min_signatures, int) \
                or not 1 <= self.min_signatures <= len(self.signers):
            raise ValueError(
                f"min_signatures must be in [1, {len(self.signers)}], got {self.min_signatures}"
            )
        if not self.signed:
            object.__setattr__(self, 'signed', (False,) * len(self.signers))
        if len(self.signed) != len(self.signers):
            raise ValueError("signed bitmap must align with signers")

    @property
    def num_signed(self) -> int:
        return sum(1 for bit in self.signed if bit)


RECORD_TYPES = {
    RecordKind.POOL: Pool,
    RecordKind.CUSTODY: Custody,
    RecordKind.OPTION: OptionDetail,
    RecordKind.USER: User,
    RecordKind.MULTISIG: Multisig,
}
