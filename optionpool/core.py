"""
Core types and pure helpers for the pooled options ledger.

This module provides the foundational pieces every other module builds on:
1. Decimal context and system-wide constants
2. Exceptions: OptionPoolError and its categorized subclasses
3. Immutable update types: Transfer, RecordChange, PendingUpdate, ExecutedUpdate
4. Canonical serialization and content hashing (intent ids, instruction hashes)

All functions in this module are pure. Nothing here mutates ledger state;
the OptionPool engine is the only component that applies updates.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields, is_dataclass
from decimal import Decimal, ROUND_HALF_EVEN, getcontext
from enum import Enum
import hashlib
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Decimal is only used at the edges: pricing inputs, premium valuation and
# human-readable display. Every persisted amount is an integer scaled by a
# declared power of ten (see decimal_math).
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_POOL_DECIMAL_CONTEXT = getcontext()
_POOL_DECIMAL_CONTEXT.prec = 50
_POOL_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Fixed-width integer bounds for persisted fields.
U64_MAX = 2 ** 64 - 1
U128_MAX = 2 ** 128 - 1
I64_MIN = -(2 ** 63)
I64_MAX = 2 ** 63 - 1
I32_MIN = -(2 ** 31)
I32_MAX = 2 ** 31 - 1

# Strike and spot prices are stored as integers at exponent -PRICE_DECIMALS.
PRICE_DECIMALS = 6

# USD valuations (premium, payoff) are integers at exponent -USD_DECIMALS.
USD_DECIMALS = 6

# Oracle quotes older than this many seconds are rejected.
MAX_PRICE_AGE_SEC = 30

# Implied volatility used by the premium model when none is configured.
DEFAULT_IMPLIED_VOLATILITY = Decimal("0.6")

SECONDS_PER_YEAR = 365 * 24 * 60 * 60

# Upper bound on designated multisig signers.
MAX_SIGNERS = 6

# Authority that owns every custody token account.
TRANSFER_AUTHORITY = "transfer_authority"


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of an update execution attempt.

    APPLIED: Update was validated and applied.
    ALREADY_APPLIED: An update with the same intent_id was already applied.

    Rejections are raised as exceptions, never returned.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"


class OriginType(Enum):
    """Classification of who or what produced an update."""
    USER_ACTION = "user_action"       # Buyer or depositor initiated
    ADMIN = "admin"                   # Pool admin (withdraw, expire)
    MULTISIG = "multisig"             # Threshold-gated admin instruction
    AUTOMATION = "automation"         # Keeper-driven settlement


# ============================================================================
# EXCEPTIONS
# ============================================================================

class OptionPoolError(Exception):
    """Base exception for all option pool errors."""
    pass


class BalanceError(OptionPoolError):
    """Insufficient pool, locked or signer balance. Recoverable by the caller."""
    pass


class AuthorizationError(OptionPoolError):
    """Wrong owner, unauthorized signer or missing authority. Fatal to the call."""
    pass


class TemporalError(OptionPoolError):
    """Wrong side of expiry or stale oracle quote. Retry later or with a fresher quote."""
    pass


class StateError(OptionPoolError):
    """Already exercised, already executed, unknown record. Caller bug or replay."""
    pass


class MathOverflowError(OptionPoolError, ArithmeticError):
    """Raised when checked arithmetic overflows, underflows or divides by zero."""
    pass


class InvalidPriceRequirementError(OptionPoolError):
    """Raised for non-positive oracle prices and out-of-the-money manual exercise."""
    pass


class InvalidPoolBalanceError(BalanceError):
    """The pool's free (unlocked) balance cannot cover the request."""
    pass


class InvalidLockedBalanceError(BalanceError):
    """The locked balance cannot cover the amount being released."""
    pass


class InvalidSignerBalanceError(BalanceError):
    """The caller's token balance cannot cover the payment."""
    pass


class InsufficientTokenBalance(BalanceError):
    """A token transfer would overdraw its source account."""
    pass


class NotAuthorizedMultiSigError(AuthorizationError):
    """Account is not authorized to sign this instruction."""
    pass


class InvalidOwner(AuthorizationError):
    """The position does not belong to the given owner."""
    pass


class AdminAuthorityError(AuthorizationError):
    """The caller is not the pool admin."""
    pass


class NotAuthorizedKeeperError(AuthorizationError):
    """The caller is not a registered keeper of the pool."""
    pass


class TransferAuthorityError(AuthorizationError):
    """A token transfer was not signed by the source account's authority."""
    pass


class InvalidTimeError(TemporalError):
    """The operation is not allowed at the current time relative to expiry."""
    pass


class StalePriceError(TemporalError):
    """The oracle quote is older than the configured maximum age."""
    pass


class OptionAlreadyExercised(StateError):
    pass


class OptionNotValid(StateError):
    pass


class AlreadySignedMultiSigError(StateError):
    pass


class AlreadyExecutedMultiSigError(StateError):
    pass


class InvalidOptionIndexError(StateError):
    pass


class CustodyAlreadyRegistered(StateError):
    pass


class PoolAlreadyExists(StateError):
    pass


class InvalidPoolStateError(StateError):
    """Pool missing or not in a state that allows the operation."""
    pass


class RecordNotFound(StateError):
    pass


class RecordKindMismatch(StateError):
    """A stored record has a different kind than the accessor expects."""
    pass


class StaleRecordError(StateError):
    """A record changed between computing an update and executing it."""
    pass


class InvariantViolation(StateError):
    pass


class UpdateRejected(StateError):
    pass


class AccountNotFound(StateError):
    pass


class AssetNotRegistered(StateError):
    pass


class OracleNotFound(StateError):
    pass


# ============================================================================
# UPDATE ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class UpdateOrigin:
    """
    Immutable record of an update's origin for audit purposes.

    Attributes:
        origin_type: Classification of the source (user, admin, multisig, automation)
        source_id: Account that issued the operation
        operation: Name of the public operation (e.g., "sell_option")
    """
    origin_type: OriginType
    source_id: str
    operation: Optional[str] = None

    def __repr__(self) -> str:
        if self.operation:
            return f"Origin({self.origin_type.value}:{self.source_id}, op={self.operation})"
        return f"Origin({self.origin_type.value}:{self.source_id})"


# ============================================================================
# RECORD CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class RecordChange:
    """
    Before/after snapshot of one keyed record.

    old is None when the record is created by this change. Records are frozen
    dataclasses, so snapshots never alias mutable state.
    """
    key: str
    old: Any
    new: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """
        Compute fields that differ between old and new record.

        Returns:
            Dict mapping field name to (old_value, new_value) tuples.
        """
        old = _as_field_dict(self.old)
        new = _as_field_dict(self.new)
        changes = {}
        for key in sorted(set(old) | set(new)):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


def _as_field_dict(record: Any) -> Dict[str, Any]:
    if record is None:
        return {}
    if is_dataclass(record):
        return {f.name: getattr(record, f.name) for f in fields(record)}
    if isinstance(record, dict):
        return dict(record)
    return {}


# ============================================================================
# TOKEN TRANSFER
# ============================================================================

@dataclass(frozen=True, slots=True)
class Transfer:
    """
    A single token movement executed by the external token ledger.

    Attributes:
        quantity: Amount in the asset's smallest unit (positive u64).
        asset: Asset identifier (mint).
        source: Account debited.
        dest: Account credited.
        authority: Signer authorizing the debit of source.
        memo: Identifier of the operation generating this transfer.
    """
    quantity: int
    asset: str
    source: str
    dest: str
    authority: str
    memo: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Transfer source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Transfer dest cannot be empty")
        if not self.asset or not self.asset.strip():
            raise ValueError("Transfer asset cannot be empty")
        if not self.authority or not self.authority.strip():
            raise ValueError("Transfer authority cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Transfer quantity must be int, got {type(self.quantity)}")
        if not 0 < self.quantity <= U64_MAX:
            raise ValueError(f"Transfer quantity must be a positive u64, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Transfer({self.quantity} {self.asset}: {self.source}→{self.dest})"


# ============================================================================
# CANONICAL SERIALIZATION
# ============================================================================

def _normalize_decimal(d: Decimal) -> str:
    """
    Normalize a Decimal to a canonical string representation.

    Decimal("1.0") and Decimal("1.00") both become "1".
    """
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Deterministic regardless of dict insertion order, Decimal representation
    variance or nesting depth. Dataclass records serialize by field name.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return f"E:{type(value).__name__}.{value.name}"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if is_dataclass(value) and not isinstance(value, type):
        body = canonicalize(_as_field_dict(value))
        return f"R:{type(value).__name__}{body}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{canonicalize(k)}:{canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, (set, frozenset)):
        serialized = ",".join(canonicalize(item) for item in sorted(value, key=str))
        return f"<{serialized}>"
    if isinstance(value, float):
        raise TypeError("float values cannot be canonicalized; use Decimal or int")
    return f"X:{repr(value)}"


def content_hash(*parts: Any) -> str:
    """SHA-256 hex digest of the canonical serialization of parts."""
    content = "|".join(canonicalize(p) for p in parts)
    return hashlib.sha256(content.encode()).hexdigest()


def _compute_intent_id(
    transfers: Tuple[Transfer, ...],
    changes: Tuple[RecordChange, ...],
    origin: UpdateOrigin,
    nonce: int,
) -> str:
    """
    Deterministic content hash of an update's intent.

    Based on the semantic content (transfers, record changes, origin) and the
    update sequence the update was computed against, not on timestamps. The
    same operation computed again after other updates gets a new intent_id,
    even when the records have returned to identical values.
    """
    sorted_transfers = tuple(sorted(
        transfers,
        key=lambda t: (t.quantity, t.asset, t.source, t.dest, t.memo)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    content_parts.append(f"nonce:{nonce}")
    if origin.operation:
        content_parts.append(f"op:{origin.operation}")

    for t in sorted_transfers:
        content_parts.append(
            f"transfer:{t.quantity}|{t.asset}|{t.source}|{t.dest}|{t.authority}|{t.memo}"
        )

    for rc in sorted(changes, key=lambda c: c.key):
        content_parts.append(f"change:{rc.key}|{canonicalize(rc.old)}|{canonicalize(rc.new)}")

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


# ============================================================================
# PENDING AND EXECUTED UPDATES
# ============================================================================

@dataclass(frozen=True, slots=True)
class PendingUpdate:
    """
    An update specification before execution - represents INTENT.

    Produced by the pure operation functions and submitted to the engine.

    Attributes:
        transfers: Token movements for the external token ledger
        changes: Record changes (old/new snapshots) for the store
        origin: Who issued the operation and which operation it was
        timestamp: Engine time when the update was computed
        nonce: Update sequence of the view the update was computed against
        result: Operation output handed back to the caller (e.g. signatures left)
        intent_id: Content-addressable hash of the intent (auto-computed)
    """
    transfers: Tuple[Transfer, ...]
    changes: Tuple[RecordChange, ...]
    origin: UpdateOrigin
    timestamp: int
    nonce: int = 0
    result: Any = None
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(self.transfers, self.changes, self.origin, self.nonce)
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if this update has no transfers and no record changes."""
        return not self.transfers and not self.changes

    def __repr__(self) -> str:
        return f"PendingUpdate({len(self.transfers)} transfers, {len(self.changes)} changes, {self.origin})"


def build_update(
    view: Any,
    changes: List[RecordChange],
    transfers: Optional[List[Transfer]] = None,
    origin: Optional[UpdateOrigin] = None,
    result: Any = None,
) -> PendingUpdate:
    """
    Build a PendingUpdate from record changes and transfers.

    This is the standard way for operations to describe their effect.

    Args:
        view: Read-only store view (provides current_time and update_sequence)
        changes: Record changes to apply atomically
        transfers: Token transfers to apply atomically
        origin: Update origin (defaults to a user action by "unknown")
        result: Value returned to the caller once applied

    Returns:
        A PendingUpdate ready for execution
    """
    if origin is None:
        origin = UpdateOrigin(OriginType.USER_ACTION, "unknown")

    return PendingUpdate(
        transfers=tuple(transfers or ()),
        changes=tuple(changes),
        origin=origin,
        timestamp=view.current_time,
        nonce=view.update_sequence,
        result=result,
    )


@dataclass(frozen=True, slots=True)
class ExecutedUpdate:
    """
    An applied, immutable record of state changes - represents FACT.

    Attributes:
        transfers: Token movements applied
        changes: Record changes applied
        origin: Who issued the operation
        timestamp: When the PendingUpdate was computed
        intent_id: Content hash from PendingUpdate
        exec_id: Unique execution identifier (engine + sequence + time)
        engine_name: Name of the engine that applied this
        execution_time: Engine time at execution
        sequence_number: Monotonic sequence within the engine
    """
    transfers: Tuple[Transfer, ...]
    changes: Tuple[RecordChange, ...]
    origin: UpdateOrigin
    timestamp: int
    intent_id: str
    exec_id: str
    engine_name: str
    execution_time: int
    sequence_number: int
    memos: FrozenSet[str] = None

    def __post_init__(self):
        if not self.transfers and not self.changes:
            raise ValueError("ExecutedUpdate must have transfers or changes")
        if self.memos is None:
            object.__setattr__(self, 'memos', frozenset(t.memo for t in self.transfers))

    def __repr__(self) -> str:
        w = 100

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        bar = "─" * w
        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Update: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   timestamp      : ' + str(self.timestamp))}│",
            f"│{pad('   engine_name    : ' + self.engine_name)}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
        ]
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Transfers (' + str(len(self.transfers)) + '):')}│")
        for i, t in enumerate(self.transfers):
            lines.append(f"│{pad(f'   [{i}] {t.quantity} {t.asset}: {t.source} → {t.dest}')}│")
        if self.changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Record Changes (' + str(len(self.changes)) + '):')}│")
            for rc in self.changes:
                lines.append(f"│{pad('   [' + rc.key + ']')}│")
                for field_name, (old_val, new_val) in rc.changed_fields().items():
                    lines.append(f"│{pad(f'      {field_name}: {old_val!r} → {new_val!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)
