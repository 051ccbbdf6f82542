"""
store.py - Keyed record store and its read-only protocol

StoreView is what every pure operation receives: typed accessors over the
record store plus the token ledger balances and the engine clock. Accessors
validate the record kind on load and raise typed errors instead of guessing.

Store is the in-memory mapping from key to record. It does not enforce
business rules; the engine validates updates before calling put().
"""

from __future__ import annotations
from typing import Dict, Iterator, List, Optional, Protocol, Tuple, runtime_checkable

from .core import RecordKindMismatch, RecordNotFound
from .records import (
    Custody, Multisig, OptionDetail, Pool, RecordKind, User, RECORD_TYPES,
    MULTISIG_KEY, custody_key, option_key, pool_key, user_key,
)


@runtime_checkable
class StoreView(Protocol):
    """
    Read-only interface to pool state.

    Functions accepting a StoreView parameter declare their read-only intent.
    The OptionPool engine implements this protocol; tests use FakeView.
    """

    @property
    def current_time(self) -> int:
        """Return the engine's current unix time in seconds."""
        ...

    @property
    def update_sequence(self) -> int:
        """Return the number of updates applied so far."""
        ...

    def get_record(self, key: str) -> Optional[object]:
        """Return the record stored under key, or None."""
        ...

    def get_pool(self, name: str) -> Pool:
        ...

    def get_custody(self, pool: str, asset: str) -> Custody:
        ...

    def get_option(self, owner: str, index: int) -> OptionDetail:
        ...

    def find_user(self, owner: str) -> Optional[User]:
        ...

    def get_multisig(self) -> Multisig:
        ...

    def token_balance(self, account: str, asset: str) -> int:
        """Return the token balance of account in asset's smallest unit."""
        ...

    def token_decimals(self, asset: str) -> int:
        ...


def load_typed(records: Dict[str, object], key: str, kind: RecordKind) -> object:
    """
    Load the record under key and check that it is of the expected kind.

    Raises:
        RecordNotFound: If no record is stored under key
        RecordKindMismatch: If the stored record has another kind
    """
    record = records.get(key)
    if record is None:
        raise RecordNotFound(f"No {kind.value} record at {key}")
    expected = RECORD_TYPES[kind]
    if getattr(record, "KIND", None) is not kind or not isinstance(record, expected):
        found = getattr(record, "KIND", type(record).__name__)
        raise RecordKindMismatch(f"Record at {key} is {found}, expected {kind}")
    return record


class Store:
    """
    In-memory keyed record store.

    Records are immutable, so copies of the store share record objects safely.
    """

    def __init__(self, records: Optional[Dict[str, object]] = None):
        self._records: Dict[str, object] = dict(records or {})

    def get(self, key: str) -> Optional[object]:
        return self._records.get(key)

    def put(self, key: str, record: object) -> None:
        if getattr(record, "KIND", None) not in RECORD_TYPES:
            raise TypeError(f"Cannot store {type(record).__name__}: not a record type")
        self._records[key] = record

    def load(self, key: str, kind: RecordKind) -> object:
        return load_typed(self._records, key, kind)

    def pool(self, name: str) -> Pool:
        return self.load(pool_key(name), RecordKind.POOL)

    def custody(self, pool: str, asset: str) -> Custody:
        return self.load(custody_key(pool, asset), RecordKind.CUSTODY)

    def option(self, owner: str, index: int) -> OptionDetail:
        return self.load(option_key(owner, index), RecordKind.OPTION)

    def user(self, owner: str) -> Optional[User]:
        if self.get(user_key(owner)) is None:
            return None
        return self.load(user_key(owner), RecordKind.USER)

    def multisig(self) -> Multisig:
        return self.load(MULTISIG_KEY, RecordKind.MULTISIG)

    def keys(self, kind: Optional[RecordKind] = None) -> List[str]:
        """Sorted keys, optionally restricted to one record kind."""
        if kind is None:
            return sorted(self._records)
        return sorted(k for k, r in self._records.items() if getattr(r, "KIND", None) is kind)

    def items(self) -> Iterator[Tuple[str, object]]:
        for key in sorted(self._records):
            yield key, self._records[key]

    def copy(self) -> Store:
        return Store(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: str) -> bool:
        return key in self._records
