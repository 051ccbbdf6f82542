"""
engine.py - Stateful option pool engine

The OptionPool class is the central state manager. It is the only component
that mutates state: the pure functions in options.py and admin.py compute
PendingUpdates against it (it implements StoreView), and execute() applies
them atomically.

Key responsibilities:
    - Implements StoreView for read-only access by pure functions
    - Executes updates atomically (all record changes and transfers, or none)
    - Owns the record store, the token ledger and the engine clock
    - Always validates and always logs
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

from .admin import compute_add_pool, compute_register_custody, compute_set_keepers
from .core import (
    DEFAULT_IMPLIED_VOLATILITY, MAX_PRICE_AGE_SEC, TRANSFER_AUTHORITY,
    ExecutedUpdate, ExecuteResult, InvariantViolation, OptionPoolError, PendingUpdate,
    RecordKindMismatch, StaleRecordError, UpdateRejected, content_hash,
)
from .multisig import create_multisig
from .options import (
    compute_auto_exercise, compute_deposit, compute_exercise_option, compute_expire_option,
    compute_sell_option, compute_withdraw, quote_premium,
)
from .oracle import PriceFeed
from .pricing import PremiumQuote, PricingModel
from .records import (
    MULTISIG_KEY, Custody, Multisig, OptionDetail, Pool, RecordKind, User, custody_token_account,
)
from .store import Store
from .tokens import TokenLedger


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """
    Engine-wide settings.

    Attributes:
        max_price_age: Oracle quotes older than this many seconds are rejected
        implied_volatility: Annualized volatility used by the premium model
        pricing_model: Premium model used at sale
    """
    max_price_age: int = MAX_PRICE_AGE_SEC
    implied_volatility: Decimal = DEFAULT_IMPLIED_VOLATILITY
    pricing_model: PricingModel = PricingModel.VOLATILITY_TIME

    def __post_init__(self):
        if self.max_price_age < 0:
            raise ValueError(f"max_price_age must be non-negative, got {self.max_price_age}")
        if not isinstance(self.implied_volatility, Decimal) or self.implied_volatility <= 0:
            raise ValueError(f"implied_volatility must be a positive Decimal, got {self.implied_volatility!r}")


class OptionPool:
    """
    Pooled-collateral option book with a full audit trail.

    Implements the StoreView protocol, so it can be handed directly to the
    pure compute_* functions.

    Thread Safety:
        Not thread-safe. Operations are applied one at a time by the caller.

    Example:
        pool = OptionPool("main", feed, initial_time=1_700_000_000)
        pool.initialize(["alice", "bob", "carol"], min_signatures=2)
        pool.add_pool("alice", "main", admin="treasury")
        pool.add_pool("bob", "main", admin="treasury")   # -> 0, executed
    """

    def __init__(
        self,
        name: str,
        feed: PriceFeed,
        tokens: Optional[TokenLedger] = None,
        config: Optional[EngineConfig] = None,
        initial_time: int = 0,
        verbose: bool = True,
    ):
        """
        Create an engine.

        Args:
            name: Engine identifier, used in execution ids
            feed: Price feed queried by sale and settlement
            tokens: Token ledger collaborator (default: empty TokenLedger)
            config: Engine settings (default: EngineConfig())
            initial_time: Starting unix time in seconds
            verbose: Print applied updates and rejections (default: True)
        """
        self.name = name
        self.feed = feed
        self.tokens = tokens if tokens is not None else TokenLedger()
        self.config = config or EngineConfig()
        self.store = Store()
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[ExecutedUpdate] = []
        self._current_time: int = initial_time
        self.verbose = verbose
        self._next_sequence: int = 0

    # ========================================================================
    # StoreView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> int:
        return self._current_time

    @property
    def update_sequence(self) -> int:
        return self._next_sequence

    def get_record(self, key: str) -> Optional[object]:
        return self.store.get(key)

    def get_pool(self, name: str) -> Pool:
        return self.store.pool(name)

    def get_custody(self, pool: str, asset: str) -> Custody:
        return self.store.custody(pool, asset)

    def get_option(self, owner: str, index: int) -> OptionDetail:
        return self.store.option(owner, index)

    def find_user(self, owner: str) -> Optional[User]:
        return self.store.user(owner)

    def get_multisig(self) -> Multisig:
        return self.store.multisig()

    def token_balance(self, account: str, asset: str) -> int:
        """Balance of account in asset; 0 for accounts that were never opened."""
        if not self.tokens.has_account(account):
            return 0
        return self.tokens.balance(account, asset)

    def token_decimals(self, asset: str) -> int:
        return self.tokens.decimals(asset)

    def list_options(self, owner: Optional[str] = None) -> List[OptionDetail]:
        """All positions (optionally of one owner), ordered by (owner, index)."""
        options = [self.store.get(key) for key in self.store.keys(RecordKind.OPTION)]
        if owner is not None:
            options = [o for o in options if o.owner == owner]
        return sorted(options, key=lambda o: (o.owner, o.index))

    def pending_expired(self) -> List[Tuple[str, int]]:
        """(owner, index) of every open position at or past its expiry."""
        return [
            (o.owner, o.index) for o in self.list_options()
            if o.valid and o.expired_date <= self._current_time
        ]

    def custody_account_balance(self, pool: str, asset: str) -> int:
        return self.token_balance(custody_token_account(pool, asset), asset)

    def verify_custody_balances(self) -> Dict[str, Any]:
        """
        Check every custody's total_balance against its token account.

        Returns:
            {'valid': bool, 'discrepancies': [(key, total_balance, token_balance), ...]}
        """
        discrepancies = []
        for key in self.store.keys(RecordKind.CUSTODY):
            custody = self.store.get(key)
            held = self.custody_account_balance(custody.pool, custody.asset)
            if held != custody.total_balance:
                discrepancies.append((key, custody.total_balance, held))
        result = {'valid': not discrepancies, 'discrepancies': discrepancies}
        if self.verbose and discrepancies:
            print(f"Discrepancies found: {discrepancies}")
        return result

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: int) -> None:
        """
        Advance the engine clock. Time can only move forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(f"Cannot move time backwards: {new_time} < {self._current_time}")
        self._current_time = new_time

    # ========================================================================
    # SETUP (Mutating)
    # ========================================================================

    def initialize(self, signers: Sequence[str], min_signatures: int) -> Multisig:
        """
        Create the multisig record. Runs once per deployment.

        Raises:
            ValueError: If already initialized or the signer set is invalid
        """
        if MULTISIG_KEY in self.store:
            raise ValueError(f"Engine {self.name} is already initialized")
        multisig = create_multisig(signers, min_signatures)
        self.store.put(MULTISIG_KEY, multisig)
        if self.verbose:
            print(f"📝 Initialized: multisig {multisig.min_signatures}-of-{len(multisig.signers)}")
        return multisig

    def register_asset(self, asset: str, decimals: int) -> None:
        self.tokens.register_asset(asset, decimals)
        if self.verbose:
            print(f"📝 Registered: {asset} (decimals={decimals})")

    def open_account(self, account: str, authority: Optional[str] = None) -> str:
        return self.tokens.open_account(account, authority)

    def mint(self, account: str, asset: str, amount: int) -> None:
        self.tokens.mint(account, asset, amount)

    # ========================================================================
    # ADMIN INSTRUCTIONS (multisig-gated)
    # ========================================================================

    def add_pool(self, signer: str, pool_name: str, admin: str) -> int:
        """Sign ADD_POOL. Returns signatures still missing (0 = executed)."""
        return self._run(compute_add_pool(self, signer, pool_name, admin))

    def register_custody(self, signer: str, pool_name: str, asset: str, oracle: str) -> int:
        """
        Sign ADD_CUSTODY. Returns signatures still missing (0 = executed).

        On execution the custody token account is opened under TRANSFER_AUTHORITY.
        """
        left = self._run(compute_register_custody(self, signer, pool_name, asset, oracle))
        if left == 0:
            account = custody_token_account(pool_name, asset)
            if not self.tokens.has_account(account):
                self.tokens.open_account(account, TRANSFER_AUTHORITY)
            if self.verbose:
                print(f"📝 Registered: custody {asset} in pool {pool_name} (oracle={oracle})")
        return left

    def set_keepers(self, signer: str, pool_name: str, keepers: Sequence[str]) -> int:
        """Sign SET_KEEPERS. Returns signatures still missing (0 = executed)."""
        return self._run(compute_set_keepers(self, signer, pool_name, keepers))

    # ========================================================================
    # OPTION BOOK
    # ========================================================================

    def quote_premium(
        self,
        pool_name: str,
        underlying: str,
        quote: str,
        quantity: int,
        strike_price: int,
        expired_date: int,
        is_call: bool,
        pay_in_base: bool,
    ) -> PremiumQuote:
        return quote_premium(
            self, self.feed, pool_name, underlying, quote, quantity, strike_price,
            expired_date, is_call, pay_in_base, **self._pricing_kwargs(),
        )

    def sell_option(
        self,
        owner: str,
        pool_name: str,
        underlying: str,
        quote: str,
        quantity: int,
        strike_price: int,
        expired_date: int,
        option_index: int,
        is_call: bool,
        pay_in_base: bool = False,
    ) -> OptionDetail:
        return self._run(compute_sell_option(
            self, self.feed, owner, pool_name, underlying, quote, quantity, strike_price,
            expired_date, option_index, is_call, pay_in_base, **self._pricing_kwargs(),
        ))

    def exercise_option(self, caller: str, option_index: int, owner: Optional[str] = None) -> OptionDetail:
        return self._run(compute_exercise_option(
            self, self.feed, caller, option_index, owner, max_age=self.config.max_price_age,
        ))

    def auto_exercise_option(self, keeper: str, owner: str, option_index: int) -> OptionDetail:
        return self._run(compute_auto_exercise(
            self, self.feed, keeper, owner, option_index, max_age=self.config.max_price_age,
        ))

    def expire_option(
        self,
        admin: str,
        owner: str,
        option_index: int,
        settlement_price: Union[int, Decimal],
    ) -> OptionDetail:
        return self._run(compute_expire_option(
            self, self.feed, admin, owner, option_index, settlement_price,
            max_age=self.config.max_price_age,
        ))

    def deposit(self, depositor: str, pool_name: str, asset: str, amount: int) -> int:
        return self._run(compute_deposit(self, depositor, pool_name, asset, amount))

    def withdraw(self, admin: str, pool_name: str, asset: str, amount: int) -> int:
        return self._run(compute_withdraw(self, admin, pool_name, asset, amount))

    def _pricing_kwargs(self) -> Dict[str, Any]:
        return {
            'max_age': self.config.max_price_age,
            'volatility': self.config.implied_volatility,
            'model': self.config.pricing_model,
        }

    def _run(self, pending: PendingUpdate) -> Any:
        if self.execute(pending) is ExecuteResult.ALREADY_APPLIED:
            raise UpdateRejected(f"Update {pending.intent_id} was already applied")
        return pending.result

    # ========================================================================
    # UPDATE EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """Format: exec:{engine_name}:{sequence:012d}:{unix_seconds}"""
        return f"exec:{self.name}:{sequence:012d}:{self._current_time}"

    def execute(self, pending: PendingUpdate) -> ExecuteResult:
        """
        Execute a PendingUpdate atomically.

        All record changes and token transfers are validated before anything
        is applied, so a failure leaves the store, the token balances and the
        log untouched. Execution is idempotent on intent_id.

        Returns:
            ExecuteResult.APPLIED if applied
            ExecuteResult.ALREADY_APPLIED if the same intent was applied before

        Raises:
            UpdateRejected: If the update is timestamped in the future or malformed
            StaleRecordError: If a record changed since the update was computed
            InvariantViolation: If the update would reopen or alter a closed position
            InsufficientTokenBalance, TransferAuthorityError, AccountNotFound,
            AssetNotRegistered: From token ledger validation
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED

        if pending.intent_id in self.seen_intent_ids:
            if self.verbose:
                print(f"⚠️  ALREADY_APPLIED: intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED

        try:
            self._validate_pending(pending)
        except OptionPoolError as exc:
            if self.verbose:
                print(f"✗ REJECTED: {exc}")
            raise

        sequence = self._next_sequence
        self._next_sequence += 1

        update = ExecutedUpdate(
            transfers=pending.transfers,
            changes=pending.changes,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=self._generate_exec_id(sequence),
            engine_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
        )

        for rc in update.changes:
            self.store.put(rc.key, rc.new)
        self.tokens.apply(update.transfers)

        # Log update (always - audit trail is mandatory)
        self.transaction_log.append(update)
        self.seen_intent_ids.add(pending.intent_id)

        if self.verbose:
            self._print_update_result(update, "APPLIED", "✓")
        return ExecuteResult.APPLIED

    def _validate_pending(self, pending: PendingUpdate) -> None:
        if pending.timestamp > self._current_time:
            raise UpdateRejected(
                f"Update timestamp {pending.timestamp} is after current time {self._current_time}"
            )

        keys = [rc.key for rc in pending.changes]
        if len(set(keys)) != len(keys):
            raise UpdateRejected(f"Update changes the same record twice: {sorted(keys)}")

        for rc in pending.changes:
            current = self.store.get(rc.key)
            if current != rc.old:
                raise StaleRecordError(f"Record {rc.key} changed since the update was computed")
            if rc.new is None:
                raise InvariantViolation(f"Records are never deleted: {rc.key}")
            if rc.old is not None and getattr(rc.old, "KIND", None) is not getattr(rc.new, "KIND", None):
                raise RecordKindMismatch(f"Record {rc.key} cannot change kind")
            if isinstance(rc.old, OptionDetail) and not rc.old.valid:
                raise InvariantViolation(f"Option {rc.key} is closed and cannot change")
            if isinstance(rc.new, OptionDetail) and rc.old is None and not rc.new.valid:
                raise InvariantViolation(f"Option {rc.key} must be created open")

        self.tokens.validate(pending.transfers)

    def _print_update_result(self, update: ExecutedUpdate, result: str, icon: str) -> None:
        """Print the boxed update with a result line in place of the closing bar."""
        lines = repr(update).split('\n')
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines[-1] = f"├{bar}┤"
        lines.append(f"│{pad(' ' + icon + ' ' + result)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    # ========================================================================
    # ENGINE OPERATIONS
    # ========================================================================

    def clone(self) -> OptionPool:
        """
        Create an independent copy of this engine.

        Records are immutable and shared; the store mapping, token balances,
        log and idempotency set are copied. The price feed is an external
        collaborator and is shared.
        """
        cloned = OptionPool.__new__(OptionPool)
        cloned.name = self.name
        cloned.feed = self.feed
        cloned.tokens = self.tokens.clone()
        cloned.config = self.config
        cloned.store = self.store.copy()
        cloned.seen_intent_ids = self.seen_intent_ids.copy()
        cloned.transaction_log = list(self.transaction_log)
        cloned._current_time = self._current_time
        cloned.verbose = self.verbose
        cloned._next_sequence = self._next_sequence
        return cloned

    def state_digest(self) -> str:
        """Hash of every record and every non-zero token balance."""
        return content_hash(list(self.store.items()), self.tokens.snapshot())

    def __repr__(self) -> str:
        return (f"OptionPool({self.name!r}, t={self._current_time}, "
                f"{len(self.store)} records, {len(self.transaction_log)} updates)")
