"""
optionpool - Pooled-collateral options ledger

Liquidity providers deposit collateral into a shared pool; buyers pay a
premium to open call/put positions against oracle-quoted spot prices;
positions settle (exercise, auto-exercise, expiry) against the pool.
Administrative changes are gated by a threshold multisig.

Usage:
    from decimal import Decimal
    from optionpool import OptionPool, StaticPriceFeed, PRICE_DECIMALS

    feed = StaticPriceFeed()
    pool = OptionPool("main", feed, initial_time=1_700_000_000, verbose=False)
    pool.initialize(["alice", "bob", "carol"], min_signatures=2)
    pool.register_asset("SOL", 9)
    pool.register_asset("USDC", 6)

    for signer in ("alice", "bob"):
        pool.add_pool(signer, "main", admin="treasury")
    for asset, oracle in (("SOL", "SOL/USD"), ("USDC", "USDC/USD")):
        for signer in ("alice", "bob"):
            pool.register_custody(signer, "main", asset, oracle)

    for account in ("lp", "buyer"):
        pool.open_account(account)
    pool.mint("lp", "SOL", 100 * 10**9)
    pool.mint("buyer", "USDC", 10_000 * 10**6)
    pool.deposit("lp", "main", "SOL", 100 * 10**9)

    feed.publish_price("SOL/USD", Decimal("140"), pool.current_time)
    feed.publish_price("USDC/USD", Decimal("1"), pool.current_time)
    option = pool.sell_option("buyer", "main", "SOL", "USDC", quantity=10,
                              strike_price=150 * 10**PRICE_DECIMALS,
                              expired_date=pool.current_time + 86_400,
                              option_index=1, is_call=True)
"""

# Core types
from .core import (
    ExecuteResult,
    OriginType,
    UpdateOrigin,
    Transfer,
    RecordChange,
    PendingUpdate,
    ExecutedUpdate,
    build_update,
    canonicalize,
    content_hash,
    # Constants
    U64_MAX,
    U128_MAX,
    PRICE_DECIMALS,
    USD_DECIMALS,
    MAX_PRICE_AGE_SEC,
    DEFAULT_IMPLIED_VOLATILITY,
    SECONDS_PER_YEAR,
    MAX_SIGNERS,
    TRANSFER_AUTHORITY,
    # Exceptions
    OptionPoolError,
    BalanceError,
    AuthorizationError,
    TemporalError,
    StateError,
    MathOverflowError,
    InvalidPriceRequirementError,
    InvalidPoolBalanceError,
    InvalidLockedBalanceError,
    InvalidSignerBalanceError,
    InsufficientTokenBalance,
    NotAuthorizedMultiSigError,
    InvalidOwner,
    AdminAuthorityError,
    NotAuthorizedKeeperError,
    TransferAuthorityError,
    InvalidTimeError,
    StalePriceError,
    OptionAlreadyExercised,
    OptionNotValid,
    AlreadySignedMultiSigError,
    AlreadyExecutedMultiSigError,
    InvalidOptionIndexError,
    CustodyAlreadyRegistered,
    PoolAlreadyExists,
    InvalidPoolStateError,
    RecordNotFound,
    RecordKindMismatch,
    StaleRecordError,
    InvariantViolation,
    UpdateRejected,
    AccountNotFound,
    AssetNotRegistered,
    OracleNotFound,
)

# Checked decimal math
from .decimal_math import (
    checked_add, checked_sub, checked_mul, checked_div, checked_ceil_div, checked_pow,
    checked_decimal_mul, checked_decimal_div, checked_decimal_ceil_div,
    checked_as_u64, scale_to_exponent, to_scaled, from_scaled,
)

# Records and store
from .records import (
    RecordKind, OptionType, PremiumUnit,
    Pool, Custody, OptionDetail, User, Multisig,
    MULTISIG_KEY, pool_key, custody_key, option_key, user_key, custody_token_account,
)
from .store import StoreView, Store

# Oracle
from .oracle import (
    RawQuote, OraclePrice, PriceFeed, StaticPriceFeed, TimeSeriesPriceFeed,
    new_from_quote, load_oracle_price,
)

# Custody, multisig, pricing
from . import custody
from .multisig import (
    AdminInstruction, ProposalState, create_multisig, instruction_hash, proposal_state, sign_multisig,
)
from .black_scholes import call, put
from .pricing import PricingModel, PremiumQuote, price_premium, compute_premium_amount

# Operations
from .admin import compute_add_pool, compute_register_custody, compute_set_keepers
from .options import (
    Moneyness,
    is_covered,
    get_option_moneyness,
    get_option_intrinsic_value,
    quote_premium,
    compute_sell_option,
    compute_exercise_option,
    compute_auto_exercise,
    compute_expire_option,
    compute_deposit,
    compute_withdraw,
)

# Engine and collaborators
from .tokens import TokenLedger
from .engine import EngineConfig, OptionPool
from .keeper import ExpiryKeeper
