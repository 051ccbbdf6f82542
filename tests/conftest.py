"""
conftest.py - Shared pytest fixtures for option pool tests

Provides common fixtures used across unit, conformance and functional tests:
- Engines (admin-only, funded, with open positions)
- FakeView setups for the pure compute_* functions
"""

import pytest
from decimal import Decimal
from typing import Dict

from optionpool import (
    Custody, Multisig, OptionPool, Pool, StaticPriceFeed,
    MULTISIG_KEY, custody_key, pool_key,
)

from tests.fake_view import FakeView
from tests.pool_builder import (
    ADMIN, BUYER, KEEPER, POOL, POOL_SOL, POOL_USDC, SIGNERS, SOL, SOL_DECIMALS,
    SOL_ORACLE, T0, USDC, USDC_DECIMALS, USDC_ORACLE,
    build_admin_pool, build_funded_pool, sell_call, sell_put,
)


# =============================================================================
# ENGINE FIXTURES
# =============================================================================

@pytest.fixture
def admin_pool():
    """Engine with multisig, pool, SOL/USDC custodies and a keeper; no liquidity."""
    return build_admin_pool()


@pytest.fixture
def funded_pool():
    """Admin pool with LP liquidity, a funded buyer and fresh prices."""
    return build_funded_pool()


@pytest.fixture
def call_position(funded_pool):
    """Funded pool with one open covered call (q=10, K=150, 30 days)."""
    engine, feed = funded_pool
    option = sell_call(engine)
    return engine, feed, option


@pytest.fixture
def put_position(funded_pool):
    """Funded pool with one open cash-secured put (q=10, K=150, 30 days)."""
    engine, feed = funded_pool
    option = sell_put(engine)
    return engine, feed, option


@pytest.fixture
def quiet_engine():
    """Bare engine with a static feed and no setup."""
    return OptionPool("bare", StaticPriceFeed(), initial_time=T0, verbose=False)


# =============================================================================
# FAKE VIEW FIXTURES
# =============================================================================

@pytest.fixture
def pool_records() -> Dict[str, object]:
    """Records of a seeded pool with no positions."""
    return {
        MULTISIG_KEY: Multisig(signers=SIGNERS, min_signatures=2),
        pool_key(POOL): Pool(name=POOL, admin=ADMIN, custodies=(SOL, USDC), keepers=(KEEPER,)),
        custody_key(POOL, SOL): Custody(POOL, SOL, SOL_ORACLE, SOL_DECIMALS, total_balance=POOL_SOL),
        custody_key(POOL, USDC): Custody(POOL, USDC, USDC_ORACLE, USDC_DECIMALS, total_balance=POOL_USDC),
    }


@pytest.fixture
def pool_view(pool_records):
    """FakeView over a seeded pool with a funded buyer."""
    return FakeView(
        records=pool_records,
        balances={
            (BUYER, SOL): 50 * 10 ** SOL_DECIMALS,
            (BUYER, USDC): 50_000 * 10 ** USDC_DECIMALS,
        },
        decimals={SOL: SOL_DECIMALS, USDC: USDC_DECIMALS},
        time=T0,
    )


@pytest.fixture
def sol_feed():
    """Static feed quoting SOL=140 and USDC=1 at T0."""
    feed = StaticPriceFeed()
    feed.publish_price(SOL_ORACLE, Decimal("140"), T0)
    feed.publish_price(USDC_ORACLE, Decimal("1"), T0)
    return feed
