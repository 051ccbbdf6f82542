"""
keeper.py - Expiry keeper

Automation agent that closes out expired positions. Each step() advances the
engine clock and auto-exercises every open position at or past its expiry,
in (owner, index) order, for the pools this keeper is registered on.

The transaction log is the audit trail; the keeper keeps no state of its own
beyond its identity. Errors propagate to the caller with no retry.
"""

from __future__ import annotations
from typing import List, Optional, Tuple

from .core import ExecuteResult, ExecutedUpdate
from .engine import OptionPool
from .options import compute_auto_exercise


class ExpiryKeeper:
    """
    Auto-exercises expired positions on behalf of their owners.

    Example:
        keeper = ExpiryKeeper(engine, "keeper-1")
        keeper.step(expiry_time)   # -> list of ExecutedUpdate
    """

    def __init__(self, engine: OptionPool, keeper: str):
        """
        Args:
            engine: The engine to operate on
            keeper: Account id; must be in the keepers of every pool it settles
        """
        self.engine = engine
        self.keeper = keeper
        self.verbose = engine.verbose

    def pending_expired(self) -> List[Tuple[str, int]]:
        """(owner, index) of open expired positions in pools this keeper serves."""
        served = []
        for owner, index in self.engine.pending_expired():
            option = self.engine.get_option(owner, index)
            if self.keeper in self.engine.get_pool(option.pool).keepers:
                served.append((owner, index))
        return served

    def step(self, timestamp: Optional[int] = None) -> List[ExecutedUpdate]:
        """
        Advance time (if given) and settle every expired position.

        Returns:
            List of executed updates, one per settled position
        """
        if timestamp is not None:
            self.engine.advance_time(timestamp)

        executed: List[ExecutedUpdate] = []
        for owner, index in self.pending_expired():
            pending = compute_auto_exercise(
                self.engine, self.engine.feed, self.keeper, owner, index,
                max_age=self.engine.config.max_price_age,
            )
            if self.verbose:
                print(f"[KEEPER] Auto-exercising {owner}:{index}")
            if self.engine.execute(pending) == ExecuteResult.APPLIED:
                executed.append(self.engine.transaction_log[-1])
        return executed

    def run(self, timestamps: List[int]) -> List[ExecutedUpdate]:
        """Step through a sequence of timestamps."""
        all_updates: List[ExecutedUpdate] = []
        for timestamp in timestamps:
            all_updates.extend(self.step(timestamp))
        return all_updates
