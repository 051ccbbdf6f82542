"""
tokens.py - In-memory token ledger

Stands in for the external token program: it holds integer balances per
(account, asset), knows each account's authority, and moves tokens in
batches. A batch is validated as a whole before any balance changes, so
validate() followed by apply() is all-or-nothing.
"""

from __future__ import annotations
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple

from .core import (
    AccountNotFound, AssetNotRegistered, InsufficientTokenBalance, Transfer,
    TransferAuthorityError, U64_MAX,
)


class TokenLedger:
    """
    Integer token balances keyed by account and asset.

    Example:
        tokens = TokenLedger()
        tokens.register_asset("SOL", 9)
        tokens.open_account("alice")
        tokens.mint("alice", "SOL", 5 * 10**9)
    """

    def __init__(self):
        self.assets: Dict[str, int] = {}
        self.authorities: Dict[str, str] = {}
        self.balances: Dict[str, Dict[str, int]] = {}

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def register_asset(self, asset: str, decimals: int) -> None:
        """
        Register a mint.

        Raises:
            ValueError: If the asset is already registered or decimals is out of range
        """
        if asset in self.assets:
            raise ValueError(f"Asset {asset} already registered")
        if isinstance(decimals, bool) or not isinstance(decimals, int) or not 0 <= decimals <= 18:
            raise ValueError(f"decimals must be an int in [0, 18], got {decimals}")
        self.assets[asset] = decimals

    def open_account(self, account: str, authority: Optional[str] = None) -> str:
        """
        Open a token account. The authority defaults to the account itself.

        Raises:
            ValueError: If the account already exists
        """
        if account in self.authorities:
            raise ValueError(f"Account {account} already open")
        self.authorities[account] = authority or account
        self.balances[account] = defaultdict(int)
        return account

    def has_account(self, account: str) -> bool:
        return account in self.authorities

    def mint(self, account: str, asset: str, amount: int) -> None:
        """Create amount tokens of asset in account."""
        self._require_asset(asset)
        self._require_account(account)
        if amount <= 0:
            raise ValueError(f"Mint amount must be positive, got {amount}")
        new_balance = self.balances[account][asset] + amount
        if new_balance > U64_MAX:
            raise ValueError(f"Mint would overflow {account} {asset} balance")
        self.balances[account][asset] = new_balance

    # ========================================================================
    # QUERIES
    # ========================================================================

    def balance(self, account: str, asset: str) -> int:
        self._require_asset(asset)
        self._require_account(account)
        return self.balances[account].get(asset, 0)

    def decimals(self, asset: str) -> int:
        self._require_asset(asset)
        return self.assets[asset]

    def authority(self, account: str) -> str:
        self._require_account(account)
        return self.authorities[account]

    def total_supply(self, asset: str) -> int:
        self._require_asset(asset)
        return sum(bals.get(asset, 0) for bals in self.balances.values())

    # ========================================================================
    # TRANSFERS
    # ========================================================================

    def validate(self, transfers: Iterable[Transfer]) -> None:
        """
        Check a batch of transfers without applying it.

        Transfers are checked in order against running balances, so two debits
        of the same account in one batch must be covered together.

        Raises:
            AssetNotRegistered, AccountNotFound, TransferAuthorityError,
            InsufficientTokenBalance
        """
        running: Dict[Tuple[str, str], int] = {}
        for t in transfers:
            self._require_asset(t.asset)
            self._require_account(t.source)
            self._require_account(t.dest)
            if self.authorities[t.source] != t.authority:
                raise TransferAuthorityError(
                    f"{t.authority} cannot debit {t.source} (authority is {self.authorities[t.source]})"
                )
            src = (t.source, t.asset)
            dst = (t.dest, t.asset)
            src_balance = running.get(src, self.balances[t.source].get(t.asset, 0))
            if src_balance < t.quantity:
                raise InsufficientTokenBalance(
                    f"{t.source} has {src_balance} {t.asset}, needs {t.quantity}"
                )
            running[src] = src_balance - t.quantity
            dst_balance = running.get(dst, self.balances[t.dest].get(t.asset, 0)) + t.quantity
            if dst_balance > U64_MAX:
                raise InsufficientTokenBalance(f"Transfer would overflow {t.dest} {t.asset} balance")
            running[dst] = dst_balance

    def apply(self, transfers: Iterable[Transfer]) -> None:
        """Validate then apply a batch of transfers atomically."""
        transfers = list(transfers)
        self.validate(transfers)
        for t in transfers:
            self.balances[t.source][t.asset] -= t.quantity
            self.balances[t.dest][t.asset] += t.quantity

    def clone(self) -> TokenLedger:
        cloned = TokenLedger.__new__(TokenLedger)
        cloned.assets = dict(self.assets)
        cloned.authorities = dict(self.authorities)
        cloned.balances = {acct: defaultdict(int, bals) for acct, bals in self.balances.items()}
        return cloned

    def snapshot(self) -> List[Tuple[str, str, int]]:
        """Sorted non-zero (account, asset, balance) triples."""
        return sorted(
            (acct, asset, qty)
            for acct, bals in self.balances.items()
            for asset, qty in bals.items()
            if qty
        )

    def _require_asset(self, asset: str) -> None:
        if asset not in self.assets:
            raise AssetNotRegistered(f"Asset {asset} not registered")

    def _require_account(self, account: str) -> None:
        if account not in self.authorities:
            raise AccountNotFound(f"Token account {account} not found")
