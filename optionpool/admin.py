"""
admin.py - Multisig-gated administrative instructions

Each compute_* function records one signer's signature for an instruction
and, when that signature completes the threshold, bundles the instruction's
effect into the same PendingUpdate. The update always carries the multisig
record change; its result is the number of signatures still missing
(0 means the effect is included).

Instruction preconditions are checked on every signature, so a proposal
that could never execute is rejected before any signature is recorded.
"""

from __future__ import annotations
from typing import List, Sequence, Tuple

from .core import (
    InvalidPoolStateError, OriginType, PendingUpdate, PoolAlreadyExists, RecordChange,
    UpdateOrigin, build_update,
)
from .custody import register
from .multisig import AdminInstruction, instruction_hash, sign_multisig
from .records import MULTISIG_KEY, Pool, custody_key, pool_key
from .store import StoreView


def _sign(
    view: StoreView,
    signer: str,
    instruction: AdminInstruction,
    params: dict,
) -> Tuple[RecordChange, int]:
    multisig = view.get_multisig()
    new_multisig, signatures_left = sign_multisig(multisig, signer, instruction_hash(instruction, params))
    return RecordChange(MULTISIG_KEY, multisig, new_multisig), signatures_left


def _admin_update(
    view: StoreView,
    signer: str,
    instruction: AdminInstruction,
    sign_change: RecordChange,
    signatures_left: int,
    effect: List[RecordChange],
) -> PendingUpdate:
    changes = [sign_change]
    if signatures_left == 0:
        changes.extend(effect)
    origin = UpdateOrigin(OriginType.MULTISIG, signer, instruction.value)
    return build_update(view, changes, origin=origin, result=signatures_left)


def compute_add_pool(view: StoreView, signer: str, pool_name: str, admin: str) -> PendingUpdate:
    """
    Sign the creation of an empty pool administered by admin.

    Raises:
        NotAuthorizedMultiSigError, AlreadySignedMultiSigError, AlreadyExecutedMultiSigError
        PoolAlreadyExists: If a pool with this name exists
        ValueError: If pool_name or admin is empty
    """
    sign_change, left = _sign(view, signer, AdminInstruction.ADD_POOL,
                              {"pool_name": pool_name, "admin": admin})

    key = pool_key(pool_name)
    if view.get_record(key) is not None:
        raise PoolAlreadyExists(f"Pool {pool_name} already exists")
    pool = Pool(name=pool_name, admin=admin)

    return _admin_update(view, signer, AdminInstruction.ADD_POOL, sign_change, left,
                         [RecordChange(key, None, pool)])


def compute_register_custody(
    view: StoreView,
    signer: str,
    pool_name: str,
    asset: str,
    oracle: str,
) -> PendingUpdate:
    """
    Sign the registration of asset as a new custody of pool_name.

    Token decimals are read from the token ledger, so the asset must already
    be a registered mint.

    Raises:
        NotAuthorizedMultiSigError, AlreadySignedMultiSigError, AlreadyExecutedMultiSigError
        InvalidPoolStateError: If the pool does not exist
        CustodyAlreadyRegistered: If the asset is already a custody of the pool
        AssetNotRegistered: If the token ledger does not know the asset
    """
    sign_change, left = _sign(view, signer, AdminInstruction.ADD_CUSTODY,
                              {"pool_name": pool_name, "asset": asset, "oracle": oracle})

    pool = view.get_record(pool_key(pool_name))
    existing = view.get_record(custody_key(pool_name, asset))
    decimals = view.token_decimals(asset)
    new_pool, custody = register(pool, pool_name, asset, oracle, decimals, existing)

    effect = [
        RecordChange(pool_key(pool_name), pool, new_pool),
        RecordChange(custody_key(pool_name, asset), None, custody),
    ]
    return _admin_update(view, signer, AdminInstruction.ADD_CUSTODY, sign_change, left, effect)


def compute_set_keepers(
    view: StoreView,
    signer: str,
    pool_name: str,
    keepers: Sequence[str],
) -> PendingUpdate:
    """
    Sign the replacement of a pool's keeper set.

    Order matters: the same accounts in a different order are a different
    instruction.

    Raises:
        NotAuthorizedMultiSigError, AlreadySignedMultiSigError, AlreadyExecutedMultiSigError
        InvalidPoolStateError: If the pool does not exist
        ValueError: If keepers contains duplicates
    """
    keepers = tuple(keepers)
    sign_change, left = _sign(view, signer, AdminInstruction.SET_KEEPERS,
                              {"pool_name": pool_name, "keepers": keepers})

    key = pool_key(pool_name)
    pool = view.get_record(key)
    if pool is None:
        raise InvalidPoolStateError(f"Pool {pool_name} does not exist")
    new_pool = Pool(name=pool.name, admin=pool.admin, custodies=pool.custodies, keepers=keepers)

    return _admin_update(view, signer, AdminInstruction.SET_KEEPERS, sign_change, left,
                         [RecordChange(key, pool, new_pool)])
