"""
multisig.py - Threshold authorization for admin instructions

A single Multisig record gates every administrative instruction. Designated
signers sign a specific instruction, identified by a hash over the
instruction kind and all of its parameters. When the number of signatures
reaches the threshold the proposal is marked executed and the caller applies
the bound effect in the same update.

Proposal states:
    Proposed        no bits set for the bound instruction
    PartiallySigned 1 <= bits set < min_signatures
    Executed        bits set == min_signatures (terminal for that instruction)

Signing a different instruction rebinds the proposal and clears the bitmap,
so signatures collected for one parameter set can never complete another.
"""

from __future__ import annotations
from dataclasses import replace
from enum import Enum
from typing import Any, Dict, Sequence, Tuple

from .core import (
    AlreadyExecutedMultiSigError, AlreadySignedMultiSigError, NotAuthorizedMultiSigError,
    content_hash,
)
from .records import Multisig


class AdminInstruction(Enum):
    ADD_POOL = "add_pool"
    ADD_CUSTODY = "add_custody"
    SET_KEEPERS = "set_keepers"


class ProposalState(Enum):
    PROPOSED = "proposed"
    PARTIALLY_SIGNED = "partially_signed"
    EXECUTED = "executed"


def create_multisig(signers: Sequence[str], min_signatures: int) -> Multisig:
    """
    Create the deployment-time multisig record.

    Raises:
        ValueError: If signers are empty, duplicated, more than MAX_SIGNERS,
                    or min_signatures is outside [1, len(signers)]
    """
    return Multisig(signers=tuple(signers), min_signatures=min_signatures)


def instruction_hash(instruction: AdminInstruction, params: Dict[str, Any]) -> str:
    """
    Hash binding a signature set to one instruction and parameter set.

    Every parameter takes part; changing any of them changes the hash.
    """
    return content_hash("admin_instruction", instruction, params)


def proposal_state(multisig: Multisig) -> ProposalState:
    if multisig.executed:
        return ProposalState.EXECUTED
    if multisig.num_signed == 0:
        return ProposalState.PROPOSED
    return ProposalState.PARTIALLY_SIGNED


def sign_multisig(multisig: Multisig, signer: str, hash_: str) -> Tuple[Multisig, int]:
    """
    Record signer's signature for the instruction identified by hash_.

    Returns:
        (new_multisig, signatures_left). signatures_left == 0 means the
        threshold was reached by this signature and the instruction executes.

    Raises:
        NotAuthorizedMultiSigError: If signer is not a designated signer
        AlreadySignedMultiSigError: If signer already signed this instruction
        AlreadyExecutedMultiSigError: If this instruction was already executed
    """
    if signer not in multisig.signers:
        raise NotAuthorizedMultiSigError(f"Account {signer} is not authorized to sign this instruction")

    if multisig.instruction_hash != hash_:
        multisig = replace(
            multisig,
            signed=(False,) * len(multisig.signers),
            instruction_hash=hash_,
            executed=False,
        )

    idx = multisig.signers.index(signer)
    if multisig.signed[idx]:
        raise AlreadySignedMultiSigError(f"Account {signer} already signed this instruction")
    if proposal_state(multisig) is ProposalState.EXECUTED:
        raise AlreadyExecutedMultiSigError("Instruction has already been executed")

    signed = list(multisig.signed)
    signed[idx] = True
    num_signed = sum(1 for bit in signed if bit)
    executed = num_signed >= multisig.min_signatures

    new_multisig = replace(multisig, signed=tuple(signed), executed=executed)
    return new_multisig, max(multisig.min_signatures - num_signed, 0)
