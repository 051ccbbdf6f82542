"""
test_multisig.py - Unit tests for multisig.py

Tests:
- Threshold counting and the executed flag
- Signer authorization, double signing, signing after execution
- Rebinding to a different instruction hash
- Hash sensitivity to every parameter
"""

import pytest

from optionpool import (
    AdminInstruction, AlreadyExecutedMultiSigError, AlreadySignedMultiSigError,
    NotAuthorizedMultiSigError, ProposalState,
    create_multisig, instruction_hash, proposal_state, sign_multisig,
)


ADD_MAIN = instruction_hash(AdminInstruction.ADD_POOL, {"pool_name": "main", "admin": "treasury"})
ADD_SIDE = instruction_hash(AdminInstruction.ADD_POOL, {"pool_name": "side", "admin": "treasury"})


@pytest.fixture
def two_of_three():
    return create_multisig(["alice", "bob", "carol"], 2)


class TestSigning:
    """Tests for sign_multisig."""

    def test_first_signature_leaves_one(self, two_of_three):
        multisig, left = sign_multisig(two_of_three, "alice", ADD_MAIN)
        assert left == 1
        assert multisig.signed == (True, False, False)
        assert not multisig.executed
        assert proposal_state(multisig) is ProposalState.PARTIALLY_SIGNED

    def test_threshold_executes(self, two_of_three):
        multisig, _ = sign_multisig(two_of_three, "alice", ADD_MAIN)
        multisig, left = sign_multisig(multisig, "carol", ADD_MAIN)
        assert left == 0
        assert multisig.executed
        assert proposal_state(multisig) is ProposalState.EXECUTED

    def test_fresh_multisig_is_proposed(self, two_of_three):
        assert proposal_state(two_of_three) is ProposalState.PROPOSED

    def test_one_of_one_executes_immediately(self):
        multisig, left = sign_multisig(create_multisig(["alice"], 1), "alice", ADD_MAIN)
        assert left == 0
        assert multisig.executed

    def test_unknown_signer(self, two_of_three):
        with pytest.raises(NotAuthorizedMultiSigError):
            sign_multisig(two_of_three, "mallory", ADD_MAIN)

    def test_double_sign(self, two_of_three):
        multisig, _ = sign_multisig(two_of_three, "alice", ADD_MAIN)
        with pytest.raises(AlreadySignedMultiSigError):
            sign_multisig(multisig, "alice", ADD_MAIN)

    def test_sign_after_execution(self, two_of_three):
        multisig, _ = sign_multisig(two_of_three, "alice", ADD_MAIN)
        multisig, _ = sign_multisig(multisig, "bob", ADD_MAIN)
        with pytest.raises(AlreadyExecutedMultiSigError):
            sign_multisig(multisig, "carol", ADD_MAIN)

    def test_signer_of_executed_instruction_sees_already_signed(self, two_of_three):
        multisig, _ = sign_multisig(two_of_three, "alice", ADD_MAIN)
        multisig, _ = sign_multisig(multisig, "bob", ADD_MAIN)
        with pytest.raises(AlreadySignedMultiSigError):
            sign_multisig(multisig, "alice", ADD_MAIN)

    def test_input_record_unchanged(self, two_of_three):
        sign_multisig(two_of_three, "alice", ADD_MAIN)
        assert two_of_three.num_signed == 0


class TestRebinding:
    """Tests for signing a different instruction."""

    def test_new_hash_resets_bitmap(self, two_of_three):
        multisig, _ = sign_multisig(two_of_three, "alice", ADD_MAIN)
        multisig, left = sign_multisig(multisig, "bob", ADD_SIDE)
        assert left == 1
        assert multisig.signed == (False, True, False)
        assert multisig.instruction_hash == ADD_SIDE

    def test_signatures_do_not_carry_over(self, two_of_three):
        multisig, _ = sign_multisig(two_of_three, "alice", ADD_MAIN)
        multisig, _ = sign_multisig(multisig, "bob", ADD_SIDE)
        multisig, left = sign_multisig(multisig, "alice", ADD_MAIN)
        assert left == 1
        assert not multisig.executed

    def test_new_instruction_after_execution(self, two_of_three):
        multisig, _ = sign_multisig(two_of_three, "alice", ADD_MAIN)
        multisig, _ = sign_multisig(multisig, "bob", ADD_MAIN)
        multisig, left = sign_multisig(multisig, "carol", ADD_SIDE)
        assert left == 1
        assert not multisig.executed


class TestInstructionHash:
    """Tests for instruction_hash."""

    def test_deterministic(self):
        params = {"pool_name": "main", "admin": "treasury"}
        assert instruction_hash(AdminInstruction.ADD_POOL, params) == ADD_MAIN
        assert instruction_hash(AdminInstruction.ADD_POOL, dict(reversed(list(params.items())))) == ADD_MAIN

    def test_every_parameter_counts(self):
        assert ADD_MAIN != ADD_SIDE
        other_admin = instruction_hash(AdminInstruction.ADD_POOL, {"pool_name": "main", "admin": "eve"})
        assert other_admin != ADD_MAIN

    def test_instruction_kind_counts(self):
        params = {"pool_name": "main", "admin": "treasury"}
        assert instruction_hash(AdminInstruction.SET_KEEPERS, params) != ADD_MAIN


class TestCreateMultisig:
    """Tests for create_multisig validation."""

    def test_threshold_above_signers(self):
        with pytest.raises(ValueError):
            create_multisig(["alice"], 2)

    def test_no_signers(self):
        with pytest.raises(ValueError):
            create_multisig([], 1)
