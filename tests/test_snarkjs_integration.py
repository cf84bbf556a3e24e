"""
End-to-end checks against the real circom/snarkjs toolchain.

Skipped unless node and snarkjs are installed and `python main.py --mode setup`
has produced the artifacts (in ./build or $ZKVOTE_BUILD_DIR).
"""

import os
from pathlib import Path

import pytest

from utils.utils import check_command_exists
from zk.artifacts import CircuitArtifacts, VerificationKeyCache
from zk.backend import SnarkjsBackend
from zk.circuit import VoteCircuit
from zk.prover import VoteProofGenerator
from zk.verifier import VoteProofVerifier

BUILD_DIR = Path(os.environ.get("ZKVOTE_BUILD_DIR", "build"))
ARTIFACTS = CircuitArtifacts(BUILD_DIR)

pytestmark = pytest.mark.skipif(
    not (check_command_exists("node") and check_command_exists("snarkjs"))
    or ARTIFACTS.missing_for_proving(),
    reason="circom/snarkjs toolchain or built artifacts not available",
)


@pytest.fixture
def real_backend():
    return SnarkjsBackend(ARTIFACTS, command_timeout=120)


async def test_real_proof_round_trip(hasher, real_backend):
    generator = VoteProofGenerator(VoteCircuit(hasher), real_backend, ARTIFACTS,
                                   proof_timeout=120)
    try:
        vote_proof = await generator.generate_vote_proof(123, 456, 789)
    finally:
        generator.close()

    # the circuit's Poseidon and ours must agree
    assert vote_proof.public_signals[0] == str(hasher.hash([123, 789]))

    verifier = VoteProofVerifier(real_backend, VerificationKeyCache(ARTIFACTS))
    assert verifier.verify_vote_proof(vote_proof.proof, vote_proof.public_signals).valid

    tampered = [vote_proof.public_signals[0], str(int(vote_proof.public_signals[1]) + 1)]
    assert not verifier.verify_vote_proof(vote_proof.proof, tampered).valid
