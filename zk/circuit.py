"""
Vote circuit definition.

The circuit proves knowledge of (voterId, candidateId, electionId, salt) such
that

    nullifierHash  = Poseidon(voterId, electionId)
    commitmentHash = Poseidon(candidateId, salt)

Both hashes are the only public outputs, in that order. Everything else in
this module mirrors the circuit off-circuit so the services can build witness
inputs and cross-check the signals the backend returns.
"""

import logging
import re
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

from .errors import InputValidationError, WitnessGenerationError
from .poseidon import FIELD_PRIME, PoseidonHasher

logger = logging.getLogger(__name__)

CIRCUIT_NAME = "vote"
PUBLIC_SIGNAL_NAMES = ("nullifierHash", "commitmentHash")
PRIVATE_INPUT_NAMES = ("voterId", "candidateId", "electionId", "salt")

VOTE_CIRCUIT_TEMPLATE = """pragma circom 2.0.0;

include "circomlib/circuits/poseidon.circom";

// Anonymous vote: binds a voter to one nullifier per election and hides the
// chosen candidate behind a salted commitment.
template VoteCommitment() {
    signal input voterId;
    signal input candidateId;
    signal input electionId;
    signal input salt;

    signal output nullifierHash;
    signal output commitmentHash;

    component nullifier = Poseidon(2);
    nullifier.inputs[0] <== voterId;
    nullifier.inputs[1] <== electionId;
    nullifierHash <== nullifier.out;

    component commitment = Poseidon(2);
    commitment.inputs[0] <== candidateId;
    commitment.inputs[1] <== salt;
    commitmentHash <== commitment.out;
}

component main = VoteCommitment();
"""


def write_circuit_source(circuit_dir: Path, circuit_name: str = CIRCUIT_NAME) -> Path:
    """Write the circom source for the vote circuit, returning its path"""
    circuit_dir = Path(circuit_dir)
    circuit_dir.mkdir(parents=True, exist_ok=True)
    circuit_file = circuit_dir / f"{circuit_name}.circom"

    if not circuit_file.exists() or circuit_file.read_text() != VOTE_CIRCUIT_TEMPLATE:
        circuit_file.write_text(VOTE_CIRCUIT_TEMPLATE)
        logger.info(f"Wrote circuit source {circuit_file}")

    return circuit_file


# ============================================================================
# INPUTS AND SIGNALS
# ============================================================================


# bounded so int() never hits the interpreter digit limit
_DECIMAL_ID = re.compile(r"[0-9]{1,100}")
_HEX_ID = re.compile(r"0[xX][0-9a-fA-F]{1,80}")


def coerce_identifier(value: Union[int, str], name: str) -> int:
    """Parse a caller-supplied identifier into a positive integer

    Accepts ints, decimal strings and 0x-prefixed hex strings. Range against
    the field is checked separately.
    """
    if isinstance(value, bool):
        raise InputValidationError(f"{name} must be an integer")

    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str):
        if _DECIMAL_ID.fullmatch(value):
            parsed = int(value, 10)
        elif _HEX_ID.fullmatch(value):
            parsed = int(value[2:], 16)
        else:
            raise InputValidationError(f"{name} must be an integer")
    else:
        raise InputValidationError(f"{name} must be an integer")

    if parsed <= 0:
        raise InputValidationError(f"{name} must be positive")
    return parsed


def generate_salt() -> int:
    """Fresh uniformly random field element for the commitment"""
    return secrets.randbelow(FIELD_PRIME)


@dataclass(frozen=True)
class VoteCircuitInput:
    """Private witness inputs; never persisted or logged"""
    voter_id: int
    candidate_id: int
    election_id: int
    salt: int

    def to_witness_input(self) -> Dict[str, str]:
        # circom witness calculators take decimal strings
        return {
            "voterId": str(self.voter_id),
            "candidateId": str(self.candidate_id),
            "electionId": str(self.election_id),
            "salt": str(self.salt),
        }

    def __repr__(self) -> str:
        return "VoteCircuitInput(<redacted>)"


@dataclass(frozen=True)
class PublicSignals:
    nullifier_hash: int
    commitment_hash: int

    @classmethod
    def from_list(cls, signals: Sequence[Any]) -> "PublicSignals":
        """Parse the positional snarkjs form `[nullifierHash, commitmentHash]`"""
        if isinstance(signals, (str, bytes)) or len(signals) != len(PUBLIC_SIGNAL_NAMES):
            raise ValueError(
                f"Expected {len(PUBLIC_SIGNAL_NAMES)} public signals")

        values = []
        for name, raw in zip(PUBLIC_SIGNAL_NAMES, signals):
            if isinstance(raw, bool):
                raise ValueError(f"{name} is not a field element")
            if isinstance(raw, str):
                if not raw.isdigit():
                    raise ValueError(f"{name} is not a decimal field element")
                value = int(raw)
            elif isinstance(raw, int):
                value = raw
            else:
                raise ValueError(f"{name} is not a field element")
            if not 0 <= value < FIELD_PRIME:
                raise ValueError(f"{name} outside the scalar field")
            values.append(value)

        return cls(nullifier_hash=values[0], commitment_hash=values[1])

    def to_list(self) -> List[str]:
        return [str(self.nullifier_hash), str(self.commitment_hash)]


# ============================================================================
# OFF-CIRCUIT EVALUATION
# ============================================================================


class VoteCircuit:
    """Off-circuit model of the vote relation"""

    name = CIRCUIT_NAME
    n_public = len(PUBLIC_SIGNAL_NAMES)

    def __init__(self, hasher: PoseidonHasher):
        self.hasher = hasher

    def check_field_range(self, **values: int) -> None:
        for name, value in values.items():
            if not 0 <= value < FIELD_PRIME:
                raise WitnessGenerationError(
                    f"{name} is outside the scalar field")

    def nullifier_hash(self, voter_id: int, election_id: int) -> int:
        return self.hasher.hash([voter_id, election_id])

    def commitment_hash(self, candidate_id: int, salt: int) -> int:
        return self.hasher.hash([candidate_id, salt])

    def evaluate(self, circuit_input: VoteCircuitInput) -> PublicSignals:
        """Compute the public outputs the circuit must produce for this input"""
        self.check_field_range(
            voterId=circuit_input.voter_id,
            candidateId=circuit_input.candidate_id,
            electionId=circuit_input.election_id,
            salt=circuit_input.salt,
        )
        return PublicSignals(
            nullifier_hash=self.nullifier_hash(
                circuit_input.voter_id, circuit_input.election_id),
            commitment_hash=self.commitment_hash(
                circuit_input.candidate_id, circuit_input.salt),
        )
