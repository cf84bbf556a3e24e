"""
Zero-Knowledge Proof Module for anonymous vote commitments
Groth16 proofs over the vote circuit with Poseidon nullifiers and commitments
"""

from .errors import (
    ErrorKind,
    VoteError,
    ZKError,
    InputValidationError,
    DuplicateNullifierError,
    ElectionNotFoundError,
    ElectionInactiveError,
    CircuitArtifactMissingError,
    CircuitCompilationError,
    TrustedSetupError,
    ProofGenerationError,
    WitnessGenerationError,
    ProvingBackendError,
    VerificationFailedError,
    VoteStorageError,
)
from .poseidon import FIELD_PRIME, PoseidonHasher, get_hasher
from .circuit import VoteCircuit, VoteCircuitInput, PublicSignals, coerce_identifier
from .artifacts import CircuitArtifacts, SetupStage, VerificationKeyCache
from .backend import CommandRunner, ProvingBackend, SnarkjsBackend
from .prover import VoteProof, VoteProofGenerator
from .verifier import VerificationResult, VoteProofVerifier

__version__ = "1.0.0"

__all__ = [
    # Errors
    'ErrorKind',
    'VoteError',
    'ZKError',
    'InputValidationError',
    'DuplicateNullifierError',
    'ElectionNotFoundError',
    'ElectionInactiveError',
    'CircuitArtifactMissingError',
    'CircuitCompilationError',
    'TrustedSetupError',
    'ProofGenerationError',
    'WitnessGenerationError',
    'ProvingBackendError',
    'VerificationFailedError',
    'VoteStorageError',

    # Hashing and circuit
    'FIELD_PRIME',
    'PoseidonHasher',
    'get_hasher',
    'VoteCircuit',
    'VoteCircuitInput',
    'PublicSignals',
    'coerce_identifier',

    # Artifacts and backends
    'CircuitArtifacts',
    'SetupStage',
    'VerificationKeyCache',
    'CommandRunner',
    'ProvingBackend',
    'SnarkjsBackend',

    # Services
    'VoteProof',
    'VoteProofGenerator',
    'VerificationResult',
    'VoteProofVerifier',
]
