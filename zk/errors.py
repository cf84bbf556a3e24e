"""Error taxonomy for vote proving, verification and persistence."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict


GENERIC_FAILURE_MESSAGE = "Vote could not be processed, try again"


class ErrorKind(Enum):
    """Machine-readable error kinds surfaced to callers"""
    INPUT_VALIDATION = "input_validation"
    ALREADY_VOTED = "already_voted"
    ELECTION_NOT_FOUND = "election_not_found"
    ELECTION_INACTIVE = "election_inactive"
    ARTIFACT_MISSING = "artifact_missing"
    WITNESS_GENERATION_FAILED = "witness_generation_failed"
    PROVING_BACKEND_ERROR = "proving_backend_error"
    VERIFICATION_FAILED = "verification_failed"
    STORAGE_UNAVAILABLE = "storage_unavailable"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]

    @property
    def user_facing(self) -> bool:
        """Whether the detailed message may be shown to the caller"""
        return self in _USER_FACING

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.PROVING_BACKEND_ERROR, ErrorKind.STORAGE_UNAVAILABLE)


_HTTP_STATUS = {
    ErrorKind.INPUT_VALIDATION: 400,
    ErrorKind.ALREADY_VOTED: 409,
    ErrorKind.ELECTION_NOT_FOUND: 404,
    ErrorKind.ELECTION_INACTIVE: 400,
    ErrorKind.ARTIFACT_MISSING: 503,
    ErrorKind.WITNESS_GENERATION_FAILED: 422,
    ErrorKind.PROVING_BACKEND_ERROR: 503,
    ErrorKind.VERIFICATION_FAILED: 400,
    ErrorKind.STORAGE_UNAVAILABLE: 503,
}

_USER_FACING = {
    ErrorKind.INPUT_VALIDATION,
    ErrorKind.ALREADY_VOTED,
    ErrorKind.ELECTION_NOT_FOUND,
    ErrorKind.ELECTION_INACTIVE,
}

_DEFAULT_MESSAGES = {
    ErrorKind.ALREADY_VOTED: "You have already voted in this election",
    ErrorKind.WITNESS_GENERATION_FAILED: "Vote inputs could not be encoded for proving",
    ErrorKind.VERIFICATION_FAILED: "Invalid proof",
}


@dataclass(frozen=True)
class VoteError:
    """Tagged error value returned instead of raised at the service boundary"""
    kind: ErrorKind
    message: str
    detail: str = ""

    @property
    def http_status(self) -> int:
        return self.kind.http_status

    def to_dict(self) -> Dict[str, Any]:
        # detail is internal and never serialized
        return {"kind": self.kind.value, "message": self.message}


# ============================================================================
# EXCEPTIONS
# ============================================================================


class ZKError(Exception):
    """Base exception for ZK operations"""
    kind = ErrorKind.PROVING_BACKEND_ERROR

    def to_vote_error(self) -> VoteError:
        detail = str(self)
        if self.kind.user_facing:
            message = detail or _DEFAULT_MESSAGES.get(self.kind, GENERIC_FAILURE_MESSAGE)
        else:
            message = _DEFAULT_MESSAGES.get(self.kind, GENERIC_FAILURE_MESSAGE)
        return VoteError(kind=self.kind, message=message, detail=detail)


class InputValidationError(ZKError):
    """Malformed or out-of-range identifiers"""
    kind = ErrorKind.INPUT_VALIDATION


class DuplicateNullifierError(ZKError):
    """Nullifier already consumed for this election"""
    kind = ErrorKind.ALREADY_VOTED

    def __init__(self, message: str = _DEFAULT_MESSAGES[ErrorKind.ALREADY_VOTED]):
        super().__init__(message)


class ElectionNotFoundError(ZKError):
    kind = ErrorKind.ELECTION_NOT_FOUND


class ElectionInactiveError(ZKError):
    kind = ErrorKind.ELECTION_INACTIVE


class CircuitArtifactMissingError(ZKError):
    """Proving/verification artifacts absent, undersized or malformed"""
    kind = ErrorKind.ARTIFACT_MISSING


class CircuitCompilationError(CircuitArtifactMissingError):
    """Circuit compilation failed"""


class TrustedSetupError(CircuitArtifactMissingError):
    """Trusted setup ceremony failed"""


class ProofGenerationError(ZKError):
    """Proof generation failed"""
    kind = ErrorKind.PROVING_BACKEND_ERROR


class WitnessGenerationError(ProofGenerationError):
    """Inputs do not satisfy the circuit constraints"""
    kind = ErrorKind.WITNESS_GENERATION_FAILED


class ProvingBackendError(ProofGenerationError):
    """Lower-level failure or timeout in the proving backend"""
    kind = ErrorKind.PROVING_BACKEND_ERROR


class VerificationFailedError(ZKError):
    """Proof rejected by the verifier"""
    kind = ErrorKind.VERIFICATION_FAILED


class VoteStorageError(ZKError):
    """Vote store unreachable, locked or otherwise failing"""
    kind = ErrorKind.STORAGE_UNAVAILABLE
