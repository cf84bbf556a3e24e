"""
Vote proof generation.

Proving is CPU-heavy and runs in the external backend, so requests are
admitted through a semaphore and executed in a bounded thread pool. A
generated proof is returned to the caller; nothing is persisted here.
"""

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from utils.utils import short_hash
from .artifacts import CircuitArtifacts
from .backend import ProvingBackend
from .circuit import PublicSignals, VoteCircuit, VoteCircuitInput, coerce_identifier, generate_salt
from .errors import (
    DuplicateNullifierError, ProvingBackendError, WitnessGenerationError, ZKError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoteProof:
    proof: Dict[str, Any]
    public_signals: List[str]
    nullifier_hash: int
    commitment_hash: int
    election_id: int
    generation_time: float = 0.0


class VoteProofGenerator:
    """Builds the witness for a vote and obtains a Groth16 proof for it"""

    def __init__(self, circuit: VoteCircuit, backend: ProvingBackend,
                 artifacts: CircuitArtifacts, ledger=None,
                 max_concurrent_proofs: int = 1, proof_timeout: float = 60.0):
        self.circuit = circuit
        self.backend = backend
        self.artifacts = artifacts
        self.ledger = ledger
        self.proof_timeout = proof_timeout
        self._semaphore = asyncio.Semaphore(max_concurrent_proofs)
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent_proofs, thread_name_prefix="vote-prover")

    async def generate_vote_proof(self, voter_id: Union[int, str], candidate_id: Union[int, str],
                                  election_id: Union[int, str]) -> VoteProof:
        voter_id = coerce_identifier(voter_id, "voterId")
        candidate_id = coerce_identifier(candidate_id, "candidateId")
        election_id = coerce_identifier(election_id, "electionId")

        self.circuit.check_field_range(
            voterId=voter_id, candidateId=candidate_id, electionId=election_id)

        nullifier_hash = self.circuit.nullifier_hash(voter_id, election_id)
        if self.ledger is not None and self.ledger.is_consumed(election_id, nullifier_hash):
            logger.warning(f"Proof refused: nullifier {short_hash(nullifier_hash)} "
                           f"already used in election {election_id}")
            raise DuplicateNullifierError()

        self.artifacts.require_proving_artifacts()

        circuit_input = VoteCircuitInput(
            voter_id=voter_id,
            candidate_id=candidate_id,
            election_id=election_id,
            salt=generate_salt(),
        )
        expected = self.circuit.evaluate(circuit_input)

        start = time.time()
        proof, raw_signals = await self._prove(circuit_input)
        elapsed = time.time() - start

        try:
            returned = PublicSignals.from_list(raw_signals)
        except (TypeError, ValueError) as e:
            raise WitnessGenerationError(f"Backend returned malformed public signals: {e}") from e

        if returned != expected:
            logger.error(f"Public signals from backend do not match the vote inputs "
                         f"(election {election_id})")
            raise WitnessGenerationError("Public signals do not match the vote inputs")

        logger.info(f"Generated vote proof for election {election_id} "
                    f"(nullifier {short_hash(nullifier_hash)}) in {elapsed:.2f}s")

        return VoteProof(
            proof=proof,
            public_signals=returned.to_list(),
            nullifier_hash=returned.nullifier_hash,
            commitment_hash=returned.commitment_hash,
            election_id=election_id,
            generation_time=elapsed,
        )

    async def _prove(self, circuit_input: VoteCircuitInput):
        # The slot is held until the worker thread finishes, even after a
        # timeout, so the semaphore counts proofs actually running.
        await self._semaphore.acquire()
        loop = asyncio.get_running_loop()
        try:
            future = loop.run_in_executor(self._executor, self.backend.prove, circuit_input)
        except RuntimeError as e:
            self._semaphore.release()
            raise ProvingBackendError(f"Prover is shut down: {e}") from e
        future.add_done_callback(self._release_slot)

        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=self.proof_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Proof generation timed out after {self.proof_timeout}s")
            raise ProvingBackendError(
                f"Proof generation timed out after {self.proof_timeout}s") from None
        except ZKError:
            raise
        except Exception as e:
            logger.error(f"Proving backend error ({type(e).__name__}): {e}")
            raise ProvingBackendError(f"{type(e).__name__}: {e}") from e

    def _release_slot(self, future: asyncio.Future):
        self._semaphore.release()
        # retrieve the outcome of proofs nobody waits for any more
        if not future.cancelled() and future.exception() is not None:
            logger.debug(f"Proof worker finished with {type(future.exception()).__name__}")

    def close(self):
        self._executor.shutdown(wait=False, cancel_futures=True)
