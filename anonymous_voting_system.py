#!/usr/bin/env python3
"""
Anonymous Vote Casting Service
==============================
Election checks -> Groth16 vote proof -> verification -> atomic nullifier
claim and vote record. The voter identity never leaves this process: only
the nullifier and the candidate commitment are stored.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

from ballots.elections import ElectionDirectory, check_election, directory_from_config
from ballots.nullifier_ledger import NullifierLedger
from ballots.store import VoteRecord, VoteStore, create_store
from config.config import SystemConfig
from utils.utils import PerformanceMonitor, get_system_info, short_hash
from zk.artifacts import CircuitArtifacts, VerificationKeyCache
from zk.backend import CommandRunner, ProvingBackend, SnarkjsBackend
from zk.circuit import VoteCircuit, coerce_identifier
from zk.errors import (
    DuplicateNullifierError, ErrorKind, VerificationFailedError, VoteError, ZKError,
)
from zk.poseidon import PoseidonHasher, get_hasher
from zk.prover import VoteProofGenerator
from zk.setup_pipeline import SetupPipeline
from zk.verifier import VoteProofVerifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CastVoteResult:
    success: bool
    vote_id: Optional[str] = None
    nullifier_hash: Optional[int] = None
    verified: bool = False
    error: Optional[VoteError] = None

    def to_response(self) -> Tuple[Dict[str, Any], int]:
        """Wire form and HTTP status"""
        if self.success:
            return {
                "success": True,
                "voteId": self.vote_id,
                "zkpProof": {
                    "nullifierHash": str(self.nullifier_hash),
                    "verified": self.verified,
                },
            }, 200
        return {"success": False, "error": self.error.to_dict()}, self.error.http_status


class AnonymousVotingSystem:
    """Wires the hasher, prover, verifier and ledger into the cast-vote flow"""

    def __init__(self, config: SystemConfig, store: Optional[VoteStore] = None,
                 elections: Optional[ElectionDirectory] = None,
                 backend: Optional[ProvingBackend] = None,
                 hasher: Optional[PoseidonHasher] = None):
        self.config = config
        zk_config = config.zk_config

        logger.info("Initializing anonymous voting system...")

        self.hasher = hasher or get_hasher()
        self.circuit = VoteCircuit(self.hasher)
        self.artifacts = CircuitArtifacts(
            zk_config.build_dir, zk_config.circuit_name, zk_config.ptau_file)
        self.backend = backend or SnarkjsBackend(
            self.artifacts,
            runner=CommandRunner(default_timeout=zk_config.command_timeout),
            node_bin=zk_config.node_bin,
            snarkjs_bin=zk_config.snarkjs_bin,
            command_timeout=zk_config.proof_timeout,
        )

        self.store = store or create_store(config.ledger_config)
        self.ledger = NullifierLedger(self.store)
        # without an injected directory only configured elections accept votes
        self.elections = (elections if elections is not None
                          else directory_from_config(config.elections))

        self.prover = VoteProofGenerator(
            self.circuit, self.backend, self.artifacts, ledger=self.ledger,
            max_concurrent_proofs=zk_config.max_concurrent_proofs,
            proof_timeout=zk_config.proof_timeout,
        )
        self.verifier = VoteProofVerifier(self.backend, VerificationKeyCache(self.artifacts))
        self.monitor = PerformanceMonitor(max_metrics=config.metrics_window)

        logger.info(f"Voting system ready (max {zk_config.max_concurrent_proofs} "
                    f"concurrent proofs, timeout {zk_config.proof_timeout}s)")

    # ------------------------------------------------------------------
    # Casting
    # ------------------------------------------------------------------

    async def cast_vote(self, voter_id: Union[int, str], candidate_id: Union[int, str],
                        election_id: Union[int, str]) -> CastVoteResult:
        """Prove, verify and record one vote; errors come back as values"""
        with self.monitor.start_operation("cast_vote"):
            try:
                return await self._cast_vote(voter_id, candidate_id, election_id)
            except ZKError as e:
                error = e.to_vote_error()
                self._log_rejection(error, election_id)
                return CastVoteResult(success=False, error=error)

    async def _cast_vote(self, voter_id, candidate_id, election_id) -> CastVoteResult:
        voter_id = coerce_identifier(voter_id, "voterId")
        candidate_id = coerce_identifier(candidate_id, "candidateId")
        election_id = coerce_identifier(election_id, "electionId")

        check_election(self.elections, election_id, candidate_id)

        with self.monitor.start_operation("generate_proof"):
            vote_proof = await self.prover.generate_vote_proof(voter_id, candidate_id, election_id)

        with self.monitor.start_operation("verify_proof"):
            verification = await self.verifier.verify_async(vote_proof.proof, vote_proof.public_signals)
        if not verification.valid:
            raise VerificationFailedError("Freshly generated proof failed verification")

        record = VoteRecord(
            election_id=election_id,
            nullifier_hash=vote_proof.nullifier_hash,
            commitment_hash=vote_proof.commitment_hash,
            proof=vote_proof.proof,
            public_signals=vote_proof.public_signals,
        )
        result = await asyncio.to_thread(self.ledger.record_vote, record)
        if not result.inserted:
            raise DuplicateNullifierError()

        return CastVoteResult(
            success=True,
            vote_id=result.vote_id,
            nullifier_hash=vote_proof.nullifier_hash,
            verified=True,
        )

    @staticmethod
    def _log_rejection(error: VoteError, election_id):
        if error.kind == ErrorKind.ALREADY_VOTED:
            logger.warning(f"Double vote attempt rejected for election {election_id}")
        elif error.kind == ErrorKind.VERIFICATION_FAILED:
            logger.error(f"SECURITY: vote rejected by verifier for election {election_id}: {error.detail}")
        elif error.kind in (ErrorKind.ARTIFACT_MISSING, ErrorKind.PROVING_BACKEND_ERROR,
                            ErrorKind.WITNESS_GENERATION_FAILED, ErrorKind.STORAGE_UNAVAILABLE):
            logger.error(f"Vote for election {election_id} failed ({error.kind.value}): {error.detail}")
        else:
            logger.info(f"Vote for election {election_id} refused ({error.kind.value}): {error.message}")

    # ------------------------------------------------------------------
    # Verification and statistics
    # ------------------------------------------------------------------

    async def verify_vote(self, proof: Any, public_signals: Any,
                          election_id: Optional[Union[int, str]] = None) -> Dict[str, Any]:
        """Verify a submitted proof; with an election, also report whether it was recorded"""
        result = await self.verifier.verify_async(proof, public_signals)
        response: Dict[str, Any] = {"valid": result.valid}

        if not result.valid:
            response["error"] = result.error
            return response

        response["nullifierHash"] = str(result.nullifier_hash)
        response["commitmentHash"] = str(result.commitment_hash)

        if election_id is not None:
            election_id = coerce_identifier(election_id, "electionId")
            response["recorded"] = await asyncio.to_thread(
                self.ledger.is_consumed, election_id, result.nullifier_hash)
        return response

    async def election_stats(self, election_id: Union[int, str], reverify: bool = False) -> Dict[str, Any]:
        """Vote counts for an election; `reverify` re-checks every stored proof"""
        election_id = coerce_identifier(election_id, "electionId")
        total = await asyncio.to_thread(self.store.count_votes, election_id)
        unique = await asyncio.to_thread(self.ledger.consumed_count, election_id)

        if reverify:
            records = await asyncio.to_thread(self.store.votes_for_election, election_id)
            results = await self.verifier.batch_verify(
                [{"proof": r.proof, "publicSignals": r.public_signals} for r in records])
            verified = sum(1 for r in results if r.valid)
            if verified != total:
                logger.error(f"SECURITY: {total - verified} stored votes in election "
                             f"{election_id} failed re-verification")
        else:
            # only verified votes are ever stored
            verified = total

        return {
            "totalZKPVotes": total,
            "verifiedVotes": verified,
            "uniqueVoters": unique,
            "integrityScore": (verified / total) * 100 if total > 0 else 0,
        }

    def setup_status(self) -> Dict[str, Any]:
        return SetupPipeline(self.config.zk_config, self.artifacts).status()

    def get_system_metrics(self) -> Dict[str, Any]:
        summary = self.monitor.get_summary()
        summary['system'] = get_system_info()
        return summary

    def close(self):
        self.prover.close()
        self.store.close()
        logger.info("Voting system closed")


async def run_demo(system: AnonymousVotingSystem, election_id: int, candidate_id: int,
                   voter_ids) -> Dict[str, Any]:
    """Cast one vote per voter, then a repeat vote from the first voter"""
    outcomes = []
    for voter_id in voter_ids:
        result = await system.cast_vote(voter_id, candidate_id, election_id)
        outcomes.append(result.to_response()[0])
        if result.success:
            logger.info(f"Demo vote recorded (nullifier {short_hash(result.nullifier_hash)})")

    repeat = await system.cast_vote(voter_ids[0], candidate_id, election_id)
    outcomes.append(repeat.to_response()[0])

    return {
        "votes": outcomes,
        "stats": await system.election_stats(election_id, reverify=True),
    }
