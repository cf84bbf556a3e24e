"""
Vote proof verification.

Verification fails closed: any malformed input, missing key material or
backend failure yields an invalid result with a generic error, never an
exception and never a default "valid".
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from utils.utils import short_hash
from .artifacts import VerificationKeyCache
from .backend import ProvingBackend
from .circuit import PublicSignals
from .errors import ZKError

logger = logging.getLogger(__name__)

INVALID_PROOF = "invalid proof"

G1_KEYS = ("pi_a", "pi_c")


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    nullifier_hash: Optional[int] = None
    commitment_hash: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def rejected(cls) -> "VerificationResult":
        return cls(valid=False, error=INVALID_PROOF)


def check_proof_shape(proof: Any) -> Dict[str, Any]:
    """Structural check of a snarkjs Groth16 proof object"""
    if not isinstance(proof, dict):
        raise ValueError("proof is not an object")
    for key in ("pi_a", "pi_b", "pi_c"):
        if key not in proof:
            raise ValueError(f"proof missing {key}")
    for key in G1_KEYS:
        point = proof[key]
        if not isinstance(point, list) or len(point) < 2:
            raise ValueError(f"{key} is not a G1 point")
        if not all(isinstance(c, str) and c.isdigit() for c in point):
            raise ValueError(f"{key} has non-decimal coordinates")
    pi_b = proof["pi_b"]
    if not isinstance(pi_b, list) or len(pi_b) < 2:
        raise ValueError("pi_b is not a G2 point")
    for pair in pi_b:
        if not isinstance(pair, list) or not all(isinstance(c, str) and c.isdigit() for c in pair):
            raise ValueError("pi_b has non-decimal coordinates")
    if proof.get("protocol", "groth16") != "groth16":
        raise ValueError("proof is not groth16")
    if proof.get("curve", "bn128") != "bn128":
        raise ValueError("proof is not on bn128")
    return proof


class VoteProofVerifier:
    """Checks vote proofs against the exported verification key"""

    def __init__(self, backend: ProvingBackend, vkey_cache: VerificationKeyCache):
        self.backend = backend
        self.vkey_cache = vkey_cache

    def verify_vote_proof(self, proof: Any, public_signals: Any) -> VerificationResult:
        start = time.time()
        try:
            check_proof_shape(proof)
            signals = PublicSignals.from_list(public_signals)
            vkey = self.vkey_cache.get()
            valid = self.backend.verify(vkey, proof, signals.to_list())
        except ZKError as e:
            logger.warning(f"Verification unavailable: {e}")
            return VerificationResult.rejected()
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"Malformed proof submission: {e}")
            return VerificationResult.rejected()
        except OSError as e:
            logger.warning(f"Verification backend error: {e}")
            return VerificationResult.rejected()

        elapsed = time.time() - start
        if not valid:
            logger.error(f"SECURITY: proof rejected by verifier "
                         f"(nullifier {short_hash(signals.nullifier_hash)})")
            return VerificationResult.rejected()

        logger.info(f"Verified vote proof (nullifier {short_hash(signals.nullifier_hash)}) "
                    f"in {elapsed:.3f}s")
        return VerificationResult(
            valid=True,
            nullifier_hash=signals.nullifier_hash,
            commitment_hash=signals.commitment_hash,
        )

    async def verify_async(self, proof: Any, public_signals: Any) -> VerificationResult:
        return await asyncio.to_thread(self.verify_vote_proof, proof, public_signals)

    async def batch_verify(self, submissions: Sequence[Dict[str, Any]]) -> List[VerificationResult]:
        """Verify many `{proof, publicSignals}` submissions in parallel"""
        tasks = [
            self.verify_async(item.get("proof"), item.get("publicSignals"))
            if isinstance(item, dict) else asyncio.sleep(0, VerificationResult.rejected())
            for item in submissions
        ]
        return list(await asyncio.gather(*tasks))
