"""
Proving backend adapters.

The production backend drives the circom witness calculator and snarkjs
Groth16 through subprocesses, exchanging JSON files in a private temporary
directory per call.
"""

import json
import logging
import subprocess
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .artifacts import CircuitArtifacts, VerificationKey
from .circuit import VoteCircuitInput
from .errors import ProvingBackendError, WitnessGenerationError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    returncode: int
    stdout: str
    stderr: str
    elapsed: float
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class CommandRunner:
    """Runs external tools, capturing output and timing"""

    def __init__(self, default_timeout: Optional[float] = None):
        self.default_timeout = default_timeout

    def run(self, cmd: Sequence[str], desc: str = "", timeout: Optional[float] = None,
            input: Optional[str] = None, cwd: Optional[Path] = None) -> CommandResult:
        timeout = timeout if timeout is not None else self.default_timeout
        logger.debug(f"{desc or cmd[0]}: {' '.join(str(c) for c in cmd)}")

        start = time.time()
        try:
            result = subprocess.run(
                [str(c) for c in cmd],
                capture_output=True,
                text=True,
                input=input,
                timeout=timeout,
                cwd=str(cwd) if cwd else None,
            )
        except FileNotFoundError as e:
            logger.error(f"{desc or cmd[0]}: command not found ({e})")
            return CommandResult(127, "", str(e), time.time() - start)
        except subprocess.TimeoutExpired:
            elapsed = time.time() - start
            logger.error(f"{desc or cmd[0]}: timed out after {elapsed:.1f}s")
            return CommandResult(-1, "", f"timed out after {timeout}s", elapsed, timed_out=True)

        elapsed = time.time() - start
        if result.returncode != 0:
            logger.error(f"{desc or cmd[0]} failed with exit code {result.returncode}")
            if result.stderr:
                logger.debug(f"stderr: {result.stderr.strip()}")
        else:
            logger.debug(f"{desc or cmd[0]} completed in {elapsed:.2f}s")

        return CommandResult(result.returncode, result.stdout, result.stderr, elapsed)


# ============================================================================
# BACKEND INTERFACE
# ============================================================================


class ProvingBackend(ABC):
    """Groth16 prove/verify for the vote circuit

    `prove` runs blocking and is executed inside the prover's worker pool.
    """

    @abstractmethod
    def prove(self, circuit_input: VoteCircuitInput) -> Tuple[Dict[str, Any], List[str]]:
        """Return (proof, public_signals) for a satisfying witness"""

    @abstractmethod
    def verify(self, vkey: VerificationKey, proof: Dict[str, Any],
               public_signals: List[str]) -> bool:
        """Return True only if the proof verifies for these signals"""


class SnarkjsBackend(ProvingBackend):

    def __init__(self, artifacts: CircuitArtifacts, runner: Optional[CommandRunner] = None,
                 node_bin: str = "node", snarkjs_bin: str = "snarkjs",
                 command_timeout: Optional[float] = None):
        self.artifacts = artifacts
        self.runner = runner or CommandRunner()
        self.node_bin = node_bin
        self.snarkjs_bin = snarkjs_bin
        self.command_timeout = command_timeout

    def prove(self, circuit_input: VoteCircuitInput) -> Tuple[Dict[str, Any], List[str]]:
        with tempfile.TemporaryDirectory(prefix="zkvote-") as temp_dir:
            temp_path = Path(temp_dir)
            input_file = temp_path / "input.json"
            wtns_file = temp_path / "witness.wtns"
            proof_file = temp_path / "proof.json"
            public_file = temp_path / "public.json"

            input_file.write_text(json.dumps(circuit_input.to_witness_input()))
            input_file.chmod(0o600)

            result = self.runner.run(
                [self.node_bin, self.artifacts.witness_script,
                 self.artifacts.wasm_file, input_file, wtns_file],
                desc="witness generation",
                timeout=self.command_timeout,
            )
            if result.timed_out:
                raise ProvingBackendError("Witness generation timed out")
            if not result.ok:
                raise WitnessGenerationError(
                    f"Witness generation failed: {result.stderr.strip()[:500]}")

            result = self.runner.run(
                [self.snarkjs_bin, "groth16", "prove",
                 self.artifacts.zkey_file, wtns_file, proof_file, public_file],
                desc="groth16 prove",
                timeout=self.command_timeout,
            )
            if not result.ok:
                raise ProvingBackendError(
                    f"Proof generation failed: {result.stderr.strip()[:500]}")

            try:
                proof = json.loads(proof_file.read_text())
                public_signals = json.loads(public_file.read_text())
            except (OSError, ValueError) as e:
                raise ProvingBackendError(f"Unreadable prover output: {e}") from e

        logger.debug(f"groth16 prove produced {len(public_signals)} public signals")
        return proof, public_signals

    def verify(self, vkey: VerificationKey, proof: Dict[str, Any],
               public_signals: List[str]) -> bool:
        with tempfile.TemporaryDirectory(prefix="zkvote-") as temp_dir:
            temp_path = Path(temp_dir)
            vkey_file = temp_path / "vkey.json"
            public_file = temp_path / "public.json"
            proof_file = temp_path / "proof.json"

            vkey_file.write_text(vkey.to_json())
            public_file.write_text(json.dumps(public_signals))
            proof_file.write_text(json.dumps(proof))

            result = self.runner.run(
                [self.snarkjs_bin, "groth16", "verify", vkey_file, public_file, proof_file],
                desc="groth16 verify",
                timeout=self.command_timeout,
            )

        if result.timed_out:
            raise ProvingBackendError("Verification timed out")
        if result.returncode == 127:
            raise ProvingBackendError(f"snarkjs unavailable: {result.stderr}")
        return result.returncode == 0 and "OK" in result.stdout
