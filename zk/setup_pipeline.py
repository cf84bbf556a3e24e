"""
Trusted setup and key material pipeline.

Stages run in order: powers of tau, circuit compilation, Groth16 key
generation with phase-2 contributions, verification key export. A stage whose
artifacts are already present and well-formed is skipped, so an interrupted
setup resumes at the first incomplete stage.
"""

import hashlib
import json
import logging
import re
import secrets
import shutil
import time
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from config.config import ZKConfig
from utils.utils import check_command_exists, format_bytes, format_duration
from .artifacts import (
    SETUP_STAGES, CircuitArtifacts, SetupStage, file_digest, parse_verification_key,
)
from .backend import CommandRunner
from .circuit import VoteCircuit, write_circuit_source
from .errors import CircuitArtifactMissingError, CircuitCompilationError, TrustedSetupError

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK = 1024 * 1024


class SetupPipeline:
    """Builds every artifact the prover and verifier need"""

    def __init__(self, config: ZKConfig, artifacts: Optional[CircuitArtifacts] = None,
                 runner: Optional[CommandRunner] = None,
                 session: Optional[requests.Session] = None):
        self.config = config
        self.artifacts = artifacts or CircuitArtifacts(
            config.build_dir, config.circuit_name, config.ptau_file)
        self.runner = runner or CommandRunner(default_timeout=config.command_timeout)
        self.session = session or requests.Session()
        self.transcript: Dict[str, Any] = {}

        self._stage_handlers = {
            SetupStage.POWERS_OF_TAU: self._powers_of_tau,
            SetupStage.CIRCUIT_COMPILED: self._compile_circuit,
            SetupStage.KEYS_GENERATED: self._generate_keys,
            SetupStage.VERIFICATION_KEY_EXPORTED: self._export_verification_key,
        }

    def run(self, force: bool = False) -> Dict[str, str]:
        """Run incomplete stages; returns {stage: "skipped" | "completed"}"""
        self.artifacts.circuit_dir.mkdir(parents=True, exist_ok=True)
        outcome = {}

        for stage in SETUP_STAGES:
            if not force and self.artifacts.is_stage_complete(stage):
                logger.info(f"Stage {stage.value}: artifacts present, skipping")
                outcome[stage.value] = "skipped"
                continue

            self._run_stage(stage)
            outcome[stage.value] = "completed"

        logger.info(f"Setup complete for circuit '{self.artifacts.circuit_name}'")
        return outcome

    def _run_stage(self, stage: SetupStage):
        error_cls = CircuitCompilationError if stage == SetupStage.CIRCUIT_COMPILED else TrustedSetupError
        logger.info(f"Stage {stage.value}: running")
        start = time.time()

        try:
            self._stage_handlers[stage]()
        except CircuitArtifactMissingError:
            self._remove_stage_outputs(stage)
            raise
        except (OSError, ValueError) as e:
            self._remove_stage_outputs(stage)
            raise error_cls(f"Stage {stage.value} failed: {e}") from e

        invalid = self.artifacts.invalid_artifacts(stage)
        if invalid:
            self._remove_stage_outputs(stage)
            details = ", ".join(
                f"{s.label} at {s.path} ({'missing' if not s.exists else format_bytes(s.size) + ' < ' + format_bytes(s.min_bytes)})"
                for s in invalid
            )
            raise error_cls(f"Stage {stage.value} left invalid artifacts: {details}")

        logger.info(f"Stage {stage.value}: done in {format_duration(time.time() - start)}")

    def _remove_stage_outputs(self, stage: SetupStage):
        for spec in self.artifacts.specs_for(stage):
            if spec.path.exists():
                spec.path.unlink()
                logger.warning(f"Removed partial artifact {spec.path}")
        if stage == SetupStage.KEYS_GENERATED:
            self._remove_intermediate_zkeys()

    def _require_ok(self, result, error_cls, message: str):
        if not result.ok:
            detail = (result.stderr or result.stdout).strip()[:500]
            raise error_cls(f"{message}: {detail}")

    # ------------------------------------------------------------------
    # Powers of tau
    # ------------------------------------------------------------------

    def _powers_of_tau(self):
        ptau_file = self.artifacts.ptau_file
        ptau_file.parent.mkdir(parents=True, exist_ok=True)

        errors = []
        for url in self.config.resolved_ptau_urls():
            try:
                self._download(url, ptau_file)
                self._check_ptau_digest(ptau_file)
                return
            except (requests.RequestException, OSError, TrustedSetupError) as e:
                logger.warning(f"Powers of tau source failed ({url}): {e}")
                errors.append(str(e))
                ptau_file.unlink(missing_ok=True)

        if self.config.allow_dev_ptau:
            logger.warning("Generating a local powers of tau file; NOT for production")
            self._generate_dev_ptau(ptau_file)
            return

        raise TrustedSetupError(
            f"All powers of tau sources failed: {'; '.join(errors) or 'no sources configured'}")

    def _download(self, url: str, destination: Path):
        logger.info(f"Downloading powers of tau (2^{self.config.ptau_power}) from {url}")
        partial = destination.with_suffix(destination.suffix + ".part")
        try:
            with self.session.get(url, stream=True, timeout=(10, 300)) as response:
                response.raise_for_status()
                with open(partial, 'wb') as f:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK):
                        if chunk:
                            f.write(chunk)
            partial.replace(destination)
        finally:
            partial.unlink(missing_ok=True)

        logger.info(f"Downloaded {format_bytes(destination.stat().st_size)} to {destination}")

    def _check_ptau_digest(self, ptau_file: Path):
        expected = self.config.ptau_blake2b
        if not expected:
            logger.warning(f"No known digest for ptau power {self.config.ptau_power}, skipping check")
            return
        actual = file_digest(ptau_file)
        if actual != expected.lower():
            raise TrustedSetupError(f"Powers of tau digest mismatch: got {actual[:16]}...")
        logger.info("Powers of tau digest verified")

    def _generate_dev_ptau(self, ptau_file: Path):
        snarkjs = self.config.snarkjs_bin
        work_dir = ptau_file.parent
        pot_0 = work_dir / "pot_0000.ptau"
        pot_1 = work_dir / "pot_0001.ptau"

        try:
            result = self.runner.run(
                [snarkjs, "powersoftau", "new", "bn128", str(self.config.ptau_power), pot_0],
                desc="powersoftau new")
            self._require_ok(result, TrustedSetupError, "powersoftau new failed")

            result = self.runner.run(
                [snarkjs, "powersoftau", "contribute", pot_0, pot_1, "--name", "Local dev contribution"],
                desc="powersoftau contribute", input=secrets.token_hex(64) + "\n")
            self._require_ok(result, TrustedSetupError, "powersoftau contribute failed")

            result = self.runner.run(
                [snarkjs, "powersoftau", "prepare", "phase2", pot_1, ptau_file],
                desc="powersoftau prepare phase2")
            self._require_ok(result, TrustedSetupError, "powersoftau prepare phase2 failed")
        finally:
            pot_0.unlink(missing_ok=True)
            pot_1.unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    def _compile_circuit(self):
        circuit_file = write_circuit_source(self.config.circuit_dir, self.artifacts.circuit_name)

        cmd = [
            self.config.circom_bin,
            circuit_file,
            '--r1cs',
            '--wasm',
            '--sym',
            '-o', self.artifacts.circuit_dir,
            '-l', self.config.node_modules_dir,
        ]
        result = self.runner.run(cmd, desc=f"compile {circuit_file.name}")
        self._require_ok(result, CircuitCompilationError, "Compilation failed")

        self._check_constraints()

    def _check_constraints(self):
        """Log the constraint count and check the public output count"""
        if not self.artifacts.r1cs_file.exists():
            return

        result = self.runner.run(
            [self.config.snarkjs_bin, 'r1cs', 'info', self.artifacts.r1cs_file],
            desc="r1cs info")
        if not result.ok:
            logger.warning("Could not read r1cs info")
            return

        constraints = re.search(r'# of Constraints:\s+(\d+)', result.stdout)
        outputs = re.search(r'# of Outputs:\s+(\d+)', result.stdout)
        if constraints:
            logger.info(f"Circuit has {constraints.group(1)} constraints")
        if outputs and int(outputs.group(1)) != VoteCircuit.n_public:
            raise CircuitCompilationError(
                f"Circuit exposes {outputs.group(1)} outputs, expected {VoteCircuit.n_public}")

    # ------------------------------------------------------------------
    # Phase 2 keys
    # ------------------------------------------------------------------

    def _intermediate_zkey(self, index: int) -> Path:
        return self.artifacts.circuit_dir / f"{self.artifacts.circuit_name}_{index:04d}.zkey"

    def _remove_intermediate_zkeys(self):
        for path in self.artifacts.circuit_dir.glob(f"{self.artifacts.circuit_name}_[0-9][0-9][0-9][0-9].zkey"):
            path.unlink(missing_ok=True)

    def _generate_keys(self):
        snarkjs = self.config.snarkjs_bin
        r1cs_file = self.artifacts.r1cs_file
        ptau_file = self.artifacts.ptau_file
        final_zkey = self.artifacts.zkey_file

        zkey_0 = self._intermediate_zkey(0)
        result = self.runner.run(
            [snarkjs, 'groth16', 'setup', r1cs_file, ptau_file, zkey_0],
            desc="groth16 setup")
        self._require_ok(result, TrustedSetupError, "groth16 setup failed")

        current_zkey = zkey_0
        contributions = []
        for i in range(self.config.ceremony_participants):
            next_zkey = self._intermediate_zkey(i + 1)
            entropy = secrets.token_hex(64)
            result = self.runner.run(
                [snarkjs, 'zkey', 'contribute', current_zkey, next_zkey,
                 '--name', f"Contributor_{i + 1}"],
                desc=f"zkey contribute {i + 1}/{self.config.ceremony_participants}",
                input=entropy + '\n')
            self._require_ok(result, TrustedSetupError, f"Contribution {i + 1} failed")

            contributions.append({
                "contributor": i + 1,
                "entropy_hash": hashlib.sha256(entropy.encode()).hexdigest(),
            })
            current_zkey = next_zkey

        beacon = None
        if self.config.apply_beacon:
            beacon = secrets.token_hex(32)
            result = self.runner.run(
                [snarkjs, 'zkey', 'beacon', current_zkey, final_zkey, beacon, '10',
                 '-n', 'Final Beacon Phase2'],
                desc="zkey beacon")
            self._require_ok(result, TrustedSetupError, "Beacon failed")
        else:
            shutil.copyfile(current_zkey, final_zkey)

        if self.config.verify_zkey:
            result = self.runner.run(
                [snarkjs, 'zkey', 'verify', r1cs_file, ptau_file, final_zkey],
                desc="zkey verify")
            if not result.ok or "ZKey Ok!" not in result.stdout:
                raise TrustedSetupError("Final zkey verification failed")

        self._remove_intermediate_zkeys()

        self.transcript = {
            "circuit": self.artifacts.circuit_name,
            "timestamp": time.time(),
            "ptau_power": self.config.ptau_power,
            "participants": self.config.ceremony_participants,
            "contributions": contributions,
            "beacon": beacon,
            "r1cs_blake2b": file_digest(r1cs_file),
            "zkey_blake2b": file_digest(final_zkey),
        }
        transcript_file = self.artifacts.circuit_dir / "ceremony_transcript.json"
        transcript_file.write_text(json.dumps(self.transcript, indent=2))
        logger.info(f"Ceremony transcript written to {transcript_file}")

    def _export_verification_key(self):
        vkey_file = self.artifacts.vkey_file
        result = self.runner.run(
            [self.config.snarkjs_bin, 'zkey', 'export', 'verificationkey',
             self.artifacts.zkey_file, vkey_file],
            desc="export verification key")
        self._require_ok(result, TrustedSetupError, "Verification key export failed")

        try:
            raw = json.loads(vkey_file.read_text())
        except (OSError, ValueError) as e:
            raise TrustedSetupError(f"Exported verification key unreadable: {e}") from e
        try:
            parse_verification_key(raw)
        except CircuitArtifactMissingError as e:
            raise TrustedSetupError(str(e)) from e

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        """Artifact report plus availability of the external tools"""
        report = self.artifacts.status()
        report["tools"] = {
            name: check_command_exists(name)
            for name in (self.config.circom_bin, self.config.snarkjs_bin, self.config.node_bin)
        }
        return report
