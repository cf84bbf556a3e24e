"""
Circuit artifact layout and integrity checks.

An artifact is usable only if it exists and meets a minimum size; anything
smaller is treated as a truncated or placeholder file and the owning setup
stage is considered incomplete.
"""

import hashlib
import json
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from .circuit import CIRCUIT_NAME, PUBLIC_SIGNAL_NAMES
from .errors import CircuitArtifactMissingError

logger = logging.getLogger(__name__)

PTAU_MIN_BYTES = 4 * 1024 * 1024

EXPECTED_PROTOCOL = "groth16"
EXPECTED_CURVE = "bn128"


class SetupStage(Enum):
    POWERS_OF_TAU = "powers_of_tau"
    CIRCUIT_COMPILED = "circuit_compiled"
    KEYS_GENERATED = "keys_generated"
    VERIFICATION_KEY_EXPORTED = "verification_key_exported"


SETUP_STAGES = [
    SetupStage.POWERS_OF_TAU,
    SetupStage.CIRCUIT_COMPILED,
    SetupStage.KEYS_GENERATED,
    SetupStage.VERIFICATION_KEY_EXPORTED,
]


@dataclass(frozen=True)
class ArtifactSpec:
    stage: SetupStage
    label: str
    path: Path
    min_bytes: int


@dataclass
class ArtifactStatus:
    label: str
    path: Path
    exists: bool
    size: int
    min_bytes: int

    @property
    def valid(self) -> bool:
        return self.exists and self.size >= self.min_bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "exists": self.exists,
            "size": self.size,
            "min_bytes": self.min_bytes,
            "valid": self.valid,
        }


def file_digest(path: Path) -> str:
    """Compute Blake2b hash of file"""
    h = hashlib.blake2b()
    with open(path, 'rb') as f:
        while chunk := f.read(8192):
            h.update(chunk)
    return h.hexdigest()


class CircuitArtifacts:
    """Paths of every artifact produced by the setup pipeline"""

    def __init__(self, build_dir: Path, circuit_name: str = CIRCUIT_NAME,
                 ptau_file: Optional[Path] = None):
        self.build_dir = Path(build_dir)
        self.circuit_name = circuit_name
        self.circuit_dir = self.build_dir / circuit_name
        self.ptau_file = Path(ptau_file) if ptau_file else self.build_dir / "powersoftau.ptau"

    @property
    def r1cs_file(self) -> Path:
        return self.circuit_dir / f"{self.circuit_name}.r1cs"

    @property
    def sym_file(self) -> Path:
        return self.circuit_dir / f"{self.circuit_name}.sym"

    @property
    def js_dir(self) -> Path:
        return self.circuit_dir / f"{self.circuit_name}_js"

    @property
    def wasm_file(self) -> Path:
        return self.js_dir / f"{self.circuit_name}.wasm"

    @property
    def witness_script(self) -> Path:
        return self.js_dir / "generate_witness.js"

    @property
    def zkey_file(self) -> Path:
        return self.circuit_dir / f"{self.circuit_name}_final.zkey"

    @property
    def vkey_file(self) -> Path:
        return self.circuit_dir / "verification_key.json"

    def specs(self) -> List[ArtifactSpec]:
        return [
            ArtifactSpec(SetupStage.POWERS_OF_TAU, "ptau", self.ptau_file, PTAU_MIN_BYTES),
            ArtifactSpec(SetupStage.CIRCUIT_COMPILED, "r1cs", self.r1cs_file, 100),
            ArtifactSpec(SetupStage.CIRCUIT_COMPILED, "wasm", self.wasm_file, 1000),
            ArtifactSpec(SetupStage.CIRCUIT_COMPILED, "sym", self.sym_file, 10),
            ArtifactSpec(SetupStage.KEYS_GENERATED, "zkey", self.zkey_file, 1000),
            ArtifactSpec(SetupStage.VERIFICATION_KEY_EXPORTED, "vkey", self.vkey_file, 100),
        ]

    def specs_for(self, stage: SetupStage) -> List[ArtifactSpec]:
        return [spec for spec in self.specs() if spec.stage == stage]

    @staticmethod
    def check(spec: ArtifactSpec) -> ArtifactStatus:
        try:
            exists = spec.path.is_file()
            size = spec.path.stat().st_size if exists else 0
        except OSError:
            exists, size = False, 0
        return ArtifactStatus(spec.label, spec.path, exists, size, spec.min_bytes)

    def stage_status(self, stage: SetupStage) -> List[ArtifactStatus]:
        return [self.check(spec) for spec in self.specs_for(stage)]

    def is_stage_complete(self, stage: SetupStage) -> bool:
        return all(status.valid for status in self.stage_status(stage))

    def invalid_artifacts(self, stage: SetupStage) -> List[ArtifactStatus]:
        return [status for status in self.stage_status(stage) if not status.valid]

    def missing_for_proving(self) -> List[ArtifactStatus]:
        """Invalid artifacts among those the prover and verifier read"""
        needed = {"wasm", "zkey", "vkey"}
        statuses = [self.check(spec) for spec in self.specs() if spec.label in needed]
        return [status for status in statuses if not status.valid]

    def require_proving_artifacts(self) -> None:
        missing = self.missing_for_proving()
        if missing:
            names = ", ".join(f"{status.label} ({status.path})" for status in missing)
            raise CircuitArtifactMissingError(f"Missing or undersized artifacts: {names}")

    def status(self) -> Dict[str, Any]:
        """Per-stage report of every artifact"""
        report: Dict[str, Any] = {"circuit": self.circuit_name, "stages": {}}
        for stage in SETUP_STAGES:
            statuses = self.stage_status(stage)
            report["stages"][stage.value] = {
                "complete": all(s.valid for s in statuses),
                "artifacts": {s.label: s.to_dict() for s in statuses},
            }
        report["ready"] = all(v["complete"] for v in report["stages"].values())
        return report


# ============================================================================
# VERIFICATION KEY
# ============================================================================


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class VerificationKey:
    """Immutable, validated copy of a snarkjs verification key"""
    data: Mapping[str, Any]
    digest: str

    @property
    def n_public(self) -> int:
        return self.data["nPublic"]

    def to_json(self) -> str:
        return json.dumps(_thaw(self.data))


def parse_verification_key(raw: Any, expected_public: int = len(PUBLIC_SIGNAL_NAMES)) -> VerificationKey:
    if not isinstance(raw, dict):
        raise CircuitArtifactMissingError("Verification key is not a JSON object")

    for key in ("protocol", "curve", "nPublic"):
        if key not in raw:
            raise CircuitArtifactMissingError(f"Verification key missing '{key}'")

    if raw["protocol"] != EXPECTED_PROTOCOL:
        raise CircuitArtifactMissingError(
            f"Unexpected verification key protocol: {raw['protocol']}")
    if raw["curve"] != EXPECTED_CURVE:
        raise CircuitArtifactMissingError(
            f"Unexpected verification key curve: {raw['curve']}")
    if raw["nPublic"] != expected_public:
        raise CircuitArtifactMissingError(
            f"Verification key expects {raw['nPublic']} public signals, circuit has {expected_public}")

    canonical = json.dumps(raw, sort_keys=True).encode()
    return VerificationKey(data=_freeze(raw), digest=hashlib.sha256(canonical).hexdigest())


class VerificationKeyCache:
    """Loads the verification key once and hands out the same immutable copy"""

    def __init__(self, artifacts: CircuitArtifacts):
        self.artifacts = artifacts
        self._lock = threading.Lock()
        self._vkey: Optional[VerificationKey] = None

    def get(self) -> VerificationKey:
        with self._lock:
            if self._vkey is None:
                self._vkey = self._load()
            return self._vkey

    def _load(self) -> VerificationKey:
        spec = self.artifacts.specs_for(SetupStage.VERIFICATION_KEY_EXPORTED)[0]
        status = self.artifacts.check(spec)
        if not status.valid:
            raise CircuitArtifactMissingError(
                f"Verification key missing or undersized: {status.path}")

        try:
            raw = json.loads(status.path.read_text())
        except (OSError, ValueError) as e:
            raise CircuitArtifactMissingError(f"Verification key unreadable: {e}") from e

        vkey = parse_verification_key(raw)
        logger.info(f"Loaded verification key {status.path} (sha256 {vkey.digest[:16]})")
        return vkey
