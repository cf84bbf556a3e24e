"""
Shared fixtures.

`RelationCheckingBackend` stands in for circom + snarkjs: it evaluates the
vote relation with the real Poseidon hasher and binds the public signals with
an HMAC, so a proof only verifies for the exact signals it was issued with.
"""

import hashlib
import hmac
import json
import sqlite3
import sys
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from anonymous_voting_system import AnonymousVotingSystem
from ballots.elections import Election, InMemoryElectionDirectory
from ballots.store import SQLiteVoteStore
from config.config import LedgerConfig, SystemConfig, ZKConfig
from zk.artifacts import CircuitArtifacts
from zk.backend import ProvingBackend
from zk.circuit import VoteCircuit
from zk.poseidon import PoseidonHasher

ELECTION_ID = 789
CANDIDATES = (456, 457, 458)


class RelationCheckingBackend(ProvingBackend):

    def __init__(self, hasher, delay: float = 0.0, corrupt_signals: bool = False,
                 key: bytes = b"relation-checking-backend"):
        self.circuit = VoteCircuit(hasher)
        self.delay = delay
        self.corrupt_signals = corrupt_signals
        self.key = key
        self.proved = []
        self.verify_calls = 0
        self._lock = threading.Lock()

    def _tag(self, public_signals):
        digest = hmac.new(self.key, json.dumps(list(public_signals)).encode(), hashlib.sha512).hexdigest()
        return [str(int(digest[i:i + 32], 16)) for i in range(0, 128, 32)]

    def prove(self, circuit_input):
        if self.delay:
            time.sleep(self.delay)
        signals = self.circuit.evaluate(circuit_input).to_list()
        with self._lock:
            self.proved.append(circuit_input)
        if self.corrupt_signals:
            signals = [signals[0], str(int(signals[1]) ^ 1)]

        tag = self._tag(signals)
        proof = {
            "pi_a": [tag[0], tag[1], "1"],
            "pi_b": [[tag[2], tag[3]], [tag[1], tag[0]], ["1", "0"]],
            "pi_c": [tag[3], tag[2], "1"],
            "protocol": "groth16",
            "curve": "bn128",
        }
        return proof, signals

    def verify(self, vkey, proof, public_signals):
        with self._lock:
            self.verify_calls += 1
        tag = self._tag(public_signals)
        return proof["pi_a"][:2] == tag[:2] and proof["pi_c"][:2] == [tag[3], tag[2]]


class WriteDeniedStore(SQLiteVoteStore):
    """SQLite store whose connections refuse INSERTs once `deny_writes` is set"""

    deny_writes = False

    def _connect(self):
        conn = super()._connect()
        if self.deny_writes:
            conn.set_authorizer(
                lambda action, *args: sqlite3.SQLITE_DENY if action == sqlite3.SQLITE_INSERT
                else sqlite3.SQLITE_OK)
        return conn


VKEY = {
    "protocol": "groth16",
    "curve": "bn128",
    "nPublic": 2,
    "vk_alpha_1": [
        "20491192805390485299153009773594534940189261866228447918068658471970481763042",
        "9383485363053290200918347156157836566562967994039712273449902621266178545958",
        "1",
    ],
    "IC": [["1", "2", "1"], ["3", "4", "1"], ["5", "6", "1"]],
}


def write_proving_artifacts(build_dir: Path, vkey=None) -> CircuitArtifacts:
    artifacts = CircuitArtifacts(build_dir)
    artifacts.js_dir.mkdir(parents=True, exist_ok=True)
    artifacts.wasm_file.write_bytes(b"\0asm" + b"\1" * 2000)
    artifacts.witness_script.write_text("// witness calculator\n")
    artifacts.zkey_file.write_bytes(b"zkey" + b"\2" * 4000)
    artifacts.vkey_file.write_text(json.dumps(VKEY if vkey is None else vkey, indent=2))
    return artifacts


@pytest.fixture(scope="session")
def hasher():
    return PoseidonHasher()


@pytest.fixture
def build_dir(tmp_path):
    return tmp_path / "build"


@pytest.fixture
def artifacts(build_dir):
    return write_proving_artifacts(build_dir)


@pytest.fixture
def backend(hasher):
    return RelationCheckingBackend(hasher)


@pytest.fixture
def system_config(tmp_path, artifacts):
    return SystemConfig(
        zk_config=ZKConfig(
            build_dir=artifacts.build_dir,
            circuit_dir=tmp_path / "circuits",
            proof_timeout=5.0,
            max_concurrent_proofs=4,
        ),
        ledger_config=LedgerConfig(backend="sqlite", database_path=tmp_path / "votes.db"),
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def elections():
    now = datetime.now(timezone.utc)
    return InMemoryElectionDirectory([
        Election(ELECTION_ID, now - timedelta(hours=1), now + timedelta(hours=1),
                 frozenset(CANDIDATES)),
        Election(790, now - timedelta(days=2), now - timedelta(days=1),
                 frozenset(CANDIDATES)),
    ])


@pytest.fixture
def system(system_config, elections, backend, hasher):
    voting_system = AnonymousVotingSystem(
        system_config, elections=elections, backend=backend, hasher=hasher)
    yield voting_system
    voting_system.close()
