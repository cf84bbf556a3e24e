"""
Vote record persistence.

A vote record holds only the proof, its public signals and the two hashes;
neither the voter identity nor the chosen candidate is ever stored. Records
are append-only. The nullifier table carries the uniqueness constraint that
makes double voting impossible even under concurrent submissions.
"""

import json
import logging
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from config.config import LedgerConfig
from zk.errors import VoteStorageError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class VoteRecord:
    election_id: int
    nullifier_hash: int
    commitment_hash: int
    proof: Dict[str, Any]
    public_signals: List[str]
    vote_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "voteId": self.vote_id,
            "electionId": str(self.election_id),
            "nullifierHash": str(self.nullifier_hash),
            "commitmentHash": str(self.commitment_hash),
            "proof": self.proof,
            "publicSignals": list(self.public_signals),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class NullifierRecord:
    election_id: int
    nullifier_hash: int
    reserved_at: datetime


@dataclass(frozen=True)
class InsertResult:
    inserted: bool
    vote_id: Optional[str] = None


class VoteStore(ABC):
    """Durable home of nullifiers and vote records

    Implementations report backend failures as `VoteStorageError`; a claimed
    nullifier is a normal result, never an exception.
    """

    @abstractmethod
    def insert_if_nullifier_absent(self, election_id: int, nullifier_hash: int,
                                   record: VoteRecord) -> InsertResult:
        """Atomically claim the nullifier and append the record; no-op if claimed"""

    @abstractmethod
    def reserve_nullifier(self, election_id: int, nullifier_hash: int) -> bool:
        """Claim a nullifier without a vote record; False if already claimed"""

    @abstractmethod
    def get_nullifier(self, election_id: int, nullifier_hash: int) -> Optional[NullifierRecord]:
        ...

    def has_nullifier(self, election_id: int, nullifier_hash: int) -> bool:
        return self.get_nullifier(election_id, nullifier_hash) is not None

    @abstractmethod
    def get_vote(self, vote_id: str) -> Optional[VoteRecord]:
        ...

    @abstractmethod
    def votes_for_election(self, election_id: int) -> List[VoteRecord]:
        ...

    @abstractmethod
    def count_votes(self, election_id: int) -> int:
        ...

    @abstractmethod
    def count_nullifiers(self, election_id: int) -> int:
        ...

    def close(self):
        pass


# ============================================================================
# IN-MEMORY
# ============================================================================


class InMemoryVoteStore(VoteStore):
    """Lock-protected store for tests and demos"""

    def __init__(self):
        self._lock = threading.Lock()
        self._nullifiers: Dict[Tuple[int, int], datetime] = {}
        self._votes: Dict[str, VoteRecord] = {}

    def insert_if_nullifier_absent(self, election_id, nullifier_hash, record):
        key = (election_id, nullifier_hash)
        with self._lock:
            if key in self._nullifiers:
                return InsertResult(inserted=False)
            self._nullifiers[key] = record.timestamp
            self._votes[record.vote_id] = record
        return InsertResult(inserted=True, vote_id=record.vote_id)

    def reserve_nullifier(self, election_id, nullifier_hash):
        key = (election_id, nullifier_hash)
        with self._lock:
            if key in self._nullifiers:
                return False
            self._nullifiers[key] = utcnow()
            return True

    def get_nullifier(self, election_id, nullifier_hash):
        with self._lock:
            reserved_at = self._nullifiers.get((election_id, nullifier_hash))
        if reserved_at is None:
            return None
        return NullifierRecord(election_id, nullifier_hash, reserved_at)

    def get_vote(self, vote_id):
        with self._lock:
            return self._votes.get(vote_id)

    def votes_for_election(self, election_id):
        with self._lock:
            records = [r for r in self._votes.values() if r.election_id == election_id]
        return sorted(records, key=lambda r: r.timestamp)

    def count_votes(self, election_id):
        with self._lock:
            return sum(1 for r in self._votes.values() if r.election_id == election_id)

    def count_nullifiers(self, election_id):
        with self._lock:
            return sum(1 for (e, _) in self._nullifiers if e == election_id)


# ============================================================================
# SQLITE
# ============================================================================

SCHEMA = """
CREATE TABLE IF NOT EXISTS nullifiers (
    election_id TEXT NOT NULL,
    nullifier_hash TEXT NOT NULL,
    reserved_at TEXT NOT NULL,
    PRIMARY KEY (election_id, nullifier_hash)
);
CREATE TABLE IF NOT EXISTS votes (
    vote_id TEXT PRIMARY KEY,
    election_id TEXT NOT NULL,
    nullifier_hash TEXT NOT NULL,
    commitment_hash TEXT NOT NULL,
    proof TEXT NOT NULL,
    public_signals TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (election_id, nullifier_hash)
);
CREATE INDEX IF NOT EXISTS idx_votes_election ON votes (election_id);
"""


class SQLiteVoteStore(VoteStore):
    """Durable store; one short-lived connection per operation

    Any SQLite failure other than a uniqueness violation (locked database,
    disk I/O, corrupt file) is raised as `VoteStorageError`.
    """

    def __init__(self, database_path: Path, busy_timeout: float = 30.0):
        self.database_path = Path(database_path)
        self.busy_timeout = busy_timeout
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

        with self._session() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)
            conn.commit()
        logger.info(f"Vote store ready at {self.database_path}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.database_path, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            logger.error(f"Cannot open vote store {self.database_path}: {e}")
            raise VoteStorageError(f"Vote store unavailable: {e}") from e

        try:
            yield conn
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            logger.error(f"Vote store error on {self.database_path}: {e}")
            raise VoteStorageError(f"Vote store unavailable: {e}") from e
        finally:
            conn.close()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> VoteRecord:
        return VoteRecord(
            vote_id=row["vote_id"],
            election_id=int(row["election_id"]),
            nullifier_hash=int(row["nullifier_hash"]),
            commitment_hash=int(row["commitment_hash"]),
            proof=json.loads(row["proof"]),
            public_signals=json.loads(row["public_signals"]),
            timestamp=datetime.fromisoformat(row["created_at"]),
        )

    def insert_if_nullifier_absent(self, election_id, nullifier_hash, record):
        try:
            with self._session() as conn, conn:
                conn.execute(
                    "INSERT INTO nullifiers (election_id, nullifier_hash, reserved_at) VALUES (?, ?, ?)",
                    (str(election_id), str(nullifier_hash), record.timestamp.isoformat()))
                conn.execute(
                    "INSERT INTO votes (vote_id, election_id, nullifier_hash, commitment_hash, "
                    "proof, public_signals, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (record.vote_id, str(election_id), str(nullifier_hash),
                     str(record.commitment_hash), json.dumps(record.proof),
                     json.dumps(list(record.public_signals)), record.timestamp.isoformat()))
        except sqlite3.IntegrityError:
            return InsertResult(inserted=False)
        return InsertResult(inserted=True, vote_id=record.vote_id)

    def reserve_nullifier(self, election_id, nullifier_hash):
        try:
            with self._session() as conn, conn:
                conn.execute(
                    "INSERT INTO nullifiers (election_id, nullifier_hash, reserved_at) VALUES (?, ?, ?)",
                    (str(election_id), str(nullifier_hash), utcnow().isoformat()))
        except sqlite3.IntegrityError:
            return False
        return True

    def get_nullifier(self, election_id, nullifier_hash):
        with self._session() as conn:
            row = conn.execute(
                "SELECT reserved_at FROM nullifiers WHERE election_id = ? AND nullifier_hash = ?",
                (str(election_id), str(nullifier_hash))).fetchone()
        if row is None:
            return None
        return NullifierRecord(election_id, nullifier_hash, datetime.fromisoformat(row["reserved_at"]))

    def get_vote(self, vote_id):
        with self._session() as conn:
            row = conn.execute("SELECT * FROM votes WHERE vote_id = ?", (vote_id,)).fetchone()
        return self._row_to_record(row) if row else None

    def votes_for_election(self, election_id):
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM votes WHERE election_id = ? ORDER BY created_at",
                (str(election_id),)).fetchall()
        return [self._row_to_record(row) for row in rows]

    def count_votes(self, election_id):
        with self._session() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM votes WHERE election_id = ?", (str(election_id),)).fetchone()
        return row[0]

    def count_nullifiers(self, election_id):
        with self._session() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM nullifiers WHERE election_id = ?", (str(election_id),)).fetchone()
        return row[0]


def create_store(ledger_config: LedgerConfig) -> VoteStore:
    if ledger_config.backend == "memory":
        logger.warning("Using in-memory vote store; votes are lost on restart")
        return InMemoryVoteStore()
    return SQLiteVoteStore(ledger_config.database_path)
