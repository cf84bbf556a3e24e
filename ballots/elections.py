"""Election lookup used to gate vote casting."""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, Optional, Union

from zk.circuit import coerce_identifier
from zk.errors import ElectionInactiveError, ElectionNotFoundError, InputValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Election:
    election_id: int
    start_date: datetime
    end_date: datetime
    candidate_ids: FrozenSet[int] = field(default_factory=frozenset)
    title: str = ""

    def __post_init__(self):
        if self.start_date.tzinfo is None or self.end_date.tzinfo is None:
            raise ValueError("Election dates must be timezone-aware")
        if self.end_date <= self.start_date:
            raise ValueError("Election must end after it starts")
        object.__setattr__(self, "candidate_ids", frozenset(self.candidate_ids))

    def is_active(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.start_date <= now <= self.end_date


class ElectionDirectory(ABC):
    @abstractmethod
    def get_election(self, election_id: int) -> Optional[Election]:
        ...


class InMemoryElectionDirectory(ElectionDirectory):

    def __init__(self, elections: Iterable[Election] = ()):
        self._lock = threading.Lock()
        self._elections: Dict[int, Election] = {e.election_id: e for e in elections}

    def add(self, election: Election):
        with self._lock:
            self._elections[election.election_id] = election

    def get_election(self, election_id):
        with self._lock:
            return self._elections.get(election_id)


def check_election(directory: ElectionDirectory, election_id: int, candidate_id: int,
                   now: Optional[datetime] = None) -> Election:
    """Return the election if a vote for `candidate_id` may be cast now"""
    election = directory.get_election(election_id)
    if election is None:
        raise ElectionNotFoundError("Election not found")
    if not election.is_active(now):
        raise ElectionInactiveError("Election is not active")
    if candidate_id not in election.candidate_ids:
        raise InputValidationError("Candidate is not part of this election")
    return election


# ============================================================================
# CONFIGURED ELECTIONS
# ============================================================================


def _parse_instant(value: Union[str, date, datetime], name: str) -> datetime:
    """ISO-8601 string, date or datetime; naive values are taken as UTC"""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"{name} is not an ISO-8601 timestamp: {value!r}") from None
    else:
        raise ValueError(f"{name} must be a timestamp, got {type(value).__name__}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def election_from_dict(data: Dict[str, Any]) -> Election:
    """Build an election from one entry of the `elections` config section"""
    missing = [key for key in ("election_id", "start_date", "end_date", "candidate_ids")
               if key not in data]
    if missing:
        raise ValueError(f"Election entry missing {', '.join(missing)}")

    try:
        election_id = coerce_identifier(data["election_id"], "election_id")
        candidate_ids = frozenset(
            coerce_identifier(c, "candidate_ids") for c in data["candidate_ids"])
    except InputValidationError as e:
        raise ValueError(f"Invalid election entry: {e}") from e

    return Election(
        election_id=election_id,
        start_date=_parse_instant(data["start_date"], "start_date"),
        end_date=_parse_instant(data["end_date"], "end_date"),
        candidate_ids=candidate_ids,
        title=str(data.get("title", "")),
    )


def directory_from_config(entries: Iterable[Dict[str, Any]]) -> InMemoryElectionDirectory:
    elections = [election_from_dict(entry) for entry in entries or ()]
    if not elections:
        logger.warning("No elections configured; every vote will be refused")
    else:
        logger.info(f"Loaded {len(elections)} configured election(s)")
    return InMemoryElectionDirectory(elections)
