"""Per-election set of consumed nullifiers."""

import logging
from dataclasses import dataclass
from typing import Optional

from utils.utils import short_hash
from .store import InsertResult, NullifierRecord, VoteRecord, VoteStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReservationResult:
    accepted: bool


class NullifierLedger:
    """Nullifier checks and claims backed by the store's uniqueness constraint

    `is_consumed` is advisory only; the authoritative check is the atomic
    insert done by `reserve_nullifier` / `record_vote`.
    """

    def __init__(self, store: VoteStore):
        self.store = store

    def is_consumed(self, election_id: int, nullifier_hash: int) -> bool:
        return self.store.has_nullifier(election_id, nullifier_hash)

    def lookup(self, election_id: int, nullifier_hash: int) -> Optional[NullifierRecord]:
        return self.store.get_nullifier(election_id, nullifier_hash)

    def reserve_nullifier(self, election_id: int, nullifier_hash: int) -> ReservationResult:
        accepted = self.store.reserve_nullifier(election_id, nullifier_hash)
        if not accepted:
            logger.warning(f"Duplicate nullifier {short_hash(nullifier_hash)} "
                           f"rejected for election {election_id}")
        return ReservationResult(accepted=accepted)

    def record_vote(self, record: VoteRecord) -> InsertResult:
        """Claim the nullifier and persist the vote in one transaction"""
        result = self.store.insert_if_nullifier_absent(
            record.election_id, record.nullifier_hash, record)
        if result.inserted:
            logger.info(f"Recorded vote {result.vote_id} for election {record.election_id}")
        else:
            logger.warning(f"Duplicate nullifier {short_hash(record.nullifier_hash)} "
                           f"rejected for election {record.election_id}")
        return result

    def consumed_count(self, election_id: int) -> int:
        return self.store.count_nullifiers(election_id)
