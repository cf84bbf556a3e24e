"""Ballot persistence, nullifier ledger and election lookup."""

from .store import (
    VoteRecord, NullifierRecord, InsertResult, VoteStore,
    InMemoryVoteStore, SQLiteVoteStore, create_store,
)
from .nullifier_ledger import NullifierLedger, ReservationResult
from .elections import (
    Election, ElectionDirectory, InMemoryElectionDirectory, check_election,
    election_from_dict, directory_from_config,
)

__all__ = [
    'VoteRecord', 'NullifierRecord', 'InsertResult', 'VoteStore',
    'InMemoryVoteStore', 'SQLiteVoteStore', 'create_store',
    'NullifierLedger', 'ReservationResult',
    'Election', 'ElectionDirectory', 'InMemoryElectionDirectory', 'check_election',
    'election_from_dict', 'directory_from_config',
]
