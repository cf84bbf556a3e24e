import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from ballots.nullifier_ledger import NullifierLedger
from ballots.store import InMemoryVoteStore, SQLiteVoteStore, VoteRecord, create_store
from conftest import WriteDeniedStore
from config.config import LedgerConfig
from zk.errors import ErrorKind, VoteStorageError

PROOF = {"pi_a": ["1", "2", "1"], "pi_b": [["1", "2"], ["3", "4"], ["1", "0"]], "pi_c": ["5", "6", "1"]}


def make_record(election_id=789, nullifier=111, commitment=222):
    return VoteRecord(
        election_id=election_id,
        nullifier_hash=nullifier,
        commitment_hash=commitment,
        proof=PROOF,
        public_signals=[str(nullifier), str(commitment)],
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryVoteStore()
    return SQLiteVoteStore(tmp_path / "votes.db")


class TestVoteStore:

    def test_insert_then_duplicate(self, store):
        first = store.insert_if_nullifier_absent(789, 111, make_record())
        second = store.insert_if_nullifier_absent(789, 111, make_record(commitment=333))

        assert first.inserted and first.vote_id
        assert not second.inserted and second.vote_id is None
        assert store.count_votes(789) == 1
        assert store.count_nullifiers(789) == 1

    def test_nullifier_scoped_to_election(self, store):
        assert store.insert_if_nullifier_absent(789, 111, make_record()).inserted
        assert store.insert_if_nullifier_absent(790, 111, make_record(election_id=790)).inserted
        assert store.count_votes(789) == 1
        assert store.count_votes(790) == 1

    def test_same_commitment_allowed(self, store):
        assert store.insert_if_nullifier_absent(789, 111, make_record(nullifier=111)).inserted
        assert store.insert_if_nullifier_absent(789, 112, make_record(nullifier=112)).inserted

    def test_record_contents(self, store):
        record = make_record()
        store.insert_if_nullifier_absent(789, 111, record)

        loaded = store.get_vote(record.vote_id)
        assert loaded.nullifier_hash == 111
        assert loaded.commitment_hash == 222
        assert loaded.proof == PROOF
        assert loaded.public_signals == ["111", "222"]
        assert loaded.timestamp == record.timestamp
        assert [r.vote_id for r in store.votes_for_election(789)] == [record.vote_id]
        assert store.get_vote("missing") is None

    def test_large_field_values_preserved(self, store):
        big = 21888242871839275222246405745257275088548364400416034343698204186575808495616
        store.insert_if_nullifier_absent(789, big, make_record(nullifier=big))
        assert store.has_nullifier(789, big)
        assert not store.has_nullifier(789, big - 1)

    def test_reserve_without_record(self, store):
        assert store.reserve_nullifier(789, 5)
        assert not store.reserve_nullifier(789, 5)
        assert not store.insert_if_nullifier_absent(789, 5, make_record(nullifier=5)).inserted
        assert store.count_votes(789) == 0
        assert store.get_nullifier(789, 5).reserved_at is not None

    def test_concurrent_reservations(self, store):
        barrier = threading.Barrier(8)

        def attempt(i):
            barrier.wait()
            return store.insert_if_nullifier_absent(789, 111, make_record(commitment=i)).inserted

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, range(8)))

        assert results.count(True) == 1
        assert store.count_votes(789) == 1


class TestNullifierLedger:

    def test_reserve_and_check(self):
        ledger = NullifierLedger(InMemoryVoteStore())
        assert not ledger.is_consumed(789, 111)
        assert ledger.reserve_nullifier(789, 111).accepted
        assert not ledger.reserve_nullifier(789, 111).accepted
        assert ledger.is_consumed(789, 111)
        assert ledger.lookup(789, 111).nullifier_hash == 111
        assert ledger.lookup(789, 112) is None

    def test_record_vote(self):
        ledger = NullifierLedger(InMemoryVoteStore())
        assert ledger.record_vote(make_record()).inserted
        assert not ledger.record_vote(make_record()).inserted
        assert ledger.consumed_count(789) == 1

    def test_survives_restart(self, tmp_path):
        path = tmp_path / "votes.db"
        NullifierLedger(SQLiteVoteStore(path)).record_vote(make_record())

        reopened = NullifierLedger(SQLiteVoteStore(path))
        assert reopened.is_consumed(789, 111)
        assert not reopened.record_vote(make_record()).inserted

    def test_sqlite_failure_is_a_storage_error(self, tmp_path):
        store = WriteDeniedStore(tmp_path / "votes.db")
        store.insert_if_nullifier_absent(789, 111, make_record())
        store.deny_writes = True

        with pytest.raises(VoteStorageError) as excinfo:
            NullifierLedger(store).record_vote(make_record(nullifier=112))
        assert excinfo.value.kind == ErrorKind.STORAGE_UNAVAILABLE
        assert excinfo.value.kind.retryable
        with pytest.raises(VoteStorageError):
            store.reserve_nullifier(789, 113)

        # reads are unaffected
        assert store.count_votes(789) == 1
        assert store.has_nullifier(789, 111)

    def test_unopenable_database(self, tmp_path):
        store = SQLiteVoteStore(tmp_path / "votes.db")
        store.database_path = tmp_path / "missing-dir" / "votes.db"
        with pytest.raises(VoteStorageError):
            store.count_votes(789)


def test_create_store(tmp_path):
    assert isinstance(create_store(LedgerConfig(backend="memory")), InMemoryVoteStore)
    store = create_store(LedgerConfig(backend="sqlite", database_path=tmp_path / "db" / "v.db"))
    assert isinstance(store, SQLiteVoteStore)
    assert (tmp_path / "db" / "v.db").exists()
    with pytest.raises(ValueError):
        LedgerConfig(backend="postgres")
