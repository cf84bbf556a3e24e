from datetime import date, datetime, timedelta, timezone

import pytest

from ballots.elections import check_election, directory_from_config, election_from_dict
from zk.errors import ElectionInactiveError, ElectionNotFoundError


def entry(**overrides):
    data = {
        "election_id": 789,
        "start_date": "2026-03-01T08:00:00Z",
        "end_date": "2026-03-01T20:00:00Z",
        "candidate_ids": [456, "457", "0x1ca"],
        "title": "Board seat",
    }
    data.update(overrides)
    return data


class TestConfiguredElections:

    def test_entry_parsing(self):
        election = election_from_dict(entry())

        assert election.election_id == 789
        assert election.start_date == datetime(2026, 3, 1, 8, tzinfo=timezone.utc)
        assert election.candidate_ids == frozenset({456, 457, 458})
        assert election.title == "Board seat"

    def test_naive_and_date_values_are_utc(self):
        election = election_from_dict(entry(
            start_date=date(2026, 3, 1), end_date=datetime(2026, 3, 2, 12)))

        assert election.start_date == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert election.end_date.tzinfo is timezone.utc

    def test_missing_keys(self):
        data = entry()
        del data["end_date"], data["candidate_ids"]
        with pytest.raises(ValueError, match="end_date, candidate_ids"):
            election_from_dict(data)

    @pytest.mark.parametrize("overrides", [
        {"candidate_ids": [456, "+457"]},
        {"election_id": "seven"},
        {"start_date": "yesterday"},
        {"end_date": 1700000000},
        {"end_date": "2026-03-01T07:00:00Z"},
    ])
    def test_invalid_entries(self, overrides):
        with pytest.raises(ValueError):
            election_from_dict(entry(**overrides))

    def test_directory_gates_votes(self):
        now = datetime.now(timezone.utc)
        directory = directory_from_config([
            entry(start_date=now - timedelta(hours=1), end_date=now + timedelta(hours=1)),
            entry(election_id=790),
        ])

        assert check_election(directory, 789, 457).election_id == 789
        with pytest.raises(ElectionInactiveError):
            check_election(directory, 790, 457, now=datetime(2027, 1, 1, tzinfo=timezone.utc))
        with pytest.raises(ElectionNotFoundError):
            check_election(directory, 791, 457)

    def test_empty_directory_refuses(self):
        with pytest.raises(ElectionNotFoundError):
            check_election(directory_from_config([]), 789, 456)
