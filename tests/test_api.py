import pytest

from anonymous_voting_system import AnonymousVotingSystem
from api.app import LoopThread, create_app
from conftest import ELECTION_ID
from config.config import ApiConfig


@pytest.fixture
def client(system):
    loop_thread = LoopThread()
    app = create_app(system, ApiConfig(), loop_thread=loop_thread)
    app.config["TESTING"] = True
    with app.test_client() as test_client:
        yield test_client
    loop_thread.stop()


def cast(client, voter="123", candidate=456, election=ELECTION_ID):
    headers = {"X-Voter-Id": voter} if voter else {}
    return client.post("/zkp/cast", json={"candidateId": candidate, "electionId": election},
                       headers=headers)


class TestCastEndpoint:

    def test_requires_identity(self, client):
        response = cast(client, voter=None)
        assert response.status_code == 401
        assert response.get_json()["success"] is False

    def test_cast_then_repeat(self, client, hasher):
        response = cast(client)
        body = response.get_json()

        assert response.status_code == 200
        assert body["success"] is True
        assert body["voteId"]
        assert body["zkpProof"] == {
            "nullifierHash": str(hasher.hash([123, ELECTION_ID])),
            "verified": True,
        }

        repeat = cast(client, candidate=457)
        assert repeat.status_code == 409
        assert repeat.get_json()["error"]["kind"] == "already_voted"

    def test_missing_field(self, client):
        response = client.post("/zkp/cast", json={"electionId": ELECTION_ID},
                               headers={"X-Voter-Id": "123"})
        assert response.status_code == 400
        assert response.get_json()["error"]["kind"] == "input_validation"

    def test_non_json_body(self, client):
        response = client.post("/zkp/cast", data="nope", headers={"X-Voter-Id": "123"})
        assert response.status_code == 400

    def test_unknown_election(self, client):
        response = cast(client, election=999)
        assert response.status_code == 404
        assert response.get_json()["error"]["kind"] == "election_not_found"


class TestVerifyAndStatsEndpoints:

    def test_verify_recorded_vote(self, client, system):
        vote_id = cast(client).get_json()["voteId"]
        record = system.store.get_vote(vote_id)

        response = client.post("/zkp/verify", json={
            "proof": record.proof,
            "publicSignals": record.public_signals,
            "electionId": ELECTION_ID,
        })
        body = response.get_json()
        assert response.status_code == 200
        assert body["valid"] is True
        assert body["recorded"] is True

    def test_verify_garbage(self, client):
        response = client.post("/zkp/verify", json={"proof": "x", "publicSignals": [1]})
        body = response.get_json()
        assert response.status_code == 400
        assert body["success"] is False
        assert body["valid"] is False
        assert body["error"]["kind"] == "verification_failed"
        assert body["error"]["message"] == "Invalid proof"

    def test_stats(self, client):
        cast(client, voter="1")
        cast(client, voter="2")

        response = client.get(f"/zkp/stats/{ELECTION_ID}?reverify=true")
        stats = response.get_json()["stats"]
        assert response.status_code == 200
        assert stats["totalZKPVotes"] == 2
        assert stats["uniqueVoters"] == 2
        assert stats["integrityScore"] == 100

    def test_stats_bad_election(self, client):
        response = client.get("/zkp/stats/not-a-number")
        assert response.status_code == 400

    def test_health(self, client):
        response = client.get("/health")
        body = response.get_json()
        assert response.status_code == 200
        # the fixture only lays down proving artifacts, not the full setup
        assert body["artifactsReady"] is False
        assert body["status"] == "degraded"


def test_cast_without_configured_elections(system_config, backend, hasher):
    voting = AnonymousVotingSystem(system_config, backend=backend, hasher=hasher)
    loop_thread = LoopThread()
    app = create_app(voting, ApiConfig(), loop_thread=loop_thread)
    try:
        with app.test_client() as test_client:
            response = cast(test_client)
    finally:
        loop_thread.stop()
        voting.close()

    assert response.status_code == 404
    assert response.get_json()["error"]["kind"] == "election_not_found"
    assert backend.proved == []
