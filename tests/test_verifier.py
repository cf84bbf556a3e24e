import copy
import json

import pytest

from conftest import VKEY, write_proving_artifacts
from zk.artifacts import VerificationKeyCache, parse_verification_key
from zk.circuit import VoteCircuit
from zk.errors import CircuitArtifactMissingError
from zk.poseidon import FIELD_PRIME
from zk.prover import VoteProofGenerator
from zk.verifier import INVALID_PROOF, VoteProofVerifier


@pytest.fixture
async def vote_proof(hasher, backend, artifacts):
    generator = VoteProofGenerator(VoteCircuit(hasher), backend, artifacts)
    try:
        return await generator.generate_vote_proof(123, 456, 789)
    finally:
        generator.close()


@pytest.fixture
def verifier(backend, artifacts):
    return VoteProofVerifier(backend, VerificationKeyCache(artifacts))


def assert_rejected(result):
    assert result.valid is False
    assert result.error == INVALID_PROOF
    assert result.nullifier_hash is None


class TestVerification:

    async def test_accepts_genuine_proof(self, verifier, vote_proof):
        result = verifier.verify_vote_proof(vote_proof.proof, vote_proof.public_signals)
        assert result.valid
        assert result.commitment_hash == vote_proof.commitment_hash

    async def test_tampered_signal(self, verifier, vote_proof):
        for index in (0, 1):
            signals = list(vote_proof.public_signals)
            signals[index] = str((int(signals[index]) + 1) % FIELD_PRIME)
            assert_rejected(verifier.verify_vote_proof(vote_proof.proof, signals))

    async def test_swapped_signals(self, verifier, vote_proof):
        swapped = list(reversed(vote_proof.public_signals))
        assert_rejected(verifier.verify_vote_proof(vote_proof.proof, swapped))

    async def test_tampered_proof(self, verifier, vote_proof):
        proof = copy.deepcopy(vote_proof.proof)
        proof["pi_a"][0] = str(int(proof["pi_a"][0]) + 1)
        assert_rejected(verifier.verify_vote_proof(proof, vote_proof.public_signals))

    @pytest.mark.parametrize("proof", [
        None,
        {},
        "proof",
        {"pi_a": ["1", "2", "1"], "pi_c": ["1", "2", "1"]},
        {"pi_a": ["x", "2"], "pi_b": [["1", "2"], ["3", "4"]], "pi_c": ["1", "2"]},
        {"pi_a": ["1", "2"], "pi_b": [["1", "2"], ["3", "4"]], "pi_c": ["1", "2"], "protocol": "plonk"},
    ])
    async def test_malformed_proof(self, verifier, vote_proof, proof):
        assert_rejected(verifier.verify_vote_proof(proof, vote_proof.public_signals))

    @pytest.mark.parametrize("signals", [
        None,
        [],
        ["1"],
        ["1", "2", "3"],
        ["-1", "2"],
        ["abc", "2"],
        [str(FIELD_PRIME), "2"],
    ])
    async def test_malformed_signals(self, verifier, vote_proof, signals):
        assert_rejected(verifier.verify_vote_proof(vote_proof.proof, signals))

    async def test_missing_verification_key(self, verifier, artifacts, vote_proof):
        artifacts.vkey_file.unlink()
        assert_rejected(verifier.verify_vote_proof(vote_proof.proof, vote_proof.public_signals))

    @pytest.mark.parametrize("field, value", [
        ("protocol", "plonk"),
        ("curve", "bls12381"),
        ("nPublic", 3),
    ])
    async def test_wrong_verification_key(self, backend, tmp_path, vote_proof, field, value):
        vkey = dict(VKEY, **{field: value})
        artifacts = write_proving_artifacts(tmp_path / "other", vkey=vkey)
        verifier = VoteProofVerifier(backend, VerificationKeyCache(artifacts))
        assert_rejected(verifier.verify_vote_proof(vote_proof.proof, vote_proof.public_signals))

    async def test_unparseable_verification_key(self, backend, tmp_path, vote_proof):
        artifacts = write_proving_artifacts(tmp_path / "other")
        artifacts.vkey_file.write_text("{" * 200)
        verifier = VoteProofVerifier(backend, VerificationKeyCache(artifacts))
        assert_rejected(verifier.verify_vote_proof(vote_proof.proof, vote_proof.public_signals))

    async def test_backend_error_fails_closed(self, artifacts, vote_proof):
        class Broken:
            def verify(self, vkey, proof, public_signals):
                raise OSError("snarkjs missing")

        verifier = VoteProofVerifier(Broken(), VerificationKeyCache(artifacts))
        assert_rejected(verifier.verify_vote_proof(vote_proof.proof, vote_proof.public_signals))

    async def test_batch_verify(self, verifier, vote_proof):
        results = await verifier.batch_verify([
            {"proof": vote_proof.proof, "publicSignals": vote_proof.public_signals},
            {"proof": vote_proof.proof, "publicSignals": ["1", "2"]},
            "garbage",
        ])
        assert [r.valid for r in results] == [True, False, False]


class TestVerificationKey:

    def test_loaded_once_and_immutable(self, artifacts):
        cache = VerificationKeyCache(artifacts)
        first = cache.get()
        artifacts.vkey_file.write_text(json.dumps(dict(VKEY, nPublic=3)))
        assert cache.get() is first
        assert first.n_public == 2
        with pytest.raises(TypeError):
            first.data["nPublic"] = 5

    def test_required_fields(self):
        for key in ("protocol", "curve", "nPublic"):
            raw = {k: v for k, v in VKEY.items() if k != key}
            with pytest.raises(CircuitArtifactMissingError):
                parse_verification_key(raw)

    def test_round_trips_to_json(self):
        vkey = parse_verification_key(copy.deepcopy(VKEY))
        assert json.loads(vkey.to_json()) == VKEY
