import pytest

from zk.poseidon import (
    FIELD_PRIME, FULL_ROUNDS, MAX_INPUTS, PARTIAL_ROUNDS, PoseidonHasher,
    get_hasher, poseidon_parameters,
)

# circomlib / circomlibjs poseidon([1, 2])
POSEIDON_1_2 = 7853200120776062878684798364095072458815029376092732009249414926327459813530


class TestPoseidon:

    def test_known_answer(self, hasher):
        assert hasher.hash([1, 2]) == POSEIDON_1_2
        assert hasher(1, 2) == POSEIDON_1_2

    def test_parameters_shape(self):
        constants, mds = poseidon_parameters(3)
        assert len(constants) == (FULL_ROUNDS + PARTIAL_ROUNDS[1]) * 3
        assert all(0 <= c < FIELD_PRIME for c in constants)
        assert len(mds) == 3 and all(len(row) == 3 for row in mds)

    def test_deterministic_and_order_sensitive(self, hasher):
        assert hasher.hash([123, 789]) == hasher.hash([123, 789])
        assert hasher.hash([123, 789]) != hasher.hash([789, 123])
        assert hasher.hash([5]) != hasher.hash([5, 0])

    def test_output_in_field(self, hasher):
        for inputs in ([0, 0], [FIELD_PRIME - 1, 1], [42]):
            assert 0 <= hasher.hash(inputs) < FIELD_PRIME

    @pytest.mark.parametrize("value", [FIELD_PRIME, FIELD_PRIME + 5, -1])
    def test_rejects_out_of_range(self, hasher, value):
        with pytest.raises(ValueError):
            hasher.hash([value, 1])

    @pytest.mark.parametrize("value", [True, "12", 1.0, None])
    def test_rejects_non_integers(self, hasher, value):
        with pytest.raises(TypeError):
            hasher.hash([1, value])

    def test_arity_bounds(self, hasher):
        with pytest.raises(ValueError):
            hasher.hash([])
        with pytest.raises(ValueError):
            hasher.hash(list(range(MAX_INPUTS + 1)))

    def test_other_fields_refused(self):
        with pytest.raises(ValueError):
            PoseidonHasher(prime=2**61 - 1)

    def test_shared_handle(self):
        assert get_hasher() is get_hasher()
