"""
Circom-compatible Poseidon hash over the BN254 scalar field.

Round constants and MDS matrices are derived with the Grain LFSR procedure of
the Poseidon reference implementation, which is how circomlib's
poseidon_constants were produced (x^5 S-box, 8 full rounds, partial rounds per
width as in circomlib). The same hasher is used off-circuit by the proof
services and must agree bit-for-bit with the Poseidon(n) template compiled into
the vote circuit.
"""

import logging
import threading
from collections import deque
from functools import lru_cache
from typing import List, Sequence, Tuple

logger = logging.getLogger(__name__)

# BN254 scalar field prime (snarkjs / circom "bn128")
FIELD_PRIME = 21888242871839275222246405745257275088548364400416034343698204186575808495617
FIELD_BITS = 254

FULL_ROUNDS = 8
# circomlib N_ROUNDS_P, indexed by width - 2
PARTIAL_ROUNDS = [56, 57, 56, 60, 60, 63, 64, 63, 60, 66, 60, 65, 70, 60, 64, 68]
MAX_INPUTS = len(PARTIAL_ROUNDS)


# ============================================================================
# PARAMETER GENERATION (GRAIN LFSR)
# ============================================================================


def _to_bits(value: int, width: int) -> List[int]:
    return [int(b) for b in bin(value)[2:].zfill(width)]


class GrainLFSR:
    """Self-shrinking Grain LFSR used to sample Poseidon parameters"""

    def __init__(self, field_bits: int, width: int, full_rounds: int, partial_rounds: int):
        seed = (
            _to_bits(1, 2)              # prime field
            + _to_bits(0, 4)            # x^alpha s-box
            + _to_bits(field_bits, 12)
            + _to_bits(width, 12)
            + _to_bits(full_rounds, 10)
            + _to_bits(partial_rounds, 10)
            + [1] * 30
        )
        self._state = deque(seed)
        for _ in range(160):
            self._clock()

    def _clock(self) -> int:
        s = self._state
        bit = s[62] ^ s[51] ^ s[38] ^ s[23] ^ s[13] ^ s[0]
        s.popleft()
        s.append(bit)
        return bit

    def next_bit(self) -> int:
        while True:
            first = self._clock()
            second = self._clock()
            if first == 1:
                return second

    def next_int(self, num_bits: int) -> int:
        value = 0
        for _ in range(num_bits):
            value = (value << 1) | self.next_bit()
        return value

    def next_field_element(self, prime: int, num_bits: int) -> int:
        """Rejection-sample an element below the prime"""
        while True:
            value = self.next_int(num_bits)
            if value < prime:
                return value


@lru_cache(maxsize=None)
def poseidon_parameters(width: int) -> Tuple[Tuple[int, ...], Tuple[Tuple[int, ...], ...]]:
    """Return (round_constants, mds_matrix) for a state of `width` elements"""
    if width < 2 or width > MAX_INPUTS + 1:
        raise ValueError(f"Unsupported Poseidon width: {width}")

    partial_rounds = PARTIAL_ROUNDS[width - 2]
    grain = GrainLFSR(FIELD_BITS, width, FULL_ROUNDS, partial_rounds)

    num_constants = (FULL_ROUNDS + partial_rounds) * width
    constants = tuple(
        grain.next_field_element(FIELD_PRIME, FIELD_BITS)
        for _ in range(num_constants)
    )

    # Cauchy matrix M[i][j] = 1 / (x_i + y_j) from the continuing stream
    while True:
        samples = [grain.next_int(FIELD_BITS) % FIELD_PRIME for _ in range(2 * width)]
        while len(set(samples)) != len(samples):
            samples = [grain.next_int(FIELD_BITS) % FIELD_PRIME for _ in range(2 * width)]
        xs, ys = samples[:width], samples[width:]
        if any((x + y) % FIELD_PRIME == 0 for x in xs for y in ys):
            continue
        mds = tuple(
            tuple(pow(x + y, FIELD_PRIME - 2, FIELD_PRIME) for y in ys)
            for x in xs
        )
        break

    logger.debug(f"Derived Poseidon parameters for width {width} "
                 f"({num_constants} round constants)")
    return constants, mds


# ============================================================================
# HASHER
# ============================================================================


class PoseidonHasher:
    """Poseidon permutation hash, `hash([a, b, ...]) -> field element`

    One instance is built at start-up and shared by the prover and verifier.
    Parameters are derived lazily per arity and cached; the instance holds no
    mutable state after warm-up, so it is safe to share across threads.
    """

    def __init__(self, prime: int = FIELD_PRIME, warm_arities: Sequence[int] = (2,)):
        if prime != FIELD_PRIME:
            raise ValueError("Only the BN254 scalar field is supported")
        self.prime = prime
        for arity in warm_arities:
            poseidon_parameters(arity + 1)

    def check_element(self, value: int) -> int:
        """Reject anything that is not a canonical field element"""
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"Field element must be int, got {type(value).__name__}")
        if value < 0 or value >= self.prime:
            raise ValueError("Value outside the scalar field")
        return value

    def hash(self, inputs: Sequence[int]) -> int:
        """Hash 1..16 field elements, matching circomlib Poseidon(n)"""
        if not 1 <= len(inputs) <= MAX_INPUTS:
            raise ValueError(f"Poseidon takes 1 to {MAX_INPUTS} inputs, got {len(inputs)}")

        p = self.prime
        width = len(inputs) + 1
        constants, mds = poseidon_parameters(width)
        partial_rounds = PARTIAL_ROUNDS[width - 2]
        half_full = FULL_ROUNDS // 2

        state = [0] + [self.check_element(v) for v in inputs]

        for r in range(FULL_ROUNDS + partial_rounds):
            offset = r * width
            state = [(s + constants[offset + i]) % p for i, s in enumerate(state)]

            if r < half_full or r >= half_full + partial_rounds:
                state = [pow(s, 5, p) for s in state]
            else:
                state[0] = pow(state[0], 5, p)

            state = [
                sum(row[j] * state[j] for j in range(width)) % p
                for row in mds
            ]

        return state[0]

    def __call__(self, *inputs: int) -> int:
        return self.hash(list(inputs))


_hasher_lock = threading.Lock()
_hasher = None


def get_hasher() -> PoseidonHasher:
    """Process-wide hasher handle, built on first use"""
    global _hasher
    with _hasher_lock:
        if _hasher is None:
            _hasher = PoseidonHasher()
        return _hasher
