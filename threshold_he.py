"""Threshold-decryptable lattice homomorphic encryption collaborator.

A scale-invariant (BFV-style) public-key scheme over plain LWE with plaintext
space GF(p). It supports ciphertext addition and one ciphertext-ciphertext
multiplication (tensoring, no relinearisation). The decryption key
(1, s) (x) (1, s) is Shamir-shared over Z_q among the parties; partial
decryptions are combined with integer Lagrange coefficients scaled by n!, so
no modular inverse in Z_q is needed.
"""

from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass
from fractions import Fraction
from typing import Dict, List, Mapping, Tuple

import numpy as np

from constants import (
    FIELD_PRIME,
    HE_DIMENSION,
    HE_ERROR_BOUND,
    HE_MODULUS_BITS,
    HE_SMUDGING_BITS,
)
from errors import AbortedDecryption, InvalidThreshold, NoiseBudgetExceeded
from secure_rng import SecureRandom

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HEParams:
    dimension: int = HE_DIMENSION
    modulus_bits: int = HE_MODULUS_BITS
    error_bound: int = HE_ERROR_BOUND
    smudging_bits: int = HE_SMUDGING_BITS
    plaintext_modulus: int = FIELD_PRIME

    @property
    def modulus(self) -> int:
        return 1 << self.modulus_bits

    @property
    def scale(self) -> int:
        """Delta = floor(q / p), the plaintext scaling factor."""
        return self.modulus // self.plaintext_modulus

    @property
    def key_length(self) -> int:
        return self.dimension + 1

    def noise_bound(self, party_count: int) -> int:
        """Worst-case decryption error (times n!) after one multiplication,
        n added masks and threshold decryption with smudging."""
        n = party_count
        p = self.plaintext_modulus
        key_norm = 1 + self.dimension * n
        fresh = self.error_bound * (2 * self.dimension * n + 1)
        remainder = self.modulus % p
        # summing n plaintexts wraps mod p at most n times, each wrap costs q mod p
        summed = n * (fresh + remainder)
        product = 2 * p * key_norm * (2 * summed + remainder + 1) + key_norm * key_norm
        total = product + n * (fresh + remainder)
        factorial = math.factorial(n)
        smudging = n * factorial * factorial * (1 << self.smudging_bits)
        return factorial * total + smudging + factorial * p

    def noise_budget_bits(self, party_count: int) -> int:
        """Bits of headroom left; must stay positive for correct decryption."""
        used = self.noise_bound(party_count).bit_length() + self.plaintext_modulus.bit_length() + 1
        return self.modulus_bits - used

    def validate(self, party_count: int) -> None:
        if self.dimension < 1 or self.error_bound < 1:
            raise NoiseBudgetExceeded("Lattice dimension and error bound must be positive")
        budget = self.noise_budget_bits(party_count)
        if budget <= 0:
            raise NoiseBudgetExceeded(
                f"Modulus of {self.modulus_bits} bits cannot absorb one multiplication for "
                f"{party_count} parties (short by {-budget + 1} bits)"
            )


@dataclass
class Ciphertext:
    vector: np.ndarray
    degree: int


@dataclass
class ThresholdPublicKey:
    matrix: np.ndarray
    vector: np.ndarray
    party_count: int
    threshold: int
    params: HEParams


@dataclass
class SecretKeyShare:
    index: int
    threshold: int
    key: np.ndarray


@dataclass(frozen=True)
class PartialDecryption:
    index: int
    value: int


class ThresholdHE:
    """Encrypt / Add / Multiply / PartialDecrypt / CombinePartials."""

    def __init__(self, params: HEParams | None = None, rng: SecureRandom | None = None) -> None:
        self.params = params or HEParams()
        self.rng = rng or SecureRandom("threshold-he")

    # 密钥生成

    def derive_public_matrix(self, seed: bytes) -> np.ndarray:
        """Expand a seed into the public matrix A (SHAKE-256 per entry)."""
        q = self.params.modulus
        width = self.params.modulus_bits // 8 + 8
        size = self.params.dimension
        matrix = np.zeros((size, size), dtype=object)
        for i in range(size):
            for j in range(size):
                digest = hashlib.shake_256(seed + i.to_bytes(4, 'big') + j.to_bytes(4, 'big')).digest(width)
                matrix[i, j] = int.from_bytes(digest, 'big') % q
        return matrix

    def distributed_keygen(
        self, party_count: int, threshold: int
    ) -> Tuple[ThresholdPublicKey, Dict[int, SecretKeyShare]]:
        """One-time key generation: shared public key plus one key share per party.

        Each party contributes (s_i, e_i); the joint secret s = sum(s_i) never
        leaves this call, only its Shamir shares do.
        """
        if threshold < 1 or threshold > party_count:
            raise InvalidThreshold(f"Decryption threshold must satisfy 1 <= t <= n, got t={threshold}, n={party_count}")
        self.params.validate(party_count)

        q = self.params.modulus
        size = self.params.dimension
        matrix = self.derive_public_matrix(self.rng.token_bytes(32))

        secret = np.zeros(size, dtype=object)
        public_vector = np.zeros(size, dtype=object)
        for _ in range(party_count):
            s_i = np.array(self.rng.ternary_vector(size), dtype=object)
            e_i = np.array(self.rng.bounded_vector(size, self.params.error_bound), dtype=object)
            public_vector = (public_vector - matrix.dot(s_i) + e_i) % q
            secret = secret + s_i

        key = np.concatenate([np.array([1], dtype=object), secret])
        tensor_key = np.outer(key, key).flatten() % q
        del secret, key

        coefficients = [
            np.array([self.rng.randbelow(q) for _ in range(tensor_key.size)], dtype=object)
            for _ in range(threshold - 1)
        ]
        shares: Dict[int, SecretKeyShare] = {}
        for index in range(1, party_count + 1):
            value = tensor_key.copy()
            for power, coefficient in enumerate(coefficients, start=1):
                value = (value + coefficient * pow(index, power)) % q
            shares[index] = SecretKeyShare(index=index, threshold=threshold, key=value)
        del tensor_key, coefficients

        public_key = ThresholdPublicKey(matrix, public_vector, party_count, threshold, self.params)
        logger.info("Generated threshold key material for %d parties (threshold %d)", party_count, threshold)
        return public_key, shares

    # 同态运算

    def encrypt(self, public_key: ThresholdPublicKey, plaintext: int) -> Ciphertext:
        q = self.params.modulus
        size = self.params.dimension
        bound = self.params.error_bound

        r = np.array(self.rng.ternary_vector(size), dtype=object)
        e2 = np.array(self.rng.bounded_vector(size, bound), dtype=object)
        c0 = (public_key.vector.dot(r) + self.rng.bounded_int(bound)
              + self.params.scale * (plaintext % self.params.plaintext_modulus)) % q
        c1 = (public_key.matrix.T.dot(r) + e2) % q
        return Ciphertext(np.concatenate([np.array([c0], dtype=object), c1]), degree=1)

    def _lift(self, ciphertext: Ciphertext) -> np.ndarray:
        """View a degree-1 ciphertext in the tensor basis: c (x) (1, 0, ..., 0)."""
        if ciphertext.degree == 2:
            return ciphertext.vector
        width = self.params.key_length
        lifted = np.zeros(width * width, dtype=object)
        lifted[::width] = ciphertext.vector
        return lifted

    def add(self, left: Ciphertext, right: Ciphertext) -> Ciphertext:
        q = self.params.modulus
        if left.degree == right.degree:
            return Ciphertext((left.vector + right.vector) % q, left.degree)
        return Ciphertext((self._lift(left) + self._lift(right)) % q, 2)

    def _centered(self, vector: np.ndarray) -> np.ndarray:
        q = self.params.modulus
        half = q // 2
        return np.array([value - q if value > half else value for value in vector], dtype=object)

    def multiply(self, left: Ciphertext, right: Ciphertext) -> Ciphertext:
        if left.degree != 1 or right.degree != 1:
            raise NoiseBudgetExceeded("Parameters support a single multiplication of fresh ciphertexts")
        q = self.params.modulus
        p = self.params.plaintext_modulus
        tensor = np.outer(self._centered(left.vector), self._centered(right.vector)).flatten()
        # round(p * tensor / q)
        scaled = (tensor * p + q // 2) // q
        return Ciphertext(scaled % q, 2)

    # 门限解密

    def partial_decrypt(self, key_share: SecretKeyShare, ciphertext: Ciphertext) -> PartialDecryption:
        q = self.params.modulus
        smudging = self.rng.bounded_int(1 << self.params.smudging_bits)
        value = (self._lift(ciphertext).dot(key_share.key) + smudging) % q
        return PartialDecryption(index=key_share.index, value=int(value))

    @staticmethod
    def scaled_lagrange(indices: List[int], party_count: int) -> Dict[int, int]:
        """n! * lambda_i, an integer for every subset of 1..n."""
        factorial = math.factorial(party_count)
        coefficients: Dict[int, int] = {}
        for xi in indices:
            value = Fraction(factorial)
            for xj in indices:
                if xj != xi:
                    value *= Fraction(xj, xj - xi)
            if value.denominator != 1:
                raise ValueError(f"Scaled Lagrange coefficient for {xi} is not integral")
            coefficients[xi] = value.numerator
        return coefficients

    def decrypt_combined(self, public_key: ThresholdPublicKey, partials: Mapping[int, PartialDecryption]) -> int:
        """Combine at least ``threshold`` partial decryptions into the plaintext."""
        if len(partials) < public_key.threshold:
            raise AbortedDecryption(
                f"Need {public_key.threshold} partial decryptions, received {len(partials)}"
            )
        q = self.params.modulus
        p = self.params.plaintext_modulus
        n = public_key.party_count

        chosen = sorted(partials)[:public_key.threshold]
        coefficients = self.scaled_lagrange(chosen, n)
        combined = sum(coefficients[i] * partials[i].value for i in chosen) % q
        if combined > q // 2:
            combined -= q
        scaled = ((combined * p + q // 2) // q) % p
        return scaled * pow(math.factorial(n), p - 2, p) % p

    def combine_partials(
        self,
        public_key: ThresholdPublicKey,
        partials: Mapping[int, PartialDecryption],
        mask: int,
        designated: bool,
    ) -> int:
        """Turn partial decryptions of Enc(c + sum(r_j)) into this party's fresh share of c.

        The designated party takes (c + sum(r_j)) - r_i, every other party -r_i.
        """
        p = self.params.plaintext_modulus
        masked = self.decrypt_combined(public_key, partials)
        if not designated:
            masked = 0
        return (masked - mask) % p
