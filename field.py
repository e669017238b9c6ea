"""Arithmetic over the prime field GF(p)."""

from __future__ import annotations

from typing import Iterable

from constants import FIELD_PRIME
from errors import SerializationError, ZeroInverse
from secure_rng import SecureRandom


class PrimeField:
    """有限域 GF(p) 运算 / Modular arithmetic over a fixed prime modulus.

    Operands are expected to be already reduced into [0, p). Python integers
    do not overflow, so products are reduced after exact multiplication.
    """

    def __init__(self, prime: int = FIELD_PRIME, rng: SecureRandom | None = None) -> None:
        if prime < 3:
            raise ValueError("Field modulus must be an odd prime")
        self.prime = prime
        self.byte_length = (prime.bit_length() + 7) // 8
        self.rng = rng or SecureRandom("field")

    def __repr__(self) -> str:
        return f"PrimeField({self.prime})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, PrimeField) and other.prime == self.prime

    def __hash__(self) -> int:
        return hash(self.prime)

    def element(self, value: int) -> int:
        """Reduce an arbitrary integer into the field."""
        return value % self.prime

    def is_element(self, value: int) -> bool:
        return isinstance(value, int) and 0 <= value < self.prime

    def add(self, a: int, b: int) -> int:
        return (a + b) % self.prime

    def sub(self, a: int, b: int) -> int:
        return (a - b) % self.prime

    def neg(self, a: int) -> int:
        return (-a) % self.prime

    def mul(self, a: int, b: int) -> int:
        return (a * b) % self.prime

    def pow(self, base: int, exponent: int) -> int:
        if exponent < 0:
            return pow(self.inverse(base), -exponent, self.prime)
        return pow(base, exponent, self.prime)

    def inverse(self, a: int) -> int:
        # 费马小定理: a^(p-2) = a^(-1) mod p
        if a % self.prime == 0:
            raise ZeroInverse("Zero has no multiplicative inverse")
        return pow(a, self.prime - 2, self.prime)

    def div(self, a: int, b: int) -> int:
        return self.mul(a, self.inverse(b))

    def sum(self, values: Iterable[int]) -> int:
        total = 0
        for value in values:
            total += value
        return total % self.prime

    def random_element(self) -> int:
        return self.rng.field_element(self.prime)

    def random_nonzero(self) -> int:
        return self.rng.nonzero_field_element(self.prime)

    def encode(self, value: int) -> bytes:
        """Fixed-width big-endian encoding of a field element."""
        if not self.is_element(value):
            raise SerializationError(f"Value {value!r} is not a reduced field element")
        return value.to_bytes(self.byte_length, "big")

    def decode(self, data: bytes) -> int:
        if len(data) != self.byte_length:
            raise SerializationError(
                f"Expected {self.byte_length} bytes for a field element, got {len(data)}"
            )
        value = int.from_bytes(data, "big")
        if value >= self.prime:
            raise SerializationError("Decoded integer is outside the field")
        return value


DEFAULT_FIELD = PrimeField(FIELD_PRIME)


def field_add(a: int, b: int) -> int:
    return DEFAULT_FIELD.add(a, b)


def field_sub(a: int, b: int) -> int:
    return DEFAULT_FIELD.sub(a, b)


def field_mul(a: int, b: int) -> int:
    return DEFAULT_FIELD.mul(a, b)


def field_pow(base: int, exponent: int) -> int:
    return DEFAULT_FIELD.pow(base, exponent)


def field_inverse(a: int) -> int:
    return DEFAULT_FIELD.inverse(a)


def random_field_element() -> int:
    return DEFAULT_FIELD.random_element()
