"""Cryptographically secure randomness with labelled, per-component sources."""

from __future__ import annotations

import secrets
from typing import List


class SecureRandom:
    """OS-backed CSPRNG wrapper / 每个组件使用带标签的独立随机源.

    The label only names the source in logs and debugging output; every draw
    comes straight from the operating system's CSPRNG.
    """

    def __init__(self, label: str = "default") -> None:
        self.label = label

    def __repr__(self) -> str:
        return f"SecureRandom({self.label!r})"

    def derive_child(self, label: str) -> "SecureRandom":
        return SecureRandom(f"{self.label}/{label}")

    def randbelow(self, upper: int) -> int:
        if upper <= 0:
            raise ValueError("Upper bound must be positive")
        return secrets.randbelow(upper)

    def field_element(self, prime: int) -> int:
        """Uniform element of GF(prime)."""
        return secrets.randbelow(prime)

    def field_elements(self, prime: int, count: int) -> List[int]:
        return [secrets.randbelow(prime) for _ in range(count)]

    def nonzero_field_element(self, prime: int) -> int:
        return 1 + secrets.randbelow(prime - 1)

    def bounded_int(self, bound: int) -> int:
        """Uniform integer in [-bound, bound]."""
        return secrets.randbelow(2 * bound + 1) - bound

    def bounded_vector(self, length: int, bound: int) -> List[int]:
        return [self.bounded_int(bound) for _ in range(length)]

    def ternary_vector(self, length: int) -> List[int]:
        return self.bounded_vector(length, 1)

    def token_bytes(self, nbytes: int = 32) -> bytes:
        return secrets.token_bytes(nbytes)
