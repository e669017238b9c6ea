"""Shamir and additive secret sharing with homomorphic share operations."""

from __future__ import annotations

from typing import Dict, Iterable, List, Sequence

from constants import DESIGNATED_PARTY, SCHEME_ADDITIVE, SCHEME_SHAMIR
from data_models import Share
from errors import DuplicateShareIndex, IndexMismatch, InsufficientShares, InvalidThreshold
from field import DEFAULT_FIELD, PrimeField


def _check_distinct(shares: Sequence[Share]) -> None:
    seen = set()
    for share in shares:
        if share.index in seen:
            raise DuplicateShareIndex(f"Share index {share.index} supplied twice")
        seen.add(share.index)


class _ShareOps:
    """Pointwise operations common to both schemes."""

    scheme: str = ""

    def __init__(self, field: PrimeField = DEFAULT_FIELD) -> None:
        self.field = field

    @property
    def prime(self) -> int:
        return self.field.prime

    @staticmethod
    def _check_pair(left: Share, right: Share) -> None:
        if left.index != right.index:
            raise IndexMismatch(f"Share indices differ: {left.index} != {right.index}")

    def add_shares(self, left: Share, right: Share) -> Share:
        self._check_pair(left, right)
        return Share(
            self.field.add(left.value, right.value),
            left.index,
            max(left.threshold, right.threshold),
        )

    def sub_shares(self, left: Share, right: Share) -> Share:
        self._check_pair(left, right)
        return Share(
            self.field.sub(left.value, right.value),
            left.index,
            max(left.threshold, right.threshold),
        )

    def scalar_mul(self, share: Share, scalar: int) -> Share:
        return Share(self.field.mul(share.value, scalar % self.prime), share.index, share.threshold)

    def sum_shares(self, shares: Iterable[Share]) -> Share:
        """Pointwise sum of several shares held by the same party."""
        shares = list(shares)
        if not shares:
            raise InsufficientShares("Nothing to sum")
        total = shares[0]
        for share in shares[1:]:
            total = self.add_shares(total, share)
        return total


class ShamirSharing(_ShareOps):
    """(t, n) 门限 Shamir 秘密共享 / Threshold sharing over GF(p).

    A secret is the constant term of a random degree-(t-1) polynomial and
    party ``i`` holds its evaluation at ``x = i``. Any t shares determine the
    secret; t-1 or fewer are independent of it.
    """

    scheme = SCHEME_SHAMIR

    def evaluate_polynomial(self, coefficients: Sequence[int], x: int) -> int:
        # Horner
        value = 0
        for coeff in reversed(coefficients):
            value = (value * x + coeff) % self.prime
        return value

    def share(self, secret: int, t: int, n: int) -> List[Share]:
        if t < 1 or t > n:
            raise InvalidThreshold(f"Threshold must satisfy 1 <= t <= n, got t={t}, n={n}")
        if n >= self.prime:
            raise InvalidThreshold("Party count must be smaller than the field modulus")

        coefficients = [secret % self.prime] + [self.field.random_element() for _ in range(t - 1)]
        shares = [Share(self.evaluate_polynomial(coefficients, i), i, t) for i in range(1, n + 1)]
        del coefficients
        return shares

    def lagrange_coefficients(self, indices: Sequence[int]) -> Dict[int, int]:
        """Coefficients that interpolate the polynomial through ``indices`` at x = 0."""
        coefficients: Dict[int, int] = {}
        for xi in indices:
            numerator = 1
            denominator = 1
            for xj in indices:
                if xj == xi:
                    continue
                numerator = (numerator * xj) % self.prime
                denominator = (denominator * (xj - xi)) % self.prime
            coefficients[xi] = (numerator * self.field.inverse(denominator)) % self.prime
        return coefficients

    def reconstruct(self, shares: Sequence[Share]) -> int:
        if not shares:
            raise InsufficientShares("No shares supplied")
        _check_distinct(shares)

        threshold = max(share.threshold for share in shares)
        if len(shares) < threshold:
            raise InsufficientShares(f"Need {threshold} shares to reconstruct, got {len(shares)}")

        lambdas = self.lagrange_coefficients([share.index for share in shares])
        secret = 0
        for share in shares:
            secret = (secret + share.value * lambdas[share.index]) % self.prime
        return secret

    def mul_shares(self, left: Share, right: Share) -> Share:
        """Pointwise product; lies on a degree-2(t-1) polynomial, so 2t-1 shares reconstruct it."""
        self._check_pair(left, right)
        degree = (left.threshold - 1) + (right.threshold - 1)
        return Share(self.field.mul(left.value, right.value), left.index, degree + 1)

    def add_constant(self, share: Share, constant: int) -> Share:
        # 常数的 0 次多项式在每个点上都等于常数本身
        return Share(self.field.add(share.value, constant % self.prime), share.index, share.threshold)

    def beaver_mul(
        self,
        x_share: Share,
        y_share: Share,
        a_share: Share,
        b_share: Share,
        c_share: Share,
        d: int,
        e: int,
    ) -> Share:
        """[xy] = [c] + d[b] + e[a] + de, with d = x - a and e = y - b already public."""
        for other in (y_share, a_share, b_share, c_share):
            self._check_pair(x_share, other)
        z = self.add_shares(c_share, self.scalar_mul(b_share, d))
        z = self.add_shares(z, self.scalar_mul(a_share, e))
        z = self.add_constant(z, self.field.mul(d % self.prime, e % self.prime))
        return Share(z.value, z.index, max(x_share.threshold, y_share.threshold, z.threshold))

    def reshare_summand(self, summand: int, t: int, n: int) -> List[Share]:
        """Shamir-share one party's additive summand; sub-share i goes to party i."""
        return self.share(summand, t, n)

    def combine_subshares(self, subshares: Iterable[Share]) -> Share:
        """Sum of the sub-shares every party sent us: our share of the summed secret."""
        return self.sum_shares(subshares)


class AdditiveSharing(_ShareOps):
    """加法秘密共享 / Full-threshold sharing: all n summands add up to the secret."""

    scheme = SCHEME_ADDITIVE

    def share(self, secret: int, n: int) -> List[Share]:
        if n < 1:
            raise InvalidThreshold("Additive sharing needs at least one party")

        summands = self.field.rng.field_elements(self.prime, n - 1)
        last = (secret - sum(summands)) % self.prime
        summands.append(last)
        return [Share(value, i, n) for i, value in enumerate(summands, start=1)]

    def reconstruct(self, shares: Sequence[Share]) -> int:
        if not shares:
            raise InsufficientShares("No shares supplied")
        _check_distinct(shares)

        threshold = max(share.threshold for share in shares)
        if len(shares) < threshold:
            raise InsufficientShares(
                f"Additive reconstruction needs all {threshold} shares, got {len(shares)}"
            )
        return self.field.sum(share.value for share in shares)

    def mul_shares(self, left: Share, right: Share) -> Share:
        """Pointwise product of summands.

        The summands reconstruct to sum(x_i * y_i), not x * y: the cross terms
        are missing, which is exactly what a Beaver triple supplies.
        """
        self._check_pair(left, right)
        return Share(self.field.mul(left.value, right.value), left.index, left.threshold)

    def add_constant(self, share: Share, constant: int, designated: int = DESIGNATED_PARTY) -> Share:
        if share.index != designated:
            return share
        return Share(self.field.add(share.value, constant % self.prime), share.index, share.threshold)

    def beaver_mul(
        self,
        x_share: Share,
        y_share: Share,
        a_share: Share,
        b_share: Share,
        c_share: Share,
        d: int,
        e: int,
        designated: int = DESIGNATED_PARTY,
    ) -> Share:
        """Same algebra as the Shamir case; only ``designated`` adds the d*e term."""
        for other in (y_share, a_share, b_share, c_share):
            self._check_pair(x_share, other)
        z = self.add_shares(c_share, self.scalar_mul(b_share, d))
        z = self.add_shares(z, self.scalar_mul(a_share, e))
        return self.add_constant(z, self.field.mul(d % self.prime, e % self.prime), designated)


def scheme_for(name: str, field: PrimeField = DEFAULT_FIELD) -> _ShareOps:
    if name == SCHEME_SHAMIR:
        return ShamirSharing(field)
    if name == SCHEME_ADDITIVE:
        return AdditiveSharing(field)
    raise ValueError(f"Unknown sharing scheme: {name!r}")


shamir = ShamirSharing()
additive = AdditiveSharing()


def beaver_mul(x_share, y_share, a_share, b_share, c_share, d, e) -> Share:
    return shamir.beaver_mul(x_share, y_share, a_share, b_share, c_share, d, e)


def beaver_mul_additive(x_share, y_share, a_share, b_share, c_share, d, e, designated=DESIGNATED_PARTY) -> Share:
    return additive.beaver_mul(x_share, y_share, a_share, b_share, c_share, d, e, designated)
