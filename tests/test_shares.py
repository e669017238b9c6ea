import random

import pytest

from data_models import Share
from errors import DuplicateShareIndex, IndexMismatch, InsufficientShares, InvalidThreshold
from shares import beaver_mul, beaver_mul_additive, scheme_for


def test_concrete_scenario_secret_42(shamir):
    shares = shamir.share(42, 2, 3)
    assert [share.index for share in shares] == [1, 2, 3]
    assert all(share.threshold == 2 for share in shares)
    assert shamir.reconstruct(shares[0:2]) == 42
    assert shamir.reconstruct(shares[1:3]) == 42
    assert shamir.reconstruct([shares[0], shares[2]]) == 42


@pytest.mark.parametrize("t,n", [(2, 2), (2, 5), (3, 7), (5, 5), (10, 31), (25, 50)])
def test_any_t_shares_reconstruct(shamir, t, n):
    secret = shamir.field.random_element()
    shares = shamir.share(secret, t, n)
    assert shamir.reconstruct(shares[:t]) == secret
    assert shamir.reconstruct(random.sample(shares, t)) == secret
    assert shamir.reconstruct(shares) == secret


def test_threshold_one_is_replication(shamir):
    shares = shamir.share(9, 1, 4)
    assert {share.value for share in shares} == {9}


@pytest.mark.parametrize("t,n", [(0, 3), (4, 3), (-1, 2)])
def test_invalid_threshold(shamir, t, n):
    with pytest.raises(InvalidThreshold):
        shamir.share(1, t, n)


def test_reconstruct_with_too_few_shares(shamir):
    shares = shamir.share(5, 3, 5)
    with pytest.raises(InsufficientShares):
        shamir.reconstruct(shares[:2])
    with pytest.raises(InsufficientShares):
        shamir.reconstruct([])


def test_reconstruct_with_duplicate_index(shamir):
    shares = shamir.share(5, 2, 3)
    with pytest.raises(DuplicateShareIndex):
        shamir.reconstruct([shares[0], shares[0]])


def test_linear_operations(shamir):
    xs = shamir.share(10, 2, 3)
    ys = shamir.share(32, 2, 3)
    sums = [shamir.add_shares(x, y) for x, y in zip(xs, ys)]
    diffs = [shamir.sub_shares(y, x) for x, y in zip(xs, ys)]
    scaled = [shamir.scalar_mul(x, 5) for x in xs]
    shifted = [shamir.add_constant(x, 7) for x in xs]
    assert shamir.reconstruct(sums[:2]) == 42
    assert shamir.reconstruct(diffs[1:]) == 22
    assert shamir.reconstruct(scaled[:2]) == 50
    assert shamir.reconstruct(shifted[1:]) == 17


def test_mismatched_indices_are_rejected(shamir):
    xs = shamir.share(1, 2, 3)
    with pytest.raises(IndexMismatch):
        shamir.add_shares(xs[0], xs[1])
    with pytest.raises(IndexMismatch):
        shamir.sub_shares(xs[0], xs[2])
    with pytest.raises(IndexMismatch):
        shamir.mul_shares(xs[1], xs[2])


def test_mul_shares_tracks_degree_growth(shamir):
    xs = shamir.share(6, 2, 3)
    ys = shamir.share(7, 2, 3)
    products = [shamir.mul_shares(x, y) for x, y in zip(xs, ys)]
    assert all(product.threshold == 3 for product in products)
    assert shamir.reconstruct(products) == 42
    with pytest.raises(InsufficientShares):
        shamir.reconstruct(products[:2])


def test_additive_sum_and_missing_share(additive):
    for n in (2, 3, 8):
        secret = additive.field.random_element()
        shares = additive.share(secret, n)
        assert sum(share.value for share in shares) % additive.prime == secret
        assert additive.reconstruct(shares) == secret
        for missing in range(n):
            with pytest.raises(InsufficientShares):
                additive.reconstruct(shares[:missing] + shares[missing + 1:])


def test_additive_constant_only_at_lowest_index(additive):
    shares = additive.share(40, 3)
    shifted = [additive.add_constant(share, 2) for share in shares]
    assert shifted[1:] == shares[1:]
    assert additive.reconstruct(shifted) == 42


def test_additive_mul_shares_misses_cross_terms(additive):
    xs = additive.share(6, 2)
    ys = additive.share(7, 2)
    pointwise = [additive.mul_shares(x, y) for x, y in zip(xs, ys)]
    expected = sum(x.value * y.value for x, y in zip(xs, ys)) % additive.prime
    assert additive.reconstruct(pointwise) == expected


def _local_beaver(algebra, xs, ys, triple_a, triple_b):
    ds = [algebra.sub_shares(x, a) for x, a in zip(xs, triple_a)]
    es = [algebra.sub_shares(y, b) for y, b in zip(ys, triple_b)]
    return algebra.reconstruct(ds), algebra.reconstruct(es)


def test_beaver_mul_shamir(shamir):
    a, b = shamir.field.random_element(), shamir.field.random_element()
    triple_a = shamir.share(a, 2, 3)
    triple_b = shamir.share(b, 2, 3)
    triple_c = shamir.share(shamir.field.mul(a, b), 2, 3)
    xs, ys = shamir.share(6, 2, 3), shamir.share(7, 2, 3)
    d, e = _local_beaver(shamir, xs, ys, triple_a, triple_b)

    zs = [beaver_mul(*row, d, e) for row in zip(xs, ys, triple_a, triple_b, triple_c)]
    assert shamir.reconstruct(zs[:2]) == 42
    assert shamir.reconstruct(zs[1:]) == 42


def test_beaver_mul_additive(additive):
    field = additive.field
    x, y = field.random_element(), field.random_element()
    a, b = field.random_element(), field.random_element()
    triple_a, triple_b = additive.share(a, 4), additive.share(b, 4)
    triple_c = additive.share(field.mul(a, b), 4)
    xs, ys = additive.share(x, 4), additive.share(y, 4)
    d, e = _local_beaver(additive, xs, ys, triple_a, triple_b)

    zs = [beaver_mul_additive(*row, d, e) for row in zip(xs, ys, triple_a, triple_b, triple_c)]
    assert additive.reconstruct(zs) == field.mul(x, y)


def test_additive_to_shamir_resharing(shamir, additive):
    secret = 123456789
    summands = additive.share(secret, 3)
    sub_shares = [shamir.reshare_summand(summand.value, 2, 3) for summand in summands]
    combined = [
        shamir.combine_subshares(column[party] for column in sub_shares) for party in range(3)
    ]
    assert all(share.threshold == 2 for share in combined)
    assert shamir.reconstruct(combined[:2]) == secret
    assert shamir.reconstruct(combined[1:]) == secret


def test_scheme_lookup():
    assert scheme_for("shamir").scheme == "shamir"
    assert scheme_for("additive").scheme == "additive"
    with pytest.raises(ValueError):
        scheme_for("replicated")


def test_sum_shares_requires_input(shamir):
    with pytest.raises(InsufficientShares):
        shamir.sum_shares([])
    assert shamir.sum_shares([Share(1, 2, 2), Share(3, 2, 2)]) == Share(4, 2, 2)
