import pytest

from beaver_multiplication import (
    BeaverMultiplication,
    MultiplicationState,
    NetworkReveal,
    batch_secure_multiply,
    secure_multiply,
)
from beaver_triples import GeneratorConfig, TrustedDealer, TrustedPartyGenerator
from errors import IndexMismatch, PartyUnavailable, ProtocolStateError, TripleAlreadyConsumed
from ole import OLEService
from ole_generator import OLEGenerator
from shares import scheme_for


def _dealer_generators(n=3, t=2, scheme="shamir", timeout=5.0):
    dealer = TrustedDealer(n, t, scheme)
    return [
        TrustedPartyGenerator(GeneratorConfig(n, t, pid, timeout, scheme), dealer=dealer)
        for pid in range(1, n + 1)
    ]


def _share_inputs(scheme, values, n=3, t=2):
    algebra = scheme_for(scheme)
    if scheme == "additive":
        return [algebra.share(value, n) for value in values]
    return [algebra.share(value, t, n) for value in values]


def _reveal(generator, network):
    return NetworkReveal(
        generator.party_id, network, generator.config.party_ids, generator.config.round_timeout
    )


def _reveals(generators, network):
    """Every party joins the network before any thread starts broadcasting."""
    return {generator.party_id: _reveal(generator, network) for generator in generators}


def test_six_times_seven(network, run_parties, shamir):
    generators = _dealer_generators()
    xs, ys = _share_inputs("shamir", [6, 7])
    reveals = _reveals(generators, network)

    def multiply(generator):
        pid = generator.party_id
        return secure_multiply(generator, reveals[pid], xs[pid - 1], ys[pid - 1], "six-seven")

    results, errors = run_parties(generators, multiply)
    assert not errors
    products = [results[pid] for pid in (1, 2, 3)]
    assert shamir.reconstruct(products[:2]) == 42
    assert shamir.reconstruct(products[1:]) == 42
    assert all(network.message_queues[pid] == {} for pid in (1, 2, 3))


@pytest.mark.parametrize("scheme", ["shamir", "additive"])
def test_random_products_with_dealer_triples(network, run_parties, field, scheme):
    generators = _dealer_generators(scheme=scheme)
    x, y = field.random_element(), field.random_element()
    xs, ys = _share_inputs(scheme, [x, y])
    reveals = _reveals(generators, network)

    def multiply(generator):
        pid = generator.party_id
        generator.prefill(2)
        return secure_multiply(generator, reveals[pid], xs[pid - 1], ys[pid - 1], "random")

    results, errors = run_parties(generators, multiply)
    assert not errors
    assert scheme_for(scheme).reconstruct(list(results.values())) == field.mul(x, y)
    assert all(generator.pool_size == 1 and generator.consumed == 1 for generator in generators)


@pytest.mark.parametrize("scheme", ["shamir", "additive"])
def test_products_with_ole_triples(network, run_parties, field, scheme):
    service = OLEService()
    generators = [
        OLEGenerator(GeneratorConfig(3, 2, pid, 5.0, scheme, "ole-mul"), network, service) for pid in (1, 2, 3)
    ]
    x, y = field.random_element(), field.random_element()
    xs, ys = _share_inputs(scheme, [x, y])
    reveals = _reveals(generators, network)

    def multiply(generator):
        pid = generator.party_id
        generator.prefill(1)
        return secure_multiply(generator, reveals[pid], xs[pid - 1], ys[pid - 1], "ole")

    results, errors = run_parties(generators, multiply)
    assert not errors
    assert scheme_for(scheme).reconstruct(list(results.values())) == field.mul(x, y)


def test_batch_multiplication_consumes_fifo(network, run_parties, shamir):
    generators = _dealer_generators()
    pairs = [(2, 3), (10, 10), (123456, 654321)]
    shared = [_share_inputs("shamir", pair) for pair in pairs]
    reveals = _reveals(generators, network)

    def multiply(generator):
        pid = generator.party_id
        generator.prefill(4)
        inputs = [(xs[pid - 1], ys[pid - 1]) for xs, ys in shared]
        products = batch_secure_multiply(generator, reveals[pid], inputs, "batch")
        return products, generator.generate_single().triple_id

    results, errors = run_parties(generators, multiply)
    assert not errors
    for position, (x, y) in enumerate(pairs):
        assert shamir.reconstruct([results[pid][0][position] for pid in (1, 2)]) == x * y
    assert all(next_id == 3 for _, next_id in results.values())


def test_triple_is_single_use(network, run_parties):
    generators = _dealer_generators()
    xs, ys = _share_inputs("shamir", [4, 5])
    reveals = _reveals(generators, network)
    sessions = {}

    def multiply(generator):
        pid = generator.party_id
        session = BeaverMultiplication(generator, reveals[pid])
        sessions[pid] = session
        return session.multiply(xs[pid - 1], ys[pid - 1], "once")

    _, errors = run_parties(generators, multiply)
    assert not errors
    session = sessions[1]
    assert session.state is MultiplicationState.DONE
    triple = session.triples[0]
    assert triple.is_consumed
    with pytest.raises(TripleAlreadyConsumed):
        triple.consume()
    with pytest.raises(TripleAlreadyConsumed):
        session.generator.pool.push(triple)
    with pytest.raises(ProtocolStateError):
        session.multiply(xs[0], ys[0], "twice")


def test_failed_reveal_loses_the_triple(network):
    generators = _dealer_generators(scheme="additive", timeout=0.2)
    reveals = _reveals(generators, network)
    generator = generators[0]
    generator.prefill(1)
    xs, ys = _share_inputs("additive", [1, 2])

    session = BeaverMultiplication(generator, reveals[1])
    with pytest.raises(PartyUnavailable):
        session.multiply(xs[0], ys[0], "lonely")
    assert session.state is MultiplicationState.FAILED
    assert session.triples[0].is_consumed
    assert generator.pool_size == 0
    assert generator.statistics()['discarded'] == 1
    assert network.message_queues[1] == {}


def test_inputs_must_belong_to_the_party(network):
    generator = _dealer_generators()[0]
    xs, ys = _share_inputs("shamir", [1, 2])
    session = BeaverMultiplication(generator, _reveal(generator, network))
    with pytest.raises(IndexMismatch):
        session.multiply(xs[1], ys[1], "wrong")
    assert session.state is MultiplicationState.IDLE
    assert generator.consumed == 0
