import pytest

from beaver_triples import GeneratorConfig, GeneratorVariant, create_generator, verify_triple_rows
from errors import GenerationCancelled, PartyUnavailable, ProtocolTimeout
from ole import GilboaOLE, OLEService
from ole_generator import OLEGenerator


def _generators(network, n=3, t=2, scheme="additive", timeout=5.0, service=None, record_view=False):
    service = service or OLEService()
    return [
        OLEGenerator(GeneratorConfig(n, t, pid, timeout, scheme, "ole"), network, service, record_view=record_view)
        for pid in range(1, n + 1)
    ], service


@pytest.mark.parametrize("x,y", [(0, 5), (5, 0), (6, 7), (2**61 - 2, 2**61 - 2), (123456789, 987654321)])
def test_gilboa_ole_splits_product(field, x, y):
    output = GilboaOLE(field).execute(x, y)
    assert (output.sender_share + output.receiver_share) % field.prime == x * y % field.prime


def test_ole_service_pairs_inputs(field):
    service = OLEService()
    service.submit('k', 'receiver', 2, 7)
    service.submit('k', 'sender', 1, 6)
    sender = service.collect('k', 'sender', timeout=1.0)
    receiver = service.collect('k', 'receiver', timeout=1.0)
    assert (sender + receiver) % field.prime == 42
    assert service.executions == 1


def test_ole_service_times_out_without_peer():
    service = OLEService()
    service.submit('lonely', 'sender', 1, 3)
    with pytest.raises(ProtocolTimeout):
        service.collect('lonely', 'sender', timeout=0.1)


def test_three_party_ole_triples(network, run_parties):
    generators, service = _generators(network)
    results, errors = run_parties(generators, lambda g: g.generate_batch(3))
    assert not errors
    for position in range(3):
        rows = {pid: batch[position] for pid, batch in results.items()}
        assert all(row.scheme == "additive" and row.share_c.threshold == 3 for row in rows.values())
        assert verify_triple_rows(rows)
    # two OLE instances per ordered pair and triple
    assert service.executions == 3 * 3 * 2


def test_no_party_sees_another_partys_summands(network, run_parties):
    generators, _ = _generators(network, record_view=True)
    results, errors = run_parties(generators, lambda g: g.generate_batch(2))
    assert not errors

    for triple_id in range(2):
        for generator in generators:
            view = generator.view[triple_id]
            assert set(view) == {'own', 'ole_outputs', 'row'}
            seen = set(view['ole_outputs']) | set(view['row'])
            for other in generators:
                if other is generator:
                    continue
                a_j, b_j = other.view[triple_id]['own']
                assert a_j not in seen and b_j not in seen
            # the local row is built from the party's own summands
            a_i, b_i = view['own']
            assert view['row'][:2] == (a_i, b_i)


def test_shamir_output_via_resharing(network, run_parties, shamir):
    generators, _ = _generators(network, n=4, t=2, scheme="shamir")
    results, errors = run_parties(generators, lambda g: g.generate_batch(2))
    assert not errors
    for position in range(2):
        rows = {pid: batch[position] for pid, batch in results.items()}
        assert all(row.scheme == "shamir" and row.share_a.threshold == 2 for row in rows.values())
        assert verify_triple_rows(rows)
        a = shamir.reconstruct([rows[1].share_a, rows[3].share_a])
        b = shamir.reconstruct([rows[2].share_b, rows[4].share_b])
        c = shamir.reconstruct([rows[4].share_c, rows[1].share_c])
        assert c == shamir.field.mul(a, b)


def test_failed_ole_instance_aborts_every_party(network, run_parties):
    generators, service = _generators(network, timeout=2.0)
    service.abort_party(3)
    results, errors = run_parties(generators, lambda g: g.generate_batch(2))
    assert not results
    assert sorted(errors) == [1, 2, 3]
    assert all(isinstance(error, PartyUnavailable) for error in errors.values())
    for generator in generators:
        assert generator.pool_size == 0
        assert generator.view == {}
        assert generator.discarded == 1


def test_silent_party_times_out(network, run_parties):
    generators, _ = _generators(network, timeout=0.3)
    results, errors = run_parties(generators[:2], lambda g: g.generate_single())
    assert not results
    assert all(isinstance(error, PartyUnavailable) for error in errors.values())


def test_factory_builds_ole_generator(network):
    generator = create_generator(
        GeneratorVariant.OLE, GeneratorConfig(2, 2, 1), network=network, ole_service=OLEService()
    )
    assert isinstance(generator, OLEGenerator)
    assert generator.variant is GeneratorVariant.OLE


def test_consumed_triples_leave_no_per_triple_state(network, run_parties):
    generators, _ = _generators(network)

    def consume(generator):
        return [generator.acquire() for _ in range(20)]

    results, errors = run_parties(generators, consume)
    assert not errors
    assert all(len(triples) == 20 for triples in results.values())
    for generator in generators:
        assert generator.view == {}
        assert network.message_queues[generator.party_id] == {}
        assert len(network.closed_tags[generator.party_id]) == 20


@pytest.mark.parametrize("scheme", ["additive", "shamir"])
def test_cancel_after_completion_broadcast_still_yields_a_whole_triple(network, run_parties, monkeypatch, scheme):
    generators, _ = _generators(network, scheme=scheme)
    party = generators[2]
    broadcast = network.broadcast

    def broadcast_then_cancel(sender_id, kind, tag, payload, include_self=True):
        broadcast(sender_id, kind, tag, payload, include_self)
        if sender_id == party.party_id and kind == 'ole_completion':
            party.cancel()

    monkeypatch.setattr(network, "broadcast", broadcast_then_cancel)
    results, errors = run_parties(generators, lambda g: g.generate_single())
    assert not errors
    assert sorted(results) == [1, 2, 3]
    assert verify_triple_rows(results)


def test_cancel_during_pairwise_round_fails_everyone(network, run_parties):
    generators, service = _generators(network, timeout=2.0)
    party = generators[2]
    submit = service.submit

    def submit_then_cancel(key, role, party_id, value):
        submit(key, role, party_id, value)
        if party_id == party.party_id:
            party.cancel()

    service.submit = submit_then_cancel
    results, errors = run_parties(generators, lambda g: g.generate_single())
    assert not results
    assert isinstance(errors[3], GenerationCancelled)
    assert all(isinstance(errors[pid], PartyUnavailable) for pid in (1, 2))
    assert all(generator.discarded == 1 for generator in generators)
