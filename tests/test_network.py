import threading

import pytest

from crypto_manager import CryptoManager
from data_models import BeaverTriple, Share
from errors import GenerationCancelled, ProtocolStateError, ProtocolTimeout, SerializationError
from rounds import RoundState, RoundTracker
from serialization import decode_triple, encode_triple


def _register(network, *party_ids):
    for party_id in party_ids:
        network.register_participant(party_id)


def test_messages_are_delivered_in_order(network):
    _register(network, 1, 2)
    for value in range(5):
        network.send(1, 2, 'data', 'session', value)
    received = network.receive(2, 'data', 'session', 5, timeout=1.0)
    assert received == [(1, value) for value in range(5)]
    assert network.message_counts['data'] == 5


def test_mailboxes_are_separated_by_tag(network):
    _register(network, 1, 2)
    network.send(1, 2, 'data', 'old', 'stale')
    network.send(1, 2, 'data', 'new', 'fresh')
    assert network.receive(2, 'data', 'new', 1, timeout=1.0) == [(1, 'fresh')]
    network.discard(2, 'old')
    assert ('data', 'old') not in network.message_queues[2]
    network.send(1, 2, 'data', 'old', 'late')
    assert ('data', 'old') not in network.message_queues[2]
    assert network.receive(2, 'data', 'old', 1, timeout=0.1) == []


def test_broadcast_reaches_everyone(network):
    _register(network, 1, 2, 3)
    network.broadcast(1, 'hello', 't', 'hi')
    network.broadcast(2, 'hello', 't', 'yo', include_self=False)
    assert network.receive(1, 'hello', 't', 2, timeout=1.0) == [(1, 'hi'), (2, 'yo')]
    assert network.receive(2, 'hello', 't', 2, timeout=0.2) == [(1, 'hi')]
    assert len(network.receive(3, 'hello', 't', 2, timeout=1.0)) == 2


def test_blocked_sender_is_dropped(network):
    _register(network, 1, 2)
    network.block(1, 'data')
    network.send(1, 2, 'data', 't', 'lost')
    network.send(1, 2, 'other', 't', 'kept')
    assert network.receive(2, 'data', 't', 1, timeout=0.1) == []
    network.unblock(1, 'data')
    network.send(1, 2, 'data', 't', 'delivered')
    assert network.receive(2, 'data', 't', 1, timeout=1.0) == [(1, 'delivered')]


def test_receive_honours_cancellation(network):
    _register(network, 1)
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(GenerationCancelled):
        network.receive(1, 'data', 't', 1, timeout=5.0, cancel_event=cancel)


def test_closed_tag_history_is_bounded(network, monkeypatch):
    monkeypatch.setattr("network_simulator.CLOSED_TAG_HISTORY", 2)
    _register(network, 1, 2)
    for tag in ('t0', 't1', 't2'):
        network.discard(2, tag)
    assert list(network.closed_tags[2]) == ['t1', 't2']
    network.send(1, 2, 'data', 't0', 'reopened')
    assert network.receive(2, 'data', 't0', 1, timeout=1.0) == [(1, 'reopened')]


def test_committed_round_ignores_cancellation(network):
    _register(network, 1, 2)
    cancel = threading.Event()
    tracker = RoundTracker(1, network, timeout=1.0, cancel_event=cancel)
    tracker.sent("final")
    cancel.set()
    tracker.commit()
    network.send(2, 1, 'value', 't', 9)
    assert tracker.collect('value', 't', [2]) == {2: 9}


def test_round_tracker_transitions(network):
    _register(network, 1, 2)
    tracker = RoundTracker(1, network, timeout=1.0)
    with pytest.raises(ProtocolStateError):
        tracker.received()

    tracker.sent("exchange")
    network.send(2, 1, 'value', 't', 7)
    network.send(1, 1, 'value', 't', 6)
    assert tracker.collect('value', 't', [1, 2]) == {1: 6, 2: 7}
    tracker.received({'values': 2})
    tracker.complete()

    assert tracker.state is RoundState.COMPLETED
    assert [state for _, _, state in tracker.history] == [
        RoundState.SENT, RoundState.RECEIVED, RoundState.COMPLETED,
    ]
    assert tracker.performance_stats[0].phase_name == "exchange"
    assert tracker.performance_stats[0].operations == {'values': 2}


def test_round_timeout_names_missing_peers(network):
    _register(network, 1, 2, 3)
    tracker = RoundTracker(1, network, timeout=0.2)
    tracker.sent("exchange")
    network.send(2, 1, 'value', 't', 1)
    with pytest.raises(ProtocolTimeout) as info:
        tracker.collect('value', 't', [1, 2, 3])
    assert info.value.missing == (1, 3)
    assert tracker.state is RoundState.ABORTED


def test_threshold_round_accepts_partial_answers(network):
    _register(network, 1, 2, 3)
    tracker = RoundTracker(1, network, timeout=0.2)
    tracker.sent("threshold")
    network.send(2, 1, 'value', 't', 'x')
    network.send(3, 1, 'value', 't', 'y')
    assert tracker.collect('value', 't', [1, 2, 3], required=2) == {2: 'x', 3: 'y'}


def test_sealed_row_round_trip_and_tampering():
    signing_private, signing_public = CryptoManager.generate_signature_keypair()
    kem_private, kem_public = CryptoManager.generate_kem_keypair()
    row = BeaverTriple(Share(1, 2, 2), Share(2, 2, 2), Share(3, 2, 2), 9)

    package = CryptoManager.seal_row(encode_triple(row), 2, 9, kem_public, signing_private)
    assert decode_triple(CryptoManager.open_row(package, kem_private, signing_public)).share_c == row.share_c

    _, other_public = CryptoManager.generate_signature_keypair()
    with pytest.raises(SerializationError):
        CryptoManager.open_row(package, kem_private, other_public)

    package.receiver_id = 3
    with pytest.raises(SerializationError):
        CryptoManager.open_row(package, kem_private, signing_public)
