import threading
from typing import Callable, Dict, Iterable, Tuple

import pytest

from field import PrimeField
from network_simulator import NetworkSimulator
from shares import AdditiveSharing, ShamirSharing


@pytest.fixture
def field():
    return PrimeField()


@pytest.fixture
def shamir(field):
    return ShamirSharing(field)


@pytest.fixture
def additive(field):
    return AdditiveSharing(field)


@pytest.fixture
def network():
    return NetworkSimulator()


def _run_parties(parties: Iterable, target: Callable) -> Tuple[Dict[int, object], Dict[int, BaseException]]:
    """Run ``target(party)`` for every party in its own thread, keyed by party_id."""
    results: Dict[int, object] = {}
    errors: Dict[int, BaseException] = {}

    def worker(party):
        try:
            results[party.party_id] = target(party)
        except Exception as exc:
            errors[party.party_id] = exc

    threads = [threading.Thread(target=worker, args=(party,)) for party in parties]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return results, errors


@pytest.fixture
def run_parties():
    return _run_parties
