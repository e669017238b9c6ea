"""Oblivious linear evaluation (OLE) collaborator.

``GilboaOLE.execute`` splits the product of the sender's input x and the
receiver's input y into two additive shares, one per side, by Gilboa's bit
decomposition over 1-out-of-2 oblivious transfers. ``OLEService`` is the
meeting point through which two participant threads feed their private
inputs to one instance; neither thread ever sees the other's input.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, Hashable, Set

from constants import RECEIVE_POLL_INTERVAL
from errors import GenerationCancelled, PartyUnavailable, ProtocolTimeout
from field import DEFAULT_FIELD, PrimeField
from secure_rng import SecureRandom

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OLEOutput:
    """sender_share + receiver_share = x * y (mod p)."""

    sender_share: int
    receiver_share: int


class GilboaOLE:
    """Gilboa multiplication: one OT per bit of the receiver's input."""

    def __init__(self, field: PrimeField = DEFAULT_FIELD, rng: SecureRandom | None = None) -> None:
        self.field = field
        self.rng = rng or SecureRandom("gilboa-ole")
        self.bits = field.prime.bit_length()

    @staticmethod
    def transfer(m0: int, m1: int, choice: int) -> int:
        """1-out-of-2 OT: the receiver learns only m_choice, the sender learns nothing."""
        return m1 if choice else m0

    def execute(self, sender_input: int, receiver_input: int) -> OLEOutput:
        prime = self.field.prime
        sender_sum = 0
        receiver_sum = 0

        for i in range(self.bits):
            bit = (receiver_input >> i) & 1
            shifted = (sender_input << i) % prime
            r_i = self.rng.field_element(prime)

            received = self.transfer(r_i, (r_i + shifted) % prime, bit)
            sender_sum = (sender_sum - r_i) % prime
            receiver_sum = (receiver_sum + received) % prime

        return OLEOutput(sender_share=sender_sum, receiver_share=receiver_sum)


class OLEService:
    """Thread-safe rendezvous for pairwise OLE instances.

    An instance is identified by a hashable key agreed by both sides. The
    first submission waits (bounded by the collector's timeout) for the other
    side; once both inputs are present the product is split, the inputs are
    dropped, and each side can collect its own output exactly once.
    """

    def __init__(self, ole: GilboaOLE | None = None) -> None:
        self.ole = ole or GilboaOLE()
        self.condition = threading.Condition()
        self._sender_inputs: Dict[Hashable, int] = {}
        self._receiver_inputs: Dict[Hashable, int] = {}
        self._outputs: Dict[Hashable, Dict[str, int]] = {}
        self._failed: Set[Hashable] = set()
        self._aborting_parties: Set[int] = set()
        self.executions = 0

    def abort_party(self, party_id: int) -> None:
        """Make every instance that party ``party_id`` takes part in abort."""
        logger.warning("OLE instances of party %d will abort", party_id)
        with self.condition:
            self._aborting_parties.add(party_id)
            self.condition.notify_all()

    def _run_if_ready(self, key: Hashable) -> None:
        # caller holds self.condition
        if key in self._sender_inputs and key in self._receiver_inputs:
            x = self._sender_inputs.pop(key)
            y = self._receiver_inputs.pop(key)
            output = self.ole.execute(x, y)
            self._outputs[key] = {'sender': output.sender_share, 'receiver': output.receiver_share}
            self.executions += 1
            self.condition.notify_all()

    def submit(self, key: Hashable, role: str, party_id: int, value: int) -> None:
        with self.condition:
            if key in self._failed:
                return
            if party_id in self._aborting_parties:
                self._failed.add(key)
                self.condition.notify_all()
                return
            inputs = self._sender_inputs if role == 'sender' else self._receiver_inputs
            inputs[key] = value
            self._run_if_ready(key)

    def collect(
        self,
        key: Hashable,
        role: str,
        timeout: float,
        cancel_event: threading.Event | None = None,
    ) -> int:
        end_time = time.time() + timeout
        with self.condition:
            while True:
                if key in self._failed:
                    raise PartyUnavailable(f"OLE instance {key} aborted")
                outputs = self._outputs.get(key)
                if outputs is not None and role in outputs:
                    value = outputs.pop(role)
                    if not outputs:
                        del self._outputs[key]
                    return value
                if cancel_event is not None and cancel_event.is_set():
                    self._drop(key)
                    raise GenerationCancelled(f"OLE instance {key} cancelled")
                remaining = end_time - time.time()
                if remaining <= 0:
                    self._drop(key)
                    raise ProtocolTimeout(f"OLE instance {key} timed out")
                self.condition.wait(min(RECEIVE_POLL_INTERVAL, remaining))

    def _drop(self, key: Hashable) -> None:
        # caller holds self.condition
        logger.debug("Dropping OLE instance %s", key)
        self._failed.add(key)
        self._sender_inputs.pop(key, None)
        self._receiver_inputs.pop(key, None)
        self._outputs.pop(key, None)
        self.condition.notify_all()
