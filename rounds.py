"""Explicit round state machine for the distributed triple generators.

Idle -> Round-k-Sent -> Round-k-Received -> ... -> Completed, with an abort
transition available from every state. Each round waits with its own timeout.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Dict, Iterable, List, Tuple

from data_models import PerformanceStats
from errors import ProtocolStateError, ProtocolTimeout
from network_simulator import NetworkSimulator

logger = logging.getLogger(__name__)


class RoundState(Enum):
    IDLE = "idle"
    SENT = "sent"
    RECEIVED = "received"
    COMPLETED = "completed"
    ABORTED = "aborted"


class RoundTracker:
    """Drives one party through the rounds of one triple generation."""

    def __init__(
        self,
        participant_id: int,
        network: NetworkSimulator,
        timeout: float,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.participant_id = participant_id
        self.network = network
        self.timeout = timeout
        self.cancel_event = cancel_event
        self.state = RoundState.IDLE
        self.round_index = 0
        self.round_name = ""
        self.history: List[Tuple[int, str, RoundState]] = []
        self.performance_stats: List[PerformanceStats] = []
        self._round_started = 0.0

    def _transition(self, new_state: RoundState) -> None:
        logger.debug(
            "[Participant %d] round %d (%s): %s -> %s",
            self.participant_id, self.round_index, self.round_name, self.state.value, new_state.value,
        )
        self.state = new_state
        self.history.append((self.round_index, self.round_name, new_state))

    def reset(self) -> None:
        self.state = RoundState.IDLE
        self.round_index = 0
        self.round_name = ""
        self.history = []

    def sent(self, round_name: str) -> None:
        if self.state not in (RoundState.IDLE, RoundState.RECEIVED):
            raise ProtocolStateError(f"Cannot start round {round_name!r} from state {self.state.value}")
        self.round_index += 1
        self.round_name = round_name
        self._round_started = time.time()
        self._transition(RoundState.SENT)

    def received(self, operations: Dict[str, int] | None = None) -> None:
        if self.state is not RoundState.SENT:
            raise ProtocolStateError(f"No round in flight (state {self.state.value})")
        self.performance_stats.append(
            PerformanceStats(self.round_name, time.time() - self._round_started, operations or {})
        )
        self._transition(RoundState.RECEIVED)

    def complete(self) -> None:
        if self.state not in (RoundState.IDLE, RoundState.RECEIVED):
            raise ProtocolStateError(f"Cannot complete from state {self.state.value}")
        self._transition(RoundState.COMPLETED)

    def commit(self) -> None:
        """Stop honouring cancellation for the rest of this generation.

        Called once peers may be able to finish the triple from what this
        party has already sent; from then on only a timeout aborts it.
        """
        logger.debug("[Participant %d] committed in round %d (%s)",
                     self.participant_id, self.round_index, self.round_name)
        self.cancel_event = None

    def abort(self, reason: str) -> None:
        logger.warning("[Participant %d] aborting round %d (%s): %s",
                       self.participant_id, self.round_index, self.round_name, reason)
        self._transition(RoundState.ABORTED)

    def collect(
        self,
        kind: str,
        tag: str,
        senders: Iterable[int],
        required: int | None = None,
    ) -> Dict[int, Any]:
        """Wait for one message per sender in ``senders``.

        ``required`` lowers the bar below "every sender" (threshold rounds).
        Raises ``ProtocolTimeout`` naming the silent peers when the bar is not
        reached before the round deadline.
        """
        if self.state is not RoundState.SENT:
            raise ProtocolStateError(f"Collect outside a sent round (state {self.state.value})")

        expected = set(senders)
        required = len(expected) if required is None else required
        messages = self.network.receive(
            self.participant_id, kind, tag, len(expected), self.timeout, self.cancel_event
        )

        collected: Dict[int, Any] = {}
        for sender_id, payload in messages:
            if sender_id in expected:
                collected.setdefault(sender_id, payload)

        if len(collected) < required:
            missing = tuple(sorted(expected - set(collected)))
            self.abort(f"{kind}: heard from {len(collected)}/{required}, missing {missing}")
            raise ProtocolTimeout(
                f"Participant {self.participant_id}: round {self.round_name!r} timed out waiting for {missing}",
                missing=missing,
            )
        return collected
