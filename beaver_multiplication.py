"""Secure multiplication of two shared values with one Beaver triple.

Idle -> TripleAcquired -> RevealPending -> Combined -> Done, with Failed
reachable from every intermediate state. The triple is consumed when it is
acquired and stays consumed whatever happens afterwards.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Dict, List, Sequence, Tuple

from beaver_triples import BeaverTripleGenerator
from constants import DEFAULT_ROUND_TIMEOUT, DESIGNATED_PARTY, SCHEME_ADDITIVE
from data_models import BeaverTriple, RevealMessage, Share
from errors import IndexMismatch, MPCError, ProtocolStateError
from field import DEFAULT_FIELD, PrimeField
from network_simulator import NetworkSimulator
from rounds import RoundTracker
from shares import scheme_for

logger = logging.getLogger(__name__)


class MultiplicationState(Enum):
    IDLE = "idle"
    TRIPLE_ACQUIRED = "triple_acquired"
    REVEAL_PENDING = "reveal_pending"
    COMBINED = "combined"
    DONE = "done"
    FAILED = "failed"


class NetworkReveal:
    """Public opening of shared values over the simulated network.

    Shamir values open once ``threshold`` shares arrived, additive values need
    every party; a short round raises ``PartyUnavailable``.
    """

    def __init__(
        self,
        participant_id: int,
        network: NetworkSimulator,
        party_ids: Sequence[int],
        timeout: float = DEFAULT_ROUND_TIMEOUT,
        cancel_event: threading.Event | None = None,
        field: PrimeField = DEFAULT_FIELD,
    ) -> None:
        self.participant_id = participant_id
        self.network = network
        self.party_ids = list(party_ids)
        self.timeout = timeout
        self.cancel_event = cancel_event
        self.field = field
        network.register_participant(participant_id)

    def reveal(self, tag: str, values: Dict[str, Share], scheme: str) -> Dict[str, int]:
        algebra = scheme_for(scheme, self.field)
        required = max(share.threshold for share in values.values())

        tracker = RoundTracker(self.participant_id, self.network, self.timeout, self.cancel_event)
        tracker.sent("reveal")
        self.network.broadcast(self.participant_id, 'reveal', tag, RevealMessage(self.participant_id, tag, values))
        try:
            messages = tracker.collect('reveal', tag, self.party_ids, required=required)
        finally:
            self.network.discard(self.participant_id, tag)
        tracker.received({'openings': len(values)})
        tracker.complete()

        opened = {}
        for name in values:
            opened[name] = algebra.reconstruct([message.values[name] for message in messages.values()])
        return opened


class BeaverMultiplication:
    """One party's side of one (batched) secure multiplication; single use."""

    def __init__(
        self,
        generator: BeaverTripleGenerator,
        reveal: NetworkReveal,
        field: PrimeField = DEFAULT_FIELD,
    ) -> None:
        self.generator = generator
        self.reveal = reveal
        self.field = field
        self.state = MultiplicationState.IDLE
        self.triples: List[BeaverTriple] = []
        self.opened: Dict[str, int] = {}

    def _advance(self, state: MultiplicationState) -> None:
        logger.debug("[Participant %d] multiplication %s -> %s",
                     self.generator.party_id, self.state.value, state.value)
        self.state = state

    def _fail(self, reason: str) -> None:
        self._advance(MultiplicationState.FAILED)
        for triple in self.triples:
            self.generator.discard(triple, reason)

    def multiply(self, x_share: Share, y_share: Share, tag: str) -> Share:
        return self.multiply_batch([(x_share, y_share)], tag)[0]

    def multiply_batch(self, pairs: Sequence[Tuple[Share, Share]], tag: str) -> List[Share]:
        """Multiply every (x, y) pair with its own triple, opening all d, e in one round."""
        if self.state is not MultiplicationState.IDLE:
            raise ProtocolStateError(f"Multiplication already used (state {self.state.value})")
        for x_share, y_share in pairs:
            if x_share.index != self.generator.party_id or y_share.index != self.generator.party_id:
                raise IndexMismatch(
                    f"Party {self.generator.party_id} got input shares for indices {x_share.index}, {y_share.index}"
                )

        try:
            for _ in pairs:
                self.triples.append(self.generator.acquire())
        except MPCError as exc:
            self._fail(f"triple acquisition failed: {exc}")
            raise
        self._advance(MultiplicationState.TRIPLE_ACQUIRED)

        schemes = {triple.scheme for triple in self.triples}
        if len(schemes) != 1:
            self._fail("mixed sharing schemes in one batch")
            raise ProtocolStateError("Triples of one batch must share a scheme")
        scheme = schemes.pop()
        algebra = scheme_for(scheme, self.field)

        masked: Dict[str, Share] = {}
        try:
            for position, ((x_share, y_share), triple) in enumerate(zip(pairs, self.triples)):
                masked[f"d{position}"] = algebra.sub_shares(x_share, triple.share_a)
                masked[f"e{position}"] = algebra.sub_shares(y_share, triple.share_b)
            self._advance(MultiplicationState.REVEAL_PENDING)
            self.opened = self.reveal.reveal(tag, masked, scheme)
        except MPCError as exc:
            self._fail(str(exc))
            raise

        products = []
        for position, ((x_share, y_share), triple) in enumerate(zip(pairs, self.triples)):
            d = self.opened[f"d{position}"]
            e = self.opened[f"e{position}"]
            if scheme == SCHEME_ADDITIVE:
                product = algebra.beaver_mul(
                    x_share, y_share, triple.share_a, triple.share_b, triple.share_c, d, e, DESIGNATED_PARTY
                )
            else:
                product = algebra.beaver_mul(
                    x_share, y_share, triple.share_a, triple.share_b, triple.share_c, d, e
                )
            products.append(product)
        self._advance(MultiplicationState.COMBINED)
        self._advance(MultiplicationState.DONE)
        return products


def secure_multiply(
    generator: BeaverTripleGenerator, reveal: NetworkReveal, x_share: Share, y_share: Share, tag: str
) -> Share:
    return BeaverMultiplication(generator, reveal, generator.field).multiply(x_share, y_share, tag)


def batch_secure_multiply(
    generator: BeaverTripleGenerator,
    reveal: NetworkReveal,
    pairs: Sequence[Tuple[Share, Share]],
    tag: str,
) -> List[Share]:
    return BeaverMultiplication(generator, reveal, generator.field).multiply_batch(pairs, tag)
