"""Variant B: dealer-free Beaver triples from pairwise oblivious linear evaluation.

Party i samples summands a_i, b_i. For every ordered pair (i, j) one OLE
instance splits a_i * b_j additively between i and j, so

    c_i = a_i * b_i + sum_j (OLE shares of a_i*b_j and a_j*b_i held by i)

and sum_i c_i = (sum a_i) * (sum b_i). The cross term a_i*b_j + a_j*b_i of an
unordered pair takes two instances: an OLE multiplies the sender's input by
the receiver's, and here each party's a is only ever a sender input and its b
only ever a receiver input.

A completion broadcast makes the outcome all-or-nothing across parties.
Cancellation is honoured up to that broadcast and ignored after it.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List

from beaver_triples import BeaverTripleGenerator, GeneratorConfig, GeneratorVariant
from data_models import BeaverTriple, OLECompletion
from errors import GenerationCancelled, MPCError, PartyUnavailable
from field import DEFAULT_FIELD, PrimeField
from network_simulator import NetworkSimulator
from ole import OLEService
from rounds import RoundTracker
from secure_rng import SecureRandom

logger = logging.getLogger(__name__)


class OLEGenerator(BeaverTripleGenerator):
    variant = GeneratorVariant.OLE

    def __init__(
        self,
        config: GeneratorConfig,
        network: NetworkSimulator,
        ole_service: OLEService,
        rng: SecureRandom | None = None,
        field: PrimeField = DEFAULT_FIELD,
        record_view: bool = False,
    ) -> None:
        super().__init__(config, rng, field)
        self.network = network
        self.ole_service = ole_service
        # 每个三元组中本方实际见到的值，仅在审计时记录 / values materialised at this party, audit only
        self.record_view = record_view
        self.view: Dict[int, Dict[str, Any]] = {}
        network.register_participant(self.party_id)

    def _instance_key(self, triple_id: int, sender_id: int, receiver_id: int):
        return (self.config.session_id, triple_id, sender_id, receiver_id)

    def _generate(self, triple_ids: List[int]) -> List[BeaverTriple]:
        triples = []
        for triple_id in triple_ids:
            triples.append(self._generate_one(triple_id))
        return triples

    def _generate_one(self, triple_id: int) -> BeaverTriple:
        tracker = self._tracker(self.network)
        tag = self.config.tag(triple_id)
        try:
            row = self._run_rounds(tracker, triple_id)
        except GenerationCancelled:
            tracker.abort("cancelled")
            self._discard_partial(triple_id, tag)
            raise
        except PartyUnavailable:
            self._discard_partial(triple_id, tag)
            raise
        tracker.complete()
        self.network.discard(self.party_id, tag)
        self.performance_stats.extend(tracker.performance_stats)
        return row

    def _discard_partial(self, triple_id: int, tag: str) -> None:
        self.view.pop(triple_id, None)
        self.network.discard(self.party_id, tag)
        with self._counter_lock:
            self.discarded += 1
        logger.warning("[Participant %d] discarded partial OLE triple %d", self.party_id, triple_id)

    def _pairwise_products(self, tracker: RoundTracker, triple_id: int, a_i: int, b_i: int) -> List[int]:
        """Round 1: feed a_i as sender and b_i as receiver into every pairwise OLE."""
        peers = [j for j in self.config.party_ids if j != self.party_id]
        tracker.sent("ole-pairwise")
        for j in peers:
            self.ole_service.submit(self._instance_key(triple_id, self.party_id, j), 'sender', self.party_id, a_i)
            self.ole_service.submit(self._instance_key(triple_id, j, self.party_id), 'receiver', self.party_id, b_i)

        deadline = time.time() + self.config.round_timeout
        outputs = []
        for j in peers:
            for key, role in (
                (self._instance_key(triple_id, self.party_id, j), 'sender'),
                (self._instance_key(triple_id, j, self.party_id), 'receiver'),
            ):
                remaining = max(deadline - time.time(), 0.0)
                outputs.append(self.ole_service.collect(key, role, remaining, self.cancel_event))
        tracker.received({'ole_instances': 2 * len(peers)})
        return outputs

    def _run_rounds(self, tracker: RoundTracker, triple_id: int) -> BeaverTriple:
        tag = self.config.tag(triple_id)
        a_i = self.rng.field_element(self.field.prime)
        b_i = self.rng.field_element(self.field.prime)
        view = self.view.setdefault(triple_id, {}) if self.record_view else {}
        view['own'] = (a_i, b_i)

        failure: MPCError | None = None
        outputs: List[int] = []
        try:
            outputs = self._pairwise_products(tracker, triple_id, a_i, b_i)
        except (PartyUnavailable, GenerationCancelled) as exc:
            tracker.abort(str(exc))
            tracker.reset()
            failure = exc
        view['ole_outputs'] = list(outputs)
        if failure is None and self.cancel_event.is_set():
            failure = GenerationCancelled(
                f"Participant {self.party_id} cancelled before completing triple {triple_id}"
            )

        # Round 2: every party announces whether all of its OLE instances finished
        tracker.sent("ole-completion")
        self.network.broadcast(
            self.party_id, 'ole_completion', tag,
            OLECompletion(self.party_id, triple_id, failure is None, str(failure or "")),
        )
        if failure is not None:
            raise failure
        tracker.commit()
        completions = tracker.collect('ole_completion', tag, self.config.party_ids)
        failed = sorted(pid for pid, message in completions.items() if not message.ok)
        if failed:
            tracker.abort(f"parties {failed} reported failed OLE instances")
            raise PartyUnavailable(
                f"Participant {self.party_id}: OLE instances of parties {failed} aborted", missing=tuple(failed)
            )
        tracker.received({'completions': len(completions)})

        c_i = self.field.add(self.field.mul(a_i, b_i), self.field.sum(outputs))
        row = self._finish_row(self.network, tracker, triple_id, [a_i, b_i, c_i])
        view['row'] = (row.share_a.value, row.share_b.value, row.share_c.value)
        return row
