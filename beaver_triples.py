"""Beaver triple generation: the shared generator contract, the triple pool,
configuration-driven variant selection and the trusted-dealer variant."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict, deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Dict, Iterable, List, Mapping, Set

from cryptography.hazmat.primitives.asymmetric import x25519

from constants import (
    DEALER_ID,
    DEALER_MAX_PENDING,
    DEFAULT_ROUND_TIMEOUT,
    FIELD_PRIME,
    SCHEME_ADDITIVE,
    SCHEME_SHAMIR,
)
from crypto_manager import CryptoManager
from data_models import BeaverTriple, CompleteTriple, PerformanceStats, ResharePackage, Share
from errors import GenerationCancelled, InvalidThreshold, MPCError, TripleAlreadyConsumed
from field import DEFAULT_FIELD, PrimeField
from network_simulator import NetworkSimulator
from rounds import RoundState, RoundTracker
from secure_rng import SecureRandom
from serialization import decode_triple, encode_triple
from shares import AdditiveSharing, ShamirSharing, scheme_for

logger = logging.getLogger(__name__)


class GeneratorVariant(Enum):
    TRUSTED_PARTY = "trusted_party"
    OLE = "ole"
    HOMOMORPHIC = "homomorphic"


@dataclass(frozen=True)
class GeneratorConfig:
    """Per-party generator settings shared by all three variants."""

    party_count: int
    threshold: int
    party_id: int
    round_timeout: float = DEFAULT_ROUND_TIMEOUT
    output_scheme: str = SCHEME_SHAMIR
    session_id: str = "default"

    def __post_init__(self) -> None:
        if self.party_count < 1:
            raise ValueError(f"party_count must be positive, got {self.party_count}")
        if self.threshold < 1 or self.threshold > self.party_count:
            raise InvalidThreshold(
                f"Threshold must satisfy 1 <= t <= n, got t={self.threshold}, n={self.party_count}"
            )
        if not 1 <= self.party_id <= self.party_count:
            raise ValueError(f"party_id must be in 1..{self.party_count}, got {self.party_id}")
        if self.output_scheme not in (SCHEME_SHAMIR, SCHEME_ADDITIVE):
            raise ValueError(f"Unknown output scheme {self.output_scheme!r}")
        if self.round_timeout <= 0:
            raise ValueError("round_timeout must be positive")

    @property
    def party_ids(self) -> List[int]:
        return list(range(1, self.party_count + 1))

    def tag(self, triple_id: int) -> str:
        """Conversation tag of one triple inside this session."""
        return f"{self.session_id}:{triple_id}"


class TriplePool:
    """FIFO queue of unused triple rows owned by one party."""

    def __init__(self) -> None:
        self._triples: Deque[BeaverTriple] = deque()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._triples)

    def push(self, triple: BeaverTriple) -> None:
        if triple.is_consumed:
            raise TripleAlreadyConsumed(f"Consumed triple {triple.triple_id} cannot return to the pool")
        with self._lock:
            self._triples.append(triple)

    def extend(self, triples: Iterable[BeaverTriple]) -> None:
        triples = list(triples)
        for triple in triples:
            if triple.is_consumed:
                raise TripleAlreadyConsumed(f"Consumed triple {triple.triple_id} cannot return to the pool")
        with self._lock:
            self._triples.extend(triples)

    def pop(self) -> BeaverTriple | None:
        """Oldest unused triple, or None when the pool is empty."""
        with self._lock:
            return self._triples.popleft() if self._triples else None

    def drain(self) -> List[BeaverTriple]:
        with self._lock:
            triples = list(self._triples)
            self._triples.clear()
        return triples


def verify_triple_rows(rows: Mapping[int, BeaverTriple], prime: int = FIELD_PRIME) -> bool:
    """Reconstruct a, b and c from every party's row and check c = a*b.

    ``rows`` maps party id to that party's row of one triple. Index and scheme
    mismatches count as failures; too few rows raise ``InsufficientShares``.
    """
    if not rows:
        return False
    triples = list(rows.values())
    first = triples[0]
    for party_id, triple in rows.items():
        if not triple.is_consistent() or triple.party_id != party_id:
            return False
        if triple.triple_id != first.triple_id or triple.scheme != first.scheme:
            return False

    algebra = scheme_for(first.scheme, PrimeField(prime))
    a = algebra.reconstruct([triple.share_a for triple in triples])
    b = algebra.reconstruct([triple.share_b for triple in triples])
    c = algebra.reconstruct([triple.share_c for triple in triples])
    return c == a * b % prime


class BeaverTripleGenerator(ABC):
    """Common contract: generate_single, generate_batch, drain_pool.

    Every instance is owned by exactly one party and holds that party's pool.
    Distributed variants must be driven in lockstep by all parties of a
    session; triple ids are allocated sequentially, so the n generators agree
    on them as long as each party requests the same sequence of batch sizes.
    """

    variant: GeneratorVariant

    def __init__(self, config: GeneratorConfig, rng: SecureRandom | None = None,
                 field: PrimeField = DEFAULT_FIELD) -> None:
        self.config = config
        self.field = field
        self.rng = rng or SecureRandom(f"{self.variant.value}-party-{config.party_id}")
        self.pool = TriplePool()
        self.cancel_event = threading.Event()
        self.produced = 0
        self.consumed = 0
        self.discarded = 0
        self.performance_stats: List[PerformanceStats] = []
        self._next_triple_id = 0
        self._generation_lock = threading.Lock()
        self._counter_lock = threading.Lock()

    @property
    def party_id(self) -> int:
        return self.config.party_id

    @property
    def party_count(self) -> int:
        return self.config.party_count

    @property
    def threshold(self) -> int:
        return self.config.threshold

    @property
    def pool_size(self) -> int:
        return len(self.pool)

    def statistics(self) -> Dict[str, int]:
        with self._counter_lock:
            return {
                'pool_size': len(self.pool),
                'produced': self.produced,
                'consumed': self.consumed,
                'discarded': self.discarded,
            }

    @abstractmethod
    def _generate(self, triple_ids: List[int]) -> List[BeaverTriple]:
        """Produce this party's rows for ``triple_ids``; all or nothing."""

    def _run_generation(self, count: int) -> List[BeaverTriple]:
        if count < 0:
            raise ValueError(f"Batch size must be non-negative, got {count}")
        with self._generation_lock:
            if self.cancel_event.is_set():
                raise GenerationCancelled(f"Generator of party {self.party_id} is cancelled")
            triple_ids = list(range(self._next_triple_id, self._next_triple_id + count))
            self._next_triple_id += count
            triples = self._generate(triple_ids)
        with self._counter_lock:
            self.produced += len(triples)
        return triples

    def generate_single(self) -> BeaverTriple:
        """Oldest pooled triple; falls back to live generation on an empty pool."""
        triple = self.pool.pop()
        if triple is not None:
            return triple
        logger.debug("[Participant %d] pool empty, generating a triple on demand", self.party_id)
        return self._run_generation(1)[0]

    def generate_batch(self, count: int) -> List[BeaverTriple]:
        triples = self._run_generation(count)
        logger.info("[Participant %d] generated %d %s triples", self.party_id, len(triples), self.variant.value)
        return triples

    def prefill(self, count: int) -> int:
        """Generate ``count`` triples into the pool and return the new pool size."""
        self.pool.extend(self.generate_batch(count))
        return len(self.pool)

    def drain_pool(self) -> List[BeaverTriple]:
        """Hand every pooled triple to the caller, oldest first."""
        return self.pool.drain()

    def acquire(self) -> BeaverTriple:
        """Pop one triple and mark it consumed before the caller sees it."""
        triple = self.generate_single()
        triple.consume()
        with self._counter_lock:
            self.consumed += 1
        return triple

    def discard(self, triple: BeaverTriple, reason: str) -> None:
        """Account for a triple lost to a failed protocol; it stays unusable."""
        if not triple.is_consumed:
            triple.consume()
        with self._counter_lock:
            self.discarded += 1
        logger.warning("[Participant %d] discarded triple %d: %s", self.party_id, triple.triple_id, reason)

    def cancel(self) -> None:
        """Abort in-flight and future generation until ``resume`` is called."""
        self.cancel_event.set()

    def resume(self) -> None:
        self.cancel_event.clear()

    def _tracker(self, network: NetworkSimulator) -> RoundTracker:
        return RoundTracker(self.party_id, network, self.config.round_timeout, self.cancel_event)

    def _finish_row(
        self,
        network: NetworkSimulator,
        tracker: RoundTracker,
        triple_id: int,
        summands: List[int],
    ) -> BeaverTriple:
        """Build this party's row from its additive summands (a_i, b_i, c_i).

        With a Shamir output scheme one extra round runs: every party
        Shamir-shares its summands and sums the sub-shares it receives, which
        turns the additive triple into a degree-(t-1) one.
        """
        n = self.party_count
        if self.config.output_scheme == SCHEME_ADDITIVE:
            a_i, b_i, c_i = summands
            return BeaverTriple(
                Share(a_i, self.party_id, n), Share(b_i, self.party_id, n), Share(c_i, self.party_id, n),
                triple_id, SCHEME_ADDITIVE,
            )

        t = self.threshold
        algebra = ShamirSharing(self.field)
        tag = self.config.tag(triple_id)
        sub_shares = [algebra.reshare_summand(summand, t, n) for summand in summands]

        tracker.sent("reshare")
        for receiver_id in self.config.party_ids:
            network.send(
                self.party_id, receiver_id, 'reshare', tag,
                ResharePackage(self.party_id, receiver_id, triple_id,
                               [shares[receiver_id - 1].value for shares in sub_shares]),
            )
        packages = tracker.collect('reshare', tag, self.config.party_ids)
        tracker.received({'sub_shares_sent': n * len(summands)})

        combined = []
        for position in range(len(summands)):
            combined.append(algebra.combine_subshares(
                Share(packages[sender].values[position], self.party_id, t) for sender in sorted(packages)
            ))
        return BeaverTriple(combined[0], combined[1], combined[2], triple_id, SCHEME_SHAMIR)


class PoolReplenisher(threading.Thread):
    """Background thread keeping one generator's pool above a low-water mark.

    For distributed variants every party must run a replenisher with the same
    ``batch_size`` and ``batches`` so their generation rounds line up.
    """

    def __init__(
        self,
        generator: BeaverTripleGenerator,
        batch_size: int,
        low_water: int = 0,
        batches: int | None = None,
        interval: float = 0.05,
    ) -> None:
        super().__init__(name=f"replenisher-{generator.party_id}", daemon=True)
        self.generator = generator
        self.batch_size = batch_size
        self.low_water = low_water
        self.batches = batches
        self.interval = interval
        self.stop_event = threading.Event()
        self.completed_batches = 0
        self.errors: List[MPCError] = []

    def run(self) -> None:  # pragma: no cover - threaded entry point
        while not self.stop_event.is_set():
            if self.batches is not None and self.completed_batches >= self.batches:
                break
            if self.generator.pool_size > self.low_water and self.batches is None:
                self.stop_event.wait(self.interval)
                continue
            try:
                self.generator.prefill(self.batch_size)
                self.completed_batches += 1
            except GenerationCancelled:
                break
            except MPCError as exc:
                logger.warning("[Participant %d] replenishment failed: %s", self.generator.party_id, exc)
                self.errors.append(exc)
                self.stop_event.wait(self.interval)

    def stop(self, timeout: float | None = None) -> None:
        self.stop_event.set()
        self.generator.cancel()
        self.join(timeout)
        self.generator.resume()


class TrustedDealer:
    """Single logical authority that samples (a, b, c = a*b) and shares it out.

    Rows reach the parties either over the network, encrypted and signed per
    receiver (``distribute``), or in-process through ``fetch``. In-process
    delivery holds at most ``max_pending`` partly delivered triples; the oldest
    one beyond that expires and its undelivered rows are wiped.
    """

    def __init__(
        self,
        party_count: int,
        threshold: int,
        scheme: str = SCHEME_SHAMIR,
        field: PrimeField = DEFAULT_FIELD,
        rng: SecureRandom | None = None,
        max_pending: int = DEALER_MAX_PENDING,
    ) -> None:
        if threshold < 1 or threshold > party_count:
            raise InvalidThreshold(f"Threshold must satisfy 1 <= t <= n, got t={threshold}, n={party_count}")
        self.party_count = party_count
        self.threshold = threshold
        self.scheme = scheme
        self.field = field
        self.rng = rng or SecureRandom("trusted-dealer")
        self.signing_private, self.signing_public = CryptoManager.generate_signature_keypair()
        self.max_pending = max_pending
        self._outbox: "OrderedDict[int, Dict[int, BeaverTriple]]" = OrderedDict()
        self._retired: Set[int] = set()
        self._lock = threading.Lock()

    def _share(self, secret: int) -> List[Share]:
        if self.scheme == SCHEME_ADDITIVE:
            return AdditiveSharing(self.field).share(secret, self.party_count)
        return ShamirSharing(self.field).share(secret, self.threshold, self.party_count)

    def deal(self, triple_id: int) -> Dict[int, BeaverTriple]:
        """One triple, as a row per party. The plaintext never outlives this call."""
        a = self.rng.field_element(self.field.prime)
        b = self.rng.field_element(self.field.prime)
        plain = CompleteTriple(a, b, self.field.mul(a, b))
        del a, b

        shares_a = self._share(plain.a)
        shares_b = self._share(plain.b)
        shares_c = self._share(plain.c)
        del plain

        return {
            share_a.index: BeaverTriple(share_a, share_b, share_c, triple_id, self.scheme)
            for share_a, share_b, share_c in zip(shares_a, shares_b, shares_c)
        }

    def register(self, network: NetworkSimulator) -> None:
        network.register_participant(DEALER_ID, signing_public_key=self.signing_public)

    def distribute(self, network: NetworkSimulator, triple_ids: Iterable[int], session_id: str = "default") -> int:
        """Seal each party's row to that party and send it; returns packages sent."""
        sent = 0
        for triple_id in triple_ids:
            for party_id, row in self.deal(triple_id).items():
                package = CryptoManager.seal_row(
                    encode_triple(row),
                    party_id,
                    triple_id,
                    network.get_kem_public_key(party_id),
                    self.signing_private,
                )
                network.send(DEALER_ID, party_id, 'triple_row', f"{session_id}:{triple_id}", package)
                sent += 1
        logger.info("Dealer distributed %d row packages", sent)
        return sent

    def fetch(self, party_id: int, triple_id: int) -> BeaverTriple:
        """In-process delivery: the first request for a triple deals it, each
        party's row is handed out once and then forgotten."""
        with self._lock:
            if triple_id in self._retired:
                raise TripleAlreadyConsumed(f"Triple {triple_id} was fully delivered or has expired")
            rows = self._outbox.get(triple_id)
            if rows is None:
                rows = self.deal(triple_id)
                self._outbox[triple_id] = rows
                self._expire_oldest()
            if party_id not in rows:
                raise TripleAlreadyConsumed(f"Row {triple_id} of party {party_id} was already delivered")
            row = rows.pop(party_id)
            if not rows:
                del self._outbox[triple_id]
                self._retired.add(triple_id)
        return row

    def _expire_oldest(self) -> None:
        # caller holds self._lock
        while len(self._outbox) > self.max_pending:
            triple_id, rows = self._outbox.popitem(last=False)
            logger.warning("Dealer expired triple %d with %d undelivered rows", triple_id, len(rows))
            rows.clear()
            self._retired.add(triple_id)


class TrustedPartyGenerator(BeaverTripleGenerator):
    """Variant A: rows come from a trusted dealer, no inter-party rounds."""

    variant = GeneratorVariant.TRUSTED_PARTY

    def __init__(
        self,
        config: GeneratorConfig,
        dealer: TrustedDealer | None = None,
        network: NetworkSimulator | None = None,
        kem_private: x25519.X25519PrivateKey | None = None,
        rng: SecureRandom | None = None,
        field: PrimeField = DEFAULT_FIELD,
    ) -> None:
        super().__init__(config, rng, field)
        if dealer is None and network is None:
            raise ValueError("A trusted-party generator needs a dealer or a network")
        self.dealer = dealer
        self.network = network
        self.kem_private = kem_private
        if network is not None and kem_private is None:
            self.kem_private, kem_public = CryptoManager.generate_kem_keypair()
            network.register_participant(self.party_id, kem_public_key=kem_public)

    def _generate(self, triple_ids: List[int]) -> List[BeaverTriple]:
        if self.network is None:
            return [self.dealer.fetch(self.party_id, triple_id) for triple_id in triple_ids]
        return [self._receive_row(triple_id) for triple_id in triple_ids]

    def _receive_row(self, triple_id: int) -> BeaverTriple:
        tracker = self._tracker(self.network)
        tag = self.config.tag(triple_id)
        try:
            row = self._open_row(tracker, triple_id, tag)
        except MPCError as exc:
            if tracker.state is not RoundState.ABORTED:
                tracker.abort(str(exc))
            self.network.discard(self.party_id, tag)
            with self._counter_lock:
                self.discarded += 1
            logger.warning("[Participant %d] discarded dealer row %d: %s", self.party_id, triple_id, exc)
            raise
        tracker.complete()
        self.network.discard(self.party_id, tag)
        self.performance_stats.extend(tracker.performance_stats)
        return row

    def _open_row(self, tracker: RoundTracker, triple_id: int, tag: str) -> BeaverTriple:
        tracker.sent("dealer-row")
        package = tracker.collect('triple_row', tag, [DEALER_ID])[DEALER_ID]
        row = decode_triple(
            CryptoManager.open_row(package, self.kem_private, self.network.get_signing_public_key(DEALER_ID)),
            self.field.prime,
        )
        if row.party_id != self.party_id or row.triple_id != triple_id:
            raise MPCError(f"Dealer sent row {row.triple_id} of party {row.party_id} to party {self.party_id}")
        tracker.received({'rows': 1})
        return row


def create_generator(variant: GeneratorVariant, config: GeneratorConfig, **kwargs) -> BeaverTripleGenerator:
    """Select a generator variant by configuration."""
    if variant is GeneratorVariant.TRUSTED_PARTY:
        return TrustedPartyGenerator(config, **kwargs)
    if variant is GeneratorVariant.OLE:
        from ole_generator import OLEGenerator
        return OLEGenerator(config, **kwargs)
    if variant is GeneratorVariant.HOMOMORPHIC:
        from he_generator import HEGenerator
        return HEGenerator(config, **kwargs)
    raise ValueError(f"Unknown generator variant {variant!r}")
