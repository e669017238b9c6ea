"""Variant C: Beaver triples from threshold homomorphic encryption.

Round 1: every party encrypts its summands a_i, b_i and a fresh mask r_i and
broadcasts the ciphertexts. Every party then derives the same
Enc(c + sum r_j) = Enc(sum a_j) * Enc(sum b_j) + sum Enc(r_j).
Round 2: partial decryptions are exchanged; at least ``threshold`` of them
yield the masked value, which each party turns into its own summand of c.

With a threshold below n, peers can finish a triple as soon as a party's
ciphertexts are out, so cancellation is only honoured before that broadcast.
"""

from __future__ import annotations

import logging
from functools import reduce
from typing import Dict, List, Tuple

from beaver_triples import BeaverTripleGenerator, GeneratorConfig, GeneratorVariant
from constants import DESIGNATED_PARTY
from data_models import BeaverTriple, EncryptedSummands, PartialDecryptionMessage
from errors import AbortedDecryption, GenerationCancelled, MPCError, NoiseBudgetExceeded, ProtocolTimeout
from field import DEFAULT_FIELD, PrimeField
from network_simulator import NetworkSimulator
from rounds import RoundState, RoundTracker
from secure_rng import SecureRandom
from threshold_he import Ciphertext, HEParams, SecretKeyShare, ThresholdHE, ThresholdPublicKey

logger = logging.getLogger(__name__)


def setup_threshold_keys(
    party_count: int,
    threshold: int,
    params: HEParams | None = None,
) -> Tuple[ThresholdHE, ThresholdPublicKey, Dict[int, SecretKeyShare]]:
    """One-time key generation for a session: scheme, shared public key, key shares."""
    scheme = ThresholdHE(params)
    public_key, key_shares = scheme.distributed_keygen(party_count, threshold)
    return scheme, public_key, key_shares


class HEGenerator(BeaverTripleGenerator):
    variant = GeneratorVariant.HOMOMORPHIC

    def __init__(
        self,
        config: GeneratorConfig,
        network: NetworkSimulator,
        scheme: ThresholdHE,
        public_key: ThresholdPublicKey,
        key_share: SecretKeyShare,
        rng: SecureRandom | None = None,
        field: PrimeField = DEFAULT_FIELD,
    ) -> None:
        super().__init__(config, rng, field)
        if scheme.params.plaintext_modulus != field.prime:
            raise NoiseBudgetExceeded(
                f"Plaintext modulus {scheme.params.plaintext_modulus} differs from the share field"
            )
        scheme.params.validate(config.party_count)
        if public_key.party_count != config.party_count:
            raise ValueError("Public key was generated for a different party count")
        if key_share.index != config.party_id:
            raise ValueError(f"Key share {key_share.index} does not belong to party {config.party_id}")

        self.network = network
        self.scheme = scheme
        self.public_key = public_key
        self.key_share = key_share
        network.register_participant(self.party_id)

    @property
    def decryption_threshold(self) -> int:
        return self.public_key.threshold

    def _generate(self, triple_ids: List[int]) -> List[BeaverTriple]:
        return [self._generate_one(triple_id) for triple_id in triple_ids]

    def _generate_one(self, triple_id: int) -> BeaverTriple:
        tracker = self._tracker(self.network)
        tag = self.config.tag(triple_id)
        try:
            row = self._run_rounds(tracker, triple_id)
        except MPCError as exc:
            if tracker.state is not RoundState.ABORTED:
                tracker.abort(str(exc))
            self.network.discard(self.party_id, tag)
            with self._counter_lock:
                self.discarded += 1
            logger.warning("[Participant %d] discarded partial HE triple %d: %s", self.party_id, triple_id, exc)
            raise
        tracker.complete()
        self.network.discard(self.party_id, tag)
        self.performance_stats.extend(tracker.performance_stats)
        return row

    def _masked_product(self, summands: Dict[int, EncryptedSummands]) -> Ciphertext:
        ordered = [summands[pid] for pid in sorted(summands)]
        enc_a = reduce(self.scheme.add, (message.enc_a for message in ordered))
        enc_b = reduce(self.scheme.add, (message.enc_b for message in ordered))
        masked = self.scheme.multiply(enc_a, enc_b)
        for message in ordered:
            masked = self.scheme.add(masked, message.enc_mask)
        return masked

    def _run_rounds(self, tracker: RoundTracker, triple_id: int) -> BeaverTriple:
        tag = self.config.tag(triple_id)
        prime = self.field.prime
        a_i = self.rng.field_element(prime)
        b_i = self.rng.field_element(prime)
        mask = self.rng.field_element(prime)

        if self.cancel_event.is_set():
            raise GenerationCancelled(f"Participant {self.party_id} cancelled before triple {triple_id}")
        tracker.sent("encrypt-summands")
        self.network.broadcast(
            self.party_id, 'encrypted_summands', tag,
            EncryptedSummands(
                self.party_id, triple_id,
                self.scheme.encrypt(self.public_key, a_i),
                self.scheme.encrypt(self.public_key, b_i),
                self.scheme.encrypt(self.public_key, mask),
            ),
        )
        tracker.commit()
        summands = tracker.collect('encrypted_summands', tag, self.config.party_ids)
        masked = self._masked_product(summands)
        tracker.received({'encryptions': 3, 'ciphertexts_received': 3 * len(summands)})

        tracker.sent("partial-decrypt")
        self.network.broadcast(
            self.party_id, 'partial_decryption', tag,
            PartialDecryptionMessage(self.party_id, triple_id, self.scheme.partial_decrypt(self.key_share, masked)),
        )
        try:
            messages = tracker.collect(
                'partial_decryption', tag, self.config.party_ids, required=self.decryption_threshold
            )
        except ProtocolTimeout as exc:
            raise AbortedDecryption(
                f"Participant {self.party_id}: fewer than {self.decryption_threshold} partial decryptions "
                f"for triple {triple_id}"
            ) from exc
        partials = {pid: message.partial for pid, message in messages.items()}
        c_i = self.scheme.combine_partials(
            self.public_key, partials, mask, designated=self.party_id == DESIGNATED_PARTY
        )
        tracker.received({'partials': len(partials)})
        del mask

        return self._finish_row(self.network, tracker, triple_id, [a_i, b_i, c_i])
