"""Distributed participant thread: fills its triple pool, then multiplies its inputs."""

from __future__ import annotations

import logging
import threading
import time
from typing import List, Sequence, Tuple

from beaver_multiplication import NetworkReveal, batch_secure_multiply
from beaver_triples import BeaverTripleGenerator
from data_models import BeaverTriple, Share
from network_simulator import NetworkSimulator

logger = logging.getLogger(__name__)


class DistributedParticipant(threading.Thread):
    """分布式参与者 / One party of an MPC session, running in its own thread."""

    def __init__(
        self,
        generator: BeaverTripleGenerator,
        network: NetworkSimulator,
        inputs: Sequence[Tuple[Share, Share]] = (),
        batch_size: int | None = None,
    ) -> None:
        super().__init__(name=f"participant-{generator.party_id}")
        self.participant_id = generator.party_id
        self.generator = generator
        self.network = network
        self.inputs = list(inputs)
        self.batch_size = len(self.inputs) if batch_size is None else batch_size
        self.reveal = NetworkReveal(
            self.participant_id,
            network,
            generator.config.party_ids,
            generator.config.round_timeout,
            generator.cancel_event,
            generator.field,
        )

        # 本方生成的三元组份额（用于事后校验）
        self.triples: List[BeaverTriple] = []
        self.products: List[Share] = []

        # 性能统计
        self.generation_time: float = 0
        self.multiplication_time: float = 0

        self.error: BaseException | None = None
        self.done_event = threading.Event()

    def run(self) -> None:  # pragma: no cover - threaded entry point
        """参与者主流程 / Main thread routine for a participant."""
        try:
            self.generate_triples()
            self.multiply_inputs()
        except Exception as exc:
            logger.exception("[Participant %d] Error: %s", self.participant_id, exc)
            self.error = exc
        finally:
            self.done_event.set()

    def generate_triples(self) -> None:
        start = time.time()
        self.triples = self.generator.generate_batch(self.batch_size)
        self.generator.pool.extend(self.triples)
        self.generation_time = time.time() - start
        logger.info(
            "[Participant %d] ✓ Pool filled with %d triples (%.2f ms)",
            self.participant_id, self.generator.pool_size, self.generation_time * 1000,
        )

    def multiply_inputs(self) -> None:
        if not self.inputs:
            return
        start = time.time()
        tag = f"{self.generator.config.session_id}:multiply"
        self.products = batch_secure_multiply(self.generator, self.reveal, self.inputs, tag)
        self.multiplication_time = time.time() - start
        logger.info(
            "[Participant %d] ✓ Computed %d product shares (%.2f ms)",
            self.participant_id, len(self.products), self.multiplication_time * 1000,
        )
