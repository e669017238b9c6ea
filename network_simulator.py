"""Thread-safe in-memory network simulator for participant communication."""

import logging
import threading
import time
from collections import OrderedDict, defaultdict
from queue import Empty, Queue
from typing import Any, Dict, List, Set, Tuple

from constants import CLOSED_TAG_HISTORY, RECEIVE_POLL_INTERVAL
from errors import GenerationCancelled

logger = logging.getLogger(__name__)


class NetworkSimulator:
    """网络模拟器，用于参与者之间的通信 / Simulates in-order channels between participants.

    Every participant owns one mailbox per (message kind, conversation tag), so
    a late message from an aborted round never disturbs the next round.
    """

    def __init__(self) -> None:
        self.message_queues: Dict[int, Dict[Tuple[str, str], Queue]] = {}
        self.lock = threading.Lock()
        self.signing_public_keys: Dict[int, bytes] = {}
        self.kem_public_keys: Dict[int, bytes] = {}
        self.blocked: Set[Tuple[int, str]] = set()
        self.message_counts: Dict[str, int] = defaultdict(int)
        self.closed_tags: Dict[int, "OrderedDict[str, None]"] = defaultdict(OrderedDict)

    def register_participant(
        self,
        participant_id: int,
        signing_public_key: bytes | None = None,
        kem_public_key: bytes | None = None,
    ) -> None:
        """注册参与者并记录其公钥 / Register participant mailbox and optionally publish public keys."""
        with self.lock:
            if participant_id not in self.message_queues:
                self.message_queues[participant_id] = {}
            if signing_public_key is not None:
                self.signing_public_keys[participant_id] = signing_public_key
            if kem_public_key is not None:
                self.kem_public_keys[participant_id] = kem_public_key

    def participant_ids(self) -> List[int]:
        with self.lock:
            return sorted(self.message_queues)

    def get_signing_public_key(self, participant_id: int) -> bytes:
        with self.lock:
            return self.signing_public_keys[participant_id]

    def get_kem_public_key(self, participant_id: int) -> bytes:
        with self.lock:
            return self.kem_public_keys[participant_id]

    def block(self, sender_id: int, kind: str) -> None:
        """Silently drop every ``kind`` message sent by ``sender_id``."""
        with self.lock:
            self.blocked.add((sender_id, kind))

    def unblock(self, sender_id: int, kind: str) -> None:
        with self.lock:
            self.blocked.discard((sender_id, kind))

    def _deliver(self, receiver_id: int, sender_id: int, kind: str, tag: str, payload: Any) -> None:
        # caller holds self.lock
        self.message_counts[kind] += 1
        if tag in self.closed_tags[receiver_id]:
            logger.debug("Late %s from %d to %d for closed %s dropped", kind, sender_id, receiver_id, tag)
            return
        self._mailbox(receiver_id, kind, tag).put((sender_id, payload))

    def _mailbox(self, participant_id: int, kind: str, tag: str) -> Queue:
        # caller holds self.lock
        boxes = self.message_queues[participant_id]
        key = (kind, tag)
        if key not in boxes:
            boxes[key] = Queue()
        return boxes[key]

    def send(self, sender_id: int, receiver_id: int, kind: str, tag: str, payload: Any) -> None:
        """点对点发送 / Deliver one message to a single receiver."""
        with self.lock:
            if (sender_id, kind) in self.blocked:
                logger.debug("Dropped %s from %d to %d (%s)", kind, sender_id, receiver_id, tag)
                return
            if receiver_id in self.message_queues:
                self._deliver(receiver_id, sender_id, kind, tag, payload)

    def broadcast(self, sender_id: int, kind: str, tag: str, payload: Any, include_self: bool = True) -> None:
        """广播消息 / Broadcast a message to every registered participant."""
        with self.lock:
            if (sender_id, kind) in self.blocked:
                logger.debug("Dropped broadcast %s from %d (%s)", kind, sender_id, tag)
                return
            for participant_id in self.message_queues.keys():
                if participant_id == sender_id and not include_self:
                    continue
                self._deliver(participant_id, sender_id, kind, tag, payload)

    def receive(
        self,
        participant_id: int,
        kind: str,
        tag: str,
        expected_count: int,
        timeout: float,
        cancel_event: threading.Event | None = None,
    ) -> List[Tuple[int, Any]]:
        """接收消息直到数量满足或超时 / Collect (sender, payload) pairs until expected count or timeout.

        Returns whatever arrived; deciding whether a short result is fatal is
        the caller's job.
        """
        with self.lock:
            mailbox = self._mailbox(participant_id, kind, tag)

        messages: List[Tuple[int, Any]] = []
        end_time = time.time() + timeout

        while len(messages) < expected_count:
            if cancel_event is not None and cancel_event.is_set():
                raise GenerationCancelled(f"Participant {participant_id} cancelled while waiting for {kind}")
            remaining = end_time - time.time()
            if remaining <= 0:
                break
            try:
                messages.append(mailbox.get(timeout=min(RECEIVE_POLL_INTERVAL, remaining)))
            except Empty:
                continue

        return messages

    def discard(self, participant_id: int, tag: str) -> None:
        """Close conversation ``tag`` for ``participant_id``.

        Its mailboxes are dropped and late messages for the tag are discarded
        on arrival. Only the most recent ``CLOSED_TAG_HISTORY`` tags are
        remembered.
        """
        with self.lock:
            boxes = self.message_queues.get(participant_id, {})
            for key in [key for key in boxes if key[1] == tag]:
                del boxes[key]
            closed = self.closed_tags[participant_id]
            closed[tag] = None
            closed.move_to_end(tag)
            while len(closed) > CLOSED_TAG_HISTORY:
                closed.popitem(last=False)
