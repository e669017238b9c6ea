"""Dataclasses shared across the sharing algebra, generators and transport."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from constants import SCHEME_ADDITIVE, SCHEME_SHAMIR
from errors import TripleAlreadyConsumed


@dataclass(frozen=True)
class Share:
    """One party's share / 份额.

    ``index`` is the owning party and doubles as the Shamir evaluation point.
    ``threshold`` is the number of shares needed to reconstruct: t for a
    degree-(t-1) Shamir sharing, n for an additive sharing.
    """

    value: int
    index: int
    threshold: int


@dataclass(frozen=True)
class CompleteTriple:
    """Plaintext (a, b, c). Only ever a local inside the trusted dealer."""

    a: int
    b: int
    c: int


class TripleState(Enum):
    UNUSED = "unused"
    CONSUMED = "consumed"


@dataclass
class BeaverTriple:
    """One party's row of a Beaver triple: shares of a, b and c = a*b."""

    share_a: Share
    share_b: Share
    share_c: Share
    triple_id: int
    scheme: str = SCHEME_SHAMIR
    state: TripleState = TripleState.UNUSED
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def party_id(self) -> int:
        return self.share_a.index

    @property
    def is_consumed(self) -> bool:
        return self.state is TripleState.CONSUMED

    def is_consistent(self) -> bool:
        """All three shares belong to the same party and the same scheme degree."""
        indices = {self.share_a.index, self.share_b.index, self.share_c.index}
        thresholds = {self.share_a.threshold, self.share_b.threshold, self.share_c.threshold}
        return len(indices) == 1 and len(thresholds) == 1 and self.scheme in (SCHEME_SHAMIR, SCHEME_ADDITIVE)

    def consume(self) -> None:
        """Unused -> Consumed, exactly once."""
        with self._lock:
            if self.state is TripleState.CONSUMED:
                raise TripleAlreadyConsumed(
                    f"Triple {self.triple_id} of party {self.party_id} was already consumed"
                )
            self.state = TripleState.CONSUMED


@dataclass
class PerformanceStats:
    """性能统计数据类 / Collects timing and operation counts for each protocol phase."""

    phase_name: str
    duration: float
    operations: Dict[str, int] | None = None

    def __post_init__(self) -> None:
        if self.operations is None:
            self.operations = {}


@dataclass
class TripleRowPackage:
    """Dealer -> party package carrying one encrypted triple row."""

    receiver_id: int
    triple_id: int
    encrypted_data: bytes
    nonce: bytes
    kem_public: bytes
    signature: bytes


@dataclass
class OLECompletion:
    """Broadcast closing the pairwise OLE round for one triple."""

    participant_id: int
    triple_id: int
    ok: bool
    reason: str = ""


@dataclass
class EncryptedSummands:
    """Encryptions of a party's additive summands a_i, b_i and its mask r_i."""

    participant_id: int
    triple_id: int
    enc_a: Any
    enc_b: Any
    enc_mask: Any


@dataclass
class PartialDecryptionMessage:
    participant_id: int
    triple_id: int
    partial: Any


@dataclass
class ResharePackage:
    """Shamir sub-shares of one party's additive (a_i, b_i, c_i), for one receiver."""

    sender_id: int
    receiver_id: int
    triple_id: int
    values: List[int]


@dataclass
class RevealMessage:
    """A party's shares of the masked values d = x - a and e = y - b."""

    participant_id: int
    tag: str
    values: Dict[str, Share]
