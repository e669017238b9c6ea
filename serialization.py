"""Transport encoding for shares and triple rows.

Deterministic JSON (sorted keys) so that encodings can be signed; decoding is
strict and reports every malformed input as ``SerializationError``.
"""

from __future__ import annotations

import json
from typing import Any, Dict

from constants import FIELD_PRIME, SCHEME_ADDITIVE, SCHEME_SHAMIR
from data_models import BeaverTriple, Share
from errors import SerializationError


def share_to_dict(share: Share) -> Dict[str, int]:
    return {'value': share.value, 'index': share.index, 'threshold': share.threshold}


def share_from_dict(payload: Any, prime: int = FIELD_PRIME) -> Share:
    if not isinstance(payload, dict) or set(payload) != {'value', 'index', 'threshold'}:
        raise SerializationError(f"Malformed share payload: {payload!r}")

    value, index, threshold = payload['value'], payload['index'], payload['threshold']
    for name, item in (('value', value), ('index', index), ('threshold', threshold)):
        # bool is an int subclass
        if not isinstance(item, int) or isinstance(item, bool):
            raise SerializationError(f"Share field {name!r} must be an integer")
    if not 0 <= value < prime:
        raise SerializationError("Share value is outside the field")
    if index < 1 or threshold < 1:
        raise SerializationError("Share index and threshold must be positive")
    return Share(value, index, threshold)


def encode_share(share: Share) -> bytes:
    return json.dumps(share_to_dict(share), sort_keys=True).encode()


def decode_share(data: bytes, prime: int = FIELD_PRIME) -> Share:
    return share_from_dict(_load(data), prime)


def triple_to_dict(triple: BeaverTriple) -> Dict[str, Any]:
    return {
        'triple_id': triple.triple_id,
        'scheme': triple.scheme,
        'a': share_to_dict(triple.share_a),
        'b': share_to_dict(triple.share_b),
        'c': share_to_dict(triple.share_c),
    }


def encode_triple(triple: BeaverTriple) -> bytes:
    """Encode an unused triple row. Consumption state is never transported."""
    return json.dumps(triple_to_dict(triple), sort_keys=True).encode()


def decode_triple(data: bytes, prime: int = FIELD_PRIME) -> BeaverTriple:
    payload = _load(data)
    if not isinstance(payload, dict) or set(payload) != {'triple_id', 'scheme', 'a', 'b', 'c'}:
        raise SerializationError("Malformed triple payload")
    if payload['scheme'] not in (SCHEME_SHAMIR, SCHEME_ADDITIVE):
        raise SerializationError(f"Unknown sharing scheme {payload['scheme']!r}")
    triple_id = payload['triple_id']
    if not isinstance(triple_id, int) or isinstance(triple_id, bool) or triple_id < 0:
        raise SerializationError("Triple id must be a non-negative integer")

    triple = BeaverTriple(
        share_a=share_from_dict(payload['a'], prime),
        share_b=share_from_dict(payload['b'], prime),
        share_c=share_from_dict(payload['c'], prime),
        triple_id=triple_id,
        scheme=payload['scheme'],
    )
    if not triple.is_consistent():
        raise SerializationError("Triple shares do not belong to one party")
    return triple


def _load(data: bytes) -> Any:
    try:
        return json.loads(data.decode())
    except (UnicodeDecodeError, json.JSONDecodeError, AttributeError) as exc:
        raise SerializationError(f"Undecodable payload: {exc}") from exc
