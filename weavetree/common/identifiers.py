"""
Time-ordered node identifiers.

Identifiers are ULIDs rendered as 26-character strings, so lexicographic
order equals creation order. Identifiers minted within one millisecond
are kept increasing by bumping the random part of the previous one.
"""

from __future__ import annotations

import os
import threading
from typing import Optional

from ulid import ULID

# A ULID is 6 timestamp bytes followed by 10 random bytes
_TIMESTAMP_BYTES = 6

_lock = threading.Lock()
_last: Optional[ULID] = None


def new_identifier() -> str:
    """Create a fresh identifier, greater than every one created before."""
    global _last
    with _lock:
        candidate = ULID()
        if _last is not None and candidate <= _last:
            candidate = ULID.from_int(int(_last) + 1)
        _last = candidate
        return str(candidate)


def identifier_like(identifier: str) -> str:
    """
    Create a fresh identifier sharing the timestamp of an existing one.

    Nodes derived from another node (split suffixes, merge products) keep
    their chronological position among siblings this way. Identifiers that
    are not ULIDs (hand-made ids in imported documents) get a fresh one.
    """
    try:
        timestamp = ULID.from_str(identifier).bytes[:_TIMESTAMP_BYTES]
    except ValueError:
        return new_identifier()
    return str(ULID.from_bytes(timestamp + os.urandom(16 - _TIMESTAMP_BYTES)))
