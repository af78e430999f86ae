"""Identifier allocation for catalog items.

Ids follow the ULID layout: a 48-bit millisecond timestamp followed by 80 random
bits, rendered as 26 Crockford base32 characters. Lexical order matches creation
order, so ids sort close to when their item was first seen.
"""

from __future__ import annotations

import os
import time
from threading import Lock
from typing import Callable

_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_RANDOM_BITS = 80
_RANDOM_MAX = (1 << _RANDOM_BITS) - 1
ID_LENGTH = 26


def _encode(value: int) -> str:
    chars = []
    for _ in range(ID_LENGTH):
        chars.append(_ALPHABET[value & 0x1F])
        value >>= 5
    return "".join(reversed(chars))


class IdAllocator:
    """Issue unique, monotonically increasing ids within one process."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        entropy: Callable[[int], bytes] = os.urandom,
    ):
        self._clock = clock
        self._entropy = entropy
        self._lock = Lock()
        self._last_ms = -1
        self._last_random = 0

    def _fresh_random(self) -> int:
        return int.from_bytes(self._entropy(_RANDOM_BITS // 8), "big")

    def allocate(self) -> str:
        with self._lock:
            now_ms = int(self._clock() * 1000)
            if now_ms > self._last_ms:
                random_part = self._fresh_random()
            else:
                # Same millisecond or clock stepped back: stay on the last timestamp.
                now_ms = self._last_ms
                random_part = self._last_random + 1
                if random_part > _RANDOM_MAX:
                    now_ms += 1
                    random_part = self._fresh_random()
            self._last_ms = now_ms
            self._last_random = random_part

        return _encode((now_ms << _RANDOM_BITS) | random_part)


_default_allocator = IdAllocator()


def new_id() -> str:
    """Allocate an id from the process-wide allocator."""
    return _default_allocator.allocate()
