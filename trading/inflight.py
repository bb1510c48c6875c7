"""Per-asset mutual exclusion for sell and graduation actions."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from utils.addressing import normalize_address


class InFlightGuard:
    """Set of asset keys with an action currently in progress."""

    def __init__(self) -> None:
        self._keys: set[str] = set()

    def try_acquire(self, key: str) -> bool:
        norm = normalize_address(key)
        if norm in self._keys:
            return False
        self._keys.add(norm)
        return True

    def release(self, key: str) -> None:
        self._keys.discard(normalize_address(key))

    def is_held(self, key: str) -> bool:
        return normalize_address(key) in self._keys

    def clear(self) -> None:
        self._keys.clear()

    @contextmanager
    def acquired(self, key: str) -> Iterator[bool]:
        """Yield whether ``key`` was taken; release it on every exit path."""
        got = self.try_acquire(key)
        try:
            yield got
        finally:
            if got:
                self.release(key)
