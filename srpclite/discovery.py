"""Service discovery and load-balanced selection of server addresses."""

from __future__ import annotations

import abc
import enum
import random
import threading
from typing import Sequence

_MAX_INT32 = 2**31 - 1


class SelectMode(enum.IntEnum):
    """Load-balancing strategies."""

    RANDOM = 0
    ROUND_ROBIN = 1


class Discovery(abc.ABC):
    """Source of server addresses."""

    @abc.abstractmethod
    def refresh(self) -> None:
        """Reload the server list from a registry."""

    @abc.abstractmethod
    def update(self, servers: Sequence[str]) -> None:
        """Replace the server list."""

    @abc.abstractmethod
    def get(self, mode: SelectMode) -> str:
        """Pick one server according to ``mode``."""

    @abc.abstractmethod
    def get_all(self) -> list[str]:
        """Return every known server."""


class MultiServersDiscovery(Discovery):
    """Discovery over an explicit list of servers, without a registry."""

    def __init__(
        self, servers: Sequence[str], rng: random.Random | None = None
    ) -> None:
        self._rng = rng if rng is not None else random.Random()
        self._lock = threading.Lock()
        self._servers = list(servers)
        # start at a random position so clients do not all begin at the first server
        self._index = self._rng.randrange(_MAX_INT32 - 1)

    def refresh(self) -> None:
        """No registry to reload from; only keeps the round-robin index in range."""
        with self._lock:
            if self._servers:
                self._index %= len(self._servers)

    def update(self, servers: Sequence[str]) -> None:
        with self._lock:
            self._servers = list(servers)

    def get(self, mode: SelectMode) -> str:
        with self._lock:
            n = len(self._servers)
            if n == 0:
                raise LookupError("rpc discovery: no available servers")
            if mode == SelectMode.RANDOM:
                return self._servers[self._rng.randrange(n)]
            if mode == SelectMode.ROUND_ROBIN:
                server = self._servers[self._index % n]
                self._index = (self._index + 1) % n
                return server
            raise ValueError("rpc discovery: not supported select mode")

    def get_all(self) -> list[str]:
        with self._lock:
            return list(self._servers)