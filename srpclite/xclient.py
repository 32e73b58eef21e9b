"""Client that spreads calls over several servers found through discovery."""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any

from srpclite.client import Call, Client, ShutdownError, xdial
from srpclite.discovery import Discovery, SelectMode
from srpclite.server import Option

logger = logging.getLogger(__name__)


class XClient:
    """Load-balancing client that keeps one connection per server address."""

    def __init__(
        self,
        discovery: Discovery,
        mode: SelectMode = SelectMode.RANDOM,
        option: Option | None = None,
    ) -> None:
        self._discovery = discovery
        self._mode = mode
        self._option = option
        self._lock = threading.Lock()
        self._clients: dict[str, Client] = {}

    def __enter__(self) -> "XClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close every pooled connection."""
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            try:
                client.close()
            except ShutdownError:
                pass

    def _dial(self, rpc_addr: str) -> Client:
        with self._lock:
            client = self._clients.get(rpc_addr)
            if client is not None and not client.is_available():
                try:
                    client.close()
                except ShutdownError:
                    pass
                del self._clients[rpc_addr]
                client = None
            if client is None:
                client = xdial(rpc_addr, self._option)
                self._clients[rpc_addr] = client
            return client

    def call(
        self, service_method: str, args: Any, timeout: float | None = None
    ) -> Any:
        """Call ``service_method`` on one server chosen by the select mode."""
        rpc_addr = self._discovery.get(self._mode)
        client = self._dial(rpc_addr)
        return client.call(service_method, args, timeout)

    def broadcast(
        self, service_method: str, args: Any, timeout: float | None = None
    ) -> Any:
        """Call ``service_method`` on every server.

        Raises the first error seen; otherwise returns the first reply.
        Returns None when there are no servers.
        """
        servers = self._discovery.get_all()
        if not servers:
            return None
        results: "queue.Queue[Call | BaseException]" = queue.Queue()

        def start(rpc_addr: str) -> None:
            try:
                client = self._dial(rpc_addr)
                client.go(service_method, args, results)
            except Exception as exc:
                results.put(exc)

        for rpc_addr in servers:
            threading.Thread(target=start, args=(rpc_addr,), daemon=True).start()

        deadline = None if timeout is None else time.monotonic() + timeout
        reply: Any = None
        have_reply = False
        for _ in servers:
            remaining = (
                None if deadline is None else max(0.0, deadline - time.monotonic())
            )
            try:
                item = results.get(timeout=remaining)
            except queue.Empty:
                raise TimeoutError(
                    "rpc client: call failed: deadline exceeded"
                ) from None
            if isinstance(item, BaseException):
                raise item
            if item.error is not None:
                raise item.error
            if not have_reply:
                reply = item.reply
                have_reply = True
        return reply