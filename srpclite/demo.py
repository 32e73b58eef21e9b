"""Demonstration: two servers, load-balanced calls and broadcasts."""

from __future__ import annotations

import argparse
import logging
import socket
import threading
import time
from dataclasses import dataclass
from typing import Sequence

from srpclite.discovery import MultiServersDiscovery, SelectMode
from srpclite.server import Server
from srpclite.xclient import XClient

logger = logging.getLogger(__name__)

_ROUNDS = 5
_BROADCAST_TIMEOUT = 2.0


@dataclass
class Args:
    """Two operands."""

    num1: int = 0
    num2: int = 0


class Foo:
    """Sample service."""

    def Sum(self, args: Args) -> int:
        return args.num1 + args.num2

    def Sleep(self, args: Args) -> int:
        time.sleep(args.num1)
        return args.num1 + args.num2


def start_server() -> str:
    """Start a server with Foo registered on a free port; return its address."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen()
    server = Server()
    server.register(Foo())
    threading.Thread(target=server.accept, args=(listener,), daemon=True).start()
    host, port = listener.getsockname()
    return f"{host}:{port}"


def _foo(
    xc: XClient, timeout: float | None, kind: str, service_method: str, args: Args
) -> str:
    try:
        if kind == "call":
            reply = xc.call(service_method, args, timeout)
        else:
            reply = xc.broadcast(service_method, args, timeout)
    except Exception as exc:
        message = f"{kind} {service_method} error: {exc}"
    else:
        message = (
            f"{kind} {service_method} success: "
            f"{args.num1} + {args.num2} = {reply}"
        )
    logger.info("%s", message)
    return message


def _run_parallel(work) -> list[str]:
    results: list[list[str]] = [[] for _ in range(_ROUNDS)]

    def run(i: int) -> None:
        results[i] = work(i)

    threads = [threading.Thread(target=run, args=(i,)) for i in range(_ROUNDS)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return [line for lines in results for line in lines]


def run_calls(addr1: str, addr2: str) -> list[str]:
    """Make concurrent Foo.Sum calls over both servers; return the log lines."""
    discovery = MultiServersDiscovery([f"tcp@{addr1}", f"tcp@{addr2}"])
    with XClient(discovery, SelectMode.RANDOM) as xc:
        return _run_parallel(
            lambda i: [_foo(xc, None, "call", "Foo.Sum", Args(i, i * i))]
        )


def run_broadcast(addr1: str, addr2: str) -> list[str]:
    """Broadcast Foo.Sum and Foo.Sleep to both servers; return the log lines."""
    discovery = MultiServersDiscovery([f"tcp@{addr1}", f"tcp@{addr2}"])
    with XClient(discovery, SelectMode.RANDOM) as xc:
        return _run_parallel(
            lambda i: [
                _foo(xc, None, "broadcast", "Foo.Sum", Args(i, i * i)),
                # rounds 2 to 4 exceed the deadline
                _foo(xc, _BROADCAST_TIMEOUT, "broadcast", "Foo.Sleep", Args(i, i * i)),
            ]
        )


def main(argv: Sequence[str] | None = None) -> int:
    """Run the demonstration."""
    parser = argparse.ArgumentParser(
        description="Start two RPC servers and exercise calls and broadcasts."
    )
    parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    addr1 = start_server()
    addr2 = start_server()
    run_calls(addr1, addr2)
    run_broadcast(addr1, addr2)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())