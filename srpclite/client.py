"""RPC client: connection setup, request sending and response dispatch."""

from __future__ import annotations

import dataclasses
import json
import logging
import queue
import socket
import threading
from typing import Any, BinaryIO, Callable

from srpclite.codec import Codec, CodecType, Header, new_codec
from srpclite.server import (
    CONNECTED,
    DEFAULT_OPTION,
    DEFAULT_RPC_PATH,
    MAGIC_NUMBER,
    Option,
)

logger = logging.getLogger(__name__)

_MAX_LINE = 64 * 1024


class RPCError(Exception):
    """An error reported by the server or raised while exchanging messages."""


class ShutdownError(RPCError):
    """The client is closed or its connection has failed."""

    def __init__(self, message: str = "connection is shut down") -> None:
        super().__init__(message)


class Call:
    """One RPC invocation; completes when the response arrives or fails."""

    def __init__(
        self,
        service_method: str,
        args: Any,
        done: "queue.Queue[Call] | None" = None,
    ) -> None:
        self.seq = 0
        self.service_method = service_method
        self.args = args
        self.reply: Any = None
        self.error: BaseException | None = None
        self.done = done
        self._finished = threading.Event()
        self._guard = threading.Lock()

    @property
    def finished(self) -> bool:
        """True once the call has a reply or an error."""
        return self._finished.is_set()

    def _complete(self) -> None:
        with self._guard:
            if self._finished.is_set():
                return
            self._finished.set()
        if self.done is not None:
            self.done.put(self)

    def wait(self, timeout: float | None = None) -> Any:
        """Block until the call completes; return its reply or raise its error."""
        if not self._finished.wait(timeout):
            raise TimeoutError(
                f"rpc client: call {self.service_method} not finished in time"
            )
        if self.error is not None:
            raise self.error
        return self.reply

    def __repr__(self) -> str:
        return (
            f"Call(seq={self.seq}, service_method={self.service_method!r}, "
            f"finished={self.finished})"
        )


class Client:
    """An RPC client bound to one connection; safe to use from many threads."""

    def __init__(
        self, codec: Codec, option: Option, conn: socket.socket | None = None
    ) -> None:
        self._codec = codec
        self._option = option
        self._conn = conn
        self._sending = threading.Lock()
        self._lock = threading.Lock()
        self._seq = 1
        self._pending: dict[int, Call] = {}
        self._closing = False
        self._shutdown = False
        self._receiver = threading.Thread(target=self._receive, daemon=True)
        self._receiver.start()

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc_info: object) -> None:
        try:
            self.close()
        except ShutdownError:
            pass

    def close(self) -> None:
        """Close the connection; raise ShutdownError if already closed."""
        with self._lock:
            if self._closing:
                raise ShutdownError()
            self._closing = True
        if self._conn is not None:
            try:
                self._conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        try:
            self._codec.close()
        except (OSError, ValueError):
            pass
        if self._conn is not None:
            _close_socket(self._conn)

    def is_available(self) -> bool:
        """True while the client is neither closed nor failed."""
        with self._lock:
            return not self._shutdown and not self._closing

    def _register_call(self, call: Call) -> int:
        with self._lock:
            if self._closing or self._shutdown:
                raise ShutdownError()
            call.seq = self._seq
            self._pending[call.seq] = call
            self._seq += 1
            return call.seq

    def _remove_call(self, seq: int) -> Call | None:
        with self._lock:
            return self._pending.pop(seq, None)

    def _terminate_calls(self, cause: BaseException | None) -> None:
        with self._sending, self._lock:
            self._shutdown = True
            pending = list(self._pending.values())
            self._pending.clear()
        for call in pending:
            error = ShutdownError()
            error.__cause__ = cause
            call.error = error
            call._complete()

    def _receive(self) -> None:
        cause: BaseException | None = None
        try:
            while True:
                header = self._codec.read_header()
                call = self._remove_call(header.seq)
                if call is None:
                    # the caller gave up on this request; discard its body
                    self._codec.read_body()
                    continue
                if header.error:
                    call.error = RPCError(header.error)
                    call._complete()
                    self._codec.read_body()
                    continue
                try:
                    call.reply = self._codec.read_body()
                except Exception as exc:
                    call.error = RPCError("reading body " + str(exc))
                    call._complete()
                    raise
                call._complete()
        except Exception as exc:
            cause = exc
        self._terminate_calls(cause)

    def _send(self, call: Call) -> None:
        with self._sending:
            try:
                seq = self._register_call(call)
            except ShutdownError as exc:
                call.error = exc
                call._complete()
                return
            header = Header(service_method=call.service_method, seq=seq, error="")
            try:
                self._codec.write(header, call.args)
            except Exception as exc:
                removed = self._remove_call(seq)
                if removed is not None:
                    removed.error = exc
                    removed._complete()

    def go(
        self,
        service_method: str,
        args: Any,
        done: "queue.Queue[Call] | None" = None,
    ) -> Call:
        """Start a call without waiting; the finished call is put on ``done``."""
        if done is None:
            done = queue.Queue()
        call = Call(service_method, args, done)
        self._send(call)
        return call

    def call(
        self, service_method: str, args: Any, timeout: float | None = None
    ) -> Any:
        """Invoke ``service_method`` and return its reply.

        Raises TimeoutError when no reply arrives within ``timeout`` seconds.
        """
        call = self.go(service_method, args)
        if not call._finished.wait(timeout):
            self._remove_call(call.seq)
            raise TimeoutError("rpc client: call failed: deadline exceeded")
        if call.error is not None:
            raise call.error
        return call.reply


ClientFactory = Callable[[socket.socket, Option], "Client | None"]


def parse_option(option: Option | None = None) -> Option:
    """Return the option to use, forcing the magic number and a codec type."""
    if option is None:
        return DEFAULT_OPTION
    return dataclasses.replace(
        option,
        magic_number=MAGIC_NUMBER,
        codec_type=option.codec_type or DEFAULT_OPTION.codec_type,
    )


def _client_on_stream(
    conn: socket.socket, stream: BinaryIO, option: Option
) -> Client:
    try:
        codec = new_codec(option.codec_type, stream)
    except ValueError as exc:
        logger.error("rpc client: codec error: %s", exc)
        _close_quietly(stream)
        raise
    payload = json.dumps(
        {
            "magic_number": option.magic_number,
            "codec_type": CodecType(option.codec_type).value,
            "connect_timeout": option.connect_timeout,
            "handle_timeout": option.handle_timeout,
        }
    )
    try:
        stream.write((payload + "\n").encode("utf-8"))
        stream.flush()
    except OSError as exc:
        logger.error("rpc client: options error: %s", exc)
        _close_quietly(stream)
        _close_socket(conn)
        raise
    return Client(codec, option, conn)


def new_client(conn: socket.socket, option: Option | None = None) -> Client:
    """Send the option line over ``conn`` and build a client on it."""
    if option is None:
        option = DEFAULT_OPTION
    return _client_on_stream(conn, conn.makefile("rwb"), option)


def new_http_client(conn: socket.socket, option: Option | None = None) -> Client:
    """Switch ``conn`` to RPC with an HTTP CONNECT, then build a client."""
    if option is None:
        option = DEFAULT_OPTION
    stream = conn.makefile("rwb")
    try:
        stream.write(f"CONNECT {DEFAULT_RPC_PATH} HTTP/1.0\n\n".encode("ascii"))
        stream.flush()
        status_line = stream.readline(_MAX_LINE)
        if not status_line:
            raise RPCError("unexpected EOF reading HTTP response")
        fields = status_line.decode("latin-1").strip().split(" ", 1)
        if len(fields) != 2 or not fields[0].startswith("HTTP/"):
            raise RPCError(f"malformed HTTP response {status_line!r}")
        status = fields[1].strip()
        while True:
            line = stream.readline(_MAX_LINE)
            if not line or not line.strip():
                break
        if status != CONNECTED:
            raise RPCError("unexpected HTTP response: " + status)
    except BaseException:
        _close_quietly(stream)
        raise
    return _client_on_stream(conn, stream, option)


def _connect(network: str, address: str, timeout: float) -> socket.socket:
    limit = timeout or None
    if network in ("tcp", "tcp4", "tcp6"):
        host, sep, port = address.rpartition(":")
        if not sep:
            raise ValueError(f"missing port in address {address}")
        host = host.strip("[]") or "localhost"
        conn = socket.create_connection((host, int(port)), timeout=limit)
    elif network == "unix":
        family = getattr(socket, "AF_UNIX", None)
        if family is None:
            raise ValueError("unix sockets are not supported on this platform")
        conn = socket.socket(family, socket.SOCK_STREAM)
        conn.settimeout(limit)
        try:
            conn.connect(address)
        except BaseException:
            conn.close()
            raise
    else:
        raise ValueError(f"unknown network {network}")
    conn.settimeout(None)
    return conn


def dial_timeout(
    factory: ClientFactory,
    network: str,
    address: str,
    option: Option | None = None,
) -> Client | None:
    """Connect to ``address`` and build a client with ``factory``.

    Both connecting and the factory must finish within the option's
    connect timeout, unless it is zero.
    """
    option = parse_option(option)
    conn = _connect(network, address, option.connect_timeout)

    if not option.connect_timeout:
        try:
            client = factory(conn, option)
        except BaseException:
            _close_socket(conn)
            raise
        if client is None:
            _close_socket(conn)
        return client

    lock = threading.Lock()
    finished = threading.Event()
    outcome: dict[str, Any] = {}
    abandoned = False

    def build() -> None:
        try:
            client, error = factory(conn, option), None
        except Exception as exc:
            client, error = None, exc
        with lock:
            if abandoned:
                if client is not None:
                    try:
                        client.close()
                    except ShutdownError:
                        pass
                return
            outcome["client"] = client
            outcome["error"] = error
        finished.set()

    threading.Thread(target=build, daemon=True).start()
    if not finished.wait(option.connect_timeout):
        with lock:
            if "client" not in outcome:
                abandoned = True
        if abandoned:
            _close_socket(conn)
            raise TimeoutError(
                "rpc client: connect timeout: expect within "
                f"{option.connect_timeout:g}s"
            )
    error = outcome["error"]
    client = outcome["client"]
    if error is not None:
        _close_socket(conn)
        raise error
    if client is None:
        _close_socket(conn)
    return client


def dial(network: str, address: str, option: Option | None = None) -> Client:
    """Connect to an RPC server speaking the raw protocol."""
    return dial_timeout(new_client, network, address, option)


def dial_http(network: str, address: str, option: Option | None = None) -> Client:
    """Connect to an RPC server through its HTTP CONNECT endpoint."""
    return dial_timeout(new_http_client, network, address, option)


def xdial(rpc_addr: str, option: Option | None = None) -> Client:
    """Connect using an address of the form ``protocol@addr``."""
    parts = rpc_addr.split("@")
    if len(parts) != 2:
        raise ValueError(
            f"rpc client err: wrong format '{rpc_addr}', expect protocol@addr"
        )
    protocol, addr = parts
    if protocol == "http":
        return dial_http("tcp", addr, option)
    return dial(protocol, addr, option)


def _close_socket(conn: socket.socket) -> None:
    try:
        conn.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    try:
        conn.close()
    except OSError:
        pass


def _close_quietly(closable: Any) -> None:
    try:
        closable.close()
    except (OSError, ValueError):
        pass