"""RPC server: connection negotiation, request dispatch and HTTP entry points."""

from __future__ import annotations

import html
import json
import logging
import socket
import threading
from dataclasses import dataclass
from typing import Any, BinaryIO

from srpclite.codec import Codec, CodecType, Header, new_codec
from srpclite.service import MethodType, Service

logger = logging.getLogger(__name__)

MAGIC_NUMBER = 0x3BEF5C

CONNECTED = "200 Connected to srpc"
DEFAULT_RPC_PATH = "/_srpc_"
DEFAULT_DEBUG_PATH = "/debug/srpc"

_MAX_LINE = 64 * 1024


@dataclass(frozen=True)
class Option:
    """Settings a client sends as a JSON line at the start of a connection.

    Timeouts are in seconds; zero means no limit.
    """

    magic_number: int = MAGIC_NUMBER
    codec_type: CodecType | str = CodecType.PICKLE
    connect_timeout: float = 10.0
    handle_timeout: float = 0.0


DEFAULT_OPTION = Option()


def _option_from_line(line: bytes) -> Option:
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError("options must be a JSON object")
    return Option(
        magic_number=int(data.get("magic_number", 0)),
        codec_type=str(data.get("codec_type", "")),
        connect_timeout=float(data.get("connect_timeout", 0)),
        handle_timeout=float(data.get("handle_timeout", 0)),
    )


def _format_duration(seconds: float) -> str:
    return f"{seconds:g}s"


def _type_name(tp: Any) -> str:
    if tp is None:
        return ""
    return getattr(tp, "__name__", None) or str(tp)


class Server:
    """A registry of services that serves RPC requests on connections."""

    def __init__(self) -> None:
        self._services: dict[str, Service] = {}
        self._lock = threading.Lock()

    def register(self, rcvr: Any) -> None:
        """Publish the qualifying methods of ``rcvr`` under its class name."""
        service = Service(rcvr)
        with self._lock:
            if service.name in self._services:
                raise ValueError(f"rpc: service already defined: {service.name}")
            self._services[service.name] = service

    def find_service(self, service_method: str) -> tuple[Service, MethodType]:
        """Resolve ``"Service.Method"`` to its service and method."""
        service_name, dot, method_name = service_method.rpartition(".")
        if not dot:
            raise ValueError(
                "rpc server: service/method request ill-formed: " + service_method
            )
        with self._lock:
            service = self._services.get(service_name)
        if service is None:
            raise LookupError("rpc server: can't find service " + service_name)
        method_type = service.methods.get(method_name)
        if method_type is None:
            raise LookupError("rpc server: can't find method " + method_name)
        return service, method_type

    def accept(self, listener: socket.socket) -> None:
        """Serve every connection accepted on ``listener`` until it fails."""
        self._accept_loop(listener, self.serve_conn)

    def accept_http(self, listener: socket.socket) -> None:
        """Serve HTTP connections (RPC and debug paths) accepted on ``listener``."""
        self._accept_loop(listener, self.serve_http)

    def _accept_loop(self, listener: socket.socket, handler: Any) -> None:
        while True:
            try:
                conn, _ = listener.accept()
            except OSError as exc:
                logger.info("rpc server: accept error: %s", exc)
                return
            threading.Thread(target=handler, args=(conn,), daemon=True).start()

    def serve_conn(self, conn: socket.socket) -> None:
        """Serve one connection until the peer closes it."""
        stream = conn.makefile("rwb")
        try:
            self._serve_stream(stream)
        finally:
            _close_quietly(stream)
            _close_quietly(conn)

    def serve_http(self, conn: socket.socket) -> None:
        """Handle one HTTP request: CONNECT switches to RPC, debug path shows services."""
        stream = conn.makefile("rwb")
        try:
            self._serve_http_stream(stream)
        finally:
            _close_quietly(stream)
            _close_quietly(conn)

    def debug_page(self) -> str:
        """Render an HTML page listing services, methods and call counts."""
        with self._lock:
            services = sorted(self._services.items())
        parts = ["<html>", "<body>", "<title>RPC Services</title>"]
        for name, service in services:
            parts.append("<hr>")
            parts.append(f"Service {html.escape(name)}")
            parts.append("<hr>")
            parts.append("<table>")
            parts.append("<th align=center>Method</th><th align=center>Calls</th>")
            for method_name, method_type in sorted(service.methods.items()):
                signature = (
                    f"{method_name}({_type_name(method_type.arg_type)}) "
                    f"{_type_name(method_type.reply_type)}"
                )
                parts.append("<tr>")
                parts.append(
                    f"<td align=left font=fixed>{html.escape(signature)}</td>"
                )
                parts.append(f"<td align=center>{method_type.num_calls}</td>")
                parts.append("</tr>")
            parts.append("</table>")
        parts.extend(["</body>", "</html>"])
        return "\n".join(parts)

    def _serve_http_stream(self, stream: BinaryIO) -> None:
        request_line = stream.readline(_MAX_LINE)
        if not request_line:
            return
        while True:
            line = stream.readline(_MAX_LINE)
            if not line or line in (b"\r\n", b"\n"):
                break
        fields = request_line.decode("latin-1").split()
        if len(fields) != 3:
            _write_http(stream, "400 Bad Request", "text/plain; charset=utf-8",
                        "400 Bad Request\n")
            return
        method, target, _version = fields
        path = target.split("?", 1)[0]
        if path == DEFAULT_RPC_PATH:
            if method != "CONNECT":
                _write_http(stream, "405 Method Not Allowed",
                            "text/plain; charset=utf-8", "405 must CONNECT\n")
                return
            stream.write(f"HTTP/1.0 {CONNECTED}\n\n".encode("ascii"))
            stream.flush()
            self._serve_stream(stream)
        elif path == DEFAULT_DEBUG_PATH:
            _write_http(stream, "200 OK", "text/html; charset=utf-8",
                        self.debug_page())
        else:
            _write_http(stream, "404 Not Found", "text/plain; charset=utf-8",
                        "404 page not found\n")

    def _serve_stream(self, stream: BinaryIO) -> None:
        try:
            option = _option_from_line(stream.readline(_MAX_LINE))
        except (ValueError, TypeError, OSError) as exc:
            logger.error("rpc server: options error: %s", exc)
            return
        if option.magic_number != MAGIC_NUMBER:
            logger.error("rpc server: invalid magic number %x", option.magic_number)
            return
        try:
            codec = new_codec(option.codec_type, stream)
        except ValueError:
            logger.error("rpc server: invalid codec type %s", option.codec_type)
            return
        self._serve_codec(codec, option)

    def _serve_codec(self, codec: Codec, option: Option) -> None:
        sending = threading.Lock()
        handlers: list[threading.Thread] = []
        while True:
            try:
                header = codec.read_header()
            except EOFError:
                break
            except Exception as exc:
                logger.error("rpc server: read header error: %s", exc)
                break
            lookup_error: Exception | None = None
            service = method_type = None
            try:
                service, method_type = self.find_service(header.service_method)
            except (ValueError, LookupError) as exc:
                lookup_error = exc
            # the body is always consumed so the next header stays in step
            try:
                argv = codec.read_body()
            except Exception as exc:
                logger.error("rpc server: read argv err: %s", exc)
                header.error = str(exc) or type(exc).__name__
                self._send_response(codec, header, None, sending)
                continue
            if lookup_error is not None:
                header.error = str(lookup_error)
                self._send_response(codec, header, None, sending)
                continue
            handler = threading.Thread(
                target=self._handle_request,
                args=(codec, header, service, method_type, argv, sending,
                      option.handle_timeout),
                daemon=True,
            )
            handlers.append(handler)
            handler.start()
        for handler in handlers:
            handler.join()
        _close_quietly(codec)

    def _handle_request(
        self,
        codec: Codec,
        header: Header,
        service: Service,
        method_type: MethodType,
        argv: Any,
        sending: threading.Lock,
        timeout: float,
    ) -> None:
        called = threading.Event()
        sent = threading.Event()

        def invoke() -> None:
            try:
                reply = service.call(method_type, argv)
                error = ""
            except Exception as exc:
                reply = None
                error = str(exc) or type(exc).__name__
            called.set()
            response = Header(header.service_method, header.seq, error)
            self._send_response(codec, response, reply, sending)
            sent.set()

        if not timeout:
            invoke()
            return
        threading.Thread(target=invoke, daemon=True).start()
        if called.wait(timeout):
            sent.wait()
            return
        response = Header(
            header.service_method,
            header.seq,
            "rpc server: request handle timeout: expect within "
            + _format_duration(timeout),
        )
        self._send_response(codec, response, None, sending)

    @staticmethod
    def _send_response(
        codec: Codec, header: Header, body: Any, sending: threading.Lock
    ) -> None:
        with sending:
            try:
                codec.write(header, body)
            except Exception as exc:
                logger.error("rpc server: write response error: %s", exc)


def _write_http(stream: BinaryIO, status: str, content_type: str, body: str) -> None:
    payload = body.encode("utf-8")
    head = (
        f"HTTP/1.0 {status}\r\n"
        f"Content-Type: {content_type}\r\n"
        f"Content-Length: {len(payload)}\r\n"
        "Connection: close\r\n\r\n"
    )
    try:
        stream.write(head.encode("ascii") + payload)
        stream.flush()
    except OSError as exc:
        logger.error("rpc server: http write error: %s", exc)


def _close_quietly(closable: Any) -> None:
    try:
        closable.close()
    except (OSError, ValueError):
        pass


DEFAULT_SERVER = Server()


def register(rcvr: Any) -> None:
    """Register ``rcvr`` on the default server."""
    DEFAULT_SERVER.register(rcvr)


def accept(listener: socket.socket) -> None:
    """Serve connections from ``listener`` with the default server."""
    DEFAULT_SERVER.accept(listener)