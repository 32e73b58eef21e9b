"""Message framing: request/response headers and body encoding."""

from __future__ import annotations

import abc
import enum
import io
import logging
import pickle
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable

logger = logging.getLogger(__name__)

_PROTOCOL = 4


@dataclass
class Header:
    """Header that precedes every request and response body."""

    service_method: str = ""
    seq: int = 0
    error: str = ""


class CodecType(str, enum.Enum):
    """Names of the body encodings a connection may negotiate."""

    PICKLE = "application/pickle"
    JSON = "application/json"


class Codec(abc.ABC):
    """Reads and writes header/body pairs on a byte stream."""

    @abc.abstractmethod
    def read_header(self) -> Header:
        """Read the next header; raise EOFError when the stream ends."""

    @abc.abstractmethod
    def read_body(self) -> Any:
        """Read the body that follows the last header."""

    @abc.abstractmethod
    def write(self, header: Header, body: Any) -> None:
        """Write a header and its body as one message."""

    @abc.abstractmethod
    def close(self) -> None:
        """Close the underlying stream."""

    def __enter__(self) -> "Codec":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class PickleCodec(Codec):
    """Codec that encodes headers and bodies with pickle.

    The stream must offer ``read``, ``readline``, ``write``, ``flush`` and
    ``close``, as a buffered socket file does.
    """

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    def read_header(self) -> Header:
        raw = pickle.load(self._stream)
        if (
            not isinstance(raw, tuple)
            or len(raw) != 3
            or not isinstance(raw[0], str)
            or not isinstance(raw[1], int)
            or not isinstance(raw[2], str)
        ):
            raise ValueError("rpc codec: malformed header")
        service_method, seq, error = raw
        return Header(service_method=service_method, seq=seq, error=error)

    def read_body(self) -> Any:
        return pickle.load(self._stream)

    def write(self, header: Header, body: Any) -> None:
        buffer = io.BytesIO()
        try:
            try:
                pickle.dump(
                    (header.service_method, header.seq, header.error),
                    buffer,
                    protocol=_PROTOCOL,
                )
            except Exception as exc:
                logger.error("rpc codec: pickle error encoding header: %s", exc)
                raise
            try:
                pickle.dump(body, buffer, protocol=_PROTOCOL)
            except Exception as exc:
                logger.error("rpc codec: pickle error encoding body: %s", exc)
                raise
            self._stream.write(buffer.getvalue())
            self._stream.flush()
        except Exception:
            try:
                self.close()
            except OSError:
                pass
            raise

    def close(self) -> None:
        self._stream.close()


_CODECS: dict[CodecType, Callable[[BinaryIO], Codec]] = {
    CodecType.PICKLE: PickleCodec,
}


def new_codec(codec_type: CodecType | str, stream: BinaryIO) -> Codec:
    """Build the codec registered for ``codec_type`` around ``stream``."""
    try:
        key = CodecType(codec_type)
    except ValueError:
        raise ValueError(f"invalid codec type {codec_type}") from None
    factory = _CODECS.get(key)
    if factory is None:
        raise ValueError(f"invalid codec type {key.value}")
    return factory(stream)