import io
import pickle

import pytest

from srpclite.codec import CodecType, Header, PickleCodec, new_codec


def _encode(messages):
    out = io.BytesIO()
    codec = PickleCodec(out)
    for header, body in messages:
        codec.write(header, body)
    return out.getvalue()


class _FailingStream(io.BytesIO):
    def write(self, data):
        raise OSError("broken pipe")


def test_header_and_body_round_trip():
    data = _encode([(Header("Foo.Sum", 1, ""), {"a": 1, "b": [2, 3]})])
    codec = PickleCodec(io.BytesIO(data))
    header = codec.read_header()
    assert header == Header("Foo.Sum", 1, "")
    assert codec.read_body() == {"a": 1, "b": [2, 3]}


def test_several_messages_in_order():
    messages = [(Header("Svc.M", seq, ""), seq * 10) for seq in range(1, 6)]
    codec = PickleCodec(io.BytesIO(_encode(messages)))
    received = [(codec.read_header(), codec.read_body()) for _ in messages]
    assert received == messages


def test_error_header_round_trip():
    data = _encode([(Header("Foo.Sum", 7, "boom"), None)])
    codec = PickleCodec(io.BytesIO(data))
    header = codec.read_header()
    assert header.error == "boom"
    assert header.seq == 7
    assert codec.read_body() is None


def test_read_header_at_end_raises_eof():
    codec = PickleCodec(io.BytesIO(b""))
    with pytest.raises(EOFError):
        codec.read_header()


def test_malformed_header_rejected():
    stream = io.BytesIO(pickle.dumps(["not", "a", "header"]))
    codec = PickleCodec(stream)
    with pytest.raises(ValueError, match="malformed header"):
        codec.read_header()


def test_unpicklable_body_closes_stream():
    stream = io.BytesIO()
    codec = PickleCodec(stream)
    with pytest.raises(Exception):
        codec.write(Header("Foo.Sum", 1, ""), lambda: None)
    assert stream.closed


def test_stream_write_failure_closes_stream():
    stream = _FailingStream()
    codec = PickleCodec(stream)
    with pytest.raises(OSError):
        codec.write(Header("Foo.Sum", 1, ""), 3)
    assert stream.closed


def test_close_closes_stream():
    stream = io.BytesIO()
    codec = PickleCodec(stream)
    codec.close()
    assert stream.closed


def test_context_manager_closes_stream():
    stream = io.BytesIO()
    with PickleCodec(stream):
        assert not stream.closed
    assert stream.closed


@pytest.mark.parametrize("codec_type", [CodecType.PICKLE, CodecType.PICKLE.value])
def test_new_codec_accepts_enum_and_string(codec_type):
    data = _encode([(Header("Foo.Sum", 3, ""), [1, 2])])
    codec = new_codec(codec_type, io.BytesIO(data))
    assert codec.read_header() == Header("Foo.Sum", 3, "")
    assert codec.read_body() == [1, 2]


def test_new_codec_unknown_type():
    with pytest.raises(ValueError, match="invalid codec type"):
        new_codec("application/xml", io.BytesIO())


def test_new_codec_unregistered_type():
    with pytest.raises(ValueError, match="invalid codec type"):
        new_codec(CodecType.JSON, io.BytesIO())