from dataclasses import dataclass

import pytest

from srpclite.service import MethodType, Service, is_exported


@dataclass
class Args:
    num1: int
    num2: int


class Foo:
    def Sum(self, args: Args) -> int:
        return args.num1 + args.num2

    def sum(self, args: Args) -> int:
        return args.num1 + args.num2


class _Hidden:
    pass


class Broken:
    def Fail(self, args: int) -> int:
        raise RuntimeError("failure inside")

    def TooMany(self, a: int, b: int) -> int:
        return a + b

    def NoArgs(self) -> int:
        return 0

    def Private(self, args: "_Hidden") -> int:
        return 0


class lowercase:
    pass


def test_new_service():
    s = Service(Foo())
    assert len(s.methods) == 1
    assert "Sum" in s.methods
    assert s.name == "Foo"


def test_method_type_call():
    s = Service(Foo())
    mtype = s.methods["Sum"]
    reply = s.call(mtype, Args(num1=1, num2=3))
    assert reply == 4
    assert mtype.num_calls == 1


def test_call_count_accumulates():
    s = Service(Foo())
    mtype = s.methods["Sum"]
    for i in range(5):
        s.call(mtype, Args(i, i))
    assert mtype.num_calls == 5


def test_method_types_recorded():
    mtype = Service(Foo()).methods["Sum"]
    assert isinstance(mtype, MethodType)
    assert mtype.arg_type is Args
    assert mtype.reply_type is int


def test_unsuitable_methods_skipped():
    s = Service(Broken())
    assert sorted(s.methods) == ["Fail"]


def test_call_propagates_errors_and_counts():
    s = Service(Broken())
    mtype = s.methods["Fail"]
    with pytest.raises(RuntimeError, match="failure inside"):
        s.call(mtype, 1)
    assert mtype.num_calls == 1


@pytest.mark.parametrize("rcvr", [_Hidden(), lowercase()])
def test_unexported_service_rejected(rcvr):
    with pytest.raises(ValueError, match="not a valid service name"):
        Service(rcvr)


@pytest.mark.parametrize(
    "name, expected",
    [("Sum", True), ("sum", False), ("_Sum", False), ("", False), ("Ünter", True)],
)
def test_is_exported(name, expected):
    assert is_exported(name) is expected