import pytest

from srpclite.client import dial
from srpclite.demo import Args, Foo, main, run_broadcast, run_calls, start_server


def test_sum_adds_operands():
    assert Foo().Sum(Args(1, 3)) == 4


def test_sleep_returns_sum():
    assert Foo().Sleep(Args(0, 5)) == Foo().Sum(Args(0, 5))


def test_start_server_serves_foo():
    addr = start_server()
    with dial("tcp", addr) as client:
        assert client.call("Foo.Sum", Args(1, 3), timeout=5) == 4


def test_run_calls_all_succeed():
    lines = run_calls(start_server(), start_server())
    assert len(lines) == 5
    assert all(line.startswith("call Foo.Sum success") for line in lines)
    assert lines[0].endswith("0 + 0 = 0")


def test_run_broadcast_later_sleeps_time_out():
    lines = run_broadcast(start_server(), start_server())
    assert len(lines) == 10
    sums = lines[0::2]
    sleeps = lines[1::2]
    assert all("broadcast Foo.Sum success" in line for line in sums)
    assert all("success" in line for line in sleeps[:2])
    assert all("error" in line for line in sleeps[2:])


def test_main_rejects_extra_arguments():
    with pytest.raises(SystemExit):
        main(["unexpected"])


def test_main_runs_to_completion():
    assert main([]) == 0