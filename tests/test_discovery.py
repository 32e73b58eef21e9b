import random

import pytest

from srpclite.discovery import MultiServersDiscovery, SelectMode

SERVERS = ["tcp@a:1", "tcp@b:2", "tcp@c:3"]


def test_round_robin_visits_each_server_once_per_cycle():
    d = MultiServersDiscovery(SERVERS)
    first = [d.get(SelectMode.ROUND_ROBIN) for _ in SERVERS]
    second = [d.get(SelectMode.ROUND_ROBIN) for _ in SERVERS]
    assert sorted(first) == sorted(SERVERS)
    assert first == second


def test_round_robin_follows_list_order():
    d = MultiServersDiscovery(SERVERS)
    picked = [d.get(SelectMode.ROUND_ROBIN) for _ in range(2 * len(SERVERS))]
    start = SERVERS.index(picked[0])
    expected = [SERVERS[(start + i) % len(SERVERS)] for i in range(len(picked))]
    assert picked == expected


def test_random_picks_known_servers_and_covers_all():
    d = MultiServersDiscovery(SERVERS, rng=random.Random(42))
    picked = {d.get(SelectMode.RANDOM) for _ in range(200)}
    assert picked == set(SERVERS)


def test_empty_list_raises():
    d = MultiServersDiscovery([])
    with pytest.raises(LookupError, match="no available servers"):
        d.get(SelectMode.RANDOM)


def test_unsupported_mode_raises():
    d = MultiServersDiscovery(SERVERS)
    with pytest.raises(ValueError, match="not supported select mode"):
        d.get(7)


def test_get_all_returns_copy():
    d = MultiServersDiscovery(SERVERS)
    servers = d.get_all()
    servers.append("tcp@d:4")
    assert d.get_all() == SERVERS


def test_constructor_copies_input():
    given = list(SERVERS)
    d = MultiServersDiscovery(given)
    given.clear()
    assert d.get_all() == SERVERS


def test_update_replaces_servers():
    d = MultiServersDiscovery(SERVERS)
    d.update(["tcp@x:9"])
    assert d.get_all() == ["tcp@x:9"]
    assert d.get(SelectMode.ROUND_ROBIN) == "tcp@x:9"
    assert d.get(SelectMode.RANDOM) == "tcp@x:9"


def test_refresh_keeps_servers():
    d = MultiServersDiscovery(SERVERS)
    d.refresh()
    assert d.get_all() == SERVERS


def test_select_mode_values_match_order():
    assert [m.value for m in SelectMode] == [0, 1]
    assert SelectMode(1) is SelectMode.ROUND_ROBIN