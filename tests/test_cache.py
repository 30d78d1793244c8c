import struct
import time
from unittest import mock

import pytest

from fastaddr.cache import (
    FASTEST_ADDR_CACHE_TTL_SEC,
    AddrCache,
    CacheEntry,
    pack_cache_entry,
    unpack_cache_entry,
)


def test_cache_add():
    cache = AddrCache()
    cache.add(CacheEntry(status=0, latency_msec=111), "1.1.1.1", FASTEST_ADDR_CACHE_TTL_SEC)

    assert cache.find("1.1.1.1") == CacheEntry(status=0, latency_msec=111)


def test_cache_ttl():
    cache = AddrCache()
    cache.add(CacheEntry(status=0, latency_msec=111), "1.1.1.1", 1)

    assert cache.find("1.1.1.1") is not None

    later = time.time() + 1.001
    with mock.patch("time.time", return_value=later):
        assert cache.find("1.1.1.1") is None


def test_cache_add_successful_overwrite():
    cache = AddrCache()
    cache.add_failure("1.1.1.1")

    ent = cache.find("1.1.1.1")
    assert ent is not None
    assert ent.status == 1

    cache.add_successful("1.1.1.1", 11)

    ent = cache.find("1.1.1.1")
    assert ent is not None
    assert ent.status == 0
    assert ent.latency_msec == 11


def test_cache_add_failure_no_overwrite():
    cache = AddrCache()
    cache.add_successful("1.1.1.1", 11)

    ent = cache.find("1.1.1.1")
    assert ent is not None
    assert ent.status == 0

    cache.add_failure("1.1.1.1")

    ent = cache.find("1.1.1.1")
    assert ent is not None
    assert ent.status == 0
    assert ent.latency_msec == 11


def test_cache_two_addresses():
    cache = AddrCache()
    cache.add(CacheEntry(status=0, latency_msec=111), "1.1.1.1", 1)
    cache.add(CacheEntry(status=0, latency_msec=222), "2.2.2.2", FASTEST_ADDR_CACHE_TTL_SEC)

    assert cache.find("1.1.1.1").latency_msec == 111
    assert cache.find("2.2.2.2").latency_msec == 222
    assert len(cache) == 2


def test_add_successful_keeps_lower_latency():
    cache = AddrCache()
    cache.add_successful("1.1.1.1", 11)
    cache.add_successful("1.1.1.1", 50)
    assert cache.find("1.1.1.1").latency_msec == 11

    cache.add_successful("1.1.1.1", 5)
    assert cache.find("1.1.1.1").latency_msec == 5


def test_pack_layout():
    data = pack_cache_entry(CacheEntry(status=1, latency_msec=111), 600)
    assert len(data) == 7

    expire, status, latency = struct.unpack(">IBH", data)
    assert status == 1
    assert latency == 111
    assert abs(expire - (int(time.time()) + 600)) <= 1


def test_pack_unpack_round_trip():
    entry = CacheEntry(status=0, latency_msec=222)
    assert unpack_cache_entry(pack_cache_entry(entry, 60)) == entry


def test_unpack_expired_is_none():
    assert unpack_cache_entry(pack_cache_entry(CacheEntry(latency_msec=5), 0)) is None


def test_unpack_short_data_raises():
    with pytest.raises(ValueError):
        unpack_cache_entry(b"\x00\x01")


def test_lru_eviction():
    cache = AddrCache(max_size=2)
    cache.add_successful("1.1.1.1", 1)
    cache.add_successful("2.2.2.2", 2)
    cache.find("1.1.1.1")
    cache.add_successful("3.3.3.3", 3)

    assert len(cache) == 2
    assert cache.find("2.2.2.2") is None
    assert cache.find("1.1.1.1").latency_msec == 1
    assert cache.find("3.3.3.3").latency_msec == 3


def test_ipv6_key_distinct_from_ipv4():
    cache = AddrCache()
    cache.add_successful("::1", 7)
    assert cache.find("127.0.0.1") is None
    assert cache.find("::1").latency_msec == 7


def test_invalid_max_size():
    with pytest.raises(ValueError):
        AddrCache(max_size=0)