"""Expiring LRU cache of per-address ping results."""

from __future__ import annotations

import ipaddress
import struct
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Union

IPLike = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]

# How long a ping result stays valid, in seconds.
FASTEST_ADDR_CACHE_TTL_SEC = 10 * 60

# Default maximum number of addresses kept in the cache.
DEFAULT_CACHE_SIZE = 64 * 1024

# expire (uint32, Unix seconds), status (byte), latency (uint16, milliseconds).
_ENTRY_FORMAT = struct.Struct(">IBH")

STATUS_OK = 0
STATUS_TIMED_OUT = 1


@dataclass
class CacheEntry:
    """A cached ping outcome: status 0 is success, 1 is a timeout."""

    status: int = STATUS_OK
    latency_msec: int = 0


def pack_cache_entry(entry: CacheEntry, ttl: int) -> bytes:
    """Pack entry together with its expiry time, ttl seconds from now."""
    expire = (int(time.time()) + ttl) & 0xFFFFFFFF
    return _ENTRY_FORMAT.pack(expire, entry.status & 0xFF, entry.latency_msec & 0xFFFF)


def unpack_cache_entry(data: bytes) -> CacheEntry | None:
    """Unpack a packed entry, or return None if it has expired."""
    try:
        expire, status, latency = _ENTRY_FORMAT.unpack_from(data)
    except struct.error as exc:
        raise ValueError(f"packed cache entry too short: {len(data)} bytes") from exc

    if expire <= int(time.time()):
        return None

    return CacheEntry(status=status, latency_msec=latency)


def _key(ip: IPLike) -> bytes:
    return ipaddress.ip_address(ip).packed


class AddrCache:
    """Thread-safe LRU cache mapping IP addresses to ping results."""

    def __init__(self, max_size: int = DEFAULT_CACHE_SIZE) -> None:
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self._max_size = max_size
        self._items: OrderedDict[bytes, bytes] = OrderedDict()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def find(self, ip: IPLike) -> CacheEntry | None:
        """Return the live entry for ip, or None if absent or expired."""
        key = _key(ip)
        with self._lock:
            packed = self._items.get(key)
            if packed is None:
                return None
            self._items.move_to_end(key)
        return unpack_cache_entry(packed)

    def add(self, entry: CacheEntry, ip: IPLike, ttl: int) -> None:
        """Store entry for ip, valid for ttl seconds."""
        key = _key(ip)
        packed = pack_cache_entry(entry, ttl)
        with self._lock:
            self._items[key] = packed
            self._items.move_to_end(key)
            while len(self._items) > self._max_size:
                self._items.popitem(last=False)

    def add_failure(self, ip: IPLike) -> None:
        """Record a failed ping unless a live entry already exists."""
        with self._lock:
            if self.find(ip) is None:
                self.add(CacheEntry(status=STATUS_TIMED_OUT), ip, FASTEST_ADDR_CACHE_TTL_SEC)

    def add_successful(self, ip: IPLike, latency: int) -> None:
        """Record a successful ping if it beats the cached result."""
        with self._lock:
            cached = self.find(ip)
            if cached is None or cached.status != STATUS_OK or cached.latency_msec > latency:
                self.add(
                    CacheEntry(status=STATUS_OK, latency_msec=latency),
                    ip,
                    FASTEST_ADDR_CACHE_TTL_SEC,
                )