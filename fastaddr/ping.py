"""TCP connect probing of addresses."""

from __future__ import annotations

import ipaddress
import socket
import time
from dataclasses import dataclass
from typing import Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPLike = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]

# TCP connection timeout in seconds.  It is longer than the time spent waiting
# for results since slower connections are still cached.
PING_TCP_TIMEOUT = 4.0


@dataclass(frozen=True)
class PingResult:
    """Outcome of dialing an address; latency is in milliseconds."""

    ip: IPAddress
    port: int = 0
    latency: int = 0
    success: bool = False


def ping_tcp(ip: IPLike, port: int, timeout: float = PING_TCP_TIMEOUT) -> PingResult:
    """Open and close a TCP connection to ip:port, timing the attempt."""
    addr = ipaddress.ip_address(ip)
    start = time.monotonic()
    try:
        conn = socket.create_connection((str(addr), port), timeout=timeout)
    except OSError:
        success = False
    else:
        success = True
        try:
            conn.close()
        except OSError:
            pass
    elapsed = time.monotonic() - start

    return PingResult(
        ip=addr,
        port=port,
        latency=int(elapsed * 1000),
        success=success,
    )