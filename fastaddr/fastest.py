"""Pick the DNS reply whose address answers a TCP connect first."""

from __future__ import annotations

import ipaddress
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Sequence, Union

import dns.message
import dns.rdatatype
import dns.rrset

from fastaddr.cache import AddrCache, STATUS_OK
from fastaddr.ping import PING_TCP_TIMEOUT, PingResult, ping_tcp

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPLike = Union[str, IPAddress]
Pinger = Callable[[IPAddress, int, float], PingResult]

# Default time, in seconds, to wait for ping results before giving up.
DEFAULT_PING_WAIT_TIMEOUT = 1.0

# Ports that are dialed when pinging an address.
DEFAULT_PING_PORTS = (80, 443)

_ADDRESS_TYPES = (dns.rdatatype.A, dns.rdatatype.AAAA)


@dataclass
class Config:
    """Settings for FastestAddr.

    A non-positive ping_wait_timeout means the default.  Results arriving after
    the wait timeout are still cached but not used.
    """

    logger: Optional[logging.Logger] = None
    ping_wait_timeout: float = DEFAULT_PING_WAIT_TIMEOUT
    ping_ports: Sequence[int] = field(default_factory=lambda: list(DEFAULT_PING_PORTS))
    ping_tcp_timeout: float = PING_TCP_TIMEOUT
    pinger: Optional[Pinger] = None


@dataclass
class ExchangeResult:
    """A reply together with the upstream that sent it."""

    response: dns.message.Message
    upstream: Any = None


def _unmap(ip: IPAddress) -> IPAddress:
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def ips_from_answer(message: dns.message.Message) -> list[IPAddress]:
    """Return the addresses of all A and AAAA records in the answer section."""
    return [
        ipaddress.ip_address(rdata.address)
        for rrset in message.answer
        if rrset.rdtype in _ADDRESS_TYPES
        for rdata in rrset
    ]


def has_in_answer(message: dns.message.Message, ip: IPLike) -> bool:
    """Report whether the answer section holds ip."""
    return ipaddress.ip_address(ip) in ips_from_answer(message)


def filter_response_answer(response: dns.message.Message, ip: IPLike) -> None:
    """Keep only A and AAAA records with ip; other records stay untouched."""
    wanted = ipaddress.ip_address(ip)
    answer = []
    for rrset in response.answer:
        if rrset.rdtype not in _ADDRESS_TYPES:
            answer.append(rrset)
            continue

        kept = [rd for rd in rrset if ipaddress.ip_address(rd.address) == wanted]
        if kept:
            answer.append(dns.rrset.from_rdata_list(rrset.name, rrset.ttl, kept))

    response.answer = answer


class FastestAddr:
    """Determines the fastest of a set of addresses by TCP connect time."""

    def __init__(self, config: Optional[Config] = None) -> None:
        config = config if config is not None else Config()
        self.logger = config.logger or logging.getLogger(__name__)
        self.ping_wait_timeout = (
            config.ping_wait_timeout
            if config.ping_wait_timeout > 0
            else DEFAULT_PING_WAIT_TIMEOUT
        )
        self.ping_ports = list(config.ping_ports)
        self.ping_tcp_timeout = config.ping_tcp_timeout
        self.pinger: Pinger = config.pinger or ping_tcp
        self.cache = AddrCache()

    def _ping_into(self, host: str, ip: IPAddress, port: int, results: queue.Queue) -> None:
        self.logger.debug("open tcp connection host=%s addr=%s:%d", host, ip, port)
        res = self.pinger(ip, port, self.ping_tcp_timeout)
        results.put(res)

        addr = _unmap(res.ip)
        if res.success:
            self.logger.debug("tcp ping success host=%s addr=%s latency=%d", host, ip, res.latency)
            self.cache.add_successful(addr, res.latency)
        else:
            self.logger.debug("tcp ping failed host=%s addr=%s", host, ip)
            self.cache.add_failure(addr)

    def _schedule_pings(
        self, results: queue.Queue, ips: Iterable[IPAddress], host: str
    ) -> tuple[Optional[PingResult], bool]:
        best: Optional[PingResult] = None
        scheduled = False
        for ip in ips:
            cached = self.cache.find(ip)
            if cached is None:
                scheduled = True
                for port in self.ping_ports:
                    threading.Thread(
                        target=self._ping_into,
                        args=(host, ip, port, results),
                        daemon=True,
                    ).start()
                continue

            if cached.status == STATUS_OK and (best is None or cached.latency_msec < best.latency):
                best = PingResult(ip=ip, port=0, latency=cached.latency_msec, success=True)

        return best, scheduled

    def _first_success(self, results: queue.Queue, host: str) -> Optional[PingResult]:
        deadline = time.monotonic() + self.ping_wait_timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self.logger.debug("pinging all timed out host=%s", host)
                return None
            try:
                res = results.get(timeout=remaining)
            except queue.Empty:
                self.logger.debug("pinging all timed out host=%s", host)
                return None

            self.logger.debug(
                "pinging all got result host=%s addr=%s:%d status=%s",
                host, res.ip, res.port, res.success,
            )
            if res.success:
                return res

    def ping_all(self, host: str, ips: Sequence[IPLike]) -> Optional[PingResult]:
        """Ping ips concurrently; return the fastest result, or None."""
        addrs = [ipaddress.ip_address(ip) for ip in ips or ()]
        if not addrs:
            return None
        if len(addrs) == 1:
            return PingResult(ip=addrs[0], port=0, success=True)

        results: queue.Queue = queue.Queue()
        cached, scheduled = self._schedule_pings(results, addrs, host)
        if not scheduled:
            if cached is not None:
                self.logger.debug("pinging all returns cached response host=%s addr=%s", host, cached.ip)
            else:
                self.logger.debug("pinging all returns nothing host=%s", host)
            return cached

        res = self._first_success(results, host)
        if res is None:
            return cached
        if cached is None or res.latency <= cached.latency:
            return res
        return cached

    def choose_reply(
        self, request: dns.message.Message, replies: Sequence[ExchangeResult]
    ) -> ExchangeResult:
        """Return the reply holding the fastest address, trimmed to that address.

        Without a fastest address the first reply is returned unchanged.
        """
        if not replies:
            raise ValueError("no replies to choose from")

        seen: dict[IPAddress, None] = {}
        for reply in replies:
            for ip in ips_from_answer(reply.response):
                if not ip.is_unspecified:
                    seen.setdefault(ip, None)

        host = request.question[0].name.to_text().lower() if request.question else ""
        result = self.ping_all(host, list(seen))
        if result is not None:
            return self.prepare_reply(result, replies)

        self.logger.debug("no fastest ip found, using the first response host=%s", host)
        return replies[0]

    def prepare_reply(
        self, result: PingResult, replies: Sequence[ExchangeResult]
    ) -> ExchangeResult:
        """Return the reply containing result's address with its answer filtered."""
        if not replies:
            raise ValueError("no replies to choose from")

        ip = result.ip
        chosen = next((r for r in replies if has_in_answer(r.response, ip)), None)
        if chosen is None:
            self.logger.error("found no replies, most likely this is a bug ip=%s", ip)
            return replies[0]

        filter_response_answer(chosen.response, ip)
        return chosen