# fastaddr

`fastaddr` chooses the fastest IP address among the answers that several
DNS upstreams returned for one question.

It gathers every A and AAAA address from the replies, opens a TCP
connection to each address on every configured port at the same time
(ports 80 and 443 by default), and keeps the address that connected first.
The reply holding that address is returned, with every other A and AAAA
record removed from its answer section. Records of other types are kept.

## Installation

```
pip install fastaddr
```

The package depends on `dnspython`; replies are `dns.message.Message`
objects.

## Usage

```python
import dns.message
from fastaddr.fastest import Config, ExchangeResult, FastestAddr

finder = FastestAddr(Config(ping_wait_timeout=1.0))
request = dns.message.make_query("example.org.", "A")
replies = [ExchangeResult(response=resp, upstream=name) for name, resp in answers]
best = finder.choose_reply(request, replies)
```

## `fastaddr.fastest`

- **`Config`** holds the settings:
  - `logger` – a `logging.Logger`; the module's own logger when `None`.
  - `ping_wait_timeout` – seconds to wait for a successful ping (default
    `1.0`; zero or less also means `1.0`). Pings that finish later are
    still written to the cache.
  - `ping_ports` – ports dialled for each address (default `[80, 443]`).
  - `ping_tcp_timeout` – connect timeout for a single ping (default `4.0`).
  - `pinger` – a callable `(ip, port, timeout) -> PingResult` used in
    place of `ping_tcp`.
- **`ExchangeResult`** pairs a `response` with the `upstream` that sent it
  (any object).
- **`FastestAddr(config=None)`** keeps an `AddrCache` in its `cache`
  attribute.
  - `ping_all(host, ips)` returns a `PingResult` for the fastest address,
    or `None`. With no addresses it returns `None`; with one it returns
    that address at once, without pinging. Addresses with a fresh cache
    entry are not pinged again: a cached success (reported with port 0)
    competes with the new pings on latency, and if every address is cached
    the best cached success is returned, or `None`.
  - `choose_reply(request, replies)` collects the non-unspecified addresses
    from all replies, pings them, and returns the `ExchangeResult` holding
    the fastest one with its answer filtered. If no address is found
    fast enough, the first reply is returned unchanged. An empty `replies`
    raises `ValueError`.
  - `prepare_reply(result, replies)` finds the first reply holding
    `result.ip` and filters its answer; if none holds it, an error is
    logged and the first reply is returned unchanged. An empty `replies`
    raises `ValueError`.
- `ips_from_answer(message)` lists the addresses of all A and AAAA records
  in the answer section.
- `has_in_answer(message, ip)` tells whether the answer section holds `ip`.
- `filter_response_answer(response, ip)` keeps only the A and AAAA records
  for `ip`, plus every record of another type, modifying `response` in
  place.

## `fastaddr.ping`

- `ping_tcp(ip, port, timeout=4.0)` opens and closes one TCP connection and
  returns a `PingResult`.
- `PingResult` has `ip`, `port`, `latency` (milliseconds) and `success`.

## `fastaddr.cache`

`AddrCache(max_size=65536)` is a thread-safe cache of ping results, keyed
by address, that drops the least recently used entries when full. Entries
live for ten minutes. A `max_size` below 1 raises `ValueError`.

- `add_successful(ip, latency)` records a successful ping; it replaces a
  fresh entry only if that entry was a failure or had a higher latency.
- `add_failure(ip)` records a failed ping, but never overwrites a fresh
  entry.
- `add(entry, ip, ttl)` stores a `CacheEntry` for `ttl` seconds.
- `find(ip)` returns the `CacheEntry` for an address, or `None` when there
  is none or it has expired.
- `len(cache)` counts stored entries, expired ones included.

`CacheEntry` has `status` (0 for success, 1 for failure) and
`latency_msec`. Entries are stored in seven bytes: a four-byte big-endian
expiry time in Unix seconds, the status byte and a two-byte big-endian
latency. `pack_cache_entry(entry, ttl)` and `unpack_cache_entry(data)`
convert to and from that form; unpacking an expired entry gives `None`,
and data shorter than seven bytes raises `ValueError`.

## What it does not do

`fastaddr` sends no DNS queries: the caller asks the upstreams and passes
their replies in. There is no command-line tool and no DNS server.

## Running the tests

```
pip install -e ".[test]"
pytest
```