"""Probe primitives: TCP reachability, ICMP latency and HTTP throughput samples.

Every function here is stateless and bounds its own network calls by the
timeout it is given, so probes for different endpoints can run concurrently.
Failures never raise: they collapse to an unreachable result or ``None``.
"""

from __future__ import annotations

import ipaddress
import logging
import re
import socket
import subprocess
import sys
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from http.client import HTTPException
from time import perf_counter
from typing import Any, Callable, List, Optional
from urllib.parse import urljoin
from urllib.request import Request, urlopen

import dns.exception
import dns.resolver

from .models import Reachability, ThroughputSample, ThroughputStrategy

MAX_DOWNLOAD_BYTES = 1024 * 1024
USER_AGENT = "endpoint-observer/0.3"
PING_REPLY_PATTERN = re.compile(r"time\s*[=<]\s*([\d.]+)\s*ms", re.IGNORECASE)

logger = logging.getLogger(__name__)


def _is_ip_address(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def _call_with_timeout(func: Callable[..., Any], timeout_s: float, *args: Any) -> Any:
    # shutdown(wait=False) so a call stuck in the resolver cannot hold up the caller
    executor = ThreadPoolExecutor(max_workers=1)
    try:
        future = executor.submit(func, *args)
        return future.result(timeout=timeout_s)
    finally:
        executor.shutdown(wait=False)


def _system_resolve(host: str) -> Optional[str]:
    records = socket.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    for record in records:
        return str(record[4][0])
    return None


def resolve_address(host: str, timeout_s: float) -> Optional[str]:
    """Resolve ``host`` to one address, A records first, within ``timeout_s``."""

    if _is_ip_address(host):
        return host

    try:
        resolver = dns.resolver.Resolver()
    except dns.resolver.NoResolverConfiguration:
        try:
            return _call_with_timeout(_system_resolve, timeout_s, host)
        except (OSError, FuturesTimeout) as exc:
            logger.debug("system resolution of %s failed: %s", host, exc)
            return None

    resolver.timeout = timeout_s
    resolver.lifetime = timeout_s
    resolver.retry_servfail = False
    for record_type in ("A", "AAAA"):
        try:
            answer = resolver.resolve(host, record_type, lifetime=timeout_s)
        except dns.resolver.NoAnswer:
            continue
        except dns.exception.DNSException as exc:
            logger.debug("resolution of %s failed: %s", host, exc)
            return None
        for rdata in answer:
            return str(rdata)
    return None


def check_reachability(target: str, port: int = 443, timeout_s: float = 5) -> Reachability:
    """Attempt a TCP connection to ``target`` and report whether it completed."""

    address = resolve_address(target, timeout_s)
    if address is None:
        return Reachability(reachable=False)
    try:
        with socket.create_connection((address, port), timeout=timeout_s):
            pass
    except OSError as exc:
        logger.debug("tcp %s:%s (%s) failed: %s", target, port, address, exc)
        return Reachability(reachable=False)
    return Reachability(reachable=True, address=address)


def _ping_command(target: str, count: int, timeout_s: int) -> List[str]:
    if sys.platform == "win32":
        return ["ping", "-n", str(count), "-w", str(timeout_s * 1000), target]
    if sys.platform == "darwin":
        return ["ping", "-c", str(count), "-W", str(timeout_s * 1000), target]
    return ["ping", "-c", str(count), "-W", str(timeout_s), target]


def parse_ping_times(output: str) -> List[float]:
    """Extract per-reply round-trip times in ms from ping output (Linux, macOS, Windows)."""

    return [float(match.group(1)) for match in PING_REPLY_PATTERN.finditer(output)]


def sample_latency(target: str, count: int = 4, timeout_s: int = 5) -> Optional[float]:
    """Average ICMP echo round trip in ms, or ``None`` when nothing could be measured."""

    count = max(1, int(count))
    timeout_s = max(1, int(timeout_s))
    try:
        completed = subprocess.run(
            _ping_command(target, count, timeout_s),
            capture_output=True,
            text=True,
            check=False,
            timeout=count * timeout_s + timeout_s,
        )
    except subprocess.TimeoutExpired:
        logger.debug("ping %s timed out", target)
        return None
    except OSError as exc:
        logger.debug("ping unavailable: %s", exc)
        return None

    output = (completed.stdout or "") + (completed.stderr or "")
    if "Operation not permitted" in output or "Permission denied" in output:
        return None

    times = parse_ping_times(completed.stdout or "")
    if not times:
        return None
    return round(sum(times) / len(times), 2)


def _base_url(url_or_host: str) -> str:
    if "://" in url_or_host:
        return url_or_host
    host = url_or_host
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return f"https://{host}/"


def _download(url: str, timeout_s: float) -> float:
    request = Request(url, headers={"User-Agent": USER_AGENT})
    start = perf_counter()
    with urlopen(request, timeout=timeout_s) as response:  # nosec - operator supplied endpoints
        payload = response.read(MAX_DOWNLOAD_BYTES)
    elapsed_s = max(perf_counter() - start, 1e-6)
    if not payload:
        raise ValueError("empty response body")
    return round(len(payload) * 8 / elapsed_s / 1024, 2)


def _head(url: str, timeout_s: float) -> float:
    request = Request(url, method="HEAD", headers={"User-Agent": USER_AGENT})
    start = perf_counter()
    with urlopen(request, timeout=timeout_s):  # nosec - operator supplied endpoints
        elapsed_ms = (perf_counter() - start) * 1000
    return round(elapsed_ms, 2)


def _get(url: str, timeout_s: float) -> float:
    request = Request(url, headers={"User-Agent": USER_AGENT})
    start = perf_counter()
    with urlopen(request, timeout=timeout_s):  # nosec - operator supplied endpoints
        elapsed_ms = (perf_counter() - start) * 1000
    return round(elapsed_ms, 2)


def sample_throughput(
    url_or_host: str,
    timeout_s: float = 5,
    path: str = "/favicon.ico",
) -> Optional[ThroughputSample]:
    """Measure a download rate, falling back to HEAD and then GET response times.

    The first strategy that completes wins. A download yields Kbps, the two
    fallbacks yield milliseconds; the returned sample records which one ran.
    """

    base = _base_url(url_or_host)
    attempts = (
        (ThroughputStrategy.DOWNLOAD, _download, urljoin(base, path)),
        (ThroughputStrategy.HEAD, _head, base),
        (ThroughputStrategy.GET, _get, base),
    )
    for strategy, request, url in attempts:
        try:
            value = _call_with_timeout(request, timeout_s, url, timeout_s)
        except (OSError, HTTPException, ValueError, FuturesTimeout) as exc:
            logger.debug("%s %s failed: %s", strategy.value, url, exc)
            continue
        return ThroughputSample(value=value, strategy=strategy)
    return None
