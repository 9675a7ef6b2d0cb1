"""Walks the selected catalog and probes every endpoint exactly once."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Tuple

from . import probes
from .catalog import Catalog, Endpoint
from .config import RunConfig
from .models import ProbeResult, ProbeStatus

ResultCallback = Callable[[str, ProbeResult], None]

logger = logging.getLogger(__name__)


def probe_endpoint(identifier: str, config: RunConfig) -> ProbeResult:
    """Probe one endpoint: reachability first, then the samples the run asks for.

    An unreachable endpoint is not sampled further.
    """

    try:
        endpoint = Endpoint.parse(identifier)
    except ValueError as exc:
        logger.warning("cannot probe %r: %s", identifier, exc)
        return ProbeResult(endpoint=identifier, target=identifier.strip(), status=ProbeStatus.UNREACHABLE)

    reachability = probes.check_reachability(endpoint.target, config.port, config.timeout_s)
    if not reachability.reachable:
        return ProbeResult(endpoint=identifier, target=endpoint.target, status=ProbeStatus.UNREACHABLE)

    latency_ms = None
    if not config.skip_latency:
        latency_ms = probes.sample_latency(
            reachability.address or endpoint.target,
            config.ping_count,
            config.timeout_s,
        )

    throughput = None
    if not config.skip_throughput:
        throughput = probes.sample_throughput(
            endpoint.url or endpoint.target,
            config.timeout_s,
            config.throughput_path,
        )

    return ProbeResult(
        endpoint=identifier,
        target=endpoint.target,
        status=ProbeStatus.REACHABLE,
        address=reachability.address,
        latency_ms=latency_ms,
        throughput=throughput,
    )


def _work_items(catalog: Catalog) -> List[Tuple[str, str]]:
    return [(group, identifier) for group, endpoints in catalog.items() for identifier in endpoints]


def probe_catalog(
    catalog: Catalog,
    config: RunConfig,
    on_result: Optional[ResultCallback] = None,
) -> List[ProbeResult]:
    """Return one result per endpoint, in catalog order.

    With ``config.workers > 1`` endpoints are probed on a bounded thread pool;
    results are still collected and reported on the calling thread in catalog
    order.
    """

    items = _work_items(catalog)
    logger.info("probing %s endpoints in %s groups (workers=%s)", len(items), len(catalog), config.workers)

    results: List[ProbeResult] = []
    if config.workers <= 1 or len(items) <= 1:
        for group, identifier in items:
            result = probe_endpoint(identifier, config)
            results.append(result)
            if on_result is not None:
                on_result(group, result)
        return results

    with ThreadPoolExecutor(max_workers=config.workers) as executor:
        futures = [executor.submit(probe_endpoint, identifier, config) for _, identifier in items]
        for (group, _), future in zip(items, futures):
            result = future.result()
            results.append(result)
            if on_result is not None:
                on_result(group, result)
    return results
