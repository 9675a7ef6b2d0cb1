"""Run and per-group statistics over a finished result set."""

from __future__ import annotations

from typing import Dict, Iterable, List, Sequence

from .catalog import Catalog
from .models import (
    GroupHealth,
    GroupSummary,
    MetricStats,
    ProbeResult,
    RunStatistics,
    RunSummary,
    ThroughputStrategy,
)


def success_rate(reachable: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(reachable / total * 100, 1)


def metric_stats(values: Iterable[float]) -> MetricStats:
    samples = [float(value) for value in values]
    if not samples:
        return MetricStats()
    return MetricStats(
        count=len(samples),
        average=round(sum(samples) / len(samples), 2),
        minimum=min(samples),
        maximum=max(samples),
    )


def compute_statistics(results: Sequence[ProbeResult]) -> RunStatistics:
    reachable = [result for result in results if result.reachable]
    latencies = [result.latency_ms for result in reachable if result.latency_ms is not None]
    downloads: List[float] = []
    responses: List[float] = []
    for result in reachable:
        if result.throughput is None:
            continue
        if result.throughput.strategy is ThroughputStrategy.DOWNLOAD:
            downloads.append(result.throughput.value)
        else:
            responses.append(result.throughput.value)

    total = len(results)
    return RunStatistics(
        total=total,
        reachable=len(reachable),
        unreachable=total - len(reachable),
        success_rate=success_rate(len(reachable), total),
        latency_ms=metric_stats(latencies),
        download_kbps=metric_stats(downloads),
        response_ms=metric_stats(responses),
    )


def summarize(results: Sequence[ProbeResult], catalog: Catalog) -> RunSummary:
    """Global statistics, one summary per catalog group and the groups with failures.

    Results are matched to groups by endpoint identifier; each identifier
    belongs to exactly one group of the catalog.
    """

    by_endpoint: Dict[str, ProbeResult] = {result.endpoint: result for result in results}

    groups: List[GroupSummary] = []
    failed: List[str] = []
    for name, endpoints in catalog.items():
        members = [by_endpoint[identifier] for identifier in endpoints if identifier in by_endpoint]
        statistics = compute_statistics(members)
        health = GroupHealth.DEGRADED if statistics.unreachable else GroupHealth.HEALTHY
        if health is GroupHealth.DEGRADED:
            failed.append(name)
        groups.append(GroupSummary(name=name, statistics=statistics, health=health))

    return RunSummary(overall=compute_statistics(results), groups=groups, failed_groups=failed)
