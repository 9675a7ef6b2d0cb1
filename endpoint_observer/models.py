"""Typed records passed between the probe, orchestration and aggregation stages."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional


class ProbeStatus(str, Enum):
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"


class ThroughputStrategy(str, Enum):
    """Which request produced a throughput sample."""

    DOWNLOAD = "download"
    HEAD = "head"
    GET = "get"

    @property
    def unit(self) -> str:
        return "kbps" if self is ThroughputStrategy.DOWNLOAD else "ms"


class GroupHealth(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class Reachability:
    reachable: bool
    address: Optional[str] = None


@dataclass(frozen=True)
class ThroughputSample:
    """A download rate in Kbps or a response time in ms, depending on ``strategy``."""

    value: float
    strategy: ThroughputStrategy

    @property
    def unit(self) -> str:
        return self.strategy.unit


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of probing one endpoint once.

    Samples and the resolved address only exist for reachable endpoints;
    an unreachable result carrying any of them is rejected at construction.
    """

    endpoint: str
    target: str
    status: ProbeStatus
    address: Optional[str] = None
    latency_ms: Optional[float] = None
    throughput: Optional[ThroughputSample] = None

    def __post_init__(self) -> None:
        if self.status is ProbeStatus.UNREACHABLE and (
            self.address is not None or self.latency_ms is not None or self.throughput is not None
        ):
            raise ValueError(f"unreachable result for {self.endpoint} cannot carry samples")

    @property
    def reachable(self) -> bool:
        return self.status is ProbeStatus.REACHABLE


@dataclass(frozen=True)
class MetricStats:
    count: int = 0
    average: Optional[float] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None


@dataclass(frozen=True)
class RunStatistics:
    total: int
    reachable: int
    unreachable: int
    success_rate: float
    latency_ms: MetricStats
    download_kbps: MetricStats
    response_ms: MetricStats


@dataclass(frozen=True)
class GroupSummary:
    name: str
    statistics: RunStatistics
    health: GroupHealth


@dataclass(frozen=True)
class RunSummary:
    overall: RunStatistics
    groups: List[GroupSummary]
    failed_groups: List[str]

    def group(self, name: str) -> Optional[GroupSummary]:
        for entry in self.groups:
            if entry.name == name:
                return entry
        return None
