"""Runs one observation: load the catalog, probe every endpoint, summarize."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .aggregate import summarize
from .catalog import Catalog, CatalogSource, load_impacts, normalize_catalog, select_groups
from .config import RunConfig
from .models import ProbeResult, RunSummary
from .orchestrator import ResultCallback, probe_catalog

OBSERVER_NAME = "cloud-endpoint-reachability"
EXIT_OK = 0
EXIT_UNREACHABLE = 1

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Observation:
    """Represents a single observation payload."""

    observer: str
    timestamp: str
    config: RunConfig
    catalog: Catalog
    results: List[ProbeResult]
    summary: RunSummary


def run(
    source: CatalogSource,
    config: RunConfig,
    on_result: Optional[ResultCallback] = None,
) -> Observation:
    """Run the observer and return a structured observation.

    ``CatalogUnavailable`` from ``source`` propagates before anything is probed.
    """

    timestamp = datetime.now(timezone.utc).isoformat()
    catalog = select_groups(normalize_catalog(source()), config.selected_groups)
    results = probe_catalog(catalog, config, on_result=on_result)
    summary = summarize(results, catalog)
    logger.info(
        "%s/%s endpoints reachable (%s%%), failed groups: %s",
        summary.overall.reachable,
        summary.overall.total,
        summary.overall.success_rate,
        ", ".join(summary.failed_groups) or "none",
    )
    return Observation(
        observer=OBSERVER_NAME,
        timestamp=timestamp,
        config=config,
        catalog=catalog,
        results=results,
        summary=summary,
    )


def exit_code(summary: RunSummary) -> int:
    return EXIT_OK if summary.overall.unreachable == 0 else EXIT_UNREACHABLE


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_jsonable(item) for item in value)
    return value


def _result_payload(result: ProbeResult) -> Dict[str, Any]:
    payload = asdict(result)
    throughput = result.throughput
    payload["throughput"] = (
        {"value": throughput.value, "unit": throughput.unit, "strategy": throughput.strategy.value}
        if throughput is not None
        else None
    )
    return _jsonable(payload)


def to_payload(
    observation: Observation,
    impacts: Optional[Mapping[str, Dict[str, str]]] = None,
) -> Dict[str, Any]:
    """JSON-ready form of an observation, with impact notes for failed groups."""

    table = load_impacts() if impacts is None else impacts
    summary = observation.summary
    failed_groups = []
    for name in summary.failed_groups:
        entry = table.get(name, {})
        failed_groups.append(
            {
                "group": name,
                "impact": entry.get("impact"),
                "symptoms": entry.get("symptoms"),
            }
        )

    return {
        "observer": observation.observer,
        "timestamp": observation.timestamp,
        "config": _jsonable(asdict(observation.config)),
        "groups": {name: list(endpoints) for name, endpoints in observation.catalog.items()},
        "results": [_result_payload(result) for result in observation.results],
        "summary": {
            "overall": _jsonable(asdict(summary.overall)),
            "groups": [_jsonable(asdict(group)) for group in summary.groups],
            "failed_groups": failed_groups,
        },
        "exit_code": exit_code(summary),
    }
