"""Configuration defaults and the per-run configuration value."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Optional

MODULE_DIR = Path(__file__).resolve().parent
CONFIG_PATH = MODULE_DIR / "config.json"

TIMEOUT_ENV = "ENDPOINT_OBSERVER_TIMEOUT_S"
WORKERS_ENV = "ENDPOINT_OBSERVER_WORKERS"


@dataclass(frozen=True)
class Config:
    """Defaults loaded from config.json and the environment."""

    timeout_s: int
    port: int
    ping_count: int
    workers: int
    throughput_path: str
    catalog_url: str
    catalog_timeout_s: int
    catalog_attempts: int


@dataclass(frozen=True)
class RunConfig:
    """Everything a single run needs, passed explicitly to every component.

    ``selected_groups`` of ``None`` selects every group in the catalog.
    """

    selected_groups: Optional[FrozenSet[str]] = None
    skip_latency: bool = False
    skip_throughput: bool = False
    timeout_s: int = 5
    port: int = 443
    ping_count: int = 4
    workers: int = 1
    throughput_path: str = "/favicon.ico"

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        selected_groups: Optional[Iterable[str]] = None,
        skip_latency: bool = False,
        skip_throughput: bool = False,
        timeout_s: Optional[int] = None,
        workers: Optional[int] = None,
    ) -> "RunConfig":
        return cls(
            selected_groups=frozenset(selected_groups) if selected_groups is not None else None,
            skip_latency=skip_latency,
            skip_throughput=skip_throughput,
            timeout_s=max(1, int(timeout_s if timeout_s is not None else config.timeout_s)),
            port=config.port,
            ping_count=config.ping_count,
            workers=max(1, int(workers if workers is not None else config.workers)),
            throughput_path=config.throughput_path,
        )


def _env_int(name: str) -> Optional[int]:
    value = os.environ.get(name, "").strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def load_config(path: Path = CONFIG_PATH) -> Config:
    payload: Dict[str, Any] = {}
    if path.exists():
        loaded = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(loaded, dict):
            payload = loaded
    catalog = payload.get("catalog", {})
    if not isinstance(catalog, dict):
        catalog = {}

    timeout_s = int(payload.get("timeout_s", 5) or 5)
    workers = int(payload.get("workers", 1) or 1)
    env_timeout = _env_int(TIMEOUT_ENV)
    if env_timeout is not None:
        timeout_s = env_timeout
    env_workers = _env_int(WORKERS_ENV)
    if env_workers is not None:
        workers = env_workers

    return Config(
        timeout_s=max(1, timeout_s),
        port=int(payload.get("port", 443) or 443),
        ping_count=max(1, int(payload.get("ping_count", 4) or 4)),
        workers=max(1, workers),
        throughput_path=str(payload.get("throughput_path", "/favicon.ico")),
        catalog_url=str(catalog.get("url", "https://endpoints.office.com/endpoints/WorldWide")),
        catalog_timeout_s=max(1, int(catalog.get("timeout_s", 15) or 15)),
        catalog_attempts=max(1, int(catalog.get("attempts", 3) or 3)),
    )
