#!/usr/bin/env python3
"""Check reachability of Microsoft cloud service endpoints and report per service group.

Exit status: 0 when every endpoint was reachable, 1 when any was not,
2 for usage errors, 3 when the endpoint catalog could not be loaded and
4 when the JSON report could not be written.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import List, Optional, Sequence

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from endpoint_observer import observer
from endpoint_observer.catalog import (
    CatalogSource,
    CatalogUnavailable,
    RemoteCatalog,
    StaticCatalog,
    UnknownServiceGroup,
)
from endpoint_observer.config import RunConfig, load_config
from endpoint_observer.models import ProbeResult, RunSummary

LOG_FILE = REPO_ROOT / "logs" / "check_endpoints.log"

EXIT_USAGE = 2
EXIT_CATALOG_UNAVAILABLE = 3
EXIT_REPORT_FAILED = 4


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Check connectivity to Microsoft cloud service endpoints.")
    parser.add_argument(
        "--services",
        default="All",
        help="Comma separated service groups to test, or 'All' (default).",
    )
    parser.add_argument("--skip-ping", action="store_true", help="Do not sample ICMP latency.")
    parser.add_argument("--skip-speed", action="store_true", help="Do not sample HTTP throughput.")
    parser.add_argument("--timeout", type=int, help="Per-probe timeout in seconds.")
    parser.add_argument("--workers", type=int, help="Endpoints probed in parallel (default 1).")
    parser.add_argument(
        "--remote",
        metavar="AREA[,AREA]",
        help="Fetch endpoints from the Microsoft 365 endpoint service for these service areas.",
    )
    parser.add_argument("--catalog", type=Path, help="Use this JSON catalog instead of the bundled one.")
    parser.add_argument("--output", type=Path, help="Write the full JSON report to this path.")
    parser.add_argument("--json", action="store_true", help="Print the JSON report on stdout.")
    parser.add_argument("--list-services", action="store_true", help="List service groups and exit.")
    parser.add_argument("--log-file", type=Path, default=LOG_FILE, help="Rotating log file location.")
    return parser.parse_args(argv)


def _logger(log_file: Path = LOG_FILE) -> logging.Logger:
    logger = logging.getLogger("endpoint_observer")
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            log_file,
            when="midnight",
            interval=1,
            backupCount=14,
            encoding="utf-8",
            utc=True,
        )
    except OSError as exc:
        print(f"[warn] file logging disabled: {exc}", file=sys.stderr)
    else:
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(logging.WARNING)
    logger.addHandler(stream_handler)

    return logger


def _split_names(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    names = [name.strip() for name in value.split(",") if name.strip()]
    if not names or any(name.lower() == "all" for name in names):
        return None
    return names


def _catalog_source(args: argparse.Namespace, remote_url: str, timeout_s: int, attempts: int) -> CatalogSource:
    if args.remote:
        areas = [area.strip() for area in args.remote.split(",") if area.strip()]
        return RemoteCatalog(areas, url=remote_url, timeout_s=timeout_s, attempts=attempts)
    if args.catalog:
        return StaticCatalog(args.catalog)
    return StaticCatalog()


def _format_result(group: str, result: ProbeResult) -> str:
    if not result.reachable:
        return f"[fail] {group}: {result.endpoint}"
    details = [result.address or result.target]
    if result.latency_ms is not None:
        details.append(f"{result.latency_ms} ms ping")
    if result.throughput is not None:
        details.append(f"{result.throughput.value} {result.throughput.unit} {result.throughput.strategy.value}")
    return f"[ok] {group}: {result.endpoint} ({', '.join(details)})"


def _print_summary(summary: RunSummary) -> None:
    for group in summary.groups:
        stats = group.statistics
        line = f"{group.name}: {stats.reachable}/{stats.total} reachable ({stats.success_rate}%)"
        if stats.latency_ms.count:
            line += (
                f", ping avg {stats.latency_ms.average} ms"
                f" (min {stats.latency_ms.minimum}, max {stats.latency_ms.maximum})"
            )
        print(f"[{group.health.value}] {line}")
    overall = summary.overall
    print(f"Overall: {overall.reachable}/{overall.total} reachable ({overall.success_rate}%)")
    if summary.failed_groups:
        print(f"Completed with failures: {', '.join(summary.failed_groups)}")
    else:
        print("Completed with no failures.")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    logger = _logger(args.log_file)
    defaults = load_config()
    source = _catalog_source(args, defaults.catalog_url, defaults.catalog_timeout_s, defaults.catalog_attempts)

    if args.list_services:
        try:
            catalog = source()
        except CatalogUnavailable as exc:
            logger.error("catalog unavailable: %s", exc)
            return EXIT_CATALOG_UNAVAILABLE
        for name, endpoints in catalog.items():
            print(f"{name} ({len(endpoints)} endpoints)")
        return observer.EXIT_OK

    config = RunConfig.from_config(
        defaults,
        selected_groups=_split_names(args.services),
        skip_latency=args.skip_ping,
        skip_throughput=args.skip_speed,
        timeout_s=args.timeout,
        workers=args.workers,
    )

    on_result = None if args.json else (lambda group, result: print(_format_result(group, result), flush=True))
    try:
        observation = observer.run(source, config, on_result=on_result)
    except CatalogUnavailable as exc:
        logger.error("catalog unavailable: %s", exc)
        return EXIT_CATALOG_UNAVAILABLE
    except UnknownServiceGroup as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_USAGE

    payload = observer.to_payload(observation)
    if args.json:
        print(json.dumps(payload, ensure_ascii=False))
    else:
        _print_summary(observation.summary)

    if args.output:
        try:
            args.output.parent.mkdir(parents=True, exist_ok=True)
            args.output.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
        except OSError as exc:
            logger.error("cannot write report %s: %s", args.output, exc)
            return EXIT_REPORT_FAILED
        logger.info("report written to %s", args.output)

    return observer.exit_code(observation.summary)


if __name__ == "__main__":
    raise SystemExit(main())
