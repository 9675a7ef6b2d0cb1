from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from endpoint_observer import observer, probes
from endpoint_observer.catalog import CatalogUnavailable
from endpoint_observer.config import RunConfig
from endpoint_observer.models import Reachability
from scripts import check_endpoints


@pytest.fixture(autouse=True)
def _reset_runner_logger():
    yield
    logger = logging.getLogger("endpoint_observer")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def _install_probes(monkeypatch, reachable, latencies=None) -> dict:
    calls = {"reachability": 0, "latency": 0, "throughput": 0}
    latencies = latencies or {}

    def _reachability(target, port=443, timeout_s=5):
        calls["reachability"] += 1
        if target in reachable:
            return Reachability(reachable=True, address=target)
        return Reachability(reachable=False)

    def _latency(target, count=4, timeout_s=5):
        calls["latency"] += 1
        return latencies.get(target)

    def _throughput(url_or_host, timeout_s=5, path="/favicon.ico"):
        calls["throughput"] += 1
        return None

    monkeypatch.setattr(probes, "check_reachability", _reachability)
    monkeypatch.setattr(probes, "sample_latency", _latency)
    monkeypatch.setattr(probes, "sample_throughput", _throughput)
    return calls


def _write_catalog(tmp_path: Path, payload: dict) -> Path:
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_run_single_unreachable_endpoint_fails(monkeypatch) -> None:
    _install_probes(monkeypatch, reachable=set())

    observation = observer.run(lambda: {"Group1": ["host-a"]}, RunConfig())

    [result] = observation.results
    assert result.reachable is False
    assert result.latency_ms is None and result.throughput is None
    assert observation.summary.failed_groups == ["Group1"]
    assert observer.exit_code(observation.summary) == 1


def test_run_all_reachable_succeeds(monkeypatch) -> None:
    _install_probes(monkeypatch, reachable={"host-a", "host-b"}, latencies={"host-a": 20.0, "host-b": 80.0})

    observation = observer.run(
        lambda: {"Group1": ["host-a", "host-b"]},
        RunConfig(skip_throughput=True),
    )

    stats = observation.summary.group("Group1").statistics
    assert (stats.total, stats.reachable, stats.success_rate) == (2, 2, 100.0)
    assert (stats.latency_ms.average, stats.latency_ms.minimum, stats.latency_ms.maximum) == (50.0, 20.0, 80.0)
    assert observation.summary.failed_groups == []
    assert observer.exit_code(observation.summary) == 0


def test_run_probes_duplicate_endpoints_once_in_first_group(monkeypatch) -> None:
    calls = _install_probes(monkeypatch, reachable={"host-a"})

    observation = observer.run(
        lambda: {"Intune": ["host-a", "host-b", "host-a"], "Teams": ["HOST-B", "host-c"]},
        RunConfig(skip_latency=True, skip_throughput=True),
    )

    assert observation.catalog == {"Intune": ["host-a", "host-b"], "Teams": ["host-c"]}
    assert [result.endpoint for result in observation.results] == ["host-a", "host-b", "host-c"]
    assert calls["reachability"] == 3
    assert observation.summary.group("Teams").statistics.total == 1
    assert observation.summary.overall.total == 3


def test_catalog_failure_probes_nothing(monkeypatch) -> None:
    calls = _install_probes(monkeypatch, reachable=set())

    def _unavailable():
        raise CatalogUnavailable("endpoints.office.com unreachable")

    with pytest.raises(CatalogUnavailable):
        observer.run(_unavailable, RunConfig())
    assert calls["reachability"] == 0


def test_payload_is_json_ready_with_impacts(monkeypatch) -> None:
    _install_probes(monkeypatch, reachable={"host-b"})
    observation = observer.run(
        lambda: {"Intune": ["host-a"], "Teams": ["host-b"]},
        RunConfig(selected_groups=frozenset({"Intune", "Teams"}), skip_latency=True, skip_throughput=True),
    )

    payload = observer.to_payload(observation, impacts={"Intune": {"impact": "No enrollment", "symptoms": "Sync stalls"}})

    decoded = json.loads(json.dumps(payload))
    assert decoded["observer"] == observer.OBSERVER_NAME
    assert decoded["config"]["selected_groups"] == ["Intune", "Teams"]
    assert decoded["results"][0] == {
        "endpoint": "host-a",
        "target": "host-a",
        "status": "unreachable",
        "address": None,
        "latency_ms": None,
        "throughput": None,
    }
    assert decoded["summary"]["failed_groups"] == [
        {"group": "Intune", "impact": "No enrollment", "symptoms": "Sync stalls"}
    ]
    assert decoded["summary"]["groups"][1]["health"] == "healthy"
    assert decoded["exit_code"] == 1


def test_main_reports_per_endpoint_and_exit_zero(tmp_path, monkeypatch, capsys) -> None:
    calls = _install_probes(monkeypatch, reachable={"host-a", "host-b"})
    catalog_path = _write_catalog(tmp_path, {"Group1": ["host-a", "host-b"]})

    code = check_endpoints.main(
        ["--catalog", str(catalog_path), "--skip-ping", "--skip-speed", "--log-file", str(tmp_path / "run.log")]
    )

    out = capsys.readouterr().out
    assert code == 0
    assert "[ok] Group1: host-a" in out
    assert "[healthy] Group1: 2/2 reachable (100.0%)" in out
    assert "Completed with no failures." in out
    assert calls == {"reachability": 2, "latency": 0, "throughput": 0}


def test_main_json_output_and_report_file(tmp_path, monkeypatch, capsys) -> None:
    _install_probes(monkeypatch, reachable={"host-b"})
    catalog_path = _write_catalog(tmp_path, {"Intune": ["host-a"], "Teams": ["host-b"]})
    report_path = tmp_path / "reports" / "run.json"

    code = check_endpoints.main(
        [
            "--catalog",
            str(catalog_path),
            "--services",
            "Intune",
            "--json",
            "--output",
            str(report_path),
            "--log-file",
            str(tmp_path / "run.log"),
        ]
    )

    payload = json.loads(capsys.readouterr().out)
    assert code == 1
    assert list(payload["groups"]) == ["Intune"]
    assert payload["summary"]["overall"]["unreachable"] == 1
    assert json.loads(report_path.read_text(encoding="utf-8")) == payload


def test_main_catalog_unavailable_exit_code(tmp_path, monkeypatch) -> None:
    calls = _install_probes(monkeypatch, reachable=set())

    code = check_endpoints.main(
        ["--catalog", str(tmp_path / "missing.json"), "--log-file", str(tmp_path / "run.log")]
    )

    assert code == check_endpoints.EXIT_CATALOG_UNAVAILABLE
    assert calls["reachability"] == 0


def test_main_unknown_service_is_usage_error(tmp_path, monkeypatch, capsys) -> None:
    _install_probes(monkeypatch, reachable=set())
    catalog_path = _write_catalog(tmp_path, {"Intune": ["host-a"]})

    code = check_endpoints.main(
        ["--catalog", str(catalog_path), "--services", "Yammer", "--log-file", str(tmp_path / "run.log")]
    )

    assert code == check_endpoints.EXIT_USAGE
    assert "Yammer" in capsys.readouterr().err


def test_main_list_services(tmp_path, capsys) -> None:
    catalog_path = _write_catalog(tmp_path, {"Intune": ["a", "b"], "Teams": ["c"]})

    code = check_endpoints.main(["--catalog", str(catalog_path), "--list-services", "--log-file", str(tmp_path / "run.log")])

    assert code == 0
    assert capsys.readouterr().out.splitlines() == ["Intune (2 endpoints)", "Teams (1 endpoints)"]


def test_split_names_all_means_every_group() -> None:
    assert check_endpoints._split_names("All") is None
    assert check_endpoints._split_names(" Intune , Teams ") == ["Intune", "Teams"]
