"""Endpoint catalog: service group definitions, endpoint parsing and catalog sources."""

from __future__ import annotations

import ipaddress
import json
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from http.client import HTTPException
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence
from urllib.parse import urlencode, urlsplit, urlunsplit
from urllib.request import urlopen

MODULE_DIR = Path(__file__).resolve().parent
CATALOG_PATH = MODULE_DIR / "catalog.json"
IMPACT_PATH = MODULE_DIR / "impact.json"

WILDCARD_PLACEHOLDER = "www."
BACKOFF_DELAYS_S = (1, 2)

logger = logging.getLogger(__name__)

Catalog = Dict[str, List[str]]
CatalogSource = Callable[[], Catalog]


class CatalogUnavailable(RuntimeError):
    """The endpoint list could not be obtained; the run cannot start."""


class UnknownServiceGroup(ValueError):
    def __init__(self, names: Iterable[str]) -> None:
        self.names = sorted(names)
        super().__init__(f"unknown service group(s): {', '.join(self.names)}")


class EndpointKind(str, Enum):
    HOSTNAME = "hostname"
    URL = "url"
    ADDRESS = "address"


@dataclass(frozen=True)
class Endpoint:
    """A catalog entry and the network names derived from it.

    ``target`` is the bare host or IP used for TCP and ICMP probes. ``url`` is
    only set for URL identifiers and keeps their scheme.
    """

    identifier: str
    kind: EndpointKind
    target: str
    url: Optional[str] = None

    @classmethod
    def parse(cls, identifier: str) -> "Endpoint":
        text = identifier.strip()
        if not text:
            raise ValueError("empty endpoint identifier")
        kind = classify_endpoint(text)
        if kind is EndpointKind.URL:
            parts = urlsplit(text)
            host = _rewrite_wildcard(parts.hostname or "")
            if not host:
                raise ValueError(f"endpoint {identifier!r} has no host")
            netloc = f"[{host}]" if ":" in host else host
            if parts.port is not None:
                netloc = f"{netloc}:{parts.port}"
            url = urlunsplit((parts.scheme.lower(), netloc, parts.path, parts.query, ""))
            return cls(identifier=identifier, kind=kind, target=host, url=url)
        if kind is EndpointKind.ADDRESS:
            if "/" in text:
                target = str(ipaddress.ip_network(text, strict=False).network_address)
            else:
                target = str(ipaddress.ip_address(text))
            return cls(identifier=identifier, kind=kind, target=target)
        host = text.split("/", 1)[0].split(":", 1)[0]
        host = _rewrite_wildcard(host)
        if not host:
            raise ValueError(f"endpoint {identifier!r} has no host")
        return cls(identifier=identifier, kind=kind, target=host)


def _is_address(text: str) -> bool:
    try:
        ipaddress.ip_network(text, strict=False)
    except ValueError:
        return False
    return True


def classify_endpoint(identifier: str) -> EndpointKind:
    text = identifier.strip()
    if "://" in text:
        return EndpointKind.URL
    if _is_address(text):
        return EndpointKind.ADDRESS
    return EndpointKind.HOSTNAME


def _rewrite_wildcard(host: str) -> str:
    host = host.strip().lower()
    if host.startswith("*."):
        host = WILDCARD_PLACEHOLDER + host[2:]
    return host.replace("*", "").strip(".")


def probe_target(identifier: str) -> str:
    """Return the bare host or IP that reachability and latency probes use."""

    return Endpoint.parse(identifier).target


def normalize_catalog(mapping: Mapping[str, Sequence[Any]]) -> Catalog:
    """Strip, de-duplicate and assign every endpoint to a single group.

    Group order and endpoint order are preserved. An identifier already listed
    under an earlier group is dropped from later ones.
    """

    seen: set = set()
    catalog: Catalog = {}
    for group, endpoints in mapping.items():
        name = str(group).strip()
        if not name:
            continue
        members: List[str] = []
        for item in endpoints:
            if not isinstance(item, str):
                continue
            identifier = item.strip()
            if not identifier:
                continue
            key = identifier.lower()
            if key in seen:
                continue
            seen.add(key)
            members.append(identifier)
        catalog.setdefault(name, []).extend(members)
    return catalog


def select_groups(catalog: Catalog, selected: Optional[Iterable[str]]) -> Catalog:
    """Restrict the catalog to ``selected`` groups; ``None`` keeps every group."""

    if selected is None:
        return {name: list(endpoints) for name, endpoints in catalog.items()}
    wanted = {name.strip().lower(): name for name in selected if name.strip()}
    known = {name.lower() for name in catalog}
    unknown = [original for key, original in wanted.items() if key not in known]
    if unknown:
        raise UnknownServiceGroup(unknown)
    return {name: list(endpoints) for name, endpoints in catalog.items() if name.lower() in wanted}


class StaticCatalog:
    """Catalog bundled with the package (or any JSON object of group -> endpoints)."""

    def __init__(self, path: Path = CATALOG_PATH) -> None:
        self.path = path

    def __call__(self) -> Catalog:
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise CatalogUnavailable(f"cannot read catalog {self.path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise CatalogUnavailable(f"catalog {self.path} must contain an object of group -> endpoints")
        for group, endpoints in payload.items():
            if not isinstance(endpoints, list):
                raise CatalogUnavailable(f"catalog group {group!r} must be a list")
        return normalize_catalog(payload)


class RemoteCatalog:
    """Catalog fetched from the Microsoft 365 endpoints web service, one group per service area."""

    def __init__(
        self,
        service_areas: Sequence[str],
        url: str = "https://endpoints.office.com/endpoints/WorldWide",
        timeout_s: int = 15,
        attempts: int = 3,
    ) -> None:
        self.service_areas = [area.strip() for area in service_areas if area.strip()]
        self.url = url
        self.timeout_s = timeout_s
        self.attempts = max(1, attempts)

    def _request_url(self, area: str) -> str:
        query = urlencode({"ServiceAreas": area, "clientrequestid": str(uuid.uuid4())})
        separator = "&" if "?" in self.url else "?"
        return f"{self.url}{separator}{query}"

    def _fetch_area(self, area: str) -> List[Dict[str, Any]]:
        for attempt in range(self.attempts):
            try:
                with urlopen(self._request_url(area), timeout=self.timeout_s) as response:  # nosec - public endpoint list
                    payload = json.loads(response.read().decode("utf-8"))
            except (OSError, HTTPException, ValueError) as exc:
                if attempt < self.attempts - 1:
                    delay = BACKOFF_DELAYS_S[min(attempt, len(BACKOFF_DELAYS_S) - 1)]
                    logger.warning(
                        "catalog fetch for %s attempt %s/%s failed (%s); retrying in %ss",
                        area,
                        attempt + 1,
                        self.attempts,
                        exc,
                        delay,
                    )
                    time.sleep(delay)
                    continue
                raise CatalogUnavailable(f"endpoint list for {area} unavailable: {exc}") from exc
            if not isinstance(payload, list):
                raise CatalogUnavailable(f"endpoint list for {area} is not a JSON array")
            return [entry for entry in payload if isinstance(entry, dict)]
        raise CatalogUnavailable(f"endpoint list for {area} unavailable")

    def __call__(self) -> Catalog:
        if not self.service_areas:
            raise CatalogUnavailable("no service areas requested")
        mapping: Dict[str, List[str]] = {}
        for area in self.service_areas:
            endpoints: List[str] = []
            for entry in self._fetch_area(area):
                if str(entry.get("serviceArea", entry.get("ServiceArea", ""))).lower() != area.lower():
                    continue
                for key in ("urls", "ips"):
                    values = entry.get(key)
                    if isinstance(values, list):
                        endpoints.extend(str(value) for value in values)
            logger.info("fetched %s endpoints for service area %s", len(endpoints), area)
            mapping[area] = endpoints
        return normalize_catalog(mapping)


def load_impacts(path: Path = IMPACT_PATH) -> Dict[str, Dict[str, str]]:
    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    if not isinstance(payload, dict):
        return {}
    impacts: Dict[str, Dict[str, str]] = {}
    for group, entry in payload.items():
        if isinstance(entry, dict):
            impacts[str(group)] = {
                "impact": str(entry.get("impact", "")),
                "symptoms": str(entry.get("symptoms", "")),
            }
    return impacts


def impact_for(group: str, impacts: Optional[Mapping[str, Dict[str, str]]] = None) -> Optional[Dict[str, str]]:
    """Look up the functional impact text for an unreachable service group."""

    table = load_impacts() if impacts is None else impacts
    return table.get(group)
