"""Pick the fastest reachable Piped instance."""

from __future__ import annotations

import logging
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

import requests

from config.settings import (
    EXCLUDED_PROVIDER_HOST_MARKER,
    EXCLUDED_PROVIDER_NAMES,
    EXTRA_PROVIDERS,
    FALLBACK_PROVIDER_URL,
    MAX_PARALLEL_PROBES,
    PROBE_TIMEOUT_SECONDS,
    PROVIDER_INSTANCES_URL,
)
from engine.json_utils import log_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderEndpoint:
    name: str
    api_url: str


@dataclass(frozen=True)
class ProbeResult:
    endpoint: ProviderEndpoint
    latency_ms: float

    @property
    def reachable(self) -> bool:
        return math.isfinite(self.latency_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.endpoint.name,
            "api_url": self.endpoint.api_url,
            "latency_ms": round(self.latency_ms, 1) if self.reachable else None,
        }


class ProviderSelector:
    """Process-wide holder of the active provider endpoint.

    ``current()`` never blocks on a refresh; it returns whatever was selected
    last, or the fallback before the first refresh completes.
    """

    def __init__(
        self,
        *,
        instances_url: str = PROVIDER_INSTANCES_URL,
        extra_endpoints: tuple[tuple[str, str], ...] = EXTRA_PROVIDERS,
        excluded_names: frozenset[str] = EXCLUDED_PROVIDER_NAMES,
        fallback_url: str = FALLBACK_PROVIDER_URL,
        probe_timeout: float = PROBE_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self.instances_url = instances_url
        self.extra_endpoints = tuple(ProviderEndpoint(name, url.rstrip("/")) for name, url in extra_endpoints)
        self.excluded_names = frozenset(excluded_names)
        self.fallback_url = fallback_url.rstrip("/")
        self.probe_timeout = probe_timeout
        self._session = session or requests.Session()
        self._lock = threading.Lock()
        self._refresh_guard = threading.Lock()
        self._active: str | None = None
        self._results: list[ProbeResult] = []

    def current(self) -> str:
        with self._lock:
            return self._active or self.fallback_url

    def candidates(self) -> list[ProbeResult]:
        with self._lock:
            return list(self._results)

    def fetch_candidates(self) -> list[ProviderEndpoint]:
        try:
            resp = self._session.get(self.instances_url, timeout=self.probe_timeout)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Error fetching provider instances: %s", exc)
            payload = []
        if not isinstance(payload, list):
            logger.error("Provider instance list is not a list")
            payload = []

        endpoints = []
        for entry in payload:
            if not isinstance(entry, dict):
                continue
            name = str(entry.get("name") or "").strip()
            api_url = str(entry.get("api_url") or "").strip().rstrip("/")
            if not api_url or name in self.excluded_names or EXCLUDED_PROVIDER_HOST_MARKER in api_url:
                continue
            endpoints.append(ProviderEndpoint(name or api_url, api_url))
        logger.info("Fetched %d usable provider instances", len(endpoints))

        known = {endpoint.api_url for endpoint in endpoints}
        for extra in self.extra_endpoints:
            if extra.api_url not in known:
                endpoints.append(extra)
                known.add(extra.api_url)
        return endpoints

    def probe(self, endpoint: ProviderEndpoint) -> ProbeResult:
        start = time.monotonic()
        try:
            resp = self._session.get(f"{endpoint.api_url}/healthcheck", timeout=self.probe_timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Failed to ping %s: %s", endpoint.name, exc)
            return ProbeResult(endpoint, math.inf)
        return ProbeResult(endpoint, (time.monotonic() - start) * 1000.0)

    def refresh(self) -> str:
        """Probe every candidate and make the fastest responder active.

        A refresh requested while another is running returns the current
        selection without probing.
        """
        if not self._refresh_guard.acquire(blocking=False):
            logger.info("Provider refresh already running; skipping")
            return self.current()
        try:
            endpoints = self.fetch_candidates()
            results: list[ProbeResult] = []
            if endpoints:
                with ThreadPoolExecutor(max_workers=min(MAX_PARALLEL_PROBES, len(endpoints))) as pool:
                    results = list(pool.map(self.probe, endpoints))
            for result in results:
                log_event(
                    logging.INFO,
                    "provider_probe",
                    name=result.endpoint.name,
                    api_url=result.endpoint.api_url,
                    latency_ms=result.to_dict()["latency_ms"],
                )

            reachable = [result for result in results if result.reachable]
            if reachable:
                best = min(reachable, key=lambda result: result.latency_ms)
                selected = best.endpoint.api_url
                log_event(logging.INFO, "provider_selected", api_url=selected, latency_ms=round(best.latency_ms, 1))
            else:
                selected = self.fallback_url
                log_event(logging.WARNING, "provider_fallback_selected", api_url=selected, candidates=len(results))

            with self._lock:
                self._active = selected
                self._results = sorted(results, key=lambda result: result.latency_ms)
            return selected
        finally:
            self._refresh_guard.release()
