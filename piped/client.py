"""Piped API client for catalog search and playlist expansion."""

from __future__ import annotations

import logging
from typing import Any, Callable
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from config.settings import HTTP_USER_AGENT, PROVIDER_TIMEOUT_SECONDS
from engine.results import PROVIDER_FILTERS

logger = logging.getLogger(__name__)


class ProviderError(RuntimeError):
    """A provider request failed or returned an unusable payload."""


class PipedClient:
    def __init__(self, base_url: Callable[[], str], *, timeout_seconds: float = PROVIDER_TIMEOUT_SECONDS) -> None:
        self._base_url = base_url
        self.timeout_seconds = timeout_seconds
        self._session = requests.Session()
        retry = Retry(
            total=2,
            backoff_factor=0.3,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset({"GET"}),
            respect_retry_after_header=True,
        )
        adapter = HTTPAdapter(max_retries=retry)
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

    @property
    def base_url(self) -> str:
        return self._base_url().rstrip("/")

    def get_json(self, endpoint: str, *, params: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        try:
            resp = self._session.get(
                url,
                params=params or {},
                headers={"User-Agent": HTTP_USER_AGENT, "Accept": "application/json"},
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise ProviderError(f"request to {url} failed: {exc}") from exc
        status = int(resp.status_code)
        logger.info(f"[PIPED] request={endpoint} status={status}")
        if status != 200:
            raise ProviderError(f"{url} returned status {status}")
        content_type = resp.headers.get("Content-Type", "")
        if not content_type.startswith("application/json"):
            raise ProviderError(f"{url} returned content type {content_type!r}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ProviderError(f"{url} returned malformed JSON") from exc
        if not isinstance(payload, dict):
            raise ProviderError(f"{url} returned a non-object payload")
        return payload

    def search(self, query: str, kind: str) -> list[dict[str, Any]]:
        payload = self.get_json("search", params={"q": query, "filter": PROVIDER_FILTERS[kind]})
        items = payload.get("items")
        if not isinstance(items, list):
            raise ProviderError("search response has no items list")
        return items

    def playlist(self, playlist_id: str) -> dict[str, Any]:
        return self.get_json(f"playlists/{quote(playlist_id, safe='')}")

    def channel_avatar(self, uploader_url: str) -> str:
        channel_id = str(uploader_url or "").rstrip("/").split("/")[-1]
        if not channel_id:
            return ""
        payload = self.get_json(f"channel/{quote(channel_id, safe='')}")
        avatar = payload.get("avatarUrl")
        return avatar if isinstance(avatar, str) else ""
