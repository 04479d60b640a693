from __future__ import annotations

import base64
import hashlib
import hmac
import time
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
from urllib.parse import urlencode

import requests
from requests.adapters import HTTPAdapter, Retry

from ..logging import get_logger
from ..util.errors import CapellaClientError
from ..util.pagination import next_page_number, paginate

LOG = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30
PER_PAGE = 10

CLOUDS_PATH = "/v2/clouds"
CLUSTERS_PATH = "/v2/clusters"
HOSTED_CLUSTERS_PATH = "/v3/clusters"


def sign_request(secret_key: str, method: str, path: str, timestamp_ms: int) -> str:
    """
    Base64 HMAC-SHA256 over "<METHOD>\\n<path?query>\\n<timestamp ms>".
    """
    payload = f"{method.upper()}\n{path}\n{timestamp_ms}".encode("utf-8")
    digest = hmac.new(secret_key.encode("utf-8"), payload, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def _build_session(pool_size: int = 4) -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=3,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"GET"}),
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=pool_size, pool_maxsize=pool_size)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class CapellaClient:
    """
    Minimal read-only client for the Couchbase Capella public API, authenticated
    with one access/secret key pair.
    """

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        base_url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.access_key = access_key
        self._secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.session = session or _build_session()
        self.timeout = timeout
        self._clock = clock

    def _headers(self, method: str, path: str) -> Dict[str, str]:
        timestamp_ms = int(self._clock() * 1000)
        signature = sign_request(self._secret_key, method, path, timestamp_ms)
        return {
            "Authorization": f"Bearer {self.access_key}:{signature}",
            "Couchbase-Timestamp": str(timestamp_ms),
            "Accept": "application/json",
        }

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        signed_path = f"{path}?{urlencode(params)}" if params else path
        url = f"{self.base_url}{signed_path}"
        try:
            response = self.session.get(url, headers=self._headers("GET", signed_path), timeout=self.timeout)
        except requests.RequestException as e:
            raise CapellaClientError(f"Capella request failed for {path}: {e}") from e
        if response.status_code >= 400:
            raise CapellaClientError(
                f"Capella API returned {response.status_code} for {path}: {response.text[:200]}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise CapellaClientError(f"Capella API returned invalid JSON for {path}") from e
        if not isinstance(data, dict):
            raise CapellaClientError(f"Capella API returned unexpected payload for {path}")
        return data

    def _page_fetcher(
        self, path: str, extract: Callable[[Dict[str, Any]], List[Dict[str, Any]]]
    ) -> Callable[[Optional[int]], Tuple[List[Dict[str, Any]], Optional[int]]]:
        def fetch(page: Optional[int]) -> Tuple[List[Dict[str, Any]], Optional[int]]:
            current = page or 1
            body = self.get(path, {"page": current, "perPage": PER_PAGE})
            last = ((body.get("cursor") or {}).get("pages") or {}).get("last")
            return extract(body), next_page_number(current, int(last) if last is not None else None)

        return fetch

    def list_clouds(self) -> Iterator[Dict[str, Any]]:
        return paginate(self._page_fetcher(CLOUDS_PATH, lambda body: list(body.get("data") or [])))

    def list_clusters(self) -> Iterator[Dict[str, Any]]:
        return paginate(self._page_fetcher(CLUSTERS_PATH, lambda body: list(body.get("data") or [])))

    def list_hosted_clusters(self) -> Iterator[Dict[str, Any]]:
        return paginate(
            self._page_fetcher(HOSTED_CLUSTERS_PATH, lambda body: list((body.get("data") or {}).get("items") or []))
        )
