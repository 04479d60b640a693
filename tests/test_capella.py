from __future__ import annotations

import base64
import hashlib
import hmac
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlsplit

import pytest
import requests

from cloud_monitor.capella import fetch as capella_fetch
from cloud_monitor.capella.client import CapellaClient, sign_request
from cloud_monitor.util.errors import CapellaClientError, ConfigError

BASE_URL = "https://capella.example.test"


class _FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _FakeSession:
    """Serves canned pages keyed by (path, page)."""

    def __init__(self, pages: Dict[tuple, Any], error: Optional[Exception] = None) -> None:
        self._pages = pages
        self._error = error
        self.requests: List[Dict[str, Any]] = []

    def get(self, url: str, headers: Dict[str, str], timeout: float) -> _FakeResponse:
        self.requests.append({"url": url, "headers": headers, "timeout": timeout})
        if self._error is not None:
            raise self._error
        parts = urlsplit(url)
        page = int(parse_qs(parts.query).get("page", ["1"])[0])
        response = self._pages.get((parts.path, page))
        if response is None:
            return _FakeResponse(404, text="not found")
        if isinstance(response, _FakeResponse):
            return response
        return _FakeResponse(200, response)


def _client(session: _FakeSession) -> CapellaClient:
    return CapellaClient("access", "secret", BASE_URL + "/", session=session, clock=lambda: 1700000000.5)


def test_sign_request_matches_hmac_sha256() -> None:
    expected = base64.b64encode(
        hmac.new(b"secret", b"GET\n/v2/clouds?page=1\n1700000000500", hashlib.sha256).digest()
    ).decode("ascii")

    assert sign_request("secret", "get", "/v2/clouds?page=1", 1700000000500) == expected


def test_get_signs_path_with_query_and_timestamp() -> None:
    session = _FakeSession({("/v2/clouds", 1): {"data": []}})

    _client(session).get("/v2/clouds", {"page": 1, "perPage": 10})

    [req] = session.requests
    assert req["url"] == f"{BASE_URL}/v2/clouds?page=1&perPage=10"
    headers = req["headers"]
    assert headers["Couchbase-Timestamp"] == "1700000000500"
    signature = sign_request("secret", "GET", "/v2/clouds?page=1&perPage=10", 1700000000500)
    assert headers["Authorization"] == f"Bearer access:{signature}"


def test_list_clouds_follows_page_cursor() -> None:
    session = _FakeSession(
        {
            ("/v2/clouds", 1): {"data": [{"id": "cloud-1"}], "cursor": {"pages": {"page": 1, "last": 2}}},
            ("/v2/clouds", 2): {"data": [{"id": "cloud-2"}], "cursor": {"pages": {"page": 2, "last": 2}}},
        }
    )

    clouds = list(_client(session).list_clouds())

    assert [c["id"] for c in clouds] == ["cloud-1", "cloud-2"]
    assert len(session.requests) == 2


def test_list_hosted_clusters_reads_items() -> None:
    session = _FakeSession({("/v3/clusters", 1): {"data": {"items": [{"id": "h-1"}]}}})

    assert [c["id"] for c in _client(session).list_hosted_clusters()] == ["h-1"]


@pytest.mark.parametrize(
    "response",
    [
        _FakeResponse(401, text="unauthorized"),
        _FakeResponse(200, ValueError("bad json")),
        _FakeResponse(200, ["not", "an", "object"]),
    ],
)
def test_get_rejects_bad_responses(response: _FakeResponse) -> None:
    session = _FakeSession({("/v2/clouds", 1): response})

    with pytest.raises(CapellaClientError):
        _client(session).get("/v2/clouds", {"page": 1})


def test_get_wraps_transport_errors() -> None:
    session = _FakeSession({}, error=requests.ConnectionError("refused"))

    with pytest.raises(CapellaClientError):
        _client(session).get("/v2/clouds")


def test_fetch_snapshot_merges_key_pairs_and_dedupes_hosted_clusters() -> None:
    org_a = _FakeSession(
        {
            ("/v2/clouds", 1): {
                "data": [
                    {
                        "id": "cloud-2",
                        "name": "prod-vpc",
                        "provider": "aws",
                        "region": "us-east-1",
                        "status": "ready",
                        "virtualNetworkCIDR": "10.0.0.0/16",
                        "virtualNetworkID": "vpc-1",
                    }
                ]
            },
            ("/v2/clusters", 1): {
                "data": [{"id": "db-1", "name": "prod", "nodes": 3, "services": [{"type": "data"}, "query"]}]
            },
            ("/v3/clusters", 1): {"data": {"items": [{"id": "db-1", "name": "dup"}, {"id": "db-h", "name": "hosted"}]}},
        }
    )
    org_b = _FakeSession(
        {
            ("/v2/clouds", 1): {"data": [{"id": "cloud-1", "name": "dev"}]},
            ("/v2/clusters", 1): {"data": []},
            ("/v3/clusters", 1): {"data": {"items": []}},
        }
    )
    sessions = {"ak-a": org_a, "ak-b": org_b}

    def factory(access_key: str, secret_key: str, base_url: str) -> CapellaClient:
        return CapellaClient(access_key, secret_key, base_url, session=sessions[access_key])

    snapshot = capella_fetch.fetch_capella_snapshot(["ak-a", "ak-b"], ["sk-a", "sk-b"], BASE_URL, client_factory=factory)

    assert [a.id for a in snapshot.db_accounts] == ["cloud-1", "cloud-2"]
    cloud = snapshot.db_accounts[1]
    assert cloud.network_cidr == "10.0.0.0/16"
    assert cloud.network_id == "vpc-1"
    assert cloud.provider == "aws"
    assert [c.id for c in snapshot.db_clusters] == ["db-1", "db-h"]
    db = snapshot.db_clusters[0]
    assert db.name == "prod"
    assert db.node_count == 3
    assert db.services == ["data", "query"]


def test_fetch_snapshot_rejects_mismatched_key_lists() -> None:
    with pytest.raises(ConfigError):
        capella_fetch.fetch_capella_snapshot(["ak-a", "ak-b"], ["sk-a"], BASE_URL)


def test_fetch_snapshot_without_keys_is_empty() -> None:
    def factory(*args: Any) -> CapellaClient:
        raise AssertionError("no client expected")

    snapshot = capella_fetch.fetch_capella_snapshot([], [], BASE_URL, client_factory=factory)

    assert snapshot.db_accounts == [] and snapshot.db_clusters == []
