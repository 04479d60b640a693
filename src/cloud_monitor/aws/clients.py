from __future__ import annotations

import threading
from typing import Any, Dict, Tuple

from .auth import AccountContext, _require_boto3

try:
    from botocore.config import Config  # type: ignore
except Exception:  # pragma: no cover
    Config = None  # type: ignore

_CLIENT_CACHE: Dict[Tuple[str, str, str], Any] = {}
_CLIENT_LOCK = threading.Lock()

RETRY_MAX_ATTEMPTS = 5


def _client_config() -> Any:
    if Config is None:
        return None
    return Config(retries={"max_attempts": RETRY_MAX_ATTEMPTS, "mode": "standard"})


def get_client(session: Any, ctx: AccountContext, service: str, region: str) -> Any:
    """
    Return a cached boto3 client for (account, service, region).
    boto3 clients are thread-safe, sessions are not, so creation is serialized.
    """
    _require_boto3()
    key = (ctx.account, service, region)
    with _CLIENT_LOCK:
        client = _CLIENT_CACHE.get(key)
        if client is None:
            kwargs: Dict[str, Any] = dict(ctx.client_kwargs())
            config = _client_config()
            if config is not None:
                kwargs["config"] = config
            client = session.client(service, region_name=region, **kwargs)
            _CLIENT_CACHE[key] = client
    return client


def clear_client_cache() -> None:
    with _CLIENT_LOCK:
        _CLIENT_CACHE.clear()
