"""
Well-Known Endpoints

Process-wide table of trusted ingestion endpoints, keyed by login endpoint.

Lifecycle:
    The table is loaded from package data on first use, behind a single lock,
    and is immutable afterwards. ``reset_well_known_endpoints()`` drops it so
    tests can force a reload.
"""

import threading
from dataclasses import dataclass
from importlib import resources
from types import MappingProxyType
from typing import Mapping
from urllib.parse import urlsplit

import orjson

from ingestion_broker.core.exceptions import ConfigurationError
from ingestion_broker.core.logging.logger import get_logger

logger = get_logger(__name__)

DEFAULT_LOGIN_ENDPOINT = "https://login.microsoftonline.com"
_DATA_FILE = "well_known_endpoints.json"


@dataclass(frozen=True)
class AllowedEndpoints:
    suffixes: tuple[str, ...]
    hostnames: frozenset[str]

    def allows(self, hostname: str) -> bool:
        hostname = hostname.lower()
        return hostname in self.hostnames or any(hostname.endswith(s) for s in self.suffixes)


_instance: Mapping[str, AllowedEndpoints] | None = None
_lock = threading.Lock()


def _read_instance() -> Mapping[str, AllowedEndpoints]:
    try:
        raw = resources.files("ingestion_broker.resources").joinpath(_DATA_FILE).read_bytes()
        data = orjson.loads(raw)
    except (OSError, orjson.JSONDecodeError) as e:
        raise ConfigurationError.from_exception(e, message=f"Failed to read {_DATA_FILE}") from e

    table = {
        login.rstrip("/").lower(): AllowedEndpoints(
            suffixes=tuple(s.lower() for s in entry.get("AllowedKustoSuffixes", [])),
            hostnames=frozenset(h.lower() for h in entry.get("AllowedKustoHostnames", [])),
        )
        for login, entry in data.get("AllowedEndpointsByLogin", {}).items()
    }
    logger.debug("Well-known endpoints loaded", logins=len(table))
    return MappingProxyType(table)


def get_well_known_endpoints() -> Mapping[str, AllowedEndpoints]:
    """Return the trusted endpoint table, loading it on first use."""
    global _instance
    if _instance is not None:
        return _instance
    with _lock:
        if _instance is None:
            _instance = _read_instance()
    return _instance


def reset_well_known_endpoints() -> None:
    global _instance
    with _lock:
        _instance = None


def is_trusted_endpoint(url: str, login_endpoint: str = DEFAULT_LOGIN_ENDPOINT) -> bool:
    """True if ``url``'s host is allowed for ``login_endpoint``. Localhost is always trusted."""
    hostname = urlsplit(url).hostname
    if not hostname:
        return False
    if hostname in ("localhost", "127.0.0.1", "::1"):
        return True
    allowed = get_well_known_endpoints().get(login_endpoint.rstrip("/").lower())
    return allowed is not None and allowed.allows(hostname)


def ensure_trusted_endpoint(url: str, login_endpoint: str = DEFAULT_LOGIN_ENDPOINT) -> None:
    if not is_trusted_endpoint(url, login_endpoint):
        raise ConfigurationError(
            "Endpoint is not a trusted ingestion endpoint",
            details={"endpoint": url, "login_endpoint": login_endpoint},
        ).with_suggestion("Pass validate_endpoints=False for private or test endpoints")
