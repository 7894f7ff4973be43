"""
Resource Models

Credentialed handles to backend resources and the immutable snapshot the
resource manager publishes.

A resource URI embeds its credential (a SAS query string). The full URI is
excluded from ``repr`` and every log line uses ``endpoint_without_sas``.
"""

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Mapping
from urllib.parse import urlsplit, urlunsplit

from ingestion_broker.core.exceptions import ConfigurationError


def remove_secrets_from_url(uri: str) -> str:
    """Return ``uri`` without its query string (where SAS credentials live)."""
    parts = urlsplit(uri)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def account_name_from_uri(uri: str) -> str:
    """
    Derive the storage account name from a resource URI.

    ``https://acct1.queue.core.windows.net/q?sig=...`` -> ``acct1``
    """
    host = urlsplit(uri).hostname
    if not host:
        raise ConfigurationError(
            "Resource URI has no host", details={"uri": remove_secrets_from_url(uri)}
        )
    return host.split(".", 1)[0]


@dataclass(frozen=True)
class ResourceWithSas:
    """One backend resource: URI with embedded credential plus its account."""

    uri: str = field(repr=False)
    account_name: str

    @classmethod
    def from_uri(cls, uri: str, account_name: str | None = None):
        if not uri or not uri.strip():
            raise ConfigurationError("Resource URI must not be blank")
        return cls(uri=uri, account_name=account_name or account_name_from_uri(uri))

    @property
    def endpoint_without_sas(self) -> str:
        return remove_secrets_from_url(self.uri)

    @property
    def sas(self) -> str:
        """Query string including the leading '?', or '' when the URI has none."""
        query = urlsplit(self.uri).query
        return f"?{query}" if query else ""

    @property
    def name(self) -> str:
        """Last path segment: queue name, container name or table name."""
        return urlsplit(self.uri).path.rstrip("/").rsplit("/", 1)[-1]

    def __str__(self) -> str:
        return self.endpoint_without_sas


@dataclass(frozen=True)
class QueueResource(ResourceWithSas):
    """An ingestion queue the queued path posts messages to."""


@dataclass(frozen=True)
class ContainerResource(ResourceWithSas):
    """A temporary blob container the queued path uploads payloads to."""

    def blob_uri(self, blob_name: str) -> str:
        """Full blob URI (with the container's SAS) for ``blob_name``."""
        return f"{self.endpoint_without_sas.rstrip('/')}/{blob_name}{self.sas}"


@dataclass(frozen=True)
class StreamingEndpoint(ResourceWithSas):
    """A direct-path (streaming) endpoint, ranked like a storage account."""


@dataclass(frozen=True)
class AuthToken:
    value: str = field(repr=False)
    fetched_at: float


@dataclass(frozen=True)
class ResourceSnapshot:
    """
    Point-in-time view of all usable ingestion resources.

    Resources are grouped by account name; each account's tuple was shuffled
    once when the snapshot was built. The resource manager replaces the whole
    snapshot on every publication and never mutates one in place.
    """

    queues_by_account: Mapping[str, tuple[QueueResource, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    containers_by_account: Mapping[str, tuple[ContainerResource, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    resources_fetched_at: float | None = None
    auth_token: AuthToken | None = None

    @property
    def queues(self) -> list[QueueResource]:
        return [q for group in self.queues_by_account.values() for q in group]

    @property
    def containers(self) -> list[ContainerResource]:
        return [c for group in self.containers_by_account.values() for c in group]

    @property
    def has_resources(self) -> bool:
        return self.resources_fetched_at is not None

    @property
    def account_names(self) -> set[str]:
        return set(self.queues_by_account) | set(self.containers_by_account)

    def with_resources(
        self,
        queues_by_account: Mapping[str, tuple[QueueResource, ...]],
        containers_by_account: Mapping[str, tuple[ContainerResource, ...]],
        fetched_at: float,
    ) -> "ResourceSnapshot":
        return replace(
            self,
            queues_by_account=MappingProxyType(dict(queues_by_account)),
            containers_by_account=MappingProxyType(dict(containers_by_account)),
            resources_fetched_at=fetched_at,
        )

    def with_auth_token(self, token: AuthToken) -> "ResourceSnapshot":
        return replace(self, auth_token=token)
