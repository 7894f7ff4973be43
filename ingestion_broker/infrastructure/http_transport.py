"""
HTTP Transport for the Management and Streaming Endpoints

``HttpIngestionTransport`` implements two collaborator interfaces over one
pooled ``httpx.AsyncClient``:

- ``ManagementCommandExecutor``: ``POST {cluster}/v1/rest/mgmt`` and flattens the
  primary result table into rows keyed by column name
- ``StreamingTransport``: ``POST {endpoint}/v1/rest/ingest/{db}/{table}`` with a
  gzip body, or with a JSON ``SourceUri`` body for ingest-by-reference

ERROR MAPPING:
--------------
Transport failures and HTTP errors are raised as broker errors so the retry
layer can classify them:

- connect / read / timeout errors      -> TransientBackendError
- 429                                  -> ThrottledError
- 5xx, 408                             -> TransientBackendError
- error body with ``"@permanent": true`` -> PermanentBackendError
- error body with ``"@permanent": false``-> TransientBackendError
- other 4xx                            -> PermanentBackendError

LIFECYCLE:
----------
Use as an async context manager so pooled connections are closed:

```python
async with HttpIngestionTransport(config, token_provider) as transport:
    rows = await transport.execute_management_command(".get ingestion resources")
```
"""

from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, BinaryIO

import httpx
import orjson
from pydantic import BaseModel, Field

from ingestion_broker.core.exceptions import (
    ConfigurationError,
    PermanentBackendError,
    ThrottledError,
    TransientBackendError,
)
from ingestion_broker.core.logging.logger import get_logger, get_operation_id

logger = get_logger(__name__)

TokenProvider = Callable[[], Awaitable[str]]


class HttpTransportConfig(BaseModel):
    """Connection settings for one cluster."""

    model_config = {"frozen": True}

    cluster_url: str = Field(..., min_length=1, description="Management endpoint base URL")
    database: str = Field(default="NetDefaultDB", description="Database used for management commands")
    timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")
    max_connections: int = Field(default=20, ge=1)
    client_name: str = Field(default="ingestion-broker", description="x-ms-app header value")


def _parse_rows(payload: Mapping[str, Any]) -> list[dict[str, Any]]:
    tables = payload.get("Tables") or []
    if not tables:
        return []
    primary = tables[0]
    columns = [column["ColumnName"] for column in primary.get("Columns", [])]
    return [dict(zip(columns, row)) for row in primary.get("Rows", [])]


def _error_from_response(response: httpx.Response, operation: str) -> Exception:
    details: dict[str, Any] = {"status_code": response.status_code, "operation": operation}
    permanent_flag = None
    message = response.reason_phrase
    try:
        body = orjson.loads(response.content) if response.content else {}
        error = body.get("error", {}) if isinstance(body, dict) else {}
        if isinstance(error, str):
            message = error or message
            error = {}
        elif not isinstance(error, dict):
            error = {}
        message = error.get("message") or message
        details["error_code"] = error.get("code")
        permanent_flag = error.get("@permanent")
    except orjson.JSONDecodeError:
        pass

    text = f"{operation} failed with HTTP {response.status_code}: {message}"
    if response.status_code == 429:
        return ThrottledError(text, details=details)
    if permanent_flag is True:
        return PermanentBackendError(text, details=details)
    if permanent_flag is False or response.status_code >= 500 or response.status_code == 408:
        return TransientBackendError(text, details=details)
    return PermanentBackendError(text, details=details)


class HttpIngestionTransport:
    """
    Management command executor and streaming transport over httpx.

    Args:
        config: Cluster URL and connection limits
        token_provider: Coroutine returning a bearer token for each request
        client: Pre-built client (tests inject one with ``httpx.MockTransport``)
    """

    def __init__(
        self,
        config: HttpTransportConfig,
        token_provider: TokenProvider,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config
        self._token_provider = token_provider
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "HttpIngestionTransport":
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout),
                limits=httpx.Limits(
                    max_connections=self.config.max_connections,
                    max_keepalive_connections=self.config.max_connections // 2,
                ),
            )
            self._owns_client = True
            logger.debug("HTTP client initialized", max_connections=self.config.max_connections)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            logger.debug("HTTP client closed")
        self._client = None

    def _ensure_client_initialized(self) -> httpx.AsyncClient:
        if self._client is None:
            raise ConfigurationError(
                "HttpIngestionTransport not initialized. Use 'async with HttpIngestionTransport(...)'"
            )
        return self._client

    async def _headers(self, client_request_id: str | None) -> dict[str, str]:
        token = await self._token_provider()
        headers = {
            "Authorization": f"Bearer {token}",
            "x-ms-app": self.config.client_name,
            "Accept": "application/json",
        }
        request_id = client_request_id or get_operation_id()
        if request_id:
            headers["x-ms-client-request-id"] = request_id
        return headers

    async def _post(self, operation: str, url: str, **kwargs: Any) -> httpx.Response:
        client = self._ensure_client_initialized()
        try:
            response = await client.post(url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientBackendError.from_exception(e, message=f"{operation} timed out") from e
        except httpx.TransportError as e:
            raise TransientBackendError.from_exception(e, message=f"{operation} connection failed") from e

        if response.is_success:
            return response
        raise _error_from_response(response, operation)

    # =========================================================================
    # ManagementCommandExecutor
    # =========================================================================

    async def execute_management_command(self, command: str) -> Sequence[Mapping[str, Any]]:
        url = f"{self.config.cluster_url.rstrip('/')}/v1/rest/mgmt"
        headers = await self._headers(None)
        headers["Content-Type"] = "application/json; charset=utf-8"
        response = await self._post(
            "management_command",
            url,
            content=orjson.dumps({"db": self.config.database, "csl": command}),
            headers=headers,
        )
        rows = _parse_rows(orjson.loads(response.content))
        logger.debug("Management command executed", command=command, rows=len(rows))
        return rows

    # =========================================================================
    # StreamingTransport
    # =========================================================================

    @staticmethod
    def _ingest_url(endpoint, database: str, table: str) -> str:
        return f"{endpoint.endpoint_without_sas.rstrip('/')}/v1/rest/ingest/{database}/{table}"

    @staticmethod
    def _ingest_params(data_format, mapping_reference: str | None, **extra: str) -> dict[str, str]:
        params = {"streamFormat": data_format.value, **extra}
        if mapping_reference:
            params["mappingName"] = mapping_reference
        return params

    async def execute_streaming_ingest(
        self,
        endpoint,
        database: str,
        table: str,
        stream: BinaryIO,
        data_format,
        *,
        mapping_reference: str | None = None,
        client_request_id: str | None = None,
        compressed: bool = False,
    ) -> Mapping[str, Any] | None:
        headers = await self._headers(client_request_id)
        headers["Content-Type"] = "application/octet-stream"
        if compressed:
            headers["Content-Encoding"] = "gzip"
        response = await self._post(
            "streaming_ingest",
            self._ingest_url(endpoint, database, table),
            params=self._ingest_params(data_format, mapping_reference),
            content=stream.read(),
            headers=headers,
        )
        return orjson.loads(response.content) if response.content else None

    async def execute_blob_ingest(
        self,
        endpoint,
        database: str,
        table: str,
        blob_path: str,
        data_format,
        *,
        mapping_reference: str | None = None,
        client_request_id: str | None = None,
    ) -> Mapping[str, Any] | None:
        headers = await self._headers(client_request_id)
        headers["Content-Type"] = "application/json; charset=utf-8"
        response = await self._post(
            "blob_streaming_ingest",
            self._ingest_url(endpoint, database, table),
            params=self._ingest_params(data_format, mapping_reference, sourceKind="uri"),
            content=orjson.dumps({"SourceUri": blob_path}),
            headers=headers,
        )
        return orjson.loads(response.content) if response.content else None
