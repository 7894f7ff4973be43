"""
Unit Tests for HttpIngestionTransport

Uses httpx.MockTransport to check request shape, result parsing and the
mapping of HTTP failures to broker errors.
"""

import io

import httpx
import orjson
import pytest

from ingestion_broker.core.exceptions import (
    ConfigurationError,
    PermanentBackendError,
    ThrottledError,
    TransientBackendError,
)
from ingestion_broker.infrastructure.http_transport import HttpIngestionTransport, HttpTransportConfig
from ingestion_broker.ingest.models import DataFormat
from ingestion_broker.resources.models import StreamingEndpoint

CLUSTER = "https://ingest-mycluster.kusto.windows.net"


async def token_provider():
    return "bearer-token"


def make_transport(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpIngestionTransport(HttpTransportConfig(cluster_url=CLUSTER), token_provider, client=client)


def json_response(status, body):
    return httpx.Response(status, content=orjson.dumps(body), headers={"Content-Type": "application/json"})


@pytest.fixture
def endpoint():
    return StreamingEndpoint.from_uri("https://mycluster.kusto.windows.net", "mycluster")


@pytest.mark.unit
class TestManagementCommands:
    @pytest.mark.asyncio
    async def test_rows_keyed_by_column(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = orjson.loads(request.content)
            seen["auth"] = request.headers["Authorization"]
            return json_response(
                200,
                {
                    "Tables": [
                        {
                            "TableName": "Table_0",
                            "Columns": [{"ColumnName": "ResourceTypeName"}, {"ColumnName": "StorageRoot"}],
                            "Rows": [["TempStorage", "https://a.blob.core.windows.net/c?sig=x"]],
                        }
                    ]
                },
            )

        transport = make_transport(handler)
        rows = await transport.execute_management_command(".get ingestion resources")

        assert rows == [{"ResourceTypeName": "TempStorage", "StorageRoot": "https://a.blob.core.windows.net/c?sig=x"}]
        assert seen["url"] == f"{CLUSTER}/v1/rest/mgmt"
        assert seen["body"] == {"db": "NetDefaultDB", "csl": ".get ingestion resources"}
        assert seen["auth"] == "Bearer bearer-token"

    @pytest.mark.asyncio
    async def test_empty_tables(self):
        transport = make_transport(lambda request: json_response(200, {"Tables": []}))
        assert await transport.execute_management_command(".show x") == []


@pytest.mark.unit
class TestStreamingIngest:
    @pytest.mark.asyncio
    async def test_stream_request_shape(self, endpoint):
        seen = {}

        def handler(request):
            seen["request"] = request
            seen["body"] = request.content
            return json_response(200, {"Tables": []})

        transport = make_transport(handler)
        await transport.execute_streaming_ingest(
            endpoint,
            "db1",
            "events",
            io.BytesIO(b"gzipped"),
            DataFormat.JSON,
            mapping_reference="map1",
            client_request_id="req-1",
            compressed=True,
        )

        request = seen["request"]
        assert request.url.path == "/v1/rest/ingest/db1/events"
        assert request.url.params["streamFormat"] == "json"
        assert request.url.params["mappingName"] == "map1"
        assert request.headers["Content-Encoding"] == "gzip"
        assert request.headers["x-ms-client-request-id"] == "req-1"
        assert seen["body"] == b"gzipped"

    @pytest.mark.asyncio
    async def test_blob_request_shape(self, endpoint):
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(200)

        transport = make_transport(handler)
        result = await transport.execute_blob_ingest(
            endpoint, "db1", "events", "https://a.blob.core.windows.net/c/b.csv?sig=x", DataFormat.CSV
        )

        request = seen["request"]
        assert result is None
        assert request.url.params["sourceKind"] == "uri"
        assert orjson.loads(request.content) == {"SourceUri": "https://a.blob.core.windows.net/c/b.csv?sig=x"}


@pytest.mark.unit
class TestErrorMapping:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,body,expected",
        [
            (429, {}, ThrottledError),
            (503, {}, TransientBackendError),
            (408, {}, TransientBackendError),
            (400, {}, PermanentBackendError),
            (400, {"error": {"code": "Busy", "message": "retry", "@permanent": False}}, TransientBackendError),
            (500, {"error": {"code": "BadRequest_Format", "message": "bad", "@permanent": True}}, PermanentBackendError),
        ],
    )
    async def test_status_mapping(self, endpoint, status, body, expected):
        transport = make_transport(lambda request: json_response(status, body))

        with pytest.raises(expected) as exc_info:
            await transport.execute_streaming_ingest(endpoint, "db1", "t", io.BytesIO(b"x"), DataFormat.CSV)

        assert exc_info.value.details["status_code"] == status

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,body,expected",
        [
            (400, {"error": "bad request"}, PermanentBackendError),
            (503, {"error": "bad request"}, TransientBackendError),
            (400, {"error": ["bad", "request"]}, PermanentBackendError),
            (503, {"error": None}, TransientBackendError),
        ],
    )
    async def test_non_object_error_field_maps_by_status(self, endpoint, status, body, expected):
        transport = make_transport(lambda request: json_response(status, body))

        with pytest.raises(expected) as exc_info:
            await transport.execute_streaming_ingest(endpoint, "db1", "t", io.BytesIO(b"x"), DataFormat.CSV)

        assert exc_info.value.details["status_code"] == status
        assert exc_info.value.details["error_code"] is None

    @pytest.mark.asyncio
    async def test_string_error_field_becomes_message(self, endpoint):
        transport = make_transport(lambda request: json_response(400, {"error": "bad request"}))

        with pytest.raises(PermanentBackendError) as exc_info:
            await transport.execute_streaming_ingest(endpoint, "db1", "t", io.BytesIO(b"x"), DataFormat.CSV)

        assert "bad request" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self, endpoint):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        transport = make_transport(handler)

        with pytest.raises(TransientBackendError):
            await transport.execute_blob_ingest(endpoint, "db1", "t", "https://a/b", DataFormat.CSV)

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        transport = make_transport(handler)

        with pytest.raises(TransientBackendError):
            await transport.execute_management_command(".show x")


@pytest.mark.unit
class TestLifecycle:
    @pytest.mark.asyncio
    async def test_requires_initialization(self):
        transport = HttpIngestionTransport(HttpTransportConfig(cluster_url=CLUSTER), token_provider)
        with pytest.raises(ConfigurationError):
            await transport.execute_management_command(".show x")

    @pytest.mark.asyncio
    async def test_context_manager_creates_and_closes_client(self):
        transport = HttpIngestionTransport(HttpTransportConfig(cluster_url=CLUSTER), token_provider)
        async with transport:
            assert transport._client is not None
        assert transport._client is None

    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        transport = HttpIngestionTransport(HttpTransportConfig(cluster_url=CLUSTER), token_provider, client=client)

        await transport.aclose()

        assert not client.is_closed
        await client.aclose()
