"""
Tests for the HTTP surface and the gateway RPC client.

The FastAPI app runs in-process through httpx.ASGITransport. Its store
HTTP client is an httpx.MockTransport stub of R2, so these tests cover
the full path: JSON request -> action model -> signed store call ->
JSON response. The last section drives a real upload through
GatewayClient and the orchestrator against the same stub.
"""

import httpx
import pytest

from reelvault.client.gateway_client import GatewayClient
from reelvault.client.orchestrator import MIB, UploadOrchestrator
from reelvault.client.sources import BytesSource
from reelvault.config.settings import Settings, get_settings
from reelvault.core.errors import NetworkError, StoreProtocolError, UpstreamHttpError
from reelvault.core.uploads import UploadFile, UploadStatus
from reelvault.main import create_app

INITIATE_XML = (
    '<InitiateMultipartUploadResult xmlns="http://s3.amazonaws.com/doc/2006-03-01/">'
    "<UploadId>upload-xyz</UploadId></InitiateMultipartUploadResult>"
)
COMPLETE_XML = "<CompleteMultipartUploadResult><ETag>\"x-3\"</ETag></CompleteMultipartUploadResult>"

API_KEY = "test-key"
ENDPOINT = "http://test/api/v1/storage/presign"


class R2Stub:
    """Answers signed multipart calls and presigned PUTs."""

    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self.initiate_status = 200
        self.abort_status = 204

    def count(self, method: str, marker: str) -> int:
        return sum(1 for m, query in self.calls if m == method and marker in query)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        self.calls.append((request.method, request.url.query.decode()))

        if request.method == "PUT":
            if "X-Amz-Signature" not in params:
                return httpx.Response(403, text="<Error><Code>AccessDenied</Code></Error>")
            return httpx.Response(200, headers={"ETag": f'"etag-{params.get("partNumber", "0")}"'})
        if "authorization" not in request.headers:
            return httpx.Response(403, text="<Error><Code>AccessDenied</Code></Error>")
        if request.method == "POST" and "uploads" in params:
            if self.initiate_status != 200:
                return httpx.Response(self.initiate_status, text="<Error><Code>AccessDenied</Code></Error>")
            return httpx.Response(200, text=INITIATE_XML)
        if request.method == "POST":
            return httpx.Response(200, text=COMPLETE_XML)
        if request.method == "DELETE":
            return httpx.Response(self.abort_status)
        return httpx.Response(405)


def make_settings(**overrides) -> Settings:
    values = {
        "api_keys": API_KEY,
        "r2_account_id": "acct123",
        "r2_access_key_id": "AKIDEXAMPLE",
        "r2_secret_access_key": "secret",
        "r2_bucket_name": "videos",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def store() -> R2Stub:
    return R2Stub()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def app(settings, store):
    app = create_app()
    app.dependency_overrides[get_settings] = lambda: settings
    app.state.store_http_client = httpx.AsyncClient(transport=httpx.MockTransport(store))
    return app


@pytest.fixture
def client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


async def call(client: httpx.AsyncClient, payload, api_key: str = API_KEY) -> httpx.Response:
    return await client.post("/api/v1/storage/presign", json=payload, headers={"X-API-Key": api_key})


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@pytest.mark.anyio
class TestHealth:

    async def test_liveness(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    async def test_ready_when_configured(self, client):
        response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    async def test_not_ready_without_store_credentials(self, app, client):
        app.dependency_overrides[get_settings] = lambda: make_settings(r2_bucket_name="")

        response = await client.get("/health/ready")

        assert response.status_code == 503
        body = response.json()
        assert body["status"] == "not_ready"
        assert "R2_BUCKET_NAME" in body["checks"][0]["error"]


# ---------------------------------------------------------------------------
# Storage endpoint
# ---------------------------------------------------------------------------

@pytest.mark.anyio
class TestPresignEndpoint:

    async def test_requires_api_key(self, client):
        response = await client.post("/api/v1/storage/presign", json={"action": "presign-get", "objectKey": "k"})

        assert response.status_code == 403
        assert "API key required" in response.json()["error"]

    async def test_rejects_wrong_api_key(self, client):
        response = await call(client, {"action": "presign-get", "objectKey": "k"}, api_key="nope")

        assert response.status_code == 403

    async def test_missing_configuration_fails_every_request(self, app, client):
        app.dependency_overrides[get_settings] = lambda: make_settings(
            api_keys=API_KEY, r2_account_id="", r2_secret_access_key=""
        )

        response = await call(client, {"action": "presign-get", "objectKey": "k"})

        assert response.status_code == 500
        error = response.json()["error"]
        assert "R2_ACCOUNT_ID" in error
        assert "R2_SECRET_ACCESS_KEY" in error

    async def test_unknown_action_is_bad_request(self, client):
        response = await call(client, {"action": "drop-bucket"})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid action"}

    async def test_invalid_json_is_bad_request(self, client):
        response = await client.post(
            "/api/v1/storage/presign",
            content=b"{not json",
            headers={"X-API-Key": API_KEY, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert "JSON" in response.json()["error"]

    async def test_simple_upload(self, client):
        response = await call(client, {
            "action": "simple-upload",
            "fileName": "clip.mp4",
            "fileType": "video/mp4",
            "fileSize": 1024,
        })

        assert response.status_code == 200
        body = response.json()
        assert set(body) == {"putUrl", "objectKey", "getUrl"}
        assert body["putUrl"].startswith(f"https://videos.acct123.r2.cloudflarestorage.com/{body['objectKey']}?")

    async def test_get_object_alias(self, client):
        response = await call(client, {"action": "get-object", "objectKey": "1-clip.mp4", "expiresIn": 300})

        assert response.status_code == 200
        body = response.json()
        assert body["expiresIn"] == 300
        assert "X-Amz-Expires=300" in body["url"]

    async def test_store_rejection_is_bad_gateway(self, client, store):
        store.initiate_status = 403

        response = await call(client, {"action": "initiate-multipart", "fileName": "clip.mp4"})

        assert response.status_code == 502
        assert "HTTP 403" in response.json()["error"]

    async def test_abort_failure_still_ok(self, client, store):
        store.abort_status = 500

        response = await call(client, {"action": "abort-multipart", "objectKey": "k", "uploadId": "u"})

        assert response.status_code == 200
        assert response.json() == {"ok": True}

    async def test_complete_with_gap_is_bad_request(self, client, store):
        response = await call(client, {
            "action": "complete-multipart",
            "objectKey": "k",
            "uploadId": "u",
            "parts": [{"partNumber": 1, "etag": '"a"'}, {"partNumber": 3, "etag": '"c"'}],
        })

        assert response.status_code == 400
        assert store.calls == []


# ---------------------------------------------------------------------------
# GatewayClient
# ---------------------------------------------------------------------------

@pytest.mark.anyio
class TestGatewayClient:

    def gateway_client(self, app) -> GatewayClient:
        http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app))
        return GatewayClient(ENDPOINT, http_client=http, api_key=API_KEY)

    async def test_round_trip(self, app):
        response = await self.gateway_client(app).presign_get("1-clip.mp4", expires_seconds=120)

        assert response.expires_in == 120
        assert "response-content-type=video%2Fmp4" in response.url

    async def test_gateway_error_becomes_upstream_error(self, app):
        app.dependency_overrides[get_settings] = lambda: make_settings(r2_bucket_name="")

        with pytest.raises(UpstreamHttpError) as exc_info:
            await self.gateway_client(app).presign_get("k")

        assert exc_info.value.status_code == 500
        assert "R2_BUCKET_NAME" in str(exc_info.value)

    async def test_transport_failure_becomes_network_error(self):
        def down(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = GatewayClient(ENDPOINT, http_client=httpx.AsyncClient(transport=httpx.MockTransport(down)))

        with pytest.raises(NetworkError):
            await client.presign_get("k")

    @pytest.mark.parametrize("body", [["boom"], "boom", 42])
    async def test_non_object_error_body_still_upstream_error(self, body):
        def broken(request):
            return httpx.Response(500, json=body)

        client = GatewayClient(ENDPOINT, http_client=httpx.AsyncClient(transport=httpx.MockTransport(broken)))

        with pytest.raises(UpstreamHttpError) as exc_info:
            await client.abort_multipart("k", "u")

        assert exc_info.value.status_code == 500
        assert "abort-multipart failed" in str(exc_info.value)

    async def test_unexpected_response_shape(self):
        def wrong(request):
            return httpx.Response(200, json={"unexpected": True})

        client = GatewayClient(ENDPOINT, http_client=httpx.AsyncClient(transport=httpx.MockTransport(wrong)))

        with pytest.raises(StoreProtocolError, match="presign-get"):
            await client.presign_get("k")

    async def test_multipart_upload_end_to_end(self, app, store):
        """Orchestrator -> GatewayClient -> API -> StoreGateway -> R2 stub."""
        orchestrator = UploadOrchestrator(
            self.gateway_client(app),
            transfer_client=httpx.AsyncClient(transport=httpx.MockTransport(store)),
        )
        item = UploadFile(source=BytesSource("big.mp4", b"\0" * (12 * MIB)))

        await orchestrator.upload(item)

        assert item.status is UploadStatus.COMPLETED, item.error
        assert item.object_key.endswith("-big.mp4")
        assert item.get_url.startswith("https://videos.acct123.r2.cloudflarestorage.com/")
        assert store.count("POST", "uploads=") == 1
        assert store.count("PUT", "partNumber=") == 3
        assert store.count("POST", "uploadId=upload-xyz") == 1
        assert store.count("DELETE", "") == 0
