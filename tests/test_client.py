"""API client request shapes and error mapping tests"""

import json

import httpx
import pytest

from filetasks_mcp.client import ApiClient, ProgressReader
from filetasks_mcp.config import Settings
from filetasks_mcp.errors import (
    AuthenticationExpired,
    BusinessError,
    PayloadTooLargeError,
    ServerError,
    TransportError,
)


class TestRequests:
    async def test_query_tasks_returns_list(self, client, server):
        server.route("GET", "/api/task/query", json=[{"id": "t1"}])
        assert await client.query_tasks() == [{"id": "t1"}]

    async def test_query_tasks_rejects_non_list(self, client, server):
        server.route("GET", "/api/task/query", json={"error": "Task is not found"})
        with pytest.raises(ServerError):
            await client.query_tasks()

    async def test_session_cookie_sent(self, client, server):
        server.route("GET", "/api/task/query", json=[])
        await client.query_tasks()
        assert "id=session-cookie" in server.requests[0].headers["cookie"]

    @pytest.mark.parametrize("action,method", [
        ("suspend", "POST"),
        ("resume", "POST"),
        ("cancel", "POST"),
        ("delete", "DELETE"),
    ])
    async def test_task_commands(self, client, server, action, method):
        server.route(method, f"/api/task/{action}", json={"code": True, "message": "ok"})
        await getattr(client, f"{action}_task")("t1")
        [request] = server.requests
        assert request.method == method
        assert request.url.params["id"] == "t1"

    async def test_resolve_conflict_body(self, client, server):
        server.route("POST", "/api/file/resolve-conflict", json={"code": True, "message": "policy accepted"})
        await client.resolve_conflict("t1", "overwrite", True)
        body = json.loads(server.requests[0].content)
        assert body == {"taskId": "t1", "policy": "overwrite", "remember": True}

    async def test_get_config(self, client, server):
        server.route("GET", "/api/config", json={"maxUploadSize": 2048})
        assert await client.get_config() == {"maxUploadSize": 2048}


class TestErrorMapping:
    async def test_business_flag(self, client, server):
        server.route("POST", "/api/task/cancel", json={"code": False, "message": "Task is not found"})
        with pytest.raises(BusinessError) as exc:
            await client.cancel_task("t1")
        assert exc.value.message == "Task is not found"
        assert exc.value.kind == "business"

    async def test_unauthenticated(self, client, server):
        server.route("GET", "/api/task/query", status=401)
        with pytest.raises(AuthenticationExpired):
            await client.query_tasks()

    async def test_payload_too_large(self, client, server):
        server.route("GET", "/api/config", status=413, json={"message": "too big"})
        with pytest.raises(PayloadTooLargeError) as exc:
            await client.get_config()
        assert exc.value.message == "too big"

    async def test_server_error_message(self, client, server):
        server.route("GET", "/api/config", status=500, json={"error": "database locked"})
        with pytest.raises(ServerError) as exc:
            await client.get_config()
        assert exc.value.status == 500
        assert exc.value.message == "database locked"

    async def test_transport_failure(self, settings):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        api = ApiClient(settings, transport=httpx.MockTransport(refuse))
        with pytest.raises(TransportError) as exc:
            await api.query_tasks()
        assert exc.value.kind == "network"
        await api.close()

    async def test_corrupt_body_is_a_transport_failure(self, client, server):
        server.handler(
            "GET",
            "/api/task/query",
            lambda request: httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=b"not gzip"),
        )
        with pytest.raises(TransportError) as exc:
            await client.query_tasks()
        assert isinstance(exc.value.__cause__, httpx.DecodingError)


class TestUpload:
    async def test_progress_reported_up_to_total(self, client, server, tmp_path):
        path = tmp_path / "data.bin"
        path.write_bytes(b"z" * 100_000)
        server.route("POST", "/api/file/upload", json={"result": True, "message": "ok"})

        seen = []
        result = await client.upload(path, {"parentPath": "/x"}, progress_callback=lambda l, t: seen.append((l, t)))

        assert result == {"result": True, "message": "ok"}
        assert seen[-1] == (100_000, 100_000)
        assert [l for l, _ in seen] == sorted(l for l, _ in seen)
        body = server.requests[0].content
        assert b"100000" in body

    def test_progress_reader_counts_reads(self, tmp_path):
        path = tmp_path / "f"
        path.write_bytes(b"abcdef")
        seen = []
        with open(path, "rb") as f:
            reader = ProgressReader(f, 6, lambda l, t: seen.append(l))
            reader.read(4)
            reader.read(4)
            reader.read(4)
        assert seen == [4, 6]


class TestPushUrl:
    def test_http_to_ws(self):
        api = ApiClient(Settings(base_url="http://host:8080"))
        assert api.push_url() == "ws://host:8080/api/ws"

    def test_https_to_wss(self):
        api = ApiClient(Settings(base_url="https://files.example.com"))
        assert api.push_url() == "wss://files.example.com/api/ws"

    def test_push_headers(self):
        api = ApiClient(Settings(session="abc", cookie_name="sid"))
        assert api.push_headers() == {"Cookie": "sid=abc"}
        assert ApiClient(Settings()).push_headers() == {}
