"""Tests for the forwarding proxy.

The upstream API is simulated with httpx.MockTransport, so these tests
never leave the process.
"""

import gzip
import json

import httpx
import pytest

pytest.importorskip("fastapi")

from fastapi.testclient import TestClient

from tokenmeter.proxy.server import ProxyConfig, create_app


class FakeUpstream:
    """Records forwarded requests and answers with a canned response."""

    def __init__(self, response_factory):
        self.response_factory = response_factory
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response_factory(request)


@pytest.fixture
def make_client():
    """Build a proxy TestClient around a fake upstream."""

    def _make(response_factory, **config_kwargs):
        upstream = FakeUpstream(response_factory)
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
        config = ProxyConfig(upstream_url="https://upstream.test/", **config_kwargs)
        client = TestClient(create_app(config, http_client=http_client))
        return client, upstream

    return _make


class TestHealth:
    def test_health_is_local(self, make_client):
        client, upstream = make_client(lambda request: httpx.Response(500))
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["upstream"] == "https://upstream.test"
        assert data["config"]["request_token_header"] == "X-Request-Token-Count"
        assert upstream.requests == []
        assert "X-Request-Token-Count" not in response.headers


class TestChatCompletions:
    def test_forwards_and_counts(self, make_client, completion_body, chat_request_body):
        client, upstream = make_client(lambda request: httpx.Response(200, json=completion_body))
        raw = json.dumps(chat_request_body).encode()
        response = client.post(
            "/v1/chat/completions",
            content=raw,
            headers={"Authorization": "Bearer sk-test", "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json() == completion_body
        assert response.headers["X-Request-Token-Count"] == "15"
        assert response.headers["X-Response-Token-Count"] == "25"

        forwarded = upstream.requests[0]
        assert str(forwarded.url) == "https://upstream.test/v1/chat/completions"
        assert forwarded.method == "POST"
        assert forwarded.content == raw
        assert forwarded.headers["authorization"] == "Bearer sk-test"

    def test_cache_hit_rewrites_usage(
        self, make_client, cached_completion_body, chat_request_body
    ):
        client, _ = make_client(
            lambda request: httpx.Response(
                200, json=cached_completion_body, headers={"X-Cache-Status": "Hit"}
            )
        )
        response = client.post("/v1/chat/completions", json=chat_request_body)

        usage = response.json()["usage"]
        assert usage["prompt_tokens"] == int(response.headers["X-Request-Token-Count"]) > 0
        assert usage["completion_tokens"] == int(response.headers["X-Response-Token-Count"]) > 0
        assert usage["total_tokens"] == usage["prompt_tokens"] + usage["completion_tokens"]
        assert int(response.headers["content-length"]) == len(response.content)

    def test_gzip_upstream_is_decoded(self, make_client, completion_body, chat_request_body):
        """httpx decodes the body, so content-encoding must not be passed on."""
        compressed = gzip.compress(json.dumps(completion_body).encode())
        client, _ = make_client(
            lambda request: httpx.Response(
                200,
                content=compressed,
                headers={"Content-Encoding": "gzip", "Content-Type": "application/json"},
            )
        )
        response = client.post("/v1/chat/completions", json=chat_request_body)

        assert "content-encoding" not in response.headers
        assert response.json() == completion_body
        assert response.headers["X-Response-Token-Count"] == "25"

    def test_custom_headers(self, make_client, completion_body, chat_request_body):
        client, _ = make_client(
            lambda request: httpx.Response(200, json=completion_body),
            request_token_header="X-Prompt-Tokens",
            response_token_header="X-Completion-Tokens",
        )
        response = client.post("/v1/chat/completions", json=chat_request_body)
        assert response.headers["X-Prompt-Tokens"] == "15"
        assert response.headers["X-Completion-Tokens"] == "25"

    def test_upstream_error_status(self, make_client, chat_request_body):
        client, _ = make_client(
            lambda request: httpx.Response(429, json={"error": {"message": "slow down"}})
        )
        response = client.post("/v1/chat/completions", json=chat_request_body)

        assert response.status_code == 429
        assert response.json() == {"error": {"message": "slow down"}}
        assert int(response.headers["X-Request-Token-Count"]) > 0
        assert "X-Response-Token-Count" not in response.headers


class TestPassthrough:
    def test_get_with_query(self, make_client):
        client, upstream = make_client(
            lambda request: httpx.Response(200, json={"object": "list", "data": []})
        )
        response = client.get("/v1/models?limit=5")

        assert response.json() == {"object": "list", "data": []}
        assert str(upstream.requests[0].url) == "https://upstream.test/v1/models?limit=5"
        assert "X-Request-Token-Count" not in response.headers

    def test_hop_by_hop_headers_dropped(self, make_client):
        client, upstream = make_client(
            lambda request: httpx.Response(200, headers={"Connection": "close", "X-Trace": "t1"})
        )
        response = client.get("/v1/models")

        assert response.headers["x-trace"] == "t1"
        assert "connection" not in response.headers
        # the client's Host is replaced by the upstream's
        assert upstream.requests[0].headers["host"] == "upstream.test"

    def test_multi_valued_response_headers(self, make_client):
        client, _ = make_client(
            lambda request: httpx.Response(
                200, headers=[("Set-Cookie", "a=1"), ("Set-Cookie", "b=2")]
            )
        )
        response = client.get("/v1/models")
        assert response.headers.get_list("set-cookie") == ["a=1", "b=2"]


class TestUpstreamFailure:
    def test_connection_error_is_502(self, make_client, chat_request_body):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = make_client(refuse)
        response = client.post("/v1/chat/completions", json=chat_request_body)

        assert response.status_code == 502
        assert response.json()["error"]["type"] == "upstream_error"
        # error path still reports the prompt-side estimate
        assert int(response.headers["X-Request-Token-Count"]) > 0
