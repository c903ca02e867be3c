"""
Tests for the relay service HTTP surface.
"""

import json
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from shared.errors import UpstreamFailureError
from service_relay.app.domain.prompts import CHAT_INSTRUCTION, SUMMARIZE_INSTRUCTION, WEB_SEARCH_TOOL
from service_relay.app.main import RelayService, create_app

from .fakes import BLOCKED_CHUNK, FakeBackend, chunk

FEED_URL = "https://example.com/feed.xml"


def sse_payloads(body: str):
    """Split an SSE body into its decoded JSON payloads."""
    frames = [frame for frame in body.split("\n\n") if frame]
    assert all(frame.startswith("data: ") for frame in frames)
    return [json.loads(frame[len("data: "):]) for frame in frames]


@pytest.fixture
def client(relay_config, fake_source, fake_backend, fake_clock):
    app = create_app(relay_config, feed_source=fake_source, backend=fake_backend, clock=fake_clock)
    return TestClient(app)


@pytest.fixture
def unconfigured_backend():
    return FakeBackend(configured=False)


@pytest.fixture
def unconfigured_client(relay_config, fake_source, unconfigured_backend, fake_clock):
    app = create_app(relay_config, feed_source=fake_source, backend=unconfigured_backend, clock=fake_clock)
    return TestClient(app)


class TestServiceEndpoints:
    """Test cases for the common service endpoints."""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "relay"
        assert data["generation_configured"] is True

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["dependencies"]["generation_backend"] == "ok"

    def test_health_reports_unconfigured_backend(self, unconfigured_client):
        response = unconfigured_client.get("/health")

        assert response.status_code == 200
        assert response.json()["dependencies"]["generation_backend"] == "unconfigured"

    def test_metrics(self, client):
        client.get(f"/get-rss?url={FEED_URL}")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text

    def test_request_id_echoed(self, client):
        response = client.get("/", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_generated(self, client):
        response = client.get("/")

        assert response.headers["X-Request-ID"]


class TestGetRss:
    """Test cases for the RSS fetch proxy endpoint."""

    def test_second_request_within_ttl_served_from_cache(self, client, fake_source, fake_clock):
        first = client.get("/get-rss", params={"url": FEED_URL})
        fake_clock.advance(30)
        second = client.get("/get-rss", params={"url": FEED_URL})

        assert first.status_code == 200
        assert first.headers["content-type"].startswith("application/xml")
        assert second.text == first.text
        assert fake_source.calls == [FEED_URL]

    def test_expired_entry_refetched(self, client, fake_source, fake_clock):
        first = client.get("/get-rss", params={"url": FEED_URL})
        fake_clock.advance(121)
        second = client.get("/get-rss", params={"url": FEED_URL})

        assert len(fake_source.calls) == 2
        assert second.text != first.text

    def test_missing_url(self, client, fake_source):
        response = client.get("/get-rss")

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"
        assert fake_source.calls == []

    def test_relative_url_rejected(self, client, fake_source):
        response = client.get("/get-rss", params={"url": "/feed.xml"})

        assert response.status_code == 400
        assert fake_source.calls == []

    def test_fetch_failure(self, client, fake_source):
        fake_source.fail_with_status(404)

        response = client.get("/get-rss", params={"url": FEED_URL})

        assert response.status_code == 500
        data = response.json()
        assert data["code"] == "FETCH_FAILED"
        assert "404" in data["message"]
        assert data["details"]["upstream_status"] == 404

    def test_failure_not_cached(self, client, fake_source):
        fake_source.fail_with_status(502)
        client.get("/get-rss", params={"url": FEED_URL})

        fake_source.failure = None
        response = client.get("/get-rss", params={"url": FEED_URL})

        assert response.status_code == 200
        assert len(fake_source.calls) == 2


class TestCacheAdmin:
    """Test cases for cache statistics and invalidation."""

    def test_stats(self, client):
        client.get("/get-rss", params={"url": FEED_URL})
        client.get("/get-rss", params={"url": FEED_URL})

        data = client.get("/stats").json()

        assert data["cache"]["entries"] == 1
        assert data["cache"]["hits"] == 1
        assert data["cache"]["misses"] == 1
        assert data["streams"]["active_sessions"] == 0

    def test_invalidate_single_url(self, client, fake_source):
        client.get("/get-rss", params={"url": FEED_URL})

        response = client.delete("/cache", params={"url": FEED_URL})
        client.get("/get-rss", params={"url": FEED_URL})

        assert response.json() == {"removed": 1}
        assert len(fake_source.calls) == 2

    def test_clear_all(self, client):
        client.get("/get-rss", params={"url": FEED_URL})
        client.get("/get-rss", params={"url": "https://example.com/other.xml"})

        response = client.delete("/cache")

        assert response.json() == {"removed": 2}
        assert client.get("/stats").json()["cache"]["entries"] == 0


class TestSummarize:
    """Test cases for the non-streaming summarize endpoint."""

    def test_success(self, client, fake_backend):
        fake_backend.answer = "Tin chính trong ngày."

        response = client.post("/summarize", json={"prompt": "Bài báo dài"})

        assert response.status_code == 200
        assert response.json() == {"summary": "Tin chính trong ngày."}
        request = fake_backend.complete_calls[0]
        assert request.contents == [{"role": "user", "parts": [{"text": "Bài báo dài"}]}]
        assert request.system_instruction == SUMMARIZE_INSTRUCTION
        assert request.tools == []

    @pytest.mark.parametrize("body", [{}, {"prompt": ""}, {"prompt": "   "}])
    def test_missing_prompt(self, client, fake_backend, body):
        response = client.post("/summarize", json=body)

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"
        assert fake_backend.upstream_calls == 0

    def test_unconfigured_backend(self, unconfigured_client, unconfigured_backend):
        response = unconfigured_client.post("/summarize", json={"prompt": "Bài báo"})

        assert response.status_code == 500
        assert response.json()["code"] == "CONFIGURATION_ERROR"
        assert unconfigured_backend.upstream_calls == 0

    def test_upstream_failure(self, client, fake_backend):
        fake_backend.complete_error = UpstreamFailureError(
            service="gemini", message="Quota exceeded", upstream_status=429,
        )

        response = client.post("/summarize", json={"prompt": "Bài báo"})

        assert response.status_code == 500
        data = response.json()
        assert data["code"] == "UPSTREAM_FAILURE"
        assert "Quota exceeded" in data["message"]


class TestSummarizeStream:
    """Test cases for the SSE summarize endpoint."""

    def test_streams_fragments_then_done(self, client, fake_backend):
        fake_backend.chunks = [chunk("Xin"), chunk(" chào")]

        response = client.get("/summarize-stream", params={"prompt": "Bài báo"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert sse_payloads(response.text) == [
            {"text": "Xin"},
            {"text": " chào"},
            {"done": True},
        ]
        assert fake_backend.stream_closed is True

    def test_suppressed_fragment_reported_in_band(self, client, fake_backend):
        fake_backend.chunks = [chunk("Một"), BLOCKED_CHUNK, chunk("Hai")]

        payloads = sse_payloads(client.get("/summarize-stream", params={"prompt": "Bài báo"}).text)

        assert [list(p) for p in payloads] == [["text"], ["error"], ["text"], ["done"]]

    def test_upstream_failure_reported_in_band(self, client, fake_backend):
        fake_backend.error_before_stream = UpstreamFailureError(service="gemini", message="backend down")

        response = client.get("/summarize-stream", params={"prompt": "Bài báo"})

        assert response.status_code == 200
        assert sse_payloads(response.text) == [{"error": "gemini: backend down"}, {"done": True}]

    def test_missing_prompt(self, client, fake_backend):
        response = client.get("/summarize-stream")

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"
        assert fake_backend.upstream_calls == 0

    def test_unconfigured_backend(self, unconfigured_client, unconfigured_backend):
        response = unconfigured_client.get("/summarize-stream", params={"prompt": "Bài báo"})

        assert response.status_code == 500
        assert response.json()["code"] == "CONFIGURATION_ERROR"
        assert unconfigured_backend.upstream_calls == 0

    def test_session_released_after_stream(self, client, fake_backend):
        fake_backend.chunks = [chunk("a")]
        client.get("/summarize-stream", params={"prompt": "Bài báo"})

        streams = client.get("/stats").json()["streams"]

        assert streams["active_sessions"] == 0
        assert streams["finished"] == {"completed": 1}


class TestChat:
    """Test cases for the chat endpoint."""

    def test_prompt(self, client, fake_backend):
        fake_backend.answer = "Chào bạn!"

        response = client.post("/chat", json={"prompt": "Xin chào"})

        assert response.status_code == 200
        assert response.json() == {"answer": "Chào bạn!"}
        request = fake_backend.complete_calls[0]
        assert request.contents == [{"role": "user", "parts": [{"text": "Xin chào"}]}]
        assert request.system_instruction == CHAT_INSTRUCTION
        assert request.tools == [WEB_SEARCH_TOOL]

    def test_history_wins_over_prompt(self, client, fake_backend):
        history = [
            {"role": "user", "parts": [{"text": "Hôm nay có tin gì?"}]},
            {"role": "model", "parts": [{"text": "Có nhiều tin."}]},
            {"role": "user", "parts": [{"text": "Kể thêm đi"}]},
        ]

        response = client.post("/chat", json={"prompt": "bị bỏ qua", "history": history})

        assert response.status_code == 200
        assert fake_backend.complete_calls[0].contents == history

    def test_web_search_disabled(self, relay_config, fake_source, fake_backend):
        relay_config.chat_web_search = False
        client = TestClient(create_app(relay_config, feed_source=fake_source, backend=fake_backend))

        client.post("/chat", json={"prompt": "Xin chào"})

        assert fake_backend.complete_calls[0].tools == []

    def test_empty_body(self, client, fake_backend):
        response = client.post("/chat", json={})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"
        assert fake_backend.upstream_calls == 0

    def test_malformed_json(self, client, fake_backend):
        response = client.post(
            "/chat",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 400
        assert fake_backend.upstream_calls == 0

    def test_invalid_history_role(self, client, fake_backend):
        response = client.post(
            "/chat",
            json={"history": [{"role": "system", "parts": [{"text": "x"}]}]},
        )

        assert response.status_code == 400
        assert fake_backend.upstream_calls == 0

    def test_unconfigured_backend(self, unconfigured_client, unconfigured_backend):
        response = unconfigured_client.post("/chat", json={"prompt": "Xin chào"})

        assert response.status_code == 500
        assert unconfigured_backend.upstream_calls == 0

    def test_upstream_failure(self, client, fake_backend):
        fake_backend.complete_error = UpstreamFailureError(service="gemini", message="timeout")

        response = client.post("/chat", json={"prompt": "Xin chào"})

        assert response.status_code == 500
        assert response.json()["code"] == "UPSTREAM_FAILURE"


class TestRun:
    """Test cases for serving the application."""

    def test_run_uses_configured_host_and_port(self, relay_config, fake_source, fake_backend):
        relay_config.port = 8123
        service = RelayService(relay_config, feed_source=fake_source, backend=fake_backend)

        with patch("uvicorn.run") as mock_run:
            service.run()

        mock_run.assert_called_once_with(
            service.app,
            host=relay_config.host,
            port=8123,
            log_level="warning",
        )
