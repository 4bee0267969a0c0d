"""
Tests for the HTTP service clients.

Tests for panelforge/llm/api_clients.py
"""

import base64
import json

import httpx
import pytest

from panelforge.core.constants import Audience
from panelforge.core.exceptions import (
    UpstreamAuthError,
    UpstreamContentPolicyError,
    UpstreamNetworkError,
    UpstreamRateLimitError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from panelforge.llm.api_clients import (
    HttpBeatGenerator,
    HttpRenderClient,
    classify_http_error,
    classify_transport_error,
)


class TestClassifyHttpError:
    """Tests for classify_http_error."""

    @pytest.mark.parametrize("status,body,expected", [
        (401, "bad key", UpstreamAuthError),
        (403, "", UpstreamAuthError),
        (429, "too many", UpstreamRateLimitError),
        (400, "Prompt rejected by safety system", UpstreamContentPolicyError),
        (422, "violates content_policy", UpstreamContentPolicyError),
        (400, "missing field", UpstreamNetworkError),
        (500, "boom", UpstreamUnavailableError),
        (503, "", UpstreamUnavailableError),
    ])
    def test_mapping(self, status, body, expected):
        error = classify_http_error(status, body)

        assert type(error) is expected
        assert error.status_code == status

    def test_retry_after_parsed(self):
        error = classify_http_error(429, "", retry_after="12")

        assert error.retry_after == 12.0
        assert error.retryable

    def test_bad_retry_after_ignored(self):
        assert classify_http_error(429, "", retry_after="soon").retry_after is None

    def test_terminal_kinds_not_retryable(self):
        assert not classify_http_error(401).retryable
        assert not classify_http_error(400, "blocked").retryable

    def test_transport_timeout(self):
        error = classify_transport_error(httpx.ReadTimeout("slow"))

        assert isinstance(error, UpstreamTimeoutError)
        assert isinstance(classify_transport_error(httpx.ConnectError("refused")), UpstreamNetworkError)


class TestHttpRenderClient:
    """Tests for HttpRenderClient against a mock transport."""

    @pytest.mark.asyncio
    async def test_raw_image_response(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, content=b"\x89PNG...", headers={"Content-Type": "image/png"})

        async with HttpRenderClient("https://render.test", api_token="tok",
                                    transport=httpx.MockTransport(handler)) as client:
            asset = await client.render("draw", ["ref-1"], "512x512")

        assert asset.data == b"\x89PNG..."
        assert asset.mime_type == "image/png"
        assert seen["path"] == "/render"
        assert seen["body"] == {"prompt": "draw", "reference_images": ["ref-1"], "size": "512x512"}
        assert seen["auth"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_json_base64_response(self):
        def handler(request):
            return httpx.Response(200, json={
                "image_base64": base64.b64encode(b"jpegdata").decode(),
                "mime_type": "image/jpeg",
                "seed": 42,
            })

        client = HttpRenderClient("https://render.test", transport=httpx.MockTransport(handler))
        asset = await client.render("draw")
        await client.aclose()

        assert asset.data == b"jpegdata"
        assert asset.mime_type == "image/jpeg"
        assert asset.metadata == {"seed": 42}

    @pytest.mark.asyncio
    async def test_unreadable_body(self):
        client = HttpRenderClient(
            "https://render.test",
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"status": "ok"})),
        )

        with pytest.raises(UpstreamNetworkError):
            await client.render("draw")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_error_status_classified(self):
        def handler(request):
            return httpx.Response(429, text="slow down", headers={"Retry-After": "7"})

        client = HttpRenderClient("https://render.test", transport=httpx.MockTransport(handler))

        with pytest.raises(UpstreamRateLimitError) as exc_info:
            await client.render("draw")
        await client.aclose()

        assert exc_info.value.retry_after == 7.0
        assert exc_info.value.endpoint == "/render"

    @pytest.mark.asyncio
    async def test_transport_failure_classified(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = HttpRenderClient("https://render.test", transport=httpx.MockTransport(handler))

        with pytest.raises(UpstreamNetworkError):
            await client.render("draw")
        await client.aclose()

    def test_requires_base_url(self):
        with pytest.raises(ValueError):
            HttpRenderClient("")


class TestHttpBeatGenerator:
    """Tests for HttpBeatGenerator."""

    @pytest.mark.asyncio
    async def test_returns_message_content(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "choices": [{"message": {"content": '{"beats": []}'}}],
            })

        generator = HttpBeatGenerator("https://llm.test/v1", model="story-model",
                                      transport=httpx.MockTransport(handler))
        content = await generator.generate_beats("Once upon a time", Audience.CHILDREN)
        await generator.aclose()

        assert content == '{"beats": []}'
        assert seen["body"]["model"] == "story-model"
        assert "exactly 10 entries" in seen["body"]["messages"][0]["content"]
        assert seen["body"]["messages"][1]["content"] == "Once upon a time"

    @pytest.mark.asyncio
    async def test_missing_content_returns_none(self):
        generator = HttpBeatGenerator(
            "https://llm.test/v1", model="m",
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"choices": []})),
        )

        assert await generator.generate_beats("story", Audience.ADULTS) is None
        await generator.aclose()
