"""
Tests for the image provider adapters.

Replicate calls go through a real httpx client on a MockTransport; the
OpenAI SDK client is replaced with AsyncMocks.
"""

import base64
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from openai import APIConnectionError, APIStatusError

from realify.services.image_providers import (
    GeneratedImage,
    GenerationRequest,
    GPTImageProvider,
    IdeogramProvider,
    OpenAIImageProvider,
    ProviderError,
    ReferenceImage,
    UnusableOutputError,
    is_overloaded,
)
from realify.services.image_providers.replicate import output_to_image

_RealAsyncClient = httpx.AsyncClient


def _mock_client(handler):
    """Patch target factory: real AsyncClient routed to ``handler``."""
    def factory(**kwargs):
        return _RealAsyncClient(transport=httpx.MockTransport(handler), **kwargs)
    return factory


def _prediction(status, output=None, error=None, pid="p1"):
    return {
        "id": pid,
        "status": status,
        "output": output,
        "error": error,
        "urls": {"get": f"https://api.replicate.com/v1/predictions/{pid}"},
    }


@pytest.fixture
def no_sleep():
    with patch("realify.services.image_providers.replicate.asyncio.sleep", new=AsyncMock()) as m:
        yield m


# ---------------------------------------------------------------------------
# Result tagging
# ---------------------------------------------------------------------------

class TestGeneratedImage:
    def test_kind_must_match_value(self):
        with pytest.raises(TypeError):
            GeneratedImage(kind="url", value=b"bytes")
        with pytest.raises(ValueError):
            GeneratedImage(kind="file", value="x")

    def test_constructors(self):
        assert GeneratedImage.from_url("https://x/y.png").kind == "url"
        assert GeneratedImage.from_bytes(b"x", "image/png").content_type == "image/png"


class TestOutputToImage:
    def test_url_string(self):
        image = output_to_image("https://replicate.delivery/a.png", "image/png")
        assert image.kind == "url"
        assert image.value == "https://replicate.delivery/a.png"

    def test_list_takes_first(self):
        image = output_to_image(["https://r/1.png", "https://r/2.png"])
        assert image.value == "https://r/1.png"

    def test_url_object(self):
        assert output_to_image({"url": "https://r/1.webp"}).value == "https://r/1.webp"

    def test_data_uri(self):
        encoded = base64.b64encode(b"pixels").decode()
        image = output_to_image(f"data:image/webp;base64,{encoded}")
        assert image.kind == "bytes"
        assert image.value == b"pixels"
        assert image.content_type == "image/webp"

    @pytest.mark.parametrize("output", [None, [], {}, 42, "not a url", "data:image/png;base64,@@@"])
    def test_unusable(self, output):
        with pytest.raises(UnusableOutputError):
            output_to_image(output)


class TestIsOverloaded:
    @pytest.mark.parametrize("message,status,expected", [
        ("E003: Service is currently unavailable", None, True),
        ("Model under HIGH DEMAND", None, True),
        ("gateway", 529, True),
        ("bad gateway", 503, True),
        ("invalid prompt", 422, False),
        ("flagged as sensitive", None, False),
    ])
    def test_signatures(self, message, status, expected):
        assert is_overloaded(ProviderError(message, status_code=status)) is expected


# ---------------------------------------------------------------------------
# Replicate
# ---------------------------------------------------------------------------

class TestReplicateProviders:
    def test_ideogram_input(self):
        req = GenerationRequest(prompt="p", aspect_ratio="4:5", output_format="jpg", seed=3, negative_prompt="blur")
        assert IdeogramProvider().build_input(req) == {
            "prompt": "p",
            "aspect_ratio": "4:5",
            "output_format": "jpg",
            "seed": 3,
            "negative_prompt": "blur",
        }

    def test_ideogram_input_omits_optional(self):
        data = IdeogramProvider().build_input(GenerationRequest(prompt="p"))
        assert "seed" not in data
        assert "negative_prompt" not in data

    def test_gpt_input_with_references(self):
        req = GenerationRequest(
            prompt="p", quality="high",
            references=[ReferenceImage(data=b"abc", content_type="image/jpeg")],
        )
        data = GPTImageProvider().build_input(req)
        assert data["output_format"] == "png"
        assert data["quality"] == "high"
        assert data["input_images"] == ["data:image/jpeg;base64,YWJj"]

    async def test_sync_prediction(self, no_sleep):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, json=_prediction("succeeded", output="https://r/out.png"))

        with patch("realify.services.image_providers.replicate.httpx.AsyncClient", _mock_client(handler)):
            image = await IdeogramProvider().generate(GenerationRequest(prompt="p"))

        assert image.value == "https://r/out.png"
        assert len(seen) == 1
        assert seen[0].url.path == "/v1/models/ideogram-ai/ideogram-v2-turbo/predictions"
        assert seen[0].headers["Authorization"] == "Bearer r8_test"
        assert seen[0].headers["Prefer"].startswith("wait=")
        assert json.loads(seen[0].content)["input"]["prompt"] == "p"
        no_sleep.assert_not_called()

    async def test_polls_until_terminal(self, no_sleep):
        responses = iter([
            httpx.Response(201, json=_prediction("starting")),
            httpx.Response(200, json=_prediction("processing")),
            httpx.Response(200, json=_prediction("succeeded", output=["https://r/out.png"])),
        ])

        with patch("realify.services.image_providers.replicate.httpx.AsyncClient",
                   _mock_client(lambda request: next(responses))):
            image = await GPTImageProvider().generate(GenerationRequest(prompt="p"))

        assert image.value == "https://r/out.png"
        assert no_sleep.await_count == 2

    async def test_failed_prediction(self, no_sleep):
        def handler(request):
            return httpx.Response(201, json=_prediction("failed", error="E003: unavailable"))

        with patch("realify.services.image_providers.replicate.httpx.AsyncClient", _mock_client(handler)):
            with pytest.raises(ProviderError) as exc_info:
                await IdeogramProvider().generate(GenerationRequest(prompt="p"))

        assert is_overloaded(exc_info.value)

    async def test_http_error_status(self, no_sleep):
        def handler(request):
            return httpx.Response(503, text="overloaded")

        with patch("realify.services.image_providers.replicate.httpx.AsyncClient", _mock_client(handler)):
            with pytest.raises(ProviderError) as exc_info:
                await IdeogramProvider().generate(GenerationRequest(prompt="p"))

        assert exc_info.value.status_code == 503

    async def test_transport_error(self, no_sleep):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with patch("realify.services.image_providers.replicate.httpx.AsyncClient", _mock_client(handler)):
            with pytest.raises(ProviderError) as exc_info:
                await IdeogramProvider().generate(GenerationRequest(prompt="p"))

        assert isinstance(exc_info.value.original_error, httpx.ConnectError)

    async def test_non_json_body(self, no_sleep):
        def handler(request):
            return httpx.Response(201, text="<html>gateway</html>")

        with patch("realify.services.image_providers.replicate.httpx.AsyncClient", _mock_client(handler)):
            with pytest.raises(ProviderError) as exc_info:
                await IdeogramProvider().generate(GenerationRequest(prompt="p"))

        assert exc_info.value.status_code == 201
        assert isinstance(exc_info.value.original_error, ValueError)

    async def test_non_object_body(self, no_sleep):
        def handler(request):
            return httpx.Response(201, json=["https://r/1.png"])

        with patch("realify.services.image_providers.replicate.httpx.AsyncClient", _mock_client(handler)):
            with pytest.raises(ProviderError):
                await IdeogramProvider().generate(GenerationRequest(prompt="p"))

    async def test_missing_token(self):
        with patch("realify.services.image_providers.replicate.settings.replicate_api_token", None):
            with pytest.raises(ProviderError):
                await IdeogramProvider().generate(GenerationRequest(prompt="p"))


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

def _openai_client(response=None, error=None):
    client = MagicMock()
    client.images.generate = AsyncMock(return_value=response, side_effect=error)
    client.images.edit = AsyncMock(return_value=response, side_effect=error)
    return client


def _images_response(b64_json=None, url=None):
    return SimpleNamespace(data=[SimpleNamespace(b64_json=b64_json, url=url)])


_OPENAI_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/images/edits")


class TestOpenAIImageProvider:
    def test_params(self):
        provider = OpenAIImageProvider(client=_openai_client())
        params = provider.build_params(GenerationRequest(prompt="p", aspect_ratio="3:2", output_format="jpg", quality="low"))
        assert params == {
            "model": "gpt-image-1",
            "prompt": "p",
            "size": "1536x1024",
            "quality": "low",
            "output_format": "jpeg",
            "n": 1,
        }

    async def test_edit_with_references(self):
        client = _openai_client(response=_images_response(b64_json=base64.b64encode(b"png").decode()))
        provider = OpenAIImageProvider(client=client)
        req = GenerationRequest(prompt="p", references=[ReferenceImage(data=b"ref", filename="r.png")])

        image = await provider.generate(req)

        assert image.kind == "bytes"
        assert image.value == b"png"
        assert client.images.edit.call_args.kwargs["image"] == [("r.png", b"ref", "image/png")]
        client.images.generate.assert_not_called()

    async def test_generate_without_references(self):
        client = _openai_client(response=_images_response(url="https://oai/x.png"))
        image = await OpenAIImageProvider(client=client).generate(GenerationRequest(prompt="p"))
        assert image.kind == "url"
        client.images.generate.assert_awaited_once()

    async def test_empty_response(self):
        client = _openai_client(response=SimpleNamespace(data=[]))
        with pytest.raises(UnusableOutputError):
            await OpenAIImageProvider(client=client).generate(GenerationRequest(prompt="p"))

    async def test_malformed_b64_json(self):
        client = _openai_client(response=_images_response(b64_json="!!notbase64"))
        with pytest.raises(UnusableOutputError) as exc_info:
            await OpenAIImageProvider(client=client).generate(GenerationRequest(prompt="p"))
        assert exc_info.value.provider == "openai"

    async def test_status_error_keeps_code(self):
        error = APIStatusError(
            "overloaded",
            response=httpx.Response(503, request=_OPENAI_REQUEST),
            body=None,
        )
        client = _openai_client(error=error)
        with pytest.raises(ProviderError) as exc_info:
            await OpenAIImageProvider(client=client).generate(GenerationRequest(prompt="p"))
        assert exc_info.value.status_code == 503
        assert is_overloaded(exc_info.value)

    async def test_connection_error(self):
        client = _openai_client(error=APIConnectionError(request=_OPENAI_REQUEST))
        with pytest.raises(ProviderError) as exc_info:
            await OpenAIImageProvider(client=client).generate(GenerationRequest(prompt="p"))
        assert exc_info.value.status_code is None

    def test_missing_key(self):
        with patch("realify.services.image_providers.openai.settings.openai_api_key", None):
            with pytest.raises(ProviderError):
                OpenAIImageProvider()
