from unittest.mock import AsyncMock, patch

import httpx
import pytest

from inndesign.config import ProviderConfig
from inndesign.errors import ProviderError
from inndesign.providers.openai import OpenAIProvider
from inndesign.types import GenerationOptions
from tests.conftest import mock_client, mock_response


def _provider() -> OpenAIProvider:
    return OpenAIProvider(ProviderConfig(api_key="sk-test"))


def _images(*urls: str) -> dict:
    return {"data": [{"url": u} for u in urls]}


# --- generate_image ---

class TestGenerateImage:
    @pytest.mark.asyncio
    async def test_dalle3_one_call_per_image(self):
        client = mock_client(post=[
            mock_response(200, _images("https://img/1")),
            mock_response(200, _images("https://img/2")),
            mock_response(200, _images("https://img/3")),
        ])
        opts = GenerationOptions(model="dall-e-3", num_outputs=3, style="natural")
        with patch("inndesign.providers.base.httpx.AsyncClient", return_value=client):
            result = await _provider().generate_image("base", opts, ["p1", "p2", "p3"])

        assert result.success is True
        assert result.images == ("https://img/1", "https://img/2", "https://img/3")
        assert client.post.call_count == 3
        prompts = [c[1]["json"]["prompt"] for c in client.post.call_args_list]
        assert prompts == ["p1", "p2", "p3"]
        body = client.post.call_args_list[0][1]["json"]
        assert body["n"] == 1
        assert body["size"] == "1024x1024"
        assert body["quality"] == "standard"
        assert result.cost == pytest.approx(0.12)
        assert result.metadata["provider"] == "openai"

    @pytest.mark.asyncio
    async def test_request_shape(self):
        client = mock_client(post=[mock_response(200, _images("https://img/1"))])
        opts = GenerationOptions(model="dall-e-3", width=1792, height=1024, quality="hd", style="vivid")
        with patch("inndesign.providers.base.httpx.AsyncClient", return_value=client):
            result = await _provider().generate_image("a room", opts)

        url = client.post.call_args[0][0]
        assert url == "https://api.openai.com/v1/images/generations"
        headers = client.post.call_args[1]["headers"]
        assert headers["Authorization"] == "Bearer sk-test"
        body = client.post.call_args[1]["json"]
        assert body["size"] == "1792x1024"
        assert body["quality"] == "hd"
        assert body["style"] == "vivid"
        assert result.cost == pytest.approx(0.12)

    @pytest.mark.asyncio
    async def test_dalle2_batches(self):
        client = mock_client(post=[mock_response(200, _images("a", "b", "c"))])
        opts = GenerationOptions(model="dall-e-2", num_outputs=3)
        with patch("inndesign.providers.base.httpx.AsyncClient", return_value=client):
            result = await _provider().generate_image("a room", opts)

        assert client.post.call_count == 1
        body = client.post.call_args[1]["json"]
        assert body["n"] == 3
        assert "quality" not in body
        assert len(result.images) == 3

    @pytest.mark.asyncio
    async def test_short_batch_topped_up(self):
        client = mock_client(post=[
            mock_response(200, _images("a", "b")),
            mock_response(200, _images("c")),
        ])
        opts = GenerationOptions(model="dall-e-2", num_outputs=3)
        with patch("inndesign.providers.base.httpx.AsyncClient", return_value=client):
            result = await _provider().generate_image("a room", opts)
        assert result.images == ("a", "b", "c")
        assert client.post.call_args_list[1][1]["json"]["n"] == 1

    @pytest.mark.asyncio
    async def test_missing_images_raise(self):
        client = mock_client(post=[mock_response(200, {"data": []})])
        opts = GenerationOptions(model="dall-e-3", num_outputs=1)
        with patch("inndesign.providers.base.httpx.AsyncClient", return_value=client):
            with pytest.raises(ProviderError):
                await _provider().generate_image("a room", opts)

    @pytest.mark.asyncio
    async def test_api_error_raises_with_code(self):
        client = mock_client(post=[
            mock_response(400, {"error": {"message": "Your request was rejected", "code": "content_policy_violation"}}),
        ])
        with patch("inndesign.providers.base.httpx.AsyncClient", return_value=client):
            with pytest.raises(ProviderError) as exc_info:
                await _provider().generate_image("a room", GenerationOptions(model="dall-e-3"))
        assert exc_info.value.status_code == 400
        assert exc_info.value.code == "content_policy_violation"
        assert exc_info.value.message == "Your request was rejected"


# --- is_available ---

class TestIsAvailable:
    @pytest.mark.asyncio
    async def test_ok(self):
        client = mock_client(get=[mock_response(200, {"data": []})])
        with patch("inndesign.providers.base.httpx.AsyncClient", return_value=client):
            assert await _provider().is_available() is True
        assert client.get.call_args[0][0] == "https://api.openai.com/v1/models"

    @pytest.mark.asyncio
    async def test_unauthorized(self):
        client = mock_client(get=[mock_response(401)])
        with patch("inndesign.providers.base.httpx.AsyncClient", return_value=client):
            assert await _provider().is_available() is False

    @pytest.mark.asyncio
    async def test_network_error_never_raises(self):
        client = mock_client()
        client.get = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch("inndesign.providers.base.httpx.AsyncClient", return_value=client):
            assert await _provider().is_available() is False


# --- tuning / pricing ---

class TestTuning:
    def test_defaults(self):
        opts = _provider().default_options()
        assert opts.model == "dall-e-3"
        assert opts.num_outputs == 1

    @pytest.mark.parametrize("style,quality,look", [
        ("modern", "hd", "natural"),
        ("bohemian", "standard", "vivid"),
        ("scandinavian", "standard", "natural"),
        ("rustic", "standard", "natural"),
    ])
    def test_interior_design_options(self, style, quality, look):
        opts = _provider().interior_design_options(style)
        assert opts.quality == quality
        assert opts.style == look

    def test_supports_model(self):
        provider = _provider()
        assert provider.supports_model("dall-e-2")
        assert not provider.supports_model("gpt-image-1")

    def test_base_url_override(self):
        provider = OpenAIProvider(ProviderConfig(api_key="k", base_url="https://proxy.local/v1/"))
        assert provider.base_url == "https://proxy.local/v1"
