"""Tests for the chat-completion image provider."""
import asyncio
import json

import httpx
import pytest

from conftest import PNG_BASE64
from selfie_generator.exceptions import (
    PROVIDER_CONFIG_INVALID,
    PROVIDER_HTTP_FAILED,
    PROVIDER_PARSE_ERROR,
    PROVIDER_TIMEOUT,
    ProviderError,
)
from selfie_generator.openai_compatible_client import OpenAICompatibleClient, extract_chat_image

DATA_URL = f"data:image/png;base64,{PNG_BASE64}"
CONFIG = {"apiKey": "sk-test", "baseUrl": "https://llm.example.com/v1", "model": "gemini-image"}


def chat_completion(content: str) -> dict:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 0,
        "model": "gemini-image",
        "choices": [
            {"index": 0, "finish_reason": "stop", "message": {"role": "assistant", "content": content}},
        ],
    }


class TestExtractChatImage:
    def test_markdown_image_in_message(self) -> None:
        payload = chat_completion("Here you go ![selfie](https://img.example.com/c.png)")
        assert extract_chat_image(payload) == "https://img.example.com/c.png"

    def test_images_array_in_message(self) -> None:
        payload = {"choices": [{"message": {"content": "", "images": [{"image_url": {"url": DATA_URL}}]}}]}
        assert extract_chat_image(payload) == DATA_URL

    def test_plain_text_has_no_image(self) -> None:
        assert extract_chat_image(chat_completion("Sorry, I cannot draw that.")) is None


class TestOpenAICompatibleClient:
    """Requests go through the openai SDK over an injected httpx client."""

    def test_chat_request_and_image(self, make_request, recording_transport) -> None:
        transport = recording_transport(lambda request: httpx.Response(
            200,
            json=chat_completion("![selfie](https://img.example.com/c.png)"),
            headers={"x-request-id": "oa-1"},
        ))
        client = OpenAICompatibleClient("gemini", CONFIG, transport.client())

        result = asyncio.run(client.generate(make_request()))

        assert result.image_url == "https://img.example.com/c.png"
        assert result.request_id == "oa-1"
        sent = transport.requests[0]
        assert str(sent.url) == "https://llm.example.com/v1/chat/completions"
        assert sent.headers["authorization"] == "Bearer sk-test"
        body = json.loads(sent.content)
        assert body["model"] == "gemini-image"
        assert body["messages"] == [{
            "role": "user",
            "content": [
                {"type": "text", "text": "selfie at the beach"},
                {"type": "image_url", "image_url": {"url": DATA_URL}},
            ],
        }]

    def test_extra_body_is_forwarded(self, make_request, recording_transport) -> None:
        transport = recording_transport(lambda request: httpx.Response(
            200, json=chat_completion("https://img.example.com/c.png"),
        ))
        config = {**CONFIG, "extraBody": {"modalities": ["image", "text"], "prompt": "override prompt"}}
        client = OpenAICompatibleClient("gemini", config, transport.client())

        asyncio.run(client.generate(make_request()))

        body = json.loads(transport.requests[0].content)
        assert body["modalities"] == ["image", "text"]
        assert "prompt" not in body
        assert body["messages"][0]["content"][0] == {"type": "text", "text": "override prompt"}

    def test_status_error_mapping(self, make_request, recording_transport) -> None:
        transport = recording_transport(lambda request: httpx.Response(
            503, json={"error": {"message": "overloaded"}}, headers={"x-request-id": "oa-503"},
        ))
        client = OpenAICompatibleClient("gemini", CONFIG, transport.client())

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(client.generate(make_request()))
        assert exc_info.value.code == PROVIDER_HTTP_FAILED
        assert exc_info.value.transient is True
        assert exc_info.value.request_id == "oa-503"
        assert exc_info.value.details["status"] == 503

    def test_client_error_is_not_transient(self, make_request, recording_transport) -> None:
        transport = recording_transport(lambda request: httpx.Response(400, json={"error": {"message": "bad"}}))
        client = OpenAICompatibleClient("gemini", CONFIG, transport.client())

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(client.generate(make_request()))
        assert exc_info.value.transient is False

    def test_timeout_mapping(self, make_request, recording_transport) -> None:
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = OpenAICompatibleClient("gemini", CONFIG, recording_transport(handler).client())
        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(client.generate(make_request()))
        assert exc_info.value.code == PROVIDER_TIMEOUT
        assert exc_info.value.transient is True

    def test_connection_error_mapping(self, make_request, recording_transport) -> None:
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = OpenAICompatibleClient("gemini", CONFIG, recording_transport(handler).client())
        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(client.generate(make_request()))
        assert exc_info.value.code == PROVIDER_HTTP_FAILED
        assert exc_info.value.transient is True

    def test_reply_without_image(self, make_request, recording_transport) -> None:
        transport = recording_transport(lambda request: httpx.Response(200, json=chat_completion("no picture today")))
        client = OpenAICompatibleClient("gemini", CONFIG, transport.client())

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(client.generate(make_request()))
        assert exc_info.value.code == PROVIDER_PARSE_ERROR

    def test_env_credentials(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OPENAI_API_KEY", "env-key")
        monkeypatch.setenv("OPENAI_BASE_URL", "https://env.example.com/v1")
        client = OpenAICompatibleClient("openai", {})
        assert client.api_key == "env-key"
        assert client.base_url == "https://env.example.com/v1"
        assert client.model == "gpt-image-1.5"

    def test_missing_api_key(self) -> None:
        with pytest.raises(ProviderError) as exc_info:
            OpenAICompatibleClient("openai", {})
        assert exc_info.value.code == PROVIDER_CONFIG_INVALID
