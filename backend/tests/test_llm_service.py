import asyncio
import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from app.core.exceptions import UpstreamError, UpstreamTimeoutError
from app.services.llm_service import LLMClient

REQUEST = httpx.Request("POST", "https://api.deepseek.com/v1/chat/completions")
MESSAGES = [{"role": "user", "content": "你好"}]


def make_client(api_key="sk-test", timeout=5.0):
    return LLMClient(api_key=api_key, base_url="https://api.deepseek.com/v1", model="deepseek-chat", timeout=timeout)


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def patch_create(monkeypatch, client, fake):
    monkeypatch.setattr(client._client.chat.completions, "create", fake)


async def test_complete_returns_content_and_forwards_parameters(monkeypatch):
    client = make_client()
    seen = {}

    async def fake_create(**kwargs):
        seen.update(kwargs)
        return completion("行程如下")

    patch_create(monkeypatch, client, fake_create)

    assert await client.complete(MESSAGES, temperature=0.3, max_tokens=1000) == "行程如下"
    assert seen == {"model": "deepseek-chat", "messages": MESSAGES, "temperature": 0.3, "max_tokens": 1000}


async def test_missing_api_key_fails_without_request(monkeypatch):
    client = make_client(api_key="")

    async def fake_create(**kwargs):
        raise AssertionError("should not be called")

    patch_create(monkeypatch, client, fake_create)

    with pytest.raises(UpstreamError) as exc:
        await client.complete(MESSAGES)
    assert exc.value.status_code == 500


async def test_status_error_carries_upstream_body(monkeypatch):
    client = make_client()
    body = {"error": {"message": "Insufficient Balance", "type": "unknown_error"}}

    async def fake_create(**kwargs):
        raise openai.APIStatusError(
            "Insufficient Balance",
            response=httpx.Response(402, request=REQUEST),
            body=body,
        )

    patch_create(monkeypatch, client, fake_create)

    with pytest.raises(UpstreamError) as exc:
        await client.complete(MESSAGES)
    assert not isinstance(exc.value, UpstreamTimeoutError)
    assert "402" in exc.value.message
    assert json.loads(exc.value.detail) == body


async def test_sdk_timeout_maps_to_timeout_error(monkeypatch):
    client = make_client()

    async def fake_create(**kwargs):
        raise openai.APITimeoutError(request=REQUEST)

    patch_create(monkeypatch, client, fake_create)

    with pytest.raises(UpstreamTimeoutError) as exc:
        await client.complete(MESSAGES)
    assert exc.value.status_code == 504


async def test_slow_response_is_cut_off(monkeypatch):
    client = make_client(timeout=0.05)

    async def fake_create(**kwargs):
        await asyncio.sleep(1)
        return completion("太晚了")

    patch_create(monkeypatch, client, fake_create)

    with pytest.raises(UpstreamTimeoutError):
        await client.complete(MESSAGES)


async def test_connection_error_maps_to_upstream_error(monkeypatch):
    client = make_client()

    async def fake_create(**kwargs):
        raise openai.APIConnectionError(request=REQUEST)

    patch_create(monkeypatch, client, fake_create)

    with pytest.raises(UpstreamError) as exc:
        await client.complete(MESSAGES)
    assert not isinstance(exc.value, UpstreamTimeoutError)


@pytest.mark.parametrize("response", [SimpleNamespace(choices=[]), completion(None)])
async def test_malformed_response(monkeypatch, response):
    client = make_client()

    async def fake_create(**kwargs):
        return response

    patch_create(monkeypatch, client, fake_create)

    with pytest.raises(UpstreamError) as exc:
        await client.complete(MESSAGES)
    assert exc.value.message == "大模型响应格式异常"
