"""Tests for the Ollama provider, against an in-process transport."""

import httpx
import orjson
import pytest

from botbrain.exceptions import AdvisorError
from botbrain.llm.base import LLMMessage
from botbrain.llm.ollama import OllamaProvider


def _provider(handler) -> OllamaProvider:
    return OllamaProvider(
        base_url="http://ollama.test:11434/",
        model="tiny-model",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_complete_returns_generated_text():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={
            "response": '{"chat": {"smalltalk_rate": 0.03}}',
            "done_reason": "stop",
            "prompt_eval_count": 120,
            "eval_count": 14,
        })

    resp = await _provider(handler).complete(
        [LLMMessage(role="user", content="Improve Alex")],
        system="JSON only",
        max_tokens=256,
        temperature=0.1,
    )

    assert resp.content == '{"chat": {"smalltalk_rate": 0.03}}'
    assert resp.stop_reason == "stop"
    assert resp.input_tokens == 120
    assert resp.output_tokens == 14

    assert str(seen[0].url) == "http://ollama.test:11434/api/generate"
    body = orjson.loads(seen[0].content)
    assert body["model"] == "tiny-model"
    assert body["stream"] is False
    assert body["options"] == {"temperature": 0.1, "num_predict": 256}
    assert body["prompt"].startswith("System:\nJSON only")
    assert body["prompt"].endswith("Improve Alex")


@pytest.mark.asyncio
async def test_empty_response_is_none():
    provider = _provider(lambda request: httpx.Response(200, json={"response": ""}))
    resp = await provider.complete([LLMMessage(role="user", content="hi")])
    assert resp.content is None
    assert resp.input_tokens == 0


@pytest.mark.asyncio
async def test_http_error_raises_advisor_error():
    provider = _provider(lambda request: httpx.Response(500, text="model not loaded"))
    with pytest.raises(AdvisorError, match="500"):
        await provider.complete([LLMMessage(role="user", content="hi")])
