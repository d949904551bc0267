"""Ollama provider — local models over the /api/generate endpoint.

One short-lived httpx AsyncClient per call. Non-2xx answers raise
AdvisorError; transport errors propagate as httpx exceptions.
"""

from __future__ import annotations

import logging

import httpx

from botbrain.exceptions import AdvisorError
from botbrain.llm.base import BaseLLMProvider, LLMMessage, LLMResponse

_logger = logging.getLogger(__name__)


class OllamaProvider(BaseLLMProvider):
    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3.1:8b-instruct",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout = timeout
        self._transport = transport

    async def complete(
        self,
        messages: list[LLMMessage],
        system: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.3,
    ) -> LLMResponse:
        # /api/generate takes a single prompt; fold the conversation into it
        prompt = "\n\n".join(m.content for m in messages)
        if system:
            prompt = f"System:\n{system}\n\n{prompt}"

        payload = {
            "model": self._model,
            "prompt": prompt,
            "options": {"temperature": temperature, "num_predict": max_tokens},
            "stream": False,
        }
        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport,
        ) as client:
            try:
                resp = await client.post(f"{self._base_url}/api/generate", json=payload)
                resp.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise AdvisorError(
                    f"Ollama generate failed: {e.response.status_code}"
                ) from e
            data = resp.json()

        _logger.debug("Ollama returned %d chars", len(data.get("response", "")))
        return LLMResponse(
            content=data.get("response") or None,
            stop_reason=data.get("done_reason", ""),
            input_tokens=data.get("prompt_eval_count", 0),
            output_tokens=data.get("eval_count", 0),
        )
