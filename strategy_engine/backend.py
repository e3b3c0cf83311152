"""
Inference backend boundary.

The engine talks to models only through InferenceBackend. Two adapters
ship with it: OllamaBackend speaks Ollama's native /api/chat over httpx,
and OpenAICompatibleBackend uses the openai SDK against any
OpenAI-compatible endpoint (including Ollama's /v1). Both normalize
failures to BackendError.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import httpx
import openai

from .config import BackendConfig
from .types import BackendError

logger = logging.getLogger(__name__)


@dataclass
class Completion:
    """A non-streamed chat completion."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: float = 0.0
    stop_reason: str | None = None

    @property
    def tokens_used(self) -> int:
        return self.input_tokens + self.output_tokens


@runtime_checkable
class InferenceBackend(Protocol):
    """Chat-completion service the engine routes requests to."""

    async def chat(
        self,
        model: str,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> Completion: ...

    def stream(
        self,
        model: str,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]: ...


class OllamaBackend:
    """Ollama native chat API client."""

    def __init__(self, base_url: str = "http://localhost:11434", timeout_s: float = 300.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout_s)
        return self._client

    def _payload(
        self, model: str, messages: list[dict[str, str]], temperature: float, max_tokens: int, stream: bool
    ) -> dict:
        return {
            "model": model,
            "messages": messages,
            "stream": stream,
            "options": {
                "num_predict": max_tokens,
                "temperature": temperature,
            },
        }

    async def chat(
        self,
        model: str,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> Completion:
        payload = self._payload(model, messages, temperature, max_tokens, stream=False)
        start = time.perf_counter()
        try:
            response = await self.client.post("/api/chat", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise BackendError(e.response.status_code, e.response.text[:500], model) from e
        except httpx.RequestError as e:
            raise BackendError(0, f"{type(e).__name__}: {e}", model) from e
        except ValueError as e:
            raise BackendError(response.status_code, f"invalid JSON response: {e}", model) from e
        if not isinstance(data, dict):
            raise BackendError(response.status_code, "invalid JSON response: expected an object", model)

        return Completion(
            content=data.get("message", {}).get("content", ""),
            model=data.get("model", model),
            input_tokens=data.get("prompt_eval_count", 0),
            output_tokens=data.get("eval_count", 0),
            latency_ms=(time.perf_counter() - start) * 1000,
            stop_reason=data.get("done_reason"),
        )

    async def stream(
        self,
        model: str,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]:
        payload = self._payload(model, messages, temperature, max_tokens, stream=True)
        try:
            async with self.client.stream("POST", "/api/chat", json=payload) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    raise BackendError(response.status_code, body.decode(errors="replace")[:500], model)
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        chunk = json.loads(line)
                    except ValueError as e:
                        raise BackendError(
                            response.status_code, f"invalid JSON in stream: {e}", model
                        ) from e
                    if not isinstance(chunk, dict):
                        raise BackendError(
                            response.status_code, "invalid JSON in stream: expected an object", model
                        )
                    if "error" in chunk:
                        raise BackendError(500, chunk["error"], model)
                    text = chunk.get("message", {}).get("content", "")
                    if text:
                        yield text
                    if chunk.get("done"):
                        return
        except httpx.RequestError as e:
            raise BackendError(0, f"{type(e).__name__}: {e}", model) from e

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class OpenAICompatibleBackend:
    """Client for any OpenAI-compatible chat completions endpoint."""

    def __init__(self, base_url: str, api_key: str = "ollama", timeout_s: float = 300.0):
        self.base_url = base_url
        self.client = openai.AsyncOpenAI(base_url=base_url, api_key=api_key, timeout=timeout_s)

    async def chat(
        self,
        model: str,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> Completion:
        start = time.perf_counter()
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.APIStatusError as e:
            raise BackendError(e.status_code, e.message, model) from e
        except openai.APIConnectionError as e:
            raise BackendError(0, str(e), model) from e

        return Completion(
            content=response.choices[0].message.content or "",
            model=response.model or model,
            input_tokens=response.usage.prompt_tokens if response.usage else 0,
            output_tokens=response.usage.completion_tokens if response.usage else 0,
            latency_ms=(time.perf_counter() - start) * 1000,
            stop_reason=response.choices[0].finish_reason,
        )

    async def stream(
        self,
        model: str,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]:
        try:
            stream = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
                stream=True,
            )
            async for chunk in stream:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except openai.APIStatusError as e:
            raise BackendError(e.status_code, e.message, model) from e
        except openai.APIConnectionError as e:
            raise BackendError(0, str(e), model) from e

    async def aclose(self) -> None:
        await self.client.close()


def create_backend(config: BackendConfig | None = None) -> OllamaBackend | OpenAICompatibleBackend:
    """Build the backend adapter named by the configuration."""
    config = config or BackendConfig()
    if config.kind == "openai":
        base_url = config.base_url.rstrip("/")
        if not base_url.endswith("/v1"):
            base_url = f"{base_url}/v1"
        logger.info("Using OpenAI-compatible backend at %s", base_url)
        return OpenAICompatibleBackend(base_url, api_key=config.api_key, timeout_s=config.timeout_s)
    logger.info("Using Ollama backend at %s", config.base_url)
    return OllamaBackend(config.base_url, timeout_s=config.timeout_s)


__all__ = [
    "Completion",
    "InferenceBackend",
    "OllamaBackend",
    "OpenAICompatibleBackend",
    "create_backend",
]
