"""
Completion provider adapter.

`CompletionProvider.stream()` turns a conversation into a finite stream of
text fragments. Every call is independent: the only object shared between
calls is the HTTP connection pool.
"""

from __future__ import annotations

import json
import time
from typing import Any, AsyncIterator, Callable, Protocol, Sequence

import httpx
import structlog

from parley.llm.errors import ProviderError, ProviderErrorKind
from parley.llm.providers import GenerationParams, ProviderConfig
from parley.sessions.models import Message

logger = structlog.get_logger()

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"
_ERROR_BODY_LIMIT = 500


class CompletionProvider(Protocol):
    def stream(
        self,
        history: Sequence[Message],
        prompt: str,
        model: str,
        *,
        params: GenerationParams | None = None,
    ) -> AsyncIterator[str]: ...

    async def aclose(self) -> None: ...


def extract_fragment(chunk: dict[str, Any]) -> str:
    """Pull the text out of one chat-completions chunk.

    Streaming chunks carry `choices[0].delta.content`. Some local servers send
    whole messages instead (`choices[0].message.content`). Anything else
    yields an empty string.
    """
    choices = chunk.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    choice = choices[0]
    for key in ("delta", "message"):
        part = choice.get(key)
        if isinstance(part, dict) and isinstance(part.get("content"), str):
            return part["content"]
    if isinstance(choice.get("text"), str):
        return choice["text"]
    return ""


def build_messages(history: Sequence[Message], prompt: str) -> list[dict[str, str]]:
    messages = [m.as_prompt() for m in history]
    messages.append({"role": "user", "content": prompt})
    return messages


class OpenAICompatibleProvider:
    """Streams chat completions from an OpenAI-compatible `/chat/completions`.

    Timeouts:
    - connect: `connect_timeout_seconds`
    - each read: `timeout_seconds`
    - whole stream: `timeout_seconds`, checked as chunks arrive
    """

    def __init__(
        self,
        config: ProviderConfig,
        *,
        client: httpx.AsyncClient | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._monotonic = monotonic
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout_seconds, connect=config.connect_timeout_seconds),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def stream(
        self,
        history: Sequence[Message],
        prompt: str,
        model: str,
        *,
        params: GenerationParams | None = None,
    ) -> AsyncIterator[str]:
        params = params or self.config.generation
        payload = {
            "model": model,
            "messages": build_messages(history, prompt),
            "temperature": params.temperature,
            "max_tokens": params.max_tokens,
            "stream": True,
        }
        return self._stream(payload)

    async def _stream(self, payload: dict[str, Any]) -> AsyncIterator[str]:
        deadline = self._monotonic() + self.config.timeout_seconds
        model = payload["model"]
        try:
            async with self._client.stream(
                "POST",
                "/chat/completions",
                json=payload,
                headers=self.config.headers,
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise _status_error(response.status_code, body, model)

                content_type = response.headers.get("content-type", "")
                if content_type.startswith("application/json"):
                    chunk = _parse_chunk((await response.aread()).decode("utf-8", errors="replace"), model)
                    text = extract_fragment(chunk) if chunk else ""
                    if text:
                        yield text
                    return

                async for line in response.aiter_lines():
                    if self._monotonic() > deadline:
                        raise ProviderError(
                            ProviderErrorKind.TIMEOUT,
                            "Completion provider exceeded the response deadline",
                            meta={"model": model},
                        )
                    data = _sse_data(line)
                    if data is None:
                        continue
                    if data == SSE_DONE:
                        return
                    chunk = _parse_chunk(data, model)
                    if chunk is None:
                        continue
                    text = extract_fragment(chunk)
                    if text:
                        yield text
        except httpx.TimeoutException as e:
            logger.warning("Completion provider timed out", model=model, error=str(e))
            raise ProviderError(
                ProviderErrorKind.TIMEOUT,
                "Completion provider timed out",
                meta={"model": model},
            ) from e
        except httpx.TransportError as e:
            logger.warning("Completion provider unreachable", model=model, error=str(e))
            raise ProviderError(
                ProviderErrorKind.UNAVAILABLE,
                "Completion provider is unavailable",
                meta={"model": model},
            ) from e
        except httpx.HTTPError as e:
            logger.warning("Completion provider response could not be read", model=model, error=str(e))
            raise ProviderError(
                ProviderErrorKind.UNAVAILABLE,
                "Completion provider returned an unreadable response",
                meta={"model": model},
            ) from e


def _sse_data(line: str) -> str | None:
    line = line.strip()
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    return line[len(SSE_DATA_PREFIX):].strip()


def _parse_chunk(data: str, model: str) -> dict[str, Any] | None:
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError:
        logger.warning("Skipping malformed provider chunk", model=model, data=data[:200])
        return None
    if not isinstance(chunk, dict):
        return None
    error = chunk.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise ProviderError(
            ProviderErrorKind.REJECTED,
            f"Completion provider returned an error: {message}",
            meta={"model": model},
        )
    return chunk


def _status_error(status_code: int, body: str, model: str) -> ProviderError:
    if status_code in (408, 504):
        kind = ProviderErrorKind.TIMEOUT
    elif status_code == 429 or status_code >= 500:
        kind = ProviderErrorKind.UNAVAILABLE
    else:
        kind = ProviderErrorKind.REJECTED
    logger.warning(
        "Completion provider returned an error status",
        model=model,
        status_code=status_code,
        body=body[:_ERROR_BODY_LIMIT],
    )
    return ProviderError(
        kind,
        f"Completion provider responded with HTTP {status_code}",
        status_code=status_code,
        meta={"model": model},
    )
