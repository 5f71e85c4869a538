"""Anthropic Messages API adapter over ``httpx``."""

from __future__ import annotations

import base64
from typing import Any

import httpx

from facility_intake.core.types import (
    LLMRequest,
    LLMResponse,
    ProviderName,
    TokenUsage,
)
from facility_intake.exceptions import FailureClass, ProviderError

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4_096


class AnthropicAdapter:
    """Posts to the Messages endpoint with a shared async client."""

    name = ProviderName.ANTHROPIC

    def __init__(
        self,
        api_key: str,
        *,
        client: httpx.AsyncClient | None = None,
        url: str = ANTHROPIC_URL,
    ) -> None:
        self._api_key = api_key
        self._url = url
        # The router enforces its own timeout; this one only guards the socket.
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(300.0))

    def _payload(self, request: LLMRequest, model: str) -> dict[str, Any]:
        content: list[dict[str, Any]] = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image.mime_type,
                    "data": base64.b64encode(image.data).decode("ascii"),
                },
            }
            for image in request.images
        ]
        if request.prompt:
            content.append({"type": "text", "text": request.prompt})
        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
            "messages": [{"role": "user", "content": content}],
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        return payload

    async def complete(self, request: LLMRequest, *, model: str) -> LLMResponse:
        provider = self.name.value
        try:
            response = await self._client.post(
                self._url,
                json=self._payload(request, model),
                headers={
                    "x-api-key": self._api_key,
                    "anthropic-version": ANTHROPIC_VERSION,
                    "content-type": "application/json",
                },
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ProviderError(
                provider, "request timed out", failure_class=FailureClass.TIMEOUT
            ) from e
        except httpx.HTTPStatusError as e:
            raise ProviderError.from_status(
                provider, e.response.status_code, _error_message(e.response)
            ) from e
        except httpx.TransportError as e:
            raise ProviderError(
                provider,
                f"transport error: {e}",
                failure_class=FailureClass.SERVER_ERROR,
            ) from e

        body = response.json()
        text = "".join(
            block.get("text", "")
            for block in body.get("content", [])
            if block.get("type") == "text"
        )
        usage = body.get("usage", {})
        return LLMResponse(
            content=text,
            provider=self.name,
            model=body.get("model", model),
            usage=TokenUsage(
                input_tokens=int(usage.get("input_tokens", 0)),
                output_tokens=int(usage.get("output_tokens", 0)),
            ),
            finish_reason=body.get("stop_reason"),
        )

    async def aclose(self) -> None:
        await self._client.aclose()


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return f"HTTP {response.status_code}: {error['message']}"
    return f"HTTP {response.status_code}"
