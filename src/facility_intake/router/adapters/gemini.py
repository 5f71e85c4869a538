"""Google Gemini adapter built on the ``google-genai`` SDK."""

from __future__ import annotations

from google import genai
from google.genai import errors as genai_errors
from google.genai import types
import httpx

from facility_intake.core.types import (
    LLMRequest,
    LLMResponse,
    ProviderName,
    TokenUsage,
)
from facility_intake.exceptions import FailureClass, ProviderError


class GeminiAdapter:
    """Calls ``models.generate_content`` on the async client."""

    name = ProviderName.GEMINI

    def __init__(self, api_key: str, *, client: genai.Client | None = None) -> None:
        self._client = client or genai.Client(api_key=api_key)

    async def complete(self, request: LLMRequest, *, model: str) -> LLMResponse:
        parts: list[types.Part] = [
            types.Part.from_bytes(data=image.data, mime_type=image.mime_type)
            for image in request.images
        ]
        if request.prompt:
            parts.append(types.Part.from_text(text=request.prompt))

        config = types.GenerateContentConfig(
            system_instruction=request.system_prompt,
            temperature=request.temperature,
            max_output_tokens=request.max_tokens,
            response_mime_type=(
                "application/json" if request.response_format == "json" else "text/plain"
            ),
        )
        try:
            response = await self._client.aio.models.generate_content(
                model=model, contents=parts, config=config
            )
        except genai_errors.APIError as e:
            raise ProviderError.from_status(self.name.value, e.code, str(e)) from e
        except httpx.TimeoutException as e:
            raise ProviderError(
                self.name.value, "request timed out", failure_class=FailureClass.TIMEOUT
            ) from e
        except httpx.TransportError as e:
            raise ProviderError(
                self.name.value,
                f"transport error: {e}",
                failure_class=FailureClass.SERVER_ERROR,
            ) from e

        usage = response.usage_metadata
        finish = None
        if response.candidates:
            reason = response.candidates[0].finish_reason
            if reason is not None:
                finish = str(getattr(reason, "value", reason))
        return LLMResponse(
            content=response.text or "",
            provider=self.name,
            model=model,
            usage=TokenUsage(
                input_tokens=(usage.prompt_token_count or 0) if usage else 0,
                output_tokens=(usage.candidates_token_count or 0) if usage else 0,
            ),
            finish_reason=finish,
        )
