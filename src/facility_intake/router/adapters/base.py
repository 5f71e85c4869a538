"""Provider adapter protocol.

Adapters translate a provider-neutral :class:`LLMRequest` into one SDK call
and translate SDK failures into classified :class:`ProviderError` values.
They never retry or wait; the router owns both.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from facility_intake.core.types import LLMRequest, LLMResponse, ProviderName


@runtime_checkable
class ProviderAdapter(Protocol):
    """One model-service provider."""

    name: ProviderName

    async def complete(self, request: LLMRequest, *, model: str) -> LLMResponse:
        """Send ``request`` to ``model`` and return the completed response.

        Raises:
            ProviderError: For any provider-side failure, classified so the
                router can decide whether to retry.
        """
        ...
