"""Task-based routing across model-service providers.

For each request the router looks up the task's routing rule, then walks the
provider chain (primary first, then fallbacks in order). Within a provider,
transient failures are retried a fixed number of times with a fixed delay;
every attempt passes through that provider's concurrency gate and rate
limiter and is bounded by its timeout. The first success is returned. When
the chain is exhausted an :class:`AllProvidersFailedError` lists every
provider tried and why it failed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
import copy
import dataclasses
import logging
import time
from typing import Any

from facility_intake.config.routing import (
    DEFAULT_PROVIDER_CONFIGS,
    DEFAULT_ROUTING_RULES,
)
from facility_intake.config.types import FrozenConfig
from facility_intake.core.types import (
    LLMRequest,
    LLMResponse,
    ProviderConfig,
    ProviderName,
    RoutingRule,
    TaskType,
)
from facility_intake.exceptions import (
    AllProvidersFailedError,
    FailureClass,
    ProviderError,
    RoutingError,
)
from facility_intake.router.adapters import ProviderAdapter, build_adapters
from facility_intake.router.circuit import CircuitBreaker, CircuitState
from facility_intake.router.limits import Clock, ProviderGate, Sleep
from facility_intake.router.metrics import ProviderMetrics
from facility_intake.telemetry import TelemetryContext, TelemetryContextProtocol

log = logging.getLogger(__name__)

# --- Telemetry scopes/keys ---
T_ROUTE = "router.route"
T_ATTEMPT = "router.attempt"
T_RETRY = "router.retry"
T_FALLBACK = "router.fallback"


def apply_rule_defaults(request: LLMRequest, rule: RoutingRule) -> LLMRequest:
    """Fill unset request fields from the routing rule."""
    return dataclasses.replace(
        request,
        max_tokens=request.max_tokens if request.max_tokens is not None else rule.max_tokens,
        temperature=(
            request.temperature if request.temperature is not None else rule.temperature
        ),
        response_format=request.response_format or rule.response_format,
        model=request.model or rule.model,
    )


class LLMRouter:
    """Routes requests to providers with fallback, retries and limits.

    Concurrency gates, rate windows and (optionally) circuit breakers are
    the only mutable state, and all of it is scoped per provider and owned by
    this instance. Construct a fresh router to get fresh counters.
    """

    def __init__(
        self,
        adapters: Mapping[ProviderName, ProviderAdapter],
        *,
        rules: Mapping[TaskType, RoutingRule] | None = None,
        provider_configs: Mapping[ProviderName, ProviderConfig] | None = None,
        telemetry: TelemetryContextProtocol | None = None,
        circuit_breaker: bool = False,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._adapters = dict(adapters)
        self._rules = rules if rules is not None else DEFAULT_ROUTING_RULES
        self._configs = (
            provider_configs if provider_configs is not None else DEFAULT_PROVIDER_CONFIGS
        )
        self._telemetry: TelemetryContextProtocol = telemetry or TelemetryContext()
        self._clock = clock
        self._sleep = sleep
        self._gates: dict[ProviderName, ProviderGate] = {}
        self._metrics: dict[ProviderName, ProviderMetrics] = {}
        self._breakers: dict[ProviderName, CircuitBreaker] = {}
        for name in self._adapters:
            if name not in self._configs:
                raise ValueError(f"No provider configuration for {name.value}")
            self._gates[name] = ProviderGate(self._configs[name], clock=clock, sleep=sleep)
            self._metrics[name] = ProviderMetrics(provider=name.value)
            if circuit_breaker:
                self._breakers[name] = CircuitBreaker(name.value, clock=clock)

    @classmethod
    def from_config(cls, config: FrozenConfig, **kwargs: Any) -> LLMRouter:
        """Build a router with adapters for every provider the config enables."""
        kwargs.setdefault("circuit_breaker", config.circuit_breaker)
        return cls(build_adapters(config), **kwargs)

    # --- Public API ---

    async def route(self, request: LLMRequest) -> LLMResponse:
        """Send ``request`` through its task's provider chain.

        Raises:
            RoutingError: If no rule exists for the task type.
            AllProvidersFailedError: If every provider attempted failed.
        """
        rule = self._rules.get(request.task_type)
        if rule is None:
            raise RoutingError(f"No routing rule for task type {request.task_type.value}")
        request = apply_rule_defaults(request, rule)

        errors: list[ProviderError] = []
        with self._telemetry(T_ROUTE, task=request.task_type.value):
            attempted = False
            for provider in rule.chain:
                if not self._is_available(provider) or not self._breaker_allows(provider):
                    continue
                attempted = True
                response = await self._try_provider(provider, request, rule, errors)
                if response is not None:
                    return response

            if not attempted:
                # Nothing in the rule's chain is usable; try anything else.
                for provider in self.available_providers():
                    if provider in rule.chain:
                        continue
                    log.warning(
                        "No provider in chain for %s is available; trying %s",
                        request.task_type.value,
                        provider.value,
                    )
                    response = await self._try_provider(provider, request, rule, errors)
                    if response is not None:
                        return response

        raise AllProvidersFailedError(request.task_type.value, errors)

    def available_providers(self) -> list[ProviderName]:
        """Providers with an adapter and an enabled configuration."""
        return [p for p in ProviderName if self._is_available(p)]

    def provider_chain(self, task_type: TaskType) -> tuple[ProviderName, ...]:
        """The providers that would currently be tried for ``task_type``."""
        rule = self._rules.get(task_type)
        if rule is None:
            return ()
        return tuple(
            p
            for p in rule.chain
            if self._is_available(p)
            and (p not in self._breakers or self._breakers[p].state is not CircuitState.OPEN)
        )

    def routing_rules(self) -> Mapping[TaskType, RoutingRule]:
        return self._rules

    def with_route(
        self,
        task_type: TaskType,
        primary: ProviderName,
        fallbacks: tuple[ProviderName, ...] = (),
    ) -> LLMRouter:
        """Return a router using a different chain for ``task_type``.

        The returned router shares this router's gates and metrics, so
        per-provider limits still hold across both.
        """
        base = self._rules.get(task_type) or RoutingRule(task_type, primary)
        rules = dict(self._rules)
        rules[task_type] = dataclasses.replace(base, primary=primary, fallbacks=fallbacks)
        derived = copy.copy(self)
        derived._rules = rules
        return derived

    def metrics(self) -> dict[str, dict[str, Any]]:
        """Snapshot of per-provider counters."""
        out: dict[str, dict[str, Any]] = {}
        for name, m in self._metrics.items():
            snap = m.snapshot()
            gate = self._gates[name]
            snap["in_flight"] = gate.in_flight
            snap["requests_last_minute"] = gate.limiter.recent_requests
            if name in self._breakers:
                snap["circuit"] = self._breakers[name].state.value
            out[name.value] = snap
        return out

    async def health_check(self) -> dict[str, bool]:
        """Send a minimal request to every available provider."""
        probe = LLMRequest(
            task_type=TaskType.DOCUMENT_ANALYSIS, prompt="ping", max_tokens=8
        )
        results: dict[str, bool] = {}
        for provider in self.available_providers():
            try:
                await self._attempt(provider, probe, self._configs[provider].default_model)
            except ProviderError as e:
                log.info("Health check failed for %s: %s", provider.value, e.message)
                results[provider.value] = False
            else:
                results[provider.value] = True
        return results

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            closer = getattr(adapter, "aclose", None)
            if closer is not None:
                await closer()

    # --- Internal helpers ---

    def _is_available(self, provider: ProviderName) -> bool:
        config = self._configs.get(provider)
        return provider in self._adapters and config is not None and config.enabled

    def _breaker_allows(self, provider: ProviderName) -> bool:
        breaker = self._breakers.get(provider)
        if breaker is None or breaker.allow():
            return True
        log.info("Skipping %s: circuit open", provider.value)
        return False

    def _model_for(
        self, provider: ProviderName, request: LLMRequest, rule: RoutingRule
    ) -> str:
        # Model overrides name a specific provider's model, so only the
        # primary honors them.
        if provider == rule.primary and request.model:
            return request.model
        return self._configs[provider].default_model

    async def _try_provider(
        self,
        provider: ProviderName,
        request: LLMRequest,
        rule: RoutingRule,
        errors: list[ProviderError],
    ) -> LLMResponse | None:
        breaker = self._breakers.get(provider)
        probing = breaker is not None and breaker.state is CircuitState.HALF_OPEN
        try:
            response = await self._call_with_retries(
                provider, request, self._model_for(provider, request, rule)
            )
        except ProviderError as e:
            errors.append(e)
            if breaker is not None and e.failure_class is not FailureClass.MALFORMED_REQUEST:
                breaker.record_failure()
            log.warning(
                "Provider %s failed for %s (%s): %s",
                provider.value,
                request.task_type.value,
                e.failure_class.value,
                e.message,
            )
            self._telemetry.count(T_FALLBACK, provider=provider.value)
            return None
        finally:
            # A half-open call that ends without a verdict (malformed request,
            # cancellation) hands the slot to the next caller.
            if probing:
                breaker.release_half_open_slot()
        if breaker is not None:
            breaker.record_success()
        if errors:
            log.info(
                "Request for %s served by fallback %s after %d failed provider(s)",
                request.task_type.value,
                provider.value,
                len(errors),
            )
        return response

    async def _call_with_retries(
        self, provider: ProviderName, request: LLMRequest, model: str
    ) -> LLMResponse:
        config = self._configs[provider]
        attempts = config.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await self._attempt(provider, request, model)
            except ProviderError as e:
                if not e.retryable or attempt == attempts:
                    raise
                self._metrics[provider].retries += 1
                self._telemetry.count(T_RETRY, provider=provider.value)
                log.warning(
                    "Provider %s attempt %d/%d failed (%s); retrying in %.1fs",
                    provider.value,
                    attempt,
                    attempts,
                    e.failure_class.value,
                    config.retry_delay,
                )
                await self._sleep(config.retry_delay)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _attempt(
        self, provider: ProviderName, request: LLMRequest, model: str
    ) -> LLMResponse:
        config = self._configs[provider]
        adapter = self._adapters[provider]
        metrics = self._metrics[provider]
        async with self._gates[provider].slot():
            start = time.perf_counter()
            try:
                with self._telemetry(T_ATTEMPT, provider=provider.value, model=model):
                    response = await asyncio.wait_for(
                        adapter.complete(request, model=model), timeout=config.timeout
                    )
            except TimeoutError as e:
                error = ProviderError(
                    provider.value,
                    f"timed out after {config.timeout:g}s",
                    failure_class=FailureClass.TIMEOUT,
                )
                metrics.record_failure(error.message)
                raise error from e
            except ProviderError as e:
                metrics.record_failure(e.message)
                raise
            except Exception as e:
                log.error("Adapter %s raised unexpectedly", provider.value, exc_info=True)
                error = ProviderError(
                    provider.value,
                    f"adapter error: {e}",
                    failure_class=FailureClass.UNAVAILABLE,
                )
                metrics.record_failure(error.message)
                raise error from e
        latency_ms = (time.perf_counter() - start) * 1000
        response = dataclasses.replace(response, latency_ms=latency_ms)
        metrics.record_success(response)
        return response
