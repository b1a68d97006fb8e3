from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from tote.backends.base import (
    BackendExecutionError,
    BackendTimeoutError,
    ChatMessage,
    ModelGateway,
    ModelResponse,
    ToolDeclaration,
)

LOGGER = logging.getLogger(__name__)

BackendEventHook = Callable[[dict[str, Any]], None]

# Only the most recent failures make it into the final error message.
ERROR_SUMMARY_LIMIT = 6


@dataclass(slots=True)
class RetryPolicy:
    max_retries: int = 1
    backoff_seconds: float = 0.5
    timeout_seconds: float = 90.0

    def delay_for(self, attempt: int) -> float:
        return self.backoff_seconds * (2 ** (attempt - 1))


class ResilientBackend(ModelGateway):
    """Puts a timeout, retries and a fallback gateway in front of a primary gateway.

    Each gateway gets ``max_retries + 1`` attempts. A non-retriable
    ``BackendExecutionError`` moves straight on to the fallback. When the
    fallback name equals the primary name only the primary is tried.
    """

    def __init__(
        self,
        primary_name: str,
        primary_backend: ModelGateway,
        fallback_name: str,
        fallback_backend: ModelGateway,
        retry_policy: RetryPolicy,
        event_hook: BackendEventHook | None = None,
    ) -> None:
        self.primary_name = primary_name
        self.primary_backend = primary_backend
        self.fallback_name = fallback_name
        self.fallback_backend = fallback_backend
        self.retry_policy = retry_policy
        self.event_hook = event_hook

    def _emit(self, event: str, **fields: Any) -> None:
        if self.event_hook:
            self.event_hook({"event": event, **fields})

    def _candidates(self) -> list[tuple[str, ModelGateway]]:
        candidates = [(self.primary_name, self.primary_backend)]
        if self.fallback_name != self.primary_name:
            candidates.append((self.fallback_name, self.fallback_backend))
        return candidates

    async def _complete_once(
        self,
        name: str,
        gateway: ModelGateway,
        messages: list[ChatMessage],
        tools: list[ToolDeclaration] | None,
    ) -> ModelResponse:
        timeout = self.retry_policy.timeout_seconds
        try:
            return await asyncio.wait_for(gateway.complete(messages, tools), timeout=timeout)
        except TimeoutError as exc:
            raise BackendTimeoutError(
                f"Model request timed out after {timeout:.1f}s",
                backend=name,
                retriable=True,
            ) from exc

    async def complete(
        self,
        messages: list[ChatMessage],
        tools: list[ToolDeclaration] | None = None,
    ) -> ModelResponse:
        failures: list[str] = []
        for name, gateway in self._candidates():
            if name != self.primary_name:
                self._emit("backend_failover_start", backend=name, errors=len(failures))
            for attempt in range(self.retry_policy.max_retries + 1):
                if attempt:
                    delay = self.retry_policy.delay_for(attempt)
                    self._emit("backend_retry", backend=name, attempt=attempt, delay_seconds=delay)
                    await asyncio.sleep(delay)
                try:
                    response = await self._complete_once(name, gateway, messages, tools)
                except Exception as exc:
                    retriable = exc.retriable if isinstance(exc, BackendExecutionError) else True
                    failures.append(f"{name}[{attempt}]: {exc}")
                    LOGGER.debug("Gateway %s attempt %d failed: %s", name, attempt, exc)
                    self._emit(
                        "backend_attempt_failed",
                        backend=name,
                        attempt=attempt,
                        error=str(exc),
                        retriable=retriable,
                    )
                    if not retriable:
                        break
                    continue
                if name != self.primary_name:
                    self._emit("backend_fallback_success", backend=name, attempt=attempt)
                return response

        summary = "; ".join(failures[-ERROR_SUMMARY_LIMIT:])
        raise BackendExecutionError(
            f"All backend attempts failed. {summary}",
            retriable=False,
        )
