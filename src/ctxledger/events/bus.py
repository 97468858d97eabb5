"""In-process pub/sub event bus for ledger maintenance events."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["LedgerEvent", dict[str, Any]], None | Awaitable[None]]


class LedgerEvent(StrEnum):
    """All event types published by the maintenance engines.

    Typed payload definitions for each event live in
    :mod:`ctxledger.events.payloads`.

    **Payload schemas by event:**

    ``DISSOLVE_PLANNED``, ``DISSOLVE_COMPLETED``
        :class:`~ctxledger.events.payloads.DissolveCompletedPayload`:
        the ``model_dump()`` of a :class:`~ctxledger.models.reports.DissolveReport`.

    ``DISSOLVE_FAILED``
        :class:`~ctxledger.events.payloads.DissolveFailedPayload`:
        ``conversation_id: int``, ``summary_id: str``, ``error: str``

    ``TRANSPLANT_PLANNED``, ``TRANSPLANT_COMPLETED``
        :class:`~ctxledger.events.payloads.TransplantCompletedPayload`:
        the ``model_dump()`` of a :class:`~ctxledger.models.reports.TransplantReport`.

    ``TRANSPLANT_FAILED``
        :class:`~ctxledger.events.payloads.TransplantFailedPayload`:
        ``source_conversation_id: int``, ``target_conversation_id: int``, ``error: str``
    """

    DISSOLVE_PLANNED = "dissolve.planned"
    DISSOLVE_COMPLETED = "dissolve.completed"
    DISSOLVE_FAILED = "dissolve.failed"

    TRANSPLANT_PLANNED = "transplant.planned"
    TRANSPLANT_COMPLETED = "transplant.completed"
    TRANSPLANT_FAILED = "transplant.failed"


class EventBus:
    """
    Simple in-process pub/sub event bus.

    - Sync handlers are called inline within ``publish()``.
    - Async handlers are scheduled via ``asyncio.create_task()`` (fire-and-forget).
    - Handler exceptions are logged but never propagate to the publisher, so a
      broken subscriber cannot turn a committed operation into a reported failure.

    Example::

        bus = EventBus()

        def on_dissolve(event, payload):
            print(f"{payload['summary_id']}: {payload['items_before']} -> {payload['items_after']}")

        bus.subscribe(LedgerEvent.DISSOLVE_COMPLETED, on_dissolve)
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._handlers: dict[LedgerEvent, list[Handler]] = {}
        self._global_handlers: list[Handler] = []
        self._logger = logger or structlog.get_logger("ctxledger.events")

    def subscribe(self, event: LedgerEvent, handler: Handler) -> None:
        """Register a handler for one event type. May be sync or async."""
        self._handlers.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Register a handler for every event type. May be sync or async."""
        self._global_handlers.append(handler)

    def unsubscribe(self, event: LedgerEvent, handler: Handler) -> None:
        """Remove a previously registered handler. No-op if not found."""
        handlers = self._handlers.get(event, [])
        try:
            handlers.remove(handler)
        except ValueError:
            pass

    def publish(self, event: LedgerEvent, payload: dict[str, Any]) -> None:
        """
        Publish an event to all registered handlers.

        Args:
            event: The event type to publish.
            payload: Event-specific data dictionary.
        """
        all_handlers = list(self._handlers.get(event, [])) + list(self._global_handlers)
        for handler in all_handlers:
            try:
                result = handler(event, payload)
                if asyncio.iscoroutine(result):
                    try:
                        loop = asyncio.get_running_loop()
                        _task = loop.create_task(result)  # noqa: RUF006
                    except RuntimeError:
                        # No running event loop; close the coroutine unawaited.
                        result.close()
            except Exception as exc:
                self._logger.error(
                    "event_handler_error",
                    event_type=str(event),
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(exc),
                )
