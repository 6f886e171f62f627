"""Platform notification primitive.

The engine talks to the device's notification facility through the
NotificationPlatform protocol. LocalNotificationPlatform is an in-process
implementation driven by the event loop: requests fire via call_later and
user interaction is simulated with respond().
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

import structlog

from homekeeper.core.clock import Clock, system_clock
from homekeeper.notifications.schemas import NotificationContent

logger = structlog.get_logger()


class PlatformOutcome(str, Enum):
    DELIVERED = "delivered"
    OPENED = "opened"
    DISMISSED = "dismissed"
    ACTION = "action"


ResponseCallback = Callable[..., Awaitable[None]]


@dataclass
class NotificationRequest:
    identifier: str
    content: NotificationContent
    fire_at: datetime
    data: dict[str, Any] = field(default_factory=dict)


class NotificationPlatform(Protocol):
    async def request_permission(self) -> bool: ...

    async def permission_granted(self) -> bool: ...

    async def schedule_at(
        self, identifier: str, content: NotificationContent, when: datetime, data: dict[str, Any]
    ) -> str: ...

    async def cancel(self, identifier: str) -> None: ...

    async def cancel_all(self) -> None: ...

    async def list_pending(self) -> list[NotificationRequest]: ...

    def on_response(self, callback: ResponseCallback) -> None: ...

    async def close(self) -> None: ...


class LocalNotificationPlatform:
    """Event-loop backed platform.

    Callbacks receive ``(request_id, outcome, at)`` plus an ``action`` keyword
    for ACTION outcomes.
    """

    def __init__(self, clock: Clock | None = None, grant_permission: bool = True) -> None:
        self._clock = clock or system_clock()
        self._grant_permission = grant_permission
        self._granted = False
        self._pending: dict[str, NotificationRequest] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._callbacks: list[ResponseCallback] = []
        self._dispatches: set[asyncio.Task[None]] = set()
        self.delivered: list[NotificationRequest] = []

    async def request_permission(self) -> bool:
        self._granted = self._grant_permission
        if not self._granted:
            logger.warning("notification_permission_denied")
        return self._granted

    async def permission_granted(self) -> bool:
        return self._granted

    async def schedule_at(
        self, identifier: str, content: NotificationContent, when: datetime, data: dict[str, Any]
    ) -> str:
        if identifier in self._pending:
            self._cancel_timer(identifier)
        self._pending[identifier] = NotificationRequest(identifier, content, when, dict(data))
        delay = max(0.0, (when - self._clock()).total_seconds())
        loop = asyncio.get_running_loop()
        self._timers[identifier] = loop.call_later(delay, self._fire, identifier)
        return identifier

    async def cancel(self, identifier: str) -> None:
        self._cancel_timer(identifier)
        self._pending.pop(identifier, None)

    async def cancel_all(self) -> None:
        for identifier in list(self._timers):
            self._cancel_timer(identifier)
        self._pending.clear()

    async def list_pending(self) -> list[NotificationRequest]:
        return sorted(self._pending.values(), key=lambda request: request.fire_at)

    def on_response(self, callback: ResponseCallback) -> None:
        self._callbacks.append(callback)

    async def deliver(self, identifier: str) -> None:
        """Fire a pending request now instead of waiting for its timer."""
        self._cancel_timer(identifier)
        request = self._pending.pop(identifier, None)
        if request is None:
            logger.warning("platform_request_not_pending", identifier=identifier)
            return
        self.delivered.append(request)
        await self._notify(identifier, PlatformOutcome.DELIVERED)

    async def respond(self, identifier: str, outcome: PlatformOutcome, action: str | None = None) -> None:
        """Simulate the user opening, dismissing or acting on a notification."""
        await self._notify(identifier, outcome, action=action)

    async def close(self) -> None:
        for identifier in list(self._timers):
            self._cancel_timer(identifier)
        if self._dispatches:
            await asyncio.gather(*self._dispatches, return_exceptions=True)

    def _cancel_timer(self, identifier: str) -> None:
        timer = self._timers.pop(identifier, None)
        if timer is not None:
            timer.cancel()

    def _fire(self, identifier: str) -> None:
        self._timers.pop(identifier, None)
        request = self._pending.pop(identifier, None)
        if request is None:
            return
        self.delivered.append(request)
        task = asyncio.create_task(self._notify(identifier, PlatformOutcome.DELIVERED))
        self._dispatches.add(task)
        task.add_done_callback(self._dispatches.discard)

    async def _notify(self, identifier: str, outcome: PlatformOutcome, action: str | None = None) -> None:
        at = self._clock()
        for callback in self._callbacks:
            try:
                await callback(identifier, outcome, at, action=action)
            except Exception:
                logger.exception("platform_callback_failed", identifier=identifier, outcome=outcome.value)
