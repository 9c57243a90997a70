"""
Mathboard EventBus: async pub/sub with tiered listener execution.

Purpose
-------
Decouple leaderboard side effects (notifications, analytics, audit) from the
components that produce them. The ranking store, reward distributor and
rollover scheduler publish; anything else subscribes.

Responsibilities
----------------
- Register/unregister listeners with priorities
- Publish events to exact and wildcard ("leaderboard.*") subscribers
- Execute listeners according to tier:
  * CRITICAL / HIGH: sequential, awaited with timeout
  * NORMAL: concurrent (gather), awaited
  * LOW: fire-and-forget background tasks
- Error isolation: one failing listener never blocks the others or the
  publisher

Design Decisions
----------------
- Instance-based, so tests can build a private bus
- Timeouts come from ConfigManager (`event_bus.critical_timeout_seconds`,
  `event_bus.high_timeout_seconds`)
"""

from __future__ import annotations

import asyncio
import fnmatch
import inspect
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from mathboard.core.config.manager import ConfigManager
from mathboard.core.logging.logger import get_logger

logger = get_logger(__name__)

EventPayload = Dict[str, Any]
CallbackType = Union[Callable[[EventPayload], Awaitable[Any]], Callable[[EventPayload], Any]]


class ListenerPriority(Enum):
    """Lower value runs earlier."""

    CRITICAL = 0
    HIGH = 10
    NORMAL = 50
    LOW = 100


@dataclass(slots=True)
class EventListener:
    event_name: str
    callback: CallbackType
    priority: ListenerPriority
    identifier: str
    once: bool = False

    def matches(self, event_name: str) -> bool:
        if self.event_name == event_name:
            return True
        return "*" in self.event_name and fnmatch.fnmatchcase(event_name, self.event_name)


@dataclass
class EventMetrics:
    events_published: int = 0
    listener_invocations: int = 0
    listener_errors: int = 0
    listener_timeouts: int = 0
    per_event: Dict[str, int] = field(default_factory=dict)


class EventBus:
    """
    Async event bus.

    Example
    -------
    >>> bus = EventBus()
    >>> bus.subscribe("leaderboard.reward_awarded", notify_player, priority=ListenerPriority.HIGH)
    >>> await bus.publish("leaderboard.reward_awarded", {"player_id": "p1", "amount": 1000})
    """

    def __init__(
        self,
        critical_timeout: Optional[float] = None,
        high_timeout: Optional[float] = None,
    ) -> None:
        self._listeners: List[EventListener] = []
        self._background_tasks: Set[asyncio.Task[Any]] = set()
        self._metrics = EventMetrics()
        self._critical_timeout = critical_timeout or float(
            ConfigManager.get("event_bus.critical_timeout_seconds", 5.0)
        )
        self._high_timeout = high_timeout or float(
            ConfigManager.get("event_bus.high_timeout_seconds", 10.0)
        )

    # ------------------------------------------------------------------ #
    # Subscription API
    # ------------------------------------------------------------------ #

    def subscribe(
        self,
        event_name: str,
        callback: CallbackType,
        *,
        priority: ListenerPriority = ListenerPriority.NORMAL,
        identifier: Optional[str] = None,
        once: bool = False,
    ) -> str:
        """
        Subscribe a callback to an event name or wildcard pattern.

        Returns
        -------
        str
            The listener identifier (for `unsubscribe`).

        Raises
        ------
        ValueError
            If the callback does not accept exactly one positional argument.
        """
        params = [
            p
            for p in inspect.signature(callback).parameters.values()
            if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
        ]
        if len(params) != 1:
            raise ValueError(
                f"Event listener {getattr(callback, '__name__', callback)!r} "
                "must accept exactly one payload argument"
            )

        listener = EventListener(
            event_name=event_name,
            callback=callback,
            priority=priority,
            identifier=identifier or f"{getattr(callback, '__name__', 'listener')}:{uuid.uuid4().hex[:8]}",
            once=once,
        )
        self._listeners.append(listener)
        self._listeners.sort(key=lambda item: item.priority.value)

        logger.debug(
            "EventBus: subscribed listener",
            extra={
                "event_name": event_name,
                "listener_id": listener.identifier,
                "priority": priority.name,
            },
        )
        return listener.identifier

    def unsubscribe(self, event_name: str, identifier: str) -> bool:
        before = len(self._listeners)
        self._listeners = [
            item
            for item in self._listeners
            if not (item.event_name == event_name and item.identifier == identifier)
        ]
        return len(self._listeners) < before

    def clear(self) -> None:
        self._listeners.clear()

    # ------------------------------------------------------------------ #
    # Publish API
    # ------------------------------------------------------------------ #

    async def publish(self, event_name: str, data: EventPayload) -> List[Any]:
        """
        Publish an event; never raises because of a listener failure.

        Returns
        -------
        list
            Results from CRITICAL/HIGH/NORMAL listeners (None for failures).
        """
        self._metrics.events_published += 1
        self._metrics.per_event[event_name] = self._metrics.per_event.get(event_name, 0) + 1

        listeners = [item for item in self._listeners if item.matches(event_name)]
        once_ids = {id(item) for item in listeners if item.once}
        if once_ids:
            self._listeners = [item for item in self._listeners if id(item) not in once_ids]

        if not listeners:
            return []

        results: List[Any] = []

        for listener in listeners:
            if listener.priority == ListenerPriority.CRITICAL:
                results.append(await self._run(listener, event_name, data, self._critical_timeout))
            elif listener.priority == ListenerPriority.HIGH:
                results.append(await self._run(listener, event_name, data, self._high_timeout))

        normal = [item for item in listeners if item.priority == ListenerPriority.NORMAL]
        if normal:
            results.extend(
                await asyncio.gather(*(self._run(item, event_name, data, None) for item in normal))
            )

        for listener in listeners:
            if listener.priority == ListenerPriority.LOW:
                task = asyncio.create_task(self._run(listener, event_name, data, None))
                self._background_tasks.add(task)
                task.add_done_callback(self._background_tasks.discard)

        return results

    async def _run(
        self,
        listener: EventListener,
        event_name: str,
        data: EventPayload,
        timeout: Optional[float],
    ) -> Any:
        self._metrics.listener_invocations += 1
        try:
            outcome = listener.callback(data)
            if inspect.isawaitable(outcome):
                if timeout is not None:
                    return await asyncio.wait_for(outcome, timeout=timeout)
                return await outcome
            return outcome
        except asyncio.TimeoutError:
            self._metrics.listener_timeouts += 1
            logger.error(
                "EventBus: listener timed out",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "timeout_seconds": timeout,
                },
            )
        except Exception as exc:
            self._metrics.listener_errors += 1
            logger.error(
                "EventBus: listener failed",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
        return None

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def get_listener_count(self, event_name: Optional[str] = None) -> int:
        if event_name is None:
            return len(self._listeners)
        return sum(1 for item in self._listeners if item.matches(event_name))

    def get_metrics_summary(self) -> Dict[str, Any]:
        return {
            "events_published": self._metrics.events_published,
            "listener_invocations": self._metrics.listener_invocations,
            "listener_errors": self._metrics.listener_errors,
            "listener_timeouts": self._metrics.listener_timeouts,
            "listener_count": len(self._listeners),
            "background_tasks": len(self._background_tasks),
        }

    async def drain(self) -> None:
        """Wait for fire-and-forget LOW listeners (shutdown and tests)."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
