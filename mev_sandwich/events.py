"""Lifecycle events and the observer bus that distributes them"""

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Union

import structlog

logger = structlog.get_logger()


class EventType(str, Enum):
    """Discrete lifecycle transitions exposed to external consumers"""

    OPPORTUNITY_FOUND = "opportunityFound"
    OPPORTUNITY_REJECTED = "opportunityRejected"
    EXECUTION_STARTED = "executionStarted"
    EXECUTION_COMPLETED = "executionCompleted"
    EXECUTION_FAILED = "executionFailed"
    BUNDLE_CREATED = "bundleCreated"
    BUNDLE_SUBMITTED = "bundleSubmitted"
    BUNDLE_SIMULATED = "bundleSimulated"
    BUNDLE_INCLUDED = "bundleIncluded"
    BUNDLE_LANDED = "bundleLanded"
    BUNDLE_FAILED = "bundleFailed"
    BUNDLE_EXPIRED = "bundleExpired"
    EMERGENCY_STOP = "emergencyStop"
    ERROR = "error"


@dataclass(frozen=True)
class Event:
    """One lifecycle message"""

    type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)
    chain: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "chain": self.chain,
            "timestamp": self.timestamp,
            "payload": self.payload,
        }


Handler = Callable[[Event], Union[None, Awaitable[None]]]


@dataclass(eq=False)
class _Subscription:
    handler: Handler
    types: Optional[FrozenSet[EventType]]

    def wants(self, event: Event) -> bool:
        return self.types is None or event.type in self.types


class EventBus:
    """
    Observer with an explicit subscriber list.

    Handlers may be plain callables or coroutine functions. A failing handler is
    logged and never affects the publisher or other subscribers.
    """

    def __init__(self) -> None:
        self._subscriptions: List[_Subscription] = []
        self._published = 0
        self._logger = logger.bind(component="event_bus")

    def subscribe(
        self,
        handler: Handler,
        event_types: Optional[Iterable[EventType]] = None,
    ) -> Callable[[], None]:
        """
        Register a handler.

        Args:
            handler: Callable receiving each matching Event
            event_types: Restrict delivery to these types (all types when None)

        Returns:
            A callable that removes the subscription
        """
        subscription = _Subscription(
            handler=handler,
            types=frozenset(event_types) if event_types is not None else None,
        )
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @property
    def published_count(self) -> int:
        return self._published

    async def publish(self, event: Event) -> None:
        """Deliver an event to every matching subscriber in registration order"""
        self._published += 1
        for subscription in list(self._subscriptions):
            if not subscription.wants(event):
                continue
            try:
                result = subscription.handler(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.error(
                    "event_handler_failed",
                    event_type=event.type.value,
                    handler=getattr(subscription.handler, "__name__", repr(subscription.handler)),
                    error=str(e),
                    error_type=type(e).__name__,
                )

    async def emit(
        self,
        event_type: EventType,
        chain: Optional[str] = None,
        **payload: Any,
    ) -> Event:
        """Build and publish an event in one call"""
        event = Event(type=event_type, payload=payload, chain=chain)
        await self.publish(event)
        return event
