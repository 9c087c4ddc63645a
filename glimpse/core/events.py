"""
In-process domain events.

Events are published after the transaction that produced them has committed.
Subscribers (the notification dispatcher, analytics, ...) run in order; a
failing subscriber is logged and does not affect the others.
"""
from collections import defaultdict
from dataclasses import dataclass
from typing import Awaitable, Callable, Type

from loguru import logger


@dataclass(frozen=True)
class MatchCreated:
    match_id: int
    user_a_id: str
    user_b_id: str
    group_id: str


@dataclass(frozen=True)
class LikeReceived:
    like_id: int
    to_user_id: str
    group_id: str
    is_super: bool


@dataclass(frozen=True)
class MatchDissolved:
    match_id: int
    user_a_id: str
    user_b_id: str
    reason: str


Event = MatchCreated | LikeReceived | MatchDissolved
Subscriber = Callable[[Event], Awaitable[None]]


class EventBus:
    def __init__(self):
        self._subscribers: dict[type, list[Subscriber]] = defaultdict(list)

    def subscribe(self, event_type: Type, handler: Subscriber) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: Type, handler: Subscriber) -> None:
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def handlers_for(self, event_type: Type) -> list[Subscriber]:
        return list(self._subscribers.get(event_type, []))

    async def publish(self, event: Event) -> None:
        handlers = self.handlers_for(type(event))
        logger.debug(f"Publishing {type(event).__name__} to {len(handlers)} subscriber(s)")
        for handler in handlers:
            try:
                await handler(event)
            except Exception as e:
                logger.exception(f"Subscriber {getattr(handler, '__name__', handler)} failed on {event}: {e}")

