"""
MODULE OVERVIEW:
The subscription primitive shared by the transport and the stores.

WHAT IS HAPPENING HERE:
Every component that has something to tell the outside world (a frame arrived,
the unread map changed, a REST call failed) owns one `Signal` per topic.
Subscribers are plain callables that run to completion on the event loop, so
one published payload is one atomic notification. A failing subscriber is
logged and never breaks the publisher or the other subscribers.
"""

from dataclasses import dataclass
from typing import Callable, Generic, List, Literal, TypeVar
from loguru import logger

T = TypeVar("T")


@dataclass(frozen=True)
class Notice:
    """A user-visible message: a failed REST call, a rejected input, a confirmation."""
    level: Literal["error", "success", "info"]
    title: str
    detail: str = ""


class Signal(Generic[T]):
    def __init__(self, name: str):
        self.name = name
        self._subscribers: List[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, payload: T) -> None:
        # Copy so a subscriber may unsubscribe itself while we iterate
        for sub in list(self._subscribers):
            try:
                sub(payload)
            except Exception as e:
                logger.error(f"signal={self.name} event=subscriber_error reason='{e}'")

    def __len__(self) -> int:
        return len(self._subscribers)
