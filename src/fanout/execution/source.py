"""Single-event publish source, one per subscriber per dispatch."""

from typing import Iterable

from fanout.schemas.subscription import SubscriptionEvent
from fanout.streams import OneShotStream


class SingleEventSource:
    """Read-only pub/sub seeded with the event being dispatched.

    Learn: The dispatcher builds a fresh source for every subscriber, so a
    resolver never sees another subscriber's in-flight state. Topics are
    not matched — the index already chose the subscriber by its
    (possibly tenant-scoped) key, which may differ from the raw name.
    """

    def __init__(self, events: Iterable[SubscriptionEvent]):
        self._events = list(events)

    @property
    def events(self) -> list[SubscriptionEvent]:
        return list(self._events)

    def subscribe(self, topics: Iterable[str]) -> OneShotStream[SubscriptionEvent]:
        return OneShotStream(self._events)
