"""One-shot async streams.

Learn: The index hands out subscribers, and the executor hands out
results, as a finite async stream that can be consumed exactly once:

    async for batch in index.subscribers_by_event(event):
        ...

The items are produced lazily, on the first step of iteration, and are
never recomputed. Iterating the same stream again is a programming error
and raises StreamConsumedError instead of silently yielding nothing.
"""

from collections import deque
from typing import Awaitable, Callable, Generic, Iterable, Optional, TypeVar

from fanout.errors import StreamConsumedError

T = TypeVar("T")


class OneShotStream(Generic[T]):
    """Finite, non-restartable async stream with a single-consume contract."""

    def __init__(
        self,
        items: Optional[Iterable[T]] = None,
        *,
        loader: Optional[Callable[[], Awaitable[Iterable[T]]]] = None,
    ):
        if (items is None) == (loader is None):
            raise ValueError("OneShotStream needs exactly one of items or loader")
        self._items = list(items) if items is not None else None
        self._loader = loader
        self._buffer: Optional[deque[T]] = None
        self._opened = False

    @property
    def consumed(self) -> bool:
        return self._opened

    def __aiter__(self) -> "OneShotStream[T]":
        if self._opened:
            raise StreamConsumedError("Stream has already been consumed")
        self._opened = True
        return self

    async def __anext__(self) -> T:
        self._opened = True
        if self._buffer is None:
            if self._loader is not None:
                self._buffer = deque(await self._loader())
                self._loader = None
            else:
                self._buffer = deque(self._items or ())
                self._items = None
        if not self._buffer:
            raise StopAsyncIteration
        return self._buffer.popleft()

    async def first(self) -> Optional[T]:
        """Consume the stream and return its first item (None when empty)."""
        async for item in self:
            return item
        return None
