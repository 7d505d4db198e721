"""One-shot stream + single-event source tests."""

import pytest

from fanout.errors import StreamConsumedError
from fanout.execution.source import SingleEventSource
from fanout.schemas.subscription import SubscriptionEvent
from fanout.streams import OneShotStream


@pytest.mark.asyncio
async def test_yields_items_once():
    stream = OneShotStream([1, 2, 3])
    assert [i async for i in stream] == [1, 2, 3]
    assert stream.consumed

    with pytest.raises(StreamConsumedError):
        [i async for i in stream]


@pytest.mark.asyncio
async def test_loader_runs_lazily_and_once():
    calls = []

    async def load():
        calls.append(1)
        return ["a", "b"]

    stream = OneShotStream(loader=load)
    assert calls == []
    assert not stream.consumed

    assert await stream.first() == "a"
    assert calls == [1]


@pytest.mark.asyncio
async def test_first_of_empty_stream():
    assert await OneShotStream([]).first() is None


def test_needs_exactly_one_source():
    with pytest.raises(ValueError):
        OneShotStream()

    async def load():
        return []

    with pytest.raises(ValueError):
        OneShotStream([1], loader=load)


@pytest.mark.asyncio
async def test_single_event_source_hands_out_fresh_streams():
    event = SubscriptionEvent(event="chat", payload={"text": "hi"})
    source = SingleEventSource([event])

    assert await source.subscribe(["chat"]).first() == event
    # Topic names are not matched; a new stream is independent of the last
    assert await source.subscribe(["tenant-a:chat"]).first() == event
