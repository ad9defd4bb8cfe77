import asyncio
import logging
import threading

import aiohttp
import pytest

from kwatch._cogs.structs.bodies import EventKind
from kwatch._core.reactor.dispatching import HandlerSet, SessionEnd, dispatch_event, \
                                             dispatch_events

logger = logging.getLogger(__name__)


@pytest.fixture()
async def stop_waiter():
    waiter = asyncio.get_running_loop().create_future()
    try:
        yield waiter
    finally:
        waiter.cancel()


def test_handlers_are_selected_by_kind():
    on_add, on_modify, on_delete = object(), object(), object()
    handlers = HandlerSet(on_add=on_add, on_modify=on_modify, on_delete=on_delete)
    assert handlers.select(EventKind.ADDED) is on_add
    assert handlers.select(EventKind.MODIFIED) is on_modify
    assert handlers.select(EventKind.DELETED) is on_delete
    assert handlers.select(EventKind.UNKNOWN) is None


def test_handlers_are_optional():
    handlers = HandlerSet()
    assert handlers.on_add is None
    assert handlers.on_modify is None
    assert handlers.on_delete is None


async def test_events_are_dispatched_in_order(stream_of, event, stop_waiter, settings):
    seen = []
    handlers = HandlerSet(
        on_add=lambda body: seen.append(('add', body['metadata']['name'])),
        on_modify=lambda body: seen.append(('modify', body['metadata']['name'])),
        on_delete=lambda body: seen.append(('delete', body['metadata']['name'])),
    )
    stream = stream_of(
        event('ADDED', name='a'),
        event('ADDED', name='b'),
        event('MODIFIED', name='a'),
        event('DELETED', name='b'),
        event('MODIFIED', name='a'),
    )

    result = await dispatch_events(stream, handlers, stop_waiter=stop_waiter,
                                   settings=settings, logger=logger)

    assert result == SessionEnd(stopped=False, events=5)
    assert seen == [('add', 'a'), ('add', 'b'), ('modify', 'a'), ('delete', 'b'), ('modify', 'a')]
    assert stream.closed


async def test_async_handlers_are_awaited_before_the_next_read(stream_of, event, stop_waiter):
    trace = []

    async def slow_fn(body):
        trace.append(f"start {body['metadata']['name']}")
        await asyncio.sleep(0.05)
        trace.append(f"end {body['metadata']['name']}")

    stream = stream_of(event('ADDED', name='a'), event('ADDED', name='b'))
    result = await dispatch_events(stream, HandlerSet(on_add=slow_fn),
                                   stop_waiter=stop_waiter, logger=logger)

    assert result.events == 2
    assert trace == ['start a', 'end a', 'start b', 'end b']


async def test_sync_handlers_are_executed_in_threads(stream_of, event, stop_waiter, settings):
    threads = []
    handlers = HandlerSet(on_add=lambda body: threads.append(threading.current_thread()))
    stream = stream_of(event('ADDED'))

    await dispatch_events(stream, handlers, stop_waiter=stop_waiter,
                          settings=settings, logger=logger)

    assert len(threads) == 1
    assert threads[0] is not threading.main_thread()


async def test_handler_failure_does_not_prevent_the_next_events(
        stream_of, event, stop_waiter, assert_logs):
    seen = []

    def fn(body):
        name = body['metadata']['name']
        if name == 'bad':
            raise ValueError("boo!")
        seen.append(name)

    stream = stream_of(event('ADDED', name='a'), event('ADDED', name='bad'),
                       event('ADDED', name='c'))
    result = await dispatch_events(stream, HandlerSet(on_add=fn),
                                   stop_waiter=stop_waiter, logger=logger)

    assert result == SessionEnd(stopped=False, events=3)
    assert seen == ['a', 'c']
    assert_logs([r"Handler for the ADDED event of ns/bad has failed"])


async def test_unknown_kinds_are_skipped_with_a_warning(
        stream_of, event, stop_waiter, assert_logs, caplog):
    seen = []
    handlers = HandlerSet(on_add=seen.append, on_modify=seen.append, on_delete=seen.append)
    stream = stream_of(event('SURPRISE', name='a'), event('ADDED', name='b'))

    result = await dispatch_events(stream, handlers, stop_waiter=stop_waiter, logger=logger)

    assert result.events == 2
    assert [body['metadata']['name'] for body in seen] == ['b']
    assert_logs([r"Ignoring an unsupported event type 'SURPRISE' for ns/a"])
    assert any(r.levelno == logging.WARNING for r in caplog.records)


async def test_events_with_no_handlers_are_dropped(stream_of, event, stop_waiter):
    seen = []
    stream = stream_of(event('ADDED'), event('DELETED'))
    result = await dispatch_events(stream, HandlerSet(on_delete=seen.append),
                                   stop_waiter=stop_waiter, logger=logger)
    assert result.events == 2
    assert len(seen) == 1


async def test_stream_failure_ends_the_session_with_an_error(stream_of, event, stop_waiter):
    error = aiohttp.ClientConnectionError("broken")
    stream = stream_of(event('ADDED', name='a'), error, event('ADDED', name='b'))
    seen = []

    result = await dispatch_events(stream, HandlerSet(on_add=seen.append),
                                   stop_waiter=stop_waiter, logger=logger)

    assert result.stopped is False
    assert result.events == 1
    assert result.error is error
    assert len(seen) == 1
    assert stream.closed


async def test_stopper_ends_a_silent_stream_promptly(stream_of, event, stop_waiter, timer):
    stream = stream_of(event('ADDED'), hang=True)
    asyncio.get_running_loop().call_later(0.1, stop_waiter.set_result, None)

    with timer:
        result = await dispatch_events(stream, HandlerSet(), stop_waiter=stop_waiter,
                                       logger=logger)

    assert result == SessionEnd(stopped=True, events=1)
    assert stream.closed
    assert 0.09 <= timer.seconds < 0.5


async def test_already_stopped_reads_nothing(stream_of, event, stop_waiter):
    stop_waiter.set_result(None)
    stream = stream_of(event('ADDED'))

    result = await dispatch_events(stream, HandlerSet(), stop_waiter=stop_waiter, logger=logger)

    assert result == SessionEnd(stopped=True, events=0)
    assert stream.reads == 0
    assert stream.closed


async def test_cancellation_closes_the_stream(stream_of, stop_waiter):
    stream = stream_of(hang=True)
    task = asyncio.create_task(dispatch_events(stream, HandlerSet(),
                                               stop_waiter=stop_waiter, logger=logger))
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert stream.closed


async def test_single_event_dispatching_passes_the_snapshot(event):
    seen = []
    change = event('MODIFIED', name='x', spec={'field': 'value'})
    await dispatch_event(change, HandlerSet(on_modify=seen.append), logger=logger)
    assert seen == [change.snapshot]
    assert seen[0]['spec'] == {'field': 'value'}
