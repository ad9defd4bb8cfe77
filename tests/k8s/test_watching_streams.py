import logging

import aiohttp
import aiohttp.web
import pytest

from kwatch._cogs.clients.errors import APIForbiddenError, APIServerError
from kwatch._cogs.clients.watching import open_watch
from kwatch._cogs.structs.bodies import EventKind

logger = logging.getLogger(__name__)

STREAM_WITH_NORMAL_EVENTS = [
    {'type': 'ADDED', 'object': {'metadata': {'name': 'a'}, 'spec': 'a'}},
    {'type': 'MODIFIED', 'object': {'metadata': {'name': 'a'}, 'spec': 'b'}},
    {'type': 'DELETED', 'object': {'metadata': {'name': 'a'}, 'spec': 'c'}},
]


async def read_all(stream):
    return [event async for event in stream]


@pytest.fixture()
def url(resource, namespace):
    return resource.get_url(namespace=namespace)


async def test_events_are_streamed(
        fake_api, context, settings, resource, namespace, url, watch_events):
    fake_api.add('GET', url, watch_events(STREAM_WITH_NORMAL_EVENTS))

    stream = await open_watch(resource=resource, namespace=namespace,
                              context=context, settings=settings)
    events = await read_all(stream)

    assert [event.kind for event in events] == [EventKind.ADDED, EventKind.MODIFIED,
                                                EventKind.DELETED]
    assert [event.snapshot['spec'] for event in events] == ['a', 'b', 'c']
    assert stream.closed
    assert fake_api.calls('GET', url)[0].query == {'watch': 'true'}


async def test_selectors_and_server_timeout_are_requested(
        fake_api, context, settings, resource, namespace, url, watch_events):
    fake_api.add('GET', url, watch_events([]))
    settings.watching.server_timeout = 123.4

    stream = await open_watch(resource=resource, namespace=namespace,
                              label_selector='app=x', field_selector='metadata.name=y',
                              context=context, settings=settings)
    await read_all(stream)

    assert fake_api.calls('GET', url)[0].query == {
        'watch': 'true',
        'labelSelector': 'app=x',
        'fieldSelector': 'metadata.name=y',
        'timeoutSeconds': '123',
    }


async def test_unknown_event_types_are_passed_through(
        fake_api, context, settings, resource, namespace, url, watch_events):
    fake_api.add('GET', url, watch_events([
        {'type': 'SURPRISE', 'object': {'metadata': {'name': 'a'}}},
    ]))

    stream = await open_watch(resource=resource, namespace=namespace,
                              context=context, settings=settings)
    events = await read_all(stream)

    assert len(events) == 1
    assert events[0].kind is EventKind.UNKNOWN
    assert events[0].type == 'SURPRISE'


async def test_bookmarks_are_skipped(
        fake_api, context, settings, resource, namespace, url, watch_events):
    fake_api.add('GET', url, watch_events([
        {'type': 'BOOKMARK', 'object': {'metadata': {'resourceVersion': '9'}}},
        {'type': 'ADDED', 'object': {'metadata': {'name': 'a'}}},
    ]))

    stream = await open_watch(resource=resource, namespace=namespace,
                              context=context, settings=settings)
    events = await read_all(stream)

    assert [event.kind for event in events] == [EventKind.ADDED]


async def test_gone_ends_the_stream_quietly(
        fake_api, context, settings, resource, namespace, url, watch_events):
    fake_api.add('GET', url, watch_events([
        {'type': 'ADDED', 'object': {'metadata': {'name': 'a'}}},
        {'type': 'ERROR', 'object': {'kind': 'Status', 'code': 410}},
        {'type': 'ADDED', 'object': {'metadata': {'name': 'b'}}},
    ]))

    stream = await open_watch(resource=resource, namespace=namespace,
                              context=context, settings=settings)
    events = await read_all(stream)

    assert [event.snapshot['metadata']['name'] for event in events] == ['a']
    assert stream.closed


@pytest.mark.parametrize('code, exctype', [
    (403, APIForbiddenError),
    (500, APIServerError),
])
async def test_other_errors_in_the_stream_are_raised(
        fake_api, context, settings, resource, namespace, url, code, exctype, watch_events):
    fake_api.add('GET', url, watch_events([
        {'type': 'ERROR', 'object': {'kind': 'Status', 'code': code, 'message': 'boo!'}},
    ]))

    stream = await open_watch(resource=resource, namespace=namespace,
                              context=context, settings=settings)
    with pytest.raises(exctype) as e:
        await read_all(stream)

    assert e.value.message == 'boo!'


async def test_malformed_lines_are_payload_errors(
        fake_api, context, settings, resource, namespace, url):
    text = '{"type": "ADDED", "object": {}}\n{"type": "ADD'
    fake_api.add('GET', url, lambda request: aiohttp.web.Response(text=text))

    stream = await open_watch(resource=resource, namespace=namespace,
                              context=context, settings=settings)
    events = []
    with pytest.raises(aiohttp.ClientPayloadError):
        async for event in stream:
            events.append(event)

    assert len(events) == 1


@pytest.mark.parametrize('status, exctype', [
    (403, APIForbiddenError),
    (500, APIServerError),
])
async def test_opening_errors_are_not_retried(
        fake_api, context, settings, resource, namespace, url, status, exctype):
    fake_api.add('GET', url, status)

    with pytest.raises(exctype):
        await open_watch(resource=resource, namespace=namespace,
                         context=context, settings=settings)

    assert len(fake_api.calls('GET', url)) == 1


async def test_closing_is_idempotent(
        fake_api, context, settings, resource, namespace, url, watch_events):
    fake_api.add('GET', url, watch_events(STREAM_WITH_NORMAL_EVENTS))

    stream = await open_watch(resource=resource, namespace=namespace,
                              context=context, settings=settings)
    stream.close()
    stream.close()
    events = await read_all(stream)

    assert stream.closed
    assert events == []
    assert 'closed' in repr(stream)
