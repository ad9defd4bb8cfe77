import asyncio
import collections
import dataclasses
import json
import logging
import re
import time
from typing import Any, Dict, List, Optional, Tuple

import aiohttp.web
import pytest
from aiohttp.test_utils import TestServer

from kwatch._cogs.clients.auth import APIContext
from kwatch._cogs.configs.configuration import Settings
from kwatch._cogs.structs.bodies import ChangeEvent
from kwatch._cogs.structs.credentials import ConnectionInfo
from kwatch._cogs.structs.references import Resource, ResourceIdentity, Selector


@pytest.fixture()
def namespaced_resource():
    """ The resource used in the tests. Usually mocked, so it does not matter. """
    return Resource('kwatch.dev', 'v1', 'kwexamples', kind='KwExample', namespaced=True)


@pytest.fixture()
def cluster_resource():
    """ The resource used in the tests. Usually mocked, so it does not matter. """
    return Resource('kwatch.dev', 'v1', 'kwexamples', kind='KwExample', namespaced=False)


@pytest.fixture(params=[True, False], ids=['namespaced', 'cluster'])
def resource(request):
    """ The resource used in the tests. Usually mocked, so it does not matter. """
    return Resource('kwatch.dev', 'v1', 'kwexamples', kind='KwExample', namespaced=request.param)


@pytest.fixture()
def selector(resource):
    """ The selector used in the tests. Usually mocked, so it does not matter. """
    return Selector(resource.group, resource.version, resource.plural)


@pytest.fixture()
def namespace(resource):
    return 'ns' if resource.namespaced else None


@pytest.fixture()
def identity(resource, namespace):
    return ResourceIdentity(resource, namespace, 'name1')


@pytest.fixture()
def settings():
    return Settings()


#
# A fake resource client for the observation loops: no HTTP, only the protocol.
# The loops depend on `open_stream()` & `fetch()` only, so nothing else is faked.
#

class FakeStream:
    """
    A pre-scripted stream: yields the events, raises the exceptions, then ends.

    With ``hang=True``, it does not end on its own after the scripted items,
    but waits until closed (as a real silent stream does).
    """

    def __init__(self, *items, hang=False, delay=0):
        super().__init__()
        self.items = list(items)
        self.hang = hang
        self.delay = delay
        self.closed = False
        self.reads = 0
        self._closed_event = None

    def close(self):
        self.closed = True
        if self._closed_event is not None:
            self._closed_event.set()

    def __aiter__(self):
        return self

    async def __anext__(self):
        self.reads += 1
        if self.items and not self.closed:
            item = self.items.pop(0)
            if self.delay:
                await asyncio.sleep(self.delay)
            if isinstance(item, BaseException):
                raise item
            return item
        if self.hang and not self.closed:
            self._closed_event = asyncio.Event()
            await self._closed_event.wait()
        raise StopAsyncIteration


def make_event(type_, name='name1', namespace='ns', **fields):
    body = {'metadata': {'name': name, 'namespace': namespace}}
    body.update(fields)
    return ChangeEvent.from_raw({'type': type_, 'object': body})


async def hang_forever():
    await asyncio.Event().wait()


class FakeClient:
    """
    A scripted resource client: every call takes the next scripted outcome.

    The last outcome is repeated if the calls continue beyond the script.
    The outcomes are: exceptions (raised), async callables (awaited),
    streams/bodies (returned as is).
    """

    def __init__(self, *, streams=(), objects=(), fetch_delay=0):
        super().__init__()
        self.streams = list(streams)
        self.objects = list(objects)
        self.fetch_delay = fetch_delay
        self.open_calls: List[float] = []
        self.open_kwargs: List[Dict[str, Any]] = []
        self.fetch_calls: List[float] = []

    def _next(self, outcomes):
        if not outcomes:
            raise AssertionError("The fake client is not scripted for this call.")
        return outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]

    async def _resolve(self, outcome):
        if isinstance(outcome, BaseException):
            raise outcome
        elif callable(outcome):
            return await outcome()
        else:
            return outcome

    async def open_stream(self, resource, namespace, label_selector=None, field_selector=None):
        self.open_calls.append(asyncio.get_running_loop().time())
        self.open_kwargs.append(dict(resource=resource, namespace=namespace,
                                     label_selector=label_selector,
                                     field_selector=field_selector))
        return await self._resolve(self._next(self.streams))

    async def fetch(self, identity):
        self.fetch_calls.append(asyncio.get_running_loop().time())
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        return await self._resolve(self._next(self.objects))


@pytest.fixture()
def fake_client():
    return FakeClient()


@pytest.fixture()
def stream_of():
    """ A factory of pre-scripted streams: ``stream_of(event1, error2, hang=True)``. """
    return FakeStream


@pytest.fixture()
def event():
    """ A factory of change events: ``event('ADDED', name='x', spec={...})``. """
    return make_event


@pytest.fixture()
def hang():
    """ An outcome of the fake client's calls that never finishes (until cancelled). """
    return hang_forever


#
# A fake K8s API server for the HTTP-level tests of the clients.
# No external calls must be made under any circumstances.
#

@dataclasses.dataclass(frozen=True)
class RecordedRequest:
    method: str
    path: str
    query: Dict[str, str]
    data: Any
    headers: Dict[str, str]


class FakeAPI:
    """
    A scripted K8s API: the responses are registered per method & path.

    The responses are consumed in order, the last one is repeated.
    Every response is a recipe, not a ready object, since aiohttp's responses
    cannot be sent twice:

    * a dict or a list -- a JSON response with status 200;
    * an int -- an error status with a K8s ``Status`` payload;
    * a tuple ``(status, payload)`` -- an arbitrary JSON payload or text;
    * a :class:`WatchEvents` -- a pre-rendered watch-stream (JSON lines);
    * a callable -- called with the request to build the response.
    """

    def __init__(self):
        super().__init__()
        self.routes: Dict[Tuple[str, str], List[Any]] = collections.defaultdict(list)
        self.requests: List[RecordedRequest] = []
        self.url = None

    def add(self, method, path, *responses):
        self.routes[method.upper(), path].extend(responses)

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method.upper() and r.path == path]

    async def handle(self, request):
        raw = await request.read()
        try:
            data = json.loads(raw) if raw else None
        except ValueError:
            data = raw.decode('utf-8')
        self.requests.append(RecordedRequest(
            method=request.method,
            path=request.path,
            query=dict(request.query),
            data=data,
            headers=dict(request.headers),
        ))

        recipes = self.routes.get((request.method, request.path))
        if not recipes:
            return aiohttp.web.json_response(status=404, data={
                'kind': 'Status', 'code': 404, 'message': f"Not routed: {request.path}"})
        recipe = recipes.pop(0) if len(recipes) > 1 else recipes[0]
        return self.render(request, recipe)

    def render(self, request, recipe):
        if callable(recipe):
            return recipe(request)
        elif isinstance(recipe, WatchEvents):
            text = ''.join(json.dumps(event) + '\n' for event in recipe.events)
            return aiohttp.web.Response(text=text, content_type='application/json')
        elif isinstance(recipe, int):
            return aiohttp.web.json_response(status=recipe, data={
                'kind': 'Status', 'code': recipe, 'message': "boo!"})
        elif isinstance(recipe, tuple):
            status, payload = recipe
            if isinstance(payload, str):
                return aiohttp.web.Response(status=status, text=payload)
            return aiohttp.web.json_response(status=status, data=payload)
        else:
            return aiohttp.web.json_response(recipe)


@dataclasses.dataclass(frozen=True)
class WatchEvents:
    events: List[Any]


@pytest.fixture()
def watch_events():
    """ A recipe of a watch-stream for the fake API: ``watch_events([{...}, {...}])``. """
    return WatchEvents


@pytest.fixture()
async def fake_api():
    api = FakeAPI()
    app = aiohttp.web.Application()
    app.router.add_route('*', '/{tail:.*}', api.handle)
    server = TestServer(app)
    await server.start_server()
    api.url = f'http://{server.host}:{server.port}'
    try:
        yield api
    finally:
        await server.close()


@pytest.fixture()
def connection_info(fake_api):
    return ConnectionInfo(server=fake_api.url, default_namespace='default')


@pytest.fixture()
async def context(connection_info):
    context = APIContext(connection_info)
    try:
        yield context
    finally:
        await context.close()


#
# Helpers for the timing checks.
#

class Timer:
    """
    Measure the duration of a code block: ``with timer: ...``.

    Inside the block, ``seconds`` is the time passed so far.
    """

    def __init__(self):
        super().__init__()
        self.started = None
        self.finished = None

    @property
    def seconds(self):
        if self.started is None:
            return None
        return (self.finished or time.perf_counter()) - self.started

    def __enter__(self):
        self.started = time.perf_counter()
        self.finished = None
        return self

    def __exit__(self, *exc_info):
        self.finished = time.perf_counter()


@pytest.fixture()
def timer():
    return Timer()


#
# Helpers for the logging checks.
#

@pytest.fixture()
def assert_logs(caplog):
    """
    Check the captured log messages against the regexps.

    The expected patterns must match some messages in the given order;
    other messages in between are allowed. A message matching a later pattern
    before the earlier ones are all matched fails the check. The prohibited
    patterns must match no messages at all.
    """
    caplog.set_level(logging.DEBUG)

    def check(patterns, prohibited=()):
        __tracebackhide__ = True
        expected = list(patterns)
        for message in caplog.messages:
            for pattern in prohibited:
                if re.search(pattern, message):
                    pytest.fail(f"Prohibited log pattern found: {message!r} ~ {pattern!r}")
            matching = [i for i, pattern in enumerate(expected) if re.search(pattern, message)]
            if matching and matching[0] > 0:
                pytest.fail(f"Few patterns were skipped: {expected[:matching[0]]!r}")
            elif matching:
                del expected[0]
        if expected:
            pytest.fail(f"Few patterns were missed: {expected!r}")

    return check
