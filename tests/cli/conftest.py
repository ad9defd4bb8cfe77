import asyncio
import functools
import logging
import threading
from typing import Any, Dict, List, Optional

import click.testing
import pytest

from kwatch._cogs.clients.errors import APIConflictError, APINotFoundError
from kwatch._cogs.clients.resources import ResourceClient
from kwatch._cogs.structs.bodies import ChangeEvent
from kwatch._cogs.structs.credentials import ConnectionInfo
from kwatch._cogs.structs.references import Resource, ResourceIdentity
from kwatch.cli import CLIControls, make_cli

PODS = Resource('', 'v1', 'pods', kind='Pod', singular='pod',
                shortcuts=frozenset({'po'}), namespaced=True)
NAMESPACES = Resource('', 'v1', 'namespaces', kind='Namespace', singular='namespace',
                      shortcuts=frozenset({'ns'}), namespaced=False)
DEPLOYMENTS = Resource('apps', 'v1', 'deployments', kind='Deployment', singular='deployment',
                       shortcuts=frozenset({'deploy'}), namespaced=True)
KWEXAMPLES = Resource('kwatch.dev', 'v1', 'kwexamples', kind='KwExample', singular='kwexample',
                      shortcuts=frozenset({'kwx'}), namespaced=True)
OTHER_KWEXAMPLES = Resource('other.dev', 'v1', 'kwexamples', kind='KwExample',
                            singular='kwexample', namespaced=True)


def not_found(name):
    payload = {'kind': 'Status', 'code': 404, 'reason': 'NotFound',
               'message': f'"{name}" not found'}
    return APINotFoundError(payload, status=404)


class FakeCluster:
    """
    An in-memory cluster behind the CLI's resource clients.

    The objects are kept as the sequences of their snapshots: every fetch
    takes the next snapshot, and the last one is repeated. ``None`` means
    the object is absent at that moment. The stop-flag is set when the fake
    runs out of the scripted work (streams or listings), so that the
    long-running commands exit.
    """

    def __init__(self):
        super().__init__()
        self.resources = [PODS, NAMESPACES, DEPLOYMENTS, KWEXAMPLES, OTHER_KWEXAMPLES]
        self.snapshots: Dict[ResourceIdentity, List[Optional[Dict[str, Any]]]] = {}
        self.events: List[ChangeEvent] = []
        self.stream_errors: List[Exception] = []
        self.list_errors: List[Exception] = []
        self.listings_before_stop = 1
        self.stop_flag = threading.Event()
        self.infos: List[ConnectionInfo] = []
        self.requests: List[tuple] = []

    def add(self, resource, body, *more_snapshots):
        meta = body.get('metadata', {})
        namespace = meta.get('namespace') if resource.namespaced else None
        identity = ResourceIdentity(resource, namespace, meta['name'])
        self.snapshots[identity] = [body, *more_snapshots]
        return identity

    def current(self, identity) -> Optional[Dict[str, Any]]:
        snapshots = self.snapshots.get(identity) or [None]
        return snapshots[-1]

    def client(self, info, *, settings=None):
        self.infos.append(info)
        return FakeResourceClient(self, info, settings=settings)


class FakeResourceClient(ResourceClient):
    """ The real client's discovery logic, but with the fake cluster's data. """

    def __init__(self, cluster, info, *, settings=None):
        super().__init__(info, settings=settings)
        self.cluster = cluster

    async def __aenter__(self):
        return self

    async def scan(self, *, refresh=False):
        return self.cluster.resources

    async def open_stream(self, resource, namespace, label_selector=None, field_selector=None):
        self.cluster.requests.append(('watch', resource, namespace,
                                      label_selector, field_selector))
        if self.cluster.stream_errors:
            raise self.cluster.stream_errors.pop(0)
        return StoppingStream(self.cluster.events, stop_flag=self.cluster.stop_flag)

    async def fetch(self, identity):
        self.cluster.requests.append(('fetch', identity))
        snapshots = self.cluster.snapshots.get(identity) or [None]
        body = snapshots.pop(0) if len(snapshots) > 1 else snapshots[0]
        if body is None:
            raise not_found(identity.name)
        elif isinstance(body, Exception):
            raise body
        return body

    async def list(self, resource, namespace, label_selector=None, field_selector=None):
        self.cluster.requests.append(('list', resource, namespace,
                                      label_selector, field_selector))
        listed = len([r for r in self.cluster.requests if r[0] == 'list'])
        if listed >= self.cluster.listings_before_stop:
            self.cluster.stop_flag.set()
        if self.cluster.list_errors:
            raise self.cluster.list_errors.pop(0)
        wanted = dict(item.split('=', 1) for item in label_selector.split(',')) \
            if label_selector else {}
        items = []
        for identity in self.cluster.snapshots:
            body = self.cluster.current(identity)
            if body is None or identity.resource != resource:
                continue
            if namespace is not None and identity.namespace != namespace:
                continue
            labels = body.get('metadata', {}).get('labels', {})
            if all(labels.get(key) == val for key, val in wanted.items()):
                items.append(body)
        return items

    async def create(self, resource, body, namespace=None):
        self.cluster.requests.append(('create', resource, namespace, body))
        identity = ResourceIdentity(resource, namespace, body['metadata']['name'])
        if self.cluster.current(identity) is not None:
            payload = {'kind': 'Status', 'code': 409, 'reason': 'AlreadyExists',
                       'message': 'already exists'}
            raise APIConflictError(payload, status=409)
        self.cluster.snapshots[identity] = [dict(body)]
        return body

    async def replace(self, identity, body):
        self.cluster.requests.append(('replace', identity, body))
        if self.cluster.current(identity) is None:
            raise not_found(identity.name)
        self.cluster.snapshots[identity] = [dict(body)]
        return body

    async def delete(self, identity):
        self.cluster.requests.append(('delete', identity))
        if self.cluster.current(identity) is None:
            raise not_found(identity.name)
        self.cluster.snapshots[identity] = [None]


class StoppingStream:
    """ Yields the events, then stops the command and waits until closed. """

    def __init__(self, events, *, stop_flag):
        super().__init__()
        self.events = list(events)
        self.stop_flag = stop_flag
        self.closed = asyncio.Event()

    def close(self):
        self.closed.set()

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.events and not self.closed.is_set():
            return self.events.pop(0)
        self.stop_flag.set()
        await self.closed.wait()
        raise StopAsyncIteration


@pytest.fixture(autouse=True)
def _restore_logging():
    """ The commands configure the root logger; restore it for other tests. """
    logger = logging.getLogger()
    handlers = logger.handlers[:]
    level = logger.level
    asyncio_logger = logging.getLogger('asyncio')
    asyncio_handlers = asyncio_logger.handlers[:]
    asyncio_propagate = asyncio_logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    asyncio_logger.handlers[:] = asyncio_handlers
    asyncio_logger.propagate = asyncio_propagate


@pytest.fixture(autouse=True)
def _clean_environ(monkeypatch):
    for name in ['KWATCH_CONFIG', 'KUBECONFIG']:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def cluster(mocker):
    cluster = FakeCluster()
    mocker.patch('kwatch._cogs.clients.resources.ResourceClient', new=cluster.client)
    return cluster


@pytest.fixture()
def connection():
    return ConnectionInfo(server='http://fake', default_namespace='default')


@pytest.fixture()
def controls(cluster, connection):
    return CLIControls(connection=connection, stop_flag=cluster.stop_flag)


@pytest.fixture()
def runner():
    runner = click.testing.CliRunner()
    return runner


@pytest.fixture()
def invoke(runner, controls):
    return functools.partial(runner.invoke, make_cli(), obj=controls)
