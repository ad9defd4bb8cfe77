"""
Opening and reading the watch-streams of the K8s API.

Unlike the regular requests, the watch-streams are opened and consumed
in two distinct steps: first, the request is made and its status is checked,
so that the caller knows whether the stream is established; then, the events
are read from the open response one by one until the server closes it.

No retries are made here: the watch-streams are re-established by the caller
(see :mod:`kwatch._core.reactor.watching`) with its own retry policy.
The errors are classified by the caller, so they are escalated as they are.

Resource versions are not tracked: every new stream starts from the current
state of the cluster (with the synthetic ``ADDED`` events for the existing
objects), and the events missed while disconnected are not replayed.
"""
import json
import logging
from typing import AsyncIterator, Dict, Optional

import aiohttp

from kwatch._cogs.clients import api, auth, errors
from kwatch._cogs.configs import configuration
from kwatch._cogs.structs import bodies, references

logger = logging.getLogger(__name__)

HTTP_GONE_CODE = 410


class WatchStream:
    """
    An open watch-stream: an async iterator of change events.

    The stream ends when the server closes the connection (e.g. by a timeout),
    or when it is closed client-side via :meth:`close`, which is synchronous
    and can be called at any time, including while the stream is being read.
    """

    def __init__(
            self,
            response: aiohttp.ClientResponse,
            *,
            resource: references.Resource,
            namespace: references.Namespace,
    ) -> None:
        super().__init__()
        self._response = response
        self._resource = resource
        self._namespace = namespace
        self._lines: Optional[AsyncIterator[bytes]] = None
        self._closed = False

    def __repr__(self) -> str:
        where = f'in {self._namespace!r}' if self._namespace is not None else 'cluster-wide'
        state = 'closed' if self._closed else 'open'
        return f'<{self.__class__.__name__} for {self._resource} {where}: {state}>'

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True
        self._response.close()

    def __aiter__(self) -> "WatchStream":
        return self

    async def __anext__(self) -> bodies.ChangeEvent:
        if self._lines is None:
            self._lines = api.iter_jsonlines(self._response.content).__aiter__()

        while not self._closed:
            try:
                line = await self._lines.__anext__()
            except StopAsyncIteration:
                self.close()
                raise
            except aiohttp.ClientConnectionError:
                if self._closed:  # closed by us while reading, so it is not an error.
                    break
                raise

            try:
                raw_input: bodies.RawInput = json.loads(line.decode('utf-8'))
            except ValueError as e:
                raise aiohttp.ClientPayloadError(f"Malformed watch-event: {line[:100]!r}") from e

            raw_type = raw_input.get('type')
            raw_object = raw_input.get('object')

            # "410 Gone" is for the "resource version too old" error, we must restart watching.
            # The resource versions are lost by k8s after a few minutes (5 as per the official doc).
            if raw_type == 'ERROR' and isinstance(raw_object, dict) \
                    and raw_object.get('code') == HTTP_GONE_CODE:
                where = f'in {self._namespace!r}' if self._namespace is not None else 'cluster-wide'
                logger.debug(f"The watch-stream is gone for {self._resource} {where}.")
                break

            # Other watch errors are the API errors as if they were the HTTP statuses.
            if raw_type == 'ERROR':
                raise errors.from_status(raw_object)

            # Bookmarks are never requested, but if they are sent anyway, they are not changes.
            if raw_type == 'BOOKMARK':
                continue

            return bodies.ChangeEvent.from_raw(raw_input)

        self.close()
        raise StopAsyncIteration


async def open_watch(
        *,
        resource: references.Resource,
        namespace: references.Namespace,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        context: auth.APIContext,
        settings: configuration.Settings,
        logger: logging.Logger = logger,
) -> WatchStream:
    """
    Open a watch-stream of objects of a specific resource type.

    The cluster-scoped call is used in two cases:

    * The resource itself is cluster-scoped, and namespacing makes not sense.
    * The namespace is not specified, i.e. all namespaces are watched.

    Otherwise, the namespace-scoped call is used.
    """
    params: Dict[str, str] = {}
    params['watch'] = 'true'
    if label_selector:
        params['labelSelector'] = label_selector
    if field_selector:
        params['fieldSelector'] = field_selector
    if settings.watching.server_timeout is not None:
        params['timeoutSeconds'] = str(int(settings.watching.server_timeout))

    connect_timeout = (
        settings.networking.connect_timeout if settings.networking.connect_timeout is not None else
        settings.networking.request_timeout
    )

    response = await api.request(
        method='get',
        url=resource.get_url(namespace=namespace, params=params),
        timeout=aiohttp.ClientTimeout(
            total=settings.watching.client_timeout,
            sock_connect=connect_timeout,
        ),
        backoffs=(),
        context=context,
        settings=settings,
        logger=logger,
    )
    return WatchStream(response, resource=resource, namespace=namespace)
