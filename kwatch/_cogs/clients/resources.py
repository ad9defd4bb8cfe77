"""
The resource client: the only collaborator of the observation loops.

The loops (the watcher & the poller) depend only on the narrow protocols
defined here, so that any implementation can be used: the real one over
``aiohttp`` (:class:`ResourceClient`), or a fake one in tests.
"""
import logging
from types import TracebackType
from typing import AsyncIterator, Collection, Optional, Type

from typing_extensions import Protocol

from kwatch._cogs.clients import auth, creating, deleting, fetching, \
                                 replacing, scanning, watching
from kwatch._cogs.configs import configuration
from kwatch._cogs.helpers import typedefs
from kwatch._cogs.structs import bodies, credentials, references

logger = logging.getLogger(__name__)


class StreamProtocol(Protocol):
    """
    An open stream of change events. Closing is idempotent and synchronous.
    """

    def __aiter__(self) -> AsyncIterator[bodies.ChangeEvent]: ...

    def close(self) -> None: ...


class ResourceClientProtocol(Protocol):

    async def open_stream(
            self,
            resource: references.Resource,
            namespace: references.Namespace,
            label_selector: Optional[str] = None,
            field_selector: Optional[str] = None,
    ) -> StreamProtocol: ...

    async def fetch(
            self,
            identity: references.ResourceIdentity,
    ) -> bodies.RawBody: ...


class ResourceNotFoundError(LookupError):
    """ Raised when a resource selector matches no resources in the cluster. """


class AmbiguousResourceError(LookupError):
    """ Raised when a resource selector matches several resources in the cluster. """


class ResourceClient:
    """
    A client to the K8s API for the specific connection (server & credentials).

    It must be used as an async context manager, so that the underlying
    HTTP session is created in the running event loop and closed after use::

        async with ResourceClient(info, settings=settings) as client:
            body = await client.fetch(identity)
    """

    def __init__(
            self,
            info: credentials.ConnectionInfo,
            *,
            settings: Optional[configuration.Settings] = None,
            logger: typedefs.Logger = logger,
    ) -> None:
        super().__init__()
        self.info = info
        self.settings = settings if settings is not None else configuration.Settings()
        self.logger = logger
        self._context: Optional[auth.APIContext] = None
        self._resources: Optional[Collection[references.Resource]] = None

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} for {self.info.server}>'

    async def __aenter__(self) -> "ResourceClient":
        if self._context is None:
            self._context = auth.APIContext(self.info)
        return self

    async def __aexit__(
            self,
            exc_type: Optional[Type[BaseException]],
            exc_val: Optional[BaseException],
            exc_tb: Optional[TracebackType],
    ) -> None:
        await self.close()

    async def close(self) -> None:
        if self._context is not None:
            context, self._context = self._context, None
            await context.close()

    @property
    def context(self) -> auth.APIContext:
        if self._context is None:
            raise RuntimeError("The client is not opened: use it as `async with client: ...`.")
        return self._context

    @property
    def default_namespace(self) -> Optional[str]:
        return self.info.default_namespace

    async def scan(self, *, refresh: bool = False) -> Collection[references.Resource]:
        """ Discover all the resources served by the cluster; cached after the first call. """
        if self._resources is None or refresh:
            self._resources = await scanning.scan_resources(
                context=self.context,
                settings=self.settings,
                logger=self.logger,
            )
        return self._resources

    async def discover(self, selector: references.Selector) -> references.Resource:
        """
        Find exactly one resource matching the selector, as ``kubectl`` does.
        """
        resources = await self.scan()
        selected = selector.select(resources)
        if not selected:
            raise ResourceNotFoundError(f"No resources found for {selector.any_name!r}.")
        if len(selected) > 1:
            names = ', '.join(sorted(repr(resource) for resource in selected))
            raise AmbiguousResourceError(f"Ambiguous resource {selector.any_name!r}: {names}.")
        return next(iter(selected))

    async def discover_kind(self, api_version: str, kind: str) -> references.Resource:
        """
        Find the resource for the manifest's ``apiVersion`` & ``kind``.
        """
        group, _, version = api_version.rpartition('/')
        resources = await self.scan()
        selected = {resource for resource in resources
                    if resource.group == group and resource.version == version
                    and resource.kind == kind}
        if not selected:
            raise ResourceNotFoundError(f"No resources found for {kind} in {api_version}.")
        return next(iter(selected))

    async def open_stream(
            self,
            resource: references.Resource,
            namespace: references.Namespace,
            label_selector: Optional[str] = None,
            field_selector: Optional[str] = None,
    ) -> watching.WatchStream:
        return await watching.open_watch(
            resource=resource,
            namespace=namespace,
            label_selector=label_selector,
            field_selector=field_selector,
            context=self.context,
            settings=self.settings,
        )

    async def fetch(
            self,
            identity: references.ResourceIdentity,
    ) -> bodies.RawBody:
        return await fetching.read_obj(
            identity=identity,
            context=self.context,
            settings=self.settings,
            logger=self.logger,
        )

    async def list(
            self,
            resource: references.Resource,
            namespace: references.Namespace,
            label_selector: Optional[str] = None,
            field_selector: Optional[str] = None,
    ) -> Collection[bodies.RawBody]:
        items, _ = await fetching.list_objs(
            resource=resource,
            namespace=namespace,
            label_selector=label_selector,
            field_selector=field_selector,
            context=self.context,
            settings=self.settings,
            logger=self.logger,
        )
        return items

    async def create(
            self,
            resource: references.Resource,
            body: bodies.RawBody,
            namespace: references.Namespace = None,
    ) -> bodies.RawBody:
        return await creating.create_obj(
            resource=resource,
            namespace=namespace,
            body=body,
            context=self.context,
            settings=self.settings,
            logger=self.logger,
        )

    async def replace(
            self,
            identity: references.ResourceIdentity,
            body: bodies.RawBody,
    ) -> bodies.RawBody:
        return await replacing.replace_obj(
            identity=identity,
            body=body,
            context=self.context,
            settings=self.settings,
            logger=self.logger,
        )

    async def delete(
            self,
            identity: references.ResourceIdentity,
    ) -> None:
        await deleting.delete_obj(
            identity=identity,
            context=self.context,
            settings=self.settings,
            logger=self.logger,
        )
