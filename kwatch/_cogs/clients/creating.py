from typing import Optional, cast

from kwatch._cogs.clients import api, auth
from kwatch._cogs.configs import configuration
from kwatch._cogs.helpers import typedefs
from kwatch._cogs.structs import bodies, references


async def create_obj(
        *,
        resource: references.Resource,
        namespace: references.Namespace = None,
        name: Optional[str] = None,
        body: Optional[bodies.RawBody] = None,
        context: auth.APIContext,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> bodies.RawBody:
    """
    Create a resource.

    The namespace & name are only the defaults: the body's metadata wins.
    Raises `APIConflictError` if the object already exists.
    """
    body = body if body is not None else {}
    if namespace is not None and resource.namespaced:
        body.setdefault('metadata', {}).setdefault('namespace', namespace)
    if name is not None:
        body.setdefault('metadata', {}).setdefault('name', name)

    namespace = cast(references.Namespace, body.get('metadata', {}).get('namespace'))
    created_body: bodies.RawBody = await api.post(
        url=resource.get_url(namespace=namespace),
        payload=body,
        context=context,
        settings=settings,
        logger=logger,
    )
    return created_body
