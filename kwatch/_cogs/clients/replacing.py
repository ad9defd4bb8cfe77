from typing import Any, Dict

from kwatch._cogs.clients import api, auth, fetching
from kwatch._cogs.configs import configuration
from kwatch._cogs.helpers import typedefs
from kwatch._cogs.structs import bodies, references


async def replace_obj(
        *,
        identity: references.ResourceIdentity,
        body: bodies.RawBody,
        context: auth.APIContext,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> bodies.RawBody:
    """
    Replace an existing object with the new body entirely (an "update").

    K8s requires the current resource version for the replacements,
    so if the body has none, it is taken from the existing object first.
    Raises `APINotFoundError` if the object does not exist.
    """
    payload: Dict[str, Any] = dict(body)
    metadata: Dict[str, Any] = dict(payload.get('metadata') or {})
    metadata.setdefault('name', identity.name)
    if identity.namespace is not None and identity.resource.namespaced:
        metadata.setdefault('namespace', identity.namespace)

    if not metadata.get('resourceVersion'):
        existing = await fetching.read_obj(
            identity=identity,
            context=context,
            settings=settings,
            logger=logger,
        )
        resource_version = existing.get('metadata', {}).get('resourceVersion')
        if resource_version is not None:
            metadata['resourceVersion'] = resource_version

    payload['metadata'] = metadata
    replaced_body: bodies.RawBody = await api.put(
        url=identity.get_url(),
        payload=payload,
        context=context,
        settings=settings,
        logger=logger,
    )
    return replaced_body
