from typing import Collection, Dict, List, Optional, Tuple

from kwatch._cogs.clients import api, auth
from kwatch._cogs.configs import configuration
from kwatch._cogs.helpers import typedefs
from kwatch._cogs.structs import bodies, references


async def read_obj(
        *,
        identity: references.ResourceIdentity,
        context: auth.APIContext,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> bodies.RawBody:
    """
    Read one specific object. Raise `APINotFoundError` if it does not exist.
    """
    body: bodies.RawBody = await api.get(
        url=identity.get_url(),
        context=context,
        settings=settings,
        logger=logger,
    )
    return body


async def list_objs(
        *,
        resource: references.Resource,
        namespace: references.Namespace,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        context: auth.APIContext,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Tuple[Collection[bodies.RawBody], Optional[str]]:
    """
    List the objects of specific resource type.

    The cluster-scoped call is used in two cases:

    * The resource itself is cluster-scoped, and namespacing makes not sense.
    * The namespace is not specified, i.e. all namespaces are listed.

    Otherwise, the namespace-scoped call is used.
    """
    params: Dict[str, str] = {}
    if label_selector:
        params['labelSelector'] = label_selector
    if field_selector:
        params['fieldSelector'] = field_selector

    rsp = await api.get(
        url=resource.get_url(namespace=namespace, params=params),
        context=context,
        settings=settings,
        logger=logger,
    )

    items: List[bodies.RawBody] = []
    resource_version = rsp.get('metadata', {}).get('resourceVersion', None)
    for item in rsp.get('items', []):
        if 'kind' in rsp:
            item.setdefault('kind', rsp['kind'][:-4] if rsp['kind'][-4:] == 'List' else rsp['kind'])
        if 'apiVersion' in rsp:
            item.setdefault('apiVersion', rsp['apiVersion'])
        items.append(item)

    return items, resource_version
