from typing import Any, Mapping, Optional

from kwatch._cogs.clients import api, auth
from kwatch._cogs.configs import configuration
from kwatch._cogs.helpers import typedefs
from kwatch._cogs.structs import references


async def delete_obj(
        *,
        identity: references.ResourceIdentity,
        propagation_policy: Optional[str] = 'Background',
        context: auth.APIContext,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Mapping[str, Any]:
    """
    Delete an object. Raise `APINotFoundError` if it does not exist.

    The deletion is not awaited: the object can still exist for a while
    (e.g. with finalizers or with the dependants being garbage-collected).
    Use the condition poller to wait for the actual disappearance.
    """
    payload = {'propagationPolicy': propagation_policy} if propagation_policy else None
    rsp: Mapping[str, Any] = await api.delete(
        url=identity.get_url(),
        payload=payload,
        context=context,
        settings=settings,
        logger=logger,
    )
    return rsp
