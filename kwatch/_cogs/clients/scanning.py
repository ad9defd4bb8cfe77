import asyncio
from typing import Any, Collection, Mapping, Set

from kwatch._cogs.clients import api, auth, errors
from kwatch._cogs.configs import configuration
from kwatch._cogs.helpers import typedefs
from kwatch._cogs.structs import references


async def scan_resources(
        *,
        context: auth.APIContext,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Collection[references.Resource]:
    """
    Discover all the resources served by the cluster, in all groups & versions.

    The core API (``/api``) and the named groups (``/apis``) are listed first,
    then all their group-versions are read concurrently.
    """
    kwargs = dict(context=context, settings=settings, logger=logger)
    core, named = await asyncio.gather(api.get('/api', **kwargs), api.get('/apis', **kwargs))

    # (group, version, is-preferred) for every served group-version.
    versions = [('', version, True) for version in core.get('versions', [])]
    for group in named.get('groups', []):
        preferred = group.get('preferredVersion', {}).get('version')
        for item in group.get('versions', []):
            versions.append((group['name'], item['version'], item['version'] == preferred))

    batches = await asyncio.gather(*[
        _read_group_version(group=group, version=version, preferred=preferred, **kwargs)
        for group, version, preferred in versions
    ])

    resources: Set[references.Resource] = set()
    for batch in batches:
        resources.update(batch)
    return resources


async def _read_group_version(
        *,
        group: str,
        version: str,
        preferred: bool,
        context: auth.APIContext,
        settings: configuration.Settings,
        logger: typedefs.Logger,
) -> Collection[references.Resource]:
    url = f'/apis/{group}/{version}' if group else f'/api/{version}'
    try:
        rsp = await api.get(url, context=context, settings=settings, logger=logger)
    except errors.APINotFoundError:
        # A group-version disappears when its last resource is deleted, e.g. a CRD.
        return set()
    return {
        _make_resource(group=group, version=version, preferred=preferred, info=info)
        for info in rsp.get('resources', [])
        if '/' not in info['name']  # sub-resources: pods/status, pods/log, etc.
    }


def _make_resource(
        *,
        group: str,
        version: str,
        preferred: bool,
        info: Mapping[str, Any],
) -> references.Resource:
    kind: str = info['kind']
    return references.Resource(
        group=group,
        version=version,
        plural=info['name'],
        kind=kind,
        # Some distributions (K3s) serve empty singulars for the built-in resources.
        singular=info.get('singularName') or kind.lower(),
        shortcuts=frozenset(info.get('shortNames') or []),
        categories=frozenset(info.get('categories') or []),
        namespaced=info['namespaced'],
        preferred=preferred,
        verbs=frozenset(info.get('verbs') or []),
    )
