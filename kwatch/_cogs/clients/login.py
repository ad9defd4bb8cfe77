"""
Rudimentary login to the cluster: via a kubeconfig file or a service account.

Only the static credentials are supported: the tokens, the client certificates,
the basic auth, and the CA data. The auth-providers' refresh flows and
the exec-plugins are not executed; the cached access tokens are used as is.

.. seealso::
    :mod:`credentials`.
"""
import logging
import os
from typing import Any, Dict, List, Mapping, Optional

import yaml

from kwatch._cogs.helpers import typedefs
from kwatch._cogs.structs import credentials

logger = logging.getLogger(__name__)

# As per https://kubernetes.io/docs/tasks/run-application/access-api-from-pod/
SERVICE_ACCOUNT_DIR = '/var/run/secrets/kubernetes.io/serviceaccount'
SERVICE_ACCOUNT_SERVER = 'https://kubernetes.default.svc'

DEFAULT_KUBECONFIG = '~/.kube/config'


def login(
        *,
        kubeconfig: Optional[str] = None,
        context: Optional[str] = None,
        logger: typedefs.Logger = logger,
) -> credentials.ConnectionInfo:
    """
    Login with whatever is available: the explicit kubeconfig first, then
    the in-cluster service account, then the default kubeconfig files.
    """
    info: Optional[credentials.ConnectionInfo] = None
    explicit = kubeconfig is not None or context is not None
    if not explicit:
        info = login_with_service_account()
        if info is not None:
            logger.debug("Logged in via the in-cluster service account.")
    if info is None:
        info = login_with_kubeconfig(path=kubeconfig, context=context)
        if info is not None:
            logger.debug("Logged in via the kubeconfig file.")
    if info is None:
        raise credentials.LoginError("Cannot authenticate neither in-cluster, nor via kubeconfig.")
    return info


def _read_stripped(path: str) -> Optional[str]:
    if not os.path.exists(path):
        return None
    with open(path, encoding='utf-8') as f:
        return f.read().strip() or None


def login_with_service_account() -> Optional[credentials.ConnectionInfo]:
    """
    Read the credentials mounted into the pods: the token, the namespace and the CA.
    """
    token = _read_stripped(os.path.join(SERVICE_ACCOUNT_DIR, 'token'))
    if token is None:
        return None
    ca_path = os.path.join(SERVICE_ACCOUNT_DIR, 'ca.crt')
    return credentials.ConnectionInfo(
        server=SERVICE_ACCOUNT_SERVER,
        ca_path=ca_path if os.path.exists(ca_path) else None,
        token=token,
        default_namespace=_read_stripped(os.path.join(SERVICE_ACCOUNT_DIR, 'namespace')),
    )


def login_with_kubeconfig(
        path: Optional[str] = None,
        context: Optional[str] = None,
) -> Optional[credentials.ConnectionInfo]:
    """
    Read the credentials of one context from the kubeconfig file(s).

    The path can contain several files separated as in ``$KUBECONFIG``.
    If not specified, ``$KUBECONFIG`` or ``~/.kube/config`` is used;
    ``None`` is returned if there is neither.
    The context, if not specified, is the kubeconfig's ``current-context``.
    """
    paths = _find_kubeconfigs(path)
    if not paths:
        return None

    config = _merge_kubeconfigs(paths)
    context_name = context if context is not None else config['current-context']
    if context_name is None:
        raise credentials.LoginError('Current context is not set in kubeconfigs.')
    if context_name not in config['contexts']:
        known: List[str] = sorted(config['contexts'])
        raise credentials.LoginError(f'Context {context_name!r} is not found in kubeconfigs; '
                                     f'known contexts: {known!r}')

    ctx = config['contexts'][context_name]
    cluster_name = ctx.get('cluster')
    if cluster_name not in config['clusters']:
        raise credentials.LoginError(f'Cluster {cluster_name!r} is not found in kubeconfigs.')
    cluster = config['clusters'][cluster_name]
    user = config['users'].get(ctx.get('user'), {})
    return _make_connection_info(cluster=cluster, user=user, namespace=ctx.get('namespace'))


def _find_kubeconfigs(path: Optional[str]) -> List[str]:
    # As per https://kubernetes.io/docs/concepts/configuration/organize-cluster-access-kubeconfig/
    value = path or os.environ.get('KUBECONFIG')
    if not value and os.path.exists(os.path.expanduser(DEFAULT_KUBECONFIG)):
        value = DEFAULT_KUBECONFIG
    items = (value or '').split(os.pathsep)
    return [os.path.expanduser(item.strip()) for item in items if item.strip()]


def _merge_kubeconfigs(paths: List[str]) -> Dict[str, Any]:
    """
    Merge the files into one config: the first file wins for every named item.

    Every listed file must exist and be parseable, as ``kubectl`` requires.
    """
    merged: Dict[str, Any] = {'current-context': None, 'contexts': {}, 'clusters': {}, 'users': {}}
    for path in paths:
        try:
            with open(path, encoding='utf-8') as f:
                config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise credentials.LoginError(f"Cannot read the kubeconfig {path!r}: {e}") from e

        if merged['current-context'] is None:
            merged['current-context'] = config.get('current-context')
        for section, field in [('contexts', 'context'), ('clusters', 'cluster'), ('users', 'user')]:
            for item in config.get(section) or []:
                merged[section].setdefault(item['name'], item.get(field) or {})
    return merged


def _make_connection_info(
        *,
        cluster: Mapping[str, Any],
        user: Mapping[str, Any],
        namespace: Optional[str],
) -> credentials.ConnectionInfo:
    # The token cached by an auth-provider, if any; it is not refreshed here.
    provider_token = (user.get('auth-provider') or {}).get('config', {}).get('access-token')
    return credentials.ConnectionInfo(
        server=cluster.get('server'),
        ca_path=cluster.get('certificate-authority'),
        ca_data=cluster.get('certificate-authority-data'),
        insecure=cluster.get('insecure-skip-tls-verify'),
        certificate_path=user.get('client-certificate'),
        certificate_data=user.get('client-certificate-data'),
        private_key_path=user.get('client-key'),
        private_key_data=user.get('client-key-data'),
        username=user.get('username'),
        password=user.get('password'),
        token=user.get('token') or provider_token,
        default_namespace=namespace,
    )
