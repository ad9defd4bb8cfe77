"""
The main kwatch module for all the exported functions & classes.
"""
# isort: skip_file

# Unlike all other places, where we import other modules and refer
# the functions via the modules, this is the library's top-level interface,
# as it is seen by the users. So, we export the individual functions.

from kwatch._cogs.clients.errors import (
    APIError,
    APIBadRequestError,
    APIUnauthorizedError,
    APIForbiddenError,
    APINotFoundError,
    APIConflictError,
    APIUnprocessableError,
    APITooManyRequestsError,
    APIServerError,
    is_transient,
)
from kwatch._cogs.clients.login import (
    login,
    login_with_kubeconfig,
    login_with_service_account,
)
from kwatch._cogs.clients.resources import (
    ResourceClient,
    ResourceClientProtocol,
    StreamProtocol,
    ResourceNotFoundError,
    AmbiguousResourceError,
)
from kwatch._cogs.configs.configuration import (
    Settings,
    KubernetesSettings,
    NetworkingSettings,
    WatchingSettings,
    WaitingSettings,
    LoggingSettings,
    ExecutionSettings,
)
from kwatch._cogs.configs.loading import (
    ConfigError,
    load_settings,
    parse_duration,
)
from kwatch._cogs.helpers.typedefs import (
    Logger,
)
from kwatch._cogs.helpers.versions import (
    version as __version__,
)
from kwatch._cogs.structs.bodies import (
    RawBody,
    ChangeEvent,
    EventKind,
)
from kwatch._cogs.structs.credentials import (
    LoginError,
    ConnectionInfo,
)
from kwatch._cogs.structs.references import (
    Resource,
    ResourceIdentity,
    Selector,
)
from kwatch._core.actions.backoffs import (
    RetryPolicy,
)
from kwatch._core.actions.loggers import (
    LogFormat,
    configure,
)
from kwatch._core.intents.conditions import (
    ConditionParseError,
    parse_condition,
    parse_conditions,
)
from kwatch._core.reactor.dispatching import (
    Handler,
    HandlerSet,
    SessionEnd,
    dispatch_events,
)
from kwatch._core.reactor.running import (
    run,
)
from kwatch._core.reactor.waiting import (
    Predicate,
    PollerState,
    WaitSpec,
    WaitResult,
    WaitError,
    WaitTimeoutError,
    WaitCancelledError,
    exists,
    wait_for_condition,
)
from kwatch._core.reactor.watching import (
    WatchSpec,
    WatchResult,
    WatchError,
    WatchEstablishmentError,
    WatchAbortedError,
    watch_resource,
)

__all__ = [
    'APIError',
    'APIBadRequestError',
    'APIUnauthorizedError',
    'APIForbiddenError',
    'APINotFoundError',
    'APIConflictError',
    'APIUnprocessableError',
    'APITooManyRequestsError',
    'APIServerError',
    'is_transient',
    'login',
    'login_with_kubeconfig',
    'login_with_service_account',
    'ResourceClient',
    'ResourceClientProtocol',
    'StreamProtocol',
    'ResourceNotFoundError',
    'AmbiguousResourceError',
    'Settings',
    'KubernetesSettings',
    'NetworkingSettings',
    'WatchingSettings',
    'WaitingSettings',
    'LoggingSettings',
    'ExecutionSettings',
    'ConfigError',
    'load_settings',
    'parse_duration',
    'Logger',
    'RawBody',
    'ChangeEvent',
    'EventKind',
    'LoginError',
    'ConnectionInfo',
    'Resource',
    'ResourceIdentity',
    'Selector',
    'RetryPolicy',
    'LogFormat',
    'configure',
    'ConditionParseError',
    'parse_condition',
    'parse_conditions',
    'Handler',
    'HandlerSet',
    'SessionEnd',
    'dispatch_events',
    'run',
    'Predicate',
    'PollerState',
    'WaitSpec',
    'WaitResult',
    'WaitError',
    'WaitTimeoutError',
    'WaitCancelledError',
    'exists',
    'wait_for_condition',
    'WatchSpec',
    'WatchResult',
    'WatchError',
    'WatchEstablishmentError',
    'WatchAbortedError',
    'watch_resource',
]
