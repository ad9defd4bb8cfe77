"""
All configuration flags, options, settings to fine-tune the tool.

All settings are grouped semantically just for convenience
(instead of a flat mega-object with all the values in it).

Some of the settings are flags, some are scalars, some are optional,
some are not (but all of them have reasonable defaults).

The settings can be populated from a YAML file (see :mod:`loading`),
and then overridden by the CLI options or the environment variables.
When used as a library, the settings are constructed and modified directly.
"""
import concurrent.futures
import dataclasses
import logging
from typing import Iterable, Optional


@dataclasses.dataclass
class KubernetesSettings:
    """
    Settings for locating the cluster and the default scope of the commands.
    """

    kubeconfig: Optional[str] = None
    """
    A path to the kubeconfig file. If ``None``, ``$KUBECONFIG`` is used,
    or ``~/.kube/config`` if the variable is not set either.
    """

    context: Optional[str] = None
    """
    The kubeconfig's context to use. If ``None``, the ``current-context``.
    """

    namespace: Optional[str] = None
    """
    The namespace for namespaced resources if not specified in the commands.
    If ``None``, the context's default namespace or ``"default"``.
    """


@dataclasses.dataclass
class NetworkingSettings:

    request_timeout: Optional[float] = 5 * 60  # == aiohttp.client.DEFAULT_TIMEOUT
    """
    A timeout for the regular API requests (i.e. not the watch-streams).
    """

    connect_timeout: Optional[float] = None
    """
    A timeout for establishing the TCP connection, both regular & streaming.
    """

    error_backoffs: Iterable[float] = (1, 1, 2, 3, 5)
    """
    Backoff intervals in case of retryable errors of the regular API requests
    (connection errors, timeouts, HTTP 5xx): one more attempt per item.

    The watch-streams ignore this setting: they have their own retry policy
    in :class:`WatchingSettings`.

    To disable the retries, set it to ``[]`` or ``()``.
    """


@dataclasses.dataclass
class WatchingSettings:
    """
    Settings for the retrying watch loop (the push-based observation).
    """

    retry_interval: float = 1.0
    """
    The base delay between the attempts to (re)open a watch-stream.
    """

    retry_timeout: Optional[float] = 5 * 60
    """
    The total time budget for one reconnection cycle, i.e. from the first
    failed attempt until the stream is successfully opened again.
    If ``None`` or ``0``, the loop retries until interrupted.
    """

    attempt_timeout: Optional[float] = 30
    """
    How long one attempt to open a stream can take before it is considered
    failed. It is always capped by the remaining retry budget.
    """

    backoff_factor: float = 1.0
    """
    The multiplier of the delay for every next consecutive failure.
    ``1.0`` means a fixed delay of ``retry_interval`` between the attempts.
    """

    backoff_limit: Optional[float] = 60
    """
    The maximum delay between the attempts, regardless of the backoff factor.
    """

    server_timeout: Optional[float] = None
    """
    The maximum duration of one streaming request (as requested from the server).
    If ``None``, then obey the server-side timeouts (they seem to be random).
    """

    client_timeout: Optional[float] = None
    """
    An HTTP/HTTPS session timeout to use in watch requests.
    """


@dataclasses.dataclass
class WaitingSettings:
    """
    Settings for the condition poller (the pull-based observation).
    """

    interval: float = 2.0
    """
    How often the object is fetched to check the condition.
    """

    timeout: float = 5 * 60
    """
    How long to wait for the condition before giving up.
    """


@dataclasses.dataclass
class LoggingSettings:

    level: int = logging.INFO
    """
    The root logging level when configured from the CLI.
    """

    format: str = 'full'
    """
    The logging format: ``plain``, ``full``, ``json``.
    """


@dataclasses.dataclass
class ExecutionSettings:
    """
    Settings for synchronous handlers execution (e.g. thread-/process-pools).
    """

    executor: concurrent.futures.Executor = dataclasses.field(
        default_factory=concurrent.futures.ThreadPoolExecutor)
    """
    The executor to be used for synchronous handler invocation.

    It can be changed at runtime. Already running handlers (specific
    invocations) will continue with their original executors.
    """

    _max_workers: Optional[int] = None

    @property
    def max_workers(self) -> Optional[int]:
        """
        How many threads/processes is dedicated to handler execution.

        It can be changed at runtime (the threads/processes are not terminated).
        """
        return self._max_workers

    @max_workers.setter
    def max_workers(self, value: int) -> None:
        if value < 1:
            raise ValueError("Can't set thread pool limit lower than 1.")
        self._max_workers = value

        if hasattr(self.executor, '_max_workers'):
            self.executor._max_workers = value  # type: ignore
        else:
            raise TypeError("Current executor does not support `max_workers`.")


@dataclasses.dataclass
class Settings:
    kubernetes: KubernetesSettings = dataclasses.field(default_factory=KubernetesSettings)
    networking: NetworkingSettings = dataclasses.field(default_factory=NetworkingSettings)
    watching: WatchingSettings = dataclasses.field(default_factory=WatchingSettings)
    waiting: WaitingSettings = dataclasses.field(default_factory=WaitingSettings)
    logging: LoggingSettings = dataclasses.field(default_factory=LoggingSettings)
    execution: ExecutionSettings = dataclasses.field(default_factory=ExecutionSettings)
