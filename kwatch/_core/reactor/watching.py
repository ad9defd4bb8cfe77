"""
The retrying watch loop: the push-based observation of a resource.

The loop (re)opens the watch-streams via the resource client, feeds every
stream session to the dispatcher, and reconnects when the session ends.
The failed attempts to open a stream (and the sessions that end without
a single event) are retried with a backoff, but only within the time budget
of one reconnection cycle, and only for the transient errors. The permanent
errors (e.g. no permissions, no such resource) end the loop immediately.

The loop never ends on its own except by giving up: the successful sessions
are followed by the new ones. It ends gracefully only when the stopper is set,
and returns the summary of what was observed.
"""
import asyncio
import dataclasses
from typing import Optional

from kwatch._cogs.aiokits import aioflags, aiotasks, aiotime
from kwatch._cogs.clients import errors, resources
from kwatch._cogs.configs import configuration
from kwatch._cogs.helpers import typedefs
from kwatch._cogs.structs import references
from kwatch._core.actions import backoffs, loggers
from kwatch._core.reactor import dispatching


class WatchError(Exception):
    """ Raised when the watch loop cannot continue. The cause is chained. """

    def __init__(
            self,
            message: str,
            *,
            resource: references.Resource,
            namespace: references.Namespace,
    ) -> None:
        super().__init__(message)
        self.resource = resource
        self.namespace = namespace


class WatchEstablishmentError(WatchError):
    """ Raised when the stream cannot be (re)established within the retry timeout. """


class WatchAbortedError(WatchError):
    """ Raised on a non-transient error: retrying it would not help. """


@dataclasses.dataclass(frozen=True)
class WatchSpec:
    """
    What to watch, how to retry, and whom to notify.
    """
    resource: references.Resource
    namespace: references.Namespace = None
    handlers: dispatching.HandlerSet = dispatching.HandlerSet()
    label_selector: Optional[str] = None
    field_selector: Optional[str] = None
    retry_interval: float = 1.0
    retry_timeout: Optional[float] = 5 * 60
    attempt_timeout: Optional[float] = 30
    backoff_factor: float = 1.0
    backoff_limit: Optional[float] = 60

    @classmethod
    def from_settings(
            cls,
            settings: configuration.Settings,
            *,
            resource: references.Resource,
            namespace: references.Namespace = None,
            handlers: dispatching.HandlerSet = dispatching.HandlerSet(),
            label_selector: Optional[str] = None,
            field_selector: Optional[str] = None,
    ) -> "WatchSpec":
        return cls(
            resource=resource,
            namespace=namespace,
            handlers=handlers,
            label_selector=label_selector,
            field_selector=field_selector,
            retry_interval=settings.watching.retry_interval,
            retry_timeout=settings.watching.retry_timeout,
            attempt_timeout=settings.watching.attempt_timeout,
            backoff_factor=settings.watching.backoff_factor,
            backoff_limit=settings.watching.backoff_limit,
        )

    @property
    def policy(self) -> backoffs.RetryPolicy:
        return backoffs.RetryPolicy(
            interval=self.retry_interval,
            timeout=self.retry_timeout,
            attempt_timeout=self.attempt_timeout,
            factor=self.backoff_factor,
            limit=self.backoff_limit,
        )

    @property
    def where(self) -> str:
        return f'in {self.namespace!r}' if self.namespace is not None else 'cluster-wide'


@dataclasses.dataclass(frozen=True)
class WatchResult:
    """ The summary of a watch loop that was stopped gracefully. """
    sessions: int
    events: int
    failures: int


async def watch_resource(
        spec: WatchSpec,
        *,
        client: resources.ResourceClientProtocol,
        stopper: Optional[aioflags.Flag] = None,
        settings: Optional[configuration.Settings] = None,
        logger: Optional[typedefs.Logger] = None,
) -> WatchResult:
    """
    Watch the resource and dispatch its changes until stopped or failed.

    Returns when the stopper is set. Raises :class:`WatchEstablishmentError`
    if the stream cannot be re-established within the retry timeout,
    and :class:`WatchAbortedError` on the non-transient errors.
    The task cancellation is escalated as usual after the stream is closed.
    """
    logger = logger if logger is not None else loggers.ObjectLogger(
        resource=spec.resource, namespace=spec.namespace)
    loop = asyncio.get_running_loop()
    policy = spec.policy
    state = backoffs.RetryState()
    sessions = events = failures = 0

    logger.debug(f"Starting the watch-stream for {spec.resource} {spec.where}.")
    stop_flag = aioflags.wait_flag(stopper) if stopper is not None else None
    try:
        async with aiotasks.stop_waiter(stop_flag, name=f"stopper of {spec.resource}") as waiter:
            while not waiter.done():
                state.start_cycle(loop.time())

                # Back off after the failures, but only if the budget allows the next attempt.
                if state.failures:
                    delay = state.next_delay(policy)
                    deadline = state.deadline(policy)
                    if deadline is not None and loop.time() + delay >= deadline:
                        raise _give_up(spec, state, logger=logger)
                    logger.debug(f"Reconnecting in {delay:.3g}s after {state.failures} "
                                 f"consecutive failure(s).")
                    unslept = await aiotime.sleep(delay, wakeup=waiter)
                    if unslept is not None:
                        break

                # Open the stream, but not longer than allowed for one attempt or for the cycle.
                timeout = state.attempt_timeout(policy, loop.time())
                if timeout is not None and timeout <= 0:
                    raise _give_up(spec, state, logger=logger)
                try:
                    stream = await aiotasks.race(
                        client.open_stream(
                            spec.resource,
                            spec.namespace,
                            label_selector=spec.label_selector,
                            field_selector=spec.field_selector,
                        ),
                        stopper=waiter,
                        timeout=timeout,
                        name=f"opening of {spec.resource}",
                    )
                except aiotasks.Interrupted:
                    break
                except Exception as e:
                    if not errors.is_transient(e):
                        raise _abort(spec, e, logger=logger) from e
                    failures += 1
                    state.record_failure(e)
                    logger.info(f"Failed to open the watch-stream: {e!r}")
                    continue

                # An open stream is not a success yet: an empty session is a premature close.
                sessions += 1
                logger.debug(f"The watch-stream is established (session #{sessions}).")
                session = await dispatching.dispatch_events(
                    stream,
                    spec.handlers,
                    stop_waiter=waiter,
                    settings=settings,
                    logger=logger,
                )
                events += session.events
                if session.events:
                    state.end_cycle()
                    state.record_success()

                if session.stopped:
                    break
                elif session.error is not None:
                    if not errors.is_transient(session.error):
                        raise _abort(spec, session.error, logger=logger) from session.error
                    failures += 1
                    state.record_failure(session.error)
                    logger.info(f"The watch-stream has failed after {session.events} event(s); "
                                f"reconnecting: {session.error!r}")
                elif not session.events:
                    failures += 1
                    state.record_failure()
                    logger.info("The watch-stream has closed with no events; reconnecting.")
                else:
                    logger.debug(f"The watch-stream has ended after {session.events} event(s); "
                                 f"reconnecting.")
    finally:
        logger.debug(f"Stopping the watch-stream for {spec.resource} {spec.where}.")

    return WatchResult(sessions=sessions, events=events, failures=failures)


def _give_up(
        spec: WatchSpec,
        state: backoffs.RetryState,
        *,
        logger: typedefs.Logger,
) -> WatchEstablishmentError:
    reason = f": {state.last_error!r}" if state.last_error is not None else "."
    message = (f"Cannot establish the watch-stream for {spec.resource} {spec.where} "
               f"within {spec.retry_timeout}s after {state.failures} failure(s){reason}")
    logger.error(message)
    exc = WatchEstablishmentError(message, resource=spec.resource, namespace=spec.namespace)
    exc.__cause__ = state.last_error
    return exc


def _abort(
        spec: WatchSpec,
        error: BaseException,
        *,
        logger: typedefs.Logger,
) -> WatchAbortedError:
    message = f"The watch-stream for {spec.resource} {spec.where} has failed: {error!r}"
    logger.error(message)
    return WatchAbortedError(message, resource=spec.resource, namespace=spec.namespace)
