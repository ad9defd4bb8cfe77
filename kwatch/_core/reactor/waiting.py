"""
The condition poller: the pull-based observation of a single object.

The object is fetched at a fixed cadence until it satisfies the predicate,
or until the deadline comes. The first fetch is immediate. The absence
of the object is not a failure: it is a normal state of "not yet there"
(e.g. right after its creation was requested), so the polling continues.
Any other error of the API is a failure, and the polling stops immediately.

The outcome is always one of the terminal states of :class:`PollerState`,
reported as :class:`WaitResult`; it is never an exception unless requested
via :meth:`WaitResult.raise_for_state`.
"""
import asyncio
import dataclasses
import enum
from typing import Callable, Optional

from kwatch._cogs.aiokits import aioflags, aiotasks, aiotime
from kwatch._cogs.clients import errors, resources
from kwatch._cogs.configs import configuration
from kwatch._cogs.helpers import typedefs
from kwatch._cogs.structs import bodies, references
from kwatch._core.actions import loggers

Predicate = Callable[[bodies.RawBody], bool]


def exists(body: bodies.RawBody) -> bool:
    """ The default predicate: satisfied as soon as the object is found. """
    return True


class PollerState(enum.Enum):
    POLLING = 'polling'
    SATISFIED = 'satisfied'
    TIMED_OUT = 'timed-out'
    ERRORED = 'errored'
    CANCELLED = 'cancelled'

    def __str__(self) -> str:
        return str(self.value)

    @property
    def terminal(self) -> bool:
        return self is not PollerState.POLLING


class WaitError(Exception):
    """ Raised when the wait is over, but the condition is not satisfied. """

    def __init__(self, message: str, *, result: "WaitResult") -> None:
        super().__init__(message)
        self.result = result


class WaitTimeoutError(WaitError):
    pass


class WaitCancelledError(WaitError):
    pass


@dataclasses.dataclass(frozen=True)
class WaitSpec:
    """
    Which object to wait for, until what, and how often to check.
    """
    identity: references.ResourceIdentity
    predicate: Predicate = exists
    interval: float = 2.0
    timeout: float = 5 * 60

    def __post_init__(self) -> None:
        if self.interval <= 0:
            raise ValueError(f"The polling interval must be positive: {self.interval!r}")
        if self.timeout < 0:
            raise ValueError(f"The timeout cannot be negative: {self.timeout!r}")


@dataclasses.dataclass(frozen=True)
class WaitResult:
    """
    The outcome of waiting: the final state and the last seen object (if any).
    """
    state: PollerState
    snapshot: Optional[bodies.RawBody] = None
    error: Optional[Exception] = None
    polls: int = 0
    elapsed: float = 0.0

    @property
    def satisfied(self) -> bool:
        return self.state is PollerState.SATISFIED

    def raise_for_state(self) -> bodies.RawBody:
        """
        Return the satisfying object, or raise an error for any other outcome.
        """
        if self.state is PollerState.SATISFIED and self.snapshot is not None:
            return self.snapshot
        elif self.state is PollerState.TIMED_OUT:
            raise WaitTimeoutError(f"The condition is not satisfied within {self.elapsed:.3g}s "
                                   f"after {self.polls} poll(s).", result=self)
        elif self.state is PollerState.CANCELLED:
            raise WaitCancelledError(f"The wait is cancelled after {self.polls} poll(s).",
                                     result=self)
        elif self.error is not None:
            raise self.error
        else:
            raise WaitError(f"The wait has ended in an unexpected state: {self.state}.",
                            result=self)


async def wait_for_condition(
        spec: WaitSpec,
        *,
        client: resources.ResourceClientProtocol,
        stopper: Optional[aioflags.Flag] = None,
        settings: Optional[configuration.Settings] = None,
        logger: Optional[typedefs.Logger] = None,
) -> WaitResult:
    """
    Poll the object until the predicate is satisfied, or the deadline comes.

    The polls are scheduled at the fixed cadence from the start, regardless of
    how long the fetches take. The fetches are limited by the remaining time,
    and the last sleep is shortened to end exactly at the deadline,
    after which the wait is timed out with no extra fetch.
    """
    identity = spec.identity
    logger = logger if logger is not None else loggers.ObjectLogger(
        resource=identity.resource, namespace=identity.namespace, name=identity.name)
    loop = asyncio.get_running_loop()
    started = loop.time()
    deadline = started + spec.timeout
    polls = 0
    snapshot: Optional[bodies.RawBody] = None

    def finish(state: PollerState, error: Optional[Exception] = None) -> WaitResult:
        elapsed = loop.time() - started
        logger.debug(f"Waiting for {identity} is over: {state} after {polls} poll(s) "
                     f"in {elapsed:.3g}s.")
        return WaitResult(state=state, snapshot=snapshot, error=error,
                          polls=polls, elapsed=elapsed)

    stop_flag = aioflags.wait_flag(stopper) if stopper is not None else None
    async with aiotasks.stop_waiter(stop_flag, name=f"stopper of {identity}") as waiter:
        while True:
            if waiter.done():
                return finish(PollerState.CANCELLED)

            remaining = deadline - loop.time()
            if remaining <= 0:
                return finish(PollerState.TIMED_OUT)

            polls += 1
            try:
                body = await aiotasks.race(
                    client.fetch(identity),
                    stopper=waiter,
                    timeout=remaining,
                    name=f"fetching of {identity}",
                )
            except aiotasks.Interrupted:
                return finish(PollerState.CANCELLED)
            except errors.APINotFoundError:
                logger.debug(f"The object is not found yet (poll #{polls}).")
                snapshot = None
            except aiotasks.TimedOut:
                return finish(PollerState.TIMED_OUT)
            except Exception as e:
                logger.error(f"Failed to fetch the object: {e!r}")
                return finish(PollerState.ERRORED, error=e)
            else:
                snapshot = body
                try:
                    satisfied = bool(spec.predicate(body))
                except Exception as e:
                    logger.exception(f"The predicate has failed on poll #{polls}.")
                    return finish(PollerState.ERRORED, error=e)
                if satisfied:
                    return finish(PollerState.SATISFIED)
                logger.debug(f"The condition is not satisfied yet (poll #{polls}).")

            # Sleep until the next scheduled poll, but never beyond the deadline.
            next_poll = started + polls * spec.interval
            wakeup_time = min(next_poll, deadline)
            unslept = await aiotime.sleep(wakeup_time - loop.time(), wakeup=waiter)
            if unslept is not None:
                return finish(PollerState.CANCELLED)
            if wakeup_time >= deadline:
                return finish(PollerState.TIMED_OUT)
