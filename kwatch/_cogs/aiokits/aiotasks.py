"""
Helpers for orchestrating asyncio tasks.

These utilities only support tasks, not more generic futures, coroutines,
or other awaitables. In most cases where we use them, we need specifically
tasks, as we not only wait for them, but also cancel them.

The main use-case is racing a single suspension point (opening a stream,
receiving the next event, fetching an object) against the stopper and
a deadline, so that every loop unwinds promptly when asked to.
"""
import asyncio
import contextlib
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Optional, TypeVar

_T = TypeVar('_T')

# A workaround for a difference in tasks at runtime and type-checking time.
# Otherwise, at runtime: TypeError: 'type' object is not subscriptable.
if TYPE_CHECKING:
    Future = asyncio.Future[Any]
    Task = asyncio.Task[Any]
else:
    Future = asyncio.Future
    Task = asyncio.Task


class Interrupted(Exception):
    """
    Raised when an awaited operation is interrupted by the stopper.

    It is an internal signal between the helpers and the loops; it never
    escapes to the callers, who get a "cancelled" outcome instead.
    """


class TimedOut(asyncio.TimeoutError):
    """
    Raised when an awaited operation does not finish within the race's timeout.

    Unlike the timeouts raised by the awaited operation itself, it means
    that the caller's own time limit is reached.
    """


async def cancel_and_wait(
        task: Future,
) -> None:
    """
    Cancel the task and wait until it is really finished.

    Waiting is important for async generators: their ``aclose()`` fails
    if the generator is still running a cancelled ``__anext__()`` step.
    """
    if not task.done():
        task.cancel()
    with contextlib.suppress(asyncio.CancelledError, Exception):
        await task


async def race(
        aw: Awaitable[_T],
        *,
        stopper: Future,
        timeout: Optional[float] = None,
        name: Optional[str] = None,
) -> _T:
    """
    Await for the result, but not longer than the timeout or until stopped.

    If the awaitable finishes first, its result is returned or its error raised.
    If the stopper fires first, :class:`Interrupted` is raised.
    If the timeout elapses first, :class:`TimedOut` is raised.
    In the latter two cases, the awaitable is cancelled and waited for.

    If the stopper and the awaitable are done at the same time,
    the result of the awaitable wins: the caller checks the stopper anyway.
    """
    task: Future = asyncio.ensure_future(aw)
    if name is not None and isinstance(task, asyncio.Task):
        task.set_name(name)
    try:
        done, _ = await asyncio.wait(
            {task, stopper},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        await cancel_and_wait(task)
        raise

    if task in done:
        return task.result()  # type: ignore

    await cancel_and_wait(task)
    if stopper in done:
        raise Interrupted()
    raise TimedOut()


@contextlib.asynccontextmanager
async def stop_waiter(
        awaitable: Optional[Awaitable[Any]],
        *,
        name: str,
) -> AsyncIterator[Future]:
    """
    Create a signalling future that is done when the stopper is raised.

    With no stopper, the future is a dummy that is never set: the activity
    can then be stopped only by cancelling its task.
    """
    waiter: Future
    if awaitable is not None:
        waiter = asyncio.ensure_future(awaitable)
        if isinstance(waiter, asyncio.Task):
            waiter.set_name(name)
    else:
        waiter = asyncio.get_running_loop().create_future()  # a dummy just to have it

    try:
        yield waiter
    finally:
        await cancel_and_wait(waiter)
