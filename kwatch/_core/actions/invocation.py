"""
Calling the user-provided handlers, either sync or async.

The handlers get the object's snapshot only. Partials and decorated
functions are unwrapped to decide how to call them.
"""
import asyncio
import contextvars
import functools
import inspect
from typing import Any, Callable, Coroutine, Optional, TypeVar, Union

from kwatch._cogs.configs import configuration

_R = TypeVar('_R')
SyncOrAsync = Union[_R, Coroutine[None, None, _R]]

# Any handler: sync or async, with any arguments.
Invokable = Callable[..., SyncOrAsync[Optional[object]]]


async def invoke(
        fn: Invokable,
        *args: Any,
        settings: Optional[configuration.Settings] = None,
) -> Any:
    """
    Call the handler and wait for its result.

    The coroutine functions are awaited in the event loop directly.
    The regular functions go to the executor's threads, so that the slow
    or blocking code does not block the watch-streams. In both cases,
    the call ends only when the handler ends, so the events of one stream
    are handled strictly one after another.
    """
    if is_async_fn(fn):
        return await fn(*args)  # type: ignore
    executor = settings.execution.executor if settings is not None else None
    return await _call_in_thread(functools.partial(fn, *args), executor=executor)


async def _call_in_thread(fn: Callable[[], _R], *, executor: Any) -> _R:
    # The context vars are visible in the thread as they are in the caller.
    ctx = contextvars.copy_context()
    loop = asyncio.get_running_loop()
    future = loop.run_in_executor(executor, functools.partial(ctx.run, fn))

    # A thread cannot be interrupted: the cancellation is re-raised once it exits.
    cancelled: Optional[asyncio.CancelledError] = None
    while not future.done():
        try:
            await asyncio.shield(future)
        except asyncio.CancelledError as e:
            cancelled = e
    if cancelled is not None:
        raise cancelled
    return future.result()


def is_async_fn(fn: Optional[Invokable]) -> bool:
    while isinstance(fn, functools.partial) or hasattr(fn, '__wrapped__'):
        fn = fn.func if isinstance(fn, functools.partial) else fn.__wrapped__  # type: ignore
    return fn is not None and inspect.iscoroutinefunction(fn)
