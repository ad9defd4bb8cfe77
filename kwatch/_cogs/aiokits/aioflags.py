"""
Flags: the externally raised signals to stop the long-running activities.

The callers can use any of the commonly available primitives as stoppers:
asyncio's events & futures for the in-loop use, or threading's events and
``concurrent.futures`` futures when the loops are driven from other threads
(e.g. a GUI, a test runner, or a signal handler in the main thread).

Non-asyncio primitives are generally not our worry,
but we support them for convenience.
"""
import asyncio
import concurrent.futures
import threading
from typing import Any, Optional, Union

from kwatch._cogs.aiokits import aiotasks

Flag = Union[aiotasks.Future, asyncio.Event, concurrent.futures.Future, threading.Event]

# How often to check the threading events, which cannot be awaited natively.
THREADING_POLL_INTERVAL = 0.1


async def wait_flag(
        flag: Optional[Flag],
) -> Any:
    """
    Wait for a flag to be raised.

    With no flag, wait forever: the activity can then be stopped
    only by cancelling its task, which is the regular asyncio way.
    """
    if flag is None:
        await asyncio.Event().wait()
    elif isinstance(flag, asyncio.Future):
        return await asyncio.shield(flag)
    elif isinstance(flag, asyncio.Event):
        return await flag.wait()
    elif isinstance(flag, concurrent.futures.Future):
        return await asyncio.shield(asyncio.wrap_future(flag))
    elif isinstance(flag, threading.Event):
        # Blocking on it in a thread would leave that thread hanging if the waiter is cancelled.
        while not flag.is_set():
            await asyncio.sleep(THREADING_POLL_INTERVAL)
        return True
    else:
        raise TypeError(f"Unsupported type of a flag: {flag!r}")


async def raise_flag(
        flag: Optional[Flag],
) -> None:
    """
    Raise a flag.
    """
    if flag is None:
        pass
    elif isinstance(flag, asyncio.Future):
        if not flag.done():
            flag.set_result(None)
    elif isinstance(flag, asyncio.Event):
        flag.set()
    elif isinstance(flag, concurrent.futures.Future):
        if not flag.done():
            flag.set_result(None)
    elif isinstance(flag, threading.Event):
        flag.set()
    else:
        raise TypeError(f"Unsupported type of a flag: {flag!r}")


def check_flag(
        flag: Optional[Flag],
) -> Optional[bool]:
    """
    Check if a flag is raised.
    """
    if flag is None:
        return None
    elif isinstance(flag, asyncio.Future):
        return flag.done()
    elif isinstance(flag, asyncio.Event):
        return flag.is_set()
    elif isinstance(flag, concurrent.futures.Future):
        return flag.done()
    elif isinstance(flag, threading.Event):
        return flag.is_set()
    else:
        raise TypeError(f"Unsupported type of a flag: {flag!r}")
