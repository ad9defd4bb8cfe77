"""
Advanced modes of sleeping.
"""
import asyncio
from typing import Optional, Union

from kwatch._cogs.aiokits import aiotasks


async def sleep(
        delay: Optional[float],
        wakeup: Union[None, asyncio.Event, aiotasks.Future] = None,
) -> Optional[float]:
    """
    Measure the sleep time: either until the timeout, or until woken up.

    Returns the number of seconds left to sleep, or ``None`` if the sleep was
    not interrupted and reached its specified delay (an equivalent of ``0``).
    In theory, the result can be ``0`` if the sleep was interrupted precisely
    the last moment before timing out; this is unlikely to happen though.

    Negative & zero delays are not slept at all, but still yield the control
    to the event loop once, so that other tasks can progress meanwhile.
    """
    if delay is None or delay <= 0:
        await asyncio.sleep(0)
        return None

    if wakeup is None:
        await asyncio.sleep(delay)
        return None

    waiter: aiotasks.Future
    if isinstance(wakeup, asyncio.Event):
        waiter = asyncio.ensure_future(wakeup.wait())
    else:
        waiter = wakeup

    loop = asyncio.get_running_loop()
    start_time = loop.time()
    try:
        done, _ = await asyncio.wait({waiter}, timeout=delay)
    finally:
        if waiter is not wakeup:
            await aiotasks.cancel_and_wait(waiter)

    if not done:
        return None  # interruptable sleep is over: uninterrupted.
    end_time = loop.time()
    duration = end_time - start_time
    return max(0, delay - duration)
