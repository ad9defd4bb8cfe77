"""
Running the observation loops as the CLI commands: until done or interrupted.

On Ctrl+C (SIGINT) or termination (SIGTERM), the stopper is set, so that
the loops exit gracefully with their results instead of being cancelled.
"""
import asyncio
import logging
import signal
import threading
from typing import Any, Awaitable, Callable, Optional, TypeVar

from kwatch._cogs.aiokits import aioflags, aiotasks

logger = logging.getLogger(__name__)

_T = TypeVar('_T')


def run(
        fn: Callable[[aioflags.Flag], Awaitable[_T]],
        *,
        stop_flag: Optional[aioflags.Flag] = None,
) -> _T:
    """
    Run the activity synchronously, with the stopper set on the OS signals.

    The activity gets the stopper as its only argument.
    An externally provided stop-flag also sets the stopper (e.g. in tests).
    """
    return asyncio.run(_run(fn, stop_flag=stop_flag))


async def _run(
        fn: Callable[[aioflags.Flag], Awaitable[_T]],
        *,
        stop_flag: Optional[aioflags.Flag] = None,
) -> _T:
    loop = asyncio.get_running_loop()
    stopper: aiotasks.Future = loop.create_future()

    # On Ctrl+C or pod termination, stop the activities gracefully.
    signals_installed = False
    if threading.current_thread() is threading.main_thread():
        # Handle NotImplementedError when ran on Windows since asyncio only supports Unix signals
        try:
            loop.add_signal_handler(signal.SIGINT, _set_stopper, stopper, signal.SIGINT)
            loop.add_signal_handler(signal.SIGTERM, _set_stopper, stopper, signal.SIGTERM)
            signals_installed = True
        except NotImplementedError:
            logger.warning("OS signals are ignored: can't add signal handler in Windows.")
    else:
        logger.debug("OS signals are ignored: running not in the main thread.")

    # Bridge the external flag (if any) into our stopper.
    async def _stop_flag_checker() -> None:
        await aioflags.wait_flag(stop_flag)
        _set_stopper(stopper, None)

    checker = asyncio.ensure_future(_stop_flag_checker()) if stop_flag is not None else None
    try:
        return await fn(stopper)
    finally:
        if checker is not None:
            await aiotasks.cancel_and_wait(checker)
        if signals_installed:
            loop.remove_signal_handler(signal.SIGINT)
            loop.remove_signal_handler(signal.SIGTERM)


def _set_stopper(stopper: aiotasks.Future, reason: Any) -> None:
    if not stopper.done():
        if reason is not None:
            logger.info(f"Signal {reason.name!s} is received. Stopping.")
        stopper.set_result(reason)
