"""
Dispatching of the change events from one stream session to the handlers.

The events are consumed strictly one by one: the next event is not even read
until the handler of the previous one is finished. This guarantees that the
handlers see the events in the same order as they were produced by the stream.

Every read is raced against the stop-waiter, so that the session ends promptly
when requested, even if the stream is silent for a long time.

The handlers' failures are contained here: they are logged and forgotten,
and the next events are dispatched as usual. The stream's failures are not:
they end the session and are reported to the watch loop, which decides
whether to reconnect or to give up.
"""
import dataclasses
from typing import Any, Callable, Coroutine, Optional, Union

from kwatch._cogs.aiokits import aiotasks
from kwatch._cogs.clients import resources
from kwatch._cogs.configs import configuration
from kwatch._cogs.helpers import typedefs
from kwatch._cogs.structs import bodies
from kwatch._core.actions import invocation

# A handler gets the object's snapshot only. Its result, if any, is ignored.
Handler = Callable[[bodies.RawBody], Union[None, Coroutine[None, None, None]]]


@dataclasses.dataclass(frozen=True)
class HandlerSet:
    """
    The handlers of the change events, each one is optional.

    The events with no handler are observed but dropped.
    The handlers can be either regular functions or coroutine functions.
    """
    on_add: Optional[Handler] = None
    on_modify: Optional[Handler] = None
    on_delete: Optional[Handler] = None

    def select(self, kind: bodies.EventKind) -> Optional[Handler]:
        return (
            self.on_add if kind is bodies.EventKind.ADDED else
            self.on_modify if kind is bodies.EventKind.MODIFIED else
            self.on_delete if kind is bodies.EventKind.DELETED else
            None
        )


@dataclasses.dataclass(frozen=True)
class SessionEnd:
    """
    How one stream session has ended.

    ``stopped`` is true if it was ended by the stop-waiter (not by the stream).
    ``events`` is the number of events received in the session, handled or not.
    ``error`` is the stream's failure, if it was the reason of the end.
    """
    stopped: bool
    events: int
    error: Optional[Exception] = None


async def dispatch_events(
        stream: resources.StreamProtocol,
        handlers: HandlerSet,
        *,
        stop_waiter: aiotasks.Future,
        settings: Optional[configuration.Settings] = None,
        logger: typedefs.Logger,
) -> SessionEnd:
    """
    Consume one stream session and dispatch its events to the handlers.

    The stream is always closed on exit, regardless of how the session ends:
    by the stream's end, by the stream's failure, by the stop-waiter,
    or by the task cancellation (which is escalated as usual).
    """
    events = 0
    iterator = stream.__aiter__()
    try:
        while not stop_waiter.done():
            try:
                event: bodies.ChangeEvent = await aiotasks.race(
                    iterator.__anext__(),
                    stopper=stop_waiter,
                    name='next event',
                )
            except StopAsyncIteration:
                return SessionEnd(stopped=False, events=events)
            except aiotasks.Interrupted:
                break
            except Exception as e:
                return SessionEnd(stopped=False, events=events, error=e)

            events += 1
            await dispatch_event(event, handlers, settings=settings, logger=logger)

        return SessionEnd(stopped=True, events=events)
    finally:
        stream.close()


async def dispatch_event(
        event: bodies.ChangeEvent,
        handlers: HandlerSet,
        *,
        settings: Optional[configuration.Settings] = None,
        logger: typedefs.Logger,
) -> None:
    name = bodies.get_name(event.snapshot)
    namespace = bodies.get_namespace(event.snapshot)
    what = f"{namespace}/{name}" if namespace else f"{name}"

    if event.kind is bodies.EventKind.UNKNOWN:
        logger.warning(f"Ignoring an unsupported event type {event.type!r} for {what}.")
        return

    handler = handlers.select(event.kind)
    if handler is None:
        logger.debug(f"No handler for the {event.kind} event of {what}.")
        return

    try:
        result: Any = await invocation.invoke(handler, event.snapshot, settings=settings)
    except Exception:
        logger.exception(f"Handler for the {event.kind} event of {what} has failed.")
    else:
        if result is not None:
            logger.debug(f"Handler for the {event.kind} event of {what} returned {result!r}.")
