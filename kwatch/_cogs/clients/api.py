import asyncio
import collections.abc
import itertools
from typing import Any, AsyncIterator, Iterable, Mapping, Optional

import aiohttp

from kwatch._cogs.clients import auth, errors
from kwatch._cogs.configs import configuration
from kwatch._cogs.helpers import typedefs

# Retried with a backoff; everything else goes to the caller immediately.
RETRYABLE_ERRORS = (aiohttp.ClientConnectionError, errors.APIServerError, asyncio.TimeoutError)


async def request(
        method: str,
        url: str,  # relative to the server/api root.
        *,
        context: auth.APIContext,
        settings: configuration.Settings,
        payload: Optional[object] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        backoffs: Optional[Iterable[float]] = None,
        logger: typedefs.Logger,
) -> aiohttp.ClientResponse:
    """
    Perform a request and check its status, retrying on the transient errors.

    The retry delays are taken from ``settings.networking.error_backoffs``
    unless explicitly overridden (e.g. ``backoffs=()`` to disable the retries
    when the caller has its own retry policy, as the watch-streams do).

    The response is returned unread: it is the caller's job to read or stream it.
    """
    if '://' not in url:
        url = context.server.rstrip('/') + '/' + url.lstrip('/')
    if timeout is None:
        timeout = aiohttp.ClientTimeout(
            total=settings.networking.request_timeout,
            sock_connect=settings.networking.connect_timeout,
        )

    delays = settings.networking.error_backoffs if backoffs is None else backoffs
    if not isinstance(delays, collections.abc.Iterable):
        delays = [delays]
    total = f"/{len(delays) + 1}" if isinstance(delays, collections.abc.Sized) else ""
    what = f"{method.upper()} {url}"

    for retry, delay in enumerate(itertools.chain(delays, [None]), start=1):
        attempt = f"#{retry}{total}"
        if retry > 1:
            logger.debug(f"Request attempt {attempt}: {what}")
        try:
            response = await context.session.request(
                method=method, url=url, json=payload, headers=headers, timeout=timeout,
            )
            await errors.check_response(response)  # leaves the body unread on success.
        except RETRYABLE_ERRORS as e:
            if delay is not None:
                logger.warning(f"Request attempt {attempt} failed; will retry: {what} -> {e!r}")
                await asyncio.sleep(delay)
                continue
            if total != "/1":
                logger.error(f"Request attempt {attempt} failed; escalating: {what} -> {e!r}")
            raise

        if retry > 1:
            logger.debug(f"Request attempt {attempt} succeeded: {what}")
        context.add_response(response)
        return response

    raise RuntimeError("Unreachable: the last attempt either returns or raises.")


async def _read_json(method: str, url: str, **kwargs: Any) -> Any:
    response = await request(method, url, **kwargs)
    async with response:
        return await response.json()


async def get(url: str, **kwargs: Any) -> Any:
    return await _read_json('get', url, **kwargs)


async def post(url: str, **kwargs: Any) -> Any:
    return await _read_json('post', url, **kwargs)


async def put(url: str, **kwargs: Any) -> Any:
    return await _read_json('put', url, **kwargs)


async def delete(url: str, **kwargs: Any) -> Any:
    return await _read_json('delete', url, **kwargs)


async def iter_jsonlines(
        content: aiohttp.StreamReader,
        chunk_size: int = 1024 * 1024,
) -> AsyncIterator[bytes]:
    """
    Iterate over the non-empty lines of a streaming response.

    The aiohttp's own ``async for line in response.content`` fails on lines
    longer than its buffer's limit (128 KB by default), while the objects
    in the watch-streams can be much longer (e.g. secrets and config maps).
    So the content is read by big chunks and split into lines here.
    """
    tail = b''
    async for chunk in content.iter_chunked(chunk_size):
        lines = (tail + chunk).split(b'\n')
        tail = lines.pop()
        for line in lines:
            if line:
                yield line
    if tail:
        yield tail
