"""
K8s API errors, independent of the HTTP client library.

The HTTP errors with the K8s ``Status`` payloads are converted to the own
exception classes, with the original client errors chained as the causes.
The selected statuses get their own classes to be caught specifically;
other statuses are raised as the base :class:`APIError`.

The low-level networking errors (connections, SSL, timeouts) are not wrapped:
they are raised by the client library as is. Both kinds are classified into
transient and permanent ones by :func:`is_transient`.
"""
import asyncio
import collections.abc
import json
from typing import Any, Collection, Dict, Optional, Type

import aiohttp
from typing_extensions import Literal, TypedDict

# The statuses which mean "try again later" rather than "you are wrong".
TRANSIENT_STATUSES = frozenset({
    408,  # Request Timeout
    410,  # Gone: the watch's resource version is too old; a fresh watch is needed.
    429,  # Too Many Requests
})


class RawStatusCause(TypedDict):
    field: str
    reason: str
    message: str


class RawStatusDetails(TypedDict):
    name: str
    uid: str
    retryAfterSeconds: int
    kind: str
    group: str
    causes: Collection[RawStatusCause]


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.19/#status-v1-meta
class RawStatus(TypedDict):
    apiVersion: str
    kind: Literal["Status"]
    code: int
    status: Literal["Success", "Failure"]
    reason: str
    message: str
    details: RawStatusDetails


class APIError(Exception):
    """ An HTTP error of the API, with the details from its ``Status`` (if any). """

    def __init__(self, payload: Optional[RawStatus], *, status: int) -> None:
        super().__init__((payload or {}).get('message') or f"HTTP {status}", payload)
        self.status = status
        self.payload = payload

    def __str__(self) -> str:
        return f"({self.status}) {self.message or 'no details'}"

    def _get(self, key: str) -> Any:
        return self.payload.get(key) if self.payload else None

    @property
    def code(self) -> Optional[int]:
        return self._get('code')

    @property
    def reason(self) -> Optional[str]:
        return self._get('reason')

    @property
    def message(self) -> Optional[str]:
        return self._get('message')

    @property
    def details(self) -> Optional[RawStatusDetails]:
        return self._get('details')


class APIBadRequestError(APIError):
    pass


class APIUnauthorizedError(APIError):
    pass


class APIForbiddenError(APIError):
    pass


class APINotFoundError(APIError):
    pass


class APIConflictError(APIError):
    pass


class APIUnprocessableError(APIError):
    pass


class APITooManyRequestsError(APIError):
    pass


class APIServerError(APIError):
    pass


ERROR_CLASSES: Dict[int, Type[APIError]] = {
    400: APIBadRequestError,
    401: APIUnauthorizedError,
    403: APIForbiddenError,
    404: APINotFoundError,
    409: APIConflictError,
    422: APIUnprocessableError,
    429: APITooManyRequestsError,
}


def get_error_class(status: int) -> Type[APIError]:
    if status >= 500:
        return APIServerError
    return ERROR_CLASSES.get(status, APIError)


def _as_status(payload: Any) -> Optional[RawStatus]:
    # Only the Status objects are kept: other payloads can contain sensitive data.
    if isinstance(payload, collections.abc.Mapping) and payload.get('kind') == 'Status':
        return payload  # type: ignore
    return None


def from_status(payload: Any) -> APIError:
    """
    Build an error from a ``Status`` object, e.g. as sent in the watch-streams.

    Anything unrecognised is treated as a server-side failure (500).
    """
    status_payload = _as_status(payload)
    code = status_payload.get('code') if status_payload else None
    status = code if isinstance(code, int) and code >= 400 else 500
    return get_error_class(status)(status_payload, status=status)


async def check_response(
        response: aiohttp.ClientResponse,
) -> None:
    """
    Raise the K8s-specific error for a failed response; do nothing otherwise.
    """
    if response.status < 400:
        return

    # The body must be read before raise_for_status(), which releases the connection.
    try:
        payload = _as_status(await response.json())
    except (json.JSONDecodeError, aiohttp.ContentTypeError, aiohttp.ClientConnectionError):
        payload = None

    cls = get_error_class(response.status)
    try:
        response.raise_for_status()
    except aiohttp.ClientResponseError as e:
        raise cls(payload, status=response.status) from e


def is_transient(exc: BaseException) -> bool:
    """
    Classify an error as transient (worth retrying) or permanent.

    Transient are: connectivity issues, timeouts, broken payloads,
    the server-side errors (5xx), and a few statuses that mean "later" (408, 410, 429).
    Everything else (including 4xx API errors and the unknown errors) is permanent:
    retrying an invalid request or a missing permission will not fix it.
    """
    if isinstance(exc, APIError):
        return exc.status >= 500 or exc.status in TRANSIENT_STATUSES
    return isinstance(exc, (
        aiohttp.ClientConnectionError,
        aiohttp.ClientPayloadError,
        asyncio.TimeoutError,
        ConnectionError,
    ))
