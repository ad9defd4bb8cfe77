import asyncio
import logging

import aiohttp
import pytest

from kwatch._cogs.clients import api
from kwatch._cogs.clients.errors import APIBadRequestError, APIConflictError, APIError, \
                                        APIForbiddenError, APINotFoundError, \
                                        APIServerError, APITooManyRequestsError, \
                                        APIUnauthorizedError, APIUnprocessableError, \
                                        from_status, is_transient

logger = logging.getLogger(__name__)


def test_aiohttp_is_not_leaked_outside():
    assert not issubclass(APIError, aiohttp.ClientError)


def test_exception_without_payload():
    exc = APIError(None, status=456)
    assert exc.status == 456
    assert exc.code is None
    assert exc.reason is None
    assert exc.message is None
    assert exc.details is None
    assert str(exc) == "(456) no details"


def test_exception_with_payload():
    exc = APIError({"message": "msg", "code": 123, "reason": "Boo", "details": {"a": "b"}},
                   status=456)
    assert exc.status == 456
    assert exc.code == 123
    assert exc.reason == "Boo"
    assert exc.message == "msg"
    assert exc.details == {"a": "b"}
    assert str(exc) == "(456) msg"


@pytest.mark.parametrize('status, exctype', [
    (400, APIBadRequestError),
    (401, APIUnauthorizedError),
    (403, APIForbiddenError),
    (404, APINotFoundError),
    (409, APIConflictError),
    (422, APIUnprocessableError),
    (429, APITooManyRequestsError),
    (500, APIServerError),
    (503, APIServerError),
    (418, APIError),
])
async def test_error_classes_by_status(fake_api, context, settings, status, exctype):
    settings.networking.error_backoffs = []
    fake_api.add('GET', '/url', status)

    with pytest.raises(exctype) as e:
        await api.get('/url', context=context, settings=settings, logger=logger)

    assert type(e.value) is exctype
    assert e.value.status == status
    assert e.value.code == status
    assert e.value.message == "boo!"
    assert isinstance(e.value.__cause__, aiohttp.ClientResponseError)


async def test_error_payloads_other_than_status_are_hidden(fake_api, context, settings):
    fake_api.add('GET', '/url', (403, {'kind': 'Secret', 'data': {'password': 'secret'}}))

    with pytest.raises(APIForbiddenError) as e:
        await api.get('/url', context=context, settings=settings, logger=logger)

    assert e.value.status == 403
    assert e.value.message is None
    assert 'secret' not in repr(e.value.args)


async def test_error_payloads_that_are_not_json(fake_api, context, settings):
    fake_api.add('GET', '/url', (401, "Unauthorized!"))

    with pytest.raises(APIUnauthorizedError) as e:
        await api.get('/url', context=context, settings=settings, logger=logger)

    assert e.value.status == 401
    assert e.value.message is None


@pytest.mark.parametrize('code, exctype', [
    (403, APIForbiddenError),
    (404, APINotFoundError),
    (500, APIServerError),
    (504, APIServerError),
])
def test_errors_from_watch_statuses(code, exctype):
    exc = from_status({'kind': 'Status', 'code': code, 'message': 'msg'})
    assert type(exc) is exctype
    assert exc.status == code
    assert exc.message == 'msg'


@pytest.mark.parametrize('payload', [
    None,
    'text',
    {'kind': 'Pod'},
    {'kind': 'Status'},
    {'kind': 'Status', 'code': 200},
    {'kind': 'Status', 'code': 'xxx'},
])
def test_errors_from_unrecognised_watch_statuses(payload):
    exc = from_status(payload)
    assert isinstance(exc, APIServerError)
    assert exc.status == 500


@pytest.mark.parametrize('status', [408, 410, 429, 500, 502, 503, 504])
def test_transient_api_errors(status):
    assert is_transient(APIError(None, status=status))


@pytest.mark.parametrize('status', [400, 401, 403, 404, 409, 422])
def test_permanent_api_errors(status):
    assert not is_transient(APIError(None, status=status))


@pytest.mark.parametrize('exc', [
    aiohttp.ClientConnectionError("boo!"),
    aiohttp.ServerDisconnectedError(),
    aiohttp.ClientPayloadError("boo!"),
    asyncio.TimeoutError(),
    ConnectionResetError(),
])
def test_transient_low_level_errors(exc):
    assert is_transient(exc)


@pytest.mark.parametrize('exc', [
    ValueError("boo!"),
    KeyError('key'),
    RuntimeError(),
    aiohttp.ClientResponseError(None, ()),
])
def test_permanent_low_level_errors(exc):
    assert not is_transient(exc)
