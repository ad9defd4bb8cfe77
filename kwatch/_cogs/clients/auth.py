"""
The authenticated HTTP sessions for the API calls.

Every API call gets an explicit context (``context=...``): there is no implicit
global state, so several clusters (or several credentials) can be used at once
in the same process, e.g. in tests.
"""
import base64
import contextlib
import ssl
import tempfile
from typing import Dict, List, Optional, Union

import aiohttp

from kwatch._cogs.helpers import versions
from kwatch._cogs.structs import credentials


class APIContext:
    """
    A container for an aiohttp session and the connection's information.

    The context is created once per :class:`ResourceClient` when it is opened,
    and closed together with it. It must be created inside the event loop
    where it is used: the handlers' threads do no requests on their own.
    """

    session: aiohttp.ClientSession
    server: str
    default_namespace: Optional[str]

    # The streaming responses, which are still open and must be closed with the session.
    responses: List[aiohttp.ClientResponse]

    def __init__(
            self,
            info: credentials.ConnectionInfo,
    ) -> None:
        super().__init__()
        self.server = info.server
        self.default_namespace = info.default_namespace
        self.responses = []
        self.session = aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=0, ssl=make_ssl_context(info)),
            headers=make_headers(info),
            auth=aiohttp.BasicAuth(info.username, info.password)
                 if info.username and info.password else None,
        )

    def add_response(self, response: aiohttp.ClientResponse) -> None:
        self.responses[:] = [r for r in self.responses if not r.closed]
        if not response.closed:
            self.responses.append(response)

    async def close(self) -> None:
        for response in self.responses:
            if not response.closed:
                response.close()
        self.responses.clear()
        await self.session.close()


def make_headers(info: credentials.ConnectionInfo) -> Dict[str, str]:
    """
    The session-wide headers: the self-identification & the token auth (if any).
    """
    headers: Dict[str, str] = {'User-Agent': f'kwatch/{versions.version or "unknown"}'}
    if info.scheme and info.token:
        headers['Authorization'] = f'{info.scheme} {info.token}'
    elif info.scheme:
        headers['Authorization'] = info.scheme
    elif info.token:
        headers['Authorization'] = f'Bearer {info.token}'
    return headers


def make_ssl_context(info: credentials.ConnectionInfo) -> ssl.SSLContext:
    """
    The SSL part of the connection: the CA verification & the client certificates.

    The in-memory certificates & keys are not accepted by :mod:`ssl` directly,
    so they are put to the temporary files for as long as they are loaded.
    No files are created when there are no in-memory data, e.g. on a read-only
    file system with the paths only.
    """
    context = ssl.create_default_context(
        purpose=ssl.Purpose.SERVER_AUTH,
        cafile=info.ca_path,
        cadata=decode_to_pem(info.ca_data) if info.ca_data is not None else None,
    )

    with contextlib.ExitStack() as stack:
        cert_path = _materialize(stack, info.certificate_path, info.certificate_data)
        pkey_path = _materialize(stack, info.private_key_path, info.private_key_data)
        if cert_path and pkey_path:
            context.load_cert_chain(certfile=cert_path, keyfile=pkey_path)

    if info.insecure:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def _materialize(
        stack: contextlib.ExitStack,
        path: Optional[str],
        data: Optional[bytes],
) -> Optional[str]:
    if path:
        return path
    elif data:
        file = stack.enter_context(tempfile.NamedTemporaryFile(buffering=0))
        file.write(decode_to_pem(data).encode('ascii'))
        return file.name
    else:
        return None


def decode_to_pem(data: Union[str, bytes]) -> str:
    """ Accept both PEM texts and base64-encoded PEMs, as in kubeconfigs. """
    if isinstance(data, str) and data.startswith('-----BEGIN '):
        return data
    elif isinstance(data, bytes) and data.startswith(b'-----BEGIN '):
        return data.decode('ascii')
    else:
        return base64.b64decode(data).decode('ascii')
