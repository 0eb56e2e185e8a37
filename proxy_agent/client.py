"""Minimal asyncio HTTP/1.1 client that takes its connections from a connector.

The client serializes a request's header block as soon as the request is
ended, before any connection is open, then asks a connector for a
connection. ``HttpProxyAgent`` is one such connector; ``DirectConnector``
connects straight to the destination.

Usage:
    from proxy_agent import HttpProxyAgent
    from proxy_agent.client import request

    agent = HttpProxyAgent("http://127.0.0.1:3128")
    response = await request("GET", "http://example.com/", agent=agent)
    print(response.status, response.text())

With ``trust_env=True`` (the default) and no explicit agent, HTTP_PROXY and
NO_PROXY decide whether a proxy is used.
"""

import asyncio
import json
import logging
import urllib.parse
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol, Union

from .agent import Connection, HttpProxyAgent
from .env import get_proxy_url, should_bypass_proxy
from .errors import ResponseError
from .request import HEADER_TERMINATOR, ClientRequest

logger = logging.getLogger(__name__)

_METHODS_WITH_BODY = ("POST", "PUT", "PATCH")


class Connector(Protocol):
    """Anything that can hand the client a connection for a request."""

    async def connect(
        self, request: ClientRequest, options: Mapping[str, Any],
    ) -> Connection:
        ...


class DirectConnector:
    """Connects straight to the destination, leaving the request untouched."""

    async def connect(
        self, request: ClientRequest, options: Mapping[str, Any],
    ) -> Connection:
        host = options.get("hostname") or options.get("host")
        return await asyncio.open_connection(host, options.get("port") or 80)


@dataclass
class Response:
    """A fully read HTTP response."""
    status: int
    reason: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    http_version: str = "HTTP/1.1"

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400

    def text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding, errors="replace")

    def json(self) -> Any:
        return json.loads(self.body)


def select_connector(url: str, trust_env: bool = True) -> Connector:
    """Pick the connector for ``url`` from the environment."""
    if trust_env and get_proxy_url() and not should_bypass_proxy(url):
        return HttpProxyAgent.from_env()
    return DirectConnector()


async def _read_chunked(reader: asyncio.StreamReader) -> bytes:
    chunks = []
    while True:
        line = await reader.readline()
        if not line:
            raise ResponseError("connection closed inside chunked body")
        size_text = line.split(b";", 1)[0].strip()
        try:
            size = int(size_text, 16)
        except ValueError:
            raise ResponseError(f"invalid chunk size: {size_text!r}") from None
        if size == 0:
            # Skip trailers
            while line not in (b"\r\n", b"\n", b""):
                line = await reader.readline()
            return b"".join(chunks)
        chunks.append(await reader.readexactly(size))
        await reader.readexactly(2)


async def read_response(reader: asyncio.StreamReader, method: str = "GET") -> Response:
    """Read one response off ``reader``.

    Raises:
        ResponseError: If the connection closes early or the response is
            malformed.
    """
    try:
        head = await reader.readuntil(HEADER_TERMINATOR)
    except asyncio.IncompleteReadError as e:
        raise ResponseError(
            "connection closed before response headers were complete"
        ) from e
    except asyncio.LimitOverrunError as e:
        raise ResponseError("response header block too large") from e

    lines = head.decode("latin-1").split("\r\n")
    version, _, rest = lines[0].partition(" ")
    status_text, _, reason = rest.partition(" ")
    if not version.startswith("HTTP/") or not status_text.isdigit():
        raise ResponseError(f"malformed status line: {lines[0]!r}")
    status = int(status_text)

    headers: Dict[str, str] = {}
    for line in lines[1:]:
        if not line:
            continue
        name, _, value = line.partition(":")
        name = name.strip().lower()
        value = value.strip()
        headers[name] = f"{headers[name]}, {value}" if name in headers else value

    try:
        if method == "HEAD" or status in (204, 304) or 100 <= status < 200:
            body = b""
        elif "chunked" in headers.get("transfer-encoding", "").lower():
            body = await _read_chunked(reader)
        elif "content-length" in headers:
            body = await reader.readexactly(int(headers["content-length"]))
        else:
            body = await reader.read()
    except asyncio.IncompleteReadError as e:
        raise ResponseError("connection closed before response body was complete") from e
    except ValueError as e:
        raise ResponseError(f"invalid content-length: {headers['content-length']!r}") from e

    return Response(
        status=status, reason=reason, headers=headers, body=body, http_version=version,
    )


async def request(
    method: str,
    url: str,
    *,
    headers: Optional[Mapping[str, str]] = None,
    body: Union[bytes, str, None] = None,
    agent: Optional[Connector] = None,
    trust_env: bool = True,
) -> Response:
    """Send one request and read the response.

    Args:
        method: HTTP method.
        url: Absolute ``http://`` URL.
        headers: Extra request headers.
        body: Request body; strings are UTF-8 encoded.
        agent: Connector to use. Defaults to one chosen from the environment
            when ``trust_env`` is set, else a direct connection.
        trust_env: Honour HTTP_PROXY/NO_PROXY when no agent is given.

    Returns:
        The response.

    Raises:
        ValueError: If ``url`` is not an ``http://`` URL with a host.
        OSError: If the connection cannot be established.
        ResponseError: If the response cannot be read.
    """
    parts = urllib.parse.urlsplit(url)
    if parts.scheme.lower() != "http" or not parts.hostname:
        raise ValueError(f"expected an http:// URL with a host, got {url!r}")

    path = parts.path or "/"
    if parts.query:
        path += "?" + parts.query
    data = body.encode("utf-8") if isinstance(body, str) else (body or b"")

    req = ClientRequest(method, path, headers)
    if not req.has_header("Host"):
        req.set_header("Host", parts.netloc.rpartition("@")[2])
    req.set_header("Connection", "close")
    if data or req.method in _METHODS_WITH_BODY:
        req.set_header("Content-Length", len(data))
    req.end(data)

    connector = agent if agent is not None else select_connector(url, trust_env)
    options = {"hostname": parts.hostname, "host": parts.hostname, "port": parts.port or 80}
    logger.debug("Sending %s %s via %r", req.method, url, connector)

    reader, writer = await connector.connect(req, options)
    try:
        writer.write(req.take_output())
        await writer.drain()
        return await read_response(reader, req.method)
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug("Error while closing connection: %s", e)


async def get(url: str, **kwargs: Any) -> Response:
    return await request("GET", url, **kwargs)
