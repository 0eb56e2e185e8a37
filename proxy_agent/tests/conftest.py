"""Local servers for proxy_agent tests.

Run tests with: pytest proxy_agent/tests/

Provides a target HTTP server that echoes the request it received as JSON,
and a forward proxy (plain and TLS) that relays absolute-form requests to it
and records the request lines it saw.
"""

import asyncio
import datetime
import ipaddress
import json
import ssl
import urllib.parse
from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID


async def _read_request(reader: asyncio.StreamReader) -> Tuple[str, Dict[str, str], bytes]:
    """Read one request; returns (request_line, lowercased headers, body)."""
    head = await reader.readuntil(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    headers = {}
    for line in lines[1:]:
        if line:
            name, _, value = line.partition(":")
            headers[name.strip().lower()] = value.strip()
    body = await reader.readexactly(int(headers.get("content-length", "0")))
    return lines[0], headers, body


def _response(status: str, body: bytes, extra: str = "") -> bytes:
    return (
        f"HTTP/1.1 {status}\r\n"
        f"Content-Type: application/json\r\n"
        f"Content-Length: {len(body)}\r\n"
        f"{extra}"
        f"Connection: close\r\n\r\n"
    ).encode("latin-1") + body


class TargetServer:
    """Echoes each request back as ``{"request_line", "headers", "body"}``."""

    def __init__(self) -> None:
        self.port = 0
        self._server: Optional[asyncio.AbstractServer] = None

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        self._server.close()
        await self._server.wait_closed()

    async def _handle(self, reader, writer) -> None:
        try:
            request_line, headers, body = await _read_request(reader)
            payload = json.dumps({
                "request_line": request_line,
                "headers": headers,
                "body": body.decode("utf-8"),
            }).encode("utf-8")
            writer.write(_response("200 OK", payload))
            await writer.drain()
        finally:
            writer.close()


class ForwardProxy:
    """Relays absolute-form requests to their destination, adding ``Via``.

    Args:
        ssl_context: Serve TLS with this context.
        required_auth: Expected ``Proxy-Authorization`` value; requests
            without it get 407.
    """

    def __init__(
        self,
        ssl_context: Optional[ssl.SSLContext] = None,
        required_auth: Optional[str] = None,
    ) -> None:
        self.port = 0
        self.request_lines: List[str] = []
        self.received_headers: List[Dict[str, str]] = []
        self._ssl_context = ssl_context
        self._required_auth = required_auth
        self._server: Optional[asyncio.AbstractServer] = None

    async def start(self) -> None:
        self._server = await asyncio.start_server(
            self._handle, "127.0.0.1", 0, ssl=self._ssl_context,
        )
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        self._server.close()
        await self._server.wait_closed()

    async def _handle(self, reader, writer) -> None:
        try:
            request_line, headers, body = await _read_request(reader)
            self.request_lines.append(request_line)
            self.received_headers.append(headers)

            if self._required_auth and headers.get("proxy-authorization") != self._required_auth:
                writer.write(_response(
                    "407 Proxy Authentication Required", b"{}",
                    'Proxy-Authenticate: Basic realm="test"\r\n',
                ))
                await writer.drain()
                return

            method, target, version = request_line.split(" ", 2)
            url = urllib.parse.urlsplit(target)
            if url.scheme != "http" or not url.hostname:
                writer.write(_response("400 Bad Request", b"{}"))
                await writer.drain()
                return

            path = url.path or "/"
            if url.query:
                path += "?" + url.query
            forwarded = [f"{method} {path} {version}"]
            for name, value in headers.items():
                if name not in ("proxy-authorization", "proxy-connection"):
                    forwarded.append(f"{name}: {value}")
            forwarded.append("via: 1.1 test-proxy")

            up_reader, up_writer = await asyncio.open_connection(url.hostname, url.port or 80)
            up_writer.write(("\r\n".join(forwarded) + "\r\n\r\n").encode("latin-1") + body)
            await up_writer.drain()
            upstream_response = await up_reader.read()
            up_writer.close()
            await up_writer.wait_closed()

            writer.write(upstream_response)
            await writer.drain()
        finally:
            writer.close()


def _key_usage(**enabled) -> x509.KeyUsage:
    flags = dict.fromkeys((
        "digital_signature", "content_commitment", "key_encipherment",
        "data_encipherment", "key_agreement", "key_cert_sign", "crl_sign",
        "encipher_only", "decipher_only",
    ), False)
    flags.update(enabled)
    return x509.KeyUsage(**flags)


def _write_proxy_certs(tmp_path) -> Tuple[str, str, str]:
    """Write a test CA and a 127.0.0.1 server cert; returns (ca, cert, key) paths."""
    now = datetime.datetime.now(datetime.timezone.utc)

    def builder(subject, issuer, key):
        return (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(minutes=5))
            .not_valid_after(now + datetime.timedelta(days=1))
        )

    ca_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    ca_name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "proxy-agent test CA")])
    ca_cert = (
        builder(ca_name, ca_name, ca_key)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(ca_key.public_key()), critical=False)
        .add_extension(x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()), critical=False)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(_key_usage(key_cert_sign=True, crl_sign=True), critical=True)
        .sign(ca_key, hashes.SHA256())
    )

    server_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    server_cert = (
        builder(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "127.0.0.1")]), ca_name, server_key)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(server_key.public_key()), critical=False)
        .add_extension(x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()), critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(_key_usage(digital_signature=True, key_encipherment=True), critical=True)
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .add_extension(x509.SubjectAlternativeName([
            x509.DNSName("localhost"),
            x509.IPAddress(ipaddress.IPv4Address("127.0.0.1")),
        ]), critical=False)
        .sign(ca_key, hashes.SHA256())
    )

    ca_path = tmp_path / "ca.pem"
    cert_path = tmp_path / "proxy.pem"
    key_path = tmp_path / "proxy.key"
    ca_path.write_bytes(ca_cert.public_bytes(serialization.Encoding.PEM))
    cert_path.write_bytes(server_cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(server_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    ))
    return str(ca_path), str(cert_path), str(key_path)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def target_server():
    server = TargetServer()
    await server.start()
    yield server
    await server.stop()


@pytest_asyncio.fixture
async def proxy_server():
    proxy = ForwardProxy()
    await proxy.start()
    yield proxy
    await proxy.stop()


@pytest_asyncio.fixture
async def auth_proxy_server():
    proxy = ForwardProxy(required_auth="Basic Zm9vOmJhcg==")
    await proxy.start()
    yield proxy
    await proxy.stop()


@pytest.fixture
def proxy_certs(tmp_path):
    """(ca_path, cert_path, key_path) for a TLS proxy on 127.0.0.1."""
    return _write_proxy_certs(tmp_path)


@pytest_asyncio.fixture
async def tls_proxy_server(proxy_certs):
    _, cert_path, key_path = proxy_certs
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(cert_path, key_path)
    proxy = ForwardProxy(ssl_context=context)
    await proxy.start()
    yield proxy
    await proxy.stop()
