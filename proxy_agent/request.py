"""Pending HTTP/1.1 request owned by the host client.

The header block is serialized ("frozen") on the first ``write()`` or
``end()`` and queued in ``output`` together with the first body chunk,
before any connection exists. A connector that changes ``path`` or the
headers afterwards uses ``header_frozen`` and ``refreeze_header()`` to bring
the serialized block up to date.
"""

from typing import Dict, List, Mapping, Optional, Tuple

HEADER_TERMINATOR = b"\r\n\r\n"


class ClientRequest:
    """An outgoing request whose bytes have not reached a socket yet.

    Args:
        method: HTTP method.
        path: Request target, usually origin-form (``/path?query``).
        headers: Initial headers. Names are matched case-insensitively.
    """

    def __init__(
        self,
        method: str,
        path: str = "/",
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.method = method.upper()
        self.path = path
        self.output: List[bytes] = []
        self.finished = False
        self._headers: Dict[str, Tuple[str, str]] = {}
        self._header: Optional[bytes] = None
        for name, value in (headers or {}).items():
            self.set_header(name, value)

    def __repr__(self) -> str:
        return f"<ClientRequest {self.method} {self.path}>"

    # ------------------------------------------------------------------
    # Headers
    # ------------------------------------------------------------------

    def set_header(self, name: str, value) -> None:
        self._headers[name.lower()] = (name, str(value))

    def get_header(self, name: str) -> Optional[str]:
        entry = self._headers.get(name.lower())
        return entry[1] if entry else None

    def has_header(self, name: str) -> bool:
        return name.lower() in self._headers

    def remove_header(self, name: str) -> None:
        self._headers.pop(name.lower(), None)

    @property
    def headers(self) -> Dict[str, str]:
        """Headers keyed by the name they were set with."""
        return {name: value for name, value in self._headers.values()}

    # ------------------------------------------------------------------
    # Serialized header block
    # ------------------------------------------------------------------

    @property
    def header_frozen(self) -> bool:
        """True once the header block has been serialized."""
        return self._header is not None

    @property
    def header(self) -> Optional[bytes]:
        return self._header

    def render_header(self) -> bytes:
        """Serialize the request line and headers, blank line included."""
        lines = [f"{self.method} {self.path} HTTP/1.1"]
        lines.extend(f"{name}: {value}" for name, value in self._headers.values())
        return ("\r\n".join(lines) + "\r\n").encode("latin-1") + b"\r\n"

    def refreeze_header(self) -> bytes:
        """Discard the serialized header block and serialize it again.

        Does not touch ``output``; callers that need the queued bytes to
        match must splice the new block in themselves.
        """
        self._header = None
        return self._freeze_header()

    def _freeze_header(self) -> bytes:
        if self._header is None:
            self._header = self.render_header()
        return self._header

    # ------------------------------------------------------------------
    # Body
    # ------------------------------------------------------------------

    def write(self, data: bytes = b"") -> None:
        """Queue body bytes, serializing the header block first if needed."""
        if self.finished:
            raise RuntimeError("write after end")
        if not self.header_frozen:
            self.output.append(self._freeze_header() + data)
        elif data:
            self.output.append(data)

    def end(self, data: bytes = b"") -> None:
        self.write(data)
        self.finished = True

    def take_output(self) -> bytes:
        """Return and clear everything queued so far."""
        data = b"".join(self.output)
        self.output.clear()
        return data
