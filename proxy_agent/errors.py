"""Error types for the proxy agent.

Transport failures are not wrapped: whatever ``asyncio.open_connection``
raises reaches the caller as-is. ``TransportError`` names that family so
callers have a single thing to catch.
"""


class ProxyAgentError(Exception):
    """Base class for proxy agent errors."""
    pass


class ConfigurationError(ProxyAgentError, ValueError):
    """No usable proxy location was supplied.

    Raised at construction time and never retried.
    """

    def __init__(self, message: str = "", received=None):
        self.received = received
        if not message:
            message = (
                "an HTTP(S) proxy server `host` and `port` must be specified, "
                "either as a URL like http://proxy.example.com:8080 or as a "
                "mapping with `host`/`hostname` and `port`"
            )
        super().__init__(message)


class ResponseError(ProxyAgentError):
    """The response could not be read off the connection."""
    pass


# ConnectionRefusedError, socket.gaierror and ssl.SSLError all derive from it.
TransportError = OSError
