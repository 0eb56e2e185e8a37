"""Environment configuration for proxy agents.

Environment Variables:
    HTTP_PROXY / http_proxy: Proxy URL for plain HTTP destinations
    HTTPS_PROXY / https_proxy: Used when no HTTP_PROXY is set
    NO_PROXY / no_proxy: Hosts that bypass the proxy (suffix matching)
    PROXY_AGENT_NO_PROXY: Hosts that bypass the proxy (exact matching)
    REQUESTS_CA_BUNDLE / SSL_CERT_FILE: CA bundle for TLS proxies
    PROXY_AGENT_SSL_VERIFY: Set to 'false', '0' or 'no' to skip TLS
        verification of the proxy
    PROXY_AGENT_LOG_LEVEL: Log level for the command line tool
"""

import logging
import os
import urllib.parse
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

ENV_HTTP_PROXY = "HTTP_PROXY"
ENV_HTTPS_PROXY = "HTTPS_PROXY"
ENV_NO_PROXY = "NO_PROXY"
ENV_PROXY_AGENT_NO_PROXY = "PROXY_AGENT_NO_PROXY"
ENV_PROXY_AGENT_SSL_VERIFY = "PROXY_AGENT_SSL_VERIFY"
ENV_PROXY_AGENT_LOG_LEVEL = "PROXY_AGENT_LOG_LEVEL"

_CA_BUNDLE_VARS = ("REQUESTS_CA_BUNDLE", "SSL_CERT_FILE")


# ============================================================
# Proxy location
# ============================================================

def get_proxy_url() -> Optional[str]:
    """Get the proxy URL from the environment.

    HTTP_PROXY is checked before HTTPS_PROXY since the agent only relays
    plain HTTP requests.

    Returns:
        Proxy URL or None if not configured.
    """
    for var in [ENV_HTTP_PROXY, ENV_HTTP_PROXY.lower(),
                ENV_HTTPS_PROXY, ENV_HTTPS_PROXY.lower()]:
        url = os.environ.get(var)
        if url:
            return url
    return None


# ============================================================
# Proxy bypass
# ============================================================

def _get_exact_no_proxy_hosts() -> List[str]:
    value = os.environ.get(ENV_PROXY_AGENT_NO_PROXY, "")
    return [h.strip().lower() for h in value.split(",") if h.strip()]


def _get_no_proxy_entries() -> List[str]:
    """Entries of NO_PROXY, falling back to no_proxy, lowercased."""
    value = os.environ.get(ENV_NO_PROXY) or os.environ.get(ENV_NO_PROXY.lower(), "")
    return [e.strip().lower() for e in value.split(",") if e.strip()]


def _matches_no_proxy(host: str, port: Optional[int], entry: str) -> bool:
    """Check a lowercase host[:port] against one NO_PROXY entry.

    - '*' matches everything
    - 'example.com' matches it and any subdomain
    - '.example.com' matches any subdomain and the bare domain
    - 'host:port' only matches that port
    """
    if entry == "*":
        return True

    entry_host, _, entry_port = entry.rpartition(":")
    if entry_host and entry_port.isdigit():
        if port != int(entry_port):
            return False
    else:
        entry_host = entry

    if not entry_host:
        return False

    bare = entry_host.lstrip(".")
    return host == bare or host.endswith("." + bare)


def should_bypass_proxy(url: str) -> bool:
    """Check whether requests to ``url`` should go direct.

    Args:
        url: The destination URL.

    Returns:
        True if the host is listed in PROXY_AGENT_NO_PROXY or matches
        NO_PROXY.
    """
    parsed = urllib.parse.urlsplit(url)
    host = parsed.hostname
    if not host:
        return False
    try:
        port = parsed.port
    except ValueError:
        port = None

    if host in _get_exact_no_proxy_hosts():
        return True
    return any(_matches_no_proxy(host, port, e) for e in _get_no_proxy_entries())


# ============================================================
# TLS to the proxy
# ============================================================

def active_cert_bundle() -> Optional[str]:
    """Return the CA bundle named by REQUESTS_CA_BUNDLE or SSL_CERT_FILE."""
    for var in _CA_BUNDLE_VARS:
        value = os.environ.get(var)
        if value:
            return os.path.abspath(os.path.expanduser(value))
    return None


def is_ssl_verify_disabled() -> bool:
    value = os.environ.get(ENV_PROXY_AGENT_SSL_VERIFY, "").lower()
    return value in ("false", "0", "no")


def get_ssl_verify_value() -> Union[bool, str]:
    """Default ``verify`` setting for TLS connections to a proxy.

    Returns:
        False when verification is disabled, the CA bundle path when one is
        configured and present, True otherwise.
    """
    if is_ssl_verify_disabled():
        return False
    bundle = active_cert_bundle()
    if bundle:
        if os.path.isfile(bundle):
            return bundle
        logger.warning(
            "SSL CA bundle not found: %s (from REQUESTS_CA_BUNDLE or "
            "SSL_CERT_FILE). Falling back to default certificate verification.",
            bundle,
        )
    return True


def get_log_level(default: int = logging.WARNING) -> int:
    name = os.environ.get(ENV_PROXY_AGENT_LOG_LEVEL, "").upper()
    level = logging.getLevelName(name) if name else default
    return level if isinstance(level, int) else default
