#!/usr/bin/env python3
"""Fetch a URL through an HTTP(S) forward proxy.

Usage:
    # Proxy from the command line
    python -m proxy_agent http://example.com/ --proxy http://127.0.0.1:3128

    # Proxy from HTTP_PROXY (or a .env file)
    python -m proxy_agent http://example.com/

    # POST with a header, TLS proxy with a private CA
    python -m proxy_agent http://example.com/api -X POST -d '{"a": 1}' \\
        -H 'Content-Type: application/json' \\
        --proxy https://proxy.internal:8443 --ca-bundle /etc/ssl/corp.pem
"""

import argparse
import asyncio
import logging
import sys
from typing import Dict, List, Optional

from dotenv import load_dotenv

from .agent import HttpProxyAgent
from .client import request
from .env import get_log_level
from .errors import ConfigurationError, ResponseError, TransportError
from .resolver import parse_proxy_url

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_HTTP_ERROR = 1
EXIT_FAILURE = 2


def _parse_headers(values: List[str]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for value in values:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            raise ValueError(f"invalid header {value!r}, expected 'Name: value'")
        headers[name.strip()] = content.strip()
    return headers


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proxy_agent",
        description="Fetch an http:// URL through an HTTP(S) forward proxy",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m proxy_agent http://example.com/ --proxy http://127.0.0.1:3128
  HTTP_PROXY=http://127.0.0.1:3128 python -m proxy_agent http://example.com/
        """,
    )
    parser.add_argument("url", help="Destination URL (http:// only)")

    # Proxy
    parser.add_argument(
        "--proxy",
        metavar="URL",
        help="Proxy URL (default: HTTP_PROXY / HTTPS_PROXY)",
    )
    parser.add_argument(
        "--insecure", "-k",
        action="store_true",
        help="Skip certificate verification for a TLS proxy",
    )
    parser.add_argument(
        "--ca-bundle",
        metavar="PATH",
        help="CA bundle for a TLS proxy (default: REQUESTS_CA_BUNDLE / SSL_CERT_FILE)",
    )

    # Request
    parser.add_argument(
        "--method", "-X",
        default="GET",
        help="HTTP method (default: GET)",
    )
    parser.add_argument(
        "--data", "-d",
        help="Request body",
    )
    parser.add_argument(
        "--header", "-H",
        action="append",
        default=[],
        help="Extra request header 'Name: value' (repeatable)",
    )

    # Configuration
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to .env file (default: .env)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose logging",
    )
    return parser


def _build_agent(args: argparse.Namespace) -> HttpProxyAgent:
    options = {}
    if args.insecure:
        options["verify"] = False
    elif args.ca_bundle:
        options["verify"] = args.ca_bundle

    if args.proxy:
        return HttpProxyAgent({**parse_proxy_url(args.proxy), **options})
    return HttpProxyAgent.from_env(**options)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    load_dotenv(args.env_file)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else get_log_level(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        headers = _parse_headers(args.header)
        agent = _build_agent(args)
    except (ConfigurationError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    logger.info("Fetching %s via %s", args.url, agent.proxy.url)
    try:
        response = asyncio.run(
            request(args.method, args.url, headers=headers, body=args.data, agent=agent)
        )
    except (TransportError, ResponseError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    print(f"{response.http_version} {response.status} {response.reason}", file=sys.stderr)
    sys.stdout.write(response.text())
    sys.stdout.flush()
    return EXIT_OK if response.ok else EXIT_HTTP_ERROR


if __name__ == "__main__":
    sys.exit(main())
