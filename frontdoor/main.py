"""
Process entry point.

Everything that can make the server useless (manifest, upstream URL, header
policy, build directory, port) is checked before uvicorn binds the port.
Any such problem is logged and the process exits with status 1.
"""

import logging
import logging.config
import os
import sys

import uvicorn
from uvicorn.config import LOGGING_CONFIG

from frontdoor.errors import StartupError
from frontdoor.manifest import load_manifest
from frontdoor.proxy.route import parse_header_overrides
from frontdoor.server import create_app
from frontdoor.upstream import parse_upstream
from frontdoor.vars import (
    ASSET_MANIFEST,
    BUILD_DIR,
    HOST,
    LOG_LEVEL,
    PORT,
    PROXY_TIMEOUT,
    PUSH_TIMEOUT,
    UPSTREAM_HEADER_OVERRIDES,
    UPSTREAM_URL,
)

logger = logging.getLogger("uvicorn.error")


def parse_port(raw: str) -> int:
    try:
        port = int(raw)
    except ValueError:
        raise StartupError(f"PORT must be an integer, got {raw!r}")
    if not 0 < port < 65536:
        raise StartupError(f"PORT out of range: {port}")
    return port


def parse_seconds(name: str, raw: str) -> float:
    try:
        seconds = float(raw)
    except ValueError:
        raise StartupError(f"{name} must be a number of seconds, got {raw!r}")
    if not seconds > 0:
        raise StartupError(f"{name} must be positive, got {raw!r}")
    return seconds


def build_app():
    if not os.path.isdir(BUILD_DIR):
        raise StartupError(f"Build directory {BUILD_DIR} does not exist")

    entrypoints = load_manifest(ASSET_MANIFEST)
    upstream = parse_upstream(UPSTREAM_URL)
    header_overrides = parse_header_overrides(UPSTREAM_HEADER_OVERRIDES)
    proxy_timeout = parse_seconds("PROXY_TIMEOUT", PROXY_TIMEOUT)
    push_timeout = parse_seconds("PUSH_TIMEOUT", PUSH_TIMEOUT)
    logger.info(f"Proxying requests to {upstream.url}")

    return create_app(
        build_dir=BUILD_DIR,
        entrypoints=entrypoints,
        upstream=upstream,
        header_overrides=header_overrides,
        proxy_timeout=proxy_timeout,
        push_timeout=push_timeout,
    )


def main() -> None:
    logging.config.dictConfig(LOGGING_CONFIG)

    try:
        port = parse_port(PORT)
        app = build_app()
    except StartupError as e:
        logger.error(f"Startup failed: {e}")
        sys.exit(1)

    logger.info(f"Starting server on port {port}")
    # uvicorn exits non-zero itself when the port cannot be bound
    uvicorn.run(app, host=HOST, port=port, log_level=LOG_LEVEL, log_config=LOGGING_CONFIG)


if __name__ == "__main__":
    main()
