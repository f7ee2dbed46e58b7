"""Command-line entry point for pubkeyd.

Usage:
    pubkeyd                               # reads the config search path
    pubkeyd --config /etc/pubkeyd/config.yaml --port 2020 --verbose
    python -m pubkeyd.run

Command-line values win over the config file and the environment.
"""

from __future__ import annotations

import argparse
import os
from typing import Optional, Sequence

import uvicorn

from pubkeyd.config import load_config

# Maximum number of concurrent connections accepted by uvicorn; one per
# in-flight sshd lookup is plenty.
UVICORN_LIMIT_CONCURRENCY: int = 100

UVICORN_BACKLOG: int = 50

UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pubkeyd",
        description="Serve GitHub SSH public keys for OneLogin users and roles.",
    )
    parser.add_argument("--config", help="Path to the YAML config file [env PUBKEYD_CONFIG]")
    parser.add_argument("--host", help="Address to bind [env PUBKEYD_HOST]")
    parser.add_argument("--port", type=int, help="TCP port to listen on [env PUBKEYD_PORT]")
    parser.add_argument(
        "--refresh",
        type=float,
        help="OneLogin refresh interval in seconds [env PUBKEYD_REFRESH_INTERVAL]",
    )
    parser.add_argument("--verbose", action="store_true", help="Verbose (DEBUG) logging")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Parse arguments, load config and start uvicorn.

    Raises:
        SystemExit: Propagated from load_config() on config errors.
    """
    args = build_parser().parse_args(argv)

    # pubkeyd.main reads these at import time, so set them before uvicorn imports it.
    if args.verbose:
        os.environ["LOG_LEVEL"] = "DEBUG"
    if args.config:
        os.environ["PUBKEYD_CONFIG"] = args.config
    if args.refresh is not None:
        os.environ["PUBKEYD_REFRESH_INTERVAL"] = str(args.refresh)

    config = load_config(args.config)
    host = args.host or config.server.host
    port = args.port or config.server.port

    uvicorn.run(
        "pubkeyd.main:app",
        host=host,
        port=port,
        log_level="debug" if args.verbose else "info",
        limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
        backlog=UVICORN_BACKLOG,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
    )


if __name__ == "__main__":
    main()
