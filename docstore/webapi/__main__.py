"""Run the docstore API under uvicorn: ``python -m docstore.webapi``."""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Dict, Sequence

import uvicorn

from .. import logging_manager as log_mgr

APP_FACTORY = "docstore.webapi.application:create_app"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Serve the docstore HTTP API")
    parser.add_argument("--host", default=os.environ.get("DOCSTORE_HOST", "127.0.0.1"))
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("DOCSTORE_PORT", "8000")),
        help="TCP port (default: %(default)s, or $DOCSTORE_PORT)",
    )
    parser.add_argument(
        "--root",
        type=Path,
        help="Storage root served by the API; overrides DOCSTORE_DIR for this process.",
    )
    parser.add_argument(
        "--auth",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Require X-User-Id on every request (overrides DOCSTORE_AUTH_ENABLED).",
    )
    parser.add_argument("--reload", action="store_true", help="Restart on source changes.")
    parser.add_argument("--log-level", default="info", help="uvicorn log level (default: %(default)s)")
    return parser


def environment_for(args: argparse.Namespace) -> Dict[str, str]:
    """Translate CLI flags into the environment variables the settings layer reads.

    The API builds its context lazily inside the uvicorn worker, so flags have
    to travel through the environment to survive ``--reload`` subprocesses.
    """

    env: Dict[str, str] = {}
    if args.root is not None:
        env["DOCSTORE_DIR"] = str(args.root.expanduser().resolve())
    if args.auth is not None:
        env["DOCSTORE_AUTH_ENABLED"] = "true" if args.auth else "false"
    return env


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    os.environ.update(environment_for(args))
    log_mgr.console_info("Serving docstore API on http://%s:%s", args.host, args.port)
    uvicorn.run(
        APP_FACTORY,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
        factory=True,
    )


if __name__ == "__main__":  # pragma: no cover - CLI integration
    try:
        main()
    except KeyboardInterrupt:  # pragma: no cover - user initiated shutdown
        log_mgr.get_logger().info("Server interrupted by user")
