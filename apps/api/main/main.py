"""
CLI entrypoint for running the optisweep FastAPI service.
"""

from __future__ import annotations

import argparse
import logging

import uvicorn

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _build_parser() -> argparse.ArgumentParser:
    """
    Build command-line parser for API process.

    Args:
        None.
    Returns:
        argparse.ArgumentParser: Configured parser.
    Assumptions:
        Defaults are suitable for local development.
    Raises:
        None.
    Side Effects:
        None.
    """
    parser = argparse.ArgumentParser(prog="optisweep-api")
    parser.add_argument("--host", default="0.0.0.0", help="Bind host")
    parser.add_argument("--port", type=int, default=3000, help="Bind port")
    parser.add_argument("--log-level", default="INFO", help="Root logging level")
    return parser


def main(argv: list[str] | None = None) -> int:
    """
    Run API process using uvicorn.

    Args:
        argv: Optional command arguments without program name.
    Returns:
        int: Process exit code.
    Assumptions:
        Import path `apps.api.main.app:create_app` is available in PYTHONPATH.
    Raises:
        None.
    Side Effects:
        Configures logging and starts HTTP server loop.
    """
    args = _build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format=_LOG_FORMAT)
    uvicorn.run(
        "apps.api.main.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_config=None,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
