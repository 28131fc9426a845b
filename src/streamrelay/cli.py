"""Command-line entry point: ``streamrelay [--config PATH] [overrides]``."""

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

from streamrelay.config import StreamRelayConfig, load_config
from streamrelay.logging_config import configure_logging
from streamrelay.server import create_app

logger = logging.getLogger("streamrelay")

# ServerConfig attributes that have a same-named command-line flag.
_SERVER_OVERRIDES = ("host", "port", "log_level", "log_format", "shutdown_timeout")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="streamrelay",
        description="Stream HTTP uploads into S3 multipart uploads.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("streamrelay.yaml"),
        help="YAML config file; optional, AWS_* environment variables apply on top",
    )
    parser.add_argument("--host", help="bind address")
    parser.add_argument("--port", type=int, help="listen port")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-format", choices=["text", "json"])
    parser.add_argument("--shutdown-timeout", type=int, help="graceful shutdown seconds")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> StreamRelayConfig:
    """Load the config file (if it exists) and apply command-line overrides."""
    path = args.config if args.config.exists() else None
    config = load_config(path)
    for name in _SERVER_OVERRIDES:
        value = getattr(args, name)
        if value is not None:
            setattr(config.server, name, value)
    return config


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    try:
        config = build_config(args)
    except Exception as exc:
        print(f"streamrelay: cannot load config: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(level=config.server.log_level, fmt=config.server.log_format)
    if not args.config.exists():
        logger.info("No config file at %s; using defaults and environment", args.config)
    logger.info(
        "Relaying uploads to %s bucket %s on %s:%d",
        config.storage.backend,
        config.storage.bucket or "-",
        config.server.host,
        config.server.port,
    )

    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level.lower(),
        timeout_graceful_shutdown=config.server.shutdown_timeout,
    )


if __name__ == "__main__":
    main()
