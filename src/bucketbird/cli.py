"""Command-line interface for BucketBird.

``bucketbird serve`` (the default) runs the HTTP API under uvicorn.
``bucketbird buckets`` lists the buckets visible to the configured
credentials, and ``bucketbird size BUCKET`` recalculates one bucket's size
and stores it without starting the server.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import uvicorn

from bucketbird.config import BucketBirdConfig, load_config
from bucketbird.errors import BucketBirdError
from bucketbird.logging_config import configure_logging
from bucketbird.metadata import create_size_store
from bucketbird.server import create_app, create_object_store
from bucketbird.sizing import SizeRecalculator

logger = logging.getLogger("bucketbird")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    A missing command means ``serve``.
    """
    parser = argparse.ArgumentParser(
        prog="bucketbird",
        description="BucketBird - folder-aware browser API for S3-compatible stores",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("bucketbird.yaml"),
        help="YAML configuration file (default: bucketbird.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Overrides server.log_level",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        choices=["text", "json"],
        help="Overrides server.log_format",
    )

    commands = parser.add_subparsers(dest="command")

    serve_cmd = commands.add_parser("serve", help="Run the HTTP API")
    serve_cmd.add_argument("--host", default=None, help="Overrides server.host")
    serve_cmd.add_argument("--port", type=int, default=None, help="Overrides server.port")
    serve_cmd.add_argument(
        "--shutdown-timeout",
        type=int,
        default=None,
        help="Seconds to wait for pending size recalculations on shutdown",
    )

    commands.add_parser("buckets", help="List buckets in the configured store")

    size_cmd = commands.add_parser("size", help="Recalculate and store a bucket's size")
    size_cmd.add_argument("bucket", help="Bucket name")

    args = parser.parse_args(argv)
    if args.command is None:
        args = parser.parse_args([*(argv if argv is not None else sys.argv[1:]), "serve"])
    return args


def _apply_overrides(config: BucketBirdConfig, args: argparse.Namespace) -> None:
    if args.log_level is not None:
        config.server.log_level = args.log_level
    if args.log_format is not None:
        config.server.log_format = args.log_format
    if args.command != "serve":
        return
    if args.host is not None:
        config.server.host = args.host
    if args.port is not None:
        config.server.port = args.port
    if args.shutdown_timeout is not None:
        config.server.shutdown_timeout = args.shutdown_timeout


def serve(config: BucketBirdConfig) -> None:
    logger.info(
        "Starting BucketBird on %s:%d (store=%s, sizes=%s)",
        config.server.host,
        config.server.port,
        config.store.backend,
        config.metadata.engine,
    )
    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level.lower(),
        timeout_graceful_shutdown=config.server.shutdown_timeout,
    )


async def list_buckets(config: BucketBirdConfig) -> list[str]:
    store = create_object_store(config.store)
    await store.init()
    try:
        return await store.list_buckets()
    finally:
        await store.close()


async def recalculate_size(config: BucketBirdConfig, bucket: str) -> dict:
    """Enumerate ``bucket``, persist its size and return the stored record."""
    store = create_object_store(config.store)
    size_store = create_size_store(config.metadata)
    await store.init()
    await size_store.init_db()
    try:
        await SizeRecalculator(store, size_store).recalculate_now(bucket)
        stored = await size_store.get_size(bucket)
        return stored.to_dict()
    finally:
        await size_store.close()
        await store.close()


def main(argv: list[str] | None = None) -> None:
    """Entry point for the ``bucketbird`` console script."""
    args = parse_args(argv)

    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    try:
        config = load_config(args.config)
    except FileNotFoundError:
        logger.error("Config file not found: %s", args.config)
        sys.exit(1)
    except Exception as exc:
        logger.error("Failed to load config: %s", exc)
        sys.exit(1)

    _apply_overrides(config, args)
    configure_logging(level=config.server.log_level, fmt=config.server.log_format)

    if args.command == "serve":
        serve(config)
        return

    try:
        if args.command == "buckets":
            for name in asyncio.run(list_buckets(config)):
                print(name)
        else:
            print(json.dumps(asyncio.run(recalculate_size(config, args.bucket))))
    except BucketBirdError as exc:
        logger.error("%s: %s", exc.code, exc.message)
        sys.exit(1)


if __name__ == "__main__":
    main()
