"""
Command line tool for RipDB.

Operates on single keys using the same configuration as the library
(environment variables, see config.py).

Usage:
    ripdb get <key>
    ripdb set <key> '<json>' [--wait]
    ripdb purge <key>
    ripdb rebackup <key>
    ripdb inspect <key>

Exit codes:
    0  success
    1  RipDB error (missing key, pending archive, unauthorized, ...)
    2  configuration or usage error

Invariants:
    - Background backups started by a command finish (or time out) before
      the process exits
    - Secrets are never printed

How to change safely:
    - Keep exit codes stable; scripts depend on them
    - New commands go through RipDBClient, never straight to a backend
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

import json_log_formatter

from ..client import RipDBClient
from ..config import ClientConfig
from ..errors import RipDbError

logger = logging.getLogger(__name__)


def setup_logging(config: ClientConfig, verbose: bool = False) -> None:
    """Configure logging based on configuration.

    Args:
        config: Client configuration
        verbose: Force DEBUG level
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)
    if verbose:
        level = logging.DEBUG

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # Logs go to stderr; stdout carries command output
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ripdb",
        description="Read and write RipDB keys (Redis cache backed by IPFS)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    commands = parser.add_subparsers(dest="command", required=True)

    get_cmd = commands.add_parser("get", help="Read a key, fetching from IPFS if purged")
    get_cmd.add_argument("key")

    set_cmd = commands.add_parser("set", help="Write a JSON value and back it up")
    set_cmd.add_argument("key")
    set_cmd.add_argument("value", help="JSON document")
    set_cmd.add_argument(
        "--wait",
        action="store_true",
        help="Wait for the backup and print the envelope with its CID",
    )

    purge_cmd = commands.add_parser("purge", help="Drop a backed-up payload from the cache")
    purge_cmd.add_argument("key")

    rebackup_cmd = commands.add_parser("rebackup", help="Retry the backup of a pending key")
    rebackup_cmd.add_argument("key")

    inspect_cmd = commands.add_parser("inspect", help="Show the stored envelope as-is")
    inspect_cmd.add_argument("key")

    return parser


def _print_envelope(envelope: Any) -> None:
    print(json.dumps(envelope.to_dict(), indent=2, sort_keys=True))


async def run_command(args: argparse.Namespace, client: RipDBClient) -> int:
    """Execute one parsed command against a connected client.

    Returns:
        Process exit code
    """
    try:
        if args.command == "get":
            envelope = await client.get(args.key)
            if envelope is None:
                print(f"Key not found: {args.key}", file=sys.stderr)
                return 1
            _print_envelope(envelope)

        elif args.command == "inspect":
            envelope = await client.inspect(args.key)
            if envelope is None:
                print(f"Key not found: {args.key}", file=sys.stderr)
                return 1
            _print_envelope(envelope)

        elif args.command == "set":
            envelope = await client.set(args.key, args.value_json)
            if args.wait:
                await client.wait_for_pending()
                envelope = await client.inspect(args.key) or envelope
            _print_envelope(envelope)

        elif args.command == "purge":
            await client.purge(args.key)
            print(f"Purged {args.key}")

        elif args.command == "rebackup":
            scheduled = await client.rebackup(args.key)
            if not scheduled:
                print(f"Nothing to back up for {args.key}", file=sys.stderr)
                return 1
            await client.wait_for_pending()
            envelope = await client.inspect(args.key)
            if envelope is not None:
                _print_envelope(envelope)

    except RipDbError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        return 1

    return 0


async def _main_async(args: argparse.Namespace, config: ClientConfig) -> int:
    client = RipDBClient.from_config(config)
    try:
        await client.connect()
    except RipDbError as e:
        print(f"Connection failed: {e.message}", file=sys.stderr)
        return 1

    try:
        return await run_command(args, client)
    finally:
        await client.close()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "set":
        try:
            args.value_json = json.loads(args.value)
        except json.JSONDecodeError as e:
            print(f"Value is not valid JSON: {e}", file=sys.stderr)
            sys.exit(2)
        if args.value_json is None:
            print("Value must not be null; use purge instead", file=sys.stderr)
            sys.exit(2)

    try:
        config = ClientConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(config, verbose=args.verbose)
    config.log_config()

    sys.exit(asyncio.run(_main_async(args, config)))


if __name__ == "__main__":
    main()
