"""Main entry point for Azure Patch Rollout.

This module provides the command line entry point. ``run`` executes a staged
rollout as a batch job and prints the JSON report; ``serve`` starts the MCP
server.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional, Sequence

from azure_patch_rollout.auth import get_credential, list_enabled_subscriptions
from azure_patch_rollout.config import LOG_LEVEL, STRICT_REFERENCE, TRANSPORT
from azure_patch_rollout.documents import dumps_document
from azure_patch_rollout.models import RolloutError
from azure_patch_rollout.pipeline import StagedRollout, report_to_document
from azure_patch_rollout.server import configure_logging, mcp, run_startup_checks

logger = logging.getLogger("azure-patch-rollout")

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 2


def handle_interrupt(signum, frame):
    """Handle keyboard interrupt (Ctrl+C) gracefully."""
    logger.info(f"Received signal {signum}, shutting down gracefully...")
    sys.exit(EXIT_FATAL)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="patch-rollout",
        description="Replicate the packages installed by a reference maintenance run into staged maintenance windows.",
    )
    parser.add_argument("--log-level", default=LOG_LEVEL, help="Log level (default: %(default)s)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Create or update the stage maintenance configurations")
    run.add_argument("--reference-run-id", required=True, help="Resource id of the reference maintenance configuration")
    stages = run.add_mutually_exclusive_group(required=True)
    stages.add_argument("--stages-json", help="JSON array of stage descriptors")
    stages.add_argument("--stages-file", help="Path to a JSON file with the stage descriptors")
    run.add_argument(
        "--subscription",
        action="append",
        dest="subscriptions",
        help="Subscription to search, may be repeated (defaults to all enabled subscriptions)",
    )
    run.add_argument("--managed-identity-client-id", help="Client id of a user-assigned managed identity")
    run.add_argument("--dry-run", action="store_true", help="Render the stages without deploying them")
    run.add_argument("--strict", action="store_true", default=STRICT_REFERENCE, help="Fail when reference records disagree")
    run.add_argument("--fail-on-error", action="store_true", help="Exit with status 2 when any stage or scope failed")

    serve = subparsers.add_parser("serve", help="Start the MCP server")
    serve.add_argument("--transport", default=TRANSPORT, choices=("stdio", "sse"), help="Transport protocol (default: %(default)s)")
    return parser


async def run_rollout(args: argparse.Namespace) -> int:
    """Run a staged rollout batch job and print its report."""
    if args.stages_file:
        with open(args.stages_file, encoding="utf-8") as handle:
            stages_json = handle.read()
    else:
        stages_json = args.stages_json

    credential = get_credential(args.managed_identity_client_id)
    subscriptions = args.subscriptions or await list_enabled_subscriptions(credential)

    rollout = StagedRollout.from_credential(credential, strict=args.strict)
    report = await rollout.run(args.reference_run_id, stages_json, subscriptions=subscriptions, dry_run=args.dry_run)
    print(dumps_document(report_to_document(report), indent=2))

    if args.fail_on_error and not report.succeeded:
        return EXIT_PARTIAL
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level.upper())
    signal.signal(signal.SIGINT, handle_interrupt)
    signal.signal(signal.SIGTERM, handle_interrupt)

    if args.command == "serve":
        run_startup_checks()
        logger.info(f"Starting server with transport protocol: {args.transport}")
        mcp.run(transport=args.transport)
        return EXIT_OK

    try:
        return asyncio.run(run_rollout(args))
    except RolloutError as e:
        logger.error(f"Staged rollout aborted: {e}")
        return EXIT_FATAL
    except OSError as e:
        logger.error(f"Unable to read stages file: {e}")
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
