"""Console entry point for the SSM Connect CLI."""

from __future__ import annotations

import argparse
import logging
import os
from typing import List

from cache import InventoryCache
from clients import RetryPolicy
from config import TOOL_VERSION, ConnectorConfig, validate_region
from console import Console
from errors import NoIdentitySourceError, SelectorUnavailableError, WorkspaceError
from inventory import InventoryService
from log_utils import setup_logging
from models import ExitCode
from orchestrator import SessionOrchestrator
from profiles import ProfileResolver
from selector import FzfSelector
from session import SessionConnector
from tasks import run_advisory
from updates import announce, check_latest_release
from workspace import ScratchWorkspace

logger = logging.getLogger(__name__)

INTERRUPTED_EXIT_CODE = 130


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ssm-connect",
        description=(
            "SSM Connect\n\n"
            "Pick an AWS profile and an SSM managed Linux instance with fzf,\n"
            "then open an interactive shell through AWS Systems Manager Session Manager."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  # Use the default region\n"
            "  ssm-connect\n\n"
            "  # Browse instances in another region\n"
            "  ssm-connect --region us-east-1\n\n"
            "Requirements: AWS CLI v2, Session Manager plugin, fzf"
        ),
    )
    parser.add_argument(
        "--region",
        "-r",
        metavar="REGION",
        help=(
            "AWS region to query "
            "(default: $AWS_REGION, $AWS_DEFAULT_REGION, else ap-northeast-2)"
        ),
    )

    logging_group = parser.add_argument_group("logging and output")
    logging_group.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging with AWS call details.",
    )
    logging_group.add_argument(
        "--log-file",
        default="ssm-connect.log",
        metavar="PATH",
        help="Log file path (default: ssm-connect.log)",
    )
    logging_group.add_argument(
        "--no-update-check",
        action="store_true",
        help="Skip the background check for a newer release.",
    )
    parser.add_argument(
        "--version", "-v", action="version", version=f"%(prog)s v{TOOL_VERSION}"
    )
    return parser


def check_for_update(config: ConnectorConfig) -> None:
    """Best-effort release check, bounded by the configured deadline."""
    update = run_advisory(
        check_latest_release,
        args=(TOOL_VERSION, config.update_check_url),
        deadline=config.update_check_timeout,
    )
    announce(update, TOOL_VERSION)


def build_orchestrator(
    config: ConnectorConfig, workspace: ScratchWorkspace
) -> SessionOrchestrator:
    """Wire the workflow components for one run."""
    retry_policy = RetryPolicy(
        max_attempts=config.max_attempts,
        read_timeout=config.read_timeout,
        connect_timeout=config.connect_timeout,
    )
    if config.cache_dir:
        try:
            os.makedirs(config.cache_dir, exist_ok=True)
        except OSError as e:
            logger.warning(f"⚠ Cannot create cache directory {config.cache_dir}: {e}")
    cache = InventoryCache(config.cache_dir or workspace.cache_dir, ttl=config.cache_ttl)
    inventory = InventoryService(
        cache,
        retry_policy=retry_policy,
        ready_major=config.ready_agent_major,
        max_items=config.max_items,
    )
    selector = FzfSelector(
        workspace.path, height=config.fzf_height, preview_window=config.preview_window
    )
    return SessionOrchestrator(
        config=config,
        resolver=ProfileResolver(retry_policy=retry_policy),
        inventory=inventory,
        selector=selector,
        connector=SessionConnector(inventory, probe_session=config.probe_session),
        console=Console(),
    )


def main(argv: List[str] | None = None) -> int:
    """CLI main for console_scripts entry point."""
    parser = build_parser()
    args = parser.parse_args(args=argv)

    setup_logging(verbose=args.verbose, log_file=args.log_file)
    config = ConnectorConfig.from_args(args)
    validate_region(config.region)

    logger.info(f"SSM Connect v{TOOL_VERSION} | Region: {config.region}")

    try:
        with ScratchWorkspace() as workspace:
            if config.update_check:
                check_for_update(config)
            exit_code = build_orchestrator(config, workspace).run()
    except NoIdentitySourceError as e:
        logger.error(f"❌ {e}")
        return int(ExitCode.AUTH_FAILED)
    except WorkspaceError as e:
        logger.error(f"❌ {e}")
        return int(ExitCode.MISSING_DEPENDENCY)
    except SelectorUnavailableError as e:
        logger.error(f"❌ {e}")
        return int(ExitCode.MISSING_DEPENDENCY)
    except KeyboardInterrupt:
        logger.info("")
        logger.warning("⚠ Interrupted by user")
        return INTERRUPTED_EXIT_CODE

    return int(exit_code)
