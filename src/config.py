"""
Configuration management for SSM Connect.
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

TOOL_VERSION = "1.0.0"
DEFAULT_REGION = "ap-northeast-2"
GITHUB_REPO = "newstars/ssm-server-connect"
UPDATE_CHECK_URL = f"https://api.github.com/repos/{GITHUB_REPO}/releases/latest"

REGION_PATTERN = re.compile(r"^[a-z]{2}(-[a-z]+)+-\d+$")


def default_region() -> str:
    """Region used when --region is not given."""
    return (
        os.environ.get("AWS_REGION")
        or os.environ.get("AWS_DEFAULT_REGION")
        or DEFAULT_REGION
    )


def validate_region(region: str) -> bool:
    """
    Check a region name against the usual AWS shape.

    A mismatch is only reported; the region is used as given.

    Returns:
        True if the region looks like an AWS region name
    """
    if REGION_PATTERN.match(region or ""):
        return True
    logger.warning(
        f"⚠ Warning: '{region}' doesn't match typical AWS region format "
        "(us-east-1, eu-west-1, ...). Continuing anyway."
    )
    return False


@dataclass
class ConnectorConfig:
    """Configuration for a connector run."""

    region: str = DEFAULT_REGION
    verbose: bool = False
    log_file: str = "ssm-connect.log"
    update_check: bool = True
    cache_ttl: float = 300.0
    ready_agent_major: int = 3
    read_timeout: int = 10
    connect_timeout: int = 5
    max_attempts: int = 2
    max_items: int = 1000
    update_check_timeout: float = 0.5
    update_check_url: str = UPDATE_CHECK_URL
    probe_session: bool = True
    fzf_height: str = "80%"
    preview_window: str = "right:50%:wrap"
    cache_dir: Optional[str] = None

    @classmethod
    def from_args(cls, args) -> "ConnectorConfig":
        """
        Create configuration from command-line arguments.

        Args:
            args: Parsed argparse arguments

        Returns:
            ConnectorConfig instance
        """
        return cls(
            region=args.region or default_region(),
            verbose=args.verbose,
            log_file=args.log_file,
            update_check=not args.no_update_check,
        )
