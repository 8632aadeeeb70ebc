"""
Advisory check for a newer release on GitHub.
"""

import logging
import re
from typing import Dict, List, Optional

import requests

from config import TOOL_VERSION, UPDATE_CHECK_URL

logger = logging.getLogger(__name__)


def _version_parts(version: str) -> List[int]:
    parts = []
    for piece in str(version).lstrip("vV").split("."):
        digits = re.sub(r"[^0-9]", "", piece)
        parts.append(int(digits) if digits else 0)
    return parts


def is_newer(current: str, candidate: str) -> bool:
    """
    Compare dotted versions numerically.

    Returns:
        True if candidate is newer than current
    """
    a = _version_parts(current)
    b = _version_parts(candidate)
    width = max(len(a), len(b))
    a += [0] * (width - len(a))
    b += [0] * (width - len(b))
    return b > a


def check_latest_release(
    current_version: str = TOOL_VERSION,
    url: str = UPDATE_CHECK_URL,
    timeout: float = 5.0,
) -> Optional[Dict[str, str]]:
    """
    Ask the GitHub releases API whether a newer version exists.

    Args:
        current_version: Running version
        url: Latest-release API endpoint
        timeout: Request timeout in seconds

    Returns:
        {"version": ..., "url": ...} if an update is available, else None
    """
    try:
        resp = requests.get(
            url, timeout=timeout, headers={"Accept": "application/vnd.github+json"}
        )
        if resp.status_code != 200:
            return None
        data = resp.json()
    except (requests.RequestException, ValueError):
        return None

    tag = str(data.get("tag_name") or "").strip()
    if not tag:
        return None
    latest = tag.lstrip("vV")
    if not is_newer(current_version, latest):
        return None
    return {"version": latest, "url": str(data.get("html_url") or "")}


def announce(update: Optional[Dict[str, str]], current_version: str = TOOL_VERSION) -> None:
    if not update:
        return
    logger.info(
        f"🎉 New version available: v{update['version']} (current: v{current_version})"
    )
    if update.get("url"):
        logger.info(f"   {update['url']}")
