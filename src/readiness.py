"""
Readiness classification for SSM managed instances.
"""

from typing import List, Optional

from models import HeartbeatStatus, ReadinessTier

DEFAULT_READY_AGENT_MAJOR = 3

TIER_SYMBOLS = {
    ReadinessTier.READY: "O",
    ReadinessTier.NEEDS_VERIFICATION: "?",
    ReadinessTier.NOT_READY: "X",
}


def agent_major_version(agent_version: Optional[str]) -> Optional[int]:
    """
    Extract the major component of an agent version string.

    Args:
        agent_version: Version such as "3.2.582.0"

    Returns:
        Major version, or None if missing or not numeric
    """
    if not agent_version:
        return None
    head = str(agent_version).strip().split(".", 1)[0]
    if not head.isdigit():
        return None
    return int(head)


def classify(
    heartbeat_status: HeartbeatStatus,
    agent_version: Optional[str],
    ready_major: int = DEFAULT_READY_AGENT_MAJOR,
) -> ReadinessTier:
    """
    Map heartbeat status and agent version to a readiness tier.

    Args:
        heartbeat_status: Ping status reported by the agent
        agent_version: Agent version, may be None
        ready_major: Lowest agent major version considered ready

    Returns:
        ReadinessTier
    """
    if heartbeat_status is not HeartbeatStatus.ONLINE:
        return ReadinessTier.NOT_READY
    major = agent_major_version(agent_version)
    if major is not None and major >= ready_major:
        return ReadinessTier.READY
    return ReadinessTier.NEEDS_VERIFICATION


def tier_symbol(tier: ReadinessTier) -> str:
    return TIER_SYMBOLS[tier]


def offline_hints(heartbeat_status: HeartbeatStatus) -> List[str]:
    """Likely causes for a target that is not online."""
    if heartbeat_status is HeartbeatStatus.CONNECTION_LOST:
        return [
            "Network connectivity problems",
            "SSM Agent stopped responding",
        ]
    if heartbeat_status is HeartbeatStatus.INACTIVE:
        return [
            "SSM Agent not running",
            "Instance may be stopped",
        ]
    if heartbeat_status is HeartbeatStatus.UNKNOWN:
        return [
            "SSM Agent not installed",
            "IAM role missing required permissions",
            "Network/firewall blocking SSM endpoints",
        ]
    return [
        "Check SSM Agent status and logs",
        "Verify IAM permissions and network connectivity",
    ]
