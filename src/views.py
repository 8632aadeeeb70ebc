"""
Text rendering for selection rows and preview panes.
"""

from typing import Dict, List, Optional

from models import EnrichedTarget, ReadinessTier
from readiness import agent_major_version, offline_hints, tier_symbol

RULE = "═" * 63
PREVIEW_NOT_AVAILABLE = "Preview not available"
NAMELESS = ("No Name", "Unknown")


def _heading(title: str) -> List[str]:
    return [RULE, f"{title:^63}".rstrip(), RULE, ""]


def display_name(item: EnrichedTarget) -> str:
    name = item.descriptor.display_name
    if name and name not in NAMELESS:
        return f"{name} ({item.id})"
    return item.id


def address_text(item: EnrichedTarget) -> str:
    descriptor = item.descriptor
    if descriptor.public_address:
        return f"{descriptor.private_address} / {descriptor.public_address}"
    return descriptor.private_address


def format_target_row(item: EnrichedTarget) -> str:
    """One list line: status, name, addresses, instance type, platform, readiness."""
    return (
        f"{tier_symbol(item.tier)} {display_name(item):<48} | "
        f"{address_text(item):<25} | "
        f"{item.descriptor.instance_class:<12} | "
        f"{item.target.platform_name:<20} | "
        f"{item.tier.value}"
    )


def format_summary(counts: Dict[ReadinessTier, int]) -> str:
    return (
        f"O {counts.get(ReadinessTier.READY, 0)} ready | "
        f"? {counts.get(ReadinessTier.NEEDS_VERIFICATION, 0)} need verification | "
        f"X {counts.get(ReadinessTier.NOT_READY, 0)} not ready"
    )


def format_back_preview(destination: str) -> str:
    lines = _heading("NAVIGATION")
    lines += [
        f"  ← Go back to {destination}",
        "",
        f"  Press Enter to return to {destination}",
        "  Press Esc to cancel",
        "",
        RULE,
    ]
    return "\n".join(lines)


def format_target_preview(item: Optional[EnrichedTarget]) -> str:
    """
    Detailed preview for one target.

    Args:
        item: Enriched target, or None when its data is gone

    Returns:
        Preview text
    """
    if item is None:
        return PREVIEW_NOT_AVAILABLE

    target = item.target
    descriptor = item.descriptor
    agent_version = target.agent_version or "Unknown"

    lines = _heading("INSTANCE DETAILS")
    lines += [
        "Instance Information:",
        f"  Instance ID:     {target.id}",
        f"  Name:            {descriptor.display_name}",
        f"  Instance Type:   {descriptor.instance_class}",
        f"  State:           {descriptor.state}",
    ]
    for key in ("Environment", "Env", "Role", "Service", "Owner", "Team"):
        if descriptor.tags.get(key):
            lines.append(f"  {key + ':':<17}{descriptor.tags[key]}")

    lines += [
        "",
        "Network Information:",
        f"  Private IP:      {descriptor.private_address}",
        f"  Public IP:       {descriptor.public_address or 'Not assigned'}",
        "",
        "SSM Information:",
        f"  Platform:        {target.platform_name}",
        f"  Ping Status:     {target.heartbeat_status.value}",
        f"  Agent Version:   {agent_version}",
        f"  Last Ping:       {target.last_heartbeat_time or 'Unknown'}",
        "",
        "Connection Status:",
    ]

    if item.tier is ReadinessTier.READY:
        lines += [
            "  O Ready for Session Manager connection",
            f"  Agent Version: {agent_version} (Compatible)",
        ]
    elif item.tier is ReadinessTier.NEEDS_VERIFICATION:
        if agent_major_version(target.agent_version) is None:
            lines += [
                "  ? Needs verification before connection",
                "  Agent Version: Unknown (will test on connection)",
            ]
        else:
            lines += [
                "  ? May need verification (older agent)",
                f"  Agent Version: {agent_version} (Consider updating)",
            ]
    else:
        lines += [
            "  X Not available for SSM connection",
            f"  Status: {target.heartbeat_status.value}",
            "",
            "Possible Issues:",
        ]
        lines += [f"  • {hint}" for hint in offline_hints(target.heartbeat_status)]
        lines += [
            "",
            "Quick Fixes:",
            "  1. sudo systemctl restart amazon-ssm-agent",
            "  2. Check IAM role has AmazonSSMManagedInstanceCore",
            "  3. Verify security groups allow HTTPS outbound",
        ]

    lines += ["", RULE]
    return "\n".join(lines)
