"""
Data models for SSM Connect.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, List, Optional


class ExitCode(IntEnum):
    """Process exit codes."""

    SUCCESS = 0
    MISSING_DEPENDENCY = 1
    AUTH_FAILED = 2
    NO_INSTANCES = 3
    CONNECTION_FAILED = 4
    USER_CANCELLED = 5


class HeartbeatStatus(Enum):
    """SSM agent ping status."""

    ONLINE = "Online"
    CONNECTION_LOST = "ConnectionLost"
    INACTIVE = "Inactive"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "HeartbeatStatus":
        """Map an upstream ping status to a member; unrecognised values are UNKNOWN."""
        if not value:
            return cls.UNKNOWN
        normalized = str(value).replace(" ", "")
        for member in cls:
            if member.value.lower() == normalized.lower():
                return member
        return cls.UNKNOWN


class ReadinessTier(Enum):
    """Derived connection readiness of a target."""

    READY = "Ready"
    NEEDS_VERIFICATION = "Needs verification"
    NOT_READY = "Not ready"


@dataclass(frozen=True)
class IdentityContext:
    """A named AWS CLI profile."""

    name: str
    source: str  # "config" or "credentials"
    federated: bool = False
    settings: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)


@dataclass
class CallerIdentity:
    """Result of a successful identity verification."""

    account_id: str
    principal_arn: str
    user_id: str = ""


@dataclass
class Target:
    """An SSM managed instance as reported by the heartbeat inventory."""

    id: str
    platform_family: str = "Linux"
    platform_name: str = "Linux"
    heartbeat_status: HeartbeatStatus = HeartbeatStatus.UNKNOWN
    agent_version: Optional[str] = None
    last_heartbeat_time: Optional[str] = None


@dataclass
class TargetDescriptor:
    """Descriptive EC2 attributes for a target."""

    id: str
    display_name: str
    private_address: str
    public_address: Optional[str] = None
    instance_class: str = "Unknown"
    state: str = "Unknown"
    tags: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def placeholder(cls, target_id: str) -> "TargetDescriptor":
        """Descriptor used when no metadata is available for a target."""
        return cls(
            id=target_id,
            display_name="Unknown",
            private_address="Unknown",
            public_address=None,
            instance_class="Unknown",
            state="Unknown",
        )

    def to_dict(self) -> Dict:
        """Convert to a JSON-serialisable dictionary."""
        return {
            "id": self.id,
            "display_name": self.display_name,
            "private_address": self.private_address,
            "public_address": self.public_address,
            "instance_class": self.instance_class,
            "state": self.state,
            "tags": dict(self.tags),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "TargetDescriptor":
        """Rebuild a descriptor from its dictionary form."""
        return cls(
            id=str(data["id"]),
            display_name=str(data.get("display_name", "Unknown")),
            private_address=str(data.get("private_address", "Unknown")),
            public_address=data.get("public_address"),
            instance_class=str(data.get("instance_class", "Unknown")),
            state=str(data.get("state", "Unknown")),
            tags={str(k): str(v) for k, v in (data.get("tags") or {}).items()},
        )


@dataclass
class EnrichedTarget:
    """A target joined with its descriptor and readiness tier."""

    target: Target
    descriptor: TargetDescriptor
    tier: ReadinessTier

    @property
    def id(self) -> str:
        return self.target.id


@dataclass
class InventoryCacheEntry:
    """Cached descriptors for one (identity, region) pair."""

    identity: str
    region: str
    descriptors: Dict[str, TargetDescriptor]
    fetched_at: float

    def age(self, now: float) -> float:
        return now - self.fetched_at

    def is_fresh(self, now: float, ttl: float) -> bool:
        return 0 <= self.age(now) < ttl


@dataclass
class Diagnosis:
    """Operator-facing explanation of a failed connection."""

    signature: str  # "access_denied", "invalid_target", "not_connected", "interrupted", "generic"
    title: str
    remediation: List[str] = field(default_factory=list)
