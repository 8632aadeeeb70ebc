"""
Error types for SSM Connect.
"""

from enum import Enum
from typing import Optional


class ConnectorError(Exception):
    """Base class for all connector errors."""


class NoIdentitySourceError(ConnectorError):
    """No AWS profile could be discovered."""


class WorkspaceError(ConnectorError):
    """The scratch workspace could not be created or written."""


class SelectorUnavailableError(ConnectorError):
    """The interactive list renderer (fzf) is not installed."""


class QueryError(ConnectorError):
    """A control-plane query failed (transport, permission or parse failure)."""

    def __init__(self, detail: str, code: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.code = code


class AuthFailureKind(Enum):
    """Classified identity verification failures."""

    NOT_FOUND = "not_found"
    NO_CREDENTIALS = "no_credentials"
    EXPIRED = "expired"
    UNKNOWN = "unknown"


class AuthError(ConnectorError):
    """Identity verification failed."""

    def __init__(self, kind: AuthFailureKind, profile: str, detail: str = ""):
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.profile = profile
        self.detail = detail


class ReadinessFailureKind(Enum):
    """Reasons a target failed the pre-connection readiness test."""

    STILL_OFFLINE = "still_offline"
    PERMISSION_DENIED = "permission_denied"
    AGENT_UNREACHABLE = "agent_unreachable"


class ReadinessError(ConnectorError):
    """A target is not connectable right now."""

    def __init__(self, kind: ReadinessFailureKind, target_id: str, detail: str = ""):
        super().__init__(f"{target_id}: {kind.value}" + (f" ({detail})" if detail else ""))
        self.kind = kind
        self.target_id = target_id
        self.detail = detail
