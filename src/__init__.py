"""
SSM Connect: interactive AWS Systems Manager session launcher.
"""

from clients import FleetClient, RetryPolicy
from config import ConnectorConfig
from inventory import InventoryService
from log_utils import setup_logging
from models import EnrichedTarget, ExitCode, IdentityContext, Target, TargetDescriptor
from orchestrator import SessionOrchestrator
from profiles import ProfileResolver
from session import SessionConnector

__all__ = [
    "FleetClient",
    "RetryPolicy",
    "ConnectorConfig",
    "InventoryService",
    "setup_logging",
    "EnrichedTarget",
    "ExitCode",
    "IdentityContext",
    "Target",
    "TargetDescriptor",
    "SessionOrchestrator",
    "ProfileResolver",
    "SessionConnector",
]
