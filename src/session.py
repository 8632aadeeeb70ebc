"""
Pre-connection readiness test and Session Manager session execution.
"""

import logging
import re
import signal
import subprocess
import sys
import threading
from collections import deque
from typing import Callable, Iterable, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from clients import error_code
from errors import QueryError, ReadinessError, ReadinessFailureKind
from inventory import InventoryService
from models import Diagnosis, IdentityContext, ReadinessTier, Target

logger = logging.getLogger(__name__)

ACCESS_DENIED_CODES = {"AccessDeniedException", "AccessDenied", "UnauthorizedOperation"}
INVALID_TARGET_CODES = {"InvalidInstanceId", "InvalidTarget"}
NOT_CONNECTED_CODES = {"TargetNotConnected"}
AWS_ERROR_CODE = re.compile(r"An error occurred \(([A-Za-z0-9.]+)\)")
INTERRUPTED_EXIT_CODE = 130
COMMAND_NOT_FOUND_EXIT_CODE = 127
STDERR_TAIL_LINES = 50

TROUBLESHOOTING_LINKS = [
    "SSM Troubleshooting: https://docs.aws.amazon.com/systems-manager/latest/userguide/session-manager-troubleshooting.html",
    "IAM Permissions: https://docs.aws.amazon.com/systems-manager/latest/userguide/getting-started-create-iam-instance-profile.html",
    "VPC Endpoints: https://docs.aws.amazon.com/systems-manager/latest/userguide/setup-create-vpc.html",
]


def readiness_diagnosis(error: ReadinessError) -> Diagnosis:
    """Operator guidance for a failed readiness test."""
    if error.kind is ReadinessFailureKind.PERMISSION_DENIED:
        return Diagnosis(
            signature="access_denied",
            title="Access denied for SSM operations",
            remediation=[
                "Check your AWS user/role permissions: ssm:StartSession, ssm:DescribeInstanceInformation",
                "Verify instance IAM role permissions: ssm:UpdateInstanceInformation",
                "Check for resource-based policies that might block access",
            ],
        )
    if error.kind is ReadinessFailureKind.AGENT_UNREACHABLE:
        return Diagnosis(
            signature="not_connected",
            title="Instance not connected to Session Manager",
            remediation=[
                "SSM Agent may not be running: sudo systemctl status amazon-ssm-agent",
                "Instance may not be registered with SSM or may be in a different region",
                "Check network connectivity and VPC endpoints for SSM",
            ],
        )
    return Diagnosis(
        signature="not_connected",
        title="Instance is not online in SSM",
        remediation=[
            f"Check if instance is running: aws ec2 describe-instances --instance-ids {error.target_id}",
            "Verify SSM Agent is running on the instance: sudo systemctl status amazon-ssm-agent",
            "Check instance IAM role has the AmazonSSMManagedInstanceCore policy",
            "Security groups must allow outbound HTTPS (443); private subnets need SSM VPC endpoints",
        ],
    )


def diagnose(exit_code: int, stderr_lines: Iterable[str] = ()) -> Optional[Diagnosis]:
    """
    Explain a non-zero session exit status.

    Known AWS error codes in the session's stderr select a specific
    diagnosis; anything else gets a generic one.

    Args:
        exit_code: Exit status of the session command
        stderr_lines: Captured stderr of the session command

    Returns:
        Diagnosis, or None for a clean exit
    """
    if exit_code == 0:
        return None
    if exit_code in (INTERRUPTED_EXIT_CODE, -signal.SIGINT):
        return Diagnosis(signature="interrupted", title="Session was interrupted by user (Ctrl+C)")

    codes = AWS_ERROR_CODE.findall("\n".join(stderr_lines))
    for code in codes:
        if code in ACCESS_DENIED_CODES:
            return Diagnosis(
                signature="access_denied",
                title="Session Manager access denied",
                remediation=[
                    "Your AWS user/role needs the ssm:StartSession permission",
                    "Instance IAM role needs ssm:UpdateInstanceInformation",
                    "Check Session Manager preferences in the AWS console",
                ],
            )
        if code in INVALID_TARGET_CODES:
            return Diagnosis(
                signature="invalid_target",
                title="Invalid instance for Session Manager",
                remediation=[
                    "Instance may not be registered with SSM",
                    "Instance may be in a different region",
                ],
            )
        if code in NOT_CONNECTED_CODES:
            return Diagnosis(
                signature="not_connected",
                title="Instance not connected to Session Manager",
                remediation=["SSM Agent may not be running", "Network connectivity issues"],
            )

    return Diagnosis(
        signature="generic",
        title=f"Session ended with exit code {exit_code}",
        remediation=[
            "Session Manager plugin installed and up to date (brew upgrade --cask session-manager-plugin)",
            "Instance reachable via SSM",
            "Network connectivity to AWS services",
            "IAM permissions sufficient",
        ],
    )


def report(diagnosis: Diagnosis, target_id: str) -> None:
    """Log a diagnosis with remediation steps."""
    logger.error(f"❌ Connection error for instance {target_id}: {diagnosis.title}")
    if diagnosis.remediation:
        logger.info("Resolution steps:")
        for number, step in enumerate(diagnosis.remediation, start=1):
            logger.info(f"  {number}. {step}")
    if diagnosis.signature != "interrupted":
        logger.info("Useful resources:")
        for link in TROUBLESHOOTING_LINKS:
            logger.info(f"  • {link}")


class SessionConnector:
    """Verifies a target right before connecting and runs the session."""

    def __init__(
        self,
        inventory: InventoryService,
        probe_session: bool = True,
        aws_binary: str = "aws",
        popen: Callable = subprocess.Popen,
        stderr_stream=None,
    ):
        """
        Initialize the connector.

        Args:
            inventory: Inventory service (heartbeat re-reads, API clients, classifier)
            probe_session: Open and close a session to check permissions first
            aws_binary: AWS CLI executable
            popen: subprocess.Popen compatible callable
            stderr_stream: Where the session's stderr is echoed (sys.stderr by default)
        """
        self.inventory = inventory
        self.probe_session = probe_session
        self.aws_binary = aws_binary
        self.popen = popen
        self.stderr_stream = stderr_stream
        self.last_stderr: List[str] = []

    def test_readiness(self, target: Target, ctx: IdentityContext, region: str) -> Target:
        """
        Re-check a target immediately before connecting.

        Args:
            target: Target chosen from the list
            ctx: Active profile
            region: AWS region

        Returns:
            The target as currently reported by SSM

        Raises:
            ReadinessError: STILL_OFFLINE, PERMISSION_DENIED or AGENT_UNREACHABLE
        """
        logger.info(f"Testing SSM connection to instance: {target.id}")
        try:
            current = self.inventory.current_target(ctx, region, target.id)
        except QueryError as e:
            kind = (
                ReadinessFailureKind.PERMISSION_DENIED
                if e.code in ACCESS_DENIED_CODES
                else ReadinessFailureKind.AGENT_UNREACHABLE
            )
            raise ReadinessError(kind, target.id, e.detail) from e

        if current is None:
            raise ReadinessError(
                ReadinessFailureKind.STILL_OFFLINE, target.id, "not registered with SSM"
            )

        tier = self.inventory.classify(current)
        if tier is ReadinessTier.NOT_READY:
            raise ReadinessError(
                ReadinessFailureKind.STILL_OFFLINE,
                target.id,
                f"current status: {current.heartbeat_status.value}",
            )

        if self.probe_session:
            self._probe(current, ctx, region)

        if tier is ReadinessTier.NEEDS_VERIFICATION:
            logger.info(f"✓ {target.id} verified (agent version {current.agent_version or 'unknown'})")
        logger.info("✓ Session Manager connectivity test passed")
        return current

    def _probe(self, target: Target, ctx: IdentityContext, region: str) -> None:
        client = self.inventory.client(ctx, region)
        try:
            response = client.start_session(target.id)
        except ClientError as e:
            code = error_code(e)
            if code in ACCESS_DENIED_CODES:
                raise ReadinessError(
                    ReadinessFailureKind.PERMISSION_DENIED, target.id, code
                ) from e
            if code in INVALID_TARGET_CODES or code in NOT_CONNECTED_CODES:
                raise ReadinessError(
                    ReadinessFailureKind.AGENT_UNREACHABLE, target.id, code
                ) from e
            logger.warning(f"⚠ Session Manager test inconclusive ({code}); proceeding with caution")
            return
        except BotoCoreError as e:
            logger.warning(f"⚠ Session Manager test inconclusive ({e}); proceeding with caution")
            return

        session_id = response.get("SessionId")
        if session_id:
            try:
                client.terminate_session(session_id)
            except (ClientError, BotoCoreError) as e:
                logger.debug(f"Could not terminate probe session {session_id}: {e}")

    def command(self, target: Target, ctx: IdentityContext, region: str) -> List[str]:
        return [
            self.aws_binary,
            "ssm",
            "start-session",
            "--target",
            target.id,
            "--region",
            region,
            "--profile",
            ctx.name,
        ]

    def _pump_stderr(self, pipe, tail: deque) -> None:
        stream = self.stderr_stream or sys.stderr
        for line in iter(pipe.readline, ""):
            stream.write(line)
            stream.flush()
            tail.append(line.rstrip("\n"))
        pipe.close()

    def connect(self, target: Target, ctx: IdentityContext, region: str) -> int:
        """
        Run an interactive Session Manager session and wait for it to end.

        The terminal is handed to the session; stderr is echoed and its tail
        kept in ``last_stderr`` for diagnosis.

        Returns:
            Exit status of the session command, unmodified
        """
        logger.info("═" * 63)
        logger.info(f"  SSM Session Manager - Connecting to {target.id}")
        logger.info(f"  Region: {region} | Profile: {ctx.name}")
        logger.info("  Type 'exit' to end session")
        logger.info("═" * 63)

        tail: deque = deque(maxlen=STDERR_TAIL_LINES)
        self.last_stderr = []
        try:
            process = self.popen(
                self.command(target, ctx, region),
                stderr=subprocess.PIPE,
                text=True,
            )
        except FileNotFoundError:
            logger.error("❌ AWS CLI not found; cannot start session")
            return COMMAND_NOT_FOUND_EXIT_CODE

        pump = threading.Thread(
            target=self._pump_stderr, args=(process.stderr, tail), daemon=True
        )
        pump.start()

        # Ctrl+C belongs to the remote shell while the session runs.
        previous = signal.signal(signal.SIGINT, signal.SIG_IGN)
        try:
            exit_code = process.wait()
        finally:
            signal.signal(signal.SIGINT, previous)
        pump.join(timeout=1.0)

        self.last_stderr = list(tail)
        if exit_code == 0:
            logger.info("═" * 63)
            logger.info("  SSM Session Ended")
            logger.info("═" * 63)
            logger.info("✓ Session completed successfully")
        return exit_code
