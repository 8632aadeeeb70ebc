"""
AWS API client for SSM managed instances (SSM and EC2).
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as TransportError

from errors import QueryError

logger = logging.getLogger(__name__)

LINUX_PLATFORM = "Linux"
SSM_PAGE_SIZE = 50


@dataclass
class RetryPolicy:
    """Bounded retry settings for collaborator calls."""

    max_attempts: int = 2
    base_delay: float = 1.0
    max_delay: float = 8.0
    read_timeout: int = 10
    connect_timeout: int = 5

    def delay(self, attempt: int) -> float:
        """
        Calculate delay with exponential backoff and jitter.

        Args:
            attempt: Zero-based attempt number that just failed

        Returns:
            Delay in seconds
        """
        delay = self.base_delay * (2**attempt)
        jitter = delay * 0.2 * (0.5 - time.time() % 1)
        return min(delay + jitter, self.max_delay)

    def botocore_config(self) -> Config:
        # Retries are driven by this policy, so botocore makes a single attempt.
        return Config(
            connect_timeout=self.connect_timeout,
            read_timeout=self.read_timeout,
            retries={"total_max_attempts": 1, "mode": "standard"},
        )


def error_code(exc: Exception) -> str:
    """Return the AWS error code carried by a ClientError, else an empty string."""
    if isinstance(exc, ClientError):
        return str(exc.response.get("Error", {}).get("Code", "") or "")
    return ""


def error_message(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        return str(exc.response.get("Error", {}).get("Message", "") or exc)
    return str(exc)


class FleetClient:
    """Client for the SSM and EC2 APIs of one profile and region."""

    RETRYABLE_ERROR_CODES = {
        "Throttling",
        "ThrottlingException",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "ServiceUnavailable",
        "InternalServerError",
        "InternalFailure",
        "RequestTimeout",
    }

    def __init__(
        self,
        profile: str,
        region: str,
        retry_policy: Optional[RetryPolicy] = None,
        session=None,
    ):
        """
        Initialize the fleet client.

        Args:
            profile: AWS CLI profile name
            region: AWS region
            retry_policy: Retry and timeout settings
            session: Optional boto3 session (one is built from the profile otherwise)
        """
        self.profile = profile
        self.region = region
        self.retry_policy = retry_policy or RetryPolicy()

        self.session = session or boto3.session.Session(
            profile_name=profile, region_name=region
        )
        config = self.retry_policy.botocore_config()
        self.ssm = self.session.client("ssm", region_name=region, config=config)
        self.ec2 = self.session.client("ec2", region_name=region, config=config)

    def _call_with_retry(self, client, operation: str, **kwargs) -> Dict:
        """
        Execute an API call, retrying throttling and transport errors.

        Args:
            client: boto3 client
            operation: Client method name (e.g. 'describe_instances')
            **kwargs: Operation parameters

        Returns:
            Response dictionary

        Raises:
            QueryError: On a non-retryable error or when attempts are exhausted
        """
        method = getattr(client, operation)
        attempts = max(1, self.retry_policy.max_attempts)
        last_error = ""
        last_code: Optional[str] = None

        for attempt in range(attempts):
            try:
                return method(**kwargs)
            except ClientError as e:
                code = error_code(e)
                if code not in self.RETRYABLE_ERROR_CODES:
                    raise QueryError(
                        f"{operation} failed ({code}): {error_message(e)}", code=code
                    ) from e
                last_error = f"{code}: {error_message(e)}"
                last_code = code
            except (TransportError, HTTPClientError) as e:
                last_error = str(e)
                last_code = None
            except BotoCoreError as e:
                raise QueryError(f"{operation} failed: {e}") from e

            if attempt + 1 < attempts:
                delay = self.retry_policy.delay(attempt)
                logger.warning(
                    f"Retryable error on {operation} ({last_error}), "
                    f"attempt {attempt + 1}/{attempts}, waiting {delay:.1f}s..."
                )
                time.sleep(delay)

        raise QueryError(
            f"{operation} failed after {attempts} attempt(s): {last_error}",
            code=last_code,
        )

    def describe_instance_information(
        self, online_only: bool = True, max_items: int = 1000
    ) -> List[Dict]:
        """
        List SSM managed Linux instances.

        Args:
            online_only: Only return instances whose ping status is Online
            max_items: Upper bound on the number of records returned

        Returns:
            Raw InstanceInformationList records

        Raises:
            QueryError: If the API call fails or the response is malformed
        """
        filters = [{"Key": "PlatformTypes", "Values": [LINUX_PLATFORM]}]
        if online_only:
            filters.append({"Key": "PingStatus", "Values": ["Online"]})

        records: List[Dict] = []
        next_token: Optional[str] = None

        while len(records) < max_items:
            params = {"Filters": filters, "MaxResults": SSM_PAGE_SIZE}
            if next_token:
                params["NextToken"] = next_token

            data = self._call_with_retry(
                self.ssm, "describe_instance_information", **params
            )
            page = data.get("InstanceInformationList")
            if not isinstance(page, list):
                raise QueryError(
                    "describe_instance_information returned unexpected response"
                )
            records.extend(page)

            next_token = data.get("NextToken")
            if not next_token:
                break

        return records[:max_items]

    def get_instance_information(self, instance_id: str) -> Optional[Dict]:
        """
        Read the current SSM record of one instance.

        Returns:
            Raw record, or None if the instance is not registered with SSM
        """
        data = self._call_with_retry(
            self.ssm,
            "describe_instance_information",
            Filters=[{"Key": "InstanceIds", "Values": [instance_id]}],
        )
        records = data.get("InstanceInformationList") or []
        return records[0] if records else None

    def describe_instances(self, instance_ids: List[str]) -> List[Dict]:
        """
        Fetch EC2 details for all given instances in one lookup.

        Args:
            instance_ids: Instance IDs, passed together in a single request

        Returns:
            Raw EC2 instance records (reservations flattened)

        Raises:
            QueryError: If the API call fails
        """
        instances: List[Dict] = []
        next_token: Optional[str] = None

        while True:
            params = {"InstanceIds": list(instance_ids)}
            if next_token:
                params["NextToken"] = next_token
            data = self._call_with_retry(self.ec2, "describe_instances", **params)
            for reservation in data.get("Reservations", []):
                instances.extend(reservation.get("Instances", []))
            next_token = data.get("NextToken")
            if not next_token:
                break

        return instances

    def start_session(self, instance_id: str, document_name: Optional[str] = None) -> Dict:
        """Open an SSM session (no retry; callers classify the error)."""
        params = {"Target": instance_id}
        if document_name:
            params["DocumentName"] = document_name
        return self.ssm.start_session(**params)

    def terminate_session(self, session_id: str) -> None:
        self.ssm.terminate_session(SessionId=session_id)
