"""
Target inventory: SSM heartbeats joined with cached EC2 descriptors.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from botocore.exceptions import BotoCoreError

from cache import InventoryCache
from clients import LINUX_PLATFORM, FleetClient, RetryPolicy
from errors import QueryError
from models import (
    EnrichedTarget,
    HeartbeatStatus,
    IdentityContext,
    InventoryCacheEntry,
    ReadinessTier,
    Target,
    TargetDescriptor,
)
from readiness import DEFAULT_READY_AGENT_MAJOR, classify

logger = logging.getLogger(__name__)

DESCRIPTIVE_TAGS = ("Name", "Environment", "Env", "Role", "Service", "Owner", "Team")
EC2_ID_PREFIX = "i-"


def _format_time(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def parse_target(record: Dict) -> Target:
    """
    Build a Target from an SSM InstanceInformation record.

    Raises:
        QueryError: If the record has no instance ID
    """
    instance_id = record.get("InstanceId")
    if not instance_id:
        raise QueryError(f"Malformed SSM record without InstanceId: {record}")
    return Target(
        id=str(instance_id),
        platform_family=str(record.get("PlatformType") or LINUX_PLATFORM),
        platform_name=str(record.get("PlatformName") or LINUX_PLATFORM),
        heartbeat_status=HeartbeatStatus.parse(record.get("PingStatus")),
        agent_version=record.get("AgentVersion") or None,
        last_heartbeat_time=_format_time(record.get("LastPingDateTime")),
    )


def parse_descriptor(instance: Dict) -> TargetDescriptor:
    """Build a TargetDescriptor from an EC2 instance record."""
    tags = {
        tag["Key"]: tag.get("Value", "")
        for tag in instance.get("Tags") or []
        if tag.get("Key") in DESCRIPTIVE_TAGS
    }
    state = instance.get("State") or {}
    return TargetDescriptor(
        id=str(instance["InstanceId"]),
        display_name=tags.get("Name") or "No Name",
        private_address=instance.get("PrivateIpAddress") or "No Private IP",
        public_address=instance.get("PublicIpAddress") or None,
        instance_class=instance.get("InstanceType") or "Unknown",
        state=state.get("Name", "Unknown") if isinstance(state, dict) else str(state),
        tags=tags,
    )


def summarize(targets: List[EnrichedTarget]) -> Dict[ReadinessTier, int]:
    """Count targets per readiness tier."""
    counts = {tier: 0 for tier in ReadinessTier}
    for item in targets:
        counts[item.tier] += 1
    return counts


class InventoryService:
    """Queries, enriches and caches the list of connectable targets."""

    def __init__(
        self,
        cache: InventoryCache,
        client_factory: Optional[Callable[[str, str], FleetClient]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        ready_major: int = DEFAULT_READY_AGENT_MAJOR,
        max_items: int = 1000,
    ):
        """
        Initialize the inventory service.

        Args:
            cache: Descriptor cache
            client_factory: Builds a FleetClient for (profile, region)
            retry_policy: Retry and timeout settings for default clients
            ready_major: Agent major version threshold for readiness
            max_items: Cap on heartbeat records per query
        """
        self.cache = cache
        self.retry_policy = retry_policy or RetryPolicy()
        self.client_factory = client_factory or (
            lambda profile, region: FleetClient(
                profile=profile, region=region, retry_policy=self.retry_policy
            )
        )
        self.ready_major = ready_major
        self.max_items = max_items
        self._clients: Dict[Tuple[str, str], FleetClient] = {}

    def _client(self, ctx: IdentityContext, region: str) -> FleetClient:
        key = (ctx.name, region)
        if key not in self._clients:
            try:
                self._clients[key] = self.client_factory(ctx.name, region)
            except BotoCoreError as e:
                raise QueryError(f"Cannot create AWS client for {ctx.name}/{region}: {e}") from e
        return self._clients[key]

    def classify(self, target: Target) -> ReadinessTier:
        return classify(target.heartbeat_status, target.agent_version, self.ready_major)

    def fetch_heartbeats(
        self, ctx: IdentityContext, region: str, online_only: bool = True
    ) -> List[Target]:
        """
        Query SSM for managed Linux instances.

        Args:
            ctx: Active profile
            region: AWS region
            online_only: Restrict to instances whose ping status is Online

        Returns:
            Targets (possibly empty)

        Raises:
            QueryError: On transport or parse failure
        """
        logger.info(f"Querying SSM managed instances in region: {region}")
        records = self._client(ctx, region).describe_instance_information(
            online_only=online_only, max_items=self.max_items
        )
        targets = [parse_target(r) for r in records]
        targets = [t for t in targets if t.platform_family == LINUX_PLATFORM]
        if targets:
            logger.info(f"✓ Found {len(targets)} SSM managed Linux instance(s)")
        else:
            logger.warning(f"⚠ No SSM managed Linux instances found in region {region}")
        return targets

    def _fetch_descriptors(
        self, ctx: IdentityContext, region: str, ids: List[str]
    ) -> Optional[Dict[str, TargetDescriptor]]:
        ec2_ids = [i for i in ids if i.startswith(EC2_ID_PREFIX)]
        if not ec2_ids:
            return {}

        logger.info(f"Fetching EC2 details for {len(ec2_ids)} instance(s) in one call...")
        try:
            instances = self._client(ctx, region).describe_instances(ec2_ids)
            descriptors = {}
            for instance in instances:
                descriptor = parse_descriptor(instance)
                descriptors[descriptor.id] = descriptor
        except (QueryError, KeyError, TypeError) as e:
            logger.warning(f"⚠ Failed to fetch EC2 details: {e}")
            return None

        logger.info("✓ EC2 data enrichment complete")
        return descriptors

    def fetch_descriptors(
        self, ctx: IdentityContext, region: str, ids: List[str]
    ) -> Dict[str, TargetDescriptor]:
        """
        Fetch descriptors for all ids with one batched EC2 lookup.

        Returns:
            Mapping of id to descriptor; empty if the lookup failed
        """
        return self._fetch_descriptors(ctx, region, ids) or {}

    def enrich(
        self,
        targets: List[Target],
        region: str,
        ctx: IdentityContext,
        cancelled: Optional[threading.Event] = None,
    ) -> List[EnrichedTarget]:
        """
        Join targets with descriptors, using the cache when it is fresh.

        A fresh entry that lacks some of the current EC2 ids (instances
        registered since it was written) is refreshed with one batched
        lookup. Ids the lookup does not return are cached as placeholders.
        A failed lookup leaves the cache untouched and falls back to
        placeholder descriptors. Nothing is written once ``cancelled`` is set.

        Returns:
            Enriched targets in input order
        """
        if not targets:
            return []

        ids = [t.id for t in targets]
        entry = self.cache.load(ctx.name, region)
        unseen = []
        if entry is not None:
            unseen = [i for i in ids if i.startswith(EC2_ID_PREFIX) and i not in entry.descriptors]
            if unseen:
                logger.info(f"Cache is missing {len(unseen)} new instance(s), refreshing...")

        if entry is not None and not unseen:
            descriptors = entry.descriptors
        else:
            fetched = self._fetch_descriptors(ctx, region, ids)
            if fetched is None:
                logger.warning("⚠ Continuing with basic instance information")
                descriptors = entry.descriptors if entry is not None else {}
            else:
                for target_id in ids:
                    if target_id.startswith(EC2_ID_PREFIX) and target_id not in fetched:
                        fetched[target_id] = TargetDescriptor.placeholder(target_id)
                descriptors = fetched
                self._store(ctx, region, fetched, cancelled)

        return [
            EnrichedTarget(
                target=t,
                descriptor=descriptors.get(t.id) or TargetDescriptor.placeholder(t.id),
                tier=self.classify(t),
            )
            for t in targets
        ]

    def _store(
        self,
        ctx: IdentityContext,
        region: str,
        descriptors: Dict[str, TargetDescriptor],
        cancelled: Optional[threading.Event],
    ) -> None:
        if cancelled is not None and cancelled.is_set():
            logger.debug("Fetch was cancelled; inventory cache not written")
            return
        try:
            self.cache.store(
                InventoryCacheEntry(
                    identity=ctx.name,
                    region=region,
                    descriptors=descriptors,
                    fetched_at=self.cache.clock(),
                )
            )
        except OSError as e:
            logger.warning(f"⚠ Could not write inventory cache: {e}")

    def load(
        self,
        ctx: IdentityContext,
        region: str,
        cancelled: Optional[threading.Event] = None,
    ) -> List[EnrichedTarget]:
        """Fetch heartbeats and enrich them (the unit run as a background task)."""
        targets = self.fetch_heartbeats(ctx, region)
        if cancelled is not None and cancelled.is_set():
            logger.debug("Fetch was cancelled; skipping EC2 enrichment")
            return []
        return self.enrich(targets, region, ctx, cancelled)

    def current_target(
        self, ctx: IdentityContext, region: str, target_id: str
    ) -> Optional[Target]:
        """
        Re-read the heartbeat of a single target.

        Returns:
            Target, or None if it is no longer registered

        Raises:
            QueryError: On transport or parse failure
        """
        record = self._client(ctx, region).get_instance_information(target_id)
        return parse_target(record) if record else None

    def client(self, ctx: IdentityContext, region: str) -> FleetClient:
        return self._client(ctx, region)
