"""
Unit tests for the target inventory service.
"""

import os
import tempfile
import threading
import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock
from cache import InventoryCache
from errors import QueryError
from inventory import InventoryService, parse_descriptor, parse_target, summarize
from models import HeartbeatStatus, IdentityContext, ReadinessTier, Target

PROD = IdentityContext(name="prod", source="config")


def ssm_record(instance_id, ping="Online", agent="3.2.582.0", platform="Linux"):
    return {
        "InstanceId": instance_id,
        "PingStatus": ping,
        "AgentVersion": agent,
        "PlatformType": platform,
        "PlatformName": "Amazon Linux",
        "LastPingDateTime": datetime(2024, 1, 1, tzinfo=timezone.utc),
    }


def ec2_instance(instance_id, name=None, private_ip="10.0.0.5", instance_type="t3.micro"):
    instance = {
        "InstanceId": instance_id,
        "InstanceType": instance_type,
        "PrivateIpAddress": private_ip,
        "State": {"Name": "running"},
        "Tags": [{"Key": "Environment", "Value": "prod"}, {"Key": "CostCenter", "Value": "42"}],
    }
    if name:
        instance["Tags"].append({"Key": "Name", "Value": name})
    return instance


class TestParsing(unittest.TestCase):
    """Test record parsing."""

    def test_parse_target(self):
        """Test an SSM record becomes a Target."""
        target = parse_target(ssm_record("i-aaa", ping="ConnectionLost"))
        self.assertEqual(target.id, "i-aaa")
        self.assertIs(target.heartbeat_status, HeartbeatStatus.CONNECTION_LOST)
        self.assertEqual(target.agent_version, "3.2.582.0")
        self.assertTrue(target.last_heartbeat_time.startswith("2024-01-01"))

    def test_parse_target_without_id(self):
        """Test a record without an id is rejected."""
        with self.assertRaises(QueryError):
            parse_target({"PingStatus": "Online"})

    def test_parse_descriptor(self):
        """Test EC2 data becomes a descriptor with only descriptive tags."""
        descriptor = parse_descriptor(ec2_instance("i-aaa", name="web-1"))
        self.assertEqual(descriptor.display_name, "web-1")
        self.assertEqual(descriptor.private_address, "10.0.0.5")
        self.assertEqual(descriptor.state, "running")
        self.assertEqual(descriptor.tags, {"Environment": "prod", "Name": "web-1"})

    def test_parse_descriptor_without_name_or_ip(self):
        """Test missing Name tag and private IP get their labels."""
        descriptor = parse_descriptor(ec2_instance("i-aaa", private_ip=None))
        self.assertEqual(descriptor.display_name, "No Name")
        self.assertEqual(descriptor.private_address, "No Private IP")


class TestInventoryService(unittest.TestCase):
    """Test InventoryService fetch, enrich and cache behaviour."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.now = 1000.0
        self.cache = InventoryCache(self.tmpdir.name, ttl=300, clock=lambda: self.now)
        self.client = MagicMock()
        self.factory = MagicMock(return_value=self.client)
        self.service = InventoryService(self.cache, client_factory=self.factory)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_fetch_heartbeats(self):
        """Test heartbeats are parsed and non-Linux records dropped."""
        self.client.describe_instance_information.return_value = [
            ssm_record("i-aaa"),
            ssm_record("i-win", platform="Windows"),
        ]

        targets = self.service.fetch_heartbeats(PROD, "us-east-1")

        self.assertEqual([t.id for t in targets], ["i-aaa"])
        self.factory.assert_called_once_with("prod", "us-east-1")

    def test_fetch_heartbeats_propagates_query_errors(self):
        """Test control-plane failures reach the caller."""
        self.client.describe_instance_information.side_effect = QueryError("timeout")
        with self.assertRaises(QueryError):
            self.service.fetch_heartbeats(PROD, "us-east-1")

    def test_enrich_joins_descriptors(self):
        """Test targets are joined with EC2 data and classified."""
        self.client.describe_instances.return_value = [ec2_instance("i-aaa", name="web-1")]
        targets = [
            Target(id="i-aaa", heartbeat_status=HeartbeatStatus.ONLINE, agent_version="3.1"),
            Target(id="mi-0123", heartbeat_status=HeartbeatStatus.ONLINE, agent_version="2.0"),
        ]

        items = self.service.enrich(targets, "us-east-1", PROD)

        self.assertEqual([i.id for i in items], ["i-aaa", "mi-0123"])
        self.assertEqual(items[0].descriptor.display_name, "web-1")
        self.assertIs(items[0].tier, ReadinessTier.READY)
        self.assertEqual(items[1].descriptor.display_name, "Unknown")
        self.assertIs(items[1].tier, ReadinessTier.NEEDS_VERIFICATION)
        self.client.describe_instances.assert_called_once_with(["i-aaa"])

    def test_enrich_is_idempotent_within_ttl(self):
        """Test a second enrichment reuses the cache with the same result."""
        self.client.describe_instances.return_value = [ec2_instance("i-aaa", name="web-1")]
        targets = [Target(id="i-aaa", heartbeat_status=HeartbeatStatus.ONLINE, agent_version="3.1")]

        first = self.service.enrich(targets, "us-east-1", PROD)
        self.now = 1200.0
        second = self.service.enrich(targets, "us-east-1", PROD)

        self.assertEqual(first, second)
        self.assertEqual(self.client.describe_instances.call_count, 1)

    def test_enrich_refetches_after_ttl(self):
        """Test an expired cache triggers a new lookup."""
        self.client.describe_instances.return_value = [ec2_instance("i-aaa", name="web-1")]
        targets = [Target(id="i-aaa", heartbeat_status=HeartbeatStatus.ONLINE)]

        self.service.enrich(targets, "us-east-1", PROD)
        self.now = 1400.0
        self.service.enrich(targets, "us-east-1", PROD)

        self.assertEqual(self.client.describe_instances.call_count, 2)

    def test_enrich_degrades_when_lookup_fails(self):
        """Test a failed lookup yields placeholders and no cache write."""
        self.client.describe_instances.side_effect = QueryError("UnauthorizedOperation")
        targets = [Target(id="i-aaa", heartbeat_status=HeartbeatStatus.ONLINE, agent_version="3.0")]

        items = self.service.enrich(targets, "us-east-1", PROD)

        self.assertEqual(items[0].descriptor.display_name, "Unknown")
        self.assertEqual(items[0].descriptor.private_address, "Unknown")
        self.assertIs(items[0].tier, ReadinessTier.READY)
        self.assertIsNone(self.cache.load("prod", "us-east-1"))

    def test_enrich_survives_cache_write_failure(self):
        """Test an unwritable cache does not break enrichment."""
        self.client.describe_instances.return_value = [ec2_instance("i-aaa", name="web-1")]
        self.cache.store = MagicMock(side_effect=OSError("read-only"))
        targets = [Target(id="i-aaa", heartbeat_status=HeartbeatStatus.ONLINE)]

        items = self.service.enrich(targets, "us-east-1", PROD)

        self.assertEqual(items[0].descriptor.display_name, "web-1")

    def test_enrich_refreshes_for_new_instances(self):
        """Test an instance registered after the cache was written is looked up."""
        self.client.describe_instances.return_value = [ec2_instance("i-aaa", name="web-1")]
        self.service.enrich([Target(id="i-aaa")], "us-east-1", PROD)

        self.now = 1100.0
        self.client.describe_instances.return_value = [
            ec2_instance("i-aaa", name="web-1"),
            ec2_instance("i-bbb", name="web-2"),
        ]
        items = self.service.enrich([Target(id="i-aaa"), Target(id="i-bbb")], "us-east-1", PROD)

        self.assertEqual([i.descriptor.display_name for i in items], ["web-1", "web-2"])
        self.assertEqual(self.client.describe_instances.call_count, 2)
        self.client.describe_instances.assert_called_with(["i-aaa", "i-bbb"])
        self.assertIn("i-bbb", self.cache.load("prod", "us-east-1").descriptors)

    def test_enrich_caches_instances_ec2_does_not_return(self):
        """Test an id missing from EC2 does not force a lookup on every call."""
        self.client.describe_instances.return_value = [ec2_instance("i-aaa", name="web-1")]
        targets = [Target(id="i-aaa"), Target(id="i-gone")]

        self.service.enrich(targets, "us-east-1", PROD)
        self.now = 1100.0
        items = self.service.enrich(targets, "us-east-1", PROD)

        self.assertEqual(items[1].descriptor.display_name, "Unknown")
        self.assertEqual(self.client.describe_instances.call_count, 1)

    def test_failed_refresh_keeps_cached_descriptors(self):
        """Test a failed refresh still shows what the cache knows."""
        self.client.describe_instances.return_value = [ec2_instance("i-aaa", name="web-1")]
        self.service.enrich([Target(id="i-aaa")], "us-east-1", PROD)

        self.client.describe_instances.side_effect = QueryError("timeout")
        items = self.service.enrich([Target(id="i-aaa"), Target(id="i-bbb")], "us-east-1", PROD)

        self.assertEqual(items[0].descriptor.display_name, "web-1")
        self.assertEqual(items[1].descriptor.display_name, "Unknown")

    def test_cancelled_enrich_writes_no_cache(self):
        """Test nothing is stored once the fetch has been cancelled."""
        self.client.describe_instances.return_value = [ec2_instance("i-aaa", name="web-1")]
        cancelled = threading.Event()
        cancelled.set()

        items = self.service.enrich([Target(id="i-aaa")], "us-east-1", PROD, cancelled)

        self.assertEqual(items[0].descriptor.display_name, "web-1")
        self.assertEqual(os.listdir(self.tmpdir.name), [])

    def test_cancelled_load_skips_enrichment(self):
        """Test a load cancelled during the heartbeat query stops there."""
        cancelled = threading.Event()

        def heartbeats(*args, **kwargs):
            cancelled.set()
            return [ssm_record("i-aaa")]

        self.client.describe_instance_information.side_effect = heartbeats

        self.assertEqual(self.service.load(PROD, "us-east-1", cancelled), [])
        self.client.describe_instances.assert_not_called()

    def test_enrich_empty(self):
        """Test nothing is fetched for an empty inventory."""
        self.assertEqual(self.service.enrich([], "us-east-1", PROD), [])
        self.client.describe_instances.assert_not_called()

    def test_load(self):
        """Test heartbeats and enrichment run together."""
        self.client.describe_instance_information.return_value = [ssm_record("i-aaa")]
        self.client.describe_instances.return_value = [ec2_instance("i-aaa", name="web-1")]

        items = self.service.load(PROD, "us-east-1")

        self.assertEqual(len(items), 1)
        self.assertEqual(items[0].descriptor.display_name, "web-1")

    def test_current_target(self):
        """Test a single heartbeat re-read."""
        self.client.get_instance_information.return_value = ssm_record("i-aaa", ping="Inactive")
        target = self.service.current_target(PROD, "us-east-1", "i-aaa")
        self.assertIs(target.heartbeat_status, HeartbeatStatus.INACTIVE)

        self.client.get_instance_information.return_value = None
        self.assertIsNone(self.service.current_target(PROD, "us-east-1", "i-aaa"))

    def test_clients_are_reused(self):
        """Test one client per profile and region."""
        self.service.client(PROD, "us-east-1")
        self.service.client(PROD, "us-east-1")
        self.service.client(PROD, "eu-west-1")
        self.assertEqual(self.factory.call_count, 2)

    def test_summarize(self):
        """Test per-tier counts."""
        self.client.describe_instances.return_value = []
        targets = [
            Target(id="i-1", heartbeat_status=HeartbeatStatus.ONLINE, agent_version="3.0"),
            Target(id="i-2", heartbeat_status=HeartbeatStatus.ONLINE),
            Target(id="i-3", heartbeat_status=HeartbeatStatus.INACTIVE),
        ]
        counts = summarize(self.service.enrich(targets, "us-east-1", PROD))
        self.assertEqual(counts[ReadinessTier.READY], 1)
        self.assertEqual(counts[ReadinessTier.NEEDS_VERIFICATION], 1)
        self.assertEqual(counts[ReadinessTier.NOT_READY], 1)


if __name__ == "__main__":
    unittest.main()
