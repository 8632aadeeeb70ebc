"""
Unit tests for FleetClient.
"""

import unittest
from unittest.mock import MagicMock, patch
from botocore.exceptions import ClientError, EndpointConnectionError, NoRegionError
from clients import FleetClient, RetryPolicy, error_code, error_message
from errors import QueryError


def client_error(code, message="boom", operation="DescribeInstanceInformation"):
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


class TestRetryPolicy(unittest.TestCase):
    """Test RetryPolicy backoff and botocore settings."""

    def test_delay_grows_and_is_capped(self):
        """Test exponential backoff with jitter stays under the cap."""
        policy = RetryPolicy(base_delay=1.0, max_delay=8.0)
        self.assertLessEqual(policy.delay(0), 1.1)
        self.assertGreaterEqual(policy.delay(0), 0.9)
        self.assertGreaterEqual(policy.delay(2), 3.6)
        self.assertLessEqual(policy.delay(10), 8.0)

    def test_botocore_config(self):
        """Test botocore makes a single attempt with the configured timeouts."""
        config = RetryPolicy(read_timeout=10, connect_timeout=5).botocore_config()
        self.assertEqual(config.read_timeout, 10)
        self.assertEqual(config.connect_timeout, 5)
        self.assertEqual(config.retries["total_max_attempts"], 1)


class TestErrorHelpers(unittest.TestCase):
    """Test error code extraction."""

    def test_error_code_and_message(self):
        """Test ClientError details are read from the response."""
        error = client_error("AccessDeniedException", "not allowed")
        self.assertEqual(error_code(error), "AccessDeniedException")
        self.assertEqual(error_message(error), "not allowed")

    def test_non_client_error(self):
        """Test other exceptions have no code."""
        self.assertEqual(error_code(ValueError("x")), "")
        self.assertEqual(error_message(ValueError("x")), "x")


class TestFleetClient(unittest.TestCase):
    """Test FleetClient SSM and EC2 interactions."""

    def setUp(self):
        """Set up test fixtures."""
        self.session = MagicMock()
        self.ssm = MagicMock()
        self.ec2 = MagicMock()
        self.session.client.side_effect = lambda name, **kwargs: {
            "ssm": self.ssm,
            "ec2": self.ec2,
        }[name]
        self.client = FleetClient(
            profile="prod",
            region="us-east-1",
            retry_policy=RetryPolicy(max_attempts=2),
            session=self.session,
        )

    def test_client_initialization(self):
        """Test client is properly initialised."""
        self.assertEqual(self.client.profile, "prod")
        self.assertEqual(self.client.region, "us-east-1")
        self.assertIs(self.client.ssm, self.ssm)
        self.assertIs(self.client.ec2, self.ec2)

    @patch("clients.boto3.session.Session")
    def test_default_session_uses_profile(self, mock_session_class):
        """Test a boto3 session is built for the profile and region."""
        FleetClient(profile="dev", region="eu-west-1")
        mock_session_class.assert_called_once_with(profile_name="dev", region_name="eu-west-1")

    def test_describe_instance_information_filters(self):
        """Test Linux and Online filters are sent."""
        self.ssm.describe_instance_information.return_value = {
            "InstanceInformationList": [{"InstanceId": "i-aaa"}]
        }

        records = self.client.describe_instance_information()

        self.assertEqual(records, [{"InstanceId": "i-aaa"}])
        kwargs = self.ssm.describe_instance_information.call_args[1]
        self.assertIn({"Key": "PlatformTypes", "Values": ["Linux"]}, kwargs["Filters"])
        self.assertIn({"Key": "PingStatus", "Values": ["Online"]}, kwargs["Filters"])

    def test_describe_instance_information_all_statuses(self):
        """Test the Online filter can be dropped."""
        self.ssm.describe_instance_information.return_value = {"InstanceInformationList": []}
        self.client.describe_instance_information(online_only=False)
        kwargs = self.ssm.describe_instance_information.call_args[1]
        self.assertEqual(kwargs["Filters"], [{"Key": "PlatformTypes", "Values": ["Linux"]}])

    def test_describe_instance_information_with_pagination(self):
        """Test pages are followed and capped at max_items."""
        self.ssm.describe_instance_information.side_effect = [
            {"InstanceInformationList": [{"InstanceId": "i-1"}, {"InstanceId": "i-2"}], "NextToken": "t1"},
            {"InstanceInformationList": [{"InstanceId": "i-3"}], "NextToken": "t2"},
        ]

        records = self.client.describe_instance_information(max_items=3)

        self.assertEqual([r["InstanceId"] for r in records], ["i-1", "i-2", "i-3"])
        self.assertEqual(self.ssm.describe_instance_information.call_count, 2)
        second_call = self.ssm.describe_instance_information.call_args_list[1][1]
        self.assertEqual(second_call["NextToken"], "t1")

    def test_describe_instance_information_malformed(self):
        """Test a response without a record list is a query error."""
        self.ssm.describe_instance_information.return_value = {"Unexpected": True}
        with self.assertRaises(QueryError):
            self.client.describe_instance_information()

    @patch("clients.time.sleep")
    def test_throttling_is_retried(self, mock_sleep):
        """Test throttling errors are retried once."""
        self.ssm.describe_instance_information.side_effect = [
            client_error("ThrottlingException"),
            {"InstanceInformationList": []},
        ]

        self.assertEqual(self.client.describe_instance_information(), [])
        self.assertEqual(self.ssm.describe_instance_information.call_count, 2)
        mock_sleep.assert_called_once()

    @patch("clients.time.sleep")
    def test_transport_errors_exhaust_attempts(self, mock_sleep):
        """Test transport errors give up after the attempt limit."""
        self.ssm.describe_instance_information.side_effect = EndpointConnectionError(
            endpoint_url="https://ssm.us-east-1.amazonaws.com"
        )

        with self.assertRaises(QueryError):
            self.client.describe_instance_information()
        self.assertEqual(self.ssm.describe_instance_information.call_count, 2)

    def test_non_retryable_error_raises_immediately(self):
        """Test permission errors are not retried and keep their code."""
        self.ssm.describe_instance_information.side_effect = client_error(
            "AccessDeniedException"
        )

        with self.assertRaises(QueryError) as ctx:
            self.client.describe_instance_information()

        self.assertEqual(ctx.exception.code, "AccessDeniedException")
        self.assertEqual(self.ssm.describe_instance_information.call_count, 1)

    def test_other_botocore_errors_raise_query_error(self):
        """Test non-transport botocore errors become query errors."""
        self.ssm.describe_instance_information.side_effect = NoRegionError()
        with self.assertRaises(QueryError):
            self.client.describe_instance_information()

    def test_get_instance_information(self):
        """Test a single instance record is read by id."""
        self.ssm.describe_instance_information.return_value = {
            "InstanceInformationList": [{"InstanceId": "i-aaa", "PingStatus": "Online"}]
        }

        record = self.client.get_instance_information("i-aaa")

        self.assertEqual(record["PingStatus"], "Online")
        kwargs = self.ssm.describe_instance_information.call_args[1]
        self.assertEqual(kwargs["Filters"], [{"Key": "InstanceIds", "Values": ["i-aaa"]}])

    def test_get_instance_information_missing(self):
        """Test an unregistered instance yields None."""
        self.ssm.describe_instance_information.return_value = {"InstanceInformationList": []}
        self.assertIsNone(self.client.get_instance_information("i-gone"))

    def test_describe_instances_single_request(self):
        """Test all ids go into one request and reservations are flattened."""
        self.ec2.describe_instances.return_value = {
            "Reservations": [
                {"Instances": [{"InstanceId": "i-1"}]},
                {"Instances": [{"InstanceId": "i-2"}, {"InstanceId": "i-3"}]},
            ]
        }

        instances = self.client.describe_instances(["i-1", "i-2", "i-3"])

        self.assertEqual(len(instances), 3)
        self.ec2.describe_instances.assert_called_once_with(InstanceIds=["i-1", "i-2", "i-3"])

    def test_start_and_terminate_session(self):
        """Test session calls are passed through."""
        self.ssm.start_session.return_value = {"SessionId": "s-1"}

        response = self.client.start_session("i-aaa")
        self.client.terminate_session("s-1")

        self.assertEqual(response["SessionId"], "s-1")
        self.ssm.start_session.assert_called_once_with(Target="i-aaa")
        self.ssm.terminate_session.assert_called_once_with(SessionId="s-1")


if __name__ == "__main__":
    unittest.main()
