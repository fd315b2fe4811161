"""Tests for the Route 53 and Cloudflare DNS hosts."""

from unittest.mock import MagicMock, patch

import boto3
import pytest
import requests
from botocore.exceptions import ClientError

from forward_setup.dns_hosts import CloudflareDnsHost, Route53DnsHost
from forward_setup.gateway import ProviderError
from forward_setup.models import DNSRecord


def txt(value, name="example.com"):
    return DNSRecord(name=name, record_type="TXT", value=f'"{value}"')


def mx(host, name="example.com"):
    return DNSRecord(name=name, record_type="MX", value=host, priority=10)


@pytest.fixture
def route53_host(route53_client, fake_sleep):
    return Route53DnsHost(session=boto3.Session(region_name="us-east-1"), sleep=fake_sleep)


class TestRoute53DnsHost:
    """Tests for Route53DnsHost."""

    def test_find_zone(self, route53_host, sample_hosted_zone):
        """Test zones are matched by name."""
        assert route53_host.find_zone("example.com") == sample_hosted_zone["Id"]
        assert route53_host.find_zone("Example.COM") == sample_hosted_zone["Id"]
        assert route53_host.find_zone("other.com") is None

    def test_apex_txt_records_coexist(self, route53_host, sample_hosted_zone):
        """Test verification and catch-all TXT values share one record set."""
        zone_id = sample_hosted_zone["Id"]
        route53_host.upsert_record(zone_id, txt("forward-email-site-verification=abc"))
        route53_host.upsert_record(zone_id, txt("forward-email=me@example.org"))

        values = sorted(r.value.strip('"') for r in route53_host.get_records(zone_id, "example.com", "TXT"))

        assert values == ["forward-email-site-verification=abc", "forward-email=me@example.org"]

    def test_txt_upsert_replaces_same_key(self, route53_host, sample_hosted_zone):
        """Test a new verification token replaces the old one only."""
        zone_id = sample_hosted_zone["Id"]
        route53_host.upsert_record(zone_id, txt("forward-email-site-verification=old"))
        route53_host.upsert_record(zone_id, txt("forward-email=me@example.org"))
        route53_host.upsert_record(zone_id, txt("forward-email-site-verification=new"))

        values = sorted(r.value.strip('"') for r in route53_host.get_records(zone_id, "example.com", "TXT"))

        assert values == ["forward-email-site-verification=new", "forward-email=me@example.org"]

    def test_both_mx_records(self, route53_host, sample_hosted_zone):
        """Test both exchangers end up in the MX record set."""
        zone_id = sample_hosted_zone["Id"]
        route53_host.upsert_record(zone_id, mx("mx1.forwardemail.net"))
        route53_host.upsert_record(zone_id, mx("mx2.forwardemail.net"))

        records = route53_host.get_records(zone_id, "example.com", "MX")

        assert sorted(r.value for r in records) == ["mx1.forwardemail.net", "mx2.forwardemail.net"]
        assert all(r.priority == 10 for r in records)

    def test_identical_record_is_not_rewritten(self, route53_host, sample_hosted_zone):
        """Test upserting an unchanged record makes no change call."""
        zone_id = sample_hosted_zone["Id"]
        route53_host.upsert_record(zone_id, mx("mx1.forwardemail.net"))

        with patch.object(route53_host._client, "change_resource_record_sets") as change:
            assert route53_host.upsert_record(zone_id, mx("mx1.forwardemail.net"))
            change.assert_not_called()

    def test_missing_record_set(self, route53_host, sample_hosted_zone):
        """Test an absent record set reads as empty."""
        assert route53_host.get_records(sample_hosted_zone["Id"], "example.com", "TXT") == []

    def test_throttling_is_retried(self, sleeps, fake_sleep):
        """Test Route 53 throttling errors are retried with backoff."""
        session = MagicMock()
        client = session.client.return_value
        throttled = ClientError(
            {"Error": {"Code": "Throttling", "Message": "Rate exceeded"}},
            "ListResourceRecordSets",
        )
        client.list_resource_record_sets.side_effect = [throttled, {"ResourceRecordSets": []}]

        host = Route53DnsHost(session=session, sleep=fake_sleep)

        assert host.get_records("Z1", "example.com", "TXT") == []
        assert sleeps == [1.0]

    def test_other_client_errors_are_permanent(self, fake_sleep):
        """Test non-throttling errors are raised as permanent."""
        session = MagicMock()
        client = session.client.return_value
        client.list_resource_record_sets.side_effect = ClientError(
            {"Error": {"Code": "NoSuchHostedZone", "Message": "No hosted zone found"}},
            "ListResourceRecordSets",
        )

        host = Route53DnsHost(session=session, sleep=fake_sleep)

        with pytest.raises(ProviderError) as exc_info:
            host.get_records("Z1", "example.com", "TXT")
        assert not exc_info.value.transient


def cf_response(result=None, success=True, status_code=200, errors=None):
    """Create a mocked Cloudflare API response."""
    response = MagicMock()
    response.status_code = status_code
    response.reason = "Error" if status_code >= 400 else "OK"
    response.json.return_value = {"success": success, "result": result, "errors": errors or []}
    return response


@pytest.fixture
def cf_session():
    session = MagicMock()
    session.headers = {}
    return session


@pytest.fixture
def cloudflare_host(cf_session, fake_sleep):
    return CloudflareDnsHost(api_token="cf-token", session=cf_session, sleep=fake_sleep)


def cf_call(session, index):
    """(method, url, json) of the index-th request."""
    args, kwargs = session.request.call_args_list[index]
    return args[0], args[1], kwargs.get("json")


class TestCloudflareDnsHost:
    """Tests for CloudflareDnsHost."""

    def test_requires_token(self, cf_session):
        """Test an empty token is rejected."""
        with pytest.raises(ProviderError):
            CloudflareDnsHost(api_token="", session=cf_session)

    def test_bearer_auth(self, cloudflare_host, cf_session):
        """Test the token is sent as a bearer token."""
        assert cf_session.headers["Authorization"] == "Bearer cf-token"

    def test_find_zone(self, cloudflare_host, cf_session):
        """Test zones are looked up by name."""
        cf_session.request.side_effect = [cf_response([{"id": "zone-1", "name": "example.com"}]), cf_response([])]

        assert cloudflare_host.find_zone("example.com") == "zone-1"
        assert cloudflare_host.find_zone("other.com") is None

    def test_creates_missing_record_dns_only(self, cloudflare_host, cf_session):
        """Test a new record is POSTed unproxied."""
        cf_session.request.side_effect = [cf_response([]), cf_response({"id": "rec-1"})]

        assert cloudflare_host.upsert_record("zone-1", mx("mx1.forwardemail.net"))

        method, url, payload = cf_call(cf_session, 1)
        assert method == "POST"
        assert url.endswith("/zones/zone-1/dns_records")
        assert payload["proxied"] is False
        assert payload["priority"] == 10
        assert payload["content"] == "mx1.forwardemail.net"

    def test_updates_sibling_with_same_key(self, cloudflare_host, cf_session):
        """Test only the TXT record with the same key is replaced."""
        cf_session.request.side_effect = [
            cf_response([
                {"id": "rec-catchall", "content": '"forward-email=me@example.org"', "proxied": False},
                {"id": "rec-verify", "content": '"forward-email-site-verification=old"', "proxied": False},
            ]),
            cf_response({"id": "rec-verify"}),
        ]

        cloudflare_host.upsert_record("zone-1", txt("forward-email-site-verification=new"))

        method, url, payload = cf_call(cf_session, 1)
        assert method == "PUT"
        assert url.endswith("/dns_records/rec-verify")
        assert payload["content"] == '"forward-email-site-verification=new"'

    def test_unchanged_record_is_left_alone(self, cloudflare_host, cf_session):
        """Test no write happens when the record already matches."""
        cf_session.request.side_effect = [
            cf_response([{"id": "rec-1", "content": "mx1.forwardemail.net", "priority": 10, "proxied": False}]),
        ]

        assert cloudflare_host.upsert_record("zone-1", mx("mx1.forwardemail.net"))
        assert cf_session.request.call_count == 1

    def test_proxied_record_is_unproxied(self, cloudflare_host, cf_session):
        """Test a proxied record with the right content is rewritten DNS-only."""
        cf_session.request.side_effect = [
            cf_response([{"id": "rec-1", "content": "mx1.forwardemail.net", "priority": 10, "proxied": True}]),
            cf_response({"id": "rec-1"}),
        ]

        cloudflare_host.upsert_record("zone-1", mx("mx1.forwardemail.net"))

        method, _, payload = cf_call(cf_session, 1)
        assert method == "PUT"
        assert payload["proxied"] is False

    def test_get_records(self, cloudflare_host, cf_session):
        """Test records are mapped to DNSRecord."""
        cf_session.request.side_effect = [cf_response([
            {"id": "a", "content": "mx1.forwardemail.net", "priority": 10, "ttl": 1, "proxied": False},
            {"id": "b", "content": "mx2.forwardemail.net", "priority": 10, "ttl": 1, "proxied": False},
        ])]

        records = cloudflare_host.get_records("zone-1", "example.com", "MX")

        assert [r.identity for r in records] == ["mx1.forwardemail.net", "mx2.forwardemail.net"]

    def test_api_error(self, cloudflare_host, cf_session):
        """Test API errors surface the Cloudflare message."""
        cf_session.request.side_effect = [
            cf_response(None, success=False, status_code=400, errors=[{"message": "Invalid zone"}])
        ]

        with pytest.raises(ProviderError, match="Invalid zone") as exc_info:
            cloudflare_host.find_zone("example.com")
        assert not exc_info.value.transient

    def test_request_failure_is_transient(self, cloudflare_host, cf_session):
        """Test requests exceptions map to transient errors."""
        cf_session.request.side_effect = requests.exceptions.ChunkedEncodingError("connection broken mid-body")

        with pytest.raises(ProviderError, match="connection broken mid-body") as exc_info:
            cloudflare_host.find_zone("example.com")
        assert exc_info.value.transient

    def test_zone_without_id(self, cloudflare_host, cf_session):
        """Test a zone entry lacking an id is an error."""
        cf_session.request.side_effect = [cf_response([{"name": "example.com"}])]

        with pytest.raises(ProviderError, match="has no id"):
            cloudflare_host.find_zone("example.com")

    def test_rate_limit_is_retried(self, cloudflare_host, cf_session, sleeps):
        """Test 429 responses are retried."""
        cf_session.request.side_effect = [
            cf_response(None, success=False, status_code=429, errors=[{"message": "Rate limited"}]),
            cf_response([{"id": "zone-1"}]),
        ]

        assert cloudflare_host.find_zone("example.com") == "zone-1"
        assert sleeps == [1.0]
