"""Pytest configuration and fixtures for forwarding setup tests."""

import os

import boto3
import pytest
from moto import mock_aws

from forward_setup.forward_email import MAIL_EXCHANGERS, VERIFICATION_PREFIX
from forward_setup.gateway import ProviderError, ProviderGateway
from forward_setup.models import AliasResult, DNSRecord, DomainCheck, ProviderDomain, ProvisionConfig
from forward_setup.state_store import FailureLog, StateStore


class FakeGateway(ProviderGateway):
    """In-memory provider and DNS host that records every call."""

    MUTATING = {"add_domain", "enable_protection", "upsert_dns_record", "create_alias"}

    def __init__(self):
        self.calls: list[tuple] = []
        self.domains: dict[str, str] = {}
        self.tokens: dict[str, str] = {}
        self.zones: set[str] = set()
        self.records: dict[str, list[DNSRecord]] = {}
        self.aliases: dict[str, list[str]] = {}
        self.protection_supported = True
        self.add_domain_errors: dict[str, ProviderError] = {}
        self.failing_record_types: dict[str, set[str]] = {}
        self.status_overrides: dict[str, DomainCheck] = {}
        self.alias_errors: list = []

    def add_zone(self, *zones: str) -> None:
        for zone in zones:
            self.zones.add(zone)
            self.records.setdefault(zone, [])

    @property
    def mutating_calls(self) -> list[tuple]:
        return [c for c in self.calls if c[0] in self.MUTATING]

    def calls_named(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    def _domain_name(self, provider_id: str) -> str:
        for name, pid in self.domains.items():
            if pid == provider_id:
                return name
        raise ProviderError(f"Domain {provider_id} not found", status_code=404)

    def _status(self, provider_id: str) -> DomainCheck:
        if provider_id in self.status_overrides:
            return self.status_overrides[provider_id]
        zone = self._domain_name(provider_id)
        records = self.records.get(zone, [])
        token = self.tokens.get(provider_id, provider_id)
        has_txt = any(r.record_type == "TXT" and r.value.strip('"') == token for r in records)
        mx = {r.identity for r in records if r.record_type == "MX"}
        return DomainCheck(has_mx_record=all(m in mx for m in MAIL_EXCHANGERS), has_txt_record=has_txt)

    def add_domain(self, name):
        self.calls.append(("add_domain", name))
        if name in self.add_domain_errors:
            raise self.add_domain_errors[name]
        if name not in self.domains:
            self.domains[name] = f"id-{name}"
            self.aliases[self.domains[name]] = []
        return self.domains[name]

    def enable_protection(self, provider_id):
        self.calls.append(("enable_protection", provider_id))
        if not self.protection_supported:
            raise ProviderError("Plan does not allow enhanced protection", status_code=402)
        token = f"{VERIFICATION_PREFIX}=tok-{provider_id}"
        self.tokens[provider_id] = token
        return token

    def get_domain_status(self, provider_id):
        self.calls.append(("get_domain_status", provider_id))
        return self._status(provider_id)

    def upsert_dns_record(self, zone, record):
        self.calls.append(("upsert_dns_record", zone, record.record_type, record.value))
        if zone not in self.zones:
            raise ProviderError(f"DNS zone for {zone} not found")
        if record.record_type in self.failing_record_types.get(zone, set()):
            raise ProviderError(f"{record.record_type} record rejected for {zone}")
        existing = [r for r in self.records[zone]
                    if not (r.record_type == record.record_type and r.identity == record.identity)]
        self.records[zone] = existing + [record]
        return True

    def create_alias(self, provider_id, local_part, destination):
        self.calls.append(("create_alias", provider_id, local_part))
        if self.alias_errors:
            error = self.alias_errors.pop(0)
            if error is not None:
                raise error
        if local_part in self.aliases[provider_id]:
            return AliasResult.ALREADY_EXISTS
        self.aliases[provider_id].append(local_part)
        return AliasResult.CREATED

    def find_domain(self, name):
        self.calls.append(("find_domain", name))
        if name not in self.domains:
            return None
        provider_id = self.domains[name]
        check = self._status(provider_id)
        return ProviderDomain(
            provider_id=provider_id,
            name=name,
            has_mx_record=check.has_mx_record,
            has_txt_record=check.has_txt_record,
            verification_token=self.tokens.get(provider_id),
        )

    def count_aliases(self, provider_id):
        self.calls.append(("count_aliases", provider_id))
        return len(self.aliases.get(provider_id, []))

    def zone_exists(self, zone):
        self.calls.append(("zone_exists", zone))
        return zone in self.zones

    def get_dns_records(self, zone, record_type, name):
        self.calls.append(("get_dns_records", zone, record_type))
        return [r for r in self.records.get(zone, []) if r.record_type == record_type and r.name == name]


@pytest.fixture
def fake_gateway():
    """Fresh in-memory gateway."""
    return FakeGateway()


@pytest.fixture
def sleeps():
    """Records requested sleeps instead of sleeping."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    return sleeps.append


@pytest.fixture
def config(tmp_path):
    """Provisioning config writing into a temp directory."""
    return ProvisionConfig(
        forward_to="inbox@example.org",
        domains_file=str(tmp_path / "domains.txt"),
        state_file=str(tmp_path / "state.json"),
        log_file=str(tmp_path / "provisioning.log"),
        failure_log=str(tmp_path / "failures.jsonl"),
        alias_export=str(tmp_path / "aliases.txt"),
    )


@pytest.fixture
def state_store(config):
    store = StateStore(config.state_file)
    store.load()
    return store


@pytest.fixture
def failure_log(config):
    return FailureLog(config.failure_log)


@pytest.fixture
def aws_credentials():
    """Mock AWS credentials for testing."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"


@pytest.fixture
def mock_aws_services(aws_credentials):
    """Create mocked AWS services."""
    with mock_aws():
        yield


@pytest.fixture
def route53_client(mock_aws_services):
    """Create a mocked Route53 client."""
    return boto3.client("route53", region_name="us-east-1")


@pytest.fixture
def sample_hosted_zone(route53_client):
    """Create a sample hosted zone for testing."""
    response = route53_client.create_hosted_zone(
        Name="example.com",
        CallerReference="test-ref-123",
        HostedZoneConfig={
            "Comment": "Test zone",
            "PrivateZone": False,
        },
    )
    zone_id = response["HostedZone"]["Id"].replace("/hostedzone/", "")
    return {
        "Id": zone_id,
        "Name": "example.com",
    }
