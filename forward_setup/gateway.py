"""Provider gateway: the forwarding provider and DNS host behind one interface."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from .models import AliasResult, DNSRecord, DomainCheck, ProviderDomain

logger = logging.getLogger(__name__)

DRY_RUN_PREFIX = "dry-run-"


class ProviderError(Exception):
    """Failure reported by the forwarding provider or the DNS host."""

    def __init__(self, message: str, transient: bool = False, status_code: Optional[int] = None):
        super().__init__(message)
        self.transient = transient
        self.status_code = status_code


def is_transient(error: BaseException) -> bool:
    """Whether an exception is a provider failure worth retrying."""
    return isinstance(error, ProviderError) and error.transient


class ForwardingProvider(ABC):
    """Service that receives mail for a domain and forwards it per alias."""

    @abstractmethod
    def add_domain(self, name: str) -> str:
        """Register a domain, returning its provider id. Idempotent."""

    @abstractmethod
    def enable_protection(self, provider_id: str) -> str:
        """Switch the domain to the protected plan and return its verification token."""

    @abstractmethod
    def get_domain_status(self, provider_id: str) -> DomainCheck:
        """Read the DNS status the provider last observed. Never triggers a re-check."""

    @abstractmethod
    def create_alias(self, provider_id: str, local_part: str, destination: str) -> AliasResult:
        """Create an alias forwarding to destination."""

    @abstractmethod
    def find_domain(self, name: str) -> Optional[ProviderDomain]:
        """Look a domain up by name, None if the provider does not know it."""

    @abstractmethod
    def count_aliases(self, provider_id: str) -> int:
        """Number of aliases configured for the domain."""


class DnsHost(ABC):
    """Service hosting the authoritative zone of each domain."""

    @abstractmethod
    def find_zone(self, domain: str) -> Optional[str]:
        """Zone id for the domain, None if the host has no zone for it."""

    @abstractmethod
    def get_records(self, zone_id: str, name: str, record_type: str) -> list[DNSRecord]:
        """Records of one name and type."""

    @abstractmethod
    def upsert_record(self, zone_id: str, record: DNSRecord) -> bool:
        """Create the record, or replace the sibling with the same identity."""


class ProviderGateway(ABC):
    """Operations the pipeline and the auditor need from the outside world."""

    @abstractmethod
    def add_domain(self, name: str) -> str:
        pass

    @abstractmethod
    def enable_protection(self, provider_id: str) -> str:
        pass

    @abstractmethod
    def get_domain_status(self, provider_id: str) -> DomainCheck:
        pass

    @abstractmethod
    def upsert_dns_record(self, zone: str, record: DNSRecord) -> bool:
        pass

    @abstractmethod
    def create_alias(self, provider_id: str, local_part: str, destination: str) -> AliasResult:
        pass

    @abstractmethod
    def find_domain(self, name: str) -> Optional[ProviderDomain]:
        pass

    @abstractmethod
    def count_aliases(self, provider_id: str) -> int:
        pass

    @abstractmethod
    def zone_exists(self, zone: str) -> bool:
        pass

    @abstractmethod
    def get_dns_records(self, zone: str, record_type: str, name: str) -> list[DNSRecord]:
        pass


class LiveGateway(ProviderGateway):
    """Gateway backed by a real forwarding provider and DNS host."""

    def __init__(self, provider: ForwardingProvider, dns_host: DnsHost):
        """
        Initialize the gateway.

        Args:
            provider: Forwarding provider client
            dns_host: DNS host client
        """
        self._provider = provider
        self._dns_host = dns_host
        self._zone_ids: dict[str, str] = {}

    def _zone_id(self, zone: str) -> Optional[str]:
        if zone not in self._zone_ids:
            zone_id = self._dns_host.find_zone(zone)
            if zone_id is None:
                return None
            self._zone_ids[zone] = zone_id
        return self._zone_ids[zone]

    def add_domain(self, name: str) -> str:
        return self._provider.add_domain(name)

    def enable_protection(self, provider_id: str) -> str:
        return self._provider.enable_protection(provider_id)

    def get_domain_status(self, provider_id: str) -> DomainCheck:
        return self._provider.get_domain_status(provider_id)

    def upsert_dns_record(self, zone: str, record: DNSRecord) -> bool:
        if record.proxied:
            raise ProviderError(f"{record.label} must be DNS-only, refusing proxied record")
        zone_id = self._zone_id(zone)
        if zone_id is None:
            raise ProviderError(f"DNS zone for {zone} not found")
        return self._dns_host.upsert_record(zone_id, record)

    def create_alias(self, provider_id: str, local_part: str, destination: str) -> AliasResult:
        return self._provider.create_alias(provider_id, local_part, destination)

    def find_domain(self, name: str) -> Optional[ProviderDomain]:
        return self._provider.find_domain(name)

    def count_aliases(self, provider_id: str) -> int:
        return self._provider.count_aliases(provider_id)

    def zone_exists(self, zone: str) -> bool:
        return self._zone_id(zone) is not None

    def get_dns_records(self, zone: str, record_type: str, name: str) -> list[DNSRecord]:
        zone_id = self._zone_id(zone)
        if zone_id is None:
            return []
        return self._dns_host.get_records(zone_id, name, record_type)


class DryRunGateway(ProviderGateway):
    """
    Gateway that answers mutating calls with synthetic successes.

    Reads go to the wrapped gateway, except verification status, which is
    always reported as verified.
    """

    def __init__(self, inner: ProviderGateway):
        self._inner = inner

    def add_domain(self, name: str) -> str:
        existing = self._inner.find_domain(name)
        if existing is not None:
            logger.info("[dry run] %s already registered as %s", name, existing.provider_id)
            return existing.provider_id
        logger.info("[dry run] would register %s", name)
        return f"{DRY_RUN_PREFIX}{name}"

    def enable_protection(self, provider_id: str) -> str:
        logger.info("[dry run] would enable protection for %s", provider_id)
        return f"{DRY_RUN_PREFIX}token-{provider_id}"

    def get_domain_status(self, provider_id: str) -> DomainCheck:
        # DNS writes are synthetic; report the status a live run would reach.
        logger.info("[dry run] would poll verification status of %s", provider_id)
        return DomainCheck(has_mx_record=True, has_txt_record=True)

    def upsert_dns_record(self, zone: str, record: DNSRecord) -> bool:
        logger.info("[dry run] would upsert %s in %s: %s", record.label, zone, record.value)
        return True

    def create_alias(self, provider_id: str, local_part: str, destination: str) -> AliasResult:
        logger.debug("[dry run] would create alias %s -> %s", local_part, destination)
        return AliasResult.CREATED

    def find_domain(self, name: str) -> Optional[ProviderDomain]:
        return self._inner.find_domain(name)

    def count_aliases(self, provider_id: str) -> int:
        if provider_id.startswith(DRY_RUN_PREFIX):
            return 0
        return self._inner.count_aliases(provider_id)

    def zone_exists(self, zone: str) -> bool:
        return self._inner.zone_exists(zone)

    def get_dns_records(self, zone: str, record_type: str, name: str) -> list[DNSRecord]:
        return self._inner.get_dns_records(zone, record_type, name)
