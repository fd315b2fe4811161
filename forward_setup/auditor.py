"""Read-only audit of each domain's real provider and DNS configuration."""

import logging
from typing import Callable, Optional, TypeVar

from .forward_email import MAIL_EXCHANGERS, VERIFICATION_PREFIX
from .gateway import ProviderError, ProviderGateway
from .models import (
    AuditCheck,
    AuditClassification,
    AuditReport,
    DNSRecord,
    DomainAuditResult,
    ProviderDomain,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

CHECK_PROVIDER_DOMAIN = "provider_domain"
CHECK_PROVIDER_VERIFIED = "provider_verified"
CHECK_ALIASES = "aliases"
CHECK_DNS_ZONE = "dns_zone"
CHECK_TXT_RECORD = "txt_record"
CHECK_MX_RECORDS = "mx_records"

CHECK_ORDER = [
    CHECK_PROVIDER_DOMAIN,
    CHECK_PROVIDER_VERIFIED,
    CHECK_ALIASES,
    CHECK_DNS_ZONE,
    CHECK_TXT_RECORD,
    CHECK_MX_RECORDS,
]


def find_verification_record(
    records: list[DNSRecord],
    token: Optional[str] = None,
    provider_id: Optional[str] = None,
) -> Optional[DNSRecord]:
    """
    Find the TXT record that proves domain ownership.

    Args:
        records: Apex TXT records
        token: Token the provider expects, if known
        provider_id: Provider id, accepted in place of the token

    Returns:
        The matching record, or None
    """
    accepted = {v for v in (token, provider_id) if v}
    for record in records:
        value = record.value.strip().strip('"')
        if accepted:
            if value in accepted:
                return record
        elif value.startswith(f"{VERIFICATION_PREFIX}="):
            return record
    return None


def missing_mail_exchangers(records: list[DNSRecord]) -> list[str]:
    """Provider mail exchangers that have no MX record."""
    present = {r.identity for r in records if r.record_type == "MX"}
    return [mx for mx in MAIL_EXCHANGERS if mx not in present]


def classify(provider_found: bool, zone_found: bool, checks: list[AuditCheck]) -> AuditClassification:
    """
    Overall verdict from the individual checks.

    FULLY_CONFIGURED iff every check passed; NOT_CONFIGURED iff the domain
    is absent from both the provider and the DNS host.
    """
    if checks and all(c.passed for c in checks):
        return AuditClassification.FULLY_CONFIGURED
    if not provider_found and not zone_found:
        return AuditClassification.NOT_CONFIGURED
    return AuditClassification.PARTIALLY_CONFIGURED


class VerificationAuditor:
    """
    Cross-checks each domain against the provider and the DNS host.

    It only reads through the gateway and never touches the state store.
    """

    def __init__(self, gateway: ProviderGateway, expected_aliases: int = 50):
        self.gateway = gateway
        self.expected_aliases = expected_aliases

    def _lookup(self, result: DomainAuditResult, what: str, func: Callable[[], T]) -> tuple[bool, Optional[T]]:
        try:
            return True, func()
        except ProviderError as e:
            logger.warning("%s: %s lookup failed: %s", result.domain, what, e)
            result.issues.append(f"Could not check {what}: {e}")
            return False, None

    def _add(self, result: DomainAuditResult, name: str, passed: bool, detail: str, issue: Optional[str] = None):
        result.checks.append(AuditCheck(name=name, passed=passed, detail=detail))
        if not passed and issue:
            result.issues.append(issue)

    def audit_domain(self, domain: str) -> DomainAuditResult:
        """
        Run all six checks for one domain.

        Args:
            domain: The domain name

        Returns:
            DomainAuditResult with checks, classification and issues
        """
        result = DomainAuditResult(domain=domain)

        # Forwarding provider
        ok, provider_domain = self._lookup(result, "provider domain", lambda: self.gateway.find_domain(domain))
        provider_found = provider_domain is not None
        self._provider_checks(result, ok, provider_domain)

        # DNS host
        ok, zone_found = self._lookup(result, "DNS zone", lambda: self.gateway.zone_exists(domain))
        zone_found = bool(zone_found)
        self._dns_checks(result, ok, zone_found, provider_domain)

        result.classification = classify(provider_found, zone_found, result.checks)
        return result

    def _provider_checks(
        self,
        result: DomainAuditResult,
        lookup_ok: bool,
        provider_domain: Optional[ProviderDomain],
    ) -> None:
        domain = result.domain
        if provider_domain is None:
            detail = "not registered" if lookup_ok else "lookup failed"
            self._add(result, CHECK_PROVIDER_DOMAIN, False, detail,
                      f"Domain {domain} not found at forwarding provider" if lookup_ok else None)
            self._add(result, CHECK_PROVIDER_VERIFIED, False, "domain missing")
            self._add(result, CHECK_ALIASES, False, "domain missing")
            return

        self._add(result, CHECK_PROVIDER_DOMAIN, True, provider_domain.provider_id)

        check = provider_domain.check
        missing = check.missing()
        self._add(
            result, CHECK_PROVIDER_VERIFIED, check.verified,
            "MX and TXT seen" if check.verified else f"missing {', '.join(missing)}",
            f"Provider does not see {' and '.join(missing)} record(s)",
        )

        ok, count = self._lookup(result, "aliases",
                                 lambda: self.gateway.count_aliases(provider_domain.provider_id))
        count = count or 0
        result.alias_count = count
        self._add(
            result, CHECK_ALIASES, ok and count >= self.expected_aliases,
            f"{count}/{self.expected_aliases}",
            f"Only {count} of {self.expected_aliases} aliases exist" if ok else None,
        )

    def _dns_checks(
        self,
        result: DomainAuditResult,
        lookup_ok: bool,
        zone_found: bool,
        provider_domain: Optional[ProviderDomain],
    ) -> None:
        domain = result.domain
        if not zone_found:
            detail = "not found" if lookup_ok else "lookup failed"
            self._add(result, CHECK_DNS_ZONE, False, detail,
                      f"DNS zone for {domain} not found at DNS host" if lookup_ok else None)
            self._add(result, CHECK_TXT_RECORD, False, "zone missing")
            self._add(result, CHECK_MX_RECORDS, False, "zone missing")
            return

        self._add(result, CHECK_DNS_ZONE, True, "present")

        ok, txt_records = self._lookup(result, "TXT records",
                                       lambda: self.gateway.get_dns_records(domain, "TXT", domain))
        token = provider_domain.verification_token if provider_domain else None
        provider_id = provider_domain.provider_id if provider_domain else None
        txt = find_verification_record(txt_records or [], token, provider_id)
        self._add(
            result, CHECK_TXT_RECORD, txt is not None,
            txt.value if txt else "missing",
            "Verification TXT record missing" if ok else None,
        )

        ok, mx_records = self._lookup(result, "MX records",
                                      lambda: self.gateway.get_dns_records(domain, "MX", domain))
        missing_mx = missing_mail_exchangers(mx_records or [])
        self._add(
            result, CHECK_MX_RECORDS, ok and not missing_mx,
            "both present" if not missing_mx else f"missing {', '.join(missing_mx)}",
            f"MX record missing for {', '.join(missing_mx)}" if ok else None,
        )

    def audit(self, domains: list[str]) -> AuditReport:
        """Audit every domain, in input order."""
        report = AuditReport()
        for domain in domains:
            result = self.audit_domain(domain)
            logger.info("%s: %s", domain, result.classification.value)
            report.domains.append(result)
        return report
