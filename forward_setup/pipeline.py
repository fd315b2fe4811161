"""Provisioning pipeline: drives every domain through the lifecycle."""

import logging
import time
from pathlib import Path
from typing import Any, Callable, Optional

from .aliases import AliasGenerator, collect_aliases, load_alias_export, used_local_parts, write_alias_export
from .forward_email import CATCHALL_PREFIX, MAIL_EXCHANGERS, MX_PRIORITY
from .gateway import ProviderError, ProviderGateway, is_transient
from .models import (
    AliasResult,
    DNSRecord,
    DomainOutcome,
    DomainRecord,
    DomainState,
    Phase,
    ProvisionConfig,
    RunSummary,
)
from .retry import RetryExhaustedError, attempt_with_policy
from .state_store import FailureLog, StateStore

logger = logging.getLogger(__name__)

ROLE_ALIAS = "info"


class VerificationPendingError(Exception):
    """The provider has not yet seen every required DNS record."""

    def __init__(self, missing: list[str]):
        super().__init__(f"Provider does not see {', '.join(missing)} record(s) yet")
        self.missing = missing


def required_dns_records(domain: str, token: str, destination: str) -> list[tuple[str, DNSRecord]]:
    """
    The four records a domain needs at the DNS host, with readable labels.

    Args:
        domain: The domain name (the zone apex)
        token: Verification token published in the TXT record
        destination: Catch-all forwarding address

    Returns:
        (label, DNSRecord) pairs, all DNS-only
    """
    records = [
        ("TXT verification", DNSRecord(name=domain, record_type="TXT", value=f'"{token}"')),
        ("TXT catch-all", DNSRecord(
            name=domain, record_type="TXT", value=f'"{CATCHALL_PREFIX}={destination}"'
        )),
    ]
    for exchanger in MAIL_EXCHANGERS:
        records.append((f"MX {exchanger}", DNSRecord(
            name=domain, record_type="MX", value=exchanger, priority=MX_PRIORITY
        )))
    return records


class ProvisioningPipeline:
    """
    Runs the registration, DNS, verification and alias phases batch-wide.

    Each phase handles every eligible domain in input order before the next
    phase starts. A domain that fails is recorded and skipped; the batch
    always runs to the end.
    """

    def __init__(
        self,
        gateway: ProviderGateway,
        store: StateStore,
        config: ProvisionConfig,
        generator: Optional[AliasGenerator] = None,
        failure_log: Optional[FailureLog] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the pipeline.

        Args:
            gateway: Provider gateway (wrap in DryRunGateway for dry runs)
            store: Loaded state store
            config: Run configuration
            generator: Alias generator; one using config's split ratio if not provided
            failure_log: Failure log; one at config.failure_log if not provided
            sleep: Sleep function, replaced in tests
        """
        self.gateway = gateway
        self.store = store
        self.config = config
        self.generator = generator or AliasGenerator(first_name_ratio=config.first_name_ratio)
        self.failure_log = failure_log or FailureLog(Path(config.failure_log))
        self._sleep = sleep

    # Persistence helpers

    def _persist(self) -> None:
        if not self.config.dry_run:
            self.store.save()

    def _advance(self, record: DomainRecord, state: DomainState) -> None:
        record.transition(state)
        logger.info("%s: %s", record.name, state.value)
        self._persist()

    def _fail(self, record: DomainRecord, phase: Phase, message: str) -> None:
        entry = record.fail(phase, message)
        logger.error("%s: %s phase failed: %s", record.name, phase.value, message)
        if not self.config.dry_run:
            self.failure_log.append(record.name, phase, message, entry.timestamp)
        self._persist()

    def _request(self, func: Callable[[], Any]) -> Any:
        """Gateway call retried on transient errors under the request policy."""
        return attempt_with_policy(
            func, self.config.request_policy, retry_on=is_transient, sleep=self._sleep
        )

    # Phases

    def register(self, record: DomainRecord) -> bool:
        """Registration phase: add the domain and obtain its verification token."""
        record.count_attempt(Phase.REGISTRATION)
        try:
            provider_id = self._request(lambda: self.gateway.add_domain(record.name))
        except (ProviderError, RetryExhaustedError) as e:
            self._fail(record, Phase.REGISTRATION, f"Could not add domain: {e}")
            return False
        record.provider_id = provider_id

        try:
            token = self._request(lambda: self.gateway.enable_protection(provider_id))
        except ProviderError as e:
            logger.warning(
                "%s: protection unavailable (%s), using provider id as verification token",
                record.name, e,
            )
            token = provider_id
        except RetryExhaustedError as e:
            self._fail(record, Phase.REGISTRATION, f"Could not enable protection: {e}")
            return False

        record.verification_token = token
        self._advance(record, DomainState.PROVIDER_REGISTERED)
        return True

    def configure_dns(self, record: DomainRecord) -> bool:
        """DNS phase: upsert all four records; any missing one fails the phase."""
        record.count_attempt(Phase.DNS)
        try:
            zone_found = self._request(lambda: self.gateway.zone_exists(record.name))
        except (ProviderError, RetryExhaustedError) as e:
            self._fail(record, Phase.DNS, f"Could not look up DNS zone: {e}")
            return False
        if not zone_found:
            self._fail(record, Phase.DNS, f"DNS zone for {record.name} not found at DNS host")
            return False

        token = record.verification_token or record.provider_id
        missing = []
        last_error: Optional[Exception] = None
        for label, dns_record in required_dns_records(record.name, token, self.config.forward_to):
            try:
                ok = self._request(lambda r=dns_record: self.gateway.upsert_dns_record(record.name, r))
            except (ProviderError, RetryExhaustedError) as e:
                logger.warning("%s: %s upsert failed: %s", record.name, label, e)
                last_error = e
                ok = False
            if not ok:
                missing.append(label)

        if missing:
            message = f"Missing DNS records: {', '.join(missing)}"
            if last_error is not None:
                message += f" (last error: {last_error})"
            self._fail(record, Phase.DNS, message)
            return False

        self._advance(record, DomainState.DNS_CONFIGURED)
        return True

    def wait_for_propagation(self) -> None:
        """Single batch-wide pause before verification."""
        seconds = self.config.propagation_wait
        if self.config.dry_run or seconds <= 0:
            return
        logger.info("Waiting %.0fs for DNS propagation", seconds)
        self._sleep(seconds)

    def verify(self, record: DomainRecord) -> bool:
        """Verification phase: poll the provider's status until MX and TXT are seen."""

        def _poll():
            check = self.gateway.get_domain_status(record.provider_id)
            record.has_mx_record = check.has_mx_record
            record.has_txt_record = check.has_txt_record
            if not check.verified:
                raise VerificationPendingError(check.missing())
            return check

        try:
            attempt_with_policy(
                _poll,
                self.config.verification_policy,
                retry_on=lambda e: isinstance(e, VerificationPendingError) or is_transient(e),
                sleep=self._sleep,
                on_attempt=lambda n: record.count_attempt(Phase.VERIFICATION),
            )
        except RetryExhaustedError as e:
            last = e.last_error
            if isinstance(last, VerificationPendingError):
                names = " and ".join(f"{t} record" for t in last.missing)
                message = f"Missing {names} after {e.attempts} attempts"
            else:
                message = f"Status check failed after {e.attempts} attempts: {last}"
            self._fail(record, Phase.VERIFICATION, message)
            return False
        except ProviderError as e:
            self._fail(record, Phase.VERIFICATION, f"Status check failed: {e}")
            return False

        self._advance(record, DomainState.VERIFIED)
        return True

    def create_aliases(self, record: DomainRecord, used: set[str]) -> bool:
        """
        Alias phase: create the role alias and generated aliases up to the target.

        Aliases are recorded as soon as each is created, so retries and later
        runs only create what is still missing.
        """
        target = self.config.alias_count
        pending = []
        if ROLE_ALIAS not in record.aliases and len(record.aliases) < target:
            pending.append(ROLE_ALIAS)
        needed = target - len(record.aliases) - len(pending)
        if needed > 0:
            pending.extend(self.generator.generate(record.name, needed, used))

        def _create_batch():
            for local_part in pending:
                if local_part in record.aliases:
                    continue
                result = self.gateway.create_alias(
                    record.provider_id, local_part, self.config.forward_to
                )
                if result is AliasResult.ALREADY_EXISTS:
                    logger.debug("%s: alias %s already existed", record.name, local_part)
                record.aliases.append(local_part)
                self._persist()

        try:
            attempt_with_policy(
                _create_batch,
                self.config.alias_policy,
                retry_on=is_transient,
                sleep=self._sleep,
                on_attempt=lambda n: record.count_attempt(Phase.ALIASES),
            )
        except RetryExhaustedError as e:
            self._fail(
                record,
                Phase.ALIASES,
                f"Created {len(record.aliases)}/{target} aliases, "
                f"gave up after {e.attempts} attempts: {e.last_error}",
            )
            return False
        except ProviderError as e:
            self._fail(record, Phase.ALIASES, f"Created {len(record.aliases)}/{target} aliases: {e}")
            return False

        logger.info("%s: %d aliases in place", record.name, len(record.aliases))
        self._advance(record, DomainState.ALIASES_CREATED)
        return True

    def complete(self, record: DomainRecord) -> bool:
        if len(record.aliases) < self.config.alias_count:
            logger.warning(
                "%s: only %d/%d aliases recorded, not marking completed",
                record.name, len(record.aliases), self.config.alias_count,
            )
            return False
        self._advance(record, DomainState.COMPLETED)
        return True

    # Batch

    def run(self, domains: list[str]) -> RunSummary:
        """
        Provision a batch of domains, resuming from stored state.

        Args:
            domains: Domain names in input order

        Returns:
            RunSummary with each domain's final state
        """
        names = list(dict.fromkeys(domains))
        records = [self.store.ensure(name) for name in names]
        self._persist()

        export_path = Path(self.config.alias_export)
        previous = load_alias_export(export_path)
        used = used_local_parts(previous, self.store.all())

        for record in records:
            if record.effective_state is DomainState.PENDING:
                self.register(record)

        configured = 0
        for record in records:
            if record.effective_state is DomainState.PROVIDER_REGISTERED:
                if self.configure_dns(record):
                    configured += 1

        awaiting = [r for r in records if r.effective_state is DomainState.DNS_CONFIGURED]
        if configured and awaiting:
            self.wait_for_propagation()

        for record in awaiting:
            self.verify(record)

        for record in records:
            if record.effective_state is DomainState.VERIFIED:
                self.create_aliases(record, used)

        for record in records:
            if record.state is DomainState.ALIASES_CREATED:
                self.complete(record)

        aliases = collect_aliases(previous, self.store.all())
        if self.config.dry_run:
            exported = len(aliases)
        else:
            exported = write_alias_export(export_path, aliases)
            logger.info("Exported %d aliases to %s", exported, export_path)

        summary = RunSummary(aliases_exported=exported, dry_run=self.config.dry_run)
        for record in records:
            last_error = record.last_error
            summary.outcomes.append(DomainOutcome(
                domain=record.name,
                state=record.state,
                failed_phase=record.failed_phase,
                alias_count=len(record.aliases),
                message=last_error.message if record.is_failed and last_error else "",
            ))
        return summary
