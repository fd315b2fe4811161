"""Data models for the email forwarding provisioner."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utc_now() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


class DomainState(Enum):
    """Lifecycle states of a domain, in forward order, plus FAILED."""

    PENDING = "pending"
    PROVIDER_REGISTERED = "provider_registered"
    DNS_CONFIGURED = "dns_configured"
    VERIFIED = "verified"
    ALIASES_CREATED = "aliases_created"
    COMPLETED = "completed"
    FAILED = "failed"


class Phase(Enum):
    """Pipeline phases that can fail."""

    REGISTRATION = "registration"
    DNS = "dns"
    VERIFICATION = "verification"
    ALIASES = "aliases"


# State a phase starts from, and the state it leads to on success.
PHASE_START = {
    Phase.REGISTRATION: DomainState.PENDING,
    Phase.DNS: DomainState.PROVIDER_REGISTERED,
    Phase.VERIFICATION: DomainState.DNS_CONFIGURED,
    Phase.ALIASES: DomainState.VERIFIED,
}

PHASE_TARGET = {
    Phase.REGISTRATION: DomainState.PROVIDER_REGISTERED,
    Phase.DNS: DomainState.DNS_CONFIGURED,
    Phase.VERIFICATION: DomainState.VERIFIED,
    Phase.ALIASES: DomainState.ALIASES_CREATED,
}

ALLOWED_TRANSITIONS = {
    DomainState.PENDING: {DomainState.PROVIDER_REGISTERED, DomainState.FAILED},
    DomainState.PROVIDER_REGISTERED: {DomainState.DNS_CONFIGURED, DomainState.FAILED},
    DomainState.DNS_CONFIGURED: {DomainState.VERIFIED, DomainState.FAILED},
    DomainState.VERIFIED: {DomainState.ALIASES_CREATED, DomainState.FAILED},
    DomainState.ALIASES_CREATED: {DomainState.COMPLETED, DomainState.FAILED},
    DomainState.COMPLETED: set(),
    # Leaving FAILED is further restricted to the failed phase's target.
    DomainState.FAILED: set(PHASE_TARGET.values()) | {DomainState.FAILED},
}


def _validate_transition_table() -> None:
    order = list(DomainState)
    for source, targets in ALLOWED_TRANSITIONS.items():
        if source is DomainState.FAILED:
            continue
        for target in targets:
            if target is DomainState.FAILED:
                continue
            if order.index(target) != order.index(source) + 1:
                raise ValueError(f"Transition {source.value} -> {target.value} is not forward")


_validate_transition_table()


class InvalidTransitionError(Exception):
    """Raised when a domain is moved along an edge the lifecycle forbids."""

    pass


class AliasResult(Enum):
    """Outcome of an alias creation call. Both values mean success."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


class DelayStrategy(Enum):
    """How the delay between retry attempts evolves."""

    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class AuditClassification(Enum):
    """Overall audit verdict for a domain."""

    FULLY_CONFIGURED = "fully_configured"
    PARTIALLY_CONFIGURED = "partially_configured"
    NOT_CONFIGURED = "not_configured"


@dataclass
class ErrorEntry:
    """A single recorded failure for a domain."""

    timestamp: str
    phase: Phase
    message: str

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp,
            "phase": self.phase.value,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ErrorEntry":
        return cls(
            timestamp=data["timestamp"],
            phase=Phase(data["phase"]),
            message=data["message"],
        )


@dataclass
class DomainRecord:
    """Provisioning state of one domain."""

    name: str
    state: DomainState = DomainState.PENDING
    failed_phase: Optional[Phase] = None
    provider_id: str = ""
    verification_token: str = ""
    has_mx_record: bool = False
    has_txt_record: bool = False
    aliases: list[str] = field(default_factory=list)
    errors: list[ErrorEntry] = field(default_factory=list)
    attempt_counts: dict[str, int] = field(default_factory=dict)
    updated_at: str = field(default_factory=utc_now)

    @property
    def is_failed(self) -> bool:
        return self.state is DomainState.FAILED

    @property
    def is_completed(self) -> bool:
        return self.state is DomainState.COMPLETED

    @property
    def effective_state(self) -> DomainState:
        """
        The state the pipeline resumes from.

        A failed domain resumes at the start of the phase that failed.
        """
        if self.state is DomainState.FAILED and self.failed_phase is not None:
            return PHASE_START[self.failed_phase]
        return self.state

    def transition(self, new_state: DomainState, phase: Optional[Phase] = None) -> None:
        """
        Move the record to a new lifecycle state.

        Args:
            new_state: Target state
            phase: The failing phase, required when new_state is FAILED

        Raises:
            InvalidTransitionError: If the lifecycle does not allow the move
        """
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"{self.name}: cannot move from {self.state.value} to {new_state.value}"
            )

        if new_state is DomainState.FAILED:
            if phase is None:
                raise InvalidTransitionError(f"{self.name}: FAILED requires a phase")
            if self.state is DomainState.FAILED and phase is not self.failed_phase:
                raise InvalidTransitionError(
                    f"{self.name}: failed in {self.failed_phase.value}, "
                    f"cannot fail in {phase.value} before it is retried"
                )
            self.failed_phase = phase
        else:
            if self.state is DomainState.FAILED and PHASE_TARGET[self.failed_phase] is not new_state:
                raise InvalidTransitionError(
                    f"{self.name}: failed in {self.failed_phase.value}, "
                    f"can only resume to {PHASE_TARGET[self.failed_phase].value}"
                )
            self.failed_phase = None

        self.state = new_state
        self.updated_at = utc_now()

    def fail(self, phase: Phase, message: str) -> ErrorEntry:
        """Mark the record failed in a phase and append to its error history."""
        self.transition(DomainState.FAILED, phase)
        entry = ErrorEntry(timestamp=self.updated_at, phase=phase, message=message)
        self.errors.append(entry)
        return entry

    def count_attempt(self, phase: Phase) -> int:
        count = self.attempt_counts.get(phase.value, 0) + 1
        self.attempt_counts[phase.value] = count
        return count

    @property
    def last_error(self) -> Optional[ErrorEntry]:
        return self.errors[-1] if self.errors else None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failed_phase": self.failed_phase.value if self.failed_phase else None,
            "provider_id": self.provider_id,
            "verification_token": self.verification_token,
            "has_mx_record": self.has_mx_record,
            "has_txt_record": self.has_txt_record,
            "aliases": list(self.aliases),
            "errors": [e.to_dict() for e in self.errors],
            "attempt_counts": dict(self.attempt_counts),
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DomainRecord":
        failed_phase = data.get("failed_phase")
        return cls(
            name=data["name"],
            state=DomainState(data.get("state", DomainState.PENDING.value)),
            failed_phase=Phase(failed_phase) if failed_phase else None,
            provider_id=data.get("provider_id", ""),
            verification_token=data.get("verification_token", ""),
            has_mx_record=data.get("has_mx_record", False),
            has_txt_record=data.get("has_txt_record", False),
            aliases=list(data.get("aliases", [])),
            errors=[ErrorEntry.from_dict(e) for e in data.get("errors", [])],
            attempt_counts=dict(data.get("attempt_counts", {})),
            updated_at=data.get("updated_at") or utc_now(),
        )


@dataclass(frozen=True)
class AliasRecord:
    """A created alias, rendered as local@domain."""

    local_part: str
    domain: str

    @property
    def address(self) -> str:
        return f"{self.local_part}@{self.domain}"

    @classmethod
    def parse(cls, address: str) -> "AliasRecord":
        local_part, _, domain = address.strip().rpartition("@")
        if not local_part or not domain:
            raise ValueError(f"Not an alias address: {address!r}")
        return cls(local_part=local_part.lower(), domain=domain.lower())


@dataclass
class DNSRecord:
    """A DNS record to upsert at the DNS host, or one read back from it."""

    name: str
    record_type: str
    value: str
    ttl: int = 300
    priority: Optional[int] = None
    proxied: bool = False

    @property
    def identity(self) -> str:
        """
        What distinguishes this record from siblings of the same name and type.

        Apex TXT records are told apart by their "key=" prefix, MX records by
        their exchanger host.
        """
        value = self.value.strip().strip('"')
        if self.record_type == "TXT":
            key, sep, _ = value.partition("=")
            return key if sep else value
        if self.record_type == "MX":
            return value.split()[-1].rstrip(".").lower()
        return value

    @property
    def label(self) -> str:
        """Short human-readable name used in error messages."""
        if self.record_type == "MX":
            return f"MX {self.identity}"
        return f"{self.record_type} {self.identity}"

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "type": self.record_type,
            "value": self.value,
            "ttl": self.ttl,
            "priority": self.priority,
            "proxied": self.proxied,
        }


@dataclass
class DomainCheck:
    """Provider-observed DNS status for a domain."""

    has_mx_record: bool = False
    has_txt_record: bool = False

    @property
    def verified(self) -> bool:
        return self.has_mx_record and self.has_txt_record

    def missing(self) -> list[str]:
        missing = []
        if not self.has_mx_record:
            missing.append("MX")
        if not self.has_txt_record:
            missing.append("TXT")
        return missing


@dataclass
class ProviderDomain:
    """A domain as the forwarding provider reports it."""

    provider_id: str
    name: str
    has_mx_record: bool = False
    has_txt_record: bool = False
    verification_token: Optional[str] = None

    @property
    def check(self) -> DomainCheck:
        return DomainCheck(has_mx_record=self.has_mx_record, has_txt_record=self.has_txt_record)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to attempt an operation and how long to wait between."""

    max_attempts: int
    strategy: DelayStrategy = DelayStrategy.FIXED
    base_delay: float = 0.0
    max_delay: Optional[float] = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay cannot be negative")

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        if self.strategy is DelayStrategy.EXPONENTIAL:
            delay = self.base_delay * (2 ** (attempt - 1))
        else:
            delay = self.base_delay
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay


@dataclass
class ProvisionConfig:
    """Values that drive a provisioning run."""

    forward_to: str
    domains_file: str = "domains.txt"
    state_file: str = "provisioning_state.json"
    log_file: str = "provisioning.log"
    failure_log: str = "failed_domains.jsonl"
    alias_export: str = "aliases.txt"
    propagation_wait: float = 180.0
    verification_max_attempts: int = 5
    verification_retry_delay: float = 15.0
    alias_count: int = 50
    first_name_only_percentage: float = 60.0
    alias_max_retries: int = 3
    alias_initial_backoff: float = 2.0
    request_max_attempts: int = 3
    request_backoff: float = 1.0
    dry_run: bool = False

    def __post_init__(self):
        if self.alias_count < 1:
            raise ValueError("alias_count must be at least 1")
        if not 0 <= self.first_name_only_percentage <= 100:
            raise ValueError("first_name_only_percentage must be between 0 and 100")

    @property
    def first_name_ratio(self) -> float:
        return self.first_name_only_percentage / 100.0

    @property
    def verification_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.verification_max_attempts,
            strategy=DelayStrategy.FIXED,
            base_delay=self.verification_retry_delay,
        )

    @property
    def alias_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.alias_max_retries + 1,
            strategy=DelayStrategy.EXPONENTIAL,
            base_delay=self.alias_initial_backoff,
        )

    @property
    def request_policy(self) -> RetryPolicy:
        """Retries for single gateway calls in the registration and DNS phases."""
        return RetryPolicy(
            max_attempts=self.request_max_attempts,
            strategy=DelayStrategy.EXPONENTIAL,
            base_delay=self.request_backoff,
        )


@dataclass
class DomainOutcome:
    """Per-domain line of a run summary."""

    domain: str
    state: DomainState
    failed_phase: Optional[Phase] = None
    alias_count: int = 0
    message: str = ""

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "domain": self.domain,
            "state": self.state.value,
            "failed_phase": self.failed_phase.value if self.failed_phase else None,
            "alias_count": self.alias_count,
            "message": self.message,
        }


@dataclass
class RunSummary:
    """Result of one pipeline run."""

    outcomes: list[DomainOutcome] = field(default_factory=list)
    aliases_exported: int = 0
    dry_run: bool = False

    @property
    def completed(self) -> int:
        return sum(1 for o in self.outcomes if o.state is DomainState.COMPLETED)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.state is DomainState.FAILED)

    @property
    def has_failures(self) -> bool:
        return self.failed > 0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "outcomes": [o.to_dict() for o in self.outcomes],
            "completed": self.completed,
            "failed": self.failed,
            "aliases_exported": self.aliases_exported,
            "dry_run": self.dry_run,
        }


@dataclass
class AuditCheck:
    """One pass/fail check of the audit."""

    name: str
    passed: bool
    detail: str = ""

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {"name": self.name, "passed": self.passed, "detail": self.detail}


@dataclass
class DomainAuditResult:
    """Audit checks, verdict and issues for one domain."""

    domain: str
    checks: list[AuditCheck] = field(default_factory=list)
    classification: AuditClassification = AuditClassification.NOT_CONFIGURED
    issues: list[str] = field(default_factory=list)
    alias_count: int = 0

    def check(self, name: str) -> Optional[AuditCheck]:
        for check in self.checks:
            if check.name == name:
                return check
        return None

    def passed(self, name: str) -> bool:
        check = self.check(name)
        return bool(check and check.passed)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "domain": self.domain,
            "classification": self.classification.value,
            "alias_count": self.alias_count,
            "checks": [c.to_dict() for c in self.checks],
            "issues": list(self.issues),
        }


@dataclass
class AuditReport:
    """Audit results across all domains."""

    domains: list[DomainAuditResult] = field(default_factory=list)

    @property
    def summary(self) -> dict:
        counts = {c.value: 0 for c in AuditClassification}
        for result in self.domains:
            counts[result.classification.value] += 1
        counts["total_domains"] = len(self.domains)
        return counts

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "domains": [d.to_dict() for d in self.domains],
            "summary": self.summary,
        }
