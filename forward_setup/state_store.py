"""Durable per-domain provisioning state and the failure log."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterator, Optional

from .models import DomainRecord, DomainState, Phase, utc_now

logger = logging.getLogger(__name__)

STATE_FORMAT_VERSION = 1


class StateStoreError(Exception):
    """Raised when the state file exists but cannot be used."""

    pass


def atomic_write_text(path: Path, content: str) -> None:
    """Write a file through a temp file in the same directory and a rename."""
    path = Path(path)
    directory = path.parent
    directory.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class StateStore:
    """
    Mapping from domain name to DomainRecord, persisted as one JSON file.

    Records keep their insertion order. The file is always rewritten whole,
    so a crash mid-write leaves the previous snapshot intact.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._records: dict[str, DomainRecord] = {}

    def load(self) -> list[DomainRecord]:
        """
        Load records from the state file.

        Returns:
            The loaded records; empty if the file does not exist

        Raises:
            StateStoreError: If the file cannot be parsed
        """
        self._records = {}
        if not self.path.exists():
            logger.debug("No state file at %s, starting empty", self.path)
            return []

        try:
            with open(self.path) as f:
                data = json.load(f)
            for item in data.get("domains", []):
                record = DomainRecord.from_dict(item)
                self._records[record.name] = record
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise StateStoreError(f"Cannot read state file {self.path}: {e}") from e

        logger.debug("Loaded %d domain records from %s", len(self._records), self.path)
        return list(self._records.values())

    def save(self) -> Path:
        """Write every record to the state file atomically."""
        data = {
            "version": STATE_FORMAT_VERSION,
            "updated_at": utc_now(),
            "domains": [r.to_dict() for r in self._records.values()],
        }
        atomic_write_text(self.path, json.dumps(data, indent=2) + "\n")
        return self.path

    def upsert(self, record: DomainRecord) -> None:
        """Insert or replace a record by name."""
        self._records[record.name] = record

    def get(self, name: str) -> Optional[DomainRecord]:
        return self._records.get(name)

    def ensure(self, name: str) -> DomainRecord:
        """Return the record for name, creating a PENDING one on first encounter."""
        record = self._records.get(name)
        if record is None:
            record = DomainRecord(name=name)
            self._records[name] = record
        return record

    def by_state(self, *states: DomainState) -> list[DomainRecord]:
        """Records whose state is one of states."""
        return [r for r in self._records.values() if r.state in states]

    def failed_in(self, phase: Phase) -> list[DomainRecord]:
        return [r for r in self._records.values() if r.is_failed and r.failed_phase is phase]

    def all(self) -> list[DomainRecord]:
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[DomainRecord]:
        return iter(list(self._records.values()))

    def __contains__(self, name: object) -> bool:
        return name in self._records


class FailureLog:
    """Append-only JSON-lines log of domain failures."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def append(self, domain: str, phase: Phase, message: str, timestamp: Optional[str] = None) -> dict:
        entry = {
            "domain": domain,
            "phase": phase.value,
            "message": message,
            "timestamp": timestamp or utc_now(),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a") as f:
            f.write(json.dumps(entry) + "\n")
        return entry

    def read(self) -> list[dict]:
        if not self.path.exists():
            return []
        entries = []
        with open(self.path) as f:
            for line in f:
                line = line.strip()
                if line:
                    entries.append(json.loads(line))
        return entries


def load_domains(path: Path) -> list[str]:
    """
    Read the domains file.

    Blank lines and "#" comments are skipped, names are lower-cased, and
    duplicates are dropped keeping the first occurrence.

    Args:
        path: Text file with one domain per line

    Returns:
        Domain names in file order
    """
    domains: list[str] = []
    seen: set[str] = set()
    with open(path) as f:
        for line in f:
            name = line.split("#", 1)[0].strip().lower().rstrip(".")
            if name and name not in seen:
                seen.add(name)
                domains.append(name)
    return domains
