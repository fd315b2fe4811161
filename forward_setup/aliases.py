"""Globally unique alias generation and the alias export file."""

import logging
import random
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .models import AliasRecord, DomainRecord
from .names import FIRST_NAMES, LAST_NAMES, RESERVED_LOCAL_PARTS
from .state_store import atomic_write_text

logger = logging.getLogger(__name__)

SUFFIX_ATTEMPTS = 10
INITIAL_SUFFIX_MAX = 99
# Redraws of the base name per slot while avoiding repeats within a domain.
BASE_DRAWS = 20


class AliasGenerator:
    """
    Produces realistic local-parts that are unique across a whole run.

    The set of already used local-parts is owned by the caller and passed to
    every generate() call, which adds each accepted name to it.
    """

    def __init__(
        self,
        first_names: Sequence[str] = FIRST_NAMES,
        last_names: Sequence[str] = LAST_NAMES,
        first_name_ratio: float = 0.6,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the generator.

        Args:
            first_names: Pool for the first-name part
            last_names: Pool for the last-name part, disjoint from first_names
            first_name_ratio: Probability of the "first" format over "first.last"
            rng: Random source, a fresh unseeded one if not provided
        """
        if not first_names or not last_names:
            raise ValueError("Name pools cannot be empty")
        if not 0.0 <= first_name_ratio <= 1.0:
            raise ValueError("first_name_ratio must be between 0 and 1")
        self._first_names = [n.lower() for n in first_names]
        self._last_names = [n.lower() for n in last_names]
        self.first_name_ratio = first_name_ratio
        self._rng = rng or random.Random()

    def _draw_base(self, first_only: bool) -> str:
        first = self._rng.choice(self._first_names)
        if first_only:
            return first
        return f"{first}.{self._rng.choice(self._last_names)}"

    def _draw_unrepeated_base(self, taken: set[str]) -> str:
        # Format is fixed per slot; redraws only change the names.
        first_only = self._rng.random() < self.first_name_ratio
        base = self._draw_base(first_only)
        for _ in range(BASE_DRAWS):
            if base not in taken:
                break
            base = self._draw_base(first_only)
        return base

    def _make_unique(self, base: str, used: set[str]) -> str:
        if base not in used:
            return base

        suffix_max = INITIAL_SUFFIX_MAX
        while True:
            for _ in range(SUFFIX_ATTEMPTS):
                candidate = f"{base}{self._rng.randint(1, suffix_max)}"
                if candidate not in used:
                    return candidate
            suffix_max = suffix_max * 10 + 9

    def generate(self, domain: str, count: int, used: set[str]) -> list[str]:
        """
        Generate new local-parts for a domain.

        Args:
            domain: Domain the aliases are for, used for logging only
            count: How many local-parts to produce
            used: Local-parts already taken anywhere in the run. Mutated:
                every returned name is added to it.

        Returns:
            count new local-parts, none of which was in used before the call
        """
        bases: set[str] = set()
        result = []
        for _ in range(count):
            base = self._draw_unrepeated_base(bases)
            bases.add(base)
            local_part = self._make_unique(base, used)
            used.add(local_part)
            result.append(local_part)

        logger.debug("Generated %d aliases for %s", len(result), domain)
        return result


def is_first_name_only(local_part: str) -> bool:
    """Whether a generated local-part uses the single-name format."""
    return "." not in local_part


def load_alias_export(path: Path) -> list[AliasRecord]:
    """
    Read a previous alias export.

    Args:
        path: Export file, one local@domain per line

    Returns:
        Parsed alias records; an empty list if the file does not exist
    """
    path = Path(path)
    if not path.exists():
        return []

    records = []
    with open(path) as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                records.append(AliasRecord.parse(line))
            except ValueError:
                logger.warning("Skipping malformed alias export line %d: %r", line_number, line)
    return records


def collect_aliases(
    previous: Iterable[AliasRecord],
    records: Iterable[DomainRecord],
) -> list[AliasRecord]:
    """Union of previously exported aliases and those recorded in state, sorted."""
    aliases = set(previous)
    for record in records:
        for local_part in record.aliases:
            aliases.add(AliasRecord(local_part=local_part, domain=record.name))
    return sorted(aliases, key=lambda a: a.address)


def used_local_parts(
    previous: Iterable[AliasRecord],
    records: Iterable[DomainRecord],
) -> set[str]:
    """
    Build the run's used-set from alias history.

    Reserved role names are included so the generator never produces them.
    """
    used = set(RESERVED_LOCAL_PARTS)
    used.update(alias.local_part for alias in previous)
    for record in records:
        used.update(record.aliases)
    return used


def write_alias_export(path: Path, aliases: Iterable[AliasRecord]) -> int:
    """
    Rewrite the alias export atomically.

    Args:
        path: Export file
        aliases: Alias records to write

    Returns:
        Number of lines written
    """
    lines = sorted({alias.address for alias in aliases})
    atomic_write_text(path, "".join(f"{line}\n" for line in lines))
    return len(lines)

