"""Tests for the state store, failure log and domains file."""

import json

import pytest

from forward_setup.models import DomainRecord, DomainState, Phase
from forward_setup.state_store import (
    FailureLog,
    StateStore,
    StateStoreError,
    atomic_write_text,
    load_domains,
)


class TestStateStore:
    """Tests for StateStore."""

    def test_missing_file_loads_empty(self, tmp_path):
        """Test a first run starts with no records."""
        store = StateStore(tmp_path / "state.json")
        assert store.load() == []
        assert len(store) == 0

    def test_corrupt_file_raises(self, tmp_path):
        """Test an unreadable state file is reported, not ignored."""
        path = tmp_path / "state.json"
        path.write_text("{not json")

        with pytest.raises(StateStoreError, match="Cannot read state file"):
            StateStore(path).load()

    def test_unknown_state_raises(self, tmp_path):
        """Test an invalid state value is reported."""
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"domains": [{"name": "a.test", "state": "bogus"}]}))

        with pytest.raises(StateStoreError):
            StateStore(path).load()

    def test_save_and_reload(self, tmp_path):
        """Test records survive a save and a fresh load."""
        path = tmp_path / "state.json"
        store = StateStore(path)
        record = store.ensure("a.test")
        record.provider_id = "abc"
        record.transition(DomainState.PROVIDER_REGISTERED)
        record.fail(Phase.DNS, "MX rejected")
        store.ensure("b.test")
        store.save()

        reloaded = StateStore(path)
        records = reloaded.load()

        assert [r.name for r in records] == ["a.test", "b.test"]
        assert reloaded.get("a.test") == record
        assert reloaded.get("a.test").failed_phase is Phase.DNS

    def test_saved_file_layout(self, tmp_path):
        """Test the state file is versioned JSON with a domains list."""
        path = tmp_path / "state.json"
        store = StateStore(path)
        store.ensure("a.test")
        store.save()

        data = json.loads(path.read_text())
        assert data["version"] == 1
        assert "updated_at" in data
        assert data["domains"][0]["name"] == "a.test"
        assert data["domains"][0]["state"] == "pending"

    def test_save_leaves_no_temp_files(self, tmp_path):
        """Test atomic saves clean up after themselves."""
        store = StateStore(tmp_path / "state.json")
        store.ensure("a.test")
        store.save()
        store.save()

        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_ensure_is_idempotent(self, state_store):
        """Test ensure returns the existing record."""
        first = state_store.ensure("a.test")
        assert state_store.ensure("a.test") is first
        assert "a.test" in state_store

    def test_upsert_replaces(self, state_store):
        """Test upsert replaces a record by name."""
        state_store.ensure("a.test")
        replacement = DomainRecord(name="a.test", provider_id="new")
        state_store.upsert(replacement)
        assert state_store.get("a.test") is replacement
        assert len(state_store) == 1

    def test_queries(self, state_store):
        """Test by_state and failed_in."""
        state_store.ensure("a.test")
        b = state_store.ensure("b.test")
        b.fail(Phase.REGISTRATION, "invalid")

        assert [r.name for r in state_store.by_state(DomainState.PENDING)] == ["a.test"]
        assert [r.name for r in state_store.failed_in(Phase.REGISTRATION)] == ["b.test"]
        assert state_store.failed_in(Phase.DNS) == []
        assert [r.name for r in state_store] == ["a.test", "b.test"]


class TestAtomicWrite:
    """Tests for atomic_write_text."""

    def test_creates_parent_directories(self, tmp_path):
        """Test missing directories are created."""
        path = tmp_path / "nested" / "dir" / "out.txt"
        atomic_write_text(path, "hello\n")
        assert path.read_text() == "hello\n"

    def test_overwrites(self, tmp_path):
        """Test an existing file is replaced whole."""
        path = tmp_path / "out.txt"
        path.write_text("a much longer original content\n")
        atomic_write_text(path, "short\n")
        assert path.read_text() == "short\n"


class TestFailureLog:
    """Tests for FailureLog."""

    def test_append_and_read(self, failure_log):
        """Test entries are appended as JSON lines."""
        failure_log.append("a.test", Phase.DNS, "MX rejected", "2024-01-01T00:00:00+00:00")
        failure_log.append("b.test", Phase.ALIASES, "rate limited")

        entries = failure_log.read()

        assert len(entries) == 2
        assert entries[0] == {
            "domain": "a.test",
            "phase": "dns",
            "message": "MX rejected",
            "timestamp": "2024-01-01T00:00:00+00:00",
        }
        assert entries[1]["phase"] == "aliases"
        assert entries[1]["timestamp"]

    def test_read_missing_file(self, failure_log):
        """Test a missing log reads as empty."""
        assert failure_log.read() == []


class TestLoadDomains:
    """Tests for load_domains."""

    def test_parses_domains_file(self, tmp_path):
        """Test comments, case, trailing dots and duplicates."""
        path = tmp_path / "domains.txt"
        path.write_text(
            "# production domains\n"
            "Example.com\n"
            "\n"
            "example.org.  # trailing dot\n"
            "example.com\n"
            "  spaced.test  \n"
        )

        assert load_domains(path) == ["example.com", "example.org", "spaced.test"]

    def test_missing_file_raises(self, tmp_path):
        """Test a missing domains file is an error."""
        with pytest.raises(OSError):
            load_domains(tmp_path / "missing.txt")
