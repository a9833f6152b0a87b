"""Shared fixtures: a scripted ledger and stores rooted in tmp_path."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from logbook_anchor.chain import ChainStore, FilePersistence  # noqa: E402
from logbook_anchor.core import LogbookConfig  # noqa: E402
from logbook_anchor.crypto import GENESIS_HASH, hash_content  # noqa: E402
from logbook_anchor.errors import LedgerUnavailable  # noqa: E402
from logbook_anchor.ledger import AnchorReceipt, Ledger, LedgerEntry, LedgerValidation  # noqa: E402
from logbook_anchor.provenance import StaticCodeVersion  # noqa: E402

BASE_TS = 1_700_000_000


class StubLedger(Ledger):
    """In-memory ledger whose contents and failures tests control directly."""

    def __init__(self, entries: dict[str, list[LedgerEntry]] | None = None,
                 identity: str = "stub-identity") -> None:
        self.entries = {name: list(items) for name, items in (entries or {}).items()}
        self.identity = identity
        self.explorer_url = "https://explorer.example"
        self.unavailable = False
        self.validation: LedgerValidation | None = None
        self.queries: list[tuple[str, str | None]] = []

    def _check(self) -> None:
        if self.unavailable:
            raise LedgerUnavailable("stub ledger offline")

    def anchor(self, logbook_name, entry_name, entry_hash, previous_hash) -> AnchorReceipt:
        self._check()
        seq = sum(len(v) for v in self.entries.values()) + 1
        self.entries.setdefault(logbook_name, []).append(
            LedgerEntry(entry_name, entry_hash, previous_hash, BASE_TS + seq, seq))
        return AnchorReceipt(hash_content(f"tx:{logbook_name}:{entry_name}"), seq)

    def get_all_entries(self, logbook_name, identity=None) -> list[LedgerEntry]:
        self._check()
        self.queries.append((logbook_name, identity))
        return list(self.entries.get(logbook_name, []))

    def validate_chain(self, logbook_name, identity=None) -> LedgerValidation:
        self._check()
        if self.validation is not None:
            return self.validation
        items = self.entries.get(logbook_name, [])
        for i, e in enumerate(items):
            expected = GENESIS_HASH if i == 0 else items[i - 1].entry_hash
            if e.previous_hash != expected:
                return LedgerValidation(False, i)
        return LedgerValidation(True, 0)

    def get_logbook_names(self, identity=None) -> set[str]:
        self._check()
        return {name for name, items in self.entries.items() if items}


def linked_ledger_entries(names_and_contents: list[tuple[str, str]]) -> list[LedgerEntry]:
    entries, prev = [], GENESIS_HASH
    for i, (name, content) in enumerate(names_and_contents):
        h = hash_content(content)
        entries.append(LedgerEntry(name, h, prev, BASE_TS + i, 100 + i))
        prev = h
    return entries


@pytest.fixture
def persistence(tmp_path: Path) -> FilePersistence:
    return FilePersistence(tmp_path / "logbooks")


@pytest.fixture
def stub_ledger() -> StubLedger:
    return StubLedger()


@pytest.fixture
def code_version() -> StaticCodeVersion:
    return StaticCodeVersion(hash_content("logbook-anchor@test"))


@pytest.fixture
def config(tmp_path: Path, persistence: FilePersistence, code_version: StaticCodeVersion) -> LogbookConfig:
    return LogbookConfig(storage_root=tmp_path / "logbooks", chain_id=31337,
                         exports_dir=tmp_path / "exports", code_version=code_version,
                         persistence=persistence)


@pytest.fixture
def make_ledger_entries():
    return linked_ledger_entries


@pytest.fixture
def fill_store():
    """Append entries with real content to a store; returns the appended entries."""

    def fill(store: ChainStore, contents: list[str], prefix: str = "entry") -> list:
        appended = []
        for i, content in enumerate(contents):
            name = f"{i + 1:04d}_{prefix}"
            store.write_content(name, content)
            appended.append(store.append(name, hash_content(content), hash_content(f"tx:{name}"),
                                         BASE_TS + i, 100 + i))
        return appended

    return fill
