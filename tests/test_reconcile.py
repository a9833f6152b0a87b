from dataclasses import replace

import pytest

from conftest import StubLedger, linked_ledger_entries
from logbook_anchor.chain import PLACEHOLDER_MARKER, RECONSTRUCTED_REF, ChainStore, FindingStatus
from logbook_anchor.crypto import GENESIS_HASH, build_tree, hash_content
from logbook_anchor.errors import CorruptStore, InvalidName, LedgerUnavailable
from logbook_anchor.reconcile import ReconciliationEngine, ReconciliationState

ALPHA = [("0001_A", "alpha"), ("0002_B", "beta")]


def test_unknown_logbook_needs_nothing(persistence):
    engine = ReconciliationEngine(StubLedger(), persistence)
    check = engine.check_integrity("empty")
    assert not check.needs_reconstruction
    assert check.state == ReconciliationState.EMPTY
    assert not persistence.exists("empty")

    result = engine.reconcile("empty")
    assert result.state == ReconciliationState.EMPTY
    assert not persistence.exists("empty")


def test_invalid_name_rejected(persistence):
    with pytest.raises(InvalidName):
        ReconciliationEngine(StubLedger(), persistence).check_integrity("not valid!")


def test_ledger_failure_propagates(persistence):
    ledger = StubLedger({"alpha": linked_ledger_entries(ALPHA)})
    ledger.unavailable = True
    with pytest.raises(LedgerUnavailable):
        ReconciliationEngine(ledger, persistence).reconcile("alpha")


@pytest.mark.parametrize("setup,reason", [
    ("absent", "no local logbook"),
    ("empty", "local chain is empty"),
])
def test_missing_or_empty_local_needs_rebuild(persistence, setup, reason):
    if setup == "empty":
        ChainStore.open("alpha", persistence)
    engine = ReconciliationEngine(StubLedger({"alpha": linked_ledger_entries(ALPHA)}), persistence)
    check = engine.check_integrity("alpha")
    assert check.needs_reconstruction
    assert check.reason == reason
    assert check.state == ReconciliationState.DIVERGENT


def test_rebuild_from_ledger(persistence):
    ledger_entries = linked_ledger_entries(ALPHA)
    engine = ReconciliationEngine(StubLedger({"alpha": ledger_entries}), persistence)
    ChainStore.open("alpha", persistence)

    result = engine.reconcile("alpha")
    assert result.state == ReconciliationState.REBUILT
    assert result.entries_rebuilt == 2
    assert result.placeholders_written == 2

    store = ChainStore.open("alpha", persistence)
    entries = store.entries()
    assert [e.name for e in entries] == ["0001_A", "0002_B"]
    assert entries[0].previous_hash == GENESIS_HASH
    assert entries[1].previous_hash == hash_content("alpha")
    assert all(e.external_ref == RECONSTRUCTED_REF for e in entries)
    assert [e.block_number for e in entries] == [100, 101]
    assert entries[1].merkle_root == build_tree([hash_content("alpha"), hash_content("beta")]).root_hash
    for entry in entries:
        content = store.read_content(entry.name)
        assert content.startswith(PLACEHOLDER_MARKER)
        assert entry.entry_hash in content

    assert result.validation.valid
    assert len(result.validation.skipped) == 2
    assert "REBUILT" in result.summary()
    assert "Placeholder entries awaiting original content: 2" in result.summary()


def test_rebuilt_chain_always_needs_reconciliation(persistence):
    engine = ReconciliationEngine(StubLedger({"alpha": linked_ledger_entries(ALPHA)}), persistence)
    engine.reconcile("alpha")
    check = engine.check_integrity("alpha")
    assert check.needs_reconstruction
    assert "placeholder" in check.reason


def test_reconstruction_is_idempotent(persistence):
    ledger_entries = linked_ledger_entries(ALPHA)
    engine = ReconciliationEngine(StubLedger({"alpha": ledger_entries}), persistence)
    engine.reconstruct("alpha", ledger_entries)
    chain_path = persistence.root / "alpha" / "chain.json"
    first = chain_path.read_bytes()
    placeholder = (persistence.root / "alpha" / "0001_A" / "entry.txt").read_bytes()

    second = engine.reconstruct("alpha", ledger_entries)
    assert chain_path.read_bytes() == first
    assert (persistence.root / "alpha" / "0001_A" / "entry.txt").read_bytes() == placeholder
    assert second.placeholders_written == 0


def test_genuine_content_survives_rebuild(persistence):
    ledger_entries = linked_ledger_entries(ALPHA)
    store = ChainStore.open("alpha", persistence)
    store.write_content("0001_A", "alpha")

    result = ReconciliationEngine(StubLedger({"alpha": ledger_entries}), persistence).reconcile("alpha")
    assert result.placeholders_written == 1
    assert store.read_content("0001_A") == "alpha"
    statuses = {(f.index, f.check): f.status for f in result.validation.findings}
    assert statuses[(0, "content")] == FindingStatus.PASS
    assert statuses[(1, "content")] == FindingStatus.SKIPPED


def test_matching_local_chain_is_up_to_date(persistence, stub_ledger, fill_store):
    store = ChainStore.open("alpha", persistence)
    for entry in fill_store(store, ["alpha", "beta"]):
        stub_ledger.anchor("alpha", entry.name, entry.entry_hash, entry.previous_hash)

    result = ReconciliationEngine(stub_ledger, persistence).reconcile("alpha")
    assert result.state == ReconciliationState.UP_TO_DATE
    assert result.validation is None


@pytest.mark.parametrize("mutate,reason", [
    (lambda entries: entries[:1], "entry count differs"),
    (lambda entries: entries[:1] + [replace(entries[1], entry_hash=hash_content("other"))],
     "last entry hash differs"),
])
def test_divergent_local_chain_is_detected(persistence, stub_ledger, fill_store, mutate, reason):
    store = ChainStore.open("alpha", persistence)
    entries = fill_store(store, ["alpha", "beta"])
    for entry in entries:
        stub_ledger.anchor("alpha", entry.name, entry.entry_hash, entry.previous_hash)
    store.reconstruct(mutate(entries))

    check = ReconciliationEngine(stub_ledger, persistence).check_integrity("alpha")
    assert check.needs_reconstruction
    assert check.reason.startswith(reason)


def test_inconsistent_ledger_data_is_reported_not_raised(persistence):
    entries = linked_ledger_entries(ALPHA + [("0003_C", "gamma")])
    entries[2] = replace(entries[2], previous_hash=hash_content("forged"))
    result = ReconciliationEngine(StubLedger({"alpha": entries}), persistence).reconcile("alpha")

    assert result.state == ReconciliationState.REBUILT
    assert not result.validation.valid
    assert [f.check for f in result.validation.failures_at(2)] == ["linkage"]
    assert "INVALID" in result.summary()


def test_corrupt_local_chain_is_not_repaired(persistence):
    path = persistence.root / "alpha" / "chain.json"
    path.parent.mkdir(parents=True)
    path.write_text("[]")
    engine = ReconciliationEngine(StubLedger({"alpha": linked_ledger_entries(ALPHA)}), persistence)
    with pytest.raises(CorruptStore):
        engine.reconcile("alpha")
    assert path.read_text() == "[]"


def test_empty_ledger_reconstruct_is_noop(persistence):
    result = ReconciliationEngine(StubLedger(), persistence).reconstruct("alpha", [])
    assert result.state == ReconciliationState.EMPTY
    assert not persistence.exists("alpha")


def test_queries_use_configured_identity(persistence):
    ledger = StubLedger({"alpha": linked_ledger_entries(ALPHA)})
    ReconciliationEngine(ledger, persistence, identity="someone-else").check_integrity("alpha")
    assert ledger.queries == [("alpha", "someone-else")]


@pytest.mark.parametrize("name", ["../../escaped", " 0002_B", "0002/B"])
def test_unusable_ledger_name_aborts_before_writing(persistence, name):
    entries = linked_ledger_entries(ALPHA)
    entries[1] = replace(entries[1], name=name)
    engine = ReconciliationEngine(StubLedger({"alpha": entries}), persistence)
    with pytest.raises(InvalidName, match="Ledger entry 1"):
        engine.reconcile("alpha")
    assert not persistence.exists("alpha")
    assert not (persistence.root.parent / "escaped").exists()


def test_far_future_timestamp_still_rebuilds(persistence):
    entries = linked_ledger_entries(ALPHA)
    entries[1] = replace(entries[1], timestamp=10 ** 12)
    result = ReconciliationEngine(StubLedger({"alpha": entries}), persistence).reconcile("alpha")
    assert result.state == ReconciliationState.REBUILT
    assert result.placeholders_written == 2
    content = ChainStore.open("alpha", persistence).read_content("0002_B")
    assert "Timestamp: 1000000000000" in content
