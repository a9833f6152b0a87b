import json
import zipfile
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from logbook_anchor.bundle import ZipBundleReader, bundle_filename, write_bundle_zip
from logbook_anchor.chain import FilePersistence, FindingStatus
from logbook_anchor.core import Logbook, LogbookConfig
from logbook_anchor.errors import CorruptStore, MissingContent, UnreadableContent, VerificationIncomplete
from logbook_anchor.ledger import LocalLedger
from logbook_anchor.provenance import StaticCodeVersion
from logbook_anchor.verifier import (CHECK_CONTENT, CHECK_LINKAGE, BundleVerifier, Verdict)

NOW = datetime(2026, 3, 1, 12, 30, 45, tzinfo=timezone.utc)


@pytest.fixture
def ledger():
    return LocalLedger(clock=lambda: 1_700_000_000)


@pytest.fixture
def logbook(config, ledger):
    book = Logbook("research", config, ledger)
    for name, content in (("first", "alpha"), ("second", "beta"), ("third", "gamma")):
        book.create_entry(name, content)
    return book


def test_untouched_export_passes(logbook, ledger, code_version):
    bundle, _ = logbook.export(write=False, now=NOW)
    report = BundleVerifier(ledger, code_version).verify(bundle)
    assert report.verdict == Verdict.PASSED
    report.raise_if_incomplete()
    assert report.warnings == []
    assert bundle.metadata.total_entries == 3
    assert bundle.metadata.export_date == "2026-03-01T12:30:45.000Z"
    assert "Verdict: PASSED" in report.summary()


def test_tampered_entry_fails_only_at_its_index(logbook, ledger, code_version):
    bundle, _ = logbook.export(write=False)
    bundle.entries[1] = replace(bundle.entries[1], content="beta, edited")
    report = BundleVerifier(ledger, code_version).verify(bundle)

    assert report.verdict == Verdict.FAILED
    content = {f.index: f.status for f in report.checks[CHECK_CONTENT].findings}
    assert content == {0: FindingStatus.PASS, 1: FindingStatus.FAIL, 2: FindingStatus.PASS}
    assert not report.checks[CHECK_LINKAGE].failed


def test_broken_linkage_in_bundle_fails(logbook, ledger, code_version):
    bundle, _ = logbook.export(write=False)
    bundle.entries[2] = replace(bundle.entries[2], previous_hash=bundle.entries[0].entry_hash)
    report = BundleVerifier(ledger, code_version).verify(bundle)
    assert report.verdict == Verdict.FAILED
    assert [f.status for f in report.findings_at(2, CHECK_LINKAGE)] == [FindingStatus.FAIL]
    assert any(f.status == FindingStatus.FAIL for f in report.findings_at(2, "ledger"))


def test_ledger_disagreement_fails(logbook, code_version):
    bundle, _ = logbook.export(write=False)
    stranger = LocalLedger()
    report = BundleVerifier(stranger, code_version).verify(replace(bundle, metadata=replace(
        bundle.metadata, identity=stranger.identity)))
    assert report.verdict == Verdict.FAILED
    assert "entry count mismatch" in report.checks["ledger"].findings[0].message


def test_unreachable_ledger_is_incomplete_not_passed(logbook, stub_ledger, code_version):
    bundle, _ = logbook.export(write=False)
    stub_ledger.unavailable = True
    report = BundleVerifier(stub_ledger, code_version).verify(bundle)
    assert report.verdict == Verdict.VERIFICATION_INCOMPLETE
    assert not report.checks["ledger"].completed
    assert report.checks[CHECK_CONTENT].findings
    with pytest.raises(VerificationIncomplete, match="ledger unavailable"):
        report.raise_if_incomplete()


def test_skipping_the_ledger_check_is_incomplete(logbook, ledger, code_version):
    bundle, _ = logbook.export(write=False)
    report = BundleVerifier(ledger, code_version).verify(bundle, checks=(CHECK_CONTENT, CHECK_LINKAGE))
    assert report.verdict == Verdict.VERIFICATION_INCOMPLETE


def test_code_version_difference_is_only_a_warning(logbook, ledger):
    bundle, _ = logbook.export(write=False)
    report = BundleVerifier(ledger, StaticCodeVersion("0x" + "1" * 64)).verify(bundle)
    assert report.verdict == Verdict.PASSED
    assert len(report.warnings) == 4
    assert {f.check for f in report.warnings} == {"code_version"}


def test_missing_code_hash_is_a_warning(logbook, ledger, code_version):
    bundle, _ = logbook.export(write=False)
    bundle = replace(bundle, metadata=replace(bundle.metadata, code_version_hash=None), proofs={})
    report = BundleVerifier(ledger, code_version).verify(bundle)
    assert report.verdict == Verdict.PASSED
    assert [f.message for f in report.warnings] == ["no code hash in export (old version)"]


def test_placeholders_pass_with_qualification(tmp_path, ledger, code_version, logbook):
    restored = LogbookConfig(storage_root=tmp_path / "restored", chain_id=31337, code_version=code_version,
                             persistence=FilePersistence(tmp_path / "restored"))
    book = Logbook("research", restored, ledger)
    assert book.reconcile().placeholders_written == 3

    bundle, _ = book.export(write=False)
    report = BundleVerifier(ledger, code_version).verify(bundle)
    assert report.verdict == Verdict.PASSED_WITH_PLACEHOLDERS
    assert report.placeholder_count == 3
    assert all(f.status == FindingStatus.SKIPPED for f in report.checks[CHECK_LINKAGE].findings)
    assert "3 placeholder entries" in report.summary()


def test_entry_after_placeholder_is_not_linkage_checked(logbook, ledger, code_version):
    bundle, _ = logbook.export(write=False)
    bundle.entries[0] = replace(bundle.entries[0],
                                content="PLACEHOLDER - Original content not available\n")
    report = BundleVerifier(ledger, code_version).verify(bundle)
    assert [f.message for f in report.checks[CHECK_LINKAGE].findings] == [
        "skipped (placeholder content)", "skipped (previous entry is placeholder)", "linked"]
    assert report.verdict == Verdict.PASSED_WITH_PLACEHOLDERS


def test_export_requires_every_entry_content(logbook):
    (logbook.config.persistence.root / "research" / "0002_second" / "entry.txt").unlink()
    with pytest.raises(MissingContent) as exc:
        logbook.export(write=False)
    assert exc.value.index == 1


def test_zip_bundle_verifies_like_the_in_memory_one(logbook, ledger, code_version, tmp_path):
    bundle, path = logbook.export(now=NOW)
    assert path == tmp_path / "exports" / bundle_filename("research", NOW)
    assert path.name == "research_20260301_123045.zip"

    with zipfile.ZipFile(path) as zf:
        names = set(zf.namelist())
        metadata = json.loads(zf.read("metadata.json"))
    assert {"metadata.json", "entries/0001_first/entry.txt", "entries/0001_first/proof.txt"} <= names
    assert metadata["metadata"]["walletAddress"] == ledger.identity
    assert metadata["metadata"]["chainId"] == 31337
    assert metadata["entries"][0]["content"] == "alpha"

    with ZipBundleReader(path) as reader:
        report = BundleVerifier(ledger, code_version).verify(reader)
        assert reader.read_entry_content("0003_third") == "gamma"
    assert report.verdict == Verdict.PASSED


def test_zip_content_falls_back_to_metadata(logbook, ledger, code_version, tmp_path):
    bundle, _ = logbook.export(write=False)
    path = tmp_path / "thin.zip"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("metadata.json", bundle.to_json())
    with ZipBundleReader(path) as reader:
        assert reader.read_entry_content("0002_second") == "beta"
        assert reader.read_entry_proof("0002_second") is None
        assert BundleVerifier(ledger, code_version).verify(reader).verdict == Verdict.PASSED


def _rewrite_zip(src, dst, replacements):
    with zipfile.ZipFile(src) as zin, zipfile.ZipFile(dst, "w") as zout:
        for name in zin.namelist():
            zout.writestr(name, replacements.get(name, zin.read(name)))


def test_undecodable_zip_content_fails_at_its_index(logbook, ledger, code_version, tmp_path):
    _, path = logbook.export(now=NOW)
    tampered = tmp_path / "tampered.zip"
    _rewrite_zip(path, tampered, {"entries/0002_second/entry.txt": b"\xff\xfe tampered"})

    with ZipBundleReader(tampered) as reader:
        with pytest.raises(UnreadableContent, match="not valid UTF-8"):
            reader.read_entry_content("0002_second")
        report = BundleVerifier(ledger, code_version).verify(reader)

    assert report.verdict == Verdict.FAILED
    content = {f.index: f for f in report.checks[CHECK_CONTENT].findings}
    assert content[1].status == FindingStatus.FAIL
    assert "not valid UTF-8" in content[1].message
    assert content[0].status == content[2].status == FindingStatus.PASS


def test_undecodable_proof_is_only_a_warning(logbook, ledger, code_version, tmp_path):
    _, path = logbook.export(now=NOW)
    tampered = tmp_path / "tampered.zip"
    _rewrite_zip(path, tampered, {"entries/0001_first/proof.txt": b"\xc3\x28"})

    with ZipBundleReader(tampered) as reader:
        report = BundleVerifier(ledger, code_version).verify(reader)

    assert report.verdict == Verdict.PASSED
    [finding] = report.findings_at(0, "code_version")
    assert finding.status == FindingStatus.WARNING
    assert "proof is not valid UTF-8" in finding.message


def test_invalid_archives_are_corrupt(tmp_path, logbook):
    not_zip = tmp_path / "nope.zip"
    not_zip.write_bytes(b"plain text")
    with pytest.raises(CorruptStore):
        ZipBundleReader(not_zip)

    no_metadata = tmp_path / "empty.zip"
    with zipfile.ZipFile(no_metadata, "w") as zf:
        zf.writestr("entries/x/entry.txt", "x")
    with ZipBundleReader(no_metadata) as reader, pytest.raises(CorruptStore):
        reader.read_metadata()

    bad_json = tmp_path / "bad.zip"
    with zipfile.ZipFile(bad_json, "w") as zf:
        zf.writestr("metadata.json", "{oops")
    with ZipBundleReader(bad_json) as reader, pytest.raises(CorruptStore):
        reader.read_metadata()


def test_write_bundle_zip_replaces_existing(logbook, tmp_path):
    bundle, _ = logbook.export(write=False)
    path = tmp_path / "out" / "bundle.zip"
    write_bundle_zip(bundle, path)
    write_bundle_zip(bundle, path)
    assert zipfile.is_zipfile(path)
    assert not list(path.parent.glob(".*.tmp"))
