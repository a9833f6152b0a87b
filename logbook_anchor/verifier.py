"""Bundle Verifier: re-checks an exported logbook on its own and against the ledger."""
from __future__ import annotations
import logging, re
from dataclasses import dataclass, field
from enum import Enum
from logbook_anchor.bundle import BundleEntry, BundleMetadata, BundleSource
from logbook_anchor.chain.models import Finding, FindingStatus, is_placeholder
from logbook_anchor.crypto.hashing import GENESIS_HASH, hash_content
from logbook_anchor.errors import LedgerUnavailable, MissingContent, UnreadableContent, VerificationIncomplete
from logbook_anchor.ledger import Ledger
from logbook_anchor.provenance import CodeVersionProvider

logger = logging.getLogger("logbook.verifier")

CHECK_CONTENT = "content"
CHECK_LINKAGE = "linkage"
CHECK_LEDGER = "ledger"
CHECK_CODE_VERSION = "code_version"
ALL_CHECKS = (CHECK_CONTENT, CHECK_LINKAGE, CHECK_LEDGER, CHECK_CODE_VERSION)

_CODE_HASH_LINE = re.compile(r"Code version hash: (.+)")


class Verdict(str, Enum):
    PASSED = "PASSED"
    PASSED_WITH_PLACEHOLDERS = "PASSED_WITH_PLACEHOLDERS"
    FAILED = "FAILED"
    VERIFICATION_INCOMPLETE = "VERIFICATION_INCOMPLETE"


@dataclass
class CheckResult:
    name: str
    findings: list[Finding] = field(default_factory=list)
    completed: bool = True
    placeholders: int = 0

    @property
    def failed(self) -> bool:
        return any(f.status == FindingStatus.FAIL for f in self.findings)

    def add(self, status: FindingStatus, message: str, index: int | None = None,
            entry_name: str | None = None) -> None:
        self.findings.append(Finding(self.name, status, message, index=index, entry_name=entry_name))


@dataclass
class VerificationReport:
    metadata: BundleMetadata
    verdict: Verdict
    checks: dict[str, CheckResult] = field(default_factory=dict)
    placeholder_count: int = 0

    @property
    def findings(self) -> list[Finding]:
        return [f for check in self.checks.values() for f in check.findings]

    @property
    def warnings(self) -> list[Finding]:
        return [f for f in self.findings if f.status == FindingStatus.WARNING]

    def findings_at(self, index: int, check: str | None = None) -> list[Finding]:
        return [f for f in self.findings if f.index == index and (check is None or f.check == check)]

    def raise_if_incomplete(self) -> None:
        """For callers that treat an unconsulted ledger as an error rather than a verdict."""
        if self.verdict == Verdict.VERIFICATION_INCOMPLETE:
            ledger = self.checks.get(CHECK_LEDGER)
            reason = ledger.findings[0].message if ledger and ledger.findings else "ledger check not run"
            raise VerificationIncomplete(f"Bundle '{self.metadata.logbook_name}': {reason}")

    def summary(self) -> str:
        m = self.metadata
        lines = ["VERIFICATION REPORT",
                 f"  Logbook: {m.logbook_name}",
                 f"  Logbook hash: {m.logbook_name_hash[:18]}...",
                 f"  Identity: {m.identity}",
                 f"  Chain ID: {m.chain_id}",
                 f"  Total entries: {m.total_entries}",
                 f"  Export date: {m.export_date}"]
        for name, check in self.checks.items():
            state = "incomplete" if not check.completed else ("FAILED" if check.failed else "ok")
            lines.append(f"  [{name}] {state}")
            for f in check.findings:
                lines.append(f"    {f.status.value:<8} {f.describe()}")
        lines.append(f"  Verdict: {self.verdict.value}")
        if self.verdict == Verdict.PASSED_WITH_PLACEHOLDERS:
            lines.append(f"  {self.placeholder_count} placeholder entr{'y' if self.placeholder_count == 1 else 'ies'}: "
                         "restore original files to verify content hashes")
        return "\n".join(lines)


class BundleVerifier:
    """Runs the four bundle checks; each can be run alone and none raises for bad data."""

    def __init__(self, ledger: Ledger, code_version: CodeVersionProvider) -> None:
        self.ledger = ledger
        self.code_version = code_version

    def check_content_hashes(self, source: BundleSource) -> CheckResult:
        result = CheckResult(CHECK_CONTENT)
        _, entries = source.read_metadata()
        for entry in entries:
            content, problem = _read_content(source, entry)
            if content is None:
                result.add(FindingStatus.FAIL, problem, entry.index, entry.name)
            elif is_placeholder(content):
                result.placeholders += 1
                result.add(FindingStatus.SKIPPED, "skipped (placeholder content)", entry.index, entry.name)
            else:
                computed = hash_content(content)
                if computed == entry.entry_hash:
                    result.add(FindingStatus.PASS, "content hash matches", entry.index, entry.name)
                else:
                    result.add(FindingStatus.FAIL,
                               f"content hash mismatch (expected {entry.entry_hash}, computed {computed})",
                               entry.index, entry.name)
        return result

    def check_linkage(self, source: BundleSource) -> CheckResult:
        result = CheckResult(CHECK_LINKAGE)
        _, entries = source.read_metadata()
        prev: BundleEntry | None = None
        prev_placeholder = False
        for i, entry in enumerate(entries):
            placeholder = is_placeholder(_content_or_none(source, entry))
            if placeholder:
                result.placeholders += 1
                result.add(FindingStatus.SKIPPED, "skipped (placeholder content)", i, entry.name)
            elif prev is not None and prev_placeholder:
                result.add(FindingStatus.SKIPPED, "skipped (previous entry is placeholder)", i, entry.name)
            else:
                expected = GENESIS_HASH if prev is None else prev.entry_hash
                if entry.previous_hash == expected:
                    result.add(FindingStatus.PASS, "linked", i, entry.name)
                elif prev is None:
                    result.add(FindingStatus.FAIL,
                               f"first entry must have genesis previousHash ({GENESIS_HASH}), "
                               f"got {entry.previous_hash}", i, entry.name)
                else:
                    result.add(FindingStatus.FAIL,
                               f"previousHash does not match entry {i - 1}'s entryHash "
                               f"(expected {expected}, got {entry.previous_hash})", i, entry.name)
            prev, prev_placeholder = entry, placeholder
        return result

    def check_ledger(self, source: BundleSource) -> CheckResult:
        result = CheckResult(CHECK_LEDGER)
        metadata, entries = source.read_metadata()
        identity = metadata.identity or None
        try:
            ledger_entries = self.ledger.get_all_entries(metadata.logbook_name, identity)
            validation = self.ledger.validate_chain(metadata.logbook_name, identity)
        except LedgerUnavailable as e:
            logger.error(f"Ledger cross-check for '{metadata.logbook_name}' could not run: {e}")
            result.completed = False
            result.add(FindingStatus.SKIPPED, f"verification incomplete: ledger unavailable ({e})")
            return result

        if len(ledger_entries) != len(entries):
            result.add(FindingStatus.FAIL, f"entry count mismatch: {len(ledger_entries)} on the ledger "
                                           f"vs {len(entries)} in the bundle")
        else:
            result.add(FindingStatus.PASS, f"entry count matches: {len(entries)}")
            for i, (local, remote) in enumerate(zip(entries, ledger_entries)):
                problems = []
                if local.name != remote.name: problems.append("name mismatch")
                if local.entry_hash != remote.entry_hash: problems.append("hash mismatch")
                if local.previous_hash != remote.previous_hash: problems.append("previous hash mismatch")
                if problems:
                    result.add(FindingStatus.FAIL, "does not match the ledger: " + ", ".join(problems),
                               i, local.name)
                else:
                    result.add(FindingStatus.PASS, "matches the ledger", i, local.name)

        if validation.valid:
            result.add(FindingStatus.PASS, "ledger chain validation: valid")
        else:
            result.add(FindingStatus.FAIL, f"ledger chain validation: broken at index {validation.broken_at_index}",
                       validation.broken_at_index)
        return result

    def check_code_version(self, source: BundleSource) -> CheckResult:
        """Advisory: differing code versions are warnings, never failures."""
        result = CheckResult(CHECK_CODE_VERSION)
        metadata, entries = source.read_metadata()
        current = self.code_version.current()
        if not metadata.code_version_hash:
            result.add(FindingStatus.WARNING, "no code hash in export (old version)")
        elif metadata.code_version_hash != current:
            result.add(FindingStatus.WARNING, f"export made with a different code version "
                                              f"({metadata.code_version_hash[:18]}...)")
        else:
            result.add(FindingStatus.PASS, "export code version matches")

        for entry in entries:
            try:
                proof = source.read_entry_proof(entry.name)
            except UnreadableContent as e:
                result.add(FindingStatus.WARNING, e.reason, entry.index, entry.name)
                continue
            if proof is None:
                continue
            match = _CODE_HASH_LINE.search(proof)
            if not match:
                result.add(FindingStatus.WARNING, "no code hash in proof (old version)", entry.index, entry.name)
            elif match.group(1).strip() != current:
                result.add(FindingStatus.WARNING, f"created with code version {match.group(1).strip()[:18]}...",
                           entry.index, entry.name)
            else:
                result.add(FindingStatus.PASS, "code version ok", entry.index, entry.name)
        if result.findings and any(f.status == FindingStatus.WARNING for f in result.findings):
            logger.warning(f"Bundle '{metadata.logbook_name}' was produced by a different code version")
        return result

    def verify(self, source: BundleSource, checks: tuple[str, ...] = ALL_CHECKS) -> VerificationReport:
        runners = {CHECK_CONTENT: self.check_content_hashes, CHECK_LINKAGE: self.check_linkage,
                   CHECK_LEDGER: self.check_ledger, CHECK_CODE_VERSION: self.check_code_version}
        metadata, _ = source.read_metadata()
        results = {name: runners[name](source) for name in ALL_CHECKS if name in checks}

        placeholders = max((r.placeholders for r in results.values()), default=0)
        if CHECK_CONTENT not in results and CHECK_LINKAGE not in results:
            placeholders = self.check_content_hashes(source).placeholders

        verdict = derive_verdict(results, placeholders)
        logger.info(f"Verification of '{metadata.logbook_name}': {verdict.value}")
        return VerificationReport(metadata=metadata, verdict=verdict, checks=results,
                                  placeholder_count=placeholders)


def derive_verdict(results: dict[str, CheckResult], placeholders: int) -> Verdict:
    ledger = results.get(CHECK_LEDGER)
    if ledger is None or not ledger.completed:
        return Verdict.VERIFICATION_INCOMPLETE
    if any(results[name].failed for name in (CHECK_CONTENT, CHECK_LINKAGE, CHECK_LEDGER) if name in results):
        return Verdict.FAILED
    if placeholders:
        return Verdict.PASSED_WITH_PLACEHOLDERS
    return Verdict.PASSED


def _read_content(source: BundleSource, entry: BundleEntry) -> tuple[str | None, str]:
    """Entry content, or None and the reason it could not be read."""
    try:
        return source.read_entry_content(entry.name), ""
    except MissingContent:
        return None, "content not found"
    except UnreadableContent as e:
        return None, e.reason


def _content_or_none(source: BundleSource, entry: BundleEntry) -> str | None:
    return _read_content(source, entry)[0]
