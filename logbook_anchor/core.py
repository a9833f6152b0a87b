"""Logbook Core: the entry creation workflow wired over store, ledger and proofs."""
from __future__ import annotations
import logging, time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from logbook_anchor.bundle import ExportBundle, bundle_filename, export_bundle, write_bundle_zip
from logbook_anchor.chain.models import Entry, ValidationReport
from logbook_anchor.chain.persistence import PROOF_FILE, ChainPersistence, FilePersistence
from logbook_anchor.chain.store import ChainStore
from logbook_anchor.crypto.hashing import GENESIS_HASH, build_payload, hash_content
from logbook_anchor.errors import EntryExists, InvalidName
from logbook_anchor.ledger import Ledger
from logbook_anchor.provenance import CodeVersionProvider, PackageVersionProvider
from logbook_anchor.reconcile import ReconciliationEngine, ReconciliationResult
from logbook_anchor.validators import validate_name

logger = logging.getLogger("logbook.core")


@dataclass
class LogbookConfig:
    storage_root: Path = field(default_factory=lambda: Path("logbooks"))
    chain_id: int = 0
    exports_dir: Path | None = None
    code_version: CodeVersionProvider = field(default_factory=PackageVersionProvider)
    persistence: ChainPersistence | None = None

    def __post_init__(self) -> None:
        self.storage_root = Path(self.storage_root)
        if self.persistence is None:
            self.persistence = FilePersistence(self.storage_root)

    @property
    def export_path(self) -> Path:
        return Path(self.exports_dir) if self.exports_dir else self.storage_root.parent / "exports"


@dataclass(frozen=True)
class CreatedEntry:
    entry: Entry
    script_hash: str
    code_version_hash: str
    explorer_url: str | None
    proof: str


def render_proof(logbook_name: str, entry: Entry, script_hash: str, code_hash: str,
                 explorer_url: str | None) -> str:
    return "\n".join([
        "LOGBOOK ANCHOR PROOF",
        "=" * 50,
        f"Logbook: {logbook_name}",
        f"Entry name: {entry.name}",
        f"Entry SHA256: {entry.entry_hash}",
        f"Script SHA256: {script_hash}",
        f"Merkle root: {entry.merkle_root}",
        f"Previous hash: {entry.previous_hash}",
        f"Code version hash: {code_hash}",
        f"Transaction: {entry.external_ref}",
        f"Explorer: {explorer_url or 'n/a'}",
        "",
        "VERIFICATION STEPS:",
        "1. Verify entry.txt hash matches Entry SHA256",
        "2. Verify code version matches the installed build",
        "3. Query the ledger: getAllEntries(identity, logbookName)",
        "4. Validate chain: validateChain(identity, logbookName)",
        "5. Check Merkle proof against root in chain.json",
    ])


class Logbook:
    def __init__(self, name: str, config: LogbookConfig, ledger: Ledger) -> None:
        self.config = config
        self.ledger = ledger
        self.store = ChainStore.open(name, config.persistence)

    @property
    def name(self) -> str: return self.store.logbook_name

    def next_entry_name(self, name: str) -> str:
        problem = validate_name(name)
        if problem:
            raise InvalidName(f"Invalid entry name {name!r}: {problem}")
        return f"{self.store.size + 1:04d}_{name.strip()}"

    def create_entry(self, name: str, content: str) -> CreatedEntry:
        """Hash, anchor and append ``content`` as the next entry, then write its files."""
        persistence = self.config.persistence
        with self.store.lock:
            self.store.reload()
            entry_name = self.next_entry_name(name)
            if persistence.entry_exists(self.name, entry_name) or self.store.get(entry_name):
                raise EntryExists(f"Entry with this name already exists: {entry_name}")

            entry_hash = hash_content(content)
            script_hash = hash_content(build_payload(entry_name, entry_hash))
            last = self.store.last_entry()
            previous_hash = last.entry_hash if last else GENESIS_HASH
            code_hash = self.config.code_version.current()
            logger.info(f"Anchoring '{entry_name}' in '{self.name}' (entry hash {entry_hash[:18]}...)")

            receipt = self.ledger.anchor(self.name, entry_name, entry_hash, previous_hash)
            entry = self.store.append(entry_name, entry_hash, receipt.external_ref,
                                      int(time.time()), receipt.confirmed_sequence_number)
            explorer = self.ledger.explorer_link(receipt.external_ref)
            proof = render_proof(self.name, entry, script_hash, code_hash, explorer)
            self.store.write_content(entry_name, content)
            persistence.write_entry_file(self.name, entry_name, proof, PROOF_FILE)
        logger.info(f"Entry '{entry_name}' anchored (tx {entry.external_ref[:18]}..., merkle root {entry.merkle_root[:18]}...)")
        return CreatedEntry(entry=entry, script_hash=script_hash, code_version_hash=code_hash,
                            explorer_url=explorer, proof=proof)

    def validate(self) -> ValidationReport:
        return self.store.validate_chain()

    def export(self, write: bool = True, now: datetime | None = None) -> tuple[ExportBundle, Path | None]:
        bundle = export_bundle(self.store, self.ledger.identity, self.config.chain_id,
                               self.config.code_version, now=now)
        if not write:
            return bundle, None
        path = self.config.export_path / bundle_filename(self.name, now or datetime.now(timezone.utc))
        return bundle, write_bundle_zip(bundle, path)

    def reconcile(self) -> ReconciliationResult:
        result = ReconciliationEngine(self.ledger, self.config.persistence).reconcile(self.name)
        self.store.reload()
        return result

    def status(self) -> dict:
        last = self.store.last_entry()
        return {"logbook": self.name, "entries": self.store.size, "merkle_root": self.store.root_hash,
                "last_entry": last.name if last else None, "identity": self.ledger.identity,
                "chain_id": self.config.chain_id}
