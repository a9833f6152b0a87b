"""Chain Store: append-only, Merkle-committed mirror of one logbook."""
from __future__ import annotations
import logging, threading
from logbook_anchor.chain.models import (Chain, Entry, Finding, FindingStatus, ValidationReport,
                                         is_placeholder)
from logbook_anchor.chain.persistence import ENTRY_FILE, ChainPersistence
from logbook_anchor.crypto.hashing import GENESIS_HASH, hash_content, normalize_hash
from logbook_anchor.crypto.merkle import MerkleProof, MerkleTree, build_tree
from logbook_anchor.errors import CorruptStore, EntryExists, InvalidFormat, InvalidName, InvalidValue
from logbook_anchor.validators import (is_entry_hash, is_external_ref, validate_name,
                                       validate_non_negative_int)

logger = logging.getLogger("logbook.store")

_LOCKS: dict[str, threading.RLock] = {}
_LOCKS_GUARD = threading.Lock()


def logbook_lock(key: str) -> threading.RLock:
    """One re-entrant lock per persisted logbook location, shared by every store instance."""
    with _LOCKS_GUARD:
        lock = _LOCKS.get(key)
        if lock is None:
            lock = _LOCKS[key] = threading.RLock()
        return lock


def _load_chain(logbook_name: str, persistence: ChainPersistence) -> Chain | None:
    try:
        raw = persistence.read_chain(logbook_name)
        return Chain.from_json(raw) if raw is not None else None
    except (ValueError, KeyError, TypeError) as e:
        raise CorruptStore(persistence.describe(logbook_name), str(e)) from e


class ChainStore:
    def __init__(self, logbook_name: str, persistence: ChainPersistence, chain: Chain) -> None:
        self._logbook_name = logbook_name
        self._persistence = persistence
        self._chain = chain
        self._tree: MerkleTree | None = None
        self._lock = logbook_lock(persistence.describe(logbook_name))

    @classmethod
    def open(cls, logbook_name: str, persistence: ChainPersistence) -> ChainStore:
        """Load the persisted chain, creating an empty genesis chain on first use."""
        if validate_name(logbook_name) is not None:
            raise InvalidName(f"Invalid logbook name {logbook_name!r}: {validate_name(logbook_name)}")
        logbook_name = logbook_name.strip()
        with logbook_lock(persistence.describe(logbook_name)):
            location = persistence.describe(logbook_name)
            chain = _load_chain(logbook_name, persistence)
            if chain is None:
                chain = Chain(logbook_name=logbook_name)
                persistence.write_chain(logbook_name, chain.to_json())
                logger.info(f"Created genesis chain for logbook '{logbook_name}' at {location}")
            return cls(logbook_name, persistence, chain)

    @property
    def logbook_name(self) -> str: return self._logbook_name
    @property
    def persistence(self) -> ChainPersistence: return self._persistence
    @property
    def lock(self) -> threading.RLock: return self._lock

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._chain.entries)

    @property
    def root_hash(self) -> str:
        with self._lock:
            return self._current_tree().root_hash

    def append(self, name: str, entry_hash: str, external_ref: str,
               timestamp: int, block_number: int) -> Entry:
        if validate_name(name) is not None:
            raise InvalidName(f"Invalid entry name {name!r}: {validate_name(name)}")
        name = name.strip()
        if not is_entry_hash(entry_hash):
            raise InvalidFormat(f"Invalid entry hash format {entry_hash!r}: must be 0x followed by 64 hex characters")
        if not is_external_ref(external_ref):
            raise InvalidFormat(f"Invalid transaction reference {external_ref!r}: must be 0x followed by 64 hex characters")
        for value, field_name in ((timestamp, "timestamp"), (block_number, "blockNumber")):
            problem = validate_non_negative_int(value, field_name)
            if problem:
                raise InvalidValue(problem)

        with self._lock:
            self.reload()
            entries = self._chain.entries
            if any(e.name == name for e in entries):
                raise EntryExists(f"Entry '{name}' already exists in logbook '{self._logbook_name}'")
            previous_hash = entries[-1].entry_hash if entries else GENESIS_HASH
            entry_hash = normalize_hash(entry_hash)
            tree = build_tree([e.entry_hash for e in entries] + [entry_hash])
            entry = Entry(name=name, entry_hash=entry_hash, previous_hash=previous_hash,
                          external_ref=normalize_hash(external_ref), timestamp=timestamp,
                          block_number=block_number, merkle_root=tree.root_hash)
            self._replace(entries + [entry])
            self._tree = tree
            logger.info(f"Appended entry {len(entries)} '{name}' to '{self._logbook_name}' "
                        f"(merkle root {entry.merkle_root[:18]}...)")
            return entry

    def reload(self) -> None:
        """Re-read the persisted chain so writes from other store instances are not lost."""
        with self._lock:
            chain = _load_chain(self._logbook_name, self._persistence)
            if chain is not None and chain.entries != self._chain.entries:
                self._chain = chain
                self._tree = None

    def entries(self) -> list[Entry]:
        with self._lock:
            return list(self._chain.entries)

    def last_entry(self) -> Entry | None:
        with self._lock:
            return self._chain.entries[-1] if self._chain.entries else None

    def get(self, entry_name: str) -> Entry | None:
        for entry in self.entries():
            if entry.name == entry_name:
                return entry
        return None

    def read_content(self, entry_name: str) -> str | None:
        return self._persistence.read_entry_file(self._logbook_name, entry_name, ENTRY_FILE)

    def write_content(self, entry_name: str, content: str, overwrite: bool = True) -> bool:
        """Write ``entry.txt``; with ``overwrite=False`` an existing file is left alone."""
        with self._lock:
            if not overwrite and self.read_content(entry_name) is not None:
                return False
            self._persistence.write_entry_file(self._logbook_name, entry_name, content, ENTRY_FILE)
            return True

    def proof_for(self, entry_name: str) -> MerkleProof | None:
        with self._lock:
            entry = next((e for e in self._chain.entries if e.name == entry_name), None)
            if entry is None:
                return None
            return self._current_tree().get_proof(entry.entry_hash)

    def validate_chain(self) -> ValidationReport:
        """Check genesis, linkage and content hashes. Never raises; every finding is kept."""
        entries = self.entries()
        report = ValidationReport()
        if not entries:
            return report

        first = entries[0]
        if first.previous_hash == GENESIS_HASH:
            report.findings.append(Finding("genesis", FindingStatus.PASS, "previousHash is the genesis hash",
                                           index=0, entry_name=first.name))
        else:
            report.findings.append(Finding(
                "genesis", FindingStatus.FAIL,
                f"first entry must have genesis previousHash ({GENESIS_HASH}), got {first.previous_hash}",
                index=0, entry_name=first.name))

        for i in range(1, len(entries)):
            prev, curr = entries[i - 1], entries[i]
            if curr.previous_hash == prev.entry_hash:
                report.findings.append(Finding("linkage", FindingStatus.PASS,
                                               f"linked to entry {i - 1}", index=i, entry_name=curr.name))
            else:
                report.findings.append(Finding(
                    "linkage", FindingStatus.FAIL,
                    f"previousHash does not match entry {i - 1}'s entryHash "
                    f"(expected {prev.entry_hash}, got {curr.previous_hash})",
                    index=i, entry_name=curr.name))

        for i, entry in enumerate(entries):
            report.findings.append(self._check_content(i, entry))

        if not report.valid:
            logger.warning(f"Chain '{self._logbook_name}' failed validation with {len(report.errors)} error(s)")
        return report

    def clear(self) -> None:
        with self._lock:
            self._replace([])
            logger.info(f"Cleared logbook '{self._logbook_name}'")

    def reconstruct(self, entries: list[Entry]) -> None:
        """Replace every entry as given; linkage and roots are the caller's responsibility."""
        with self._lock:
            self._replace(list(entries))
            logger.info(f"Replaced logbook '{self._logbook_name}' with {len(entries)} reconstructed entries")

    def document(self) -> str:
        with self._lock:
            return self._chain.to_json()

    def _check_content(self, index: int, entry: Entry) -> Finding:
        try:
            content = self.read_content(entry.name)
        except Exception as e:
            return Finding("content", FindingStatus.FAIL, f"failed to read entry content: {e}",
                           index=index, entry_name=entry.name)
        if content is None:
            return Finding("content", FindingStatus.FAIL, "entry file not found",
                           index=index, entry_name=entry.name)
        if is_placeholder(content):
            return Finding("content", FindingStatus.SKIPPED, "skipped (placeholder content)",
                           index=index, entry_name=entry.name)
        computed = hash_content(content)
        if computed != entry.entry_hash:
            return Finding("content", FindingStatus.FAIL,
                           f"content hash mismatch (expected {entry.entry_hash}, computed {computed})",
                           index=index, entry_name=entry.name)
        return Finding("content", FindingStatus.PASS, "content hash matches",
                       index=index, entry_name=entry.name)

    def _current_tree(self) -> MerkleTree:
        if self._tree is None:
            self._tree = build_tree([e.entry_hash for e in self._chain.entries])
        return self._tree

    def _replace(self, entries: list[Entry]) -> None:
        chain = Chain(logbook_name=self._logbook_name, entries=entries)
        self._persistence.write_chain(self._logbook_name, chain.to_json())
        self._chain = chain
        self._tree = None
