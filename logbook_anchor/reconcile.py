"""Reconciliation between a local chain and the ledger's authoritative record.

The policy is deliberately conservative: any detectable divergence (missing
or empty local chain, placeholder entries, a different entry count or tip)
rebuilds the whole local chain from the ledger. A rebuild derives only from
ledger data, so running it twice on the same snapshot gives the same document.

State machine per logbook::

    UNKNOWN -> EMPTY | UP_TO_DATE | DIVERGENT
    DIVERGENT -> REBUILDING -> REBUILT
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from logbook_anchor.chain.models import (RECONSTRUCTED_REF, Entry, ValidationReport,
                                         build_placeholder_content)
from logbook_anchor.chain.persistence import ChainPersistence
from logbook_anchor.chain.store import ChainStore
from logbook_anchor.crypto.merkle import running_roots
from logbook_anchor.errors import InvalidName
from logbook_anchor.ledger import Ledger, LedgerEntry
from logbook_anchor.validators import validate_name, validate_stored_name

logger = logging.getLogger("logbook.reconcile")


class ReconciliationState(str, Enum):
    UNKNOWN = "UNKNOWN"
    EMPTY = "EMPTY"
    UP_TO_DATE = "UP_TO_DATE"
    DIVERGENT = "DIVERGENT"
    REBUILDING = "REBUILDING"
    REBUILT = "REBUILT"


@dataclass
class IntegrityCheck:
    needs_reconstruction: bool
    ledger_entries: list[LedgerEntry] = field(default_factory=list)
    reason: str = ""

    @property
    def state(self) -> ReconciliationState:
        if not self.ledger_entries: return ReconciliationState.EMPTY
        if self.needs_reconstruction: return ReconciliationState.DIVERGENT
        return ReconciliationState.UP_TO_DATE


@dataclass
class ReconciliationResult:
    logbook_name: str
    state: ReconciliationState
    integrity: IntegrityCheck | None = None
    validation: ValidationReport | None = None
    entries_rebuilt: int = 0
    placeholders_written: int = 0

    def summary(self) -> str:
        lines = [f"Reconciliation: {self.logbook_name}",
                 f"  State: {self.state.value}"]
        if self.integrity is not None:
            lines.append(f"  Ledger entries: {len(self.integrity.ledger_entries)}")
            if self.integrity.reason:
                lines.append(f"  Reason: {self.integrity.reason}")
        if self.state == ReconciliationState.REBUILT:
            lines.append(f"  Entries rebuilt: {self.entries_rebuilt}")
            lines.append(f"  Placeholders written: {self.placeholders_written}")
        if self.validation is not None:
            lines.append(f"  Chain validation: {'VALID' if self.validation.valid else 'INVALID'}")
            for error in self.validation.errors:
                lines.append(f"    - {error}")
            skipped = len(self.validation.skipped)
            if skipped:
                lines.append(f"  Placeholder entries awaiting original content: {skipped}")
        return "\n".join(lines)


class ReconciliationEngine:
    def __init__(self, ledger: Ledger, persistence: ChainPersistence, identity: str | None = None) -> None:
        self.ledger = ledger
        self.persistence = persistence
        self.identity = identity

    def fetch_ledger_entries(self, logbook_name: str) -> list[LedgerEntry]:
        """All ledger entries for ``logbook_name``; ledger failures propagate to the caller."""
        if logbook_name not in self.ledger.get_logbook_names(self.identity):
            logger.info(f"Logbook '{logbook_name}' not found on the ledger")
            return []
        entries = self.ledger.get_all_entries(logbook_name, self.identity)
        logger.info(f"Found {len(entries)} ledger entries for '{logbook_name}'")
        return entries

    def check_integrity(self, logbook_name: str) -> IntegrityCheck:
        if validate_name(logbook_name) is not None:
            raise InvalidName(f"Invalid logbook name {logbook_name!r}: {validate_name(logbook_name)}")
        ledger_entries = self.fetch_ledger_entries(logbook_name)
        if not ledger_entries:
            return IntegrityCheck(False, [], "ledger has no entries for this logbook")
        if not self.persistence.exists(logbook_name):
            return IntegrityCheck(True, ledger_entries, "no local logbook")

        local = ChainStore.open(logbook_name, self.persistence).entries()
        if not local:
            return IntegrityCheck(True, ledger_entries, "local chain is empty")
        if any(e.external_ref == RECONSTRUCTED_REF for e in local):
            return IntegrityCheck(True, ledger_entries, "local chain contains placeholder entries")
        if len(local) != len(ledger_entries):
            return IntegrityCheck(True, ledger_entries,
                                  f"entry count differs (local {len(local)}, ledger {len(ledger_entries)})")
        if local[-1].entry_hash != ledger_entries[-1].entry_hash:
            return IntegrityCheck(True, ledger_entries, "last entry hash differs from the ledger")
        return IntegrityCheck(False, ledger_entries, "local chain matches the ledger")

    @staticmethod
    def build_entries(ledger_entries: list[LedgerEntry]) -> list[Entry]:
        """Chain entries in ledger order; previousHash is taken from the ledger as-is."""
        roots = running_roots([e.entry_hash for e in ledger_entries])
        return [Entry(name=le.name, entry_hash=le.entry_hash, previous_hash=le.previous_hash,
                      external_ref=RECONSTRUCTED_REF, timestamp=le.timestamp,
                      block_number=le.sequence_number, merkle_root=root)
                for le, root in zip(ledger_entries, roots)]

    def reconstruct(self, logbook_name: str, ledger_entries: list[LedgerEntry]) -> ReconciliationResult:
        if not ledger_entries:
            logger.warning(f"No ledger entries for '{logbook_name}'; nothing to reconstruct")
            return ReconciliationResult(logbook_name, ReconciliationState.EMPTY)
        # ledger names become folder names; nothing is written if any is unusable
        for i, le in enumerate(ledger_entries):
            problem = validate_stored_name(le.name)
            if problem:
                logger.error(f"Ledger entry {i} of '{logbook_name}' has an unusable name {le.name!r}: {problem}")
                raise InvalidName(f"Ledger entry {i} of '{logbook_name}' has invalid name {le.name!r}: {problem}")

        logger.info(f"Rebuilding '{logbook_name}' from {len(ledger_entries)} ledger entries")
        store = ChainStore.open(logbook_name, self.persistence)
        written = 0
        with store.lock:
            store.reconstruct(self.build_entries(ledger_entries))
            for le in ledger_entries:
                placeholder = build_placeholder_content(le.entry_hash, le.timestamp, le.sequence_number)
                if store.write_content(le.name, placeholder, overwrite=False):
                    written += 1
            validation = store.validate_chain()

        if validation.valid:
            logger.info(f"Chain validation after rebuild of '{logbook_name}': VALID")
        else:
            logger.warning(f"Chain validation after rebuild of '{logbook_name}': INVALID "
                           f"({len(validation.errors)} error(s))")
        return ReconciliationResult(logbook_name, ReconciliationState.REBUILT, validation=validation,
                                    entries_rebuilt=len(ledger_entries), placeholders_written=written)

    def reconcile(self, logbook_name: str) -> ReconciliationResult:
        check = self.check_integrity(logbook_name)
        if not check.needs_reconstruction:
            return ReconciliationResult(logbook_name, check.state, integrity=check)
        logger.info(f"Logbook '{logbook_name}' diverged from the ledger: {check.reason}")
        result = self.reconstruct(logbook_name, check.ledger_entries)
        result.integrity = check
        return result
