"""Ledger capability: the external, append-only record that local chains are anchored to."""
from __future__ import annotations
import abc
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class LedgerEntry:
    name: str
    entry_hash: str
    previous_hash: str
    timestamp: int
    sequence_number: int

    def to_dict(self) -> dict:
        return {"name": self.name, "entryHash": self.entry_hash, "previousHash": self.previous_hash,
                "timestamp": self.timestamp, "blockNumber": self.sequence_number}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> LedgerEntry:
        return cls(name=d["name"], entry_hash=d["entryHash"], previous_hash=d["previousHash"],
                   timestamp=int(d["timestamp"]),
                   sequence_number=int(d.get("blockNumber", d.get("sequenceNumber", 0))))


@dataclass(frozen=True)
class AnchorReceipt:
    external_ref: str
    confirmed_sequence_number: int


@dataclass(frozen=True)
class LedgerValidation:
    valid: bool
    broken_at_index: int = 0


class Ledger(abc.ABC):
    """Read/anchor interface of an authoritative ledger.

    Implementations raise :class:`~logbook_anchor.errors.LedgerUnavailable`
    for transport or consensus failures. Nothing in this package retries.
    ``identity`` selects whose logbooks are queried; None means the ledger's
    own signing identity.
    """
    identity: str = ""
    explorer_url: str | None = None

    @abc.abstractmethod
    def anchor(self, logbook_name: str, entry_name: str, entry_hash: str,
               previous_hash: str) -> AnchorReceipt:
        ...

    @abc.abstractmethod
    def get_all_entries(self, logbook_name: str, identity: str | None = None) -> list[LedgerEntry]:
        ...

    @abc.abstractmethod
    def validate_chain(self, logbook_name: str, identity: str | None = None) -> LedgerValidation:
        ...

    @abc.abstractmethod
    def get_logbook_names(self, identity: str | None = None) -> set[str]:
        ...

    def get_entry_count(self, logbook_name: str, identity: str | None = None) -> int:
        return len(self.get_all_entries(logbook_name, identity))

    def explorer_link(self, external_ref: str) -> str | None:
        return f"{self.explorer_url.rstrip('/')}/tx/{external_ref}" if self.explorer_url else None
