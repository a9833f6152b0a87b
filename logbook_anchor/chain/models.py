"""Chain models: entries, the chain document and validation findings."""
from __future__ import annotations
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

PLACEHOLDER_MARKER = "PLACEHOLDER - Original content not available"
RECONSTRUCTED_REF = "reconstructed"


def is_placeholder(content: str | None) -> bool:
    return content is not None and PLACEHOLDER_MARKER in content


def build_placeholder_content(entry_hash: str, timestamp: int, sequence_number: int) -> str:
    try:
        stamp = datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")
    except (ValueError, OverflowError, OSError):
        # beyond what datetime can represent
        stamp = str(timestamp)
    return "\n".join([
        PLACEHOLDER_MARKER,
        "",
        f"Entry hash: {entry_hash}",
        f"Timestamp: {stamp}",
        f"Block: {sequence_number}",
        "",
        "To restore:",
        "1. Locate backup",
        "2. Replace this file",
        "3. Verify hash matches",
    ])


@dataclass(frozen=True)
class Entry:
    name: str
    entry_hash: str
    previous_hash: str
    external_ref: str
    timestamp: int
    block_number: int
    merkle_root: str

    @property
    def is_reconstructed(self) -> bool:
        return self.external_ref == RECONSTRUCTED_REF

    def to_dict(self) -> dict:
        return {"name": self.name, "entryHash": self.entry_hash, "previousHash": self.previous_hash,
                "txHash": self.external_ref, "timestamp": self.timestamp,
                "blockNumber": self.block_number, "merkleRoot": self.merkle_root}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Entry:
        return cls(name=d["name"], entry_hash=d["entryHash"], previous_hash=d["previousHash"],
                   external_ref=d["txHash"], timestamp=int(d["timestamp"]),
                   block_number=int(d["blockNumber"]), merkle_root=d["merkleRoot"])


@dataclass
class Chain:
    logbook_name: str
    entries: list[Entry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"logbookName": self.logbook_name, "entries": [e.to_dict() for e in self.entries]}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, text: str) -> Chain:
        """Parse a chain document. Raises ValueError/KeyError/TypeError on bad structure."""
        data = json.loads(text)
        if not isinstance(data, dict) or not data.get("logbookName") or not isinstance(data.get("entries"), list):
            raise ValueError("Invalid chain document structure")
        return cls(logbook_name=data["logbookName"],
                   entries=[Entry.from_dict(e) for e in data["entries"]])


class FindingStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    SKIPPED = "SKIPPED"
    WARNING = "WARNING"


@dataclass
class Finding:
    check: str
    status: FindingStatus
    message: str
    index: int | None = None
    entry_name: str | None = None

    def describe(self) -> str:
        where = f"entry {self.index}" if self.index is not None else "chain"
        if self.entry_name: where += f" ({self.entry_name})"
        return f"{where}: {self.message}"

    def to_dict(self) -> dict:
        return {"check": self.check, "status": self.status.value, "message": self.message,
                "index": self.index, "entry_name": self.entry_name}


@dataclass
class ValidationReport:
    findings: list[Finding] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not any(f.status == FindingStatus.FAIL for f in self.findings)

    @property
    def errors(self) -> list[str]:
        return [f.describe() for f in self.findings if f.status == FindingStatus.FAIL]

    @property
    def skipped(self) -> list[Finding]:
        return [f for f in self.findings if f.status == FindingStatus.SKIPPED]

    def failures_at(self, index: int) -> list[Finding]:
        return [f for f in self.findings if f.index == index and f.status == FindingStatus.FAIL]

    def to_dict(self) -> dict:
        return {"valid": self.valid, "errors": self.errors,
                "findings": [f.to_dict() for f in self.findings]}
