"""Error taxonomy for the chain integrity engine."""
from __future__ import annotations


class LogbookError(Exception):
    """Base class for every error raised by logbook_anchor."""


class InvalidName(LogbookError, ValueError):
    """Empty or malformed logbook/entry identifier."""


class InvalidFormat(LogbookError, ValueError):
    """Hash or external reference does not match its canonical format."""


class InvalidValue(LogbookError, ValueError):
    """Negative or non-integer timestamp/sequence number."""


class EntryExists(LogbookError):
    """An entry with the same name is already in the logbook."""


class CorruptStore(LogbookError):
    """A persisted document could not be parsed. Never repaired automatically."""

    def __init__(self, location: str, reason: str):
        self.location = location
        self.reason = reason
        super().__init__(f"Corrupted store at {location}: {reason}")


class MissingContent(LogbookError):
    """Entry content required by the operation is absent."""

    def __init__(self, entry_name: str, index: int | None = None):
        self.entry_name = entry_name
        self.index = index
        where = f"entry {index} ({entry_name})" if index is not None else f"entry {entry_name}"
        super().__init__(f"{where}: content not found")


class UnreadableContent(LogbookError):
    """Entry content or proof is present but cannot be decoded as UTF-8 text."""

    def __init__(self, entry_name: str, reason: str):
        self.entry_name = entry_name
        self.reason = reason
        super().__init__(f"entry {entry_name}: {reason}")


class LedgerUnavailable(LogbookError):
    """The ledger could not be reached or answered with garbage. Callers may retry."""


class VerificationIncomplete(LogbookError):
    """A verification step that needs the ledger could not run."""
