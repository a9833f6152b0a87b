from logbook_anchor.chain.models import (PLACEHOLDER_MARKER, RECONSTRUCTED_REF, Chain, Entry, Finding,
                                         FindingStatus, ValidationReport, build_placeholder_content,
                                         is_placeholder)
from logbook_anchor.chain.persistence import ChainPersistence, FilePersistence, S3Persistence
from logbook_anchor.chain.store import ChainStore
__all__ = ["PLACEHOLDER_MARKER", "RECONSTRUCTED_REF", "Chain", "ChainPersistence", "ChainStore", "Entry",
           "FilePersistence", "Finding", "FindingStatus", "S3Persistence", "ValidationReport",
           "build_placeholder_content", "is_placeholder"]
