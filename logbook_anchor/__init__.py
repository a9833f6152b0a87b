"""Logbook Anchor: tamper-evident logbooks anchored to an append-only ledger."""
__version__ = "0.1.0"
from logbook_anchor.core import CreatedEntry, Logbook, LogbookConfig
from logbook_anchor.chain import ChainStore, Entry, FilePersistence, S3Persistence, ValidationReport
from logbook_anchor.crypto import GENESIS_HASH, KeyPair, MerkleTree, hash_content
from logbook_anchor.ledger import Ledger, LedgerEntry, LocalLedger
from logbook_anchor.reconcile import ReconciliationEngine, ReconciliationState
from logbook_anchor.verifier import BundleVerifier, Verdict
__all__ = ["BundleVerifier", "ChainStore", "CreatedEntry", "Entry", "FilePersistence", "GENESIS_HASH",
           "KeyPair", "Ledger", "LedgerEntry", "LocalLedger", "Logbook", "LogbookConfig", "MerkleTree",
           "ReconciliationEngine", "ReconciliationState", "S3Persistence", "ValidationReport", "Verdict",
           "hash_content"]
