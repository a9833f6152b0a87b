from logbook_anchor.ledger.base import AnchorReceipt, Ledger, LedgerEntry, LedgerValidation
from logbook_anchor.ledger.local import LocalLedger
__all__ = ["AnchorReceipt", "Ledger", "LedgerEntry", "LedgerValidation", "LocalLedger"]
