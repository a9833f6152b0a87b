"""Reference ledger: a signed, append-only JSON document.

Stands in for a smart-contract ledger when running without one. Records are
kept per signer identity and per logbook, signed with the identity's Ed25519
key, and numbered with a sequence counter shared by every logbook.
"""
from __future__ import annotations
import json, logging, os, threading, time
from pathlib import Path
from typing import Callable
from logbook_anchor.crypto.hashing import GENESIS_HASH, hash_content, normalize_hash
from logbook_anchor.crypto.keys import KeyPair, verify_json_signature
from logbook_anchor.errors import InvalidFormat, InvalidName, LedgerUnavailable
from logbook_anchor.ledger.base import AnchorReceipt, Ledger, LedgerEntry, LedgerValidation
from logbook_anchor.validators import is_entry_hash, validate_name

logger = logging.getLogger("logbook.ledger")


def _signable(logbook_name: str, record: dict) -> dict:
    return {"logbook": logbook_name, "name": record["name"], "entryHash": record["entryHash"],
            "previousHash": record["previousHash"], "timestamp": record["timestamp"],
            "blockNumber": record["blockNumber"]}


class LocalLedger(Ledger):
    def __init__(self, path: str | Path | None = None, key_pair: KeyPair | None = None,
                 explorer_url: str | None = None, clock: Callable[[], float] = time.time) -> None:
        self._path = Path(path) if path else None
        self._keys = key_pair or KeyPair.generate()
        self._clock = clock
        self._lock = threading.Lock()
        self._doc: dict = {"sequence": 0, "records": {}}
        self.identity = self._keys.identity
        self.explorer_url = explorer_url

    def anchor(self, logbook_name: str, entry_name: str, entry_hash: str,
               previous_hash: str) -> AnchorReceipt:
        for value, label in ((logbook_name, "logbook"), (entry_name, "entry")):
            problem = validate_name(value)
            if problem:
                raise InvalidName(f"Invalid {label} name {value!r}: {problem}")
        logbook_name, entry_name = logbook_name.strip(), entry_name.strip()
        if not is_entry_hash(entry_hash):
            raise InvalidFormat(f"Invalid entryHash format: {entry_hash}")
        if not is_entry_hash(previous_hash):
            raise InvalidFormat(f"Invalid previousHash format: {previous_hash}")

        with self._lock:
            doc = self._load()
            doc["sequence"] += 1
            record = {"name": entry_name, "entryHash": normalize_hash(entry_hash),
                      "previousHash": normalize_hash(previous_hash),
                      "timestamp": int(self._clock()), "blockNumber": doc["sequence"]}
            record["signature"] = self._keys.sign_json(_signable(logbook_name, record))
            record["txHash"] = hash_content(record["signature"])
            doc["records"].setdefault(self.identity, {}).setdefault(logbook_name, []).append(record)
            self._save(doc)
        logger.info(f"Anchored '{entry_name}' in '{logbook_name}' at sequence {record['blockNumber']} "
                    f"(tx {record['txHash'][:18]}...)")
        return AnchorReceipt(external_ref=record["txHash"], confirmed_sequence_number=record["blockNumber"])

    def get_all_entries(self, logbook_name: str, identity: str | None = None) -> list[LedgerEntry]:
        return [LedgerEntry.from_dict(r) for r in self._records(logbook_name, identity)]

    def validate_chain(self, logbook_name: str, identity: str | None = None) -> LedgerValidation:
        signer = identity or self.identity
        records = self._records(logbook_name, signer)
        for i, record in enumerate(records):
            expected = GENESIS_HASH if i == 0 else records[i - 1]["entryHash"]
            if record["previousHash"] != expected:
                return LedgerValidation(valid=False, broken_at_index=i)
            if not verify_json_signature(signer, record.get("signature", ""), _signable(logbook_name, record)):
                return LedgerValidation(valid=False, broken_at_index=i)
        return LedgerValidation(valid=True, broken_at_index=0)

    def get_logbook_names(self, identity: str | None = None) -> set[str]:
        with self._lock:
            doc = self._load()
        return set(doc["records"].get(identity or self.identity, {}))

    def _records(self, logbook_name: str, identity: str | None) -> list[dict]:
        with self._lock:
            doc = self._load()
        return list(doc["records"].get(identity or self.identity, {}).get(logbook_name, []))

    def _load(self) -> dict:
        if self._path is None or not self._path.exists():
            return self._doc
        try:
            doc = json.loads(self._path.read_bytes().decode("utf-8"))
            if not isinstance(doc.get("records"), dict) or not isinstance(doc.get("sequence"), int):
                raise ValueError("missing records/sequence")
        except (OSError, ValueError, AttributeError) as e:
            logger.error(f"Ledger document {self._path} unreadable: {e}")
            raise LedgerUnavailable(f"Ledger document {self._path} unreadable: {e}") from e
        self._doc = doc
        return doc

    def _save(self, doc: dict) -> None:
        self._doc = doc
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_name(f".{self._path.name}.{os.getpid()}.tmp")
            tmp.write_bytes(json.dumps(doc, indent=2, sort_keys=True).encode("utf-8"))
            os.replace(tmp, self._path)
        except OSError as e:
            raise LedgerUnavailable(f"Ledger document {self._path} not writable: {e}") from e
