"""Export bundles: a portable, independently verifiable copy of a logbook.

A bundle is a ZIP archive holding ``metadata.json`` (metadata plus every
entry, content included) and ``entries/<name>/entry.txt`` and
``entries/<name>/proof.txt`` for each entry. Verification only needs the
:class:`BundleSource` accessors, so in-memory bundles and archives are
interchangeable.
"""
from __future__ import annotations
import abc, json, logging, os, zipfile
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from logbook_anchor.chain.persistence import PROOF_FILE
from logbook_anchor.chain.store import ChainStore
from logbook_anchor.crypto.hashing import GENESIS_HASH, hash_content
from logbook_anchor.errors import CorruptStore, MissingContent, UnreadableContent
from logbook_anchor.provenance import CodeVersionProvider

logger = logging.getLogger("logbook.bundle")

BUNDLE_VERSION = "1.0.0"
METADATA_FILE = "metadata.json"


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class BundleMetadata:
    logbook_name: str
    logbook_name_hash: str
    identity: str
    chain_id: int
    total_entries: int
    export_date: str
    code_version_hash: str | None = None
    version: str = BUNDLE_VERSION

    def to_dict(self) -> dict:
        return {"version": self.version, "logbookName": self.logbook_name,
                "logbookNameHash": self.logbook_name_hash, "exportDate": self.export_date,
                "totalEntries": self.total_entries, "walletAddress": self.identity,
                "chainId": self.chain_id, "codeHash": self.code_version_hash}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> BundleMetadata:
        return cls(logbook_name=d["logbookName"], logbook_name_hash=d.get("logbookNameHash", ""),
                   identity=d.get("walletAddress", ""), chain_id=int(d.get("chainId", 0)),
                   total_entries=int(d.get("totalEntries", 0)), export_date=d.get("exportDate", ""),
                   code_version_hash=d.get("codeHash"), version=d.get("version", BUNDLE_VERSION))


@dataclass
class BundleEntry:
    index: int
    name: str
    entry_hash: str
    previous_hash: str
    external_ref: str
    timestamp: int
    block_number: int
    merkle_root: str
    content: str | None = None

    def to_dict(self) -> dict:
        d = {"index": self.index, "name": self.name, "entryHash": self.entry_hash,
             "previousHash": self.previous_hash, "txHash": self.external_ref,
             "timestamp": self.timestamp, "blockNumber": self.block_number,
             "merkleRoot": self.merkle_root}
        if self.content is not None:
            d["content"] = self.content
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> BundleEntry:
        return cls(index=int(d["index"]), name=d["name"], entry_hash=d["entryHash"],
                   previous_hash=d["previousHash"], external_ref=d.get("txHash", ""),
                   timestamp=int(d.get("timestamp", 0)), block_number=int(d.get("blockNumber", 0)),
                   merkle_root=d.get("merkleRoot", ""), content=d.get("content"))


class BundleSource(abc.ABC):
    """Read side of a bundle, as consumed by the verifier."""

    @abc.abstractmethod
    def read_metadata(self) -> tuple[BundleMetadata, list[BundleEntry]]:
        """Metadata and entries; entry content is not loaded here."""

    @abc.abstractmethod
    def read_entry_content(self, name: str) -> str:
        """Content of entry ``name``; raises MissingContent when absent."""

    @abc.abstractmethod
    def read_entry_proof(self, name: str) -> str | None:
        ...


@dataclass
class ExportBundle(BundleSource):
    metadata: BundleMetadata
    entries: list[BundleEntry] = field(default_factory=list)
    proofs: dict[str, str] = field(default_factory=dict)

    def read_metadata(self) -> tuple[BundleMetadata, list[BundleEntry]]:
        return self.metadata, [replace(e, content=None) for e in self.entries]

    def read_entry_content(self, name: str) -> str:
        for e in self.entries:
            if e.name == name and e.content is not None:
                return e.content
        raise MissingContent(name)

    def read_entry_proof(self, name: str) -> str | None:
        return self.proofs.get(name)

    def to_dict(self) -> dict:
        return {"metadata": self.metadata.to_dict(), "entries": [e.to_dict() for e in self.entries]}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


def export_bundle(store: ChainStore, identity: str, chain_id: int,
                  code_version: CodeVersionProvider, now: datetime | None = None) -> ExportBundle:
    """Snapshot ``store`` with entry content and proofs; every entry must have content."""
    entries = store.entries()
    bundle_entries, proofs = [], {}
    for index, entry in enumerate(entries):
        content = store.read_content(entry.name)
        if content is None:
            raise MissingContent(entry.name, index)
        bundle_entries.append(BundleEntry(
            index=index, name=entry.name, entry_hash=entry.entry_hash,
            previous_hash=entry.previous_hash or GENESIS_HASH, external_ref=entry.external_ref,
            timestamp=entry.timestamp, block_number=entry.block_number,
            merkle_root=entry.merkle_root, content=content))
        proof = store.persistence.read_entry_file(store.logbook_name, entry.name, PROOF_FILE)
        if proof is not None:
            proofs[entry.name] = proof

    metadata = BundleMetadata(
        logbook_name=store.logbook_name, logbook_name_hash=hash_content(store.logbook_name),
        identity=identity, chain_id=chain_id, total_entries=len(entries),
        export_date=_iso(now or datetime.now(timezone.utc)), code_version_hash=code_version.current())
    logger.info(f"Exported {len(entries)} entries from '{store.logbook_name}'")
    return ExportBundle(metadata=metadata, entries=bundle_entries, proofs=proofs)


def bundle_filename(logbook_name: str, when: datetime | None = None) -> str:
    stamp = (when or datetime.now(timezone.utc)).astimezone(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"{logbook_name}_{stamp}.zip"


def write_bundle_zip(bundle: ExportBundle, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    with zipfile.ZipFile(tmp, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(METADATA_FILE, bundle.to_json())
        for entry in bundle.entries:
            if entry.content is not None:
                zf.writestr(f"entries/{entry.name}/entry.txt", entry.content.encode("utf-8"))
            proof = bundle.proofs.get(entry.name)
            if proof is not None:
                zf.writestr(f"entries/{entry.name}/proof.txt", proof.encode("utf-8"))
    os.replace(tmp, path)
    logger.info(f"Bundle written: {path} ({path.stat().st_size} bytes)")
    return path


class ZipBundleReader(BundleSource):
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        try:
            self._zip = zipfile.ZipFile(self.path)
        except (OSError, zipfile.BadZipFile) as e:
            raise CorruptStore(str(self.path), f"not a readable ZIP archive: {e}") from e
        self._metadata: BundleMetadata | None = None
        self._entries: list[BundleEntry] = []

    def __enter__(self) -> ZipBundleReader:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._zip.close()

    def read_metadata(self) -> tuple[BundleMetadata, list[BundleEntry]]:
        if self._metadata is None:
            try:
                data = json.loads(self._zip.read(METADATA_FILE).decode("utf-8"))
                self._metadata = BundleMetadata.from_dict(data["metadata"])
                self._entries = [BundleEntry.from_dict(e) for e in data["entries"]]
            except KeyError as e:
                raise CorruptStore(str(self.path), f"invalid export: missing {e}") from e
            except (ValueError, TypeError) as e:
                raise CorruptStore(str(self.path), f"invalid metadata format: {e}") from e
        return self._metadata, [replace(e, content=None) for e in self._entries]

    def read_entry_content(self, name: str) -> str:
        try:
            raw = self._zip.read(f"entries/{name}/entry.txt")
        except KeyError:
            raw = None
        if raw is not None:
            return _decode(name, raw, "content")
        self.read_metadata()
        for e in self._entries:
            if e.name == name and e.content is not None:
                return e.content
        raise MissingContent(name)

    def read_entry_proof(self, name: str) -> str | None:
        try:
            raw = self._zip.read(f"entries/{name}/proof.txt")
        except KeyError:
            return None
        return _decode(name, raw, "proof")


def _decode(name: str, raw: bytes, what: str) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise UnreadableContent(name, f"{what} is not valid UTF-8 (byte {e.start})") from e
