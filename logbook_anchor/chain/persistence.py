"""Persistence backends for chain documents and entry files.

A logbook is stored as one chain document (``chain.json``) plus one folder
per entry holding ``entry.txt`` and ``proof.txt``. Backends must replace the
chain document atomically and must hand back raw text so that the store can
tell a malformed document from a missing one.
"""
from __future__ import annotations
import abc, logging, os
from pathlib import Path
import boto3
from botocore.exceptions import ClientError
from logbook_anchor.errors import InvalidName
from logbook_anchor.validators import validate_stored_name

logger = logging.getLogger("logbook.persistence")

CHAIN_DOCUMENT = "chain.json"
ENTRY_FILE = "entry.txt"
PROOF_FILE = "proof.txt"


class ChainPersistence(abc.ABC):

    @abc.abstractmethod
    def exists(self, logbook: str) -> bool:
        ...

    @abc.abstractmethod
    def read_chain(self, logbook: str) -> str | None:
        """Raw chain document, or None when nothing has been persisted yet."""

    @abc.abstractmethod
    def write_chain(self, logbook: str, document: str) -> None:
        """Replace the chain document in one step; readers see the old or the new one."""

    @abc.abstractmethod
    def read_entry_file(self, logbook: str, entry_name: str, filename: str = ENTRY_FILE) -> str | None:
        ...

    @abc.abstractmethod
    def write_entry_file(self, logbook: str, entry_name: str, text: str, filename: str = ENTRY_FILE) -> None:
        ...

    @abc.abstractmethod
    def entry_exists(self, logbook: str, entry_name: str) -> bool:
        ...

    @abc.abstractmethod
    def list_logbooks(self) -> list[str]:
        ...

    def describe(self, logbook: str) -> str:
        return logbook


class FilePersistence(ChainPersistence):
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def logbook_dir(self, logbook: str) -> Path:
        return self.root / logbook

    def _entry_dir(self, logbook: str, entry_name: str) -> Path:
        problem = validate_stored_name(entry_name)
        if problem:
            raise InvalidName(f"Invalid entry name {entry_name!r}: {problem}")
        return self.logbook_dir(logbook) / entry_name

    def describe(self, logbook: str) -> str:
        return str(self.logbook_dir(logbook) / CHAIN_DOCUMENT)

    def exists(self, logbook: str) -> bool:
        return self.logbook_dir(logbook).is_dir()

    def read_chain(self, logbook: str) -> str | None:
        return self._read(self.logbook_dir(logbook) / CHAIN_DOCUMENT)

    def write_chain(self, logbook: str, document: str) -> None:
        self._atomic_write(self.logbook_dir(logbook) / CHAIN_DOCUMENT, document)

    def read_entry_file(self, logbook: str, entry_name: str, filename: str = ENTRY_FILE) -> str | None:
        return self._read(self._entry_dir(logbook, entry_name) / filename)

    def write_entry_file(self, logbook: str, entry_name: str, text: str, filename: str = ENTRY_FILE) -> None:
        self._atomic_write(self._entry_dir(logbook, entry_name) / filename, text)

    def entry_exists(self, logbook: str, entry_name: str) -> bool:
        return self._entry_dir(logbook, entry_name).is_dir()

    def list_logbooks(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_dir() and not p.name.startswith("."))

    @staticmethod
    def _read(path: Path) -> str | None:
        if not path.exists():
            return None
        # bytes, not read_text: newline translation would change content hashes
        return path.read_bytes().decode("utf-8")

    @staticmethod
    def _atomic_write(path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        with open(tmp, "wb") as f:
            f.write(text.encode("utf-8"))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)


class S3Persistence(ChainPersistence):
    """Stores each logbook under ``s3://<bucket>/<prefix>/<logbook>/``.

    A single PUT replaces an object as a whole, which gives the atomic
    document replace the store relies on.
    """

    def __init__(self, bucket: str, prefix: str = "logbooks", client=None, region: str | None = None) -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.client = client or boto3.client("s3", region_name=region)

    def _key(self, *parts: str) -> str:
        return "/".join([self.prefix, *parts]) if self.prefix else "/".join(parts)

    def describe(self, logbook: str) -> str:
        return f"s3://{self.bucket}/{self._key(logbook, CHAIN_DOCUMENT)}"

    def exists(self, logbook: str) -> bool:
        return self._has_prefix(self._key(logbook) + "/")

    def read_chain(self, logbook: str) -> str | None:
        return self._get(self._key(logbook, CHAIN_DOCUMENT))

    def write_chain(self, logbook: str, document: str) -> None:
        self._put(self._key(logbook, CHAIN_DOCUMENT), document, "application/json")

    def read_entry_file(self, logbook: str, entry_name: str, filename: str = ENTRY_FILE) -> str | None:
        return self._get(self._key(logbook, entry_name, filename))

    def write_entry_file(self, logbook: str, entry_name: str, text: str, filename: str = ENTRY_FILE) -> None:
        self._put(self._key(logbook, entry_name, filename), text, "text/plain; charset=utf-8")

    def entry_exists(self, logbook: str, entry_name: str) -> bool:
        return self._has_prefix(self._key(logbook, entry_name) + "/")

    def list_logbooks(self) -> list[str]:
        base = self._key("") if self.prefix else ""
        names = []
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=base, Delimiter="/"):
            for cp in page.get("CommonPrefixes", []):
                names.append(cp["Prefix"][len(base):].rstrip("/"))
        return sorted(names)

    def _has_prefix(self, prefix: str) -> bool:
        resp = self.client.list_objects_v2(Bucket=self.bucket, Prefix=prefix, MaxKeys=1)
        return resp.get("KeyCount", 0) > 0

    def _get(self, key: str) -> str | None:
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            logger.error(f"Could not read s3://{self.bucket}/{key}: {e}")
            raise
        return resp["Body"].read().decode("utf-8")

    def _put(self, key: str, text: str, content_type: str) -> None:
        self.client.put_object(Bucket=self.bucket, Key=key, Body=text.encode("utf-8"),
                               ContentType=content_type)
