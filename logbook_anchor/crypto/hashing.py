"""Content hashing: the identity primitive for every logbook entry."""
from __future__ import annotations
import hashlib, json


def hash_bytes(data: bytes) -> str:
    return "0x" + hashlib.sha256(data).hexdigest()


def hash_content(content: str) -> str:
    """SHA-256 over the UTF-8 bytes of ``content`` as ``0x`` + 64 lowercase hex."""
    return hash_bytes(content.encode("utf-8"))


def normalize_hash(value: str) -> str:
    return value.strip().lower()


def build_payload(name: str, entry_hash: str) -> str:
    return f"logbook:{name}:{entry_hash}"


def canonical_json(obj: dict) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


GENESIS_HASH = hash_content("genesis")
