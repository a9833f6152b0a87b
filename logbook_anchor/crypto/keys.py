"""Ed25519 signing identity used by the reference ledger."""
from __future__ import annotations
import base64, logging
from dataclasses import dataclass
from pathlib import Path
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import (
    Encoding, NoEncryption, PrivateFormat, PublicFormat, load_pem_private_key,
)
from logbook_anchor.crypto.hashing import canonical_json

logger = logging.getLogger("logbook.keys")


def verify_json_signature(identity: str, signature_b64: str, obj: dict) -> bool:
    """Check ``signature_b64`` over ``obj`` against the base64 raw public key ``identity``."""
    try:
        public_key = Ed25519PublicKey.from_public_bytes(base64.b64decode(identity))
        public_key.verify(base64.b64decode(signature_b64), canonical_json(obj))
        return True
    except (InvalidSignature, ValueError):
        return False


@dataclass(frozen=True)
class KeyPair:
    private_key: Ed25519PrivateKey
    public_key: Ed25519PublicKey

    @classmethod
    def generate(cls) -> KeyPair:
        pk = Ed25519PrivateKey.generate()
        return cls(private_key=pk, public_key=pk.public_key())

    @classmethod
    def from_private_pem(cls, pem_data: bytes) -> KeyPair:
        priv = load_pem_private_key(pem_data, password=None)
        if not isinstance(priv, Ed25519PrivateKey):
            raise ValueError("identity key must be an Ed25519 private key")
        return cls(private_key=priv, public_key=priv.public_key())

    @classmethod
    def load_or_create(cls, private_path: str | Path) -> KeyPair:
        path = Path(private_path)
        if path.exists():
            return cls.from_private_pem(path.read_bytes())
        keys = cls.generate()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(keys.export_private_pem())
        logger.info(f"Generated new ledger identity key at {path}")
        return keys

    @property
    def identity(self) -> str:
        return self.public_key_b64()

    def sign(self, data: bytes) -> str:
        return base64.b64encode(self.private_key.sign(data)).decode("ascii")

    def sign_json(self, obj: dict) -> str:
        return self.sign(canonical_json(obj))

    def verify_json(self, signature_b64: str, obj: dict) -> bool:
        return verify_json_signature(self.identity, signature_b64, obj)

    def public_key_b64(self) -> str:
        raw = self.public_key.public_bytes(Encoding.Raw, PublicFormat.Raw)
        return base64.b64encode(raw).decode("ascii")

    def export_private_pem(self) -> bytes:
        return self.private_key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
