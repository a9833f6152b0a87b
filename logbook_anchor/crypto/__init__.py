from logbook_anchor.crypto.hashing import (GENESIS_HASH, build_payload, canonical_json,
                                           hash_bytes, hash_content, normalize_hash)
from logbook_anchor.crypto.keys import KeyPair, verify_json_signature
from logbook_anchor.crypto.merkle import (EMPTY_ROOT, MerkleProof, MerkleTree, build_tree,
                                          get_proof, merkle_root, running_roots, verify_proof)
__all__ = ["EMPTY_ROOT", "GENESIS_HASH", "KeyPair", "MerkleProof", "MerkleTree", "build_payload",
           "build_tree", "canonical_json", "get_proof", "hash_bytes", "hash_content", "merkle_root",
           "normalize_hash", "running_roots", "verify_json_signature", "verify_proof"]
