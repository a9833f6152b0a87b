"""Merkle tree over the ordered entry hashes of a logbook.

Sibling pairs are sorted before they are combined, so a proof is a flat list
of hashes and verifying it never needs left/right directions. An unpaired
node at the end of a level is carried up unchanged. Leaves are the SHA-256 of
the entry hash text, internal nodes the SHA-256 of both children's raw bytes.
"""
from __future__ import annotations
import hashlib
from dataclasses import dataclass, field

EMPTY_ROOT = "0x" + "0" * 64


def _digest(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def _to_hex(node: bytes) -> str:
    return "0x" + node.hex()


def _from_hex(value: str) -> bytes:
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


def hash_leaf(leaf: str) -> bytes:
    return _digest(leaf.encode("utf-8"))


def hash_pair(left: bytes, right: bytes) -> bytes:
    return _digest(min(left, right) + max(left, right))


@dataclass
class MerkleProof:
    leaf: str
    proof_hashes: list[str]
    root_hash: str

    def verify(self) -> bool:
        return verify_proof(self.proof_hashes, self.leaf, self.root_hash)

    def to_dict(self) -> dict:
        return {"leaf": self.leaf, "proof_hashes": list(self.proof_hashes), "root_hash": self.root_hash}


@dataclass
class MerkleTree:
    leaves: list[str] = field(default_factory=list)
    _levels: list[list[bytes]] = field(default_factory=list, repr=False)

    @property
    def root_hash(self) -> str:
        if not self.leaves: return EMPTY_ROOT
        if not self._levels: self._rebuild()
        return _to_hex(self._levels[-1][0])

    @property
    def size(self) -> int:
        return len(self.leaves)

    def append(self, leaf: str) -> str:
        self.leaves.append(leaf)
        self._rebuild()
        return self.root_hash

    def get_proof(self, leaf: str) -> MerkleProof | None:
        """Proof for the first occurrence of ``leaf``, or None when absent."""
        try:
            index = self.leaves.index(leaf)
        except ValueError:
            return None
        return self.get_proof_by_index(index)

    def get_proof_by_index(self, index: int) -> MerkleProof:
        if not self._levels: self._rebuild()
        proof_hashes = []
        idx = index
        for level in self._levels[:-1]:
            sibling = idx + 1 if idx % 2 == 0 else idx - 1
            if sibling < len(level):
                proof_hashes.append(_to_hex(level[sibling]))
            idx //= 2
        return MerkleProof(leaf=self.leaves[index], proof_hashes=proof_hashes, root_hash=self.root_hash)

    def _rebuild(self) -> None:
        if not self.leaves:
            self._levels = []
            return
        levels: list[list[bytes]] = [[hash_leaf(leaf) for leaf in self.leaves]]
        current = levels[0]
        while len(current) > 1:
            next_level = []
            for i in range(0, len(current), 2):
                if i + 1 < len(current):
                    next_level.append(hash_pair(current[i], current[i + 1]))
                else:
                    next_level.append(current[i])
            levels.append(next_level)
            current = next_level
        self._levels = levels

    def to_dict(self) -> dict:
        return {"leaves": self.leaves, "root_hash": self.root_hash, "size": self.size}


def build_tree(leaves: list[str]) -> MerkleTree:
    tree = MerkleTree(leaves=list(leaves))
    tree._rebuild()
    return tree


def merkle_root(tree: MerkleTree) -> str:
    return tree.root_hash


def get_proof(tree: MerkleTree, leaf: str) -> list[str]:
    """Sibling hashes from ``leaf`` up to the root; empty if ``leaf`` is not in the tree."""
    proof = tree.get_proof(leaf)
    return proof.proof_hashes if proof else []


def verify_proof(proof: list[str], leaf: str, root: str) -> bool:
    current = hash_leaf(leaf)
    for sibling in proof:
        current = hash_pair(current, _from_hex(sibling))
    return _to_hex(current) == root.lower()


def running_roots(leaves: list[str]) -> list[str]:
    """Root of every prefix ``leaves[0..i]``, in order."""
    tree = MerkleTree()
    return [tree.append(leaf) for leaf in leaves]
