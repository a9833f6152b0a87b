"""Code version fingerprints recorded in proofs and exports."""
from __future__ import annotations
import abc
from logbook_anchor import __version__
from logbook_anchor.crypto.hashing import hash_content

PACKAGE_NAME = "logbook-anchor"


class CodeVersionProvider(abc.ABC):
    @abc.abstractmethod
    def current(self) -> str:
        ...


class PackageVersionProvider(CodeVersionProvider):
    """Hash of ``name@version`` for the running build."""

    def __init__(self, name: str = PACKAGE_NAME, version: str | None = None) -> None:
        self.name = name
        self.version = version or __version__

    def current(self) -> str:
        return hash_content(f"{self.name}@{self.version}")


class StaticCodeVersion(CodeVersionProvider):
    def __init__(self, value: str) -> None:
        self.value = value

    def current(self) -> str:
        return self.value
