"""
access.py - Caller identity checks for market operations.

An AccessGate is bound once, when a market is created, and passed the
caller identity on every operation. There is no ambient "current sender":
tests and callers construct any identity they like.
"""

from __future__ import annotations
from dataclasses import dataclass

from .core import AccessDenied


OWNER_ONLY_MESSAGE = "Ownable: caller is not the owner"
REGISTRY_ONLY_MESSAGE = "caller is not the registry"


@dataclass(frozen=True, slots=True)
class AccessGate:
    """
    Immutable access-control context.

    Attributes:
        administrator: Identity allowed to pause, unpause and declare results.
        registry: Identity of the owning registry, the only caller allowed to
                  trigger emergency withdrawal. A lookup key, not a handle.
    """
    administrator: str
    registry: str

    def __post_init__(self):
        if not self.administrator or not self.administrator.strip():
            raise ValueError("administrator cannot be empty")
        if not self.registry or not self.registry.strip():
            raise ValueError("registry cannot be empty")
        if self.administrator == self.registry:
            raise ValueError("administrator and registry must be distinct identities")

    def is_administrator(self, caller: str) -> bool:
        return caller == self.administrator

    def is_registry(self, caller: str) -> bool:
        return caller == self.registry

    def require_administrator(self, caller: str) -> None:
        if not self.is_administrator(caller):
            raise AccessDenied(OWNER_ONLY_MESSAGE)

    def require_registry(self, caller: str) -> None:
        if not self.is_registry(caller):
            raise AccessDenied(REGISTRY_ONLY_MESSAGE)
