"""
access.py - Capabilities owned by the engines

Each engine holds these as fields (engine.access, engine.initializer,
engine.pause, engine.guard) rather than inheriting them.
"""

from __future__ import annotations
from typing import Optional

from .core import AlreadyInitialized, NotInitialized, Paused, ReentrantCall, Unauthorized


class AccessControl:
    """Single-owner permission check for governance setters."""

    def __init__(self, owner: str):
        if not owner:
            raise ValueError("owner cannot be empty")
        self.owner = owner

    def require_owner(self, caller: str) -> None:
        if caller != self.owner:
            raise Unauthorized(f"{caller} is not the owner")

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.require_owner(caller)
        if not new_owner:
            raise ValueError("new owner cannot be empty")
        self.owner = new_owner


class OneTimeInit:
    """Guards an initializer so it runs exactly once."""

    def __init__(self):
        self.initialized = False

    def initialize(self) -> None:
        if self.initialized:
            raise AlreadyInitialized("already initialized")
        self.initialized = True

    def require_initialized(self) -> None:
        if not self.initialized:
            raise NotInitialized("not initialized")


class PauseControl:
    """Owner-operated circuit breaker for state-changing user operations."""

    def __init__(self):
        self.paused = False

    def require_not_paused(self) -> None:
        if self.paused:
            raise Paused("paused")

    def set_paused(self, value: bool) -> None:
        self.paused = value


class ReentrancyGuard:
    """
    Non-reentrant section.

    Used as a context manager around a whole operation. A second entry while
    the first is still running raises ReentrantCall; the lock is released on
    every exit path.

    Example:
        with self.guard:
            self._deploy()
    """

    def __init__(self, name: str = ""):
        self.name = name
        self._holder: Optional[str] = None

    @property
    def locked(self) -> bool:
        return self._holder is not None

    def __enter__(self) -> ReentrancyGuard:
        if self._holder is not None:
            raise ReentrantCall(f"{self.name}: re-entered during {self._holder}")
        self._holder = self.name or "operation"
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._holder = None
