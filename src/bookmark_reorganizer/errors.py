from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import RootBackup


class ReorganizerError(Exception):
    """Base class for reorganization engine failures."""


class StoreOperationError(ReorganizerError):
    """A bookmark store call failed; the remaining steps were not issued.

    ``backup`` holds the snapshot taken before the store was touched, when one
    exists, so the caller can restore from it.
    """

    def __init__(
        self,
        message: str,
        *,
        phase: str = "",
        backup: RootBackup | None = None,
        completed: int = 0,
    ) -> None:
        super().__init__(message)
        self.phase = phase
        self.backup = backup
        self.completed = completed

    @property
    def recoverable(self) -> bool:
        return self.backup is not None


class BookmarkNotFoundError(StoreOperationError):
    pass


class ConcurrentOperationRejected(ReorganizerError):
    def __init__(self, requested: str, active: str) -> None:
        super().__init__(f"Cannot start '{requested}' while '{active}' is in progress.")
        self.requested = requested
        self.active = active


class ProviderConfigError(ReorganizerError):
    pass
