"""Exceptions raised by the reconciliation engine."""


class SyncError(Exception):
    """Base class for sync failures."""


class PayloadValidationError(SyncError):
    """The document does not have the shape of a backup; nothing was applied."""


class EntitySyncError(SyncError):
    """A single record could not be reconciled."""

    def __init__(self, title: str, message: str):
        self.title = title
        super().__init__(f"{title}: {message}")


class SyncFailedError(SyncError):
    """A sync call errored before completion; reported to the client as a 500."""
