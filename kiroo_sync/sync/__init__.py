"""Sync reconciliation engine shared by the REST route and the RPC procedures."""

from .engine import push_document
from .errors import EntitySyncError, PayloadValidationError, SyncError, SyncFailedError
from .outcome import SyncOutcome, record_failed_sync
from .serializer import PulledDocument, document_size, pull_document
from .store import SyncStore
from .wire import BACKUP_FORMAT, RPC_FORMAT, WireFormat, parse_document

__all__ = [
    "BACKUP_FORMAT",
    "RPC_FORMAT",
    "EntitySyncError",
    "PayloadValidationError",
    "PulledDocument",
    "SyncError",
    "SyncFailedError",
    "SyncOutcome",
    "SyncStore",
    "WireFormat",
    "document_size",
    "parse_document",
    "pull_document",
    "push_document",
    "record_failed_sync",
]
