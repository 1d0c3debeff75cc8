"""API routes."""

from .api_keys import router as api_keys_router
from .backup import router as backup_router
from .data import router as data_router
from .manga import router as manga_router
from .sync import router as sync_router
from .sync import rpc_router as sync_rpc_router

__all__ = [
    "sync_router",
    "sync_rpc_router",
    "manga_router",
    "api_keys_router",
    "backup_router",
    "data_router",
]
