"""Per-call sync result accumulation and the audit log."""

from dataclasses import dataclass, field

from supabase import Client

from ..database import insert_sync_history

STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_FAILED = "failed"

PUSH = "push"
PULL = "pull"


@dataclass
class SyncOutcome:
    """Counts and failures collected while reconciling one document."""

    manga_synced: int = 0
    chapters_synced: int = 0
    failed_manga: list[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        return STATUS_PARTIAL if self.failed_manga else STATUS_SUCCESS

    @property
    def error_message(self) -> str | None:
        if not self.failed_manga:
            return None
        return f"Failed to sync {len(self.failed_manga)} manga: {', '.join(self.failed_manga)}"

    def record_failure(self, title: str) -> None:
        self.failed_manga.append(title)

    async def write_audit(self, db: Client, user_id: str, sync_type: str, device_name: str | None) -> None:
        await insert_sync_history(
            db,
            user_id,
            sync_type=sync_type,
            status=self.status,
            device_name=device_name,
            manga_synced=self.manga_synced,
            chapters_synced=self.chapters_synced,
            error_message=self.error_message,
        )


async def record_failed_sync(
    db: Client,
    user_id: str,
    sync_type: str,
    device_name: str | None,
    message: str,
) -> None:
    """Audit row for a call that errored before completion; counts are zero."""
    await insert_sync_history(
        db,
        user_id,
        sync_type=sync_type,
        status=STATUS_FAILED,
        device_name=device_name,
        error_message=message,
    )
