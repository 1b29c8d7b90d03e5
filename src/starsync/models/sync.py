"""Per-run value objects: progress events and the final result. Not persisted."""
from dataclasses import dataclass, field
from typing import Any, Dict, List

STAGES = ("fetching", "saving", "updates", "complete")


@dataclass(frozen=True)
class SyncProgress:
    stage: str  # one of STAGES
    current: int
    total: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "current": self.current,
            "total": self.total,
            "message": self.message,
        }


@dataclass
class SyncResult:
    """Outcome of one sync run for one user."""

    success: bool
    user_id: int
    repos_synced: int = 0
    updates_detected: int = 0
    errors: List[str] = field(default_factory=list)
    duration: int = 0  # milliseconds
    skipped: bool = False  # sync disabled for this user

    def to_dict(self) -> Dict[str, Any]:
        """camelCase JSON form used by the HTTP layer."""
        return {
            "success": self.success,
            "userId": self.user_id,
            "reposSynced": self.repos_synced,
            "updatesDetected": self.updates_detected,
            "errors": list(self.errors),
            "duration": self.duration,
            "skipped": self.skipped,
        }
