"""Data models shared by the evaluators, stores, updater and orchestrator."""

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class GrowthResult:
    """Outcome of comparing two directory size samples."""
    alert: bool
    percent_change: float | None    # None when there is no baseline
    diff_bytes: int                 # current - previous, may be negative


@dataclass(frozen=True)
class PartitionSample:
    """Utilization of one mounted partition."""
    target: str         # mount point
    used_pct: float     # 0 to 100


@dataclass
class UpdateState:
    """Update bookkeeping that survives the self-replace boundary."""
    running_version: str
    pending_alert: str | None = None


class UpdatePhase(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    VALIDATING = "validating"
    MERGING = "merging"
    BACKING_UP = "backing_up"
    SWAPPING = "swapping"
    RELAUNCHED = "relaunched"


@dataclass
class UpdateOutcome:
    """Where the updater stopped, and what the operator should be told."""
    phase: UpdatePhase
    alert_text: str = ""
    remote_version: str = ""
    backup_path: str = ""

    @property
    def updated(self) -> bool:
        return self.phase == UpdatePhase.RELAUNCHED


@dataclass
class Message:
    """A composed outbound mail: plain-text body plus text attachments."""
    subject: str
    body: str
    attachments: list[tuple[str, str]] = field(default_factory=list)  # (filename, text)
