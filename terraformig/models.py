"""Data models for terraformig migrations."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

BACKUP_FILENAME = "terraformig.tfstate.backup"
"""Fixed backup slot inside every store root. Its presence means a backup is live."""

BACKUP_GLOB = "terraformig.tfstate*"
"""Everything matching this pattern in a store root is a terraformig backup artifact."""

LIVE_STATE_FILENAME = "terraform.tfstate"
PLAN_FILENAME = "terraformig.tfplan"
CACHED_BACKEND_STATE = Path(".terraform") / "terraform.tfstate"

LOCAL = "local"
REMOTE = "remote"

APPLY = "apply"
PLAN = "plan"
PURGE = "purge"
ROLLBACK = "rollback"
MODES = (APPLY, PLAN, PURGE, ROLLBACK)


# ---------------------------------------------------------------------------
# State stores and backups
# ---------------------------------------------------------------------------

@dataclass
class StateStore:
    """A Terraform working directory holding one configuration and its state."""

    root: Path
    """Directory containing the ``.tf`` files."""

    backend: str = LOCAL
    """Backend kind: 'local' or 'remote'."""

    initialized: bool = False
    """True once ``terraform init`` has been run by this process."""

    def __post_init__(self) -> None:
        self.root = Path(self.root)

    @property
    def backup_path(self) -> Path:
        return self.root / BACKUP_FILENAME

    @property
    def live_state_path(self) -> Path:
        return self.root / LIVE_STATE_FILENAME

    @property
    def cached_backend_path(self) -> Path:
        return self.root / CACHED_BACKEND_STATE

    @property
    def plan_path(self) -> Path:
        return self.root / PLAN_FILENAME

    @property
    def is_remote(self) -> bool:
        return self.backend == REMOTE

    def cached_backend_type(self) -> str:
        """
        Return the backend type recorded by the last ``terraform init``
        (``.terraform/terraform.tfstate``), or ``'local'`` when none is cached.
        """
        path = self.cached_backend_path
        if not path.is_file():
            return LOCAL
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError):
            return LOCAL
        backend = data.get("backend") or {}
        return backend.get("type") or LOCAL

    def __str__(self) -> str:
        return str(self.root)


@dataclass(frozen=True)
class Backup:
    """A point-in-time snapshot of a store's state content."""

    store: Path
    """Root of the store the snapshot was taken from."""

    path: Path
    """Location of the backup file."""

    content: str
    """Raw state JSON as returned by ``terraform state pull``."""

    created_at: datetime


# ---------------------------------------------------------------------------
# Plan and move records
# ---------------------------------------------------------------------------

@dataclass
class PlannedChange:
    """One ``resource_changes`` entry of a serialized plan."""

    address: str
    """Resource address, e.g. 'module.network.aws_subnet.a[0]'."""

    actions: List[str] = field(default_factory=list)
    """Planned actions, e.g. ['delete'] or ['delete', 'create']."""

    @property
    def is_delete(self) -> bool:
        """True if the action set contains 'delete' (replacements included)."""
        return "delete" in self.actions


MOVED = "moved"
WOULD_MOVE = "would move"
FAILED = "failed"


@dataclass
class MoveOutcome:
    """Result of moving (or simulating the move of) one address."""

    address: str
    status: str
    detail: str = ""


@dataclass
class MoveReport:
    """Outcomes of a move pass over a move set."""

    outcomes: List[MoveOutcome] = field(default_factory=list)
    moved_count: int = 0


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------

class Phase(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    BACKING_UP = "backing up"
    PLANNING = "planning"
    MOVING = "moving"
    RECONCILING = "reconciling"
    CLEANING_UP = "cleaning up"
    ROLLING_BACK = "rolling back"
    DONE = "done"
    FAILED = "failed"


PENDING = "pending"
SUCCEEDED = "succeeded"
NO_OP = "no-op"
RUN_FAILED = "failed"


@dataclass(frozen=True)
class RunConfig:
    """Immutable per-run settings, built once while validating."""

    mode: str
    source: Path
    destination: Path
    cleanup: bool = False

    @property
    def dry_run(self) -> bool:
        return self.mode == PLAN


@dataclass
class MigrationRun:
    """
    Everything one invocation did.

    Attributes
    ----------
    mode:
        One of 'apply', 'plan', 'purge' or 'rollback'.
    move_set:
        Collapsed addresses selected for migration, in plan order.
    outcomes:
        Per-address results of the move pass.
    status:
        'pending' while running, then 'succeeded', 'no-op' or 'failed'.
    failed_phase:
        Phase in which the run failed, if it did.
    """

    mode: str
    source: Optional[Path] = None
    destination: Optional[Path] = None
    move_set: List[str] = field(default_factory=list)
    outcomes: List[MoveOutcome] = field(default_factory=list)
    moved_count: int = 0
    phase: Phase = Phase.IDLE
    status: str = PENDING
    failed_phase: Optional[Phase] = None
    error: Optional[Exception] = None
    warnings: List[str] = field(default_factory=list)
    removed_files: List[Path] = field(default_factory=list)
    backups_taken: bool = False

    @property
    def failed(self) -> bool:
        return self.status == RUN_FAILED

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def summary(self) -> str:
        lines = [
            "Migration Run",
            f"  Mode        : {self.mode}",
            f"  Source      : {self.source}",
            f"  Destination : {self.destination}",
            f"  Status      : {self.status}",
        ]
        if self.mode in (APPLY, PLAN):
            lines.append(f"  Move set    : {len(self.move_set)} address(es)")
            lines.append(f"  Moved       : {self.moved_count}")
        if self.failed:
            lines.append(f"  Failed in   : {self.failed_phase.value if self.failed_phase else '?'}")
            lines.append(f"  Error       : {self.error}")

        if self.outcomes:
            lines.append("")
            lines.append("Moves:")
            for outcome in self.outcomes:
                line = f"  [{outcome.status}] {outcome.address}"
                if outcome.detail:
                    line += f"  ({outcome.detail})"
                lines.append(line)

        if self.warnings:
            lines.append("")
            lines.append("Warnings:")
            for warn in self.warnings:
                lines.append(f"  WARNING : {warn}")

        if self.removed_files:
            lines.append("")
            lines.append("Removed:")
            for path in self.removed_files:
                lines.append(f"  {path}")

        return "\n".join(lines)
