"""Exception hierarchy raised by the migration stages."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence

if TYPE_CHECKING:
    from .models import MoveReport


class TerraformigError(Exception):
    """Base class for every error raised by terraformig."""


class ValidationError(TerraformigError):
    """Bad or missing source/destination directory."""


class BackupAlreadyExists(TerraformigError):
    """A backup made by a previous run is still present for the store."""

    def __init__(self, store: Path) -> None:
        self.store = Path(store)
        super().__init__(
            f"A backup made by terraformig already exists in {self.store}. "
            "Remove or rename it and try again, or run the 'purge' command"
        )


class NoBackupFound(TerraformigError):
    """Rollback was requested for one or more stores without a backup."""

    def __init__(self, stores: Iterable[Path]) -> None:
        self.stores: List[Path] = [Path(s) for s in stores]
        where = ", ".join(str(s) for s in self.stores)
        super().__init__(f"No terraformig backup found in: {where}")


class PlanFailed(TerraformigError):
    """The speculative plan of the source configuration could not be produced."""


class MoveFailed(TerraformigError):
    """``terraform state mv`` failed for one address."""

    def __init__(
        self,
        address: str,
        reason: str = "",
        report: Optional["MoveReport"] = None,
    ) -> None:
        self.address = address
        self.reason = reason
        self.report = report
        message = f"Failed to move {address}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ReconcileFailed(TerraformigError):
    """The destination could not be re-initialized after the moves."""


class TerraformCommandError(TerraformigError):
    """A Terraform CLI invocation exited non-zero or could not be started."""

    def __init__(self, command: Sequence[str], returncode: int, output: str = "") -> None:
        self.command = list(command)
        self.returncode = returncode
        self.output = output.strip()
        message = f"'{' '.join(self.command)}' exited with status {returncode}"
        if self.output:
            message += f": {self.output}"
        super().__init__(message)


class BackupUnreadable(TerraformigError):
    """A backup file exists but its content cannot be read as state text."""

    def __init__(self, store: Path, reason: str = "") -> None:
        self.store = Path(store)
        message = f"The terraformig backup in {self.store} cannot be read"
        if reason:
            message += f": {reason}"
        super().__init__(message)
