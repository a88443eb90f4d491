"""
terraformig - Move Terraform resources and modules from one state to another.

Cut the resource/module blocks out of the source configuration, paste them
into the destination configuration, then let terraformig move the matching
state entries: whatever a plan of the source would delete is moved into the
destination's state, with a backup of both states taken first.

Quick start::

    from terraformig import Orchestrator

    orchestrator = Orchestrator()

    # Dry run: backups and a plan are made, nothing is moved
    run = orchestrator.plan("../network", source="../legacy")
    print(run.move_set)

    # The real thing
    run = orchestrator.apply("../network", source="../legacy")
    print(run.summary())

    # Something went wrong? Put both states back.
    orchestrator.rollback("../network", source="../legacy")
"""

__version__ = "0.1.0"

from .addresses import collapse_addresses, module_key
from .backup import BackupStore
from .errors import (
    BackupAlreadyExists,
    BackupUnreadable,
    MoveFailed,
    NoBackupFound,
    PlanFailed,
    ReconcileFailed,
    TerraformCommandError,
    TerraformigError,
    ValidationError,
)
from .executor import MoveExecutor
from .models import (
    Backup,
    MigrationRun,
    MoveOutcome,
    MoveReport,
    Phase,
    PlannedChange,
    RunConfig,
    StateStore,
)
from .orchestrator import Orchestrator, build_config
from .plan import PlanDiffResolver
from .reconcile import BackendReconciler, detect_remote_backend
from .terraform import StateTool, TerraformCLI

__all__ = [
    # Orchestration
    "Orchestrator",
    "build_config",
    "MigrationRun",
    "RunConfig",
    "Phase",
    # Stages
    "BackupStore",
    "PlanDiffResolver",
    "MoveExecutor",
    "BackendReconciler",
    "collapse_addresses",
    "module_key",
    "detect_remote_backend",
    # Models
    "StateStore",
    "Backup",
    "PlannedChange",
    "MoveOutcome",
    "MoveReport",
    # Terraform
    "StateTool",
    "TerraformCLI",
    # Errors
    "TerraformigError",
    "ValidationError",
    "BackupAlreadyExists",
    "BackupUnreadable",
    "NoBackupFound",
    "PlanFailed",
    "MoveFailed",
    "ReconcileFailed",
    "TerraformCommandError",
]
