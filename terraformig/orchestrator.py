"""
orchestrator - Sequence a migration from validation to cleanup.

Workflow
--------
1. **Validating** – resolve the source and destination directories into a
   :class:`~terraformig.models.RunConfig`.
2. **Backing up** – init and snapshot the source, then the destination.
3. **Planning** – plan the source and collapse its delete set into a move set.
4. **Moving** – ``terraform state mv`` every address (or pretend to).
5. **Reconciling** – re-init the destination from the updated state.
6. **Cleaning up** – purge the backups when asked to.

The first error in any phase ends the run in the ``failed`` phase. Nothing is
rolled back automatically; ``rollback`` is a separate operation.

Example::

    from terraformig import Orchestrator

    run = Orchestrator().apply("../network", source="../legacy")
    print(run.summary())
    if run.failed:
        print("Run 'terraformig rollback' before retrying.")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from .addresses import collapse_addresses
from .backup import BackupStore
from .declarations import declared_addresses, undeclared
from .errors import BackupAlreadyExists, MoveFailed, NoBackupFound, TerraformigError, ValidationError
from .executor import MoveExecutor
from .models import (
    APPLY,
    LOCAL,
    MODES,
    NO_OP,
    PLAN,
    PURGE,
    REMOTE,
    ROLLBACK,
    RUN_FAILED,
    SUCCEEDED,
    MigrationRun,
    MoveReport,
    Phase,
    RunConfig,
    StateStore,
)
from .plan import PlanDiffResolver
from .reconcile import BackendReconciler, detect_remote_backend
from .terraform import StateTool, TerraformCLI

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

NOTHING_TO_MOVE = (
    "0 resources to move. Did you remove the resource definitions from the "
    "source config files?"
)


def build_config(
    mode: str,
    destination: Optional[PathLike],
    source: Optional[PathLike] = None,
    *,
    cleanup: bool = False,
) -> RunConfig:
    """
    Validate the run's inputs and freeze them into a :class:`RunConfig`.

    ``source`` defaults to the working directory. ``plan`` always cleans up
    its backups.
    """
    if mode not in MODES:
        raise ValidationError(f"Unknown command {mode!r}; expected one of {', '.join(MODES)}")
    if destination is None or not str(destination).strip():
        raise ValidationError("No destination terraform directory given")

    dest_path = Path(destination).expanduser().resolve()
    if not dest_path.is_dir():
        raise ValidationError(f'Could not locate destination terraform directory at: "{destination}"')
    if not any(dest_path.iterdir()):
        raise ValidationError(f'Destination terraform directory is empty: "{destination}"')

    src_path = Path(source).expanduser().resolve() if source is not None else Path.cwd()
    if not src_path.is_dir():
        raise ValidationError(f'Could not locate source terraform directory at: "{source}"')
    if src_path == dest_path:
        raise ValidationError("Source and destination terraform directories are the same")

    return RunConfig(
        mode=mode,
        source=src_path,
        destination=dest_path,
        cleanup=cleanup or mode == PLAN,
    )


class Orchestrator:
    """
    Run migrations end to end.

    Parameters
    ----------
    tool:
        The :class:`~terraformig.terraform.StateTool` to drive. Defaults to
        :class:`~terraformig.terraform.TerraformCLI`.
    check_declarations:
        When ``True`` (default), warn about moved addresses that the
        destination configuration does not declare.
    """

    def __init__(self, tool: Optional[StateTool] = None, *, check_declarations: bool = True) -> None:
        self.tool = tool or TerraformCLI()
        self.backups = BackupStore(self.tool)
        self.resolver = PlanDiffResolver(self.tool)
        self.executor = MoveExecutor(self.tool)
        self.reconciler = BackendReconciler(self.tool)
        self._check_declarations = check_declarations

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def apply(
        self, destination: PathLike, source: Optional[PathLike] = None, *, cleanup: bool = False
    ) -> MigrationRun:
        """Move the resources removed from ``source`` into ``destination``'s state."""
        return self.run(APPLY, destination, source, cleanup=cleanup)

    def plan(self, destination: PathLike, source: Optional[PathLike] = None) -> MigrationRun:
        """Dry run: report the moves without touching either state."""
        return self.run(PLAN, destination, source)

    def purge(self, destination: PathLike, source: Optional[PathLike] = None) -> MigrationRun:
        """Delete the backups of both stores."""
        return self.run(PURGE, destination, source)

    def rollback(self, destination: PathLike, source: Optional[PathLike] = None) -> MigrationRun:
        """Restore both stores from their backups."""
        return self.run(ROLLBACK, destination, source)

    def run(
        self,
        mode: str,
        destination: Optional[PathLike],
        source: Optional[PathLike] = None,
        *,
        cleanup: bool = False,
    ) -> MigrationRun:
        run = MigrationRun(mode=mode)
        try:
            self._enter(run, Phase.VALIDATING)
            config = build_config(mode, destination, source, cleanup=cleanup)
            run.source, run.destination = config.source, config.destination
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("Terraform version: %s", self.tool.version() or "unknown")

            src = StateStore(config.source)
            dest = StateStore(config.destination)

            if mode == PURGE:
                self._purge(run, src, dest)
            elif mode == ROLLBACK:
                self._rollback(run, src, dest)
            else:
                self._migrate(run, config, src, dest)
        except (TerraformigError, OSError) as exc:
            self._fail(run, exc)
            return run

        if run.status != NO_OP:
            run.status = SUCCEEDED
        self._enter(run, Phase.DONE)
        logger.info("Finished!")
        return run

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _migrate(self, run: MigrationRun, config: RunConfig, src: StateStore, dest: StateStore) -> None:
        if config.dry_run:
            logger.info(
                "DRY_RUN mode enabled. Nothing will be moved. "
                "Only temporary backups and plans will be created."
            )

        self._enter(run, Phase.BACKING_UP)
        for store in (src, dest):
            if self.backups.exists(store):
                raise BackupAlreadyExists(store.root)

        logger.info("Ensuring source terraform directory is initialized.")
        logger.debug("%s", self.tool.init(src.root))
        src.initialized = True
        self.backups.create(src)
        run.backups_taken = True

        logger.info("Ensuring destination terraform is initialized.")
        init_output = self.tool.init(dest.root, reconfigure=True)
        logger.debug("%s", init_output)
        dest.initialized = True
        dest.backend = REMOTE if detect_remote_backend(init_output) else LOCAL
        logger.debug("Destination backend: %s", dest.backend)
        dest_backup = self.backups.create(dest)

        self._enter(run, Phase.PLANNING)
        try:
            changes = self.resolver.compute_plan(src)
            run.move_set = collapse_addresses(self.resolver.deletions(changes))
            if not run.move_set:
                logger.warning(NOTHING_TO_MOVE)
                run.warnings.append(NOTHING_TO_MOVE)
            elif self._check_declarations:
                for address in undeclared(run.move_set, declared_addresses(dest.root)):
                    message = f"{address} is not declared in {dest.root}"
                    logger.warning(message)
                    run.warnings.append(message)

            self._enter(run, Phase.MOVING)
            if run.move_set and not config.dry_run:
                self.executor.stage_state_out(dest, dest_backup.content)
            try:
                report = self.executor.execute(run.move_set, src, dest, dry_run=config.dry_run)
            except MoveFailed as exc:
                self._record(run, exc.report)
                raise
            self._record(run, report)
        finally:
            self.resolver.discard_plan(src)

        if run.moved_count == 0:
            run.status = NO_OP
        elif not config.dry_run:
            self._enter(run, Phase.RECONCILING)
            run.removed_files.extend(self.reconciler.reconcile(dest, dest.is_remote))

        if config.cleanup:
            self._enter(run, Phase.CLEANING_UP)
            logger.info("Cleaning up all backup files.")
            self._purge_stores(run, src, dest)

    def _purge(self, run: MigrationRun, src: StateStore, dest: StateStore) -> None:
        self._enter(run, Phase.CLEANING_UP)
        logger.info("Purging previous backups performed by this tool...")
        self._purge_stores(run, src, dest)
        logger.info("Purge complete.")

    def _purge_stores(self, run: MigrationRun, src: StateStore, dest: StateStore) -> None:
        for store in (src, dest):
            run.removed_files.extend(self.backups.purge(store))

    def _rollback(self, run: MigrationRun, src: StateStore, dest: StateStore) -> None:
        self._enter(run, Phase.ROLLING_BACK)
        missing = [store.root for store in (src, dest) if not self.backups.exists(store)]
        if missing:
            raise NoBackupFound(missing)
        for store in (src, dest):
            self.backups.read(store)
        for store in (src, dest):
            self.backups.rollback(store)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    @staticmethod
    def _enter(run: MigrationRun, phase: Phase) -> None:
        logger.debug("Phase: %s -> %s", run.phase.value, phase.value)
        run.phase = phase

    @staticmethod
    def _record(run: MigrationRun, report: Optional[MoveReport]) -> None:
        if report is None:
            return
        run.outcomes = list(report.outcomes)
        run.moved_count = report.moved_count

    @staticmethod
    def _fail(run: MigrationRun, exc: Exception) -> None:
        logger.error("%s failed: %s", run.phase.value.capitalize(), exc)
        run.failed_phase = run.phase
        run.error = exc
        run.status = RUN_FAILED
        run.phase = Phase.FAILED
