"""Apply (or simulate) ``terraform state mv`` for every address of a move set."""

from __future__ import annotations

import logging
from typing import Iterable

from .errors import MoveFailed, TerraformCommandError
from .models import FAILED, MOVED, WOULD_MOVE, MoveOutcome, MoveReport, StateStore
from .terraform import StateTool

logger = logging.getLogger(__name__)


class MoveExecutor:
    """
    Move state entries from the source store into the destination's live
    state file.

    Moves run against the source's *current* state, so an address already
    carried along by an earlier module move in the same run is gone by the
    time it comes up and fails.
    """

    def __init__(self, tool: StateTool) -> None:
        self._tool = tool

    def stage_state_out(self, destination: StateStore, content: str) -> None:
        """Write the destination's pulled state where the moves will append to it."""
        destination.live_state_path.write_text(content, encoding="utf-8")

    def execute(
        self,
        move_set: Iterable[str],
        source: StateStore,
        destination: StateStore,
        dry_run: bool = False,
    ) -> MoveReport:
        """
        Move every address of ``move_set``, stopping at the first failure.

        In a dry run nothing is touched; each address is reported as
        'would move' and still counted.

        Raises :class:`~terraformig.errors.MoveFailed` carrying the partial
        :class:`~terraformig.models.MoveReport`.
        """
        report = MoveReport()
        state_out = destination.live_state_path.resolve()

        for address in move_set:
            if dry_run:
                logger.info("DRY_RUN mode enabled. Would move %s resource/module.", address)
                report.outcomes.append(MoveOutcome(address=address, status=WOULD_MOVE))
                report.moved_count += 1
                continue

            logger.info("Moving %s resource/module...", address)
            try:
                self._tool.state_mv(source.root, address, address, state_out=state_out)
            except TerraformCommandError as exc:
                report.outcomes.append(MoveOutcome(address=address, status=FAILED, detail=exc.output))
                raise MoveFailed(address, exc.output, report=report) from exc
            report.outcomes.append(MoveOutcome(address=address, status=MOVED))
            report.moved_count += 1

        return report
