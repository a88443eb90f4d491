"""
plan - Find the addresses the source's next plan would delete.

Resources that were cut from the source configuration (and pasted into the
destination's) show up as ``delete`` actions in a speculative plan of the
source. Those are the state entries to move.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List

from .errors import PlanFailed, TerraformCommandError
from .models import PlannedChange, StateStore
from .terraform import StateTool

logger = logging.getLogger(__name__)


class PlanDiffResolver:
    """Run a plan of the source store and extract its planned changes."""

    def __init__(self, tool: StateTool) -> None:
        self._tool = tool

    def compute_plan(self, source: StateStore) -> List[PlannedChange]:
        """
        Plan ``source`` into its plan artifact and return one
        :class:`~terraformig.models.PlannedChange` per ``resource_changes``
        entry, in document order.
        """
        logger.info("Creating temporary terraform plan file.")
        try:
            plan_file = self._tool.plan(source.root, source.plan_path)
            document = self._tool.show(source.root, plan_file)
        except TerraformCommandError as exc:
            raise PlanFailed(f"Could not plan {source.root}: {exc}") from exc
        return self.parse_changes(document)

    @staticmethod
    def parse_changes(document: Dict[str, Any]) -> List[PlannedChange]:
        """Extract planned changes from a ``terraform show -json`` plan document."""
        if not isinstance(document, dict):
            raise PlanFailed("Plan JSON is not an object")
        changes: List[PlannedChange] = []
        for entry in document.get("resource_changes") or []:
            try:
                address = entry["address"]
                actions = list(entry.get("change", {}).get("actions", []))
            except (KeyError, TypeError, AttributeError) as exc:
                raise PlanFailed(f"Malformed resource_changes entry: {entry!r}") from exc
            changes.append(PlannedChange(address=address, actions=actions))
        return changes

    @staticmethod
    def deletions(changes: Iterable[PlannedChange]) -> List[str]:
        """Addresses whose action set contains 'delete', replacements included."""
        return [change.address for change in changes if change.is_delete]

    @staticmethod
    def discard_plan(source: StateStore) -> None:
        if source.plan_path.exists():
            source.plan_path.unlink()
