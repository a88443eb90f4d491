"""Re-synchronize the destination with its backend after a bulk move."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List

from .errors import ReconcileFailed, TerraformCommandError
from .models import LOCAL, StateStore
from .terraform import StateTool

logger = logging.getLogger(__name__)

# terraform init: 'Successfully configured the backend "s3"! Terraform will automatically ...'
_BACKEND_CONFIGURED_RE = re.compile(r'Successfully configured the backend "([^"]+)"')


def detect_remote_backend(init_output: str) -> bool:
    """True if ``init`` output reports a configured backend other than 'local'."""
    match = _BACKEND_CONFIGURED_RE.search(init_output or "")
    return bool(match) and match.group(1) != LOCAL


class BackendReconciler:
    """
    Make the destination's cached state view match its backend.

    The cached working-state pointer is discarded and the directory is
    re-initialized with ``-force-copy`` from the updated ``terraform.tfstate``.
    For remote backends the local ``terraform.tfstate`` was only a pull target
    and is deleted afterwards.
    """

    def __init__(self, tool: StateTool) -> None:
        self._tool = tool

    def reconcile(self, destination: StateStore, remote: bool) -> List[Path]:
        removed: List[Path] = []
        cached = destination.cached_backend_path
        try:
            if cached.exists():
                cached.unlink()
                removed.append(cached)

            logger.info("Initializing destination terraform with updated statefile.")
            output = self._tool.init(destination.root, force_copy=True)
            logger.debug("%s", output)
            destination.initialized = True

            if remote and destination.live_state_path.exists():
                destination.live_state_path.unlink()
                removed.append(destination.live_state_path)
        except (TerraformCommandError, OSError) as exc:
            raise ReconcileFailed(f"Could not reconcile {destination.root}: {exc}") from exc
        return removed
