"""
terraform - The Terraform CLI as seen by the migration stages.

Every stage talks to Terraform through :class:`StateTool`, never by spawning
processes itself. :class:`TerraformCLI` is the real implementation; tests use
an in-process fake.

Example::

    from terraformig.terraform import TerraformCLI

    tf = TerraformCLI()
    print(tf.version())
    tf.init("./infra")
    state = tf.state_pull("./infra")
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import TerraformCommandError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class StateTool(ABC):
    """The operations of the state-management tool that a migration needs."""

    @abstractmethod
    def init(self, path: PathLike, *, reconfigure: bool = False, force_copy: bool = False) -> str:
        """Initialize the working directory and return the command's text output."""

    @abstractmethod
    def plan(self, path: PathLike, out: PathLike) -> Path:
        """Write a speculative plan of ``path`` to ``out`` without touching state."""

    @abstractmethod
    def show(self, path: PathLike, plan_file: PathLike) -> Dict[str, Any]:
        """Return the JSON representation of a saved plan."""

    @abstractmethod
    def state_pull(self, path: PathLike) -> str:
        """Return the current state content of ``path``."""

    @abstractmethod
    def state_mv(
        self, path: PathLike, source: str, destination: str, *, state_out: PathLike
    ) -> None:
        """Move ``source`` out of the state of ``path`` into ``state_out`` as ``destination``."""

    @abstractmethod
    def state_push(self, path: PathLike, state_file: PathLike, *, force: bool = False) -> None:
        """Replace the (remote) state of ``path`` with the content of ``state_file``."""

    def version(self) -> Optional[str]:
        """Return the tool version, or ``None`` if it cannot be determined."""
        return None


class TerraformCLI(StateTool):
    """
    :class:`StateTool` backed by the ``terraform`` executable.

    Parameters
    ----------
    binary:
        Name or path of the Terraform executable (default: ``terraform``).
    """

    def __init__(self, binary: str = "terraform") -> None:
        self.binary = binary

    # ------------------------------------------------------------------
    # StateTool
    # ------------------------------------------------------------------

    def init(self, path: PathLike, *, reconfigure: bool = False, force_copy: bool = False) -> str:
        args = ["init", "-input=false", "-no-color"]
        if reconfigure:
            args.append("-reconfigure")
        if force_copy:
            args.append("-force-copy")
        return self._run(args, cwd=path)

    def plan(self, path: PathLike, out: PathLike) -> Path:
        self._run(["plan", "-input=false", "-no-color", f"-out={out}"], cwd=path)
        return Path(path) / out

    def show(self, path: PathLike, plan_file: PathLike) -> Dict[str, Any]:
        output = self._run(["show", "-json", str(plan_file)], cwd=path)
        try:
            return json.loads(output)
        except ValueError as exc:
            raise TerraformCommandError(
                [self.binary, "show", "-json", str(plan_file)], 0,
                f"invalid JSON output: {exc}",
            ) from exc

    def state_pull(self, path: PathLike) -> str:
        return self._run(["state", "pull"], cwd=path, strip=False)

    def state_mv(
        self, path: PathLike, source: str, destination: str, *, state_out: PathLike
    ) -> None:
        self._run(["state", "mv", f"-state-out={state_out}", source, destination], cwd=path)

    def state_push(self, path: PathLike, state_file: PathLike, *, force: bool = False) -> None:
        args = ["state", "push"]
        if force:
            args.append("-force")
        args.append(str(state_file))
        self._run(args, cwd=path)

    def version(self) -> Optional[str]:
        """
        Run ``terraform version -json`` and return the version string, or
        ``None`` if Terraform is not installed / not on PATH.
        """
        try:
            output = self._run(["version", "-json"])
            version = json.loads(output).get("terraform_version", "")
            if version:
                return version.lstrip("v")
        except (TerraformCommandError, ValueError):
            pass

        # Older releases have no -json flag
        try:
            output = self._run(["version"])
        except TerraformCommandError:
            return None
        match = re.search(r"Terraform v(\d+\.\d+\.\d+)", output)
        return match.group(1) if match else None

    # ------------------------------------------------------------------
    # Process helpers
    # ------------------------------------------------------------------

    def _run(self, args: List[str], cwd: Optional[PathLike] = None, strip: bool = True) -> str:
        command = [self.binary] + args
        logger.debug("Running %s (in %s)", " ".join(command), cwd or ".")
        try:
            result = subprocess.run(
                command,
                cwd=str(cwd) if cwd is not None else None,
                capture_output=True,
                text=True,
            )
        except OSError as exc:
            raise TerraformCommandError(command, 127, str(exc)) from exc
        if result.returncode != 0:
            raise TerraformCommandError(command, result.returncode, result.stderr or result.stdout)
        return result.stdout.strip() if strip else result.stdout
