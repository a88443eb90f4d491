"""
declarations - What a Terraform directory declares, read with ``python-hcl2``.

Used to warn when an address about to be moved has no matching ``resource``,
``data`` or ``module`` block in the destination configuration, which usually
means the block was deleted from the source but never pasted into the
destination.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Set, Tuple, Union

import hcl2

from .addresses import is_module_address, module_key, strip_index

logger = logging.getLogger(__name__)


def _labelled(block: Dict[str, Any]) -> Iterator[Tuple[str, Any]]:
    # newer python-hcl2 releases keep label quotes and add "__is_block__" markers
    for key, value in block.items():
        if key.startswith("__"):
            continue
        yield key.strip('"'), value


def declared_addresses(config_dir: Union[str, Path]) -> Set[str]:
    """
    Return the addresses declared by the ``*.tf`` files of ``config_dir``:
    ``type.name`` for resources, ``data.type.name`` for data sources and
    ``module.name`` for module calls. Files that fail to parse are skipped.
    """
    declared: Set[str] = set()
    for tf_file in sorted(Path(config_dir).glob("*.tf")):
        try:
            with open(tf_file, "r", encoding="utf-8") as fh:
                data = hcl2.load(fh)
        except Exception as exc:  # lark raises a variety of parse errors
            logger.warning("Could not parse %s: %s", tf_file, exc)
            continue

        for block in data.get("resource", []):
            for rtype, names in _labelled(block):
                for rname, _ in _labelled(names):
                    declared.add(f"{rtype}.{rname}")
        for block in data.get("data", []):
            for rtype, names in _labelled(block):
                for rname, _ in _labelled(names):
                    declared.add(f"data.{rtype}.{rname}")
        for block in data.get("module", []):
            for mname, _ in _labelled(block):
                declared.add(f"module.{mname}")
    return declared


def undeclared(move_set: Iterable[str], declared: Set[str]) -> List[str]:
    """Addresses of ``move_set`` with no matching declaration."""
    missing: List[str] = []
    for address in move_set:
        if is_module_address(address):
            key = strip_index(module_key(address))
        else:
            key = strip_index(address)
        if key not in declared:
            missing.append(address)
    return missing
