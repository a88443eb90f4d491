"""Resource address helpers and move-set collapsing."""

from __future__ import annotations

import re
from typing import Iterable, List, Optional

MODULE_PREFIX = "module."

_INDEX_RE = re.compile(r"\[[^\]]*\]$")


def is_module_address(address: str) -> bool:
    return address.startswith(MODULE_PREFIX)


def split_address(address: str) -> List[str]:
    """
    Split an address on the dots outside index brackets, so for_each keys
    containing dots stay whole: 'module.a["x.y"].aws_vpc.r' ->
    ['module', 'a["x.y"]', 'aws_vpc', 'r'].
    """
    parts: List[str] = []
    depth = 0
    start = 0
    for i, ch in enumerate(address):
        if ch == "[":
            depth += 1
        elif ch == "]" and depth:
            depth -= 1
        elif ch == "." and depth == 0:
            parts.append(address[start:i])
            start = i + 1
    parts.append(address[start:])
    return parts


def module_key(address: str) -> str:
    """First two address components, e.g. 'module.network' for 'module.network.aws_vpc.main'."""
    return ".".join(split_address(address)[:2])


def same_module(a: str, b: str) -> bool:
    return module_key(a) == module_key(b)


def strip_index(address: str) -> str:
    """Drop a trailing count/for_each index: 'aws_instance.web[0]' -> 'aws_instance.web'."""
    return _INDEX_RE.sub("", address)


def collapse_addresses(addresses: Iterable[str]) -> List[str]:
    """
    Reduce plan-ordered delete addresses to a move set.

    Children of a module are replaced by the module key, and a module key equal
    to the previously emitted address is skipped. Only adjacent entries are
    collapsed: a module whose children are interleaved with other addresses is
    emitted once per run of children.

    >>> collapse_addresses(["module.a.resource.x", "module.a.resource.y", "resource.z"])
    ['module.a', 'resource.z']
    """
    move_set: List[str] = []
    previous: Optional[str] = None
    for address in addresses:
        current = address
        if is_module_address(current):
            current = module_key(current)
            if current == previous:
                continue
        move_set.append(current)
        previous = current
    return move_set
