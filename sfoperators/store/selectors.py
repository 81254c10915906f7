"""
Label selectors for list and watch calls.

Supported syntax (comma separated requirements, all must match):
- ``key=value`` / ``key==value``
- ``key!=value``
- ``key in (a,b,c)``
- ``key notin (a,b,c)``
- ``key`` (label present)
"""

import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from sfoperators.errors import ConfigurationError


_SET_REQUIREMENT = re.compile(r"^\s*([\w./-]+)\s+(in|notin)\s+\(([^)]*)\)\s*$")
_EQUALITY_REQUIREMENT = re.compile(r"^\s*([\w./-]+)\s*(==|=|!=)\s*([\w./-]*)\s*$")
_EXISTS_REQUIREMENT = re.compile(r"^\s*([\w./-]+)\s*$")


@dataclass(frozen=True)
class Requirement:
    key: str
    operator: str
    values: frozenset[str]

    def matches(self, labels: Mapping[str, str]) -> bool:
        value = labels.get(self.key)
        if self.operator in ("in", "="):
            return value in self.values
        if self.operator in ("notin", "!="):
            return value not in self.values
        return self.key in labels


class LabelSelector:
    """Parsed label selector."""

    def __init__(self, requirements: Iterable[Requirement] = ()):
        self.requirements = tuple(requirements)

    @classmethod
    def parse(cls, selector: Optional[str]) -> "LabelSelector":
        """
        Parse a selector string.

        Raises:
            ConfigurationError: If a requirement cannot be parsed
        """
        if not selector or not selector.strip():
            return cls()
        return cls(_parse_requirement(part) for part in _split(selector))

    def matches(self, labels: Mapping[str, str]) -> bool:
        return all(req.matches(labels) for req in self.requirements)

    def __str__(self) -> str:
        parts = []
        for req in self.requirements:
            if req.operator in ("in", "notin"):
                parts.append(f"{req.key} {req.operator} ({','.join(sorted(req.values))})")
            elif req.operator == "exists":
                parts.append(req.key)
            else:
                parts.append(f"{req.key}{req.operator}{next(iter(req.values))}")
        return ",".join(parts)


def state_selector(states: Iterable[str]) -> str:
    """Build the ``state in (...)`` selector operators watch with."""
    values = ",".join(getattr(state, "value", state) for state in states)
    return f"state in ({values})"


def _split(selector: str) -> list[str]:
    """Split on commas that are not inside a parenthesised value set."""
    parts, depth, current = [], 0, []
    for char in selector:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return [part for part in parts if part.strip()]


def _parse_requirement(text: str) -> Requirement:
    match = _SET_REQUIREMENT.match(text)
    if match:
        values = frozenset(v.strip() for v in match.group(3).split(",") if v.strip())
        return Requirement(match.group(1), match.group(2), values)
    match = _EQUALITY_REQUIREMENT.match(text)
    if match:
        operator = "!=" if match.group(2) == "!=" else "="
        return Requirement(match.group(1), operator, frozenset({match.group(3)}))
    match = _EXISTS_REQUIREMENT.match(text)
    if match:
        return Requirement(match.group(1), "exists", frozenset())
    raise ConfigurationError(f"Invalid label selector requirement: {text!r}")
