"""Permission value object with the RBAC matching rules."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Permission:
    """
    A (resource, action) grant.

    Matching rules:
    - exact match on both parts
    - ``*`` on either part matches anything
    - a trailing ``*`` is a prefix pattern (``files*`` matches ``files.shared``)
    """

    resource: str
    action: str

    @classmethod
    def parse(cls, raw: str) -> "Permission":
        """Parse ``"resource:action"``."""
        resource, sep, action = raw.partition(":")
        if not sep or not resource or not action:
            raise ValueError(f"Invalid permission string: {raw!r}")
        return cls(resource=resource, action=action)

    def matches(self, resource: str, action: str) -> bool:
        return _part_matches(self.resource, resource) and _part_matches(self.action, action)

    def __str__(self) -> str:
        return f"{self.resource}:{self.action}"


def _part_matches(pattern: str, value: str) -> bool:
    if pattern == "*" or pattern == value:
        return True
    if pattern.endswith("*"):
        return value.startswith(pattern[:-1])
    return False
