"""
Resource registry.

Maps request-facing resource keys (and their aliases) to immutable
``ResourceConfig`` declarations. Built once at startup; resolution is a pure
dictionary lookup and safe to call concurrently on every request.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional

import scopegate.config as config
from scopegate.errors import ResourceNotFound
from scopegate.types import ResourceConfig

_RESOURCE_KEY = re.compile(r"^[a-z0-9]+(?:[-_][a-z0-9]+)*$")


def is_valid_resource_key(key: Any) -> bool:
    return (
        isinstance(key, str)
        and 0 < len(key) <= config.MAX_RESOURCE_KEY_LENGTH
        and bool(_RESOURCE_KEY.match(key))
    )


@dataclass(frozen=True)
class ResourceEntry:
    key: str
    config: ResourceConfig
    to_row: Optional[Callable[[Any], dict]] = None
    allow_raw: bool = False

    def project(self, domain: Any, raw: bool = False) -> Any:
        """Apply the UI projection unless raw rows were asked for and allowed."""
        if self.to_row is None or (raw and self.allow_raw):
            return domain
        return self.to_row(domain)


class ResourceRegistry:
    def __init__(self, entries: Iterable[ResourceEntry], aliases: Optional[Mapping[str, str]] = None):
        by_key: dict[str, ResourceEntry] = {}
        for entry in entries:
            if not is_valid_resource_key(entry.key):
                raise ValueError(f"Invalid resource key: {entry.key!r}")
            if entry.key in by_key:
                raise ValueError(f"Duplicate resource key: {entry.key!r}")
            by_key[entry.key] = entry

        alias_map: dict[str, str] = {}
        for alias, target in (aliases or {}).items():
            if not is_valid_resource_key(alias):
                raise ValueError(f"Invalid alias key: {alias!r}")
            if alias in by_key:
                raise ValueError(f"Alias {alias!r} shadows a registered resource")
            if target not in by_key:
                raise ValueError(f"Alias {alias!r} points at unknown resource {target!r}")
            alias_map[alias] = target

        self._entries = MappingProxyType(by_key)
        self._aliases = MappingProxyType(alias_map)

    def canonical_key(self, key: str) -> str:
        return self._aliases.get(key, key)

    def get(self, key: str) -> Optional[ResourceEntry]:
        if not is_valid_resource_key(key):
            return None
        return self._entries.get(self.canonical_key(key))

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def resolve(self, key: str) -> ResourceEntry:
        """Return the entry for ``key`` or raise ResourceNotFound."""
        if not is_valid_resource_key(key):
            raise ResourceNotFound(str(key), f"Invalid resource key: {key!r}")
        entry = self._entries.get(self.canonical_key(key))
        if entry is None:
            known = ", ".join(sorted(self._entries)) or "(none)"
            raise ResourceNotFound(key, f"Unknown resource {key!r}. Known resources: {known}")
        return entry

    def keys(self) -> list[str]:
        return sorted(self._entries)

    def aliases(self) -> Mapping[str, str]:
        return self._aliases


__all__ = [
    "ResourceEntry",
    "ResourceRegistry",
    "is_valid_resource_key",
]
