"""Dependency-driven cache invalidation.

A dependency map lists, for each cache family, the families derived from it.
When a family changes, each dependent is invalidated in one of two ways:

- wildcard dependent (``user*``: every per-parameter instance of ``user``):
  the affected instances cannot be named here, so the master version is
  bumped and every versioned key becomes unreachable
- plain dependent (``role_mappings``): the single parameterless key is
  resolved and removed directly, no bump

Callers that know a specific instance (one user's record) should remove that
key themselves before calling ``on_changed``; the bump still happens.

The map is parsed into typed FamilyRef values and validated at construction:
unknown families and cycles raise DependencyGraphError.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Sequence

from ..exceptions import DependencyGraphError
from .master_version import MasterVersionStore
from .scoped_cache import ScopedCacheStore

logger = logging.getLogger(__name__)

WILDCARD_SUFFIX = "*"


class CacheFamily(str, Enum):
    """Known cache families (base keys)."""

    STAFF_DATA = "staff_data"
    SETTINGS_DATA = "settings_data"
    USER = "user"
    ROLE_SHEET = "role_sheet"
    ROLE_MAPPINGS = "role_mappings"
    DOMAIN_MAPPINGS = "domain_mappings"


@dataclass(frozen=True)
class FamilyRef:
    """A family in the dependency map, optionally covering all its instances."""

    family: CacheFamily
    is_wildcard: bool = False

    @classmethod
    def parse(cls, text: str) -> "FamilyRef":
        """Parse ``"user"``, ``"user*"`` or ``"user_*"``.

        Raises:
            DependencyGraphError: If the family name is unknown
        """
        name = text.strip()
        is_wildcard = name.endswith(WILDCARD_SUFFIX)
        if is_wildcard:
            name = name[: -len(WILDCARD_SUFFIX)].rstrip("_")

        try:
            family = CacheFamily(name)
        except ValueError as e:
            raise DependencyGraphError(
                message=f"Unknown cache family '{text}'",
                details={"family": text, "known": [f.value for f in CacheFamily]},
                original_exception=e,
            ) from e
        return cls(family=family, is_wildcard=is_wildcard)

    def __str__(self) -> str:
        return f"{self.family.value}{WILDCARD_SUFFIX if self.is_wildcard else ''}"


DependencyMap = dict[FamilyRef, tuple[FamilyRef, ...]]

DEFAULT_CACHE_DEPENDENCIES: dict[str, list[str]] = {
    "staff_data": ["user*", "role_mappings"],
    "settings_data": ["role_sheet*", "domain_mappings"],
    "user*": ["role_sheet*"],
    "role_sheet*": [],
}


def _find_cycle(graph: DependencyMap) -> list[FamilyRef] | None:
    visiting: list[FamilyRef] = []
    done: set[FamilyRef] = set()

    def visit(node: FamilyRef) -> list[FamilyRef] | None:
        if node in done:
            return None
        if node in visiting:
            return visiting[visiting.index(node):] + [node]
        visiting.append(node)
        for dependent in graph.get(node, ()):
            cycle = visit(dependent)
            if cycle:
                return cycle
        visiting.pop()
        done.add(node)
        return None

    for start in graph:
        cycle = visit(start)
        if cycle:
            return cycle
    return None


def build_dependency_map(raw: Mapping[str, Sequence[str]]) -> DependencyMap:
    """Parse and validate a string dependency map.

    Args:
        raw: ``{"family" or "family*": ["dependent", "dependent*", ...]}``

    Returns:
        Typed, acyclic DependencyMap

    Raises:
        DependencyGraphError: On unknown families or a dependency cycle
    """
    graph: DependencyMap = {}
    for source, dependents in raw.items():
        graph[FamilyRef.parse(source)] = tuple(FamilyRef.parse(d) for d in dependents)

    cycle = _find_cycle(graph)
    if cycle:
        raise DependencyGraphError(
            message="Cache dependency cycle detected",
            details={"cycle": [str(ref) for ref in cycle]},
        )

    logger.debug(f"Dependency map validated ({len(graph)} families)")
    return graph


@dataclass
class InvalidationReport:
    """What one ``on_changed`` call did."""

    changed: str
    known: bool = True
    removed_keys: list[str] = field(default_factory=list)
    bumped: bool = False
    bump_failed: bool = False
    visited: list[str] = field(default_factory=list)


class DependencyGraphInvalidator:
    """Cascades a change of one cache family to its dependents."""

    def __init__(
        self,
        dependency_map: DependencyMap,
        version_store: MasterVersionStore,
        scoped_cache: ScopedCacheStore,
    ):
        self.dependency_map = dependency_map
        self.version_store = version_store
        self.scoped_cache = scoped_cache
        self.logger = logging.getLogger(self.__class__.__name__)

    def _resolve(self, base_key: str) -> FamilyRef | None:
        try:
            ref = FamilyRef.parse(base_key)
        except DependencyGraphError:
            return None
        if ref in self.dependency_map:
            return ref
        # "user" and "user*" name the same family when only one form is mapped
        other = FamilyRef(ref.family, not ref.is_wildcard)
        return other if other in self.dependency_map else None

    def on_changed(self, base_key: str, user: str) -> InvalidationReport:
        """Invalidate every family derived from ``base_key``.

        The walk is transitive over the map. Plain dependents are removed from
        ``user``'s namespace first; if any wildcard dependent was reached, the
        master version is bumped once at the end.

        Args:
            base_key: Changed family, e.g. ``"staff_data"`` or ``"user*"``
            user: Requesting identity whose namespace holds the plain keys

        Returns:
            InvalidationReport; unknown base keys produce a report with
            ``known=False`` and no side effects
        """
        report = InvalidationReport(changed=base_key)
        root = self._resolve(base_key)
        if root is None:
            report.known = False
            self.logger.debug(f"No dependencies registered for {base_key}")
            return report

        needs_bump = False
        seen: set[FamilyRef] = {root}
        pending = list(self.dependency_map.get(root, ()))

        while pending:
            dependent = pending.pop(0)
            if dependent in seen:
                continue
            seen.add(dependent)
            report.visited.append(str(dependent))

            if dependent.is_wildcard:
                needs_bump = True
            else:
                key = self.scoped_cache.key_generator.make_key(dependent.family.value, {})
                if self.scoped_cache.remove_key(key, user):
                    report.removed_keys.append(key)

            pending.extend(self.dependency_map.get(dependent, ()))

        if needs_bump:
            report.bumped = self.version_store.bump()
            report.bump_failed = not report.bumped

        self.logger.info(
            f"Invalidated dependents of {base_key}: visited={report.visited}, "
            f"removed={len(report.removed_keys)}, bumped={report.bumped}"
        )
        return report
