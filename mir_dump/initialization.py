"""
mir_dump.initialization
=======================

Access to the "definitely initialized" dataflow result.

The analysis itself is computed elsewhere; the report only asks two
questions of it, captured by :class:`InitializationResult`.  Place sets are
opaque, rendered place strings (``"_1"``, ``"(_1.0: u32)"``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AbstractSet, Any, Dict, FrozenSet, Mapping, Protocol, runtime_checkable

from mir_dump.mir import BlockId, Location


@runtime_checkable
class InitializationResult(Protocol):
    """Query interface of a definitely-initialized analysis result."""

    def before_block(self, block: BlockId) -> AbstractSet[str]:
        """Places definitely initialized on entry to *block*."""
        ...

    def after_statement(self, location: Location) -> AbstractSet[str]:
        """Places definitely initialized after the statement at *location*."""
        ...


@dataclass
class TabularInitialization:
    """An :class:`InitializationResult` backed by precomputed tables.

    Blocks and locations missing from the tables have no definitely
    initialized places.
    """

    before: Dict[BlockId, FrozenSet[str]] = field(default_factory=dict)
    after: Dict[Location, FrozenSet[str]] = field(default_factory=dict)

    def before_block(self, block: BlockId) -> FrozenSet[str]:
        return self.before.get(block, frozenset())

    def after_statement(self, location: Location) -> FrozenSet[str]:
        return self.after.get(location, frozenset())

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> "TabularInitialization":
        """Build from ``{"before_block": {"0": [...]}, "after_statement": {"bb0[0]": [...]}}``."""
        before = {
            int(block): frozenset(str(p) for p in places)
            for block, places in raw.get("before_block", {}).items()
        }
        after = {
            Location.parse(loc): frozenset(str(p) for p in places)
            for loc, places in raw.get("after_statement", {}).items()
        }
        return cls(before, after)


class NoInitialization:
    """Result used when the host exported no initialization data."""

    def before_block(self, block: BlockId) -> FrozenSet[str]:
        return frozenset()

    def after_statement(self, location: Location) -> FrozenSet[str]:
        return frozenset()
