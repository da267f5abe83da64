"""
mir_dump.facts
==============

Borrow-check facts for one function: the program point interner, the input
and output relation stores, and the loader for ``*.facts`` files written by
the compiler (``-Znll-facts``).

Atoms
-----
* **Region** - lifetime id, spelled ``'_#3r`` in fact files, held as ``int``.
* **Loan** - borrow id, spelled ``bw0`` in fact files, held as ``int``.
* **Point** - ``(Location, PointType)``, spelled ``Start(bb0[1])`` or
  ``Mid(bb0[1])``; interned to a dense ``PointIndex``.

Fact files
----------
One file per relation, one tuple per line, fields separated by tabs.  Each
field may be wrapped in double quotes::

    "'_#2r"	"bw0"	"Mid(bb0[1])"

Public API
----------
    PointType        - Start / Mid phase of a location
    Point            - (location, phase)
    Interner         - bidirectional Point <-> PointIndex table
    AllInputFacts    - input relations
    AllOutputFacts   - relations derived by the solver
    FactLoader       - reads a ``nll-facts/<function>/`` directory
"""

from __future__ import annotations

import enum
import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

from mir_dump.errors import ConsistencyError, ErrorCodes, FactLoadError
from mir_dump.mir import Location

logger = logging.getLogger(__name__)

Region = int
Loan = int
PointIndex = int

_REGION_RE = re.compile(r"^'_#(?P<id>\d+)r$")
_LOAN_RE = re.compile(r"^bw(?P<id>\d+)$")
_POINT_RE = re.compile(r"^(?P<typ>Start|Mid)\(bb(?P<block>\d+)\[(?P<index>\d+)\]\)$")


# ---------------------------------------------------------------------------
# Atoms
# ---------------------------------------------------------------------------

class PointType(enum.Enum):
    """Phase of a location: before (``START``) or after (``MID``) its effects."""

    START = "Start"
    MID = "Mid"

    @property
    def order(self) -> int:
        return 0 if self is PointType.START else 1


@dataclass(frozen=True)
class Point:
    """A program point: a location plus its phase."""

    location: Location
    typ: PointType

    def sort_key(self) -> Tuple[int, int, int]:
        return (self.location.block, self.location.statement_index, self.typ.order)

    def __lt__(self, other: "Point") -> bool:
        if not isinstance(other, Point):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    @classmethod
    def parse(cls, text: str) -> "Point":
        m = _POINT_RE.match(text)
        if m is None:
            raise ValueError(f"not a point: {text!r}")
        location = Location(int(m.group("block")), int(m.group("index")))
        return cls(location, PointType(m.group("typ")))

    def __str__(self) -> str:
        return f"{self.typ.value}({self.location})"


def parse_region(text: str) -> Region:
    m = _REGION_RE.match(text)
    if m is None:
        raise ValueError(f"not a region: {text!r}")
    return int(m.group("id"))


def parse_loan(text: str) -> Loan:
    m = _LOAN_RE.match(text)
    if m is None:
        raise ValueError(f"not a loan: {text!r}")
    return int(m.group("id"))


def format_region(region: Region) -> str:
    return f"'_#{region}r"


def format_loan(loan: Loan) -> str:
    return f"bw{loan}"


# ---------------------------------------------------------------------------
# Interner
# ---------------------------------------------------------------------------

class Interner:
    """Bidirectional mapping between :class:`Point` and ``PointIndex``.

    Indices are dense, assigned in first-seen order and never renumbered.
    Once :meth:`freeze` has been called new points are rejected, so every
    index handed out before solving stays valid for the whole run.
    """

    def __init__(self) -> None:
        self._points: List[Point] = []
        self._index: Dict[Point, PointIndex] = {}
        self._frozen = False

    def intern(self, point: Point) -> PointIndex:
        """Return the index of *point*, assigning a new one if needed."""
        index = self._index.get(point)
        if index is not None:
            return index
        if self._frozen:
            raise ConsistencyError(
                "cannot intern a new point after the fact store was frozen",
                code=ErrorCodes.INTERNER_FROZEN,
                context={"point": str(point)},
            )
        index = len(self._points)
        self._points.append(point)
        self._index[point] = index
        return index

    def get_point_index(self, location: Location, typ: PointType) -> PointIndex:
        return self.intern(Point(location, typ))

    def lookup(self, point: Point) -> Optional[PointIndex]:
        """Return the index of *point* without interning it."""
        return self._index.get(point)

    def resolve(self, index: PointIndex) -> Point:
        """Return the point behind *index*; unknown indices are fatal."""
        if not 0 <= index < len(self._points):
            raise ConsistencyError(
                "point index was never issued by this interner",
                code=ErrorCodes.UNKNOWN_POINT,
                context={"index": index},
            )
        return self._points[index]

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __len__(self) -> int:
        return len(self._points)

    def __contains__(self, point: object) -> bool:
        return point in self._index

    def __iter__(self) -> Iterator[Point]:
        return iter(self._points)


# ---------------------------------------------------------------------------
# Relations
# ---------------------------------------------------------------------------

@dataclass
class AllInputFacts:
    """Input relations of the borrow-check solver.

    Attributes
    ----------
    borrow_region : set of (Region, Loan, PointIndex)
        Loan creation: the loan is created at the point into the region.
    universal_region : set of Region
        Regions visible across the function boundary.
    cfg_edge : set of (PointIndex, PointIndex)
    killed : set of (Loan, PointIndex)
    outlives : set of (Region, Region, PointIndex)
    region_live_at : set of (Region, PointIndex)
    invalidates : set of (PointIndex, Loan)
    """

    borrow_region: Set[Tuple[Region, Loan, PointIndex]] = field(default_factory=set)
    universal_region: Set[Region] = field(default_factory=set)
    cfg_edge: Set[Tuple[PointIndex, PointIndex]] = field(default_factory=set)
    killed: Set[Tuple[Loan, PointIndex]] = field(default_factory=set)
    outlives: Set[Tuple[Region, Region, PointIndex]] = field(default_factory=set)
    region_live_at: Set[Tuple[Region, PointIndex]] = field(default_factory=set)
    invalidates: Set[Tuple[PointIndex, Loan]] = field(default_factory=set)

    def max_loan(self) -> Optional[Loan]:
        """Largest loan id mentioned by any relation, ``None`` if there is none."""
        loans = [loan for _, loan, _ in self.borrow_region]
        loans.extend(loan for loan, _ in self.killed)
        loans.extend(loan for _, loan in self.invalidates)
        return max(loans) if loans else None

    def loan_points(self) -> Set[PointIndex]:
        """Points that already carry a loan-creation fact."""
        return {point for _, _, point in self.borrow_region}


@dataclass
class AllOutputFacts:
    """Relations derived by the solver, keyed by point.

    Written once by the solver and never mutated afterwards.
    """

    borrow_live_at: Dict[PointIndex, Set[Loan]] = field(default_factory=dict)
    subset: Dict[PointIndex, Dict[Region, Set[Region]]] = field(default_factory=dict)
    restricts: Dict[PointIndex, Dict[Region, Set[Loan]]] = field(default_factory=dict)
    errors: Dict[PointIndex, Set[Loan]] = field(default_factory=dict)

    def live_loans(self, point: PointIndex) -> Set[Loan]:
        return self.borrow_live_at.get(point, set())


# ===========================================================================
# FACT LOADING
# ===========================================================================

_Parser = Callable[[str], object]


class FactLoader:
    """Reads the relation files of one function into :class:`AllInputFacts`.

    Usage::

        loader = FactLoader()
        loader.load_all_facts(Path("nll-facts/foo"))
        facts, interner = loader.facts, loader.interner
    """

    # relation name -> required?
    RELATIONS: Dict[str, bool] = {
        "borrow_region": True,
        "universal_region": False,
        "outlives": True,
        "region_live_at": True,
        "cfg_edge": False,
        "killed": False,
        "invalidates": False,
    }

    def __init__(self, interner: Optional[Interner] = None) -> None:
        self.interner = interner if interner is not None else Interner()
        self.facts = AllInputFacts()

    def _point(self, text: str) -> PointIndex:
        return self.interner.intern(Point.parse(text))

    def _schema(self, relation: str) -> Sequence[_Parser]:
        schemas: Dict[str, Sequence[_Parser]] = {
            "borrow_region": (parse_region, parse_loan, self._point),
            "universal_region": (parse_region,),
            "cfg_edge": (self._point, self._point),
            "killed": (parse_loan, self._point),
            "outlives": (parse_region, parse_region, self._point),
            "region_live_at": (parse_region, self._point),
            "invalidates": (self._point, parse_loan),
        }
        return schemas[relation]

    def load_all_facts(self, facts_dir: Union[str, Path]) -> AllInputFacts:
        """Load every relation file from *facts_dir*.

        Raises
        ------
        FactLoadError
            If the directory or a required relation file is missing, or a
            line cannot be parsed.
        """
        directory = Path(facts_dir)
        logger.debug("Reading facts from: %s", directory)
        if not directory.is_dir():
            raise FactLoadError(
                "fact directory not found",
                code=ErrorCodes.FACTS_NOT_FOUND,
                context={"path": str(directory)},
            )
        for relation, required in self.RELATIONS.items():
            path = directory / f"{relation}.facts"
            if not path.exists():
                if required:
                    raise FactLoadError(
                        f"missing relation file '{relation}.facts'",
                        code=ErrorCodes.FACTS_NOT_FOUND,
                        context={"path": str(path)},
                    )
                logger.debug("Optional relation %s absent, treating as empty", relation)
                continue
            rows = list(self._read_rows(path, self._schema(relation)))
            target = getattr(self.facts, relation)
            for row in rows:
                target.add(row[0] if len(row) == 1 else row)
            logger.debug("Loaded %d tuple(s) of %s", len(rows), relation)
        return self.facts

    @staticmethod
    def _read_rows(path: Path, parsers: Sequence[_Parser]) -> Iterator[tuple]:
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            raise FactLoadError(
                f"cannot read fact file: {exc}",
                code=ErrorCodes.FACTS_NOT_FOUND,
                context={"path": str(path)},
            ) from exc
        except UnicodeDecodeError as exc:
            raise FactLoadError(
                f"fact file is not valid UTF-8: {exc}",
                context={"path": str(path)},
            ) from exc
        for lineno, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            fields = [_unquote(f) for f in line.split("\t")]
            if len(fields) != len(parsers):
                raise FactLoadError(
                    f"expected {len(parsers)} field(s), found {len(fields)}",
                    context={"path": str(path), "line": lineno},
                )
            try:
                yield tuple(parse(text) for parse, text in zip(parsers, fields))
            except ValueError as exc:
                raise FactLoadError(
                    str(exc), context={"path": str(path), "line": lineno}
                ) from exc


def _unquote(text: str) -> str:
    text = text.strip()
    if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
        return text[1:-1]
    return text


def group_by_point(
    tuples: Set[Tuple],
) -> Dict[PointIndex, List[Tuple]]:
    """Group relation tuples by their last column (the point)."""
    grouped: Dict[PointIndex, List[Tuple]] = defaultdict(list)
    for row in tuples:
        grouped[row[-1]].append(row[:-1])
    return grouped


__all__ = [
    "AllInputFacts",
    "AllOutputFacts",
    "FactLoader",
    "Interner",
    "Loan",
    "Point",
    "PointIndex",
    "PointType",
    "Region",
    "format_loan",
    "format_region",
    "group_by_point",
    "parse_loan",
    "parse_region",
]
