"""
mir_dump.mir
============

Control-flow graph model for one compiled function (MIR body).

A body is an ordered list of basic blocks.  Each block holds a sequence of
statements followed by exactly one terminator.  Program locations are
``(block, statement_index)`` pairs where ``statement_index == len(statements)``
designates the terminator.

The host driver that lowers a function to MIR is an external collaborator; it
exports bodies as a JSON *bundle* which :func:`load_bundle` turns into
:class:`MirFunction` records.

Public API
----------
    Location         - (block, statement index) program location
    Place            - a local plus an optional projection
    StatementKind    - statement classification
    TerminatorKind   - terminator classification
    Statement        - one MIR statement
    Terminator       - the control-flow instruction ending a block
    BasicBlock       - statements + terminator
    LocalDecl        - a declared local (`_N`)
    MirBody          - the CFG of one function
    MirFunction      - a named body plus its definitely-initialized result
    load_bundle      - read a JSON bundle exported by the host driver

Bundle format
-------------
::

    {
      "functions": [
        {
          "name": "foo",
          "def_path": "foo",
          "local_decls": [{"name": null, "ty": "()"}, {"name": "a", "ty": "T"}],
          "basic_blocks": [
            {
              "statements": [
                {"kind": "assign", "text": "_2 = &mut (_1.1: u32)", "place": "_2"}
              ],
              "terminator": {"kind": "goto", "text": "goto -> bb1", "targets": [1]}
            }
          ],
          "initialization": {
            "before_block": {"0": ["_1"]},
            "after_statement": {"bb0[0]": ["_1", "_2"]}
          }
        }
      ]
    }
"""

from __future__ import annotations

import enum
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Any,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
)

from mir_dump.errors import ErrorCodes, MirLoadError

logger = logging.getLogger(__name__)

Local = int
BlockId = int

_LOCAL_RE = re.compile(r"^_(?P<local>\d+)$")
_LOCATION_RE = re.compile(r"^bb(?P<block>\d+)\[(?P<index>\d+)\]$")


# ---------------------------------------------------------------------------
# Locations and places
# ---------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class Location:
    """A statement (or terminator) position inside a body."""

    block: BlockId
    statement_index: int

    @classmethod
    def parse(cls, text: str) -> "Location":
        """Parse the ``bbB[S]`` spelling used by rustc dumps."""
        m = _LOCATION_RE.match(text.strip())
        if m is None:
            raise ValueError(f"not a location: {text!r}")
        return cls(int(m.group("block")), int(m.group("index")))

    def __str__(self) -> str:
        return f"bb{self.block}[{self.statement_index}]"


def format_local(local: Local) -> str:
    return f"_{local}"


@dataclass(frozen=True)
class Place:
    """A local variable, possibly projected (``(*_1).f``, ``_2.0`` ...)."""

    local: Local
    projection: Tuple[str, ...] = ()

    @property
    def is_local(self) -> bool:
        """``True`` when the place is a bare local with no projection."""
        return not self.projection

    @classmethod
    def parse(cls, raw: Union[str, Mapping[str, Any]]) -> "Place":
        """Build a place from ``"_3"`` or ``{"local": 3, "projection": [...]}``."""
        if isinstance(raw, str):
            m = _LOCAL_RE.match(raw.strip())
            if m is None:
                raise ValueError(f"not a local: {raw!r}")
            return cls(int(m.group("local")))
        return cls(int(raw["local"]), tuple(str(p) for p in raw.get("projection", ())))

    def __str__(self) -> str:
        return format_local(self.local) + "".join(self.projection)


# ---------------------------------------------------------------------------
# Statements and terminators
# ---------------------------------------------------------------------------

class StatementKind(enum.Enum):
    """Classification of a MIR statement."""

    ASSIGN = "assign"
    FAKE_READ = "fake_read"
    SET_DISCRIMINANT = "set_discriminant"
    STORAGE_LIVE = "storage_live"
    STORAGE_DEAD = "storage_dead"
    INLINE_ASM = "inline_asm"
    RETAG = "retag"
    ASCRIBE_USER_TYPE = "ascribe_user_type"
    NOP = "nop"


class TerminatorKind(enum.Enum):
    """Classification of a MIR terminator."""

    GOTO = "goto"
    SWITCH_INT = "switch_int"
    RESUME = "resume"
    ABORT = "abort"
    RETURN = "return"
    UNREACHABLE = "unreachable"
    DROP = "drop"
    DROP_AND_REPLACE = "drop_and_replace"
    CALL = "call"
    ASSERT = "assert"
    YIELD = "yield"
    GENERATOR_DROP = "generator_drop"
    FALSE_EDGES = "false_edges"
    FALSE_UNWIND = "false_unwind"


@dataclass
class Statement:
    """One MIR statement.

    Attributes
    ----------
    kind : StatementKind
    text : str
        The statement as rendered by the compiler (``_2 = &mut _1``).
    place : Place or None
        Assigned place for ``ASSIGN`` statements.
    """

    kind: StatementKind
    text: str = ""
    place: Optional[Place] = None


@dataclass
class Terminator:
    """The control-flow instruction that ends a basic block.

    ``targets`` holds the normal successors (the goto target, every
    switch target, the drop/assert target, the call return block).
    ``unwind`` is the cleanup block of drops, calls and asserts and the
    unwind block of ``FALSE_UNWIND``.  ``imaginary_targets`` is only used by
    ``FALSE_EDGES``.
    """

    kind: TerminatorKind
    text: str = ""
    targets: List[BlockId] = field(default_factory=list)
    unwind: Optional[BlockId] = None
    imaginary_targets: List[BlockId] = field(default_factory=list)
    destination: Optional[Place] = None
    func: Optional[str] = None

    def label(self) -> str:
        """Text shown in the report; calls also show the callee path."""
        if self.kind is TerminatorKind.CALL and self.func:
            return f"{self.text}\n{self.func}"
        return self.text


@dataclass
class BasicBlock:
    """Statements of one basic block and its terminator."""

    index: BlockId
    statements: List[Statement] = field(default_factory=list)
    terminator: Optional[Terminator] = None

    @property
    def terminator_location(self) -> Location:
        return Location(self.index, len(self.statements))

    def __repr__(self) -> str:
        kind = self.terminator.kind.value if self.terminator else None
        return (
            f"BasicBlock(bb{self.index}, nstatements={len(self.statements)}, "
            f"terminator={kind!r})"
        )


@dataclass
class LocalDecl:
    """A declared local; ``name`` is ``None`` for compiler temporaries."""

    index: Local
    ty: str = ""
    name: Optional[str] = None

    @property
    def is_temporary(self) -> bool:
        return self.name is None


# ---------------------------------------------------------------------------
# MirBody
# ---------------------------------------------------------------------------

class MirBody:
    """The control-flow graph of a single function.

    Attributes
    ----------
    basic_blocks : list[BasicBlock]
        Blocks in declaration order; ``basic_blocks[i].index == i``.
    local_decls : list[LocalDecl]
    """

    def __init__(
        self,
        basic_blocks: Optional[List[BasicBlock]] = None,
        local_decls: Optional[List[LocalDecl]] = None,
    ) -> None:
        self.basic_blocks: List[BasicBlock] = basic_blocks if basic_blocks is not None else []
        self.local_decls: List[LocalDecl] = local_decls if local_decls is not None else []
        for position, bb in enumerate(self.basic_blocks):
            if bb.index != position:
                raise ValueError(
                    f"basic block bb{bb.index} declared at position {position}"
                )

    # ----- graph mutation ---------------------------------------------------

    def add_block(
        self,
        statements: Optional[List[Statement]] = None,
        terminator: Optional[Terminator] = None,
    ) -> BasicBlock:
        """Append a new block and return it."""
        bb = BasicBlock(len(self.basic_blocks), list(statements or []), terminator)
        self.basic_blocks.append(bb)
        return bb

    # ----- queries ----------------------------------------------------------

    def __getitem__(self, block: BlockId) -> BasicBlock:
        return self.basic_blocks[block]

    def __len__(self) -> int:
        return len(self.basic_blocks)

    def locations(self) -> Iterator[Location]:
        """Yield every location: blocks in order, statements, then terminator."""
        for bb in self.basic_blocks:
            for index in range(len(bb.statements) + 1):
                yield Location(bb.index, index)

    def contains(self, location: Location) -> bool:
        """``True`` if *location* names a statement or terminator of this body."""
        if not 0 <= location.block < len(self.basic_blocks):
            return False
        return 0 <= location.statement_index <= len(self[location.block].statements)

    def statement_at(self, location: Location) -> Optional[Statement]:
        """Return the statement at *location*, ``None`` for the terminator."""
        statements = self[location.block].statements
        if location.statement_index < len(statements):
            return statements[location.statement_index]
        return None

    def is_terminator_location(self, location: Location) -> bool:
        return location.statement_index == len(self[location.block].statements)

    def is_assignment(self, location: Location) -> bool:
        """Check if the statement at *location* is an assignment."""
        statement = self.statement_at(location)
        return statement is not None and statement.kind is StatementKind.ASSIGN

    def is_call(self, location: Location) -> bool:
        """Check if *location* is a call terminator."""
        if not self.is_terminator_location(location):
            return False
        terminator = self[location.block].terminator
        return terminator is not None and terminator.kind is TerminatorKind.CALL

    def call_destination(self, location: Location) -> Optional[Place]:
        """Return the destination place of the call at *location*.

        Returns ``None`` for diverging calls.  Asking for the destination of
        anything other than a call terminator is a programming error.
        """
        if not self.is_call(location):
            raise ValueError(f"expected a call terminator at {location}")
        return self[location.block].terminator.destination

    def local_decl(self, local: Local) -> Optional[LocalDecl]:
        if 0 <= local < len(self.local_decls):
            return self.local_decls[local]
        return None

    def __repr__(self) -> str:
        return (
            f"MirBody(blocks={len(self.basic_blocks)}, "
            f"locals={len(self.local_decls)})"
        )


@dataclass
class MirFunction:
    """A function exported by the host driver.

    Attributes
    ----------
    name : str
        The function's item name (used by the ``dump_mir_proc`` filter).
    def_path : str
        Fully qualified path, e.g. ``"krate::module::foo"``.
    body : MirBody
    initialization : object or None
        Definitely-initialized result (see :mod:`mir_dump.initialization`).
    """

    name: str
    def_path: str
    body: MirBody
    initialization: Any = None

    @property
    def filename_friendly_path(self) -> str:
        return filename_friendly(self.def_path)


def filename_friendly(def_path: str) -> str:
    """Turn ``krate::module::foo`` into ``module-foo`` (crate name dropped)."""
    parts = [p for p in def_path.split("::") if p]
    if len(parts) > 1:
        parts = parts[1:]
    text = "-".join(parts) or "unnamed"
    return re.sub(r"[^A-Za-z0-9_\-{}#.]", "_", text)


# ===========================================================================
# BUNDLE LOADING
# ===========================================================================

def _parse_statement(raw: Mapping[str, Any]) -> Statement:
    kind = StatementKind(raw["kind"])
    place = Place.parse(raw["place"]) if raw.get("place") is not None else None
    return Statement(kind=kind, text=str(raw.get("text", "")), place=place)


def _parse_terminator(raw: Mapping[str, Any]) -> Terminator:
    kind = TerminatorKind(raw["kind"])
    destination = raw.get("destination")
    return Terminator(
        kind=kind,
        text=str(raw.get("text", "")),
        targets=[int(t) for t in raw.get("targets", ())],
        unwind=int(raw["unwind"]) if raw.get("unwind") is not None else None,
        imaginary_targets=[int(t) for t in raw.get("imaginary_targets", ())],
        destination=Place.parse(destination) if destination is not None else None,
        func=raw.get("func"),
    )


def parse_body(raw: Mapping[str, Any]) -> MirBody:
    """Build a :class:`MirBody` from the ``basic_blocks``/``local_decls`` JSON."""
    local_decls = [
        LocalDecl(index=i, ty=str(decl.get("ty", "")), name=decl.get("name"))
        for i, decl in enumerate(raw.get("local_decls", ()))
    ]
    blocks: List[BasicBlock] = []
    for i, raw_bb in enumerate(raw.get("basic_blocks", ())):
        statements = [_parse_statement(s) for s in raw_bb.get("statements", ())]
        raw_term = raw_bb.get("terminator")
        terminator = _parse_terminator(raw_term) if raw_term is not None else None
        blocks.append(BasicBlock(i, statements, terminator))
    return MirBody(blocks, local_decls)


def parse_function(raw: Mapping[str, Any]) -> MirFunction:
    """Build one :class:`MirFunction` from its bundle entry."""
    from mir_dump.initialization import TabularInitialization

    name = str(raw["name"])
    body = parse_body(raw)
    init_raw = raw.get("initialization")
    initialization = (
        TabularInitialization.from_json(init_raw) if init_raw is not None else None
    )
    return MirFunction(
        name=name,
        def_path=str(raw.get("def_path", name)),
        body=body,
        initialization=initialization,
    )


def load_bundle(path: Union[str, Path]) -> List[MirFunction]:
    """Read a JSON bundle and return its functions in export order.

    Raises
    ------
    MirLoadError
        If the file is missing or does not describe valid bodies.
    """
    p = Path(path)
    logger.debug("Loading MIR bundle from %s", p)
    try:
        document = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise MirLoadError(
            "MIR bundle not found",
            code=ErrorCodes.BUNDLE_NOT_FOUND,
            context={"path": str(p)},
        ) from exc
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MirLoadError(
            f"cannot read MIR bundle: {exc}", context={"path": str(p)}
        ) from exc

    if not isinstance(document, dict):
        raise MirLoadError(
            "MIR bundle must be a JSON object", context={"path": str(p)}
        )

    functions: List[MirFunction] = []
    for position, raw in enumerate(document.get("functions", ())):
        try:
            functions.append(parse_function(raw))
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise MirLoadError(
                f"malformed function entry: {exc}",
                context={"path": str(p), "entry": position},
            ) from exc
    logger.info("Loaded %d function(s) from %s", len(functions), p)
    return functions


__all__ = [
    "BasicBlock",
    "BlockId",
    "Local",
    "LocalDecl",
    "Location",
    "MirBody",
    "MirFunction",
    "Place",
    "Statement",
    "StatementKind",
    "Terminator",
    "TerminatorKind",
    "filename_friendly",
    "format_local",
    "load_bundle",
    "parse_body",
    "parse_function",
]
