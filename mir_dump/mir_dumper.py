"""
mir_dump.mir_dumper
===================

Per-program-point report of one function and its Graphviz rendering.

:func:`build_report` walks the body once (blocks in declaration order,
statements by index, terminator last) and produces a :class:`FunctionReport`
with one :class:`PointRecord` per statement/terminator and the control-flow
edges of every terminator.  :class:`MirInfoPrinter` turns a report into a DOT
digraph whose nodes are HTML tables, one per basic block::

    bb0 | Nr | statement | Loans (Start, Mid) | Borrow Regions (Start, Mid)
        |    |           | Regions (Start, Mid) | Definitely Initialized

Edges are drawn plain for normal successors, red for unwind (cleanup)
successors and dashed for imaginary ones.

Public API
----------
    EdgeKind          - normal / unwind / imaginary
    Edge              - one control-flow transition
    PointRecord       - the facts of one statement or terminator
    BlockReport       - the records and edges of one block
    FunctionReport    - the whole report
    terminator_edges  - edges leaving a block
    build_report      - walk a body and query its facts
    MirInfoPrinter    - DOT writer
    write_dot         - write a report to a stream
    render_dot        - report -> DOT text
    dump_function     - render and write to a file
"""

from __future__ import annotations

import contextlib
import enum
import io
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    AbstractSet,
    Any,
    Iterable,
    Iterator,
    List,
    Optional,
    TextIO,
    Tuple,
    Union,
)

from mir_dump.configuration import Configuration
from mir_dump.errors import ReportWriteError, UnsupportedTerminatorError
from mir_dump.facts import Loan, PointType, Region, format_loan, format_region
from mir_dump.fake_facts import FakeFacts
from mir_dump.initialization import InitializationResult, NoInitialization
from mir_dump.mir import (
    BasicBlock,
    BlockId,
    Local,
    LocalDecl,
    Location,
    MirBody,
    TerminatorKind,
    format_local,
)
from mir_dump.polonius_info import PoloniusInfo

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Edges
# ---------------------------------------------------------------------------

class EdgeKind(enum.Enum):
    """Classification of a control-flow edge in the report."""

    NORMAL = "normal"
    UNWIND = "unwind"
    IMAGINARY = "imaginary"


@dataclass(frozen=True)
class Edge:
    """A transition from a block to a block or to a named exit node."""

    source: BlockId
    target: Union[BlockId, str]
    kind: EdgeKind = EdgeKind.NORMAL

    @property
    def target_name(self) -> str:
        if isinstance(self.target, str):
            return self.target
        return f"bb{self.target}"

    def __repr__(self) -> str:
        return f"Edge(bb{self.source} -> {self.target_name}, kind={self.kind.value!r})"


_EXIT_NODES = {
    TerminatorKind.RESUME: "resume",
    TerminatorKind.ABORT: "abort",
    TerminatorKind.RETURN: "return",
}


def terminator_edges(block: BasicBlock) -> List[Edge]:
    """Return the edges leaving *block* according to its terminator kind.

    Raises
    ------
    UnsupportedTerminatorError
        For generator terminators (``yield``, ``generator_drop``).
    """
    term = block.terminator
    if term is None:
        return []
    bb = block.index
    kind = term.kind
    edges: List[Edge] = []
    if kind in (TerminatorKind.GOTO, TerminatorKind.SWITCH_INT):
        edges.extend(Edge(bb, t) for t in term.targets)
    elif kind in _EXIT_NODES:
        edges.append(Edge(bb, _EXIT_NODES[kind]))
    elif kind is TerminatorKind.UNREACHABLE:
        pass
    elif kind in (
        TerminatorKind.DROP,
        TerminatorKind.DROP_AND_REPLACE,
        TerminatorKind.CALL,
        TerminatorKind.ASSERT,
    ):
        edges.extend(Edge(bb, t) for t in term.targets)
        if term.unwind is not None:
            edges.append(Edge(bb, term.unwind, EdgeKind.UNWIND))
    elif kind is TerminatorKind.FALSE_EDGES:
        edges.extend(Edge(bb, t) for t in term.targets)
        edges.extend(
            Edge(bb, t, EdgeKind.IMAGINARY) for t in term.imaginary_targets
        )
    elif kind is TerminatorKind.FALSE_UNWIND:
        edges.extend(Edge(bb, t) for t in term.targets)
        if term.unwind is not None:
            edges.append(Edge(bb, term.unwind, EdgeKind.IMAGINARY))
    else:
        raise UnsupportedTerminatorError(kind.value, bb)
    return edges


# ---------------------------------------------------------------------------
# Report records
# ---------------------------------------------------------------------------

@dataclass
class PointRecord:
    """Facts about one statement (or the terminator) of a block."""

    location: Location
    text: str
    is_terminator: bool = False
    loans_start: AbstractSet[Loan] = frozenset()
    loans_mid: AbstractSet[Loan] = frozenset()
    borrow_regions_start: AbstractSet[Tuple[Region, Loan]] = frozenset()
    borrow_regions_mid: AbstractSet[Tuple[Region, Loan]] = frozenset()
    regions_start: AbstractSet[Tuple[Region, Optional[Local]]] = frozenset()
    regions_mid: AbstractSet[Tuple[Region, Optional[Local]]] = frozenset()
    initialized_after: AbstractSet[str] = frozenset()


@dataclass
class BlockReport:
    index: BlockId
    initialized_before: AbstractSet[str] = frozenset()
    records: List[PointRecord] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)


@dataclass
class FunctionReport:
    """The complete report of one function.

    Attributes
    ----------
    name : str
    def_path : str
    blocks : list[BlockReport]
    local_decls : list[LocalDecl]
    variable_regions : list of (Local, Region)
    fake_facts : FakeFacts
    """

    name: str
    def_path: str
    blocks: List[BlockReport] = field(default_factory=list)
    local_decls: List[LocalDecl] = field(default_factory=list)
    variable_regions: List[Tuple[Local, Region]] = field(default_factory=list)
    fake_facts: FakeFacts = field(default_factory=FakeFacts)

    def records(self) -> Iterator[PointRecord]:
        for block in self.blocks:
            yield from block.records

    def edges(self) -> Iterator[Edge]:
        for block in self.blocks:
            yield from block.edges

    def record_at(self, location: Location) -> Optional[PointRecord]:
        for record in self.records():
            if record.location == location:
                return record
        return None


def _point_record(
    info: PoloniusInfo,
    initialization: InitializationResult,
    location: Location,
    text: str,
    is_terminator: bool,
) -> PointRecord:
    start = info.get_point(location, PointType.START)
    mid = info.get_point(location, PointType.MID)
    return PointRecord(
        location=location,
        text=text,
        is_terminator=is_terminator,
        loans_start=info.live_loans_at(start),
        loans_mid=info.live_loans_at(mid),
        borrow_regions_start=info.borrow_regions_at(location, PointType.START),
        borrow_regions_mid=info.borrow_regions_at(location, PointType.MID),
        regions_start=info.regions_live_at(location, PointType.START),
        regions_mid=info.regions_live_at(location, PointType.MID),
        initialized_after=initialization.after_statement(location),
    )


def build_report(
    body: MirBody,
    info: PoloniusInfo,
    initialization: Optional[InitializationResult] = None,
    *,
    name: str = "",
    def_path: str = "",
) -> FunctionReport:
    """Walk *body* once and collect a :class:`FunctionReport`."""
    init = initialization if initialization is not None else NoInitialization()
    report = FunctionReport(
        name=name,
        def_path=def_path or name,
        local_decls=list(body.local_decls),
        variable_regions=list(info.variable_regions.items()),
        fake_facts=info.fake_facts,
    )
    for bb in body.basic_blocks:
        block = BlockReport(index=bb.index, initialized_before=init.before_block(bb.index))
        for index, statement in enumerate(bb.statements):
            block.records.append(
                _point_record(info, init, Location(bb.index, index), statement.text, False)
            )
        term_text = bb.terminator.label() if bb.terminator is not None else ""
        block.records.append(
            _point_record(info, init, bb.terminator_location, term_text, True)
        )
        block.edges = terminator_edges(bb)
        report.blocks.append(block)
    logger.debug(
        "Built report for %s: %d block(s), %d edge(s)",
        report.def_path, len(report.blocks), sum(1 for _ in report.edges()),
    )
    return report


# ===========================================================================
# DOT RENDERING
# ===========================================================================

def to_html(value: Any) -> str:
    """Escape *value* for a Graphviz HTML-like label."""
    return (
        str(value)
        .replace("&", "&amp;")
        .replace(">", "&gt;")
        .replace("<", "&lt;")
        .replace('"', "&quot;")
        .replace("\n", "<br/>")
    )


def to_dot_string(value: Any) -> str:
    """Escape *value* for the inside of a quoted DOT string."""
    return (
        str(value)
        .replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
    )


def _format_loans(loans: Iterable[Loan]) -> str:
    return ", ".join(format_loan(l) for l in sorted(loans))


def _format_borrow_regions(pairs: Iterable[Tuple[Region, Loan]]) -> str:
    return ", ".join(
        f"({format_region(r)}, {format_loan(l)})" for r, l in sorted(pairs)
    )


def _format_regions(pairs: Iterable[Tuple[Region, Optional[Local]]]) -> str:
    items = sorted(pairs, key=lambda p: (p[0], -1 if p[1] is None else p[1]))
    parts = []
    for region, local in items:
        if local is None:
            parts.append(format_region(region))
        else:
            parts.append(f"{format_region(region)}: {format_local(local)}")
    return ", ".join(parts)


def _format_places(places: Iterable[str]) -> str:
    return ", ".join(sorted(places))


class MirInfoPrinter:
    """Writes a :class:`FunctionReport` as a Graphviz digraph to *stream*."""

    def __init__(self, config: Configuration, stream: TextIO) -> None:
        self.config = config
        self.stream = stream

    def _write(self, line: str) -> None:
        self.stream.write(line)
        self.stream.write("\n")

    def print_info(self, report: FunctionReport) -> None:
        self._write("digraph G {")
        self._write(f'  label="{to_dot_string(report.def_path)}";')
        self._write("  node [fontname=monospace, fontsize=10];")
        for block in report.blocks:
            self.visit_basic_block(block)
        if self.config.dump_show_temp_variables:
            self.print_temp_variables(report)
        if self.config.dump_debug_info:
            self.print_fake_loans(report)
        self._write("}")

    def print_temp_variables(self, report: FunctionReport) -> None:
        regions = dict(report.variable_regions)
        self._write('  "Variables" [shape="plaintext", label=<<table>')
        self._write('<tr><td colspan="4">VARIABLES</td></tr>')
        self._write("<tr><td>Name</td><td>Temporary</td><td>Type</td><td>Region</td></tr>")
        for decl in report.local_decls:
            region = regions.get(decl.index)
            self._write(
                f"<tr><td>{to_html(decl.name or '')}</td>"
                f"<td>{format_local(decl.index)}</td>"
                f"<td>{to_html(decl.ty)}</td>"
                f"<td>{to_html(format_region(region)) if region is not None else ''}</td></tr>"
            )
        self._write("</table>>];")

    def print_fake_loans(self, report: FunctionReport) -> None:
        fake = report.fake_facts
        wands = ", ".join(
            f"{format_loan(l)}: {format_local(v)}"
            for l, v in sorted(fake.call_magic_wands.items())
        )
        self._write('  "FakeLoans" [shape="plaintext", label=<<table>')
        self._write('<tr><td colspan="2">SYNTHESIZED LOANS</td></tr>')
        self._write(f"<tr><td>Reference moves</td><td>{_format_loans(fake.reference_moves)}</td></tr>")
        self._write(f"<tr><td>Argument moves</td><td>{_format_loans(fake.argument_moves)}</td></tr>")
        self._write(f"<tr><td>Call destinations</td><td>{wands}</td></tr>")
        self._write("</table>>];")

    def visit_basic_block(self, block: BlockReport) -> None:
        show_nr = self.config.dump_show_statement_indices
        self._write(f'  "bb{block.index}" [shape="plaintext", label=<<table>')
        self._write("<tr>")
        self._write(f'<td colspan="{2 if show_nr else 1}">bb{block.index}</td>')
        self._write('<td colspan="6"></td>')
        self._write("<td>Definitely Initialized</td>")
        self._write("</tr>")

        self._write("<tr>")
        if show_nr:
            self._write("<td>Nr</td>")
        self._write("<td>statement</td>")
        self._write('<td colspan="2">Loans</td>')
        self._write('<td colspan="2">Borrow Regions</td>')
        self._write('<td colspan="2">Regions</td>')
        self._write(f"<td>{to_html(_format_places(block.initialized_before))}</td>")
        self._write("</tr>")

        for record in block.records:
            self.visit_record(record)
        self._write("</table>>];")

        for edge in block.edges:
            self.write_edge(edge)

    def visit_record(self, record: PointRecord) -> None:
        self._write("<tr>")
        if self.config.dump_show_statement_indices:
            nr = "" if record.is_terminator else str(record.location.statement_index)
            self._write(f"<td>{nr}</td>")
        self._write(f"<td>{to_html(record.text)}</td>")
        self._write(f"<td>{_format_loans(record.loans_start)}</td>")
        self._write(f"<td>{_format_loans(record.loans_mid)}</td>")
        self._write(f"<td>{to_html(_format_borrow_regions(record.borrow_regions_start))}</td>")
        self._write(f"<td>{to_html(_format_borrow_regions(record.borrow_regions_mid))}</td>")
        self._write(f"<td>{to_html(_format_regions(record.regions_start))}</td>")
        self._write(f"<td>{to_html(_format_regions(record.regions_mid))}</td>")
        self._write(f"<td>{to_html(_format_places(record.initialized_after))}</td>")
        self._write("</tr>")

    def write_edge(self, edge: Edge) -> None:
        style = ""
        if edge.kind is EdgeKind.UNWIND:
            style = " [color=red]"
        elif edge.kind is EdgeKind.IMAGINARY:
            style = ' [style="dashed"]'
        self._write(f'  "bb{edge.source}" -> "{edge.target_name}"{style}')


def write_dot(report: FunctionReport, stream: TextIO, config: Configuration) -> None:
    """Write the DOT digraph of *report* to *stream*."""
    MirInfoPrinter(config, stream).print_info(report)


def render_dot(report: FunctionReport, config: Configuration) -> str:
    """Return the DOT text of *report*."""
    buffer = io.StringIO()
    write_dot(report, buffer, config)
    return buffer.getvalue()


def dump_function(
    report: FunctionReport, path: Union[str, Path], config: Configuration
) -> Path:
    """Render *report* and write it to *path*.

    The text is rendered in memory and written to a temporary sibling file
    which then replaces *path*, so *path* never holds a partial report.

    Raises
    ------
    ReportWriteError
        If the file cannot be written.
    """
    target = Path(path)
    text = render_dot(report, config)
    tmp = target.with_name(target.name + ".tmp")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp, "w", encoding="utf-8") as fh:
            fh.write(text)
        os.replace(tmp, target)
    except OSError as exc:
        with contextlib.suppress(OSError):
            tmp.unlink(missing_ok=True)
        raise ReportWriteError(
            f"cannot write report: {exc}",
            context={"path": str(target)},
            function=report.def_path,
        ) from exc
    logger.info("Wrote %s", target)
    return target
