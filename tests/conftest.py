# tests/conftest.py
"""
Shared builders and fixtures for the mir_dump test-suite.

Bodies are assembled from small statement/terminator helpers; fact
directories are written to ``tmp_path`` in the tab-separated format the
compiler emits.
"""

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import pytest

from mir_dump.configuration import Configuration
from mir_dump.facts import AllInputFacts, AllOutputFacts, FactLoader
from mir_dump.mir import (
    BasicBlock,
    LocalDecl,
    MirBody,
    MirFunction,
    Place,
    Statement,
    StatementKind,
    Terminator,
    TerminatorKind,
)


# ── Body builders ───────────────────────────────────────────────

def assign(text: str = "_2 = _1", local: int = 2) -> Statement:
    return Statement(StatementKind.ASSIGN, text, Place(local))


def storage_live(local: int = 2) -> Statement:
    return Statement(StatementKind.STORAGE_LIVE, f"StorageLive(_{local})")


def goto(target: int) -> Terminator:
    return Terminator(TerminatorKind.GOTO, f"goto -> bb{target}", targets=[target])


def ret() -> Terminator:
    return Terminator(TerminatorKind.RETURN, "return")


def call(
    target: int,
    destination: Optional[Place] = None,
    cleanup: Optional[int] = None,
    func: str = "foo",
) -> Terminator:
    dest = str(destination) if destination is not None else "_0"
    return Terminator(
        TerminatorKind.CALL,
        f"{dest} = {func}(move _1) -> bb{target}",
        targets=[target],
        unwind=cleanup,
        destination=destination,
        func=func,
    )


def make_body(
    blocks: Sequence[Sequence],
    locals_: Optional[List[LocalDecl]] = None,
) -> MirBody:
    """Build a body from ``[(statements, terminator), ...]``."""
    basic_blocks = [
        BasicBlock(i, list(statements), terminator)
        for i, (statements, terminator) in enumerate(blocks)
    ]
    if locals_ is None:
        locals_ = [
            LocalDecl(0, "()"),
            LocalDecl(1, "&mut u32", "x"),
            LocalDecl(2, "&mut u32", "y"),
            LocalDecl(3, "&u32"),
        ]
    return MirBody(basic_blocks, locals_)


def simple_body() -> MirBody:
    """bb0: one assignment, goto bb1; bb1: return."""
    return make_body([
        ([assign("_2 = move _1")], goto(1)),
        ([], ret()),
    ])


# ── Fact helpers ────────────────────────────────────────────────

RENUMBER_MIR = """\
fn simple(_1: &'_#1r mut u32) -> () {
    let mut _0: ();
    let mut _2: &'_#2r mut u32;
    let _3: &'_#3r u32;

    bb0: {
        _2 = move _1;
        goto -> bb1;
    }
}
"""


def write_facts(directory: Path, relations: Dict[str, Iterable[Sequence[str]]]) -> Path:
    """Write ``<relation>.facts`` files; required relations default to empty."""
    directory.mkdir(parents=True, exist_ok=True)
    for relation, required in FactLoader.RELATIONS.items():
        rows = relations.get(relation)
        if rows is None and not required:
            continue
        lines = ["\t".join(f'"{field}"' for field in row) for row in rows or ()]
        (directory / f"{relation}.facts").write_text(
            "\n".join(lines) + ("\n" if lines else ""), encoding="utf-8"
        )
    return directory


def write_function_sources(
    config: Configuration,
    def_path: str,
    relations: Dict[str, Iterable[Sequence[str]]],
    renumber: str = RENUMBER_MIR,
) -> None:
    """Lay out the fact directory and renumber MIR where *config* expects them."""
    write_facts(config.facts_path(def_path), relations)
    path = config.renumber_path(def_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(renumber, encoding="utf-8")


SIMPLE_RELATIONS = {
    "outlives": [("'_#1r", "'_#2r", "Mid(bb0[0])")],
    "region_live_at": [("'_#2r", "Mid(bb0[0])")],
}


def simple_function(name: str = "simple") -> MirFunction:
    return MirFunction(name=name, def_path=f"krate::{name}", body=simple_body())


class RecordingSolver:
    """Solver double that records its input and returns canned output."""

    def __init__(self, output: Optional[AllOutputFacts] = None) -> None:
        self.output = output if output is not None else AllOutputFacts()
        self.calls: List[AllInputFacts] = []

    def __call__(self, facts: AllInputFacts) -> AllOutputFacts:
        self.calls.append(facts)
        return self.output


# ── Fixtures ────────────────────────────────────────────────────

@pytest.fixture
def config(tmp_path):
    return Configuration(
        log_dir=str(tmp_path / "log"),
        facts_dir=str(tmp_path / "nll-facts"),
    )
