"""
mir_dump.driver
===============

Glue between the host driver's export and the report writer.

The host compiler driver calls back at two points of its run, mirrored by
:class:`Pipeline`:

* :meth:`Pipeline.on_parsed` - the function list is known; select the
  functions to dump;
* :meth:`Pipeline.on_analyzed` - bodies are available; dump each selected
  function.

The per-function work is the library call :func:`analyze_function`, which
loads the facts, completes and solves them and builds the report.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from mir_dump.configuration import Configuration
from mir_dump.errors import FunctionDumpError, MirDumpError, UnsupportedTerminatorError
from mir_dump.mir import MirFunction
from mir_dump.mir_dumper import FunctionReport, build_report, dump_function
from mir_dump.polonius_info import PoloniusInfo
from mir_dump.solver import Solver

logger = logging.getLogger(__name__)

SPEC_SUFFIX = "__spec"


def analyze_function(
    function: MirFunction,
    config: Configuration,
    solver: Optional[Solver] = None,
) -> FunctionReport:
    """Load, complete and solve the facts of *function* and build its report.

    Raises
    ------
    FactLoadError
        If the relation files or the renumber MIR are missing or corrupt.
    ConsistencyError
        If the facts contradict themselves.
    UnsupportedTerminatorError
        If the body uses a terminator kind with no edge layout.
    """
    def_path = function.filename_friendly_path
    logger.debug("Analyzing %s (%s)", function.name, def_path)
    info = PoloniusInfo.load(
        function.body,
        config.facts_path(def_path),
        config.renumber_path(def_path),
        solver=solver,
    )
    logger.debug("%r", info)
    return build_report(
        function.body,
        info,
        function.initialization,
        name=function.name,
        def_path=def_path,
    )


@dataclass
class DumpSummary:
    """Outcome of one pipeline run.

    Attributes
    ----------
    written : list of (str, Path)
        Function name and report path of every report written.
    skipped : list of str
        Functions filtered out.
    failed : list of (str, MirDumpError)
        Functions whose report could not be produced.
    """

    written: List[Tuple[str, Path]] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[Tuple[str, MirDumpError]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def __repr__(self) -> str:
        return (
            f"DumpSummary(written={len(self.written)}, "
            f"skipped={len(self.skipped)}, failed={len(self.failed)})"
        )


class Pipeline:
    """Selects and dumps the functions of one compilation.

    Parameters
    ----------
    config : Configuration
    solver : Solver, optional
        Passed to every :func:`analyze_function` call.
    keep_going : bool
        Record per-function failures in the summary instead of raising.
    """

    def __init__(
        self,
        config: Configuration,
        solver: Optional[Solver] = None,
        keep_going: bool = False,
    ) -> None:
        self.config = config
        self.solver = solver
        self.keep_going = keep_going
        self.summary = DumpSummary()

    def on_parsed(self, functions: Iterable[MirFunction]) -> List[MirFunction]:
        """Return the functions that should be dumped, in input order."""
        selected: List[MirFunction] = []
        proc = self.config.dump_mir_proc
        for function in functions:
            if function.name.endswith(SPEC_SUFFIX):
                logger.debug("Skipping specification function %s", function.name)
                self.summary.skipped.append(function.name)
            elif proc is not None and function.name != proc:
                self.summary.skipped.append(function.name)
            else:
                selected.append(function)
        return selected

    def on_analyzed(self, functions: Iterable[MirFunction]) -> DumpSummary:
        """Dump every function in *functions*.

        ``ConsistencyError`` is never caught here.
        """
        if not self.config.dump_mir_info:
            logger.info("dump_mir_info is disabled; nothing to do")
            return self.summary
        for function in functions:
            try:
                path = self.dump(function)
            except (FunctionDumpError, UnsupportedTerminatorError) as exc:
                if not self.keep_going:
                    raise
                logger.error("Failed to dump %s: %s", function.name, exc)
                self.summary.failed.append((function.name, exc))
            else:
                self.summary.written.append((function.name, path))
        return self.summary

    def dump(self, function: MirFunction) -> Path:
        """Analyze *function* and write its report; return the report path."""
        logger.info("Dumping MIR info for %s", function.def_path)
        report = analyze_function(function, self.config, self.solver)
        return dump_function(
            report, self.config.graph_path(report.def_path), self.config
        )

    def run(self, functions: Iterable[MirFunction]) -> DumpSummary:
        """Invoke both callbacks in order."""
        return self.on_analyzed(self.on_parsed(functions))
