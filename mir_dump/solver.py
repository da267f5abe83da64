"""
mir_dump.solver
===============

Fixed-point evaluation of the borrow-check rules.

The solver is an external collaborator: anything that maps
:class:`~mir_dump.facts.AllInputFacts` to
:class:`~mir_dump.facts.AllOutputFacts` satisfies the :class:`Solver`
protocol.  The caller trusts it to be monotone (more input facts never remove
derived facts).  :class:`NaiveSolver` is bundled as the default; it evaluates
the "naive" rule set to a fixpoint::

    subset(R1, R2, P)      :- outlives(R1, R2, P).
    subset(R1, R3, P)      :- subset(R1, R2, P), subset(R2, R3, P).
    subset(R1, R2, Q)      :- subset(R1, R2, P), cfg_edge(P, Q),
                              region_live_at(R1, Q), region_live_at(R2, Q).
    requires(R, L, P)      :- borrow_region(R, L, P).
    requires(R2, L, P)     :- requires(R1, L, P), subset(R1, R2, P).
    requires(R, L, Q)      :- requires(R, L, P), !killed(L, P), cfg_edge(P, Q),
                              region_live_at(R, Q).
    borrow_live_at(L, P)   :- requires(R, L, P), region_live_at(R, P).
    errors(L, P)           :- invalidates(P, L), borrow_live_at(L, P).

Each derived relation is computed with a delta worklist: only tuples added
in the previous round are joined again, until a round adds nothing.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from typing import Dict, Protocol, Set, Tuple, runtime_checkable

from mir_dump.facts import (
    AllInputFacts,
    AllOutputFacts,
    Loan,
    PointIndex,
    Region,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class Solver(Protocol):
    """Protocol for a borrow-check solver.

    A solver is a pure function of the (completed) input facts.
    """

    def __call__(self, facts: AllInputFacts) -> AllOutputFacts:
        ...


class NaiveSolver:
    """Evaluates the naive borrow-check rules to a fixpoint.

    Parameters
    ----------
    max_iterations : int
        Safety bound on worklist rounds per relation.
    """

    def __init__(self, max_iterations: int = 1_000_000) -> None:
        self.max_iterations = max_iterations
        self.iterations = 0
        self.elapsed_seconds = 0.0

    def __call__(self, facts: AllInputFacts) -> AllOutputFacts:
        return self.solve(facts)

    def solve(self, facts: AllInputFacts) -> AllOutputFacts:
        """Run the analysis to fixpoint.

        Returns
        -------
        AllOutputFacts
        """
        t0 = time.monotonic()
        self.iterations = 0

        successors: Dict[PointIndex, Set[PointIndex]] = defaultdict(set)
        for p, q in facts.cfg_edge:
            successors[p].add(q)
        live: Set[Tuple[Region, PointIndex]] = set(facts.region_live_at)
        killed: Set[Tuple[Loan, PointIndex]] = set(facts.killed)

        subset = self._subset(facts, successors, live)
        requires = self._requires(facts, subset, successors, live, killed)

        output = AllOutputFacts()
        for r1, r2, p in subset:
            output.subset.setdefault(p, {}).setdefault(r1, set()).add(r2)
        for r, l, p in requires:
            output.restricts.setdefault(p, {}).setdefault(r, set()).add(l)
            if (r, p) in live:
                output.borrow_live_at.setdefault(p, set()).add(l)
        for p, l in facts.invalidates:
            if l in output.borrow_live_at.get(p, ()):
                output.errors.setdefault(p, set()).add(l)

        self.elapsed_seconds = time.monotonic() - t0
        logger.debug(
            "Solver finished: %d subset, %d requires tuple(s), %d error point(s) "
            "in %d round(s), %.3fs",
            len(subset), len(requires), len(output.errors),
            self.iterations, self.elapsed_seconds,
        )
        return output

    # ----- relations --------------------------------------------------------

    def _subset(
        self,
        facts: AllInputFacts,
        successors: Dict[PointIndex, Set[PointIndex]],
        live: Set[Tuple[Region, PointIndex]],
    ) -> Set[Tuple[Region, Region, PointIndex]]:
        subset: Set[Tuple[Region, Region, PointIndex]] = set(facts.outlives)
        # (point, r1) -> {r2} and (point, r2) -> {r1}
        by_source: Dict[Tuple[PointIndex, Region], Set[Region]] = defaultdict(set)
        by_target: Dict[Tuple[PointIndex, Region], Set[Region]] = defaultdict(set)
        for r1, r2, p in subset:
            by_source[(p, r1)].add(r2)
            by_target[(p, r2)].add(r1)

        delta = set(subset)
        while delta:
            self._tick()
            new: Set[Tuple[Region, Region, PointIndex]] = set()
            for r1, r2, p in delta:
                for r3 in by_source.get((p, r2), ()):
                    new.add((r1, r3, p))
                for r0 in by_target.get((p, r1), ()):
                    new.add((r0, r2, p))
                for q in successors.get(p, ()):
                    if (r1, q) in live and (r2, q) in live:
                        new.add((r1, r2, q))
            delta = new - subset
            for r1, r2, p in delta:
                subset.add((r1, r2, p))
                by_source[(p, r1)].add(r2)
                by_target[(p, r2)].add(r1)
        return subset

    def _requires(
        self,
        facts: AllInputFacts,
        subset: Set[Tuple[Region, Region, PointIndex]],
        successors: Dict[PointIndex, Set[PointIndex]],
        live: Set[Tuple[Region, PointIndex]],
        killed: Set[Tuple[Loan, PointIndex]],
    ) -> Set[Tuple[Region, Loan, PointIndex]]:
        outgoing: Dict[Tuple[PointIndex, Region], Set[Region]] = defaultdict(set)
        for r1, r2, p in subset:
            outgoing[(p, r1)].add(r2)

        requires: Set[Tuple[Region, Loan, PointIndex]] = set(facts.borrow_region)
        delta = set(requires)
        while delta:
            self._tick()
            new: Set[Tuple[Region, Loan, PointIndex]] = set()
            for r, l, p in delta:
                for r2 in outgoing.get((p, r), ()):
                    new.add((r2, l, p))
                if (l, p) in killed:
                    continue
                for q in successors.get(p, ()):
                    if (r, q) in live:
                        new.add((r, l, q))
            delta = new - requires
            requires |= delta
        return requires

    def _tick(self) -> None:
        self.iterations += 1
        if self.iterations > self.max_iterations:
            raise RuntimeError(
                f"solver did not converge within {self.max_iterations} rounds"
            )


def default_solver() -> Solver:
    return NaiveSolver()
