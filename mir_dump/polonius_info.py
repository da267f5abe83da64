"""
mir_dump.polonius_info
======================

Per-function borrow-check information: loaded facts, completed facts, solver
output and the local/region association, behind a small query interface.

Construction runs three strictly ordered phases:

1. load the relation files and the renumber MIR, intern every point of the
   body, then freeze the interner;
2. complete the loan-creation facts (:func:`~mir_dump.fake_facts.add_fake_facts`);
3. run the solver over the completed facts.

After construction nothing is mutated; the object is discarded once the
function's report has been produced.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import FrozenSet, Optional, Set, Tuple, Union

from mir_dump.facts import (
    AllInputFacts,
    AllOutputFacts,
    FactLoader,
    Interner,
    Loan,
    Point,
    PointIndex,
    PointType,
    Region,
    group_by_point,
)
from mir_dump.fake_facts import FakeFacts, add_fake_facts
from mir_dump.mir import Local, Location, MirBody
from mir_dump.regions import VariableRegions, load_variable_regions
from mir_dump.solver import Solver, default_solver

logger = logging.getLogger(__name__)


class PoloniusInfo:
    """Query façade over the facts of one function.

    Attributes
    ----------
    borrowck_in_facts : AllInputFacts
        Input facts, including the synthesized loans.
    borrowck_out_facts : AllOutputFacts
        Solver output.
    interner : Interner
        Frozen point interner.
    variable_regions : VariableRegions
    fake_facts : FakeFacts
        What completion added.
    """

    def __init__(
        self,
        borrowck_in_facts: AllInputFacts,
        borrowck_out_facts: AllOutputFacts,
        interner: Interner,
        variable_regions: VariableRegions,
        fake_facts: Optional[FakeFacts] = None,
    ) -> None:
        self.borrowck_in_facts = borrowck_in_facts
        self.borrowck_out_facts = borrowck_out_facts
        self.interner = interner
        self.variable_regions = variable_regions
        self.fake_facts = fake_facts if fake_facts is not None else FakeFacts()
        self._borrow_regions = group_by_point(borrowck_in_facts.borrow_region)
        self._live_regions = group_by_point(borrowck_in_facts.region_live_at)

    # ----- construction -----------------------------------------------------

    @classmethod
    def from_facts(
        cls,
        body: MirBody,
        facts: AllInputFacts,
        interner: Interner,
        variable_regions: VariableRegions,
        solver: Optional[Solver] = None,
    ) -> "PoloniusInfo":
        """Complete *facts* and solve them.

        *facts* is extended in place by the completion step.
        """
        for location in body.locations():
            interner.get_point_index(location, PointType.START)
            interner.get_point_index(location, PointType.MID)
        interner.freeze()

        fake_facts = add_fake_facts(facts, interner, body, variable_regions)

        solve = solver if solver is not None else default_solver()
        output = solve(facts)
        return cls(facts, output, interner, variable_regions, fake_facts)

    @classmethod
    def load(
        cls,
        body: MirBody,
        facts_dir: Union[str, Path],
        renumber_path: Union[str, Path],
        solver: Optional[Solver] = None,
    ) -> "PoloniusInfo":
        """Read the fact sources of one function and build its info.

        Raises
        ------
        FactLoadError
            If either source is missing or corrupt.
        """
        loader = FactLoader()
        loader.load_all_facts(facts_dir)
        variable_regions = load_variable_regions(renumber_path)
        return cls.from_facts(
            body, loader.facts, loader.interner, variable_regions, solver=solver
        )

    # ----- queries ----------------------------------------------------------

    def get_point(self, location: Location, typ: PointType) -> PointIndex:
        return self.interner.get_point_index(location, typ)

    def resolve(self, point: PointIndex) -> Point:
        return self.interner.resolve(point)

    def live_loans_at(self, point: PointIndex) -> FrozenSet[Loan]:
        """Loans live at *point*; empty if the solver derived none there."""
        return frozenset(self.borrowck_out_facts.live_loans(point))

    def borrow_regions_at(
        self, location: Location, typ: PointType
    ) -> Set[Tuple[Region, Loan]]:
        """Loan-creation facts at exactly ``(location, typ)``."""
        point = self.get_point(location, typ)
        return {(region, loan) for region, loan in self._borrow_regions.get(point, ())}

    def regions_live_at(
        self, location: Location, typ: PointType
    ) -> Set[Tuple[Region, Optional[Local]]]:
        """Regions live at ``(location, typ)`` with the local owning each."""
        point = self.get_point(location, typ)
        return {
            (region, self.find_variable(region))
            for (region,) in self._live_regions.get(point, ())
        }

    def find_variable(self, region: Region) -> Optional[Local]:
        """Find the local that has *region* in its type.

        Raises
        ------
        ConsistencyError
            If two locals are associated with *region*.
        """
        return self.variable_regions.find_variable(region)

    def __repr__(self) -> str:
        return (
            f"PoloniusInfo(points={len(self.interner)}, "
            f"loans={len(self.borrowck_in_facts.borrow_region)}, "
            f"fake={self.fake_facts.added})"
        )
