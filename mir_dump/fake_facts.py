"""
mir_dump.fake_facts
===================

Completion of loan-creation facts that the compiler does not emit.

The borrow-check facts only record a ``borrow_region`` tuple where a
reference is *created* (``&x``).  Moving an existing reference into another
local, passing it to a call, or receiving one back from a call only produces
``outlives`` constraints.  To make such flows visible in the report, a fresh
("fake") loan is synthesized at every point that has non-universal
``outlives`` constraints but no loan-creation fact:

* **call terminator** - one loan into the region of the destination local
  (remembered as a *call magic wand*: the loan stands for the borrow the
  callee returned into that local), plus one loan per outlives pair into
  the pair's first region (*argument moves*);
* **assignment** - one loan into the second region of the lexicographically
  greatest outlives pair (*reference move*);
* anything else - nothing.

New loans are numbered after the largest existing loan id.  Completion only
ever adds tuples, so running it again over its own output adds nothing.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from mir_dump.errors import ConsistencyError, ErrorCodes
from mir_dump.facts import (
    AllInputFacts,
    Interner,
    Loan,
    PointIndex,
    Region,
    format_loan,
    format_region,
)
from mir_dump.mir import Local, MirBody
from mir_dump.regions import VariableRegions

logger = logging.getLogger(__name__)

OutlivesPair = Tuple[Region, Region]


@dataclass
class FakeFacts:
    """Loans synthesized by :func:`add_fake_facts`.

    Attributes
    ----------
    reference_moves : list of Loan
        Loans created for reference-to-reference assignments.
    argument_moves : list of Loan
        Loans created for references passed to calls.
    call_magic_wands : dict Loan -> Local
        Loans created for call destinations, with the receiving local.
    """

    reference_moves: List[Loan] = field(default_factory=list)
    argument_moves: List[Loan] = field(default_factory=list)
    call_magic_wands: Dict[Loan, Local] = field(default_factory=dict)

    @property
    def added(self) -> int:
        return (
            len(self.reference_moves)
            + len(self.argument_moves)
            + len(self.call_magic_wands)
        )


class _LoanCounter:
    """Monotone loan id source seeded after the current maximum."""

    def __init__(self, facts: AllInputFacts) -> None:
        current = facts.max_loan()
        self._next = (current if current is not None else 0) + 1

    def fresh(self) -> Loan:
        loan = self._next
        self._next += 1
        return loan


def outlives_at_points(facts: AllInputFacts) -> Dict[PointIndex, List[OutlivesPair]]:
    """Group outlives pairs by point, dropping pairs with a universal region.

    Pairs are sorted within each point.
    """
    universal = facts.universal_region
    grouped: Dict[PointIndex, List[OutlivesPair]] = defaultdict(list)
    for region1, region2, point in facts.outlives:
        if region1 not in universal and region2 not in universal:
            grouped[point].append((region1, region2))
    return {point: sorted(pairs) for point, pairs in grouped.items()}


def select_reference_move(pairs: List[OutlivesPair]) -> OutlivesPair:
    """Pick the outlives pair whose second region receives a reference move.

    The lexicographically greatest pair is chosen so that the result does
    not depend on set iteration order.
    """
    return max(pairs)


def add_fake_facts(
    all_facts: AllInputFacts,
    interner: Interner,
    body: MirBody,
    variable_regions: VariableRegions,
    call_magic_wands: Optional[Dict[Loan, Local]] = None,
) -> FakeFacts:
    """Add synthesized ``borrow_region`` facts to *all_facts* in place.

    Parameters
    ----------
    all_facts : AllInputFacts
        Input facts; only ``borrow_region`` is extended.
    interner : Interner
        Resolves fact points back to body locations.
    body : MirBody
        The CFG the facts were computed for.
    variable_regions : VariableRegions
        Region of each reference-typed local.
    call_magic_wands : dict, optional
        Map to record destination loans into; a new one is created when
        omitted.  Returned as :attr:`FakeFacts.call_magic_wands`.

    Returns
    -------
    FakeFacts
    """
    result = FakeFacts(
        call_magic_wands=call_magic_wands if call_magic_wands is not None else {}
    )
    counter = _LoanCounter(all_facts)
    loan_points = all_facts.loan_points()
    borrow_region = all_facts.borrow_region

    for point, pairs in sorted(outlives_at_points(all_facts).items()):
        if not pairs or point in loan_points:
            continue
        location = interner.resolve(point).location
        if not body.contains(location):
            raise ConsistencyError(
                "outlives fact refers to a location outside the body",
                code=ErrorCodes.UNKNOWN_POINT,
                context={"location": str(location)},
            )
        if body.is_call(location):
            destination = body.call_destination(location)
            logger.debug("Adding for call destination at %s: %s", location, pairs)
            if destination is not None:
                var_region = variable_regions.region_of(destination.local)
                if var_region is not None:
                    loan = counter.fresh()
                    logger.debug(
                        "var_region = %s loan = %s",
                        format_region(var_region), format_loan(loan),
                    )
                    borrow_region.add((var_region, loan, point))
                    result.call_magic_wands[loan] = destination.local
            for region1, region2 in pairs:
                loan = counter.fresh()
                borrow_region.add((region1, loan, point))
                result.argument_moves.append(loan)
                logger.debug(
                    "Adding call arg: %s %s %s %s",
                    format_region(region1), format_region(region2),
                    location, format_loan(loan),
                )
        elif body.is_assignment(location):
            region1, region2 = select_reference_move(pairs)
            loan = counter.fresh()
            borrow_region.add((region2, loan, point))
            result.reference_moves.append(loan)
            logger.debug(
                "Adding generic: %s %s %s %s",
                format_region(region1), format_region(region2),
                location, format_loan(loan),
            )

    logger.info(
        "Fact completion added %d loan(s): %d reference move(s), "
        "%d argument move(s), %d call destination(s)",
        result.added, len(result.reference_moves),
        len(result.argument_moves), len(result.call_magic_wands),
    )
    return result
