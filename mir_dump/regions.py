"""
mir_dump.regions
================

Association between MIR locals and the region in their (reference) type.

The association is recovered from the "renumber" MIR dump
(``rustc.<def_path>.-------.renumber.0.mir``), in which every region has been
replaced by a numbered inference variable::

    fn foo(_1: &'_#1r mut T) -> () {
        let mut _2: &'_#3r mut u32;
        let _3: &'_#4r u32;

Parsing is line oriented and tolerant: lines that are not a function
signature or a ``let`` declaration of a reference-typed local are skipped.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional, Tuple, Union

from mir_dump.errors import ConsistencyError, ErrorCodes, FactLoadError
from mir_dump.facts import Region, format_region
from mir_dump.mir import Local, format_local

logger = logging.getLogger(__name__)

_FN_SIG = re.compile(r"^\s*fn\s+[\w:<>]+\((?P<args>.*)\)(?:\s*->\s*(?P<result>.*?))?\s*\{?\s*$")
_ARG = re.compile(r"^_(?P<local>\d+):\s*&'_#(?P<rvid>\d+)r\s")
_LOCAL = re.compile(r"^\s+let(?:\s+mut)?\s+_(?P<local>\d+):\s*&'_#(?P<rvid>\d+)r\s")


class VariableRegions:
    """Injective ``local -> region`` table.

    Each local has at most one region.  The reverse lookup
    (:meth:`find_variable`) must also be unique; two locals sharing a region
    means the loaded facts contradict themselves.
    """

    def __init__(self, mapping: Optional[Dict[Local, Region]] = None) -> None:
        self._regions: Dict[Local, Region] = dict(mapping or {})

    def region_of(self, local: Local) -> Optional[Region]:
        return self._regions.get(local)

    def find_variable(self, region: Region) -> Optional[Local]:
        """Find the local that has *region* in its type.

        Raises
        ------
        ConsistencyError
            If more than one local is associated with *region*.
        """
        found: Optional[Local] = None
        for local, value in self._regions.items():
            if value == region:
                if found is not None:
                    raise ConsistencyError(
                        "region is associated with more than one local",
                        code=ErrorCodes.DUPLICATE_REGION_OWNER,
                        context={
                            "region": format_region(region),
                            "locals": f"{format_local(found)},{format_local(local)}",
                        },
                    )
                found = local
        return found

    def items(self) -> Iterable[Tuple[Local, Region]]:
        return sorted(self._regions.items())

    def __contains__(self, local: object) -> bool:
        return local in self._regions

    def __len__(self) -> int:
        return len(self._regions)

    def __iter__(self) -> Iterator[Local]:
        return iter(sorted(self._regions))

    def __repr__(self) -> str:
        pairs = ", ".join(
            f"{format_local(l)}: {format_region(r)}" for l, r in self.items()
        )
        return f"VariableRegions({{{pairs}}})"


def parse_variable_regions(lines: Iterable[str]) -> VariableRegions:
    """Extract ``local -> region`` pairs from renumber MIR text."""
    regions: Dict[Local, Region] = {}
    for line in lines:
        sig = _FN_SIG.match(line)
        if sig is not None:
            for arg in sig.group("args").split(", "):
                arg_match = _ARG.match(arg.strip() + " ")
                if arg_match is not None:
                    _insert(regions, int(arg_match.group("local")), int(arg_match.group("rvid")))
            continue
        local_match = _LOCAL.match(line)
        if local_match is not None:
            _insert(regions, int(local_match.group("local")), int(local_match.group("rvid")))
    return VariableRegions(regions)


def _insert(regions: Dict[Local, Region], local: Local, region: Region) -> None:
    previous = regions.get(local)
    if previous is not None and previous != region:
        logger.debug(
            "Local %s re-declared with region %s (was %s)",
            format_local(local), format_region(region), format_region(previous),
        )
    regions[local] = region


def load_variable_regions(path: Union[str, Path]) -> VariableRegions:
    """Read the renumber MIR file at *path*.

    Raises
    ------
    FactLoadError
        If the file does not exist, cannot be read or is not valid UTF-8.
    """
    p = Path(path)
    logger.debug("Renumber path: %s", p)
    try:
        with open(p, encoding="utf-8") as fh:
            result = parse_variable_regions(fh)
    except OSError as exc:
        raise FactLoadError(
            f"cannot read renumber MIR: {exc}",
            code=ErrorCodes.REGIONS_NOT_FOUND,
            context={"path": str(p)},
        ) from exc
    except UnicodeDecodeError as exc:
        raise FactLoadError(
            f"renumber MIR is not valid UTF-8: {exc}",
            context={"path": str(p)},
        ) from exc
    logger.debug("Loaded %d variable region(s)", len(result))
    return result
