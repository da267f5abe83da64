# tests/test_facts.py
"""
Tests for program points, the interner and the relation-file loader.
"""

import pytest

from mir_dump.errors import ConsistencyError, ErrorCodes, FactLoadError
from mir_dump.facts import (
    AllInputFacts,
    FactLoader,
    Interner,
    Point,
    PointType,
    format_loan,
    format_region,
    group_by_point,
    parse_loan,
    parse_region,
)
from mir_dump.mir import Location
from tests.conftest import write_facts


class TestAtoms:

    def test_point_round_trip(self):
        p = Point.parse("Mid(bb3[12])")
        assert p == Point(Location(3, 12), PointType.MID)
        assert str(p) == "Mid(bb3[12])"

    def test_point_ordering(self):
        start = Point(Location(0, 1), PointType.START)
        mid = Point(Location(0, 1), PointType.MID)
        later = Point(Location(0, 2), PointType.START)
        assert sorted([later, mid, start]) == [start, mid, later]

    def test_bad_point(self):
        with pytest.raises(ValueError):
            Point.parse("Middle(bb0[0])")

    def test_region_and_loan(self):
        assert parse_region("'_#7r") == 7
        assert parse_loan("bw12") == 12
        assert format_region(7) == "'_#7r"
        assert format_loan(12) == "bw12"

    def test_bad_region(self):
        with pytest.raises(ValueError):
            parse_region("_#7r")


class TestInterner:

    def test_bijection(self):
        interner = Interner()
        points = [
            Point(Location(b, s), t)
            for b in range(3) for s in range(2) for t in PointType
        ]
        indices = [interner.intern(p) for p in points]
        assert indices == list(range(len(points)))
        for p, i in zip(points, indices):
            assert interner.resolve(i) == p
            assert interner.intern(p) == i

    def test_get_point_index_is_stable(self):
        interner = Interner()
        a = interner.get_point_index(Location(0, 0), PointType.START)
        b = interner.get_point_index(Location(0, 0), PointType.MID)
        assert a != b
        assert interner.get_point_index(Location(0, 0), PointType.START) == a
        assert len(interner) == 2

    def test_frozen_rejects_new_points(self):
        interner = Interner()
        known = interner.get_point_index(Location(0, 0), PointType.START)
        interner.freeze()
        assert interner.frozen
        assert interner.get_point_index(Location(0, 0), PointType.START) == known
        with pytest.raises(ConsistencyError) as info:
            interner.get_point_index(Location(9, 9), PointType.MID)
        assert info.value.code == ErrorCodes.INTERNER_FROZEN

    def test_resolve_unknown_index(self):
        with pytest.raises(ConsistencyError) as info:
            Interner().resolve(0)
        assert info.value.code == "MIRDUMP-9002"

    def test_lookup_does_not_intern(self):
        interner = Interner()
        p = Point(Location(1, 0), PointType.MID)
        assert interner.lookup(p) is None
        assert p not in interner


class TestAllInputFacts:

    def test_max_loan_empty(self):
        assert AllInputFacts().max_loan() is None

    def test_max_loan_considers_every_relation(self):
        facts = AllInputFacts(
            borrow_region={(1, 3, 0)},
            killed={(8, 0)},
            invalidates={(0, 5)},
        )
        assert facts.max_loan() == 8

    def test_group_by_point(self):
        grouped = group_by_point({(1, 2, 10), (3, 4, 10), (5, 6, 11)})
        assert sorted(grouped[10]) == [(1, 2), (3, 4)]
        assert grouped[11] == [(5, 6)]


class TestFactLoader:

    def test_load_all_facts(self, tmp_path):
        write_facts(tmp_path / "f", {
            "borrow_region": [("'_#2r", "bw0", "Mid(bb0[0])")],
            "universal_region": [("'_#0r",)],
            "outlives": [("'_#1r", "'_#2r", "Mid(bb0[0])")],
            "region_live_at": [("'_#2r", "Start(bb0[1])")],
            "cfg_edge": [("Start(bb0[0])", "Mid(bb0[0])")],
        })
        loader = FactLoader()
        facts = loader.load_all_facts(tmp_path / "f")
        mid = loader.interner.lookup(Point.parse("Mid(bb0[0])"))
        start = loader.interner.lookup(Point.parse("Start(bb0[0])"))
        assert facts.borrow_region == {(2, 0, mid)}
        assert facts.universal_region == {0}
        assert facts.outlives == {(1, 2, mid)}
        assert facts.cfg_edge == {(start, mid)}
        assert facts.killed == set()
        assert facts.invalidates == set()

    def test_unquoted_fields(self, tmp_path):
        directory = write_facts(tmp_path / "f", {})
        (directory / "outlives.facts").write_text(
            "'_#1r\t'_#2r\tMid(bb0[0])\n", encoding="utf-8"
        )
        facts = FactLoader().load_all_facts(directory)
        assert len(facts.outlives) == 1

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FactLoadError) as info:
            FactLoader().load_all_facts(tmp_path / "nope")
        assert info.value.code == ErrorCodes.FACTS_NOT_FOUND

    def test_missing_required_relation(self, tmp_path):
        directory = write_facts(tmp_path / "f", {})
        (directory / "outlives.facts").unlink()
        with pytest.raises(FactLoadError, match="outlives.facts"):
            FactLoader().load_all_facts(directory)

    def test_wrong_field_count(self, tmp_path):
        directory = write_facts(tmp_path / "f", {})
        (directory / "region_live_at.facts").write_text(
            '"\'_#1r"\n', encoding="utf-8"
        )
        with pytest.raises(FactLoadError) as info:
            FactLoader().load_all_facts(directory)
        assert info.value.context["line"] == 1

    def test_bad_atom(self, tmp_path):
        directory = write_facts(tmp_path / "f", {
            "borrow_region": [("'_#1r", "loan0", "Mid(bb0[0])")],
        })
        with pytest.raises(FactLoadError, match="not a loan"):
            FactLoader().load_all_facts(directory)

    def test_invalid_utf8(self, tmp_path):
        directory = write_facts(tmp_path / "f", {})
        (directory / "outlives.facts").write_bytes(b"\xff\xfe'_#1r\t'_#2r\n")
        with pytest.raises(FactLoadError) as info:
            FactLoader().load_all_facts(directory)
        assert info.value.code == ErrorCodes.MALFORMED_FACT
        assert info.value.context["path"].endswith("outlives.facts")
