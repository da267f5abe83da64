# tests/test_mir.py
"""
Tests for the CFG model and the bundle loader.
"""

import json

import pytest

from mir_dump.errors import ErrorCodes, MirLoadError
from mir_dump.initialization import NoInitialization, TabularInitialization
from mir_dump.mir import (
    BasicBlock,
    Location,
    MirBody,
    Place,
    TerminatorKind,
    filename_friendly,
    load_bundle,
)
from tests.conftest import assign, call, goto, make_body, ret, simple_body


BUNDLE = {
    "functions": [
        {
            "name": "simple",
            "def_path": "krate::simple",
            "local_decls": [
                {"name": None, "ty": "()"},
                {"name": "x", "ty": "&mut u32"},
                {"name": "y", "ty": "&mut u32"},
            ],
            "basic_blocks": [
                {
                    "statements": [
                        {"kind": "assign", "text": "_2 = move _1", "place": "_2"},
                    ],
                    "terminator": {"kind": "goto", "text": "goto -> bb1", "targets": [1]},
                },
                {
                    "statements": [],
                    "terminator": {
                        "kind": "call",
                        "text": "_0 = g(move _2) -> [return: bb2, unwind: bb3]",
                        "targets": [2],
                        "unwind": 3,
                        "destination": {"local": 0, "projection": []},
                        "func": "krate::g",
                    },
                },
                {"statements": [], "terminator": {"kind": "return", "text": "return"}},
                {"statements": [], "terminator": {"kind": "resume", "text": "resume"}},
            ],
            "initialization": {
                "before_block": {"1": ["_1", "_2"]},
                "after_statement": {"bb0[0]": ["_2"]},
            },
        },
        {
            "name": "simple__spec",
            "local_decls": [],
            "basic_blocks": [],
        },
    ]
}


class TestLocations:

    def test_parse_and_str(self):
        loc = Location.parse("bb4[2]")
        assert loc == Location(4, 2)
        assert str(loc) == "bb4[2]"

    def test_order(self):
        assert Location(0, 5) < Location(1, 0)

    def test_place(self):
        assert Place.parse("_3") == Place(3)
        assert Place.parse({"local": 1, "projection": [".0"]}).is_local is False
        with pytest.raises(ValueError):
            Place.parse("x")


class TestMirBody:

    def test_locations_in_order(self):
        assert list(simple_body().locations()) == [
            Location(0, 0), Location(0, 1), Location(1, 0),
        ]

    def test_classification(self):
        body = make_body([
            ([assign()], call(1, Place(2))),
            ([], ret()),
        ])
        assert body.is_assignment(Location(0, 0))
        assert not body.is_call(Location(0, 0))
        assert body.is_call(Location(0, 1))
        assert body.call_destination(Location(0, 1)) == Place(2)
        assert not body.is_call(Location(1, 0))

    def test_call_destination_requires_call(self):
        with pytest.raises(ValueError):
            simple_body().call_destination(Location(0, 1))

    def test_contains(self):
        body = simple_body()
        assert body.contains(Location(0, 1))
        assert not body.contains(Location(0, 2))
        assert not body.contains(Location(2, 0))

    def test_block_indices_checked(self):
        with pytest.raises(ValueError):
            MirBody([BasicBlock(1)])

    def test_add_block(self):
        body = MirBody()
        bb = body.add_block([assign()], goto(0))
        assert bb.index == 0
        assert bb.terminator_location == Location(0, 1)

    def test_filename_friendly(self):
        assert filename_friendly("krate::module::foo") == "module-foo"
        assert filename_friendly("foo") == "foo"


class TestLoadBundle:

    def test_load(self, tmp_path):
        path = tmp_path / "bundle.json"
        path.write_text(json.dumps(BUNDLE), encoding="utf-8")
        functions = load_bundle(path)
        assert [f.name for f in functions] == ["simple", "simple__spec"]

        simple = functions[0]
        assert simple.filename_friendly_path == "simple"
        assert len(simple.body) == 4
        term = simple.body[1].terminator
        assert term.kind is TerminatorKind.CALL
        assert term.unwind == 3
        assert term.destination == Place(0)
        assert term.label() == "_0 = g(move _2) -> [return: bb2, unwind: bb3]\nkrate::g"
        assert simple.body.local_decls[0].is_temporary
        assert not simple.body.local_decls[1].is_temporary

        init = simple.initialization
        assert isinstance(init, TabularInitialization)
        assert init.before_block(1) == frozenset({"_1", "_2"})
        assert init.after_statement(Location(0, 0)) == frozenset({"_2"})
        assert init.before_block(0) == frozenset()

        assert functions[1].initialization is None
        assert functions[1].def_path == "simple__spec"

    def test_missing(self, tmp_path):
        with pytest.raises(MirLoadError) as info:
            load_bundle(tmp_path / "absent.json")
        assert info.value.code == ErrorCodes.BUNDLE_NOT_FOUND

    def test_not_json(self, tmp_path):
        path = tmp_path / "bundle.json"
        path.write_text("{", encoding="utf-8")
        with pytest.raises(MirLoadError):
            load_bundle(path)

    def test_invalid_utf8(self, tmp_path):
        path = tmp_path / "bundle.json"
        path.write_bytes(b'{"functions": ["\xff"]}')
        with pytest.raises(MirLoadError) as info:
            load_bundle(path)
        assert info.value.code == ErrorCodes.MALFORMED_BUNDLE

    def test_bad_entry(self, tmp_path):
        path = tmp_path / "bundle.json"
        path.write_text(json.dumps({"functions": [{"name": "f", "basic_blocks": [
            {"statements": [{"kind": "teleport"}]},
        ]}]}), encoding="utf-8")
        with pytest.raises(MirLoadError) as info:
            load_bundle(path)
        assert info.value.context["entry"] == 0


class TestInitialization:

    def test_no_initialization(self):
        init = NoInitialization()
        assert init.before_block(0) == frozenset()
        assert init.after_statement(Location(0, 0)) == frozenset()
