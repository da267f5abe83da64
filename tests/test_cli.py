# tests/test_cli.py
"""
Tests for the ``python -m mir_dump`` entry point.
"""

import json
import sys
import types
from pathlib import Path

import pytest

from mir_dump import __version__
from mir_dump.__main__ import EXIT_ERROR, EXIT_INFRA, EXIT_OK, main
from mir_dump.configuration import Configuration
from tests.conftest import SIMPLE_RELATIONS, write_function_sources


def _bundle(names):
    return {
        "functions": [
            {
                "name": name,
                "def_path": f"krate::{name}",
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
                    {"statements": [], "terminator": {"kind": "return", "text": "return"}},
                ],
            }
            for name in names
        ]
    }


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("MIR_DUMP_CONFIG", raising=False)
    config = Configuration(log_dir="log", facts_dir="nll-facts")
    write_function_sources(config, "simple", SIMPLE_RELATIONS)
    bundle = tmp_path / "bundle.json"
    bundle.write_text(json.dumps(_bundle(["simple", "simple__spec"])), encoding="utf-8")
    return tmp_path, bundle


class TestMain:

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            main(["--version"])
        assert __version__ in capsys.readouterr().out

    def test_dump(self, workspace, capsys):
        root, bundle = workspace
        assert main([str(bundle), "--facts-dir", "nll-facts", "--log-dir", "log"]) == EXIT_OK
        graph = root / "nll-facts" / "simple" / "graph.dot"
        assert graph.exists()
        assert "simple: " in capsys.readouterr().out
        assert '"Variables"' in graph.read_text(encoding="utf-8")

    def test_flags_reach_renderer(self, workspace):
        root, bundle = workspace
        code = main([
            str(bundle), "--log-dir", "log",
            "--no-temp-variables", "--no-statement-indices", "--debug-info",
        ])
        assert code == EXIT_OK
        text = (root / "nll-facts" / "simple" / "graph.dot").read_text(encoding="utf-8")
        assert '"Variables"' not in text
        assert "<td>Nr</td>" not in text
        assert '"FakeLoans"' in text

    def test_missing_function_sources(self, workspace, tmp_path):
        bundle = tmp_path / "other.json"
        bundle.write_text(json.dumps(_bundle(["missing"])), encoding="utf-8")
        assert main([str(bundle), "--log-dir", "log"]) == EXIT_ERROR

    def test_keep_going_reports_failure(self, workspace, tmp_path, capsys):
        bundle = tmp_path / "mixed.json"
        bundle.write_text(json.dumps(_bundle(["missing", "simple"])), encoding="utf-8")
        assert main([str(bundle), "--log-dir", "log", "--keep-going"]) == EXIT_ERROR
        captured = capsys.readouterr()
        assert "simple: " in captured.out
        assert "missing: FAILED" in captured.err

    def test_undecodable_facts(self, workspace):
        root, bundle = workspace
        (root / "nll-facts" / "simple" / "outlives.facts").write_bytes(b"\xff\n")
        assert main([str(bundle), "--log-dir", "log"]) == EXIT_ERROR

    def test_unexpected_exception(self, workspace, monkeypatch):
        _, bundle = workspace

        def explode(self, functions):
            raise RuntimeError("boom")

        monkeypatch.setattr("mir_dump.__main__.Pipeline.run", explode)
        assert main([str(bundle), "--log-dir", "log"]) == EXIT_INFRA

    def test_proc_filter(self, workspace, tmp_path):
        bundle = tmp_path / "mixed.json"
        bundle.write_text(json.dumps(_bundle(["missing", "simple"])), encoding="utf-8")
        assert main([str(bundle), "--log-dir", "log", "--proc", "simple"]) == EXIT_OK

    def test_missing_bundle(self, workspace):
        assert main(["absent.json"]) == EXIT_INFRA

    def test_no_bundle(self, workspace):
        assert main([]) == EXIT_INFRA

    def test_print_config(self, workspace, capsys):
        root, _ = workspace
        (root / "custom.toml").write_text('facts_dir = "elsewhere"\n', encoding="utf-8")
        assert main(["--config", "custom.toml", "--print-config"]) == EXIT_OK
        assert "facts_dir = 'elsewhere'" in capsys.readouterr().out

    def test_bad_config(self, workspace):
        assert main(["--config", "nope.toml", "--print-config"]) == EXIT_INFRA


class TestRender:

    def test_render_calls_graphviz(self, workspace, monkeypatch):
        root, bundle = workspace
        rendered = []

        class ExecutableNotFound(Exception):
            pass

        class CalledProcessError(Exception):
            pass

        def render(engine, fmt, path):
            rendered.append((engine, fmt, path))
            return path + "." + fmt

        fake = types.SimpleNamespace(
            render=render,
            ExecutableNotFound=ExecutableNotFound,
            CalledProcessError=CalledProcessError,
        )
        monkeypatch.setitem(sys.modules, "graphviz", fake)
        assert main([str(bundle), "--log-dir", "log", "--render", "svg"]) == EXIT_OK
        assert rendered == [("dot", "svg", str(Path("nll-facts") / "simple" / "graph.dot"))]
