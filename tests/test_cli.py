# tests/test_cli.py
"""
Tests for the ``python -m latticeflow`` command-line driver.
"""

import json

import pytest

from latticeflow import __version__
from latticeflow.__main__ import build_parser, main
from tests.conftest import CALLS_PROGRAM, CONST_BRANCH_PROGRAM, STRAIGHT_LINE_PROGRAM


@pytest.fixture
def write_program(tmp_path):
    def write(text, name="prog.sexp"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return str(path)
    return write


def _run_json(capsys, argv):
    assert main(argv + ["--format", "json"]) == 0
    return json.loads(capsys.readouterr().out)


# ── Argument parsing ─────────────────────────────────────────────

class TestParser:

    def test_defaults(self):
        args = build_parser().parse_args(["prog.sexp"])
        assert args.program == "prog.sexp"
        assert args.analyses is None
        assert args.format == "text"
        assert args.verbose == 0

    def test_multiple_analyses(self):
        args = build_parser().parse_args(["p", "-a", "cha", "inter-constprop", "-vv"])
        assert args.analyses == ["cha", "inter-constprop"]
        assert args.verbose == 2

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as info:
            main(["--version"])
        assert info.value.code == 0
        assert __version__ in capsys.readouterr().out


# ── Per-method analyses ──────────────────────────────────────────

class TestMethodAnalyses:

    def test_text_output(self, capsys, write_program):
        assert main([write_program(STRAIGHT_LINE_PROGRAM)]) == 0
        out = capsys.readouterr().out
        assert "== <Main: void main()> ==" in out
        assert "[constprop]" in out
        assert "{x=1, y=2, z=3}" in out

    def test_json_constprop(self, capsys, write_program):
        report = _run_json(capsys, [write_program(STRAIGHT_LINE_PROGRAM)])
        rows = report["methods"]["<Main: void main()>"]["constprop"]
        assert [r["index"] for r in rows] == [0, 1, 2, 3]
        assert rows[2]["in"] == {"x": 1, "y": 2}
        assert rows[2]["out"] == {"x": 1, "y": 2, "z": 3}

    def test_json_livevar(self, capsys, write_program):
        report = _run_json(capsys, [write_program(STRAIGHT_LINE_PROGRAM), "-a", "livevar"])
        rows = report["methods"]["<Main: void main()>"]["livevar"]
        assert rows[2]["in"] == ["x", "y"]
        assert rows[2]["out"] == []

    def test_json_deadcode(self, capsys, write_program):
        report = _run_json(capsys, [write_program(CONST_BRANCH_PROGRAM), "-a", "deadcode"])
        dead = report["methods"]["<Main: int main()>"]["deadcode"]
        assert [r["index"] for r in dead] == [2, 3]

    def test_json_cfg(self, capsys, write_program):
        report = _run_json(capsys, [write_program(CONST_BRANCH_PROGRAM), "-a", "cfg"])
        rows = report["methods"]["<Main: int main()>"]["cfg"]
        assert rows[0]["index"] == -1
        branch = next(r for r in rows if r["index"] == 1)
        assert sorted(s["kind"] for s in branch["succs"]) == ["if-false", "if-true"]

    def test_deadcode_text_none(self, capsys, write_program):
        assert main([write_program(STRAIGHT_LINE_PROGRAM), "-a", "deadcode"]) == 0
        assert "(none)" in capsys.readouterr().out

    def test_single_method(self, capsys, write_program):
        report = _run_json(capsys, [write_program(CALLS_PROGRAM), "-m", "Main.twice"])
        assert list(report["methods"]) == ["<Main: int twice(int)>"]

    def test_every_method_with_a_body(self, capsys, write_program):
        report = _run_json(capsys, [write_program(CALLS_PROGRAM)])
        assert sorted(report["methods"]) == [
            "<Main: int main()>",
            "<Main: int twice(int)>",
            "<Square: int sides()>",
            "<Triangle: int sides()>",
        ]


# ── Whole-program analyses ───────────────────────────────────────

class TestProgramAnalyses:

    def test_cha_json(self, capsys, write_program):
        report = _run_json(capsys, [write_program(CALLS_PROGRAM), "-a", "cha"])
        assert "methods" not in report
        cha = report["cha"]
        assert cha["entry_methods"] == ["<Main: int main()>"]
        assert len(cha["reachable_methods"]) == 4
        assert [e["kind"] for e in cha["edges"]] == ["static", "virtual", "virtual"]
        assert cha["edges"][0]["call_site"]["index"] == 1
        assert "inter-constprop" not in report

    def test_inter_constprop_json(self, capsys, write_program):
        report = _run_json(
            capsys, [write_program(CALLS_PROGRAM), "-a", "cha", "inter-constprop"])
        twice = report["inter-constprop"]["<Main: int twice(int)>"]
        assert twice[0]["out"] == {"n": 6, "r": 12}
        main_rows = report["inter-constprop"]["<Main: int main()>"]
        assert main_rows[4]["in"]["b"] == 12
        assert main_rows[4]["in"]["c"] == "NAC"

    def test_mixed_text_output(self, capsys, write_program):
        path = write_program(CALLS_PROGRAM)
        assert main([path, "-a", "constprop", "cha", "-m", "Main.main"]) == 0
        out = capsys.readouterr().out
        assert "== <Main: int main()> ==" in out
        assert "== call graph (4 reachable) ==" in out
        assert "-> <Main: int twice(int)> [static]" in out


# ── Failures ─────────────────────────────────────────────────────

class TestFailures:

    def test_missing_file(self, capsys, tmp_path):
        assert main([str(tmp_path / "absent.sexp")]) == 1
        assert capsys.readouterr().err.startswith("error:")

    def test_malformed_program(self, capsys, write_program):
        assert main([write_program("(program (class))")]) == 1
        assert "error:" in capsys.readouterr().err

    def test_unknown_analysis(self, capsys, write_program):
        assert main([write_program(STRAIGHT_LINE_PROGRAM), "-a", "pointer"]) == 1
        assert "unknown analysis 'pointer'" in capsys.readouterr().err

    def test_unknown_method(self, capsys, write_program):
        assert main([write_program(CALLS_PROGRAM), "-m", "Main.nope"]) == 1
        assert "no method 'Main.nope'" in capsys.readouterr().err

    def test_method_without_body(self, capsys, write_program):
        assert main([write_program(CALLS_PROGRAM), "-m", "Shape.sides"]) == 1
        assert "has no body" in capsys.readouterr().err
