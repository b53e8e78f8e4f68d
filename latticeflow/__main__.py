#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
latticeflow/__main__.py
=======================

Command-line driver.

Usage
-----
    python -m latticeflow <program-file> [-a ANALYSIS ...] [options]

Analyses
--------
    cfg              per-method control flow graph (successors per node)
    constprop        per-method constant propagation (IN/OUT per statement)
    livevar          per-method live variables
    deadcode         per-method dead code
    cha              class-hierarchy call graph from the entry methods
    icfg             interprocedural CFG (reported as its call graph)
    inter-constprop  interprocedural constant propagation

Per-method analyses run on every method with a body, or only on the one
named by ``--method Class.name``.  Output is plain text or, with
``--format json``, a single JSON document.

Exit status: 0 on success, 1 when the program cannot be loaded or an
analysis id is unknown.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from typing import Any, Dict, List, Optional, Sequence, TextIO

from latticeflow import __version__
from latticeflow.analysis import (
    METHOD_ANALYSES,
    PROGRAM_ANALYSES,
    Program,
    ProgramResults,
    run_method_analyses,
    run_program_analyses,
)
from latticeflow.callgraph import sorted_edges
from latticeflow.ctrlflow_graph import CFG
from latticeflow.dataflow_engine import DataflowResult
from latticeflow.errors import LatticeFlowError
from latticeflow.facts import CPFact, SetFact, Value
from latticeflow.hierarchy import JMethod
from latticeflow.ir import Stmt
from latticeflow.loader import load_program_file

logger = logging.getLogger("latticeflow")

_DEFAULT_ANALYSES = ["constprop"]
_LOG_LEVELS = [logging.WARNING, logging.INFO, logging.DEBUG]


# ═══════════════════════════════════════════════════════════════════════════
# JSON CONVERSION
# ═══════════════════════════════════════════════════════════════════════════

def _value_json(value: Value) -> Any:
    return value.get_constant() if value.is_constant() else str(value)


def _fact_json(fact: Any) -> Any:
    if isinstance(fact, CPFact):
        return {v.name: _value_json(val) for v, val in sorted(fact.items(), key=lambda kv: kv[0].name)}
    if isinstance(fact, SetFact):
        return sorted(v.name for v in fact)
    return str(fact)


def _stmt_json(stmt: Stmt) -> Dict[str, Any]:
    return {"index": stmt.index, "stmt": str(stmt)}


def _result_json(stmts: Sequence[Stmt], result: DataflowResult) -> List[Dict[str, Any]]:
    rows = []
    for stmt in stmts:
        row = _stmt_json(stmt)
        row["in"] = _fact_json(result.in_fact_of(stmt))
        row["out"] = _fact_json(result.out_fact_of(stmt))
        rows.append(row)
    return rows


def _cfg_json(cfg: CFG) -> List[Dict[str, Any]]:
    rows = []
    for node in cfg.nodes:
        row = _stmt_json(node)
        row["succs"] = [
            {"target": e.target.index, "kind": e.kind.value}
            for e in cfg.get_out_edges_of(node)
        ]
        rows.append(row)
    return rows


# ═══════════════════════════════════════════════════════════════════════════
# REPORT
# ═══════════════════════════════════════════════════════════════════════════

def _collect(
    program: Program,
    methods: Sequence[JMethod],
    method_ids: Sequence[str],
    program_ids: Sequence[str],
) -> Dict[str, Any]:
    report: Dict[str, Any] = {}
    if method_ids:
        per_method: Dict[str, Any] = {}
        for method in methods:
            ir = method.get_ir()
            results = run_method_analyses(ir, method_ids)
            entry: Dict[str, Any] = {}
            for analysis_id in method_ids:
                result = results[analysis_id]
                if isinstance(result, DataflowResult):
                    entry[analysis_id] = _result_json(ir.stmts, result)
                elif isinstance(result, CFG):
                    entry[analysis_id] = _cfg_json(result)
                else:
                    entry[analysis_id] = [_stmt_json(s) for s in result]
            per_method[method.signature] = entry
        report["methods"] = per_method

    if program_ids:
        results: ProgramResults = run_program_analyses(program, program_ids)
        cg = results.call_graph
        report["cha"] = {
            "entry_methods": [m.signature for m in cg.entry_methods],
            "reachable_methods": [m.signature for m in cg.reachable_methods()],
            "edges": [
                {
                    "caller": e.caller.signature if e.caller is not None else None,
                    "call_site": _stmt_json(e.call_site),
                    "callee": e.callee.signature,
                    "kind": e.kind.value,
                }
                for e in sorted_edges(cg)
            ],
        }
        if results.inter_constprop is not None and results.icfg is not None:
            report["inter-constprop"] = {
                m.signature: _result_json(m.get_ir().stmts, results.inter_constprop)
                for m in results.icfg.methods()
            }
    return report


def _write_text(report: Dict[str, Any], out: TextIO) -> None:
    for signature, analyses in report.get("methods", {}).items():
        out.write(f"== {signature} ==\n")
        for analysis_id, rows in analyses.items():
            out.write(f"[{analysis_id}]\n")
            if not rows:
                out.write("  (none)\n")
            for row in rows:
                line = f"  {row['index']:>3}  {row['stmt']}"
                if "out" in row:
                    line = f"{line:<44} {_render(row['out'])}"
                elif "succs" in row:
                    succs = ", ".join(f"{s['target']} ({s['kind']})" for s in row["succs"])
                    line = f"{line:<44} -> {succs}"
                out.write(line.rstrip() + "\n")
        out.write("\n")

    if "cha" in report:
        cha = report["cha"]
        out.write(f"== call graph ({len(cha['reachable_methods'])} reachable) ==\n")
        for edge in cha["edges"]:
            out.write(
                f"  {edge['caller']} @{edge['call_site']['index']} -> "
                f"{edge['callee']} [{edge['kind']}]\n"
            )
        out.write("\n")

    for signature, rows in report.get("inter-constprop", {}).items():
        out.write(f"== inter-constprop {signature} ==\n")
        for row in rows:
            line = f"  {row['index']:>3}  {row['stmt']}"
            out.write(f"{line:<44} {_render(row['out'])}\n")
        out.write("\n")


def _render(fact: Any) -> str:
    if isinstance(fact, dict):
        return "{" + ", ".join(f"{k}={v}" for k, v in fact.items()) + "}"
    if isinstance(fact, list):
        return "{" + ", ".join(fact) + "}"
    return str(fact)


# ═══════════════════════════════════════════════════════════════════════════
# ARGUMENT PARSER
# ═══════════════════════════════════════════════════════════════════════════

def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the latticeflow CLI."""
    parser = argparse.ArgumentParser(
        prog="latticeflow",
        description="Monotone dataflow analyses over S-expression programs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              %(prog)s prog.sexp
              %(prog)s prog.sexp -a deadcode --method Main.main
              %(prog)s prog.sexp -a cha inter-constprop --format json
        """),
    )
    parser.add_argument("program", help="program file (S-expression syntax)")
    parser.add_argument(
        "-a", "--analysis",
        nargs="+",
        dest="analyses",
        metavar="ANALYSIS",
        help=(
            "analyses to run: "
            + ", ".join(METHOD_ANALYSES + PROGRAM_ANALYSES)
            + f" (default: {' '.join(_DEFAULT_ANALYSES)})"
        ),
    )
    parser.add_argument(
        "-m", "--method",
        metavar="CLASS.NAME",
        help="restrict per-method analyses to one method",
    )
    parser.add_argument(
        "-f", "--format",
        choices=("text", "json"),
        default="text",
        help="output format (default: text)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="log more (-v: info, -vv: debug)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


# ═══════════════════════════════════════════════════════════════════════════
# MAIN
# ═══════════════════════════════════════════════════════════════════════════

def _configure_logging(verbosity: int) -> None:
    """Attach a stderr handler to the ``latticeflow`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    # one CLI handler at a time; the package NullHandler stays
    for old in [h for h in logger.handlers if isinstance(h, logging.StreamHandler)]:
        logger.removeHandler(old)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(fmt="%(levelname)s %(name)s: %(message)s")
    )
    logger.setLevel(_LOG_LEVELS[min(verbosity, len(_LOG_LEVELS) - 1)])
    logger.addHandler(handler)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the latticeflow CLI.

    Returns
    -------
    int
        Exit code (0 = success, 1 = failure).
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    analyses = args.analyses or _DEFAULT_ANALYSES
    program_ids = [a for a in analyses if a in PROGRAM_ANALYSES]
    method_ids = [a for a in analyses if a not in PROGRAM_ANALYSES]

    try:
        program = load_program_file(args.program)
        logger.info("loaded %s: %r", args.program, program)
        if args.method:
            try:
                methods = [program.get_method(args.method)]
            except KeyError:
                sys.stderr.write(f"error: no method {args.method!r}\n")
                return 1
            if methods[0].ir is None:
                sys.stderr.write(f"error: {methods[0]} has no body\n")
                return 1
        else:
            methods = program.methods()
        report = _collect(program, methods, method_ids, program_ids)
    except OSError as e:
        sys.stderr.write(f"error: {e}\n")
        return 1
    except LatticeFlowError as e:
        sys.stderr.write(f"error: {e}\n")
        return 1

    if args.format == "json":
        json.dump(report, sys.stdout, indent=2)
        sys.stdout.write("\n")
    else:
        _write_text(report, sys.stdout)
    return 0


if __name__ == "__main__":
    sys.exit(main())
