"""
latticeflow — Monotone Dataflow Analysis for a Java-like IR
===========================================================

A worklist dataflow engine and a handful of classic analyses over a small
three-address intermediate representation, plus a class-hierarchy call
graph and an interprocedural constant propagation built on it.

Core modules
------------
ir
    Types, expressions, statements and method bodies.
hierarchy
    Classes, methods, subsignatures and the class hierarchy.
facts
    Lattice values (``UNDEF ⊑ Constant ⊑ NAC``), map facts and set facts.
ctrlflow_graph
    Intraprocedural CFGs with typed edges, reversed and pruned views.
dataflow_engine
    Analysis base class, results and the FIFO worklist solver.
constprop / livevar / deadcode
    Constant propagation, live variables and dead-code detection.
callgraph
    Call graphs built by class hierarchy analysis (CHA).
icfg / interproc_analysis / inter_constprop
    The supergraph, its solver and interprocedural constant propagation.
analysis
    The ``Program`` context and the fixed analysis pipelines.
loader
    S-expression program files → ``Program``.

Quick start
-----------
>>> from latticeflow import load_program, run_method_analyses
>>> program = load_program('''
... (program
...   (entry Main main)
...   (class Main
...     (method main () void (static)
...       (vars (int x) (int y))
...       (body (assign x 1) (assign y (+ x 2)) (return)))))
... ''')
>>> ir = program.get_method("Main.main").get_ir()
>>> result = run_method_analyses(ir, ["constprop"])["constprop"]
>>> print(result.out_fact_of(ir.stmts[1]))
{x=1, y=3}
"""

from __future__ import annotations

import logging
from typing import List

__version__ = "0.1.0"

from latticeflow.analysis import (
    ALL_ANALYSES,
    AnalysisConfig,
    Program,
    ProgramResults,
    run_method_analyses,
    run_program_analyses,
)
from latticeflow.callgraph import CallGraph, CallKind, CHABuilder, build_callgraph
from latticeflow.constprop import ConstantPropagation
from latticeflow.ctrlflow_graph import CFG, build_cfg
from latticeflow.dataflow_engine import DataflowAnalysis, DataflowResult, WorkListSolver
from latticeflow.deadcode import DeadCodeDetection
from latticeflow.errors import (
    LatticeFlowError,
    ProgramFormatError,
    UnknownAnalysisError,
    UnsupportedDirectionError,
)
from latticeflow.facts import CPFact, SetFact, Value
from latticeflow.icfg import ICFG
from latticeflow.inter_constprop import InterConstantPropagation
from latticeflow.interproc_analysis import InterDataflowAnalysis, InterSolver
from latticeflow.livevar import LiveVariableAnalysis, solve_backward
from latticeflow.loader import load_program, load_program_file

__all__: List[str] = [
    "ALL_ANALYSES",
    "AnalysisConfig",
    "CFG",
    "CHABuilder",
    "CPFact",
    "CallGraph",
    "CallKind",
    "ConstantPropagation",
    "DataflowAnalysis",
    "DataflowResult",
    "DeadCodeDetection",
    "ICFG",
    "InterConstantPropagation",
    "InterDataflowAnalysis",
    "InterSolver",
    "LatticeFlowError",
    "LiveVariableAnalysis",
    "Program",
    "ProgramFormatError",
    "ProgramResults",
    "SetFact",
    "UnknownAnalysisError",
    "UnsupportedDirectionError",
    "Value",
    "WorkListSolver",
    "build_callgraph",
    "build_cfg",
    "load_program",
    "load_program_file",
    "run_method_analyses",
    "run_program_analyses",
    "solve_backward",
]

logging.getLogger(__name__).addHandler(logging.NullHandler())
