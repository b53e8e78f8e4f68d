"""
latticeflow.analysis
====================

The analysis context and the fixed analysis pipelines.

:class:`Program` is the explicit world every whole-program analysis is
given: the class hierarchy and the entry methods.  Nothing is global.

Per-method analyses run in a fixed order and store their results on the
method's :class:`~latticeflow.ir.IR` under their ids::

    cfg  →  constprop  →  livevar  →  deadcode

Asking for an analysis runs every stage before it in that order.
Whole-program analyses run ``cha → icfg → inter-constprop`` the same way.
There is no general dependency resolution between analyses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from latticeflow.callgraph import CallGraph, CHABuilder
from latticeflow.config import AnalysisConfig
from latticeflow.constprop import ConstantPropagation
from latticeflow.ctrlflow_graph import build_cfg
from latticeflow.dataflow_engine import DataflowResult
from latticeflow.deadcode import DeadCodeDetection
from latticeflow.errors import UnknownAnalysisError
from latticeflow.facts import CPFact
from latticeflow.hierarchy import ClassHierarchy, JMethod
from latticeflow.icfg import ICFG
from latticeflow.inter_constprop import InterConstantPropagation
from latticeflow.ir import IR
from latticeflow.livevar import LiveVariableAnalysis

__all__ = [
    "AnalysisConfig",
    "Program",
    "ProgramResults",
    "METHOD_ANALYSES",
    "PROGRAM_ANALYSES",
    "ALL_ANALYSES",
    "run_method_analyses",
    "run_program_analyses",
]

logger = logging.getLogger(__name__)

CFG_ID = "cfg"
ICFG_ID = "icfg"

METHOD_ANALYSES = (
    CFG_ID,
    ConstantPropagation.ID,
    LiveVariableAnalysis.ID,
    DeadCodeDetection.ID,
)
PROGRAM_ANALYSES = (
    CHABuilder.ID,
    ICFG_ID,
    InterConstantPropagation.ID,
)
ALL_ANALYSES = METHOD_ANALYSES + PROGRAM_ANALYSES


class Program:
    """A class hierarchy plus the methods analysis starts from.

    Parameters
    ----------
    hierarchy : ClassHierarchy
    entry_methods : iterable of JMethod
    """

    def __init__(
        self,
        hierarchy: ClassHierarchy,
        entry_methods: Iterable[JMethod] = (),
    ) -> None:
        self.hierarchy = hierarchy
        self.entry_methods: List[JMethod] = list(entry_methods)

    def methods(self) -> List[JMethod]:
        """Every method with a body, in declaration order."""
        return [m for m in self.hierarchy.all_methods() if m.ir is not None]

    def get_method(self, qualified_name: str) -> JMethod:
        """Look up ``"Class.name"``.

        Raises ``KeyError`` when no such method is declared.
        """
        class_name, _, method_name = qualified_name.rpartition(".")
        jclass = self.hierarchy.get_class(class_name)
        method = jclass.get_declared_method_by_name(method_name) if jclass else None
        if method is None:
            raise KeyError(qualified_name)
        return method

    def __repr__(self) -> str:
        return (
            f"Program(classes={len(self.hierarchy)}, "
            f"entries={[str(m) for m in self.entry_methods]})"
        )


@dataclass
class ProgramResults:
    """Results of the whole-program pipeline.

    Attributes
    ----------
    call_graph : CallGraph
    icfg : ICFG or None
    inter_constprop : DataflowResult or None
    """

    call_graph: CallGraph
    icfg: Optional[ICFG] = None
    inter_constprop: Optional[DataflowResult[CPFact]] = None


def _check_ids(ids: Sequence[str], known: Sequence[str]) -> None:
    for analysis_id in ids:
        if analysis_id not in known:
            raise UnknownAnalysisError(analysis_id)


def _last_stage(ids: Sequence[str], pipeline: Sequence[str]) -> int:
    return max((pipeline.index(i) for i in ids), default=-1)


def run_method_analyses(ir: IR, ids: Sequence[str]) -> Dict[str, Any]:
    """Run the per-method pipeline on *ir* up to the last of *ids*.

    Every stage run is stored on *ir* under its id.  Returns the results
    of the requested ids.

    Raises
    ------
    UnknownAnalysisError
        If an id is not a per-method analysis.
    """
    _check_ids(ids, METHOD_ANALYSES)
    last = _last_stage(ids, METHOD_ANALYSES)

    if last >= 0:
        ir.store_result(CFG_ID, build_cfg(ir))
    if last >= 1:
        cfg = ir.get_result(CFG_ID)
        ir.store_result(ConstantPropagation.ID, ConstantPropagation().analyze(cfg))
    if last >= 2:
        cfg = ir.get_result(CFG_ID)
        ir.store_result(LiveVariableAnalysis.ID, LiveVariableAnalysis().analyze(cfg))
    if last >= 3:
        ir.store_result(DeadCodeDetection.ID, DeadCodeDetection().analyze(ir))

    logger.info("%s: ran %s", ir.method, ", ".join(METHOD_ANALYSES[: last + 1]))
    return {analysis_id: ir.get_result(analysis_id) for analysis_id in ids}


def run_program_analyses(program: Program, ids: Sequence[str]) -> ProgramResults:
    """Run the whole-program pipeline up to the last of *ids*.

    Raises
    ------
    UnknownAnalysisError
        If an id is not a whole-program analysis.
    """
    _check_ids(ids, PROGRAM_ANALYSES)
    last = max(_last_stage(ids, PROGRAM_ANALYSES), 0)

    call_graph = CHABuilder(program.hierarchy).build_all(program.entry_methods)
    results = ProgramResults(call_graph)
    if last >= 1:
        results.icfg = ICFG(call_graph)
    if last >= 2:
        assert results.icfg is not None
        results.inter_constprop = InterConstantPropagation().analyze(results.icfg)

    logger.info("program: ran %s", ", ".join(PROGRAM_ANALYSES[: last + 1]))
    return results
