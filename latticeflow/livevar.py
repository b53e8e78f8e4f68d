"""
latticeflow.livevar
===================

Live-variable analysis, and the driver used to solve backward analyses.

A variable is *live* after a statement if some path from there reads it
before redefining it::

    OUT[s] = ∪ IN[succ]
    IN[s]  = (OUT[s] - def(s)) ∪ uses(s)

The worklist solver only runs forward, so :func:`solve_backward` runs it
over :meth:`~latticeflow.ctrlflow_graph.CFG.reversed` with an adapter and
swaps IN and OUT afterwards.  In the returned result ``out_fact_of(s)`` is
the set of variables live immediately after ``s`` in the *original* graph.

For a backward analysis ``transfer_node(node, in_fact, out_fact)`` returns
the new IN computed from ``out_fact``.
"""

from __future__ import annotations

import logging
from typing import Any, Generic, Optional

from latticeflow.config import AnalysisConfig
from latticeflow.dataflow_engine import (
    DataflowAnalysis,
    DataflowResult,
    F,
    WorkListSolver,
)
from latticeflow.facts import SetFact
from latticeflow.ir import Stmt, Var

logger = logging.getLogger(__name__)


class _ReversedAnalysis(DataflowAnalysis[F], Generic[F]):
    """Presents a backward analysis as a forward one on the reversed graph."""

    def __init__(self, analysis: DataflowAnalysis[F]) -> None:
        super().__init__(analysis.config)
        self.analysis = analysis

    def is_forward(self) -> bool:
        return True

    def new_boundary_fact(self, cfg: Any) -> F:
        return self.analysis.new_boundary_fact(cfg)

    def new_initial_fact(self) -> F:
        return self.analysis.new_initial_fact()

    def meet_into(self, fact: F, target: F) -> F:
        return self.analysis.meet_into(fact, target)

    def transfer_node(self, node: Any, in_fact: F, out_fact: F) -> F:
        # Reversed IN is the original OUT, reversed OUT the original IN.
        return self.analysis.transfer_node(node, out_fact, in_fact)


def solve_backward(analysis: DataflowAnalysis[F], cfg: Any) -> DataflowResult[F]:
    """Solve *analysis* over *cfg*, whatever its direction."""
    if analysis.is_forward():
        return WorkListSolver(analysis).solve(cfg)
    result = WorkListSolver(_ReversedAnalysis(analysis)).solve(cfg.reversed())
    logger.debug("%s solved over the reversed CFG", analysis)
    return result.swapped()


class LiveVariableAnalysis(DataflowAnalysis[SetFact]):
    """Backward may-analysis computing live variables."""

    ID = "livevar"

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        super().__init__(config)

    def is_forward(self) -> bool:
        return False

    def new_boundary_fact(self, cfg: Any) -> SetFact:
        return SetFact()

    def new_initial_fact(self) -> SetFact:
        return SetFact()

    def meet_into(self, fact: SetFact, target: SetFact) -> SetFact:
        return target.union(fact)

    def transfer_node(self, node: Stmt, in_fact: SetFact, out_fact: SetFact) -> SetFact:
        live = out_fact
        defined = node.get_def()
        if defined is not None:
            live = live.remove(defined)
        for use in node.get_uses():
            if isinstance(use, Var):
                live = live.add(use)
        return live

    def analyze(self, cfg: Any) -> DataflowResult[SetFact]:
        return solve_backward(self, cfg)
