"""
latticeflow.deadcode
====================

Dead-code detection fusing constant propagation and liveness.

The detector reads three results already stored on the method's
:class:`~latticeflow.ir.IR` under the ids ``"cfg"``, ``"constprop"`` and
``"livevar"`` and reports the union of:

1. **Dead assignments**: ``x = e`` where ``e`` has no side effect and ``x``
   is not live after the statement.
2. **Unreachable branches**: targets of ``if`` / ``switch`` edges that the
   constant value of the condition rules out.
3. **Unreachable code**: nodes not reached by a traversal from the entry
   that refuses to follow the edges ruled out by (2).

The report is a list of statements in program order.  The synthetic
entry and exit nodes never appear in it.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Set

from latticeflow.config import AnalysisConfig
from latticeflow.constprop import ConstantPropagation, evaluate
from latticeflow.ctrlflow_graph import Edge, EdgeKind
from latticeflow.dataflow_engine import DataflowResult
from latticeflow.facts import CPFact, SetFact, Value
from latticeflow.ir import (
    IR,
    ArithmeticExp,
    ArithmeticOp,
    AssignStmt,
    Exp,
    ExpKind,
    If,
    Stmt,
    Switch,
)
from latticeflow.livevar import LiveVariableAnalysis

logger = logging.getLogger(__name__)

_SIDE_EFFECT_KINDS = frozenset({
    ExpKind.NEW,              # allocates
    ExpKind.CAST,             # may throw ClassCastException
    ExpKind.INSTANCE_FIELD,   # may throw NullPointerException
    ExpKind.STATIC_FIELD,     # may trigger class initialisation
    ExpKind.ARRAY_ACCESS,     # may throw
    ExpKind.INVOKE,
})

_TRUE = Value.make_constant(1)
_FALSE = Value.make_constant(0)


def has_no_side_effect(exp: Exp) -> bool:
    """``True`` if evaluating *exp* cannot be observed."""
    if exp.kind in _SIDE_EFFECT_KINDS:
        return False
    if isinstance(exp, ArithmeticExp):
        return exp.op not in (ArithmeticOp.DIV, ArithmeticOp.REM)
    return True


class DeadCodeDetection:
    """Reports dead statements of a method.

    Parameters
    ----------
    config : AnalysisConfig, optional
        Defaults to ``AnalysisConfig("deadcode")``.
    """

    ID = "deadcode"
    CFG_ID = "cfg"
    CONSTPROP_ID = ConstantPropagation.ID
    LIVEVAR_ID = LiveVariableAnalysis.ID

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        self.config = config if config is not None else AnalysisConfig(self.ID)

    def analyze(self, ir: IR) -> List[Stmt]:
        """Return the dead statements of *ir*, ordered by index.

        Raises ``KeyError`` when a required result has not been stored.
        """
        cfg = ir.get_result(self.CFG_ID)
        constants: DataflowResult[CPFact] = ir.get_result(self.CONSTPROP_ID)
        live_vars: DataflowResult[SetFact] = ir.get_result(self.LIVEVAR_ID)

        dead: Dict[int, Stmt] = {}
        for stmt in self.find_dead_assignments(cfg, live_vars):
            dead[id(stmt)] = stmt

        dead_edges = self.find_dead_branch_edges(cfg, constants)
        for edge in dead_edges:
            dead[id(edge.target)] = edge.target

        visited = self._reachable(cfg, dead_edges)
        for node in cfg.nodes:
            if id(node) not in visited:
                dead[id(node)] = node

        dead.pop(id(cfg.entry), None)
        dead.pop(id(cfg.exit), None)
        report = sorted(dead.values(), key=lambda s: s.index)
        logger.debug("%s: %d dead statement(s) in %s", self.ID, len(report), ir.method)
        return report

    # ----- pass 1 -----------------------------------------------------------

    @staticmethod
    def find_dead_assignments(cfg: Any, live_vars: DataflowResult[SetFact]) -> List[Stmt]:
        result: List[Stmt] = []
        for stmt in cfg.nodes:
            if not isinstance(stmt, AssignStmt):
                continue
            lhs = stmt.get_def()
            if lhs is None:
                continue
            if not all(has_no_side_effect(use) for use in stmt.get_uses()):
                continue
            if lhs not in live_vars.out_fact_of(stmt):
                result.append(stmt)
        return result

    # ----- pass 2 -----------------------------------------------------------

    @staticmethod
    def find_dead_branch_edges(
        cfg: Any,
        constants: DataflowResult[CPFact],
    ) -> List[Edge]:
        """``if`` / ``switch`` out-edges that can never be taken.

        An edge whose target is also reached by a taken edge of the same
        branch is not dead.
        """
        dead: List[Edge] = []
        for stmt in cfg.nodes:
            if isinstance(stmt, If):
                taken = _taken_if_edges(cfg, stmt, constants.out_fact_of(stmt))
            elif isinstance(stmt, Switch):
                taken = _taken_switch_edges(cfg, stmt, constants.out_fact_of(stmt))
            else:
                continue
            if taken is None:
                continue
            live = {id(e.target) for e in taken}
            dead.extend(
                e for e in cfg.get_out_edges_of(stmt) if id(e.target) not in live
            )
        return dead

    # ----- pass 3 -----------------------------------------------------------

    @staticmethod
    def _reachable(cfg: Any, dead_edges: List[Edge]) -> Set[int]:
        """``id`` of every node reached from the entry without a dead edge."""
        skipped = set(dead_edges)
        visited: Set[int] = {id(cfg.entry)}
        queue: Deque[Stmt] = deque([cfg.entry])
        while queue:
            current = queue.popleft()
            for edge in cfg.get_out_edges_of(current):
                succ = edge.target
                if id(succ) in visited or edge in skipped:
                    continue
                visited.add(id(succ))
                queue.append(succ)
        return visited


def _taken_if_edges(cfg: Any, stmt: If, fact: CPFact):
    """Out-edges of *stmt* that can be taken, or ``None`` if all can."""
    cond = evaluate(stmt.condition, fact)
    if cond == _TRUE:
        keep = EdgeKind.IF_TRUE
    elif cond == _FALSE:
        keep = EdgeKind.IF_FALSE
    else:
        return None
    return [e for e in cfg.get_out_edges_of(stmt) if e.kind is keep]


def _taken_switch_edges(cfg: Any, stmt: Switch, fact: CPFact):
    """Out-edges of *stmt* that can be taken, or ``None`` if all can.

    A constant discriminant matching no case rules nothing out.
    """
    value = evaluate(stmt.var, fact)
    if not value.is_constant():
        return None
    constant = value.get_constant()
    matched = [
        e for e in cfg.get_out_edges_of(stmt)
        if e.kind is EdgeKind.SWITCH_CASE and e.case_value == constant
    ]
    return matched or None
