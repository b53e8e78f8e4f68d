"""
latticeflow.inter_constprop
===========================

Interprocedural constant propagation.

Node transfer reuses :class:`~latticeflow.constprop.ConstantPropagation`
for everything except call sites, whose result variable is killed at the
node and defined by the return edge instead::

    normal edge          : OUT unchanged
    call-to-return edge  : OUT minus the call's result variable (NAC when
                           no callee has a body)
    call edge            : {param_i: IN(call site)(arg_i)}
    return edge          : {result: ⊓ OUT(v) for v in callee return vars}

Arguments are read from the call site's IN, not its OUT: the OUT has lost
the result variable, which may itself be an argument (``x = f(x)``).
"""

from __future__ import annotations

import logging
from typing import Optional

from latticeflow.config import AnalysisConfig
from latticeflow.constprop import ConstantPropagation, can_hold_int, meet_value
from latticeflow.facts import CPFact, Value
from latticeflow.icfg import CallEdge, CallToReturnEdge, NormalEdge, ReturnEdge
from latticeflow.interproc_analysis import InterDataflowAnalysis
from latticeflow.ir import Invoke, Stmt

logger = logging.getLogger(__name__)


class InterConstantPropagation(InterDataflowAnalysis[CPFact]):
    """Context-insensitive constant propagation across calls over an ICFG."""

    ID = "inter-constprop"

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        super().__init__(config)
        self.cp = ConstantPropagation(AnalysisConfig(ConstantPropagation.ID))

    def is_forward(self) -> bool:
        return self.cp.is_forward()

    def new_boundary_fact(self, entry: Stmt) -> CPFact:
        assert self.icfg is not None
        method = self.icfg.get_containing_method_of(entry)
        return self.cp.new_boundary_fact(self.icfg.get_cfg_of(method))

    def new_initial_fact(self) -> CPFact:
        return self.cp.new_initial_fact()

    def meet_into(self, fact: CPFact, target: CPFact) -> CPFact:
        return self.cp.meet_into(fact, target)

    def transfer_call_node(self, node: Stmt, in_fact: CPFact, out_fact: CPFact) -> CPFact:
        lhs = node.get_def()
        return in_fact.remove(lhs) if lhs is not None else in_fact

    def transfer_non_call_node(self, node: Stmt, in_fact: CPFact, out_fact: CPFact) -> CPFact:
        return self.cp.transfer_node(node, in_fact, out_fact)

    def transfer_normal_edge(self, edge: NormalEdge, out: CPFact) -> CPFact:
        return out

    def transfer_call_to_return_edge(self, edge: CallToReturnEdge, out: CPFact) -> CPFact:
        lhs = edge.source.get_def()
        if lhs is None:
            return out
        assert self.icfg is not None
        if can_hold_int(lhs) and not any(
            callee.ir is not None for callee in self.icfg.get_callees_of(edge.source)
        ):
            # No return edge will define the result.
            return out.update(lhs, Value.get_nac())
        return out.remove(lhs)

    def transfer_call_edge(self, edge: CallEdge, call_site_out: CPFact) -> CPFact:
        call_site = edge.source
        assert isinstance(call_site, Invoke)
        assert self.result is not None
        call_site_in = self.result.in_fact_of(call_site)
        callee_ir = edge.callee.get_ir()
        fact = CPFact()
        for param, arg in zip(callee_ir.params, call_site.invoke_exp.args):
            if can_hold_int(param):
                fact = fact.update(param, call_site_in.get(arg))
        return fact

    def transfer_return_edge(self, edge: ReturnEdge, return_out: CPFact) -> CPFact:
        fact = CPFact()
        lhs = edge.call_site.get_def()
        if lhs is None or not can_hold_int(lhs):
            return fact
        value = fact.get(lhs)
        for ret in edge.return_vars:
            value = meet_value(return_out.get(ret), value)
        return fact.update(lhs, value)
