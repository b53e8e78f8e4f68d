"""
latticeflow.icfg
================

Interprocedural control-flow graph (ICFG, "supergraph") of the methods a
call graph reaches.

Its nodes are the CFG nodes of every reachable method that has a body.  Its
edges are:

``NORMAL``
    Intraprocedural edges not leaving a call site.
``CALL_TO_RETURN``
    Call site → return site (the call site's CFG successors).  Carries the
    caller's local facts around the call.
``CALL``
    Call site → entry of each callee.
``RETURN``
    Callee exit → each return site of the call.

Public API
----------
    ICFGEdgeKind, ICFGEdge, NormalEdge, CallToReturnEdge, CallEdge,
    ReturnEdge, ICFG
"""

from __future__ import annotations

import enum
import logging
from collections import defaultdict
from typing import Dict, List, Mapping, Optional

from latticeflow.callgraph import CallGraph
from latticeflow.ctrlflow_graph import CFG, build_cfg
from latticeflow.hierarchy import JMethod
from latticeflow.ir import Invoke, Stmt, Var

logger = logging.getLogger(__name__)


class ICFGEdgeKind(enum.Enum):
    NORMAL = "normal"
    CALL_TO_RETURN = "call-to-return"
    CALL = "call"
    RETURN = "return"


class ICFGEdge:
    """A directed ICFG edge."""

    __slots__ = ("source", "target")
    kind: ICFGEdgeKind

    def __init__(self, source: Stmt, target: Stmt) -> None:
        self.source = source
        self.target = target

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.source!r} -> {self.target!r})"


class NormalEdge(ICFGEdge):
    __slots__ = ()
    kind = ICFGEdgeKind.NORMAL


class CallToReturnEdge(ICFGEdge):
    __slots__ = ()
    kind = ICFGEdgeKind.CALL_TO_RETURN


class CallEdge(ICFGEdge):
    """Call site → callee entry."""

    __slots__ = ("callee",)
    kind = ICFGEdgeKind.CALL

    def __init__(self, source: Stmt, target: Stmt, callee: JMethod) -> None:
        super().__init__(source, target)
        self.callee = callee


class ReturnEdge(ICFGEdge):
    """Callee exit → return site of ``call_site``."""

    __slots__ = ("call_site", "callee")
    kind = ICFGEdgeKind.RETURN

    def __init__(
        self,
        source: Stmt,
        target: Stmt,
        call_site: Invoke,
        callee: JMethod,
    ) -> None:
        super().__init__(source, target)
        self.call_site = call_site
        self.callee = callee

    @property
    def return_vars(self) -> List[Var]:
        """Variables the callee returns."""
        if self.callee.ir is None:
            return []
        return self.callee.ir.return_vars


class ICFG:
    """Supergraph over the reachable methods of *call_graph*.

    Parameters
    ----------
    call_graph : CallGraph
    cfgs : mapping of JMethod to CFG, optional
        Pre-built CFGs.  Missing ones are taken from the method's ``"cfg"``
        result, or built.
    """

    def __init__(
        self,
        call_graph: CallGraph,
        cfgs: Optional[Mapping[JMethod, CFG]] = None,
    ) -> None:
        self.call_graph = call_graph
        self._cfgs: Dict[JMethod, CFG] = {}
        self._method_of: Dict[Stmt, JMethod] = {}
        self._nodes: List[Stmt] = []
        self._in_edges: Dict[Stmt, List[ICFGEdge]] = defaultdict(list)
        self._out_edges: Dict[Stmt, List[ICFGEdge]] = defaultdict(list)
        self._build(cfgs or {})

    # ----- construction -----------------------------------------------------

    def _cfg_for(self, method: JMethod, given: Mapping[JMethod, CFG]) -> Optional[CFG]:
        if method in given:
            return given[method]
        ir = method.ir
        if ir is None:
            return None
        if ir.has_result("cfg"):
            return ir.get_result("cfg")
        cfg = build_cfg(ir)
        ir.store_result("cfg", cfg)
        return cfg

    def _add(self, edge: ICFGEdge) -> None:
        self._out_edges[edge.source].append(edge)
        self._in_edges[edge.target].append(edge)

    def _build(self, given: Mapping[JMethod, CFG]) -> None:
        for method in self.call_graph.reachable_methods():
            cfg = self._cfg_for(method, given)
            if cfg is None:
                continue
            self._cfgs[method] = cfg
            for node in cfg.nodes:
                self._method_of[node] = method
                self._nodes.append(node)

        for method, cfg in self._cfgs.items():
            for node in cfg.nodes:
                if self.is_call_site(node):
                    for edge in cfg.get_out_edges_of(node):
                        self._add(CallToReturnEdge(node, edge.target))
                    for callee in self.get_callees_of(node):
                        callee_cfg = self._cfgs.get(callee)
                        if callee_cfg is None:
                            continue
                        self._add(CallEdge(node, callee_cfg.entry, callee))
                        for return_site in cfg.get_succs_of(node):
                            self._add(
                                ReturnEdge(callee_cfg.exit, return_site, node, callee)
                            )
                else:
                    for edge in cfg.get_out_edges_of(node):
                        self._add(NormalEdge(node, edge.target))

        logger.debug(
            "icfg: %d method(s), %d node(s)", len(self._cfgs), len(self._nodes),
        )

    # ----- queries ----------------------------------------------------------

    @property
    def nodes(self) -> List[Stmt]:
        return list(self._nodes)

    def entry_methods(self) -> List[JMethod]:
        return [m for m in self.call_graph.entry_methods if m in self._cfgs]

    def methods(self) -> List[JMethod]:
        return list(self._cfgs)

    def get_cfg_of(self, method: JMethod) -> CFG:
        return self._cfgs[method]

    def get_entry_of(self, method: JMethod) -> Stmt:
        return self._cfgs[method].entry

    def get_exit_of(self, method: JMethod) -> Stmt:
        return self._cfgs[method].exit

    def get_containing_method_of(self, node: Stmt) -> JMethod:
        return self._method_of[node]

    def get_in_edges_of(self, node: Stmt) -> List[ICFGEdge]:
        return list(self._in_edges.get(node, ()))

    def get_out_edges_of(self, node: Stmt) -> List[ICFGEdge]:
        return list(self._out_edges.get(node, ()))

    def get_preds_of(self, node: Stmt) -> List[Stmt]:
        return _unique(e.source for e in self._in_edges.get(node, ()))

    def get_succs_of(self, node: Stmt) -> List[Stmt]:
        return _unique(e.target for e in self._out_edges.get(node, ()))

    def is_call_site(self, node: Stmt) -> bool:
        return isinstance(node, Invoke) and node in self._method_of

    def get_callees_of(self, call_site: Invoke) -> List[JMethod]:
        return self.call_graph.get_callees_of(call_site)

    def get_return_sites_of(self, call_site: Invoke) -> List[Stmt]:
        return self._cfgs[self._method_of[call_site]].get_succs_of(call_site)

    def __iter__(self):
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return f"ICFG(methods={len(self._cfgs)}, nodes={len(self._nodes)})"


def _unique(stmts) -> List[Stmt]:
    seen = set()
    out: List[Stmt] = []
    for s in stmts:
        if id(s) not in seen:
            seen.add(id(s))
            out.append(s)
    return out
