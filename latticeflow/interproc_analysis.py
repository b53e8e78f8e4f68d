"""
latticeflow.interproc_analysis
==============================

Context-insensitive interprocedural dataflow analysis over an
:class:`~latticeflow.icfg.ICFG`.

An interprocedural analysis supplies node transfer functions for call and
non-call nodes, and an edge transfer function for each ICFG edge kind.
Facts flow along the supergraph:

* out of a call site into the callee entry through the **call edge**
  (arguments become parameters),
* from the callee exit back to each return site through the **return edge**
  (returned values become the call's result),
* around the call through the **call-to-return edge** (caller locals, minus
  the variable the call defines).

Public API (quick reference)
----------------------------
    InterDataflowAnalysis   — abstract base with edge-kind dispatch
    InterSolver             — FIFO worklist fixpoint engine over an ICFG
"""

from __future__ import annotations

import abc
import logging
from collections import deque
from typing import Deque, Generic, Optional, Set

from latticeflow.config import AnalysisConfig
from latticeflow.dataflow_engine import DataflowResult, F
from latticeflow.errors import UnsupportedDirectionError
from latticeflow.icfg import (
    ICFG,
    CallEdge,
    CallToReturnEdge,
    ICFGEdge,
    ICFGEdgeKind,
    NormalEdge,
    ReturnEdge,
)
from latticeflow.ir import Stmt

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# ANALYSIS BASE
# ═══════════════════════════════════════════════════════════════════════════

class InterDataflowAnalysis(abc.ABC, Generic[F]):
    """Abstract base of interprocedural analyses.

    :meth:`transfer_node` and :meth:`transfer_edge` are provided and
    dispatch to the ``transfer_*`` hooks subclasses implement.  The ICFG
    being solved is available as :attr:`icfg` while solving, and the facts
    computed so far as :attr:`result`.
    """

    ID: str = ""

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        self.config = config if config is not None else AnalysisConfig(self.ID)
        self.icfg: Optional[ICFG] = None
        self.result: Optional[DataflowResult[F]] = None

    # ----- lattice ----------------------------------------------------------

    @abc.abstractmethod
    def is_forward(self) -> bool: ...

    @abc.abstractmethod
    def new_boundary_fact(self, entry: Stmt) -> F:
        """Fact for *entry*, the ICFG entry node of an entry method."""

    @abc.abstractmethod
    def new_initial_fact(self) -> F: ...

    @abc.abstractmethod
    def meet_into(self, fact: F, target: F) -> F: ...

    # ----- node transfer ----------------------------------------------------

    def transfer_node(self, node: Stmt, in_fact: F, out_fact: F) -> F:
        assert self.icfg is not None
        if self.icfg.is_call_site(node):
            return self.transfer_call_node(node, in_fact, out_fact)
        return self.transfer_non_call_node(node, in_fact, out_fact)

    @abc.abstractmethod
    def transfer_call_node(self, node: Stmt, in_fact: F, out_fact: F) -> F: ...

    @abc.abstractmethod
    def transfer_non_call_node(self, node: Stmt, in_fact: F, out_fact: F) -> F: ...

    # ----- edge transfer ----------------------------------------------------

    def transfer_edge(self, edge: ICFGEdge, out: F) -> F:
        """Fact flowing along *edge* given its source's OUT.

        Raises ``ValueError`` for an edge of unknown kind.
        """
        kind = edge.kind
        if kind is ICFGEdgeKind.NORMAL:
            assert isinstance(edge, NormalEdge)
            return self.transfer_normal_edge(edge, out)
        if kind is ICFGEdgeKind.CALL_TO_RETURN:
            assert isinstance(edge, CallToReturnEdge)
            return self.transfer_call_to_return_edge(edge, out)
        if kind is ICFGEdgeKind.CALL:
            assert isinstance(edge, CallEdge)
            return self.transfer_call_edge(edge, out)
        if kind is ICFGEdgeKind.RETURN:
            assert isinstance(edge, ReturnEdge)
            return self.transfer_return_edge(edge, out)
        raise ValueError(f"unknown ICFG edge kind {kind!r}")

    @abc.abstractmethod
    def transfer_normal_edge(self, edge: NormalEdge, out: F) -> F: ...

    @abc.abstractmethod
    def transfer_call_to_return_edge(self, edge: CallToReturnEdge, out: F) -> F: ...

    @abc.abstractmethod
    def transfer_call_edge(self, edge: CallEdge, call_site_out: F) -> F: ...

    @abc.abstractmethod
    def transfer_return_edge(self, edge: ReturnEdge, return_out: F) -> F: ...

    # ----- driver -----------------------------------------------------------

    def analyze(self, icfg: ICFG) -> DataflowResult[F]:
        """Solve this analysis over *icfg*."""
        return InterSolver(self, icfg).solve()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.config.id!r})"


# ═══════════════════════════════════════════════════════════════════════════
# SOLVER
# ═══════════════════════════════════════════════════════════════════════════

class InterSolver(Generic[F]):
    """Worklist fixpoint engine over an ICFG.

    The entry node of every entry method starts with the boundary fact on
    both sides; every other node, callee entries included, starts with the
    initial fact.  Popping a node meets the edge-transferred OUT of each
    in-edge source into its IN, applies the node transfer and enqueues the
    successors when the OUT changed, or when the IN of a call site changed
    (its call edges bind arguments from that IN).
    """

    def __init__(self, analysis: InterDataflowAnalysis[F], icfg: ICFG) -> None:
        self.analysis = analysis
        self.icfg = icfg

    def solve(self) -> DataflowResult[F]:
        if not self.analysis.is_forward():
            raise UnsupportedDirectionError(type(self).__name__, "backward")
        self.analysis.icfg = self.icfg
        result: DataflowResult[F] = DataflowResult()
        self.analysis.result = result
        self._initialize(result)
        self._do_solve(result)
        return result

    def _initialize(self, result: DataflowResult[F]) -> None:
        analysis = self.analysis
        entries: Set[int] = set()
        for method in self.icfg.entry_methods():
            entry = self.icfg.get_entry_of(method)
            entries.add(id(entry))
            boundary = analysis.new_boundary_fact(entry)
            result.set_in_fact(entry, boundary)
            result.set_out_fact(entry, boundary)
        for node in self.icfg.nodes:
            if id(node) not in entries:
                result.set_in_fact(node, analysis.new_initial_fact())
                result.set_out_fact(node, analysis.new_initial_fact())

    def _do_solve(self, result: DataflowResult[F]) -> None:
        analysis = self.analysis
        icfg = self.icfg
        worklist: Deque[Stmt] = deque(icfg.nodes)
        queued: Set[int] = {id(n) for n in worklist}
        iterations = 0

        while worklist:
            node = worklist.popleft()
            queued.discard(id(node))
            iterations += 1

            old_in = result.in_fact_of(node)
            in_fact = old_in
            for edge in icfg.get_in_edges_of(node):
                flowed = analysis.transfer_edge(edge, result.out_fact_of(edge.source))
                in_fact = analysis.meet_into(flowed, in_fact)
            result.set_in_fact(node, in_fact)

            old_out = result.out_fact_of(node)
            new_out = analysis.transfer_node(node, in_fact, old_out)
            out_changed = new_out != old_out
            if out_changed:
                result.set_out_fact(node, new_out)
            # call edges read the call site's IN
            if out_changed or (in_fact != old_in and icfg.is_call_site(node)):
                for succ in icfg.get_succs_of(node):
                    if id(succ) not in queued:
                        worklist.append(succ)
                        queued.add(id(succ))

        result.iterations = iterations
        logger.debug(
            "InterSolver: %s reached a fixpoint after %d iterations over %r",
            analysis, iterations, icfg,
        )
