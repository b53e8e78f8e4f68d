"""
latticeflow.dataflow_engine
===========================

A generic monotone dataflow framework over :mod:`latticeflow.ctrlflow_graph`
CFGs.

Theory
------
A dataflow analysis is defined by:

1.  A **lattice** of facts, given implicitly by the analysis' meet.
2.  A **direction**: *forward* (facts flow along control-flow edges) or
    *backward* (against them).
3.  A **boundary fact** for the entry node and an **initial fact** for
    every other node.
4.  A **meet** that combines a predecessor's OUT into a node's IN.
5.  A monotone **transfer function** computing a node's OUT from its IN.

The engine iterates until a **fixpoint** is reached: no node's OUT fact
changes upon re-application of its transfer function.

Facts have value semantics (see :mod:`latticeflow.facts`):
:meth:`DataflowAnalysis.meet_into` and :meth:`DataflowAnalysis.transfer_node`
return new facts, and the solver detects change by comparing the new OUT to
the previous one with ``==``.

Public API
----------
    Direction           - forward / backward enum
    DataflowAnalysis    - abstract base every analysis implements
    DataflowResult      - IN / OUT facts per node
    Solver              - direction check + initialisation
    WorkListSolver      - FIFO worklist fixpoint engine (forward only)
    check_monotonicity  - debugging helper

Usage example
-------------
::

    from latticeflow.constprop import ConstantPropagation
    from latticeflow.ctrlflow_graph import build_cfg
    from latticeflow.dataflow_engine import WorkListSolver

    cfg = build_cfg(ir)
    result = WorkListSolver(ConstantPropagation()).solve(cfg)
    for stmt in ir:
        print(stmt, result.out_fact_of(stmt))

Backward analyses are refused by :class:`WorkListSolver` with
:class:`~latticeflow.errors.UnsupportedDirectionError`; drive them with
:func:`latticeflow.livevar.solve_backward`, which solves forward over the
reversed graph.
"""

from __future__ import annotations

import abc
import enum
import logging
from collections import deque
from typing import (
    Any,
    Deque,
    Dict,
    Generic,
    Iterable,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    TypeVar,
)

from latticeflow.config import AnalysisConfig
from latticeflow.errors import UnsupportedDirectionError
from latticeflow.ir import Stmt

logger = logging.getLogger(__name__)

F = TypeVar("F")          # dataflow Fact


# ===========================================================================
# DIRECTION
# ===========================================================================

class Direction(enum.Enum):
    """Direction of dataflow propagation."""
    FORWARD = "forward"
    BACKWARD = "backward"


# ===========================================================================
# ANALYSIS — ABSTRACT BASE
# ===========================================================================

class DataflowAnalysis(abc.ABC, Generic[F]):
    """Abstract base of intraprocedural dataflow analyses.

    Subclasses set :attr:`ID` and implement the five abstract methods.
    ``meet_into`` and ``transfer_node`` must not mutate their arguments.

    Parameters
    ----------
    config : AnalysisConfig, optional
        Identifier and options; defaults to ``AnalysisConfig(self.ID)``.
    """

    ID: str = ""

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        self.config = config if config is not None else AnalysisConfig(self.ID)

    @property
    def direction(self) -> Direction:
        return Direction.FORWARD if self.is_forward() else Direction.BACKWARD

    @abc.abstractmethod
    def is_forward(self) -> bool:
        """``True`` for forward analyses."""

    @abc.abstractmethod
    def new_boundary_fact(self, cfg: Any) -> F:
        """Fact for the entry (forward) or exit (backward) node of *cfg*."""

    @abc.abstractmethod
    def new_initial_fact(self) -> F:
        """Fact every non-boundary node starts with."""

    @abc.abstractmethod
    def meet_into(self, fact: F, target: F) -> F:
        """Return ``fact ⊓ target``."""

    @abc.abstractmethod
    def transfer_node(self, node: Any, in_fact: F, out_fact: F) -> F:
        """Return the new OUT of *node* given its IN (and its current OUT)."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.config.id!r})"


# ===========================================================================
# DATAFLOW RESULT
# ===========================================================================

class DataflowResult(Generic[F]):
    """IN and OUT facts of every node of one graph.

    Attributes
    ----------
    iterations : int
        Number of worklist iterations performed.
    """

    def __init__(self) -> None:
        self._in: Dict[Any, F] = {}
        self._out: Dict[Any, F] = {}
        self.iterations: int = 0

    def in_fact_of(self, node: Any) -> F:
        """Fact before *node*.  Raises ``KeyError`` for unknown nodes."""
        return self._in[node]

    def out_fact_of(self, node: Any) -> F:
        """Fact after *node*.  Raises ``KeyError`` for unknown nodes."""
        return self._out[node]

    def set_in_fact(self, node: Any, fact: F) -> None:
        self._in[node] = fact

    def set_out_fact(self, node: Any, fact: F) -> None:
        self._out[node] = fact

    def nodes(self) -> List[Any]:
        return list(self._in.keys())

    def items_in(self) -> Iterable[Tuple[Any, F]]:
        """Iterate over ``(node, in_fact)`` pairs."""
        return self._in.items()

    def items_out(self) -> Iterable[Tuple[Any, F]]:
        """Iterate over ``(node, out_fact)`` pairs."""
        return self._out.items()

    def swapped(self) -> "DataflowResult[F]":
        """Return a result with IN and OUT exchanged."""
        result: DataflowResult[F] = DataflowResult()
        result._in = dict(self._out)
        result._out = dict(self._in)
        result.iterations = self.iterations
        return result

    def __contains__(self, node: object) -> bool:
        return node in self._in

    def __repr__(self) -> str:
        return f"DataflowResult(nodes={len(self._in)}, iterations={self.iterations})"


# ===========================================================================
# SOLVERS
# ===========================================================================

class Solver(Generic[F]):
    """Base of intraprocedural solvers.

    :meth:`solve` checks the direction, seeds every node and hands over to
    :meth:`_do_solve_forward`.  Only forward solving is implemented.
    """

    def __init__(self, analysis: DataflowAnalysis[F]) -> None:
        self.analysis = analysis

    def solve(
        self,
        cfg: Any,
        seed: Optional[DataflowResult[F]] = None,
    ) -> DataflowResult[F]:
        """Run the analysis over *cfg* to a fixpoint.

        Parameters
        ----------
        cfg : CFG
            Any graph answering the :class:`~latticeflow.ctrlflow_graph.CFG`
            queries (including reversed and pruned views).
        seed : DataflowResult, optional
            Start from these facts instead of boundary / initial facts.
            Re-solving from a fixpoint leaves it unchanged.

        Raises
        ------
        UnsupportedDirectionError
            If the analysis is backward.
        """
        if not self.analysis.is_forward():
            raise UnsupportedDirectionError(type(self).__name__, Direction.BACKWARD.value)
        result = self._initialize_forward(cfg, seed)
        self._do_solve_forward(cfg, result)
        return result

    def _initialize_forward(
        self,
        cfg: Any,
        seed: Optional[DataflowResult[F]],
    ) -> DataflowResult[F]:
        result: DataflowResult[F] = DataflowResult()
        for node in cfg.nodes:
            if seed is not None and node in seed:
                result.set_in_fact(node, seed.in_fact_of(node))
                result.set_out_fact(node, seed.out_fact_of(node))
            elif cfg.is_entry(node):
                boundary = self.analysis.new_boundary_fact(cfg)
                result.set_in_fact(node, boundary)
                result.set_out_fact(node, boundary)
            else:
                result.set_in_fact(node, self.analysis.new_initial_fact())
                result.set_out_fact(node, self.analysis.new_initial_fact())
        return result

    def _do_solve_forward(self, cfg: Any, result: DataflowResult[F]) -> None:
        raise NotImplementedError


class WorkListSolver(Solver[F]):
    """FIFO worklist fixpoint engine.

    The worklist starts with every node in graph order.  Popping a node
    meets each predecessor's OUT into its IN, applies the transfer function
    and, when the OUT changed, enqueues every successor not already queued.
    """

    def _do_solve_forward(self, cfg: Any, result: DataflowResult[F]) -> None:
        analysis = self.analysis
        worklist: Deque[Stmt] = deque(cfg.nodes)
        queued: Set[int] = {id(n) for n in worklist}
        iterations = 0

        while worklist:
            node = worklist.popleft()
            queued.discard(id(node))
            iterations += 1

            in_fact = result.in_fact_of(node)
            for pred in cfg.get_preds_of(node):
                in_fact = analysis.meet_into(result.out_fact_of(pred), in_fact)
            result.set_in_fact(node, in_fact)

            old_out = result.out_fact_of(node)
            new_out = analysis.transfer_node(node, in_fact, old_out)
            if new_out != old_out:
                result.set_out_fact(node, new_out)
                for succ in cfg.get_succs_of(node):
                    if id(succ) not in queued:
                        worklist.append(succ)
                        queued.add(id(succ))

        result.iterations = iterations
        logger.debug(
            "%s: %s reached a fixpoint after %d iterations",
            type(self).__name__, analysis, iterations,
        )


# ===========================================================================
# MONOTONICITY CHECKER (development / debugging utility)
# ===========================================================================

def check_monotonicity(
    analysis: DataflowAnalysis[F],
    node: Any,
    samples: Sequence[F],
) -> bool:
    """Check that ``transfer_node(node, ·)`` is monotone on the given samples.

    For every pair ``(a, b)`` in *samples* where ``a ⊑ b``, verifies that
    the transferred facts keep that order.  Facts must provide ``leq``.

    This cannot prove monotonicity in general, only detect violations.

    Returns
    -------
    bool
        ``True`` if no violation found.
    """
    initial = analysis.new_initial_fact()
    for a in samples:
        for b in samples:
            if a.leq(b):  # type: ignore[attr-defined]
                fa = analysis.transfer_node(node, a, initial)
                fb = analysis.transfer_node(node, b, initial)
                if not fa.leq(fb):  # type: ignore[attr-defined]
                    return False
    return True
