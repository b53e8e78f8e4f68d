"""
latticeflow.ctrlflow_graph
==========================

Builds intraprocedural Control Flow Graphs (CFGs) over :mod:`latticeflow.ir`
statements.

Every statement of a method body is one node.  Two synthetic :class:`Nop`
nodes are added: the *entry* (index ``-1``) and the *exit* (index
``len(stmts)``).  Edges carry their control-flow meaning
(:class:`EdgeKind`), which is what the dead-code detector and the ICFG rely
on.

Public API
----------
    EdgeKind         - classification of CFG edges
    Edge             - a directed, typed edge between two statements
    CFG              - the control flow graph of one method
    ReversedCFG      - read-only view with edges (and entry/exit) flipped
    PrunedCFG        - read-only view with a set of nodes removed
    build_cfg        - build the CFG of an :class:`~latticeflow.ir.IR`

Typical usage::

    from latticeflow.ctrlflow_graph import build_cfg

    cfg = build_cfg(method.get_ir())
    for node in cfg:
        print(node.index, node, [str(s) for s in cfg.get_succs_of(node)])
    print(cfg.to_dot())

All three graph classes answer the same queries (``entry``, ``exit``,
``nodes``, ``get_preds_of`` …), so solvers accept any of them.
"""

from __future__ import annotations

import enum
import logging
from collections import defaultdict
from typing import (
    Collection,
    Dict,
    Iterator,
    List,
    Optional,
    Set,
)

from latticeflow.ir import IR, Goto, If, Nop, Return, Stmt, Switch

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Edge kinds
# ---------------------------------------------------------------------------

class EdgeKind(enum.Enum):
    """Classification of a CFG edge."""

    ENTRY = "entry"                    # entry marker -> first statement
    NORMAL = "normal"                  # fall-through
    IF_TRUE = "if-true"
    IF_FALSE = "if-false"
    GOTO = "goto"
    SWITCH_CASE = "switch-case"
    SWITCH_DEFAULT = "switch-default"
    RETURN = "return"                  # return statement -> exit


# ---------------------------------------------------------------------------
# Edge
# ---------------------------------------------------------------------------

class Edge:
    """A directed edge in the CFG.

    Attributes
    ----------
    source : Stmt
    target : Stmt
    kind : EdgeKind
    case_value : int or None
        The case constant of a ``SWITCH_CASE`` edge.
    """

    __slots__ = ("source", "target", "kind", "case_value")

    def __init__(
        self,
        source: Stmt,
        target: Stmt,
        kind: EdgeKind = EdgeKind.NORMAL,
        case_value: Optional[int] = None,
    ) -> None:
        self.source = source
        self.target = target
        self.kind = kind
        self.case_value = case_value

    def is_switch_case(self) -> bool:
        return self.kind is EdgeKind.SWITCH_CASE

    def flipped(self) -> "Edge":
        return Edge(self.target, self.source, self.kind, self.case_value)

    def __repr__(self) -> str:
        extra = f", case={self.case_value}" if self.case_value is not None else ""
        return (
            f"Edge({self.source.index} -> {self.target.index}, "
            f"kind={self.kind.value!r}{extra})"
        )

    def __hash__(self) -> int:
        return hash((id(self.source), id(self.target), self.kind, self.case_value))

    def __eq__(self, other) -> bool:
        if isinstance(other, Edge):
            return (
                self.source is other.source
                and self.target is other.target
                and self.kind == other.kind
                and self.case_value == other.case_value
            )
        return NotImplemented


# ---------------------------------------------------------------------------
# Common query surface
# ---------------------------------------------------------------------------

class _GraphView:
    """Queries shared by :class:`CFG` and its views.

    Subclasses provide ``entry``, ``exit``, ``ir``, ``nodes``,
    ``get_in_edges_of`` and ``get_out_edges_of``.
    """

    entry: Stmt
    exit: Stmt
    ir: IR

    @property
    def nodes(self) -> List[Stmt]:
        raise NotImplementedError

    def get_in_edges_of(self, node: Stmt) -> List[Edge]:
        raise NotImplementedError

    def get_out_edges_of(self, node: Stmt) -> List[Edge]:
        raise NotImplementedError

    @property
    def method(self):
        return self.ir.method

    def get_preds_of(self, node: Stmt) -> List[Stmt]:
        return _unique(e.source for e in self.get_in_edges_of(node))

    def get_succs_of(self, node: Stmt) -> List[Stmt]:
        return _unique(e.target for e in self.get_out_edges_of(node))

    def is_entry(self, node: Stmt) -> bool:
        return node is self.entry

    def is_exit(self, node: Stmt) -> bool:
        return node is self.exit

    @property
    def edges(self) -> List[Edge]:
        return [e for n in self.nodes for e in self.get_out_edges_of(n)]

    def reversed(self) -> "ReversedCFG":
        """Return a view of this graph with every edge flipped."""
        return ReversedCFG(self)

    def pruned(self, removed: Collection[Stmt]) -> "PrunedCFG":
        """Return a view without *removed* nodes and their edges.

        The entry and exit are always kept.
        """
        return PrunedCFG(self, removed)

    def __iter__(self) -> Iterator[Stmt]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node: object) -> bool:
        return any(n is node for n in self.nodes)

    # ----- serialisation helpers --------------------------------------------

    def to_dot(self, title: Optional[str] = None) -> str:
        """Return a Graphviz DOT representation of this graph."""
        lines = ["digraph CFG {"]
        if title:
            lines.append(f'  label="{title}";')
        lines.append("  node [shape=box, fontname=monospace, fontsize=10];")
        ids: Dict[int, str] = {}
        for i, n in enumerate(self.nodes):
            ids[id(n)] = f"S{i}"
            lbl = str(n).replace('"', '\\"')
            color = ""
            if self.is_entry(n):
                color = ', style=filled, fillcolor="#ccffcc"'
            elif self.is_exit(n):
                color = ', style=filled, fillcolor="#ffcccc"'
            lines.append(f'  S{i} [label="{n.index}: {lbl}"{color}];')
        for e in self.edges:
            style = ""
            elabel = e.kind.value
            if e.case_value is not None:
                elabel += f": {e.case_value}"
            if e.kind is EdgeKind.IF_TRUE:
                style = ', color=green, fontcolor=green'
            elif e.kind is EdgeKind.IF_FALSE:
                style = ', color=red, fontcolor=red'
            elif e.kind in (EdgeKind.SWITCH_CASE, EdgeKind.SWITCH_DEFAULT):
                style = ', style=dotted'
            lines.append(
                f'  {ids[id(e.source)]} -> {ids[id(e.target)]} '
                f'[label="{elabel}"{style}];'
            )
        lines.append("}")
        return "\n".join(lines)


def _unique(stmts) -> List[Stmt]:
    seen: Set[int] = set()
    out: List[Stmt] = []
    for s in stmts:
        if id(s) not in seen:
            seen.add(id(s))
            out.append(s)
    return out


# ---------------------------------------------------------------------------
# CFG
# ---------------------------------------------------------------------------

class CFG(_GraphView):
    """Intraprocedural control flow graph for a single method.

    Attributes
    ----------
    ir : IR
        The method body this CFG represents.
    entry : Nop
        Synthetic entry node (index ``-1``).
    exit : Nop
        Synthetic exit node (index ``len(ir.stmts)``).
    """

    def __init__(self, ir: IR) -> None:
        self.ir = ir
        self.entry = Nop("entry")
        self.entry.index = -1
        self.exit = Nop("exit")
        self.exit.index = len(ir.stmts)
        self._nodes: List[Stmt] = [self.entry, *ir.stmts, self.exit]
        self._in_edges: Dict[Stmt, List[Edge]] = defaultdict(list)
        self._out_edges: Dict[Stmt, List[Edge]] = defaultdict(list)

    # ----- graph mutation ---------------------------------------------------

    def add_edge(
        self,
        source: Stmt,
        target: Stmt,
        kind: EdgeKind = EdgeKind.NORMAL,
        case_value: Optional[int] = None,
    ) -> Edge:
        """Create an edge and wire up predecessor/successor lists."""
        e = Edge(source, target, kind, case_value)
        self._out_edges[source].append(e)
        self._in_edges[target].append(e)
        return e

    # ----- queries ----------------------------------------------------------

    @property
    def nodes(self) -> List[Stmt]:
        return list(self._nodes)

    def get_in_edges_of(self, node: Stmt) -> List[Edge]:
        return list(self._in_edges.get(node, ()))

    def get_out_edges_of(self, node: Stmt) -> List[Edge]:
        return list(self._out_edges.get(node, ()))

    def __repr__(self) -> str:
        return (
            f"CFG(method={self.ir.method}, nodes={len(self._nodes)}, "
            f"edges={sum(len(v) for v in self._out_edges.values())})"
        )


class ReversedCFG(_GraphView):
    """A CFG seen backwards: entry and exit swap, every edge is flipped.

    Node order is reversed too, so a worklist seeded in node order visits
    the original exit first.
    """

    def __init__(self, cfg: _GraphView) -> None:
        self.original = cfg
        self.ir = cfg.ir
        self.entry = cfg.exit
        self.exit = cfg.entry

    @property
    def nodes(self) -> List[Stmt]:
        return list(reversed(self.original.nodes))

    def get_in_edges_of(self, node: Stmt) -> List[Edge]:
        return [e.flipped() for e in self.original.get_out_edges_of(node)]

    def get_out_edges_of(self, node: Stmt) -> List[Edge]:
        return [e.flipped() for e in self.original.get_in_edges_of(node)]

    def reversed(self) -> _GraphView:
        return self.original

    def __repr__(self) -> str:
        return f"ReversedCFG({self.original!r})"


class PrunedCFG(_GraphView):
    """A CFG with some nodes (typically dead code) taken out."""

    def __init__(self, cfg: _GraphView, removed: Collection[Stmt]) -> None:
        self.original = cfg
        self.ir = cfg.ir
        self.entry = cfg.entry
        self.exit = cfg.exit
        self._removed: Set[int] = {
            id(s) for s in removed if s is not cfg.entry and s is not cfg.exit
        }

    def _kept(self, node: Stmt) -> bool:
        return id(node) not in self._removed

    @property
    def nodes(self) -> List[Stmt]:
        return [n for n in self.original.nodes if self._kept(n)]

    def get_in_edges_of(self, node: Stmt) -> List[Edge]:
        if not self._kept(node):
            return []
        return [e for e in self.original.get_in_edges_of(node) if self._kept(e.source)]

    def get_out_edges_of(self, node: Stmt) -> List[Edge]:
        if not self._kept(node):
            return []
        return [e for e in self.original.get_out_edges_of(node) if self._kept(e.target)]

    def __repr__(self) -> str:
        return f"PrunedCFG({self.original!r}, removed={len(self._removed)})"


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

def _require_target(stmt: Stmt, target: Optional[Stmt]) -> Stmt:
    if target is None:
        raise ValueError(f"unresolved jump target in {stmt!r}")
    return target


def build_cfg(ir: IR) -> CFG:
    """Build the CFG of *ir*.

    Raises ``ValueError`` when a jump statement has no target.
    """
    cfg = CFG(ir)
    stmts = ir.stmts
    if not stmts:
        cfg.add_edge(cfg.entry, cfg.exit, EdgeKind.ENTRY)
        return cfg

    cfg.add_edge(cfg.entry, stmts[0], EdgeKind.ENTRY)
    for i, stmt in enumerate(stmts):
        following = stmts[i + 1] if i + 1 < len(stmts) else cfg.exit
        if isinstance(stmt, If):
            cfg.add_edge(stmt, _require_target(stmt, stmt.target), EdgeKind.IF_TRUE)
            cfg.add_edge(stmt, following, EdgeKind.IF_FALSE)
        elif isinstance(stmt, Goto):
            cfg.add_edge(stmt, _require_target(stmt, stmt.target), EdgeKind.GOTO)
        elif isinstance(stmt, Switch):
            for value, target in stmt.get_case_targets():
                cfg.add_edge(
                    stmt, _require_target(stmt, target),
                    EdgeKind.SWITCH_CASE, case_value=value,
                )
            cfg.add_edge(
                stmt, _require_target(stmt, stmt.default_target),
                EdgeKind.SWITCH_DEFAULT,
            )
        elif isinstance(stmt, Return):
            cfg.add_edge(stmt, cfg.exit, EdgeKind.RETURN)
        else:
            cfg.add_edge(stmt, following, EdgeKind.NORMAL)

    logger.debug("built %r", cfg)
    return cfg


def cfg_summary(cfg: _GraphView) -> str:
    """One line per node: index, statement and successor indices."""
    lines = []
    for n in cfg.nodes:
        succs = ", ".join(str(s.index) for s in cfg.get_succs_of(n))
        lines.append(f"{n.index:>4}  {n!s:<40} -> [{succs}]")
    return "\n".join(lines)
