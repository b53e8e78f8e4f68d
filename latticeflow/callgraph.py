"""
latticeflow.callgraph
=====================

Call graphs and their construction by Class Hierarchy Analysis (CHA).

The call graph is a directed graph where:
- **Nodes** are :class:`~latticeflow.hierarchy.JMethod` objects reachable
  from the entry methods.
- **Edges** connect a call site (an :class:`~latticeflow.ir.Invoke`
  statement) to one callee and carry the :class:`CallKind` of the call.

The graph only grows: methods become reachable and edges are added, never
removed.

Resolution
----------
``STATIC`` / ``SPECIAL`` / ``DYNAMIC`` / ``OTHER``
    Dispatch once on the class named by the method reference.  At most one
    target.
``VIRTUAL`` / ``INTERFACE``
    Dispatch on the named class and on every transitive subclass,
    implementor and sub-interface of it.  Zero, one or many targets.

Dispatch looks for a non-abstract method with the requested subsignature
in a class, then in its superclass, and so on; it returns ``None`` when the
ancestry is exhausted.  A call site without targets contributes no edge.

Public API
----------
    CallKind            - kind of a call edge
    CallGraphEdge       - a directed edge (call site → callee)
    CallGraph           - the whole-program call graph
    CHABuilder          - builds a CallGraph from a ClassHierarchy
    build_callgraph     - convenience wrapper around CHABuilder
    call_kind_of        - CallKind of an Invoke statement
    callgraph_summary   - human-readable multi-line summary

Typical usage::

    from latticeflow.callgraph import build_callgraph

    cg = build_callgraph(hierarchy, [main])
    for edge in cg.edges:
        print(f"{edge.caller} -> {edge.callee}  [{edge.kind.value}]")
    print(cg.to_dot())
"""

from __future__ import annotations

import enum
import logging
from collections import defaultdict, deque
from typing import (
    Any,
    Deque,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
)

from latticeflow.hierarchy import ClassHierarchy, JClass, JMethod, Subsignature
from latticeflow.ir import Invoke, InvokeKind

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Call kinds
# ---------------------------------------------------------------------------

class CallKind(enum.Enum):
    """Kind of a call edge."""

    STATIC    = "static"
    SPECIAL   = "special"
    VIRTUAL   = "virtual"
    INTERFACE = "interface"
    DYNAMIC   = "dynamic"
    OTHER     = "other"


_KIND_OF_INVOKE: Dict[InvokeKind, CallKind] = {
    InvokeKind.STATIC: CallKind.STATIC,
    InvokeKind.SPECIAL: CallKind.SPECIAL,
    InvokeKind.VIRTUAL: CallKind.VIRTUAL,
    InvokeKind.INTERFACE: CallKind.INTERFACE,
    InvokeKind.DYNAMIC: CallKind.DYNAMIC,
}


def call_kind_of(call_site: Invoke) -> CallKind:
    """The :class:`CallKind` of *call_site*; unknown kinds map to ``OTHER``."""
    return _KIND_OF_INVOKE.get(call_site.invoke_exp.invoke_kind, CallKind.OTHER)


# ---------------------------------------------------------------------------
# CallGraphEdge
# ---------------------------------------------------------------------------

class CallGraphEdge:
    """A call edge.

    Attributes
    ----------
    kind : CallKind
    call_site : Invoke
        The calling statement.
    callee : JMethod
    caller : JMethod or None
        The method containing ``call_site``; filled in by
        :meth:`CallGraph.add_edge` when known.
    """

    __slots__ = ("kind", "call_site", "callee", "caller")

    def __init__(
        self,
        kind: CallKind,
        call_site: Invoke,
        callee: JMethod,
        caller: Optional[JMethod] = None,
    ) -> None:
        self.kind = kind
        self.call_site = call_site
        self.callee = callee
        self.caller = caller

    def __repr__(self) -> str:
        return (
            f"CallGraphEdge({self.kind.value}, {self.call_site}, "
            f"-> {self.callee})"
        )

    def __hash__(self) -> int:
        return hash((self.kind, id(self.call_site), id(self.callee)))

    def __eq__(self, other) -> bool:
        if isinstance(other, CallGraphEdge):
            return (
                self.kind is other.kind
                and self.call_site is other.call_site
                and self.callee is other.callee
            )
        return NotImplemented


# ---------------------------------------------------------------------------
# CallGraph
# ---------------------------------------------------------------------------

class CallGraph:
    """Whole-program call graph.

    Attributes
    ----------
    entry_methods : list of JMethod
    edges : list of CallGraphEdge
        In insertion order.
    """

    def __init__(self) -> None:
        self.entry_methods: List[JMethod] = []
        self.edges: List[CallGraphEdge] = []
        self._reachable: Dict[JMethod, None] = {}
        self._edge_set: Set[CallGraphEdge] = set()
        self._out_by_site: Dict[Invoke, List[CallGraphEdge]] = defaultdict(list)
        self._in_by_callee: Dict[JMethod, List[CallGraphEdge]] = defaultdict(list)
        self._container: Dict[Invoke, JMethod] = {}

    # ----- node management --------------------------------------------------

    def add_entry_method(self, method: JMethod) -> None:
        if method not in self.entry_methods:
            self.entry_methods.append(method)

    def add_reachable_method(self, method: JMethod) -> bool:
        """Mark *method* reachable.  Returns ``False`` if it already was."""
        if method in self._reachable:
            return False
        self._reachable[method] = None
        for call_site in self.get_call_sites_in(method):
            self._container[call_site] = method
        return True

    def contains(self, method: JMethod) -> bool:
        return method in self._reachable

    __contains__ = contains

    def reachable_methods(self) -> List[JMethod]:
        """Reachable methods in discovery order."""
        return list(self._reachable)

    # ----- edge management --------------------------------------------------

    def add_edge(self, edge: CallGraphEdge) -> bool:
        """Add *edge*.  Returns ``False`` if an equal edge is present."""
        if edge in self._edge_set:
            return False
        if edge.caller is None:
            edge.caller = self._container.get(edge.call_site)
        self._edge_set.add(edge)
        self.edges.append(edge)
        self._out_by_site[edge.call_site].append(edge)
        self._in_by_callee[edge.callee].append(edge)
        return True

    # ----- lookups ----------------------------------------------------------

    @staticmethod
    def get_call_sites_in(method: JMethod) -> List[Invoke]:
        """Call sites in the body of *method*, in program order."""
        if method.ir is None:
            return []
        return [s for s in method.ir.stmts if isinstance(s, Invoke)]

    def get_callees_of(self, call_site: Invoke) -> List[JMethod]:
        return [e.callee for e in self._out_by_site.get(call_site, ())]

    def get_callees_of_method(self, method: JMethod) -> List[JMethod]:
        seen: Dict[JMethod, None] = {}
        for call_site in self.get_call_sites_in(method):
            for callee in self.get_callees_of(call_site):
                seen.setdefault(callee, None)
        return list(seen)

    def get_callers_of(self, method: JMethod) -> List[Invoke]:
        """Call sites with an edge to *method*."""
        return [e.call_site for e in self._in_by_callee.get(method, ())]

    def get_container_of(self, call_site: Invoke) -> Optional[JMethod]:
        return self._container.get(call_site)

    def edges_out_of(self, call_site: Invoke) -> List[CallGraphEdge]:
        return list(self._out_by_site.get(call_site, ()))

    def edges_into(self, method: JMethod) -> List[CallGraphEdge]:
        return list(self._in_by_callee.get(method, ()))

    # ----- whole-graph queries ----------------------------------------------

    def strongly_connected_components(self) -> List[List[JMethod]]:
        """Compute SCCs using Tarjan's algorithm.

        Returns a list of SCCs in reverse topological order (callees before
        callers).  Each SCC with more than one method represents mutual
        recursion.  The depth-first walk keeps an explicit stack of
        ``(method, callee iterator)`` frames, so call chain length is not
        bounded by the interpreter's recursion limit.
        """
        counter = 0
        stack: List[JMethod] = []
        lowlink: Dict[JMethod, int] = {}
        index: Dict[JMethod, int] = {}
        on_stack: Set[JMethod] = set()
        result: List[List[JMethod]] = []

        def visit(v: JMethod) -> Iterator[JMethod]:
            nonlocal counter
            index[v] = lowlink[v] = counter
            counter += 1
            stack.append(v)
            on_stack.add(v)
            return iter(self.get_callees_of_method(v))

        for root in self._reachable:
            if root in index:
                continue
            frames: List[Tuple[JMethod, Iterator[JMethod]]] = [(root, visit(root))]
            while frames:
                v, callees = frames[-1]
                descended = False
                for w in callees:
                    if w not in index:
                        frames.append((w, visit(w)))
                        descended = True
                        break
                    if w in on_stack:
                        lowlink[v] = min(lowlink[v], index[w])
                if descended:
                    continue

                frames.pop()
                if frames:
                    parent = frames[-1][0]
                    lowlink[parent] = min(lowlink[parent], lowlink[v])
                if lowlink[v] == index[v]:
                    scc: List[JMethod] = []
                    while True:
                        w = stack.pop()
                        on_stack.discard(w)
                        scc.append(w)
                        if w is v:
                            break
                    result.append(scc)

        return result

    def is_recursive(self, method: JMethod) -> bool:
        """Is *method* part of a (possibly indirect) recursive cycle?"""
        visited: Set[JMethod] = set()
        worklist: Deque[JMethod] = deque(self.get_callees_of_method(method))
        while worklist:
            m = worklist.popleft()
            if m is method:
                return True
            if m in visited:
                continue
            visited.add(m)
            worklist.extend(self.get_callees_of_method(m))
        return False

    # ----- statistics -------------------------------------------------------

    def statistics(self) -> Dict[str, Any]:
        """Return a dict with summary statistics."""
        by_kind = {k.value: 0 for k in CallKind}
        for e in self.edges:
            by_kind[e.kind.value] += 1
        sccs = self.strongly_connected_components()
        call_sites = [cs for m in self._reachable for cs in self.get_call_sites_in(m)]
        return {
            "entry_methods": len(self.entry_methods),
            "reachable_methods": len(self._reachable),
            "total_edges": len(self.edges),
            "call_sites": len(call_sites),
            "unresolved_call_sites": sum(
                1 for cs in call_sites if cs not in self._out_by_site
            ),
            "edges_by_kind": by_kind,
            "sccs": len(sccs),
            "recursive_sccs": sum(1 for scc in sccs if len(scc) > 1),
        }

    # ----- serialisation ----------------------------------------------------

    def to_dot(self, title: Optional[str] = None) -> str:
        """Return a Graphviz DOT representation."""
        lines = ["digraph CallGraph {"]
        lines.append("  rankdir=TB;")
        if title:
            lines.append(f'  label="{title}";')
        lines.append('  node [shape=box, fontname="Helvetica", fontsize=10];')

        for m in self._reachable:
            escaped = m.signature.replace('"', '\\"')
            attrs = 'style=filled, fillcolor="#ddeeff"'
            if m in self.entry_methods:
                attrs = 'style=filled, fillcolor="#ccffcc", shape=invhouse'
            lines.append(f'  "{escaped}" [{attrs}];')

        kind_attrs = {
            CallKind.VIRTUAL: ", style=dashed, color=blue",
            CallKind.INTERFACE: ", style=dashed, color=purple",
        }
        for e in self.edges:
            caller = e.caller.signature if e.caller is not None else "?"
            attrs = kind_attrs.get(e.kind, "")
            lines.append(
                '  "{}" -> "{}" [label="{}:{}"{}];'.format(
                    caller.replace('"', '\\"'),
                    e.callee.signature.replace('"', '\\"'),
                    e.kind.value, e.call_site.index, attrs,
                )
            )
        lines.append("}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"CallGraph(reachable={len(self._reachable)}, edges={len(self.edges)})"
        )


# ===========================================================================
# CHA BUILDER
# ===========================================================================

class CHABuilder:
    """Builds a :class:`CallGraph` by class hierarchy analysis.

    Parameters
    ----------
    hierarchy : ClassHierarchy
        The classes of the program; passed explicitly, there is no global
        world.
    """

    ID = "cha"

    def __init__(self, hierarchy: ClassHierarchy) -> None:
        self.hierarchy = hierarchy

    def build(self, entry: JMethod) -> CallGraph:
        """Call graph of everything reachable from *entry*."""
        return self.build_all([entry])

    def build_all(self, entries: Iterable[JMethod]) -> CallGraph:
        """Call graph of everything reachable from any of *entries*."""
        cg = CallGraph()
        worklist: Deque[JMethod] = deque()
        for entry in entries:
            cg.add_entry_method(entry)
            worklist.append(entry)

        while worklist:
            method = worklist.popleft()
            if not cg.add_reachable_method(method):
                continue
            for call_site in cg.get_call_sites_in(method):
                targets = self.resolve(call_site)
                if not targets:
                    logger.debug("cha: no target for %s in %s", call_site, method)
                kind = call_kind_of(call_site)
                for target in targets:
                    cg.add_edge(CallGraphEdge(kind, call_site, target, caller=method))
                    worklist.append(target)

        logger.debug(
            "cha: %d reachable method(s), %d edge(s)",
            len(cg.reachable_methods()), len(cg.edges),
        )
        return cg

    def resolve(self, call_site: Invoke) -> List[JMethod]:
        """Possible targets of *call_site*, without duplicates."""
        ref = call_site.method_ref
        declared = self.hierarchy.get_class(ref.class_name)
        if declared is None:
            return []
        subsig = ref.subsignature
        kind = call_kind_of(call_site)

        if kind not in (CallKind.VIRTUAL, CallKind.INTERFACE):
            target = self.dispatch(declared, subsig)
            return [target] if target is not None else []

        targets: Dict[JMethod, None] = {}
        seen: Set[str] = set()
        queue: Deque[JClass] = deque([declared])
        while queue:
            jclass = queue.popleft()
            if jclass.name in seen:
                continue
            seen.add(jclass.name)
            target = self.dispatch(jclass, subsig)
            if target is not None:
                targets.setdefault(target, None)
            queue.extend(self.hierarchy.get_direct_subclasses_of(jclass))
            queue.extend(self.hierarchy.get_direct_implementors_of(jclass))
            queue.extend(self.hierarchy.get_direct_subinterfaces_of(jclass))
        return list(targets)

    def dispatch(self, jclass: JClass, subsignature: Subsignature) -> Optional[JMethod]:
        """First non-abstract method matching *subsignature* in the ancestry
        of *jclass*, starting at *jclass* itself."""
        current: Optional[JClass] = jclass
        while current is not None:
            method = current.get_declared_method(subsignature)
            if method is not None and not method.is_abstract:
                return method
            current = self.hierarchy.get_superclass_of(current)
        return None


def build_callgraph(hierarchy: ClassHierarchy, entries: Iterable[JMethod]) -> CallGraph:
    """Build the CHA call graph of *hierarchy* from *entries*.

    Example
    -------
    ::

        cg = build_callgraph(program.hierarchy, program.entry_methods)
        for scc in cg.strongly_connected_components():
            print([str(m) for m in scc])
    """
    return CHABuilder(hierarchy).build_all(entries)


# ---------------------------------------------------------------------------
# Convenience utilities
# ---------------------------------------------------------------------------

def callgraph_summary(cg: CallGraph) -> str:
    """Return a human-readable multi-line summary."""
    stats = cg.statistics()
    lines = [
        "Call Graph Summary",
        f"  Entry methods:        {stats['entry_methods']}",
        f"  Reachable methods:    {stats['reachable_methods']}",
        f"  Total edges:          {stats['total_edges']}",
        f"  Call sites:           {stats['call_sites']}",
        f"  Unresolved sites:     {stats['unresolved_call_sites']}",
        f"  SCCs:                 {stats['sccs']}",
        f"  Recursive SCCs:       {stats['recursive_sccs']}",
        "",
        "Methods:",
    ]
    for method in cg.reachable_methods():
        callees = [str(c) for c in cg.get_callees_of_method(method)]
        lines.append(f"  {method}: calls [{', '.join(callees)}]")
    return "\n".join(lines)


def _edge_key(edge: CallGraphEdge) -> Tuple[str, str, int]:
    caller = edge.caller.signature if edge.caller is not None else ""
    return caller, edge.callee.signature, edge.call_site.index


def sorted_edges(cg: CallGraph) -> List[CallGraphEdge]:
    """Edges ordered by caller, callee and call-site index."""
    return sorted(cg.edges, key=_edge_key)
