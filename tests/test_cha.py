# tests/test_cha.py
"""
Tests for the class hierarchy, CHA call-graph construction and the call
graph queries.
"""

import sys

import pytest

from latticeflow.callgraph import (
    CallGraph,
    CallGraphEdge,
    CallKind,
    CHABuilder,
    build_callgraph,
    callgraph_summary,
    sorted_edges,
)
from latticeflow.hierarchy import ClassHierarchy, JClass, MethodRef, Subsignature
from latticeflow.ir import IR, Invoke, InvokeExp, InvokeKind, PrimitiveType, Return
from latticeflow.loader import load_program
from tests.conftest import CALLS_PROGRAM


def _callees(cg, call_site):
    return sorted(m.signature for m in cg.get_callees_of(call_site))


def _call_sites(program, qualified):
    return [s for s in program.get_method(qualified).get_ir() if isinstance(s, Invoke)]


# ── Hierarchy ────────────────────────────────────────────────────

class TestSubsignature:

    def test_parse_normalises_spacing(self):
        assert str(Subsignature.parse(" int  add( int , int ) ")) == "int add(int,int)"
        assert Subsignature.parse("void run()").name == "run"

    def test_of_matches_parse(self):
        sub = Subsignature.of("f", [PrimitiveType.INT], PrimitiveType.VOID)
        assert sub == Subsignature.parse("void f(int)")

    def test_malformed(self):
        with pytest.raises(ValueError):
            Subsignature.parse("no parens")


class TestClassHierarchy:

    def test_direct_queries(self, hierarchy):
        a = hierarchy.add_class(JClass("A"))
        b = hierarchy.add_class(JClass("B", superclass="A", interfaces=["I"]))
        i = hierarchy.add_class(JClass("I", is_interface=True))
        j = hierarchy.add_class(JClass("J", interfaces=["I"], is_interface=True))
        assert hierarchy.get_direct_subclasses_of(a) == [b]
        assert hierarchy.get_direct_implementors_of(i) == [b]
        assert hierarchy.get_direct_subinterfaces_of(i) == [j]
        assert hierarchy.get_superclass_of(b) is a
        assert hierarchy.is_subclass(a, b) and hierarchy.is_subclass(i, b)
        assert not hierarchy.is_subclass(b, a)
        assert i.is_abstract

    def test_duplicate_class(self, hierarchy):
        hierarchy.add_class(JClass("A"))
        with pytest.raises(ValueError):
            hierarchy.add_class(JClass("A"))

    def test_get_ir_without_body(self):
        m = JClass("A").declare_method("f")
        with pytest.raises(ValueError):
            m.get_ir()


# ── CHA resolution ───────────────────────────────────────────────

def _caller(hierarchy, invoke_kind, class_name, subsig):
    """A static ``Main.main`` whose only statement calls ``class_name.subsig``."""
    main_class = hierarchy.add_class(JClass("Main"))
    main = main_class.declare_method("main", is_static=True)
    call = Invoke(InvokeExp(invoke_kind, MethodRef(class_name, Subsignature.parse(subsig))))
    main.ir = IR(main, [], [call, Return()])
    return main, call


def _with_body(method):
    method.ir = IR(method, [], [Return()])
    return method


class TestCHA:

    @pytest.mark.parametrize("n", [0, 1, 3, 7])
    def test_every_concrete_subclass_is_a_target(self, hierarchy, n):
        base = hierarchy.add_class(JClass("Base", is_abstract=True))
        base.declare_method("m", is_abstract=True)
        expected = []
        for k in range(n):
            sub = hierarchy.add_class(JClass(f"Sub{k}", superclass="Base"))
            expected.append(_with_body(sub.declare_method("m")).signature)
        main, call = _caller(hierarchy, InvokeKind.VIRTUAL, "Base", "void m()")
        cg = CHABuilder(hierarchy).build(main)
        assert _callees(cg, call) == sorted(expected)
        assert all(e.kind is CallKind.VIRTUAL for e in cg.edges)
        assert len(cg.reachable_methods()) == n + 1

    def test_abstract_declaration_is_never_a_target(self, hierarchy):
        base = hierarchy.add_class(JClass("Base", is_abstract=True))
        base.declare_method("m", is_abstract=True)
        main, call = _caller(hierarchy, InvokeKind.VIRTUAL, "Base", "void m()")
        cg = build_callgraph(hierarchy, [main])
        assert cg.get_callees_of(call) == []
        assert cg.edges == []

    def test_inherited_implementation_counted_once(self, hierarchy):
        base = hierarchy.add_class(JClass("Base"))
        impl = _with_body(base.declare_method("m"))
        hierarchy.add_class(JClass("Sub1", superclass="Base"))
        hierarchy.add_class(JClass("Sub2", superclass="Sub1"))
        main, call = _caller(hierarchy, InvokeKind.VIRTUAL, "Base", "void m()")
        cg = build_callgraph(hierarchy, [main])
        assert cg.get_callees_of(call) == [impl]

    def test_interface_dispatch_includes_subinterface_implementors(self, hierarchy):
        hierarchy.add_class(JClass("I", is_interface=True)).declare_method(
            "m", is_abstract=True)
        hierarchy.add_class(JClass("J", interfaces=["I"], is_interface=True))
        c1 = hierarchy.add_class(JClass("C1", interfaces=["I"]))
        c2 = hierarchy.add_class(JClass("C2", interfaces=["J"]))
        m1 = _with_body(c1.declare_method("m"))
        m2 = _with_body(c2.declare_method("m"))
        main, call = _caller(hierarchy, InvokeKind.INTERFACE, "I", "void m()")
        cg = build_callgraph(hierarchy, [main])
        assert _callees(cg, call) == sorted([m1.signature, m2.signature])
        assert {e.kind for e in cg.edges} == {CallKind.INTERFACE}

    def test_static_call(self, hierarchy):
        main, call = _caller(hierarchy, InvokeKind.STATIC, "Main", "void helper()")
        helper = _with_body(hierarchy.get_class("Main").declare_method(
            "helper", is_static=True))
        cg = build_callgraph(hierarchy, [main])
        assert cg.get_callees_of(call) == [helper]
        assert cg.edges[0].kind is CallKind.STATIC
        assert cg.edges[0].caller is main

    def test_special_call_dispatches_up(self, hierarchy):
        base = hierarchy.add_class(JClass("Base"))
        impl = _with_body(base.declare_method("m"))
        hierarchy.add_class(JClass("Sub", superclass="Base"))
        main, call = _caller(hierarchy, InvokeKind.SPECIAL, "Sub", "void m()")
        cg = build_callgraph(hierarchy, [main])
        assert cg.get_callees_of(call) == [impl]
        assert cg.edges[0].kind is CallKind.SPECIAL

    def test_unresolved_call_adds_no_edge(self, hierarchy):
        main, call = _caller(hierarchy, InvokeKind.STATIC, "Main", "void missing()")
        cg = build_callgraph(hierarchy, [main])
        assert cg.edges == []
        assert cg.statistics()["unresolved_call_sites"] == 1

    def test_unknown_class_adds_no_edge(self, hierarchy):
        main, call = _caller(hierarchy, InvokeKind.VIRTUAL, "Nowhere", "void m()")
        assert CHABuilder(hierarchy).resolve(call) == []


# ── Call graph over a loaded program ─────────────────────────────

class TestCallGraph:

    def setup_method(self):
        self.program = load_program(CALLS_PROGRAM)
        self.cg = build_callgraph(self.program.hierarchy, self.program.entry_methods)

    def test_reachable_methods(self):
        names = sorted(m.signature for m in self.cg.reachable_methods())
        assert names == [
            "<Main: int main()>",
            "<Main: int twice(int)>",
            "<Square: int sides()>",
            "<Triangle: int sides()>",
        ]

    def test_edges_from_main(self):
        static_site, virtual_site = _call_sites(self.program, "Main.main")
        assert _callees(self.cg, static_site) == ["<Main: int twice(int)>"]
        assert _callees(self.cg, virtual_site) == [
            "<Square: int sides()>", "<Triangle: int sides()>",
        ]
        main = self.program.get_method("Main.main")
        assert self.cg.get_container_of(static_site) is main

    def test_callers_of(self):
        twice = self.program.get_method("Main.twice")
        [site] = self.cg.get_callers_of(twice)
        assert str(site.method_ref) == "<Main: int twice(int)>"

    def test_add_edge_is_idempotent(self):
        edge = self.cg.edges[0]
        copy = CallGraphEdge(edge.kind, edge.call_site, edge.callee)
        assert not self.cg.add_edge(copy)
        assert len(self.cg.edges) == 3

    def test_statistics(self):
        stats = self.cg.statistics()
        assert stats["entry_methods"] == 1
        assert stats["reachable_methods"] == 4
        assert stats["total_edges"] == 3
        assert stats["edges_by_kind"]["virtual"] == 2
        assert stats["edges_by_kind"]["static"] == 1
        assert stats["recursive_sccs"] == 0

    def test_sorted_edges_and_summary(self):
        edges = sorted_edges(self.cg)
        assert [e.callee.signature for e in edges] == [
            "<Main: int twice(int)>",
            "<Square: int sides()>",
            "<Triangle: int sides()>",
        ]
        assert "Reachable methods:    4" in callgraph_summary(self.cg)

    def test_dot(self):
        dot = self.cg.to_dot()
        assert dot.startswith("digraph CallGraph {")
        assert '"<Main: int main()>" -> "<Main: int twice(int)>"' in dot


class TestRecursion:

    def test_mutual_recursion_detected(self):
        program = load_program("""
        (program
          (entry Main a)
          (class Main
            (method a () void (static)
              (body (invoke static Main "void b()" ()) (return)))
            (method b () void (static)
              (body (invoke static Main "void a()" ()) (return)))
            (method c () void (static)
              (body (return)))))
        """)
        cg = build_callgraph(program.hierarchy, program.entry_methods)
        a = program.get_method("Main.a")
        c = program.get_method("Main.c")
        assert cg.is_recursive(a)
        assert c not in cg
        sccs = cg.strongly_connected_components()
        assert len(sccs) == 1 and len(sccs[0]) == 2

    def test_long_call_chain_beyond_recursion_limit(self):
        depth = sys.getrecursionlimit() + 500
        methods = "\n".join(
            f'(method m{i} () void (static) '
            f'(body (invoke static Main "void m{i + 1}()" ()) (return)))'
            for i in range(depth)
        )
        program = load_program(f"""
        (program
          (entry Main m0)
          (class Main
            {methods}
            (method m{depth} () void (static) (body (return)))))
        """)
        cg = build_callgraph(program.hierarchy, program.entry_methods)
        sccs = cg.strongly_connected_components()
        assert len(sccs) == depth + 1
        assert all(len(scc) == 1 for scc in sccs)
        # callees before callers
        assert sccs[0] == [program.get_method(f"Main.m{depth}")]
        assert sccs[-1] == [program.get_method("Main.m0")]
        assert cg.statistics()["recursive_sccs"] == 0

    def test_self_recursion_is_a_single_scc(self):
        program = load_program("""
        (program
          (entry Main a)
          (class Main
            (method a () void (static)
              (body (invoke static Main "void a()" ()) (return)))))
        """)
        cg = build_callgraph(program.hierarchy, program.entry_methods)
        assert cg.strongly_connected_components() == [[program.get_method("Main.a")]]
        assert cg.is_recursive(program.get_method("Main.a"))

    def test_empty_graph(self):
        cg = CallGraph()
        assert cg.statistics()["reachable_methods"] == 0
        assert cg.strongly_connected_components() == []


class TestClassHierarchyFromLoader:

    def test_loaded_hierarchy(self):
        program = load_program(CALLS_PROGRAM)
        h: ClassHierarchy = program.hierarchy
        shape = h.get_class("Shape")
        assert shape.is_abstract
        assert sorted(c.name for c in h.get_direct_subclasses_of(shape)) == [
            "Square", "Triangle",
        ]
