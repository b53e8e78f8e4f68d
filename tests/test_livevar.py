# tests/test_livevar.py
"""
Tests for live-variable analysis and the backward driver.
"""

from latticeflow.ctrlflow_graph import build_cfg
from latticeflow.facts import SetFact
from latticeflow.ir import AssignStmt, IntLiteral, Return, make_binary
from latticeflow.livevar import LiveVariableAnalysis, solve_backward
from latticeflow.loader import load_program
from tests.conftest import LOOP_PROGRAM, MERGE_PROGRAM, MethodBuilder, find_var


def _names(fact):
    return sorted(v.name for v in fact)


class TestLiveVariables:

    def test_straight_line(self):
        b = MethodBuilder()
        x, y, z = b.var("x"), b.var("y"), b.var("z")
        b.add(AssignStmt(x, IntLiteral(1)))
        b.add(AssignStmt(y, make_binary("+", x, IntLiteral(2))))
        b.add(AssignStmt(z, IntLiteral(3)))
        b.add(Return(y))
        ir = b.build()
        result = LiveVariableAnalysis().analyze(build_cfg(ir))
        assert _names(result.out_fact_of(ir.stmts[0])) == ["x"]
        assert _names(result.out_fact_of(ir.stmts[1])) == ["y"]
        assert _names(result.out_fact_of(ir.stmts[2])) == ["y"]
        assert _names(result.in_fact_of(ir.stmts[0])) == []

    def test_exit_has_boundary_fact(self):
        ir = load_program(MERGE_PROGRAM).get_method("Main.main").get_ir()
        cfg = build_cfg(ir)
        result = LiveVariableAnalysis().analyze(cfg)
        assert result.out_fact_of(cfg.exit) == SetFact()
        assert result.in_fact_of(cfg.exit) == SetFact()

    def test_param_live_at_entry(self):
        ir = load_program(MERGE_PROGRAM).get_method("Main.main").get_ir()
        result = LiveVariableAnalysis().analyze(build_cfg(ir))
        assert _names(result.in_fact_of(ir.stmts[0])) == ["p"]
        # x is redefined on both arms before it is read
        assert "x" not in _names(result.out_fact_of(ir.stmts[0]))

    def test_loop_keeps_counter_live(self):
        ir = load_program(LOOP_PROGRAM).get_method("Main.main").get_ir()
        result = LiveVariableAnalysis().analyze(build_cfg(ir))
        i = find_var(ir, "i")
        for stmt in ir.stmts[:4]:
            assert i in result.out_fact_of(stmt)

    def test_self_assignment_keeps_variable_live(self):
        b = MethodBuilder()
        x = b.var("x")
        b.add(AssignStmt(x, make_binary("+", x, IntLiteral(1))))
        b.add(Return(x))
        ir = b.build()
        result = LiveVariableAnalysis().analyze(build_cfg(ir))
        assert x in result.in_fact_of(ir.stmts[0])

    def test_solve_backward_matches_analyze(self):
        ir = load_program(LOOP_PROGRAM).get_method("Main.main").get_ir()
        cfg = build_cfg(ir)
        a = LiveVariableAnalysis().analyze(cfg)
        b = solve_backward(LiveVariableAnalysis(), cfg)
        for node in cfg:
            assert a.in_fact_of(node) == b.in_fact_of(node)
            assert a.out_fact_of(node) == b.out_fact_of(node)

    def test_transfer_does_not_mutate(self):
        b = MethodBuilder()
        x, y = b.var("x"), b.var("y")
        stmt = b.add(AssignStmt(x, y))
        b.build()
        out = SetFact([x])
        live_in = LiveVariableAnalysis().transfer_node(stmt, SetFact(), out)
        assert out == SetFact([x])
        assert live_in == SetFact([y])
