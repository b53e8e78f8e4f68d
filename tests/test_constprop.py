# tests/test_constprop.py
"""
Tests for intraprocedural constant propagation and Java int folding.
"""

import pytest

from latticeflow.constprop import (
    ConstantPropagation,
    can_hold_int,
    evaluate,
    fold_binary,
    to_int32,
)
from latticeflow.ctrlflow_graph import build_cfg
from latticeflow.facts import CPFact, Value
from latticeflow.ir import (
    ArithmeticExp,
    ArithmeticOp,
    AssignStmt,
    BitwiseOp,
    ConditionOp,
    IntLiteral,
    InvokeExp,
    InvokeKind,
    NewExp,
    ClassType,
    PrimitiveType,
    ShiftOp,
    Var,
    make_binary,
)
from latticeflow.hierarchy import MethodRef, Subsignature
from latticeflow.loader import load_program
from tests.conftest import (
    CONST_BRANCH_PROGRAM,
    MERGE_PROGRAM,
    STRAIGHT_LINE_PROGRAM,
    MethodBuilder,
    find_var,
)

NAC = Value.get_nac()
UNDEF = Value.get_undef()
INT_MIN = -(2 ** 31)
INT_MAX = 2 ** 31 - 1


def c(n):
    return Value.make_constant(n)


def _solve(text):
    ir = load_program(text).get_method("Main.main").get_ir()
    return ir, ConstantPropagation().analyze(build_cfg(ir))


# ── Concrete folding ─────────────────────────────────────────────

class TestFoldBinary:

    def test_wraps_to_int32(self):
        assert to_int32(INT_MAX + 1) == INT_MIN
        assert to_int32(-1) == -1
        assert fold_binary(ArithmeticOp.ADD, INT_MAX, 1) == INT_MIN
        assert fold_binary(ArithmeticOp.MUL, 65536, 65536) == 0
        assert fold_binary(ArithmeticOp.SUB, INT_MIN, 1) == INT_MAX

    def test_division_truncates_toward_zero(self):
        assert fold_binary(ArithmeticOp.DIV, 7, 2) == 3
        assert fold_binary(ArithmeticOp.DIV, -7, 2) == -3
        assert fold_binary(ArithmeticOp.DIV, 7, -2) == -3
        assert fold_binary(ArithmeticOp.DIV, INT_MIN, -1) == INT_MIN

    def test_remainder_takes_sign_of_dividend(self):
        assert fold_binary(ArithmeticOp.REM, 7, 3) == 1
        assert fold_binary(ArithmeticOp.REM, -7, 3) == -1
        assert fold_binary(ArithmeticOp.REM, 7, -3) == 1

    def test_division_by_zero_raises(self):
        with pytest.raises(ZeroDivisionError):
            fold_binary(ArithmeticOp.DIV, 1, 0)
        with pytest.raises(ZeroDivisionError):
            fold_binary(ArithmeticOp.REM, 1, 0)

    def test_shifts_mask_distance(self):
        assert fold_binary(ShiftOp.SHL, 1, 33) == 2
        assert fold_binary(ShiftOp.SHL, 1, 31) == INT_MIN
        assert fold_binary(ShiftOp.SHR, -8, 1) == -4
        assert fold_binary(ShiftOp.USHR, -1, 28) == 15
        assert fold_binary(ShiftOp.USHR, -8, 0) == -8

    def test_bitwise(self):
        assert fold_binary(BitwiseOp.AND, 12, 10) == 8
        assert fold_binary(BitwiseOp.OR, 12, 10) == 14
        assert fold_binary(BitwiseOp.XOR, 12, 10) == 6
        assert fold_binary(BitwiseOp.XOR, -1, 0) == -1

    @pytest.mark.parametrize("op,a,b,expected", [
        (ConditionOp.EQ, 1, 1, 1),
        (ConditionOp.NE, 1, 1, 0),
        (ConditionOp.LT, -1, 0, 1),
        (ConditionOp.LE, 2, 1, 0),
        (ConditionOp.GT, 2, 1, 1),
        (ConditionOp.GE, 1, 2, 0),
    ])
    def test_comparisons_yield_zero_or_one(self, op, a, b, expected):
        assert fold_binary(op, a, b) == expected


# ── Abstract evaluation ──────────────────────────────────────────

class TestEvaluate:

    def setup_method(self):
        self.x = Var("x", PrimitiveType.INT)
        self.y = Var("y", PrimitiveType.INT)

    def test_literal_and_var(self):
        fact = CPFact({self.x: c(4)})
        assert evaluate(IntLiteral(9), fact) == c(9)
        assert evaluate(self.x, fact) == c(4)
        assert evaluate(self.y, fact) == UNDEF

    def test_two_constants_fold(self):
        fact = CPFact({self.x: c(4), self.y: c(5)})
        assert evaluate(make_binary("*", self.x, self.y), fact) == c(20)

    def test_nac_operand_gives_nac(self):
        fact = CPFact({self.x: NAC, self.y: c(5)})
        assert evaluate(make_binary("+", self.x, self.y), fact) == NAC
        assert evaluate(make_binary("+", self.y, self.x), fact) == NAC

    def test_nac_and_undef_gives_nac(self):
        fact = CPFact({self.x: NAC})
        assert evaluate(make_binary("+", self.x, self.y), fact) == NAC

    def test_two_nac_operands_give_undef(self):
        fact = CPFact({self.x: NAC, self.y: NAC})
        assert evaluate(make_binary("+", self.x, self.y), fact) == UNDEF
        assert evaluate(make_binary("<", self.x, self.y), fact) == UNDEF

    def test_undef_operand_gives_undef(self):
        fact = CPFact({self.x: c(1)})
        assert evaluate(make_binary("-", self.x, self.y), fact) == UNDEF

    @pytest.mark.parametrize("symbol", ["/", "%"])
    def test_division_by_constant_zero_is_undef(self, symbol):
        fact = CPFact({self.x: NAC, self.y: c(0)})
        assert evaluate(make_binary(symbol, self.x, self.y), fact) == UNDEF
        assert evaluate(make_binary(symbol, IntLiteral(3), IntLiteral(0)), fact) == UNDEF

    def test_division_by_nac_is_nac(self):
        fact = CPFact({self.x: c(8), self.y: NAC})
        assert evaluate(make_binary("/", self.x, self.y), fact) == NAC

    def test_other_expressions_are_nac(self):
        ref = MethodRef("Main", Subsignature.parse("int f()"))
        assert evaluate(NewExp(ClassType("Foo")), CPFact()) == NAC
        assert evaluate(InvokeExp(InvokeKind.STATIC, ref), CPFact()) == NAC


# ── The analysis ─────────────────────────────────────────────────

class TestConstantPropagation:

    def test_straight_line(self):
        ir, result = _solve(STRAIGHT_LINE_PROGRAM)
        out = result.out_fact_of(ir.stmts[2])
        assert out.get(find_var(ir, "z")) == c(3)
        assert str(out) == "{x=1, y=2, z=3}"

    def test_merge_of_distinct_constants_is_nac(self):
        ir, result = _solve(MERGE_PROGRAM)
        ret = ir.stmts[4]
        x = find_var(ir, "x")
        assert result.in_fact_of(ret).get(x) == NAC
        assert result.out_fact_of(ir.stmts[1]).get(x) == c(1)

    def test_merge_of_equal_constants_stays_constant(self):
        ir, result = _solve(MERGE_PROGRAM.replace("(assign x 2)", "(assign x 1)"))
        assert result.in_fact_of(ir.stmts[4]).get(find_var(ir, "x")) == c(1)

    def test_params_start_as_nac(self):
        ir, result = _solve(MERGE_PROGRAM)
        assert result.in_fact_of(ir.stmts[0]).get(ir.params[0]) == NAC

    def test_branch_not_pruned_by_constprop(self):
        ir, result = _solve(CONST_BRANCH_PROGRAM)
        # both arms flow into the join
        assert result.in_fact_of(ir.stmts[5]).get(find_var(ir, "y")) == NAC

    def test_rhs_evaluated_before_kill(self):
        b = MethodBuilder()
        x = b.var("x")
        b.add(AssignStmt(x, IntLiteral(1)))
        b.add(AssignStmt(x, ArithmeticExp(ArithmeticOp.ADD, x, IntLiteral(1))))
        ir = b.build()
        result = ConstantPropagation().analyze(build_cfg(ir))
        assert result.out_fact_of(ir.stmts[1]).get(x) == c(2)

    def test_non_int_variables_untracked(self):
        b = MethodBuilder()
        f = b.var("f", PrimitiveType.LONG)
        o = b.var("o", ClassType("Foo"))
        b.add(AssignStmt(f, IntLiteral(1)))
        b.add(AssignStmt(o, NewExp(ClassType("Foo"))))
        ir = b.build()
        result = ConstantPropagation().analyze(build_cfg(ir))
        assert len(result.out_fact_of(ir.stmts[1])) == 0
        assert not can_hold_int(f) and not can_hold_int(o)

    def test_small_int_types_tracked(self):
        for t in (PrimitiveType.BYTE, PrimitiveType.SHORT, PrimitiveType.CHAR,
                  PrimitiveType.BOOLEAN, PrimitiveType.INT):
            assert can_hold_int(Var("v", t))
        assert not can_hold_int(Var("v", PrimitiveType.DOUBLE))

    def test_int_literal_wraps(self):
        b = MethodBuilder()
        x = b.var("x")
        b.add(AssignStmt(x, IntLiteral(2 ** 32 + 5)))
        ir = b.build()
        result = ConstantPropagation().analyze(build_cfg(ir))
        assert result.out_fact_of(ir.stmts[0]).get(x) == c(5)

    def test_call_result_is_nac(self):
        ir, result = _solve("""
        (program
          (entry Main main)
          (class Main
            (method main () void (static)
              (vars (int r))
              (body (assign r (invoke static Main "int f()" ())) (return)))
            (method f () int (static)
              (vars (int k))
              (body (assign k 1) (return k)))))
        """)
        assert result.out_fact_of(ir.stmts[0]).get(find_var(ir, "r")) == NAC
