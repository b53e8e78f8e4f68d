"""
latticeflow.constprop
=====================

Intraprocedural constant propagation over 32-bit ``int`` variables.

Only variables whose type can hold an ``int`` (``byte``, ``short``,
``int``, ``char``, ``boolean``) are tracked; all others are left out of
every fact.  Arithmetic folds with Java ``int`` semantics: results wrap
modulo 2**32, division truncates toward zero, the remainder takes the sign
of the dividend, shift distances are masked to their low five bits and
``>>>`` shifts in zeros.

Public API
----------
    ConstantPropagation     - the analysis (id ``"constprop"``)
    can_hold_int            - whether a variable is tracked
    meet_value              - meet on :class:`~latticeflow.facts.Value`
    evaluate                - abstract value of an expression under a fact
    evaluate_binary         - abstract value of a binary expression
    fold_binary             - concrete Java ``int`` evaluation of an operator
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from latticeflow.config import AnalysisConfig
from latticeflow.dataflow_engine import DataflowAnalysis, DataflowResult, WorkListSolver
from latticeflow.facts import CPFact, Value
from latticeflow.ir import (
    ArithmeticExp,
    ArithmeticOp,
    AssignStmt,
    BinaryExp,
    BinaryOp,
    BitwiseOp,
    ConditionOp,
    Exp,
    ExpKind,
    IntLiteral,
    Invoke,
    PrimitiveType,
    ShiftOp,
    Stmt,
    Var,
)

logger = logging.getLogger(__name__)

_INT_TYPES = frozenset({
    PrimitiveType.BYTE,
    PrimitiveType.SHORT,
    PrimitiveType.INT,
    PrimitiveType.CHAR,
    PrimitiveType.BOOLEAN,
})

_BINARY_KINDS = frozenset({
    ExpKind.ARITHMETIC,
    ExpKind.CONDITION,
    ExpKind.SHIFT,
    ExpKind.BITWISE,
})


def can_hold_int(var: Var) -> bool:
    """``True`` if *var*'s type is one the analysis tracks."""
    return var.type in _INT_TYPES


def meet_value(v1: Value, v2: Value) -> Value:
    """Meet of two lattice values."""
    if v1.is_nac() or v2.is_nac():
        return Value.get_nac()
    if v1.is_undef():
        return v2
    if v2.is_undef():
        return v1
    if v1.get_constant() == v2.get_constant():
        return v1
    return Value.get_nac()


# ---------------------------------------------------------------------------
# Java int arithmetic
# ---------------------------------------------------------------------------

def to_int32(value: int) -> int:
    """Wrap *value* into the signed 32-bit range."""
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _java_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a < 0) == (b < 0) else -q


def fold_binary(op: BinaryOp, a: int, b: int) -> int:
    """Evaluate ``a op b`` on Java ``int`` values.

    Comparisons yield ``1`` or ``0``.  Raises ``ZeroDivisionError`` for
    ``/`` and ``%`` by zero; callers decide what that means abstractly.
    """
    if op is ArithmeticOp.ADD:
        return to_int32(a + b)
    if op is ArithmeticOp.SUB:
        return to_int32(a - b)
    if op is ArithmeticOp.MUL:
        return to_int32(a * b)
    if op is ArithmeticOp.DIV:
        if b == 0:
            raise ZeroDivisionError("integer division by zero")
        return to_int32(_java_div(a, b))
    if op is ArithmeticOp.REM:
        if b == 0:
            raise ZeroDivisionError("integer remainder by zero")
        return to_int32(a - b * _java_div(a, b))
    if op is ConditionOp.EQ:
        return int(a == b)
    if op is ConditionOp.NE:
        return int(a != b)
    if op is ConditionOp.LT:
        return int(a < b)
    if op is ConditionOp.LE:
        return int(a <= b)
    if op is ConditionOp.GT:
        return int(a > b)
    if op is ConditionOp.GE:
        return int(a >= b)
    if op is ShiftOp.SHL:
        return to_int32(a << (b & 0x1F))
    if op is ShiftOp.SHR:
        return a >> (b & 0x1F)
    if op is ShiftOp.USHR:
        return to_int32((a & 0xFFFFFFFF) >> (b & 0x1F))
    if op is BitwiseOp.OR:
        return to_int32(a | b)
    if op is BitwiseOp.AND:
        return to_int32(a & b)
    if op is BitwiseOp.XOR:
        return to_int32(a ^ b)
    raise ValueError(f"unknown operator {op!r}")


# ---------------------------------------------------------------------------
# Abstract evaluation
# ---------------------------------------------------------------------------

def evaluate(exp: Exp, fact: CPFact) -> Value:
    """Abstract value of *exp* in the state described by *fact*.

    Integer literals are constants, variables are looked up, binary
    expressions go through :func:`evaluate_binary`.  Anything else
    (calls, field and array loads, allocations, casts …) is ``NAC``.
    """
    kind = exp.kind
    if kind is ExpKind.INT_LITERAL:
        assert isinstance(exp, IntLiteral)
        return Value.make_constant(to_int32(exp.value))
    if kind is ExpKind.VAR:
        assert isinstance(exp, Var)
        return fact.get(exp)
    if kind in _BINARY_KINDS:
        assert isinstance(exp, BinaryExp)
        return evaluate_binary(exp, fact)
    return Value.get_nac()


def _is_division(exp: BinaryExp) -> bool:
    return isinstance(exp, ArithmeticExp) and exp.op in (ArithmeticOp.DIV, ArithmeticOp.REM)


def evaluate_binary(exp: BinaryExp, fact: CPFact) -> Value:
    """Abstract value of a binary expression.

    ``/`` and ``%`` by the constant zero are ``UNDEF`` whatever the
    dividend.  Otherwise exactly one ``NAC`` operand makes the result
    ``NAC`` and two constants fold.  Every remaining case, two ``NAC``
    operands or an ``UNDEF`` one next to a non-``NAC``, is ``UNDEF``.
    """
    v1 = evaluate(exp.operand1, fact)
    v2 = evaluate(exp.operand2, fact)

    if _is_division(exp) and v2.is_constant() and v2.get_constant() == 0:
        return Value.get_undef()
    if v1.is_nac() != v2.is_nac():
        return Value.get_nac()
    if v1.is_constant() and v2.is_constant():
        return Value.make_constant(fold_binary(exp.op, v1.get_constant(), v2.get_constant()))
    return Value.get_undef()


def _rhs_of(stmt: Stmt) -> Optional[Exp]:
    if isinstance(stmt, AssignStmt):
        return stmt.rvalue
    if isinstance(stmt, Invoke):
        return stmt.invoke_exp
    return None


# ---------------------------------------------------------------------------
# The analysis
# ---------------------------------------------------------------------------

class ConstantPropagation(DataflowAnalysis[CPFact]):
    """Forward must-analysis computing which ``int`` variables are constant."""

    ID = "constprop"

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        super().__init__(config)

    def is_forward(self) -> bool:
        return True

    def new_boundary_fact(self, cfg: Any) -> CPFact:
        fact = CPFact()
        for param in cfg.ir.params:
            if can_hold_int(param):
                fact = fact.update(param, Value.get_nac())
        return fact

    def new_initial_fact(self) -> CPFact:
        return CPFact()

    def meet_into(self, fact: CPFact, target: CPFact) -> CPFact:
        for var, value in fact.items():
            if can_hold_int(var):
                target = target.update(var, meet_value(value, target.get(var)))
        return target

    def transfer_node(self, node: Stmt, in_fact: CPFact, out_fact: CPFact) -> CPFact:
        lhs = node.get_def()
        if lhs is None:
            return in_fact
        result = in_fact.remove(lhs)
        if can_hold_int(lhs):
            rhs = _rhs_of(node)
            value = evaluate(rhs, in_fact) if rhs is not None else Value.get_nac()
            result = result.update(lhs, value)
        return result

    def analyze(self, cfg: Any) -> DataflowResult[CPFact]:
        """Solve this analysis over *cfg* with the worklist solver."""
        return WorkListSolver(self).solve(cfg)
