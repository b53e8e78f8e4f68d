# tests/conftest.py
"""
Shared fixtures and builders for the latticeflow test suite.

Programs are either written as S-expression text (the ``*_PROGRAM``
constants below, parsed with :func:`latticeflow.loader.load_program`) or
assembled directly from IR objects with :class:`MethodBuilder`.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

import pytest

from latticeflow.hierarchy import ClassHierarchy, JClass, JMethod
from latticeflow.ir import IR, PrimitiveType, Stmt, Type, Var

INT = PrimitiveType.INT
VOID = PrimitiveType.VOID


class MethodBuilder:
    """Assemble a static method body by hand; variables default to ``int``."""

    def __init__(
        self,
        class_name: str = "Main",
        method_name: str = "main",
        params: Sequence[Type] = (),
        return_type: Type = VOID,
        is_static: bool = True,
    ) -> None:
        self.jclass = JClass(class_name)
        self.method: JMethod = self.jclass.declare_method(
            method_name, list(params), return_type, is_static=is_static,
        )
        self.params: List[Var] = [Var(f"p{i}", t) for i, t in enumerate(params)]
        self.vars: Dict[str, Var] = {p.name: p for p in self.params}
        self.stmts: List[Stmt] = []

    def var(self, name: str, vtype: Type = INT) -> Var:
        if name not in self.vars:
            self.vars[name] = Var(name, vtype)
        return self.vars[name]

    def add(self, stmt: Stmt) -> Stmt:
        self.stmts.append(stmt)
        return stmt

    def build(self) -> IR:
        ir = IR(self.method, self.params, self.stmts)
        self.method.ir = ir
        return ir


@pytest.fixture
def builder() -> MethodBuilder:
    return MethodBuilder()


@pytest.fixture
def hierarchy() -> ClassHierarchy:
    return ClassHierarchy()


def stmt_at(ir: IR, index: int) -> Stmt:
    return ir.stmts[index]


def indices(stmts: Sequence[Stmt]) -> List[int]:
    return [s.index for s in stmts]


def find_var(ir: IR, name: str) -> Optional[Var]:
    for v in ir.vars:
        if v.name == name:
            return v
    return None


# ═══════════════════════════════════════════════════════════════════
#  Program text
# ═══════════════════════════════════════════════════════════════════

STRAIGHT_LINE_PROGRAM = """
(program
  (entry Main main)
  (class Main
    (method main () void (static)
      (vars (int x) (int y) (int z))
      (body
        (assign x 1)
        (assign y 2)
        (assign z (+ x y))
        (return)))))
"""

# 0: x = 1
# 1: if (x > 0) goto 4
# 2: y = 10
# 3: goto 5
# 4: y = 20
# 5: return y
CONST_BRANCH_PROGRAM = """
(program
  (entry Main main)
  (class Main
    (method main () int (static)
      (vars (int x) (int y))
      (body
        (assign x 1)
        (if (> x 0) then)
        (assign y 10)
        (goto done)
        (label then)
        (assign y 20)
        (label done)
        (return y)))))
"""

# p is a parameter (NAC)
# 0: if (p > 0) goto 3
# 1: x = 1
# 2: goto 4
# 3: x = 2
# 4: return x
MERGE_PROGRAM = """
(program
  (entry Main main)
  (class Main
    (method main ((int p)) int (static)
      (vars (int x))
      (body
        (if (> p 0) other)
        (assign x 1)
        (goto done)
        (label other)
        (assign x 2)
        (label done)
        (return x)))))
"""

# 0: i = 0
# 1: if (i >= 10) goto 4
# 2: i = i + 1
# 3: goto 1
# 4: return i
LOOP_PROGRAM = """
(program
  (entry Main main)
  (class Main
    (method main () int (static)
      (vars (int i))
      (body
        (assign i 0)
        (label head)
        (if (>= i 10) done)
        (assign i (+ i 1))
        (goto head)
        (label done)
        (return i)))))
"""

# 0: v = 1
# 1: switch (v) {1->2, 2->4, default->6}
# 2: r = 10
# 3: goto 7
# 4: r = 20
# 5: goto 7
# 6: r = 30
# 7: return r
SWITCH_PROGRAM_TEMPLATE = """
(program
  (entry Main main)
  (class Main
    (method main () int (static)
      (vars (int v) (int r))
      (body
        (assign v {value})
        (switch v ((1 one) (2 two)) other)
        (label one)
        (assign r 10)
        (goto done)
        (label two)
        (assign r 20)
        (goto done)
        (label other)
        (assign r 30)
        (label done)
        (return r)))))
"""

# Interprocedural: main calls a static helper with a constant argument and
# a virtual method with two concrete overriders.
CALLS_PROGRAM = """
(program
  (entry Main main)
  (class Main
    (method main () int (static)
      (vars (int a) (int b) (int c) (Shape s))
      (body
        (assign a 6)
        (assign b (invoke static Main "int twice(int)" (a)))
        (assign s (new Square))
        (assign c (invoke virtual Shape "int sides()" s ()))
        (return b)))
    (method twice ((int n)) int (static)
      (vars (int r))
      (body
        (assign r (* n 2))
        (return r))))
  (class Shape (abstract)
    (method sides () int (abstract)))
  (class Square (extends Shape)
    (method sides () int
      (vars (int k))
      (body (assign k 4) (return k))))
  (class Triangle (extends Shape)
    (method sides () int
      (vars (int k))
      (body (assign k 3) (return k)))))
"""
