"""
latticeflow.ir
==============

A small three-address intermediate representation for Java-like methods.

The IR is a *closed* set of tagged variants: every expression class carries
an :class:`ExpKind` tag and every statement class a :class:`StmtKind` tag.
Analyses dispatch on the tag and always finish with a conservative default
branch, so adding a variant never silently changes an analysis result.

Public API
----------
    PrimitiveType, ClassType, ArrayType, parse_type
                        - static types
    Exp                 - base of all expressions
    Var                 - local variable (also usable as an expression)
    IntLiteral, StringLiteral, NullLiteral
    ArithmeticExp, ConditionExp, ShiftExp, BitwiseExp  (all BinaryExp)
    NegExp, NewExp, CastExp
    InstanceFieldAccess, StaticFieldAccess, ArrayAccess
    InvokeExp, InvokeKind
    Stmt                - base of all statements
    Nop, AssignStmt, If, Goto, Switch, Invoke, Return
    IR                  - body of one method plus its per-method result store

Statements are compared by identity and ordered by :attr:`Stmt.index`, the
statement's position in the method body.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    ClassVar,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)

if TYPE_CHECKING:
    from latticeflow.hierarchy import JMethod, MethodRef


# ===========================================================================
# TYPES
# ===========================================================================

class PrimitiveType(enum.Enum):
    """Java primitive types."""
    BYTE = "byte"
    SHORT = "short"
    INT = "int"
    CHAR = "char"
    BOOLEAN = "boolean"
    LONG = "long"
    FLOAT = "float"
    DOUBLE = "double"
    VOID = "void"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ClassType:
    """Reference type naming a class or interface."""
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class ArrayType:
    element_type: "Type"

    def __str__(self) -> str:
        return f"{self.element_type}[]"


Type = Union[PrimitiveType, ClassType, ArrayType]

_PRIMITIVES: Dict[str, PrimitiveType] = {p.value: p for p in PrimitiveType}


def parse_type(name: str) -> Type:
    """Parse a Java-style type name (``int``, ``Foo``, ``int[]``)."""
    name = name.strip()
    if name.endswith("[]"):
        return ArrayType(parse_type(name[:-2]))
    prim = _PRIMITIVES.get(name)
    if prim is not None:
        return prim
    return ClassType(name)


# ===========================================================================
# EXPRESSIONS
# ===========================================================================

class ExpKind(enum.Enum):
    """Tag of every expression variant."""
    VAR = "var"
    INT_LITERAL = "int-literal"
    STRING_LITERAL = "string-literal"
    NULL_LITERAL = "null-literal"
    ARITHMETIC = "arithmetic"
    CONDITION = "condition"
    SHIFT = "shift"
    BITWISE = "bitwise"
    NEG = "neg"
    NEW = "new"
    CAST = "cast"
    INSTANCE_FIELD = "instance-field"
    STATIC_FIELD = "static-field"
    ARRAY_ACCESS = "array-access"
    INVOKE = "invoke"


class Exp:
    """Base class of all expressions."""

    __slots__ = ()
    kind: ClassVar[ExpKind]

    def get_uses(self) -> List["Exp"]:
        """Sub-expressions read when this expression is evaluated."""
        return []


class Var(Exp):
    """A local variable (parameter, ``this`` or temporary) of one method.

    Variables are compared by identity: two ``Var`` objects with the same
    name in different methods are different variables.
    """

    __slots__ = ("name", "type")
    kind = ExpKind.VAR

    def __init__(self, name: str, type: Type) -> None:
        self.name = name
        self.type = type

    def __repr__(self) -> str:
        return f"Var({self.name}: {self.type})"

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class IntLiteral(Exp):
    value: int
    kind: ClassVar[ExpKind] = ExpKind.INT_LITERAL

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class StringLiteral(Exp):
    value: str
    kind: ClassVar[ExpKind] = ExpKind.STRING_LITERAL

    def __str__(self) -> str:
        return f'"{self.value}"'


@dataclass(frozen=True)
class NullLiteral(Exp):
    kind: ClassVar[ExpKind] = ExpKind.NULL_LITERAL

    def __str__(self) -> str:
        return "null"


# ---------- binary expressions ---------------------------------------------

class ArithmeticOp(enum.Enum):
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    REM = "%"


class ConditionOp(enum.Enum):
    EQ = "=="
    NE = "!="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="


class ShiftOp(enum.Enum):
    SHL = "<<"
    SHR = ">>"
    USHR = ">>>"


class BitwiseOp(enum.Enum):
    OR = "|"
    AND = "&"
    XOR = "^"


BinaryOp = Union[ArithmeticOp, ConditionOp, ShiftOp, BitwiseOp]


@dataclass(frozen=True)
class BinaryExp(Exp):
    """``operand1 op operand2``.  Operands are variables or int literals."""
    op: BinaryOp
    operand1: Exp
    operand2: Exp

    def get_uses(self) -> List[Exp]:
        return [self.operand1, self.operand2]

    def __str__(self) -> str:
        return f"{self.operand1} {self.op.value} {self.operand2}"


@dataclass(frozen=True)
class ArithmeticExp(BinaryExp):
    op: ArithmeticOp
    kind: ClassVar[ExpKind] = ExpKind.ARITHMETIC


@dataclass(frozen=True)
class ConditionExp(BinaryExp):
    op: ConditionOp
    kind: ClassVar[ExpKind] = ExpKind.CONDITION


@dataclass(frozen=True)
class ShiftExp(BinaryExp):
    op: ShiftOp
    kind: ClassVar[ExpKind] = ExpKind.SHIFT


@dataclass(frozen=True)
class BitwiseExp(BinaryExp):
    op: BitwiseOp
    kind: ClassVar[ExpKind] = ExpKind.BITWISE


_BINARY_CLASSES: Dict[str, Tuple[type, Any]] = {}
for _cls, _ops in (
    (ArithmeticExp, ArithmeticOp),
    (ConditionExp, ConditionOp),
    (ShiftExp, ShiftOp),
    (BitwiseExp, BitwiseOp),
):
    for _op in _ops:
        _BINARY_CLASSES[_op.value] = (_cls, _op)
del _cls, _ops, _op


def make_binary(symbol: str, operand1: Exp, operand2: Exp) -> BinaryExp:
    """Build the binary expression whose operator is spelled *symbol*.

    Raises ``KeyError`` for an unknown operator.
    """
    cls, op = _BINARY_CLASSES[symbol]
    return cls(op, operand1, operand2)


# ---------- other expressions ----------------------------------------------

@dataclass(frozen=True)
class NegExp(Exp):
    operand: Exp
    kind: ClassVar[ExpKind] = ExpKind.NEG

    def get_uses(self) -> List[Exp]:
        return [self.operand]

    def __str__(self) -> str:
        return f"-{self.operand}"


@dataclass(frozen=True)
class NewExp(Exp):
    """Allocation ``new T``; modifies the heap."""
    type: Type
    kind: ClassVar[ExpKind] = ExpKind.NEW

    def __str__(self) -> str:
        return f"new {self.type}"


@dataclass(frozen=True)
class CastExp(Exp):
    """``(T) value``; may fail at run time."""
    cast_type: Type
    value: Exp
    kind: ClassVar[ExpKind] = ExpKind.CAST

    def get_uses(self) -> List[Exp]:
        return [self.value]

    def __str__(self) -> str:
        return f"({self.cast_type}) {self.value}"


@dataclass(frozen=True)
class InstanceFieldAccess(Exp):
    base: Var
    field_name: str
    kind: ClassVar[ExpKind] = ExpKind.INSTANCE_FIELD

    def get_uses(self) -> List[Exp]:
        return [self.base]

    def __str__(self) -> str:
        return f"{self.base}.{self.field_name}"


@dataclass(frozen=True)
class StaticFieldAccess(Exp):
    class_name: str
    field_name: str
    kind: ClassVar[ExpKind] = ExpKind.STATIC_FIELD

    def __str__(self) -> str:
        return f"{self.class_name}.{self.field_name}"


@dataclass(frozen=True)
class ArrayAccess(Exp):
    base: Var
    index: Exp
    kind: ClassVar[ExpKind] = ExpKind.ARRAY_ACCESS

    def get_uses(self) -> List[Exp]:
        return [self.base, self.index]

    def __str__(self) -> str:
        return f"{self.base}[{self.index}]"


class InvokeKind(enum.Enum):
    """Bytecode-level invocation kind of a call site."""
    STATIC = "static"
    SPECIAL = "special"
    VIRTUAL = "virtual"
    INTERFACE = "interface"
    DYNAMIC = "dynamic"


@dataclass(frozen=True)
class InvokeExp(Exp):
    invoke_kind: InvokeKind
    method_ref: "MethodRef"
    args: Tuple[Var, ...] = ()
    base: Optional[Var] = None
    kind: ClassVar[ExpKind] = ExpKind.INVOKE

    def get_uses(self) -> List[Exp]:
        uses: List[Exp] = []
        if self.base is not None:
            uses.append(self.base)
        uses.extend(self.args)
        return uses

    def __str__(self) -> str:
        args = ", ".join(str(a) for a in self.args)
        recv = f"{self.base}." if self.base is not None else ""
        return f"invoke{self.invoke_kind.value} {recv}{self.method_ref}({args})"


LValue = Union[Var, InstanceFieldAccess, StaticFieldAccess, ArrayAccess]


# ===========================================================================
# STATEMENTS
# ===========================================================================

class StmtKind(enum.Enum):
    """Tag of every statement variant."""
    NOP = "nop"
    ASSIGN = "assign"
    IF = "if"
    GOTO = "goto"
    SWITCH = "switch"
    INVOKE = "invoke"
    RETURN = "return"


class Stmt:
    """Base class of all statements.

    Attributes
    ----------
    index : int
        Position in the method body; assigned by :class:`IR`.  Synthetic
        CFG entry / exit nodes use ``-1`` and ``len(stmts)``.
    line : int
        Source line, ``-1`` when unknown.
    """

    __slots__ = ("index", "line")
    kind: ClassVar[StmtKind]

    def __init__(self, line: int = -1) -> None:
        self.index: int = -1
        self.line: int = line

    def get_def(self) -> Optional[Var]:
        """The variable defined by this statement, if any."""
        return None

    def get_uses(self) -> List[Exp]:
        """Expressions read by this statement (nested ones first)."""
        return []

    def can_fall_through(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"{type(self).__name__}[{self.index}@L{self.line}: {self}]"


class Nop(Stmt):
    __slots__ = ("tag",)
    kind = StmtKind.NOP

    def __init__(self, tag: str = "", line: int = -1) -> None:
        super().__init__(line)
        self.tag = tag

    def __str__(self) -> str:
        return f"[{self.tag}]" if self.tag else "nop"


class AssignStmt(Stmt):
    """``lvalue = rvalue``.  Only a :class:`Var` lvalue is a definition."""

    __slots__ = ("lvalue", "rvalue")
    kind = StmtKind.ASSIGN

    def __init__(self, lvalue: LValue, rvalue: Exp, line: int = -1) -> None:
        super().__init__(line)
        self.lvalue = lvalue
        self.rvalue = rvalue

    def get_def(self) -> Optional[Var]:
        return self.lvalue if isinstance(self.lvalue, Var) else None

    def get_uses(self) -> List[Exp]:
        uses: List[Exp] = []
        if not isinstance(self.lvalue, Var):
            uses.extend(self.lvalue.get_uses())
        uses.extend(self.rvalue.get_uses())
        uses.append(self.rvalue)
        return uses

    def __str__(self) -> str:
        return f"{self.lvalue} = {self.rvalue}"


class If(Stmt):
    """``if (condition) goto target``; falls through when false."""

    __slots__ = ("condition", "target")
    kind = StmtKind.IF

    def __init__(
        self,
        condition: ConditionExp,
        target: Optional[Stmt] = None,
        line: int = -1,
    ) -> None:
        super().__init__(line)
        self.condition = condition
        self.target = target

    def get_uses(self) -> List[Exp]:
        return self.condition.get_uses() + [self.condition]

    def __str__(self) -> str:
        tgt = self.target.index if self.target is not None else "?"
        return f"if ({self.condition}) goto {tgt}"


class Goto(Stmt):
    __slots__ = ("target",)
    kind = StmtKind.GOTO

    def __init__(self, target: Optional[Stmt] = None, line: int = -1) -> None:
        super().__init__(line)
        self.target = target

    def can_fall_through(self) -> bool:
        return False

    def __str__(self) -> str:
        tgt = self.target.index if self.target is not None else "?"
        return f"goto {tgt}"


class Switch(Stmt):
    """Multi-way branch on an int variable.

    ``case_values[i]`` jumps to ``case_targets[i]``; anything else jumps to
    ``default_target``.
    """

    __slots__ = ("var", "case_values", "case_targets", "default_target")
    kind = StmtKind.SWITCH

    def __init__(
        self,
        var: Var,
        case_values: Sequence[int] = (),
        case_targets: Sequence[Optional[Stmt]] = (),
        default_target: Optional[Stmt] = None,
        line: int = -1,
    ) -> None:
        super().__init__(line)
        self.var = var
        self.case_values: List[int] = list(case_values)
        self.case_targets: List[Optional[Stmt]] = list(case_targets)
        self.default_target = default_target

    def get_case_targets(self) -> List[Tuple[int, Optional[Stmt]]]:
        return list(zip(self.case_values, self.case_targets))

    def get_uses(self) -> List[Exp]:
        return [self.var]

    def can_fall_through(self) -> bool:
        return False

    def __str__(self) -> str:
        cases = ", ".join(
            f"{v}->{t.index if t is not None else '?'}"
            for v, t in self.get_case_targets()
        )
        dflt = self.default_target.index if self.default_target is not None else "?"
        return f"switch ({self.var}) {{{cases}, default->{dflt}}}"


class Invoke(Stmt):
    """Call site ``[result =] invoke_exp``."""

    __slots__ = ("result", "invoke_exp")
    kind = StmtKind.INVOKE

    def __init__(
        self,
        invoke_exp: InvokeExp,
        result: Optional[Var] = None,
        line: int = -1,
    ) -> None:
        super().__init__(line)
        self.invoke_exp = invoke_exp
        self.result = result

    @property
    def method_ref(self) -> "MethodRef":
        return self.invoke_exp.method_ref

    def get_def(self) -> Optional[Var]:
        return self.result

    def get_uses(self) -> List[Exp]:
        return self.invoke_exp.get_uses() + [self.invoke_exp]

    def __str__(self) -> str:
        if self.result is not None:
            return f"{self.result} = {self.invoke_exp}"
        return str(self.invoke_exp)


class Return(Stmt):
    __slots__ = ("value",)
    kind = StmtKind.RETURN

    def __init__(self, value: Optional[Var] = None, line: int = -1) -> None:
        super().__init__(line)
        self.value = value

    def get_uses(self) -> List[Exp]:
        return [self.value] if self.value is not None else []

    def can_fall_through(self) -> bool:
        return False

    def __str__(self) -> str:
        return f"return {self.value}" if self.value is not None else "return"


# ===========================================================================
# METHOD BODY
# ===========================================================================

class IR:
    """Body of one method: parameters, variables, statements and results.

    The result store maps analysis ids (``"cfg"``, ``"constprop"`` …) to the
    results computed for this method; it is how dependent analyses find
    their inputs.

    Parameters
    ----------
    method : JMethod
        The method this body belongs to.
    params : sequence of Var
        Formal parameters, in declaration order (``this`` excluded).
    stmts : sequence of Stmt
        The body.  Each statement's ``index`` is set to its position.
    this : Var, optional
        The receiver variable of an instance method.
    variables : sequence of Var, optional
        All variables; defaults to params, ``this`` and every variable that
        appears in the body.
    """

    def __init__(
        self,
        method: "JMethod",
        params: Sequence[Var],
        stmts: Sequence[Stmt],
        this: Optional[Var] = None,
        variables: Optional[Sequence[Var]] = None,
    ) -> None:
        self.method = method
        self.params: List[Var] = list(params)
        self.this = this
        self.stmts: List[Stmt] = list(stmts)
        for i, stmt in enumerate(self.stmts):
            stmt.index = i
        self.vars: List[Var] = (
            list(variables) if variables is not None else self._collect_vars()
        )
        self._results: Dict[str, Any] = {}

    def _collect_vars(self) -> List[Var]:
        seen: Dict[int, Var] = {}
        candidates: List[Exp] = list(self.params)
        if self.this is not None:
            candidates.append(self.this)
        for stmt in self.stmts:
            d = stmt.get_def()
            if d is not None:
                candidates.append(d)
            candidates.extend(stmt.get_uses())
        for e in candidates:
            if isinstance(e, Var) and id(e) not in seen:
                seen[id(e)] = e
        return list(seen.values())

    @property
    def return_vars(self) -> List[Var]:
        """Variables returned by some ``return`` statement, deduplicated."""
        result: List[Var] = []
        for stmt in self.stmts:
            if isinstance(stmt, Return) and stmt.value is not None:
                if not any(v is stmt.value for v in result):
                    result.append(stmt.value)
        return result

    def get_stmt(self, index: int) -> Stmt:
        return self.stmts[index]

    def __iter__(self) -> Iterator[Stmt]:
        return iter(self.stmts)

    def __len__(self) -> int:
        return len(self.stmts)

    # ----- result store -----------------------------------------------------

    def store_result(self, analysis_id: str, result: Any) -> None:
        self._results[analysis_id] = result

    def get_result(self, analysis_id: str) -> Any:
        """Return the stored result for *analysis_id*.

        Raises ``KeyError`` if that analysis has not been run on this method.
        """
        return self._results[analysis_id]

    def has_result(self, analysis_id: str) -> bool:
        return analysis_id in self._results

    def clear_results(self) -> None:
        self._results.clear()

    def __repr__(self) -> str:
        return f"IR({self.method}, stmts={len(self.stmts)})"
