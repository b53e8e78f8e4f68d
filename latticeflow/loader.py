"""latticeflow/loader.py – S-expression program → IR loader.

Converts the output of ``sexpdata.loads`` (nested Python lists,
:class:`sexpdata.Symbol`, strings and ints) into a
:class:`~latticeflow.analysis.Program`: a populated
:class:`~latticeflow.hierarchy.ClassHierarchy` whose methods carry
:class:`~latticeflow.ir.IR` bodies.

Design principles
-----------------
* **Head-symbol dispatch** – every statement and expression list
  ``(tag ...)`` is dispatched on ``tag`` to a dedicated helper.
* **Fail-fast** – anything unexpected raises
  :class:`~latticeflow.errors.ProgramFormatError` carrying the offending
  form; nothing is silently ignored.

Surface syntax
--------------
::

    (program
      (entry <class> "<subsignature>")      ;; or (entry <class> <name>)
      (class <name>
        (extends <class>)  (implements <iface> ...)
        (interface)  (abstract)
        (method <name> ((<type> <param>) ...) <return-type>
          (static)  (abstract)
          (vars (<type> <var>) ...)
          (body <stmt> ...))))          ;; no (body) form: no code available

    ;; statements
    (assign <lvalue> <exp>)          ;; an (invoke ...) rhs makes a call
    (if (<cmp> <a> <b>) <label>)     ;; cmp: == != < <= > >=
    (goto <label>)
    (switch <var> ((<int> <label>) ...) <default-label>)
    (invoke <kind> <class> "<subsignature>" [<base>] (<arg> ...))
    (return [<var>])
    (nop)
    (label <name>)                   ;; names the next statement

    ;; expressions
    <int> | "<string>" | null | <var>
    (<op> <a> <b>)        ;; + - * / % << >> >>> | & ^ (also shl shr
                          ;; ushr or and xor), and the comparisons
    (neg <a>)  (new <type>)  (cast <type> <var>)
    (field <var> <name>)  (static-field <class> <name>)
    (array <var> <index>)

    ;; types
    int | boolean | ... | <class> | (array-type <type>)

Public API
----------
``load_program(text: str) -> Program``
``load_program_file(path) -> Program``
"""

from __future__ import annotations

import logging
import pathlib
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import sexpdata
from sexpdata import Symbol

from latticeflow.analysis import Program
from latticeflow.errors import ProgramFormatError
from latticeflow.hierarchy import ClassHierarchy, JClass, JMethod, MethodRef, Subsignature
from latticeflow.ir import (
    IR,
    ArrayAccess,
    ArrayType,
    AssignStmt,
    CastExp,
    ConditionExp,
    Exp,
    Goto,
    If,
    InstanceFieldAccess,
    IntLiteral,
    Invoke,
    InvokeExp,
    InvokeKind,
    NegExp,
    NewExp,
    Nop,
    NullLiteral,
    Return,
    Stmt,
    StaticFieldAccess,
    StringLiteral,
    Switch,
    Type,
    Var,
    make_binary,
    parse_type,
)

logger = logging.getLogger(__name__)

# Type aliases for raw sexpdata output
Sexp = Any  # Union[list, Symbol, str, int]

_OP_ALIASES: Dict[str, str] = {
    "shl": "<<",
    "shr": ">>",
    "ushr": ">>>",
    "or": "|",
    "and": "&",
    "xor": "^",
}

_COMPARISONS = frozenset({"==", "!=", "<", "<=", ">", ">="})
_BINARY_OPS = frozenset({
    "+", "-", "*", "/", "%", "<<", ">>", ">>>", "|", "&", "^",
}) | _COMPARISONS


# ═══════════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════════

def _sym_name(s: Sexp) -> str:
    """Extract the string name from a ``sexpdata.Symbol``, or raise."""
    if isinstance(s, Symbol):
        return s.value()
    raise ProgramFormatError(f"expected symbol, got {type(s).__name__}", s)


def _expect_list(s: Sexp, *, min_len: int = 0, tag: Optional[str] = None) -> list:
    """Assert that *s* is a list, optionally with a minimum length and head tag."""
    if not isinstance(s, list):
        raise ProgramFormatError(
            f"expected list{f' ({tag} ...)' if tag else ''}, got {type(s).__name__}", s
        )
    if tag is not None and (not s or not isinstance(s[0], Symbol) or s[0].value() != tag):
        raise ProgramFormatError(f"expected ({tag} ...)", s)
    if len(s) < min_len:
        raise ProgramFormatError(
            f"form too short: expected at least {min_len} elements, got {len(s)}", s
        )
    return s


def _head(s: list) -> str:
    """Return the head symbol name of a list form ``(tag ...)``."""
    if not s:
        raise ProgramFormatError("unexpected empty list", s)
    return _sym_name(s[0])


def _as_str(s: Sexp) -> str:
    """Coerce *s* to a Python ``str`` – accepts Symbol or string literal."""
    if isinstance(s, Symbol):
        return s.value()
    if isinstance(s, str):
        return s
    raise ProgramFormatError(f"expected string or symbol, got {type(s).__name__}", s)


def _as_int(s: Sexp) -> int:
    if isinstance(s, int) and not isinstance(s, bool):
        return s
    raise ProgramFormatError(f"expected integer, got {type(s).__name__}", s)


def _parse_type(s: Sexp) -> Type:
    if isinstance(s, list):
        form = _expect_list(s, min_len=2, tag="array-type")
        return ArrayType(_parse_type(form[1]))
    return parse_type(_sym_name(s))


def _parse_subsignature(s: Sexp) -> Subsignature:
    try:
        return Subsignature.parse(_as_str(s))
    except ValueError as e:
        raise ProgramFormatError(str(e), s) from e


# ═══════════════════════════════════════════════════════════════════════
#  Dispatch registry
# ═══════════════════════════════════════════════════════════════════════

_STMT_DISPATCH: Dict[str, Callable[..., Optional[Stmt]]] = {}
_EXP_DISPATCH: Dict[str, Callable[..., Exp]] = {}


def _register(table: dict, tag: str):
    """Decorator: register a parser function under *tag* in *table*."""
    def deco(fn):
        table[tag] = fn
        return fn
    return deco


# ═══════════════════════════════════════════════════════════════════════
#  Method bodies
# ═══════════════════════════════════════════════════════════════════════

class _BodyBuilder:
    """Builds the statements of one method, resolving labels at the end."""

    def __init__(self, method: JMethod, variables: Dict[str, Var]) -> None:
        self.method = method
        self.variables = variables
        self.stmts: List[Stmt] = []
        self.labels: Dict[str, int] = {}
        # (stmt, attribute / case index, label, form)
        self.fixups: List[Tuple[Stmt, Union[str, int], str, Sexp]] = []

    def var(self, s: Sexp) -> Var:
        name = _sym_name(s)
        try:
            return self.variables[name]
        except KeyError:
            raise ProgramFormatError(
                f"undeclared variable {name!r} in {self.method}", s
            ) from None

    def operand(self, s: Sexp) -> Exp:
        if isinstance(s, int) and not isinstance(s, bool):
            return IntLiteral(s)
        return self.var(s)

    def exp(self, s: Sexp) -> Exp:
        if isinstance(s, bool):
            raise ProgramFormatError("unexpected boolean", s)
        if isinstance(s, int):
            return IntLiteral(s)
        if isinstance(s, Symbol):
            if s.value() == "null":
                return NullLiteral()
            return self.var(s)
        if isinstance(s, str):
            return StringLiteral(str(s))
        form = _expect_list(s, min_len=1)
        tag = _OP_ALIASES.get(_head(form), _head(form))
        if tag in _BINARY_OPS:
            if len(form) != 3:
                raise ProgramFormatError(f"operator {tag} takes two operands", s)
            return make_binary(tag, self.operand(form[1]), self.operand(form[2]))
        fn = _EXP_DISPATCH.get(tag)
        if fn is None:
            raise ProgramFormatError(f"unknown expression form ({tag} ...)", s)
        return fn(self, form)

    def add(self, stmt: Stmt) -> None:
        self.stmts.append(stmt)

    def jump(self, stmt: Stmt, slot: Union[str, int], label: Sexp) -> None:
        self.fixups.append((stmt, slot, _sym_name(label), label))

    def finish(self) -> List[Stmt]:
        if any(pos == len(self.stmts) for pos in self.labels.values()):
            self.stmts.append(Nop())
        for stmt, slot, label, form in self.fixups:
            if label not in self.labels:
                raise ProgramFormatError(f"undefined label {label!r} in {self.method}", form)
            target = self.stmts[self.labels[label]]
            if isinstance(slot, int):
                assert isinstance(stmt, Switch)
                stmt.case_targets[slot] = target
            else:
                setattr(stmt, slot, target)
        return self.stmts


def _parse_stmt(b: _BodyBuilder, s: Sexp) -> None:
    form = _expect_list(s, min_len=1)
    tag = _head(form)
    fn = _STMT_DISPATCH.get(tag)
    if fn is None:
        raise ProgramFormatError(f"unknown statement form ({tag} ...)", s)
    stmt = fn(b, form)
    if stmt is not None:
        b.add(stmt)


@_register(_STMT_DISPATCH, "label")
def _parse_label(b: _BodyBuilder, s: list) -> None:
    _expect_list(s, min_len=2)
    name = _sym_name(s[1])
    if name in b.labels:
        raise ProgramFormatError(f"duplicate label {name!r}", s)
    b.labels[name] = len(b.stmts)
    return None


@_register(_STMT_DISPATCH, "nop")
def _parse_nop(b: _BodyBuilder, s: list) -> Stmt:
    return Nop()


@_register(_STMT_DISPATCH, "assign")
def _parse_assign(b: _BodyBuilder, s: list) -> Stmt:
    _expect_list(s, min_len=3)
    rhs_form = s[2]
    if isinstance(rhs_form, list) and rhs_form and _head(rhs_form) == "invoke":
        return Invoke(_parse_invoke_exp(b, rhs_form), result=b.var(s[1]))
    lvalue = b.exp(s[1])
    if not isinstance(lvalue, (Var, InstanceFieldAccess, StaticFieldAccess, ArrayAccess)):
        raise ProgramFormatError("left-hand side is not assignable", s[1])
    return AssignStmt(lvalue, b.exp(rhs_form))


@_register(_STMT_DISPATCH, "if")
def _parse_if(b: _BodyBuilder, s: list) -> Stmt:
    _expect_list(s, min_len=3)
    cond = b.exp(s[1])
    if not isinstance(cond, ConditionExp):
        raise ProgramFormatError("if condition must be a comparison", s[1])
    stmt = If(cond)
    b.jump(stmt, "target", s[2])
    return stmt


@_register(_STMT_DISPATCH, "goto")
def _parse_goto(b: _BodyBuilder, s: list) -> Stmt:
    _expect_list(s, min_len=2)
    stmt = Goto()
    b.jump(stmt, "target", s[1])
    return stmt


@_register(_STMT_DISPATCH, "switch")
def _parse_switch(b: _BodyBuilder, s: list) -> Stmt:
    _expect_list(s, min_len=4)
    cases = _expect_list(s[2])
    values = []
    for case in cases:
        pair = _expect_list(case, min_len=2)
        values.append(_as_int(pair[0]))
    stmt = Switch(b.var(s[1]), values, [None] * len(values))
    for i, case in enumerate(cases):
        b.jump(stmt, i, case[1])
    b.jump(stmt, "default_target", s[3])
    return stmt


@_register(_STMT_DISPATCH, "invoke")
def _parse_invoke_stmt(b: _BodyBuilder, s: list) -> Stmt:
    return Invoke(_parse_invoke_exp(b, s))


@_register(_STMT_DISPATCH, "return")
def _parse_return(b: _BodyBuilder, s: list) -> Stmt:
    if len(s) > 1:
        return Return(b.var(s[1]))
    return Return()


def _parse_invoke_exp(b: _BodyBuilder, s: list) -> InvokeExp:
    _expect_list(s, min_len=5, tag="invoke")
    kind_name = _sym_name(s[1])
    try:
        kind = InvokeKind(kind_name)
    except ValueError:
        raise ProgramFormatError(f"unknown invoke kind {kind_name!r}", s) from None
    ref = MethodRef(_sym_name(s[2]), _parse_subsignature(s[3]))
    if len(s) == 6:
        base: Optional[Var] = b.var(s[4])
        args_form = s[5]
    elif len(s) == 5:
        base = None
        args_form = s[4]
    else:
        raise ProgramFormatError("malformed invoke", s)
    args = tuple(b.var(a) for a in _expect_list(args_form))
    return InvokeExp(kind, ref, args, base)


@_register(_EXP_DISPATCH, "invoke")
def _parse_invoke_in_exp(b: _BodyBuilder, s: list) -> Exp:
    raise ProgramFormatError("a call may only appear as a statement or assignment rhs", s)


@_register(_EXP_DISPATCH, "neg")
def _parse_neg(b: _BodyBuilder, s: list) -> Exp:
    _expect_list(s, min_len=2)
    return NegExp(b.operand(s[1]))


@_register(_EXP_DISPATCH, "new")
def _parse_new(b: _BodyBuilder, s: list) -> Exp:
    _expect_list(s, min_len=2)
    return NewExp(_parse_type(s[1]))


@_register(_EXP_DISPATCH, "cast")
def _parse_cast(b: _BodyBuilder, s: list) -> Exp:
    _expect_list(s, min_len=3)
    return CastExp(_parse_type(s[1]), b.var(s[2]))


@_register(_EXP_DISPATCH, "field")
def _parse_field(b: _BodyBuilder, s: list) -> Exp:
    _expect_list(s, min_len=3)
    return InstanceFieldAccess(b.var(s[1]), _as_str(s[2]))


@_register(_EXP_DISPATCH, "static-field")
def _parse_static_field(b: _BodyBuilder, s: list) -> Exp:
    _expect_list(s, min_len=3)
    return StaticFieldAccess(_sym_name(s[1]), _as_str(s[2]))


@_register(_EXP_DISPATCH, "array")
def _parse_array(b: _BodyBuilder, s: list) -> Exp:
    _expect_list(s, min_len=3)
    return ArrayAccess(b.var(s[1]), b.operand(s[2]))


# ═══════════════════════════════════════════════════════════════════════
#  Classes and methods
# ═══════════════════════════════════════════════════════════════════════

def _parse_decl(s: Sexp) -> Tuple[Type, str]:
    pair = _expect_list(s, min_len=2)
    return _parse_type(pair[0]), _sym_name(pair[1])


def _parse_method(jclass: JClass, s: list) -> None:
    _expect_list(s, min_len=4, tag="method")
    name = _sym_name(s[1])
    params = [_parse_decl(p) for p in _expect_list(s[2])]
    return_type = _parse_type(s[3])

    is_static = False
    is_abstract = False
    var_decls: List[Tuple[Type, str]] = []
    body: Optional[list] = None
    for item in s[4:]:
        form = _expect_list(item, min_len=1)
        tag = _head(form)
        if tag == "static":
            is_static = True
        elif tag == "abstract":
            is_abstract = True
        elif tag == "vars":
            var_decls.extend(_parse_decl(d) for d in form[1:])
        elif tag == "body":
            body = form[1:]
        else:
            raise ProgramFormatError(f"unknown method item ({tag} ...)", item)

    method = jclass.declare_method(
        name, [t for t, _ in params], return_type,
        is_static=is_static, is_abstract=is_abstract,
    )
    if is_abstract:
        if body:
            raise ProgramFormatError(f"abstract method {method} has a body", s)
        return
    if body is None:
        # declared without code, like a native or library method
        return

    variables: Dict[str, Var] = {}

    def declare(vtype: Type, vname: str) -> Var:
        if vname in variables:
            raise ProgramFormatError(f"duplicate variable {vname!r} in {method}", s)
        v = Var(vname, vtype)
        variables[vname] = v
        return v

    this = None if is_static else declare(parse_type(jclass.name), "this")
    param_vars = [declare(t, n) for t, n in params]
    for t, n in var_decls:
        declare(t, n)

    builder = _BodyBuilder(method, variables)
    for stmt_form in body:
        _parse_stmt(builder, stmt_form)
    stmts = builder.finish()
    method.ir = IR(method, param_vars, stmts, this=this, variables=list(variables.values()))


def _parse_class(hierarchy: ClassHierarchy, s: list) -> JClass:
    _expect_list(s, min_len=2, tag="class")
    name = _sym_name(s[1])
    superclass: Optional[str] = None
    interfaces: List[str] = []
    is_interface = False
    is_abstract = False
    methods: List[list] = []
    for item in s[2:]:
        form = _expect_list(item, min_len=1)
        tag = _head(form)
        if tag == "extends":
            _expect_list(form, min_len=2)
            superclass = _sym_name(form[1])
        elif tag == "implements":
            interfaces.extend(_sym_name(i) for i in form[1:])
        elif tag == "interface":
            is_interface = True
        elif tag == "abstract":
            is_abstract = True
        elif tag == "method":
            methods.append(form)
        else:
            raise ProgramFormatError(f"unknown class item ({tag} ...)", item)

    jclass = JClass(name, superclass, interfaces, is_interface, is_abstract)
    try:
        hierarchy.add_class(jclass)
    except ValueError as e:
        raise ProgramFormatError(str(e), s) from e
    for m in methods:
        _parse_method(jclass, m)
    logger.debug("loader: class %s with %d method(s)", name, len(methods))
    return jclass


def _resolve_entry(hierarchy: ClassHierarchy, s: list) -> JMethod:
    _expect_list(s, min_len=3, tag="entry")
    class_name = _sym_name(s[1])
    jclass = hierarchy.get_class(class_name)
    if jclass is None:
        raise ProgramFormatError(f"entry class {class_name!r} is not defined", s)
    if isinstance(s[2], Symbol):
        method = jclass.get_declared_method_by_name(s[2].value())
    else:
        method = jclass.get_declared_method(_parse_subsignature(s[2]))
    if method is None:
        raise ProgramFormatError(f"entry method not found in {class_name}", s)
    return method


def _program_from_sexp(raw: Sexp) -> Program:
    form = _expect_list(raw, tag="program")
    hierarchy = ClassHierarchy()
    entry_forms: List[list] = []
    for item in form[1:]:
        item = _expect_list(item, min_len=1)
        tag = _head(item)
        if tag == "class":
            _parse_class(hierarchy, item)
        elif tag == "entry":
            entry_forms.append(item)
        else:
            raise ProgramFormatError(f"unknown program item ({tag} ...)", item)
    entries = [_resolve_entry(hierarchy, e) for e in entry_forms]
    return Program(hierarchy, entries)


# ═══════════════════════════════════════════════════════════════════════
#  Public API
# ═══════════════════════════════════════════════════════════════════════

def load_program(text: str) -> Program:
    """Parse a complete program from S-expression text.

    Raises
    ------
    ProgramFormatError
        If the input is malformed or contains unrecognised forms.

    Example
    -------
    >>> program = load_program('''
    ... (program
    ...   (entry Main main)
    ...   (class Main
    ...     (method main () void (static)
    ...       (vars (int x))
    ...       (body (assign x 1) (return)))))
    ... ''')
    >>> [str(m) for m in program.entry_methods]
    ['<Main: void main()>']
    """
    # Keep nil/t/true/false as plain symbols.
    try:
        raw = sexpdata.loads(text, nil=None, true=None, false=None)
    except Exception as e:
        raise ProgramFormatError(f"S-expression syntax error: {e}") from e
    return _program_from_sexp(raw)


def load_program_file(path: Union[str, pathlib.Path]) -> Program:
    """Read and parse a program file."""
    p = pathlib.Path(path)
    return load_program(p.read_text(encoding="utf-8"))
