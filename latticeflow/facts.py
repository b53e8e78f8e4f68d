"""
latticeflow.facts
=================

Lattice values and dataflow facts.

Built-in domains
----------------
    Value       - constant-propagation lattice ``UNDEF ⊑ Constant(i) ⊑ NAC``
    CPFact      - map lattice ``Var → Value`` (unmapped means ``UNDEF``)
    SetFact     - powerset lattice of variables (liveness)

All facts have *value semantics*: every operation returns a new fact and
never mutates the receiver.  Solvers rely on ``==`` to detect change.
"""

from __future__ import annotations

import enum
from typing import Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple

from latticeflow.ir import Var


# ===========================================================================
# CONSTANT-PROPAGATION VALUE
# ===========================================================================

class _ValueKind(enum.Enum):
    UNDEF = "undef"
    CONSTANT = "constant"
    NAC = "nac"


class Value:
    """An element of the constant-propagation lattice.

    ``UNDEF`` (no information yet) is the bottom, ``NAC`` (not a constant)
    the top; distinct constants are incomparable.  Use the factory methods
    rather than the constructor.
    """

    __slots__ = ("_kind", "_constant")

    _UNDEF: "Value"
    _NAC: "Value"

    def __init__(self, kind: _ValueKind, constant: int = 0) -> None:
        self._kind = kind
        self._constant = constant

    @classmethod
    def get_undef(cls) -> "Value":
        return cls._UNDEF

    @classmethod
    def get_nac(cls) -> "Value":
        return cls._NAC

    @classmethod
    def make_constant(cls, value: int) -> "Value":
        return cls(_ValueKind.CONSTANT, value)

    def is_undef(self) -> bool:
        return self._kind is _ValueKind.UNDEF

    def is_constant(self) -> bool:
        return self._kind is _ValueKind.CONSTANT

    def is_nac(self) -> bool:
        return self._kind is _ValueKind.NAC

    def get_constant(self) -> int:
        """The integer of a constant value.

        Raises ``ValueError`` for ``UNDEF`` and ``NAC``.
        """
        if self._kind is not _ValueKind.CONSTANT:
            raise ValueError(f"{self} is not a constant")
        return self._constant

    def leq(self, other: "Value") -> bool:
        """Lattice order ``self ⊑ other``."""
        if self.is_undef() or other.is_nac():
            return True
        return self == other

    def __eq__(self, other) -> bool:
        if isinstance(other, Value):
            return self._kind is other._kind and self._constant == other._constant
        return NotImplemented

    def __hash__(self) -> int:
        return hash((self._kind, self._constant))

    def __repr__(self) -> str:
        if self._kind is _ValueKind.CONSTANT:
            return f"Value({self._constant})"
        return f"Value.{self._kind.name}"

    def __str__(self) -> str:
        if self._kind is _ValueKind.CONSTANT:
            return str(self._constant)
        return self._kind.name


Value._UNDEF = Value(_ValueKind.UNDEF)
Value._NAC = Value(_ValueKind.NAC)


# ===========================================================================
# MAP FACT
# ===========================================================================

class CPFact:
    """Immutable map from variables to :class:`Value`.

    A variable absent from the map is ``UNDEF``.  Binding a variable to
    ``UNDEF`` removes it, so two facts that differ only by explicit undefs
    compare equal.
    """

    __slots__ = ("_map", "_hash")

    def __init__(self, mapping: Optional[Mapping[Var, Value]] = None) -> None:
        self._map: Dict[Var, Value] = {}
        if mapping:
            for var, value in mapping.items():
                if not value.is_undef():
                    self._map[var] = value
        self._hash: Optional[int] = None

    @classmethod
    def _from_clean(cls, mapping: Dict[Var, Value]) -> "CPFact":
        fact = cls.__new__(cls)
        fact._map = mapping
        fact._hash = None
        return fact

    def get(self, var: Var) -> Value:
        return self._map.get(var, Value.get_undef())

    def update(self, var: Var, value: Value) -> "CPFact":
        """Return a fact with *var* bound to *value*."""
        if value.is_undef():
            return self.remove(var)
        if self._map.get(var) == value:
            return self
        new = dict(self._map)
        new[var] = value
        return CPFact._from_clean(new)

    def remove(self, var: Var) -> "CPFact":
        """Return a fact without a binding for *var*."""
        if var not in self._map:
            return self
        new = dict(self._map)
        del new[var]
        return CPFact._from_clean(new)

    def keys(self) -> List[Var]:
        return list(self._map.keys())

    def items(self) -> List[Tuple[Var, Value]]:
        return list(self._map.items())

    def copy(self) -> "CPFact":
        return CPFact._from_clean(dict(self._map))

    def leq(self, other: "CPFact") -> bool:
        """Pointwise lattice order."""
        return all(v.leq(other.get(k)) for k, v in self._map.items())

    def __contains__(self, var: object) -> bool:
        return var in self._map

    def __iter__(self) -> Iterator[Var]:
        return iter(self._map)

    def __len__(self) -> int:
        return len(self._map)

    def __eq__(self, other) -> bool:
        if isinstance(other, CPFact):
            return self._map == other._map
        return NotImplemented

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(frozenset(self._map.items()))
        return self._hash

    def __str__(self) -> str:
        body = ", ".join(
            f"{v.name}={val}"
            for v, val in sorted(self._map.items(), key=lambda kv: kv[0].name)
        )
        return "{" + body + "}"

    __repr__ = __str__


# ===========================================================================
# SET FACT
# ===========================================================================

class SetFact:
    """Immutable set of variables, ordered by inclusion."""

    __slots__ = ("_set",)

    def __init__(self, elements: Iterable[Var] = ()) -> None:
        self._set: FrozenSet[Var] = frozenset(elements)

    def add(self, var: Var) -> "SetFact":
        return SetFact(self._set | {var})

    def remove(self, var: Var) -> "SetFact":
        return SetFact(self._set - {var})

    def union(self, other: "SetFact") -> "SetFact":
        return SetFact(self._set | other._set)

    def contains(self, var: Var) -> bool:
        return var in self._set

    def leq(self, other: "SetFact") -> bool:
        return self._set <= other._set

    def __contains__(self, var: object) -> bool:
        return var in self._set

    def __iter__(self) -> Iterator[Var]:
        return iter(self._set)

    def __len__(self) -> int:
        return len(self._set)

    def __eq__(self, other) -> bool:
        if isinstance(other, SetFact):
            return self._set == other._set
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._set)

    def __str__(self) -> str:
        return "{" + ", ".join(sorted(v.name for v in self._set)) + "}"

    __repr__ = __str__
