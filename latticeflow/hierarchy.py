"""
latticeflow.hierarchy
=====================

Classes, methods and the class hierarchy the call-graph builder queries.

Public API
----------
    Subsignature        - ``"ret name(p1,p2)"``, the dispatch key of a method
    MethodRef           - symbolic reference from a call site to a method
    JMethod             - a declared method (possibly abstract)
    JClass              - a class or interface
    ClassHierarchy      - name-indexed set of classes with direct
                          subclass / implementor / sub-interface queries

Classes have at most one superclass.  A class with no superclass is a root;
the hierarchy does not invent an implicit ``java.lang.Object``.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Deque,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
)

from latticeflow.ir import PrimitiveType, Type

if TYPE_CHECKING:
    from latticeflow.ir import IR

logger = logging.getLogger(__name__)


_SUBSIG_RE = re.compile(r"^\s*(\S+)\s+([\w$<>]+)\s*\((.*)\)\s*$")


@dataclass(frozen=True)
class Subsignature:
    """Return type, name and parameter types of a method.

    Two methods with equal subsignatures override one another; the
    declaring class is not part of it.  Create instances through
    :meth:`parse` or :meth:`of` so spacing is normalised.
    """

    text: str

    @classmethod
    def parse(cls, text: str) -> "Subsignature":
        m = _SUBSIG_RE.match(text)
        if m is None:
            raise ValueError(f"malformed subsignature: {text!r}")
        ret, name, params = m.groups()
        plist = [p.strip() for p in params.split(",") if p.strip()]
        return cls(f"{ret} {name}({','.join(plist)})")

    @classmethod
    def of(cls, name: str, param_types: Sequence[Type], return_type: Type) -> "Subsignature":
        params = ",".join(str(t) for t in param_types)
        return cls(f"{return_type} {name}({params})")

    @property
    def name(self) -> str:
        return self.text.split(" ", 1)[1].split("(", 1)[0]

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class MethodRef:
    """``<declaring_class: subsignature>`` as written at a call site."""

    class_name: str
    subsignature: Subsignature

    def __str__(self) -> str:
        return f"<{self.class_name}: {self.subsignature}>"


class JMethod:
    """A method declared in some :class:`JClass`.

    Attributes
    ----------
    declaring_class : JClass
    name : str
    param_types : list of Type
    return_type : Type
    is_static, is_abstract : bool
    ir : IR or None
        The method body; ``None`` for abstract methods and methods without
        available code.
    """

    __slots__ = (
        "declaring_class", "name", "param_types", "return_type",
        "is_static", "is_abstract", "ir",
    )

    def __init__(
        self,
        declaring_class: "JClass",
        name: str,
        param_types: Sequence[Type] = (),
        return_type: Type = PrimitiveType.VOID,
        is_static: bool = False,
        is_abstract: bool = False,
    ) -> None:
        self.declaring_class = declaring_class
        self.name = name
        self.param_types: List[Type] = list(param_types)
        self.return_type = return_type
        self.is_static = is_static
        self.is_abstract = is_abstract
        self.ir: Optional["IR"] = None

    @property
    def subsignature(self) -> Subsignature:
        return Subsignature.of(self.name, self.param_types, self.return_type)

    @property
    def ref(self) -> MethodRef:
        return MethodRef(self.declaring_class.name, self.subsignature)

    @property
    def signature(self) -> str:
        return f"<{self.declaring_class.name}: {self.subsignature}>"

    def get_ir(self) -> "IR":
        """Return the body, raising ``ValueError`` when there is none."""
        if self.ir is None:
            raise ValueError(f"{self.signature} has no body")
        return self.ir

    def __repr__(self) -> str:
        return f"JMethod({self.signature})"

    def __str__(self) -> str:
        return self.signature


class JClass:
    """A class or interface.

    ``superclass`` and ``interfaces`` are names, resolved through the
    owning :class:`ClassHierarchy`.
    """

    __slots__ = (
        "name", "superclass", "interfaces", "is_interface", "is_abstract",
        "_methods",
    )

    def __init__(
        self,
        name: str,
        superclass: Optional[str] = None,
        interfaces: Sequence[str] = (),
        is_interface: bool = False,
        is_abstract: bool = False,
    ) -> None:
        self.name = name
        self.superclass = superclass
        self.interfaces: Tuple[str, ...] = tuple(interfaces)
        self.is_interface = is_interface
        self.is_abstract = is_abstract or is_interface
        self._methods: Dict[Subsignature, JMethod] = {}

    def declare_method(
        self,
        name: str,
        param_types: Sequence[Type] = (),
        return_type: Type = PrimitiveType.VOID,
        is_static: bool = False,
        is_abstract: bool = False,
    ) -> JMethod:
        method = JMethod(self, name, param_types, return_type, is_static, is_abstract)
        self._methods[method.subsignature] = method
        return method

    @property
    def declared_methods(self) -> List[JMethod]:
        return list(self._methods.values())

    def get_declared_method(self, subsignature: Subsignature) -> Optional[JMethod]:
        return self._methods.get(subsignature)

    def get_declared_method_by_name(self, name: str) -> Optional[JMethod]:
        """First declared method called *name*, or ``None``."""
        for m in self._methods.values():
            if m.name == name:
                return m
        return None

    def __repr__(self) -> str:
        kind = "interface" if self.is_interface else "class"
        return f"JClass({kind} {self.name})"

    def __str__(self) -> str:
        return self.name


class ClassHierarchy:
    """All classes of a program, indexed by name.

    Direct-subtype indices are maintained incrementally by
    :meth:`add_class`, so a class may be added before its superclass.
    """

    def __init__(self) -> None:
        self._classes: Dict[str, JClass] = {}
        self._subclasses: Dict[str, List[JClass]] = defaultdict(list)
        self._implementors: Dict[str, List[JClass]] = defaultdict(list)
        self._subinterfaces: Dict[str, List[JClass]] = defaultdict(list)

    def add_class(self, jclass: JClass) -> JClass:
        if jclass.name in self._classes:
            raise ValueError(f"duplicate class {jclass.name!r}")
        self._classes[jclass.name] = jclass
        if jclass.superclass is not None:
            self._subclasses[jclass.superclass].append(jclass)
        for iface in jclass.interfaces:
            if jclass.is_interface:
                self._subinterfaces[iface].append(jclass)
            else:
                self._implementors[iface].append(jclass)
        logger.debug("hierarchy: added %r", jclass)
        return jclass

    def get_class(self, name: str) -> Optional[JClass]:
        return self._classes.get(name)

    def all_classes(self) -> List[JClass]:
        return list(self._classes.values())

    def __iter__(self) -> Iterator[JClass]:
        return iter(self._classes.values())

    def __len__(self) -> int:
        return len(self._classes)

    def get_superclass_of(self, jclass: JClass) -> Optional[JClass]:
        if jclass.superclass is None:
            return None
        return self._classes.get(jclass.superclass)

    def get_direct_subclasses_of(self, jclass: JClass) -> List[JClass]:
        return list(self._subclasses.get(jclass.name, ()))

    def get_direct_implementors_of(self, jclass: JClass) -> List[JClass]:
        return list(self._implementors.get(jclass.name, ()))

    def get_direct_subinterfaces_of(self, jclass: JClass) -> List[JClass]:
        return list(self._subinterfaces.get(jclass.name, ()))

    def resolve_method(self, ref: MethodRef) -> Optional[JMethod]:
        """The method a reference names in its own class, if declared there."""
        jclass = self._classes.get(ref.class_name)
        if jclass is None:
            return None
        return jclass.get_declared_method(ref.subsignature)

    def is_subclass(self, ancestor: JClass, jclass: JClass) -> bool:
        """True if *jclass* is *ancestor* or a transitive subtype of it."""
        seen: Set[str] = set()
        queue: Deque[JClass] = deque([jclass])
        while queue:
            c = queue.popleft()
            if c.name == ancestor.name:
                return True
            if c.name in seen:
                continue
            seen.add(c.name)
            parents = list(c.interfaces)
            if c.superclass is not None:
                parents.append(c.superclass)
            for pname in parents:
                parent = self._classes.get(pname)
                if parent is not None:
                    queue.append(parent)
        return False

    def all_methods(self) -> Iterator[JMethod]:
        for jclass in self._classes.values():
            yield from jclass.declared_methods
