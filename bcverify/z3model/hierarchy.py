"""
Type oracle: subtype and common-supertype queries over loaded type metadata.

The verifier never owns or walks a type graph itself; it asks an oracle
by name.  ClassHierarchyOracle is the default oracle.  It encodes the
direct-supertype relation as Datalog facts and decides subtyping with
Z3's fixedpoint engine:

    subtype(a, b) :- extends(a, b).
    subtype(a, c) :- extends(a, b), subtype(b, c).

Answers are memoized, so each (a, b) pair is solved at most once.
"""

import threading
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Tuple, runtime_checkable

import z3

from ..errors import UnknownTypeError
from ..frontend.unit import ClassUnit, OBJECT, THROWABLE, TypeInfo


# Z3's main context is shared by every oracle in the process
_Z3_LOCK = threading.Lock()


@runtime_checkable
class TypeOracle(Protocol):
    """
    Read-only, side-effect-free hierarchy queries by type name.

    is_subtype and is_interface raise UnknownTypeError for names the
    oracle cannot resolve; knows() tells beforehand.
    """

    def knows(self, name: str) -> bool:
        ...

    def is_interface(self, name: str) -> bool:
        ...

    def is_subtype(self, sub: str, sup: str) -> bool:
        ...

    def common_supertype(self, a: str, b: str) -> Optional[str]:
        ...


def _t(name: str, super_name: Optional[str] = OBJECT,
       interfaces: Tuple[str, ...] = (), is_interface: bool = False) -> TypeInfo:
    return TypeInfo(name, super_name, interfaces, is_interface)


# Types every unit may refer to without declaring them
BOOTSTRAP_TYPES: Dict[str, TypeInfo] = {
    info.name: info for info in (
        _t(OBJECT, None),
        _t("java/lang/Cloneable", is_interface=True),
        _t("java/io/Serializable", is_interface=True),
        _t("java/lang/String", interfaces=("java/io/Serializable",)),
        _t("java/lang/Class", interfaces=("java/io/Serializable",)),
        _t(THROWABLE, interfaces=("java/io/Serializable",)),
        _t("java/lang/Exception", THROWABLE),
        _t("java/lang/Error", THROWABLE),
        _t("java/lang/RuntimeException", "java/lang/Exception"),
        _t("java/lang/ArithmeticException", "java/lang/RuntimeException"),
        _t("java/lang/NullPointerException", "java/lang/RuntimeException"),
        _t("java/lang/ClassCastException", "java/lang/RuntimeException"),
        _t("java/lang/IllegalStateException", "java/lang/RuntimeException"),
        _t("java/lang/IllegalArgumentException", "java/lang/RuntimeException"),
    )
}


class ClassHierarchyOracle:
    """
    Z3-backed type oracle over a fixed set of TypeInfo records.

    Args:
        types: Hierarchy metadata, keyed by type name
        include_bootstrap: Also know the java/lang bootstrap types
    """

    def __init__(self, types: Mapping[str, TypeInfo], include_bootstrap: bool = True):
        known: Dict[str, TypeInfo] = dict(BOOTSTRAP_TYPES) if include_bootstrap else {}
        known.update(types)
        self._types = known
        self._ids = {name: i for i, name in enumerate(sorted(known))}
        self._subtype_cache: Dict[Tuple[str, str], bool] = {}
        self._cache_lock = threading.Lock()
        self._fp, self._subtype, self._sort = self._build_fixedpoint()

    @classmethod
    def from_unit(cls, unit: ClassUnit,
                  extra: Iterable[TypeInfo] = ()) -> 'ClassHierarchyOracle':
        types = dict(unit.types)
        types[unit.name] = unit.type_info()
        for info in extra:
            types[info.name] = info
        return cls(types)

    def _direct_supertypes(self, info: TypeInfo) -> List[str]:
        supers = []
        if info.super_name is not None:
            supers.append(info.super_name)
        supers.extend(info.interfaces)
        return [s for s in supers if s in self._ids]

    def _build_fixedpoint(self):
        bits = max(1, len(self._ids).bit_length())
        with _Z3_LOCK:
            sort = z3.BitVecSort(bits)
            extends = z3.Function('extends', sort, sort, z3.BoolSort())
            subtype = z3.Function('subtype', sort, sort, z3.BoolSort())

            fp = z3.Fixedpoint()
            fp.set(engine='datalog')
            fp.register_relation(extends, subtype)

            a, b, c = z3.Consts('a b c', sort)
            fp.declare_var(a, b, c)
            fp.rule(subtype(a, b), extends(a, b))
            fp.rule(subtype(a, c), [extends(a, b), subtype(b, c)])

            for name, info in self._types.items():
                for sup in self._direct_supertypes(info):
                    fp.fact(extends(
                        z3.BitVecVal(self._ids[name], sort),
                        z3.BitVecVal(self._ids[sup], sort),
                    ))
        return fp, subtype, sort

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def knows(self, name: str) -> bool:
        return name in self._types

    def info(self, name: str) -> TypeInfo:
        info = self._types.get(name)
        if info is None:
            raise UnknownTypeError(name)
        return info

    def is_interface(self, name: str) -> bool:
        return self.info(name).is_interface

    def superclass_chain(self, name: str) -> List[str]:
        """name, its superclass, ..., up to java/lang/Object."""
        chain = []
        current: Optional[str] = name
        while current is not None and current not in chain:
            chain.append(current)
            current = self.info(current).super_name
        return chain

    def is_subtype(self, sub: str, sup: str) -> bool:
        """True if `sub` equals `sup` or transitively extends/implements it."""
        self.info(sub)
        self.info(sup)
        if sub == sup or sup == OBJECT:
            return True
        key = (sub, sup)
        with self._cache_lock:
            cached = self._subtype_cache.get(key)
        if cached is not None:
            return cached
        with _Z3_LOCK:
            query = self._subtype(
                z3.BitVecVal(self._ids[sub], self._sort),
                z3.BitVecVal(self._ids[sup], self._sort),
            )
            answer = self._fp.query(query) == z3.sat
        with self._cache_lock:
            self._subtype_cache[key] = answer
        return answer

    def common_supertype(self, a: str, b: str) -> Optional[str]:
        """
        Nearest common superclass of two reference types.

        Interfaces only merge to one another when one extends the other;
        otherwise the result is java/lang/Object.  The answer is symmetric
        in (a, b).
        """
        if self.is_subtype(a, b):
            return b
        if self.is_subtype(b, a):
            return a
        if self.is_interface(a) or self.is_interface(b):
            return OBJECT
        for ancestor in self.superclass_chain(a):
            if self.is_subtype(b, ancestor):
                return ancestor
        return None
