"""
Verification-type lattice.

A VerificationType is a symbolic type held by one operand-stack entry or
one local slot.  The order, from least to most general:

    UNSET  <  INT | FLOAT | LONG | DOUBLE | NULL <= references <= Object  <  TOP

UNSET is the bottom element: it marks a slot nothing has written yet,
and merging it with x yields x.  TOP is "unusable": a slot whose
incoming paths disagree.  Holding TOP is legal; using it is not.

Uninitialized markers (the result of `new` before its constructor ran,
and `this` inside a constructor before the super call) are only equal to
themselves.  Merging two different markers, or a marker with anything
else, is a conflict: an object must be constructed on every path before
code may treat it polymorphically.

LONG and DOUBLE are wide (category-2) values.  They occupy one stack or
slot unit, merge only with themselves, and cannot be accessed by
narrow instructions.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from ..errors import OracleConflict, UnknownTypeError
from ..frontend.unit import OBJECT, THROWABLE
from ..z3model.hierarchy import TypeOracle


class Kind(Enum):
    UNSET = auto()
    TOP = auto()
    CONFLICT = auto()
    INT = auto()
    FLOAT = auto()
    LONG = auto()
    DOUBLE = auto()
    NULL = auto()
    REFERENCE = auto()
    ARRAY = auto()
    UNINITIALIZED = auto()
    UNINITIALIZED_THIS = auto()


SCALAR_KINDS = frozenset({Kind.INT, Kind.FLOAT, Kind.LONG, Kind.DOUBLE})
WIDE_KINDS = frozenset({Kind.LONG, Kind.DOUBLE})
REFERENCE_KINDS = frozenset({Kind.NULL, Kind.REFERENCE, Kind.ARRAY})
UNINITIALIZED_KINDS = frozenset({Kind.UNINITIALIZED, Kind.UNINITIALIZED_THIS})

# Supertypes every array type has besides Object
ARRAY_SUPERTYPES = frozenset({OBJECT, "java/lang/Cloneable", "java/io/Serializable"})

_KIND_NAMES = {
    Kind.UNSET: "unset",
    Kind.TOP: "unusable",
    Kind.CONFLICT: "conflict",
    Kind.INT: "int",
    Kind.FLOAT: "float",
    Kind.LONG: "long",
    Kind.DOUBLE: "double",
    Kind.NULL: "null",
}


@dataclass(frozen=True)
class VerificationType:
    """
    One point of the lattice.

    Attributes:
        kind: Lattice family
        name: Class name (REFERENCE, UNINITIALIZED, UNINITIALIZED_THIS)
            or full array descriptor (ARRAY, e.g. "[I", "[Ljava/lang/String;")
        offset: Allocation site of an UNINITIALIZED value
    """
    kind: Kind
    name: Optional[str] = None
    offset: Optional[int] = None

    @property
    def is_wide(self) -> bool:
        return self.kind in WIDE_KINDS

    @property
    def is_reference(self) -> bool:
        """Initialized reference (including null)."""
        return self.kind in REFERENCE_KINDS

    @property
    def is_uninitialized(self) -> bool:
        return self.kind in UNINITIALIZED_KINDS

    @property
    def is_unusable(self) -> bool:
        return self.kind in (Kind.TOP, Kind.CONFLICT, Kind.UNSET)

    @property
    def component(self) -> 'VerificationType':
        """Element type of an ARRAY, as stored in the array."""
        if self.kind != Kind.ARRAY:
            raise TypeError(f"{self} is not an array type")
        return from_descriptor(self.name[1:])

    @property
    def component_descriptor(self) -> str:
        return self.name[1:]

    @property
    def has_reference_component(self) -> bool:
        return self.kind == Kind.ARRAY and self.name[1] in 'L['

    def __str__(self) -> str:
        if self.kind in _KIND_NAMES:
            return _KIND_NAMES[self.kind]
        if self.kind == Kind.REFERENCE:
            return self.name
        if self.kind == Kind.ARRAY:
            return self.name
        if self.kind == Kind.UNINITIALIZED:
            return f"uninitialized {self.name} (new at {self.offset})"
        return f"uninitialized this ({self.name})"


UNSET = VerificationType(Kind.UNSET)
TOP = VerificationType(Kind.TOP)
CONFLICT = VerificationType(Kind.CONFLICT)
INT = VerificationType(Kind.INT)
FLOAT = VerificationType(Kind.FLOAT)
LONG = VerificationType(Kind.LONG)
DOUBLE = VerificationType(Kind.DOUBLE)
NULL = VerificationType(Kind.NULL)


def reference(name: str) -> VerificationType:
    if name.startswith('['):
        return VerificationType(Kind.ARRAY, name)
    return VerificationType(Kind.REFERENCE, name)


def array_of(component: VerificationType) -> VerificationType:
    return VerificationType(Kind.ARRAY, '[' + to_descriptor(component))


def uninitialized(offset: int, name: str) -> VerificationType:
    return VerificationType(Kind.UNINITIALIZED, name, offset)


def uninitialized_this(name: str) -> VerificationType:
    return VerificationType(Kind.UNINITIALIZED_THIS, name)


OBJECT_TYPE = reference(OBJECT)
THROWABLE_TYPE = reference(THROWABLE)

_PRIMITIVES = {
    'I': INT, 'Z': INT, 'B': INT, 'C': INT, 'S': INT,
    'F': FLOAT, 'J': LONG, 'D': DOUBLE,
}
_DESCRIPTORS = {Kind.INT: 'I', Kind.FLOAT: 'F', Kind.LONG: 'J', Kind.DOUBLE: 'D'}

# Kind codes used by LOAD/STORE/RETURN/arithmetic operands
KIND_CODES = {'I': INT, 'F': FLOAT, 'J': LONG, 'D': DOUBLE}


def from_descriptor(desc: str) -> VerificationType:
    """Verification type of a value declared with field descriptor `desc`."""
    if desc in _PRIMITIVES:
        return _PRIMITIVES[desc]
    if desc.startswith('['):
        return VerificationType(Kind.ARRAY, desc)
    if desc.startswith('L') and desc.endswith(';'):
        return VerificationType(Kind.REFERENCE, desc[1:-1])
    raise ValueError(f"invalid field descriptor {desc!r}")


def to_descriptor(vtype: VerificationType) -> str:
    if vtype.kind in _DESCRIPTORS:
        return _DESCRIPTORS[vtype.kind]
    if vtype.kind == Kind.ARRAY:
        return vtype.name
    if vtype.kind == Kind.REFERENCE:
        return f"L{vtype.name};"
    raise ValueError(f"{vtype} has no descriptor")


# ============================================================================
# Assignability
# ============================================================================

def is_assignable(value: VerificationType, target: VerificationType,
                  oracle: TypeOracle) -> bool:
    """
    Can a value of type `value` be used where `target` is required?

    Assignment to an interface type accepts any initialized reference,
    as interfaces are checked at invocation time rather than here.

    Raises:
        OracleConflict: a reference type name could not be resolved
    """
    if value == target:
        return not value.is_unusable
    if target.kind in SCALAR_KINDS:
        return value.kind == target.kind
    if target.kind == Kind.REFERENCE:
        if value.kind == Kind.NULL:
            return True
        if value.kind == Kind.ARRAY:
            return target.name in ARRAY_SUPERTYPES
        if value.kind != Kind.REFERENCE:
            return False
        try:
            if target.name == OBJECT or oracle.is_interface(target.name):
                return True
            return oracle.is_subtype(value.name, target.name)
        except UnknownTypeError as e:
            raise OracleConflict(f"cannot resolve type '{e.name}'") from e
    if target.kind == Kind.ARRAY:
        if value.kind == Kind.NULL:
            return True
        if value.kind != Kind.ARRAY:
            return False
        if value.has_reference_component and target.has_reference_component:
            return is_assignable(value.component, target.component, oracle)
        return False
    return False


# ============================================================================
# Merge
# ============================================================================

def _merge_references(a: VerificationType, b: VerificationType,
                      oracle: TypeOracle) -> VerificationType:
    if a.kind == Kind.NULL:
        return b
    if b.kind == Kind.NULL:
        return a
    if a.kind == Kind.ARRAY and b.kind == Kind.ARRAY:
        if a.has_reference_component and b.has_reference_component:
            component = merge(a.component, b.component, oracle)
            if component.is_reference:
                return array_of(component)
        return OBJECT_TYPE
    if a.kind == Kind.ARRAY or b.kind == Kind.ARRAY:
        other = b if a.kind == Kind.ARRAY else a
        if other.name in ARRAY_SUPERTYPES:
            return other
        return OBJECT_TYPE
    try:
        common = oracle.common_supertype(a.name, b.name)
    except UnknownTypeError as e:
        raise OracleConflict(f"cannot resolve type '{e.name}' while merging {a} and {b}") from e
    return reference(common) if common is not None else OBJECT_TYPE


def merge(a: VerificationType, b: VerificationType,
          oracle: TypeOracle) -> VerificationType:
    """
    Least upper bound of two verification types, or CONFLICT.

    merge is commutative and idempotent, and merge(x, UNSET) == x.

    Raises:
        OracleConflict: the oracle could not resolve a reference type
    """
    if a == b:
        return a
    if a.kind == Kind.UNSET:
        return b
    if b.kind == Kind.UNSET:
        return a
    if a.kind == Kind.CONFLICT or b.kind == Kind.CONFLICT:
        return CONFLICT
    if a.kind == Kind.TOP or b.kind == Kind.TOP:
        return TOP
    if a.is_reference and b.is_reference:
        return _merge_references(a, b, oracle)
    # distinct scalars, wide vs narrow, scalar vs reference, uninitialized markers
    return CONFLICT


def leq(a: VerificationType, b: VerificationType, oracle: TypeOracle) -> bool:
    """a is below or equal to b in the lattice order."""
    return merge(a, b, oracle) == b
