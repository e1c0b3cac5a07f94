"""
In-memory model of a loaded unit (class) and its method bodies.

The model is produced by the loader and is read-only afterwards: every
verification pass and every concurrent method verification shares the
same ClassUnit without copying it.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from .descriptors import parse_method_descriptor


OBJECT = "java/lang/Object"
THROWABLE = "java/lang/Throwable"
STRING = "java/lang/String"
CLASS = "java/lang/Class"

CONSTRUCTOR_NAME = "<init>"
STATIC_INITIALIZER_NAME = "<clinit>"


class Opcode(Enum):
    """Opcode categories understood by the verifier."""
    NOP = auto()
    ACONST_NULL = auto()
    ICONST = auto()
    LCONST = auto()
    FCONST = auto()
    DCONST = auto()
    LDC = auto()

    LOAD = auto()
    STORE = auto()
    IINC = auto()

    ADD = auto()
    SUB = auto()
    MUL = auto()
    DIV = auto()
    REM = auto()
    NEG = auto()
    SHL = auto()
    SHR = auto()
    USHR = auto()
    AND = auto()
    OR = auto()
    XOR = auto()
    CONVERT = auto()
    CMP = auto()

    IF = auto()
    IF_ICMP = auto()
    IF_ACMP = auto()
    IFNULL = auto()
    IFNONNULL = auto()
    GOTO = auto()
    SWITCH = auto()

    POP = auto()
    POP2 = auto()
    DUP = auto()
    DUP_X1 = auto()
    DUP_X2 = auto()
    DUP2 = auto()
    DUP2_X1 = auto()
    DUP2_X2 = auto()
    SWAP = auto()

    NEW = auto()
    NEWARRAY = auto()
    ANEWARRAY = auto()
    MULTIANEWARRAY = auto()
    ARRAYLENGTH = auto()
    ARRLOAD = auto()
    ARRSTORE = auto()
    CHECKCAST = auto()
    INSTANCEOF = auto()

    GETFIELD = auto()
    PUTFIELD = auto()
    GETSTATIC = auto()
    PUTSTATIC = auto()

    INVOKEVIRTUAL = auto()
    INVOKESPECIAL = auto()
    INVOKESTATIC = auto()
    INVOKEINTERFACE = auto()

    RETURN = auto()
    ATHROW = auto()
    MONITORENTER = auto()
    MONITOREXIT = auto()


BRANCH_OPCODES = frozenset({
    Opcode.IF, Opcode.IF_ICMP, Opcode.IF_ACMP,
    Opcode.IFNULL, Opcode.IFNONNULL, Opcode.GOTO,
})
INVOKE_OPCODES = frozenset({
    Opcode.INVOKEVIRTUAL, Opcode.INVOKESPECIAL,
    Opcode.INVOKESTATIC, Opcode.INVOKEINTERFACE,
})
FIELD_OPCODES = frozenset({
    Opcode.GETFIELD, Opcode.PUTFIELD, Opcode.GETSTATIC, Opcode.PUTSTATIC,
})
CLASS_SYMBOL_OPCODES = frozenset({
    Opcode.NEW, Opcode.ANEWARRAY, Opcode.MULTIANEWARRAY,
    Opcode.CHECKCAST, Opcode.INSTANCEOF,
})
# Instructions after which control never reaches the next instruction
NO_FALLTHROUGH_OPCODES = frozenset({
    Opcode.GOTO, Opcode.SWITCH, Opcode.RETURN, Opcode.ATHROW,
})


@dataclass(frozen=True)
class Instruction:
    """
    One decoded instruction.

    The meaning of `operands` depends on the opcode:
        LOAD/STORE       (kind, slot)
        IINC             (slot, delta)
        arithmetic, CMP  (kind,)
        CONVERT          (from_kind, to_kind)
        branches         (target,)
        SWITCH           (default, (target, ...))
        NEWARRAY         (element_code,)
        MULTIANEWARRAY   (symbol_index, dimensions)
        ARRLOAD/ARRSTORE (kind,)
        RETURN           (kind,) or () for void
        symbol-based     (symbol_index,)
    """
    offset: int
    opcode: Opcode
    operands: Tuple[Any, ...] = ()

    @property
    def targets(self) -> List[int]:
        """Explicit branch targets in declaration order (switch default first)."""
        if self.opcode in BRANCH_OPCODES:
            return [self.operands[0]]
        if self.opcode == Opcode.SWITCH:
            default, targets = self.operands
            return [default] + list(targets)
        return []

    @property
    def falls_through(self) -> bool:
        return self.opcode not in NO_FALLTHROUGH_OPCODES

    def operand(self, index: int, default: Any = None) -> Any:
        if index < len(self.operands):
            return self.operands[index]
        return default

    def __str__(self) -> str:
        args = ", ".join(str(op) for op in self.operands)
        return f"{self.offset}: {self.opcode.name.lower()}" + (f" {args}" if args else "")


@dataclass(frozen=True)
class ExceptionHandlerEntry:
    """Protected range [start, end) whose exceptions transfer to `handler`."""
    start: int
    end: int
    handler: int
    catch_type: Optional[str] = None   # None = catch any

    def covers(self, offset: int) -> bool:
        return self.start <= offset < self.end


@dataclass(frozen=True)
class SymbolEntry:
    """
    One symbol-table entry.

    kind is one of: class, string, int, float, long, double,
    field, method, interface_method.
    """
    kind: str
    name: Optional[str] = None
    owner: Optional[str] = None
    descriptor: Optional[str] = None

    @property
    def is_member(self) -> bool:
        return self.kind in ('field', 'method', 'interface_method')


@dataclass(frozen=True)
class FieldInfo:
    name: str
    descriptor: str
    flags: FrozenSet[str] = frozenset()

    @property
    def is_static(self) -> bool:
        return 'static' in self.flags


@dataclass(frozen=True)
class TypeInfo:
    """Hierarchy metadata for one already-loaded type."""
    name: str
    super_name: Optional[str] = OBJECT
    interfaces: Tuple[str, ...] = ()
    is_interface: bool = False


@dataclass
class Method:
    name: str
    descriptor: str
    flags: FrozenSet[str] = frozenset()
    max_stack: int = 0
    max_locals: int = 0
    code: List[Instruction] = field(default_factory=list)
    handlers: List[ExceptionHandlerEntry] = field(default_factory=list)

    @property
    def is_static(self) -> bool:
        return 'static' in self.flags

    @property
    def is_abstract(self) -> bool:
        return 'abstract' in self.flags or 'native' in self.flags

    @property
    def is_constructor(self) -> bool:
        return self.name == CONSTRUCTOR_NAME

    @property
    def parameter_types(self) -> List[str]:
        return parse_method_descriptor(self.descriptor)[0]

    @property
    def return_type(self) -> Optional[str]:
        return parse_method_descriptor(self.descriptor)[1]

    @property
    def code_length(self) -> int:
        """Offset one past the last instruction (instructions occupy one unit each)."""
        if not self.code:
            return 0
        return self.code[-1].offset + 1

    def __str__(self) -> str:
        return f"{self.name}{self.descriptor}"


@dataclass
class ClassUnit:
    """
    One verified compilation artifact.

    `types` holds hierarchy metadata for every type the unit refers to
    that is not the unit itself; the type oracle is built from it.
    """
    name: str
    super_name: Optional[str] = OBJECT
    interfaces: Tuple[str, ...] = ()
    flags: FrozenSet[str] = frozenset()
    symbols: List[SymbolEntry] = field(default_factory=list)
    fields: List[FieldInfo] = field(default_factory=list)
    methods: List[Method] = field(default_factory=list)
    types: Dict[str, TypeInfo] = field(default_factory=dict)

    @property
    def is_interface(self) -> bool:
        return 'interface' in self.flags

    def symbol(self, index: int) -> Optional[SymbolEntry]:
        if 0 <= index < len(self.symbols):
            return self.symbols[index]
        return None

    def declares_field(self, name: str, descriptor: str) -> bool:
        return any(f.name == name and f.descriptor == descriptor for f in self.fields)

    def type_info(self) -> TypeInfo:
        return TypeInfo(
            name=self.name,
            super_name=self.super_name,
            interfaces=tuple(self.interfaces),
            is_interface=self.is_interface,
        )
