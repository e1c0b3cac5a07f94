"""
Instruction effect rules.

apply_effect(frame_in, instruction, context) is the transfer function of
the structural verifier.  It never mutates frame_in: it works on a copy
and returns a Transfer holding either the outgoing frame or the typed
Failure that the instruction's preconditions produced.

Rules are grouped by opcode category.  Each rule pops its operands with
a type requirement, then pushes or stores its results.  A value that is
still uninitialized may only be moved (local load/store, stack
manipulation) or handed to its constructor; every other use is an
UninitializedUse.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ..errors import (
    Failure,
    SlotTypeMismatch,
    TypeConstraintViolation,
    UninitializedUse,
    VerifierFailure,
)
from ..frontend.descriptors import parse_method_descriptor
from ..frontend.unit import (
    ClassUnit,
    CLASS,
    CONSTRUCTOR_NAME,
    Instruction,
    Method,
    Opcode,
    STRING,
    SymbolEntry,
)
from ..z3model.hierarchy import TypeOracle
from .frame import Frame
from .vtypes import (
    DOUBLE,
    FLOAT,
    INT,
    KIND_CODES,
    Kind,
    LONG,
    NULL,
    THROWABLE_TYPE,
    VerificationType,
    from_descriptor,
    is_assignable,
    reference,
    uninitialized,
)


@dataclass(frozen=True)
class EffectContext:
    """Read-only inputs shared by every rule application of one method."""
    unit: ClassUnit
    method: Method
    oracle: TypeOracle


@dataclass(frozen=True)
class Transfer:
    """Outcome of one rule application: exactly one of frame/failure is set."""
    frame: Optional[Frame] = None
    failure: Optional[Failure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


# ============================================================================
# Operand helpers
# ============================================================================

# Array element codes accepted by ARRLOAD/ARRSTORE of each kind
_ARRAY_COMPONENTS = {
    'I': ('I',), 'J': ('J',), 'F': ('F',), 'D': ('D',),
    'B': ('B', 'Z'), 'C': ('C',), 'S': ('S',),
}
_NARROW_INT_CODES = ('B', 'C', 'S', 'Z')


def _kind_type(code: str) -> VerificationType:
    if code in _NARROW_INT_CODES:
        return INT
    vtype = KIND_CODES.get(code)
    if vtype is None:
        raise TypeConstraintViolation(f"invalid value kind {code!r}")
    return vtype


def _pop_value(frame: Frame, expected: VerificationType, oracle: TypeOracle,
               what: str) -> VerificationType:
    """Pop a value that must be assignable to `expected`."""
    value = frame.pop()
    if value.is_uninitialized:
        raise UninitializedUse(f"{what}: {value} used before its constructor completed")
    if value.is_unusable:
        raise TypeConstraintViolation(
            f"{what}: operand is unusable (incompatible types on merging paths)"
        )
    if expected.is_wide != value.is_wide and not expected.is_reference:
        raise TypeConstraintViolation(f"{what}: expected {expected}, found {value}")
    if not is_assignable(value, expected, oracle):
        raise TypeConstraintViolation(f"{what}: expected {expected}, found {value}")
    return value


def _pop_kind(frame: Frame, code: str, oracle: TypeOracle, what: str) -> VerificationType:
    return _pop_value(frame, _kind_type(code), oracle, what)


def _pop_reference(frame: Frame, what: str) -> VerificationType:
    """Pop any initialized reference (class, array or null)."""
    value = frame.pop()
    if value.is_uninitialized:
        raise UninitializedUse(f"{what}: {value} used before its constructor completed")
    if not value.is_reference:
        raise TypeConstraintViolation(f"{what}: expected a reference, found {value}")
    return value


def _pop_movable(frame: Frame) -> VerificationType:
    """Pop any value for pure stack manipulation (no type requirement)."""
    return frame.pop()


def _require_narrow(value: VerificationType, what: str) -> VerificationType:
    if value.is_wide:
        raise SlotTypeMismatch(f"{what}: cannot split wide value {value}")
    return value


def _symbol(ctx: EffectContext, instr: Instruction, *kinds: str) -> SymbolEntry:
    index = instr.operand(0)
    entry = ctx.unit.symbol(index) if isinstance(index, int) else None
    if entry is None:
        raise TypeConstraintViolation(f"invalid symbol-table index {index!r}")
    if entry.kind not in kinds:
        raise TypeConstraintViolation(
            f"symbol {index} is a {entry.kind} entry, expected {' or '.join(kinds)}"
        )
    return entry


def _class_type(name: str) -> VerificationType:
    return reference(name)


def _member_owner(entry: SymbolEntry) -> VerificationType:
    return _class_type(entry.owner)


# ============================================================================
# Rules by category
# ============================================================================

def _constants(frame: Frame, instr: Instruction, ctx: EffectContext) -> None:
    op = instr.opcode
    if op == Opcode.NOP:
        return
    if op == Opcode.ACONST_NULL:
        frame.push(NULL)
    elif op == Opcode.ICONST:
        frame.push(INT)
    elif op == Opcode.LCONST:
        frame.push(LONG)
    elif op == Opcode.FCONST:
        frame.push(FLOAT)
    elif op == Opcode.DCONST:
        frame.push(DOUBLE)
    elif op == Opcode.LDC:
        entry = _symbol(ctx, instr, 'string', 'class', 'int', 'float', 'long', 'double')
        frame.push({
            'string': reference(STRING),
            'class': reference(CLASS),
            'int': INT,
            'float': FLOAT,
            'long': LONG,
            'double': DOUBLE,
        }[entry.kind])


def _locals(frame: Frame, instr: Instruction, ctx: EffectContext) -> None:
    op = instr.opcode
    if op == Opcode.IINC:
        slot = instr.operand(0)
        value = frame.load(slot, wide=False)
        if value.kind != Kind.INT:
            raise TypeConstraintViolation(f"iinc on local {slot} holding {value}")
        return

    code, slot = instr.operand(0), instr.operand(1)
    wide = code in ('J', 'D')
    if op == Opcode.LOAD:
        value = frame.load(slot, wide)
        if code == 'A':
            if not (value.is_reference or value.is_uninitialized):
                raise TypeConstraintViolation(f"reference load of local {slot} holding {value}")
        elif value != _kind_type(code):
            raise TypeConstraintViolation(f"{code} load of local {slot} holding {value}")
        frame.push(value)
    else:
        value = frame.pop()
        if value.is_unusable:
            raise TypeConstraintViolation(
                f"store into local {slot}: operand is unusable (incompatible types on merging paths)"
            )
        if value.is_wide != wide:
            access = "wide" if wide else "narrow"
            raise SlotTypeMismatch(f"{access} store of {value} into local {slot}")
        if code == 'A':
            if not (value.is_reference or value.is_uninitialized):
                raise TypeConstraintViolation(f"reference store of {value} into local {slot}")
        elif value != _kind_type(code):
            raise TypeConstraintViolation(f"{code} store of {value} into local {slot}")
        frame.store(slot, value, wide)


def _arithmetic(frame: Frame, instr: Instruction, ctx: EffectContext) -> None:
    op = instr.opcode
    oracle = ctx.oracle
    name = op.name.lower()
    if op == Opcode.CONVERT:
        source, target = instr.operand(0), instr.operand(1)
        _pop_kind(frame, source, oracle, f"convert from {source}")
        frame.push(_kind_type(target))
        return
    code = instr.operand(0)
    if op == Opcode.CMP:
        if code not in ('J', 'F', 'D'):
            raise TypeConstraintViolation(f"cmp is not defined for kind {code!r}")
        _pop_kind(frame, code, oracle, "cmp")
        _pop_kind(frame, code, oracle, "cmp")
        frame.push(INT)
        return
    if code not in KIND_CODES:
        raise TypeConstraintViolation(f"{name} is not defined for kind {code!r}")
    if op in (Opcode.SHL, Opcode.SHR, Opcode.USHR, Opcode.AND, Opcode.OR, Opcode.XOR):
        if code not in ('I', 'J'):
            raise TypeConstraintViolation(f"{name} requires an int or long operand kind")
    if op == Opcode.NEG:
        result = _pop_kind(frame, code, oracle, name)
    elif op in (Opcode.SHL, Opcode.SHR, Opcode.USHR):
        _pop_kind(frame, 'I', oracle, f"{name} shift distance")
        result = _pop_kind(frame, code, oracle, name)
    else:
        _pop_kind(frame, code, oracle, name)
        result = _pop_kind(frame, code, oracle, name)
    frame.push(result)


def _branches(frame: Frame, instr: Instruction, ctx: EffectContext) -> None:
    op = instr.opcode
    oracle = ctx.oracle
    if op in (Opcode.IF, Opcode.SWITCH):
        _pop_kind(frame, 'I', oracle, op.name.lower())
    elif op == Opcode.IF_ICMP:
        _pop_kind(frame, 'I', oracle, "if_icmp")
        _pop_kind(frame, 'I', oracle, "if_icmp")
    elif op == Opcode.IF_ACMP:
        _pop_reference(frame, "if_acmp")
        _pop_reference(frame, "if_acmp")
    elif op in (Opcode.IFNULL, Opcode.IFNONNULL):
        _pop_reference(frame, op.name.lower())


def _stack(frame: Frame, instr: Instruction, ctx: EffectContext) -> None:
    op = instr.opcode
    name = op.name.lower()
    if op == Opcode.POP:
        _require_narrow(_pop_movable(frame), name)
    elif op == Opcode.POP2:
        v1 = _pop_movable(frame)
        if not v1.is_wide:
            _require_narrow(_pop_movable(frame), name)
    elif op == Opcode.DUP:
        frame.push(_require_narrow(frame.peek(), name))
    elif op == Opcode.SWAP:
        v1 = _require_narrow(_pop_movable(frame), name)
        v2 = _require_narrow(_pop_movable(frame), name)
        frame.push(v1)
        frame.push(v2)
    elif op == Opcode.DUP_X1:
        v1 = _require_narrow(_pop_movable(frame), name)
        v2 = _require_narrow(_pop_movable(frame), name)
        _push_all(frame, v1, v2, v1)
    elif op == Opcode.DUP_X2:
        v1 = _require_narrow(_pop_movable(frame), name)
        v2 = _pop_movable(frame)
        if v2.is_wide:
            _push_all(frame, v1, v2, v1)
        else:
            v3 = _require_narrow(_pop_movable(frame), name)
            _push_all(frame, v1, v3, v2, v1)
    elif op == Opcode.DUP2:
        v1 = _pop_movable(frame)
        if v1.is_wide:
            _push_all(frame, v1, v1)
        else:
            v2 = _require_narrow(_pop_movable(frame), name)
            _push_all(frame, v2, v1, v2, v1)
    elif op == Opcode.DUP2_X1:
        v1 = _pop_movable(frame)
        if v1.is_wide:
            v2 = _require_narrow(_pop_movable(frame), name)
            _push_all(frame, v1, v2, v1)
        else:
            v2 = _require_narrow(_pop_movable(frame), name)
            v3 = _require_narrow(_pop_movable(frame), name)
            _push_all(frame, v2, v1, v3, v2, v1)
    elif op == Opcode.DUP2_X2:
        v1 = _pop_movable(frame)
        if v1.is_wide:
            v2 = _pop_movable(frame)
            if v2.is_wide:
                _push_all(frame, v1, v2, v1)
            else:
                v3 = _require_narrow(_pop_movable(frame), name)
                _push_all(frame, v1, v3, v2, v1)
        else:
            v2 = _require_narrow(_pop_movable(frame), name)
            v3 = _pop_movable(frame)
            if v3.is_wide:
                _push_all(frame, v2, v1, v3, v2, v1)
            else:
                v4 = _require_narrow(_pop_movable(frame), name)
                _push_all(frame, v2, v1, v4, v3, v2, v1)


def _push_all(frame: Frame, *values: VerificationType) -> None:
    for value in values:
        frame.push(value)


def _objects(frame: Frame, instr: Instruction, ctx: EffectContext) -> None:
    op = instr.opcode
    oracle = ctx.oracle
    if op == Opcode.NEW:
        entry = _symbol(ctx, instr, 'class')
        if entry.name.startswith('['):
            raise TypeConstraintViolation(f"new cannot create array type {entry.name}")
        frame.push(uninitialized(instr.offset, entry.name))
    elif op == Opcode.NEWARRAY:
        code = instr.operand(0)
        if code not in ('Z', 'B', 'C', 'S', 'I', 'J', 'F', 'D'):
            raise TypeConstraintViolation(f"newarray of invalid element kind {code!r}")
        _pop_kind(frame, 'I', oracle, "newarray length")
        frame.push(reference('[' + code))
    elif op == Opcode.ANEWARRAY:
        entry = _symbol(ctx, instr, 'class')
        _pop_kind(frame, 'I', oracle, "anewarray length")
        component = entry.name if entry.name.startswith('[') else f"L{entry.name};"
        frame.push(reference('[' + component))
    elif op == Opcode.MULTIANEWARRAY:
        entry = _symbol(ctx, instr, 'class')
        dimensions = instr.operand(1)
        if not isinstance(dimensions, int) or dimensions < 1:
            raise TypeConstraintViolation(f"multianewarray with invalid dimension count {dimensions!r}")
        if not entry.name.startswith('[' * dimensions):
            raise TypeConstraintViolation(
                f"multianewarray of {entry.name} with {dimensions} dimensions"
            )
        for _ in range(dimensions):
            _pop_kind(frame, 'I', oracle, "multianewarray dimension")
        frame.push(reference(entry.name))
    elif op == Opcode.ARRAYLENGTH:
        array = _pop_reference(frame, "arraylength")
        if array.kind not in (Kind.ARRAY, Kind.NULL):
            raise TypeConstraintViolation(f"arraylength: expected an array, found {array}")
        frame.push(INT)
    elif op == Opcode.ARRLOAD:
        code = instr.operand(0)
        _pop_kind(frame, 'I', oracle, "array index")
        array = _pop_array(frame, code, "array load")
        if code == 'A':
            frame.push(NULL if array.kind == Kind.NULL else array.component)
        else:
            frame.push(_kind_type(code))
    elif op == Opcode.ARRSTORE:
        code = instr.operand(0)
        if code == 'A':
            _pop_reference(frame, "array store value")
        else:
            _pop_kind(frame, code, oracle, "array store value")
        _pop_kind(frame, 'I', oracle, "array index")
        _pop_array(frame, code, "array store")
    elif op == Opcode.CHECKCAST:
        entry = _symbol(ctx, instr, 'class')
        _pop_reference(frame, "checkcast")
        frame.push(_class_type(entry.name))
    elif op == Opcode.INSTANCEOF:
        _symbol(ctx, instr, 'class')
        _pop_reference(frame, "instanceof")
        frame.push(INT)


def _pop_array(frame: Frame, code: str, what: str) -> VerificationType:
    array = _pop_reference(frame, what)
    if array.kind == Kind.NULL:
        return array
    if array.kind != Kind.ARRAY:
        raise TypeConstraintViolation(f"{what}: expected an array, found {array}")
    if code == 'A':
        if not array.has_reference_component:
            raise TypeConstraintViolation(f"{what}: expected an array of references, found {array}")
    elif array.component_descriptor not in _ARRAY_COMPONENTS.get(code, ()):
        raise TypeConstraintViolation(f"{what}: {code} access to {array}")
    return array


def _fields(frame: Frame, instr: Instruction, ctx: EffectContext) -> None:
    op = instr.opcode
    oracle = ctx.oracle
    entry = _symbol(ctx, instr, 'field')
    field_type = from_descriptor(entry.descriptor)
    owner = _member_owner(entry)
    name = op.name.lower()

    if op == Opcode.GETSTATIC:
        frame.push(field_type)
    elif op == Opcode.PUTSTATIC:
        _pop_value(frame, field_type, oracle, f"putstatic {entry.name}")
    elif op == Opcode.GETFIELD:
        _pop_value(frame, owner, oracle, f"getfield {entry.name} receiver")
        frame.push(field_type)
    elif op == Opcode.PUTFIELD:
        _pop_value(frame, field_type, oracle, f"putfield {entry.name}")
        receiver = frame.peek()
        if (receiver.kind == Kind.UNINITIALIZED_THIS
                and entry.owner == ctx.unit.name
                and ctx.unit.declares_field(entry.name, entry.descriptor)):
            # own fields may be assigned before the super constructor call
            frame.pop()
            return
        _pop_value(frame, owner, oracle, f"{name} {entry.name} receiver")


def _invocations(frame: Frame, instr: Instruction, ctx: EffectContext) -> None:
    op = instr.opcode
    oracle = ctx.oracle
    kinds = ('interface_method',) if op == Opcode.INVOKEINTERFACE else ('method', 'interface_method')
    entry = _symbol(ctx, instr, *kinds)
    try:
        params, returns = parse_method_descriptor(entry.descriptor)
    except ValueError as e:
        raise TypeConstraintViolation(f"invalid method descriptor: {e}") from None
    name = op.name.lower()
    is_init = entry.name == CONSTRUCTOR_NAME

    if is_init and op != Opcode.INVOKESPECIAL:
        raise TypeConstraintViolation(f"{CONSTRUCTOR_NAME} must be invoked with invokespecial")
    if entry.name.startswith('<') and not is_init:
        raise TypeConstraintViolation(f"cannot invoke internal method {entry.name}")

    for index, param in reversed(list(enumerate(params))):
        _pop_value(frame, from_descriptor(param), oracle,
                   f"{name} {entry.owner}.{entry.name} argument {index}")

    if op != Opcode.INVOKESTATIC:
        if is_init:
            _invoke_constructor(frame, entry, ctx)
        else:
            _pop_value(frame, _member_owner(entry), oracle,
                       f"{name} {entry.owner}.{entry.name} receiver")

    if returns is not None:
        frame.push(from_descriptor(returns))


def _invoke_constructor(frame: Frame, entry: SymbolEntry, ctx: EffectContext) -> None:
    receiver = frame.pop()
    if receiver.kind == Kind.UNINITIALIZED:
        if receiver.name != entry.owner:
            raise TypeConstraintViolation(
                f"constructor of {entry.owner} called on {receiver}"
            )
    elif receiver.kind == Kind.UNINITIALIZED_THIS:
        if entry.owner not in (ctx.unit.name, ctx.unit.super_name):
            raise TypeConstraintViolation(
                f"constructor of {entry.owner} called on uninitialized this; "
                f"expected {ctx.unit.name} or {ctx.unit.super_name}"
            )
    else:
        raise TypeConstraintViolation(f"constructor called on already initialized {receiver}")
    frame.initialize(receiver, reference(receiver.name))


def _control(frame: Frame, instr: Instruction, ctx: EffectContext) -> None:
    op = instr.opcode
    oracle = ctx.oracle
    if op == Opcode.ATHROW:
        _pop_value(frame, THROWABLE_TYPE, oracle, "athrow")
    elif op in (Opcode.MONITORENTER, Opcode.MONITOREXIT):
        _pop_reference(frame, op.name.lower())
    elif op == Opcode.RETURN:
        _return(frame, instr, ctx)


def _return(frame: Frame, instr: Instruction, ctx: EffectContext) -> None:
    method = ctx.method
    declared = method.return_type
    code = instr.operand(0)
    if method.is_constructor and frame.this_uninitialized:
        raise UninitializedUse("constructor returns before calling a super or this constructor")
    if declared is None:
        if code is not None:
            raise TypeConstraintViolation(f"{code} return from void method")
        return
    if code is None:
        raise TypeConstraintViolation(f"void return from method returning {declared}")
    expected = from_descriptor(declared)
    if code == 'A':
        if not expected.is_reference:
            raise TypeConstraintViolation(f"reference return from method returning {declared}")
    elif _kind_type(code) != expected:
        raise TypeConstraintViolation(f"{code} return from method returning {declared}")
    _pop_value(frame, expected, oracle=ctx.oracle, what="return value")


RuleFn = Callable[[Frame, Instruction, EffectContext], None]

_RULES: Dict[Opcode, RuleFn] = {}
for _ops, _rule in (
    ((Opcode.NOP, Opcode.ACONST_NULL, Opcode.ICONST, Opcode.LCONST,
      Opcode.FCONST, Opcode.DCONST, Opcode.LDC), _constants),
    ((Opcode.LOAD, Opcode.STORE, Opcode.IINC), _locals),
    ((Opcode.ADD, Opcode.SUB, Opcode.MUL, Opcode.DIV, Opcode.REM, Opcode.NEG,
      Opcode.SHL, Opcode.SHR, Opcode.USHR, Opcode.AND, Opcode.OR, Opcode.XOR,
      Opcode.CONVERT, Opcode.CMP), _arithmetic),
    ((Opcode.IF, Opcode.IF_ICMP, Opcode.IF_ACMP, Opcode.IFNULL, Opcode.IFNONNULL,
      Opcode.GOTO, Opcode.SWITCH), _branches),
    ((Opcode.POP, Opcode.POP2, Opcode.DUP, Opcode.DUP_X1, Opcode.DUP_X2,
      Opcode.DUP2, Opcode.DUP2_X1, Opcode.DUP2_X2, Opcode.SWAP), _stack),
    ((Opcode.NEW, Opcode.NEWARRAY, Opcode.ANEWARRAY, Opcode.MULTIANEWARRAY,
      Opcode.ARRAYLENGTH, Opcode.ARRLOAD, Opcode.ARRSTORE, Opcode.CHECKCAST,
      Opcode.INSTANCEOF), _objects),
    ((Opcode.GETFIELD, Opcode.PUTFIELD, Opcode.GETSTATIC, Opcode.PUTSTATIC), _fields),
    ((Opcode.INVOKEVIRTUAL, Opcode.INVOKESPECIAL, Opcode.INVOKESTATIC,
      Opcode.INVOKEINTERFACE), _invocations),
    ((Opcode.RETURN, Opcode.ATHROW, Opcode.MONITORENTER, Opcode.MONITOREXIT), _control),
):
    for _op in _ops:
        _RULES[_op] = _rule
del _ops, _rule, _op


def apply_effect(frame_in: Frame, instruction: Instruction, context: EffectContext) -> Transfer:
    """
    Apply one instruction's effect to a copy of `frame_in`.

    Returns:
        Transfer with the outgoing frame, or with the typed Failure
        (located at the instruction's offset) if a precondition fails
    """
    frame = frame_in.copy()
    try:
        _RULES[instruction.opcode](frame, instruction, context)
    except VerifierFailure as e:
        return Transfer(failure=e.failure.with_offset(instruction.offset))
    return Transfer(frame=frame)


def exception_entry_frame(frame_in: Frame, catch_type: Optional[str]) -> Transfer:
    """Synthesized entry frame for a handler reached from an instruction's incoming frame."""
    try:
        return Transfer(frame=frame_in.handler_frame(catch_type))
    except VerifierFailure as e:
        return Transfer(failure=e.failure)
