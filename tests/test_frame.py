"""
Tests for Frame: stack bounds, slot access widths, entry frames and merge.
"""

import pytest

from bcverify.errors import (
    IllegalLocalAccess,
    SlotTypeMismatch,
    StackHeightConflict,
    StackOverflow,
    StackUnderflow,
    TypeConstraintViolation,
)
from bcverify.structural.frame import Frame
from bcverify.structural.vtypes import (
    CONFLICT,
    INT,
    LONG,
    NULL,
    THROWABLE_TYPE,
    TOP,
    UNSET,
    Kind,
    reference,
)

from builders import animal_oracle, method, unit


ORACLE = animal_oracle()


class TestStack:
    def test_push_pop(self):
        frame = Frame.empty(2, 0)
        frame.push(INT)
        frame.push(LONG)
        assert frame.depth == 2
        assert frame.pop() == LONG
        assert frame.pop() == INT

    def test_overflow(self):
        frame = Frame.empty(1, 0)
        frame.push(INT)
        with pytest.raises(StackOverflow):
            frame.push(INT)

    def test_wide_value_takes_one_unit(self):
        frame = Frame.empty(1, 0)
        frame.push(LONG)
        assert frame.depth == 1

    def test_underflow(self):
        with pytest.raises(StackUnderflow):
            Frame.empty(1, 0).pop()
        with pytest.raises(StackUnderflow):
            Frame.empty(1, 0).peek()

    def test_conflict_cannot_be_pushed(self):
        with pytest.raises(TypeConstraintViolation):
            Frame.empty(1, 0).push(CONFLICT)


class TestLocals:
    def test_store_and_load(self):
        frame = Frame.empty(0, 2)
        frame.store(1, INT)
        assert frame.load(1, wide=False) == INT

    def test_out_of_range(self):
        frame = Frame.empty(0, 2)
        with pytest.raises(IllegalLocalAccess):
            frame.store(2, INT)
        with pytest.raises(IllegalLocalAccess):
            frame.load(-1, wide=False)

    def test_unset_slot_read(self):
        with pytest.raises(IllegalLocalAccess):
            Frame.empty(0, 1).load(0, wide=False)

    def test_split_access_of_wide_value(self):
        frame = Frame.empty(0, 2)
        frame.store(0, LONG)
        with pytest.raises(SlotTypeMismatch):
            frame.load(0, wide=False)
        with pytest.raises(SlotTypeMismatch):
            frame.store(1, INT, wide=True)

    def test_top_slot_is_unusable(self):
        frame = Frame.empty(0, 1)
        frame.store(0, TOP)
        with pytest.raises(TypeConstraintViolation):
            frame.load(0, wide=False)


class TestEntryFrame:
    def test_static_method_parameters(self):
        m = method(descriptor="(IJLdemo/Dog;)V", max_locals=4)
        frame = Frame.entry(m, unit(m))
        assert frame.locals[:3] == [INT, LONG, reference("demo/Dog")]
        assert frame.locals[3] == UNSET
        assert frame.depth == 0

    def test_instance_method_receives_this(self):
        m = method(descriptor="()V", flags=(), max_locals=1)
        frame = Frame.entry(m, unit(m))
        assert frame.locals[0] == reference("demo/Sample")
        assert not frame.this_uninitialized

    def test_constructor_this_is_uninitialized(self):
        m = method(name="<init>", descriptor="()V", flags=(), max_locals=1)
        frame = Frame.entry(m, unit(m))
        assert frame.locals[0].kind == Kind.UNINITIALIZED_THIS
        assert frame.this_uninitialized

    def test_parameters_exceeding_max_locals(self):
        m = method(descriptor="(II)V", max_locals=1)
        with pytest.raises(IllegalLocalAccess):
            Frame.entry(m, unit(m))


class TestFrameMerge:
    def _frame(self, stack=(), locals_=()):
        return Frame(max_stack=4, stack=list(stack), locals=list(locals_))

    def test_merge_references(self):
        a = self._frame([reference("demo/Dog")], [NULL])
        b = self._frame([reference("demo/Cat")], [reference("demo/Cat")])
        merged = a.merge(b, ORACLE)
        assert merged.stack == [reference("demo/Animal")]
        assert merged.locals == [reference("demo/Cat")]

    def test_conflict_degrades_to_top(self):
        merged = self._frame([INT], [INT]).merge(self._frame([NULL], [LONG]), ORACLE)
        assert merged.stack == [TOP]
        assert merged.locals == [TOP]

    def test_stack_height_conflict(self):
        with pytest.raises(StackHeightConflict):
            self._frame([INT]).merge(self._frame([]), ORACLE)

    def test_merge_does_not_mutate_inputs(self):
        a = self._frame([INT])
        a.merge(self._frame([INT]), ORACLE)
        assert a.stack == [INT]


class TestHandlerFrame:
    def test_stack_is_cleared_and_exception_pushed(self):
        frame = self._frame_with_stack()
        handler = frame.handler_frame("java/lang/ArithmeticException")
        assert handler.stack == [reference("java/lang/ArithmeticException")]
        assert handler.locals == frame.locals
        assert frame.depth == 2

    def test_catch_any_pushes_throwable(self):
        assert self._frame_with_stack().handler_frame(None).stack == [THROWABLE_TYPE]

    def test_zero_max_stack_overflows(self):
        with pytest.raises(StackOverflow):
            Frame.empty(0, 0).handler_frame(None)

    def _frame_with_stack(self):
        frame = Frame.empty(2, 1)
        frame.store(0, INT)
        frame.push(INT)
        frame.push(INT)
        return frame
