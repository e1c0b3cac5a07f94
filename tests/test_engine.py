"""
Tests for the fixed-point data-flow engine.

Covers small reference programs (straight-line OK, incompatible join,
use before construction, invalid branch target, handler frames),
termination on loops, work-set strategies and cancellation.
"""

import pytest

from bcverify.cfg.control_flow import build_cfg
from bcverify.errors import FailureKind, InvalidTarget
from bcverify.structural.engine import (
    EngineConfig,
    EngineStatus,
    Worklist,
    WorklistStrategy,
    visit_bound,
)
from bcverify.structural.frame import Frame
from bcverify.structural.vtypes import INT, reference

from builders import ANIMAL_TYPES, analyze, method, unit


ANIMAL_SYMBOLS = [
    ("class", "demo/Dog"),
    ("method", "run", "demo/Dog", "()V"),
    ("method", "<init>", "java/lang/Object", "()V"),
]


def counting_loop():
    return unit(method(descriptor="(I)I", max_stack=2, max_locals=2, rows=[
        ("iconst", 0),
        ("store", "I", 1),
        ("load", "I", 1),
        ("load", "I", 0),
        ("if_icmp", 7),
        ("iinc", 1, 1),
        ("goto", 2),
        ("load", "I", 1),
        ("return", "I"),
    ]))


def refining_loop():
    """Slot 2 starts as Dog and is joined with Cat around the loop."""
    return unit(
        method(descriptor="(Ldemo/Dog;Ldemo/Cat;)Ldemo/Animal;", max_stack=1, max_locals=3, rows=[
            ("load", "A", 0),
            ("store", "A", 2),
            ("load", "A", 2),
            ("pop",),
            ("load", "A", 1),
            ("store", "A", 2),
            ("iconst", 0),
            ("if", 2),
            ("load", "A", 2),
            ("return", "A"),
        ]),
        types=ANIMAL_TYPES,
    )


class TestReferencePrograms:
    def test_straight_line_int_return(self):
        result = analyze(unit(method(max_stack=1, max_locals=0,
                                     rows=[("iconst", 1), ("return", "I")])))
        assert result.verified
        assert result.frames[1].stack == [INT]

    def test_join_of_int_and_reference_is_unusable(self):
        u = unit(method(descriptor="(I)I", max_stack=1, max_locals=1, rows=[
            ("load", "I", 0),
            ("if", 4),
            ("iconst", 1),
            ("goto", 5),
            ("aconst_null",),
            ("return", "I"),
        ]))
        result = analyze(u)
        assert result.status == EngineStatus.FAILED
        assert result.failure.kind == FailureKind.TYPE_CONSTRAINT_VIOLATION
        assert result.failure.offset == 5

    def test_use_before_constructor(self):
        u = unit(method(descriptor="()V", max_stack=2, max_locals=0, rows=[
            ("new", 0),
            ("dup",),
            ("invokevirtual", 1),
            ("return",),
        ]), symbols=ANIMAL_SYMBOLS, types=ANIMAL_TYPES)
        result = analyze(u)
        assert result.failure.kind == FailureKind.UNINITIALIZED_USE
        assert result.failure.offset == 2

    def test_invalid_branch_target_is_found_before_dataflow(self):
        m = method(rows=[("iconst", 0), ("if", 42), ("iconst", 1), ("return", "I")])
        with pytest.raises(InvalidTarget) as excinfo:
            build_cfg(m)
        assert excinfo.value.failure.kind == FailureKind.INVALID_TARGET
        assert excinfo.value.offset == 1

    def test_handler_frame_has_cleared_stack(self):
        u = unit(method(max_stack=2, max_locals=1, rows=[
            ("iconst", 1),
            ("iconst", 0),
            ("div", "I"),
            ("return", "I"),
            ("store", "A", 0),
            ("iconst", 0),
            ("return", "I"),
        ], handlers=[(0, 4, 4, "java/lang/ArithmeticException")]))
        result = analyze(u)
        assert result.verified
        assert result.frames[4].stack == [reference("java/lang/ArithmeticException")]

    def test_handler_cannot_use_protected_stack_values(self):
        u = unit(method(max_stack=2, max_locals=0, rows=[
            ("iconst", 1),
            ("iconst", 0),
            ("div", "I"),
            ("return", "I"),
            ("return", "I"),
        ], handlers=[(1, 4, 4, None)]))
        result = analyze(u)
        assert result.failure.kind == FailureKind.TYPE_CONSTRAINT_VIOLATION
        assert result.failure.offset == 4


class TestFailures:
    def test_stack_height_conflict_at_join(self):
        u = unit(method(descriptor="(I)I", max_stack=2, max_locals=1, rows=[
            ("load", "I", 0),
            ("if", 3),
            ("iconst", 5),
            ("iconst", 1),
            ("return", "I"),
        ]))
        result = analyze(u)
        assert result.failure.kind == FailureKind.STACK_HEIGHT_CONFLICT
        assert result.failure.offset == 3
        assert "merging from offset" in result.failure.message

    def test_constructor_must_call_super(self):
        ok = unit(method(name="<init>", descriptor="()V", flags=(), max_stack=1, max_locals=1,
                         rows=[("load", "A", 0), ("invokespecial", 2), ("return",)]),
                  symbols=ANIMAL_SYMBOLS, types=ANIMAL_TYPES)
        assert analyze(ok).verified

        missing = unit(method(name="<init>", descriptor="()V", flags=(), max_stack=1,
                              max_locals=1, rows=[("return",)]))
        assert analyze(missing).failure.kind == FailureKind.UNINITIALIZED_USE

    def test_first_failure_aborts_the_run(self):
        u = unit(method(max_stack=1, max_locals=0, rows=[("pop",), ("pop",), ("return", "I")]))
        result = analyze(u)
        assert result.failure.offset == 0
        assert 1 not in result.visits


class TestTermination:
    def test_counting_loop_reaches_fixed_point(self):
        u = counting_loop()
        result = analyze(u)
        assert result.verified
        bound = visit_bound(Frame.entry(u.methods[0], u))
        assert all(count <= bound for count in result.visits.values())

    def test_reference_refinement_around_loop(self):
        result = analyze(refining_loop())
        assert result.verified
        assert result.frames[2].locals[2] == reference("demo/Animal")

    def test_visit_bound_exceeded_is_a_failure(self):
        result = analyze(refining_loop(), config=EngineConfig(max_visits_per_node=1))
        assert result.status == EngineStatus.FAILED
        assert result.failure.kind == FailureKind.ITERATION_LIMIT

    @pytest.mark.parametrize("strategy", list(WorklistStrategy))
    def test_strategies_agree_on_fixed_point(self, strategy):
        baseline = analyze(refining_loop())
        result = analyze(refining_loop(), config=EngineConfig(strategy=strategy))
        assert result.verified
        assert result.frames == baseline.frames


class TestCancellation:
    def test_cancel_before_first_step(self):
        result = analyze(counting_loop(), config=EngineConfig(cancel_check=lambda: True))
        assert result.status == EngineStatus.CANCELLED
        assert result.failure is None
        assert result.iterations == 0

    def test_cancel_midway(self):
        calls = []

        def cancel_after_three():
            calls.append(1)
            return len(calls) > 3

        result = analyze(counting_loop(), config=EngineConfig(cancel_check=cancel_after_three))
        assert result.status == EngineStatus.CANCELLED
        assert result.iterations == 3


class TestWorklist:
    def test_rpo_pops_by_priority(self):
        worklist = Worklist(WorklistStrategy.RPO, {10: 0, 20: 1, 30: 2})
        for offset in (30, 10, 20, 10):
            worklist.add(offset)
        assert len(worklist) == 3
        assert [worklist.pop() for _ in range(3)] == [10, 20, 30]
        assert not worklist

    def test_fifo_and_lifo(self):
        fifo = Worklist(WorklistStrategy.FIFO, {})
        lifo = Worklist(WorklistStrategy.LIFO, {})
        for offset in (1, 2, 3):
            fifo.add(offset)
            lifo.add(offset)
        assert [fifo.pop() for _ in range(3)] == [1, 2, 3]
        assert [lifo.pop() for _ in range(3)] == [3, 2, 1]
