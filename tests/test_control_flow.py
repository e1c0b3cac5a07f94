"""
Tests for CFG construction: edges, handler ordering, invalid targets and
reachability.
"""

import pytest

from bcverify.cfg import EdgeType, build_cfg, print_cfg
from bcverify.errors import InvalidTarget

from builders import method


def _edges(cfg, offset):
    return [(e.kind, e.target) for e in cfg.successors(offset)]


class TestEdges:
    def test_straight_line(self):
        cfg = build_cfg(method(rows=[("iconst", 1), ("return", "I")]))
        assert _edges(cfg, 0) == [(EdgeType.FALLTHROUGH, 1)]
        assert _edges(cfg, 1) == []
        assert cfg.entry == 0

    def test_conditional_branch_has_both_edges(self):
        cfg = build_cfg(method(rows=[
            ("iconst", 0),
            ("if", 4),
            ("iconst", 1),
            ("return", "I"),
            ("iconst", 2),
            ("return", "I"),
        ]))
        assert _edges(cfg, 1) == [(EdgeType.FALLTHROUGH, 2), (EdgeType.BRANCH, 4)]
        assert cfg.node(4).predecessors == [1]

    def test_goto_does_not_fall_through(self):
        cfg = build_cfg(method(rows=[("goto", 2), ("nop",), ("iconst", 0), ("return", "I")]))
        assert _edges(cfg, 0) == [(EdgeType.BRANCH, 2)]

    def test_switch_targets_default_first(self):
        cfg = build_cfg(method(rows=[
            ("iconst", 0),
            ("switch", 4, [2, 4]),
            ("iconst", 1),
            ("return", "I"),
            ("iconst", 2),
            ("return", "I"),
        ]))
        assert [t for _, t in _edges(cfg, 1)] == [4, 2]

    def test_exception_edges_follow_declaration_order(self):
        m = method(
            rows=[("iconst", 1), ("return", "I"), ("pop",), ("iconst", 0),
                  ("return", "I"), ("pop",), ("iconst", 2), ("return", "I")],
            handlers=[(0, 2, 5, "java/lang/ArithmeticException"), (0, 2, 2, None)],
        )
        cfg = build_cfg(m)
        handlers = [e.target for e in cfg.node(0).exception_successors]
        assert handlers == [5, 2]
        assert cfg.node(0).normal_successors[0].target == 1

    def test_handler_range_end_may_be_code_length(self):
        m = method(rows=[("iconst", 1), ("return", "I")], handlers=[(0, 2, 0, None)])
        cfg = build_cfg(m)
        assert [e.target for e in cfg.node(1).exception_successors] == [0]


class TestInvalidTargets:
    def test_branch_into_nowhere(self):
        with pytest.raises(InvalidTarget) as excinfo:
            build_cfg(method(rows=[("goto", 7), ("iconst", 0), ("return", "I")]))
        assert excinfo.value.offset == 0

    def test_branch_between_instructions(self):
        m = method(rows=[(0, "iconst", 0), (2, "if", 5), (4, "iconst", 1), (6, "return", "I")])
        with pytest.raises(InvalidTarget):
            build_cfg(m)

    def test_falling_off_the_end(self):
        with pytest.raises(InvalidTarget):
            build_cfg(method(rows=[("iconst", 0)]))

    def test_handler_outside_code(self):
        m = method(rows=[("iconst", 0), ("return", "I")], handlers=[(0, 1, 9, None)])
        with pytest.raises(InvalidTarget):
            build_cfg(m)

    def test_empty_handler_range(self):
        m = method(rows=[("iconst", 0), ("return", "I")], handlers=[(1, 1, 0, None)])
        with pytest.raises(InvalidTarget):
            build_cfg(m)

    def test_duplicate_offset(self):
        m = method(rows=[(0, "iconst", 0), (0, "return", "I")])
        with pytest.raises(InvalidTarget):
            build_cfg(m)


class TestReachability:
    def test_unreachable_offsets(self):
        cfg = build_cfg(method(rows=[
            ("iconst", 0), ("return", "I"), ("iconst", 1), ("return", "I"),
        ]))
        assert cfg.reachable() == {0, 1}
        assert cfg.unreachable_offsets() == [2, 3]

    def test_handler_code_is_reachable_through_exception_edges(self):
        m = method(rows=[("iconst", 1), ("return", "I"), ("pop",), ("iconst", 0), ("return", "I")],
                   handlers=[(0, 2, 2, None)])
        assert build_cfg(m).unreachable_offsets() == []

    def test_reverse_postorder_and_back_edges(self):
        cfg = build_cfg(method(rows=[
            ("iconst", 0),
            ("store", "I", 0),
            ("iinc", 0, 1),
            ("goto", 2),
        ]))
        rpo = cfg.reverse_postorder()
        assert rpo[0] == 0
        assert rpo.index(1) < rpo.index(2) < rpo.index(3)
        assert cfg.back_edges() == [(3, 2)]

    def test_print_cfg(self):
        text = print_cfg(build_cfg(method(rows=[("iconst", 0), ("return", "I")])))
        assert "run()I" in text
        assert "fallthrough->1" in text
