"""
Tests for the verification-type lattice: merge laws and assignability.
"""

import itertools

import pytest

from bcverify.errors import OracleConflict
from bcverify.structural.vtypes import (
    CONFLICT,
    DOUBLE,
    FLOAT,
    INT,
    LONG,
    NULL,
    OBJECT_TYPE,
    TOP,
    UNSET,
    Kind,
    array_of,
    from_descriptor,
    is_assignable,
    leq,
    merge,
    reference,
    uninitialized,
    uninitialized_this,
)

from builders import animal_oracle


ORACLE = animal_oracle()

DOG = reference("demo/Dog")
CAT = reference("demo/Cat")
ANIMAL = reference("demo/Animal")
PET = reference("demo/Pet")

SAMPLE = [
    UNSET, TOP, CONFLICT, INT, FLOAT, LONG, DOUBLE, NULL, OBJECT_TYPE,
    DOG, CAT, ANIMAL, PET,
    reference("[I"), reference("[Ldemo/Dog;"), reference("[Ldemo/Cat;"),
    uninitialized(3, "demo/Dog"), uninitialized_this("demo/Dog"),
]


class TestMergeLaws:
    """Lattice laws over a sample of types."""

    @pytest.mark.parametrize("a,b", list(itertools.combinations(SAMPLE, 2)))
    def test_commutative(self, a, b):
        assert merge(a, b, ORACLE) == merge(b, a, ORACLE)

    @pytest.mark.parametrize("a", SAMPLE)
    def test_idempotent(self, a):
        assert merge(a, a, ORACLE) == a

    @pytest.mark.parametrize("a", SAMPLE)
    def test_unset_is_identity(self, a):
        assert merge(a, UNSET, ORACLE) == a
        assert merge(UNSET, a, ORACLE) == a


class TestMergeResults:
    def test_distinct_scalars_conflict(self):
        assert merge(INT, FLOAT, ORACLE) == CONFLICT
        assert merge(INT, LONG, ORACLE) == CONFLICT

    def test_scalar_and_reference_conflict(self):
        assert merge(INT, OBJECT_TYPE, ORACLE) == CONFLICT

    def test_null_merges_to_other_reference(self):
        assert merge(NULL, DOG, ORACLE) == DOG

    def test_sibling_classes_merge_to_common_superclass(self):
        assert merge(DOG, CAT, ORACLE) == ANIMAL

    def test_interface_merges_to_object(self):
        assert merge(PET, CAT, ORACLE) == OBJECT_TYPE

    def test_reference_arrays_merge_componentwise(self):
        merged = merge(reference("[Ldemo/Dog;"), reference("[Ldemo/Cat;"), ORACLE)
        assert merged == array_of(ANIMAL)

    def test_primitive_arrays_of_different_kind_merge_to_object(self):
        assert merge(reference("[I"), reference("[J"), ORACLE) == OBJECT_TYPE

    def test_uninitialized_values_do_not_merge(self):
        assert merge(uninitialized(1, "demo/Dog"), uninitialized(5, "demo/Dog"), ORACLE) == CONFLICT

    def test_top_absorbs(self):
        assert merge(TOP, INT, ORACLE) == TOP

    def test_unknown_type_raises_oracle_conflict(self):
        with pytest.raises(OracleConflict):
            merge(DOG, reference("demo/Nowhere"), ORACLE)

    def test_leq(self):
        assert leq(DOG, ANIMAL, ORACLE)
        assert not leq(ANIMAL, DOG, ORACLE)


class TestAssignability:
    def test_subclass_to_superclass(self):
        assert is_assignable(DOG, ANIMAL, ORACLE)
        assert not is_assignable(ANIMAL, DOG, ORACLE)

    def test_null_to_any_reference(self):
        assert is_assignable(NULL, DOG, ORACLE)
        assert is_assignable(NULL, reference("[I"), ORACLE)

    def test_any_reference_to_interface(self):
        assert is_assignable(CAT, PET, ORACLE)

    def test_array_to_object(self):
        assert is_assignable(reference("[I"), OBJECT_TYPE, ORACLE)
        assert not is_assignable(reference("[I"), DOG, ORACLE)

    def test_covariant_reference_arrays(self):
        assert is_assignable(reference("[Ldemo/Dog;"), reference("[Ldemo/Animal;"), ORACLE)
        assert not is_assignable(reference("[I"), reference("[F"), ORACLE)

    def test_scalars_require_same_kind(self):
        assert is_assignable(INT, INT, ORACLE)
        assert not is_assignable(INT, FLOAT, ORACLE)
        assert not is_assignable(TOP, TOP, ORACLE)

    def test_unknown_type(self):
        with pytest.raises(OracleConflict):
            is_assignable(reference("demo/Nowhere"), DOG, ORACLE)


class TestDescriptors:
    def test_from_descriptor(self):
        assert from_descriptor("Z") == INT
        assert from_descriptor("J") == LONG
        assert from_descriptor("Ldemo/Dog;") == DOG
        assert from_descriptor("[[I").kind == Kind.ARRAY

    def test_array_component(self):
        assert reference("[Ldemo/Dog;").component == DOG
        assert reference("[[I").component == reference("[I")

    def test_wide_kinds(self):
        assert LONG.is_wide and DOUBLE.is_wide
        assert not INT.is_wide
