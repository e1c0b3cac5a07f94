"""Z3 models used by the verifier (type hierarchy oracle)."""

from .hierarchy import ClassHierarchyOracle, TypeOracle

__all__ = ['ClassHierarchyOracle', 'TypeOracle']
