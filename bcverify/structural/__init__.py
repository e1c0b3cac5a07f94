"""
Structural (data-flow) verification: type lattice, frames, instruction
effects and the fixed-point engine.
"""
