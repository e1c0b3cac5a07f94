"""
bcverify: static structural verifier for stack-machine bytecode units

Proves, without executing anything, that a method body cannot underflow
or overflow its operand stack, use a value as the wrong type, jump into
the middle of nowhere, or touch an object before its constructor ran.

Verification is split into four gated passes (see bcverify.passes); the
core is pass 3b, a fixed-point abstract interpretation over the method's
control-flow graph (see bcverify.structural).
"""

__version__ = "0.1.0"
