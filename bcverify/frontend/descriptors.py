"""
Field and method descriptor parsing.

Descriptors use the class-file grammar:

    FieldType  := B | C | D | F | I | J | S | Z | L<name>; | [FieldType
    MethodDesc := ( FieldType* ) ( FieldType | V )

Class names use '/' as the package separator (java/lang/Object).
"""

from typing import List, Optional, Tuple


PRIMITIVE_CODES = "BCDFIJSZ"
MAX_ARRAY_DIMENSIONS = 255


def _parse_field_at(desc: str, pos: int) -> Tuple[str, int]:
    """Parse one field type starting at pos; return (field_type, next_pos)."""
    start = pos
    dims = 0
    while pos < len(desc) and desc[pos] == '[':
        dims += 1
        pos += 1
    if dims > MAX_ARRAY_DIMENSIONS:
        raise ValueError(f"too many array dimensions in {desc!r}")
    if pos >= len(desc):
        raise ValueError(f"truncated descriptor {desc!r}")
    code = desc[pos]
    if code in PRIMITIVE_CODES:
        return desc[start:pos + 1], pos + 1
    if code == 'L':
        end = desc.find(';', pos)
        if end == -1 or end == pos + 1:
            raise ValueError(f"malformed class type in {desc!r}")
        name = desc[pos + 1:end]
        if '.' in name or '[' in name:
            raise ValueError(f"illegal class name {name!r} in {desc!r}")
        return desc[start:end + 1], end + 1
    raise ValueError(f"unexpected character {code!r} in descriptor {desc!r}")


def parse_field_descriptor(desc: str) -> str:
    """Validate a field descriptor and return it unchanged."""
    field_type, end = _parse_field_at(desc, 0)
    if end != len(desc):
        raise ValueError(f"trailing characters in field descriptor {desc!r}")
    return field_type


def parse_method_descriptor(desc: str) -> Tuple[List[str], Optional[str]]:
    """
    Parse a method descriptor.

    Returns:
        (parameter field types, return field type or None for void)
    """
    if not desc.startswith('('):
        raise ValueError(f"method descriptor must start with '(': {desc!r}")
    pos = 1
    params = []
    while pos < len(desc) and desc[pos] != ')':
        field_type, pos = _parse_field_at(desc, pos)
        params.append(field_type)
    if pos >= len(desc):
        raise ValueError(f"unterminated parameter list in {desc!r}")
    pos += 1
    if desc[pos:] == 'V':
        return params, None
    return params, parse_field_descriptor(desc[pos:])
