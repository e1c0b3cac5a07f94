"""
Frontend: load unit descriptors (JSON documents) into ClassUnit objects.

A unit descriptor looks like:

    {
      "name": "demo/Point",
      "super": "java/lang/Object",
      "interfaces": [],
      "flags": [],
      "types": {"demo/Shape": {"super": "java/lang/Object", "interface": true}},
      "symbols": [
        {"kind": "class", "name": "demo/Point"},
        {"kind": "method", "owner": "java/lang/Object", "name": "<init>", "descriptor": "()V"}
      ],
      "fields": [{"name": "x", "descriptor": "I"}],
      "methods": [
        {"name": "<init>", "descriptor": "()V", "max_stack": 1, "max_locals": 1,
         "code": [[0, "load", "A", 0], [1, "invokespecial", 1], [2, "return"]],
         "handlers": []}
      ]
    }

Instruction rows are [offset, opcode, operand...]; handler rows are
[start, end, handler, catch_type_or_null].
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..errors import LoadError
from .unit import (
    ClassUnit,
    ExceptionHandlerEntry,
    FieldInfo,
    Instruction,
    Method,
    Opcode,
    OBJECT,
    SymbolEntry,
    TypeInfo,
)


logger = logging.getLogger(__name__)

UNIT_SUFFIXES = ('.json', '.class')


def canonical_unit_name(arg: str) -> str:
    """
    Normalize a command-line unit argument to its canonical dotted form.

    Strips a trailing file-type suffix and turns path separators into dots:
    "demo/Point.class" -> "demo.Point".
    """
    for suffix in UNIT_SUFFIXES:
        if arg.endswith(suffix):
            arg = arg[:-len(suffix)]
            break
    return arg.replace('/', '.').replace('\\', '.')


def unit_path(search_path: Path, name: str) -> Path:
    """Location of the descriptor for a canonical unit name under search_path."""
    return search_path / (name.replace('.', '/') + '.json')


def _operand(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_operand(v) for v in value)
    return value


def _parse_instruction(row: Any) -> Instruction:
    if not isinstance(row, list) or len(row) < 2:
        raise LoadError(f"malformed instruction row {row!r}")
    offset, opname = row[0], row[1]
    if not isinstance(offset, int) or offset < 0:
        raise LoadError(f"invalid instruction offset {offset!r}")
    try:
        opcode = Opcode[str(opname).upper()]
    except KeyError:
        raise LoadError(f"unknown opcode {opname!r} at offset {offset}") from None
    return Instruction(offset, opcode, tuple(_operand(v) for v in row[2:]))


def _parse_handler(row: Any) -> ExceptionHandlerEntry:
    if not isinstance(row, list) or len(row) != 4:
        raise LoadError(f"malformed handler row {row!r}")
    start, end, handler, catch_type = row
    if not all(isinstance(v, int) for v in (start, end, handler)):
        raise LoadError(f"handler offsets must be integers: {row!r}")
    return ExceptionHandlerEntry(start, end, handler, catch_type)


def _expect_dict(value: Any, what: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise LoadError(f"{what} must be an object, got {value!r}")
    return value


def _parse_method(doc: Any) -> Method:
    doc = _expect_dict(doc, "method entry")
    try:
        name, descriptor = doc["name"], doc["descriptor"]
        if not isinstance(name, str) or not isinstance(descriptor, str):
            raise LoadError(f"method name and descriptor must be strings: {doc!r}")
        return Method(
            name=name,
            descriptor=descriptor,
            flags=frozenset(doc.get("flags", ())),
            max_stack=int(doc.get("max_stack", 0)),
            max_locals=int(doc.get("max_locals", 0)),
            code=[_parse_instruction(row) for row in doc.get("code", [])],
            handlers=[_parse_handler(row) for row in doc.get("handlers", [])],
        )
    except KeyError as e:
        raise LoadError(f"method entry missing key {e}") from None
    except (TypeError, ValueError) as e:
        raise LoadError(f"malformed method entry: {e}") from None


def _parse_type_info(name: str, doc: Any) -> TypeInfo:
    doc = _expect_dict(doc, f"type entry '{name}'")
    try:
        return TypeInfo(
            name=name,
            super_name=doc.get("super", OBJECT if name != OBJECT else None),
            interfaces=tuple(doc.get("interfaces", ())),
            is_interface=bool(doc.get("interface", False)),
        )
    except TypeError as e:
        raise LoadError(f"malformed type entry '{name}': {e}") from None


def unit_from_dict(doc: Dict[str, Any]) -> ClassUnit:
    """Build a ClassUnit from an already-decoded descriptor document."""
    if not isinstance(doc, dict) or not isinstance(doc.get("name"), str):
        raise LoadError("unit descriptor must be an object with a 'name'")
    try:
        symbols = [
            SymbolEntry(
                kind=s["kind"],
                name=s.get("name"),
                owner=s.get("owner"),
                descriptor=s.get("descriptor"),
            )
            for s in (_expect_dict(s, "symbol entry") for s in doc.get("symbols", []))
        ]
        fields = [
            FieldInfo(f["name"], f["descriptor"], frozenset(f.get("flags", ())))
            for f in (_expect_dict(f, "field entry") for f in doc.get("fields", []))
        ]
        super_name = doc.get("super", OBJECT)
        if doc["name"] == OBJECT:
            super_name = None
        methods = [_parse_method(m) for m in doc.get("methods", [])]
        types = _expect_dict(doc.get("types", {}), "'types'")
        return ClassUnit(
            name=doc["name"],
            super_name=super_name,
            interfaces=tuple(doc.get("interfaces", ())),
            flags=frozenset(doc.get("flags", ())),
            symbols=symbols,
            fields=fields,
            methods=methods,
            types={name: _parse_type_info(name, info) for name, info in types.items()},
        )
    except KeyError as e:
        raise LoadError(f"malformed symbol or field entry: missing key {e}") from None
    except (TypeError, ValueError) as e:
        raise LoadError(f"malformed unit descriptor: {e}") from None


def load_unit_file(filepath: Union[str, Path]) -> ClassUnit:
    """
    Load a unit descriptor file.

    Raises:
        LoadError: the file is missing, is not UTF-8 JSON, or is malformed
    """
    filepath = Path(filepath)
    try:
        with open(filepath, 'r', encoding='utf-8') as f:
            doc = json.load(f)
    except OSError as e:
        raise LoadError(f"cannot read {filepath}: {e.strerror}") from e
    except json.JSONDecodeError as e:
        raise LoadError(f"{filepath} is not valid JSON: {e}") from e
    except UnicodeDecodeError as e:
        raise LoadError(f"{filepath} is not UTF-8 text: {e.reason}") from e
    unit = unit_from_dict(doc)
    logger.debug("Loaded unit %s with %d methods from %s",
                 unit.name, len(unit.methods), filepath)
    return unit


class DirectoryLoader:
    """Resolves canonical unit names to descriptor files under a search path."""

    def __init__(self, search_path: Union[str, Path] = "."):
        self.search_path = Path(search_path)

    def __call__(self, name: str) -> ClassUnit:
        path = unit_path(self.search_path, name)
        if not path.exists():
            raise LoadError(f"unit '{name}' not found ({path})")
        unit = load_unit_file(path)
        expected = name.replace('.', '/')
        if unit.name.replace('.', '/') != expected:
            raise LoadError(
                f"descriptor {path} declares unit '{unit.name}', expected '{expected}'"
            )
        return unit


class InMemoryLoader:
    """Loader over units that are already in memory (used by tests and embedders)."""

    def __init__(self, units: Optional[List[ClassUnit]] = None):
        self._units: Dict[str, ClassUnit] = {}
        for unit in units or ():
            self.add(unit)

    def add(self, unit: ClassUnit) -> None:
        self._units[canonical_unit_name(unit.name)] = unit

    def __call__(self, name: str) -> ClassUnit:
        unit = self._units.get(canonical_unit_name(name))
        if unit is None:
            raise LoadError(f"unit '{name}' not found")
        return unit
