"""
Rule compilation for schema types.

Walks the descriptor table of a schema and produces the flat rule map the
validation engine consumes:

    class LineDTO(DataTransferObject):
        sku: Annotated[str, Validation("required|string")]

    class OrderDTO(DataTransferObject):
        reference: Annotated[str, Validation("required|min:3")]
        shipping: AddressDTO
        lines: Annotated[list, ArrayValidation(LineDTO)]

    compile_rules(OrderDTO)
    # {'reference': ('required', 'min:3'),
    #  'shipping.city': (...),
    #  'lines.*.sku': ('required', 'string')}

Compilation is a pure function of the type: no instance is created and
nothing is cached between calls.
"""

from types import MappingProxyType
from typing import Any, Dict, Mapping, Tuple

import structlog

from request_dto.exceptions import RuleCompilationError
from request_dto.fields import FieldKind, describe_fields

logger = structlog.get_logger("request_dto.compiler")

PATH_SEPARATOR = "."
WILDCARD = "*"

RuleMap = Mapping[str, Tuple[Any, ...]]


def prefix_rules(rules: Mapping[str, Tuple[Any, ...]], prefix: str) -> Dict[str, Tuple[Any, ...]]:
    """
    Re-key a child rule map under ``prefix``.

    Args:
        rules: Rule map compiled for a nested schema
        prefix: Path of the field holding the nested schema, e.g. ``lines.*``

    Returns:
        New rule map with every path prefixed; trailing separators are trimmed
    """
    return {
        f"{prefix}{PATH_SEPARATOR}{path}".rstrip(PATH_SEPARATOR): field_rules
        for path, field_rules in rules.items()
    }


def _merge(target: Dict[str, Tuple[Any, ...]], rules: Mapping[str, Tuple[Any, ...]], schema_type: type) -> None:
    for path, field_rules in rules.items():
        if path in target:
            raise RuleCompilationError(
                f"Rule path '{path}' is produced twice while compiling {schema_type.__name__}",
                path=path
            )
        target[path] = field_rules


def _compile(schema_type: type, lineage: Tuple[type, ...]) -> Dict[str, Tuple[Any, ...]]:
    if schema_type in lineage:
        chain = " -> ".join(item.__name__ for item in lineage + (schema_type,))
        raise RuleCompilationError(
            f"Schema {schema_type.__name__} references itself ({chain}); its rules cannot be flattened",
            details={'chain': chain}
        )

    lineage = lineage + (schema_type,)
    compiled: Dict[str, Tuple[Any, ...]] = {}

    for field in describe_fields(schema_type):
        if field.kind is FieldKind.SCALAR:
            if field.has_rules:
                _merge(compiled, {field.name: tuple(field.rules)}, schema_type)
        elif field.kind is FieldKind.NESTED_ARRAY:
            child_rules = _compile(field.target, lineage)
            _merge(compiled, prefix_rules(child_rules, f"{field.name}{PATH_SEPARATOR}{WILDCARD}"), schema_type)
        elif field.kind is FieldKind.NESTED_SINGLE:
            child_rules = _compile(field.target, lineage)
            _merge(compiled, prefix_rules(child_rules, field.name), schema_type)

    return compiled


def compile_rules(schema_type: type) -> RuleMap:
    """
    Compile the flat rule map of a schema type.

    Scalar fields with a Validation contribute ``{name: rules}``; nested
    fields contribute their target's rules under ``name.`` (single) or
    ``name.*.`` (collection); fields without metadata contribute nothing.

    Args:
        schema_type: DataTransferObject subclass

    Returns:
        Read-only mapping of dotted path to rule tokens

    Raises:
        RuleCompilationError: A path is produced twice or the schema
            references itself
    """
    compiled = _compile(schema_type, ())
    logger.debug(
        "Rules compiled",
        schema=schema_type.__name__,
        paths=len(compiled),
    )
    return MappingProxyType(compiled)
