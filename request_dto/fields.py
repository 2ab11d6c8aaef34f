"""
Per-type field descriptor tables.

A schema's annotations are read once, turned into FieldDescriptor entries tagged
with a FieldKind, and cached on the class. The compiler and the binder work
from this table only; neither inspects annotations on its own.
"""

import sys
import types
import typing
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, Optional, Tuple, Type, Union

import structlog

from request_dto.attributes import ArrayValidation, Validation
from request_dto.exceptions import SchemaDefinitionError

logger = structlog.get_logger("request_dto.fields")

# Attribute under which a schema class stores its own descriptor table.
FIELD_TABLE_ATTRIBUTE = "__dto_fields__"

_UNION_TYPES = tuple(
    union for union in (Union, getattr(types, "UnionType", None)) if union is not None
)


class FieldKind(Enum):
    """How a field takes part in rule compilation and binding."""

    SCALAR = "scalar"
    NESTED_SINGLE = "nested_single"
    NESTED_ARRAY = "nested_array"


@dataclass(frozen=True)
class FieldDescriptor:
    """
    One public field of a schema.

    Attributes:
        name: Attribute name, also the key in input data and rule paths
        annotation: Declared type with Annotated metadata stripped
        kind: Tagged variant selecting compile and bind behaviour
        rules: Rule tokens for scalar fields, None when no Validation is attached
        target: Schema type for nested fields, None for scalars
    """

    name: str
    annotation: Any
    kind: FieldKind
    rules: Optional[Tuple[Any, ...]] = None
    target: Optional[Type[Any]] = None

    @property
    def has_rules(self) -> bool:
        return self.rules is not None

    @property
    def is_nested(self) -> bool:
        return self.kind is not FieldKind.SCALAR


def is_schema_type(candidate: Any) -> bool:
    """Whether ``candidate`` is a DataTransferObject subclass."""
    from request_dto.schema import DataTransferObject

    return isinstance(candidate, type) and issubclass(candidate, DataTransferObject)


def reserved_names() -> FrozenSet[str]:
    """Public attribute names of DataTransferObject, unavailable to fields."""
    from request_dto.schema import DataTransferObject

    return frozenset(name for name in dir(DataTransferObject) if not name.startswith('_'))


def unwrap_optional(annotation: Any) -> Any:
    """
    Strip ``None`` from a two-member union.

    ``Optional[AddressDTO]`` and ``AddressDTO | None`` both yield
    ``AddressDTO``; any other annotation is returned unchanged.
    """
    if typing.get_origin(annotation) in _UNION_TYPES:
        members = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
        if len(members) == 1:
            return members[0]
    return annotation


def resolve_target(schema_type: type, target: Any) -> Any:
    """
    Resolve an ArrayValidation target given by name.

    A string names either ``schema_type`` itself or a class defined in the
    module of ``schema_type``; any other target is returned unchanged.
    """
    if not isinstance(target, str):
        return target
    if target == schema_type.__name__:
        return schema_type
    module = sys.modules.get(schema_type.__module__)
    return getattr(module, target, target)


def _split_annotated(annotation: Any) -> Tuple[Any, Tuple[Any, ...]]:
    if typing.get_origin(annotation) is typing.Annotated:
        base, *metadata = typing.get_args(annotation)
        return base, tuple(metadata)
    return annotation, ()


def _first(metadata: Tuple[Any, ...], kind: type) -> Any:
    return next((item for item in metadata if isinstance(item, kind)), None)


def build_descriptor(schema_type: type, name: str, annotation: Any) -> FieldDescriptor:
    """
    Build the descriptor for one annotated attribute.

    Args:
        schema_type: Schema class declaring the attribute (used in errors)
        name: Attribute name
        annotation: Resolved annotation, possibly Annotated[...]

    Returns:
        Tagged field descriptor

    Raises:
        SchemaDefinitionError: The name is reserved by DataTransferObject,
            both metadata kinds are attached, or the ArrayValidation target
            is not a schema type
    """
    if name in reserved_names():
        raise SchemaDefinitionError(
            f"Field '{name}' of {schema_type.__name__} clashes with DataTransferObject.{name}",
            schema=schema_type.__name__,
            field=name
        )

    base, metadata = _split_annotated(annotation)
    validation = _first(metadata, Validation)
    array_validation = _first(metadata, ArrayValidation)

    if validation is not None and array_validation is not None:
        raise SchemaDefinitionError(
            f"Field '{name}' of {schema_type.__name__} cannot carry both Validation and ArrayValidation",
            schema=schema_type.__name__,
            field=name
        )

    if validation is not None:
        return FieldDescriptor(name, base, FieldKind.SCALAR, rules=validation.rules)

    if array_validation is not None:
        target = resolve_target(schema_type, array_validation.target)
        if not is_schema_type(target):
            raise SchemaDefinitionError(
                f"ArrayValidation target of '{name}' in {schema_type.__name__} must be a DataTransferObject subclass",
                schema=schema_type.__name__,
                field=name,
                details={'target': repr(array_validation.target)}
            )
        return FieldDescriptor(name, base, FieldKind.NESTED_ARRAY, target=target)

    declared = unwrap_optional(base)
    if is_schema_type(declared):
        return FieldDescriptor(name, base, FieldKind.NESTED_SINGLE, target=declared)

    return FieldDescriptor(name, base, FieldKind.SCALAR)


def _resolve_annotations(schema_type: type) -> Dict[str, Any]:
    # Self references resolve even when the class is not importable from its module.
    localns = {schema_type.__name__: schema_type}
    return typing.get_type_hints(schema_type, localns=localns, include_extras=True)


def describe_fields(schema_type: type) -> Tuple[FieldDescriptor, ...]:
    """
    Return the public field descriptors of a schema type.

    Public fields are annotated attributes whose name does not start with an
    underscore and whose annotation is not a ClassVar. Annotations inherited
    from schema bases are included; a redeclared field replaces the parent
    declaration. The table is computed on first use and stored on the class.

    Args:
        schema_type: DataTransferObject subclass

    Returns:
        Field descriptors in declaration order
    """
    cached = schema_type.__dict__.get(FIELD_TABLE_ATTRIBUTE)
    if cached is not None:
        return cached

    descriptors = []
    for name, annotation in _resolve_annotations(schema_type).items():
        if name.startswith('_'):
            continue
        if typing.get_origin(annotation) is ClassVar or annotation is ClassVar:
            continue
        descriptors.append(build_descriptor(schema_type, name, annotation))

    table = tuple(descriptors)
    setattr(schema_type, FIELD_TABLE_ATTRIBUTE, table)

    logger.debug(
        "Schema fields described",
        schema=schema_type.__name__,
        fields=[descriptor.name for descriptor in table],
    )
    return table


def field_map(schema_type: type) -> Dict[str, FieldDescriptor]:
    """Descriptors of ``schema_type`` keyed by field name."""
    return {descriptor.name: descriptor for descriptor in describe_fields(schema_type)}
