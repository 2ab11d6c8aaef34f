"""
Binding of validated data onto schema instances.

The binder assumes its input already passed the compiled rules. It walks the
data and the schema's descriptor table in lockstep, assigns scalar values as
they are and builds fresh child instances for nested fields through a
SchemaFactory. Children are created with revalidation disabled since their
data was validated as part of the parent payload.
"""

from typing import Any, Callable, Dict, Mapping, Optional

import structlog

from request_dto.fields import FieldDescriptor, FieldKind, field_map

logger = structlog.get_logger("request_dto.binder")

SchemaBuilder = Callable[..., Any]


class SchemaFactory:
    """
    Builds schema instances for the binder.

    By default a schema type is constructed directly, handing the factory
    down so grandchildren are built the same way. ``register`` replaces the
    construction of a single type, for schemas that need collaborators.

    Example:
        factory = SchemaFactory()
        factory.register(InvoiceDTO, lambda revalidate: InvoiceDTO(revalidate, factory=factory, clock=clock))
    """

    def __init__(self, builders: Optional[Mapping[type, SchemaBuilder]] = None) -> None:
        self._builders: Dict[type, SchemaBuilder] = dict(builders or {})

    def register(self, schema_type: type, builder: SchemaBuilder) -> None:
        self._builders[schema_type] = builder

    def unregister(self, schema_type: type) -> None:
        self._builders.pop(schema_type, None)

    def __contains__(self, schema_type: type) -> bool:
        return schema_type in self._builders

    def __call__(self, schema_type: type, revalidate: bool = False) -> Any:
        builder = self._builders.get(schema_type)
        if builder is not None:
            return builder(revalidate=revalidate)
        return schema_type(revalidate=revalidate, factory=self)


def _build_child(target: type, data: Mapping[str, Any], factory: SchemaFactory) -> Any:
    child = factory(target, revalidate=False)
    bind(child, data, factory)
    return child


def _bind_collection(field: FieldDescriptor, value: Any, factory: SchemaFactory) -> Any:
    def build(element: Any) -> Any:
        if isinstance(element, field.target):
            return element
        if not isinstance(element, Mapping):
            raise TypeError(
                f"Elements of '{field.name}' must be mappings to bind into "
                f"{field.target.__name__}, got {type(element).__name__}"
            )
        return _build_child(field.target, element, factory)

    if isinstance(value, Mapping):
        return {key: build(element) for key, element in value.items()}
    return [build(element) for element in value]


def resolve_value(field: FieldDescriptor, value: Any, factory: SchemaFactory) -> Any:
    """
    Turn one validated value into the value assigned to ``field``.

    Args:
        field: Descriptor of the receiving field
        value: Validated value taken from the bound data
        factory: Factory for child instances

    Returns:
        The value itself, a bound child instance, or a collection of them
    """
    if field.kind is FieldKind.NESTED_ARRAY and isinstance(value, (list, tuple, Mapping)):
        return _bind_collection(field, value, factory)

    if field.kind is FieldKind.NESTED_SINGLE and isinstance(value, Mapping):
        return _build_child(field.target, value, factory)

    return value


def bind(instance: Any, data: Mapping[str, Any], factory: Optional[SchemaFactory] = None) -> None:
    """
    Bind validated data onto a schema instance.

    Keys naming a field of the schema are resolved and assigned; other keys
    are ignored. Every value is resolved before any assignment, so an error
    raised while building a child leaves ``instance`` untouched. Afterwards
    the instance snapshot holds exactly the assigned values.

    Args:
        instance: DataTransferObject instance to populate
        data: Validated data keyed by field name
        factory: Factory for nested instances (a default one when omitted)
    """
    factory = factory or SchemaFactory()
    fields = field_map(type(instance))

    resolved: Dict[str, Any] = {}
    for key, value in data.items():
        field = fields.get(key)
        if field is None:
            logger.debug("Ignoring unknown input key", schema=type(instance).__name__, key=key)
            continue
        resolved[key] = resolve_value(field, value, factory)

    for key, value in resolved.items():
        setattr(instance, key, value)
    instance._data = resolved
