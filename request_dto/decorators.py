"""
View decorator resolving a schema from the current Flask request.

    @app.post("/orders")
    @validate_request(OrderDTO)
    def create_order(order: OrderDTO):
        return jsonify(order.to_dict()), 201

The schema is built through the RequestDTO extension when it is installed,
validated against the request input and injected into the view. A rejected
request raises ValidationFailure before the view runs.
"""

import functools
import inspect
import re
from typing import Any, Callable, Dict, Optional, Type, TypeVar

import structlog
from flask import current_app, g, request
from werkzeug.datastructures import MultiDict

from request_dto.schema import DataTransferObject

logger = structlog.get_logger("request_dto.decorators")

F = TypeVar('F', bound=Callable[..., Any])

DEFAULT_ARGUMENT = "dto"
LIST_SUFFIX = "[]"
BRACKET_KEY = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]+\])+)$")
BRACKET_SEGMENT = re.compile(r"\[([^\[\]]+)\]")


def _multidict_to_dict(values: MultiDict) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for key in values.keys():
        items = values.getlist(key)
        if key.endswith(LIST_SUFFIX):
            data[key[:-len(LIST_SUFFIX)]] = items
        else:
            data[key] = items if len(items) > 1 else items[0]
    return expand_bracket_keys(data)


def _as_sequence(value: Any) -> Any:
    if isinstance(value, dict):
        converted = {key: _as_sequence(item) for key, item in value.items()}
        if converted and all(key.isdigit() for key in converted):
            return [converted[key] for key in sorted(converted, key=int)]
        return converted
    return value


def expand_bracket_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Nest form keys written in bracket notation.

    ``shipping[city]`` becomes ``{'shipping': {'city': ...}}`` and
    ``lines[0][sku]`` becomes ``{'lines': [{'sku': ...}]}``: levels whose
    keys are all digits turn into lists ordered by index. Keys without
    brackets are kept as they are; a bracketed key replaces a plain value
    of the same name.
    """
    expanded: Dict[str, Any] = {}
    nested = set()
    for key, value in data.items():
        match = BRACKET_KEY.match(key)
        if match is None:
            if key not in nested:
                expanded[key] = value
            continue

        segments = [match.group(1)] + BRACKET_SEGMENT.findall(match.group(2))
        nested.add(segments[0])
        node = expanded
        for segment in segments[:-1]:
            if not isinstance(node.get(segment), dict):
                node[segment] = {}
            node = node[segment]
        node[segments[-1]] = value

    for name in nested:
        expanded[name] = _as_sequence(expanded[name])
    return expanded


def request_input() -> Dict[str, Any]:
    """
    Gather the input of the active request.

    Query string, form fields, uploaded files and a JSON object body are
    merged in that order, later sources winning on key clashes. Repeated
    keys and keys ending in ``[]`` become lists, and bracketed keys such as
    ``shipping[city]`` become nested mappings so browser forms can fill
    nested schemas.

    Returns:
        Raw input keyed by field name
    """
    data: Dict[str, Any] = {}
    data.update(_multidict_to_dict(request.args))
    data.update(_multidict_to_dict(request.form))
    data.update(_multidict_to_dict(request.files))

    body = request.get_json(silent=True) if request.is_json else None
    if isinstance(body, dict):
        data.update(body)

    return data


def make_schema(schema_type: Type[DataTransferObject]) -> DataTransferObject:
    """Build a schema instance through the installed extension, if any."""
    extension = current_app.extensions.get('request_dto')
    if extension is not None:
        return extension.make(schema_type)
    return schema_type()


def _injected_parameter(func: Callable[..., Any], schema_type: type) -> Optional[str]:
    for name, parameter in inspect.signature(func).parameters.items():
        annotation = parameter.annotation
        if annotation is schema_type or annotation == schema_type.__name__:
            return name
    return None


def validate_request(schema_type: Type[DataTransferObject], arg_name: Optional[str] = None) -> Callable[[F], F]:
    """
    Decorator validating the request against ``schema_type``.

    The bound schema is passed to the view as the parameter annotated with
    ``schema_type``, or as ``arg_name`` (``dto`` by default), and stored on
    ``g.dto``.

    Args:
        schema_type: DataTransferObject subclass describing the input
        arg_name: Keyword argument receiving the schema

    Returns:
        Decorated view
    """
    def decorator(func: F) -> F:
        target = arg_name or _injected_parameter(func, schema_type) or DEFAULT_ARGUMENT

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            dto = make_schema(schema_type)
            dto.validate_resolved(request_input())

            logger.debug(
                "Request schema resolved",
                schema=schema_type.__name__,
                endpoint=request.endpoint,
                argument=target,
            )
            g.dto = dto
            kwargs[target] = dto
            return func(*args, **kwargs)

        return wrapper
    return decorator
