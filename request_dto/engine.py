"""
Validation engine interface and its marshmallow implementation.

The schema layer only depends on ValidationEngine.validate(raw_input, rules)
returning a ValidationResult. MarshmallowValidationEngine is the default
implementation: it turns a rule map into a marshmallow schema on every call
and reports errors keyed by dotted path.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import structlog
from marshmallow import EXCLUDE, Schema, ValidationError, fields

from request_dto.compiler import PATH_SEPARATOR, WILDCARD
from request_dto.exceptions import UnsupportedRuleError
from request_dto.rules import RuleSet, parse_rule

logger = structlog.get_logger("request_dto.engine")

SCHEMA_ERROR_KEY = "_schema"


@dataclass(frozen=True)
class ValidationResult:
    """
    Outcome of validating raw input against a rule map.

    Attributes:
        ok: Whether every rule passed
        validated_data: Data restricted to ruled keys, possibly coerced
        errors: Error messages keyed by dotted path
    """

    ok: bool
    validated_data: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return not self.ok

    @classmethod
    def passed(cls, validated_data: Mapping[str, Any]) -> "ValidationResult":
        return cls(ok=True, validated_data=dict(validated_data))

    @classmethod
    def rejected(cls, errors: Mapping[str, Sequence[str]]) -> "ValidationResult":
        return cls(ok=False, errors={path: list(messages) for path, messages in errors.items()})


class ValidationEngine(ABC):
    """Validates raw input against a compiled rule map."""

    @abstractmethod
    def validate(self, raw_input: Mapping[str, Any], rules: Mapping[str, Sequence[Any]]) -> ValidationResult:
        """
        Validate ``raw_input`` against ``rules``.

        Args:
            raw_input: Untrusted input keyed by field name
            rules: Rule map produced by the compiler

        Returns:
            Validation result carrying validated data or errors
        """


class RuleNode:
    """One segment of the path tree built from a rule map."""

    __slots__ = ('rules', 'children')

    def __init__(self) -> None:
        self.rules: Sequence[Any] = ()
        self.children: Dict[str, "RuleNode"] = {}


def build_rule_tree(rules: Mapping[str, Sequence[Any]]) -> RuleNode:
    """Arrange dotted rule paths into a tree of RuleNode."""
    root = RuleNode()
    for path, path_rules in rules.items():
        node = root
        for segment in path.split(PATH_SEPARATOR):
            node = node.children.setdefault(segment, RuleNode())
        node.rules = tuple(path_rules)
    return root


def _join(prefix: str, segment: str) -> str:
    return f"{prefix}{PATH_SEPARATOR}{segment}" if prefix else segment


def flatten_errors(messages: Any, prefix: str = "") -> Dict[str, List[str]]:
    """
    Flatten marshmallow error messages into dotted paths.

    ``{'lines': {0: {'sku': ['...']}}}`` becomes ``{'lines.0.sku': ['...']}``;
    ``_schema`` entries are reported on their parent path.
    """
    flat: Dict[str, List[str]] = {}

    def add(path: str, message: Any) -> None:
        flat.setdefault(path or SCHEMA_ERROR_KEY, []).append(str(message))

    if isinstance(messages, Mapping):
        for key, value in messages.items():
            path = prefix if key == SCHEMA_ERROR_KEY else _join(prefix, str(key))
            for nested_path, nested_messages in flatten_errors(value, path).items():
                flat.setdefault(nested_path, []).extend(nested_messages)
    elif isinstance(messages, (list, tuple)):
        for item in messages:
            if isinstance(item, (Mapping, list, tuple)):
                for nested_path, nested_messages in flatten_errors(item, prefix).items():
                    flat.setdefault(nested_path, []).extend(nested_messages)
            else:
                add(prefix, item)
    else:
        add(prefix, messages)

    return flat


def _requires_input(node: RuleNode) -> bool:
    if any(parse_rule(token)[0] == 'required' for token in node.rules if isinstance(token, str)):
        return True
    return any(_requires_input(child) for name, child in node.children.items() if name != WILDCARD)


def fill_required_containers(data: Mapping[str, Any], node: RuleNode) -> Mapping[str, Any]:
    """
    Add an empty mapping for absent nested objects that hold required keys.

    Without it a missing ``shipping`` object would hide the failure of a
    required ``shipping.city``; with it the error is reported on the leaf.
    """
    if not isinstance(data, Mapping):
        return data

    filled = dict(data)
    for name, child in node.children.items():
        if name == WILDCARD or not child.children or WILDCARD in child.children:
            continue
        if name not in filled and _requires_input(child):
            filled[name] = {}
        if isinstance(filled.get(name), Mapping):
            filled[name] = fill_required_containers(filled[name], child)
    return filled


class MarshmallowValidationEngine(ValidationEngine):
    """
    Validation engine backed by marshmallow.

    Wildcard segments (``lines.*.sku``) become ``fields.List`` of the element
    field, named segments (``shipping.city``) become ``fields.Nested``
    schemas, and leaves are typed from their rule set. Unknown keys are
    excluded at every level so validated data only carries ruled keys.
    """

    def build_field(self, node: RuleNode, path: str) -> fields.Field:
        rule_set = RuleSet(node.rules, path)

        if WILDCARD in node.children:
            if len(node.children) > 1:
                raise UnsupportedRuleError(
                    f"Path '{path}' mixes wildcard and named children",
                    path=path
                )
            inner = self.build_field(node.children[WILDCARD], _join(path, WILDCARD))
            return fields.List(inner, **rule_set.field_options())

        if node.children:
            schema = self.build_schema_from_nodes(node.children, path)
            return fields.Nested(schema, **rule_set.field_options())

        return rule_set.make_field()

    def build_schema_from_nodes(self, children: Mapping[str, RuleNode], path: str = "") -> Schema:
        declared = {
            name: self.build_field(child, _join(path, name))
            for name, child in children.items()
        }
        schema_class = Schema.from_dict(declared, name=f"RuleSchema[{path or 'root'}]")
        return schema_class(unknown=EXCLUDE)

    def build_schema(self, rules: Mapping[str, Sequence[Any]]) -> Schema:
        """
        Build the marshmallow schema for a rule map.

        Raises:
            UnsupportedRuleError: A rule token is not understood
        """
        return self.build_schema_from_nodes(build_rule_tree(rules).children)

    def validate(self, raw_input: Mapping[str, Any], rules: Mapping[str, Sequence[Any]]) -> ValidationResult:
        start_time = time.perf_counter()
        tree = build_rule_tree(rules)
        schema = self.build_schema_from_nodes(tree.children)

        try:
            validated = schema.load(fill_required_containers(raw_input, tree))
        except ValidationError as exc:
            errors = flatten_errors(exc.messages)
            logger.debug(
                "Input rejected",
                failed_paths=sorted(errors),
                duration=time.perf_counter() - start_time,
            )
            return ValidationResult.rejected(errors)

        logger.debug(
            "Input validated",
            keys=sorted(validated),
            duration=time.perf_counter() - start_time,
        )
        return ValidationResult.passed(validated)


def default_engine() -> ValidationEngine:
    return MarshmallowValidationEngine()


def ensure_engine(engine: Optional[ValidationEngine]) -> ValidationEngine:
    """Return ``engine`` or a fresh default engine when it is None."""
    return engine if engine is not None else default_engine()
