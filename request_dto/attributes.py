"""
Field metadata attached to schema attributes through typing.Annotated.

    class AddressDTO(DataTransferObject):
        city: Annotated[str, Validation("required|string|max:120")]

    class OrderDTO(DataTransferObject):
        lines: Annotated[list, ArrayValidation(OrderLineDTO)]
"""

from dataclasses import dataclass
from typing import Any, Iterable, Tuple, Type, Union

RULE_DELIMITER = "|"


def normalize_rules(rules: Iterable[Any]) -> Tuple[Any, ...]:
    """
    Normalize rule arguments to an ordered tuple of tokens.

    A single pipe-delimited string is split, a single list or tuple is taken
    as the already split form and anything else is kept token by token.

    Args:
        rules: Positional arguments given to Validation

    Returns:
        Ordered tuple of rule tokens
    """
    rules = tuple(rules)
    if len(rules) == 1:
        only = rules[0]
        if isinstance(only, str):
            return tuple(token for token in only.split(RULE_DELIMITER) if token)
        if isinstance(only, (list, tuple)):
            return tuple(only)
    return rules


@dataclass(frozen=True, init=False)
class Validation:
    """Rule tokens for a scalar field."""

    rules: Tuple[Any, ...]

    def __init__(self, *rules: Any) -> None:
        object.__setattr__(self, 'rules', normalize_rules(rules))

    def get_rules(self) -> Tuple[Any, ...]:
        return self.rules


@dataclass(frozen=True)
class ArrayValidation:
    """
    Marks a list field whose elements are each bound against ``target``.

    A plain ``list`` annotation cannot say which schema its elements follow,
    so the target schema type is carried here instead. The target may also be
    given by class name, for a schema class defined further down the same
    module.
    """

    target: Union[Type[Any], str]

    def get_target(self) -> Union[Type[Any], str]:
        return self.target
