"""
Rule vocabulary of the marshmallow validation engine.

Translates pipe-style rule tokens into marshmallow field classes and
validators. A token is ``name`` or ``name:arguments``:

    required | nullable | sometimes | bail
    string | integer | numeric | boolean | array | date
    email | url | uuid | alpha | alpha_num | alpha_dash
    min:n | max:n | between:a,b | size:n
    in:a,b,... | not_in:a,b,...
    regex:/pattern/flags

Callables and marshmallow validators may be used as tokens directly.
"""

import re
import uuid
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import structlog
from email_validator import EmailNotValidError, validate_email
from marshmallow import ValidationError, fields, validate

from request_dto.exceptions import UnsupportedRuleError

logger = structlog.get_logger("request_dto.rules")

PRESENCE_RULES = {'required', 'nullable', 'sometimes', 'bail'}
TYPE_RULES = {'string', 'integer', 'numeric', 'boolean', 'array', 'date'}
SIZE_RULES = {'min', 'max', 'between', 'size'}
NUMERIC_TYPES = {'integer', 'numeric'}

REGEX_FLAGS = {
    'i': re.IGNORECASE,
    'm': re.MULTILINE,
    's': re.DOTALL,
    'x': re.VERBOSE,
    'u': 0,
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _format_bound(bound: float) -> str:
    return str(int(bound)) if float(bound).is_integer() else str(bound)


# ============================================================================
# FIELDS
# ============================================================================

class Numeric(fields.Float):
    """Float field that keeps integers as integers."""

    def _format_num(self, value: Any) -> Any:
        if _is_number(value):
            return value
        text = str(value).strip()
        try:
            return int(text)
        except ValueError:
            return float(text)


class ArrayField(fields.Raw):
    """Accepts lists and mappings untouched."""

    default_error_messages = {'invalid': 'Not a valid array.'}

    def _deserialize(self, value: Any, attr: Optional[str], data: Optional[Mapping[str, Any]], **kwargs) -> Any:
        if not isinstance(value, (list, tuple, Mapping)):
            raise self.make_error('invalid')
        return value


TYPE_FIELDS = {
    'string': fields.String,
    'integer': fields.Integer,
    'numeric': Numeric,
    'boolean': fields.Boolean,
    'array': ArrayField,
    'date': fields.Date,
}


# ============================================================================
# VALIDATORS
# ============================================================================

class Filled(validate.Validator):
    """Rejects blank strings and empty collections."""

    error = "The field is required."

    def __call__(self, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            raise ValidationError(self.error)
        if isinstance(value, (list, tuple, Mapping)) and len(value) == 0:
            raise ValidationError(self.error)
        return value


class Size(validate.Validator):
    """
    Bounds the size of a value.

    Numbers are compared by value when the field is numeric, strings by
    length in characters and collections by number of items.
    """

    def __init__(
        self,
        minimum: Optional[float] = None,
        maximum: Optional[float] = None,
        exact: Optional[float] = None,
        numeric: bool = False
    ) -> None:
        self.minimum = minimum
        self.maximum = maximum
        self.exact = exact
        self.numeric = numeric

    def _repr_args(self) -> str:
        return f"minimum={self.minimum!r}, maximum={self.maximum!r}, exact={self.exact!r}, numeric={self.numeric!r}"

    def _measure(self, value: Any) -> Tuple[Any, str]:
        if _is_number(value):
            return value, ""
        if isinstance(value, str):
            if self.numeric:
                try:
                    return float(value), ""
                except ValueError:
                    pass
            return len(value), " characters"
        if isinstance(value, (list, tuple, Mapping)):
            return len(value), " items"
        raise ValidationError("Value has no measurable size.")

    def __call__(self, value: Any) -> Any:
        size, unit = self._measure(value)
        if self.exact is not None and size != self.exact:
            raise ValidationError(f"Must be exactly {_format_bound(self.exact)}{unit}.")
        if self.minimum is not None and size < self.minimum:
            raise ValidationError(f"Must be at least {_format_bound(self.minimum)}{unit}.")
        if self.maximum is not None and size > self.maximum:
            raise ValidationError(f"Must be at most {_format_bound(self.maximum)}{unit}.")
        return value


class Membership(validate.Validator):
    """``in`` / ``not_in`` check on the string form of a value."""

    def __init__(self, choices: Sequence[str], negate: bool = False) -> None:
        self.choices = tuple(choices)
        self.negate = negate

    def _repr_args(self) -> str:
        return f"choices={self.choices!r}, negate={self.negate!r}"

    @staticmethod
    def _as_text(value: Any) -> str:
        if isinstance(value, bool):
            return "1" if value else "0"
        return str(value)

    def __call__(self, value: Any) -> Any:
        found = self._as_text(value) in self.choices
        if found == self.negate:
            if self.negate:
                raise ValidationError(f"Must not be one of: {', '.join(self.choices)}.")
            raise ValidationError(f"Must be one of: {', '.join(self.choices)}.")
        return value


class Pattern(validate.Validator):
    """Searches a string for a regular expression."""

    def __init__(self, regex: "re.Pattern[str]") -> None:
        self.regex = regex

    def _repr_args(self) -> str:
        return f"regex={self.regex.pattern!r}"

    def __call__(self, value: Any) -> Any:
        if not isinstance(value, (str, int)) or isinstance(value, bool) or not self.regex.search(str(value)):
            raise ValidationError("Format is invalid.")
        return value


class EmailAddress(validate.Validator):
    """Email syntax check backed by email-validator."""

    def __call__(self, value: Any) -> Any:
        if not isinstance(value, str):
            raise ValidationError("Not a valid email address.")
        try:
            validate_email(value, check_deliverability=False)
        except EmailNotValidError as exc:
            raise ValidationError(f"Not a valid email address. {exc}") from exc
        return value


class UUIDFormat(validate.Validator):
    """Accepts canonical UUID strings."""

    def __call__(self, value: Any) -> Any:
        try:
            uuid.UUID(str(value))
        except (TypeError, ValueError) as exc:
            raise ValidationError("Not a valid UUID.") from exc
        return value


class CharacterClass(validate.Validator):
    """Restricts the characters a value may contain."""

    PATTERNS = {
        'alpha': (re.compile(r'[^\W\d_]+'), "letters"),
        'alpha_num': (re.compile(r'[^\W_]+'), "letters and numbers"),
        'alpha_dash': (re.compile(r'[\w-]+'), "letters, numbers, dashes and underscores"),
    }

    def __init__(self, name: str) -> None:
        self.name = name
        self.regex, self.description = self.PATTERNS[name]

    def _repr_args(self) -> str:
        return f"name={self.name!r}"

    def __call__(self, value: Any) -> Any:
        if isinstance(value, bool) or not isinstance(value, (str, int)) or not self.regex.fullmatch(str(value)):
            raise ValidationError(f"May only contain {self.description}.")
        return value


# ============================================================================
# RULE PARSING
# ============================================================================

def parse_rule(token: str) -> Tuple[str, List[str]]:
    """
    Split a rule token into its name and arguments.

    ``regex`` arguments are kept whole since patterns may contain commas.
    """
    name, _, argument = token.partition(':')
    name = name.strip().lower()
    if name == 'regex':
        return name, [argument]
    return name, [item.strip() for item in argument.split(',')] if argument else []


def _number(argument: str, token: str, path: str) -> float:
    try:
        return float(argument)
    except ValueError:
        raise UnsupportedRuleError(
            f"Rule '{token}' on '{path}' expects a numeric argument",
            rule=token,
            path=path
        )


def compile_pattern(argument: str, token: str = "", path: str = "") -> "re.Pattern[str]":
    """
    Compile a ``regex`` argument.

    Delimited patterns such as ``/^[a-z]+$/i`` are unwrapped and their
    trailing flags applied; an undelimited argument is used as it is.
    """
    pattern, flags = argument, 0
    if len(argument) > 1 and argument[0] == '/' and argument.rfind('/') > 0:
        end = argument.rfind('/')
        pattern = argument[1:end]
        for flag in argument[end + 1:]:
            if flag not in REGEX_FLAGS:
                raise UnsupportedRuleError(
                    f"Unsupported regex flag '{flag}' in rule '{token}' on '{path}'",
                    rule=token,
                    path=path
                )
            flags |= REGEX_FLAGS[flag]
    try:
        return re.compile(pattern, flags)
    except re.error as exc:
        raise UnsupportedRuleError(
            f"Invalid pattern in rule '{token}' on '{path}': {exc}",
            rule=token,
            path=path
        )


class RuleSet:
    """
    Parsed rules of a single path.

    Attributes:
        path: Dotted path the rules apply to (used in error messages)
        required: Whether the key must be present and filled
        nullable: Whether None is accepted
        type_rule: Name of the type rule, None for untyped values
        validators: Validators in declaration order
    """

    def __init__(self, tokens: Sequence[Any], path: str) -> None:
        self.path = path
        self.required = False
        self.nullable = False
        self.type_rule: Optional[str] = None
        self.validators: List[Callable[[Any], Any]] = []
        self._sizes: List[Tuple[str, List[str]]] = []

        for token in tokens:
            self._apply(token)
        self._finalize_sizes()

    def _set_type(self, name: str) -> None:
        if self.type_rule is None or self.type_rule == name:
            self.type_rule = name
        elif {self.type_rule, name} == NUMERIC_TYPES:
            self.type_rule = 'integer'
        else:
            raise UnsupportedRuleError(
                f"Conflicting type rules '{self.type_rule}' and '{name}' on '{self.path}'",
                rule=name,
                path=self.path
            )

    def _apply(self, token: Any) -> None:
        if callable(token):
            self.validators.append(token)
            return
        if not isinstance(token, str):
            raise UnsupportedRuleError(
                f"Rule tokens must be strings or callables, got {type(token).__name__} on '{self.path}'",
                rule=token,
                path=self.path
            )

        name, arguments = parse_rule(token)
        if name == 'required':
            self.required = True
            self.validators.append(Filled())
        elif name == 'nullable':
            self.nullable = True
        elif name in PRESENCE_RULES:
            return
        elif name in TYPE_RULES:
            self._set_type(name)
        elif name in SIZE_RULES:
            self._sizes.append((token, arguments))
        elif name in ('in', 'not_in'):
            self.validators.append(Membership(arguments, negate=name == 'not_in'))
        elif name == 'regex':
            self.validators.append(Pattern(compile_pattern(arguments[0], token, self.path)))
        elif name == 'email':
            self.validators.append(EmailAddress())
        elif name == 'url':
            self.validators.append(validate.URL(require_tld=False))
        elif name == 'uuid':
            self.validators.append(UUIDFormat())
        elif name in CharacterClass.PATTERNS:
            self.validators.append(CharacterClass(name))
        else:
            raise UnsupportedRuleError(
                f"Unsupported validation rule '{name}' on '{self.path}'",
                rule=token,
                path=self.path
            )

    def _finalize_sizes(self) -> None:
        numeric = self.type_rule in NUMERIC_TYPES
        for token, arguments in self._sizes:
            name = parse_rule(token)[0]
            expected = 2 if name == 'between' else 1
            if len(arguments) != expected:
                raise UnsupportedRuleError(
                    f"Rule '{token}' on '{self.path}' expects {expected} argument(s)",
                    rule=token,
                    path=self.path
                )
            bounds = [_number(argument, token, self.path) for argument in arguments]
            if name == 'min':
                self.validators.append(Size(minimum=bounds[0], numeric=numeric))
            elif name == 'max':
                self.validators.append(Size(maximum=bounds[0], numeric=numeric))
            elif name == 'size':
                self.validators.append(Size(exact=bounds[0], numeric=numeric))
            else:
                self.validators.append(Size(minimum=bounds[0], maximum=bounds[1], numeric=numeric))

    def field_options(self) -> Dict[str, Any]:
        """Keyword arguments shared by every marshmallow field built for this path."""
        return {
            'required': self.required,
            'allow_none': self.nullable and not self.required,
            'validate': list(self.validators),
        }

    def make_field(self) -> fields.Field:
        """Build the marshmallow field for a leaf path."""
        field_class = TYPE_FIELDS.get(self.type_rule, fields.Raw)
        return field_class(**self.field_options())
