"""
request_dto: declarative request schemas for Flask.

Schemas declare their fields with validation metadata; the package compiles
the rules, validates request input with marshmallow and binds the validated
data back onto (nested) schema instances.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("flask-request-dto")
except PackageNotFoundError:
    __version__ = "dev"

from request_dto.attributes import ArrayValidation, Validation
from request_dto.binder import SchemaFactory, bind
from request_dto.compiler import compile_rules, prefix_rules
from request_dto.decorators import request_input, validate_request
from request_dto.engine import MarshmallowValidationEngine, ValidationEngine, ValidationResult
from request_dto.exceptions import (
    RedirectResolutionError,
    RequestDTOError,
    RuleCompilationError,
    SchemaDefinitionError,
    UnsupportedRuleError,
    ValidationFailure,
)
from request_dto.extension import RequestDTO, get_errors, old_input
from request_dto.fields import FieldDescriptor, FieldKind, describe_fields
from request_dto.redirects import BaseRedirector, FlaskRedirector, resolve_redirect_url
from request_dto.schema import DataTransferObject, ValidationState

__all__ = [
    "__version__",
    "ArrayValidation",
    "BaseRedirector",
    "DataTransferObject",
    "FieldDescriptor",
    "FieldKind",
    "FlaskRedirector",
    "MarshmallowValidationEngine",
    "RedirectResolutionError",
    "RequestDTO",
    "RequestDTOError",
    "RuleCompilationError",
    "SchemaDefinitionError",
    "SchemaFactory",
    "UnsupportedRuleError",
    "Validation",
    "ValidationEngine",
    "ValidationFailure",
    "ValidationResult",
    "ValidationState",
    "bind",
    "compile_rules",
    "describe_fields",
    "get_errors",
    "old_input",
    "prefix_rules",
    "request_input",
    "resolve_redirect_url",
    "validate_request",
]
