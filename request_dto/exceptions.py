"""
Exception hierarchy for schema definition, rule compilation and validation failures.

Every error raised by the package derives from RequestDTOError, which carries an
error code, a category, a severity, structured details and the HTTP status a Flask
error handler should answer with. Errors log themselves through structlog and
count themselves in Prometheus when constructed, so a failure is observable even
when the caller converts it into a response without logging.

Classes:
    RequestDTOError: Base class for all package errors
    SchemaDefinitionError: Invalid field metadata on a schema class
    RuleCompilationError: Colliding rule paths or self-referencing schemas
    UnsupportedRuleError: Rule token the validation engine cannot interpret
    RedirectResolutionError: Failure location that cannot be turned into a URL
    ValidationFailure: Input rejected by the validation engine
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog
from flask import has_request_context, request
from prometheus_client import Counter

logger = structlog.get_logger("request_dto.exceptions")

error_counter = Counter(
    'request_dto_errors_total',
    'Total number of request DTO errors by type',
    ['error_type', 'category']
)


class ErrorCategory(Enum):
    """Error categories used for log and metric classification."""

    SCHEMA = "schema"
    RULES = "rules"
    VALIDATION = "validation"
    REDIRECT = "redirect"


class ErrorSeverity(Enum):
    """Error severity levels controlling the log level of an error."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RequestDTOError(Exception):
    """
    Base exception class for all request DTO errors.

    Attributes:
        message: Human-readable error message
        code: Stable error identifier for clients
        category: Error category for classification
        severity: Error severity level
        details: Additional structured context
        http_status: Status code a Flask error handler should use
        timestamp: Moment the error was raised (UTC, ISO 8601)
    """

    default_code = "REQUEST_DTO_ERROR"
    default_category = ErrorCategory.SCHEMA
    default_severity = ErrorSeverity.HIGH
    default_http_status = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        category: Optional[ErrorCategory] = None,
        severity: Optional[ErrorSeverity] = None,
        http_status: Optional[int] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.category = category or self.default_category
        self.severity = severity or self.default_severity
        self.http_status = http_status or self.default_http_status
        self.timestamp = datetime.now(timezone.utc).isoformat()

        self._log_error()
        error_counter.labels(
            error_type=self.code,
            category=self.category.value
        ).inc()

    def _log_error(self) -> None:
        """Emit a structured log entry sized by the error severity."""
        log_data = {
            'error_code': self.code,
            'error_category': self.category.value,
            'error_severity': self.severity.value,
            'http_status': self.http_status,
            'details': self.details,
        }
        if has_request_context():
            log_data.update({
                'endpoint': request.endpoint,
                'method': request.method,
                'path': request.path,
            })

        if self.severity == ErrorSeverity.HIGH:
            logger.error(self.message, **log_data)
        elif self.severity == ErrorSeverity.MEDIUM:
            logger.warning(self.message, **log_data)
        else:
            logger.info(self.message, **log_data)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the error to a dictionary suitable for a JSON response.

        Returns:
            Dictionary representation of the error
        """
        return {
            'error': True,
            'message': self.message,
            'code': self.code,
            'category': self.category.value,
            'timestamp': self.timestamp,
            'details': self.details,
        }


class SchemaDefinitionError(RequestDTOError):
    """
    Raised when a schema class carries metadata the binder cannot honour.

    Typical causes are a field annotated with both Validation and
    ArrayValidation, or an ArrayValidation whose target is not a schema type.
    """

    default_code = "SCHEMA_DEFINITION_ERROR"

    def __init__(self, message: str, schema: Optional[str] = None, field: Optional[str] = None, **kwargs) -> None:
        details = kwargs.pop('details', {})
        if schema:
            details['schema'] = schema
        if field:
            details['field'] = field
        super().__init__(message, details=details, **kwargs)
        self.schema = schema
        self.field = field


class RuleCompilationError(RequestDTOError):
    """Raised when compiling a schema would produce an ambiguous or infinite rule map."""

    default_code = "RULE_COMPILATION_ERROR"
    default_category = ErrorCategory.RULES

    def __init__(self, message: str, path: Optional[str] = None, **kwargs) -> None:
        details = kwargs.pop('details', {})
        if path:
            details['path'] = path
        super().__init__(message, details=details, **kwargs)
        self.path = path


class UnsupportedRuleError(RequestDTOError):
    """Raised by the marshmallow engine for a rule token it does not understand."""

    default_code = "UNSUPPORTED_RULE"
    default_category = ErrorCategory.RULES

    def __init__(self, message: str, rule: Any = None, path: Optional[str] = None, **kwargs) -> None:
        details = kwargs.pop('details', {})
        if rule is not None:
            details['rule'] = str(rule)
        if path:
            details['path'] = path
        super().__init__(message, details=details, **kwargs)
        self.rule = rule
        self.path = path


class RedirectResolutionError(RequestDTOError):
    """Raised when a failure location cannot be resolved to a URL."""

    default_code = "REDIRECT_RESOLUTION_ERROR"
    default_category = ErrorCategory.REDIRECT


class ValidationFailure(RequestDTOError):
    """
    Input rejected by the validation engine.

    Raised exactly once per failed validation attempt. Carries the field-level
    errors keyed by dotted path, the error bag the errors belong to and the
    location the client should be sent back to.

    Example:
        try:
            dto.validate_resolved(payload)
        except ValidationFailure as failure:
            return redirect(failure.redirect_to)
    """

    default_code = "VALIDATION_FAILED"
    default_category = ErrorCategory.VALIDATION
    default_severity = ErrorSeverity.LOW
    default_http_status = 422

    def __init__(
        self,
        errors: Dict[str, List[str]],
        error_bag: str = "default",
        redirect_to: Optional[str] = None,
        message: Optional[str] = None,
        **kwargs
    ) -> None:
        self.errors = dict(errors)
        self.error_bag = error_bag
        self.redirect_to = redirect_to
        details = kwargs.pop('details', {})
        details.update({
            'error_bag': error_bag,
            'redirect_to': redirect_to,
            'fields': sorted(self.errors),
        })
        super().__init__(message or self.summarize(self.errors), details=details, **kwargs)

    @staticmethod
    def summarize(errors: Dict[str, List[str]]) -> str:
        """
        Build the headline message for a set of field errors.

        The first message of the first failing field is used, followed by a
        count of the remaining messages.
        """
        messages = [message for field_messages in errors.values() for message in field_messages]
        if not messages:
            return "The given data was invalid."

        headline = str(messages[0])
        remaining = len(messages) - 1
        if remaining == 1:
            headline += " (and 1 more error)"
        elif remaining > 1:
            headline += f" (and {remaining} more errors)"
        return headline

    def to_dict(self) -> Dict[str, Any]:
        """Response body for JSON clients: the headline plus the field errors."""
        return {
            'message': self.message,
            'errors': self.errors,
        }
