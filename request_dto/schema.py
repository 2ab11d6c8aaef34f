"""
DataTransferObject: the schema base class.

A schema declares its fields as annotated attributes. Validation metadata is
attached with typing.Annotated; a field typed as another schema is nested
without any metadata.

    class AddressDTO(DataTransferObject):
        city: Annotated[str, Validation("required|string")]

    class LineDTO(DataTransferObject):
        sku: Annotated[str, Validation("required")]
        quantity: Annotated[int, Validation("required|integer|min:1")]

    class OrderDTO(DataTransferObject):
        redirect_route = "orders.create"

        reference: Annotated[str, Validation("required|min:3")]
        shipping: AddressDTO
        lines: Annotated[list, ArrayValidation(LineDTO)]
        mailer: Mailer  # no metadata, never validated or bound from input

    order = OrderDTO()
    order.validate_resolved({"reference": "A-100", ...})
    order.shipping.city, order.lines[0].sku, order.to_dict()

Each instance goes through one validation attempt: PENDING, then VALIDATED
once the validated data is bound, or FAILED when the engine rejects the
input and ValidationFailure is raised.
"""

import time
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional

import structlog

from request_dto.binder import SchemaFactory, bind
from request_dto.compiler import RuleMap, compile_rules
from request_dto.engine import ValidationEngine, ValidationResult, ensure_engine
from request_dto.exceptions import ValidationFailure
from request_dto.monitoring import record_validation
from request_dto.redirects import BaseRedirector, FlaskRedirector, ViewReference, resolve_redirect_url

logger = structlog.get_logger("request_dto.schema")


class ValidationState(Enum):
    """Lifecycle of a schema instance."""

    PENDING = "pending"
    VALIDATED = "validated"
    FAILED = "failed"


def export_value(value: Any) -> Any:
    """Convert bound values to plain data, exporting child schemas through to_dict()."""
    if isinstance(value, DataTransferObject):
        return value.to_dict()
    if isinstance(value, list):
        return [export_value(item) for item in value]
    if isinstance(value, tuple):
        return tuple(export_value(item) for item in value)
    if isinstance(value, dict):
        return {key: export_value(item) for key, item in value.items()}
    return value


class DataTransferObject:
    """
    Base class for request schemas.

    Class attributes:
        redirect: Literal path to send the client to on failure
        redirect_route: Endpoint name to send the client to on failure
        redirect_action: View function (or its dotted name) to send the
            client to on failure
        error_bag: Name of the bag failure errors are stored under

    Args:
        revalidate: Run rule compilation and the engine in validate_resolved;
            children built by the binder pass False since their data was
            validated with the parent
        factory: Factory used for nested instances
        engine: Validation engine (marshmallow engine by default)
        redirector: Failure location resolver (Flask resolver by default)
    """

    redirect: ClassVar[Optional[str]] = None
    redirect_route: ClassVar[Optional[str]] = None
    redirect_action: ClassVar[Optional[ViewReference]] = None
    error_bag: ClassVar[str] = "default"

    def __init__(
        self,
        revalidate: bool = True,
        *,
        factory: Optional[SchemaFactory] = None,
        engine: Optional[ValidationEngine] = None,
        redirector: Optional[BaseRedirector] = None
    ) -> None:
        self._revalidate = revalidate
        self._factory = factory or SchemaFactory()
        self._engine = engine
        self._redirector = redirector
        self._data: Dict[str, Any] = {}
        self._state = ValidationState.PENDING

    @classmethod
    def rules(cls) -> RuleMap:
        """Compiled rule map of this schema type."""
        return compile_rules(cls)

    @property
    def validation_state(self) -> ValidationState:
        return self._state

    @property
    def revalidates(self) -> bool:
        return self._revalidate

    @property
    def is_validated(self) -> bool:
        return self._state is ValidationState.VALIDATED

    def validate_resolved(self, raw_input: Optional[Mapping[str, Any]] = None) -> None:
        """
        Validate input and bind the validated data onto this instance.

        Does nothing for instances created with ``revalidate=False``.

        Args:
            raw_input: Untrusted input; gathered from the active Flask
                request when omitted

        Raises:
            ValidationFailure: The engine rejected the input
        """
        if not self._revalidate:
            return

        schema_name = type(self).__name__
        start_time = time.perf_counter()

        if raw_input is None:
            from request_dto.decorators import request_input

            raw_input = request_input()

        rules = self.rules()
        result = ensure_engine(self._engine).validate(raw_input, rules)

        if result.failed:
            self._state = ValidationState.FAILED
            record_validation(schema_name, 'failed', time.perf_counter() - start_time)
            logger.info(
                "Schema validation failed",
                schema=schema_name,
                failed_paths=sorted(result.errors),
            )
            self.failed_validation(result)
            return

        self.merge(result.validated_data)
        self._state = ValidationState.VALIDATED
        record_validation(schema_name, 'validated', time.perf_counter() - start_time)
        logger.debug("Schema validated", schema=schema_name, fields=sorted(self._data))

    def failed_validation(self, result: ValidationResult) -> None:
        """
        Handle a rejected attempt.

        Raises:
            ValidationFailure: Always, with the field errors, the error bag
                and the resolved failure location
        """
        raise ValidationFailure(
            result.errors,
            error_bag=self.error_bag,
            redirect_to=self.get_redirect_url()
        )

    def get_redirect_url(self) -> str:
        """Failure location: redirect, then redirect_route, then redirect_action, then previous."""
        schema_type = type(self)
        redirector = self._redirector or FlaskRedirector()
        return resolve_redirect_url(
            redirector,
            redirect=schema_type.redirect,
            route=schema_type.redirect_route,
            action=schema_type.redirect_action
        )

    def merge(self, data: Mapping[str, Any]) -> None:
        """Bind already validated data onto this instance."""
        bind(self, data, self._factory)

    def to_dict(self) -> Dict[str, Any]:
        """
        Export the bound values.

        Returns:
            Mapping of field name to value; nested schemas are exported as
            their own to_dict() so the result only holds plain data
        """
        return {key: export_value(value) for key, value in self._data.items()}

    def __repr__(self) -> str:
        return f"<{type(self).__name__} state={self._state.value} fields={sorted(self._data)}>"
